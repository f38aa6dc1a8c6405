import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr, Field

import accounts
import catalog
import database
import orders
import subscriptions
from authorization import Actor
from config import API_PREFIX, EXPIRING_SOON_DAYS, LOG_LEVEL
from database import ensure_indexes, find_by_id, get_db
from errors import InvalidCredentials, ServiceError, Unauthorized
from schemas import CourierStatus, GeoPoint, PaymentMethod, Role, SavedAddress, Vehicle
from security import decode_access_token

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    yield


# App and CORS
app = FastAPI(title="Food Delivery API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


# Auth dependencies
bearer_scheme = HTTPBearer(auto_error=False)


def get_current_actor(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db=Depends(get_db),
) -> Actor:
    if not creds:
        raise InvalidCredentials("Authorization required")
    payload = decode_access_token(creds.credentials)
    if not find_by_id(db, payload.role.value, payload.subject_id):
        raise InvalidCredentials("Could not validate credentials")
    return Actor(payload.subject_id, payload.role)


def require_role(*roles: Role):
    def role_dep(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise Unauthorized("Insufficient permissions")
        return actor
    return role_dep


# Request Models
class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ConsumerRegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    phone: str
    password: str
    password_confirm: str
    address: str = Field(..., max_length=400)
    location: GeoPoint


class UpdatePasswordRequest(BaseModel):
    old_password: str
    new_password: str


class ConsumerProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    location: Optional[GeoPoint] = None
    profile_image: Optional[str] = None
    saved_addresses: Optional[List[SavedAddress]] = None
    favorite_restaurants: Optional[List[str]] = None


class CreateOwnerRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    phone: str
    password: str
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    max_couriers: Optional[int] = Field(None, ge=0)


class UpdateOwnerRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    max_couriers: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class ExtendSubscriptionRequest(BaseModel):
    new_end_date: datetime


class RestaurantIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    address: str = Field(..., max_length=400)
    phone: str
    is_open: bool = True
    location: GeoPoint
    cuisine_type: List[str] = Field(default_factory=list)
    image: Optional[str] = None
    delivery_time: Optional[int] = Field(None, ge=0)
    minimum_order: float = Field(0, ge=0)
    delivery_fee: float = Field(0, ge=0)


class RestaurantUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    is_open: Optional[bool] = None
    location: Optional[GeoPoint] = None
    cuisine_type: Optional[List[str]] = None
    image: Optional[str] = None
    delivery_time: Optional[int] = Field(None, ge=0)
    minimum_order: Optional[float] = Field(None, ge=0)
    delivery_fee: Optional[float] = Field(None, ge=0)


class ProductIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    price: float = Field(..., ge=0)
    category: str
    description: Optional[str] = None
    image: Optional[str] = None
    is_available: bool = True
    preparation_time: Optional[int] = Field(None, ge=0)
    ingredients: List[str] = Field(default_factory=list)
    calories: Optional[int] = Field(None, ge=0)
    spicy: bool = False
    vegetarian: bool = False


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    is_available: Optional[bool] = None
    preparation_time: Optional[int] = Field(None, ge=0)
    ingredients: Optional[List[str]] = None
    calories: Optional[int] = Field(None, ge=0)
    spicy: Optional[bool] = None
    vegetarian: Optional[bool] = None


class CourierIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    phone: str
    password: str
    vehicle: Optional[Vehicle] = None
    vehicle_plate: Optional[str] = None
    is_verified: bool = False


class CourierUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[CourierStatus] = None
    current_location: Optional[GeoPoint] = None
    vehicle: Optional[Vehicle] = None
    vehicle_plate: Optional[str] = None
    is_verified: Optional[bool] = None
    is_active: Optional[bool] = None


class OrderItemIn(BaseModel):
    product_id: str
    quantity: Optional[int] = None
    special_instructions: Optional[str] = None


class CreateOrderRequest(BaseModel):
    restaurant_id: str
    items: List[OrderItemIn] = Field(..., min_length=1)
    delivery_location: GeoPoint
    payment_method: PaymentMethod = "cash"
    notes: Optional[str] = None


class ConfirmOrderRequest(BaseModel):
    accept: bool = True
    reason: Optional[str] = None


class AssignCourierRequest(BaseModel):
    courier_id: str


class UpdateOrderStatusRequest(BaseModel):
    status: str


class RateOrderRequest(BaseModel):
    score: int = Field(..., ge=1, le=5)
    review: Optional[str] = None


def _updates(payload: BaseModel) -> dict:
    return payload.model_dump(exclude_unset=True, exclude_none=True)


# Auth Routes
auth_router = APIRouter(prefix="/auth", tags=["auth"])


@auth_router.post("/{role}-login")
def login(role: Role, payload: LoginRequest, db=Depends(get_db)):
    return accounts.login(db, role, payload.email, payload.password)


@auth_router.post("/consumer-register", status_code=201)
def consumer_register(payload: ConsumerRegisterRequest, db=Depends(get_db)):
    return accounts.register_consumer(db, payload.model_dump())


@auth_router.get("/me")
def me(actor: Actor = Depends(get_current_actor), db=Depends(get_db)):
    return accounts.get_profile(db, actor)


@auth_router.put("/password")
def update_password(payload: UpdatePasswordRequest, actor: Actor = Depends(get_current_actor), db=Depends(get_db)):
    return accounts.change_password(db, actor, payload.old_password, payload.new_password)


# Admin Routes
admin_router = APIRouter(prefix="/admin", tags=["admin"])
require_admin = require_role(Role.ADMIN)


@admin_router.get("/owners")
def admin_list_owners(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    return accounts.list_owners(db, page, limit)


@admin_router.get("/owners/{owner_id}")
def admin_get_owner(owner_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    return accounts.get_owner(db, owner_id)


@admin_router.post("/owners/create", status_code=201)
def admin_create_owner(payload: CreateOwnerRequest, admin=Depends(require_admin), db=Depends(get_db)):
    return accounts.create_owner(db, payload.model_dump())


@admin_router.patch("/owners/{owner_id}/update")
def admin_update_owner(owner_id: str, payload: UpdateOwnerRequest, admin=Depends(require_admin), db=Depends(get_db)):
    return accounts.update_owner(db, owner_id, _updates(payload))


@admin_router.patch("/owners/{owner_id}/deactivate")
def admin_deactivate_owner(owner_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    return accounts.set_owner_active(db, owner_id, False)


@admin_router.patch("/owners/{owner_id}/activate")
def admin_activate_owner(owner_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    return accounts.set_owner_active(db, owner_id, True)


@admin_router.patch("/owners/{owner_id}/extend-subscription")
def admin_extend_subscription(
    owner_id: str, payload: ExtendSubscriptionRequest, admin=Depends(require_admin), db=Depends(get_db)
):
    return subscriptions.extend_subscription(db, owner_id, payload.new_end_date)


@admin_router.get("/owners/{owner_id}/subscription-status")
def admin_subscription_status(owner_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    return subscriptions.subscription_status(db, owner_id)


@admin_router.get("/subscriptions/expired")
def admin_expired_subscriptions(admin=Depends(require_admin), db=Depends(get_db)):
    return subscriptions.expired_subscriptions(db)


@admin_router.get("/subscriptions/expiring-soon")
def admin_expiring_subscriptions(
    days: int = Query(EXPIRING_SOON_DAYS, ge=1, le=365),
    admin=Depends(require_admin),
    db=Depends(get_db),
):
    return subscriptions.expiring_soon(db, window=timedelta(days=days))


# Owner routes
owner_router = APIRouter(prefix="/owner", tags=["owner"])
require_owner = require_role(Role.OWNER)


@owner_router.post("/restaurants", status_code=201)
def owner_create_restaurant(payload: RestaurantIn, owner: Actor = Depends(require_owner), db=Depends(get_db)):
    return catalog.create_restaurant(db, owner, payload.model_dump())


@owner_router.get("/restaurants")
def owner_list_restaurants(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    owner: Actor = Depends(require_owner),
    db=Depends(get_db),
):
    return catalog.list_owner_restaurants(db, owner, page, limit)


@owner_router.get("/restaurants/{restaurant_id}")
def owner_get_restaurant(restaurant_id: str, owner: Actor = Depends(require_owner), db=Depends(get_db)):
    return catalog.get_owner_restaurant(db, owner, restaurant_id)


@owner_router.patch("/restaurants/{restaurant_id}")
def owner_update_restaurant(
    restaurant_id: str, payload: RestaurantUpdate, owner: Actor = Depends(require_owner), db=Depends(get_db)
):
    return catalog.update_restaurant(db, owner, restaurant_id, _updates(payload))


@owner_router.delete("/restaurants/{restaurant_id}")
def owner_delete_restaurant(restaurant_id: str, owner: Actor = Depends(require_owner), db=Depends(get_db)):
    return catalog.delete_restaurant(db, owner, restaurant_id)


@owner_router.post("/restaurants/{restaurant_id}/products", status_code=201)
def owner_create_product(
    restaurant_id: str, payload: ProductIn, owner: Actor = Depends(require_owner), db=Depends(get_db)
):
    return catalog.create_product(db, owner, restaurant_id, payload.model_dump())


@owner_router.patch("/products/{product_id}")
def owner_update_product(product_id: str, payload: ProductUpdate, owner: Actor = Depends(require_owner), db=Depends(get_db)):
    return catalog.update_product(db, owner, product_id, _updates(payload))


@owner_router.delete("/products/{product_id}")
def owner_delete_product(product_id: str, owner: Actor = Depends(require_owner), db=Depends(get_db)):
    return catalog.delete_product(db, owner, product_id)


@owner_router.get("/restaurants/{restaurant_id}/couriers")
def owner_list_couriers(restaurant_id: str, owner: Actor = Depends(require_owner), db=Depends(get_db)):
    return catalog.list_couriers(db, owner, restaurant_id)


@owner_router.post("/restaurants/{restaurant_id}/couriers", status_code=201)
def owner_create_courier(
    restaurant_id: str, payload: CourierIn, owner: Actor = Depends(require_owner), db=Depends(get_db)
):
    return catalog.create_courier(db, owner, restaurant_id, payload.model_dump())


@owner_router.patch("/couriers/{courier_id}")
def owner_update_courier(courier_id: str, payload: CourierUpdate, owner: Actor = Depends(require_owner), db=Depends(get_db)):
    return catalog.update_courier(db, owner, courier_id, _updates(payload))


@owner_router.delete("/couriers/{courier_id}")
def owner_delete_courier(courier_id: str, owner: Actor = Depends(require_owner), db=Depends(get_db)):
    return catalog.delete_courier(db, owner, courier_id)


# Public restaurant browsing
restaurant_router = APIRouter(prefix="/restaurants", tags=["restaurants"])


@restaurant_router.get("")
def list_restaurants(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    is_open: Optional[bool] = None,
    db=Depends(get_db),
):
    return catalog.list_restaurants(db, page, limit, is_open)


@restaurant_router.get("/search")
def search_restaurants(
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
    max_distance: int = Query(5000, ge=1, description="Metres"),
    q: Optional[str] = None,
    db=Depends(get_db),
):
    return catalog.search_restaurants(db, lat, lon, max_distance, q)


@restaurant_router.get("/{restaurant_id}")
def get_restaurant(restaurant_id: str, db=Depends(get_db)):
    return catalog.get_restaurant(db, restaurant_id)


@restaurant_router.get("/{restaurant_id}/products")
def list_restaurant_products(
    restaurant_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    available_only: bool = False,
    db=Depends(get_db),
):
    return catalog.list_products(db, restaurant_id, page, limit, available_only)


# Consumer routes
consumer_router = APIRouter(prefix="/consumers", tags=["consumers"])
require_consumer = require_role(Role.CONSUMER)


@consumer_router.get("/profile")
def consumer_profile(consumer: Actor = Depends(require_consumer), db=Depends(get_db)):
    return accounts.get_profile(db, consumer)


@consumer_router.patch("/profile")
def consumer_update_profile(payload: ConsumerProfileUpdate, consumer: Actor = Depends(require_consumer), db=Depends(get_db)):
    return accounts.update_consumer_profile(db, consumer.id, _updates(payload))


# Order routes
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201)
def create_order(payload: CreateOrderRequest, consumer: Actor = Depends(require_consumer), db=Depends(get_db)):
    return orders.create_order(
        db,
        consumer.id,
        payload.restaurant_id,
        [item.model_dump() for item in payload.items],
        payload.delivery_location.model_dump(),
        payload.payment_method,
        payload.notes,
    )


@order_router.get("")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    actor: Actor = Depends(get_current_actor),
    db=Depends(get_db),
):
    return orders.list_orders(db, actor, page, limit, status)


@order_router.get("/{order_id}")
def get_order(order_id: str, actor: Actor = Depends(get_current_actor), db=Depends(get_db)):
    return orders.get_order(db, actor, order_id)


@order_router.get("/{order_id}/history")
def get_order_history(order_id: str, actor: Actor = Depends(get_current_actor), db=Depends(get_db)):
    return [entry.model_dump() for entry in orders.get_order_history(db, actor, order_id)]


@order_router.get("/{order_id}/estimate")
def get_delivery_estimate(order_id: str, actor: Actor = Depends(get_current_actor), db=Depends(get_db)):
    return orders.delivery_estimate(db, actor, order_id)


@order_router.patch("/{order_id}/confirm")
def confirm_order(
    order_id: str, payload: ConfirmOrderRequest, owner: Actor = Depends(require_owner), db=Depends(get_db)
):
    return orders.confirm_order(db, owner, order_id, payload.accept, payload.reason)


@order_router.patch("/{order_id}/assign")
def assign_courier(
    order_id: str, payload: AssignCourierRequest, owner: Actor = Depends(require_owner), db=Depends(get_db)
):
    return orders.assign_courier(db, owner, order_id, payload.courier_id)


@order_router.patch("/{order_id}/status")
def update_order_status(
    order_id: str,
    payload: UpdateOrderStatusRequest,
    courier: Actor = Depends(require_role(Role.COURIER)),
    db=Depends(get_db),
):
    return orders.update_status(db, courier, order_id, payload.status)


@order_router.post("/{order_id}/rating")
def rate_order(order_id: str, payload: RateOrderRequest, consumer: Actor = Depends(require_consumer), db=Depends(get_db)):
    return orders.rate_order(db, consumer, order_id, payload.score, payload.review)


for router in (auth_router, admin_router, owner_router, restaurant_router, consumer_router, order_router):
    app.include_router(router, prefix=API_PREFIX)


# Utility endpoints
@app.get("/")
def root():
    return {"message": "Food Delivery API running"}


@app.get("/test")
def test_database():
    try:
        collections = database.db.list_collection_names() if database.db is not None else []
        return {"backend": "ok", "database": "ok" if database.db is not None else "missing", "collections": collections}
    except Exception as e:
        return {"backend": "ok", "database": f"error: {e}"}


@app.post("/init/bootstrap", status_code=201)
def bootstrap_admin(db=Depends(get_db)):
    """Create the first admin account from the BOOTSTRAP_ADMIN_* settings."""
    return accounts.bootstrap_admin(db)


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
