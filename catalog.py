"""
Restaurants, products and couriers.

Owners manage the restaurants they own and, through them, the products and
couriers of those restaurants. Restaurant and product reads are public.
"""

import logging
import re
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel

import distance
from accounts import build, insert_account
from authorization import Action, Actor, enforce, load_authorized, owns_restaurant
from config import DEFAULT_MAX_COURIERS, SEARCH_RESULT_LIMIT
from database import create_document, find_by_id, get_documents, paginate, public_account, sanitize, to_obj_id, utcnow
from errors import Conflict, NotFound, Unauthorized, ValidationError
from schemas import Courier, Product, Restaurant, Role
from security import hash_password

logger = logging.getLogger(__name__)

RESTAURANT_UPDATE_FIELDS = frozenset(Restaurant.model_fields) - {"owner_id"}
PRODUCT_UPDATE_FIELDS = frozenset(Product.model_fields) - {"restaurant_id"}
COURIER_UPDATE_FIELDS = frozenset({
    "name", "phone", "status", "current_location", "vehicle", "vehicle_plate", "is_verified", "is_active",
})


def _changes(model, existing: Dict[str, Any], updates: Mapping[str, Any], allowed: frozenset) -> Dict[str, Any]:
    rejected = set(updates) - allowed
    if rejected:
        raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(rejected))}")
    merged = build(model, **{**existing, **updates}).model_dump()
    changes = {k: merged[k] for k in updates}
    changes["updated_at"] = utcnow()
    return changes


def _insert(db, collection: str, document: BaseModel) -> Dict[str, Any]:
    doc_id = create_document(db, collection, document)
    return sanitize(db[collection].find_one({"_id": to_obj_id(doc_id)}))


def _update(db, collection: str, doc: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    db[collection].update_one({"_id": doc["_id"]}, {"$set": changes})
    return db[collection].find_one({"_id": doc["_id"]})


# Restaurants

def create_restaurant(db, actor: Actor, data: Mapping[str, Any]) -> Dict[str, Any]:
    if actor.role != Role.OWNER:
        raise Unauthorized("Only owners can create restaurants")
    restaurant = build(Restaurant, **{**data, "owner_id": actor.id})
    created = _insert(db, "restaurant", restaurant)
    logger.info("Owner %s created restaurant %s", actor.id, created["id"])
    return created


def list_owner_restaurants(db, actor: Actor, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    return paginate(db, "restaurant", {"owner_id": actor.id}, page, limit)


def get_owner_restaurant(db, actor: Actor, restaurant_id: str) -> Dict[str, Any]:
    restaurant = find_by_id(db, "restaurant", restaurant_id)
    enforce(owns_restaurant(actor, restaurant), "restaurant", actor)
    return sanitize(restaurant)


def update_restaurant(db, actor: Actor, restaurant_id: str, updates: Mapping[str, Any]) -> Dict[str, Any]:
    restaurant = load_authorized(db, actor, Action.UPDATE, "restaurant", restaurant_id)
    changes = _changes(Restaurant, restaurant, updates, RESTAURANT_UPDATE_FIELDS)
    return sanitize(_update(db, "restaurant", restaurant, changes))


def delete_restaurant(db, actor: Actor, restaurant_id: str) -> Dict[str, Any]:
    restaurant = load_authorized(db, actor, Action.DELETE, "restaurant", restaurant_id)
    rid = str(restaurant["_id"])
    db["restaurant"].delete_one({"_id": restaurant["_id"]})
    products = db["product"].delete_many({"restaurant_id": rid})
    couriers = db["courier"].update_many(
        {"restaurant_id": rid},
        {"$set": {"is_active": False, "status": "offline", "updated_at": utcnow()}},
    )
    logger.info(
        "Owner %s deleted restaurant %s (%d products removed, %d couriers deactivated)",
        actor.id, rid, products.deleted_count, couriers.modified_count,
    )
    return {"message": "Restaurant deleted"}


def list_restaurants(db, page: int = 1, limit: int = 10, is_open: Optional[bool] = None) -> Dict[str, Any]:
    query = {} if is_open is None else {"is_open": is_open}
    return paginate(db, "restaurant", query, page, limit)


def get_restaurant(db, restaurant_id: str) -> Dict[str, Any]:
    restaurant = find_by_id(db, "restaurant", restaurant_id)
    if not restaurant:
        raise NotFound("Restaurant not found")
    return sanitize(restaurant)


def nearby_query(lat: float, lon: float, max_distance_m: int = 5000) -> Dict[str, Any]:
    """``$nearSphere`` filter on the restaurant location index; results come back nearest first."""
    return {
        "location": {
            "$nearSphere": {
                "$geometry": {"type": "Point", "coordinates": [lon, lat]},
                "$maxDistance": max_distance_m,
            }
        }
    }


def search_restaurants(
    db,
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    max_distance_m: int = 5000,
    q: Optional[str] = None,
):
    """Restaurants near a point, nearest first, optionally filtered by name."""
    query: Dict[str, Any] = {}
    if q:
        query["name"] = {"$regex": re.escape(q), "$options": "i"}
    if lat is None or lon is None:
        return [sanitize(r) for r in db["restaurant"].find(query).limit(SEARCH_RESULT_LIMIT)]

    query.update(nearby_query(lat, lon, max_distance_m))
    consumer_location = {"coordinates": [lon, lat]}
    nearby = []
    for restaurant in db["restaurant"].find(query).limit(SEARCH_RESULT_LIMIT):
        eta = distance.restaurant_to_consumer_distance(restaurant["location"], consumer_location)
        nearby.append({
            **sanitize(restaurant),
            "distance_km": distance.distance_from_coordinates([lon, lat], restaurant["location"]["coordinates"]),
            "estimated_delivery_time_minutes": eta["estimated_delivery_time_minutes"],
        })
    return nearby


# Products

def create_product(db, actor: Actor, restaurant_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    restaurant = load_authorized(db, actor, Action.UPDATE, "restaurant", restaurant_id)
    product = build(Product, **{**data, "restaurant_id": str(restaurant["_id"])})
    return _insert(db, "product", product)


def update_product(db, actor: Actor, product_id: str, updates: Mapping[str, Any]) -> Dict[str, Any]:
    product = load_authorized(db, actor, Action.UPDATE, "product", product_id)
    changes = _changes(Product, product, updates, PRODUCT_UPDATE_FIELDS)
    return sanitize(_update(db, "product", product, changes))


def delete_product(db, actor: Actor, product_id: str) -> Dict[str, Any]:
    product = load_authorized(db, actor, Action.DELETE, "product", product_id)
    db["product"].delete_one({"_id": product["_id"]})
    return {"message": "Product deleted"}


def list_products(db, restaurant_id: str, page: int = 1, limit: int = 20, available_only: bool = False) -> Dict[str, Any]:
    query: Dict[str, Any] = {"restaurant_id": restaurant_id}
    if available_only:
        query["is_available"] = True
    return paginate(db, "product", query, page, limit)


# Couriers

def _active_courier_count(db, owner_id: str) -> int:
    restaurant_ids = [str(r["_id"]) for r in get_documents(db, "restaurant", {"owner_id": owner_id})]
    return db["courier"].count_documents({"restaurant_id": {"$in": restaurant_ids}, "is_active": True})


def create_courier(db, actor: Actor, restaurant_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    restaurant = load_authorized(db, actor, Action.UPDATE, "restaurant", restaurant_id)
    owner = find_by_id(db, "owner", actor.id) or {}
    max_couriers = owner.get("max_couriers", DEFAULT_MAX_COURIERS)
    if _active_courier_count(db, actor.id) >= max_couriers:
        raise Conflict(f"Courier limit of {max_couriers} reached")

    courier = build(
        Courier,
        name=data.get("name"),
        email=(data.get("email") or "").strip().lower(),
        phone=data.get("phone"),
        password_hash=hash_password(data.get("password")),
        restaurant_id=str(restaurant["_id"]),
        vehicle=data.get("vehicle"),
        vehicle_plate=data.get("vehicle_plate"),
        is_verified=data.get("is_verified", False),
    )
    account = insert_account(db, courier)
    logger.info("Owner %s added courier %s to restaurant %s", actor.id, account["_id"], restaurant_id)
    return public_account(account)


def update_courier(db, actor: Actor, courier_id: str, updates: Mapping[str, Any]) -> Dict[str, Any]:
    courier = load_authorized(db, actor, Action.UPDATE, "courier", courier_id)
    changes = _changes(Courier, courier, updates, COURIER_UPDATE_FIELDS)
    return public_account(_update(db, "courier", courier, changes))


def delete_courier(db, actor: Actor, courier_id: str) -> Dict[str, Any]:
    courier = load_authorized(db, actor, Action.DELETE, "courier", courier_id)
    db["courier"].delete_one({"_id": courier["_id"]})
    return {"message": "Courier deleted"}


def list_couriers(db, actor: Actor, restaurant_id: str):
    restaurant = find_by_id(db, "restaurant", restaurant_id)
    enforce(owns_restaurant(actor, restaurant), "restaurant", actor)
    cursor = db["courier"].find({"restaurant_id": str(restaurant["_id"])}).sort([("created_at", -1), ("_id", -1)])
    return [public_account(c) for c in cursor]
