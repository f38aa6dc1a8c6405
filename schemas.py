"""
Database Schemas for the Food Delivery Platform

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (Owner -> "owner").

We will use these collections:
- admin, owner, courier, consumer: the four account classes, one collection each
- restaurant: restaurants, each owned by one owner
- product: menu products, each belonging to one restaurant
- order: consumer orders and their status history
- counter: atomic sequences (order numbers)
"""

from collections import abc
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Iterator, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, model_validator


class Role(str, Enum):
    ADMIN = "admin"
    OWNER = "owner"
    COURIER = "courier"
    CONSUMER = "consumer"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    ON_WAY = "on_way"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class CourierStatus(str, Enum):
    OFFLINE = "offline"
    ONLINE = "online"
    BREAK = "break"
    ON_DELIVERY = "on_delivery"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Mongo hands back naive UTC datetimes unless the client is tz_aware
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


ChangedBy = Literal["system", "admin", "owner", "courier", "consumer"]
PaymentMethod = Literal["cash", "card", "meal_card"]
Vehicle = Literal["motorcycle", "bicycle", "car", "scooter"]


class Document(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class GeoPoint(Document):
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(..., min_length=2, max_length=2, description="[longitude, latitude]")
    address: Optional[str] = None


# Accounts

class Account(Document):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    phone: str = Field(..., min_length=1, max_length=30)
    password_hash: str = Field(..., description="BCrypt hash of password")
    is_active: bool = True


class Admin(Account):
    role: Literal["admin"] = "admin"


class SubscriptionPaymentInfo(Document):
    payment_method: Literal["credit_card", "bank_transfer", "other"] = "other"
    last_payment_date: Optional[datetime] = None
    next_payment_date: Optional[datetime] = None
    amount: float = 0
    currency: str = "TRY"


class Owner(Account):
    role: Literal["owner"] = "owner"
    subscription_start_date: datetime
    subscription_end_date: Optional[datetime] = None
    max_couriers: int = Field(5, ge=0)
    subscription_payment_info: SubscriptionPaymentInfo = Field(default_factory=SubscriptionPaymentInfo)

    @model_validator(mode="after")
    def check_subscription_window(self):
        end = self.subscription_end_date
        if end is not None and as_utc(end) < as_utc(self.subscription_start_date):
            raise ValueError("subscription_end_date must not precede subscription_start_date")
        return self


class Courier(Account):
    role: Literal["courier"] = "courier"
    restaurant_id: str = Field(..., description="Reference to restaurant _id")
    status: CourierStatus = CourierStatus.OFFLINE
    current_location: GeoPoint = Field(default_factory=lambda: GeoPoint(coordinates=[0, 0]))
    total_deliveries: int = Field(0, ge=0)
    rating: float = Field(5, ge=1, le=5)
    review_count: int = Field(0, ge=0)
    vehicle: Optional[Vehicle] = None
    vehicle_plate: Optional[str] = None
    is_verified: bool = False


class SavedAddress(Document):
    label: str
    address: str
    location: Optional[GeoPoint] = None
    is_default: bool = False


class Consumer(Account):
    role: Literal["consumer"] = "consumer"
    address: str = Field(..., max_length=400)
    location: GeoPoint
    profile_image: Optional[str] = None
    is_email_verified: bool = False
    is_phone_verified: bool = False
    favorite_restaurants: List[str] = Field(default_factory=list)
    saved_addresses: List[SavedAddress] = Field(default_factory=list)


AnyAccount = Annotated[Union[Admin, Owner, Courier, Consumer], Field(discriminator="role")]
account_adapter = TypeAdapter(AnyAccount)


def parse_account(doc: dict) -> AnyAccount:
    """Load a stored account document into its role variant."""
    return account_adapter.validate_python({k: v for k, v in doc.items() if k != "_id"})


# Catalog

class Restaurant(Document):
    owner_id: str = Field(..., description="Reference to owner _id")
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    address: str = Field(..., max_length=400)
    phone: str
    is_open: bool = True
    location: GeoPoint
    cuisine_type: List[str] = Field(default_factory=list)
    image: Optional[str] = None
    rating: float = Field(5, ge=1, le=5)
    review_count: int = 0
    delivery_time: Optional[int] = Field(None, ge=0, description="Minutes")
    minimum_order: float = Field(0, ge=0)
    delivery_fee: float = Field(0, ge=0)


class Product(Document):
    restaurant_id: str = Field(..., description="Reference to restaurant _id")
    name: str = Field(..., min_length=1, max_length=120)
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    category: str
    image: Optional[str] = None
    is_available: bool = True
    preparation_time: Optional[int] = Field(None, ge=0)
    ingredients: List[str] = Field(default_factory=list)
    calories: Optional[int] = Field(None, ge=0)
    rating: float = Field(5, ge=1, le=5)
    review_count: int = 0
    spicy: bool = False
    vegetarian: bool = False


# Orders

class OrderItem(Document):
    """Line item frozen at order time; later product edits never reach it."""
    model_config = ConfigDict(frozen=True)

    product_id: str
    product_name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    special_instructions: Optional[str] = None


class StatusEntry(Document):
    model_config = ConfigDict(frozen=True)

    status: OrderStatus
    timestamp: datetime
    changed_by: ChangedBy
    note: Optional[str] = None


class OrderRating(Document):
    score: int = Field(..., ge=1, le=5)
    review: Optional[str] = None
    rated_by: Literal["consumer", "courier", "restaurant"] = "consumer"
    rated_at: datetime


class Order(Document):
    order_number: Optional[str] = None
    consumer_id: str
    restaurant_id: str
    restaurant_name: Optional[str] = None
    courier_id: Optional[str] = None
    items: List[OrderItem] = Field(..., min_length=1)
    status: OrderStatus = OrderStatus.PENDING
    total_price: float = Field(..., ge=0)
    delivery_fee: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    final_price: float
    payment_method: PaymentMethod = "cash"
    payment_status: Literal["pending", "completed", "failed"] = "pending"
    delivery_location: GeoPoint
    estimated_delivery_time: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None
    rating: Optional[OrderRating] = None
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None
    status_history: List[StatusEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_final_price(self):
        expected = round(self.total_price + self.delivery_fee + self.tax - self.discount, 2)
        if round(self.final_price, 2) != expected:
            raise ValueError("final_price must equal total_price + delivery_fee + tax - discount")
        return self


class StatusHistory(abc.Sequence):
    """Append-only view over an order's status log.

    Entries can be read and a new history can be derived with ``appended``;
    nothing in this type edits or drops an existing entry.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries=()):
        self._entries = tuple(e if isinstance(e, StatusEntry) else StatusEntry.model_validate(e) for e in entries)

    def __getitem__(self, index):
        return self._entries[index]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[StatusEntry]:
        return iter(self._entries)

    def __repr__(self) -> str:
        return f"StatusHistory({list(self._entries)!r})"

    @property
    def latest(self) -> Optional[StatusEntry]:
        return self._entries[-1] if self._entries else None

    def appended(self, entry: StatusEntry) -> "StatusHistory":
        return StatusHistory(self._entries + (entry,))

    @staticmethod
    def entry(status: OrderStatus, changed_by: ChangedBy, timestamp: datetime, note: str = None) -> StatusEntry:
        return StatusEntry(status=status, timestamp=timestamp, changed_by=changed_by, note=note)
