"""
Order lifecycle.

Orders are created by consumers, confirmed or rejected by the restaurant's
owner, handed to a courier by the owner and completed by that courier::

    pending ──> confirmed ──(assign)──> on_way ──> delivered
       │            │                     │
       └────────────┴──────> cancelled <──┘

``preparing`` is part of the status vocabulary and is accepted as a source
state, but no operation here moves an order into it. A courier may report
``on_way`` again while already on the way; that refresh only appends a
history entry.

Every status change goes through ``_apply_transition``: one compare-and-swap
update keyed on the status the order had when it was read. The update sets the
new status and pushes exactly one history entry, so concurrent transitions
on the same order are serialized by the database and the loser fails without
touching the document.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError as SchemaError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import distance
from authorization import Action, Actor, load_authorized
from config import MAX_ITEM_QUANTITY
from database import create_document, find_by_id, get_documents, next_sequence, paginate, sanitize, to_obj_id, utcnow
from errors import (
    Conflict,
    InvalidStateTransition,
    NotFound,
    ProductUnavailable,
    Unauthorized,
    ValidationError,
)
from schemas import ChangedBy, GeoPoint, Order, OrderItem, OrderRating, OrderStatus, Role, StatusHistory

logger = logging.getLogger(__name__)

TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.ON_WAY, OrderStatus.CANCELLED},
    OrderStatus.PREPARING: {OrderStatus.ON_WAY, OrderStatus.CANCELLED},
    OrderStatus.ON_WAY: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}
TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)
COURIER_STATUSES = frozenset({OrderStatus.ON_WAY, OrderStatus.DELIVERED})

ORDER_NUMBER_SEQUENCE = "order_number"


def format_order_number(now: datetime, sequence: int) -> str:
    return f"ORD-{now:%Y%m}-{sequence:06d}"


def check_transition(current, target) -> None:
    current, target = OrderStatus(current), OrderStatus(target)
    if target not in TRANSITIONS[current]:
        raise InvalidStateTransition(f"Cannot move order from {current.value} to {target.value}")


def _apply_transition(
    db,
    order: Dict[str, Any],
    target: OrderStatus,
    changed_by: ChangedBy,
    note: str,
    now: datetime,
    extra: Optional[Dict[str, Any]] = None,
    allow_repeat: bool = False,
) -> Dict[str, Any]:
    if not (allow_repeat and order["status"] == target.value):
        check_transition(order["status"], target)
    entry = StatusHistory.entry(target, changed_by, now, note).model_dump()
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": order["status"]},
        {
            "$set": {"status": target.value, "updated_at": now, **(extra or {})},
            "$push": {"status_history": entry},
        },
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InvalidStateTransition("Order status changed concurrently, reload and retry")
    logger.info("Order %s: %s -> %s by %s", order.get("order_number"), order["status"], target.value, changed_by)
    return updated


def _quantity(raw: Any) -> int:
    if raw is None:
        return 1
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ValidationError("Quantity must be an integer")
    if raw < 1 or raw > MAX_ITEM_QUANTITY:
        raise ValidationError(f"Quantity must be between 1 and {MAX_ITEM_QUANTITY}")
    return raw


def _snapshot_items(db, restaurant_id: str, items: Iterable[Mapping[str, Any]]) -> List[OrderItem]:
    snapshots = []
    for requested in items:
        product_id = requested.get("product_id")
        quantity = _quantity(requested.get("quantity"))
        product = find_by_id(db, "product", product_id)
        if not product or product.get("restaurant_id") != restaurant_id:
            raise NotFound(f"Product not found: {product_id}")
        if not product.get("is_available", True):
            raise ProductUnavailable(f"Product is currently unavailable: {product['name']}")
        snapshots.append(OrderItem(
            product_id=str(product["_id"]),
            product_name=product["name"],
            price=product["price"],
            quantity=quantity,
            special_instructions=requested.get("special_instructions"),
        ))
    return snapshots


def create_order(
    db,
    consumer_id: str,
    restaurant_id: str,
    items: List[Mapping[str, Any]],
    delivery_location: Any,
    payment_method: str = "cash",
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    if not items:
        raise ValidationError("Order must contain at least one item")
    restaurant = find_by_id(db, "restaurant", restaurant_id)
    if not restaurant:
        raise NotFound("Restaurant not found")
    restaurant_id = str(restaurant["_id"])

    snapshots = _snapshot_items(db, restaurant_id, items)
    total_price = round(sum(item.price * item.quantity for item in snapshots), 2)
    delivery_fee = restaurant.get("delivery_fee") or 0

    try:
        order = Order(
            order_number=format_order_number(now, next_sequence(db, ORDER_NUMBER_SEQUENCE)),
            consumer_id=str(consumer_id),
            restaurant_id=restaurant_id,
            restaurant_name=restaurant.get("name"),
            items=snapshots,
            total_price=total_price,
            delivery_fee=delivery_fee,
            final_price=round(total_price + delivery_fee, 2),
            payment_method=payment_method,
            delivery_location=GeoPoint.model_validate(delivery_location),
            notes=notes,
            status_history=[StatusHistory.entry(OrderStatus.PENDING, "consumer", now, "Order created")],
        )
    except SchemaError as e:
        raise ValidationError(str(e.errors()[0].get("msg", "Invalid order")))

    try:
        order_id = create_document(db, "order", order)
    except DuplicateKeyError:
        raise Conflict(f"Order number {order.order_number} is already in use")
    logger.info("Order %s created by consumer %s for restaurant %s", order.order_number, consumer_id, restaurant_id)
    return sanitize(db["order"].find_one({"_id": to_obj_id(order_id)}))


def get_order(db, actor: Actor, order_id: str) -> Dict[str, Any]:
    return sanitize(load_authorized(db, actor, Action.READ, "order", order_id))


def get_order_history(db, actor: Actor, order_id: str) -> StatusHistory:
    order = load_authorized(db, actor, Action.READ, "order", order_id)
    return StatusHistory(order.get("status_history", []))


def list_orders(db, actor: Actor, page: int = 1, limit: int = 10, status: Optional[str] = None) -> Dict[str, Any]:
    if actor.role == Role.CONSUMER:
        query: Dict[str, Any] = {"consumer_id": actor.id}
    elif actor.role == Role.COURIER:
        query = {"courier_id": actor.id}
    elif actor.role == Role.OWNER:
        restaurant_ids = [str(r["_id"]) for r in get_documents(db, "restaurant", {"owner_id": actor.id})]
        query = {"restaurant_id": {"$in": restaurant_ids}}
    else:
        raise Unauthorized("Orders are not available to this account type")
    if status:
        try:
            query["status"] = OrderStatus(status).value
        except ValueError:
            raise ValidationError(f"Unknown status: {status}")
    return paginate(db, "order", query, page, limit)


def confirm_order(
    db,
    actor: Actor,
    order_id: str,
    accept: bool = True,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    order = load_authorized(db, actor, Action.CONFIRM, "order", order_id)
    if accept:
        updated = _apply_transition(db, order, OrderStatus.CONFIRMED, "owner", "Order accepted", now)
    else:
        extra = {"cancellation_reason": reason} if reason else None
        updated = _apply_transition(db, order, OrderStatus.CANCELLED, "owner", "Order cancelled", now, extra)
    return sanitize(updated)


def assign_courier(db, actor: Actor, order_id: str, courier_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    order = load_authorized(db, actor, Action.ASSIGN, "order", order_id)
    courier = find_by_id(db, "courier", courier_id)
    if not courier or not courier.get("is_active", True) or courier.get("restaurant_id") != order["restaurant_id"]:
        raise NotFound("Courier not found")
    courier_id = str(courier["_id"])
    updated = _apply_transition(
        db, order, OrderStatus.ON_WAY, "owner", f"Assigned to courier {courier_id}", now,
        {"courier_id": courier_id},
    )
    return sanitize(updated)


def update_status(db, actor: Actor, order_id: str, new_status: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    order = load_authorized(db, actor, Action.UPDATE_STATUS, "order", order_id)
    try:
        target = OrderStatus(new_status)
    except ValueError:
        raise InvalidStateTransition(f"Unrecognized status: {new_status}")
    if target not in COURIER_STATUSES:
        raise InvalidStateTransition(f"Couriers cannot set status {target.value}")

    extra = {"actual_delivery_time": now} if target == OrderStatus.DELIVERED else None
    updated = _apply_transition(
        db, order, target, "courier", f"Courier updated to {target.value}", now, extra,
        allow_repeat=target == OrderStatus.ON_WAY,
    )
    if target == OrderStatus.DELIVERED:
        db["courier"].update_one(
            {"_id": to_obj_id(actor.id)},
            {"$inc": {"total_deliveries": 1}, "$set": {"updated_at": now}},
        )
    return sanitize(updated)


def rate_order(
    db,
    actor: Actor,
    order_id: str,
    score: int,
    review: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    order = load_authorized(db, actor, Action.RATE, "order", order_id)
    if order["status"] != OrderStatus.DELIVERED.value:
        raise InvalidStateTransition("Only delivered orders can be rated")
    if order.get("rating"):
        raise Conflict("Order has already been rated")
    try:
        rating = OrderRating(score=score, review=review, rated_by="consumer", rated_at=now)
    except SchemaError:
        raise ValidationError("Score must be between 1 and 5")

    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "rating": None},
        {"$set": {"rating": rating.model_dump(), "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise Conflict("Order has already been rated")
    return sanitize(updated)


def _has_reported_location(courier: Mapping[str, Any]) -> bool:
    coordinates = (courier.get("current_location") or {}).get("coordinates")
    return bool(coordinates) and list(coordinates) != [0, 0]


def delivery_estimate(db, actor: Actor, order_id: str) -> Dict[str, Any]:
    """Distance and ETA to the delivery point from the courier, or from the
    restaurant while no courier is assigned or it has not reported a location."""
    order = load_authorized(db, actor, Action.READ, "order", order_id)
    courier = find_by_id(db, "courier", order["courier_id"]) if order.get("courier_id") else None
    if courier and _has_reported_location(courier):
        origin, location = "courier", courier.get("current_location")
    else:
        restaurant = find_by_id(db, "restaurant", order["restaurant_id"])
        if not restaurant:
            raise NotFound("Restaurant not found")
        origin, location = "restaurant", restaurant.get("location")
    return {"order_id": str(order["_id"]), "origin": origin, **distance.delivery_distance(location, order["delivery_location"])}
