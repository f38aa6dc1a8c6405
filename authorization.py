"""
Ownership based authorization.

Every permission check in the service layer goes through ``authorize``. It
walks the ownership chain Owner -> Restaurant -> {Product, Courier, Order}
and the direct Consumer -> Order and Courier -> Order edges. A missing link
anywhere in the chain denies.

Denials are reported to callers as ``NotFound`` by ``enforce`` so that a
caller cannot tell an entity it may not touch from one that does not exist.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from database import find_by_id
from errors import NotFound
from schemas import Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role

    def __post_init__(self):
        object.__setattr__(self, "id", str(self.id))
        object.__setattr__(self, "role", Role(self.role))


class Action(str, Enum):
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    CONFIRM = "confirm"
    ASSIGN = "assign"
    UPDATE_STATUS = "update_status"
    RATE = "rate"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOWED = Decision(True)


def denied(reason: str) -> Decision:
    return Decision(False, reason)


# Which role may drive each order transition
ORDER_ACTION_ROLES = {
    Action.CONFIRM: Role.OWNER,
    Action.ASSIGN: Role.OWNER,
    Action.UPDATE_STATUS: Role.COURIER,
    Action.RATE: Role.CONSUMER,
}


def owns_restaurant(actor: Actor, restaurant: Optional[Dict[str, Any]]) -> Decision:
    if actor.role != Role.OWNER:
        return denied("only owners manage restaurants")
    if restaurant is None:
        return denied("restaurant does not exist")
    if restaurant.get("owner_id") != actor.id:
        return denied("restaurant belongs to another owner")
    return ALLOWED


def _restaurant_rule(db, actor: Actor, action: Action, restaurant: Dict[str, Any]) -> Decision:
    if action == Action.READ:
        return ALLOWED
    return owns_restaurant(actor, restaurant)


def _product_rule(db, actor: Actor, action: Action, product: Dict[str, Any]) -> Decision:
    if action == Action.READ:
        return ALLOWED
    return owns_restaurant(actor, find_by_id(db, "restaurant", product.get("restaurant_id")))


def _courier_rule(db, actor: Actor, action: Action, courier: Dict[str, Any]) -> Decision:
    return owns_restaurant(actor, find_by_id(db, "restaurant", courier.get("restaurant_id")))


def _order_party(db, actor: Actor, order: Dict[str, Any]) -> Decision:
    if actor.role == Role.CONSUMER:
        if order.get("consumer_id") == actor.id:
            return ALLOWED
        return denied("order belongs to another consumer")
    if actor.role == Role.OWNER:
        return owns_restaurant(actor, find_by_id(db, "restaurant", order.get("restaurant_id")))
    if actor.role == Role.COURIER:
        if order.get("courier_id") is not None and order.get("courier_id") == actor.id:
            return ALLOWED
        return denied("order is not assigned to this courier")
    return denied(f"{actor.role.value} has no access to orders")


def _order_rule(db, actor: Actor, action: Action, order: Dict[str, Any]) -> Decision:
    if action != Action.READ:
        required = ORDER_ACTION_ROLES.get(action)
        if required is None:
            return denied(f"{action.value} is not an order action")
        if actor.role != required:
            return denied(f"{action.value} is reserved for {required.value}")
    return _order_party(db, actor, order)


_RULES = {
    "restaurant": _restaurant_rule,
    "product": _product_rule,
    "courier": _courier_rule,
    "order": _order_rule,
}


def authorize(db, actor: Actor, action: Action, kind: str, target: Optional[Dict[str, Any]]) -> Decision:
    """Decide whether ``actor`` may perform ``action`` on ``target``.

    ``target`` is the stored document of type ``kind`` or None when it could
    not be found.
    """
    if kind not in _RULES:
        raise ValueError(f"Unknown target kind: {kind}")
    if target is None:
        return denied(f"{kind} does not exist")
    return _RULES[kind](db, actor, Action(action), target)


def enforce(decision: Decision, kind: str, actor: Actor = None) -> None:
    if decision:
        return
    if actor is not None:
        logger.info("Denied %s %s on %s: %s", actor.role.value, actor.id, kind, decision.reason)
    raise NotFound(f"{kind.capitalize()} not found")


def load_authorized(db, actor: Actor, action: Action, kind: str, target_id: str) -> Dict[str, Any]:
    """Fetch ``kind`` by id and enforce ``action`` on it in one step."""
    target = find_by_id(db, kind, target_id)
    enforce(authorize(db, actor, action, kind, target), kind, actor)
    return target
