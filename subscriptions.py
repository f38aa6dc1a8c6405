"""
Owner subscription gate and subscription reporting.

``is_login_allowed`` and ``check_login`` are pure functions over an owner
document. The reporting helpers are on-demand reads; nothing here runs on a
schedule.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from config import EXPIRING_SOON_DAYS
from database import find_by_id, public_account, utcnow
from errors import AccountDeactivated, NotFound, SubscriptionExpired, ValidationError
from schemas import as_utc

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


def days_remaining(end: Optional[datetime], now: datetime) -> Optional[int]:
    if end is None:
        return None
    return max(0, math.ceil((as_utc(end) - as_utc(now)) / ONE_DAY))


def is_login_allowed(owner: Dict[str, Any], now: datetime) -> bool:
    end = as_utc(owner.get("subscription_end_date"))
    return bool(owner.get("is_active")) and (end is None or end > as_utc(now))


def check_login(owner: Dict[str, Any], now: datetime) -> None:
    if not owner.get("is_active"):
        raise AccountDeactivated("This owner account has been deactivated")
    if not is_login_allowed(owner, now):
        raise SubscriptionExpired()


def expired_subscriptions(db, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    owners = [public_account(o) for o in db["owner"].find({"is_active": True, "subscription_end_date": {"$lt": now}})]
    return {"count": len(owners), "owners": owners}


def expiring_soon(db, now: Optional[datetime] = None, window: timedelta = timedelta(days=EXPIRING_SOON_DAYS)) -> Dict[str, Any]:
    now = now or utcnow()
    owners = [
        public_account(o)
        for o in db["owner"].find({
            "is_active": True,
            "subscription_end_date": {"$gte": now, "$lte": now + window},
        })
    ]
    return {"count": len(owners), "owners": owners}


def _load_owner(db, owner_id: str) -> Dict[str, Any]:
    owner = find_by_id(db, "owner", owner_id)
    if not owner:
        raise NotFound("Owner not found")
    return owner


def subscription_status(db, owner_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    owner = _load_owner(db, owner_id)
    end = as_utc(owner.get("subscription_end_date"))
    return {
        "owner_id": str(owner["_id"]),
        "is_active": owner.get("is_active", False),
        "is_subscription_active": is_login_allowed(owner, now),
        "subscription_start_date": as_utc(owner.get("subscription_start_date")),
        "subscription_end_date": end,
        "days_remaining": days_remaining(end, now),
        "expires_at": end,
    }


def extend_subscription(db, owner_id: str, new_end_date: datetime, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    new_end_date = as_utc(new_end_date)
    owner = _load_owner(db, owner_id)
    start = as_utc(owner.get("subscription_start_date"))
    if start is not None and new_end_date < start:
        raise ValidationError("New end date must not precede the subscription start date")

    db["owner"].update_one(
        {"_id": owner["_id"]},
        {"$set": {
            "subscription_end_date": new_end_date,
            "subscription_payment_info.last_payment_date": now,
            "subscription_payment_info.next_payment_date": new_end_date,
            "updated_at": now,
        }},
    )
    logger.info("Extended subscription of owner %s until %s", owner_id, new_end_date.isoformat())
    return {
        "message": "Subscription extended",
        "subscription_start_date": start,
        "subscription_end_date": new_end_date,
        "days_remaining": days_remaining(new_end_date, now),
    }
