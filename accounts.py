"""
Login, registration, profiles and admin management of owner accounts.

Passwords are hashed here and only here: when an account is created and when
its password is changed.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError
from pymongo.errors import DuplicateKeyError

from authorization import Actor
from config import (
    BOOTSTRAP_ADMIN_EMAIL,
    BOOTSTRAP_ADMIN_NAME,
    BOOTSTRAP_ADMIN_PASSWORD,
    BOOTSTRAP_ADMIN_PHONE,
    DEFAULT_MAX_COURIERS,
    DEFAULT_SUBSCRIPTION_DAYS,
)
from database import create_document, find_by_id, paginate, public_account, to_obj_id, utcnow
from errors import AccountDeactivated, Conflict, InvalidCredentials, NotFound, ValidationError
from schemas import Admin, Consumer, Owner, Role, SubscriptionPaymentInfo, as_utc, parse_account
from security import create_access_token, hash_password, verify_password
from subscriptions import check_login, is_login_allowed

logger = logging.getLogger(__name__)

CONSUMER_PROFILE_FIELDS = frozenset({
    "name", "phone", "address", "location", "profile_image", "saved_addresses", "favorite_restaurants",
})
OWNER_UPDATE_FIELDS = frozenset({
    "email", "phone", "name", "max_couriers", "is_active", "subscription_start_date", "subscription_end_date",
})


def schema_error_message(e: SchemaError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else err.get("msg", "Invalid data")


def build(model, **fields) -> BaseModel:
    """Instantiate a schema, reporting failures as a ValidationError."""
    try:
        return model(**fields)
    except SchemaError as e:
        raise ValidationError(schema_error_message(e))


def find_account(db, role: Role, email: str) -> Optional[Dict[str, Any]]:
    return db[Role(role).value].find_one({"email": email.strip().lower()})


def insert_account(db, account: BaseModel) -> Dict[str, Any]:
    collection = account.role
    if find_account(db, collection, account.email):
        raise Conflict("Email already registered")
    try:
        account_id = create_document(db, collection, account)
    except DuplicateKeyError:
        raise Conflict("Email already registered")
    return db[collection].find_one({"_id": to_obj_id(account_id)})


def _session(account: Dict[str, Any], role: Role) -> Dict[str, Any]:
    token = create_access_token(str(account["_id"]), role)
    return {"user": public_account(account), "token": token}


def login(db, role: Role, email: str, password: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    role = Role(role)
    account = find_account(db, role, email)
    if not account or not verify_password(password, account.get("password_hash")):
        logger.warning("Failed %s login for %s", role.value, email)
        raise InvalidCredentials()
    if parse_account(account).role != role.value:
        raise InvalidCredentials()

    if role == Role.OWNER:
        check_login(account, now)
    elif not account.get("is_active", True):
        raise AccountDeactivated(f"This {role.value} account has been deactivated")
    elif role == Role.COURIER and not account.get("is_verified"):
        raise AccountDeactivated("Courier account has not been verified yet. Please contact the restaurant owner")

    session = _session(account, role)
    if role == Role.OWNER:
        session["user"]["is_subscription_active"] = is_login_allowed(account, now)
    return session


def register_consumer(db, data: Mapping[str, Any]) -> Dict[str, Any]:
    if data.get("password") != data.get("password_confirm"):
        raise ValidationError("Passwords do not match")
    consumer = build(
        Consumer,
        name=data.get("name"),
        email=(data.get("email") or "").strip().lower(),
        phone=data.get("phone"),
        password_hash=hash_password(data.get("password")),
        address=data.get("address"),
        location=data.get("location"),
    )
    account = insert_account(db, consumer)
    logger.info("Registered consumer %s", account["_id"])
    return _session(account, Role.CONSUMER)


def create_admin(db, name: str, email: str, phone: str, password: str) -> Dict[str, Any]:
    admin = build(Admin, name=name, email=email.strip().lower(), phone=phone, password_hash=hash_password(password))
    return public_account(insert_account(db, admin))


def bootstrap_admin(db) -> Dict[str, Any]:
    """Create the first admin from the BOOTSTRAP_ADMIN_* settings. Refused once any admin exists."""
    if db["admin"].count_documents({}) > 0:
        raise Conflict("Admin already exists")
    admin = create_admin(db, BOOTSTRAP_ADMIN_NAME, BOOTSTRAP_ADMIN_EMAIL, BOOTSTRAP_ADMIN_PHONE, BOOTSTRAP_ADMIN_PASSWORD)
    logger.info("Bootstrap admin %s created", admin["email"])
    return admin


def get_profile(db, actor: Actor) -> Dict[str, Any]:
    account = find_by_id(db, actor.role.value, actor.id)
    if not account:
        raise NotFound("Account not found")
    return public_account(account)


def update_consumer_profile(db, consumer_id: str, updates: Mapping[str, Any]) -> Dict[str, Any]:
    consumer = find_by_id(db, "consumer", consumer_id)
    if not consumer:
        raise NotFound("Consumer not found")
    rejected = set(updates) - CONSUMER_PROFILE_FIELDS
    if rejected:
        raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(rejected))}")

    merged = build(Consumer, **{**consumer, **updates}).model_dump()
    changes = {k: merged[k] for k in updates}
    changes["updated_at"] = utcnow()
    db["consumer"].update_one({"_id": consumer["_id"]}, {"$set": changes})
    return public_account(db["consumer"].find_one({"_id": consumer["_id"]}))


def change_password(db, actor: Actor, old_password: str, new_password: str) -> Dict[str, str]:
    account = find_by_id(db, actor.role.value, actor.id)
    if not account:
        raise NotFound("Account not found")
    if not verify_password(old_password, account.get("password_hash")):
        raise InvalidCredentials("Old password incorrect")
    db[actor.role.value].update_one(
        {"_id": account["_id"]},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": utcnow()}},
    )
    return {"message": "Password updated"}


# Owner management (admin)

def list_owners(db, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    return paginate(db, "owner", {}, page, limit, transform=public_account)


def get_owner(db, owner_id: str) -> Dict[str, Any]:
    owner = find_by_id(db, "owner", owner_id)
    if not owner:
        raise NotFound("Owner not found")
    return public_account(owner)


def create_owner(db, data: Mapping[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    start = data.get("subscription_start_date") or now
    end = data.get("subscription_end_date") or now + timedelta(days=DEFAULT_SUBSCRIPTION_DAYS)
    max_couriers = data.get("max_couriers")
    owner = build(
        Owner,
        name=data.get("name"),
        email=(data.get("email") or "").strip().lower(),
        phone=data.get("phone"),
        password_hash=hash_password(data.get("password")),
        subscription_start_date=start,
        subscription_end_date=end,
        max_couriers=DEFAULT_MAX_COURIERS if max_couriers is None else max_couriers,
        subscription_payment_info=SubscriptionPaymentInfo(last_payment_date=now, next_payment_date=end),
    )
    account = insert_account(db, owner)
    logger.info("Created owner %s with subscription until %s", account["_id"], as_utc(end).isoformat())
    return public_account(account)


def update_owner(db, owner_id: str, updates: Mapping[str, Any]) -> Dict[str, Any]:
    owner = find_by_id(db, "owner", owner_id)
    if not owner:
        raise NotFound("Owner not found")
    changes = {k: v for k, v in updates.items() if k in OWNER_UPDATE_FIELDS and v is not None}
    if "email" in changes:
        changes["email"] = changes["email"].strip().lower()
        if changes["email"] != owner["email"] and find_account(db, Role.OWNER, changes["email"]):
            raise Conflict("Email already in use")

    validated = build(Owner, **{**owner, **changes}).model_dump()
    to_set = {k: validated[k] for k in changes}
    if "subscription_end_date" in changes:
        to_set["subscription_payment_info.next_payment_date"] = changes["subscription_end_date"]
    to_set["updated_at"] = utcnow()
    try:
        db["owner"].update_one({"_id": owner["_id"]}, {"$set": to_set})
    except DuplicateKeyError:
        raise Conflict("Email already in use")
    return public_account(db["owner"].find_one({"_id": owner["_id"]}))


def set_owner_active(db, owner_id: str, active: bool) -> Dict[str, Any]:
    owner = find_by_id(db, "owner", owner_id)
    if not owner:
        raise NotFound("Owner not found")
    db["owner"].update_one({"_id": owner["_id"]}, {"$set": {"is_active": active, "updated_at": utcnow()}})
    logger.info("Owner %s %s", owner_id, "activated" if active else "deactivated")
    return {
        "message": "Owner activated" if active else "Owner deactivated",
        "owner": public_account(db["owner"].find_one({"_id": owner["_id"]})),
    }
