"""
MongoDB access helpers.

The client is created at import time when DATABASE_URL and DATABASE_NAME are
set. Services never import ``db`` directly, they receive a database handle as
their first argument so the API can hand them ``get_db()`` and tests can hand
them an in-memory one.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, GEOSPHERE, MongoClient, ReturnDocument

from config import DATABASE_NAME, DATABASE_URL
from errors import ValidationError

ACCOUNT_COLLECTIONS = ("admin", "owner", "courier", "consumer")

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL, tz_aware=True)
    db = _client[DATABASE_NAME]


def get_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_obj_id(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(str(id_str))
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id")


def find_by_id(database, collection: str, id_str: Any) -> Optional[Dict]:
    """Fetch one document by its string id; malformed ids read as absent."""
    if not ObjectId.is_valid(str(id_str)):
        return None
    return database[collection].find_one({"_id": ObjectId(str(id_str))})


def sanitize(doc: Optional[Dict]) -> Optional[Dict]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def public_account(doc: Optional[Dict]) -> Optional[Dict]:
    d = sanitize(doc)
    if d:
        d.pop("password_hash", None)
    return d


def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Dict = None, limit: int = None) -> List[Dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def paginate(
    database,
    collection_name: str,
    filter_dict: Dict = None,
    page: int = 1,
    limit: int = 10,
    sort: Optional[List[Tuple[str, int]]] = None,
    transform=sanitize,
) -> Dict[str, Any]:
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")
    filter_dict = filter_dict or {}
    sort = sort or [("created_at", DESCENDING), ("_id", DESCENDING)]
    cursor = database[collection_name].find(filter_dict).sort(sort).skip((page - 1) * limit).limit(limit)
    total = database[collection_name].count_documents(filter_dict)
    return {
        "items": [transform(d) for d in cursor],
        "pagination": {"total": total, "page": page, "limit": limit, "pages": math.ceil(total / limit)},
    }


def next_sequence(database, name: str) -> int:
    """Atomically increment and return the named counter."""
    counter = database["counter"].find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["seq"]


def ensure_indexes(database, collections: Iterable[str] = ACCOUNT_COLLECTIONS) -> None:
    for name in collections:
        database[name].create_index([("email", ASCENDING)], unique=True)
    database["order"].create_index([("order_number", ASCENDING)], unique=True)
    database["order"].create_index([("consumer_id", ASCENDING)])
    database["order"].create_index([("restaurant_id", ASCENDING)])
    database["order"].create_index([("courier_id", ASCENDING)])
    database["restaurant"].create_index([("owner_id", ASCENDING)])
    database["restaurant"].create_index([("location", GEOSPHERE)])
    database["product"].create_index([("restaurant_id", ASCENDING)])
    database["courier"].create_index([("restaurant_id", ASCENDING)])
