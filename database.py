"""
MongoDB access helpers.

The service keeps one ``Database`` handle on ``app.state.db``. Collections:
``users``, ``zones``, ``complaints``, ``comments``.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import Settings

log = logging.getLogger(__name__)

USERS = "users"
ZONES = "zones"
COMPLAINTS = "complaints"
COMMENTS = "comments"


def connect(settings: Settings) -> Database:
    client = MongoClient(
        settings.mongo_url,
        serverSelectionTimeoutMS=settings.mongo_timeout_ms,
        socketTimeoutMS=settings.mongo_timeout_ms,
        tz_aware=True,
    )
    log.info("connecting to MongoDB database %s", settings.database_name)
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[ZONES].create_index([("name", ASCENDING)], unique=True)
    db[COMPLAINTS].create_index([("author", ASCENDING)])
    db[COMPLAINTS].create_index([("assignedTo", ASCENDING), ("status", ASCENDING)])
    db[COMPLAINTS].create_index([("upvoteCount", DESCENDING)])
    db[COMMENTS].create_index([("complaint", ASCENDING), ("createdAt", DESCENDING)])


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id from a path or body; ``None`` when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(db: Database, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Insert ``data`` with timestamps and return the stored document."""
    stamp = now()
    doc = dict(data)
    doc.setdefault("createdAt", stamp)
    doc["updatedAt"] = stamp
    result = db[collection].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def get_documents(
    db: Database,
    collection: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List] = None,
    projection: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize(value: Any) -> Any:
    """Convert a stored document to its JSON shape: ``_id`` becomes ``id``, ObjectIds become strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            if key == "_id":
                out["id"] = serialize(item)
            elif key == "password":
                continue
            else:
                out[key] = serialize(item)
        return out
    return value


def populate(
    db: Database,
    docs: Iterable[Dict[str, Any]],
    field: str,
    fields: Iterable[str],
    collection: str = USERS,
) -> List[Dict[str, Any]]:
    """Replace the reference in ``doc[field]`` with a small sub-document, one query for the batch."""
    docs = list(docs)
    ids = {d.get(field) for d in docs if isinstance(d.get(field), ObjectId)}
    if not ids:
        return docs
    projection = {name: 1 for name in fields}
    found = {ref["_id"]: ref for ref in db[collection].find({"_id": {"$in": list(ids)}}, projection)}
    for doc in docs:
        ref = doc.get(field)
        if isinstance(ref, ObjectId):
            doc[field] = found.get(ref, {"_id": ref})
    return docs
