"""
MongoDB access for the calendar API.

The handle is None when DATABASE_URL / DATABASE_NAME are not set; request
handlers then fail with a 500 instead of crashing at import time.
Collection names are the lowercased schema class names (User -> "user").
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL
from errors import Internal

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def get_db() -> Database:
    """FastAPI dependency yielding the configured database."""
    if db is None:
        raise Internal("Database not configured")
    return db


def ensure_indexes(database: Database) -> None:
    """Create the uniqueness constraints the API relies on."""
    database["user"].create_index("username", unique=True)
    database["user"].create_index(
        "email", unique=True, partialFilterExpression={"email": {"$type": "string"}}
    )
    # one pending request per unordered pair
    database["friendrequest"].create_index(
        "pair", unique=True, partialFilterExpression={"status": "pending"}
    )
    database["friendrequest"].create_index([("to_user", ASCENDING), ("status", ASCENDING)])
    database["friendrequest"].create_index([("from_user", ASCENDING), ("status", ASCENDING)])
    database["calendar"].create_index("owner")
    database["calendar"].create_index("shared_with.user")
    database["event"].create_index([("calendar", ASCENDING), ("date", ASCENDING)])
    database["event"].create_index("shared_with")
    database["event"].create_index([("owner", ASCENDING), ("date", ASCENDING)])
    logger.info("MongoDB indexes ensured on %s", database.name)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database: Database, collection_name: str, data: dict) -> ObjectId:
    """Insert a document stamped with created_at/updated_at and return its id."""
    doc = dict(data)
    ts = now_utc()
    doc.setdefault("created_at", ts)
    doc["updated_at"] = ts
    return database[collection_name].insert_one(doc).inserted_id


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id, returning None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize(value: Any) -> Any:
    """Make a stored document JSON friendly: ObjectIds become strings, _id becomes id."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k == "_id":
                out["id"] = str(v)
            elif k == "password":
                continue
            else:
                out[k] = serialize(v)
        return out
    return value
