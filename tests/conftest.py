"""
Shared fixtures: an in-memory MongoDB (mongomock), helpers to seed users and
calendars directly, and a TestClient wired to that database.
"""
import os

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("DATABASE_NAME", None)

from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from database import create_document, get_db
from main import app
from schemas import Calendar as CalendarSchema, User as UserSchema
from users import get_user_by_id, hash_password

# Wednesday of the ISO week starting Monday 2026-10-19
NOW = datetime(2026, 10, 21, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def db():
    return mongomock.MongoClient()["calendar_test"]


def make_user(db, username, password="secret123", **fields):
    """Insert a user document and return it as stored."""
    doc = UserSchema(username=username, password=hash_password(password)).model_dump()
    doc.update(fields)
    return get_user_by_id(db, create_document(db, "user", doc))


def befriend(db, *people):
    """Make every given user a friend of every other one."""
    for a in people:
        for b in people:
            if a["_id"] != b["_id"]:
                db["user"].update_one({"_id": a["_id"]}, {"$addToSet": {"friends": b["_id"]}})


def reload(db, user):
    return get_user_by_id(db, user["_id"])


def make_calendar(db, owner, name="Work", shared_with=None):
    doc = CalendarSchema(name=name, owner=owner["_id"]).model_dump()
    doc["shared_with"] = shared_with or []
    cal_id = create_document(db, "calendar", doc)
    db["user"].update_one({"_id": owner["_id"]}, {"$push": {"calendars": cal_id}})
    return db["calendar"].find_one({"_id": cal_id})


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user['_id'])})}"}


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()
