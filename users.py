"""
Identity store: user lookups, public summaries, profile updates and the
friend list.
"""
import logging
import re
from typing import Iterable, List, Optional

from passlib.context import CryptContext
from pymongo.database import Database

from config import BCRYPT_ROUNDS
from database import now_utc, to_object_id
from errors import Conflict, NotFound
from schemas import AccountBody, ProfileBody

logger = logging.getLogger(__name__)

SUMMARY_FIELDS = {"username": 1, "display_name": 1, "profile_image": 1}
SEARCH_LIMIT = 10

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_user_by_id(db: Database, user_id) -> Optional[dict]:
    oid = to_object_id(user_id)
    if oid is None:
        return None
    return db["user"].find_one({"_id": oid})


def get_user_by_username(db: Database, username: str) -> Optional[dict]:
    return db["user"].find_one({"username": username})


def user_to_public(u: dict) -> dict:
    if not u:
        return u
    return {
        "id": str(u["_id"]),
        "username": u.get("username"),
        "email": u.get("email"),
        "display_name": u.get("display_name"),
        "bio": u.get("bio"),
        "profile_image": u.get("profile_image"),
    }


def user_summary(u: dict) -> dict:
    return {
        "id": str(u["_id"]),
        "username": u.get("username"),
        "display_name": u.get("display_name"),
        "profile_image": u.get("profile_image"),
    }


def summaries_by_id(db: Database, ids: Iterable) -> dict:
    """Resolve many user ids in one query, keyed by ObjectId."""
    oids = [oid for oid in (to_object_id(i) for i in ids) if oid is not None]
    if not oids:
        return {}
    return {u["_id"]: user_summary(u) for u in db["user"].find({"_id": {"$in": oids}}, SUMMARY_FIELDS)}


def are_friends(user: dict, other_id) -> bool:
    oid = to_object_id(other_id)
    return oid is not None and oid in (user.get("friends") or [])


def search_users(db: Database, current: dict, q: str) -> List[dict]:
    q = (q or "").strip()
    if not q:
        return []
    pattern = {"$regex": re.escape(q), "$options": "i"}
    users = db["user"].find(
        {"$or": [{"username": pattern}, {"display_name": pattern}], "_id": {"$ne": current["_id"]}},
        SUMMARY_FIELDS,
    ).limit(SEARCH_LIMIT)
    return [user_summary(u) for u in users]


def update_profile(db: Database, current: dict, body: ProfileBody) -> dict:
    update = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    if update:
        update["updated_at"] = now_utc()
        db["user"].update_one({"_id": current["_id"]}, {"$set": update})
    return user_to_public(get_user_by_id(db, current["_id"]))


def update_account(db: Database, current: dict, body: AccountBody) -> dict:
    update = {}
    if body.email:
        email = str(body.email).strip().lower()
        if db["user"].find_one({"email": email, "_id": {"$ne": current["_id"]}}):
            raise Conflict("Email already registered")
        update["email"] = email
    if body.password:
        update["password"] = hash_password(body.password)
    if update:
        update["updated_at"] = now_utc()
        db["user"].update_one({"_id": current["_id"]}, {"$set": update})
    return user_to_public(get_user_by_id(db, current["_id"]))


def list_friends(db: Database, current: dict) -> List[dict]:
    friend_ids = current.get("friends") or []
    resolved = summaries_by_id(db, friend_ids)
    return [resolved[f] for f in friend_ids if f in resolved]


def remove_friend(db: Database, current: dict, friend_id: str) -> None:
    if not are_friends(current, friend_id):
        raise NotFound("Friend not found")
    oid = to_object_id(friend_id)
    db["user"].update_one({"_id": current["_id"]}, {"$pull": {"friends": oid}})
    db["user"].update_one({"_id": oid}, {"$pull": {"friends": current["_id"]}})
    logger.info("User %s removed friend %s", current["_id"], oid)
