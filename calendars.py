"""
Calendar CRUD and the sharing engine.

A calendar has one owner and an access-control list ``shared_with`` of
``{user, permission}`` entries, one per user, only ever granted to the
owner's friends. The owner never appears in the list.
"""
import logging
from typing import List, Optional

from pymongo.database import Database

from database import create_document, now_utc, serialize, to_object_id
from errors import Forbidden, NotFound
from schemas import Calendar as CalendarSchema, CalendarCreate, CalendarUpdate
from users import are_friends, get_user_by_id, summaries_by_id

logger = logging.getLogger(__name__)

VIEW = "view"
EDIT = "edit"


def get_calendar(db: Database, calendar_id) -> dict:
    oid = to_object_id(calendar_id)
    cal = db["calendar"].find_one({"_id": oid}) if oid else None
    if cal is None:
        raise NotFound("Calendar not found")
    return cal


def get_owned_calendar(db: Database, calendar_id, owner: dict) -> dict:
    cal = get_calendar(db, calendar_id)
    if cal["owner"] != owner["_id"]:
        raise Forbidden("Not the calendar owner")
    return cal


def shared_entry(cal: dict, user_id) -> Optional[dict]:
    for entry in cal.get("shared_with") or []:
        if entry["user"] == user_id:
            return entry
    return None


def can_view(cal: dict, user_id) -> bool:
    return cal["owner"] == user_id or shared_entry(cal, user_id) is not None


def can_edit(cal: dict, user_id) -> bool:
    if cal["owner"] == user_id:
        return True
    entry = shared_entry(cal, user_id)
    return entry is not None and entry.get("permission") == EDIT


def _with_people(db: Database, cals: List[dict], include_owner: bool) -> List[dict]:
    ids = set()
    for c in cals:
        ids.update(e["user"] for e in c.get("shared_with") or [])
        if include_owner:
            ids.add(c["owner"])
    people = summaries_by_id(db, ids)

    out = []
    for c in cals:
        item = serialize(c)
        item["shared_with"] = [
            {"user": people.get(e["user"]), "permission": e.get("permission", VIEW)}
            for e in c.get("shared_with") or []
            if e["user"] in people
        ]
        if include_owner:
            item["owner"] = people.get(c["owner"])
        out.append(item)
    return out


def list_calendars(db: Database, user: dict) -> dict:
    """Calendars the user owns and calendars shared with them, without event lists."""
    owned = list(db["calendar"].find({"owner": user["_id"]}, {"events": 0}))
    shared = list(db["calendar"].find({"shared_with.user": user["_id"]}, {"events": 0}))
    return {
        "owned": _with_people(db, owned, include_owner=False),
        "shared": _with_people(db, shared, include_owner=True),
    }


def create_calendar(db: Database, owner: dict, body: CalendarCreate) -> dict:
    doc = CalendarSchema(
        name=body.name,
        color=body.color,
        description=body.description,
        owner=owner["_id"],
    ).model_dump()
    inserted_id = create_document(db, "calendar", doc)
    db["user"].update_one({"_id": owner["_id"]}, {"$push": {"calendars": inserted_id}})
    logger.info("User %s created calendar %s", owner["_id"], inserted_id)
    return serialize(db["calendar"].find_one({"_id": inserted_id}))


def update_calendar(db: Database, calendar_id: str, owner: dict, body: CalendarUpdate) -> dict:
    cal = get_owned_calendar(db, calendar_id, owner)
    update = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    if update:
        update["updated_at"] = now_utc()
        db["calendar"].update_one({"_id": cal["_id"]}, {"$set": update})
    return serialize(db["calendar"].find_one({"_id": cal["_id"]}))


def delete_calendar(db: Database, calendar_id: str, owner: dict) -> int:
    """Delete a calendar and every event that belongs to it. Returns the event count removed."""
    cal = get_owned_calendar(db, calendar_id, owner)
    db["user"].update_one({"_id": owner["_id"]}, {"$pull": {"calendars": cal["_id"]}})
    removed = db["event"].delete_many({"calendar": cal["_id"]}).deleted_count
    db["calendar"].delete_one({"_id": cal["_id"]})
    logger.info("Calendar %s deleted with %d events", cal["_id"], removed)
    return removed


def share(db: Database, calendar_id: str, owner: dict, friend_ids: List[str], permission: str = VIEW) -> dict:
    """
    Share a calendar with several friends at once.

    Each id is classified independently into ``shared``, ``already_shared``,
    ``not_friends`` or ``not_found``; one bad id never aborts the batch and
    only the ``shared`` ones are written.
    """
    cal = get_owned_calendar(db, calendar_id, owner)
    # re-read so the friend list is current
    me = get_user_by_id(db, owner["_id"]) or owner

    results = {"shared": [], "already_shared": [], "not_friends": [], "not_found": []}
    existing = {e["user"] for e in cal.get("shared_with") or []}
    additions = []

    for friend_id in friend_ids:
        friend = get_user_by_id(db, friend_id)
        if friend is None:
            results["not_found"].append(friend_id)
            continue
        if not are_friends(me, friend["_id"]):
            results["not_friends"].append(friend_id)
            continue
        if friend["_id"] in existing:
            results["already_shared"].append(friend_id)
            continue
        existing.add(friend["_id"])
        additions.append({"user": friend["_id"], "permission": permission})
        results["shared"].append(friend_id)

    if additions:
        db["calendar"].update_one(
            {"_id": cal["_id"]},
            {"$push": {"shared_with": {"$each": additions}}, "$set": {"updated_at": now_utc()}},
        )
        logger.info("Calendar %s shared with %d users (%s)", cal["_id"], len(additions), permission)
    return results


def unshare(db: Database, calendar_id: str, owner: dict, user_id: str) -> None:
    cal = get_owned_calendar(db, calendar_id, owner)
    oid = to_object_id(user_id)
    if oid is None or shared_entry(cal, oid) is None:
        raise NotFound("User not found in shared list")
    db["calendar"].update_one(
        {"_id": cal["_id"]},
        {"$pull": {"shared_with": {"user": oid}}, "$set": {"updated_at": now_utc()}},
    )
    logger.info("Calendar %s unshared from %s", cal["_id"], oid)


def list_sharing(db: Database, calendar_id: str, owner: dict) -> dict:
    cal = get_owned_calendar(db, calendar_id, owner)
    resolved = _with_people(db, [cal], include_owner=False)[0]
    return {"calendar_name": cal["name"], "shared_with": resolved["shared_with"]}
