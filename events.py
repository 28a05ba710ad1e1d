"""
Event scheduling: create, update, delete and the event queries.

Input shape is validated by the request schemas; this module enforces the
rules that need the database, such as calendar permissions and sharing only
with friends. Both checks happen before anything is written.
"""
import logging
from datetime import date
from typing import List, Optional

from pymongo.database import Database

from calendars import can_edit, can_view, get_calendar
from database import create_document, now_utc, serialize, to_object_id
from errors import Forbidden, NotFound, ValidationError
from recurrence import upcoming_occurrences
from schemas import Event as EventSchema, EventCreate, EventUpdate
from users import get_user_by_id, summaries_by_id

logger = logging.getLogger(__name__)


def get_event(db: Database, event_id) -> dict:
    oid = to_object_id(event_id)
    event = db["event"].find_one({"_id": oid}) if oid else None
    if event is None:
        raise NotFound("Event not found")
    return event


def _share_targets(db: Database, owner_id, shared_with: List[str]) -> list:
    """Validate that every id is a current friend of the owner, returning ObjectIds."""
    owner = get_user_by_id(db, owner_id)
    friends = set(owner.get("friends") or []) if owner else set()
    targets = []
    invalid = []
    for raw in shared_with:
        oid = to_object_id(raw)
        if oid is None or oid not in friends:
            invalid.append(raw)
        elif oid not in targets:
            targets.append(oid)
    if invalid:
        raise ValidationError(
            "Can only share events with friends",
            [{"field": "shared_with", "message": f"Not a friend: {i}"} for i in invalid],
        )
    return targets


def _check_can_modify(db: Database, event: dict, user: dict) -> None:
    if event["owner"] == user["_id"]:
        return
    if event.get("calendar"):
        cal = db["calendar"].find_one({"_id": event["calendar"]})
        if cal and can_edit(cal, user["_id"]):
            return
    raise Forbidden("No edit permission for this event")


def create_event(db: Database, user: dict, body: EventCreate) -> dict:
    calendar_oid = None
    if body.calendar_id:
        cal = get_calendar(db, body.calendar_id)
        if not can_edit(cal, user["_id"]):
            raise Forbidden("No edit permission for this calendar")
        calendar_oid = cal["_id"]

    shared_with = _share_targets(db, user["_id"], body.shared_with) if body.shared_with else []

    doc = EventSchema(
        title=body.title,
        date=body.date,
        time=body.time,
        end_time=body.end_time,
        is_all_day=body.is_all_day,
        details=body.details or "",
        location=body.location or "",
        color=body.color,
        recurrence=body.recurrence,
        owner=user["_id"],
        calendar=calendar_oid,
        shared_with=shared_with,
    ).model_dump()
    inserted_id = create_document(db, "event", doc)
    if calendar_oid:
        db["calendar"].update_one({"_id": calendar_oid}, {"$push": {"events": inserted_id}})
    logger.info("User %s created event %s", user["_id"], inserted_id)
    return serialize(db["event"].find_one({"_id": inserted_id}))


def update_event(db: Database, event_id: str, user: dict, body: EventUpdate) -> dict:
    event = get_event(db, event_id)
    _check_can_modify(db, event, user)

    update = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    if "shared_with" in update:
        update["shared_with"] = _share_targets(db, event["owner"], update["shared_with"])

    new_date = update.get("date", event["date"])
    recurrence = update["recurrence"] if "recurrence" in update else event.get("recurrence")
    if recurrence and recurrence.get("until") and recurrence["until"] < new_date:
        raise ValidationError(
            "Recurrence end date must not be before the event date",
            [{"field": "recurrence.until", "message": "before event date"}],
        )

    if update:
        update["updated_at"] = now_utc()
        db["event"].update_one({"_id": event["_id"]}, {"$set": update})
    return serialize(db["event"].find_one({"_id": event["_id"]}))


def delete_event(db: Database, event_id: str, user: dict) -> None:
    event = get_event(db, event_id)
    _check_can_modify(db, event, user)
    db["event"].delete_one({"_id": event["_id"]})
    if event.get("calendar"):
        db["calendar"].update_one({"_id": event["calendar"]}, {"$pull": {"events": event["_id"]}})
    logger.info("Event %s deleted by %s", event["_id"], user["_id"])


def list_my_events(db: Database, user: dict) -> List[dict]:
    return [serialize(e) for e in db["event"].find({"owner": user["_id"]}).sort("date", 1)]


def list_shared_with_me(db: Database, user: dict) -> List[dict]:
    events = list(db["event"].find({"shared_with": user["_id"]}).sort("date", 1))
    owners = summaries_by_id(db, {e["owner"] for e in events})
    out = []
    for e in events:
        item = serialize(e)
        owner = owners.get(e["owner"]) or {}
        item["owner_username"] = owner.get("username")
        item["owner_display_name"] = owner.get("display_name")
        out.append(item)
    return out


def list_calendar_events(db: Database, calendar_id: str, user: dict) -> List[dict]:
    cal = get_calendar(db, calendar_id)
    if not can_view(cal, user["_id"]):
        raise Forbidden("No access to this calendar")
    return [serialize(e) for e in db["event"].find({"calendar": cal["_id"]}).sort("date", 1)]


def _can_see(db: Database, event: dict, user_id) -> bool:
    if event["owner"] == user_id or user_id in (event.get("shared_with") or []):
        return True
    if event.get("calendar"):
        cal = db["calendar"].find_one({"_id": event["calendar"]})
        return bool(cal) and can_view(cal, user_id)
    return False


def event_occurrences(
    db: Database,
    event_id: str,
    user: dict,
    today: date,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> dict:
    event = get_event(db, event_id)
    if not _can_see(db, event, user["_id"]):
        raise Forbidden("No access to this event")
    if start and end and end < start:
        raise ValidationError("end must not be before start")
    dates = upcoming_occurrences(event, start or today, end)
    return {"event_id": str(event["_id"]), "occurrences": [d.isoformat() for d in dates]}
