"""
Gamification scorer: completing events earns points, consecutive days build
a streak, and weekly totals roll over every Monday (ISO week, UTC dates).

Anyone who can see an event's calendar may complete it, but only the owner
may undo a completion.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from pymongo.database import Database

from calendars import get_calendar
from config import COMPLETION_GRACE_DAYS, POINTS_PER_TASK
from database import now_utc
from errors import Forbidden, NotComplete
from events import get_event
from recurrence import occurs_between
from users import get_user_by_id

logger = logging.getLogger(__name__)

EligibilityRule = Callable[[dict, date], bool]


def get_start_of_week(day: date) -> date:
    return day - timedelta(days=day.weekday())


def default_eligibility(event: dict, today: date, grace_days: int = COMPLETION_GRACE_DAYS) -> bool:
    """An event earns points when it occurs today or within the grace window before today."""
    return occurs_between(event, today - timedelta(days=grace_days), today)


def check_weekly_reset(points: dict, today: date) -> bool:
    """Zero the weekly total when it belongs to an earlier week. Mutates ``points``."""
    week_start = get_start_of_week(today).isoformat()
    if not points.get("week_start_date") or points["week_start_date"] < week_start:
        points["weekly_total"] = 0
        points["week_start_date"] = week_start
        return True
    return False


def update_streak(streak: dict, today: date) -> None:
    last = streak.get("last_completion_date")
    if last == today.isoformat():
        return
    if last == (today - timedelta(days=1)).isoformat():
        streak["current"] = streak.get("current", 0) + 1
    else:
        streak["current"] = 1
    streak["last_completion_date"] = today.isoformat()


def _bump_daily_count(daily: dict, today: date) -> None:
    if daily.get("date") != today.isoformat():
        daily["date"] = today.isoformat()
        daily["count"] = 0
    daily["count"] = daily.get("count", 0) + 1


def _state(user: dict) -> tuple:
    points = dict(user.get("points") or {})
    points.setdefault("weekly_total", 0)
    points.setdefault("lifetime_total", 0)
    streak = dict(user.get("streak") or {})
    streak.setdefault("current", 0)
    daily = dict(user.get("daily_tasks_completed") or {})
    daily.setdefault("count", 0)
    return points, streak, daily


def _user_stats(points: dict, streak: dict, daily: dict) -> dict:
    return {
        "weekly_points": points.get("weekly_total", 0),
        "lifetime_points": points.get("lifetime_total", 0),
        "current_streak": streak.get("current", 0),
        "daily_tasks_completed": daily.get("count", 0),
        "week_start_date": points.get("week_start_date"),
    }


def _resolve_access(db: Database, event: dict) -> tuple:
    """Owner id and the set of user ids the event is shared with."""
    shared = set(event.get("shared_with") or [])
    if event.get("calendar"):
        cal = get_calendar(db, event["calendar"])
        shared.update(e["user"] for e in cal.get("shared_with") or [])
        return cal["owner"], shared
    return event["owner"], shared


def complete(
    db: Database,
    event_id: str,
    actor: dict,
    now: Optional[datetime] = None,
    rule: EligibilityRule = default_eligibility,
) -> dict:
    event = get_event(db, event_id)
    owner_id, shared = _resolve_access(db, event)
    if actor["_id"] != owner_id and actor["_id"] not in shared:
        raise Forbidden("No access to this event")

    user = get_user_by_id(db, actor["_id"]) or actor
    points, streak, daily = _state(user)

    if event.get("completed"):
        return {
            "message": "Event already completed",
            "points_awarded": 0,
            "is_eligible": False,
            "user_stats": _user_stats(points, streak, daily),
        }

    now = now or now_utc()
    today = now.date()
    is_eligible = rule(event, today)
    points_awarded = 0

    if is_eligible:
        points_awarded = POINTS_PER_TASK
        check_weekly_reset(points, today)
        points["weekly_total"] += points_awarded
        points["lifetime_total"] += points_awarded
        _bump_daily_count(daily, today)
        update_streak(streak, today)
        db["user"].update_one(
            {"_id": user["_id"]},
            {"$set": {"points": points, "streak": streak, "daily_tasks_completed": daily, "updated_at": now}},
        )

    db["event"].update_one(
        {"_id": event["_id"]},
        {
            "$set": {
                "completed": True,
                "completed_at": now,
                "completed_by": actor["_id"],
                "points_awarded": points_awarded,
                "updated_at": now,
            }
        },
    )
    logger.info("Event %s completed by %s (+%d)", event["_id"], actor["_id"], points_awarded)
    return {
        "message": "Event completed successfully",
        "points_awarded": points_awarded,
        "is_eligible": is_eligible,
        "user_stats": _user_stats(points, streak, daily),
    }


def uncomplete(db: Database, event_id: str, actor: dict, now: Optional[datetime] = None) -> dict:
    event = get_event(db, event_id)
    owner_id, _ = _resolve_access(db, event)
    if actor["_id"] != owner_id:
        raise Forbidden("Only calendar owner can uncomplete events")
    if not event.get("completed"):
        raise NotComplete()

    now = now or now_utc()
    awarded = event.get("points_awarded") or 0
    # points go back to whoever earned them, which may be a shared user
    earner_id = event.get("completed_by") or actor["_id"]
    if awarded > 0:
        earner = get_user_by_id(db, earner_id)
        if earner is not None:
            points, _, _ = _state(earner)
            check_weekly_reset(points, now.date())
            points["weekly_total"] = max(0, points["weekly_total"] - awarded)
            points["lifetime_total"] = max(0, points["lifetime_total"] - awarded)
            db["user"].update_one({"_id": earner_id}, {"$set": {"points": points, "updated_at": now}})

    db["event"].update_one(
        {"_id": event["_id"]},
        {
            "$set": {
                "completed": False,
                "completed_at": None,
                "completed_by": None,
                "points_awarded": 0,
                "updated_at": now,
            }
        },
    )
    logger.info("Event %s uncompleted by %s (-%d)", event["_id"], actor["_id"], awarded)
    user = get_user_by_id(db, actor["_id"]) or actor
    return {"message": "Event uncompleted successfully", "user_stats": _user_stats(*_state(user))}


def stats(db: Database, user: dict, today: Optional[date] = None) -> dict:
    today = today or now_utc().date()
    user = get_user_by_id(db, user["_id"]) or user
    points, streak, daily = _state(user)
    if check_weekly_reset(points, today):
        db["user"].update_one({"_id": user["_id"]}, {"$set": {"points": points}})
    if daily.get("date") != today.isoformat():
        daily["count"] = 0
    return _user_stats(points, streak, daily)


def leaderboard(db: Database, user: dict, today: Optional[date] = None) -> List[dict]:
    """Weekly ranking of the user and their friends. Stale weeks count as zero."""
    today = today or now_utc().date()
    user = get_user_by_id(db, user["_id"]) or user
    friend_ids = list(user.get("friends") or [])
    if not friend_ids:
        return []

    member_ids = [user["_id"]] + [f for f in friend_ids if f != user["_id"]]
    docs = {
        u["_id"]: u
        for u in db["user"].find(
            {"_id": {"$in": member_ids}},
            {"username": 1, "display_name": 1, "profile_image": 1, "points": 1},
        )
    }

    board = []
    for member_id in member_ids:
        member = docs.get(member_id)
        if member is None:
            continue
        points, _, _ = _state(member)
        check_weekly_reset(points, today)
        board.append(
            {
                "user_id": str(member_id),
                "username": member.get("username"),
                "display_name": member.get("display_name"),
                "profile_image": member.get("profile_image"),
                "weekly_points": points["weekly_total"],
                "is_current_user": member_id == user["_id"],
            }
        )

    board.sort(key=lambda x: x["weekly_points"], reverse=True)
    for index, entry in enumerate(board):
        entry["rank"] = index + 1
    return board
