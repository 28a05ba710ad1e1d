"""
Utility functions for recurring events.

Events store a rule ``{frequency, interval, until}`` rather than materialised
instances; these helpers expand it into concrete dates on demand.
"""
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from dateutil.rrule import DAILY, MONTHLY, WEEKLY, rrule

FREQUENCIES = {"daily": DAILY, "weekly": WEEKLY, "monthly": MONTHLY}
DEFAULT_HORIZON_DAYS = 365
MAX_INSTANCES = 366


def _as_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def expand_occurrences(
    event: Dict[str, Any],
    start_date: date,
    end_date: date,
    max_instances: int = MAX_INSTANCES,
) -> List[date]:
    """
    Dates on which the event occurs within ``[start_date, end_date]``.

    A monthly rule only produces months that contain the start day, so an
    event on the 31st skips shorter months.
    """
    event_date = _as_date(event["date"])
    rule = event.get("recurrence")
    if not rule or not rule.get("frequency"):
        return [event_date] if start_date <= event_date <= end_date else []

    until = _as_date(rule.get("until"))
    last = min(until, end_date) if until else end_date
    if last < event_date or last < start_date:
        return []

    dates = rrule(
        FREQUENCIES[rule["frequency"]],
        dtstart=datetime.combine(event_date, datetime.min.time()),
        interval=max(int(rule.get("interval") or 1), 1),
        until=datetime.combine(last, datetime.min.time()),
    )
    occurrences = []
    for dt in dates:
        if dt.date() < start_date:
            continue
        occurrences.append(dt.date())
        if len(occurrences) >= max_instances:
            break
    return occurrences


def upcoming_occurrences(
    event: Dict[str, Any],
    today: date,
    end_date: Optional[date] = None,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> List[date]:
    """Occurrences from today through the rule's end, or a fixed horizon when open-ended."""
    if end_date is None:
        rule = event.get("recurrence") or {}
        end_date = _as_date(rule.get("until")) or today + timedelta(days=horizon_days)
    return expand_occurrences(event, today, end_date)


def occurs_between(event: Dict[str, Any], start_date: date, end_date: date) -> bool:
    return bool(expand_occurrences(event, start_date, end_date, max_instances=1))
