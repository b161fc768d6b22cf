# src/nudge_companion/tasks/recurrence.py

"""
Cron helpers for routines.

Firing detection is window-based: a routine fires on a tick if its most recent
theoretical occurrence (<= now) falls inside (now - window, now]. Nothing is
persisted, so an occurrence that falls into a missed tick is skipped, not backfilled.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import CroniterBadDateError, croniter

_DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def is_valid_cron(expr: str) -> bool:
    if not expr or not expr.strip():
        return False
    # Five-field cron only; croniter also accepts seconds/years which we don't expose.
    if len(expr.split()) != 5:
        return False
    if not croniter.is_valid(expr):
        return False
    # is_valid() checks syntax only; "0 0 31 2 *" parses but never fires.
    try:
        it = croniter(expr, datetime.now(UTC))
        it.get_next(datetime)
        it.get_prev(datetime)
    except CroniterBadDateError:
        return False
    return True


def resolve_timezone(name: str | None, default: str = "UTC") -> tzinfo:
    for candidate in (name, default):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            continue
    return ZoneInfo("UTC")


def last_occurrence(expr: str, now: datetime) -> datetime:
    """
    Most recent occurrence of expr that is <= now.

    croniter.get_prev() is strictly-before, so we step one second past now.
    Raises ValueError (from croniter) for malformed expressions.
    """
    it = croniter(expr, now + timedelta(seconds=1))
    return it.get_prev(datetime)


def fires_in_window(expr: str, now: datetime, window: timedelta) -> datetime | None:
    """Return the firing instant if it lies in (now - window, now], else None."""
    last = last_occurrence(expr, now)
    if now - window < last <= now:
        return last
    return None


def next_occurrence(expr: str, now: datetime) -> datetime:
    return croniter(expr, now).get_next(datetime)


def describe_cron(expr: str) -> str:
    """Short human-readable description for the common daily/weekly shapes."""
    parts = expr.split()
    if len(parts) != 5:
        return expr

    minute, hour, day, month, dow = parts
    if not (minute.isdigit() and hour.isdigit()):
        return expr

    at = f"{int(hour):02d}:{int(minute):02d}"

    if day == "*" and month == "*" and dow == "*":
        return f"daily at {at}"

    if day == "*" and month == "*":
        if dow == "1-5":
            return f"workdays at {at}"
        if "," in dow and all(d.isdigit() for d in dow.split(",")):
            names = ", ".join(_DAY_NAMES[int(d) % 7] for d in dow.split(","))
            return f"{names} at {at}"
        if dow.isdigit():
            return f"every {_DAY_NAMES[int(dow) % 7]} at {at}"

    return expr
