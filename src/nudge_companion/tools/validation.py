# src/nudge_companion/tools/validation.py

"""
Argument parsing helpers shared by all tool argument structs.

Every helper either returns a clean value or raises ValidationError naming the
offending field. Nothing is coerced silently: "3" is not a bool, "urgent" is not an
annoyance level.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, tzinfo
from typing import Any

from ..errors import ValidationError
from ..tasks.task_models import Annoyance, Routine, Task, TaskStatus

_MISSING = object()


def require_str(raw: Mapping[str, Any], field: str) -> str:
    value = raw.get(field, _MISSING)
    if value is _MISSING or value is None:
        raise ValidationError(field, "is required")
    if not isinstance(value, str):
        raise ValidationError(field, "must be a string")
    value = value.strip()
    if not value:
        raise ValidationError(field, "must not be empty")
    return value


def optional_str(raw: Mapping[str, Any], field: str) -> str | None:
    if raw.get(field) is None:
        return None
    return require_str(raw, field)


def optional_bool(raw: Mapping[str, Any], field: str) -> bool | None:
    value = raw.get(field)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValidationError(field, "must be a boolean")
    return value


def optional_annoyance(raw: Mapping[str, Any], field: str = "annoyance") -> Annoyance | None:
    value = raw.get(field)
    if value is None:
        return None
    try:
        return Annoyance(value)
    except ValueError:
        allowed = ", ".join(a.value for a in Annoyance)
        raise ValidationError(field, f"must be one of: {allowed}") from None


def optional_status(raw: Mapping[str, Any], field: str = "status") -> TaskStatus | None:
    value = raw.get(field)
    if value is None:
        return None
    try:
        return TaskStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in TaskStatus)
        raise ValidationError(field, f"must be one of: {allowed}") from None


def require_str_list(raw: Mapping[str, Any], field: str) -> list[str]:
    value = raw.get(field)
    if value is None:
        raise ValidationError(field, "is required")
    if not isinstance(value, list) or not value:
        raise ValidationError(field, "must be a non-empty list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ValidationError(field, "must be a non-empty list of strings")
        out.append(item.strip())
    return out


def parse_datetime(value: Any, field: str, tz: tzinfo) -> float:
    """
    ISO-8601 string -> UNIX timestamp.

    Naive values are interpreted in the user's timezone.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "must be an ISO-8601 date-time string")
    try:
        dt = datetime.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError(field, f"invalid ISO-8601 date-time: {value!r}") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.timestamp()


def optional_datetime(raw: Mapping[str, Any], field: str, tz: tzinfo) -> float | None:
    value = raw.get(field)
    if value is None:
        return None
    return parse_datetime(value, field, tz)


def format_ts(ts: float | None, tz: tzinfo) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=tz).replace(microsecond=0).isoformat()


def task_payload(task: Task, tz: tzinfo) -> dict[str, Any]:
    return {
        "id": task.id,
        "name": task.name,
        "status": task.status.value,
        "annoyance": task.annoyance.value,
        "requires_action": task.requires_action,
        "ping_at": format_ts(task.ping_at, tz),
        "due_at": format_ts(task.due_at, tz),
        "routine_id": task.routine_id,
        "postpone_count": task.postpone_count,
    }


def routine_payload(routine: Routine) -> dict[str, Any]:
    return routine.to_payload()
