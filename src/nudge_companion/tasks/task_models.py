# src/nudge_companion/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..errors import ValidationError


class Annoyance(StrEnum):
    """Urgency tier; controls the default re-ping cadence."""

    LOW = "low"
    MED = "med"
    HIGH = "high"

    @classmethod
    def from_db(cls, raw: str | None) -> Annoyance:
        if not raw:
            return cls.LOW
        try:
            return cls(raw)
        except ValueError:
            return cls.LOW


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Notes:
    - completed and failed are terminal.
    - needs_replanning means ping_at has arrived on an actionable task and the agent
      must either reschedule or fail it.
    """

    PENDING = "pending"
    NEEDS_REPLANNING = "needs_replanning"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    # pending -> pending is a reschedule.
    TaskStatus.PENDING: frozenset(
        {
            TaskStatus.PENDING,
            TaskStatus.NEEDS_REPLANNING,
            TaskStatus.COMPLETED,
            TaskStatus.FAILED,
        }
    ),
    TaskStatus.NEEDS_REPLANNING: frozenset(
        {TaskStatus.PENDING, TaskStatus.COMPLETED, TaskStatus.FAILED}
    ),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


def check_transition(current: TaskStatus, target: TaskStatus) -> None:
    """Raise ValidationError if current -> target is not a legal move."""
    if target not in _TRANSITIONS[current]:
        raise ValidationError(
            "status",
            f"cannot move task from {current.value} to {target.value}",
        )


@dataclass(slots=True)
class RoutineStats:
    completed: int = 0
    failed: int = 0


@dataclass(slots=True)
class Routine:
    id: str
    user_id: str
    name: str
    cron: str
    default_annoyance: Annoyance
    requires_action: bool
    is_active: bool
    created_at: float
    stats: RoutineStats = field(default_factory=RoutineStats)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "cron": self.cron,
            "default_annoyance": self.default_annoyance.value,
            "requires_action": self.requires_action,
            "is_active": self.is_active,
            "stats": {"completed": self.stats.completed, "failed": self.stats.failed},
        }


@dataclass(slots=True)
class Task:
    id: str
    user_id: str
    name: str
    status: TaskStatus
    annoyance: Annoyance
    requires_action: bool
    ping_at: float
    created_at: float
    updated_at: float

    routine_id: str | None = None
    due_at: float | None = None
    postpone_count: int = 0


@dataclass(slots=True)
class UserProfile:
    user_id: str
    created_at: float
    goal: str | None = None
    timezone: str | None = None
    # Schema-less on purpose: the agent picks its own keys.
    memory: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class HistoryMessage:
    id: int
    role: str
    content: str
    created_at: float
