# src/nudge_companion/tools/task_tools.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..errors import NotFoundError, ValidationError
from ..tasks.cadence import next_ping_at
from ..tasks.task_models import Annoyance, Task, TaskStatus, check_transition
from .registry import ToolContext, ToolName, ToolSpec
from .validation import (
    optional_annoyance,
    optional_bool,
    optional_datetime,
    optional_status,
    optional_str,
    parse_datetime,
    require_str,
    require_str_list,
    task_payload,
)

logger = logging.getLogger(__name__)

_ANNOYANCE_SCHEMA = {
    "type": "string",
    "enum": [a.value for a in Annoyance],
    "description": "How pushy reminders should be: low (every 2-3h), med (30-60 min), high (1-5 min).",
}
_STATUS_SCHEMA = {"type": "string", "enum": [s.value for s in TaskStatus]}
_DATETIME = {"type": "string", "format": "date-time"}
_TASK_ID = {"type": "string", "description": "The ID of the task."}


def _load_task(ctx: ToolContext, task_id: str) -> Task:
    task = ctx.store.get_task(ctx.user_id, task_id)
    if task is None:
        raise NotFoundError("task", task_id)
    return task


def _update(ctx: ToolContext, task_id: str, **fields: Any) -> Task:
    # The row can vanish between load and write.
    updated = ctx.store.update_task(ctx.user_id, task_id, **fields)
    if updated is None:
        raise NotFoundError("task", task_id)
    return updated


def _bump_routine(ctx: ToolContext, task: Task, *, completed: int = 0, failed: int = 0) -> bool:
    # The routine may be gone; tasks only hold a weak back-reference.
    if not task.routine_id:
        return False
    return ctx.store.bump_routine_stats(
        ctx.user_id, task.routine_id, completed=completed, failed=failed
    )


# ---- AddTask ----


@dataclass(slots=True, frozen=True)
class AddTaskArgs:
    name: str
    ping_at: float
    due_at: float | None
    routine_id: str | None
    annoyance: Annoyance
    requires_action: bool

    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> AddTaskArgs:
        name = require_str(raw, "name")
        if raw.get("ping_at") is None:
            raise ValidationError("ping_at", "is required")
        return cls(
            name=name,
            ping_at=parse_datetime(raw["ping_at"], "ping_at", ctx.tz),
            due_at=optional_datetime(raw, "due_at", ctx.tz),
            routine_id=optional_str(raw, "routine_id"),
            annoyance=optional_annoyance(raw) or Annoyance.LOW,
            requires_action=bool(optional_bool(raw, "requires_action")),
        )


async def add_task(args: AddTaskArgs, ctx: ToolContext) -> dict[str, Any]:
    if args.routine_id and ctx.store.get_routine(ctx.user_id, args.routine_id) is None:
        raise NotFoundError("routine", args.routine_id)

    task = ctx.store.add_task(
        ctx.user_id,
        name=args.name,
        ping_at=args.ping_at,
        routine_id=args.routine_id,
        due_at=args.due_at,
        requires_action=args.requires_action,
        annoyance=args.annoyance,
    )
    logger.info("AddTask id=%s user=%s", task.id, ctx.user_id)
    return {"task": task_payload(task, ctx.tz), "message": f'Task "{task.name}" created.'}


# ---- UpdateTask ----


@dataclass(slots=True, frozen=True)
class UpdateTaskArgs:
    task_id: str
    fields: dict[str, Any]

    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> UpdateTaskArgs:
        task_id = require_str(raw, "task_id")
        fields: dict[str, Any] = {}

        if raw.get("name") is not None:
            fields["name"] = require_str(raw, "name")
        annoyance = optional_annoyance(raw)
        if annoyance is not None:
            fields["annoyance"] = annoyance
        requires_action = optional_bool(raw, "requires_action")
        if requires_action is not None:
            fields["requires_action"] = requires_action
        # An explicit null clears the deadline.
        if "due_at" in raw:
            fields["due_at"] = optional_datetime(raw, "due_at", ctx.tz)
        if raw.get("ping_at") is not None:
            fields["ping_at"] = parse_datetime(raw["ping_at"], "ping_at", ctx.tz)

        if not fields:
            raise ValidationError("arguments", "nothing to update")
        return cls(task_id=task_id, fields=fields)


async def update_task(args: UpdateTaskArgs, ctx: ToolContext) -> dict[str, Any]:
    task = _load_task(ctx, args.task_id)
    if task.status.is_terminal:
        raise ValidationError("status", f"task is {task.status.value} and can no longer change")

    fields = dict(args.fields)
    if "ping_at" in fields:
        # A new ping time is a reschedule.
        check_transition(task.status, TaskStatus.PENDING)
        fields["status"] = TaskStatus.PENDING
        fields["postpone_count"] = task.postpone_count + 1

    updated = _update(ctx, task.id, **fields)
    return {"task": task_payload(updated, ctx.tz), "message": f'Task "{updated.name}" updated.'}


# ---- RescheduleTask ----


@dataclass(slots=True, frozen=True)
class RescheduleTaskArgs:
    task_id: str
    ping_at: float | None

    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> RescheduleTaskArgs:
        return cls(
            task_id=require_str(raw, "task_id"),
            ping_at=optional_datetime(raw, "ping_at", ctx.tz),
        )


async def reschedule_task(args: RescheduleTaskArgs, ctx: ToolContext) -> dict[str, Any]:
    task = _load_task(ctx, args.task_id)
    check_transition(task.status, TaskStatus.PENDING)

    if args.ping_at is not None:
        ping_at = args.ping_at
    else:
        ping_at = next_ping_at(
            task.annoyance, now=ctx.now, current_ping_at=task.ping_at, rng=ctx.rng
        )

    updated = _update(
        ctx,
        task.id,
        ping_at=ping_at,
        status=TaskStatus.PENDING,
        postpone_count=task.postpone_count + 1,
    )
    logger.info(
        "RescheduleTask id=%s user=%s explicit=%s postpones=%d",
        task.id,
        ctx.user_id,
        args.ping_at is not None,
        updated.postpone_count,
    )
    return {"task": task_payload(updated, ctx.tz)}


# ---- MarkTaskComplete / MarkTaskFailed ----


@dataclass(slots=True, frozen=True)
class TaskIdArgs:
    task_id: str

    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> TaskIdArgs:
        return cls(task_id=require_str(raw, "task_id"))


async def _finish(ctx: ToolContext, task_id: str, target: TaskStatus) -> dict[str, Any]:
    task = _load_task(ctx, task_id)
    check_transition(task.status, target)

    updated = _update(ctx, task.id, status=target)
    if target is TaskStatus.COMPLETED:
        routine_updated = _bump_routine(ctx, task, completed=1)
    else:
        routine_updated = _bump_routine(ctx, task, failed=1)

    logger.info("Task %s -> %s (user=%s)", task.id, target.value, ctx.user_id)
    return {"task": task_payload(updated, ctx.tz), "routine_updated": routine_updated}


async def mark_task_complete(args: TaskIdArgs, ctx: ToolContext) -> dict[str, Any]:
    return await _finish(ctx, args.task_id, TaskStatus.COMPLETED)


async def mark_task_failed(args: TaskIdArgs, ctx: ToolContext) -> dict[str, Any]:
    return await _finish(ctx, args.task_id, TaskStatus.FAILED)


async def delete_task(args: TaskIdArgs, ctx: ToolContext) -> dict[str, Any]:
    if not ctx.store.delete_task(ctx.user_id, args.task_id):
        raise NotFoundError("task", args.task_id)
    return {"deleted": args.task_id}


async def get_task_by_id(args: TaskIdArgs, ctx: ToolContext) -> dict[str, Any]:
    return {"task": task_payload(_load_task(ctx, args.task_id), ctx.tz)}


# ---- queries ----


@dataclass(slots=True, frozen=True)
class TaskIdListArgs:
    task_ids: list[str]

    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> TaskIdListArgs:
        return cls(task_ids=require_str_list(raw, "task_ids"))


async def get_tasks_by_id_list(args: TaskIdListArgs, ctx: ToolContext) -> dict[str, Any]:
    tasks = ctx.store.list_tasks(ctx.user_id, ids=args.task_ids)
    found = {t.id for t in tasks}
    return {
        "tasks": [task_payload(t, ctx.tz) for t in tasks],
        "missing": [i for i in args.task_ids if i not in found],
    }


@dataclass(slots=True, frozen=True)
class TaskStatusArgs:
    status: TaskStatus

    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> TaskStatusArgs:
        return cls(status=optional_status(raw) or TaskStatus.PENDING)


async def get_tasks_by_status(args: TaskStatusArgs, ctx: ToolContext) -> dict[str, Any]:
    tasks = ctx.store.list_tasks(ctx.user_id, status=args.status)
    return {
        "status": args.status.value,
        "count": len(tasks),
        "tasks": [task_payload(t, ctx.tz) for t in tasks],
    }


@dataclass(slots=True, frozen=True)
class RoutineIdArgs:
    routine_id: str

    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> RoutineIdArgs:
        return cls(routine_id=require_str(raw, "routine_id"))


async def get_tasks_by_routine(args: RoutineIdArgs, ctx: ToolContext) -> dict[str, Any]:
    tasks = ctx.store.list_tasks(ctx.user_id, routine_id=args.routine_id)
    return {
        "routine_id": args.routine_id,
        "count": len(tasks),
        "tasks": [task_payload(t, ctx.tz) for t in tasks],
    }


def _task_id_only() -> dict[str, Any]:
    return {"type": "object", "properties": {"task_id": _TASK_ID}, "required": ["task_id"]}


SPECS: list[ToolSpec] = [
    ToolSpec(
        name=ToolName.ADD_TASK,
        description=(
            "Create a new task. ping_at is when the user should first be reminded. "
            "Naive date-times are in the user's timezone."
        ),
        parameters={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Short title of the task."},
                "ping_at": {**_DATETIME, "description": "When to remind the user (ISO-8601)."},
                "due_at": {**_DATETIME, "description": "Hard deadline (optional)."},
                "routine_id": {"type": "string", "description": "Routine this task belongs to."},
                "annoyance": _ANNOYANCE_SCHEMA,
                "requires_action": {
                    "type": "boolean",
                    "description": "True if the user must confirm doing it; false for plain notices.",
                },
            },
            "required": ["name", "ping_at"],
        },
        args_type=AddTaskArgs,
        executor=add_task,
    ),
    ToolSpec(
        name=ToolName.UPDATE_TASK,
        description=(
            "Update fields of an open task. Setting ping_at reschedules it (status back to pending). "
            "Use MarkTaskComplete / MarkTaskFailed to close a task."
        ),
        parameters={
            "type": "object",
            "properties": {
                "task_id": _TASK_ID,
                "name": {"type": "string"},
                "annoyance": _ANNOYANCE_SCHEMA,
                "due_at": {**_DATETIME, "description": "New deadline; null clears it."},
                "ping_at": {**_DATETIME, "description": "Next reminder time."},
                "requires_action": {"type": "boolean"},
            },
            "required": ["task_id"],
        },
        args_type=UpdateTaskArgs,
        executor=update_task,
    ),
    ToolSpec(
        name=ToolName.RESCHEDULE_TASK,
        description=(
            "Postpone a task. Without ping_at the next reminder is picked from the task's "
            "annoyance level."
        ),
        parameters={
            "type": "object",
            "properties": {
                "task_id": _TASK_ID,
                "ping_at": {**_DATETIME, "description": "Explicit next reminder time (optional)."},
            },
            "required": ["task_id"],
        },
        args_type=RescheduleTaskArgs,
        executor=reschedule_task,
    ),
    ToolSpec(
        name=ToolName.MARK_TASK_COMPLETE,
        description="Mark a task as completed and update its routine stats.",
        parameters=_task_id_only(),
        args_type=TaskIdArgs,
        executor=mark_task_complete,
    ),
    ToolSpec(
        name=ToolName.MARK_TASK_FAILED,
        description="Mark a task as failed and update its routine stats.",
        parameters=_task_id_only(),
        args_type=TaskIdArgs,
        executor=mark_task_failed,
    ),
    ToolSpec(
        name=ToolName.DELETE_TASK,
        description="Delete a task permanently.",
        parameters=_task_id_only(),
        args_type=TaskIdArgs,
        executor=delete_task,
    ),
    ToolSpec(
        name=ToolName.GET_TASK_BY_ID,
        description="Fetch a single task.",
        parameters=_task_id_only(),
        args_type=TaskIdArgs,
        executor=get_task_by_id,
    ),
    ToolSpec(
        name=ToolName.GET_TASKS_BY_ID_LIST,
        description="Fetch several tasks at once.",
        parameters={
            "type": "object",
            "properties": {"task_ids": {"type": "array", "items": {"type": "string"}}},
            "required": ["task_ids"],
        },
        args_type=TaskIdListArgs,
        executor=get_tasks_by_id_list,
    ),
    ToolSpec(
        name=ToolName.GET_TASKS_BY_STATUS,
        description="List tasks with the given status (defaults to pending).",
        parameters={"type": "object", "properties": {"status": _STATUS_SCHEMA}, "required": []},
        args_type=TaskStatusArgs,
        executor=get_tasks_by_status,
    ),
    ToolSpec(
        name=ToolName.GET_TASKS_BY_ROUTINE,
        description="List tasks spawned by a routine.",
        parameters={
            "type": "object",
            "properties": {"routine_id": {"type": "string"}},
            "required": ["routine_id"],
        },
        args_type=RoutineIdArgs,
        executor=get_tasks_by_routine,
    ),
]
