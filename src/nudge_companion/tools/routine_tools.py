# src/nudge_companion/tools/routine_tools.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..errors import NotFoundError, ValidationError
from ..tasks.recurrence import describe_cron, is_valid_cron, next_occurrence
from ..tasks.task_models import Annoyance, Routine
from .registry import ToolContext, ToolName, ToolSpec
from .validation import optional_annoyance, optional_bool, optional_str, require_str

logger = logging.getLogger(__name__)

_CRON_HELP = (
    "Five-field cron expression in the user's timezone, "
    "e.g. '0 9 * * 1-5' for workdays at 09:00."
)


def _require_cron(raw: dict[str, Any], field: str = "cron") -> str:
    expr = require_str(raw, field)
    if not is_valid_cron(expr):
        raise ValidationError(field, f"invalid or never-firing cron expression: {expr!r}")
    return expr


def _payload(routine: Routine, ctx: ToolContext) -> dict[str, Any]:
    out = routine.to_payload()
    out["schedule"] = describe_cron(routine.cron)
    if routine.is_active:
        now = datetime.fromtimestamp(ctx.now, tz=ctx.tz)
        out["next_run"] = next_occurrence(routine.cron, now).replace(microsecond=0).isoformat()
    return out


def _load_routine(ctx: ToolContext, routine_id: str) -> Routine:
    routine = ctx.store.get_routine(ctx.user_id, routine_id)
    if routine is None:
        raise NotFoundError("routine", routine_id)
    return routine


@dataclass(slots=True, frozen=True)
class AddRoutineArgs:
    name: str
    cron: str
    default_annoyance: Annoyance
    requires_action: bool

    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> AddRoutineArgs:
        requires_action = optional_bool(raw, "requires_action")
        return cls(
            name=require_str(raw, "name"),
            cron=_require_cron(raw),
            default_annoyance=optional_annoyance(raw, "default_annoyance") or Annoyance.LOW,
            requires_action=True if requires_action is None else requires_action,
        )


async def add_routine(args: AddRoutineArgs, ctx: ToolContext) -> dict[str, Any]:
    routine = ctx.store.add_routine(
        ctx.user_id,
        name=args.name,
        cron=args.cron,
        default_annoyance=args.default_annoyance,
        requires_action=args.requires_action,
    )
    logger.info("AddRoutine id=%s user=%s cron=%r", routine.id, ctx.user_id, routine.cron)
    return {"routine": _payload(routine, ctx)}


@dataclass(slots=True, frozen=True)
class UpdateRoutineArgs:
    routine_id: str
    fields: dict[str, Any]

    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> UpdateRoutineArgs:
        routine_id = require_str(raw, "routine_id")
        fields: dict[str, Any] = {}

        name = optional_str(raw, "name")
        if name is not None:
            fields["name"] = name
        if raw.get("cron") is not None:
            fields["cron"] = _require_cron(raw)
        annoyance = optional_annoyance(raw, "default_annoyance")
        if annoyance is not None:
            fields["default_annoyance"] = annoyance
        for flag in ("requires_action", "is_active"):
            value = optional_bool(raw, flag)
            if value is not None:
                fields[flag] = value

        if not fields:
            raise ValidationError("arguments", "nothing to update")
        return cls(routine_id=routine_id, fields=fields)


async def update_routine(args: UpdateRoutineArgs, ctx: ToolContext) -> dict[str, Any]:
    _load_routine(ctx, args.routine_id)
    routine = ctx.store.update_routine(ctx.user_id, args.routine_id, **args.fields)
    if routine is None:
        raise NotFoundError("routine", args.routine_id)
    return {"routine": _payload(routine, ctx)}


@dataclass(slots=True, frozen=True)
class RoutineIdArgs:
    routine_id: str

    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> RoutineIdArgs:
        return cls(routine_id=require_str(raw, "routine_id"))


async def delete_routine(args: RoutineIdArgs, ctx: ToolContext) -> dict[str, Any]:
    if not ctx.store.delete_routine(ctx.user_id, args.routine_id):
        raise NotFoundError("routine", args.routine_id)
    return {"deleted": args.routine_id}


async def get_routine_by_id(args: RoutineIdArgs, ctx: ToolContext) -> dict[str, Any]:
    return {"routine": _payload(_load_routine(ctx, args.routine_id), ctx)}


@dataclass(slots=True, frozen=True)
class ListRoutinesArgs:
    active_only: bool

    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> ListRoutinesArgs:
        return cls(active_only=bool(optional_bool(raw, "active_only")))


async def list_routines(args: ListRoutinesArgs, ctx: ToolContext) -> dict[str, Any]:
    routines = ctx.store.list_routines(ctx.user_id, active_only=args.active_only)
    return {"count": len(routines), "routines": [_payload(r, ctx) for r in routines]}


_ROUTINE_ID = {"type": "string", "description": "The ID of the routine."}
_ANNOYANCE = {"type": "string", "enum": [a.value for a in Annoyance]}

SPECS: list[ToolSpec] = [
    ToolSpec(
        name=ToolName.ADD_ROUTINE,
        description="Create a recurring routine. Each firing creates a new task.",
        parameters={
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "cron": {"type": "string", "description": _CRON_HELP},
                "default_annoyance": _ANNOYANCE,
                "requires_action": {
                    "type": "boolean",
                    "description": "Whether spawned tasks need confirmation (default true).",
                },
            },
            "required": ["name", "cron"],
        },
        args_type=AddRoutineArgs,
        executor=add_routine,
    ),
    ToolSpec(
        name=ToolName.UPDATE_ROUTINE,
        description="Change a routine's name, schedule, annoyance or active flag.",
        parameters={
            "type": "object",
            "properties": {
                "routine_id": _ROUTINE_ID,
                "name": {"type": "string"},
                "cron": {"type": "string", "description": _CRON_HELP},
                "default_annoyance": _ANNOYANCE,
                "requires_action": {"type": "boolean"},
                "is_active": {"type": "boolean"},
            },
            "required": ["routine_id"],
        },
        args_type=UpdateRoutineArgs,
        executor=update_routine,
    ),
    ToolSpec(
        name=ToolName.DELETE_ROUTINE,
        description="Delete a routine. Tasks it already spawned are kept.",
        parameters={
            "type": "object",
            "properties": {"routine_id": _ROUTINE_ID},
            "required": ["routine_id"],
        },
        args_type=RoutineIdArgs,
        executor=delete_routine,
    ),
    ToolSpec(
        name=ToolName.LIST_ROUTINES,
        description="List the user's routines with their stats.",
        parameters={
            "type": "object",
            "properties": {"active_only": {"type": "boolean"}},
            "required": [],
        },
        args_type=ListRoutinesArgs,
        executor=list_routines,
    ),
    ToolSpec(
        name=ToolName.GET_ROUTINE_BY_ID,
        description="Fetch a single routine.",
        parameters={
            "type": "object",
            "properties": {"routine_id": _ROUTINE_ID},
            "required": ["routine_id"],
        },
        args_type=RoutineIdArgs,
        executor=get_routine_by_id,
    ),
]
