# src/nudge_companion/tools/goal_tools.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .memory_tools import NoArgs
from .registry import ToolContext, ToolName, ToolSpec
from .validation import require_str


@dataclass(slots=True, frozen=True)
class SetGoalArgs:
    goal: str

    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> SetGoalArgs:
        return cls(goal=require_str(raw, "goal"))


async def set_goal(args: SetGoalArgs, ctx: ToolContext) -> dict[str, Any]:
    ctx.store.set_goal(ctx.user_id, args.goal)
    return {"goal": args.goal}


async def get_goal(args: NoArgs, ctx: ToolContext) -> dict[str, Any]:
    profile = ctx.store.get_user(ctx.user_id)
    return {"goal": profile.goal if profile is not None else None}


async def clear_goal(args: NoArgs, ctx: ToolContext) -> dict[str, Any]:
    ctx.store.set_goal(ctx.user_id, None)
    return {"goal": None}


_EMPTY = {"type": "object", "properties": {}, "required": []}

SPECS: list[ToolSpec] = [
    ToolSpec(
        name=ToolName.SET_GOAL,
        description="Set the user's current long-term goal (replaces the previous one).",
        parameters={
            "type": "object",
            "properties": {"goal": {"type": "string"}},
            "required": ["goal"],
        },
        args_type=SetGoalArgs,
        executor=set_goal,
    ),
    ToolSpec(
        name=ToolName.GET_GOAL,
        description="Read the user's current goal.",
        parameters=_EMPTY,
        args_type=NoArgs,
        executor=get_goal,
    ),
    ToolSpec(
        name=ToolName.CLEAR_GOAL,
        description="Remove the user's goal.",
        parameters=_EMPTY,
        args_type=NoArgs,
        executor=clear_goal,
    ),
]
