# src/nudge_companion/tools/memory_tools.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..errors import NotFoundError, ValidationError
from .registry import ToolContext, ToolName, ToolSpec
from .validation import require_str

# Keys are free-form but short: they end up in every system prompt.
_MAX_KEY_LEN = 64
_MAX_VALUE_LEN = 1000


def _memory(ctx: ToolContext) -> dict[str, str]:
    profile = ctx.store.get_user(ctx.user_id)
    return dict(profile.memory) if profile is not None else {}


@dataclass(slots=True, frozen=True)
class MemoryKeyArgs:
    key: str

    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> MemoryKeyArgs:
        key = require_str(raw, "key")
        if len(key) > _MAX_KEY_LEN:
            raise ValidationError("key", f"must be at most {_MAX_KEY_LEN} characters")
        return cls(key=key)


@dataclass(slots=True, frozen=True)
class UpdateMemoryArgs:
    key: str
    value: str

    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> UpdateMemoryArgs:
        key = MemoryKeyArgs.parse(raw, ctx).key
        value = require_str(raw, "value")
        if len(value) > _MAX_VALUE_LEN:
            raise ValidationError("value", f"must be at most {_MAX_VALUE_LEN} characters")
        return cls(key=key, value=value)


@dataclass(slots=True, frozen=True)
class NoArgs:
    @classmethod
    def parse(cls, raw: dict[str, Any], ctx: ToolContext) -> NoArgs:
        return cls()


async def update_memory(args: UpdateMemoryArgs, ctx: ToolContext) -> dict[str, Any]:
    ctx.store.set_memory(ctx.user_id, args.key, args.value)
    return {"key": args.key, "value": args.value}


async def get_memory(args: MemoryKeyArgs, ctx: ToolContext) -> dict[str, Any]:
    memory = _memory(ctx)
    if args.key not in memory:
        raise NotFoundError("memory", args.key)
    return {"key": args.key, "value": memory[args.key]}


async def list_memory(args: NoArgs, ctx: ToolContext) -> dict[str, Any]:
    return {"memory": _memory(ctx)}


async def delete_memory(args: MemoryKeyArgs, ctx: ToolContext) -> dict[str, Any]:
    if not ctx.store.delete_memory(ctx.user_id, args.key):
        raise NotFoundError("memory", args.key)
    return {"deleted": args.key}


_KEY = {"type": "string", "description": "Short snake_case key, e.g. 'wake_up_time'."}

SPECS: list[ToolSpec] = [
    ToolSpec(
        name=ToolName.UPDATE_MEMORY,
        description="Remember a fact about the user (creates or overwrites the key).",
        parameters={
            "type": "object",
            "properties": {"key": _KEY, "value": {"type": "string"}},
            "required": ["key", "value"],
        },
        args_type=UpdateMemoryArgs,
        executor=update_memory,
    ),
    ToolSpec(
        name=ToolName.GET_MEMORY,
        description="Read one remembered fact.",
        parameters={"type": "object", "properties": {"key": _KEY}, "required": ["key"]},
        args_type=MemoryKeyArgs,
        executor=get_memory,
    ),
    ToolSpec(
        name=ToolName.LIST_MEMORY,
        description="List everything remembered about the user.",
        parameters={"type": "object", "properties": {}, "required": []},
        args_type=NoArgs,
        executor=list_memory,
    ),
    ToolSpec(
        name=ToolName.DELETE_MEMORY,
        description="Forget a remembered fact.",
        parameters={"type": "object", "properties": {"key": _KEY}, "required": ["key"]},
        args_type=MemoryKeyArgs,
        executor=delete_memory,
    ),
]
