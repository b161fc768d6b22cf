# src/nudge_companion/tools/registry.py

"""
Tool registry and execution contract.

A tool is a ToolSpec: a name, a JSON-schema parameter description shown to the
model, an argument struct with a parse() classmethod and an async executor.

execute() never raises for tool-level problems. Validation errors, unknown ids,
unknown tools and unexpected executor crashes all come back as a ToolResult with a
structured error payload so the agent can recover within the same exchange.
"""

from __future__ import annotations

import json
import logging
import random
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import tzinfo
from enum import StrEnum
from typing import Any

from ..core.ports import UserRepo
from ..errors import NotFoundError, NudgeError, ValidationError

logger = logging.getLogger(__name__)


class ToolName(StrEnum):
    ADD_TASK = "AddTask"
    UPDATE_TASK = "UpdateTask"
    RESCHEDULE_TASK = "RescheduleTask"
    MARK_TASK_COMPLETE = "MarkTaskComplete"
    MARK_TASK_FAILED = "MarkTaskFailed"
    DELETE_TASK = "DeleteTask"
    GET_TASK_BY_ID = "GetTaskById"
    GET_TASKS_BY_ID_LIST = "GetTasksByIdList"
    GET_TASKS_BY_STATUS = "GetTasksByStatus"
    GET_TASKS_BY_ROUTINE = "GetTasksByRoutine"

    ADD_ROUTINE = "AddRoutine"
    UPDATE_ROUTINE = "UpdateRoutine"
    DELETE_ROUTINE = "DeleteRoutine"
    LIST_ROUTINES = "ListRoutines"
    GET_ROUTINE_BY_ID = "GetRoutineById"

    UPDATE_MEMORY = "UpdateMemory"
    GET_MEMORY = "GetMemory"
    LIST_MEMORY = "ListMemory"
    DELETE_MEMORY = "DeleteMemory"

    SET_GOAL = "SetGoal"
    GET_GOAL = "GetGoal"
    CLEAR_GOAL = "ClearGoal"

    GET_CURRENT_TIME = "GetCurrentTime"


@dataclass(slots=True)
class ToolContext:
    """Everything an executor may touch. Executors mutate state only via `store`."""

    store: UserRepo
    user_id: str
    now: float
    tz: tzinfo
    rng: random.Random | None = None


Executor = Callable[[Any, ToolContext], Awaitable[dict[str, Any]]]


@dataclass(slots=True, frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    parameters: dict[str, Any]
    args_type: Any  # dataclass with parse(raw, ctx) classmethod
    executor: Executor

    def declaration(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass(slots=True)
class ToolResult:
    call_id: str
    name: str
    ok: bool
    payload: dict[str, Any] = field(default_factory=dict)

    def content(self) -> str:
        """JSON body of the `tool` message sent back to the model."""
        body = {"ok": True, **self.payload} if self.ok else {"ok": False, "error": self.payload}
        return json.dumps(body, ensure_ascii=False)


def _decode_arguments(raw_json: str | None) -> dict[str, Any]:
    if raw_json is None or not raw_json.strip():
        return {}
    try:
        data = json.loads(raw_json)
    except json.JSONDecodeError as e:
        raise ValidationError("arguments", f"not valid JSON ({e.msg})") from None
    if not isinstance(data, dict):
        raise ValidationError("arguments", "must be a JSON object")
    return data


class ToolRegistry:
    """Name -> ToolSpec table consulted by the orchestration loop."""

    def __init__(self, specs: Iterable[ToolSpec] = ()) -> None:
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name.value in self._specs:
            raise ValueError(f"duplicate tool: {spec.name.value}")
        self._specs[spec.name.value] = spec

    def names(self) -> list[str]:
        return list(self._specs)

    def get(self, name: str) -> ToolSpec | None:
        return self._specs.get(name)

    def declarations(self) -> list[dict[str, Any]]:
        return [spec.declaration() for spec in self._specs.values()]

    async def execute(
        self, call_id: str, name: str, raw_json: str | None, ctx: ToolContext
    ) -> ToolResult:
        spec = self._specs.get(name)
        try:
            if spec is None:
                raise NotFoundError("tool", name)
            raw = _decode_arguments(raw_json)
            args = spec.args_type.parse(raw, ctx)
            payload = await spec.executor(args, ctx)
        except NudgeError as e:
            logger.info("Tool %s failed (call_id=%s): %s", name, call_id, e)
            return ToolResult(call_id=call_id, name=name, ok=False, payload=e.to_payload())
        except Exception as e:
            logger.exception("Tool %s crashed (call_id=%s)", name, call_id)
            return ToolResult(
                call_id=call_id,
                name=name,
                ok=False,
                payload={"type": "internal_error", "message": e.__class__.__name__},
            )

        logger.debug("Tool %s ok (call_id=%s)", name, call_id)
        return ToolResult(call_id=call_id, name=name, ok=True, payload=payload)
