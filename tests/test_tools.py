# tests/test_tools.py

from __future__ import annotations

import json
from typing import Any

import pytest

from nudge_companion.tasks.task_models import TaskStatus
from nudge_companion.tools import ToolName, build_registry
from nudge_companion.tools.registry import ToolContext, ToolResult


async def _call(ctx: ToolContext, name: str, args: Any) -> tuple[ToolResult, dict[str, Any]]:
    raw = args if isinstance(args, str) else json.dumps(args)
    result = await build_registry().execute("call_1", name, raw, ctx)
    return result, json.loads(result.content())


def test_registry_exposes_every_tool() -> None:
    registry = build_registry()
    assert sorted(registry.names()) == sorted(t.value for t in ToolName)
    for decl in registry.declarations():
        assert decl["type"] == "function"
        assert decl["function"]["parameters"]["type"] == "object"


@pytest.mark.asyncio
async def test_add_then_get_roundtrip(ctx: ToolContext) -> None:
    _, added = await _call(
        ctx,
        "AddTask",
        {"name": "Call mom", "ping_at": "2030-01-07T09:00:00+00:00", "annoyance": "med"},
    )
    assert added["ok"] is True
    task_id = added["task"]["id"]

    _, got = await _call(ctx, "GetTaskById", {"task_id": task_id})
    task = got["task"]
    assert task["name"] == "Call mom"
    assert task["status"] == "pending"
    assert task["annoyance"] == "med"
    assert task["requires_action"] is False
    assert task["postpone_count"] == 0
    assert task["ping_at"] == "2030-01-07T09:00:00+00:00"
    assert task["due_at"] is None


@pytest.mark.asyncio
async def test_missing_name_is_validation_error(ctx: ToolContext) -> None:
    result, body = await _call(ctx, "AddTask", {"ping_at": "2030-01-07T09:00:00"})

    assert result.ok is False
    assert body["ok"] is False
    assert body["error"]["type"] == "validation_error"
    assert body["error"]["field"] == "name"
    assert ctx.store.list_tasks("u1") == []


@pytest.mark.asyncio
async def test_bad_json_and_unknown_tool(ctx: ToolContext) -> None:
    _, bad = await _call(ctx, "AddTask", '{"name": "x", ')
    assert bad["error"]["type"] == "validation_error"
    assert bad["error"]["field"] == "arguments"

    _, unknown = await _call(ctx, "LaunchRockets", {})
    assert unknown["error"]["type"] == "not_found"
    assert unknown["error"]["entity"] == "tool"


@pytest.mark.asyncio
async def test_strict_types_are_enforced(ctx: ToolContext) -> None:
    _, body = await _call(
        ctx,
        "AddTask",
        {"name": "x", "ping_at": "2030-01-07T09:00:00", "requires_action": "yes"},
    )
    assert body["error"]["field"] == "requires_action"

    _, body = await _call(
        ctx, "AddTask", {"name": "x", "ping_at": "2030-01-07T09:00:00", "annoyance": "urgent"}
    )
    assert body["error"]["field"] == "annoyance"

    _, body = await _call(ctx, "AddTask", {"name": "x", "ping_at": "next tuesday"})
    assert body["error"]["field"] == "ping_at"


@pytest.mark.asyncio
async def test_add_task_with_unknown_routine(ctx: ToolContext) -> None:
    _, body = await _call(
        ctx, "AddTask", {"name": "x", "ping_at": "2030-01-07T09:00:00", "routine_id": "nope"}
    )
    assert body["error"]["type"] == "not_found"
    assert body["error"]["entity"] == "routine"


@pytest.mark.asyncio
async def test_add_routine_rejects_bad_cron(ctx: ToolContext) -> None:
    _, body = await _call(ctx, "AddRoutine", {"name": "Gym", "cron": "every monday"})
    assert body["error"]["field"] == "cron"
    assert ctx.store.list_routines("u1") == []


@pytest.mark.asyncio
async def test_never_firing_cron_is_rejected_before_storing(ctx: ToolContext) -> None:
    _, body = await _call(ctx, "AddRoutine", {"name": "feb31", "cron": "0 0 31 2 *"})
    assert body["error"]["type"] == "validation_error"
    assert body["error"]["field"] == "cron"
    assert ctx.store.list_routines("u1") == []

    routine = ctx.store.add_routine("u1", name="Gym", cron="0 18 * * 5")
    _, body = await _call(
        ctx, "UpdateRoutine", {"routine_id": routine.id, "cron": "0 0 30 2 *"}
    )
    assert body["error"]["field"] == "cron"
    assert ctx.store.get_routine("u1", routine.id).cron == "0 18 * * 5"


@pytest.mark.asyncio
async def test_task_vanishing_mid_update_is_not_found(ctx: ToolContext) -> None:
    task = ctx.store.add_task("u1", name="x", ping_at=ctx.now)

    class _VanishingStore:
        def __init__(self, inner) -> None:
            self._inner = inner

        def __getattr__(self, name):
            return getattr(self._inner, name)

        def update_task(self, user_id, task_id, **fields):
            return None

    ctx.store = _VanishingStore(ctx.store)
    for name in ("MarkTaskComplete", "RescheduleTask"):
        result, body = await _call(ctx, name, {"task_id": task.id})
        assert result.ok is False, name
        assert body["error"]["type"] == "not_found", name
        assert body["error"]["entity"] == "task", name


@pytest.mark.asyncio
async def test_routine_lifecycle(ctx: ToolContext) -> None:
    _, added = await _call(ctx, "AddRoutine", {"name": "Gym", "cron": "0 18 * * 5"})
    routine = added["routine"]
    assert routine["requires_action"] is True
    assert routine["schedule"] == "every Friday at 18:00"
    assert routine["next_run"]

    _, updated = await _call(
        ctx, "UpdateRoutine", {"routine_id": routine["id"], "is_active": False}
    )
    assert updated["routine"]["is_active"] is False

    _, listed = await _call(ctx, "ListRoutines", {"active_only": True})
    assert listed["routines"] == []

    _, deleted = await _call(ctx, "DeleteRoutine", {"routine_id": routine["id"]})
    assert deleted["ok"] is True
    _, missing = await _call(ctx, "GetRoutineById", {"routine_id": routine["id"]})
    assert missing["error"]["type"] == "not_found"


@pytest.mark.asyncio
async def test_mark_complete_bumps_routine_stats(ctx: ToolContext) -> None:
    routine = ctx.store.add_routine("u1", name="Stretch", cron="0 9 * * *")
    task = ctx.store.add_task(
        "u1", name="Stretch", ping_at=ctx.now, routine_id=routine.id, requires_action=True
    )

    _, body = await _call(ctx, "MarkTaskComplete", {"task_id": task.id})
    assert body["task"]["status"] == "completed"
    assert body["routine_updated"] is True

    reloaded = ctx.store.get_routine("u1", routine.id)
    assert reloaded is not None
    assert reloaded.stats.completed == 1
    assert reloaded.stats.failed == 0


@pytest.mark.asyncio
async def test_terminal_task_rejects_transitions(ctx: ToolContext) -> None:
    task = ctx.store.add_task("u1", name="x", ping_at=ctx.now)
    ctx.store.update_task("u1", task.id, status=TaskStatus.FAILED)

    for name, args in (
        ("MarkTaskComplete", {"task_id": task.id}),
        ("RescheduleTask", {"task_id": task.id}),
        ("UpdateTask", {"task_id": task.id, "name": "y"}),
    ):
        _, body = await _call(ctx, name, args)
        assert body["error"]["type"] == "validation_error", name
        assert body["error"]["field"] == "status", name

    assert ctx.store.get_task("u1", task.id).status is TaskStatus.FAILED


@pytest.mark.asyncio
async def test_reschedule_without_time_uses_cadence(ctx: ToolContext) -> None:
    task = ctx.store.add_task("u1", name="Read", ping_at=ctx.now - 60)
    ctx.store.update_task("u1", task.id, status=TaskStatus.NEEDS_REPLANNING)

    _, body = await _call(ctx, "RescheduleTask", {"task_id": task.id})
    assert body["task"]["status"] == "pending"
    assert body["task"]["postpone_count"] == 1

    stored = ctx.store.get_task("u1", task.id)
    assert ctx.now + 120 * 60 <= stored.ping_at <= ctx.now + 180 * 60


@pytest.mark.asyncio
async def test_update_task_with_ping_reschedules(ctx: ToolContext) -> None:
    task = ctx.store.add_task("u1", name="Read", ping_at=ctx.now - 60, requires_action=True)
    ctx.store.update_task("u1", task.id, status=TaskStatus.NEEDS_REPLANNING)

    _, body = await _call(
        ctx, "UpdateTask", {"task_id": task.id, "ping_at": "2030-01-07T10:00:00Z"}
    )
    assert body["task"]["status"] == "pending"
    assert body["task"]["postpone_count"] == 1
    assert body["task"]["ping_at"] == "2030-01-07T10:00:00+00:00"


@pytest.mark.asyncio
async def test_update_task_clears_due_and_rejects_empty(ctx: ToolContext) -> None:
    task = ctx.store.add_task("u1", name="Tax", ping_at=ctx.now, due_at=ctx.now + 3600)

    _, body = await _call(ctx, "UpdateTask", {"task_id": task.id, "due_at": None})
    assert body["task"]["due_at"] is None
    assert body["task"]["postpone_count"] == 0

    _, empty = await _call(ctx, "UpdateTask", {"task_id": task.id})
    assert empty["error"]["field"] == "arguments"


@pytest.mark.asyncio
async def test_queries(ctx: ToolContext) -> None:
    a = ctx.store.add_task("u1", name="a", ping_at=ctx.now)
    b = ctx.store.add_task("u1", name="b", ping_at=ctx.now + 1)
    ctx.store.update_task("u1", b.id, status=TaskStatus.COMPLETED)

    _, pending = await _call(ctx, "GetTasksByStatus", {})
    assert pending["status"] == "pending"
    assert [t["id"] for t in pending["tasks"]] == [a.id]

    _, done = await _call(ctx, "GetTasksByStatus", {"status": "completed"})
    assert [t["id"] for t in done["tasks"]] == [b.id]

    _, listed = await _call(ctx, "GetTasksByIdList", {"task_ids": [a.id, "zzz"]})
    assert [t["id"] for t in listed["tasks"]] == [a.id]
    assert listed["missing"] == ["zzz"]

    _, deleted = await _call(ctx, "DeleteTask", {"task_id": a.id})
    assert deleted["deleted"] == a.id
    _, again = await _call(ctx, "DeleteTask", {"task_id": a.id})
    assert again["error"]["type"] == "not_found"


@pytest.mark.asyncio
async def test_memory_and_goal_tools(ctx: ToolContext) -> None:
    await _call(ctx, "UpdateMemory", {"key": "wake_up", "value": "07:00"})
    _, got = await _call(ctx, "GetMemory", {"key": "wake_up"})
    assert got["value"] == "07:00"

    _, too_long = await _call(ctx, "UpdateMemory", {"key": "k" * 65, "value": "v"})
    assert too_long["error"]["field"] == "key"

    _, listed = await _call(ctx, "ListMemory", {})
    assert listed["memory"] == {"wake_up": "07:00"}

    await _call(ctx, "DeleteMemory", {"key": "wake_up"})
    _, missing = await _call(ctx, "GetMemory", {"key": "wake_up"})
    assert missing["error"]["entity"] == "memory"

    await _call(ctx, "SetGoal", {"goal": "Learn Polish"})
    _, goal = await _call(ctx, "GetGoal", {})
    assert goal["goal"] == "Learn Polish"
    await _call(ctx, "ClearGoal", {})
    _, cleared = await _call(ctx, "GetGoal", {})
    assert cleared["goal"] is None


@pytest.mark.asyncio
async def test_current_time(ctx: ToolContext) -> None:
    _, body = await _call(ctx, "GetCurrentTime", {})
    assert body["timezone"] == "UTC"
    assert body["now"].endswith("+00:00")
