# tests/test_compaction.py

from __future__ import annotations

import time

import pytest

from nudge_companion.core.chat import respond_to_user
from nudge_companion.core.compaction import (
    compact_user_history,
    find_compactable_runs,
    run_history_compaction,
)
from nudge_companion.tasks.task_models import HistoryMessage
from nudge_companion.tasks.task_scheduler import TaskScheduler


def _msg(i: int, role: str) -> HistoryMessage:
    return HistoryMessage(id=i, role=role, content=f"m{i}", created_at=float(i))


def _seed(store, user_id: str, roles: str) -> None:
    # "u" -> user, "a" -> assistant
    store.ensure_user(user_id)
    for i, r in enumerate(roles):
        role = "user" if r == "u" else "assistant"
        store.append_history(user_id, role, f"{r}{i}", max_messages=1000)


def test_find_runs_needs_two_consecutive_assistant_messages() -> None:
    roles = ["user", "assistant", "user", "assistant", "assistant", "assistant", "user", "assistant", "assistant"]
    history = [_msg(i, r) for i, r in enumerate(roles)]

    runs = find_compactable_runs(history)

    assert [r.ids for r in runs] == [[3, 4, 5], [7, 8]]


def test_find_runs_empty_when_conversation_alternates() -> None:
    history = [_msg(i, "user" if i % 2 == 0 else "assistant") for i in range(6)]
    assert find_compactable_runs(history) == []


@pytest.mark.asyncio
async def test_compaction_replaces_run_with_summary(state, store, llm) -> None:
    llm.summary = "  Reminded about stretching twice.  "
    _seed(store, "u1", "uaaau")

    done = await compact_user_history(state, "u1", budget=5)

    assert done == 1
    history = store.list_history("u1")
    assert [m.role for m in history] == ["user", "assistant", "user"]
    summary = history[1].content
    assert summary.startswith("<system>Compacted summary of 3 messages from ")
    assert summary.endswith("</system>\nReminded about stretching twice.")

    system_prompt, messages = llm.complete_calls[0]
    assert "3 consecutive assistant messages" in system_prompt
    assert "a1" in messages[0]["content"] and "a3" in messages[0]["content"]


@pytest.mark.asyncio
async def test_compaction_goes_newest_first_within_budget(state, store, llm) -> None:
    _seed(store, "u1", "uaauaaua")

    done = await compact_user_history(state, "u1", budget=1)

    assert done == 1
    contents = [m.content for m in store.list_history("u1")]
    # Older run untouched, newer run compacted.
    assert contents[:3] == ["u0", "a1", "a2"]
    assert contents[4].startswith("<system>Compacted summary of 2 messages")
    assert contents[-2:] == ["u6", "a7"]


@pytest.mark.asyncio
async def test_empty_summary_leaves_history_alone(state, store, llm) -> None:
    llm.summary = "   "
    _seed(store, "u1", "uaa")

    assert await compact_user_history(state, "u1", budget=5) == 0
    assert len(store.list_history("u1")) == 3


@pytest.mark.asyncio
async def test_pass_budget_is_global_across_users(state, store, llm) -> None:
    state.settings.compaction_max_per_run = 2
    _seed(store, "alice", "uaauaa")
    _seed(store, "bob", "uaa")

    total = await run_history_compaction(state)

    assert total == 2
    assert len(llm.complete_calls) == 2
    # alice was registered first and used the whole budget.
    assert len(store.list_history("bob")) == 3


@pytest.mark.asyncio
async def test_ignored_scheduler_pings_get_compacted(state, store, llm) -> None:
    await respond_to_user(state, "u1", "remind me to drink water")
    now = time.time()
    store.add_task("u1", name="Drink water", ping_at=now - 120)
    store.add_task("u1", name="Stretch", ping_at=now - 60)

    await TaskScheduler(state).tick(now)

    # Reminders are stored without their synthetic prompts.
    assert [m.role for m in store.list_history("u1")] == [
        "user",
        "assistant",
        "assistant",
        "assistant",
    ]

    assert await run_history_compaction(state) == 1
    history = store.list_history("u1")
    assert [m.role for m in history] == ["user", "assistant"]
    assert history[1].content.startswith("<system>Compacted summary of 3 messages")
