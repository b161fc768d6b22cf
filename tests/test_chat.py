# tests/test_chat.py

from __future__ import annotations

import asyncio
import json

import pytest

from nudge_companion.core.chat import (
    APOLOGY_TEXT,
    StopReason,
    greet_if_new,
    respond_to_user,
)
from nudge_companion.core.live_message import LiveMessage
from nudge_companion.core.ports import FinishEvent, TextDelta
from nudge_companion.errors import TransportError

from .fakes import FakeMessenger, tool_call

PING = "2030-01-07T09:00:00"


@pytest.mark.asyncio
async def test_plain_reply_is_sent_and_persisted(state, llm, messenger) -> None:
    llm.rounds = [[TextDelta("Hello "), TextDelta("there!"), FinishEvent("stop")]]

    result = await respond_to_user(state, "u1", "hi")

    assert result.stop_reason is StopReason.COMPLETED
    assert result.text == "Hello there!"
    assert messenger.last_text() == "Hello there!"
    assert messenger.typing == ["u1"]

    history = state.store.list_history("u1")
    assert [(m.role, m.content) for m in history] == [
        ("user", "hi"),
        ("assistant", "Hello there!"),
    ]

    call = llm.calls[0]
    assert "<STATE>" in call.system_prompt
    assert call.messages == [{"role": "user", "content": "hi"}]
    assert call.tools is not None


@pytest.mark.asyncio
async def test_history_feeds_next_exchange(state, llm) -> None:
    llm.rounds = [[TextDelta("one")], [TextDelta("two")]]

    await respond_to_user(state, "u1", "first")
    await respond_to_user(state, "u1", "second")

    assert llm.calls[1].messages == [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "one"},
        {"role": "user", "content": "second"},
    ]


@pytest.mark.asyncio
async def test_fragmented_arguments_are_concatenated(state, llm) -> None:
    llm.rounds = [
        [
            tool_call(0, "c1", "AddTask", '{"name": "Wa'),
            tool_call(0, None, None, f'ter plants", "ping_at": "{PING}"}}'),
            FinishEvent("tool_calls"),
        ],
        [TextDelta("Done."), FinishEvent("stop")],
    ]

    result = await respond_to_user(state, "u1", "remind me to water plants")

    assert result.called("AddTask")
    [task] = state.store.list_tasks("u1")
    assert task.name == "Water plants"

    followup = llm.calls[1].messages
    assistant, tool_msg = followup[-2], followup[-1]
    assert assistant["tool_calls"][0]["id"] == "c1"
    assert tool_msg["role"] == "tool"
    assert tool_msg["tool_call_id"] == "c1"
    assert json.loads(tool_msg["content"])["ok"] is True


@pytest.mark.asyncio
async def test_calls_run_in_emission_order(state, llm) -> None:
    llm.rounds = [
        [
            tool_call(1, "c2", "GetTasksByStatus", "{}"),
            tool_call(0, "c1", "AddTask", json.dumps({"name": "Stretch", "ping_at": PING})),
        ],
        [TextDelta("ok")],
    ]

    result = await respond_to_user(state, "u1", "go")

    assert [r.name for r in result.tool_results] == ["AddTask", "GetTasksByStatus"]
    assert result.tool_results[1].payload["count"] == 1


@pytest.mark.asyncio
async def test_duplicate_call_ids_execute_once(state, llm) -> None:
    add = json.dumps({"name": "Once", "ping_at": PING})
    llm.rounds = [
        [tool_call(0, "dup", "AddTask", add), tool_call(1, "dup", "AddTask", add)],
        [tool_call(0, "dup", "AddTask", add)],
        [TextDelta("done")],
    ]

    result = await respond_to_user(state, "u1", "add it")

    assert len(result.tool_results) == 1
    assert len(state.store.list_tasks("u1")) == 1
    # A round of repeats still ends with a plain-text answer.
    assert len(llm.calls) == 3
    assert llm.calls[2].tools is None
    assert result.text.endswith("done")


@pytest.mark.asyncio
async def test_calls_without_ids_run_in_every_round(state, llm) -> None:
    llm.rounds = [
        [tool_call(0, None, "GetCurrentTime", "{}")],
        [tool_call(0, None, "AddTask", json.dumps({"name": "x", "ping_at": PING}))],
        [TextDelta("done")],
    ]

    result = await respond_to_user(state, "u1", "go")

    assert [r.name for r in result.tool_results] == ["GetCurrentTime", "AddTask"]
    assert len({r.call_id for r in result.tool_results}) == 2
    assert [t.name for t in state.store.list_tasks("u1")] == ["x"]
    assert len(llm.calls) == 3
    assert result.text.endswith("done")
    assert result.stop_reason is StopReason.COMPLETED


@pytest.mark.asyncio
async def test_tool_error_is_reported_to_model(state, llm) -> None:
    llm.rounds = [
        [tool_call(0, "c1", "MarkTaskComplete", '{"task_id": "nope"}')],
        [TextDelta("That task does not exist.")],
    ]

    result = await respond_to_user(state, "u1", "done with it")

    assert result.stop_reason is StopReason.COMPLETED
    assert not result.called("MarkTaskComplete")
    assert result.called("MarkTaskComplete", ok_only=False)
    body = json.loads(llm.calls[1].messages[-1]["content"])
    assert body["ok"] is False
    assert body["error"]["type"] == "not_found"
    assert "⚙ MarkTaskComplete ✗" in result.text


@pytest.mark.asyncio
async def test_depth_limit_forces_text_answer(state, llm) -> None:
    llm.default = lambda n: [tool_call(0, f"c{n}", "GetCurrentTime", "{}")]

    result = await respond_to_user(state, "u1", "loop forever")

    assert result.stop_reason is StopReason.RECURSION_LIMIT
    assert len(result.tool_results) == 5
    assert len(llm.calls) == 6
    assert all(c.tools is not None for c in llm.calls[:5])
    assert llm.calls[5].tools is None


@pytest.mark.asyncio
async def test_tools_disabled_ignores_calls(state, llm) -> None:
    llm.rounds = [[TextDelta("Heads up!"), tool_call(0, "c1", "GetCurrentTime", "{}")]]

    result = await respond_to_user(state, "u1", "notice", tools_enabled=False)

    assert result.stop_reason is StopReason.COMPLETED
    assert result.tool_results == []
    assert llm.calls[0].tools is None
    assert result.text == "Heads up!"


@pytest.mark.asyncio
async def test_history_keeps_markers_once(state, llm, messenger) -> None:
    llm.rounds = [
        [tool_call(0, "c1", "AddTask", json.dumps({"name": "Gym", "ping_at": PING}))],
        [TextDelta("Added it.")],
    ]

    await respond_to_user(state, "u1", "gym tomorrow")

    history = state.store.list_history("u1")
    assert [m.role for m in history] == ["user", "assistant"]
    assert history[1].content == "⚙ AddTask ✓\nAdded it."
    assert messenger.last_text() == "⚙ AddTask ✓\nAdded it."


@pytest.mark.asyncio
async def test_transport_error_sends_apology_without_history(state, llm, messenger) -> None:
    llm.rounds = [[TextDelta("partial"), TransportError("connection reset")]]

    result = await respond_to_user(state, "u1", "hello?")

    assert result.stop_reason is StopReason.TRANSPORT_ERROR
    assert messenger.last_text() == APOLOGY_TEXT
    assert state.store.list_history("u1") == []


@pytest.mark.asyncio
async def test_internal_blocks_are_stripped_across_chunks(state, llm, messenger) -> None:
    llm.rounds = [
        [
            TextDelta("Hi <thin"),
            TextDelta("king>secret</thinking> there"),
            TextDelta("<STATE>tasks: []</STATE>"),
        ]
    ]

    result = await respond_to_user(state, "u1", "hey")

    assert result.text == "Hi  there"
    assert "secret" not in messenger.last_text()
    assert state.store.list_history("u1")[1].content == "Hi  there"


@pytest.mark.asyncio
async def test_streaming_edits_one_message(state, llm, messenger) -> None:
    state.settings.stream_refresh_min_chars = 1
    llm.delay = 0.04
    llm.rounds = [[TextDelta(f"part{i} ") for i in range(6)]]

    result = await respond_to_user(state, "u1", "tell me")

    assert len(messenger.sent) == 1
    assert messenger.edits
    assert messenger.texts["m1"].strip() == result.text


@pytest.mark.asyncio
async def test_live_message_without_edit_sends_deltas() -> None:
    class NoEditMessenger(FakeMessenger):
        async def send_text(self, *, user_id: str, text: str) -> str | None:
            await super().send_text(user_id=user_id, text=text)
            return None

    messenger = NoEditMessenger()
    live = LiveMessage(messenger, "u1", interval=0.05, min_chars=1)
    await live.start()
    await live.append("Hello")
    await asyncio.sleep(0.12)
    await live.append(" world")
    full = await live.finish()

    assert full == "Hello world"
    assert [m.text for m in messenger.sent] == ["Hello", " world"]
    assert messenger.edits == []


@pytest.mark.asyncio
async def test_greeting_runs_only_for_new_users(state, llm) -> None:
    llm.rounds = [[TextDelta("Hi, I'm your companion.")]]

    first = await greet_if_new(state, "u1")
    second = await greet_if_new(state, "u1")

    assert first is not None
    assert first.text == "Hi, I'm your companion."
    assert second is None
    assert len(llm.calls) == 1
