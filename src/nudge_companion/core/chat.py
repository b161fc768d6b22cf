# src/nudge_companion/core/chat.py

"""
Core chat orchestration.

This module is transport-agnostic:
- connectors (and the scheduler) hand in a prompt for a user,
- the core builds the system prompt with a <STATE> snapshot, streams the model's
  output into one live message and runs the tool calls the model asks for,
- the messenger decides how partial/final text is displayed.

Key invariants:
- at most `max_tool_depth` tool rounds per exchange; the last round has tools
  disabled so the model must answer in plain text,
- tool calls run one at a time in emission order, each call id at most once,
- history is written once per exchange (the prompt unless it is synthetic, then
  the final visible text) and only after the exchange succeeded,
- internal blocks (<thinking>, <system>, <STATE>) never reach the user
  (streaming-safe filter).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..errors import TransportError
from ..tools.registry import ToolContext, ToolResult
from .history import append_turn, recent_messages
from .live_message import LiveMessage
from .persona import GREETING_PROMPT, build_state_block, get_system_prompt
from .ports import ChatMessage, FinishEvent, TextDelta, ToolCallDelta
from .state import AppState

logger = logging.getLogger(__name__)

APOLOGY_TEXT = "Sorry, I couldn't reach my brain just now. Please try again in a minute."

MARK_OK = "✓"
MARK_FAIL = "✗"


class StopReason(StrEnum):
    COMPLETED = "completed"
    RECURSION_LIMIT = "recursion_limit"
    TRANSPORT_ERROR = "transport_error"


@dataclass(slots=True)
class ExchangeResult:
    text: str
    stop_reason: StopReason
    rounds: int = 0
    tool_results: list[ToolResult] = field(default_factory=list)

    def called(self, name: str, *, ok_only: bool = True) -> bool:
        return any(r.name == name and (r.ok or not ok_only) for r in self.tool_results)


class _InternalBlockStripper:
    """
    Streaming-safe remover for internal blocks like <STATE>...</STATE>.
    Works across chunk boundaries and is case-insensitive.
    """

    def __init__(self, start_tag: str, end_tag: str) -> None:
        self._start = start_tag
        self._end = end_tag
        self._start_l = start_tag.lower()
        self._end_l = end_tag.lower()
        self._buf = ""
        self._inside = False

    def _partial_start_len(self, low: str) -> int:
        """Length of the longest suffix of `low` that is a prefix of the start tag."""
        for n in range(min(len(low), len(self._start_l) - 1), 0, -1):
            if self._start_l.startswith(low[-n:]):
                return n
        return 0

    def feed(self, chunk: str) -> str:
        if not chunk:
            return ""

        self._buf += chunk
        out_parts: list[str] = []

        while self._buf:
            low = self._buf.lower()

            if not self._inside:
                i = low.find(self._start_l)
                if i == -1:
                    # Hold back a possible tag prefix split across chunks.
                    keep = self._partial_start_len(low)
                    out_parts.append(self._buf[: len(self._buf) - keep])
                    self._buf = self._buf[len(self._buf) - keep :]
                    break

                if i:
                    out_parts.append(self._buf[:i])

                self._buf = self._buf[i + len(self._start) :]
                self._inside = True
                continue

            # Inside block: drop everything until end tag.
            j = low.find(self._end_l)
            if j == -1:
                keep = max(0, len(self._end) - 1)
                if len(self._buf) > keep:
                    self._buf = self._buf[-keep:] if keep else ""
                break

            self._buf = self._buf[j + len(self._end) :]
            self._inside = False

        return "".join(out_parts)

    def flush(self) -> str:
        # An unterminated internal block is dropped entirely.
        if self._inside:
            self._buf = ""
            return ""
        out = self._buf
        self._buf = ""
        return out


class _StripperChain:
    def __init__(self, tags: tuple[str, ...] = ("thinking", "system", "STATE")) -> None:
        self._strippers = [_InternalBlockStripper(f"<{t}>", f"</{t}>") for t in tags]

    def feed(self, chunk: str) -> str:
        for s in self._strippers:
            chunk = s.feed(chunk)
        return chunk

    def flush(self) -> str:
        out = ""
        for s in self._strippers:
            out = s.feed(out) + s.flush()
        return out


@dataclass(slots=True)
class _PendingCall:
    index: int
    round_no: int = 0
    id: str | None = None
    name: str = ""
    arguments: str = ""

    def merge(self, delta: ToolCallDelta) -> None:
        # Providers may repeat the id on later fragments; keep the first.
        if delta.id and not self.id:
            self.id = delta.id
        if delta.name:
            self.name += delta.name
        if delta.arguments:
            self.arguments += delta.arguments

    @property
    def call_id(self) -> str:
        # Fallback ids must not collide across rounds of one exchange.
        return self.id or f"call_{self.round_no}_{self.index}"


@dataclass(slots=True)
class _Round:
    text: str
    calls: list[_PendingCall]
    finish_reason: str | None


async def _stream_round(
    state: AppState,
    *,
    system_prompt: str,
    messages: list[ChatMessage],
    tools: list[dict[str, Any]] | None,
    live: LiveMessage,
    round_no: int = 0,
) -> _Round:
    chain = _StripperChain()
    parts: list[str] = []
    pending: dict[int, _PendingCall] = {}
    finish_reason: str | None = None

    async for event in state.llm.stream(
        system_prompt=system_prompt, messages=messages, tools=tools
    ):
        if isinstance(event, TextDelta):
            clean = chain.feed(event.text)
            if clean:
                parts.append(clean)
                await live.append(clean)
        elif isinstance(event, ToolCallDelta):
            pending.setdefault(
                event.index, _PendingCall(index=event.index, round_no=round_no)
            ).merge(event)
        elif isinstance(event, FinishEvent):
            finish_reason = event.reason

    tail = chain.flush()
    if tail:
        parts.append(tail)
        await live.append(tail)

    calls: list[_PendingCall] = []
    for index in sorted(pending):
        call = pending[index]
        if not call.name.strip():
            logger.warning("Dropping tool call without a name (index=%d)", index)
            continue
        calls.append(call)

    return _Round(text="".join(parts), calls=calls, finish_reason=finish_reason)


def _build_system_prompt(state: AppState, user_id: str, now: float) -> str:
    tz = state.user_timezone(user_id)
    try:
        block = build_state_block(
            profile=state.store.get_user(user_id),
            tasks=state.store.list_open_tasks(user_id),
            routines=state.store.list_routines(user_id),
            now=now,
            tz=tz,
        )
    except Exception:
        logger.exception("State snapshot failed user=%s", user_id)
        block = ""
    return get_system_prompt(block)


async def run_exchange(
    state: AppState,
    *,
    user_id: str,
    prompt: str,
    tools_enabled: bool = True,
    record_prompt: bool = True,
) -> ExchangeResult:
    """
    Run one external invocation: stream, execute tools, loop, finalize.

    With record_prompt=False only the reply is written to history (scheduler pings,
    whose prompt is a synthetic instruction rather than something the user said).

    The caller must hold state.user_lock(user_id).
    """
    s = state.settings
    max_depth = max(0, int(getattr(s, "max_tool_depth", 5)))

    now = time.time()
    tz = state.user_timezone(user_id)
    system_prompt = _build_system_prompt(state, user_id, now)
    messages: list[ChatMessage] = [
        *recent_messages(state, user_id),
        {"role": "user", "content": prompt},
    ]

    live = LiveMessage(
        state.messenger,
        user_id,
        interval=float(getattr(s, "stream_refresh_interval", 0.5)),
        min_chars=int(getattr(s, "stream_refresh_min_chars", 100)),
    )

    results: list[ToolResult] = []
    executed: set[str] = set()
    depth = 0
    rounds = 0
    # Set when a whole round repeated already executed calls.
    force_text = False
    stop = StopReason.COMPLETED

    await live.start()
    try:
        while True:
            allow_tools = tools_enabled and depth < max_depth and not force_text
            declarations = state.tools.declarations() if allow_tools else None

            rnd = await _stream_round(
                state,
                system_prompt=system_prompt,
                messages=messages,
                tools=declarations,
                live=live,
                round_no=rounds,
            )
            rounds += 1
            if not rnd.calls:
                break

            if not allow_tools:
                # Calls emitted while tools are off are ignored.
                if tools_enabled and not force_text:
                    stop = StopReason.RECURSION_LIMIT
                    logger.warning(
                        "Tool depth limit reached user=%s depth=%d; dropping %d call(s)",
                        user_id,
                        depth,
                        len(rnd.calls),
                    )
                break

            fresh: list[_PendingCall] = []
            seen = set(executed)
            for c in rnd.calls:
                if c.call_id in seen:
                    continue
                seen.add(c.call_id)
                fresh.append(c)
            if len(fresh) != len(rnd.calls):
                logger.info("Skipping %d duplicate tool call(s)", len(rnd.calls) - len(fresh))
            if not fresh:
                # Nothing new to run; ask once more without tools for the answer.
                force_text = True
                continue

            messages.append(
                {
                    "role": "assistant",
                    "content": rnd.text or None,
                    "tool_calls": [
                        {
                            "id": c.call_id,
                            "type": "function",
                            "function": {"name": c.name, "arguments": c.arguments or "{}"},
                        }
                        for c in fresh
                    ],
                }
            )

            for call in fresh:
                executed.add(call.call_id)
                ctx = ToolContext(
                    store=state.store,
                    user_id=user_id,
                    now=time.time(),
                    tz=tz,
                    rng=state.rng,
                )
                result = await state.tools.execute(call.call_id, call.name, call.arguments, ctx)
                results.append(result)
                await live.append_marker(f"⚙ {call.name} {MARK_OK if result.ok else MARK_FAIL}")
                messages.append(
                    {"role": "tool", "tool_call_id": call.call_id, "content": result.content()}
                )

            depth += 1
            if tools_enabled and depth >= max_depth:
                stop = StopReason.RECURSION_LIMIT

        # Visible text of every round plus tool markers.
        reply = (await live.finish()).strip()

    except TransportError as e:
        logger.warning("Exchange aborted user=%s: %s", user_id, e)
        await live.fail(APOLOGY_TEXT)
        return ExchangeResult(
            text=APOLOGY_TEXT,
            stop_reason=StopReason.TRANSPORT_ERROR,
            rounds=rounds,
            tool_results=results,
        )
    finally:
        await live.close()

    append_turn(state, user_id, prompt if record_prompt else None, reply)

    logger.info(
        "Exchange done user=%s rounds=%d tools=%d stop=%s",
        user_id,
        rounds,
        len(results),
        stop.value,
    )
    return ExchangeResult(text=reply, stop_reason=stop, rounds=rounds, tool_results=results)


async def respond_to_user(
    state: AppState,
    user_id: str,
    text: str,
    *,
    tools_enabled: bool = True,
) -> ExchangeResult:
    """Entry point for inbound user messages. Serialized per user."""
    state.store.ensure_user(user_id)
    async with state.user_lock(user_id):
        return await run_exchange(
            state, user_id=user_id, prompt=text, tools_enabled=tools_enabled
        )


async def greet_if_new(state: AppState, user_id: str) -> ExchangeResult | None:
    """First contact: introduce the assistant and set up a daily check-in."""
    state.store.ensure_user(user_id)
    if state.store.list_history(user_id, limit=1):
        return None
    async with state.user_lock(user_id):
        return await run_exchange(state, user_id=user_id, prompt=GREETING_PROMPT)
