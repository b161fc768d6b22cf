# src/nudge_companion/core/history.py

"""
Conversation history glue between the store and the orchestration loop.

Only the outer exchange is persisted: the prompt that started it and the final
visible reply. Scheduler pings store the reply alone, so reminders the user ignored
show up as consecutive assistant messages (see compaction). Tool round-trips
live in the per-exchange message list and are dropped when the exchange ends.
"""

from __future__ import annotations

import logging

from .ports import ChatMessage
from .state import AppState

logger = logging.getLogger(__name__)


def recent_messages(state: AppState, user_id: str) -> list[ChatMessage]:
    limit = int(getattr(state.settings, "history_window", 50))
    rows = state.store.list_history(user_id, limit=limit)
    return [{"role": m.role, "content": m.content} for m in rows]


def append_turn(state: AppState, user_id: str, prompt: str | None, reply: str) -> None:
    """Persist one exchange. prompt=None records the reply alone (scheduler pings)."""
    max_msgs = int(getattr(state.settings, "history_max_messages", 200))
    if prompt is not None:
        state.store.append_history(user_id, "user", prompt, max_messages=max_msgs)
    if reply:
        state.store.append_history(user_id, "assistant", reply, max_messages=max_msgs)
    logger.debug("History appended user=%s reply_len=%d", user_id, len(reply))
