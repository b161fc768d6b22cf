# src/nudge_companion/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the messaging transport, the store and the completion provider swappable
and makes testing easier.
"""

from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from typing import Any, Protocol

ChatMessage = dict[str, Any]
# OpenAI-style chat messages: {"role": "...", "content": "...", ...}.
# Assistant messages may carry "tool_calls"; tool messages carry "tool_call_id".


@dataclass(slots=True, frozen=True)
class TextDelta:
    text: str


@dataclass(slots=True, frozen=True)
class ToolCallDelta:
    """
    A fragment of a tool call as streamed by the provider.

    Fragments sharing an index belong to the same call; name/arguments arrive
    in pieces and must be concatenated.
    """

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(slots=True, frozen=True)
class FinishEvent:
    reason: str | None = None


StreamEvent = TextDelta | ToolCallDelta | FinishEvent


class CompletionClient(Protocol):
    """Streaming chat completion client (OpenAI-compatible)."""

    def stream(
        self,
        *,
        system_prompt: str,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]] | None,
    ) -> AsyncIterator[StreamEvent]: ...

    async def complete(self, *, system_prompt: str, messages: list[ChatMessage]) -> str: ...


class Messenger(Protocol):
    """
    Connector-side port: how the core talks to the user.

    send_text returns a transport message id (or None if the transport cannot edit).
    """

    async def send_text(self, *, user_id: str, text: str) -> str | None: ...

    async def edit_text(self, *, user_id: str, message_id: str, text: str) -> None: ...

    async def send_typing(self, *, user_id: str) -> None: ...


class UserRepo(Protocol):
    # Profile
    def ensure_user(self, user_id: str) -> Any: ...
    def get_user(self, user_id: str) -> Any | None: ...
    def list_user_ids(self) -> list[str]: ...
    def set_goal(self, user_id: str, goal: str | None) -> None: ...
    def set_timezone(self, user_id: str, timezone: str | None) -> None: ...
    def set_memory(self, user_id: str, key: str, value: str) -> None: ...
    def delete_memory(self, user_id: str, key: str) -> bool: ...

    # Routines
    def add_routine(self, user_id: str, **fields: Any) -> Any: ...
    def get_routine(self, user_id: str, routine_id: str) -> Any | None: ...
    def list_routines(self, user_id: str, *, active_only: bool = False) -> list[Any]: ...
    def update_routine(self, user_id: str, routine_id: str, **fields: Any) -> Any | None: ...
    def delete_routine(self, user_id: str, routine_id: str) -> bool: ...
    def bump_routine_stats(
        self, user_id: str, routine_id: str, *, completed: int = 0, failed: int = 0
    ) -> bool: ...

    # Tasks
    def add_task(self, user_id: str, **fields: Any) -> Any: ...
    def get_task(self, user_id: str, task_id: str) -> Any | None: ...
    def list_tasks(
        self,
        user_id: str,
        *,
        status: Any | None = None,
        routine_id: str | None = None,
        ids: Iterable[str] | None = None,
    ) -> list[Any]: ...
    def list_open_tasks(self, user_id: str) -> list[Any]: ...
    def list_due_tasks(self, user_id: str, *, now_ts: float) -> list[Any]: ...
    def update_task(self, user_id: str, task_id: str, **fields: Any) -> Any | None: ...
    def delete_task(self, user_id: str, task_id: str) -> bool: ...
    def prune_finished_tasks(self, user_id: str, keep: int) -> int: ...

    # History
    def append_history(self, user_id: str, role: str, content: str, *, max_messages: int) -> None: ...
    def list_history(self, user_id: str, *, limit: int | None = None) -> list[Any]: ...
    def replace_history_run(self, user_id: str, message_ids: list[int], content: str) -> None: ...
