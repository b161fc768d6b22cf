# src/nudge_companion/llm/offline.py

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from ..core.ports import ChatMessage, FinishEvent, StreamEvent, TextDelta


class OfflineCompletionClient:
    """
    Offline deterministic client used for demos when no external API is configured.

    Behavior:
    - Never calls tools.
    - Summarizer prompts -> returns the dialog's last assistant line.
    - Normal chat -> returns a friendly offline demo response
    """

    async def stream(
        self,
        *,
        system_prompt: str,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]] | None,
    ) -> AsyncIterator[StreamEvent]:
        user_text = ""
        for m in reversed(messages):
            if m.get("role") == "user":
                user_text = str(m.get("content") or "")
                break

        yield TextDelta(
            "Offline demo mode: no external LLM is configured.\n"
            "Set NUDGE_LLM_API_KEY (and NUDGE_LLM_MODEL) to enable real responses.\n\n"
            f"You said: {user_text}"
        )
        yield FinishEvent("stop")

    async def complete(self, *, system_prompt: str, messages: list[ChatMessage]) -> str:
        for m in reversed(messages):
            if m.get("role") == "assistant":
                return str(m.get("content") or "")
        return ""
