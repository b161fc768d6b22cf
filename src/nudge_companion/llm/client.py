# src/nudge_companion/llm/client.py

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from ..core.ports import ChatMessage, FinishEvent, StreamEvent, TextDelta, ToolCallDelta
from ..errors import TransportError

logger = logging.getLogger(__name__)


def _is_auth_error(exc: Exception) -> bool:
    return exc.__class__.__name__ in {
        "AuthenticationError",
        "PermissionDeniedError",
        "UnauthorizedError",
    }


def _is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return exc.__class__.__name__ in {"RateLimitError", "TooManyRequestsError"}


def _is_connection_error(exc: Exception) -> bool:
    return exc.__class__.__name__ in {
        "APIConnectionError",
        "APITimeoutError",
        "Timeout",
        "ConnectTimeout",
        "ReadTimeout",
        "WriteTimeout",
    }


def _is_not_found_error(exc: Exception) -> bool:
    # OpenAI-compatible SDK uses NotFoundError for HTTP 404 (unknown model).
    return exc.__class__.__name__ in {"NotFoundError"}


def _classify(exc: Exception, model: str) -> TransportError:
    """Map SDK/network exceptions onto one TransportError with a readable message."""
    if _is_auth_error(exc):
        return TransportError("LLM authentication failed. Check your API key (NUDGE_LLM_API_KEY).")
    if _is_not_found_error(exc):
        return TransportError(f"LLM model not available: {model}")
    if _is_rate_limit_error(exc):
        return TransportError("LLM is rate-limited. Try again later.")
    if _is_connection_error(exc):
        return TransportError("LLM network/timeout error. Try again later.")
    return TransportError(f"LLM error ({exc.__class__.__name__}).")


def friendly_llm_error_message(err: Exception) -> str:
    msg = str(err).strip() or "LLM error."
    if "LLM API key is not set" in msg:
        return "LLM is not configured (missing API key). Set NUDGE_LLM_API_KEY in .env (see .env.example)."
    if "LLM base URL is not set" in msg:
        return "LLM is not configured (missing base URL). Set NUDGE_LLM_BASE_URL in .env (see .env.example)."
    if "LLM model is not set" in msg:
        return "LLM is not configured (no model). Set NUDGE_LLM_MODEL in .env (see .env.example)."
    return msg


class OpenAICompletionClient:
    """
    CompletionClient backed by the OpenAI-compatible chat completions API.

    IMPORTANT:
    - No automatic retries (max_retries=0): a failed pass degrades to an apology,
      it is never replayed behind the user's back.
    - Every SDK/network failure is re-raised as TransportError.
    """

    def __init__(self, settings: Any, *, client: AsyncOpenAI | None = None) -> None:
        api_key = getattr(settings, "llm_api_key", None)
        base_url = str(getattr(settings, "llm_base_url", "") or "")
        self._model = str(getattr(settings, "llm_model", "") or "").strip()
        self._max_tokens = int(getattr(settings, "llm_max_tokens", 1000))
        self._headers: dict[str, str] = dict(getattr(settings, "extra_headers", {}) or {})

        if client is not None:
            self._client = client
            return

        if not api_key or not str(api_key).strip():
            raise RuntimeError("LLM API key is not set. Set NUDGE_LLM_API_KEY in your .env.")
        if not base_url.strip():
            raise RuntimeError("LLM base URL is not set. Set NUDGE_LLM_BASE_URL in your .env.")
        if not self._model:
            raise RuntimeError("LLM model is not set. Set NUDGE_LLM_MODEL in your .env.")

        connect_s = float(getattr(settings, "llm_connect_timeout", 5.0))
        read_s = float(getattr(settings, "llm_read_timeout", 60.0))

        self._client = AsyncOpenAI(
            base_url=base_url,
            api_key=str(api_key),
            timeout=httpx.Timeout(connect=connect_s, read=read_s, write=10.0, pool=connect_s),
            max_retries=0,
        )

    @property
    def model(self) -> str:
        return self._model

    async def stream(
        self,
        *,
        system_prompt: str,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]] | None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream one completion round as TextDelta / ToolCallDelta / FinishEvent.

        Tool-call fragments are passed through as-is; assembling them is the
        orchestration loop's job.
        """
        kwargs: dict[str, Any] = {
            "model": self._model,
            "stream": True,
            "max_tokens": self._max_tokens,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "extra_headers": self._headers or None,
        }
        if tools:
            kwargs["tools"] = tools

        logger.debug(
            "LLM: stream model=%s messages=%d tools=%d",
            self._model,
            len(messages),
            len(tools or []),
        )
        t0 = time.monotonic()
        first = True

        try:
            stream = await self._client.chat.completions.create(**kwargs)
        except Exception as e:
            raise _classify(e, self._model) from e

        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice0 = chunk.choices[0]
                delta = choice0.delta

                if delta is not None:
                    if delta.content:
                        if first:
                            logger.info("LLM: first token (%.2fs)", time.monotonic() - t0)
                            first = False
                        yield TextDelta(delta.content)

                    for tc in delta.tool_calls or []:
                        fn = tc.function
                        yield ToolCallDelta(
                            index=int(tc.index or 0),
                            id=tc.id,
                            name=fn.name if fn is not None else None,
                            arguments=fn.arguments if fn is not None else None,
                        )

                if choice0.finish_reason:
                    yield FinishEvent(choice0.finish_reason)
        except TransportError:
            raise
        except Exception as e:
            raise _classify(e, self._model) from e
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                try:
                    await close()
                except Exception:
                    logger.debug("LLM: stream close failed.", exc_info=True)

    async def complete(self, *, system_prompt: str, messages: list[ChatMessage]) -> str:
        """Single non-streaming completion without tools (summaries)."""
        try:
            resp = await self._client.chat.completions.create(
                model=self._model,
                max_tokens=self._max_tokens,
                messages=[{"role": "system", "content": system_prompt}, *messages],
                extra_headers=self._headers or None,
            )
        except Exception as e:
            raise _classify(e, self._model) from e

        if not resp.choices:
            return ""
        return (resp.choices[0].message.content or "").strip()
