# src/nudge_companion/core/live_message.py

"""
Live (partial) message publisher.

One LiveMessage backs one external invocation of the orchestration loop. Text from
every round is appended to a shared buffer; a background refresher pushes the buffer
to the transport every `interval` seconds, but only once it grew by at least
`min_chars` since the last push. Appending never waits on the network: the lock
guards the buffer only, transport calls happen outside it.

Transports that cannot edit (send_text returns None) receive each push as a new
message holding only the text added since the previous push.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from .ports import Messenger

logger = logging.getLogger(__name__)


class LiveMessage:
    def __init__(
        self,
        messenger: Messenger | None,
        user_id: str,
        *,
        interval: float = 0.5,
        min_chars: int = 100,
    ) -> None:
        self._messenger = messenger
        self._user_id = user_id
        self._interval = max(0.05, float(interval))
        self._min_chars = max(1, int(min_chars))

        self._buf = ""
        self._lock = asyncio.Lock()
        # Serializes transport calls (refresher vs. final flush).
        self._push_lock = asyncio.Lock()
        self._pushed_len = 0
        self._message_id: str | None = None
        self._refresher: asyncio.Task[None] | None = None

    @property
    def message_id(self) -> str | None:
        return self._message_id

    @property
    def pushed(self) -> bool:
        return self._pushed_len > 0

    async def start(self) -> None:
        if self._messenger is None:
            return
        try:
            await self._messenger.send_typing(user_id=self._user_id)
        except Exception:
            logger.debug("send_typing failed user=%s", self._user_id, exc_info=True)
        self._refresher = asyncio.create_task(self._refresh_loop())

    async def append(self, text: str) -> None:
        if not text:
            return
        async with self._lock:
            self._buf += text

    async def append_marker(self, marker: str) -> None:
        async with self._lock:
            if self._buf and not self._buf.endswith("\n"):
                self._buf += "\n"
            self._buf += marker + "\n"

    async def text(self) -> str:
        async with self._lock:
            return self._buf

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._push(force=False)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Live message refresh failed user=%s", self._user_id)

    async def _stop_refresher(self) -> None:
        task, self._refresher = self._refresher, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _push(self, *, force: bool) -> None:
        if self._messenger is None:
            return
        async with self._push_lock:
            async with self._lock:
                snapshot = self._buf
            grown = len(snapshot) - self._pushed_len
            if grown <= 0 or (not force and grown < self._min_chars):
                return
            if not snapshot.strip():
                return

            if self._message_id is not None:
                await self._messenger.edit_text(
                    user_id=self._user_id, message_id=self._message_id, text=snapshot
                )
            elif self._pushed_len == 0:
                self._message_id = await self._messenger.send_text(
                    user_id=self._user_id, text=snapshot
                )
            else:
                await self._messenger.send_text(
                    user_id=self._user_id, text=snapshot[self._pushed_len :]
                )
            self._pushed_len = len(snapshot)

    async def finish(self) -> str:
        """Stop refreshing, push whatever is left, return the full buffer."""
        await self._stop_refresher()
        await self._push(force=True)
        return await self.text()

    async def fail(self, apology: str) -> None:
        """Replace the partial output (or send fresh) with a static apology."""
        await self._stop_refresher()
        if self._messenger is None:
            return
        try:
            if self._message_id is not None:
                await self._messenger.edit_text(
                    user_id=self._user_id, message_id=self._message_id, text=apology
                )
            else:
                await self._messenger.send_text(user_id=self._user_id, text=apology)
        except Exception:
            logger.exception("Failed to deliver apology user=%s", self._user_id)

    async def close(self) -> None:
        await self._stop_refresher()
