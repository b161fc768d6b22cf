# src/nudge_companion/core/state.py

from __future__ import annotations

"""
Application state container.

AppState is the dependency injection root for the core:
- settings: runtime configuration
- llm: completion client implementation (OpenAI-compatible / offline)
- store: per-user record store (profile, routines, tasks, history)
- tools: tool registry exposed to the agent
- messenger: outbound transport (console, tests)
"""

import asyncio
import random
from dataclasses import dataclass, field
from datetime import tzinfo
from typing import Any

from ..tasks.recurrence import resolve_timezone
from ..tools.registry import ToolRegistry
from .ports import CompletionClient, Messenger, UserRepo


@dataclass
class AppState:
    settings: Any
    llm: CompletionClient
    store: UserRepo
    tools: ToolRegistry
    messenger: Messenger | None = None

    # Injected so cadence jitter is reproducible in tests.
    rng: random.Random = field(default_factory=random.Random)

    _user_locks: dict[str, asyncio.Lock] = field(default_factory=dict, repr=False)

    def user_lock(self, user_id: str) -> asyncio.Lock:
        """One lock per user: live replies and scheduler passes never interleave."""
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._user_locks[user_id] = lock
        return lock

    def user_timezone(self, user_id: str) -> tzinfo:
        default = str(getattr(self.settings, "default_timezone", "UTC"))
        profile = self.store.get_user(user_id)
        return resolve_timezone(profile.timezone if profile else None, default)
