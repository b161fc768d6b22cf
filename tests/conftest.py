# tests/conftest.py

from __future__ import annotations

import random
import time
from pathlib import Path
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from nudge_companion.core.state import AppState
from nudge_companion.tasks.task_store import TaskStore
from nudge_companion.tools import build_registry
from nudge_companion.tools.registry import ToolContext

from .fakes import FakeCompletionClient, FakeMessenger


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="nudge",
        llm_model="fake-model",
        db_path=tmp_path / "nudge.sqlite3",
        default_timezone="UTC",
        # Scheduler
        scheduler_interval_seconds=60.0,
        task_retention=100,
        # Orchestration loop
        max_tool_depth=5,
        stream_refresh_interval=0.01,
        stream_refresh_min_chars=100,
        # History
        history_window=50,
        history_max_messages=200,
        compaction_interval_minutes=360,
        compaction_max_per_run=5,
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.db_path)


@pytest.fixture()
def llm() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture()
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    store: TaskStore,
    llm: FakeCompletionClient,
    messenger: FakeMessenger,
) -> AppState:
    """
    AppState wired with deterministic fakes.

    NOTE: We keep a real SQLite TaskStore here because its correctness is part of
    what we want to test.
    """
    return AppState(
        settings=settings,
        llm=llm,
        store=store,
        tools=build_registry(),
        messenger=messenger,
        rng=random.Random(1234),
    )


@pytest.fixture()
def ctx(store: TaskStore) -> ToolContext:
    store.ensure_user("u1")
    return ToolContext(
        store=store,
        user_id="u1",
        now=time.time(),
        tz=ZoneInfo("UTC"),
        rng=random.Random(42),
    )
