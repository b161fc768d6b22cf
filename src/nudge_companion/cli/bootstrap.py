# src/nudge_companion/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (LLM/store/tools/messenger).
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import CompletionClient, Messenger
from ..core.state import AppState
from ..llm.client import OpenAICompletionClient, friendly_llm_error_message
from ..llm.offline import OfflineCompletionClient
from ..tasks.task_store import TaskStore
from ..tools import build_registry

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, messenger: Messenger | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    llm_client: CompletionClient
    try:
        llm_client = OpenAICompletionClient(settings)
    except RuntimeError as e:
        # Fallback for demos / local runs without external services.
        logger.warning("%s Using offline mode.", friendly_llm_error_message(e))
        llm_client = OfflineCompletionClient()

    return AppState(
        settings=settings,
        llm=llm_client,
        store=TaskStore(settings.db_path),
        tools=build_registry(),
        messenger=messenger,
    )
