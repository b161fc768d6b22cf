# src/nudge_companion/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Every tunable of the scheduler and the orchestration loop lives here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

ENV_PREFIX = "NUDGE"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


# Real environment variables win over .env.
load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Connector flags ----
    console_enabled: bool
    console_user_id: str

    # ---- LLM (OpenAI-compatible) ----
    llm_api_key: Optional[str]
    llm_base_url: str
    llm_model: str
    llm_max_tokens: int
    llm_connect_timeout: float
    llm_read_timeout: float
    extra_headers: Dict[str, str]

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path

    # ---- Time ----
    default_timezone: str

    # ---- Scheduler ----
    scheduler_interval_seconds: float
    task_retention: int

    # ---- Orchestration loop ----
    max_tool_depth: int
    stream_refresh_interval: float
    stream_refresh_min_chars: int

    # ---- History ----
    history_window: int
    history_max_messages: int
    compaction_interval_minutes: int
    compaction_max_per_run: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _first_env(_k("APP_NAME"), default="nudge") or "nudge"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)
        console_user_id = _env(_k("CONSOLE_USER_ID"), "console")

        llm_api_key = _first_env(_k("LLM_API_KEY"), "OPENAI_API_KEY", default=None)
        llm_base_url = _env(_k("LLM_BASE_URL"), "https://api.openai.com/v1")
        llm_model = _env(_k("LLM_MODEL"), "gpt-4o-mini")
        llm_max_tokens = _env_int(_k("LLM_MAX_TOKENS"), 1000)
        llm_connect_timeout = _env_float(_k("LLM_CONNECT_TIMEOUT_SECONDS"), 5.0)
        llm_read_timeout = _env_float(_k("LLM_READ_TIMEOUT_SECONDS"), 60.0)

        http_referer = _env(_k("HTTP_REFERER"), "")
        extra_headers: Dict[str, str] = {}
        if http_referer.strip():
            # OpenRouter-style metadata headers; harmless for other providers.
            extra_headers["HTTP-Referer"] = http_referer.strip()
            extra_headers["X-Title"] = _env(_k("APP_TITLE"), app_name)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/nudge"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "nudge.sqlite3")

        default_timezone = _env(_k("DEFAULT_TIMEZONE"), "Europe/Warsaw")

        scheduler_interval_seconds = _env_float(_k("SCHEDULER_INTERVAL_SECONDS"), 60.0)
        task_retention = _env_int(_k("TASK_RETENTION"), 100)

        max_tool_depth = _env_int(_k("MAX_TOOL_DEPTH"), 5)
        stream_refresh_interval = _env_float(_k("STREAM_REFRESH_INTERVAL_SECONDS"), 0.5)
        stream_refresh_min_chars = _env_int(_k("STREAM_REFRESH_MIN_CHARS"), 100)

        history_window = _env_int(_k("HISTORY_WINDOW"), 50)
        history_max_messages = _env_int(_k("HISTORY_MAX_MESSAGES"), 200)
        compaction_interval_minutes = _env_int(_k("COMPACTION_INTERVAL_MINUTES"), 360)
        compaction_max_per_run = _env_int(_k("COMPACTION_MAX_PER_RUN"), 5)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            console_user_id=console_user_id,
            llm_api_key=llm_api_key,
            llm_base_url=llm_base_url,
            llm_model=llm_model,
            llm_max_tokens=llm_max_tokens,
            llm_connect_timeout=llm_connect_timeout,
            llm_read_timeout=llm_read_timeout,
            extra_headers=extra_headers,
            data_dir=data_dir,
            db_path=db_path,
            default_timezone=default_timezone,
            scheduler_interval_seconds=scheduler_interval_seconds,
            task_retention=task_retention,
            max_tool_depth=max_tool_depth,
            stream_refresh_interval=stream_refresh_interval,
            stream_refresh_min_chars=stream_refresh_min_chars,
            history_window=history_window,
            history_max_messages=history_max_messages,
            compaction_interval_minutes=compaction_interval_minutes,
            compaction_max_per_run=compaction_max_per_run,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
