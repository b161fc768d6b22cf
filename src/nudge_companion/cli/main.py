# src/nudge_companion/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs on one asyncio loop:
- the task scheduler (background task),
- periodic history compaction (background task),
- the console REPL (optional; otherwise waits for a signal).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import ConsoleMessenger, run_console_loop
from ..core.compaction import run_compaction_loop
from ..logging_setup import setup_logging
from ..tasks.task_scheduler import TaskScheduler, run_scheduler

logger = logging.getLogger(__name__)


async def _run(settings) -> None:
    messenger = ConsoleMessenger(app_name=str(getattr(settings, "app_name", "nudge")))
    state = create_initial_state(settings=settings, messenger=messenger)

    background = [
        asyncio.create_task(run_scheduler(TaskScheduler(state)), name="scheduler"),
        asyncio.create_task(run_compaction_loop(state), name="compaction"),
    ]

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Some platforms do not support add_signal_handler.
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)

    try:
        if settings.console_enabled:
            console = asyncio.create_task(run_console_loop(state, settings.console_user_id))
            waiter = asyncio.create_task(stop.wait())
            await asyncio.wait({console, waiter}, return_when=asyncio.FIRST_COMPLETED)
            waiter.cancel()
            console.cancel()
        else:
            logger.info("Console disabled. Running the scheduler only. Press Ctrl+C to stop.")
            await stop.wait()
    finally:
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)
        # TaskStore uses short-lived sqlite connections per call; close() is a no-op hook.
        state.store.close()


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/nudge")
    setup_logging(log_dir=log_dir, console_level=console_level)

    # keep noisy libs readable
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

    logger.info("Starting %s...", getattr(settings, "app_name", "nudge"))

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_run(settings))

    logger.info("Bye.")


if __name__ == "__main__":
    main()
