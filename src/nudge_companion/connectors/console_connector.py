# src/nudge_companion/connectors/console_connector.py

from __future__ import annotations

import asyncio
import itertools
import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.chat import greet_if_new, respond_to_user
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class ConsoleMessenger:
    """
    Messenger that prints to stdout.

    A terminal cannot edit printed lines reliably, so an "edit" prints only the part
    of the new text that extends what was already shown. Anything else (e.g. the
    apology replacing a partial answer) is printed as a fresh line.
    """

    def __init__(self, app_name: str = "nudge") -> None:
        self._app_name = app_name
        self._ids = itertools.count(1)
        self._shown: dict[str, str] = {}

    async def send_text(self, *, user_id: str, text: str) -> str | None:
        message_id = str(next(self._ids))
        self._shown[message_id] = text
        sys.stdout.write(f"\n[{_ts_local()}] <<< {self._app_name}: {text}")
        sys.stdout.flush()
        return message_id

    async def edit_text(self, *, user_id: str, message_id: str, text: str) -> None:
        shown = self._shown.get(message_id, "")
        if text.startswith(shown):
            sys.stdout.write(text[len(shown) :])
        else:
            sys.stdout.write(f"\n[{_ts_local()}] <<< {self._app_name}: {text}")
        self._shown[message_id] = text
        sys.stdout.flush()

    async def send_typing(self, *, user_id: str) -> None:
        logger.debug("typing... user=%s", user_id)


async def run_console_loop(state: AppState, user_id: str) -> None:
    logger.info("Console connector started (user_id=%s).", user_id)
    _print_ts("[CONSOLE] Type your messages. Use /help for commands. Use /exit to quit.\n")

    try:
        await greet_if_new(state, user_id)
    except Exception:
        logger.exception("Greeting failed.")
    print()

    while True:
        try:
            user_input = (await asyncio.to_thread(input, ">>> You: ")).strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            cmd_response = command_registry.handle(state, user_input, user_id)
        except Exception:
            logger.exception("Command handler crashed.")
            cmd_response = "Internal error while handling a command."

        if cmd_response is not None:
            _print_ts(cmd_response)
            continue

        try:
            result = await respond_to_user(state, user_id, user_input)
        except Exception:
            logger.exception("Console chat handler crashed.")
            _print_ts("Internal error while generating a reply.")
            continue

        if not result.text:
            _print_ts("[LLM] No output (model produced no content).")
        print("\n")

    logger.info("Console connector finished.")
