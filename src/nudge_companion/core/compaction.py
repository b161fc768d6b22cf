# src/nudge_companion/core/compaction.py

"""
History compaction.

Reminders the user ignored pile up as runs of consecutive assistant messages. Each
run of 2+ such messages is replaced by one assistant message holding a summary, so
the history window keeps room for actual conversation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo

from ..tasks.task_models import HistoryMessage
from .state import AppState

logger = logging.getLogger(__name__)

COMPACTION_PROMPT = """
You compress chat history of a reminder assistant.
Below are {count} consecutive assistant messages sent between {date_range} that the user
did not answer. Write a short summary (2-4 sentences) of what was reminded or said,
keeping task names and times. Plain text only.
""".strip()


@dataclass(slots=True)
class CompactableRun:
    messages: list[HistoryMessage]

    @property
    def ids(self) -> list[int]:
        return [m.id for m in self.messages]


def find_compactable_runs(history: list[HistoryMessage]) -> list[CompactableRun]:
    """Runs of 2+ consecutive assistant messages, oldest first."""
    runs: list[CompactableRun] = []
    current: list[HistoryMessage] = []

    for msg in history:
        if msg.role == "assistant":
            current.append(msg)
            continue
        if len(current) >= 2:
            runs.append(CompactableRun(messages=current))
        current = []

    if len(current) >= 2:
        runs.append(CompactableRun(messages=current))
    return runs


def _fmt(ts: float, tz: tzinfo) -> str:
    return datetime.fromtimestamp(ts, tz=tz).strftime("%Y-%m-%d %H:%M")


async def _summarize(state: AppState, run: CompactableRun, tz: tzinfo) -> tuple[str, str]:
    first, last = run.messages[0], run.messages[-1]
    date_range = f"{_fmt(first.created_at, tz)} - {_fmt(last.created_at, tz)}"
    body = "\n\n---\n\n".join(f"[{_fmt(m.created_at, tz)}] {m.content}" for m in run.messages)
    summary = await state.llm.complete(
        system_prompt=COMPACTION_PROMPT.format(count=len(run.messages), date_range=date_range),
        messages=[{"role": "user", "content": body}],
    )
    return date_range, summary.strip()


async def compact_user_history(state: AppState, user_id: str, *, budget: int) -> int:
    """Compact up to `budget` runs for one user, newest run first. Returns count done."""
    if budget <= 0:
        return 0

    runs = find_compactable_runs(state.store.list_history(user_id))
    if not runs:
        return 0

    tz = state.user_timezone(user_id)
    done = 0
    for run in reversed(runs):
        if done >= budget:
            break
        try:
            date_range, summary = await _summarize(state, run, tz)
            if not summary:
                logger.info("Compaction produced no summary user=%s; skipped", user_id)
                continue
            content = (
                f"<system>Compacted summary of {len(run.messages)} messages from "
                f"{date_range}</system>\n{summary}"
            )
            state.store.replace_history_run(user_id, run.ids, content)
            done += 1
        except Exception:
            logger.exception("Compaction failed user=%s run=%s", user_id, run.ids)

    if done:
        logger.info("Compacted %d run(s) user=%s", done, user_id)
    return done


async def run_history_compaction(state: AppState) -> int:
    """One pass over all users, bounded by compaction_max_per_run overall."""
    limit = int(getattr(state.settings, "compaction_max_per_run", 5))
    total = 0
    for user_id in state.store.list_user_ids():
        if total >= limit:
            logger.info("Compaction limit reached (%d); stopping", limit)
            break
        async with state.user_lock(user_id):
            total += await compact_user_history(state, user_id, budget=limit - total)
    return total


async def run_compaction_loop(state: AppState) -> None:
    """Periodic compaction. Cancel the task to stop."""
    minutes = max(1, int(getattr(state.settings, "compaction_interval_minutes", 360)))
    while True:
        await asyncio.sleep(minutes * 60.0)
        try:
            await run_history_compaction(state)
        except Exception:
            logger.exception("History compaction pass failed")
