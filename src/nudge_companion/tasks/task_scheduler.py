# src/nudge_companion/tasks/task_scheduler.py

from __future__ import annotations

"""
Task scheduler.

A polling loop that, once per interval and for every user:
- evaluates tasks whose ping_at has arrived (pending and needs_replanning),
- fires active routines whose cron occurrence fell into the last interval,
- prunes finished tasks beyond the retention ceiling.

Delivery goes through the orchestration loop, which owns the messenger. Each user is
evaluated under that user's lock; different users run concurrently.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ..core.chat import run_exchange
from ..core.persona import task_notice_prompt, task_triggered_prompt
from ..core.state import AppState
from ..tools.registry import ToolName
from .recurrence import fires_in_window
from .task_models import Task, TaskStatus, check_transition

logger = logging.getLogger(__name__)

_RESOLVING_TOOLS = (
    ToolName.RESCHEDULE_TASK.value,
    ToolName.MARK_TASK_FAILED.value,
    ToolName.MARK_TASK_COMPLETE.value,
    ToolName.UPDATE_TASK.value,
    ToolName.DELETE_TASK.value,
)


@dataclass(slots=True)
class TickReport:
    """What one tick did; handy for logs and tests."""

    fired: list[str] = field(default_factory=list)  # new task ids
    notified: list[str] = field(default_factory=list)  # completed without action
    prompted: list[str] = field(default_factory=list)  # sent to the agent for replanning
    unresolved: list[str] = field(default_factory=list)  # still needs_replanning after the agent
    errors: int = 0

    def merge(self, other: TickReport) -> None:
        self.fired.extend(other.fired)
        self.notified.extend(other.notified)
        self.prompted.extend(other.prompted)
        self.unresolved.extend(other.unresolved)
        self.errors += other.errors


class TaskScheduler:
    def __init__(self, state: AppState) -> None:
        self._state = state
        # (routine id, firing instant) pairs already materialized in this process.
        self._fired: set[tuple[str, float]] = set()

    @property
    def interval_seconds(self) -> float:
        return max(1.0, float(getattr(self._state.settings, "scheduler_interval_seconds", 60.0)))

    async def tick(self, now: float | None = None) -> TickReport:
        now_ts = time.time() if now is None else float(now)
        report = TickReport()

        try:
            user_ids = self._state.store.list_user_ids()
        except Exception:
            logger.exception("list_user_ids failed")
            report.errors += 1
            return report

        results = await asyncio.gather(
            *(self._tick_user(uid, now_ts) for uid in user_ids),
            return_exceptions=True,
        )
        for uid, res in zip(user_ids, results, strict=True):
            if isinstance(res, BaseException):
                logger.error("Tick failed user=%s", uid, exc_info=res)
                report.errors += 1
            else:
                report.merge(res)

        self._forget_old_firings(now_ts)

        if report.fired or report.notified or report.prompted or report.errors:
            logger.info(
                "Tick: users=%d fired=%d notified=%d prompted=%d unresolved=%d errors=%d",
                len(user_ids),
                len(report.fired),
                len(report.notified),
                len(report.prompted),
                len(report.unresolved),
                report.errors,
            )
        return report

    async def _tick_user(self, user_id: str, now: float) -> TickReport:
        report = TickReport()
        state = self._state

        async with state.user_lock(user_id):
            # Due tasks first: a task fired on this tick is evaluated on the next one.
            try:
                due = state.store.list_due_tasks(user_id, now_ts=now)
            except Exception:
                logger.exception("list_due_tasks failed user=%s", user_id)
                report.errors += 1
                due = []

            for task in due:
                try:
                    await self._evaluate_task(task, now, report)
                except Exception:
                    logger.exception("Task evaluation failed task=%s user=%s", task.id, user_id)
                    report.errors += 1

            self._fire_routines(user_id, now, report)

            try:
                keep = int(getattr(state.settings, "task_retention", 100))
                state.store.prune_finished_tasks(user_id, keep)
            except Exception:
                logger.exception("prune_finished_tasks failed user=%s", user_id)
                report.errors += 1

        return report

    def _fire_routines(self, user_id: str, now: float, report: TickReport) -> None:
        state = self._state
        try:
            routines = state.store.list_routines(user_id, active_only=True)
        except Exception:
            logger.exception("list_routines failed user=%s", user_id)
            report.errors += 1
            return
        if not routines:
            return

        tz = state.user_timezone(user_id)
        now_dt = datetime.fromtimestamp(now, tz=tz)
        window = timedelta(seconds=self.interval_seconds)

        for routine in routines:
            try:
                fired_at = fires_in_window(routine.cron, now_dt, window)
                if fired_at is None:
                    continue
                key = (routine.id, fired_at.timestamp())
                if key in self._fired:
                    continue
                self._fired.add(key)

                task = state.store.add_task(
                    user_id,
                    name=routine.name,
                    ping_at=now,
                    routine_id=routine.id,
                    requires_action=routine.requires_action,
                    annoyance=routine.default_annoyance,
                )
                report.fired.append(task.id)
                logger.info(
                    "Routine fired id=%s user=%s at=%s -> task=%s",
                    routine.id,
                    user_id,
                    fired_at.isoformat(),
                    task.id,
                )
            except Exception:
                logger.exception("Routine firing failed routine=%s user=%s", routine.id, user_id)
                report.errors += 1

    async def _evaluate_task(self, task: Task, now: float, report: TickReport) -> None:
        state = self._state
        user_id = task.user_id
        tz = state.user_timezone(user_id)

        if not task.requires_action:
            check_transition(task.status, TaskStatus.COMPLETED)
            state.store.update_task(user_id, task.id, status=TaskStatus.COMPLETED)
            if task.routine_id:
                state.store.bump_routine_stats(user_id, task.routine_id, completed=1)
            report.notified.append(task.id)
            await run_exchange(
                state,
                user_id=user_id,
                prompt=task_notice_prompt(task),
                tools_enabled=False,
                record_prompt=False,
            )
            return

        if task.status is TaskStatus.PENDING:
            check_transition(task.status, TaskStatus.NEEDS_REPLANNING)
            state.store.update_task(user_id, task.id, status=TaskStatus.NEEDS_REPLANNING)

        report.prompted.append(task.id)
        result = await run_exchange(
            state,
            user_id=user_id,
            prompt=task_triggered_prompt(task, tz),
            tools_enabled=True,
            record_prompt=False,
        )

        after = state.store.get_task(user_id, task.id)
        if after is not None and after.status is TaskStatus.NEEDS_REPLANNING:
            report.unresolved.append(task.id)
            logger.info(
                "Task %s still needs_replanning (agent resolved=%s, stop=%s); re-prompting next tick",
                task.id,
                any(result.called(name) for name in _RESOLVING_TOOLS),
                result.stop_reason.value,
            )

    def _forget_old_firings(self, now: float) -> None:
        # A firing instant older than two windows can no longer match.
        horizon = now - 2 * self.interval_seconds
        self._fired = {k for k in self._fired if k[1] > horizon}


async def run_scheduler(scheduler: TaskScheduler) -> None:
    """
    Tick aligned to the interval boundary (real-clock minutes by default).

    To stop the scheduler, cancel the coroutine/task.
    """
    interval = scheduler.interval_seconds
    logger.info("Scheduler started (interval=%.0fs)", interval)
    while True:
        now = time.time()
        await asyncio.sleep(interval - (now % interval))
        try:
            await scheduler.tick()
        except Exception:
            logger.exception("Scheduler tick crashed")
