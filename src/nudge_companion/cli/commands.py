# src/nudge_companion/cli/commands.py

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from ..core.state import AppState
from ..tasks.recurrence import describe_cron
from ..tasks.task_models import TaskStatus

CommandHandler = Callable[[AppState, list[str], str], str]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /tasks, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: AppState, line: str, user_id: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        state.store.ensure_user(user_id)
        return handler(state, args, user_id)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        lines.append("Anything else is a message to the assistant; it creates tasks and routines itself.")
        return "\n".join(lines)


registry = CommandRegistry()


def _fmt_ts(state: AppState, user_id: str, ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts, tz=state.user_timezone(user_id)).strftime("%Y-%m-%d %H:%M")


def cmd_help(state: AppState, args: list[str], user_id: str) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str], user_id: str) -> str:
    s = state.settings
    model = str(getattr(s, "llm_model", "?"))
    tz = state.user_timezone(user_id)
    open_tasks = state.store.list_open_tasks(user_id)
    routines = state.store.list_routines(user_id, active_only=True)
    return (
        "Status:\n"
        f"  Model: {model}\n"
        f"  Timezone: {tz}\n"
        f"  Open tasks: {len(open_tasks)}\n"
        f"  Active routines: {len(routines)}"
    )


def cmd_tasks(state: AppState, args: list[str], user_id: str) -> str:
    """
    /tasks                -> open tasks (pending + needs_replanning)
    /tasks <status>       -> tasks with that status
    """
    if args:
        try:
            status = TaskStatus(args[0].lower())
        except ValueError:
            allowed = ", ".join(s.value for s in TaskStatus)
            return f"Unknown status {args[0]!r}. Use one of: {allowed}."
        tasks = state.store.list_tasks(user_id, status=status)
        title = f"Tasks ({status.value}):"
    else:
        tasks = state.store.list_open_tasks(user_id)
        title = "Open tasks:"

    if not tasks:
        return "No tasks."

    lines = [title]
    for t in tasks:
        due = f", due {_fmt_ts(state, user_id, t.due_at)}" if t.due_at is not None else ""
        lines.append(
            f"  [{t.id}] {t.name} - {t.status.value}, {t.annoyance.value}, "
            f"next ping {_fmt_ts(state, user_id, t.ping_at)}{due}"
        )
    return "\n".join(lines)


def cmd_routines(state: AppState, args: list[str], user_id: str) -> str:
    routines = state.store.list_routines(user_id)
    if not routines:
        return "No routines."
    lines = ["Routines:"]
    for r in routines:
        flag = "" if r.is_active else " (paused)"
        lines.append(
            f"  [{r.id}] {r.name} - {describe_cron(r.cron)}{flag}; "
            f"done {r.stats.completed}, failed {r.stats.failed}"
        )
    return "\n".join(lines)


def cmd_memory(state: AppState, args: list[str], user_id: str) -> str:
    profile = state.store.get_user(user_id)
    memory = profile.memory if profile else {}
    if not memory:
        return "Nothing remembered yet."
    lines = ["Memory:"]
    lines.extend(f"  {k}: {v}" for k, v in memory.items())
    return "\n".join(lines)


def cmd_goal(state: AppState, args: list[str], user_id: str) -> str:
    """
    /goal          -> show current goal
    /goal <text>   -> set goal
    """
    if not args:
        profile = state.store.get_user(user_id)
        goal = profile.goal if profile else None
        return f"Goal: {goal}" if goal else "No goal set. Use /goal <text> to set one."

    goal = " ".join(args).strip()
    state.store.set_goal(user_id, goal)
    logger.info("Goal set via command user=%s", user_id)
    return f"Goal set: {goal}"


def cmd_cleargoal(state: AppState, args: list[str], user_id: str) -> str:
    state.store.set_goal(user_id, None)
    return "Goal cleared."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show model, timezone and counts.")
registry.register("tasks", cmd_tasks, help_text="List tasks: /tasks [status].")
registry.register("routines", cmd_routines, help_text="List routines.")
registry.register("memory", cmd_memory, help_text="Show what the assistant remembers.", aliases=["mem"])
registry.register("goal", cmd_goal, help_text="Show or set the goal: /goal [text].")
registry.register("cleargoal", cmd_cleargoal, help_text="Clear the goal.")
