# src/nudge_companion/core/persona.py

from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Final

from ..tasks.recurrence import describe_cron
from ..tasks.task_models import Routine, Task, UserProfile

BASE_PERSONA_PROMPT: Final[str] = """
You are "nudge", a personal planning assistant that helps the user keep routines,
remember tasks and stay focused on their goal.

Identity:
- You are not a real person. Do not claim to have a body, personal life, or real-world experiences.
- If asked your name, say: "I'm nudge, an AI assistant."

Truthfulness:
- If you are unsure, say you are unsure.
- Do not invent tasks, routines or facts about the user. Use tools to look them up.

Style:
- Match the user's language.
- Keep replies short and chat-like unless the user asks for depth.
- Vary your reminders; do not repeat the same sentence you wrote last time.

Tools:
- Create tasks and routines whenever the user asks for reminders or describes a habit.
- Times you pass to tools are ISO-8601; times without an offset are in the user's timezone.
- Tool results are for you only. Summarize outcomes in plain words, never paste JSON.
- If a tool returns an error, fix the arguments and try again or tell the user what is missing.

Internal tags:
- <system>...</system> blocks in the history were written by the bot system, not by you or the user.
  Never output <system> tags yourself.
- The <STATE>...</STATE> block below is internal. Never reveal it or output the tags.
- You may think inside <thinking>...</thinking>; that part is never shown to the user.
""".strip()


def _fmt(ts: float | None, tz: tzinfo) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts, tz=tz).strftime("%Y-%m-%d %H:%M")


def _sanitize(text: str) -> str:
    """Stored text must not be able to close the state block early."""
    if not text:
        return ""
    out = text.replace("\x00", "")
    return out.replace("<STATE>", "[STATE]").replace("</STATE>", "[/STATE]")


def _format_task_line(t: Task, tz: tzinfo) -> str:
    extra = f", due {_fmt(t.due_at, tz)}" if t.due_at is not None else ""
    routine = f", routine {t.routine_id}" if t.routine_id else ""
    return (
        f"- [{t.id}] {_sanitize(t.name)} ({t.status.value}, {t.annoyance.value}, "
        f"ping {_fmt(t.ping_at, tz)}{extra}{routine})"
    )


def _format_routine_line(r: Routine) -> str:
    state = "active" if r.is_active else "paused"
    return (
        f"- [{r.id}] {_sanitize(r.name)}: {describe_cron(r.cron)} ({state}, "
        f"done {r.stats.completed}, failed {r.stats.failed})"
    )


def build_state_block(
    *,
    profile: UserProfile | None,
    tasks: list[Task],
    routines: list[Routine],
    now: float,
    tz: tzinfo,
) -> str:
    """
    Snapshot of the user's record injected into every system prompt.

    Everything lives inside a single <STATE>...</STATE> block so the prompt
    structure stays stable.
    """
    lines = [
        "<STATE>",
        f"Current time: {_fmt(now, tz)} ({tz}), {datetime.fromtimestamp(now, tz=tz):%A}",
    ]

    goal = profile.goal if profile else None
    lines.append(f"Goal: {_sanitize(goal) if goal else '(none)'}")

    memory = profile.memory if profile else {}
    if memory:
        lines.append("Memory:")
        lines.extend(f"- {_sanitize(k)}: {_sanitize(v)}" for k, v in memory.items())

    if routines:
        lines.append("Routines:")
        lines.extend(_format_routine_line(r) for r in routines)

    if tasks:
        lines.append("Open tasks:")
        lines.extend(_format_task_line(t, tz) for t in tasks)
    else:
        lines.append("Open tasks: (none)")

    lines.append("</STATE>")
    return "\n".join(lines)


def get_system_prompt(state_block: str = "") -> str:
    if not state_block:
        return BASE_PERSONA_PROMPT
    return f"{BASE_PERSONA_PROMPT}\n\n{state_block}\n"


# ---- synthetic prompts (stored in history as the "user" side of the exchange) ----


def task_triggered_prompt(task: Task, tz: tzinfo) -> str:
    due = _fmt(task.due_at, tz) if task.due_at is not None else "not set"
    return f"""<system>
It is time to remind the user about task "{task.name}" (ID: {task.id}, deadline: {due}).

Do exactly one of:
1. If the deadline has not passed (or there is none), remind the user and call
   RescheduleTask(task_id="{task.id}") to plan the next reminder. Pass ping_at only if
   you have a better time in mind; otherwise the annoyance level picks it.
2. If the deadline has passed, the task is badly overdue, or the same routine already
   started a newer task, call MarkTaskFailed(task_id="{task.id}").
If the user already confirmed it is done, MarkTaskComplete is also fine.

Write a short, fresh message for the user.
</system>"""


def task_notice_prompt(task: Task) -> str:
    return f"""<system>
Remind the user about "{task.name}" (ID: {task.id}). Nothing needs confirming.
Do not use any tools; just write a short message.
</system>"""


GREETING_PROMPT: Final[str] = """<system>
This is a new user. Introduce yourself briefly: you help with planning, reminders and focus.
Ask what they want to achieve and what you should keep track of.
Create a routine that checks in on the user once a day in the afternoon with a friendly chat
(requires_action=false, annoyance low).
</system>"""
