# src/nudge_companion/tasks/cadence.py

"""
Annoyance cadence policy: how long to wait before pinging about a task again.

Delays are jittered inside a band per tier so reminders for many tasks do not fire
in lockstep and the user cannot learn the exact timing.
"""

from __future__ import annotations

import random

from .task_models import Annoyance

# Minutes, inclusive bounds.
CADENCE_MINUTES: dict[Annoyance, tuple[float, float]] = {
    Annoyance.LOW: (120.0, 180.0),
    Annoyance.MED: (30.0, 60.0),
    Annoyance.HIGH: (1.0, 5.0),
}


def next_ping_delay(annoyance: Annoyance, rng: random.Random | None = None) -> float:
    """Return the re-ping delay in seconds for the given tier."""
    lo, hi = CADENCE_MINUTES[annoyance]
    r = rng or random
    return r.uniform(lo, hi) * 60.0


def next_ping_at(
    annoyance: Annoyance,
    *,
    now: float,
    current_ping_at: float | None = None,
    rng: random.Random | None = None,
) -> float:
    """
    Default next ping timestamp when the agent gave no explicit time.

    The base is max(now, current_ping_at) so the result is always strictly later
    than the task's current ping_at. For the usual case (a due task, ping_at <= now)
    this is now + band. Postponing a task whose ping still lies in the future moves it
    one band past that ping, so the result can exceed now + band: a reschedule never
    pulls a reminder earlier unless the agent passes an explicit time.
    """
    base = now if current_ping_at is None else max(now, current_ping_at)
    return base + next_ping_delay(annoyance, rng)
