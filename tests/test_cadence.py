# tests/test_cadence.py

from __future__ import annotations

import random

import pytest

from nudge_companion.tasks.cadence import next_ping_at, next_ping_delay
from nudge_companion.tasks.task_models import Annoyance


@pytest.mark.parametrize(
    ("annoyance", "lo_min", "hi_min"),
    [
        (Annoyance.LOW, 120, 180),
        (Annoyance.MED, 30, 60),
        (Annoyance.HIGH, 1, 5),
    ],
)
def test_delay_stays_inside_tier_band(annoyance: Annoyance, lo_min: int, hi_min: int) -> None:
    rng = random.Random(7)
    for _ in range(200):
        delay = next_ping_delay(annoyance, rng)
        assert lo_min * 60 <= delay <= hi_min * 60


def test_delay_is_jittered() -> None:
    rng = random.Random(1)
    delays = {round(next_ping_delay(Annoyance.MED, rng), 3) for _ in range(20)}
    assert len(delays) > 1


def test_next_ping_uses_later_of_now_and_current_ping() -> None:
    rng = random.Random(3)
    now = 1_000_000.0

    future_ping = now + 10_000
    nxt = next_ping_at(Annoyance.HIGH, now=now, current_ping_at=future_ping, rng=rng)
    assert future_ping + 60 <= nxt <= future_ping + 300

    past_ping = now - 10_000
    nxt2 = next_ping_at(Annoyance.HIGH, now=now, current_ping_at=past_ping, rng=rng)
    assert now + 60 <= nxt2 <= now + 300


def test_same_seed_gives_same_ping() -> None:
    a = next_ping_at(Annoyance.LOW, now=0.0, rng=random.Random(99))
    b = next_ping_at(Annoyance.LOW, now=0.0, rng=random.Random(99))
    assert a == b


def test_postponing_future_ping_moves_past_it() -> None:
    # The reminder is never pulled earlier; it lands one band after the old ping.
    now = 1_000_000.0
    future_ping = now + 10 * 3600
    nxt = next_ping_at(Annoyance.LOW, now=now, current_ping_at=future_ping, rng=random.Random(5))
    assert future_ping + 120 * 60 <= nxt <= future_ping + 180 * 60
    assert nxt > now + 180 * 60
