# tests/test_recurrence.py

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from nudge_companion.tasks.recurrence import (
    describe_cron,
    fires_in_window,
    is_valid_cron,
    last_occurrence,
    next_occurrence,
    resolve_timezone,
)

MINUTE = timedelta(minutes=1)


def test_cron_validation() -> None:
    assert is_valid_cron("0 9 * * *")
    assert is_valid_cron("*/15 8-18 * * 1-5")
    assert not is_valid_cron("")
    assert not is_valid_cron("every morning")
    assert not is_valid_cron("61 9 * * *")
    # Six-field (seconds) expressions are not accepted.
    assert not is_valid_cron("0 0 9 * * *")
    # Syntactically fine, but February never has a 31st.
    assert not is_valid_cron("0 0 31 2 *")


def test_last_occurrence_includes_now() -> None:
    now = datetime(2030, 1, 7, 9, 0, 0, tzinfo=UTC)
    assert last_occurrence("0 9 * * *", now) == now


def test_fires_only_inside_window() -> None:
    expr = "0 9 * * *"
    at_nine = datetime(2030, 1, 7, 9, 0, 0, tzinfo=UTC)

    assert fires_in_window(expr, at_nine, MINUTE) == at_nine
    assert fires_in_window(expr, at_nine + timedelta(seconds=30), MINUTE) == at_nine
    # Window is half-open: (now - window, now]
    assert fires_in_window(expr, at_nine + MINUTE, MINUTE) is None
    assert fires_in_window(expr, at_nine - timedelta(seconds=1), MINUTE) is None


def test_firing_respects_timezone() -> None:
    warsaw = ZoneInfo("Europe/Warsaw")
    # 09:00 in Warsaw is 08:00 UTC in winter.
    now = datetime(2030, 1, 7, 8, 0, 0, tzinfo=UTC).astimezone(warsaw)
    assert fires_in_window("0 9 * * *", now, MINUTE) is not None
    assert fires_in_window("0 8 * * *", now, MINUTE) is None


def test_next_occurrence() -> None:
    now = datetime(2030, 1, 7, 9, 30, tzinfo=UTC)
    assert next_occurrence("0 9 * * *", now) == datetime(2030, 1, 8, 9, 0, tzinfo=UTC)


def test_resolve_timezone_falls_back() -> None:
    assert str(resolve_timezone("Europe/Warsaw")) == "Europe/Warsaw"
    assert str(resolve_timezone("Not/AZone", "Europe/Berlin")) == "Europe/Berlin"
    assert str(resolve_timezone(None, "bogus")) == "UTC"


def test_describe_cron() -> None:
    assert describe_cron("30 7 * * *") == "daily at 07:30"
    assert describe_cron("0 9 * * 1-5") == "workdays at 09:00"
    assert describe_cron("0 18 * * 5") == "every Friday at 18:00"
    assert describe_cron("*/5 * * * *") == "*/5 * * * *"
