from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

import pytest

from ambit.time import (
    days_since,
    elapsed_ms,
    format_duration,
    format_for_human,
    local_day_bounds,
    require_utc,
    resolve_user_tz,
    to_local,
)


def test_resolve_user_tz_with_env_var(monkeypatch) -> None:
    monkeypatch.setenv("AMBIT_TIMEZONE", "America/New_York")
    tz = resolve_user_tz()
    assert getattr(tz, "key", None) == "America/New_York"


@pytest.mark.parametrize("raw", ["auto", "", "Not/AZone"])
def test_resolve_user_tz_falls_back_to_system(monkeypatch, raw) -> None:
    monkeypatch.setenv("AMBIT_TIMEZONE", raw)
    assert isinstance(resolve_user_tz(), tzinfo)


def test_to_local_from_iso_string() -> None:
    user_tz = ZoneInfo("America/New_York")
    local = to_local("2026-02-27T12:00:00Z", user_tz=user_tz)
    assert local.tzinfo == user_tz
    assert local.hour == 7


def test_require_utc_treats_naive_as_utc() -> None:
    naive = datetime(2026, 3, 10, 14, 0)
    assert require_utc(naive) == datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)

    offset = datetime(2026, 3, 10, 16, 0, tzinfo=timezone(timedelta(hours=2)))
    assert require_utc(offset).hour == 14


def test_elapsed_and_days_since() -> None:
    start = datetime(2026, 3, 10, tzinfo=timezone.utc)
    assert elapsed_ms(start, start + timedelta(minutes=2)) == 120_000
    assert days_since(start, start + timedelta(days=3)) == 3
    assert elapsed_ms(start + timedelta(seconds=1), start) == -1000


def test_local_day_bounds_follow_user_timezone() -> None:
    start, end = local_day_bounds(date(2026, 3, 10), ZoneInfo("America/Los_Angeles"))
    assert start == datetime(2026, 3, 10, 7, 0, tzinfo=timezone.utc)
    assert end - start == timedelta(days=1)


def test_local_day_bounds_on_dst_change() -> None:
    # US clocks go forward on 2026-03-08
    start, end = local_day_bounds(date(2026, 3, 8), ZoneInfo("America/New_York"))
    assert start.hour == 5
    assert end.hour == 4


def test_format_for_human_today_label() -> None:
    now = datetime.now(timezone.utc)
    assert format_for_human(now, timezone.utc).startswith("today ")
    assert format_for_human(now - timedelta(days=1), timezone.utc).startswith("yesterday ")
    assert format_for_human("2020-01-05T10:00:00+00:00", timezone.utc) == "Jan 05 10:00:00"


@pytest.mark.parametrize(
    "ms,expected",
    [(45_000, "45s"), (12 * 60_000, "12m"), (3 * 3_600_000, "3h"), (200 * 60_000, "3h 20m")],
)
def test_format_duration(ms, expected) -> None:
    assert format_duration(ms) == expected
