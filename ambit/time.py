"""Temporal grounding — UTC storage, local bucketing, human formatting.

Store UTC. Bucket local. Histograms and day summaries use the user's timezone.
"""

from __future__ import annotations

import logging
import os
from contextlib import suppress
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo

AMBIT_TIMEZONE_ENV = "AMBIT_TIMEZONE"

MS_PER_MINUTE = 60 * 1000
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR


def _detect_system_tz() -> tzinfo:
    """Best-effort system timezone. Prefers IANA name over fixed offset."""
    with suppress(Exception):
        link = Path("/etc/localtime").resolve()
        parts = link.parts
        if "zoneinfo" in parts:
            idx = parts.index("zoneinfo")
            iana_key = "/".join(parts[idx + 1 :])
            return ZoneInfo(iana_key)
    return datetime.now().astimezone().tzinfo or timezone.utc


def resolve_user_tz() -> tzinfo:
    """Resolve user timezone. Precedence: AMBIT_TIMEZONE env > auto-detect.

    Falls back to auto-detect if the env value is not a valid IANA timezone.
    """
    raw = os.getenv(AMBIT_TIMEZONE_ENV, "auto").strip()
    if raw.lower() in ("", "auto", "local", "system"):
        return _detect_system_tz()
    try:
        return ZoneInfo(raw)
    except (KeyError, ValueError):
        logging.getLogger(__name__).warning(
            "Invalid AMBIT_TIMEZONE '%s', falling back to auto-detect", raw
        )
        return _detect_system_tz()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def require_utc(dt: datetime) -> datetime:
    """Normalize to aware UTC. Treats naive as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_local(dt_or_iso: datetime | str, user_tz: tzinfo | None = None) -> datetime:
    """Convert UTC datetime or ISO string to user's local timezone."""
    if isinstance(dt_or_iso, str):
        dt_or_iso = datetime.fromisoformat(dt_or_iso.replace("Z", "+00:00"))
    tz = user_tz or resolve_user_tz()
    return require_utc(dt_or_iso).astimezone(tz)


def elapsed_ms(earlier: datetime, now: datetime | None = None) -> float:
    """Milliseconds from `earlier` to `now` (negative if `earlier` is in the future)."""
    now = now or utcnow()
    return (require_utc(now) - require_utc(earlier)).total_seconds() * 1000


def days_since(earlier: datetime, now: datetime | None = None) -> float:
    return elapsed_ms(earlier, now) / MS_PER_DAY


def local_day_bounds(day: date, user_tz: tzinfo | None = None) -> tuple[datetime, datetime]:
    """UTC [start, end) of a calendar day in the user's timezone."""
    tz = user_tz or resolve_user_tz()
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = start + timedelta(days=1)
    return require_utc(start), require_utc(end)


def format_for_human(dt_or_iso: datetime | str, user_tz: tzinfo | None = None) -> str:
    """Format for CLI display: relative labels (today/yesterday) + time."""
    local = to_local(dt_or_iso, user_tz)
    now = datetime.now(timezone.utc).astimezone(local.tzinfo)
    time_str = local.strftime("%H:%M:%S")
    if local.date() == now.date():
        return f"today {time_str}"
    if local.date() == (now - timedelta(days=1)).date():
        return f"yesterday {time_str}"
    return local.strftime("%b %d %H:%M:%S")


def format_duration(ms: float) -> str:
    """Compact duration: 45s, 12m, 3h 20m."""
    seconds = int(ms // 1000)
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m" if minutes else f"{hours}h"
