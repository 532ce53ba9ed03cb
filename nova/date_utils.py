"""Date helpers pinned to the inventory team's timezone."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_TIMEZONE = "America/New_York"


def _zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


def local_now(now: Optional[datetime] = None, tz: Optional[str] = DEFAULT_TIMEZONE) -> datetime:
    """Return ``now`` (default: current UTC time) converted to ``tz``.

    Naive datetimes are interpreted as UTC.
    """

    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(_zone(tz))


def format_last_verified_date(now: Optional[datetime] = None, tz: Optional[str] = DEFAULT_TIMEZONE) -> str:
    """Return today's date in ``tz`` as ``M/D/YYYY`` (no zero padding)."""

    local = local_now(now, tz)
    return f"{local.month}/{local.day}/{local.year}"


def current_year(now: Optional[datetime] = None, tz: Optional[str] = DEFAULT_TIMEZONE) -> int:
    return local_now(now, tz).year


__all__ = ["DEFAULT_TIMEZONE", "current_year", "format_last_verified_date", "local_now"]
