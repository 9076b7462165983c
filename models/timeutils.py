"""Time parsing and display helpers shared by the dashboard services."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive values are assumed to already be UTC. A trailing ``Z`` is accepted.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        candidate = value.strip()
        if not candidate:
            raise ValueError("Timestamp is empty.")

        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"

        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError as exc:
            raise ValueError("Invalid timestamp format") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@lru_cache
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def format_local(value: datetime, time_zone: str) -> str:
    """Render ``value`` as ``MM/DD/YYYY, h:MM:SS AM`` in ``time_zone``."""
    local = value.astimezone(_zone(time_zone))
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{local:%m/%d/%Y}, {hour}:{local:%M:%S} {meridiem}"


def format_range(start: datetime, end: datetime, time_zone: str) -> str:
    return f"{format_local(start, time_zone)} - {format_local(end, time_zone)}"


def c_to_f(temp_c: float) -> float:
    """Display-only Fahrenheit conversion."""
    return temp_c * 9 / 5 + 32
