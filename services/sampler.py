"""Deterministic downsampling of captured readings for reports."""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from datetime import datetime, timedelta
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from models.records import Reading


def bucket_boundaries(start: datetime, end: datetime, interval_seconds: float) -> Iterator[datetime]:
    """Yield ``start, start + interval, ...`` up to and including ``end``."""
    if interval_seconds <= 0:
        raise ValueError("interval_seconds must be positive")
    step = timedelta(seconds=interval_seconds)
    boundary = start
    while boundary <= end:
        yield boundary
        boundary += step


def group_by_sensor(readings: Iterable[Reading]) -> Dict[str, List[Reading]]:
    """Group readings by sensor name, keeping input order inside each group."""
    groups: Dict[str, List[Reading]] = {}
    for reading in readings:
        groups.setdefault(reading.sensor_name, []).append(reading)
    return groups


class _TimeIndex:
    """Readings of one sensor ordered by time, remembering their input position."""

    def __init__(self, readings: List[Reading]) -> None:
        entries = sorted(
            ((reading.ts_utc.timestamp(), position) for position, reading in enumerate(readings)),
        )
        self._times = [ts for ts, _ in entries]
        self._positions = [position for _, position in entries]

    def around(self, center: float, radius: float) -> Iterator[Tuple[float, int]]:
        lo = bisect_right(self._times, center - radius)
        hi = bisect_left(self._times, center + radius)
        for offset in range(lo, hi):
            yield self._times[offset], self._positions[offset]


def sample_sensor(
    readings: List[Reading],
    start: datetime,
    end: datetime,
    interval_seconds: float,
) -> List[Reading]:
    """Pick at most one reading per bucket for a single sensor's readings.

    Each bucket takes the nearest reading strictly within one interval of it,
    ties going to the reading that came first in ``readings``. A reading
    consumed by an earlier bucket is not offered to later ones, even if a
    later bucket is closer.
    """
    index = _TimeIndex(readings)
    used: Set[int] = set()
    selected: List[Reading] = []
    for boundary in bucket_boundaries(start, end, interval_seconds):
        center = boundary.timestamp()
        best: Optional[Tuple[float, int]] = None
        for ts, position in index.around(center, interval_seconds):
            if id(readings[position]) in used:
                continue
            candidate = (abs(ts - center), position)
            if best is None or candidate < best:
                best = candidate
        if best is None:
            continue
        used.add(id(readings[best[1]]))
        selected.append(readings[best[1]])
    selected.sort(key=lambda reading: reading.ts_utc)
    return selected


def sample(
    captured: Iterable[Reading],
    start: datetime,
    end: datetime,
    interval_seconds: float,
) -> Dict[str, List[Reading]]:
    """Downsample ``captured`` into one series per sensor name."""
    if interval_seconds <= 0:
        raise ValueError("interval_seconds must be positive")
    return {
        sensor_name: sample_sensor(readings, start, end, interval_seconds)
        for sensor_name, readings in group_by_sensor(captured).items()
    }
