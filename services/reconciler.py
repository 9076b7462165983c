"""Latest-reading-per-sensor view fed by both polling and push events."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from models.records import Reading


class LiveSnapshotReconciler:
    """Keeps the most recent reading per sensor name.

    A reading replaces the stored one only when its timestamp is strictly
    later, so replaying duplicates or stale rows never changes the view and
    the order in which poll results and push events arrive does not matter.
    """

    def __init__(self) -> None:
        self._latest: Dict[str, Reading] = {}

    def observe(self, reading: Reading) -> Dict[str, Reading]:
        current = self._latest.get(reading.sensor_name)
        if current is None or reading.ts_utc > current.ts_utc:
            self._latest[reading.sensor_name] = reading
        return self.snapshot()

    def observe_many(self, readings: Iterable[Reading]) -> Dict[str, Reading]:
        for reading in readings:
            self.observe(reading)
        return self.snapshot()

    def snapshot(self) -> Dict[str, Reading]:
        return dict(self._latest)

    def rows(self) -> List[Reading]:
        """Snapshot values ordered by sensor name, as the dashboard lists them."""
        return [self._latest[name] for name in sorted(self._latest)]

    def last_timestamp(self) -> Optional[datetime]:
        if not self._latest:
            return None
        return max(reading.ts_utc for reading in self._latest.values())

    def age_seconds(self, now: datetime) -> Optional[int]:
        last = self.last_timestamp()
        if last is None:
            return None
        return math.floor((now - last).total_seconds())

    def is_offline(self, now: datetime, threshold_seconds: int) -> bool:
        age = self.age_seconds(now)
        return age is not None and age > threshold_seconds
