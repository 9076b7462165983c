from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from threading import Lock
from typing import List, Optional

from datastore.feed import ChangeFeed, ReadingCallback, Subscription
from models.records import Reading, StoreStats

LOGGER = logging.getLogger(__name__)


class InMemoryReadingStore:
    """Process-local readings table with an optional JSON file behind it.

    Inserts are published to :attr:`feed` so subscribers see them the same way
    they would see the hosted database's change notifications.
    """

    def __init__(
        self,
        name: str,
        persistence_path: Optional[Path] = None,
        feed: Optional[ChangeFeed] = None,
    ) -> None:
        self.name = name
        self.feed = feed or ChangeFeed()
        self.persistence_path = persistence_path
        self._rows: List[Reading] = []
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    async def insert(self, reading: Reading) -> None:
        with self._lock:
            self._rows.append(reading)
            self._persist()
        self.feed.publish(reading)

    async def query(
        self,
        device_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Reading]:
        """Return readings for ``device_id`` newest first, bounds inclusive."""
        with self._lock:
            rows = [row for row in self._rows if row.device_id == device_id]

        if start is not None:
            rows = [row for row in rows if row.ts_utc >= start]
        if end is not None:
            rows = [row for row in rows if row.ts_utc <= end]
        rows.sort(key=lambda row: row.ts_utc, reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def subscribe(self, device_id: str, callback: ReadingCallback) -> Subscription:
        return self.feed.subscribe(device_id, callback)

    async def delete_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            kept = [row for row in self._rows if row.ts_utc >= cutoff]
            deleted = len(self._rows) - len(kept)
            self._rows = kept
            if deleted:
                self._persist()
        return deleted

    async def stats(self, now: datetime) -> StoreStats:
        with self._lock:
            timestamps = [row.ts_utc for row in self._rows]

        seven_days_ago = now - timedelta(days=7)
        thirty_days_ago = now - timedelta(days=30)
        return StoreStats(
            total_count=len(timestamps),
            oldest_reading=min(timestamps) if timestamps else None,
            newest_reading=max(timestamps) if timestamps else None,
            last_7_days=sum(1 for ts in timestamps if ts >= seven_days_ago),
            last_30_days=sum(1 for ts in timestamps if ts >= thirty_days_ago),
        )

    async def aclose(self) -> None:
        return None

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = [row.to_row() for row in self._rows]
        self.persistence_path.write_text(json.dumps(payload, indent=2))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "[]"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            LOGGER.warning("Ignoring unreadable reading store file %s", self.persistence_path)
            data = []

        for row in data:
            try:
                self._rows.append(Reading.from_row(row))
            except ValueError as exc:
                LOGGER.warning("Skipping stored row", extra={"reason": str(exc)})
