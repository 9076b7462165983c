"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Tuple

from models.timeutils import isoformat_utc, parse_timestamp

READING_COLUMNS = ("device_id", "sensor_id", "sensor_name", "temp_c", "ts_utc")

ReadingKey = Tuple[str, str, str, datetime]


@dataclass(frozen=True, slots=True, eq=False)
class Reading:
    """A single temperature observation for one sensor on one device.

    Equality is identity-based. Use :attr:`key` to recognise the same row
    delivered twice, for example once by push and again by a poll.
    """

    device_id: str
    sensor_id: str
    sensor_name: str
    temp_c: float
    ts_utc: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Reading":
        """Build a reading from a store row, raising ``ValueError`` on bad data."""
        missing = [column for column in READING_COLUMNS if row.get(column) in (None, "")]
        if missing:
            raise ValueError(f"Reading row missing columns: {', '.join(missing)}")
        try:
            temp_c = float(row["temp_c"])
        except (TypeError, ValueError) as exc:
            raise ValueError("invalid numeric value for temp_c") from exc
        return cls(
            device_id=str(row["device_id"]),
            sensor_id=str(row["sensor_id"]),
            sensor_name=str(row["sensor_name"]),
            temp_c=temp_c,
            ts_utc=parse_timestamp(row["ts_utc"]),
        )

    @property
    def key(self) -> ReadingKey:
        return (self.device_id, self.sensor_id, self.sensor_name, self.ts_utc)

    def to_row(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "sensor_id": self.sensor_id,
            "sensor_name": self.sensor_name,
            "temp_c": self.temp_c,
            "ts_utc": isoformat_utc(self.ts_utc),
        }


@dataclass(frozen=True, slots=True)
class StoreStats:
    """Table-wide retention statistics."""

    total_count: int
    oldest_reading: datetime | None
    newest_reading: datetime | None
    last_7_days: int
    last_30_days: int

    @property
    def older_than_30_days(self) -> int:
        return self.total_count - self.last_30_days
