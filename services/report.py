"""Report assembly from a captured window."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from models.records import Reading
from models.timeutils import c_to_f, format_local, format_range, isoformat_utc, utcnow
from services.aggregator import AggregationSummary, Aggregator, TemperatureStats
from services.sampler import group_by_sensor, sample

CSV_COLUMNS = ("timestamp_local", "timestamp_utc", "sensor_name", "sensor_id", "temp_c", "temp_f")


@dataclass
class SensorSeries:
    sensor_name: str
    readings: List[Reading]
    # False when sampling selected nothing and the full set was used instead
    sampled: bool = True


@dataclass
class Report:
    report_id: str
    device_id: str
    start: datetime
    end: datetime
    interval_seconds: int
    time_zone: str
    generated_at: datetime
    captured_count: int
    series: Dict[str, SensorSeries] = field(default_factory=dict)
    summary: AggregationSummary = field(default_factory=AggregationSummary)

    @property
    def time_range_label(self) -> str:
        return format_range(self.start, self.end, self.time_zone)

    @property
    def point_count(self) -> int:
        return sum(len(entry.readings) for entry in self.series.values())

    def rows(self) -> List[Reading]:
        merged = [reading for entry in self.series.values() for reading in entry.readings]
        merged.sort(key=lambda reading: (reading.ts_utc, reading.sensor_name))
        return merged

    def to_csv(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(CSV_COLUMNS)
        for reading in self.rows():
            writer.writerow([
                format_local(reading.ts_utc, self.time_zone),
                isoformat_utc(reading.ts_utc),
                reading.sensor_name,
                reading.sensor_id,
                f"{reading.temp_c:.2f}",
                f"{c_to_f(reading.temp_c):.2f}",
            ])
        return buf.getvalue()

    def summary_text(self) -> str:
        lines = [
            f"Temperature report for {self.device_id}",
            f"Range: {self.time_range_label}",
            f"Sampling interval: {self.interval_seconds}s",
            f"Readings captured: {self.captured_count}",
            f"Readings in report: {self.point_count}",
        ]
        for sensor_name, entry in self.series.items():
            stats = self.summary.per_sensor.get(sensor_name, TemperatureStats())
            note = "" if entry.sampled else " (unsampled)"
            lines.append(f"{sensor_name}: {len(entry.readings)} points{note}, {_describe(stats)}")
        return "\n".join(lines)


def _describe(stats: TemperatureStats) -> str:
    if stats.count == 0 or stats.min_c is None or stats.max_c is None or stats.mean_c is None:
        return "no data"
    return (
        f"min {stats.min_c:.2f} °C / {c_to_f(stats.min_c):.2f} °F, "
        f"max {stats.max_c:.2f} °C / {c_to_f(stats.max_c):.2f} °F, "
        f"avg {stats.mean_c:.2f} °C / {c_to_f(stats.mean_c):.2f} °F"
    )


class ReportBuilder:
    """Turns a captured window into a sampled, summarized report."""

    def __init__(self, device_id: str, time_zone: str, aggregator: Optional[Aggregator] = None) -> None:
        self.device_id = device_id
        self.time_zone = time_zone
        self.aggregator = aggregator or Aggregator()

    def build(
        self,
        captured: Iterable[Reading],
        start: datetime,
        end: datetime,
        interval_seconds: int,
        sensors: Iterable[str] = (),
        now: Optional[datetime] = None,
    ) -> Report:
        """Sample ``captured`` and fall back to the unsampled readings per empty sensor.

        ``sensors`` names channels that must appear even when nothing was
        captured for them, such as the ones currently on the live view.
        """
        readings = list(captured)
        sampled = sample(readings, start, end, interval_seconds)
        grouped = group_by_sensor(readings)

        series: Dict[str, SensorSeries] = {}
        for sensor_name in [*grouped, *[name for name in sensors if name not in grouped]]:
            picked = sampled.get(sensor_name, [])
            if picked:
                series[sensor_name] = SensorSeries(sensor_name, picked)
                continue
            fallback = sorted(grouped.get(sensor_name, []), key=lambda reading: reading.ts_utc)
            series[sensor_name] = SensorSeries(sensor_name, fallback, sampled=False)

        return Report(
            report_id=uuid4().hex,
            device_id=self.device_id,
            start=start,
            end=end,
            interval_seconds=interval_seconds,
            time_zone=self.time_zone,
            generated_at=now or utcnow(),
            captured_count=len(readings),
            series=series,
            summary=self.aggregator.aggregate(readings),
        )
