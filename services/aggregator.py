"""Summary statistics for temperature readings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable

from models.records import Reading


@dataclass
class TemperatureStats:
    """Running min/max/mean over Celsius values."""

    count: int = 0
    min_c: float | None = None
    max_c: float | None = None
    mean_c: float | None = None
    _total: float = field(default=0.0, repr=False)

    def add(self, value: float) -> None:
        self.count += 1
        self._total += value
        if self.min_c is None or value < self.min_c:
            self.min_c = value
        if self.max_c is None or value > self.max_c:
            self.max_c = value
        self.mean_c = self._total / self.count


@dataclass
class AggregationSummary:
    """Computed statistics for a batch of readings, overall and per sensor."""

    overall: TemperatureStats = field(default_factory=TemperatureStats)
    per_sensor: Dict[str, TemperatureStats] = field(default_factory=dict)

    @property
    def row_count(self) -> int:
        return self.overall.count

    @property
    def per_sensor_count(self) -> Dict[str, int]:
        return {name: stats.count for name, stats in self.per_sensor.items()}


class Aggregator:
    """Pure aggregation component that can be unit tested in isolation."""

    def aggregate(self, readings: Iterable[Reading]) -> AggregationSummary:
        summary = AggregationSummary()
        for reading in readings:
            summary.overall.add(reading.temp_c)
            sensor_stats = summary.per_sensor.setdefault(reading.sensor_name, TemperatureStats())
            sensor_stats.add(reading.temp_c)
        return summary
