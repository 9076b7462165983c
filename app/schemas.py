"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models.records import Reading
from models.timeutils import c_to_f
from services.window_tracker import TrackingMode, WindowState


class ReadingModel(BaseModel):
    """One temperature reading as stored upstream."""

    device_id: str
    sensor_id: str
    sensor_name: str
    temp_c: float
    ts_utc: datetime

    def to_reading(self) -> Reading:
        return Reading.from_row(self.model_dump())

    @classmethod
    def from_reading(cls, reading: Reading) -> "ReadingModel":
        return cls(
            device_id=reading.device_id,
            sensor_id=reading.sensor_id,
            sensor_name=reading.sensor_name,
            temp_c=reading.temp_c,
            ts_utc=reading.ts_utc,
        )


class LiveReading(ReadingModel):
    temp_f: float = Field(..., description="Display-only Fahrenheit value.")

    @classmethod
    def from_reading(cls, reading: Reading) -> "LiveReading":
        return cls(
            device_id=reading.device_id,
            sensor_id=reading.sensor_id,
            sensor_name=reading.sensor_name,
            temp_c=reading.temp_c,
            ts_utc=reading.ts_utc,
            temp_f=round(c_to_f(reading.temp_c), 2),
        )


class LiveView(BaseModel):
    """Latest reading per sensor plus staleness information."""

    device_id: str
    status: str
    subscribed: bool
    last_reading: Optional[datetime] = None
    age_seconds: Optional[int] = None
    offline: bool
    offline_after_sec: int
    sensors: List[LiveReading] = Field(default_factory=list)


class DatabaseWebhookEvent(BaseModel):
    """Row-change notification posted by the hosted database."""

    type: str
    table: str
    schema_name: Optional[str] = Field(default=None, alias="schema")
    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None


class WebhookAck(BaseModel):
    accepted: bool
    delivered: int = 0
    detail: Optional[str] = None


class WindowStartRequest(BaseModel):
    mode: TrackingMode = TrackingMode.manual
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class WindowView(BaseModel):
    state: WindowState
    mode: Optional[TrackingMode] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    captured_count: int = Field(..., ge=0)
    backfilling: bool = False


class SensorStatsModel(BaseModel):
    count: int = Field(..., ge=0)
    min_c: Optional[float] = None
    max_c: Optional[float] = None
    mean_c: Optional[float] = None


class SensorSeriesModel(BaseModel):
    sensor_name: str
    sampled: bool
    stats: SensorStatsModel
    readings: List[ReadingModel] = Field(default_factory=list)


class ReportView(BaseModel):
    report_id: str
    device_id: str
    start: datetime
    end: datetime
    interval_seconds: int
    time_range_label: str
    generated_at: datetime
    captured_count: int
    summary_text: str
    overall: SensorStatsModel
    series: List[SensorSeriesModel] = Field(default_factory=list)


class EmailReportRequest(BaseModel):
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    interval_seconds: Optional[int] = Field(default=None, gt=0)
    confirm_large: bool = False


class EmailReportResponse(BaseModel):
    success: bool
    report_id: str
    time_range_label: str


class CleanupRequest(BaseModel):
    retention_days: int = Field(..., ge=1)


class CleanupResponse(BaseModel):
    success: bool = True
    deleted: int = Field(..., ge=0)
    cutoff_date: datetime


class StatsResponse(BaseModel):
    total_count: int = Field(..., ge=0)
    oldest_reading: Optional[datetime] = None
    newest_reading: Optional[datetime] = None
    last_7_days: int = Field(..., ge=0)
    last_30_days: int = Field(..., ge=0)
    older_than_30_days: int
