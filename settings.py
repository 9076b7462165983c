from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_DEVICE_ID_ENV = "DEVICE_ID"
_STORE_BACKEND_ENV = "READING_STORE_BACKEND"
_STORE_URL_ENV = "SUPABASE_URL"
_STORE_KEY_ENV = "SUPABASE_ANON_KEY"
_STORE_TABLE_ENV = "READINGS_TABLE"
_STORE_PATH_ENV = "READING_STORE_PERSISTENCE_PATH"
_UPLOAD_INTERVAL_ENV = "UPLOAD_INTERVAL_SEC"
_OFFLINE_MULTIPLIER_ENV = "OFFLINE_MULTIPLIER"
_TIME_ZONE_ENV = "DISPLAY_TIME_ZONE"
_POLL_LIMIT_ENV = "POLL_LIMIT"
_SAMPLE_INTERVAL_ENV = "DEFAULT_SAMPLE_INTERVAL_SEC"
_AUTO_REPORT_ENV = "AUTO_REPORT"
_AUTO_REPORT_EMAIL_ENV = "AUTO_REPORT_EMAIL"
_EMAIL_ENDPOINT_ENV = "REPORT_EMAIL_ENDPOINT"
_EMAIL_WARN_BYTES_ENV = "EMAIL_WARN_BYTES"
_WEATHER_LAT_ENV = "WEATHER_LATITUDE"
_WEATHER_LON_ENV = "WEATHER_LONGITUDE"
_WEATHER_INTERVAL_ENV = "WEATHER_INTERVAL_SEC"
_ARTIFACT_ROOT_ENV = "ARTIFACT_ROOT_PATH"
_WEBHOOK_SECRET_ENV = "WEBHOOK_SECRET"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    device_id: str
    store_backend: str
    store_url: Optional[str]
    store_key: Optional[str]
    store_table: str
    store_persistence_path: Optional[str]
    upload_interval_sec: int
    offline_multiplier: int
    time_zone: str
    poll_limit: int
    default_sample_interval_sec: int
    auto_report: bool
    auto_report_email: Optional[str]
    email_endpoint: Optional[str]
    email_warn_bytes: int
    weather_latitude: Optional[float]
    weather_longitude: Optional[float]
    weather_interval_sec: int
    artifact_root_path: Optional[str]
    webhook_secret: Optional[str]
    log_level: str

    @property
    def offline_after_sec(self) -> int:
        return self.upload_interval_sec * self.offline_multiplier


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if value is None:
        return None
    candidate = value.strip()
    if not candidate:
        return None
    try:
        return float(candidate)
    except ValueError:
        return None


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in {"1", "true", "yes", "on"}:
        return True
    if candidate in {"0", "false", "no", "off"}:
        return False
    return default


def _read_backend(default: str) -> str:
    candidate = _read_str_env(_STORE_BACKEND_ENV, default).lower()
    return candidate if candidate in {"memory", "supabase"} else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        device_id=_read_str_env(_DEVICE_ID_ENV, "pi4"),
        store_backend=_read_backend("memory"),
        store_url=_read_optional_env(_STORE_URL_ENV, None),
        store_key=_read_optional_env(_STORE_KEY_ENV, None),
        store_table=_read_str_env(_STORE_TABLE_ENV, "temperature_readings"),
        store_persistence_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/readings.json"),
        upload_interval_sec=_read_positive_int(_UPLOAD_INTERVAL_ENV, 10),
        offline_multiplier=_read_positive_int(_OFFLINE_MULTIPLIER_ENV, 4),
        time_zone=_read_str_env(_TIME_ZONE_ENV, "America/Chicago"),
        poll_limit=_read_positive_int(_POLL_LIMIT_ENV, 100),
        default_sample_interval_sec=_read_positive_int(_SAMPLE_INTERVAL_ENV, 60),
        auto_report=_read_bool(_AUTO_REPORT_ENV, False),
        auto_report_email=_read_optional_env(_AUTO_REPORT_EMAIL_ENV, None),
        email_endpoint=_read_optional_env(_EMAIL_ENDPOINT_ENV, None),
        email_warn_bytes=_read_positive_int(_EMAIL_WARN_BYTES_ENV, 4 * 1024 * 1024),
        weather_latitude=_read_optional_float(_WEATHER_LAT_ENV),
        weather_longitude=_read_optional_float(_WEATHER_LON_ENV),
        weather_interval_sec=_read_positive_int(_WEATHER_INTERVAL_ENV, 600),
        artifact_root_path=_read_optional_env(_ARTIFACT_ROOT_ENV, "./tmp/artifacts"),
        webhook_secret=_read_optional_env(_WEBHOOK_SECRET_ENV, None),
        log_level=_read_log_level("INFO"),
    )
