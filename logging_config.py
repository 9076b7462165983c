from __future__ import annotations

import logging
import time
from datetime import datetime
from logging.config import dictConfig
from typing import Iterable, Sequence

from settings import get_settings

_DEFAULT_EXTRA_KEYS = (
    "device_id",
    "sensor_name",
    "window_state",
    "reading_count",
    "report_id",
    "reason",
    "status",
    "deleted",
)

# the poll loop would otherwise log one line per request
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_configured = False


class DeviceContextFilter(logging.Filter):
    """Stamp records that carry no ``device_id`` with the configured device."""

    def __init__(self, device_id: str = "") -> None:
        super().__init__()
        self.device_id = device_id

    def filter(self, record: logging.LogRecord) -> bool:
        if self.device_id and getattr(record, "device_id", None) is None:
            record.device_id = self.device_id
        return True


class ContextualFormatter(logging.Formatter):
    """Timestamps in UTC, with whitelisted ``extra`` fields appended as ``key=value``."""

    converter = time.gmtime

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        extra_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self._extra_keys: Sequence[str] = tuple(extra_keys or _DEFAULT_EXTRA_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context_parts: list[str] = []
        for key in self._extra_keys:
            value = getattr(record, key, None)
            if value is None:
                continue
            if isinstance(value, datetime):
                value = value.isoformat()
            context_parts.append(f"{key}={value}")
        if context_parts:
            return f"{message} | {' '.join(context_parts)}"
        return message


def configure_logging(level: str | int | None = None) -> None:
    """Configure application-wide logging with contextual formatting."""
    global _configured
    if _configured:
        return

    settings = get_settings()
    log_level = level if level is not None else settings.log_level

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "device": {
                    "()": "logging_config.DeviceContextFilter",
                    "device_id": settings.device_id,
                }
            },
            "formatters": {
                "contextual": {
                    "()": "logging_config.ContextualFormatter",
                    "fmt": "%(asctime)sZ | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "style": "%",
                    "extra_keys": list(_DEFAULT_EXTRA_KEYS),
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": "contextual",
                    "filters": ["device"],
                }
            },
            "loggers": {name: {"level": "WARNING"} for name in _QUIET_LOGGERS},
            "root": {"handlers": ["default"], "level": log_level},
        }
    )

    _configured = True
