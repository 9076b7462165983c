"""Best-effort crash-recovery snapshot of the tracking window."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from models.records import Reading
from models.timeutils import isoformat_utc, parse_timestamp
from services.window_tracker import TrackingMode, WindowState, WindowTracker
from storage.artifacts import LocalArtifactStore

LOGGER = logging.getLogger(__name__)

BACKUP_KEY = "backup/window.json"


class WindowBackup:
    """Saves and restores a tracker's window and captured readings.

    Failures are logged and swallowed; the backup never blocks collection.
    """

    def __init__(self, store: LocalArtifactStore, key: str = BACKUP_KEY) -> None:
        self.store = store
        self.key = key

    def save(self, tracker: WindowTracker) -> bool:
        window = tracker.window()
        if window.state is WindowState.idle or window.start is None or window.end is None:
            return self.clear()

        payload: Dict[str, Any] = {
            "device_id": tracker.device_id,
            "state": window.state.value,
            "mode": (window.mode or TrackingMode.manual).value,
            "start": isoformat_utc(window.start),
            "end": isoformat_utc(window.end),
            "readings": [reading.to_row() for reading in tracker.captured],
        }
        try:
            self.store.put_object(self.key, json.dumps(payload).encode("utf-8"))
        except OSError as exc:
            LOGGER.warning("Window backup failed", extra={"reason": str(exc)})
            return False
        return True

    def clear(self) -> bool:
        try:
            self.store.delete_object(self.key)
        except OSError as exc:
            LOGGER.warning("Clearing window backup failed", extra={"reason": str(exc)})
            return False
        return True

    def restore(self, tracker: WindowTracker) -> bool:
        """Reinstate a saved window into an idle ``tracker``; returns True on success."""
        payload = self._load()
        if payload is None:
            return False
        if payload.get("device_id") != tracker.device_id:
            LOGGER.info(
                "Ignoring backup for another device",
                extra={"device_id": payload.get("device_id")},
            )
            return False

        try:
            state = WindowState(payload["state"])
            mode = TrackingMode(payload.get("mode", TrackingMode.manual.value))
            start = parse_timestamp(payload["start"])
            end = parse_timestamp(payload["end"])
            readings = [Reading.from_row(row) for row in payload.get("readings", [])]
            tracker.restore(state, mode, start, end, readings)
        except (KeyError, TypeError, ValueError) as exc:
            LOGGER.warning("Discarding unreadable window backup", extra={"reason": str(exc)})
            return False

        LOGGER.info(
            "Restored tracking window from backup",
            extra={
                "device_id": tracker.device_id,
                "window_state": state.value,
                "reading_count": len(readings),
            },
        )
        return True

    def _load(self) -> Optional[Dict[str, Any]]:
        try:
            raw = self.store.get_object(self.key)
        except KeyError:
            return None
        except OSError as exc:
            LOGGER.warning("Reading window backup failed", extra={"reason": str(exc)})
            return None
        try:
            data = json.loads(raw.decode("utf-8") or "{}")
        except (UnicodeDecodeError, json.JSONDecodeError):
            LOGGER.warning("Window backup is not valid JSON")
            return None
        return data if isinstance(data, dict) else None
