"""Orchestration of the live view, the tracking window and reporting."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Callable, List, Optional, Set

from datastore.factory import ReadingStore, build_default_store
from datastore.feed import Subscription
from models.errors import EmailDeliveryFailed, InvalidTransition, StoreQueryFailed
from models.records import Reading, StoreStats
from models.timeutils import utcnow
from services.backup import WindowBackup
from services.emailer import ReportEmailClient
from services.reconciler import LiveSnapshotReconciler
from services.report import Report, ReportBuilder
from services.weather import OutdoorWeatherClient
from services.window_tracker import (
    CompletedWindow,
    TrackingMode,
    TrackingWindow,
    WindowState,
    WindowTracker,
)
from settings import get_settings
from storage.artifacts import LocalArtifactStore, build_default_artifact_store

LOGGER = logging.getLogger(__name__)

TICK_SECONDS = 1.0
BACKUP_EVERY_SECONDS = 30
REPORT_PREFIX = "reports/"


@dataclass(frozen=True)
class LiveStatus:
    status: str
    rows: List[Reading]
    last_reading: Optional[datetime]
    age_seconds: Optional[int]
    offline: bool
    offline_after_sec: int


@dataclass(frozen=True)
class CleanupResult:
    deleted: int
    cutoff: datetime


class DashboardService:
    """Owns the live snapshot and tracking window for one device.

    Push notifications, the poll timer and the one-second tick all mutate state
    through this object on the event loop thread, one callback at a time.
    Window commands additionally hold ``_command_lock`` so a backfill in flight
    cannot interleave with another start, stop or reset.
    """

    def __init__(
        self,
        store: ReadingStore,
        device_id: str,
        artifacts: LocalArtifactStore,
        upload_interval_sec: int = 10,
        offline_after_sec: int = 40,
        poll_limit: int = 100,
        time_zone: str = "America/Chicago",
        default_sample_interval_sec: int = 60,
        auto_report: bool = False,
        auto_report_email: Optional[str] = None,
        emailer: Optional[ReportEmailClient] = None,
        weather: Optional[OutdoorWeatherClient] = None,
        weather_interval_sec: int = 600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.device_id = device_id
        self.artifacts = artifacts
        self.upload_interval_sec = upload_interval_sec
        self.offline_after_sec = offline_after_sec
        self.poll_limit = poll_limit
        self.time_zone = time_zone
        self.default_sample_interval_sec = default_sample_interval_sec
        self.auto_report = auto_report
        self.auto_report_email = auto_report_email
        self.emailer = emailer
        self.weather = weather
        self.weather_interval_sec = weather_interval_sec
        self._clock = clock

        self.reconciler = LiveSnapshotReconciler()
        self.tracker = WindowTracker(store, device_id, clock=clock)
        self.tracker.on_complete(self._on_window_complete)
        self.report_builder = ReportBuilder(device_id, time_zone)
        self.backup = WindowBackup(artifacts)

        self.status = "Connecting…"
        self.last_report_id: Optional[str] = None
        self._subscription: Optional[Subscription] = None
        self._timers: List[asyncio.Task[None]] = []
        self._pending: Set[asyncio.Task[Any]] = set()
        self._command_lock = asyncio.Lock()
        self._last_backup: Optional[datetime] = None

    # -- readings -----------------------------------------------------------

    def handle_reading(self, reading: Reading) -> None:
        """Route one reading to the live view and, independently, to the tracker."""
        self.reconciler.observe(reading)
        self.tracker.on_reading(reading)

    async def refresh(self) -> bool:
        """Poll the newest readings; failures only update the status text."""
        try:
            readings = await self.store.query(self.device_id, limit=self.poll_limit)
        except StoreQueryFailed as exc:
            self.status = f"Error: {exc}"
            LOGGER.warning(
                "Refresh failed",
                extra={"device_id": self.device_id, "reason": str(exc)},
            )
            return False

        for reading in readings:
            self.handle_reading(reading)
        self.status = "Live ✅"
        return True

    def subscribe(self) -> Subscription:
        if self._subscription is not None:
            self._subscription.close()
        self._subscription = self.store.subscribe(self.device_id, self.handle_reading)
        LOGGER.info("Subscribed to live inserts", extra={"device_id": self.device_id})
        return self._subscription

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    # -- lifecycle ----------------------------------------------------------

    async def run(self) -> None:
        """Restore any backed-up window, then start polling, ticking and listening."""
        if self.tracker.state is WindowState.idle:
            self.backup.restore(self.tracker)
        await self.resume()

    async def resume(self) -> None:
        """Re-establish both channels after a pause or network loss."""
        self.status = "Reconnecting…"
        await self.refresh()
        self.subscribe()
        if not self._timers:
            self._timers = [
                asyncio.create_task(self._poll_loop(), name="poll"),
                asyncio.create_task(self._tick_loop(), name="tick"),
            ]
            if self.weather is not None:
                self._timers.append(asyncio.create_task(self._weather_loop(), name="weather"))

    async def pause(self) -> None:
        """Tear down the subscription and cancel the timers."""
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        timers, self._timers = self._timers, []
        for task in timers:
            task.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        self.status = "Paused"

    async def shutdown(self) -> None:
        await self.pause()
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        if self.tracker.state is not WindowState.idle:
            self.backup.save(self.tracker)
        if self.emailer is not None:
            await self.emailer.aclose()
        if self.weather is not None:
            await self.weather.aclose()

    def tick(self, now: Optional[datetime] = None) -> LiveStatus:
        """Clock tick: check window expiry, back up an active window, report staleness."""
        current = now or self._clock()
        self.tracker.tick(current)
        if self.tracker.state is WindowState.collecting:
            due = self._last_backup is None or (
                current - self._last_backup >= timedelta(seconds=BACKUP_EVERY_SECONDS)
            )
            if due:
                self.backup.save(self.tracker)
                self._last_backup = current
        return self.live_status(current)

    def live_status(self, now: Optional[datetime] = None) -> LiveStatus:
        current = now or self._clock()
        return LiveStatus(
            status=self.status,
            rows=self.reconciler.rows(),
            last_reading=self.reconciler.last_timestamp(),
            age_seconds=self.reconciler.age_seconds(current),
            offline=self.reconciler.is_offline(current, self.offline_after_sec),
            offline_after_sec=self.offline_after_sec,
        )

    # -- window commands ----------------------------------------------------

    async def start_window(
        self,
        mode: TrackingMode,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> TrackingWindow:
        async with self._command_lock:
            window = await self.tracker.start(mode, start, end)
            self.backup.save(self.tracker)
            self._last_backup = self._clock()
            return window

    async def stop_window(self) -> TrackingWindow:
        async with self._command_lock:
            return self.tracker.stop()

    async def reset_window(self) -> TrackingWindow:
        async with self._command_lock:
            window = self.tracker.reset()
            self.backup.clear()
            self._last_backup = None
            return window

    # -- reporting ----------------------------------------------------------

    def build_report(self, interval_seconds: Optional[int] = None) -> Report:
        """Report on the current (collecting or completed) window.

        A window that is still collecting is reported up to now.
        """
        window = self.tracker.window()
        if window.state is WindowState.idle or window.start is None or window.end is None:
            raise InvalidTransition("No tracking window to report on; start one first.")
        interval = interval_seconds or self.default_sample_interval_sec
        now = self._clock()
        end = window.end
        if window.state is WindowState.collecting and now < end:
            end = max(now, window.start)
        return self.report_builder.build(
            self.tracker.captured,
            window.start,
            end,
            interval,
            sensors=self.reconciler.snapshot().keys(),
            now=now,
        )

    def archive_report(self, report: Report) -> str:
        key = f"{REPORT_PREFIX}{report.report_id}.csv"
        self.artifacts.put_object(key, report.to_csv().encode("utf-8"))
        self.last_report_id = report.report_id
        LOGGER.info(
            "Report archived",
            extra={"report_id": report.report_id, "reading_count": report.point_count},
        )
        return key

    def load_report_csv(self, report_id: str) -> bytes:
        return self.artifacts.get_object(f"{REPORT_PREFIX}{report_id}.csv")

    async def email_report(
        self,
        email: str,
        interval_seconds: Optional[int] = None,
        confirm_large: bool = False,
    ) -> Report:
        """Build, archive and email a report.

        ``EmailDeliveryFailed`` propagates; the tracker is never touched.
        """
        report = self.build_report(interval_seconds)
        self.archive_report(report)
        if self.emailer is None:
            raise EmailDeliveryFailed("Report email endpoint is not configured.")
        await self.emailer.send(email, report, confirm_large=confirm_large)
        return report

    def _on_window_complete(self, completed: CompletedWindow) -> None:
        self.backup.save(self.tracker)
        if not self.auto_report or not completed.readings:
            return
        report = self.report_builder.build(
            completed.readings,
            completed.start,
            completed.end,
            self.default_sample_interval_sec,
            sensors=self.reconciler.snapshot().keys(),
            now=completed.completed_at,
        )
        self.archive_report(report)
        if not self.auto_report_email or self.emailer is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.warning(
                "No event loop; auto-report email skipped",
                extra={"report_id": report.report_id},
            )
            return
        task = loop.create_task(self._send_auto_report(self.auto_report_email, report))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send_auto_report(self, email: str, report: Report) -> None:
        assert self.emailer is not None
        try:
            # auto-sent reports are never interactive, so size is pre-confirmed
            await self.emailer.send(email, report, confirm_large=True)
        except EmailDeliveryFailed as exc:
            self.status = f"Auto-report email failed: {exc}"
            LOGGER.warning(
                "Auto-report email failed",
                extra={"report_id": report.report_id, "reason": str(exc)},
            )

    # -- retention ----------------------------------------------------------

    async def cleanup(self, retention_days: int) -> CleanupResult:
        if retention_days < 1:
            raise ValueError("retention_days must be at least 1")
        cutoff = self._clock() - timedelta(days=retention_days)
        deleted = await self.store.delete_older_than(cutoff)
        LOGGER.info("Old readings deleted", extra={"deleted": deleted})
        return CleanupResult(deleted=deleted, cutoff=cutoff)

    async def stats(self) -> StoreStats:
        return await self.store.stats(self._clock())

    # -- timers -------------------------------------------------------------

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.upload_interval_sec)
            await self.refresh()

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(TICK_SECONDS)
            self.tick()

    async def _weather_loop(self) -> None:
        assert self.weather is not None
        while True:
            reading = await self.weather.fetch()
            if reading is not None:
                self.handle_reading(reading)
            await asyncio.sleep(self.weather_interval_sec)


@lru_cache
def build_default_service() -> DashboardService:
    """Factory that wires the service from environment settings."""
    settings = get_settings()
    emailer = None
    if settings.email_endpoint:
        emailer = ReportEmailClient(
            endpoint=settings.email_endpoint,
            warn_bytes=settings.email_warn_bytes,
        )
    weather = None
    if settings.weather_latitude is not None and settings.weather_longitude is not None:
        weather = OutdoorWeatherClient(
            device_id=settings.device_id,
            latitude=settings.weather_latitude,
            longitude=settings.weather_longitude,
        )
    return DashboardService(
        store=build_default_store(),
        device_id=settings.device_id,
        artifacts=build_default_artifact_store(),
        upload_interval_sec=settings.upload_interval_sec,
        offline_after_sec=settings.offline_after_sec,
        poll_limit=settings.poll_limit,
        time_zone=settings.time_zone,
        default_sample_interval_sec=settings.default_sample_interval_sec,
        auto_report=settings.auto_report,
        auto_report_email=settings.auto_report_email,
        emailer=emailer,
        weather=weather,
        weather_interval_sec=settings.weather_interval_sec,
    )
