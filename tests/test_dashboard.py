from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from datastore.memory_store import InMemoryReadingStore
from models.errors import InvalidTransition, StoreQueryFailed
from models.records import Reading
from services.backup import BACKUP_KEY
from services.dashboard import REPORT_PREFIX, DashboardService
from services.window_tracker import TrackingMode, WindowState
from storage.artifacts import LocalArtifactStore

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FailingStore(InMemoryReadingStore):
    async def query(self, device_id, start=None, end=None, limit=None):
        raise StoreQueryFailed("Reading store unreachable: offline")


class CopyingStore(InMemoryReadingStore):
    """Returns fresh row objects per query, as a REST-backed store does."""

    async def query(self, device_id, start=None, end=None, limit=None):
        rows = await super().query(device_id, start=start, end=end, limit=limit)
        return [dataclasses.replace(row) for row in rows]


class RecordingEmailer:
    def __init__(self) -> None:
        self.sent: List[tuple] = []
        self.closed = False

    async def send(self, email, report, confirm_large=False) -> int:
        self.sent.append((email, report.report_id, confirm_large))
        return 1

    async def aclose(self) -> None:
        self.closed = True


def _reading(offset_s: int, sensor: str = "ambient", device_id: str = "pi4") -> Reading:
    return Reading(
        device_id=device_id,
        sensor_id=f"{sensor}-id",
        sensor_name=sensor,
        temp_c=20.0 + offset_s / 100,
        ts_utc=T0 + timedelta(seconds=offset_s),
    )


def _service(
    clock: FakeClock,
    store: Optional[InMemoryReadingStore] = None,
    **kwargs,
) -> DashboardService:
    return DashboardService(
        store=store or InMemoryReadingStore(name="temperature_readings"),
        device_id="pi4",
        artifacts=LocalArtifactStore(name="artifacts"),
        time_zone="UTC",
        clock=clock,
        **kwargs,
    )


def test_handle_reading_feeds_live_view_and_window() -> None:
    clock = FakeClock(T0)
    service = _service(clock)
    asyncio.run(service.start_window(TrackingMode.manual, T0, T0 + timedelta(minutes=1)))

    service.handle_reading(_reading(10))
    service.handle_reading(_reading(5))
    service.handle_reading(_reading(600, sensor="outdoor"))

    rows = service.reconciler.snapshot()
    assert rows["ambient"].ts_utc == T0 + timedelta(seconds=10)
    assert "outdoor" in rows
    assert [r.ts_utc for r in service.tracker.captured] == [
        T0 + timedelta(seconds=10),
        T0 + timedelta(seconds=5),
    ]


def test_refresh_failure_only_updates_status() -> None:
    service = _service(FakeClock(T0), store=FailingStore(name="broken"))
    service.handle_reading(_reading(0))

    assert asyncio.run(service.refresh()) is False
    assert service.status.startswith("Error: ")
    assert service.reconciler.last_timestamp() == T0


def test_refresh_populates_snapshot_from_store() -> None:
    store = InMemoryReadingStore(name="temperature_readings")
    asyncio.run(store.insert(_reading(0)))
    asyncio.run(store.insert(_reading(30)))
    service = _service(FakeClock(T0 + timedelta(minutes=1)), store=store)

    assert asyncio.run(service.refresh()) is True

    live = service.live_status()
    assert live.status == "Live ✅"
    assert live.last_reading == T0 + timedelta(seconds=30)
    assert live.age_seconds == 30
    assert live.offline is False


def test_live_status_reports_offline_after_threshold() -> None:
    clock = FakeClock(T0)
    service = _service(clock, offline_after_sec=40)
    service.handle_reading(_reading(0))

    assert service.live_status(T0 + timedelta(seconds=40)).offline is False
    assert service.live_status(T0 + timedelta(seconds=41)).offline is True


def test_pause_and_resume_manage_subscription_and_timers() -> None:
    async def scenario() -> None:
        service = _service(FakeClock(T0), upload_interval_sec=3600)
        await service.resume()
        assert service.subscribed is True
        assert service.status == "Live ✅"
        assert len(service._timers) == 2

        await service.store.insert(_reading(0))
        assert "ambient" in service.reconciler.snapshot()

        await service.pause()
        assert service.subscribed is False
        assert service.status == "Paused"
        assert service._timers == []

        await service.store.insert(_reading(20, sensor="outdoor"))
        assert "outdoor" not in service.reconciler.snapshot()

        await service.resume()
        assert service.subscribed is True
        assert "outdoor" in service.reconciler.snapshot()
        await service.shutdown()

    asyncio.run(scenario())


def test_tick_completes_window_and_archives_auto_report() -> None:
    clock = FakeClock(T0)
    service = _service(clock, auto_report=True)
    asyncio.run(service.start_window(TrackingMode.manual, T0, T0 + timedelta(minutes=1)))
    for offset in (0, 20, 40, 60):
        service.handle_reading(_reading(offset))

    service.tick(T0 + timedelta(seconds=59))
    assert service.tracker.state is WindowState.collecting

    clock.now = T0 + timedelta(seconds=61)
    service.tick()

    assert service.tracker.state is WindowState.completed
    assert service.last_report_id is not None
    keys = service.artifacts.list_objects(REPORT_PREFIX)
    assert keys == [f"{REPORT_PREFIX}{service.last_report_id}.csv"]
    assert BACKUP_KEY in service.artifacts.list_objects("backup/")


def test_auto_report_is_emailed_with_size_confirmed() -> None:
    async def scenario() -> DashboardService:
        clock = FakeClock(T0)
        service = _service(
            clock,
            auto_report=True,
            auto_report_email="ops@example.com",
            emailer=RecordingEmailer(),
        )
        await service.start_window(TrackingMode.manual, T0, T0 + timedelta(minutes=1))
        service.handle_reading(_reading(30))
        service.tick(T0 + timedelta(minutes=2))
        await service.shutdown()
        return service

    service = asyncio.run(scenario())

    emailer = service.emailer
    assert emailer.sent == [("ops@example.com", service.last_report_id, True)]
    assert emailer.closed is True


def test_empty_completed_window_produces_no_report() -> None:
    service = _service(FakeClock(T0), auto_report=True)
    asyncio.run(service.start_window(TrackingMode.manual, T0, T0 + timedelta(minutes=1)))

    service.tick(T0 + timedelta(minutes=5))

    assert service.tracker.state is WindowState.completed
    assert service.last_report_id is None


def test_build_report_requires_a_window() -> None:
    service = _service(FakeClock(T0))

    with pytest.raises(InvalidTransition):
        service.build_report()


def test_build_report_on_collecting_window_ends_now() -> None:
    clock = FakeClock(T0)
    service = _service(clock, default_sample_interval_sec=10)
    asyncio.run(service.start_window(TrackingMode.auto))
    service.handle_reading(_reading(5))
    clock.now = T0 + timedelta(seconds=30)

    report = service.build_report()

    assert report.start == T0
    assert report.end == T0 + timedelta(seconds=30)
    assert report.interval_seconds == 10
    assert report.captured_count == 1


def test_reset_clears_backup() -> None:
    clock = FakeClock(T0)
    service = _service(clock)

    async def scenario() -> None:
        await service.start_window(TrackingMode.auto)
        assert service.artifacts.list_objects("backup/") == [BACKUP_KEY]
        clock.now = T0 + timedelta(seconds=5)
        await service.stop_window()
        await service.reset_window()

    asyncio.run(scenario())

    assert service.tracker.state is WindowState.idle
    assert service.artifacts.list_objects("backup/") == []


def test_run_restores_backed_up_window() -> None:
    clock = FakeClock(T0)
    artifacts = LocalArtifactStore(name="artifacts")
    first = DashboardService(
        store=InMemoryReadingStore(name="temperature_readings"),
        device_id="pi4",
        artifacts=artifacts,
        clock=clock,
    )
    asyncio.run(first.start_window(TrackingMode.manual, T0, T0 + timedelta(hours=1)))
    first.handle_reading(_reading(10))
    first.tick(T0 + timedelta(seconds=30))

    second = DashboardService(
        store=InMemoryReadingStore(name="temperature_readings"),
        device_id="pi4",
        artifacts=artifacts,
        clock=clock,
        upload_interval_sec=3600,
    )

    async def scenario() -> None:
        await second.run()
        await second.shutdown()

    asyncio.run(scenario())

    assert second.tracker.state is WindowState.collecting
    assert [r.ts_utc for r in second.tracker.captured] == [T0 + timedelta(seconds=10)]


def test_cleanup_validates_retention_and_deletes() -> None:
    store = InMemoryReadingStore(name="temperature_readings")
    asyncio.run(store.insert(_reading(0)))
    asyncio.run(store.insert(_reading(3 * 86400)))
    service = _service(FakeClock(T0 + timedelta(days=4)), store=store)

    with pytest.raises(ValueError):
        asyncio.run(service.cleanup(0))

    result = asyncio.run(service.cleanup(2))

    assert result.deleted == 1
    assert result.cutoff == T0 + timedelta(days=2)
    stats = asyncio.run(service.stats())
    assert stats.total_count == 1


def test_repeated_polls_do_not_duplicate_captured_readings() -> None:
    clock = FakeClock(T0)
    store = CopyingStore(name="temperature_readings")
    service = _service(clock, store=store)
    asyncio.run(service.start_window(TrackingMode.auto))
    asyncio.run(store.insert(_reading(30)))

    for _ in range(3):
        assert asyncio.run(service.refresh()) is True

    clock.now = T0 + timedelta(seconds=90)
    asyncio.run(service.stop_window())
    report = service.build_report(60)

    assert service.tracker.window().captured_count == 1
    assert report.captured_count == 1
    assert report.point_count == 1
    assert report.to_csv().count("2024-01-01T12:00:30Z") == 1


def test_push_and_poll_of_the_same_row_are_harmless() -> None:
    async def scenario() -> DashboardService:
        clock = FakeClock(T0)
        store = CopyingStore(name="temperature_readings")
        service = _service(clock, store=store, upload_interval_sec=3600)
        await service.start_window(TrackingMode.auto)
        await service.resume()

        await store.insert(_reading(10))
        await service.refresh()
        await store.insert(_reading(5))
        await service.refresh()

        await service.shutdown()
        return service

    service = asyncio.run(scenario())

    live = service.reconciler.snapshot()
    assert list(live) == ["ambient"]
    assert live["ambient"].ts_utc == T0 + timedelta(seconds=10)
    assert sorted(r.ts_utc for r in service.tracker.captured) == [
        T0 + timedelta(seconds=5),
        T0 + timedelta(seconds=10),
    ]


def test_refetched_weather_reading_is_captured_once() -> None:
    service = _service(FakeClock(T0))
    asyncio.run(service.start_window(TrackingMode.auto))
    outdoor = _reading(900, sensor="outdoor")

    service.handle_reading(outdoor)
    service.handle_reading(dataclasses.replace(outdoor))

    assert service.tracker.window().captured_count == 1
