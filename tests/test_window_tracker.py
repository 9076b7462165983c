"""Unit tests for the tracking window state machine."""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from models.errors import InvalidTransition, InvalidWindow, StoreQueryFailed
from models.records import Reading
from services.window_tracker import (
    AUTO_WINDOW_SPAN,
    CompletedWindow,
    TrackingMode,
    WindowState,
    WindowTracker,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeStore:
    def __init__(self, rows: Optional[List[Reading]] = None, fail: bool = False) -> None:
        self.rows = rows or []
        self.fail = fail
        self.calls: list[tuple] = []

    async def query(self, device_id, start=None, end=None, limit=None):
        self.calls.append((device_id, start, end, limit))
        if self.fail:
            raise StoreQueryFailed("network down")
        rows = [
            row
            for row in self.rows
            if row.device_id == device_id
            and (start is None or row.ts_utc >= start)
            and (end is None or row.ts_utc <= end)
        ]
        return sorted(rows, key=lambda row: row.ts_utc, reverse=True)


def _reading(offset_s: int, sensor: str = "ambient", device_id: str = "pi4") -> Reading:
    return Reading(
        device_id=device_id,
        sensor_id=f"{sensor}-id",
        sensor_name=sensor,
        temp_c=20.0,
        ts_utc=T0 + timedelta(seconds=offset_s),
    )


def _tracker(store: Optional[FakeStore] = None, now: datetime = T0) -> tuple[WindowTracker, FakeClock, FakeStore]:
    clock = FakeClock(now)
    fake_store = store or FakeStore()
    return WindowTracker(fake_store, "pi4", clock=clock), clock, fake_store


def test_manual_start_requires_bounds() -> None:
    tracker, _, _ = _tracker()

    with pytest.raises(InvalidWindow):
        asyncio.run(tracker.start(TrackingMode.manual, start=T0))

    assert tracker.state is WindowState.idle


@pytest.mark.parametrize("end_offset", [0, -1, -3600])
def test_manual_start_rejects_end_not_after_start(end_offset: int) -> None:
    tracker, _, store = _tracker()

    with pytest.raises(InvalidWindow):
        asyncio.run(
            tracker.start(
                TrackingMode.manual,
                start=T0 + timedelta(seconds=60),
                end=T0 + timedelta(seconds=60 + end_offset),
            )
        )

    assert tracker.state is WindowState.idle
    assert tracker.start_instant is None
    assert store.calls == []


def test_auto_start_spans_one_year_from_now() -> None:
    tracker, _, store = _tracker()

    window = asyncio.run(tracker.start(TrackingMode.auto))

    assert window.state is WindowState.collecting
    assert window.start == T0
    assert window.end == T0 + AUTO_WINDOW_SPAN
    assert store.calls == []


def test_future_manual_start_does_not_backfill() -> None:
    tracker, _, store = _tracker()

    asyncio.run(
        tracker.start(
            TrackingMode.manual,
            start=T0 + timedelta(minutes=5),
            end=T0 + timedelta(minutes=10),
        )
    )

    assert tracker.state is WindowState.collecting
    assert store.calls == []


def test_past_start_backfills_in_chronological_order() -> None:
    rows = [_reading(offset) for offset in (-120, -60, -30, -10)]
    tracker, _, store = _tracker(FakeStore(rows))

    window = asyncio.run(
        tracker.start(
            TrackingMode.manual,
            start=T0 - timedelta(seconds=60),
            end=T0 + timedelta(seconds=60),
        )
    )

    assert len(store.calls) == 1
    assert window.captured_count == 3
    assert [r.ts_utc for r in tracker.captured] == [
        T0 - timedelta(seconds=60),
        T0 - timedelta(seconds=30),
        T0 - timedelta(seconds=10),
    ]


def test_backfill_failure_reverts_to_idle() -> None:
    tracker, _, _ = _tracker(FakeStore(fail=True))

    with pytest.raises(StoreQueryFailed):
        asyncio.run(
            tracker.start(
                TrackingMode.manual,
                start=T0 - timedelta(minutes=5),
                end=T0 + timedelta(minutes=5),
            )
        )

    window = tracker.window()
    assert window.state is WindowState.idle
    assert window.start is None and window.end is None
    assert window.captured_count == 0
    assert window.backfilling is False


def test_on_reading_is_inclusive_at_both_bounds() -> None:
    tracker, _, _ = _tracker()
    asyncio.run(
        tracker.start(
            TrackingMode.manual,
            start=T0 + timedelta(seconds=10),
            end=T0 + timedelta(seconds=20),
        )
    )

    accepted = [tracker.on_reading(_reading(offset)) for offset in (9, 10, 15, 20, 21)]

    assert accepted == [False, True, True, True, False]
    assert [r.ts_utc for r in tracker.captured] == [
        T0 + timedelta(seconds=10),
        T0 + timedelta(seconds=15),
        T0 + timedelta(seconds=20),
    ]


def test_on_reading_ignores_other_devices_and_idle_state() -> None:
    tracker, _, _ = _tracker()

    assert tracker.on_reading(_reading(0)) is False

    asyncio.run(tracker.start(TrackingMode.auto))
    assert tracker.on_reading(_reading(1, device_id="other")) is False
    assert tracker.on_reading(_reading(1)) is True


def test_same_row_is_captured_once() -> None:
    tracker, _, _ = _tracker()
    asyncio.run(tracker.start(TrackingMode.auto))
    reading = _reading(5)

    assert tracker.on_reading(reading) is True
    assert tracker.on_reading(reading) is False
    assert tracker.on_reading(dataclasses.replace(reading)) is False
    assert tracker.on_reading(_reading(5, sensor="outdoor")) is True

    assert tracker.window().captured_count == 2


def test_backfill_skips_rows_already_pushed() -> None:
    rows = [_reading(offset) for offset in (-30, -10)]
    store = FakeStore(rows)
    tracker, _, _ = _tracker(store)

    async def scenario() -> None:
        original_query = store.query

        async def query_with_push(*args, **kwargs):
            # the newest row is pushed while the backfill query is in flight
            tracker.on_reading(dataclasses.replace(rows[1]))
            return await original_query(*args, **kwargs)

        store.query = query_with_push
        await tracker.start(
            TrackingMode.manual,
            start=T0 - timedelta(seconds=60),
            end=T0 + timedelta(seconds=60),
        )

    asyncio.run(scenario())

    assert sorted(r.ts_utc for r in tracker.captured) == [
        T0 - timedelta(seconds=30),
        T0 - timedelta(seconds=10),
    ]


def test_bounds_are_required_outside_a_window() -> None:
    tracker, _, _ = _tracker()

    with pytest.raises(InvalidTransition):
        tracker._bounds()


def test_tick_completes_exactly_once() -> None:
    tracker, clock, _ = _tracker()
    completions: list[CompletedWindow] = []
    tracker.on_complete(completions.append)
    asyncio.run(
        tracker.start(
            TrackingMode.manual,
            start=T0 + timedelta(seconds=1),
            end=T0 + timedelta(seconds=30),
        )
    )
    tracker.on_reading(_reading(5))

    assert tracker.tick(T0 + timedelta(seconds=29)) is False
    assert tracker.tick(T0 + timedelta(seconds=30)) is True
    assert tracker.tick(T0 + timedelta(seconds=31)) is False
    clock.advance(3600)
    assert tracker.tick() is False

    assert tracker.state is WindowState.completed
    assert len(completions) == 1
    assert completions[0].end == T0 + timedelta(seconds=30)
    assert len(completions[0].readings) == 1


def test_completed_window_stops_capturing() -> None:
    tracker, _, _ = _tracker()
    asyncio.run(tracker.start(TrackingMode.auto))
    tracker.stop()

    assert tracker.on_reading(_reading(0)) is False


def test_stop_closes_auto_window_at_stop_time() -> None:
    tracker, clock, _ = _tracker()
    asyncio.run(tracker.start(TrackingMode.auto))
    clock.advance(120)

    window = tracker.stop()

    assert window.state is WindowState.completed
    assert window.end == T0 + timedelta(seconds=120)


def test_stop_keeps_manual_end() -> None:
    tracker, clock, _ = _tracker()
    end = T0 + timedelta(hours=1)
    asyncio.run(tracker.start(TrackingMode.manual, start=T0 + timedelta(seconds=1), end=end))
    clock.advance(60)

    assert tracker.stop().end == end


def test_stop_and_reset_transitions_are_validated() -> None:
    tracker, _, _ = _tracker()

    with pytest.raises(InvalidTransition):
        tracker.stop()

    asyncio.run(tracker.start(TrackingMode.auto))
    with pytest.raises(InvalidTransition):
        tracker.reset()
    with pytest.raises(InvalidTransition):
        asyncio.run(tracker.start(TrackingMode.auto))

    tracker.on_reading(_reading(1))
    tracker.stop()
    with pytest.raises(InvalidTransition):
        tracker.stop()

    window = tracker.reset()
    assert window.state is WindowState.idle
    assert window.captured_count == 0
    assert window.start is None

    assert tracker.reset().state is WindowState.idle


def test_listener_failure_does_not_block_completion() -> None:
    tracker, _, _ = _tracker()

    def broken(_window: CompletedWindow) -> None:
        raise RuntimeError("listener exploded")

    tracker.on_complete(broken)
    asyncio.run(tracker.start(TrackingMode.auto))
    tracker.stop()

    assert tracker.state is WindowState.completed


def test_restore_reinstates_window() -> None:
    tracker, _, _ = _tracker()
    readings = [_reading(1), _reading(2)]

    tracker.restore(
        WindowState.collecting,
        TrackingMode.manual,
        T0,
        T0 + timedelta(minutes=1),
        readings,
    )

    window = tracker.window()
    assert window.state is WindowState.collecting
    assert window.captured_count == 2
    assert tracker.on_reading(_reading(3)) is True
    assert tracker.on_reading(_reading(2)) is False
