"""State machine for user-defined collection windows."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Iterable, List, Optional, Protocol, Set, Tuple

from models.errors import InvalidTransition, InvalidWindow, StoreQueryFailed
from models.records import Reading, ReadingKey
from models.timeutils import parse_timestamp, utcnow

LOGGER = logging.getLogger(__name__)

AUTO_WINDOW_SPAN = timedelta(days=365)


class WindowState(str, Enum):
    idle = "idle"
    collecting = "collecting"
    completed = "completed"


class TrackingMode(str, Enum):
    manual = "manual"
    auto = "auto"


class RangeQuery(Protocol):
    async def query(
        self,
        device_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Reading]: ...


@dataclass(frozen=True)
class TrackingWindow:
    """Point-in-time view of the tracker."""

    state: WindowState
    mode: Optional[TrackingMode]
    start: Optional[datetime]
    end: Optional[datetime]
    captured_count: int
    backfilling: bool = False


@dataclass(frozen=True)
class CompletedWindow:
    """Payload handed to completion listeners."""

    start: datetime
    end: datetime
    readings: Tuple[Reading, ...]
    completed_at: datetime


CompletionListener = Callable[[CompletedWindow], None]


class WindowTracker:
    """Captures the readings of one device that fall inside a tracking window.

    ``idle -> collecting -> completed -> idle``. Bounds are inclusive at both
    ends. The tracker owns its state; callers drive it through ``start``,
    ``on_reading``, ``tick``, ``stop`` and ``reset``.
    """

    def __init__(
        self,
        store: RangeQuery,
        device_id: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self.device_id = device_id
        self._clock = clock
        self._listeners: List[CompletionListener] = []
        self._state = WindowState.idle
        self._mode: Optional[TrackingMode] = None
        self._start: Optional[datetime] = None
        self._end: Optional[datetime] = None
        self._captured: List[Reading] = []
        self._seen: Set[ReadingKey] = set()
        self._backfilling = False
        self._generation = 0

    @property
    def state(self) -> WindowState:
        return self._state

    @property
    def start_instant(self) -> Optional[datetime]:
        return self._start

    @property
    def end_instant(self) -> Optional[datetime]:
        return self._end

    @property
    def captured(self) -> List[Reading]:
        return list(self._captured)

    def window(self) -> TrackingWindow:
        return TrackingWindow(
            state=self._state,
            mode=self._mode,
            start=self._start,
            end=self._end,
            captured_count=len(self._captured),
            backfilling=self._backfilling,
        )

    def on_complete(self, listener: CompletionListener) -> None:
        self._listeners.append(listener)

    async def start(
        self,
        mode: TrackingMode,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> TrackingWindow:
        """Begin collecting.

        Raises ``InvalidWindow`` for bad manual bounds and ``InvalidTransition``
        unless idle. A start in the past backfills from the store; if that query
        fails the tracker returns to idle and ``StoreQueryFailed`` propagates.
        """
        if self._state is not WindowState.idle:
            raise InvalidTransition(
                f"Cannot start a window while {self._state.value}; reset it first."
            )

        now = self._clock()
        if mode is TrackingMode.auto:
            window_start, window_end = now, now + AUTO_WINDOW_SPAN
        else:
            if start is None or end is None:
                raise InvalidWindow("Start and end times are required for a manual window.")
            window_start, window_end = parse_timestamp(start), parse_timestamp(end)
            if window_end <= window_start:
                raise InvalidWindow("End time must be after start time.")

        self._generation += 1
        generation = self._generation
        self._state = WindowState.collecting
        self._mode = mode
        self._start = window_start
        self._end = window_end
        self._captured = []
        self._seen = set()
        LOGGER.info(
            "Tracking window started",
            extra={"device_id": self.device_id, "window_state": self._state.value},
        )

        if window_start < now:
            await self._backfill(generation, window_start, window_end)
        return self.window()

    def on_reading(self, reading: Reading) -> bool:
        """Capture ``reading`` if collecting and it lies inside the window.

        A row already captured, by push, poll or backfill, is not captured again.
        """
        if self._state is not WindowState.collecting:
            return False
        if reading.device_id != self.device_id:
            return False
        if not self._in_bounds(reading):
            return False
        return self._capture(reading)

    def tick(self, now: Optional[datetime] = None) -> bool:
        """Complete the window once the clock passes its end; returns True on that transition."""
        if self._state is not WindowState.collecting or self._backfilling:
            return False
        _, end = self._bounds()
        current = now if now is not None else self._clock()
        if current < end:
            return False
        self._complete(current)
        return True

    def stop(self) -> TrackingWindow:
        if self._state is not WindowState.collecting:
            raise InvalidTransition(f"Cannot stop a window while {self._state.value}.")
        now = self._clock()
        # an open-ended window is closed at the moment it is stopped
        if self._mode is TrackingMode.auto and self._start is not None and now > self._start:
            self._end = now
        self._complete(now)
        return self.window()

    def reset(self) -> TrackingWindow:
        if self._state is WindowState.collecting:
            raise InvalidTransition("Stop the active window before resetting it.")
        self._clear()
        LOGGER.info("Tracking window reset", extra={"device_id": self.device_id})
        return self.window()

    def restore(
        self,
        state: WindowState,
        mode: TrackingMode,
        start: datetime,
        end: datetime,
        readings: Iterable[Reading],
    ) -> None:
        """Reinstate a previously saved window without querying the store."""
        if state is WindowState.idle:
            return
        if end <= start:
            raise InvalidWindow("End time must be after start time.")
        self._generation += 1
        self._state = state
        self._mode = mode
        self._start = start
        self._end = end
        self._captured = []
        self._seen = set()
        for reading in readings:
            self._capture(reading)

    async def _backfill(self, generation: int, start: datetime, end: datetime) -> None:
        self._backfilling = True
        try:
            rows = await self._store.query(self.device_id, start=start, end=end)
        except StoreQueryFailed:
            if generation == self._generation:
                LOGGER.warning(
                    "Backfill failed; window reverted",
                    extra={"device_id": self.device_id, "window_state": WindowState.idle.value},
                )
                self._clear()
            raise
        finally:
            if generation == self._generation:
                self._backfilling = False

        if generation != self._generation:
            return
        backfilled = 0
        for row in reversed(rows):
            if self._in_bounds(row) and self._capture(row):
                backfilled += 1
        LOGGER.info(
            "Backfilled tracking window",
            extra={"device_id": self.device_id, "reading_count": backfilled},
        )

    def _capture(self, reading: Reading) -> bool:
        if reading.key in self._seen:
            return False
        self._seen.add(reading.key)
        self._captured.append(reading)
        return True

    def _bounds(self) -> Tuple[datetime, datetime]:
        if self._start is None or self._end is None:
            raise InvalidTransition(f"No window bounds while {self._state.value}.")
        return self._start, self._end

    def _in_bounds(self, reading: Reading) -> bool:
        start, end = self._bounds()
        return start <= reading.ts_utc <= end

    def _complete(self, now: datetime) -> None:
        start, end = self._bounds()
        self._state = WindowState.completed
        LOGGER.info(
            "Tracking window completed",
            extra={
                "device_id": self.device_id,
                "window_state": self._state.value,
                "reading_count": len(self._captured),
            },
        )
        completed = CompletedWindow(
            start=start,
            end=end,
            readings=tuple(self._captured),
            completed_at=now,
        )
        for listener in list(self._listeners):
            try:
                listener(completed)
            except Exception:
                LOGGER.exception(
                    "Window completion listener failed", extra={"device_id": self.device_id}
                )

    def _clear(self) -> None:
        self._generation += 1
        self._state = WindowState.idle
        self._mode = None
        self._start = None
        self._end = None
        self._captured = []
        self._seen = set()
        self._backfilling = False
