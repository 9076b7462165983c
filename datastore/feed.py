"""In-process fan-out of reading insert notifications."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Callable, List

from models.records import Reading

LOGGER = logging.getLogger(__name__)

ReadingCallback = Callable[[Reading], None]


class Subscription:
    """Handle returned by :meth:`ChangeFeed.subscribe`; ``close`` is idempotent."""

    def __init__(self, feed: "ChangeFeed", device_id: str, callback: ReadingCallback) -> None:
        self.device_id = device_id
        self.callback = callback
        self._feed = feed
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._feed._remove(self)


class ChangeFeed:
    """Delivers inserted readings to the subscribers registered for their device."""

    def __init__(self) -> None:
        self._subscriptions: List[Subscription] = []
        self._lock = Lock()

    def subscribe(self, device_id: str, callback: ReadingCallback) -> Subscription:
        subscription = Subscription(self, device_id, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        LOGGER.debug("Subscribed to reading inserts", extra={"device_id": device_id})
        return subscription

    def publish(self, reading: Reading) -> int:
        """Deliver ``reading`` to matching subscribers, returning how many received it."""
        with self._lock:
            targets = [sub for sub in self._subscriptions if sub.device_id == reading.device_id]

        delivered = 0
        for subscription in targets:
            try:
                subscription.callback(reading)
            except Exception:
                LOGGER.exception(
                    "Reading subscriber failed",
                    extra={"device_id": reading.device_id, "sensor_name": reading.sensor_name},
                )
                continue
            delivered += 1
        return delivered

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
