"""Error taxonomy surfaced by the dashboard services."""

from __future__ import annotations


class DashboardError(Exception):
    """Base class for recoverable dashboard errors."""


class InvalidWindow(DashboardError):
    """Tracking window bounds are missing or ``end <= start``."""


class InvalidTransition(DashboardError):
    """A window command was issued from a state that does not allow it."""


class StoreQueryFailed(DashboardError):
    """The reading store could not be reached or rejected a request."""


class EmailDeliveryFailed(DashboardError):
    """The report email endpoint did not accept the report."""

    def __init__(self, message: str, oversized: bool = False) -> None:
        super().__init__(message)
        self.oversized = oversized
