"""Exception taxonomy shared by the engine."""

from __future__ import annotations

from typing import Optional


class FrontDeskError(Exception):
    """Base class for engine errors."""


class InvalidInterval(FrontDeskError, ValueError):
    """Raised when an appointment interval does not end after it starts."""

    def __init__(self, start, end) -> None:
        super().__init__(f"End time {end} must be after start time {start}")
        self.start = start
        self.end = end


class ConflictError(FrontDeskError):
    """The host already has an overlapping appointment."""

    def __init__(self, host_id: str, conflicting_id: str) -> None:
        super().__init__(f"Host {host_id} already has appointment {conflicting_id} in this time range")
        self.host_id = host_id
        self.conflicting_id = conflicting_id


class StaleBookingError(FrontDeskError):
    """The booking could not be applied against the current state of the calendar."""


class NotFound(FrontDeskError, LookupError):
    def __init__(self, table: str, record_id: str) -> None:
        super().__init__(f"{table} record {record_id} not found")
        self.table = table
        self.record_id = record_id


class StoreUnavailable(FrontDeskError):
    """Transient record store failure; background callers retry on their next tick."""


class DeliveryFailed(FrontDeskError):
    def __init__(self, appointment_id: str, reason: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(f"Webhook delivery for appointment {appointment_id} failed: {reason}")
        self.appointment_id = appointment_id
        self.reason = reason
        self.status_code = status_code


class SubscriptionDropped(FrontDeskError):
    """The change feed connection went away and must be re-established."""


class AccountInactive(FrontDeskError, PermissionError):
    def __init__(self, actor_id: str, status: str) -> None:
        super().__init__(f"Account {actor_id} is {status}")
        self.actor_id = actor_id
        self.status = status


class InvalidRequest(FrontDeskError, ValueError):
    """A foreground request is missing information or is malformed."""


class PermissionDenied(FrontDeskError, PermissionError):
    """The actor may not act on this record."""
