"""
Error taxonomy for the salah core.

Validation errors (PrematureMarkError, FutureDateError) are local rejections: nothing is
mutated and the caller decides how to present them. StorageError is surfaced as a failed
operation. TransportError is logged by the scheduler and never aborts a batch.
"""
from datetime import date, datetime
from typing import Optional


class SalahError(Exception):
    """Base class for all salah errors."""


class PrematureMarkError(SalahError):
    """A prayer was marked complete before its time had arrived."""

    def __init__(self, prayer_name: str, prayer_date: date, prayer_time: datetime):
        self.prayer_name = prayer_name
        self.prayer_date = prayer_date
        self.prayer_time = prayer_time
        super().__init__(
            f"Cannot mark {prayer_name} on {prayer_date.isoformat()} before {prayer_time.strftime('%H:%M')}"
        )


class FutureDateError(SalahError):
    """A completion write targeted a date after today."""

    def __init__(self, prayer_date: date, today: date):
        self.prayer_date = prayer_date
        self.today = today
        super().__init__(f"Cannot mark prayers for {prayer_date.isoformat()} (today is {today.isoformat()})")


class UnavailableError(SalahError):
    """Prayer times could not be produced from network, cache or fallback."""


class TransportError(SalahError):
    """The notification transport failed to arm or cancel one event."""

    def __init__(self, message: str, event_id: Optional[str] = None):
        self.event_id = event_id
        super().__init__(message)


class StorageError(SalahError):
    """A persistence read or write failed; the operation was not applied."""
