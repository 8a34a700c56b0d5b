"""
Domain-specific exception hierarchy for the slotbook application.
"""

from typing import Iterable


class SlotbookError(Exception):
    """Base class for all application-level errors."""


class InvalidInterval(SlotbookError, ValueError):
    """Raised when an interval does not end after it starts."""


class ValidationError(SlotbookError):
    """Raised when caller input violates one or more rules."""

    def __init__(self, errors: Iterable[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid input")


class BookingNotFoundError(SlotbookError):
    """Raised when a booking id is unknown to the repository."""

    def __init__(self, booking_id: int):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")


class StorageError(SlotbookError):
    """Raised when the booking store cannot be read or written."""


class CalendarAPIError(SlotbookError):
    """Raised when calendar data cannot be fetched, pushed or parsed."""
