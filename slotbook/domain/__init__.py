"""
Domain layer - Pure business logic without external dependencies.
"""

from .models import (
    Attendee,
    Booking,
    BookingStatus,
    BookingType,
    Classification,
    EventRecord,
    EventStatus,
    Interval,
    Organizer,
    Reminder,
    Slot,
    SyncStatus,
    WorkingHours,
    overlaps,
)

__all__ = [
    "Attendee",
    "Booking",
    "BookingStatus",
    "BookingType",
    "Classification",
    "EventRecord",
    "EventStatus",
    "Interval",
    "Organizer",
    "Reminder",
    "Slot",
    "SyncStatus",
    "WorkingHours",
    "overlaps",
]
