"""
Service layer that orchestrates adapters and domain logic.
"""

from .availability import AvailabilityEngine
from .booking_service import BookingService
from .calendar_transfer import CalendarTransferService, ImportReport
from .gateways import BookingRepository, ExternalCalendarGateway
from .requests import BookingRequest

__all__ = [
    "AvailabilityEngine",
    "BookingRepository",
    "BookingRequest",
    "BookingService",
    "CalendarTransferService",
    "ExternalCalendarGateway",
    "ImportReport",
]
