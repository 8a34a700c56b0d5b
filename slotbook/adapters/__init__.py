"""
Adapters layer - Booking stores and external calendars (Microsoft Graph API).
"""

from .graph_calendar import GraphCalendarGateway
from .memory_store import InMemoryBookingRepository, JsonFileBookingRepository
from .mock_calendar import MockCalendarGateway

__all__ = [
    "GraphCalendarGateway",
    "InMemoryBookingRepository",
    "JsonFileBookingRepository",
    "MockCalendarGateway",
]
