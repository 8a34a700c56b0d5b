"""
Protocols describing the collaborators the booking core depends on.

The persistence store and the external calendar are plugged in from the
adapters layer (or stubbed in tests); the services only rely on these shapes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, ContextManager, List, Mapping, Optional, Protocol

from ..domain.models import Booking, EventRecord, Interval


class BookingRepository(Protocol):
    """Protocol describing the booking store behaviour needed by the services."""

    def transaction(self) -> ContextManager[None]:
        """Make the enclosed overlap check and write atomic."""

    def find_overlapping(
        self,
        interval: Interval,
        *,
        provider_id: Optional[int] = None,
        exclude_id: Optional[int] = None,
    ) -> List[Booking]:
        """Return non-cancelled bookings overlapping ``interval``."""

    def get(self, booking_id: int) -> Optional[Booking]:
        """Return the booking or None when unknown."""

    def create(self, booking: Booking) -> Booking:
        """Persist a new booking and return it with its id assigned."""

    def update(self, booking_id: int, fields: Mapping[str, Any]) -> Booking:
        """Apply ``fields`` to a stored booking and return the new version."""

    def soft_cancel(self, booking_id: int, reason: str, cancelled_at: datetime) -> None:
        """Mark a booking cancelled."""

    def delete(self, booking_id: int) -> None:
        """Remove a booking entirely."""

    def list_between(
        self,
        start: datetime,
        end: datetime,
        *,
        owner_id: Optional[int] = None,
        provider_id: Optional[int] = None,
    ) -> List[Booking]:
        """Return non-cancelled bookings starting within ``[start, end]``."""


class ExternalCalendarGateway(Protocol):
    """Protocol describing the third-party calendar integration."""

    def list_events(self, interval: Interval) -> List[EventRecord]:
        """Return events intersecting ``interval``."""

    def create_event(self, record: EventRecord) -> str:
        """Create an event and return its external id."""

    def update_event(self, external_id: str, record: EventRecord) -> None:
        """Replace an existing event."""

    def delete_event(self, external_id: str) -> None:
        """Remove an existing event."""
