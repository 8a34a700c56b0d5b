"""
Result values returned across component boundaries.

Soft failures (conflicts, unreachable gateways, failed pushes) travel as
values so that callers can tell validation, conflict, infrastructure and
not-found failures apart without catching exceptions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .models import Booking, Interval


@dataclass(frozen=True)
class AvailabilityScope:
    """
    Narrows an availability check to one provider and/or ignores one booking.

    ``exclude_external_id`` ignores the external calendar event a booking was
    pushed as, so moving a synced booking does not conflict with itself.
    """
    provider_id: Optional[int] = None
    exclude_booking_id: Optional[int] = None
    exclude_external_id: Optional[str] = None


class AvailabilityReason(str, Enum):
    AVAILABLE = "available"
    BOOKING_CONFLICT = "booking_conflict"
    CALENDAR_CONFLICT = "calendar_conflict"
    SOURCE_FAULT = "source_fault"


@dataclass(frozen=True)
class AvailabilityResult:
    interval: Interval
    reason: AvailabilityReason
    conflicts: List[Interval] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.reason == AvailabilityReason.AVAILABLE

    def __bool__(self) -> bool:
        return self.available


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a single external calendar push; never fatal to the caller."""
    ok: bool
    external_id: Optional[str] = None
    error: Optional[str] = None


class OperationStatus(str, Enum):
    OK = "ok"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    FAILED = "failed"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class BookingOutcome:
    status: OperationStatus
    booking: Optional[Booking] = None
    errors: List[str] = field(default_factory=list)
    availability: Optional[AvailabilityResult] = None
    sync: Optional[SyncResult] = None

    @property
    def ok(self) -> bool:
        return self.status == OperationStatus.OK

    @classmethod
    def success(cls, booking: Booking, sync: Optional[SyncResult] = None) -> "BookingOutcome":
        return cls(status=OperationStatus.OK, booking=booking, sync=sync)

    @classmethod
    def invalid(cls, errors: List[str], booking: Optional[Booking] = None) -> "BookingOutcome":
        return cls(status=OperationStatus.VALIDATION_ERROR, booking=booking, errors=list(errors))

    @classmethod
    def unavailable(
        cls,
        availability: AvailabilityResult,
        booking: Optional[Booking] = None,
    ) -> "BookingOutcome":
        return cls(
            status=OperationStatus.CONFLICT,
            booking=booking,
            errors=["Time slot is not available"],
            availability=availability,
        )

    @classmethod
    def failed(cls, message: str, booking: Optional[Booking] = None) -> "BookingOutcome":
        return cls(status=OperationStatus.FAILED, booking=booking, errors=[message])

    @classmethod
    def not_found(cls, booking_id: int) -> "BookingOutcome":
        return cls(status=OperationStatus.NOT_FOUND, errors=[f"Booking {booking_id} not found"])
