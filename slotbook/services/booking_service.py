"""
Booking lifecycle: create, reschedule, cancel, complete and delete bookings.

The service is the only component allowed to change a booking's status,
interval or external event id. Every public operation returns a
``BookingOutcome`` so that callers can tell validation errors, conflicts,
infrastructure failures and unknown ids apart. Pushes to the external
calendar happen after the local write is committed; their failure is
recorded on the booking and reported, never rolled back.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import pendulum

from ..domain.exceptions import InvalidInterval, ValidationError
from ..domain.models import (
    Booking,
    BookingStatus,
    BookingType,
    Interval,
    Organizer,
    Slot,
    SyncStatus,
)
from ..domain.outcomes import AvailabilityResult, AvailabilityScope, BookingOutcome, SyncResult
from ..ical.encoder import EncodeResult, ICalEncoder
from .availability import AvailabilityEngine
from .gateways import BookingRepository, ExternalCalendarGateway
from .requests import BookingRequest

logger = logging.getLogger(__name__)


EDITABLE_FIELDS = frozenset({
    "title",
    "description",
    "location",
    "start_time",
    "end_time",
    "booking_type",
    "attendee_email",
    "attendee_name",
    "notes",
})

DEFAULT_SLOT_DURATION_RANGE = (15, 480)


class BookingService:
    """
    Orchestrates the availability engine, the booking store and the
    external calendar.
    """

    def __init__(
        self,
        repository: BookingRepository,
        availability: AvailabilityEngine,
        calendar: Optional[ExternalCalendarGateway] = None,
        clock: Optional[Callable[[], datetime]] = None,
        slot_duration_range: Tuple[int, int] = DEFAULT_SLOT_DURATION_RANGE,
        organizer: Optional[Organizer] = None,
        encoder: Optional[ICalEncoder] = None,
    ) -> None:
        self._repository = repository
        self._availability = availability
        self._calendar = calendar
        self._clock = clock or (lambda: pendulum.now("UTC"))
        self._slot_duration_range = slot_duration_range
        self._organizer = organizer
        self._encoder = encoder or ICalEncoder()

    # Lifecycle transitions

    def create(self, request: Union[BookingRequest, Mapping[str, Any]]) -> BookingOutcome:
        """Validate, check availability, persist as confirmed, then push."""
        if isinstance(request, BookingRequest):
            errors: List[str] = []
        else:
            request, errors = BookingRequest.parse(request)

        now = self._clock()
        if request is not None:
            errors = request.violations(now)

        if errors:
            logger.warning("Booking validation failed: %s", errors)
            return BookingOutcome.invalid(errors)

        interval = request.interval()
        scope = AvailabilityScope(provider_id=request.provider_id)

        try:
            with self._repository.transaction():
                availability = self._availability.check(interval, scope)
                if not availability.available:
                    logger.warning(
                        "Time slot not available for booking: %s (provider=%s, reason=%s)",
                        interval,
                        request.provider_id,
                        availability.reason.value,
                    )
                    return BookingOutcome.unavailable(availability)

                booking = self._repository.create(
                    Booking(
                        id=None,
                        owner_id=request.owner_id,
                        provider_id=request.provider_id,
                        title=request.title.strip(),
                        description=request.description,
                        interval=interval,
                        location=request.location,
                        status=BookingStatus.CONFIRMED,
                        booking_type=BookingType(request.booking_type),
                        attendee_email=request.attendee_email or None,
                        attendee_name=request.attendee_name or None,
                        notes=request.notes,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except Exception as exc:
            logger.exception("Failed to create booking")
            return BookingOutcome.failed(f"Failed to create booking: {exc}")

        logger.info("Booking created successfully: id=%s", booking.id)

        sync = None
        if self._calendar is not None and request.sync_external_calendar:
            booking, sync = self._push_create(booking)

        return BookingOutcome.success(booking, sync)

    def update(self, booking_id: int, changes: Mapping[str, Any]) -> BookingOutcome:
        """
        Apply editable field changes.

        A changed interval is re-checked while ignoring the booking itself;
        on conflict nothing is applied.
        """
        booking, failure = self._load(booking_id)
        if failure is not None:
            return failure

        if booking.status.is_terminal:
            return BookingOutcome.invalid(
                [f"Booking is {booking.status.value} and cannot be modified"],
                booking,
            )

        fields, errors = self._prepare_changes(booking, changes)
        if errors:
            logger.warning("Booking update rejected for id=%s: %s", booking_id, errors)
            return BookingOutcome.invalid(errors, booking)

        new_interval = fields.get("interval")
        interval_changed = new_interval is not None

        try:
            with self._repository.transaction():
                if interval_changed:
                    availability = self._availability.check(
                        new_interval,
                        AvailabilityScope(
                            provider_id=booking.provider_id,
                            exclude_booking_id=booking.id,
                            exclude_external_id=booking.external_event_id,
                        ),
                    )
                    if not availability.available:
                        logger.warning(
                            "New time slot not available for booking update: id=%s %s",
                            booking.id,
                            new_interval,
                        )
                        return BookingOutcome.unavailable(availability, booking)

                fields["updated_at"] = self._clock()
                updated = self._repository.update(booking.id, fields)
        except Exception as exc:
            logger.exception("Failed to update booking %s", booking_id)
            return BookingOutcome.failed(f"Failed to update booking: {exc}", booking)

        logger.info("Booking updated successfully: id=%s", updated.id)

        sync = None
        if interval_changed and updated.external_event_id and self._calendar is not None:
            updated, sync = self._push_update(updated)

        return BookingOutcome.success(updated, sync)

    def cancel(self, booking_id: int, reason: str = "") -> BookingOutcome:
        """Cancel a booking and release its external calendar event."""
        booking, failure = self._load(booking_id)
        if failure is not None:
            return failure

        if not booking.status.can_transition_to(BookingStatus.CANCELLED):
            return BookingOutcome.invalid(
                [f"Booking is {booking.status.value} and cannot be cancelled"],
                booking,
            )

        try:
            self._repository.soft_cancel(booking.id, reason, self._clock())
            cancelled = self._repository.get(booking.id)
        except Exception as exc:
            logger.exception("Failed to cancel booking %s", booking_id)
            return BookingOutcome.failed(f"Failed to cancel booking: {exc}", booking)

        logger.info("Booking cancelled successfully: id=%s reason=%r", booking.id, reason)

        sync = None
        if cancelled.external_event_id and self._calendar is not None:
            cancelled, sync = self._push_delete(cancelled)

        return BookingOutcome.success(cancelled, sync)

    def complete(self, booking_id: int) -> BookingOutcome:
        """Mark a confirmed booking as completed."""
        booking, failure = self._load(booking_id)
        if failure is not None:
            return failure

        if not booking.status.can_transition_to(BookingStatus.COMPLETED):
            return BookingOutcome.invalid(
                [f"Booking is {booking.status.value} and cannot be completed"],
                booking,
            )

        try:
            completed = self._repository.update(
                booking.id,
                {"status": BookingStatus.COMPLETED, "updated_at": self._clock()},
            )
        except Exception as exc:
            logger.exception("Failed to complete booking %s", booking_id)
            return BookingOutcome.failed(f"Failed to complete booking: {exc}", booking)

        logger.info("Booking completed: id=%s", booking.id)
        return BookingOutcome.success(completed)

    def delete(self, booking_id: int, reason: str = "") -> BookingOutcome:
        """Cancel (releasing the external event) and then remove the booking."""
        booking, failure = self._load(booking_id)
        if failure is not None:
            return failure

        sync = None
        if booking.status.can_transition_to(BookingStatus.CANCELLED):
            cancelled = self.cancel(booking_id, reason)
            if not cancelled.ok:
                return cancelled
            booking, sync = cancelled.booking, cancelled.sync

        try:
            self._repository.delete(booking.id)
        except Exception as exc:
            logger.exception("Failed to delete booking %s", booking_id)
            return BookingOutcome.failed(f"Failed to delete booking: {exc}", booking)

        logger.info("Booking deleted: id=%s", booking.id)
        return BookingOutcome.success(booking, sync)

    # Queries

    def get(self, booking_id: int) -> BookingOutcome:
        booking, failure = self._load(booking_id)
        return failure or BookingOutcome.success(booking)

    def list_bookings(
        self,
        start: datetime,
        end: datetime,
        owner_id: Optional[int] = None,
        provider_id: Optional[int] = None,
    ) -> List[Booking]:
        """Active bookings starting within ``[start, end]``, earliest first."""
        bookings = self._repository.list_between(
            start,
            end,
            owner_id=owner_id,
            provider_id=provider_id,
        )
        return sorted(bookings, key=lambda booking: booking.interval.start)

    def check_availability(
        self,
        start: datetime,
        end: datetime,
        provider_id: Optional[int] = None,
        exclude_booking_id: Optional[int] = None,
    ) -> AvailabilityResult:
        """
        Raises:
            ValidationError: If ``end`` is not after ``start``
        """
        try:
            interval = Interval(start=start, end=end)
        except InvalidInterval as exc:
            raise ValidationError(["End time must be after start time"]) from exc

        return self._availability.check(
            interval,
            AvailabilityScope(provider_id=provider_id, exclude_booking_id=exclude_booking_id),
        )

    def available_slots(
        self,
        day: date,
        slot_duration_minutes: int = 60,
        working_hours_start: Optional[time] = None,
        working_hours_end: Optional[time] = None,
        provider_id: Optional[int] = None,
        include_unavailable: bool = False,
    ) -> List[Slot]:
        """
        Raises:
            ValidationError: If the slot duration is outside the allowed range
        """
        shortest, longest = self._slot_duration_range
        if not shortest <= slot_duration_minutes <= longest:
            raise ValidationError([
                f"Slot duration must be between {shortest} and {longest} minutes, "
                f"got {slot_duration_minutes}"
            ])

        return self._availability.generate_slots(
            day,
            slot_duration_minutes=slot_duration_minutes,
            working_hours_start=working_hours_start,
            working_hours_end=working_hours_end,
            scope=AvailabilityScope(provider_id=provider_id),
            include_unavailable=include_unavailable,
        )

    def export_bookings(
        self,
        bookings: Iterable[Booking],
        calendar_name: str = "My Bookings",
    ) -> EncodeResult:
        records = [booking.to_event_record(self._organizer) for booking in bookings]
        return self._encoder.encode(records, calendar_name=calendar_name)

    # Helpers

    def _load(self, booking_id: int) -> Tuple[Optional[Booking], Optional[BookingOutcome]]:
        try:
            booking = self._repository.get(booking_id)
        except Exception as exc:
            logger.exception("Failed to load booking %s", booking_id)
            return None, BookingOutcome.failed(f"Failed to load booking: {exc}")

        if booking is None:
            return None, BookingOutcome.not_found(booking_id)
        return booking, None

    def _prepare_changes(
        self,
        booking: Booking,
        changes: Mapping[str, Any],
    ) -> Tuple[Dict[str, Any], List[str]]:
        protected = sorted(set(changes) - EDITABLE_FIELDS)
        if protected:
            return {}, [f"Field '{name}' cannot be changed" for name in protected]

        merged = {
            "owner_id": booking.owner_id,
            "provider_id": booking.provider_id,
            "title": booking.title,
            "description": booking.description,
            "location": booking.location,
            "start_time": booking.interval.start,
            "end_time": booking.interval.end,
            "booking_type": booking.booking_type.value,
            "attendee_email": booking.attendee_email,
            "attendee_name": booking.attendee_name,
            "notes": booking.notes,
        }
        merged.update(changes)

        request, errors = BookingRequest.parse(merged)
        if errors:
            return {}, errors

        # Past-start is only enforced when a booking is first submitted
        errors = request.violations()
        if errors:
            return {}, errors

        fields: Dict[str, Any] = {}
        for name in changes:
            if name in ("start_time", "end_time"):
                continue
            value = getattr(request, name)
            if name == "booking_type":
                value = BookingType(value)
            elif name == "title":
                value = value.strip()
            elif name in ("attendee_email", "attendee_name"):
                value = value or None
            fields[name] = value

        if "start_time" in changes or "end_time" in changes:
            interval = request.interval()
            if interval != booking.interval:
                fields["interval"] = interval

        return fields, []

    def _record_sync(self, booking: Booking, fields: Dict[str, Any]) -> Booking:
        try:
            return self._repository.update(booking.id, fields)
        except Exception as exc:
            logger.error("Failed to record sync state for booking %s: %s", booking.id, exc)
            return booking

    def _push_create(self, booking: Booking) -> Tuple[Booking, SyncResult]:
        record = booking.to_event_record(self._organizer)
        try:
            external_id = self._calendar.create_event(record)
        except Exception as exc:
            logger.error("Failed to sync booking %s to external calendar: %s", booking.id, exc)
            booking = self._record_sync(booking, {"sync_status": SyncStatus.FAILED})
            return booking, SyncResult(ok=False, error=str(exc))

        logger.info("Booking %s synced to external calendar as %s", booking.id, external_id)
        booking = self._record_sync(
            booking,
            {"external_event_id": external_id, "sync_status": SyncStatus.SYNCED},
        )
        return booking, SyncResult(ok=True, external_id=external_id)

    def _push_update(self, booking: Booking) -> Tuple[Booking, SyncResult]:
        record = booking.to_event_record(self._organizer)
        try:
            self._calendar.update_event(booking.external_event_id, record)
        except Exception as exc:
            logger.error("Failed to update external event for booking %s: %s", booking.id, exc)
            booking = self._record_sync(booking, {"sync_status": SyncStatus.FAILED})
            return booking, SyncResult(ok=False, external_id=booking.external_event_id, error=str(exc))

        logger.info("External event %s updated for booking %s", booking.external_event_id, booking.id)
        booking = self._record_sync(booking, {"sync_status": SyncStatus.SYNCED})
        return booking, SyncResult(ok=True, external_id=booking.external_event_id)

    def _push_delete(self, booking: Booking) -> Tuple[Booking, SyncResult]:
        try:
            self._calendar.delete_event(booking.external_event_id)
        except Exception as exc:
            logger.error("Failed to delete external event for booking %s: %s", booking.id, exc)
            booking = self._record_sync(booking, {"sync_status": SyncStatus.FAILED})
            return booking, SyncResult(ok=False, external_id=booking.external_event_id, error=str(exc))

        logger.info("External event %s removed for booking %s", booking.external_event_id, booking.id)
        booking = self._record_sync(booking, {"sync_status": SyncStatus.REMOVED})
        return booking, SyncResult(ok=True, external_id=booking.external_event_id)
