"""
Availability engine: decides whether an interval is free and offers slots.

Algorithm for a single check:
1. Reject anything that is not a valid interval (caller precondition)
2. Ask the booking store for active bookings overlapping the interval
3. When built with an external calendar, fetch its events over a padded
   window and apply the same overlap predicate
4. Any fault while asking either source means "not available"
"""

from __future__ import annotations

import logging
from datetime import date, time
from typing import List, Optional

from ..domain.exceptions import InvalidInterval, ValidationError
from ..domain.models import EventRecord, Interval, Slot, WorkingHours, overlaps
from ..domain.outcomes import AvailabilityReason, AvailabilityResult, AvailabilityScope
from .gateways import BookingRepository, ExternalCalendarGateway

logger = logging.getLogger(__name__)


DEFAULT_CALENDAR_PADDING_MINUTES = 60


class AvailabilityEngine:
    """
    Checks candidate intervals against the booking store and, optionally,
    an external calendar.

    External conflict checking is decided at construction: pass a calendar
    gateway to enable it, leave it out to disable it.
    """

    def __init__(
        self,
        repository: BookingRepository,
        calendar: Optional[ExternalCalendarGateway] = None,
        working_hours: Optional[WorkingHours] = None,
        calendar_padding_minutes: int = DEFAULT_CALENDAR_PADDING_MINUTES,
    ) -> None:
        self._repository = repository
        self._calendar = calendar
        self._working_hours = working_hours or WorkingHours()
        self._padding_minutes = calendar_padding_minutes

    @property
    def checks_external_calendar(self) -> bool:
        return self._calendar is not None

    @property
    def working_hours(self) -> WorkingHours:
        return self._working_hours

    def check(
        self,
        interval: Interval,
        scope: Optional[AvailabilityScope] = None,
    ) -> AvailabilityResult:
        """
        Decide whether ``interval`` is free within ``scope``.

        Raises:
            InvalidInterval: If ``interval`` is not a valid interval
        """
        if not isinstance(interval, Interval) or not interval.end > interval.start:
            raise InvalidInterval(f"Not a valid interval: {interval!r}")

        scope = scope or AvailabilityScope()

        try:
            conflicting = self._repository.find_overlapping(
                interval,
                provider_id=scope.provider_id,
                exclude_id=scope.exclude_booking_id,
            )
        except Exception as exc:
            logger.error("Failed to query bookings for %s: %s", interval, exc)
            return AvailabilityResult(
                interval=interval,
                reason=AvailabilityReason.SOURCE_FAULT,
                error=str(exc),
            )

        # The store filters already; the predicate is reapplied so that every
        # conflict decision goes through the same overlap rule.
        booking_conflicts = [
            booking.interval for booking in conflicting
            if booking.is_active and overlaps(interval, booking.interval)
        ]
        if booking_conflicts:
            logger.info(
                "Time slot conflict found in bookings: %s (provider=%s, conflicts=%d)",
                interval,
                scope.provider_id,
                len(booking_conflicts),
            )
            return AvailabilityResult(
                interval=interval,
                reason=AvailabilityReason.BOOKING_CONFLICT,
                conflicts=booking_conflicts,
            )

        if self._calendar is not None:
            return self._check_calendar(interval, scope)

        return AvailabilityResult(interval=interval, reason=AvailabilityReason.AVAILABLE)

    def is_available(
        self,
        interval: Interval,
        scope: Optional[AvailabilityScope] = None,
    ) -> bool:
        """Return True when ``interval`` is free within ``scope``."""
        return self.check(interval, scope).available

    def _check_calendar(self, interval: Interval, scope: AvailabilityScope) -> AvailabilityResult:
        window = interval.padded(self._padding_minutes)

        try:
            events = self._calendar.list_events(window)
        except Exception as exc:
            logger.error("Failed to query external calendar for %s: %s", interval, exc)
            return AvailabilityResult(
                interval=interval,
                reason=AvailabilityReason.SOURCE_FAULT,
                error=str(exc),
            )

        calendar_conflicts = [
            event.interval for event in events
            if event.interval is not None
            and not _is_excluded(event, scope)
            and overlaps(interval, event.interval)
        ]
        if calendar_conflicts:
            logger.info(
                "Time slot conflict detected in external calendar: %s (conflicts=%d)",
                interval,
                len(calendar_conflicts),
            )
            return AvailabilityResult(
                interval=interval,
                reason=AvailabilityReason.CALENDAR_CONFLICT,
                conflicts=calendar_conflicts,
            )

        return AvailabilityResult(interval=interval, reason=AvailabilityReason.AVAILABLE)

    def generate_slots(
        self,
        day: date,
        slot_duration_minutes: int = 60,
        working_hours_start: Optional[time] = None,
        working_hours_end: Optional[time] = None,
        scope: Optional[AvailabilityScope] = None,
        include_unavailable: bool = False,
    ) -> List[Slot]:
        """
        Partition the working-hours window of ``day`` into fixed-size slots.

        Args:
            day: The day to offer slots for
            slot_duration_minutes: Length of every slot
            working_hours_start: Opening time, defaults to the engine's working hours
            working_hours_end: Closing time, defaults to the engine's working hours
            scope: Provider / excluded booking for the availability checks
            include_unavailable: Also return taken slots, flagged unavailable

        Returns:
            Slots in chronological order; a trailing partial window is never offered

        Raises:
            ValidationError: If the duration or the working-hours window is invalid
        """
        if slot_duration_minutes <= 0:
            raise ValidationError([f"Slot duration must be positive, got {slot_duration_minutes}"])

        try:
            window = self._working_hours.window_for_day(day, working_hours_start, working_hours_end)
        except InvalidInterval as exc:
            raise ValidationError([f"Working hours must close after they open: {exc}"]) from exc

        if window is None:
            return []

        slots: List[Slot] = []
        for candidate in window.split(slot_duration_minutes):
            available = self.is_available(candidate, scope)
            if available or include_unavailable:
                slots.append(Slot(interval=candidate, available=available))

        return slots


def _is_excluded(event: EventRecord, scope: AvailabilityScope) -> bool:
    excluded = scope.exclude_external_id
    return excluded is not None and excluded in (event.external_id, event.uid)
