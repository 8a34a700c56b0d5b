"""
Domain models for intervals, calendar events, bookings and slots.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

import pendulum
from pendulum import DateTime

from .exceptions import InvalidInterval


def as_pendulum(value: datetime) -> DateTime:
    """Return ``value`` as a pendulum DateTime (naive values are taken as UTC)."""
    if isinstance(value, DateTime):
        return value
    return pendulum.instance(value)


@dataclass(frozen=True)
class Interval:
    """
    Represents an immutable half-open time range ``[start, end)``.

    Invariant: start must be before end.
    """
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start is None or self.end is None:
            raise InvalidInterval("Interval requires both a start and an end")
        try:
            ordered = self.start < self.end
        except TypeError as exc:
            raise InvalidInterval(f"Cannot compare {self.start!r} with {self.end!r}") from exc
        if not ordered:
            raise InvalidInterval(f"Start time {self.start} must be before end time {self.end}")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def overlaps(self, other: "Interval") -> bool:
        """Check if this range overlaps with another. Touching ranges do not overlap."""
        return self.start < other.end and other.start < self.end

    def intersect(self, other: "Interval") -> "Interval | None":
        """
        Calculate the intersection of two intervals.
        Returns None if there is no overlap.
        """
        if not self.overlaps(other):
            return None

        return Interval(start=max(self.start, other.start), end=min(self.end, other.end))

    def contains(self, other: "Interval") -> bool:
        """Check if ``other`` lies completely inside this range."""
        return self.start <= other.start and other.end <= self.end

    def within(self, window: "Interval") -> bool:
        """Check if this range lies completely inside ``window``."""
        return window.contains(self)

    def padded(self, minutes: int) -> "Interval":
        """Return a copy widened by ``minutes`` on both sides."""
        delta = timedelta(minutes=minutes)
        return Interval(start=self.start - delta, end=self.end + delta)

    def split(self, minutes: int) -> List["Interval"]:
        """
        Partition the range into consecutive chunks of ``minutes``.

        A trailing chunk shorter than ``minutes`` is discarded.
        """
        if minutes <= 0:
            raise ValueError(f"Chunk length must be positive, got {minutes}")

        step = timedelta(minutes=minutes)
        chunks: List[Interval] = []
        current = self.start

        while current + step <= self.end:
            chunks.append(Interval(start=current, end=current + step))
            current = current + step

        return chunks

    def __str__(self) -> str:
        start = as_pendulum(self.start)
        end = as_pendulum(self.end)
        return f"{start.format('DD.MM.YYYY HH:mm')} - {end.format('HH:mm')}"


def overlaps(a: Interval, b: Interval) -> bool:
    """Open-overlap predicate shared by every conflict check."""
    return a.overlaps(b)


@dataclass
class WorkingHours:
    """
    Configuration for working hours.
    """
    start_time: time = time(9, 0)
    end_time: time = time(17, 0)
    exclude_weekdays: List[int] = field(default_factory=list)  # 0=Monday, 6=Sunday
    timezone: str = "UTC"

    def is_working_day(self, day: date) -> bool:
        """Check if a given date falls on a working day."""
        return day.weekday() not in self.exclude_weekdays

    def window_for_day(
        self,
        day: date,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
    ) -> Interval | None:
        """
        Get the working hours range for a specific day.
        Returns None if it's not a working day.
        """
        if not self.is_working_day(day):
            return None

        if isinstance(day, DateTime):
            base = day
        elif isinstance(day, datetime):
            base = pendulum.instance(day, tz=self.timezone)
        else:
            base = pendulum.datetime(day.year, day.month, day.day, tz=self.timezone)

        opens = start_time if start_time is not None else self.start_time
        closes = end_time if end_time is not None else self.end_time

        start = base.set(hour=opens.hour, minute=opens.minute, second=0, microsecond=0)
        end = base.set(hour=closes.hour, minute=closes.minute, second=0, microsecond=0)

        return Interval(start=start, end=end)


class EventStatus(str, Enum):
    TENTATIVE = "tentative"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    @classmethod
    def coerce(cls, value: Union[str, "EventStatus", None]) -> "EventStatus":
        """Map free text onto a status; anything unknown is confirmed."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.CONFIRMED


class Classification(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    CONFIDENTIAL = "confidential"

    @classmethod
    def coerce(cls, value: Union[str, "Classification", None]) -> "Classification":
        """Map free text onto a classification; anything unknown is public."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.PUBLIC


@dataclass(frozen=True)
class Attendee:
    email: Optional[str] = None
    name: Optional[str] = None
    participation_status: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.email or self.name or self.participation_status)


@dataclass(frozen=True)
class Organizer:
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class Reminder:
    minutes_before: int


@dataclass(frozen=True)
class EventRecord:
    """
    Unified, immutable representation of a calendar entry.

    Used by the iCal codec and by external calendar gateways. Empty strings
    stand for an absent description or location. ``interval`` is only None
    for decoded records whose start or end could not be parsed.
    """
    title: str
    interval: Optional[Interval]
    uid: Optional[str] = None
    description: str = ""
    location: str = ""
    attendees: Tuple[Attendee, ...] = ()
    organizer: Optional[Organizer] = None
    status: EventStatus = EventStatus.CONFIRMED
    classification: Classification = Classification.PUBLIC
    recurrence_rule: Optional[str] = None
    reminders: Tuple[Reminder, ...] = ()
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Id the external calendar knows the event by, when it came from one
    external_id: Optional[str] = None

    @property
    def start(self) -> Optional[datetime]:
        return self.interval.start if self.interval else None

    @property
    def end(self) -> Optional[datetime]:
        return self.interval.end if self.interval else None

    def attendee_emails(self) -> FrozenSet[str]:
        return frozenset(a.email for a in self.attendees if a.email)


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (BookingStatus.CANCELLED, BookingStatus.COMPLETED)

    def can_transition_to(self, target: "BookingStatus") -> bool:
        return target in _BOOKING_TRANSITIONS[self]


_BOOKING_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}


class SyncStatus(str, Enum):
    """Outcome of the last push to the external calendar."""
    NOT_SYNCED = "not_synced"
    SYNCED = "synced"
    FAILED = "failed"
    REMOVED = "removed"


class BookingType(str, Enum):
    APPOINTMENT = "appointment"
    MEETING = "meeting"
    EVENT = "event"
    CONSULTATION = "consultation"


@dataclass(frozen=True)
class Booking:
    """
    A persisted reservation.

    Invariant: ``status`` is cancelled exactly when ``cancelled_at`` is set.
    """
    id: Optional[int]
    owner_id: int
    title: str
    interval: Interval
    provider_id: Optional[int] = None
    description: str = ""
    location: str = ""
    status: BookingStatus = BookingStatus.CONFIRMED
    booking_type: BookingType = BookingType.APPOINTMENT
    attendee_email: Optional[str] = None
    attendee_name: Optional[str] = None
    notes: str = ""
    external_event_id: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.NOT_SYNCED
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        """Active bookings take part in overlap checks."""
        return self.status != BookingStatus.CANCELLED

    def duration_minutes(self) -> int:
        return self.interval.duration_minutes()

    def formatted_duration(self) -> str:
        """Human readable duration, e.g. ``1 hour 30 minutes``."""
        minutes = self.duration_minutes()
        if minutes < 60:
            return f"{minutes} minutes"

        hours, remaining = divmod(minutes, 60)
        label = f"{hours} hour" + ("s" if hours > 1 else "")
        if remaining == 0:
            return label
        return f"{label} {remaining} minutes"

    def to_event_record(
        self,
        organizer: Optional[Organizer] = None,
        uid_domain: str = "slotbook",
    ) -> EventRecord:
        """Project the booking onto the calendar event shape."""
        attendees: Tuple[Attendee, ...] = ()
        if self.attendee_email:
            attendees = (Attendee(email=self.attendee_email, name=self.attendee_name),)

        status = EventStatus.CANCELLED if self.status == BookingStatus.CANCELLED else EventStatus.CONFIRMED

        return EventRecord(
            uid=f"booking-{self.id}@{uid_domain}" if self.id is not None else None,
            title=self.title,
            description=self.description,
            interval=self.interval,
            location=self.location,
            attendees=attendees,
            organizer=organizer,
            status=status,
        )


@dataclass(frozen=True)
class Slot:
    """
    A candidate booking window with its availability verdict.
    """
    interval: Interval
    available: bool

    @property
    def start(self) -> datetime:
        return self.interval.start

    @property
    def end(self) -> datetime:
        return self.interval.end

    @property
    def formatted_label(self) -> str:
        """Format: HH:mm - HH:mm"""
        start = as_pendulum(self.interval.start)
        end = as_pendulum(self.interval.end)
        return f"{start.format('HH:mm')} - {end.format('HH:mm')}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": as_pendulum(self.interval.start).to_datetime_string(),
            "end": as_pendulum(self.interval.end).to_datetime_string(),
            "formatted_label": self.formatted_label,
            "available": self.available,
        }
