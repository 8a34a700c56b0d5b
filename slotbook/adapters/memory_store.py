"""
Booking stores: an in-process repository and a JSON-file backed variant.
"""

from __future__ import annotations

import itertools
import json
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional

import pendulum

from ..domain.exceptions import BookingNotFoundError, StorageError
from ..domain.models import (
    Booking,
    BookingStatus,
    BookingType,
    Interval,
    SyncStatus,
    as_pendulum,
    overlaps,
)


class InMemoryBookingRepository:
    """
    Keeps bookings in a dict guarded by a re-entrant lock.

    ``transaction()`` holds the lock, so an overlap check followed by a
    create inside one transaction cannot interleave with another writer.
    """

    def __init__(self, bookings: Optional[List[Booking]] = None) -> None:
        self._lock = threading.RLock()
        self._bookings: Dict[int, Booking] = {}
        self._ids = itertools.count(1)

        for booking in bookings or []:
            self._bookings[booking.id] = booking
        if self._bookings:
            self._ids = itertools.count(max(self._bookings) + 1)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            yield

    def find_overlapping(
        self,
        interval: Interval,
        *,
        provider_id: Optional[int] = None,
        exclude_id: Optional[int] = None,
    ) -> List[Booking]:
        with self._lock:
            return [
                booking for booking in self._bookings.values()
                if booking.is_active
                and (provider_id is None or booking.provider_id == provider_id)
                and (exclude_id is None or booking.id != exclude_id)
                and overlaps(booking.interval, interval)
            ]

    def get(self, booking_id: int) -> Optional[Booking]:
        with self._lock:
            return self._bookings.get(booking_id)

    def create(self, booking: Booking) -> Booking:
        with self._lock:
            stored = replace(booking, id=next(self._ids))
            bookings = dict(self._bookings)
            bookings[stored.id] = stored
            self._commit(bookings)
            return stored

    def update(self, booking_id: int, fields: Mapping[str, Any]) -> Booking:
        with self._lock:
            current = self._require(booking_id)
            updated = replace(current, **dict(fields))
            bookings = dict(self._bookings)
            bookings[booking_id] = updated
            self._commit(bookings)
            return updated

    def soft_cancel(self, booking_id: int, reason: str, cancelled_at: datetime) -> None:
        with self._lock:
            current = self._require(booking_id)
            bookings = dict(self._bookings)
            bookings[booking_id] = replace(
                current,
                status=BookingStatus.CANCELLED,
                cancellation_reason=reason,
                cancelled_at=cancelled_at,
                updated_at=cancelled_at,
            )
            self._commit(bookings)

    def delete(self, booking_id: int) -> None:
        with self._lock:
            self._require(booking_id)
            bookings = dict(self._bookings)
            del bookings[booking_id]
            self._commit(bookings)

    def list_between(
        self,
        start: datetime,
        end: datetime,
        *,
        owner_id: Optional[int] = None,
        provider_id: Optional[int] = None,
    ) -> List[Booking]:
        with self._lock:
            return [
                booking for booking in self._bookings.values()
                if booking.is_active
                and start <= booking.interval.start <= end
                and (owner_id is None or booking.owner_id == owner_id)
                and (provider_id is None or booking.provider_id == provider_id)
            ]

    def all(self) -> List[Booking]:
        with self._lock:
            return list(self._bookings.values())

    def _require(self, booking_id: int) -> Booking:
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return booking

    def _commit(self, bookings: Dict[int, Booking]) -> None:
        """Swap in ``bookings``; the previous state is restored if persisting fails."""
        previous = self._bookings
        self._bookings = bookings
        try:
            self._persist()
        except Exception:
            self._bookings = previous
            raise

    def _persist(self) -> None:
        """Hook for durable subclasses; the in-memory store keeps nothing."""


class JsonFileBookingRepository(InMemoryBookingRepository):
    """
    In-memory repository that rewrites a JSON file after every change.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(self._load())

    def _load(self) -> List[Booking]:
        if not self.path.exists():
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise StorageError(f"Could not read booking store {self.path}: {exc}") from exc

        try:
            return [booking_from_dict(item) for item in data.get("bookings", [])]
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"Invalid booking store {self.path}: {exc}") from exc

    def _persist(self) -> None:
        payload = {"bookings": [booking_to_dict(b) for b in sorted(self._bookings.values(), key=lambda b: b.id)]}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
        except OSError as exc:
            raise StorageError(f"Could not write booking store {self.path}: {exc}") from exc


def _dump_time(value: Optional[datetime]) -> Optional[str]:
    return as_pendulum(value).to_iso8601_string() if value is not None else None


def _load_time(value: Optional[str]) -> Optional[datetime]:
    return pendulum.parse(value) if value else None


def booking_to_dict(booking: Booking) -> Dict[str, Any]:
    return {
        "id": booking.id,
        "owner_id": booking.owner_id,
        "provider_id": booking.provider_id,
        "title": booking.title,
        "description": booking.description,
        "start_time": _dump_time(booking.interval.start),
        "end_time": _dump_time(booking.interval.end),
        "location": booking.location,
        "status": booking.status.value,
        "booking_type": booking.booking_type.value,
        "attendee_email": booking.attendee_email,
        "attendee_name": booking.attendee_name,
        "notes": booking.notes,
        "external_event_id": booking.external_event_id,
        "sync_status": booking.sync_status.value,
        "cancellation_reason": booking.cancellation_reason,
        "cancelled_at": _dump_time(booking.cancelled_at),
        "created_at": _dump_time(booking.created_at),
        "updated_at": _dump_time(booking.updated_at),
    }


def booking_from_dict(data: Mapping[str, Any]) -> Booking:
    return Booking(
        id=int(data["id"]),
        owner_id=int(data["owner_id"]),
        provider_id=data.get("provider_id"),
        title=data["title"],
        description=data.get("description") or "",
        interval=Interval(start=_load_time(data["start_time"]), end=_load_time(data["end_time"])),
        location=data.get("location") or "",
        status=BookingStatus(data.get("status", BookingStatus.CONFIRMED.value)),
        booking_type=BookingType(data.get("booking_type", BookingType.APPOINTMENT.value)),
        attendee_email=data.get("attendee_email"),
        attendee_name=data.get("attendee_name"),
        notes=data.get("notes") or "",
        external_event_id=data.get("external_event_id"),
        sync_status=SyncStatus(data.get("sync_status", SyncStatus.NOT_SYNCED.value)),
        cancellation_reason=data.get("cancellation_reason"),
        cancelled_at=_load_time(data.get("cancelled_at")),
        created_at=_load_time(data.get("created_at")),
        updated_at=_load_time(data.get("updated_at")),
    )
