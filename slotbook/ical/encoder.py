"""
Encoder turning event records into iCalendar text.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

import pendulum
from pendulum import DateTime

from ..domain.models import Classification, EventRecord, EventStatus
from .text import escape_text, format_utc, join_lines, quote_param

logger = logging.getLogger(__name__)


COMPONENT = "VEVENT"
ALARM_COMPONENT = "VALARM"
PRODUCT_ID = "-//slotbook//slotbook calendar//EN"
UID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_DNS, "slotbook")


@dataclass(frozen=True)
class SkippedRecord:
    index: int
    uid: Optional[str]
    reason: str


@dataclass(frozen=True)
class EncodeResult:
    """Encoded calendar text plus the records that had to be left out."""
    text: str
    encoded: int
    skipped: List[SkippedRecord] = field(default_factory=list)

    def __str__(self) -> str:
        return self.text


class ICalEncoder:
    """
    Renders a batch of ``EventRecord`` objects as one VCALENDAR.

    A malformed record is skipped and reported; it never aborts the batch.
    """

    def __init__(
        self,
        calendar_name: str = "Calendar",
        description: str = "",
        clock: Optional[Callable[[], DateTime]] = None,
    ) -> None:
        self.calendar_name = calendar_name
        self.description = description
        self._clock = clock or (lambda: pendulum.now("UTC"))

    def encode(
        self,
        records: Iterable[EventRecord],
        calendar_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> EncodeResult:
        name = calendar_name if calendar_name is not None else self.calendar_name
        caldesc = description if description is not None else self.description
        stamp = format_utc(self._clock())

        lines: List[str] = [
            "BEGIN:VCALENDAR",
            "VERSION:2.0",
            f"PRODID:{PRODUCT_ID}",
            "CALSCALE:GREGORIAN",
            f"X-WR-CALNAME:{escape_text(name)}",
        ]
        if caldesc:
            lines.append(f"X-WR-CALDESC:{escape_text(caldesc)}")
        lines.append("X-WR-TIMEZONE:UTC")

        skipped: List[SkippedRecord] = []
        encoded = 0

        for index, record in enumerate(records):
            try:
                block = self.encode_record(record, stamp)
            except (ValueError, TypeError, AttributeError) as exc:
                uid = getattr(record, "uid", None)
                logger.warning("Skipping calendar record #%d (uid=%s): %s", index, uid, exc)
                skipped.append(SkippedRecord(index=index, uid=uid, reason=str(exc)))
                continue

            lines.extend(block)
            encoded += 1

        lines.append("END:VCALENDAR")

        logger.info(
            "iCal calendar generated: %s (%d events, %d skipped)",
            name,
            encoded,
            len(skipped),
        )

        return EncodeResult(text=join_lines(lines), encoded=encoded, skipped=skipped)

    def encode_record(self, record: EventRecord, stamp: str) -> List[str]:
        """
        Render one record as a VEVENT block.

        Raises:
            ValueError: If the record has no title or no interval
            TypeError: If ``record`` is not an EventRecord
        """
        if not isinstance(record, EventRecord):
            raise TypeError(f"Expected an EventRecord, got {type(record).__name__}")
        if not record.title or not str(record.title).strip():
            raise ValueError("missing title")
        if record.interval is None:
            raise ValueError("missing start or end time")

        status = EventStatus.coerce(record.status)
        classification = Classification.coerce(record.classification)

        lines = [
            f"BEGIN:{COMPONENT}",
            f"UID:{record.uid or self._derive_uid(record)}",
            f"DTSTAMP:{stamp}",
            f"SUMMARY:{escape_text(record.title)}",
            f"DTSTART:{format_utc(record.interval.start)}",
            f"DTEND:{format_utc(record.interval.end)}",
        ]

        if record.description:
            lines.append(f"DESCRIPTION:{escape_text(record.description)}")
        if record.location:
            lines.append(f"LOCATION:{escape_text(record.location)}")

        if record.organizer is not None and record.organizer.email:
            lines.append(
                "ORGANIZER"
                + self._name_param(record.organizer.name)
                + f":MAILTO:{record.organizer.email}"
            )

        for attendee in record.attendees:
            if not attendee.email:
                continue
            params = self._name_param(attendee.name)
            if attendee.participation_status:
                params += f";PARTSTAT={attendee.participation_status.upper()}"
            lines.append(f"ATTENDEE{params}:MAILTO:{attendee.email}")

        lines.append(f"STATUS:{status.value.upper()}")
        lines.append(f"CLASS:{classification.value.upper()}")

        if record.recurrence_rule:
            lines.append(f"RRULE:{record.recurrence_rule}")

        for reminder in record.reminders:
            minutes = int(reminder.minutes_before)
            if minutes < 0:
                raise ValueError(f"reminder offset must not be negative, got {minutes}")
            lines.extend([
                f"BEGIN:{ALARM_COMPONENT}",
                "ACTION:DISPLAY",
                f"DESCRIPTION:{escape_text(record.title)}",
                f"TRIGGER:-PT{minutes}M",
                f"END:{ALARM_COMPONENT}",
            ])

        lines.append(f"END:{COMPONENT}")
        return lines

    @staticmethod
    def _name_param(name: Optional[str]) -> str:
        if not name:
            return ""
        return f";CN={quote_param(name)}"

    @staticmethod
    def _derive_uid(record: EventRecord) -> str:
        seed = f"{record.title}|{format_utc(record.interval.start)}|{format_utc(record.interval.end)}"
        return f"{uuid.uuid5(UID_NAMESPACE, seed)}@slotbook"
