"""
Decoder turning iCalendar text back into event records.

Parsing happens in two steps: a line-oriented state machine collects every
VEVENT block into a ``RawPropertyMap`` (an ordered multimap of raw strings),
and only when a block closes is that map projected into an ``EventRecord``.
"""

import logging
import re
from datetime import timedelta
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

import pendulum
from pendulum import Date, DateTime

from ..domain.exceptions import InvalidInterval
from ..domain.models import (
    Attendee,
    Classification,
    EventRecord,
    EventStatus,
    Interval,
    Organizer,
    Reminder,
)
from .text import split_content_line, unescape_text, unfold_lines

logger = logging.getLogger(__name__)


UNTITLED_EVENT = "Untitled Event"

BEGIN_EVENT_MARKERS = frozenset({"BEGIN:VEVENT", "BEGIN:EVENT"})
END_EVENT_MARKERS = frozenset({"END:VEVENT", "END:EVENT"})
BEGIN_ALARM_MARKER = "BEGIN:VALARM"
END_ALARM_MARKER = "END:VALARM"

EMAIL_PATTERN = re.compile(r"MAILTO:([^;\s]+)", re.IGNORECASE)
NAME_PATTERN = re.compile(r'(?:^|;)CN=(?:"([^"]*)"|([^;:]+))', re.IGNORECASE)
PARTSTAT_PATTERN = re.compile(r"(?:^|;)PARTSTAT=([^;:]+)", re.IGNORECASE)
DURATION_PATTERN = re.compile(
    r"^(?P<sign>[+-])?P(?:(?P<weeks>\d+)W)?(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$",
    re.IGNORECASE,
)


class DecoderState(Enum):
    OUTSIDE_EVENT = "outside_event"
    INSIDE_EVENT = "inside_event"
    INSIDE_ALARM = "inside_alarm"


class RawPropertyMap:
    """
    Ordered multimap from property name to the raw values seen for it.

    Repeated properties (e.g. several ATTENDEE lines) keep every instance in
    first-seen order, and each instance keeps its parameter string.
    """

    def __init__(self) -> None:
        self._values: Dict[str, List[Tuple[str, str]]] = {}
        self.alarms: List[Dict[str, str]] = []

    def add(self, name: str, value: str, params: str = "") -> None:
        self._values.setdefault(name, []).append((value, params))

    def add_alarm(self, properties: Dict[str, str]) -> None:
        self.alarms.append(properties)

    def first(self, name: str, default: Optional[str] = None) -> Optional[str]:
        entries = self._values.get(name)
        return entries[0][0] if entries else default

    def all(self, name: str) -> List[str]:
        return [value for value, _ in self._values.get(name, [])]

    def params(self, name: str, index: int = 0) -> str:
        entries = self._values.get(name, [])
        return entries[index][1] if index < len(entries) else ""

    def entries(self, name: str) -> List[Tuple[str, str]]:
        """Return every instance as a ``(value, params)`` pair."""
        return list(self._values.get(name, []))

    def names(self) -> List[str]:
        return list(self._values)

    def as_flat_dict(self) -> Dict[str, str]:
        """
        Flatten into single-valued keys.

        The second and later instances of a property get a numeric suffix
        (``ATTENDEE``, ``ATTENDEE_2``, ...); parameters live under
        ``<KEY>_PARAMS``.
        """
        flat: Dict[str, str] = {}
        for name, entries in self._values.items():
            for position, (value, params) in enumerate(entries, start=1):
                key = name if position == 1 else f"{name}_{position}"
                flat[key] = value
                if params:
                    flat[f"{key}_PARAMS"] = params
        return flat

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._values.values())

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)


def parse_ical_datetime(value: Optional[str], timezone: str = "UTC") -> Optional[DateTime]:
    """
    Parse an iCalendar date or date-time.

    Handles ``YYYYMMDD``, ``YYYYMMDDTHHMMSSZ`` (UTC) and ``YYYYMMDDTHHMMSS``
    (local, read in ``timezone``); anything else goes through pendulum's
    general parser. Unparseable values yield None.
    """
    if not value:
        return None

    value = value.strip()

    try:
        if len(value) == 8 and value.isdigit():
            return pendulum.from_format(value, "YYYYMMDD", tz=timezone)
        if len(value) == 16 and value.upper().endswith("Z"):
            return pendulum.from_format(value.upper(), "YYYYMMDD[T]HHmmss[Z]", tz="UTC")
        if len(value) == 15:
            return pendulum.from_format(value.upper(), "YYYYMMDD[T]HHmmss", tz=timezone)

        parsed = pendulum.parse(value, tz=timezone, strict=False)
    except (ValueError, TypeError, OverflowError) as exc:
        logger.warning("Failed to parse iCal datetime %r: %s", value, exc)
        return None

    if isinstance(parsed, DateTime):
        return parsed
    if isinstance(parsed, Date):
        return pendulum.datetime(parsed.year, parsed.month, parsed.day, tz=timezone)

    logger.warning("Failed to parse iCal datetime %r: not a date", value)
    return None


def parse_ical_duration(value: Optional[str]) -> Optional[timedelta]:
    """Parse an RFC 5545 duration such as ``-PT15M`` or ``P1D``."""
    if not value:
        return None

    match = DURATION_PATTERN.match(value.strip())
    if not match or not any(match.group(part) for part in ("weeks", "days", "hours", "minutes", "seconds")):
        return None

    delta = timedelta(
        weeks=int(match.group("weeks") or 0),
        days=int(match.group("days") or 0),
        hours=int(match.group("hours") or 0),
        minutes=int(match.group("minutes") or 0),
        seconds=int(match.group("seconds") or 0),
    )
    return -delta if match.group("sign") == "-" else delta


def parse_organizer(value: Optional[str], params: str = "") -> Optional[Organizer]:
    """
    Extract the ``MAILTO:`` email from the value and the ``CN=`` name from
    the parameters; either may be missing.
    """
    email, name = _extract_email(value), _extract_name(params)
    if not email and not name:
        return None
    return Organizer(email=email, name=name)


def parse_attendee(value: Optional[str], params: str = "") -> Attendee:
    """Extract email, name and participation status from one ATTENDEE line."""
    match = PARTSTAT_PATTERN.search(params or "")
    return Attendee(
        email=_extract_email(value),
        name=_extract_name(params),
        participation_status=match.group(1).strip().lower() if match else None,
    )


def _extract_email(value: Optional[str]) -> Optional[str]:
    match = EMAIL_PATTERN.match((value or "").strip())
    return match.group(1).strip() if match else None


def _extract_name(params: Optional[str]) -> Optional[str]:
    match = NAME_PATTERN.search(params or "")
    if not match:
        return None
    name = match.group(1) if match.group(1) is not None else match.group(2)
    return name.strip() or None


class ICalDecoder:
    """
    Single-pass, line-oriented iCalendar decoder.

    Lines outside event blocks are ignored, an event block without its END
    marker is discarded, and a block with no properties yields no record.
    """

    def __init__(self, timezone: str = "UTC") -> None:
        self.timezone = timezone

    def decode(self, text: str) -> List[EventRecord]:
        records = [self.assemble(raw) for raw in self.decode_raw(text)]
        logger.info("iCal text parsed: %d events", len(records))
        return records

    def decode_raw(self, text: str) -> List[RawPropertyMap]:
        blocks: List[RawPropertyMap] = []
        state = DecoderState.OUTSIDE_EVENT
        current: Optional[RawPropertyMap] = None
        alarm: Dict[str, str] = {}

        for line in unfold_lines(text or ""):
            # Values keep their own whitespace; only markers are trimmed
            marker = line.strip().upper()
            if not marker:
                continue

            if state is DecoderState.OUTSIDE_EVENT:
                if marker in BEGIN_EVENT_MARKERS:
                    state = DecoderState.INSIDE_EVENT
                    current = RawPropertyMap()
                continue

            if state is DecoderState.INSIDE_ALARM:
                if marker == END_ALARM_MARKER:
                    current.add_alarm(alarm)
                    state = DecoderState.INSIDE_EVENT
                    continue

                if marker not in END_EVENT_MARKERS and marker not in BEGIN_EVENT_MARKERS:
                    parts = split_content_line(line)
                    if parts is not None:
                        name = parts[0].split(";", 1)[0].strip().upper()
                        alarm.setdefault(name, parts[1].strip())
                    continue

                # An event marker also closes an alarm left open
                logger.warning("Closing unterminated alarm block at %s", marker)
                current.add_alarm(alarm)
                state = DecoderState.INSIDE_EVENT

            if marker in END_EVENT_MARKERS:
                if current:
                    blocks.append(current)
                current = None
                state = DecoderState.OUTSIDE_EVENT
                continue

            if marker in BEGIN_EVENT_MARKERS:
                # An unterminated block is dropped when a new one opens
                current = RawPropertyMap()
                continue

            if marker == BEGIN_ALARM_MARKER:
                alarm = {}
                state = DecoderState.INSIDE_ALARM
                continue

            parts = split_content_line(line)
            if parts is None:
                continue

            token, value = parts
            name, _, params = token.partition(";")
            current.add(name.strip().upper(), value, params.strip())

        if state is not DecoderState.OUTSIDE_EVENT:
            logger.warning("Discarding unterminated event block at end of input")

        return blocks

    def assemble(self, raw: RawPropertyMap) -> EventRecord:
        """Project a raw property map onto an ``EventRecord``."""
        summary = raw.first("SUMMARY")
        organizers = raw.entries("ORGANIZER")

        attendees = tuple(
            attendee
            for attendee in (parse_attendee(value, params) for value, params in raw.entries("ATTENDEE"))
            if not attendee.is_empty()
        )

        return EventRecord(
            uid=raw.first("UID"),
            title=unescape_text(summary) if summary else UNTITLED_EVENT,
            description=unescape_text(raw.first("DESCRIPTION", "")),
            location=unescape_text(raw.first("LOCATION", "")),
            interval=self._assemble_interval(raw),
            attendees=attendees,
            organizer=parse_organizer(*organizers[0]) if organizers else None,
            status=EventStatus.coerce(raw.first("STATUS")),
            classification=Classification.coerce(raw.first("CLASS")),
            recurrence_rule=raw.first("RRULE"),
            reminders=self._assemble_reminders(raw),
            created_at=parse_ical_datetime(raw.first("CREATED"), self.timezone),
            updated_at=parse_ical_datetime(raw.first("LAST-MODIFIED"), self.timezone),
        )

    def _assemble_interval(self, raw: RawPropertyMap) -> Optional[Interval]:
        raw_start = raw.first("DTSTART")
        start = parse_ical_datetime(raw_start, self.timezone)
        end = parse_ical_datetime(raw.first("DTEND"), self.timezone)

        if start is not None and end is None and "DTEND" not in raw:
            duration = parse_ical_duration(raw.first("DURATION"))
            if duration is not None:
                end = start + duration
            elif raw_start and len(raw_start.strip()) == 8:
                end = start.add(days=1)

        if start is None or end is None:
            return None

        try:
            return Interval(start=start, end=end)
        except InvalidInterval as exc:
            logger.warning("Ignoring event times for uid=%s: %s", raw.first("UID"), exc)
            return None

    @staticmethod
    def _assemble_reminders(raw: RawPropertyMap) -> Tuple[Reminder, ...]:
        reminders: List[Reminder] = []
        for alarm in raw.alarms:
            offset = parse_ical_duration(alarm.get("TRIGGER"))
            # Only offsets relative to the start, at or before it, become reminders
            if offset is None or offset > timedelta(0):
                continue
            reminders.append(Reminder(minutes_before=int(-offset.total_seconds() // 60)))
        return tuple(reminders)
