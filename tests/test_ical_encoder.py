"""
Tests for the iCalendar encoder and content-line helpers.
"""

import pendulum

from slotbook.domain.models import (
    Attendee,
    Classification,
    EventRecord,
    EventStatus,
    Interval,
    Organizer,
    Reminder,
)
from slotbook.ical.encoder import ICalEncoder
from slotbook.ical.text import escape_text, fold_line, join_lines, unescape_text, unfold_lines

FIXED_NOW = pendulum.datetime(2027, 1, 1, 8, 0, tz="UTC")


def _encoder() -> ICalEncoder:
    return ICalEncoder(calendar_name="Team", clock=lambda: FIXED_NOW)


def _record(**overrides) -> EventRecord:
    fields = dict(
        uid="evt-1@example.com",
        title="Planning",
        interval=Interval(
            start=pendulum.datetime(2027, 3, 1, 10, tz="UTC"),
            end=pendulum.datetime(2027, 3, 1, 11, tz="UTC"),
        ),
    )
    fields.update(overrides)
    return EventRecord(**fields)


def _lines(text: str):
    return unfold_lines(text)


class TestTextHelpers:
    """Tests for escaping and folding."""

    def test_escape_text(self):
        """Backslash, semicolon, comma and newline are escaped."""
        assert escape_text("a\\b;c,d\ne") == "a\\\\b\\;c\\,d\\ne"

    def test_escape_line_breaks(self):
        """CRLF and a bare CR are escaped like a newline."""
        assert escape_text("a\r\nb\rc") == "a\\nb\\nc"
        assert unescape_text(escape_text("one\rtwo")) == "one\ntwo"

    def test_escape_none(self):
        """A missing value renders as empty text."""
        assert escape_text(None) == ""

    def test_unescape_reverses_escape(self):
        """Unescaping restores the original text."""
        original = "Room 4, floor 2; bring notes\\slides\nthanks"
        assert unescape_text(escape_text(original)) == original

    def test_fold_long_line(self):
        """Lines longer than 75 octets continue with a leading space."""
        folded = fold_line("DESCRIPTION:" + "x" * 150)

        assert len(folded) == 3
        assert all(len(part.encode("utf-8")) <= 75 for part in folded)
        assert all(part.startswith(" ") for part in folded[1:])

    def test_fold_does_not_split_multibyte_characters(self):
        """Folding counts octets and keeps characters whole."""
        folded = fold_line("SUMMARY:" + "ä" * 60)

        assert all(len(part.encode("utf-8")) <= 75 for part in folded)
        assert "".join(part.lstrip(" ") for part in folded) == "SUMMARY:" + "ä" * 60

    def test_join_lines_uses_crlf(self):
        """Every line, including the last, ends with CRLF."""
        assert join_lines(["A", "B"]) == "A\r\nB\r\n"


class TestICalEncoder:
    """Tests for ICalEncoder."""

    def test_calendar_envelope(self):
        """The calendar header carries version, product and name."""
        result = _encoder().encode([])
        lines = _lines(result.text)

        assert lines[0] == "BEGIN:VCALENDAR"
        assert "VERSION:2.0" in lines
        assert "X-WR-CALNAME:Team" in lines
        assert "X-WR-TIMEZONE:UTC" in lines
        assert result.text.endswith("END:VCALENDAR\r\n")
        assert result.encoded == 0

    def test_encode_minimal_record(self):
        """A record renders as one VEVENT with UTC times."""
        lines = _lines(_encoder().encode([_record()]).text)

        assert "BEGIN:VEVENT" in lines
        assert "UID:evt-1@example.com" in lines
        assert "DTSTAMP:20270101T080000Z" in lines
        assert "SUMMARY:Planning" in lines
        assert "DTSTART:20270301T100000Z" in lines
        assert "DTEND:20270301T110000Z" in lines
        assert "STATUS:CONFIRMED" in lines
        assert "CLASS:PUBLIC" in lines
        assert not any(line.startswith("DESCRIPTION") for line in lines)
        assert not any(line.startswith("LOCATION") for line in lines)

    def test_times_are_converted_to_utc(self):
        """Zoned times are written in UTC."""
        record = _record(interval=Interval(
            start=pendulum.datetime(2027, 3, 1, 10, tz="Europe/Berlin"),
            end=pendulum.datetime(2027, 3, 1, 11, tz="Europe/Berlin"),
        ))

        lines = _lines(_encoder().encode([record]).text)

        assert "DTSTART:20270301T090000Z" in lines

    def test_text_fields_are_escaped(self):
        """Special characters in text fields are escaped."""
        record = _record(title="Review, part 1; draft", location="Room 4\nNorth")

        lines = _lines(_encoder().encode([record]).text)

        assert "SUMMARY:Review\\, part 1\\; draft" in lines
        assert "LOCATION:Room 4\\nNorth" in lines

    def test_organizer_and_attendees(self):
        """Organizer and attendees carry CN and MAILTO."""
        record = _record(
            organizer=Organizer(email="desk@example.com", name="Front Desk"),
            attendees=(
                Attendee(email="ana@example.com", name="Doe, Ana", participation_status="accepted"),
                Attendee(name="No Email"),
            ),
        )

        lines = _lines(_encoder().encode([record]).text)

        assert "ORGANIZER;CN=Front Desk:MAILTO:desk@example.com" in lines
        assert 'ATTENDEE;CN="Doe, Ana";PARTSTAT=ACCEPTED:MAILTO:ana@example.com' in lines
        assert sum(1 for line in lines if line.startswith("ATTENDEE")) == 1

    def test_status_classification_and_rrule(self):
        """Status and class tokens are upper case, RRULE passes through."""
        record = _record(
            status=EventStatus.TENTATIVE,
            classification=Classification.CONFIDENTIAL,
            recurrence_rule="FREQ=WEEKLY;COUNT=4",
        )

        lines = _lines(_encoder().encode([record]).text)

        assert "STATUS:TENTATIVE" in lines
        assert "CLASS:CONFIDENTIAL" in lines
        assert "RRULE:FREQ=WEEKLY;COUNT=4" in lines

    def test_reminders_become_alarms(self):
        """Each reminder renders as a display alarm before the start."""
        record = _record(reminders=(Reminder(minutes_before=15),))

        lines = _lines(_encoder().encode([record]).text)

        alarm = lines[lines.index("BEGIN:VALARM"):lines.index("END:VALARM") + 1]
        assert "ACTION:DISPLAY" in alarm
        assert "TRIGGER:-PT15M" in alarm

    def test_malformed_record_is_skipped(self):
        """A record without times is reported and the batch continues."""
        records = [_record(uid="a"), _record(uid="b", interval=None), _record(uid="c", title="")]

        result = _encoder().encode(records)

        assert result.encoded == 1
        assert [(s.index, s.uid) for s in result.skipped] == [(1, "b"), (2, "c")]
        assert result.text.count("BEGIN:VEVENT") == 1

    def test_missing_uid_is_derived_deterministically(self):
        """Records without UID get the same generated UID every time."""
        first = _lines(_encoder().encode([_record(uid=None)]).text)
        second = _lines(_encoder().encode([_record(uid=None)]).text)

        uid_lines = [line for line in first if line.startswith("UID:")]
        assert len(uid_lines) == 1
        assert uid_lines[0].endswith("@slotbook")
        assert uid_lines == [line for line in second if line.startswith("UID:")]

    def test_calendar_name_override(self):
        """Per-call calendar name and description win over the defaults."""
        lines = _lines(_encoder().encode([], calendar_name="Bookings", description="Exported").text)

        assert "X-WR-CALNAME:Bookings" in lines
        assert "X-WR-CALDESC:Exported" in lines
