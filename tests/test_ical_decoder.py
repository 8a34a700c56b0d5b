"""
Tests for the iCalendar decoder.
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
from slotbook.ical.decoder import (
    UNTITLED_EVENT,
    ICalDecoder,
    parse_ical_datetime,
    parse_ical_duration,
)
from slotbook.ical.encoder import ICalEncoder


def _calendar(*body: str) -> str:
    return "\r\n".join(["BEGIN:VCALENDAR", "VERSION:2.0", *body, "END:VCALENDAR"]) + "\r\n"


class TestDatetimeParsing:
    """Tests for parse_ical_datetime."""

    def test_utc_datetime(self):
        """The Z suffix marks UTC."""
        assert parse_ical_datetime("20270301T100000Z") == pendulum.datetime(2027, 3, 1, 10, tz="UTC")

    def test_local_datetime_uses_decoder_timezone(self):
        """Floating times are read in the given timezone."""
        parsed = parse_ical_datetime("20270301T100000", "Europe/Berlin")

        assert parsed == pendulum.datetime(2027, 3, 1, 10, tz="Europe/Berlin")

    def test_date_only(self):
        """A bare date becomes midnight."""
        assert parse_ical_datetime("20270301") == pendulum.datetime(2027, 3, 1, tz="UTC")

    def test_fallback_parser(self):
        """Other ISO 8601 shapes go through the general parser."""
        assert parse_ical_datetime("2027-03-01T10:00:00Z") == pendulum.datetime(2027, 3, 1, 10, tz="UTC")

    def test_garbage_yields_none(self):
        """Unparseable values yield None instead of raising."""
        assert parse_ical_datetime("not a date") is None
        assert parse_ical_datetime("") is None
        assert parse_ical_datetime(None) is None

    def test_duration(self):
        """Durations carry sign and components."""
        assert parse_ical_duration("-PT15M").total_seconds() == -900
        assert parse_ical_duration("P1DT2H").total_seconds() == 26 * 3600
        assert parse_ical_duration("P") is None


class TestICalDecoder:
    """Tests for ICalDecoder."""

    def test_decode_full_event(self):
        """All supported properties are projected onto the record."""
        text = _calendar(
            "BEGIN:VEVENT",
            "UID:evt-1@example.com",
            "SUMMARY:Review\\, part 1",
            "DESCRIPTION:Line one\\nLine two",
            "LOCATION:Room 4",
            "DTSTART:20270301T100000Z",
            "DTEND:20270301T110000Z",
            "ORGANIZER;CN=Front Desk:MAILTO:desk@example.com",
            'ATTENDEE;CN="Doe, Ana";PARTSTAT=ACCEPTED:MAILTO:ana@example.com',
            "ATTENDEE:MAILTO:bo@example.com",
            "STATUS:TENTATIVE",
            "CLASS:PRIVATE",
            "RRULE:FREQ=WEEKLY;COUNT=4",
            "END:VEVENT",
        )

        [record] = ICalDecoder().decode(text)

        assert record.uid == "evt-1@example.com"
        assert record.title == "Review, part 1"
        assert record.description == "Line one\nLine two"
        assert record.location == "Room 4"
        assert record.interval == Interval(
            start=pendulum.datetime(2027, 3, 1, 10, tz="UTC"),
            end=pendulum.datetime(2027, 3, 1, 11, tz="UTC"),
        )
        assert record.organizer == Organizer(email="desk@example.com", name="Front Desk")
        assert record.attendees == (
            Attendee(email="ana@example.com", name="Doe, Ana", participation_status="accepted"),
            Attendee(email="bo@example.com"),
        )
        assert record.status is EventStatus.TENTATIVE
        assert record.classification is Classification.PRIVATE
        assert record.recurrence_rule == "FREQ=WEEKLY;COUNT=4"

    def test_defaults_for_missing_properties(self):
        """Missing summary, status and class fall back to defaults."""
        text = _calendar(
            "BEGIN:VEVENT",
            "DTSTART:20270301T100000Z",
            "DTEND:20270301T110000Z",
            "END:VEVENT",
        )

        [record] = ICalDecoder().decode(text)

        assert record.title == UNTITLED_EVENT
        assert record.description == ""
        assert record.location == ""
        assert record.status is EventStatus.CONFIRMED
        assert record.classification is Classification.PUBLIC
        assert record.organizer is None
        assert record.attendees == ()

    def test_lines_outside_events_are_ignored(self):
        """Calendar-level properties never leak into a record."""
        text = _calendar(
            "X-WR-CALNAME:Team",
            "SUMMARY:Not an event",
            "BEGIN:VEVENT",
            "SUMMARY:Inside",
            "DTSTART:20270301T100000Z",
            "DTEND:20270301T110000Z",
            "END:VEVENT",
        )

        records = ICalDecoder().decode(text)

        assert [record.title for record in records] == ["Inside"]

    def test_unterminated_block_is_discarded(self):
        """An event without END at the end of input yields no record."""
        text = _calendar(
            "BEGIN:VEVENT",
            "SUMMARY:Complete",
            "DTSTART:20270301T100000Z",
            "DTEND:20270301T110000Z",
            "END:VEVENT",
            "BEGIN:VEVENT",
            "SUMMARY:Truncated",
        )

        records = ICalDecoder().decode(text)

        assert [record.title for record in records] == ["Complete"]

    def test_new_block_replaces_unterminated_one(self):
        """BEGIN inside an open block starts over."""
        text = _calendar(
            "BEGIN:VEVENT",
            "SUMMARY:Lost",
            "BEGIN:VEVENT",
            "SUMMARY:Kept",
            "DTSTART:20270301T100000Z",
            "DTEND:20270301T110000Z",
            "END:VEVENT",
        )

        records = ICalDecoder().decode(text)

        assert [record.title for record in records] == ["Kept"]

    def test_empty_block_yields_no_record(self):
        """A block without properties is skipped."""
        assert ICalDecoder().decode(_calendar("BEGIN:VEVENT", "END:VEVENT")) == []

    def test_legacy_event_markers(self):
        """BEGIN:EVENT / END:EVENT blocks are accepted too."""
        text = _calendar("BEGIN:EVENT", "SUMMARY:Legacy", "END:EVENT")

        [record] = ICalDecoder().decode(text)

        assert record.title == "Legacy"

    def test_folded_lines_are_unfolded(self):
        """Continuation lines are joined before parsing."""
        text = _calendar(
            "BEGIN:VEVENT",
            "SUMMARY:A very long",
            "  title",
            "DTSTART:20270301T100000Z",
            "DTEND:20270301T110000Z",
            "END:VEVENT",
        )

        [record] = ICalDecoder().decode(text)

        assert record.title == "A very long title"

    def test_unparseable_times_leave_interval_empty(self):
        """Bad times do not drop the record."""
        text = _calendar(
            "BEGIN:VEVENT",
            "SUMMARY:Broken",
            "DTSTART:garbage",
            "DTEND:20270301T110000Z",
            "END:VEVENT",
        )

        [record] = ICalDecoder().decode(text)

        assert record.title == "Broken"
        assert record.interval is None

    def test_end_from_duration(self):
        """DURATION stands in for a missing DTEND."""
        text = _calendar(
            "BEGIN:VEVENT",
            "DTSTART:20270301T100000Z",
            "DURATION:PT45M",
            "END:VEVENT",
        )

        [record] = ICalDecoder().decode(text)

        assert record.interval.duration_minutes() == 45

    def test_all_day_event_without_end(self):
        """A date-only start without end lasts one day."""
        text = _calendar("BEGIN:VEVENT", "DTSTART;VALUE=DATE:20270301", "END:VEVENT")

        [record] = ICalDecoder().decode(text)

        assert record.interval.duration_minutes() == 24 * 60

    def test_alarm_becomes_reminder(self):
        """VALARM triggers before the start become reminders."""
        text = _calendar(
            "BEGIN:VEVENT",
            "SUMMARY:With alarm",
            "DTSTART:20270301T100000Z",
            "DTEND:20270301T110000Z",
            "BEGIN:VALARM",
            "ACTION:DISPLAY",
            "DESCRIPTION:Alarm text",
            "TRIGGER:-PT30M",
            "END:VALARM",
            "END:VEVENT",
        )

        [record] = ICalDecoder().decode(text)

        assert record.reminders == (Reminder(minutes_before=30),)
        # Alarm properties stay out of the event
        assert record.description == ""

    def test_unclosed_alarm_ends_with_its_event(self):
        """An alarm missing END:VALARM does not swallow later events."""
        text = _calendar(
            "BEGIN:VEVENT",
            "SUMMARY:A",
            "DTSTART:20270301T100000Z",
            "DTEND:20270301T110000Z",
            "BEGIN:VALARM",
            "TRIGGER:-PT15M",
            "END:VEVENT",
            "BEGIN:VEVENT",
            "SUMMARY:B",
            "DTSTART:20270301T120000Z",
            "DTEND:20270301T130000Z",
            "END:VEVENT",
        )

        records = ICalDecoder().decode(text)

        assert [record.title for record in records] == ["A", "B"]
        assert records[0].reminders == (Reminder(minutes_before=15),)

    def test_new_event_inside_unclosed_alarm(self):
        """A BEGIN:VEVENT inside an open alarm starts a fresh block."""
        text = _calendar(
            "BEGIN:VEVENT",
            "SUMMARY:Lost",
            "BEGIN:VALARM",
            "TRIGGER:-PT15M",
            "BEGIN:VEVENT",
            "SUMMARY:Kept",
            "END:VEVENT",
        )

        assert [record.title for record in ICalDecoder().decode(text)] == ["Kept"]


class TestRawPropertyMap:
    """Tests for the raw decoding step."""

    def test_repeated_properties_keep_order(self):
        """Repeated names keep every instance in first-seen order."""
        text = _calendar(
            "BEGIN:VEVENT",
            "ATTENDEE;CN=Ana:MAILTO:ana@example.com",
            "ATTENDEE:MAILTO:bo@example.com",
            "X-CUSTOM:kept",
            "END:VEVENT",
        )

        [raw] = ICalDecoder().decode_raw(text)

        assert raw.all("ATTENDEE") == ["MAILTO:ana@example.com", "MAILTO:bo@example.com"]
        assert raw.params("ATTENDEE") == "CN=Ana"
        assert raw.first("X-CUSTOM") == "kept"
        assert len(raw) == 3

    def test_flat_dict_suffixes_repeats(self):
        """The flat view numbers repeats and exposes parameters."""
        text = _calendar(
            "BEGIN:VEVENT",
            "ATTENDEE;CN=Ana:MAILTO:ana@example.com",
            "ATTENDEE:MAILTO:bo@example.com",
            "END:VEVENT",
        )

        [raw] = ICalDecoder().decode_raw(text)

        assert raw.as_flat_dict() == {
            "ATTENDEE": "MAILTO:ana@example.com",
            "ATTENDEE_PARAMS": "CN=Ana",
            "ATTENDEE_2": "MAILTO:bo@example.com",
        }

    def test_colon_inside_quoted_parameter(self):
        """Only a colon outside quotes separates name from value."""
        text = _calendar(
            "BEGIN:VEVENT",
            'ORGANIZER;CN="Desk: North":MAILTO:desk@example.com',
            "END:VEVENT",
        )

        [record] = ICalDecoder().decode(text)

        assert record.organizer == Organizer(email="desk@example.com", name="Desk: North")

    def test_mailto_parameters_do_not_leak_into_email(self):
        """SENT-BY and DELEGATED-FROM addresses are not taken as the email."""
        text = _calendar(
            "BEGIN:VEVENT",
            'ORGANIZER;CN=John;SENT-BY="mailto:assistant@example.com":mailto:john@example.com',
            'ATTENDEE;DELEGATED-FROM="mailto:boss@example.com";PARTSTAT=DELEGATED;CN=Ana:mailto:ana@example.com',
            "END:VEVENT",
        )

        [record] = ICalDecoder().decode(text)

        assert record.organizer == Organizer(email="john@example.com", name="John")
        assert record.attendees == (
            Attendee(email="ana@example.com", name="Ana", participation_status="delegated"),
        )


class TestRoundTrip:
    """Encoding then decoding preserves the record."""

    def test_round_trip_preserves_fields(self):
        """Every encoded field comes back unchanged."""
        original = EventRecord(
            uid="evt-9@example.com",
            title="Quarterly review, Q1; final",
            description="Agenda:\n1. numbers\n2. plans",
            location="HQ, Room 4",
            interval=Interval(
                start=pendulum.datetime(2027, 3, 1, 10, tz="UTC"),
                end=pendulum.datetime(2027, 3, 1, 11, 30, tz="UTC"),
            ),
            attendees=(Attendee(email="ana@example.com", name="Doe, Ana", participation_status="tentative"),),
            organizer=Organizer(email="desk@example.com", name="Front Desk"),
            status=EventStatus.TENTATIVE,
            classification=Classification.CONFIDENTIAL,
            recurrence_rule="FREQ=DAILY;COUNT=2",
            reminders=(Reminder(minutes_before=10),),
        )

        text = ICalEncoder(clock=lambda: pendulum.datetime(2027, 1, 1, tz="UTC")).encode([original]).text
        [decoded] = ICalDecoder().decode(text)

        assert decoded == original

    def test_round_trip_of_long_description(self):
        """Folded lines survive the round trip."""
        original = EventRecord(
            uid="evt-10",
            title="Long",
            description=" ".join(["word"] * 60),
            interval=Interval(
                start=pendulum.datetime(2027, 3, 1, 10, tz="UTC"),
                end=pendulum.datetime(2027, 3, 1, 11, tz="UTC"),
            ),
        )

        [decoded] = ICalDecoder().decode(ICalEncoder().encode([original]).text)

        assert decoded.description == original.description

    def test_round_trip_keeps_edge_whitespace(self):
        """Leading and trailing spaces in text values survive."""
        original = EventRecord(
            uid="evt-11",
            title="Standup ",
            location=" Room 1",
            interval=Interval(
                start=pendulum.datetime(2027, 3, 1, 9, tz="UTC"),
                end=pendulum.datetime(2027, 3, 1, 9, 15, tz="UTC"),
            ),
        )

        [decoded] = ICalDecoder().decode(ICalEncoder().encode([original]).text)

        assert decoded.title == "Standup "
        assert decoded.location == " Room 1"
