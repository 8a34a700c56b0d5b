"""
Tests for iCalendar import and export flows.
"""

import pendulum
import pytest

from slotbook.adapters.mock_calendar import MockCalendarGateway
from slotbook.domain.exceptions import CalendarAPIError
from slotbook.domain.models import EventRecord, Interval
from slotbook.services.calendar_transfer import CalendarTransferService


def _interval(start_hour: int, end_hour: int) -> Interval:
    return Interval(
        start=pendulum.datetime(2027, 3, 1, start_hour, tz="UTC"),
        end=pendulum.datetime(2027, 3, 1, end_hour, tz="UTC"),
    )


SAMPLE = "\r\n".join([
    "BEGIN:VCALENDAR",
    "VERSION:2.0",
    "BEGIN:VEVENT",
    "UID:a",
    "SUMMARY:Standup",
    "DTSTART:20270301T090000Z",
    "DTEND:20270301T091500Z",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "UID:b",
    "SUMMARY:No times",
    "END:VEVENT",
    "END:VCALENDAR",
]) + "\r\n"


class FlakyCalendar(MockCalendarGateway):
    """Mock calendar rejecting one title."""

    def create_event(self, record):
        if record.title == "Reject me":
            raise CalendarAPIError("rejected")
        return super().create_event(record)


class TestExport:
    """Tests for exporting records."""

    def test_export_to_file_writes_crlf(self, tmp_path):
        """Files keep CRLF line endings and parent folders are created."""
        path = tmp_path / "out" / "calendar.ics"
        records = [EventRecord(uid="a", title="Standup", interval=_interval(9, 10))]

        result = CalendarTransferService().export_to_file(records, path, calendar_name="Team")

        content = path.read_bytes().decode("utf-8")
        assert result.encoded == 1
        assert content.startswith("BEGIN:VCALENDAR\r\n")
        assert "X-WR-CALNAME:Team\r\n" in content

    def test_export_calendar(self):
        """External events in the window are exported."""
        calendar = MockCalendarGateway(events=[
            EventRecord(uid="x", title="Inside", interval=_interval(10, 11)),
            EventRecord(uid="y", title="Outside", interval=_interval(18, 19)),
        ])

        result = CalendarTransferService(calendar=calendar).export_calendar(_interval(8, 12))

        assert result.encoded == 1
        assert "SUMMARY:Inside" in result.text
        assert "X-WR-CALDESC:Exported calendar events" in result.text

    def test_export_calendar_requires_calendar(self):
        """Without a calendar there is nothing to export."""
        with pytest.raises(CalendarAPIError):
            CalendarTransferService().export_calendar(_interval(8, 12))


class TestImport:
    """Tests for importing records."""

    def test_import_from_file(self, tmp_path):
        """Files decode into records."""
        path = tmp_path / "in.ics"
        path.write_bytes(SAMPLE.encode("utf-8"))

        records = CalendarTransferService().import_from_file(path)

        assert [record.uid for record in records] == ["a", "b"]
        assert records[1].interval is None

    def test_import_missing_file(self, tmp_path):
        """A missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            CalendarTransferService().import_from_file(tmp_path / "missing.ics")

    def test_import_to_calendar(self):
        """Records with times are pushed, others skipped, failures collected."""
        calendar = FlakyCalendar()
        service = CalendarTransferService(calendar=calendar)
        records = service.import_text(SAMPLE) + [
            EventRecord(title="Reject me", interval=_interval(12, 13)),
        ]

        report = service.import_to_calendar(records)

        assert report.total == 3
        assert report.imported == 1
        assert report.skipped == 1
        assert report.errors == ["Failed to import event 'Reject me': rejected"]
        assert report.external_ids == ["mock-1"]
        assert calendar.events["mock-1"].title == "Standup"

    def test_import_to_calendar_requires_calendar(self):
        """Pushing needs an external calendar."""
        with pytest.raises(CalendarAPIError):
            CalendarTransferService().import_to_calendar([])
