"""
Import and export flows between iCalendar files and calendars.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from ..domain.exceptions import CalendarAPIError
from ..domain.models import EventRecord, Interval
from ..ical.decoder import ICalDecoder
from ..ical.encoder import EncodeResult, ICalEncoder
from .gateways import ExternalCalendarGateway

logger = logging.getLogger(__name__)


@dataclass
class ImportReport:
    total: int = 0
    imported: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    external_ids: List[str] = field(default_factory=list)


class CalendarTransferService:
    """
    Moves calendar data in and out through the iCal codec.

    The external calendar is optional; without it only file and text
    conversions are available.
    """

    def __init__(
        self,
        encoder: Optional[ICalEncoder] = None,
        decoder: Optional[ICalDecoder] = None,
        calendar: Optional[ExternalCalendarGateway] = None,
    ) -> None:
        self._encoder = encoder or ICalEncoder()
        self._decoder = decoder or ICalDecoder()
        self._calendar = calendar

    def export_records(
        self,
        records: Iterable[EventRecord],
        calendar_name: str = "Calendar",
        description: str = "",
    ) -> EncodeResult:
        return self._encoder.encode(records, calendar_name=calendar_name, description=description)

    def export_to_file(
        self,
        records: Iterable[EventRecord],
        path: Path,
        calendar_name: str = "Calendar",
    ) -> EncodeResult:
        """Encode ``records`` and write them to ``path``, creating parent folders."""
        result = self.export_records(records, calendar_name=calendar_name)
        write_ical_file(result, path)
        return result

    def export_calendar(
        self,
        window: Interval,
        calendar_name: str = "Calendar Export",
    ) -> EncodeResult:
        """Export the external calendar's events within ``window``."""
        if self._calendar is None:
            raise CalendarAPIError("No external calendar configured")

        events = self._calendar.list_events(window)
        return self.export_records(events, calendar_name=calendar_name, description="Exported calendar events")

    def import_text(self, text: str) -> List[EventRecord]:
        return self._decoder.decode(text)

    def import_from_file(self, path: Path) -> List[EventRecord]:
        """
        Raises:
            FileNotFoundError: If ``path`` does not exist
        """
        if not path.exists():
            raise FileNotFoundError(f"iCal file not found: {path}")

        with open(path, "r", encoding="utf-8", newline="") as f:
            return self.import_text(f.read())

    def import_to_calendar(self, records: Iterable[EventRecord]) -> ImportReport:
        """
        Push decoded records to the external calendar.

        Records without usable start/end times are skipped; a failing push
        is recorded and the remaining records are still attempted.
        """
        if self._calendar is None:
            raise CalendarAPIError("No external calendar configured")

        report = ImportReport()
        for record in records:
            report.total += 1

            if record.interval is None:
                report.skipped += 1
                continue

            try:
                external_id = self._calendar.create_event(record)
            except Exception as exc:
                logger.error("Failed to import event %r: %s", record.title, exc)
                report.errors.append(f"Failed to import event '{record.title}': {exc}")
                continue

            report.imported += 1
            report.external_ids.append(external_id)

        logger.info(
            "Imported %d of %d events (%d skipped, %d failed)",
            report.imported,
            report.total,
            report.skipped,
            len(report.errors),
        )
        return report


def write_ical_file(result: EncodeResult, path: Path) -> None:
    """Write encoded calendar text to ``path``, creating parent folders."""
    path.parent.mkdir(parents=True, exist_ok=True)
    # newline="" keeps the CRLF line endings the format requires
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(result.text)

    logger.info("iCal file exported: %s", path)
