"""
Mock external calendar for testing without Microsoft Graph access.
"""

import itertools
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional

import pendulum

from ..domain.exceptions import CalendarAPIError
from ..domain.models import EventRecord, EventStatus, Interval, overlaps

logger = logging.getLogger(__name__)


class MockCalendarGateway:
    """
    In-memory calendar that behaves like the Graph gateway.

    Events can be seeded from a JSON file holding a list of objects with
    ``subject``, ``start`` and ``end`` (ISO 8601) and an optional ``id``.
    Created events receive ids of the form ``mock-<n>``.
    """

    def __init__(
        self,
        events: Optional[List[EventRecord]] = None,
        data_file: Optional[Path] = None,
        timezone: str = "UTC",
    ):
        """
        Initialize the mock calendar.

        Args:
            events: Records to start with
            data_file: Optional JSON file with additional seed events
            timezone: Timezone for seed times without an offset
        """
        self.timezone = timezone
        self._ids = itertools.count(1)
        self.events: Dict[str, EventRecord] = {}

        for record in events or []:
            event_id = record.external_id or record.uid or self._next_id()
            self.events[event_id] = replace(record, external_id=event_id)

        if data_file is not None:
            self._load_calendar_data(data_file)

    def _next_id(self) -> str:
        return f"mock-{next(self._ids)}"

    def _load_calendar_data(self, data_file: Path) -> None:
        """Load mock calendar data from a JSON file."""
        if not data_file.exists():
            raise FileNotFoundError(f"Mock calendar data not found: {data_file}")

        try:
            with open(data_file, "r", encoding="utf-8") as f:
                items = json.load(f)
        except ValueError as e:
            raise CalendarAPIError(f"Invalid mock calendar data in {data_file}: {e}") from e

        for item in items:
            try:
                interval = Interval(
                    start=pendulum.parse(item["start"], tz=self.timezone),
                    end=pendulum.parse(item["end"], tz=self.timezone),
                )
            except (KeyError, ValueError) as e:
                logger.warning("Skipping invalid mock event %s: %s", item.get("id"), e)
                continue

            event_id = item.get("id") or self._next_id()
            self.events[event_id] = EventRecord(
                uid=event_id,
                external_id=event_id,
                title=item.get("subject", ""),
                interval=interval,
                location=item.get("location", ""),
            )

        logger.info("Loaded %d mock calendar events from %s", len(self.events), data_file)

    def list_events(self, interval: Interval) -> List[EventRecord]:
        return [
            record for record in self.events.values()
            if record.interval is not None
            and record.status != EventStatus.CANCELLED
            and overlaps(record.interval, interval)
        ]

    def create_event(self, record: EventRecord) -> str:
        event_id = self._next_id()
        self.events[event_id] = replace(record, uid=event_id, external_id=event_id)
        return event_id

    def update_event(self, external_id: str, record: EventRecord) -> None:
        if external_id not in self.events:
            raise CalendarAPIError(f"Event {external_id} not found")
        self.events[external_id] = replace(record, uid=external_id, external_id=external_id)

    def delete_event(self, external_id: str) -> None:
        if self.events.pop(external_id, None) is None:
            raise CalendarAPIError(f"Event {external_id} not found")
