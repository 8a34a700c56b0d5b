"""
Microsoft Graph API calendar gateway for reading and writing events.
"""

import logging
from typing import Any, Dict, List, Optional

import pendulum
import requests
from pendulum import DateTime

from ..domain.exceptions import CalendarAPIError, InvalidInterval
from ..domain.models import (
    Attendee,
    Classification,
    EventRecord,
    EventStatus,
    Interval,
    Organizer,
    Reminder,
    as_pendulum,
)

logger = logging.getLogger(__name__)


# Graph attendee responses mapped onto iCalendar participation states
RESPONSE_TO_PARTSTAT = {
    "accepted": "accepted",
    "declined": "declined",
    "tentativelyaccepted": "tentative",
    "notresponded": "needs-action",
    "none": "needs-action",
    "organizer": "accepted",
}

SENSITIVITY_TO_CLASSIFICATION = {
    "normal": Classification.PUBLIC,
    "personal": Classification.PRIVATE,
    "private": Classification.PRIVATE,
    "confidential": Classification.CONFIDENTIAL,
}

CLASSIFICATION_TO_SENSITIVITY = {
    Classification.PUBLIC: "normal",
    Classification.PRIVATE: "private",
    Classification.CONFIDENTIAL: "confidential",
}


class GraphCalendarGateway:
    """
    Client for Microsoft Graph API calendar operations.

    Uses ``calendarView`` to list events and the ``events`` collection to
    create, update and delete them. All times are exchanged in UTC.
    """

    GRAPH_API_ENDPOINT = "https://graph.microsoft.com/v1.0"

    def __init__(self, access_token: str, calendar_id: str = "", timeout: int = 30):
        """
        Initialize the Graph API client.

        Args:
            access_token: Valid Microsoft Graph access token
            calendar_id: Calendar to use; the user's default calendar when empty
            timeout: Request timeout in seconds
        """
        self.access_token = access_token
        self.calendar_id = calendar_id
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Prefer": 'outlook.timezone="UTC"',
        }

    @property
    def _calendar_path(self) -> str:
        if self.calendar_id:
            return f"{self.GRAPH_API_ENDPOINT}/me/calendars/{self.calendar_id}"
        return f"{self.GRAPH_API_ENDPOINT}/me/calendar"

    def list_events(self, interval: Interval) -> List[EventRecord]:
        """
        Get all events intersecting ``interval``, following result paging.

        Raises:
            CalendarAPIError: If the API call fails
        """
        url: Optional[str] = f"{self._calendar_path}/calendarView"
        params: Optional[Dict[str, str]] = {
            "startDateTime": as_pendulum(interval.start).in_timezone("UTC").to_iso8601_string(),
            "endDateTime": as_pendulum(interval.end).in_timezone("UTC").to_iso8601_string(),
        }

        records: List[EventRecord] = []
        while url:
            try:
                response = requests.get(url, headers=self.headers, params=params, timeout=self.timeout)
                response.raise_for_status()
                data = response.json()
            except requests.exceptions.RequestException as e:
                raise CalendarAPIError(f"Failed to fetch events from Microsoft Graph: {e}") from e

            for item in data.get("value", []):
                try:
                    records.append(self._parse_event(item))
                except (KeyError, ValueError) as e:
                    logger.warning("Could not parse calendar event %s: %s", item.get("id"), e)

            # nextLink already carries the query
            url = data.get("@odata.nextLink")
            params = None

        return records

    def create_event(self, record: EventRecord) -> str:
        """
        Raises:
            CalendarAPIError: If the API call fails or returns no id
        """
        url = f"{self._calendar_path}/events"

        try:
            response = requests.post(url, headers=self.headers, json=self._build_payload(record), timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise CalendarAPIError(f"Failed to create event in Microsoft Graph: {e}") from e

        event_id = data.get("id")
        if not event_id:
            raise CalendarAPIError("Microsoft Graph did not return an event id")

        logger.info("Graph event created: %s", event_id)
        return event_id

    def update_event(self, external_id: str, record: EventRecord) -> None:
        url = f"{self.GRAPH_API_ENDPOINT}/me/events/{external_id}"

        try:
            response = requests.patch(url, headers=self.headers, json=self._build_payload(record), timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise CalendarAPIError(f"Failed to update event {external_id} in Microsoft Graph: {e}") from e

        logger.info("Graph event updated: %s", external_id)

    def delete_event(self, external_id: str) -> None:
        url = f"{self.GRAPH_API_ENDPOINT}/me/events/{external_id}"

        try:
            response = requests.delete(url, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise CalendarAPIError(f"Failed to delete event {external_id} in Microsoft Graph: {e}") from e

        logger.info("Graph event deleted: %s", external_id)

    def _build_payload(self, record: EventRecord) -> Dict[str, Any]:
        """Translate an EventRecord into a Graph event resource."""
        if record.interval is None:
            raise CalendarAPIError(f"Event '{record.title}' has no start or end time")

        payload: Dict[str, Any] = {
            "subject": record.title,
            "body": {"contentType": "text", "content": record.description},
            "start": self._format_datetime(record.interval.start),
            "end": self._format_datetime(record.interval.end),
            "sensitivity": CLASSIFICATION_TO_SENSITIVITY[Classification.coerce(record.classification)],
            "showAs": "tentative" if record.status == EventStatus.TENTATIVE else "busy",
        }

        if record.location:
            payload["location"] = {"displayName": record.location}

        if record.attendees:
            payload["attendees"] = [
                {
                    "emailAddress": {"address": attendee.email, "name": attendee.name or attendee.email},
                    "type": "required",
                }
                for attendee in record.attendees
                if attendee.email
            ]

        if record.reminders:
            payload["isReminderOn"] = True
            payload["reminderMinutesBeforeStart"] = record.reminders[0].minutes_before

        return payload

    @staticmethod
    def _format_datetime(value) -> Dict[str, str]:
        utc = as_pendulum(value).in_timezone("UTC")
        return {"dateTime": utc.format("YYYY-MM-DD[T]HH:mm:ss"), "timeZone": "UTC"}

    def _parse_event(self, item: Dict[str, Any]) -> EventRecord:
        """
        Parse a Graph event resource into our domain model.

        Response format:
        {
            "id": "AAMk...",
            "subject": "...",
            "start": {"dateTime": "2024-01-15T09:00:00.0000000", "timeZone": "UTC"},
            "end": {"dateTime": "...", "timeZone": "UTC"},
            "location": {"displayName": "..."},
            "attendees": [{"emailAddress": {...}, "status": {"response": "accepted"}}],
            "isCancelled": false,
            "showAs": "busy"
        }
        """
        start = self._parse_datetime(item["start"]["dateTime"], item["start"].get("timeZone", "UTC"))
        end = self._parse_datetime(item["end"]["dateTime"], item["end"].get("timeZone", "UTC"))

        try:
            interval: Optional[Interval] = Interval(start=start, end=end)
        except InvalidInterval:
            interval = None

        attendees = tuple(
            Attendee(
                email=attendee.get("emailAddress", {}).get("address"),
                name=attendee.get("emailAddress", {}).get("name"),
                participation_status=RESPONSE_TO_PARTSTAT.get(
                    str(attendee.get("status", {}).get("response", "")).lower()
                ),
            )
            for attendee in item.get("attendees", [])
        )

        organizer = None
        organizer_address = item.get("organizer", {}).get("emailAddress")
        if organizer_address:
            organizer = Organizer(email=organizer_address.get("address"), name=organizer_address.get("name"))

        if item.get("isCancelled"):
            status = EventStatus.CANCELLED
        elif str(item.get("showAs", "")).lower() == "tentative":
            status = EventStatus.TENTATIVE
        else:
            status = EventStatus.CONFIRMED

        reminders = ()
        if item.get("isReminderOn") and item.get("reminderMinutesBeforeStart") is not None:
            reminders = (Reminder(minutes_before=int(item["reminderMinutesBeforeStart"])),)

        return EventRecord(
            uid=item.get("iCalUId") or item.get("id"),
            title=item.get("subject") or "",
            description=item.get("bodyPreview") or "",
            interval=interval,
            location=(item.get("location") or {}).get("displayName") or "",
            attendees=attendees,
            organizer=organizer,
            status=status,
            classification=SENSITIVITY_TO_CLASSIFICATION.get(
                str(item.get("sensitivity", "normal")).lower(),
                Classification.PUBLIC,
            ),
            reminders=reminders,
            external_id=item.get("id"),
        )

    def _parse_datetime(self, datetime_str: str, timezone: str) -> DateTime:
        """
        Parse a Graph datetime string to a pendulum DateTime.

        Raises:
            ValueError: If the string is not a datetime
        """
        dt = pendulum.parse(datetime_str, tz=timezone)

        if isinstance(dt, DateTime):
            return dt.in_timezone("UTC")

        raise ValueError(f"Could not parse datetime: {datetime_str}")
