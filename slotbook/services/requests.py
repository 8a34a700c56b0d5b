"""
Incoming booking payloads and their validation rules.
"""

from datetime import datetime
from typing import Any, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, EmailStr, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..domain.models import BookingType, Interval, as_pendulum

MAX_TITLE_LENGTH = 255

_email_adapter = TypeAdapter(EmailStr)


class BookingRequest(BaseModel):
    """
    A booking as submitted by a caller.

    Every field is optional at parse time so that all rule violations can be
    reported together by :meth:`violations`.
    """
    model_config = ConfigDict(extra="ignore")

    owner_id: Optional[int] = None
    title: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    provider_id: Optional[int] = None
    description: str = ""
    location: str = ""
    booking_type: str = BookingType.APPOINTMENT.value
    attendee_email: Optional[str] = None
    attendee_name: Optional[str] = None
    notes: str = ""
    sync_external_calendar: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def to_pendulum(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Naive times are read as UTC."""
        if value is None:
            return None
        return as_pendulum(value)

    @field_validator("description", "location", "notes", mode="before")
    @classmethod
    def none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @classmethod
    def parse(cls, data: Mapping[str, Any]) -> Tuple[Optional["BookingRequest"], List[str]]:
        """
        Build a request from raw input.

        Returns:
            The request (or None) and the list of type/format errors found
        """
        try:
            return cls.model_validate(dict(data)), []
        except PydanticValidationError as exc:
            errors = []
            for error in exc.errors():
                field = ".".join(str(part) for part in error["loc"])
                if field in ("start_time", "end_time"):
                    errors.append(f"Invalid date format for '{field}'")
                else:
                    errors.append(f"Field '{field}': {error['msg']}")
            return None, errors

    def violations(self, now: Optional[datetime] = None) -> List[str]:
        """
        Check the business rules.

        Args:
            now: Submission time; when given, a start in the past is rejected

        Returns:
            Human readable rule violations (empty when valid)
        """
        errors: List[str] = []

        if self.owner_id is None:
            errors.append("Field 'owner_id' is required")
        if not self.title or not self.title.strip():
            errors.append("Field 'title' is required")
        elif len(self.title) > MAX_TITLE_LENGTH:
            errors.append(f"Field 'title' must be at most {MAX_TITLE_LENGTH} characters")
        if self.start_time is None:
            errors.append("Field 'start_time' is required")
        if self.end_time is None:
            errors.append("Field 'end_time' is required")

        if self.start_time is not None and self.end_time is not None:
            if self.end_time <= self.start_time:
                errors.append("End time must be after start time")
            if now is not None and self.start_time < now:
                errors.append("Start time cannot be in the past")

        if self.attendee_email and not is_valid_email(self.attendee_email):
            errors.append("Invalid email format")

        if self.booking_type not in {member.value for member in BookingType}:
            errors.append(f"Unknown booking type '{self.booking_type}'")

        return errors

    def interval(self) -> Interval:
        return Interval(start=self.start_time, end=self.end_time)


def is_valid_email(value: str) -> bool:
    try:
        _email_adapter.validate_python(value)
    except PydanticValidationError:
        return False
    return True
