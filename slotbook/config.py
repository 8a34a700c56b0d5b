"""
Configuration management using Pydantic models loaded from YAML.
"""

from datetime import time
from pathlib import Path
from typing import List, Literal, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.models import Organizer, WorkingHours
from .services.availability import DEFAULT_CALENDAR_PADDING_MINUTES


class DefaultsConfig(BaseModel):
    """Default settings for slot generation."""
    slot_duration_minutes: int = 60
    start_hour: int = 9
    end_hour: int = 17
    min_slot_minutes: int = 15
    max_slot_minutes: int = 480

    @field_validator("slot_duration_minutes", "min_slot_minutes", "max_slot_minutes")
    @classmethod
    def validate_duration(cls, value: int) -> int:
        """Ensure durations are positive."""
        if value <= 0:
            raise ValueError("durations must be greater than zero")
        return value

    @field_validator("start_hour", "end_hour")
    @classmethod
    def validate_hour(cls, v: int) -> int:
        """Validate hour is between 0 and 23."""
        if not 0 <= v <= 23:
            raise ValueError(f"Hour must be between 0 and 23, got {v}")
        return v

    @model_validator(mode="after")
    def validate_ranges(self) -> "DefaultsConfig":
        """Ensure the working window and the slot range are ordered."""
        if self.end_hour <= self.start_hour:
            raise ValueError("end_hour must be later than start_hour")
        if self.max_slot_minutes < self.min_slot_minutes:
            raise ValueError("max_slot_minutes must not be smaller than min_slot_minutes")
        if not self.min_slot_minutes <= self.slot_duration_minutes <= self.max_slot_minutes:
            raise ValueError("slot_duration_minutes must lie within the allowed slot range")
        return self

    def get_start_time(self) -> time:
        """Get start time as time object."""
        return time(hour=self.start_hour, minute=0)

    def get_end_time(self) -> time:
        """Get end time as time object."""
        return time(hour=self.end_hour, minute=0)

    def slot_duration_range(self) -> Tuple[int, int]:
        return self.min_slot_minutes, self.max_slot_minutes


class CalendarConfig(BaseModel):
    """External calendar connection."""
    provider: Literal["none", "mock", "graph"] = "none"
    calendar_id: str = ""
    access_token: str = ""
    padding_minutes: int = DEFAULT_CALENDAR_PADDING_MINUTES
    sync_bookings: bool = True
    mock_data_file: Optional[Path] = None

    @field_validator("padding_minutes")
    @classmethod
    def validate_padding(cls, value: int) -> int:
        if value < 0:
            raise ValueError("padding_minutes must not be negative")
        return value

    @model_validator(mode="after")
    def validate_graph_token(self) -> "CalendarConfig":
        """The Graph provider cannot work without a token."""
        if self.provider == "graph" and not self.access_token:
            raise ValueError("calendar.access_token is required for the graph provider")
        return self


class OrganizerConfig(BaseModel):
    """Organizer written into exported events."""
    email: str = ""
    name: str = ""


class AppConfig(BaseModel):
    """Application configuration."""
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    calendar: CalendarConfig = Field(default_factory=CalendarConfig)
    organizer: OrganizerConfig = Field(default_factory=OrganizerConfig)
    timezone: str = "UTC"
    exclude_days: List[int] = Field(default_factory=lambda: [5, 6])  # Saturday, Sunday
    store_path: Path = Path("bookings.json")
    log_level: str = "WARNING"

    @field_validator("exclude_days")
    @classmethod
    def validate_exclude_days(cls, value: List[int]) -> List[int]:
        """Ensure weekdays are in valid range and deduplicated."""
        invalid_days = [day for day in value if day not in range(7)]
        if invalid_days:
            raise ValueError(f"exclude_days must be between 0 and 6, got {invalid_days}")
        # Preserve order while removing duplicates
        seen: set[int] = set()
        deduped: List[int] = []
        for day in value:
            if day not in seen:
                deduped.append(day)
                seen.add(day)
        return deduped

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    def working_hours(self) -> WorkingHours:
        return WorkingHours(
            start_time=self.defaults.get_start_time(),
            end_time=self.defaults.get_end_time(),
            exclude_weekdays=list(self.exclude_days),
            timezone=self.timezone,
        )

    def get_organizer(self) -> Optional[Organizer]:
        """The configured organizer, or None when no email is set."""
        if not self.organizer.email:
            return None
        return Organizer(email=self.organizer.email, name=self.organizer.name or None)

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """
    Load the given config file, or the default one when it exists.

    An explicitly given path must exist; without one, defaults are used
    when no config.yaml can be found.
    """
    if config_path is not None:
        return AppConfig.load_from_yaml(config_path)

    default_path = get_default_config_path()
    if default_path.exists():
        return AppConfig.load_from_yaml(default_path)
    return AppConfig()
