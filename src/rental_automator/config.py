"""Configuration for the rental automator."""

from datetime import time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CalendarFormat(str, Enum):
    """Supported iCal feed formats."""

    AIRBNB = "AirBNB"
    OWNERREZ = "OwnerRez"


# Minimum interval between calendar fetches (seconds)
CALENDAR_FETCH_MIN_INTERVAL = 300

# Offsets applied to check-in (earlier) and check-out (later) are clamped to this range
MAX_SHIFT_MINUTES = 60

# Prep lead time used when prep is enabled but no positive value is configured
DEFAULT_PREP_MINUTES = 30


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="RENTAL_AUTOMATOR_",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./rental_automator.db"

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8099
    debug: bool = False

    # Home Assistant connection
    ha_url: str = ""
    ha_token: str = ""
    mode_entity_id: str = "input_select.house_mode"
    code_event_type: str = "lock_code_changed"

    # Calendar
    calendar_url: str = ""
    calendar_format: CalendarFormat = CalendarFormat.OWNERREZ
    use_exact_times: bool = False

    # Check-in / check-out
    check_in_time: time = time(16, 0)
    check_out_time: time = time(11, 0)
    checkin_early_minutes: int = 0
    checkout_late_minutes: int = 0
    checkin_mode: Optional[str] = "Stay"
    checkout_mode: Optional[str] = "Away"

    # Check-in prep
    checkin_prep: bool = False
    checkin_prep_minutes: int = 0
    checkin_prep_same_mode: bool = True
    checkin_prep_mode: Optional[str] = None
    program_locks_at_checkin_prep: bool = False

    # Locks
    door_locks: list[str] = Field(default_factory=list)
    set_code_service: str = "script.rental_automator_set_code"
    clear_code_service: str = "script.rental_automator_clear_code"
    lock_settle_seconds: float = 10.0
    checkout_settle_seconds: float = 10.0

    # Notifications
    hub_name: str = ""
    notification_services: list[str] = Field(default_factory=list)
    notification_on_errors_only: bool = False

    # Test procedures run against the first calendar event regardless of date
    force_event_override: bool = True


class AutomatorConfig(BaseModel):
    """Immutable snapshot of the settings the procedures act on."""

    model_config = ConfigDict(frozen=True)

    calendar_url: str = ""
    calendar_format: CalendarFormat = CalendarFormat.OWNERREZ
    use_exact_times: bool = False
    check_in_time: Optional[time] = time(16, 0)
    check_out_time: Optional[time] = time(11, 0)
    checkin_early_minutes: Optional[int] = 0
    checkout_late_minutes: Optional[int] = 0
    checkin_mode: Optional[str] = None
    checkout_mode: Optional[str] = None
    checkin_prep: bool = False
    checkin_prep_minutes: Optional[int] = 0
    checkin_prep_same_mode: bool = True
    checkin_prep_mode: Optional[str] = None
    program_locks_at_checkin_prep: bool = False
    notification_on_errors_only: bool = False
    debug: bool = False

    @property
    def validated_early_minutes(self) -> int:
        return _clamp(self.checkin_early_minutes or 0)

    @property
    def validated_late_minutes(self) -> int:
        return _clamp(self.checkout_late_minutes or 0)

    @property
    def validated_prep_minutes(self) -> int:
        """Prep lead time, 0 when prep is disabled."""
        if not self.checkin_prep:
            return 0
        minutes = self.checkin_prep_minutes or 0
        if minutes <= 0:
            return DEFAULT_PREP_MINUTES
        return minutes

    @property
    def prep_mode(self) -> Optional[str]:
        return self.checkin_mode if self.checkin_prep_same_mode else self.checkin_prep_mode


def _clamp(minutes: int) -> int:
    return max(0, min(MAX_SHIFT_MINUTES, int(minutes)))


def build_automator_config(settings: Settings) -> AutomatorConfig:
    """Build the immutable automator configuration from settings."""
    fields: dict[str, Any] = {
        name: getattr(settings, name)
        for name in AutomatorConfig.model_fields
        if hasattr(settings, name)
    }
    return AutomatorConfig(**fields)


def is_valid_secure_url(url: Optional[str]) -> bool:
    """Check that a calendar URL uses HTTPS."""
    if not url:
        return False
    return url.lower().startswith("https://")


def validate_configuration(config: AutomatorConfig, locks: list) -> list[str]:
    """Validate the configuration and return a list of problems.

    Errors never block startup; they are logged and recorded in state.
    """
    errors: list[str] = []

    if config.calendar_url and not is_valid_secure_url(config.calendar_url):
        errors.append("Calendar URL must use HTTPS for security")

    if config.checkin_prep:
        if not config.checkin_prep_minutes or config.checkin_prep_minutes <= 0:
            errors.append("Check-in prep minutes must be a positive number")
        if not config.checkin_prep_same_mode and not config.checkin_prep_mode:
            errors.append(
                "Check-in prep mode must be selected when not using same mode as check-in"
            )

    for lock in locks:
        if not lock.has_command("set_code"):
            errors.append(f"Lock '{lock.name}' does not support code programming (set_code)")
        if not lock.has_command("delete_code"):
            errors.append(f"Lock '{lock.name}' does not support code deletion (delete_code)")

    if not config.checkin_mode:
        errors.append("Check-in mode must be selected")
    if not config.checkout_mode:
        errors.append("Check-out mode must be selected")

    if config.check_in_time is None:
        errors.append("Check-in time must be set")
    if config.check_out_time is None:
        errors.append("Check-out time must be set")

    early = config.checkin_early_minutes
    if early is not None and not 0 <= early <= MAX_SHIFT_MINUTES:
        errors.append(f"Check-in early minutes must be between 0 and {MAX_SHIFT_MINUTES}")
    late = config.checkout_late_minutes
    if late is not None and not 0 <= late <= MAX_SHIFT_MINUTES:
        errors.append(f"Check-out late minutes must be between 0 and {MAX_SHIFT_MINUTES}")

    return errors


# Global settings instance
settings = Settings()
