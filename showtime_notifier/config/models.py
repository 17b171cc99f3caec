"""Configuration schema models using Pydantic."""

from enum import Enum

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, Field, field_validator

from ..utils.timestamps import is_valid_timezone

SUPPORTED_LOCALES = ("en-US", "de")


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _check_crontab(value: str) -> str:
    stripped = " ".join(value.split())
    if not stripped:
        raise ValueError("cron pattern cannot be empty")
    try:
        CronTrigger.from_crontab(stripped)
    except ValueError as e:
        raise ValueError(f"invalid cron pattern {value!r}: {e}") from e
    return stripped


class ScheduleConfig(BaseModel):
    """Cron patterns for the recurring jobs (5-field crontab syntax, UTC)."""

    personal_digest: str = Field(
        "0 17 * * *", description="When matching entries are delivered to recipients"
    )
    guild_default: str = Field(
        "0 9 * * *", description="Broadcast schedule for guilds without their own pattern"
    )
    cleanup: str = Field(
        "30 3 * * *", description="When retired notification entries are cleaned up"
    )

    @field_validator("personal_digest", "guild_default", "cleanup")
    @classmethod
    def validate_crontab(cls, v: str) -> str:
        return _check_crontab(v)


class MatchingConfig(BaseModel):
    """Fuzzy title matching settings."""

    title_threshold: float = Field(
        0.3,
        ge=0.0,
        le=1.0,
        description="0 requires an exact match, 1 matches anything",
    )
    max_query_length: int = Field(
        32, ge=1, le=256, description="Longer title keywords are truncated"
    )


class DeliveryConfig(BaseModel):
    """Webhook delivery settings."""

    request_timeout: int = Field(
        15, ge=1, le=300, description="Timeout for relay requests (seconds)"
    )
    user_agent: str = Field(
        "ShowtimeNotifier/1.0",
        min_length=1,
        description="User-Agent header sent to the relay",
    )
    max_screenings_per_item: int = Field(
        5, ge=1, le=50, description="Screenings listed per item in broadcast messages"
    )

    @field_validator("user_agent")
    @classmethod
    def strip_user_agent(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("user_agent cannot be empty")
        return stripped


class DefaultsConfig(BaseModel):
    """Preferences applied to recipients and guilds that did not set their own."""

    timezone: str = Field("Europe/Vienna", description="IANA timezone name")
    locale: str = Field("en-US", description="Message locale")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        v = v.strip()
        if not is_valid_timezone(v):
            raise ValueError(f"unknown timezone: {v}")
        return v

    @field_validator("locale")
    @classmethod
    def validate_locale(cls, v: str) -> str:
        v = v.strip()
        if v not in SUPPORTED_LOCALES:
            raise ValueError(f"locale must be one of {', '.join(SUPPORTED_LOCALES)}")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )
    environment: str = Field("local", description="Environment label on every record")

    model_config = {"use_enum_values": True, "validate_default": True}


class AppConfig(BaseModel):
    """Root configuration object."""

    schedules: ScheduleConfig = Field(default_factory=ScheduleConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
