"""Environment variable loading and validation."""

import os
from typing import Optional
from urllib.parse import urlparse

from .exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./data/showtime_notifier.db"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EnvironmentConfig:
    """Secrets and deployment-specific values read from the environment."""

    def __init__(
        self,
        webhook_url: str,
        webhook_token: Optional[str] = None,
        log_level: Optional[str] = None,
        database_url: Optional[str] = None,
    ):
        self.webhook_url = webhook_url
        self.webhook_token = webhook_token
        self.log_level = log_level.upper() if log_level else None
        self.database_url = database_url or DEFAULT_DATABASE_URL


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    Required:
    - DELIVERY_WEBHOOK_URL: http(s) URL of the relay that forwards messages
      to the chat platform

    Optional:
    - DELIVERY_WEBHOOK_TOKEN: bearer token sent to the relay
    - LOG_LEVEL: overrides logging.level from the YAML file
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./data/showtime_notifier.db)

    Raises:
        ConfigurationError: If required variables are missing or invalid
    """
    errors = []

    webhook_url = (os.getenv("DELIVERY_WEBHOOK_URL") or "").strip()
    webhook_token = os.getenv("DELIVERY_WEBHOOK_TOKEN") or None
    log_level = os.getenv("LOG_LEVEL") or None
    database_url = os.getenv("DATABASE_URL") or None

    if not webhook_url:
        errors.append("Missing required environment variable: DELIVERY_WEBHOOK_URL")
    else:
        parsed = urlparse(webhook_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(
                f"Invalid DELIVERY_WEBHOOK_URL: '{webhook_url}'. Must be an http(s) URL."
            )

    if log_level and log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    if database_url and "://" not in database_url:
        errors.append(
            f"Invalid DATABASE_URL: '{database_url}'. Expected a SQLAlchemy URL such as "
            f"{DEFAULT_DATABASE_URL}"
        )

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in the relay URL",
                "Ensure all required environment variables are set",
            ],
        )

    return EnvironmentConfig(
        webhook_url=webhook_url,
        webhook_token=webhook_token,
        log_level=log_level,
        database_url=database_url,
    )
