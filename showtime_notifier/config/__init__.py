"""Configuration management for the showtime notifier."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, parse_config_dict, validate_config_file
from .models import (
    SUPPORTED_LOCALES,
    AppConfig,
    DefaultsConfig,
    DeliveryConfig,
    LogFormat,
    LogLevel,
    LoggingConfig,
    MatchingConfig,
    ScheduleConfig,
)

__all__ = [
    "load_config",
    "parse_config_dict",
    "validate_config_file",
    "load_environment_config",
    "AppConfig",
    "ScheduleConfig",
    "MatchingConfig",
    "DeliveryConfig",
    "DefaultsConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    "LogLevel",
    "LogFormat",
    "SUPPORTED_LOCALES",
    "ConfigurationError",
]
