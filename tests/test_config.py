"""Integration tests for configuration module."""

from pathlib import Path

import pytest

from showtime_notifier.config import (
    AppConfig,
    ConfigurationError,
    LogFormat,
    LogLevel,
    load_config,
    load_environment_config,
    parse_config_dict,
    validate_config_file,
)
from showtime_notifier.config.environment import DEFAULT_DATABASE_URL
from showtime_notifier.config.validators import check_for_warnings

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Required environment for load_config()."""
    monkeypatch.setenv("DELIVERY_WEBHOOK_URL", "https://relay.test/messages")
    monkeypatch.delenv("DELIVERY_WEBHOOK_TOKEN", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)


class TestConfigurationLoading:
    def test_load_valid_config(self, mock_env_vars):
        app_config, env_config = load_config(FIXTURES_DIR / "valid_config.yaml")

        assert app_config.schedules.personal_digest == "0 18 * * *"
        assert app_config.schedules.guild_default == "15 10 * * 1-5"
        assert app_config.schedules.cleanup == "0 4 * * *"
        assert app_config.matching.title_threshold == 0.25
        assert app_config.matching.max_query_length == 40
        assert app_config.delivery.request_timeout == 20
        assert app_config.delivery.max_screenings_per_item == 3
        assert app_config.defaults.timezone == "Europe/Berlin"
        assert app_config.defaults.locale == "de"
        assert app_config.logging.level == "DEBUG"
        assert app_config.logging.format == "json"
        assert app_config.logging.environment == "test"

        assert env_config.webhook_url == "https://relay.test/messages"
        assert env_config.webhook_token is None
        assert env_config.database_url == DEFAULT_DATABASE_URL

    def test_empty_file_yields_defaults(self, mock_env_vars):
        app_config, _ = load_config(FIXTURES_DIR / "minimal_config.yaml")

        assert app_config == AppConfig()
        assert app_config.schedules.personal_digest == "0 17 * * *"
        assert app_config.schedules.guild_default == "0 9 * * *"
        assert app_config.matching.title_threshold == 0.3
        assert app_config.defaults.timezone == "Europe/Vienna"
        assert app_config.logging.level == LogLevel.INFO.value
        assert app_config.logging.format == LogFormat.KEY_VALUE.value

    def test_invalid_config_collects_every_error(self, mock_env_vars):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(FIXTURES_DIR / "invalid_config.yaml")

        errors = exc_info.value.errors
        assert len(errors) == 4
        assert any("personal_digest" in e for e in errors)
        assert any("title_threshold" in e for e in errors)
        assert any("timezone" in e for e in errors)
        assert any("locale" in e for e in errors)

    def test_missing_file(self, mock_env_vars, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_malformed_yaml(self, mock_env_vars, tmp_path):
        config_file = tmp_path / "broken.yaml"
        config_file.write_text("schedules: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Failed to parse YAML"):
            load_config(config_file)

    def test_top_level_must_be_mapping(self, mock_env_vars, tmp_path):
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- one\n- two\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(config_file)

    def test_cron_pattern_whitespace_is_normalised(self):
        config = parse_config_dict({"schedules": {"cleanup": "  0   4 * *  * "}})
        assert config.schedules.cleanup == "0 4 * * *"

    def test_example_config_is_valid(self):
        example = Path(__file__).parent.parent / "config.example.yaml"
        assert validate_config_file(example) is True

    def test_validate_config_file_reports_failure(self, capsys):
        assert validate_config_file(FIXTURES_DIR / "invalid_config.yaml") is False
        assert "Configuration validation failed" in capsys.readouterr().out


class TestEnvironmentConfig:
    def test_missing_webhook_url(self, monkeypatch):
        monkeypatch.delenv("DELIVERY_WEBHOOK_URL", raising=False)

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        assert "DELIVERY_WEBHOOK_URL" in exc_info.value.errors[0]

    def test_invalid_values_are_all_reported(self, monkeypatch):
        monkeypatch.setenv("DELIVERY_WEBHOOK_URL", "ftp://relay.test")
        monkeypatch.setenv("LOG_LEVEL", "chatty")
        monkeypatch.setenv("DATABASE_URL", "data.db")

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        assert len(exc_info.value.errors) == 3

    def test_optional_values(self, monkeypatch):
        monkeypatch.setenv("DELIVERY_WEBHOOK_URL", "https://relay.test")
        monkeypatch.setenv("DELIVERY_WEBHOOK_TOKEN", "secret")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")

        env_config = load_environment_config()

        assert env_config.webhook_token == "secret"
        assert env_config.log_level == "DEBUG"
        assert env_config.database_url == "sqlite:///:memory:"


class TestConfigurationWarnings:
    def test_every_minute_schedule(self):
        messages = check_for_warnings({"schedules": {"personal_digest": "* * * * *"}})
        assert any("every minute" in m for m in messages)

    def test_digest_and_cleanup_share_pattern(self):
        messages = check_for_warnings(
            {"schedules": {"personal_digest": "0 3 * * *", "cleanup": "0 3 * * *"}}
        )
        assert any("share a pattern" in m for m in messages)

    def test_loose_threshold_and_long_timeout(self):
        messages = check_for_warnings(
            {"matching": {"title_threshold": 0.8}, "delivery": {"request_timeout": 120}}
        )
        assert len(messages) == 2

    def test_warnings_are_emitted_on_parse(self):
        with pytest.warns(UserWarning, match="every minute"):
            parse_config_dict({"schedules": {"cleanup": "*/1 * * * *"}})

    def test_defaults_have_no_warnings(self):
        assert check_for_warnings({}) == []


class TestConfigurationError:
    def test_message_lists_errors_and_suggestions(self):
        error = ConfigurationError("Broken", errors=["first"], suggestions=["fix it"])
        error.add_error("second")

        text = str(error)
        assert "Broken" in text
        assert "1. first" in text
        assert "2. second" in text
        assert "- fix it" in text
