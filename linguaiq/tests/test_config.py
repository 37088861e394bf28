"""
Tests for the configuration loader.
"""

import json
import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from linguaiq.common.config import AppConfig, ConfigLoader, LoggingConfig, ScoringConfig, get_config, reload_config
from linguaiq.common.logger import JsonFormatter, app_logger, setup_logging


@pytest.fixture
def clean_environ(monkeypatch):
    for variable in ("CONFIG_PATH", "LOG_LEVEL", "DATABASE_URL", "TRANSCRIPTION_TIMEOUT_MS", "LINGUAIQ_ENV"):
        monkeypatch.delenv(variable, raising=False)
    return monkeypatch


def test_defaults():
    config = AppConfig()

    assert config.default_blueprint_id == "bp-leveling"
    assert config.remote_call.transcription_timeout_ms == 30000
    assert config.remote_call.evaluation_timeout_ms == 45000
    assert config.remote_call.max_audio_size_bytes == 25 * 1024 * 1024
    assert config.scoring.high_confidence_coverage == 0.85
    assert config.is_development


def test_loads_yaml_file(tmp_path, clean_environ):
    path = tmp_path / "config.yaml"
    path.write_text(
        "app_name: Placement\n"
        "logging:\n"
        "  level: debug\n"
        "remote_call:\n"
        "  evaluation_timeout_ms: 1000\n"
    )

    config = ConfigLoader(config_path=str(path)).load()

    assert config.app_name == "Placement"
    assert config.logging.level == "DEBUG"
    assert config.remote_call.evaluation_timeout_ms == 1000
    assert config.remote_call.transcription_timeout_ms == 30000


def test_loads_json_file(tmp_path, clean_environ):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"default_blueprint_id": "bp-custom", "environment": {"env": "Testing"}}))

    config = ConfigLoader(config_path=str(path)).load()

    assert config.default_blueprint_id == "bp-custom"
    assert config.is_testing


def test_missing_file_falls_back_to_defaults(tmp_path, clean_environ):
    config = ConfigLoader(config_path=str(tmp_path / "absent.yaml")).load()

    assert config == AppConfig()


def test_environment_overrides_file(tmp_path, clean_environ):
    path = tmp_path / "config.yaml"
    path.write_text("logging:\n  level: INFO\n  json_format: true\n")
    clean_environ.setenv("LOG_LEVEL", "warning")
    clean_environ.setenv("TRANSCRIPTION_TIMEOUT_MS", "5000")
    clean_environ.setenv("DATABASE_URL", "sqlite+aiosqlite:///./other.db")

    config = ConfigLoader(config_path=str(path)).load()

    assert config.logging.level == "WARNING"
    assert config.logging.json_format is True
    assert config.remote_call.transcription_timeout_ms == 5000
    assert config.database.url == "sqlite+aiosqlite:///./other.db"


def test_load_is_cached(clean_environ):
    loader = ConfigLoader()

    assert loader.load() is loader.load()


def test_rejects_unknown_log_level():
    with pytest.raises(PydanticValidationError):
        LoggingConfig(level="loud")


def test_rejects_unknown_environment(clean_environ):
    clean_environ.setenv("LINGUAIQ_ENV", "moon")

    with pytest.raises(PydanticValidationError):
        ConfigLoader().load()


@pytest.mark.parametrize("values", [
    {"high_confidence_coverage": 0.5, "medium_confidence_coverage": 0.7},
    {"strength_threshold": 50, "consolidation_threshold": 60},
    {"moderate_improvement_threshold": 65},
])
def test_scoring_thresholds_must_be_monotonic(values):
    with pytest.raises(PydanticValidationError):
        ScoringConfig(**values)


@pytest.fixture
def restore_logging():
    yield
    reload_config()
    setup_logging()


def test_reloaded_logging_section_is_applied(tmp_path, clean_environ, restore_logging):
    path = tmp_path / "config.yaml"
    path.write_text("logging:\n  level: debug\n")

    config = reload_config(str(path))
    logger = setup_logging()

    assert get_config() is config
    assert logger is app_logger
    assert logger.level == logging.DEBUG


def test_json_logging(restore_logging):
    logger = setup_logging(LoggingConfig(level="warning", json_format=True))

    assert logger.level == logging.WARNING
    assert [type(handler.formatter) for handler in logger.handlers] == [JsonFormatter]
