"""
Centralized Configuration for LinguaIQ

This module provides the configuration system of the assessment core.
It handles configuration from environment variables, config files, and defaults,
with proper type checking and validation.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator
import yaml

logger = logging.getLogger(__name__)


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = "INFO"
    json_format: bool = False
    file_path: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class DatabaseConfig(BaseModel):
    """Database configuration"""
    url: str = "sqlite+aiosqlite:///./linguaiq.db"
    echo: bool = False


class RemoteCallConfig(BaseModel):
    """Deadlines and payload limits of AI provider calls"""
    transcription_timeout_ms: int = Field(default=30000, ge=0)
    evaluation_timeout_ms: int = Field(default=45000, ge=0)
    max_audio_duration_ms: Optional[int] = Field(default=600000, gt=0)
    max_audio_size_bytes: Optional[int] = Field(default=25 * 1024 * 1024, gt=0)


class ScoringConfig(BaseModel):
    """Coverage and feedback thresholds used by the scoring engine"""
    high_confidence_coverage: float = Field(default=0.85, ge=0, le=1)
    medium_confidence_coverage: float = Field(default=0.60, ge=0, le=1)
    strength_threshold: float = Field(default=75, ge=0, le=100)
    consolidation_threshold: float = Field(default=60, ge=0, le=100)
    moderate_improvement_threshold: float = Field(default=45, ge=0, le=100)

    @model_validator(mode='after')
    def validate_ordering(self):
        """Thresholds must be monotonic"""
        if self.medium_confidence_coverage > self.high_confidence_coverage:
            raise ValueError("medium_confidence_coverage must not exceed high_confidence_coverage")
        if not (self.moderate_improvement_threshold
                <= self.consolidation_threshold
                <= self.strength_threshold):
            raise ValueError(
                "Feedback thresholds must satisfy moderate_improvement <= consolidation <= strength"
            )
        return self


class EnvironmentConfig(BaseModel):
    """Environment configuration"""
    env: str = "development"
    testing: bool = False
    debug: bool = False

    @field_validator('env')
    @classmethod
    def validate_env(cls, v):
        """Validate environment"""
        valid_envs = ['development', 'testing', 'staging', 'production']
        if v.lower() not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v.lower()


class AppConfig(BaseModel):
    """Main application configuration"""
    app_name: str = "LinguaIQ Assessment"
    version: str = "0.1.0"
    default_blueprint_id: str = "bp-leveling"
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    remote_call: RemoteCallConfig = Field(default_factory=RemoteCallConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)

    @property
    def is_development(self) -> bool:
        """Check if environment is development"""
        return self.environment.env == "development"

    @property
    def is_testing(self) -> bool:
        """Check if environment is testing"""
        return self.environment.env == "testing" or self.environment.testing


# Environment variable -> (section, key); section None means a top-level field
ENV_OVERRIDES: Dict[str, Tuple[Optional[str], str]] = {
    "APP_NAME": (None, "app_name"),
    "DEFAULT_BLUEPRINT_ID": (None, "default_blueprint_id"),
    "LOG_LEVEL": ("logging", "level"),
    "LOG_JSON": ("logging", "json_format"),
    "LOG_FILE": ("logging", "file_path"),
    "DATABASE_URL": ("database", "url"),
    "SQL_ECHO": ("database", "echo"),
    "TRANSCRIPTION_TIMEOUT_MS": ("remote_call", "transcription_timeout_ms"),
    "EVALUATION_TIMEOUT_MS": ("remote_call", "evaluation_timeout_ms"),
    "MAX_AUDIO_DURATION_MS": ("remote_call", "max_audio_duration_ms"),
    "MAX_AUDIO_SIZE_BYTES": ("remote_call", "max_audio_size_bytes"),
    "HIGH_CONFIDENCE_COVERAGE": ("scoring", "high_confidence_coverage"),
    "MEDIUM_CONFIDENCE_COVERAGE": ("scoring", "medium_confidence_coverage"),
    "LINGUAIQ_ENV": ("environment", "env"),
    "LINGUAIQ_TESTING": ("environment", "testing"),
    "LINGUAIQ_DEBUG": ("environment", "debug"),
}


class ConfigLoader:
    """
    Configuration loader for the application.

    Loads configuration from:
    1. Default values
    2. Config file
    3. Environment variables (highest priority)
    """

    def __init__(self, config_path: Optional[str] = None, env_file: Optional[str] = None):
        """
        Initialize the config loader.

        Args:
            config_path: Path to config file (YAML or JSON)
            env_file: Optional .env file loaded before reading the environment
        """
        load_dotenv(env_file, override=False)
        self.config_path = config_path or os.environ.get("CONFIG_PATH")
        self._config: Optional[AppConfig] = None

    def load(self) -> AppConfig:
        """
        Load configuration from all sources.

        Returns:
            Loaded configuration
        """
        if self._config is not None:
            return self._config

        file_config: Dict[str, Any] = {}
        if self.config_path:
            file_config = self._load_from_file(self.config_path)

        merged = self._apply_environment(file_config, os.environ)
        self._config = AppConfig(**merged)
        return self._config

    def _load_from_file(self, path: str) -> Dict[str, Any]:
        """
        Load configuration from a file.

        Args:
            path: Path to config file

        Returns:
            Loaded configuration dictionary
        """
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return {}

        if path.suffix.lower() in ['.yaml', '.yml']:
            with open(path, 'r') as f:
                return yaml.safe_load(f) or {}
        elif path.suffix.lower() == '.json':
            with open(path, 'r') as f:
                return json.load(f)

        logger.warning(f"Unsupported config file format: {path.suffix}")
        return {}

    @staticmethod
    def _apply_environment(base: Dict[str, Any], environ) -> Dict[str, Any]:
        merged: Dict[str, Any] = {
            key: dict(value) if isinstance(value, dict) else value
            for key, value in base.items()
        }
        for variable, (section, key) in ENV_OVERRIDES.items():
            if variable not in environ:
                continue
            value = environ[variable]
            if section is None:
                merged[key] = value
            else:
                merged.setdefault(section, {})[key] = value
        return merged


config_loader = ConfigLoader()
config = config_loader.load()


def get_config() -> AppConfig:
    """
    Get the loaded configuration.

    Returns:
        Loaded configuration
    """
    return config


def reload_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Reload the configuration.

    Args:
        config_path: Path to config file

    Returns:
        Reloaded configuration
    """
    global config_loader, config
    config_loader = ConfigLoader(config_path)
    config = config_loader.load()
    return config
