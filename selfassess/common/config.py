"""
Centralized Configuration for SelfAssess

Configuration is assembled from defaults, an optional YAML or JSON file and
``SELFASSESS_*`` environment variables (highest priority). A ``.env`` file in
the working directory is loaded first so local overrides need no export.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from selfassess.common.error_handling import EnvironmentNotSupportedError, InitializationError

logger = logging.getLogger(__name__)

SUPPORTED_STORAGE_BACKENDS = ("memory", "redis")


class RedisConfig(BaseModel):
    """Redis configuration"""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    use_ssl: bool = False
    connection_timeout: float = 5.0

    @property
    def connection_string(self) -> str:
        """Get the Redis connection string"""
        protocol = "rediss" if self.use_ssl else "redis"
        auth = f":{self.password}@" if self.password else ""
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"


class StorageConfig(BaseModel):
    """Session and result storage configuration"""
    backend: str = "memory"
    key_prefix: str = "selfassess:"
    memory_max_records: int = 10000
    save_retries: int = 1
    retry_delay: float = 0.05
    fallback_to_memory: bool = True
    redis: RedisConfig = Field(default_factory=RedisConfig)

    @field_validator('backend')
    @classmethod
    def normalize_backend(cls, v):
        return v.strip().lower()

    @field_validator('save_retries')
    @classmethod
    def validate_retries(cls, v):
        if v < 0:
            raise ValueError(f"save_retries must be non-negative, got {v}")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
    json_output: bool = False
    file_path: Optional[str] = None
    console_output: bool = True

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class AssessmentConfig(BaseModel):
    """Assessment engine configuration"""
    default_language: str = "en"
    supported_languages: List[str] = Field(default_factory=lambda: ["en", "zh"])
    max_recommendations: int = 8
    session_timeout_minutes: int = 30
    definitions_path: Optional[str] = None
    trend_threshold: float = 0.1

    @field_validator('max_recommendations')
    @classmethod
    def validate_max_recommendations(cls, v):
        if v < 1:
            raise ValueError(f"max_recommendations must be at least 1, got {v}")
        return v

    @model_validator(mode='after')
    def default_language_supported(self):
        if self.default_language not in self.supported_languages:
            raise ValueError(
                f"Default language {self.default_language} is not in {self.supported_languages}"
            )
        return self


class EnvironmentConfig(BaseModel):
    """Environment configuration"""
    env: str = "development"
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
    app_name: str = "SelfAssess"
    version: str = "1.0.0"
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    assessment: AssessmentConfig = Field(default_factory=AssessmentConfig)
    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)

    @property
    def is_testing(self) -> bool:
        return self.environment.env == "testing"

    @property
    def is_production(self) -> bool:
        return self.environment.env == "production"

    def check_environment(self) -> None:
        """
        Verify the configuration can be served by this installation.

        Raises:
            EnvironmentNotSupportedError: If the storage backend is unknown
        """
        if self.storage.backend not in SUPPORTED_STORAGE_BACKENDS:
            raise EnvironmentNotSupportedError("storage backend", self.storage.backend)


# Environment variable -> path inside the config tree
ENV_OVERRIDES: Dict[str, Tuple[str, ...]] = {
    "SELFASSESS_ENV": ("environment", "env"),
    "SELFASSESS_DEBUG": ("environment", "debug"),
    "SELFASSESS_STORAGE_BACKEND": ("storage", "backend"),
    "SELFASSESS_STORAGE_PREFIX": ("storage", "key_prefix"),
    "SELFASSESS_REDIS_HOST": ("storage", "redis", "host"),
    "SELFASSESS_REDIS_PORT": ("storage", "redis", "port"),
    "SELFASSESS_REDIS_DB": ("storage", "redis", "db"),
    "SELFASSESS_REDIS_PASSWORD": ("storage", "redis", "password"),
    "SELFASSESS_LOG_LEVEL": ("logging", "level"),
    "SELFASSESS_LOG_JSON": ("logging", "json_output"),
    "SELFASSESS_LOG_FILE": ("logging", "file_path"),
    "SELFASSESS_DEFAULT_LANGUAGE": ("assessment", "default_language"),
    "SELFASSESS_SESSION_TIMEOUT_MINUTES": ("assessment", "session_timeout_minutes"),
    "SELFASSESS_DEFINITIONS_PATH": ("assessment", "definitions_path"),
}


class ConfigLoader:
    """
    Configuration loader for the application.

    Loads configuration from:
    1. Default values
    2. Config file (YAML or JSON)
    3. Environment variables (highest priority)
    """

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None,
                 load_env_file: bool = True):
        """
        Initialize the config loader.

        Args:
            config_path: Path to config file (YAML or JSON)
            environ: Environment mapping; defaults to ``os.environ``
            load_env_file: Whether to read a ``.env`` file first
        """
        if load_env_file and environ is None:
            load_dotenv()
        self.environ = os.environ if environ is None else environ
        self.config_path = config_path or self.environ.get("SELFASSESS_CONFIG_PATH")

    def load(self) -> AppConfig:
        """
        Load configuration from all sources.

        Returns:
            Loaded configuration

        Raises:
            InitializationError: If the merged configuration is invalid
        """
        data: Dict[str, Any] = {}
        if self.config_path:
            data = self._load_from_file(self.config_path)

        self._apply_environment(data)

        try:
            return AppConfig(**data)
        except ValidationError as e:
            raise InitializationError("config", f"Invalid configuration: {e}", cause=e)

    def _apply_environment(self, data: Dict[str, Any]) -> None:
        for env_name, path in ENV_OVERRIDES.items():
            value = self.environ.get(env_name)
            if value is None:
                continue
            section = data
            for key in path[:-1]:
                section = section.setdefault(key, {})
            section[path[-1]] = value
            logger.debug(f"Config {'.'.join(path)} overridden by {env_name}")

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

        suffix = path.suffix.lower()
        try:
            with open(path, 'r', encoding='utf-8') as f:
                if suffix in ['.yaml', '.yml']:
                    return yaml.safe_load(f) or {}
                if suffix == '.json':
                    return json.load(f)
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise InitializationError("config", f"Error loading config file {path}: {e}", cause=e)

        logger.warning(f"Unsupported config file format: {suffix}")
        return {}


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration
    """
    return ConfigLoader(config_path).load()
