"""
Centralized Configuration for Reader Cache

This module provides the configuration system for the cache package.
It handles configuration from environment variables, config files, and
defaults, with type checking and validation.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from reader_cache.common import constants
from reader_cache.common.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class RedisConfig(BaseModel):
    """Redis connection configuration"""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    use_ssl: bool = False
    connection_timeout: int = 10
    key_prefix: str = "reader_cache:"

    @property
    def connection_string(self) -> str:
        """Get Redis connection string"""
        protocol = "rediss" if self.use_ssl else "redis"
        auth = f":{self.password}@" if self.password else ""
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"


class StorageConfig(BaseModel):
    """Persistent storage backend configuration"""
    backend: str = "sqlite"
    database_url: str = "sqlite+aiosqlite:///reader_cache.db"
    echo: bool = False

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v):
        """Validate storage backend name"""
        valid_backends = ['sqlite', 'memory', 'redis']
        if v.lower() not in valid_backends:
            raise ValueError(f"Invalid storage backend: {v}. Must be one of {valid_backends}")
        return v.lower()


class CacheConfig(BaseModel):
    """Cache policy configuration (durations in seconds, sizes in bytes)"""
    cache_dir: str = "reader_cache_data"
    default_ttl: int = int(constants.DEFAULT_TTL.total_seconds())
    book_ttl: int = int(constants.BOOK_TTL.total_seconds())
    video_ttl: int = int(constants.VIDEO_TTL.total_seconds())
    image_ttl: int = int(constants.IMAGE_TTL.total_seconds())
    thumbnail_ttl: int = int(constants.THUMBNAIL_TTL.total_seconds())
    max_cache_size: int = constants.MAX_CACHE_SIZE
    max_image_cache_size: int = constants.MAX_IMAGE_CACHE_SIZE
    max_video_cache_size: int = constants.MAX_VIDEO_CACHE_SIZE
    memory_tier_enabled: bool = True
    memory_tier_max_size: int = constants.MEMORY_TIER_MAX_SIZE
    memory_tier_ttl: int = int(constants.MEMORY_TIER_TTL.total_seconds())
    maintenance_interval: Optional[int] = int(constants.MAINTENANCE_INTERVAL.total_seconds())
    enable_event_logging: bool = True

    @field_validator('max_cache_size', 'max_image_cache_size', 'max_video_cache_size', 'memory_tier_max_size')
    @classmethod
    def validate_size(cls, v):
        """Validate size budgets"""
        if v <= 0:
            raise ValueError(f"Size limits must be positive, got {v}")
        return v


class FetchConfig(BaseModel):
    """Network fetch configuration"""
    timeout: float = constants.NETWORK_TIMEOUT.total_seconds()
    max_retries: int = 2
    retry_delay: float = 0.5
    max_concurrent: int = 3
    user_agent: str = "reader-cache/1.0"


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
    file_path: Optional[str] = None
    use_json: bool = False

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class AppConfig(BaseSettings):
    """Main configuration; environment variables use the READER_CACHE_ prefix"""
    model_config = SettingsConfigDict(
        env_prefix="READER_CACHE_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "reader-cache"
    version: str = "1.0.0"
    storage: StorageConfig = Field(default_factory=StorageConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over values passed from a config file
        return env_settings, dotenv_settings, init_settings, file_secret_settings


class ConfigLoader:
    """
    Configuration loader for the cache package.

    Loads configuration from:
    1. Default values
    2. Config file (YAML or JSON)
    3. Environment variables (highest priority)
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the config loader.

        Args:
            config_path: Path to config file (YAML or JSON)
        """
        self.config_path = config_path or os.environ.get("READER_CACHE_CONFIG_PATH")
        self._config = None

    def load(self) -> AppConfig:
        """
        Load configuration from all sources.

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If the merged values fail validation
        """
        if self._config is not None:
            return self._config

        file_config = {}
        if self.config_path:
            file_config = self._load_from_file(self.config_path)

        try:
            self._config = AppConfig(**file_config)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
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

        try:
            if path.suffix.lower() in ['.yaml', '.yml']:
                with open(path, 'r') as f:
                    return yaml.safe_load(f) or {}
            elif path.suffix.lower() == '.json':
                with open(path, 'r') as f:
                    return json.load(f)
            else:
                logger.warning(f"Unsupported config file format: {path.suffix}")
                return {}
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config file: {e}")
            return {}


_config_loader: Optional[ConfigLoader] = None


def get_config() -> AppConfig:
    """
    Get the loaded configuration, loading it on first use.

    Returns:
        Loaded configuration
    """
    global _config_loader
    if _config_loader is None:
        _config_loader = ConfigLoader()
    return _config_loader.load()


def reload_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Reload the configuration.

    Args:
        config_path: Path to config file

    Returns:
        Reloaded configuration
    """
    global _config_loader
    _config_loader = ConfigLoader(config_path)
    return _config_loader.load()
