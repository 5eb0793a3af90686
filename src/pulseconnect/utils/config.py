"""
Configuration loader for the PulseConnect client core.

This module provides configuration management with:
- Multiple configuration sources (JSON, YAML, TOML files, dicts, env vars)
- Schema validation with pydantic
- Priority-ordered deep merging
"""

import os
import json
import yaml
import toml
from pathlib import Path
from typing import Optional, Dict, Any, List, Union
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

from .logging import get_logger
from .errors import ConfigurationError


logger = get_logger("pulseconnect.config")

ENV_PREFIX = "PULSECONNECT_"
ENV_NESTING = "__"


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    directory: Path = Field(default_factory=lambda: Path.home() / ".pulseconnect" / "logs")
    max_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 10
    enable_sentry: bool = False
    sentry_dsn: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class StorageConfig(BaseModel):
    """Durable slot configuration."""
    directory: Path = Field(default_factory=lambda: Path.home() / ".pulseconnect" / "state")
    settings_key: str = "pulseconnect_settings"
    meta_key: str = "pulseconnect_sync_meta"

    @field_validator('directory')
    @classmethod
    def expand_directory(cls, v):
        return Path(v).expanduser()


class SyncConfig(BaseModel):
    """Preference synchronization configuration."""
    api_url: str = "http://localhost:8000/api"
    debounce_seconds: float = 1.0
    # None leaves requests unbounded
    request_timeout: Optional[float] = None

    @field_validator('debounce_seconds')
    @classmethod
    def validate_debounce(cls, v):
        if v < 0:
            raise ValueError("debounce_seconds must not be negative")
        return v


class ChannelConfig(BaseModel):
    """Event channel configuration."""
    ws_url: Optional[str] = None
    base_reconnect_delay: float = 1.0
    max_reconnect_attempts: int = 5
    normal_close_code: int = 1000

    @field_validator('base_reconnect_delay')
    @classmethod
    def validate_delay(cls, v):
        if v <= 0:
            raise ValueError("base_reconnect_delay must be positive")
        return v

    @field_validator('max_reconnect_attempts')
    @classmethod
    def validate_attempts(cls, v):
        if v < 0:
            raise ValueError("max_reconnect_attempts must not be negative")
        return v


class PulseConfig(BaseModel):
    """Main PulseConnect configuration."""
    app_name: str = "pulseconnect"
    debug: bool = False

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)

    model_config = ConfigDict(validate_assignment=True)

    def resolve_ws_url(self) -> str:
        """WebSocket base URL, derived from the API URL when not configured."""
        if self.channel.ws_url:
            return self.channel.ws_url.rstrip('/')
        return derive_ws_url(self.sync.api_url)


def derive_ws_url(api_url: str) -> str:
    """Map ``http(s)://host/api`` to ``ws(s)://host``."""
    url = api_url.rstrip('/')
    if url.startswith("http"):
        url = "ws" + url[len("http"):]
    if url.endswith("/api"):
        url = url[:-len("/api")]
    return url


class ConfigLoader:
    """Configuration loader with multiple source support."""

    def __init__(self, env_prefix: str = ENV_PREFIX):
        self.env_prefix = env_prefix
        self._sources: List[ConfigSource] = []
        self._config: Optional[PulseConfig] = None

    def add_source(
        self,
        source: Union[str, Path, Dict[str, Any]],
        priority: int = 0,
        source_type: Optional[str] = None
    ) -> None:
        """
        Add configuration source.

        Args:
            source: Configuration source (file path or dict)
            priority: Source priority (higher wins)
            source_type: Source type (auto-detected if None)
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not source_type:
                source_type = self._detect_source_type(path)

            self._sources.append(ConfigSource(
                path=path,
                priority=priority,
                source_type=source_type
            ))
        else:
            self._sources.append(ConfigSource(
                data=source,
                priority=priority,
                source_type="dict"
            ))

        # Lowest priority first so later merges win
        self._sources.sort(key=lambda s: s.priority)

    def _detect_source_type(self, path: Path) -> str:
        """Detect configuration file type."""
        suffix = path.suffix.lower()
        if suffix == ".json":
            return "json"
        elif suffix in (".yaml", ".yml"):
            return "yaml"
        elif suffix == ".toml":
            return "toml"
        else:
            raise ConfigurationError(f"Unknown config file type: {suffix}")

    def load(self) -> PulseConfig:
        """
        Load configuration from all sources.

        Returns:
            Merged and validated configuration
        """
        merged_data: Dict[str, Any] = {}

        for source in self._sources:
            try:
                data = self._load_source(source)
            except (OSError, ValueError, yaml.YAMLError) as e:
                raise ConfigurationError(
                    f"Failed to load config source {source.path or 'dict'}: {e}",
                    cause=e
                ) from e
            merged_data = self._deep_merge(merged_data, data)

        merged_data = self._deep_merge(merged_data, self._load_env_vars())

        try:
            self._config = PulseConfig(**merged_data)
        except ValidationError as e:
            errors = []
            for error in e.errors():
                field = ".".join(str(x) for x in error["loc"])
                errors.append(f"{field}: {error['msg']}")

            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}"
            ) from e

        logger.info("configuration_loaded", sources=len(self._sources))
        return self._config

    def _load_source(self, source: ConfigSource) -> Dict[str, Any]:
        """Load data from a configuration source."""
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        content = source.path.read_text()

        if source.source_type == "json":
            return json.loads(content)
        elif source.source_type == "yaml":
            return yaml.safe_load(content) or {}
        elif source.source_type == "toml":
            return toml.loads(content)
        else:
            raise ConfigurationError(f"Unknown source type: {source.source_type}")

    def _load_env_vars(self) -> Dict[str, Any]:
        """Load ``PULSECONNECT_SECTION__FIELD=value`` environment variables."""
        result: Dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(self.env_prefix):
                continue

            parts = key[len(self.env_prefix):].lower().split(ENV_NESTING)
            current = result
            for part in parts[:-1]:
                current = current.setdefault(part, {})

            current[parts[-1]] = self._convert_value(value)

        return result

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        return value

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def get_config(self) -> PulseConfig:
        """Get current configuration."""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config


def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None
) -> PulseConfig:
    """
    Load configuration from standard locations.

    Args:
        config_paths: Additional configuration paths
        extra_config: Extra configuration to merge last

    Returns:
        Loaded configuration
    """
    loader = ConfigLoader()

    default_paths = [
        Path.home() / ".pulseconnect" / "config.yaml",
        Path.home() / ".pulseconnect" / "config.json",
        Path("./pulseconnect.yaml"),
        Path("./pulseconnect.json"),
    ]

    for path in default_paths:
        if path.exists():
            loader.add_source(path, priority=10)

    if config_paths:
        for i, path in enumerate(config_paths):
            loader.add_source(path, priority=20 + i)

    if extra_config:
        loader.add_source(extra_config, priority=100)

    return loader.load()


__all__ = [
    'PulseConfig',
    'LoggingConfig',
    'StorageConfig',
    'SyncConfig',
    'ChannelConfig',
    'ConfigLoader',
    'derive_ws_url',
    'load_config',
]
