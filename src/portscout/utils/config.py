"""
Configuration loader for portscout.

This module provides:
- Multiple configuration sources (JSON, YAML, TOML files, dicts, env vars)
- Schema validation through pydantic
- Priority-based merging
- Reload with change callbacks
"""

import os
import sys
import json
import asyncio
import inspect
from pathlib import Path
from datetime import timedelta
from typing import Optional, Dict, Any, List, Tuple, Union, Callable

import yaml
import toml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

from .logging import get_logger
from .errors import ConfigurationError
from ..discovery.ports import PortSpec, parse_ports


logger = get_logger("portscout.config")

ENV_PREFIX = "PORTSCOUT_"
ENV_NESTING = "__"

DEFAULT_PORTS: List[PortSpec] = [3000, 3001, 3002, (5173, 5199), 8000, 8080, 5000, 4200]


def _on_windows() -> bool:
    return sys.platform == "win32"


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"


class ScanConfiguration(BaseModel):
    """
    Settings read by a reconciliation engine at the start of every cycle.

    Frozen so that a cycle sees one consistent snapshot; swapping in a new
    instance takes effect on the next tick.
    """
    scan_interval_ms: int = Field(default=5000, ge=100)
    ports: List[Union[int, Tuple[int, int]]] = Field(
        default_factory=lambda: list(DEFAULT_PORTS)
    )
    scan_all_ports: bool = False

    model_config = ConfigDict(frozen=True)

    @field_validator('ports', mode='before')
    @classmethod
    def parse_port_text(cls, v):
        """Accept the "3000, 5173-5199" text form and a single bare port."""
        if isinstance(v, str):
            return parse_ports(v)
        if isinstance(v, int) and not isinstance(v, bool):
            return [v]
        return v

    @field_validator('ports')
    @classmethod
    def validate_ports(cls, v):
        """Reject out-of-range ports and inverted ranges."""
        for spec in v:
            bounds = spec if isinstance(spec, tuple) else (spec, spec)
            low, high = bounds
            if not (0 < low <= 65535 and 0 < high <= 65535):
                raise ValueError(f"Port out of range: {spec}")
            if low > high:
                raise ValueError(f"Inverted port range: {low}-{high}")
        return v

    @property
    def scan_interval(self) -> timedelta:
        return timedelta(milliseconds=self.scan_interval_ms)


class DiscoveryConfig(BaseModel):
    """Enumeration source switches."""
    use_netstat: bool = Field(default_factory=_on_windows)
    scan_scripts: bool = Field(default_factory=_on_windows)
    netstat_timeout: float = Field(default=5.0, gt=0)
    cwd_cache_ttl: float = Field(default=30.0, gt=0)


class HealthConfig(BaseModel):
    """Health prober configuration."""
    enabled: bool = True
    interval_ms: int = Field(default=5000, ge=100)
    timeout_ms: int = Field(default=3000, gt=0)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "console"
    directory: Path = Field(default_factory=lambda: Path.home() / ".portscout" / "logs")
    to_file: bool = False
    max_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    sentry_dsn: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        if v not in ("json", "console"):
            raise ValueError(f"Invalid log format: {v}")
        return v


class PortScoutConfig(BaseModel):
    """Main portscout configuration."""
    app_name: str = "portscout"
    scan: ScanConfiguration = Field(default_factory=ScanConfiguration)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigLoader:
    """Configuration loader with multiple source support."""

    def __init__(self):
        self._sources: List[ConfigSource] = []
        self._config: Optional[PortScoutConfig] = None
        self._callbacks: List[Callable[[PortScoutConfig], Any]] = []
        self._lock = asyncio.Lock()

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
            self._sources.append(ConfigSource(
                path=path,
                priority=priority,
                source_type=source_type or self._detect_source_type(path)
            ))
        else:
            self._sources.append(ConfigSource(
                data=source,
                priority=priority,
                source_type="dict"
            ))

        # Lowest priority first so later merges override
        self._sources.sort(key=lambda s: s.priority)

    def _detect_source_type(self, path: Path) -> str:
        suffix = path.suffix.lower()
        if suffix == ".json":
            return "json"
        elif suffix in (".yaml", ".yml"):
            return "yaml"
        elif suffix == ".toml":
            return "toml"
        raise ConfigurationError(f"Unknown config file type: {suffix}")

    async def load(self) -> PortScoutConfig:
        """Load and validate configuration from all sources."""
        async with self._lock:
            merged: Dict[str, Any] = {}

            for source in self._sources:
                data = self._load_source(source)
                merged = self._deep_merge(merged, data)

            merged = self._deep_merge(merged, self._load_env_vars())

            try:
                self._config = PortScoutConfig(**merged)
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
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        content = source.path.read_text(encoding="utf-8")
        try:
            if source.source_type == "json":
                return json.loads(content)
            elif source.source_type == "yaml":
                return yaml.safe_load(content) or {}
            elif source.source_type == "toml":
                return toml.loads(content)
        except (json.JSONDecodeError, yaml.YAMLError, toml.TomlDecodeError) as e:
            raise ConfigurationError(
                f"Cannot parse {source.path}: {e}", cause=e
            ) from e
        raise ConfigurationError(f"Unknown source type: {source.source_type}")

    def _load_env_vars(self) -> Dict[str, Any]:
        """
        Read PORTSCOUT_* variables.

        Sections are separated by a double underscore, so
        PORTSCOUT_SCAN__SCAN_INTERVAL_MS sets scan.scan_interval_ms.
        """
        result: Dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            parts = key[len(ENV_PREFIX):].lower().split(ENV_NESTING)
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
            return int(value)
        except ValueError:
            pass

        return value

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def register_callback(self, callback: Callable[[PortScoutConfig], Any]) -> None:
        """Register configuration change callback."""
        self._callbacks.append(callback)

    async def reload(self) -> PortScoutConfig:
        """Reload all sources and notify callbacks if anything changed."""
        logger.info("reloading_configuration")

        old_config = self._config
        new_config = await self.load()

        if old_config != new_config:
            for callback in self._callbacks:
                try:
                    if inspect.iscoroutinefunction(callback):
                        await callback(new_config)
                    else:
                        callback(new_config)
                except Exception as e:
                    logger.error(
                        "config_callback_error",
                        callback=getattr(callback, "__name__", repr(callback)),
                        error=str(e)
                    )

        return new_config

    def get_config(self) -> PortScoutConfig:
        """Get current configuration."""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config


DEFAULT_CONFIG_PATHS = [
    Path.home() / ".portscout" / "config.yaml",
    Path.home() / ".portscout" / "config.json",
    Path("./portscout.yaml"),
]


async def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None
) -> ConfigLoader:
    """
    Build a loader over the standard locations and load it.

    Args:
        config_paths: Additional configuration paths
        extra_config: Extra configuration to merge last

    Returns:
        The loader; call get_config() on it for the merged configuration
    """
    loader = ConfigLoader()

    for path in DEFAULT_CONFIG_PATHS:
        if path.exists():
            loader.add_source(path, priority=10)

    for i, path in enumerate(config_paths or []):
        loader.add_source(path, priority=20 + i)

    if extra_config:
        loader.add_source(extra_config, priority=100)

    await loader.load()
    return loader


__all__ = [
    'ScanConfiguration',
    'DiscoveryConfig',
    'HealthConfig',
    'LoggingConfig',
    'PortScoutConfig',
    'ConfigLoader',
    'load_config',
    'DEFAULT_PORTS',
]
