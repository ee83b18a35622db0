"""Configuration management for dbtrace.

Settings are written as YAML (or TOML) and validated with Pydantic models.
The same file configures the profiler filters of an instrumented
application and the log source used to read sessions back.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from dbtrace.profiling.filters import FILTER_REGISTRY, FilterSet
from dbtrace.profiling.profiler import Profiler
from dbtrace.profiling.sinks import LoggingSink, RecordSink
from dbtrace.utils.errors import ConfigurationError
from dbtrace.utils.logging import get_logger

logger = get_logger(__name__)


class FilterSettings(BaseModel):
    """One profiling filter: a registered kind and its argument string."""

    kind: str
    args: str = ""

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, value: str) -> str:
        if value not in FILTER_REGISTRY:
            raise ValueError(f"unknown filter kind {value!r}")
        return value


class ProfilerSettings(BaseModel):
    """Options for the instrumented side."""

    filters: List[FilterSettings] = Field(default_factory=list)
    records_logger: str = "dbtrace.records"


class LogSourceSettings(BaseModel):
    """Where sessions are read back from."""

    kind: Literal["file", "elasticsearch"] = "file"
    path: Optional[Path] = None
    url: Optional[str] = None
    timeout: float = Field(default=10.0, gt=0)
    max_hits: int = Field(default=1000, gt=0)
    ignore_data_fields: Optional[List[str]] = None

    @model_validator(mode="after")
    def validate_location(self) -> "LogSourceSettings":
        if self.kind == "file" and self.path is None:
            raise ValueError("file log source requires 'path'")
        if self.kind == "elasticsearch" and not self.url:
            raise ValueError("elasticsearch log source requires 'url'")
        return self


class LoggingSettings(BaseModel):
    """Logging set up by the CLI; disable when the host application owns logging."""

    enabled: bool = True
    level: str = "INFO"
    log_dir: Optional[Path] = None


class DbTraceSettings(BaseModel):
    """Root configuration schema."""

    profiler: ProfilerSettings = Field(default_factory=ProfilerSettings)
    source: Optional[LogSourceSettings] = None
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


class ConfigManager:
    """Load and validate the configuration file.

    The path comes from the constructor or ``$DBTRACE_CONFIG`` and defaults
    to ``config/dbtrace.yml``.
    """

    def __init__(self, config_path: Optional[Path] = None) -> None:
        self.config_path = Path(config_path or os.environ.get("DBTRACE_CONFIG", "config/dbtrace.yml"))
        self._settings: Optional[DbTraceSettings] = None

    def load(self) -> DbTraceSettings:
        """Load configuration from disk and validate it."""

        logger.debug("loading configuration", extra={"path": str(self.config_path)})
        data = self._read_file(self.config_path)
        try:
            settings = DbTraceSettings(**data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration in {self.config_path}: {exc}") from exc
        self._settings = settings
        return settings

    def get_settings(self) -> DbTraceSettings:
        """Return the last loaded settings, loading them if necessary."""

        if self._settings is None:
            return self.load()
        return self._settings

    @staticmethod
    def _read_file(path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise ConfigurationError(f"Configuration file {path} does not exist")
        if path.suffix in {".yml", ".yaml"}:
            with path.open("r", encoding="utf-8") as handle:
                try:
                    data = yaml.safe_load(handle) or {}
                except yaml.YAMLError as exc:
                    raise ConfigurationError(f"Cannot parse {path}: {exc}") from exc
        elif path.suffix == ".toml":
            import tomllib  # Python 3.11+ built-in

            with path.open("rb") as handle:
                try:
                    data = tomllib.load(handle)
                except tomllib.TOMLDecodeError as exc:
                    raise ConfigurationError(f"Cannot parse {path}: {exc}") from exc
        else:
            raise ConfigurationError(f"Unsupported configuration format: {path.suffix}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root in {path} must be a mapping")
        return data


def build_profiler(settings: DbTraceSettings, *, sink: Optional[RecordSink] = None) -> Profiler:
    """Wire the configured filters and a records sink into a :class:`Profiler`."""

    filters = FilterSet.from_settings(settings.profiler.filters)
    if sink is None:
        sink = LoggingSink(settings.profiler.records_logger)
    return Profiler(sink=sink, filters=filters)


__all__ = [
    "ConfigManager",
    "DbTraceSettings",
    "FilterSettings",
    "LogSourceSettings",
    "LoggingSettings",
    "ProfilerSettings",
    "build_profiler",
]
