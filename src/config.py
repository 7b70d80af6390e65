"""Configuration loading, validation and live reload.

This module is responsible for:

- Loading `.env` into the process environment (without overriding existing vars).
- Converting environment variables into strongly-typed Pydantic models.
- Validating fields and providing actionable error messages.
- Exposing the current configuration through a shared, reloadable handle that
  telemetry sinks read on every use.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from collections.abc import Callable
from typing import Literal, TypeVar

import dotenv
import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

_T = TypeVar("_T", int, float)

# Same stdlib bridge as `telemetry.logging.get_logger`; the telemetry package imports this module.
logger = structlog.wrap_logger(logging.getLogger(__name__), wrapper_class=structlog.stdlib.BoundLogger)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

LogFormat = Literal["json", "console"]


def _get_env_str(name: str, default: str) -> str:
    """Read a string env var with a default (blank means unset)."""
    raw = os.getenv(name, "").strip()
    return raw or default


def _get_env_bool(name: str, default: bool) -> bool:
    """Read a boolean env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    normalized = raw.strip().lower()
    if normalized in {"true", "1", "yes", "y", "on"}:
        return True
    if normalized in {"false", "0", "no", "n", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean (true/false). Got: {raw!r}")


def _get_env_number(name: str, default: _T, cast: type[_T]) -> _T:
    """Read an int/float env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a {cast.__name__}. Got: {raw!r}") from exc


class TelemetryConfig(BaseModel):
    """Settings consulted by file-access telemetry backends."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True, description="Master switch for telemetry")
    backend: str = Field(default="null", description="Backend kind: null, memory or duckdb")
    duckdb_path: str = Field(default="fs_access.duckdb", description="DuckDB database file")
    table: str = Field(default="file_access", description="Table receiving file access records")
    sample_rate: float = Field(default=1.0, description="Fraction of events recorded (0.0-1.0)")
    max_queue_size: int = Field(default=10000, description="Bound for buffered records")
    shutdown_timeout_s: float = Field(default=5.0, description="Max time spent flushing on close")
    log_level: str = Field(default="INFO", description="Log level for telemetry logging")
    log_format: LogFormat = Field(default="json", description="Log renderer: json or console")

    @field_validator("backend")
    def validate_backend(cls, v: str) -> str:
        """Normalize the backend name; unknown names are resolved by the factory."""
        normalized = v.strip().lower()
        if not normalized:
            raise ValueError("FS_TELEMETRY_BACKEND must not be empty.")
        return normalized

    @field_validator("table")
    def validate_table(cls, v: str) -> str:
        """Table names are interpolated into SQL, so only plain identifiers are allowed."""
        if not _IDENTIFIER_RE.match(v):
            raise ValueError(f"FS_TELEMETRY_TABLE must be a SQL identifier. Got: {v!r}")
        return v

    @field_validator("sample_rate")
    def validate_sample_rate(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"FS_TELEMETRY_SAMPLE_RATE must be between 0.0 and 1.0. Got: {v}")
        return v

    @field_validator("max_queue_size")
    def validate_max_queue_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"FS_TELEMETRY_MAX_QUEUE_SIZE must be > 0. Got: {v}")
        return v

    @field_validator("shutdown_timeout_s")
    def validate_shutdown_timeout(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"FS_TELEMETRY_SHUTDOWN_TIMEOUT must be >= 0. Got: {v}")
        return v

    @field_validator("log_level")
    def validate_log_level(cls, v: str) -> str:
        normalized = v.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"FS_TELEMETRY_LOG_LEVEL is not a log level. Got: {v!r}")
        return normalized


class Config(BaseModel):
    """Top-level application configuration."""

    model_config = ConfigDict(frozen=True)

    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig, description="Telemetry configuration")


def load_config() -> Config:
    """Load application configuration from environment variables.

    Notes:
    - Calls `dotenv.load_dotenv()` so local `.env` values are visible to the process.
    - Raises `ValueError` with actionable messages when a value cannot be parsed
      or is out of range.
    """
    dotenv.load_dotenv()

    defaults = TelemetryConfig()
    telemetry = TelemetryConfig(
        enabled=_get_env_bool("FS_TELEMETRY_ENABLED", defaults.enabled),
        backend=_get_env_str("FS_TELEMETRY_BACKEND", defaults.backend),
        duckdb_path=_get_env_str("FS_TELEMETRY_DUCKDB_PATH", defaults.duckdb_path),
        table=_get_env_str("FS_TELEMETRY_TABLE", defaults.table),
        sample_rate=_get_env_number("FS_TELEMETRY_SAMPLE_RATE", defaults.sample_rate, float),
        max_queue_size=_get_env_number("FS_TELEMETRY_MAX_QUEUE_SIZE", defaults.max_queue_size, int),
        shutdown_timeout_s=_get_env_number("FS_TELEMETRY_SHUTDOWN_TIMEOUT", defaults.shutdown_timeout_s, float),
        log_level=_get_env_str("FS_TELEMETRY_LOG_LEVEL", defaults.log_level),
        log_format=_get_env_str("FS_TELEMETRY_LOG_FORMAT", defaults.log_format),  # type: ignore[arg-type]
    )
    return Config(telemetry=telemetry)


ConfigListener = Callable[[Config], None]


class ReloadableConfig:
    """Shared, always-current view over the process configuration.

    Readers call `get()` each time they need a value instead of holding on to a
    snapshot. The configuration subsystem swaps the snapshot with `update()` or
    `reload()`; listeners are notified after the swap, outside the lock.
    """

    def __init__(self, config: Config | None = None) -> None:
        self._lock = threading.Lock()
        self._config = config if config is not None else Config()
        self._listeners: list[ConfigListener] = []

    def get(self) -> Config:
        """Return the current configuration snapshot."""
        with self._lock:
            return self._config

    @property
    def telemetry(self) -> TelemetryConfig:
        """Shortcut for `get().telemetry`."""
        return self.get().telemetry

    def update(self, config: Config) -> None:
        """Replace the current snapshot and notify listeners."""
        with self._lock:
            self._config = config
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(config)
            except Exception:  # noqa: BLE001 - a bad listener must not break reload
                logger.warning("config.listener.failed", exc_info=True)

    def reload(self) -> Config:
        """Re-read the environment and publish the result."""
        config = load_config()
        self.update(config)
        return config

    def subscribe(self, listener: ConfigListener) -> None:
        """Call `listener(config)` after every update."""
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ConfigListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)
