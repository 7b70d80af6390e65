"""Backend registry: turn the configured backend name into an EventSink."""

from __future__ import annotations

from config import ReloadableConfig

from .logging import get_logger
from .models import SessionInfo
from .sinks import DuckDBEventSink, EventSink, HostService, InMemoryEventSink, NullSink

logger = get_logger(__name__)

_BACKENDS: dict[str, type[EventSink]] = {
    "memory": InMemoryEventSink,
    "duckdb": DuckDBEventSink,
}


def register_backend(name: str, sink_cls: type[EventSink]) -> None:
    """Make `sink_cls` selectable via `FS_TELEMETRY_BACKEND=<name>`.

    `sink_cls` must accept `(session_info, config, server)`.
    """
    _BACKENDS[name.strip().lower()] = sink_cls


def available_backends() -> list[str]:
    return ["null", *sorted(_BACKENDS)]


def create_sink(
    session_info: SessionInfo,
    config: ReloadableConfig,
    server: HostService | None = None,
) -> EventSink:
    """Build the sink selected by the current configuration.

    Falls back to a NullSink when telemetry is disabled, the backend name is
    unknown or the backend fails to construct.
    """
    settings = config.telemetry
    if not settings.enabled or settings.backend == "null":
        return NullSink()

    sink_cls = _BACKENDS.get(settings.backend)
    if sink_cls is None:
        logger.warning(
            "telemetry.backend.unknown",
            backend=settings.backend,
            available=available_backends(),
        )
        return NullSink()

    try:
        return sink_cls(session_info, config, server)
    except Exception:  # noqa: BLE001 - telemetry must never stop the host from starting
        logger.error("telemetry.backend.failed", backend=settings.backend, exc_info=True)
        return NullSink()
