"""File access telemetry.

This package provides the boundary between a filesystem service and whatever
analytics backend (if any) is active:
- Typed, immutable file access events and the shared cause taxonomy.
- The EventSink contract, a null default and concrete backends.
- Background delivery so filesystem threads never wait on telemetry I/O.
- The host-side holder that swaps sinks safely on config reload.
"""

from .active import ActiveSink
from .delivery import DeliveryWorker
from .factory import available_backends, create_sink, register_backend
from .models import (
    FetchCause,
    FileAccessEvent,
    FileAccessRecord,
    SessionInfo,
    build_record,
    capture_session_info,
    cause_label,
)
from .sinks import NULL_SINK, DuckDBEventSink, EventSink, HostService, InMemoryEventSink, NullSink

__all__ = [
    "ActiveSink",
    "DeliveryWorker",
    "DuckDBEventSink",
    "EventSink",
    "FetchCause",
    "FileAccessEvent",
    "FileAccessRecord",
    "HostService",
    "InMemoryEventSink",
    "NULL_SINK",
    "NullSink",
    "SessionInfo",
    "available_backends",
    "build_record",
    "capture_session_info",
    "cause_label",
    "create_sink",
    "register_backend",
]
