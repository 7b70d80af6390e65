"""Event sinks (telemetry backends) for file access events.

Every backend is built from the same three inputs:

- a `SessionInfo` captured once at startup,
- a `ReloadableConfig` handle that is read on every use (never copied),
- an optional `HostService` back-reference.

The host reference is not owned by the sink. It is only valid until the host
begins shutdown, and the host guarantees that sinks are closed before then;
sinks do not try to track its lifetime.
"""

from __future__ import annotations

import random
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Protocol

import duckdb

from config import ReloadableConfig

from .delivery import DeliveryWorker
from .logging import get_logger
from .models import MAX_INODE_NUMBER, FileAccessEvent, FileAccessRecord, SessionInfo, build_record

logger = get_logger(__name__)


class HostService(Protocol):
    """Host-wide facilities a backend may look up at log time."""

    def repo_name_for(self, mount_path: str) -> str | None:
        """Return the repository name checked out at `mount_path`, if known."""


class EventSink(ABC):
    """Capability every telemetry backend provides.

    Implementations must be safe to call from many threads at once, must never
    block the caller for long and must never raise from `log_file_access`.
    """

    def __init__(
        self,
        session_info: SessionInfo,
        config: ReloadableConfig,
        server: HostService | None,
    ) -> None:
        self._session_info = session_info
        self._config = config
        self._server = server

    @property
    def session_info(self) -> SessionInfo:
        return self._session_info

    @property
    def config(self) -> ReloadableConfig:
        return self._config

    @property
    def server(self) -> HostService | None:
        return self._server

    @abstractmethod
    def log_file_access(self, event: FileAccessEvent) -> None:
        """Consume one event (fire-and-forget)."""

    @abstractmethod
    def create(self) -> EventSink:
        """Return a new, independent sink of the same kind.

        The new instance is built from the same session, config handle and
        host reference, so it picks up the configuration as it is now. It
        never raises; a backend that cannot start behaves as a no-op instead.
        """

    def close(self) -> None:
        """Flush or drop buffered events within a bounded time. Idempotent."""

    def _lookup_repo_name(self, mount_path: str) -> str | None:
        """Ask the host which repository lives at `mount_path` (best-effort)."""
        if self._server is None:
            return None
        try:
            return self._server.repo_name_for(mount_path)
        except Exception:  # noqa: BLE001 - lookups are optional enrichment
            logger.debug("telemetry.sink.repo_lookup_failed", mount_path=mount_path, exc_info=True)
            return None


class NullSink(EventSink):
    """Discards every event. The default when no backend is configured."""

    def __init__(self) -> None:
        super().__init__(SessionInfo(), ReloadableConfig(), None)

    def log_file_access(self, event: FileAccessEvent) -> None:
        pass

    def create(self) -> EventSink:
        return NullSink()


# Shared default for hosts that have not configured telemetry.
NULL_SINK = NullSink()


class InMemoryEventSink(EventSink):
    """In-memory sink for tests and local debugging."""

    def __init__(
        self,
        session_info: SessionInfo | None = None,
        config: ReloadableConfig | None = None,
        server: HostService | None = None,
    ) -> None:
        super().__init__(
            session_info if session_info is not None else SessionInfo(),
            config if config is not None else ReloadableConfig(),
            server,
        )
        self._lock = threading.Lock()
        self._records: list[FileAccessRecord] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def log_file_access(self, event: FileAccessEvent) -> None:
        """Append a record for the event (thread-safe). Ignored once closed."""
        if not self._config.telemetry.enabled:
            return
        try:
            record = build_record(event, self._session_info, repo_name=self._lookup_repo_name(event.mount_path))
        except Exception:  # noqa: BLE001 - never fail the caller
            logger.debug("telemetry.sink.record_failed", backend="memory", exc_info=True)
            return
        with self._lock:
            if self._closed:
                return
            self._records.append(record)

    def create(self) -> EventSink:
        return InMemoryEventSink(self._session_info, self._config, self._server)

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def snapshot(self) -> Sequence[FileAccessRecord]:
        """Return a point-in-time copy of all recorded entries."""
        with self._lock:
            return list(self._records)


class DuckDBEventSink(EventSink):
    """Analytics backend storing file access records in an embedded DuckDB table.

    Inserts happen on a background delivery thread; `log_file_access` only
    samples, builds the record and enqueues it. If the database cannot be opened
    the sink logs a warning and behaves as a no-op for its whole lifetime.
    """

    def __init__(
        self,
        session_info: SessionInfo,
        config: ReloadableConfig,
        server: HostService | None = None,
    ) -> None:
        super().__init__(session_info, config, server)
        settings = config.telemetry
        self._path = settings.duckdb_path
        self._table = settings.table
        self._shutdown_timeout_s = settings.shutdown_timeout_s
        # Guards the connection; held for the duration of each insert.
        self._lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._worker: DeliveryWorker | None = None
        self._closed = False

        if not settings.enabled:
            logger.info("telemetry.sink.disabled", backend="duckdb")
            return

        try:
            self._conn = duckdb.connect(self._path)
            self._ensure_schema()
        except Exception as exc:  # noqa: BLE001 - degrade to no-op, never fail the host
            logger.warning("telemetry.sink.degraded", backend="duckdb", path=self._path, error=str(exc))
            self._close_connection()
            return

        self._worker = DeliveryWorker(
            write=self._write,
            max_queue_size=settings.max_queue_size,
            name=f"duckdb-telemetry-{self._table}",
        )

    @property
    def degraded(self) -> bool:
        """True when the sink could not start and is discarding events."""
        return self._worker is None

    def _ensure_schema(self) -> None:
        """Create the backing table if it does not exist yet."""
        create_sql = f"""
        create table if not exists {self._table} (
          logged_at timestamptz not null,
          username varchar not null,
          hostname varchar not null,
          os varchar not null,
          os_version varchar not null,
          app_version varchar not null,
          ci_instance_id varchar,
          inode_number ubigint,
          cause varchar not null,
          cause_detail varchar,
          mount_path varchar not null,
          repo_name varchar,
          malformed boolean not null
        )
        """
        assert self._conn is not None
        with self._lock:
            self._conn.execute(create_sql)

    def log_file_access(self, event: FileAccessEvent) -> None:
        """Sample, copy and enqueue the event for the background writer."""
        worker = self._worker
        if worker is None:
            return
        try:
            settings = self._config.telemetry
            if not settings.enabled:
                return
            if settings.sample_rate < 1.0 and random.random() >= settings.sample_rate:
                return
            record = build_record(event, self._session_info, repo_name=self._lookup_repo_name(event.mount_path))
            worker.submit(record)
        except Exception:  # noqa: BLE001 - never fail the caller
            logger.debug("telemetry.sink.record_failed", backend="duckdb", exc_info=True)

    def _write(self, record: FileAccessRecord) -> None:
        """Insert a single record (runs on the delivery thread)."""
        insert_sql = f"""
        insert into {self._table}
        (logged_at, username, hostname, os, os_version, app_version, ci_instance_id,
         inode_number, cause, cause_detail, mount_path, repo_name, malformed)
        values (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        with self._lock:
            if self._conn is None:
                raise RuntimeError("DuckDB connection is closed")
            self._conn.execute(
                insert_sql,
                [
                    record.logged_at,
                    record.username,
                    record.hostname,
                    record.os,
                    record.os_version,
                    record.app_version,
                    record.ci_instance_id,
                    # Out-of-range inodes only occur on malformed rows; stored as null.
                    record.inode_number if 0 <= record.inode_number <= MAX_INODE_NUMBER else None,
                    record.cause,
                    record.cause_detail,
                    record.mount_path,
                    record.repo_name,
                    record.malformed,
                ],
            )

    def create(self) -> EventSink:
        return DuckDBEventSink(self._session_info, self._config, self._server)

    def close(self) -> None:
        """Flush the delivery worker, then close the DuckDB connection.

        When the writer is still stuck in an insert after the shutdown timeout,
        the connection is left for garbage collection instead of waiting on it.
        """
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
        if self._worker is not None:
            self._worker.close(self._shutdown_timeout_s)
            if self._worker.alive:
                logger.warning("telemetry.sink.close_abandoned", backend="duckdb", path=self._path)
                return
        self._close_connection()

    def _close_connection(self) -> None:
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                except Exception:  # noqa: BLE001 - best-effort teardown
                    logger.debug("telemetry.sink.close_failed", backend="duckdb", exc_info=True)
                self._conn = None

    def degraded_status(self) -> dict[str, Any]:
        """Return delivery counters; a degraded sink reports `degraded: True`."""
        if self._worker is None:
            return {"degraded": True}
        return {"degraded": False, **self._worker.degraded_status()}
