"""Background writer that delivers records without blocking filesystem threads."""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from .logging import get_logger
from .models import FileAccessRecord, utc_now

logger = get_logger(__name__)

# Marks the end of the stream for the worker thread.
_STOP = object()


class DeliveryWorker:
    """Queues records and writes them from a background thread."""

    def __init__(
        self,
        *,
        write: Callable[[FileAccessRecord], None],
        max_queue_size: int = 10000,
        name: str = "telemetry-writer",
    ) -> None:
        """Create a worker around a synchronous write function.

        Args:
            write: Called from the worker thread for every accepted record.
            max_queue_size: Bound for in-memory buffering; records are dropped
                when full to avoid blocking the caller.
            name: Thread name (shows up in stack dumps).
        """
        self._write = write
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=max_queue_size)
        self._lock = threading.Lock()
        self._closed = False
        self._abandon = threading.Event()

        # Degradation tracking: counts and time window.
        self._dropped = 0
        self._write_failures = 0
        self._first_failure_at: datetime | None = None
        self._last_failure_at: datetime | None = None

        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def alive(self) -> bool:
        """True while the writer thread is still running."""
        return self._thread.is_alive()

    def submit(self, record: FileAccessRecord) -> bool:
        """Enqueue a record (non-blocking). Returns False when it was dropped."""
        with self._lock:
            if self._closed:
                self._dropped += 1
                return False
            try:
                self._queue.put_nowait(record)
            except queue.Full:
                # Overload: drop instead of blocking the filesystem operation.
                self._dropped += 1
                return False
        return True

    def close(self, timeout_s: float = 5.0) -> None:
        """Flush queued records, waiting at most `timeout_s`.

        Records still queued when the timeout expires are dropped. Safe to call
        multiple times.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        deadline = time.monotonic() + timeout_s
        try:
            self._queue.put(_STOP, timeout=timeout_s)
        except queue.Full:
            self._abandon.set()
            self._discard_pending()
            self._queue.put_nowait(_STOP)

        remaining = max(0.0, deadline - time.monotonic())
        self._thread.join(remaining)
        if self._thread.is_alive():
            self._abandon.set()
            logger.warning(
                "telemetry.delivery.close_timeout",
                worker=self._thread.name,
                timeout_s=timeout_s,
                pending=self._queue.qsize(),
            )

    def _discard_pending(self) -> None:
        """Drop everything still queued (close is the only producer left)."""
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return
            with self._lock:
                self._dropped += 1
            self._queue.task_done()

    def _record_failure(self) -> None:
        now = utc_now()
        with self._lock:
            self._write_failures += 1
            self._first_failure_at = self._first_failure_at or now
            self._last_failure_at = now

    def _run(self) -> None:
        """Drain the queue until the stop marker arrives."""
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                if self._abandon.is_set():
                    with self._lock:
                        self._dropped += 1
                    continue
                self._write(item)
            except Exception:  # noqa: BLE001 - telemetry must not crash the host
                self._record_failure()
                logger.debug("telemetry.delivery.write_failed", worker=self._thread.name, exc_info=True)
            finally:
                self._queue.task_done()

    def degraded_status(self) -> dict[str, Any]:
        """Return a minimal degraded-status snapshot."""
        with self._lock:
            return {
                "dropped": self._dropped,
                "write_failures": self._write_failures,
                "first_failure_at": self._first_failure_at,
                "last_failure_at": self._last_failure_at,
            }
