"""Ownership of the single live EventSink.

The host keeps one `ActiveSink` for its whole lifetime. Filesystem threads call
`log_file_access` on it; the lifecycle manager calls `reload` when the
configuration changes. A reload builds the replacement outside any lock the
hot path uses, swaps it in atomically, waits for calls still running on the
old sink to finish and only then closes the old sink.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from config import Config, ReloadableConfig

from .logging import get_logger
from .models import FileAccessEvent
from .sinks import NULL_SINK, EventSink

logger = get_logger(__name__)


class _Slot:
    """A sink plus the number of calls currently running on it."""

    __slots__ = ("sink", "in_flight")

    def __init__(self, sink: EventSink) -> None:
        self.sink = sink
        self.in_flight = 0


class ActiveSink:
    """Holds the current sink and swaps it without losing in-flight events."""

    def __init__(self, sink: EventSink | None = None, *, drain_timeout_s: float = 5.0) -> None:
        self._cond = threading.Condition()
        self._slot = _Slot(sink if sink is not None else NULL_SINK)
        self._drain_timeout_s = drain_timeout_s
        # Serializes reloads; never taken on the logging path.
        self._reload_lock = threading.Lock()
        self._shut_down = False
        self._watched: list[ReloadableConfig] = []

    @property
    def sink(self) -> EventSink:
        """The sink new events are currently routed to."""
        with self._cond:
            return self._slot.sink

    def log_file_access(self, event: FileAccessEvent) -> None:
        """Forward an event to the current sink. Never raises."""
        with self._cond:
            slot = self._slot
            slot.in_flight += 1
        try:
            slot.sink.log_file_access(event)
        except Exception:  # noqa: BLE001 - a broken backend must not fail filesystem calls
            logger.debug("telemetry.active.log_failed", sink=type(slot.sink).__name__, exc_info=True)
        finally:
            with self._cond:
                slot.in_flight -= 1
                if slot.in_flight == 0:
                    self._cond.notify_all()

    def reload(self, factory: Callable[[], EventSink] | None = None) -> EventSink:
        """Replace the current sink with `current.create()` (or `factory()`).

        If building the replacement fails, the current sink stays active.
        Returns the sink that is active afterwards.
        """
        with self._reload_lock:
            if self._shut_down:
                return self.sink
            current = self.sink
            try:
                replacement = factory() if factory is not None else current.create()
            except Exception:  # noqa: BLE001 - keep logging to the old sink
                logger.error("telemetry.active.reload_failed", sink=type(current).__name__, exc_info=True)
                return current
            self._swap(replacement)
            logger.info(
                "telemetry.active.reloaded",
                old=type(current).__name__,
                new=type(replacement).__name__,
            )
            return replacement

    def replace(self, sink: EventSink) -> None:
        """Swap in an already-built sink using the same drain protocol as `reload`."""
        with self._reload_lock:
            if self._shut_down:
                sink.close()
                return
            self._swap(sink)

    def shutdown(self) -> None:
        """Route further events to the null sink and close the current one. Idempotent."""
        with self._reload_lock:
            if self._shut_down:
                return
            self._shut_down = True
            watched, self._watched = self._watched, []
            self._swap(NULL_SINK)
        for config in watched:
            config.unsubscribe(self._on_config_reloaded)

    def watch(self, config: ReloadableConfig) -> None:
        """Reload whenever `config` publishes a new snapshot, until `shutdown`."""
        with self._reload_lock:
            if self._shut_down:
                return
            self._watched.append(config)
            config.subscribe(self._on_config_reloaded)

    def _on_config_reloaded(self, config: Config) -> None:
        self.reload()

    def _swap(self, sink: EventSink) -> None:
        """Install `sink`, drain the previous one, then close it."""
        with self._cond:
            old = self._slot
            self._slot = _Slot(sink)
            drained = self._cond.wait_for(lambda: old.in_flight == 0, timeout=self._drain_timeout_s)
        if not drained:
            logger.warning(
                "telemetry.active.drain_timeout",
                sink=type(old.sink).__name__,
                in_flight=old.in_flight,
                timeout_s=self._drain_timeout_s,
            )
        if old.sink is sink:
            return
        try:
            old.sink.close()
        except Exception:  # noqa: BLE001 - teardown problems stay inside telemetry
            logger.warning("telemetry.active.close_failed", sink=type(old.sink).__name__, exc_info=True)
