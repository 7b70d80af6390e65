"""Demo entrypoint wiring together the telemetry components.

This module intentionally contains a small, end-to-end "smoke test" that:

- Loads configuration from environment.
- Captures the session and builds the configured sink.
- Runs a few worker threads that report file accesses.
- Reloads the configuration mid-stream to exercise the sink swap.

It is **not** intended to be production orchestration logic; it is a convenient
manual integration harness. Try it with:

    FS_TELEMETRY_BACKEND=duckdb FS_TELEMETRY_LOG_FORMAT=console python src/main.py
"""

from __future__ import annotations

import os
import threading

from config import ReloadableConfig, load_config
from telemetry import (
    ActiveSink,
    DuckDBEventSink,
    FetchCause,
    FileAccessEvent,
    InMemoryEventSink,
    capture_session_info,
    create_sink,
)
from telemetry.logging import get_logger, setup_logging

logger = get_logger(__name__)


class _DemoHost:
    """Stand-in for the filesystem service: a fixed mount table."""

    def __init__(self, mounts: dict[str, str]) -> None:
        self._mounts = dict(mounts)

    def repo_name_for(self, mount_path: str) -> str | None:
        return self._mounts.get(mount_path)


def _simulate_accesses(active: ActiveSink, *, mount_path: str, count: int, worker_id: int) -> None:
    """Report `count` file accesses with a rotating cause."""
    causes = [FetchCause.FS, FetchCause.PREFETCH, FetchCause.THRIFT]
    for i in range(count):
        cause = causes[i % len(causes)]
        active.log_file_access(
            FileAccessEvent(
                inode_number=worker_id * 100_000 + i,
                cause=cause,
                cause_detail="getFileContent" if cause is FetchCause.THRIFT else None,
                mount_path=mount_path,
            )
        )


def run_demo() -> None:
    """Run a short multi-threaded demo with one config reload in the middle."""
    config = ReloadableConfig(load_config())
    setup_logging(config.telemetry)

    session = capture_session_info(app_version=os.getenv("DEMO_APP_VERSION", "dev"))
    host = _DemoHost({"/mnt/repo": "repo", "/mnt/www": "www"})

    active = ActiveSink(create_sink(session, config, host), drain_timeout_s=config.telemetry.shutdown_timeout_s)
    active.watch(config)
    logger.info("demo.started", sink=type(active.sink).__name__, backend=config.telemetry.backend)

    events_per_thread = int(os.getenv("DEMO_EVENTS_PER_THREAD", "1000"))
    threads = [
        threading.Thread(
            target=_simulate_accesses,
            args=(active,),
            kwargs={"mount_path": mount, "count": events_per_thread, "worker_id": n},
            name=f"fs-worker-{n}",
        )
        for n, mount in enumerate(["/mnt/repo", "/mnt/www", "/mnt/repo", "/mnt/www"])
    ]
    try:
        for t in threads:
            t.start()
        # Mid-stream reload: the active sink is rebuilt from the fresh config.
        config.reload()
        for t in threads:
            t.join()
    finally:
        final_sink = active.sink
        if isinstance(final_sink, DuckDBEventSink):
            print(f"[telemetry] duckdb status: {final_sink.degraded_status()}")
        elif isinstance(final_sink, InMemoryEventSink):
            print(f"[telemetry] records held by the active sink: {len(final_sink.snapshot())}")
        active.shutdown()
        logger.info("demo.finished", threads=len(threads), events_per_thread=events_per_thread)


def main() -> None:
    """CLI entrypoint for running the demo with `python src/main.py`."""
    run_demo()


if __name__ == "__main__":
    main()
