from __future__ import annotations

from pathlib import Path

import pytest

from telemetry import factory
from telemetry.factory import available_backends, create_sink, register_backend
from telemetry.sinks import DuckDBEventSink, EventSink, InMemoryEventSink, NullSink


def test_default_config_builds_null_sink(session, make_config):
    assert isinstance(create_sink(session, make_config()), NullSink)


def test_memory_backend(session, make_config, host):
    handle = make_config(backend="memory")
    sink = create_sink(session, handle, host)

    assert isinstance(sink, InMemoryEventSink)
    assert sink.session_info is session
    assert sink.config is handle
    assert sink.server is host


def test_duckdb_backend(tmp_path: Path, session, make_config):
    sink = create_sink(session, make_config(backend="duckdb", duckdb_path=str(tmp_path / "a.duckdb")))
    try:
        assert isinstance(sink, DuckDBEventSink)
        assert sink.degraded is False
    finally:
        sink.close()


def test_disabled_telemetry_builds_null_sink(session, make_config):
    assert isinstance(create_sink(session, make_config(enabled=False, backend="memory")), NullSink)


def test_unknown_backend_falls_back_to_null(session, make_config):
    assert isinstance(create_sink(session, make_config(backend="scribe")), NullSink)


def test_failing_backend_constructor_falls_back_to_null(monkeypatch: pytest.MonkeyPatch, session, make_config):
    class _Exploding(InMemoryEventSink):
        def __init__(self, *args, **kwargs) -> None:
            raise RuntimeError("cannot resolve endpoint")

    monkeypatch.setitem(factory._BACKENDS, "exploding", _Exploding)

    assert isinstance(create_sink(session, make_config(backend="exploding")), NullSink)


def test_register_backend(monkeypatch: pytest.MonkeyPatch, session, make_config):
    class _Custom(InMemoryEventSink):
        def create(self) -> EventSink:
            return _Custom(self.session_info, self.config, self.server)

    monkeypatch.setattr(factory, "_BACKENDS", dict(factory._BACKENDS))
    register_backend(" Custom ", _Custom)

    sink = create_sink(session, make_config(backend="custom"))

    assert isinstance(sink, _Custom)
    assert isinstance(sink.create(), _Custom)
    assert "custom" in available_backends()


def test_available_backends_lists_builtins():
    assert available_backends()[:1] == ["null"]
    assert {"memory", "duckdb"} <= set(available_backends())
