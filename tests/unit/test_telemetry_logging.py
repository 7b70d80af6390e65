from __future__ import annotations

import json
import logging

import pytest
import structlog

from config import TelemetryConfig
from telemetry import logging as telemetry_logging


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    if telemetry_logging._handler is not None:
        root.removeHandler(telemetry_logging._handler)
        telemetry_logging._handler = None
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def test_setup_logging_replaces_its_handler_on_repeat():
    root = logging.getLogger()
    before = len(root.handlers)

    telemetry_logging.setup_logging(TelemetryConfig(log_level="DEBUG"))
    telemetry_logging.setup_logging(TelemetryConfig(log_level="WARNING"))

    assert len(root.handlers) == before + 1
    assert root.level == logging.WARNING


def test_json_output_for_stdlib_and_structlog_loggers(capsys: pytest.CaptureFixture[str]):
    telemetry_logging.setup_logging(TelemetryConfig(log_level="INFO", log_format="json"))

    telemetry_logging.get_logger("tests").info("telemetry.test.event", sink="NullSink")
    logging.getLogger("tests.stdlib").warning("plain stdlib message")

    lines = [json.loads(line) for line in capsys.readouterr().err.splitlines() if line.strip()]
    assert lines[0]["event"] == "telemetry.test.event"
    assert lines[0]["sink"] == "NullSink"
    assert lines[0]["level"] == "info"
    assert "timestamp" in lines[0]
    assert lines[1]["event"] == "plain stdlib message"
    assert lines[1]["level"] == "warning"


def test_library_logs_never_reach_stdout_before_setup(
    tmp_path, session, make_config, capsys: pytest.CaptureFixture[str], caplog: pytest.LogCaptureFixture
):
    from telemetry.sinks import DuckDBEventSink

    structlog.reset_defaults()
    caplog.set_level(logging.WARNING)

    sink = DuckDBEventSink(session, make_config(duckdb_path=str(tmp_path / "missing" / "access.duckdb")))
    sink.close()

    assert sink.degraded is True
    assert capsys.readouterr().out == ""
    assert any("telemetry.sink.degraded" in record.getMessage() for record in caplog.records)
