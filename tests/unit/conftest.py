from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from config import Config, ReloadableConfig, TelemetryConfig
from telemetry.models import SessionInfo


@pytest.fixture(autouse=True)
def _clean_telemetry_env(monkeypatch: pytest.MonkeyPatch):
    """Keep FS_TELEMETRY_* values from the developer's shell out of unit tests."""
    import os

    for name in list(os.environ):
        if name.startswith("FS_TELEMETRY_"):
            monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def session() -> SessionInfo:
    return SessionInfo(
        username="alice",
        hostname="devbox",
        os="Linux",
        os_version="6.1",
        app_version="1.2.3",
    )


@pytest.fixture
def make_config() -> Callable[..., ReloadableConfig]:
    """Build a ReloadableConfig from TelemetryConfig overrides."""

    def _make(**overrides: Any) -> ReloadableConfig:
        return ReloadableConfig(Config(telemetry=TelemetryConfig(**overrides)))

    return _make


class FakeHost:
    """Minimal host service with a fixed mount table."""

    def __init__(self, mounts: dict[str, str] | None = None) -> None:
        self.mounts = dict(mounts or {"/mnt/repo": "repo"})
        self.lookups = 0

    def repo_name_for(self, mount_path: str) -> str | None:
        self.lookups += 1
        return self.mounts.get(mount_path)


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()
