"""File access telemetry models.

Events are designed to be:
- Immutable values handed to exactly one sink call.
- Backend-agnostic (the cause taxonomy is shared by every producer and sink).
- Copied into a sink-owned record when a backend needs to retain them.
"""

from __future__ import annotations

import getpass
import os
import platform
import socket
from datetime import datetime, timezone
from enum import IntEnum
from pathlib import PurePosixPath
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(tz=timezone.utc)


# Inode numbers are unsigned 64-bit handles.
MAX_INODE_NUMBER = 2**64 - 1


class FetchCause(IntEnum):
    """Why a file was touched."""

    UNKNOWN = 0
    # Kernel (FUSE/NFS) filesystem request.
    FS = 1
    # Service API request.
    THRIFT = 2
    # Internal prefetch.
    PREFETCH = 3


def cause_label(cause: Any) -> str:
    """Return a stable lowercase label for a cause.

    Values that are not recognized members map to ``"unknown"`` so backends
    keep working when the taxonomy grows.
    """
    if isinstance(cause, FetchCause):
        return cause.name.lower()
    try:
        return FetchCause(cause).name.lower()
    except (TypeError, ValueError):
        return FetchCause.UNKNOWN.name.lower()


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class FileAccessEvent(_Model):
    """One observed filesystem operation."""

    inode_number: int
    cause: FetchCause

    # Only set when the cause needs disambiguation (e.g. the API endpoint).
    cause_detail: str | None = None

    # Absolute path of the checkout the inode belongs to.
    mount_path: str

    @property
    def is_well_formed(self) -> bool:
        if not 0 <= self.inode_number <= MAX_INODE_NUMBER:
            return False
        return bool(self.mount_path.strip()) and PurePosixPath(self.mount_path).is_absolute()


class SessionInfo(_Model):
    """Identity of the running service, captured once at startup."""

    username: str = ""
    hostname: str = ""
    os: str = ""
    os_version: str = ""
    app_version: str = ""
    ci_instance_id: str | None = None


def capture_session_info(*, app_version: str = "") -> SessionInfo:
    """Build a SessionInfo describing the current process."""
    try:
        username = getpass.getuser()
    except (KeyError, OSError):
        username = ""
    return SessionInfo(
        username=username,
        hostname=socket.gethostname(),
        os=platform.system(),
        os_version=platform.release(),
        app_version=app_version,
        ci_instance_id=os.getenv("CI_INSTANCE_ID") or None,
    )


class FileAccessRecord(_Model):
    """A sink-owned copy of an event plus the session it was observed in."""

    logged_at: datetime = Field(default_factory=utc_now)

    # Session identity.
    username: str
    hostname: str
    os: str
    os_version: str
    app_version: str
    ci_instance_id: str | None = None

    # Event fields.
    inode_number: int
    cause: str
    cause_detail: str | None = None
    mount_path: str

    # Filled in from the host's mount table when available.
    repo_name: str | None = None

    malformed: bool = False


def build_record(
    event: FileAccessEvent,
    session_info: SessionInfo,
    *,
    repo_name: str | None = None,
) -> FileAccessRecord:
    """Copy an event into a record. Malformed events are marked, not rejected."""
    return FileAccessRecord(
        logged_at=utc_now(),
        username=session_info.username,
        hostname=session_info.hostname,
        os=session_info.os,
        os_version=session_info.os_version,
        app_version=session_info.app_version,
        ci_instance_id=session_info.ci_instance_id,
        inode_number=event.inode_number,
        cause=cause_label(event.cause),
        cause_detail=event.cause_detail,
        mount_path=event.mount_path,
        repo_name=repo_name,
        malformed=not event.is_well_formed,
    )
