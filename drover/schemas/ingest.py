"""Schemas for the folder ingestion pipeline.

Covers watch definitions, file events, remote call results, daily
statistics snapshots and notifications.
"""

import traceback
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

_WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RelayProtocol(StrEnum):
    """Transport used for the secondary relay copy."""

    FTP = "ftp"
    SFTP = "sftp"


class FileEventKind(StrEnum):
    CREATED = "created"
    CHANGED = "changed"


class IngestStatus(StrEnum):
    """Outcome of processing a single file event."""

    SUCCESS = "success"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    ERROR = "error"


class RelayTarget(BaseModel):
    """Secondary server that receives a copy of each ingested file.

    The scheme of ``server`` selects the protocol: ``sftp://`` for SFTP,
    ``ftp://`` / ``ftps://`` or a bare host name for FTP.
    """

    model_config = ConfigDict(frozen=True, **_WIRE_CONFIG)

    enabled: bool = True
    server: str = ""
    port: int | None = Field(default=None, gt=0, lt=65536)
    username: str = ""
    password: str = ""
    remote_directory: str = ""
    use_tls: bool = False

    @model_validator(mode="after")
    def _require_server(self) -> "RelayTarget":
        if not self.enabled:
            return self
        if not self.server.strip():
            raise ValueError("relay is enabled but no relay server is configured")
        # Unsupported schemes fail here, at load time.
        self.protocol
        return self

    @property
    def protocol(self) -> RelayProtocol:
        scheme = urlsplit(self.server).scheme.lower() if "://" in self.server else ""
        if scheme == "sftp":
            return RelayProtocol.SFTP
        if scheme in ("", "ftp", "ftps"):
            return RelayProtocol.FTP
        raise ValueError(f"Unsupported relay scheme: {scheme}")

    @property
    def host(self) -> str:
        if "://" in self.server:
            return urlsplit(self.server).hostname or ""
        return self.server.strip()

    @property
    def effective_port(self) -> int:
        if self.port:
            return self.port
        if "://" in self.server and urlsplit(self.server).port:
            return urlsplit(self.server).port
        return 22 if self.protocol == RelayProtocol.SFTP else 21

    @property
    def secure(self) -> bool:
        return self.use_tls or self.server.lower().startswith("ftps://")


class WatchedFolder(BaseModel):
    """A watch definition. Identity is ``(path, client_code)``."""

    model_config = ConfigDict(frozen=True, **_WIRE_CONFIG)

    name: str | None = None
    path: str = Field(min_length=1)
    archive_path: str | None = None
    client_code: str = Field(min_length=1)
    include_subdirectories: bool = False
    enable_archiving: bool = False
    relay: RelayTarget | None = None

    @property
    def identity(self) -> tuple[str, str]:
        return (self.path, self.client_code)

    @property
    def display_name(self) -> str:
        return self.name or self.path

    @property
    def relay_enabled(self) -> bool:
        return self.relay is not None and self.relay.enabled

    def fingerprint(self) -> tuple:
        """Fields that decide whether a live watch must be recreated."""
        return (
            self.path,
            self.archive_path,
            self.client_code,
            self.include_subdirectories,
            self.enable_archiving,
            self.relay,
        )


class FileEvent(BaseModel):
    """A filesystem change observed by a folder watch."""

    model_config = ConfigDict(frozen=True)

    path: str
    file_name: str
    kind: FileEventKind
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SubmissionResult(BaseModel):
    """Structured result returned by the remote ingestion endpoints."""

    model_config = _WIRE_CONFIG

    status_code: int = 0
    message: str | None = ""
    result: Any = None
    is_success: bool = False

    @classmethod
    def failure(cls, message: str, status_code: int = 0) -> "SubmissionResult":
        return cls(status_code=status_code, message=message, is_success=False)


class IssueRecord(BaseModel):
    """A per-file processing problem recorded in the daily statistics."""

    timestamp: datetime
    folder_name: str
    folder_path: str
    file_name: str
    details: str


class RolloverNotification(BaseModel):
    """Snapshot of one day's statistics, emitted at the day boundary."""

    day: date
    total_files_processed: int = Field(ge=0)
    files_with_issues: int = Field(ge=0)
    issues: list[IssueRecord] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ErrorNotification(BaseModel):
    """An unexpected exception surfaced to the notifier."""

    timestamp: datetime
    error_type: str
    message: str
    stack_trace: str = ""
    source: str = ""

    @classmethod
    def from_exception(cls, exc: BaseException, *, source: str = "") -> "ErrorNotification":
        return cls(
            timestamp=datetime.now(UTC),
            error_type=type(exc).__name__,
            message=str(exc),
            stack_trace="".join(traceback.format_exception(exc)),
            source=source,
        )

