"""Notification collaborators for errors and daily rollover summaries.

The pipeline only depends on the :class:`Notifier` protocol. Delivery is up
to the implementation: log lines, an HTTP alert endpoint, or on-disk dumps
that an external mailer can pick up.
"""

import asyncio
import csv
import logging
from pathlib import Path
from typing import Protocol

import httpx
from pydantic import BaseModel

from drover.schemas.ingest import ErrorNotification, RolloverNotification

logger = logging.getLogger(__name__)

CSV_HEADER = ["Timestamp", "Name", "Path", "FileName", "Details"]


class Notifier(Protocol):
    async def notify_error(self, notification: ErrorNotification) -> None: ...

    async def notify_rollover(self, notification: RolloverNotification) -> None: ...


class LoggingNotifier:
    """Writes notifications to the application log."""

    async def notify_error(self, notification: ErrorNotification) -> None:
        logger.error(
            "%s in %s: %s",
            notification.error_type,
            notification.source or "pipeline",
            notification.message,
        )

    async def notify_rollover(self, notification: RolloverNotification) -> None:
        logger.warning(
            "Daily summary for %s: %d files processed, %d with issues",
            notification.day,
            notification.total_files_processed,
            notification.files_with_issues,
        )
        for issue in notification.issues:
            logger.warning(
                "  %s %s/%s: %s",
                issue.timestamp.strftime("%H:%M:%S"),
                issue.folder_name,
                issue.file_name,
                issue.details,
            )


class HttpNotifier:
    """POSTs each notification as JSON to an alert endpoint."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, kind: str, notification: BaseModel) -> None:
        response = await self._client.post(
            self._url,
            content=notification.model_dump_json(),
            headers={"Content-Type": "application/json", "X-Notification-Kind": kind},
        )
        response.raise_for_status()
        logger.info("HTTP %s alert sent to %s", kind, self._url)

    async def notify_error(self, notification: ErrorNotification) -> None:
        await self._post("error", notification)

    async def notify_rollover(self, notification: RolloverNotification) -> None:
        await self._post("rollover", notification)


class AuditDumpNotifier:
    """Persists notifications under a dump directory.

    Layout::

        errors_2026-10-19.log          appended error reports
        rollover_2026-10-18.json       rollover snapshot
        WarningLog_20261019_000001.csv issue log of that snapshot
    """

    SEPARATOR = "-" * 60

    def __init__(self, dump_dir: str | Path) -> None:
        self._dir = Path(dump_dir)
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def dump_dir(self) -> Path:
        return self._dir

    def _write_error(self, notification: ErrorNotification) -> Path:
        path = self._dir / f"errors_{notification.timestamp:%Y-%m-%d}.log"
        lines = [
            self.SEPARATOR,
            f"Timestamp      : {notification.timestamp:%Y-%m-%d %H:%M:%S}",
            f"Error Message  : {notification.message}",
            f"Error Type     : {notification.error_type}",
        ]
        if notification.source:
            lines.append(f"Source         : {notification.source}")
        if notification.stack_trace:
            lines.append(f"Stack Trace    :\n{notification.stack_trace.rstrip()}")
        with path.open("a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n\n")
        return path

    def _write_rollover(self, notification: RolloverNotification) -> tuple[Path, Path]:
        json_path = self._dir / f"rollover_{notification.day.isoformat()}.json"
        json_path.write_text(notification.model_dump_json(indent=2), encoding="utf-8")

        csv_path = self._dir / f"WarningLog_{notification.generated_at:%Y%m%d_%H%M%S}.csv"
        with csv_path.open("w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f, quoting=csv.QUOTE_ALL)
            writer.writerow(CSV_HEADER)
            for issue in sorted(notification.issues, key=lambda i: i.timestamp):
                writer.writerow(
                    [
                        issue.timestamp.strftime("%d-%b-%Y %H:%M:%S"),
                        issue.folder_name,
                        issue.folder_path,
                        issue.file_name,
                        issue.details,
                    ]
                )
        return json_path, csv_path

    async def notify_error(self, notification: ErrorNotification) -> None:
        await asyncio.to_thread(self._write_error, notification)

    async def notify_rollover(self, notification: RolloverNotification) -> None:
        json_path, csv_path = await asyncio.to_thread(self._write_rollover, notification)
        logger.info("Rollover summary written to %s and %s", json_path, csv_path)


class CompositeNotifier:
    """Fans each notification out to several notifiers.

    A failing notifier is logged and does not stop the others.
    """

    def __init__(self, notifiers: list[Notifier]) -> None:
        self._notifiers = list(notifiers)

    async def _fan_out(self, method: str, notification: BaseModel) -> None:
        results = await asyncio.gather(
            *(getattr(n, method)(notification) for n in self._notifiers),
            return_exceptions=True,
        )
        for notifier, result in zip(self._notifiers, results):
            if isinstance(result, Exception):
                logger.error(
                    "%s.%s failed: %s", type(notifier).__name__, method, result
                )

    async def notify_error(self, notification: ErrorNotification) -> None:
        await self._fan_out("notify_error", notification)

    async def notify_rollover(self, notification: RolloverNotification) -> None:
        await self._fan_out("notify_rollover", notification)

    async def close(self) -> None:
        for notifier in self._notifiers:
            close = getattr(notifier, "close", None)
            if close is not None:
                await close()
