"""Day-scoped processing statistics with rollover detection."""

import logging
import threading
from datetime import UTC, date, datetime

from drover.schemas.ingest import IssueRecord, RolloverNotification, WatchedFolder

logger = logging.getLogger(__name__)


class StatisticsTracker:
    """Counts processed files and issues for the current calendar day.

    All state sits behind one lock. Counters only grow within a day; the
    periodic tick calls :meth:`check_rollover`, which drains and resets them
    exactly once per day change.

    Usage::

        stats = StatisticsTracker()
        stats.increment_processed()
        stats.increment_issue(folder, "data.csv", "Remote submission failed")

        notification = stats.check_rollover()
        if notification is not None:
            await notifier.notify_rollover(notification)
    """

    def __init__(self, current_day: date | None = None) -> None:
        self._lock = threading.Lock()
        self._current_day = current_day or date.today()
        self._total_processed = 0
        self._files_with_issues = 0
        self._issues: list[IssueRecord] = []

    @property
    def current_day(self) -> date:
        with self._lock:
            return self._current_day

    @property
    def total_files_processed(self) -> int:
        with self._lock:
            return self._total_processed

    @property
    def files_with_issues(self) -> int:
        with self._lock:
            return self._files_with_issues

    def increment_processed(self) -> None:
        with self._lock:
            self._total_processed += 1

    def increment_issue(self, folder: WatchedFolder, file_name: str, details: str) -> None:
        """Record one file with a processing problem."""
        record = IssueRecord(
            timestamp=datetime.now(UTC),
            folder_name=folder.display_name,
            folder_path=folder.path,
            file_name=file_name,
            details=details,
        )
        with self._lock:
            self._files_with_issues += 1
            self._issues.append(record)

    def snapshot(self) -> RolloverNotification:
        """Consistent copy of today's counters and issue log."""
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> RolloverNotification:
        return RolloverNotification(
            day=self._current_day,
            total_files_processed=self._total_processed,
            files_with_issues=self._files_with_issues,
            issues=list(self._issues),
        )

    def check_rollover(self, today: date | None = None) -> RolloverNotification | None:
        """Reset the counters if the calendar day has changed.

        Returns:
            The previous day's snapshot if that day had any issues,
            otherwise None (also None when the day has not changed).
        """
        today = today or date.today()
        if not today > self.current_day:
            return None

        with self._lock:
            # Another caller may have rolled over while we waited
            if not today > self._current_day:
                return None

            notification = None
            if self._files_with_issues != 0:
                notification = self._snapshot_locked()

            logger.info(
                "Day rollover %s -> %s: %d processed, %d with issues",
                self._current_day,
                today,
                self._total_processed,
                self._files_with_issues,
            )
            self._total_processed = 0
            self._files_with_issues = 0
            self._issues = []
            self._current_day = today
            return notification
