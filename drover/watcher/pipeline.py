"""Folder ingestion pipeline.

Uses the ``watchdog`` library (inotify on Linux) to detect new files in each
configured folder. Observer threads only filter and debounce; accepted
events are handed to the asyncio loop through a bounded queue drained by a
fixed pool of workers, so a burst of arrivals cannot spawn unbounded work.

Per file::

    debounce -> remote duplicate check -> file-log submission
             -> read with retry -> content submission -> relay/archive
             -> statistics

A tick loop on the event loop refreshes the folder configuration, rolls the
daily statistics over, and logs statistics once an hour.
"""

import asyncio
import logging
import sys
import threading
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from drover.integrations.ingest_api import RemoteSubmissionClient
from drover.notify.notifier import LoggingNotifier, Notifier
from drover.schemas.ingest import (
    ErrorNotification,
    FileEvent,
    FileEventKind,
    IngestStatus,
    WatchedFolder,
)
from drover.watcher.config_source import folders_differ
from drover.watcher.debounce import EventDebouncer
from drover.watcher.postprocess import FilePostProcessor
from drover.watcher.reader import INITIAL_DELAY, MAX_ATTEMPTS, READ_TIMEOUT, read_with_retry
from drover.watcher.stats import StatisticsTracker

logger = logging.getLogger(__name__)

DEFAULT_FILE_PATTERNS = ["*.txt", "*.csv"]
REFRESH_INTERVAL = 300.0
TICK_INTERVAL = 1.0
STATS_LOG_INTERVAL = 3600.0
SHUTDOWN_TIMEOUT = 10.0
# watchdog reports IN_CLOSE_WRITE only on the Linux inotify backend
CLOSE_EVENTS_SUPPORTED = sys.platform.startswith("linux")


def matches_patterns(path: Path, patterns: list[str]) -> bool:
    """Check if a file matches configured patterns (by suffix or exact name)."""
    name_lower = path.name.lower()
    for pattern in patterns:
        pattern = pattern.lower()
        if pattern.startswith("*."):
            if name_lower.endswith(pattern[1:]):
                return True
        elif name_lower == pattern:
            return True
    return False


class FolderEventHandler(FileSystemEventHandler):
    """Receives watchdog events for one watched folder.

    Uses ``on_closed`` (inotify IN_CLOSE_WRITE) as the primary trigger, so a
    file is only queued once its writer has closed it. ``on_created`` is the
    trigger only on backends without close events. Modification events are
    never a trigger: a file is modified many times while it is being written.

    Runs on the observer thread; it never processes files itself.
    """

    def __init__(
        self,
        folder: WatchedFolder,
        pipeline: "IngestionPipeline",
        *,
        close_events: bool = CLOSE_EVENTS_SUPPORTED,
    ) -> None:
        super().__init__()
        self.folder = folder
        self._pipeline = pipeline
        self._close_events = close_events

    def _handle(self, src_path: str | bytes, kind: FileEventKind) -> None:
        path = Path(src_path.decode() if isinstance(src_path, bytes) else src_path)
        event = FileEvent(path=str(path), file_name=path.name, kind=kind)
        self._pipeline.dispatch(self, event)

    def on_created(self, event: FileSystemEvent) -> None:
        """Fallback for platforms without on_closed support."""
        if event.is_directory or self._close_events:
            return
        self._handle(event.src_path, FileEventKind.CREATED)

    def on_closed(self, event: FileSystemEvent) -> None:
        """Triggered when a file is closed after writing (inotify)."""
        if event.is_directory:
            return
        self._handle(event.src_path, FileEventKind.CHANGED)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Files deposited by atomic rename show up under ``dest_path``."""
        if event.is_directory:
            return
        self._handle(event.dest_path, FileEventKind.CREATED)


@dataclass
class FolderWatch:
    """A running observer bound to one folder."""

    folder: WatchedFolder
    handler: FolderEventHandler
    observer: Any

    def dispose(self) -> None:
        self.observer.stop()
        self.observer.join(timeout=5)


def _dispose_all(watches: list[FolderWatch]) -> None:
    for watch in watches:
        try:
            watch.dispose()
        except Exception:
            logger.exception("Failed to stop watch on %s", watch.folder.path)
        else:
            logger.info("Stopped watching folder: %s", watch.folder.path)


class IngestionPipeline:
    """Owns the folder watches, the work queue, and the tick loop.

    Usage::

        pipeline = IngestionPipeline(
            config_source=FileWatchConfigSource("folders.json"),
            client=RemoteSubmissionClient(base_url),
        )
        await pipeline.run(stop_event)
    """

    def __init__(
        self,
        *,
        config_source,
        client: RemoteSubmissionClient,
        post_processor: FilePostProcessor | None = None,
        stats: StatisticsTracker | None = None,
        notifier: Notifier | None = None,
        debouncer: EventDebouncer | None = None,
        file_patterns: list[str] | None = None,
        check_duplicates: bool = True,
        worker_count: int = 4,
        queue_size: int = 100,
        refresh_interval: float = REFRESH_INTERVAL,
        tick_interval: float = TICK_INTERVAL,
        read_attempts: int = MAX_ATTEMPTS,
        read_delay: float = INITIAL_DELAY,
        read_timeout: float = READ_TIMEOUT,
        observer_factory: Callable[[], Any] = Observer,
        close_events: bool = CLOSE_EVENTS_SUPPORTED,
    ) -> None:
        self.config_source = config_source
        self.client = client
        self.post_processor = post_processor or FilePostProcessor()
        self.stats = stats or StatisticsTracker()
        self.notifier = notifier or LoggingNotifier()
        self.debouncer = debouncer or EventDebouncer()
        self._file_patterns = [p.lower() for p in (file_patterns or DEFAULT_FILE_PATTERNS)]
        self._check_duplicates = check_duplicates
        self._worker_count = max(1, worker_count)
        self._queue_size = queue_size
        self._refresh_interval = refresh_interval
        self._tick_interval = tick_interval
        self._read_attempts = read_attempts
        self._read_delay = read_delay
        self._read_timeout = read_timeout
        self._observer_factory = observer_factory
        self._close_events = close_events

        # Guards the active watch set; handlers check membership under it
        self._watch_lock = threading.Lock()
        self._folders: list[WatchedFolder] = []
        self._watches: list[FolderWatch] = []
        self._active_handlers: set[FolderEventHandler] = set()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue | None = None
        self._workers: list[asyncio.Task] = []
        self._background: set[asyncio.Task] = set()
        self._last_refresh = 0.0
        self._last_stats_log = 0.0

    @property
    def active_folders(self) -> list[WatchedFolder]:
        with self._watch_lock:
            return list(self._folders)

    @property
    def active_watches(self) -> list[FolderWatch]:
        with self._watch_lock:
            return list(self._watches)

    # ------------------------------------------------------------------
    # Observer thread side
    # ------------------------------------------------------------------

    def dispatch(self, handler: FolderEventHandler, event: FileEvent) -> None:
        """Filter, debounce, and queue an event. Called on observer threads."""
        path = Path(event.path)
        if not path.is_file():
            return
        if not matches_patterns(path, self._file_patterns):
            return

        with self._watch_lock:
            if handler not in self._active_handlers:
                return
            loop, queue = self._loop, self._queue
            if loop is None or queue is None or loop.is_closed():
                return
            if self.debouncer.should_suppress(event.path):
                return
            logger.info("Detected file: %s", path.name)
            asyncio.run_coroutine_threadsafe(queue.put((event, handler.folder)), loop)

    # ------------------------------------------------------------------
    # Watch management
    # ------------------------------------------------------------------

    def _start_watch(self, folder: WatchedFolder) -> FolderWatch | None:
        path = Path(folder.path)
        try:
            if not path.exists():
                logger.warning("Directory %s does not exist. Creating...", path)
                path.mkdir(parents=True, exist_ok=True)
            handler = FolderEventHandler(folder, self, close_events=self._close_events)
            observer = self._observer_factory()
            observer.schedule(handler, str(path), recursive=folder.include_subdirectories)
            observer.start()
        except OSError as exc:
            logger.error("Failed to watch folder %s: %s", path, exc)
            return None
        logger.info("Started watching folder: %s", path)
        return FolderWatch(folder=folder, handler=handler, observer=observer)

    async def apply_folders(self, folders: list[WatchedFolder]) -> bool:
        """Replace all watches if ``folders`` differs from the active set.

        Returns:
            True if the watches were recreated.
        """
        if not folders_differ(self.active_folders, folders):
            logger.debug("Watch configuration unchanged (%d folders)", len(folders))
            return False

        logger.info("Watch configuration changed, recreating %d watches", len(folders))
        new_watches = [w for w in (self._start_watch(f) for f in folders) if w is not None]

        with self._watch_lock:
            old_watches = self._watches
            self._folders = list(folders)
            self._watches = new_watches
            self._active_handlers = {w.handler for w in new_watches}

        # Joining observer threads happens outside the lock: a handler may be
        # waiting on it
        await asyncio.to_thread(_dispose_all, old_watches)
        return True

    async def refresh_watches(self) -> bool:
        """Fetch the folder list and hot-swap watches if it changed.

        A failed or empty fetch keeps the current watches in force.
        """
        folders = await self.config_source.fetch_folders()
        if not folders:
            logger.warning(
                "No folder configuration available; keeping %d active watches",
                len(self.active_watches),
            )
            return False
        return await self.apply_folders(folders)

    # ------------------------------------------------------------------
    # Per-file processing
    # ------------------------------------------------------------------

    def _record_issue(self, path: Path, folder: WatchedFolder, details: str) -> IngestStatus:
        logger.warning("%s: %s", details, path)
        self.stats.increment_issue(folder, path.name, details)
        return IngestStatus.ERROR

    async def _ingest(self, path: Path, folder: WatchedFolder) -> IngestStatus:
        if self._check_duplicates and await self.client.check_already_processed(
            folder.client_code, path.name
        ):
            logger.info("Already processed remotely, skipping: %s", path.name)
            return IngestStatus.DUPLICATE

        stored = await self.client.submit_file_log(
            self.client.file_log_url(folder.client_code), [path.name]
        )
        if not stored:
            logger.warning("Error storing file logs for %s", path.name)

        self.stats.increment_processed()

        content = await read_with_retry(
            path,
            max_attempts=self._read_attempts,
            initial_delay=self._read_delay,
            timeout=self._read_timeout,
        )
        if not content:
            return self._record_issue(path, folder, "File content is empty or unreadable")

        result = await self.client.submit_file_content(
            self.client.content_url(folder.client_code), content
        )
        if not result.is_success:
            return self._record_issue(
                path,
                folder,
                f"Remote submission failed ({result.status_code}): {result.message}",
            )

        outcome = await self.post_processor.process(path, folder)
        issues = "; ".join(outcome.issues)
        if issues:
            self.stats.increment_issue(folder, path.name, issues)
        logger.info(
            "Complete processing: %s (archived=%s, relayed=%s)",
            path.name,
            outcome.archived_to or "no",
            outcome.relayed,
        )
        return IngestStatus.SUCCESS

    async def process_event(self, event: FileEvent, folder: WatchedFolder) -> IngestStatus:
        """Run one file through the pipeline. Never raises (except cancellation)."""
        path = Path(event.path)
        if not path.is_file():
            logger.debug("Skipping stale event, file is gone: %s", path)
            return IngestStatus.SKIPPED

        logger.info("File %s: %s", event.kind, path)
        try:
            return await self._ingest(path, folder)
        except Exception as exc:
            logger.exception("Error processing file event: %s", path)
            self.stats.increment_issue(folder, path.name, f"{type(exc).__name__}: {exc}")
            self._spawn(
                self.notifier.notify_error(ErrorNotification.from_exception(exc, source=str(path))),
                "error notification",
            )
            return IngestStatus.ERROR

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        while True:
            event, folder = await self._queue.get()
            try:
                await self.process_event(event, folder)
            finally:
                self._queue.task_done()

    async def scan_existing(self) -> list[IngestStatus]:
        """Process files already sitting in the configured folders (--once mode)."""
        folders = self.active_folders or await self.config_source.fetch_folders() or []
        results: list[IngestStatus] = []

        for folder in folders:
            root = Path(folder.path)
            if not root.is_dir():
                logger.warning("Watched folder does not exist: %s", root)
                continue
            items = root.rglob("*") if folder.include_subdirectories else root.iterdir()
            for item in sorted(items):
                if not item.is_file() or not matches_patterns(item, self._file_patterns):
                    continue
                event = FileEvent(path=str(item), file_name=item.name, kind=FileEventKind.CREATED)
                results.append(await self.process_event(event, folder))

        return results

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine, description: str) -> None:
        """Run a notification in the background, tracked for shutdown."""
        task = asyncio.create_task(self._deliver(coro, description))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _deliver(self, coro: Coroutine, description: str) -> None:
        try:
            await coro
        except Exception:
            logger.exception("Failed to deliver %s", description)

    async def tick(self) -> None:
        """One pass of the periodic driver."""
        now = time.monotonic()

        if now - self._last_refresh >= self._refresh_interval:
            self._last_refresh = now
            await self.refresh_watches()

        notification = self.stats.check_rollover()
        if notification is not None:
            self._spawn(self.notifier.notify_rollover(notification), "rollover notification")

        if now - self._last_stats_log >= STATS_LOG_INTERVAL:
            self._last_stats_log = now
            snapshot = self.stats.snapshot()
            logger.info(
                "Statistics for %s: %d files processed, %d with issues",
                snapshot.day,
                snapshot.total_files_processed,
                snapshot.files_with_issues,
            )

    async def _sleep(self, stop_event: asyncio.Event | None) -> None:
        if stop_event is None:
            await asyncio.sleep(self._tick_interval)
            return
        try:
            await asyncio.wait_for(stop_event.wait(), self._tick_interval)
        except TimeoutError:
            pass

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Load the folder list, start watches and workers.

        Returns:
            False if no folders are configured (nothing was started).
        """
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        logger.info("Starting folder watcher service...")

        folders = await self.config_source.fetch_folders()
        if not folders:
            logger.warning("No folders configured for watching")
            return False

        await self.apply_folders(folders)
        self._last_refresh = self._last_stats_log = time.monotonic()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"ingest-worker-{i}")
            for i in range(self._worker_count)
        ]
        return True

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Run until ``stop_event`` is set or the task is cancelled."""
        if not await self.start():
            return
        try:
            while stop_event is None or not stop_event.is_set():
                await self.tick()
                await self._sleep(stop_event)
        except (asyncio.CancelledError, KeyboardInterrupt):
            pass
        finally:
            await self.shutdown()

    async def shutdown(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        """Dispose watches, stop workers, wait briefly for notifications."""
        with self._watch_lock:
            watches = self._watches
            self._watches = []
            self._folders = []
            self._active_handlers = set()
        await asyncio.to_thread(_dispose_all, watches)

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        if self._background:
            _, pending = await asyncio.wait(set(self._background), timeout=timeout)
            if pending:
                logger.warning("Dropping %d undelivered notifications at shutdown", len(pending))
                for task in pending:
                    task.cancel()

        logger.info("Stopping folder watcher service...")
