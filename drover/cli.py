"""CLI entry point for the Drover folder ingestion service.

Commands:
    drover watch    — watch configured folders and ingest new files
    drover folders  — show the watched folder configuration
"""

import asyncio
import logging
import logging.handlers
import signal
import sys
from pathlib import Path

import click

from drover.config import (
    INGEST_BASE_URL,
    INGEST_TIMEOUT,
    INGEST_TRANS_MODE,
    LOG_DIR,
    NOTIFY_DUMP_DIR,
    NOTIFY_HTTP_URL,
    WATCH_CHECK_DUPLICATES,
    WATCH_CONFIG_IDS,
    WATCH_CONFIG_URL,
    WATCH_DEBOUNCE_SECONDS,
    WATCH_FILE_PATTERNS,
    WATCH_FOLDERS_FILE,
    WATCH_QUEUE_SIZE,
    WATCH_REFRESH_SECONDS,
    WATCH_WORKERS,
    parse_list,
)

logger = logging.getLogger("drover")

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _configure_logging(verbose: bool, log_dir: str) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S")
    logging.getLogger("paramiko").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.TimedRotatingFileHandler(
            path / "drover.log", when="midnight", backupCount=30, encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option(
    "--log-dir",
    default=LOG_DIR,
    help="Also write daily-rotated log files to this directory.",
)
def cli(verbose: bool, log_dir: str) -> None:
    """Drover — watch folders and forward new files to the ingestion API."""
    _configure_logging(verbose, log_dir)


def _config_source(folders_file: str, config_url: str, config_ids: str):
    """Build the folder configuration source; remote URL wins."""
    from drover.watcher.config_source import FileWatchConfigSource, HttpWatchConfigSource

    if config_url:
        return HttpWatchConfigSource(config_url, parse_list(config_ids), timeout=INGEST_TIMEOUT)
    return FileWatchConfigSource(folders_file)


def _validate_folders_file(folders_file: str) -> None:
    """Fail loudly if the local folder definitions are missing or invalid."""
    from pydantic import ValidationError

    from drover.watcher.config_source import FileWatchConfigSource

    if not folders_file:
        click.echo("Error: --folders-file or --config-url is required.", err=True)
        sys.exit(1)
    try:
        FileWatchConfigSource(folders_file).load()
    except FileNotFoundError:
        click.echo(f"Error: Folders file does not exist: {folders_file}", err=True)
        sys.exit(1)
    except ValidationError as exc:
        click.echo(f"Error: Invalid folder configuration in {folders_file}:\n{exc}", err=True)
        sys.exit(1)
    except ValueError as exc:
        click.echo(f"Error: Invalid folders file {folders_file}: {exc}", err=True)
        sys.exit(1)


# ------------------------------------------------------------------
# drover watch
# ------------------------------------------------------------------


@cli.command()
@click.option(
    "--folders-file",
    default=WATCH_FOLDERS_FILE,
    show_default=True,
    help="JSON file with watched folder definitions.",
)
@click.option(
    "--config-url",
    default=WATCH_CONFIG_URL,
    help="Remote endpoint serving watched folder definitions (overrides --folders-file).",
)
@click.option("--config-ids", default=WATCH_CONFIG_IDS, help="Comma-separated configuration identifiers.")
@click.option("--base-url", default=INGEST_BASE_URL, help="Base URL of the ingestion API.")
@click.option(
    "--patterns",
    default=WATCH_FILE_PATTERNS,
    show_default=True,
    help="Comma-separated file patterns to ingest (e.g. '*.txt,*.csv').",
)
@click.option("--workers", default=WATCH_WORKERS, show_default=True, help="Concurrent file workers.")
@click.option(
    "--duplicate-check/--no-duplicate-check",
    default=WATCH_CHECK_DUPLICATES,
    show_default=True,
    help="Ask the remote side whether a file was already ingested.",
)
@click.option("--once", is_flag=True, help="Ingest files already present and exit (no continuous watch).")
def watch(
    folders_file: str,
    config_url: str,
    config_ids: str,
    base_url: str,
    patterns: str,
    workers: int,
    duplicate_check: bool,
    once: bool,
) -> None:
    """Watch configured folders and ingest new files."""
    if not base_url:
        click.echo("Error: --base-url is required (or set INGEST_BASE_URL).", err=True)
        sys.exit(1)
    if workers < 1:
        click.echo("Error: --workers must be at least 1.", err=True)
        sys.exit(1)
    if not config_url:
        _validate_folders_file(folders_file)

    asyncio.run(
        _watch_async(
            _config_source(folders_file, config_url, config_ids),
            base_url,
            parse_list(patterns),
            workers,
            duplicate_check,
            once,
        )
    )


def _build_notifier():
    from drover.notify.notifier import (
        AuditDumpNotifier,
        CompositeNotifier,
        HttpNotifier,
        LoggingNotifier,
    )

    notifiers = [LoggingNotifier()]
    if NOTIFY_DUMP_DIR:
        notifiers.append(AuditDumpNotifier(NOTIFY_DUMP_DIR))
    if NOTIFY_HTTP_URL:
        notifiers.append(HttpNotifier(NOTIFY_HTTP_URL))
    return CompositeNotifier(notifiers)


async def _watch_async(
    config_source,
    base_url: str,
    file_patterns: list[str],
    workers: int,
    duplicate_check: bool,
    once: bool,
) -> None:
    from drover.integrations.ingest_api import RemoteSubmissionClient
    from drover.schemas.ingest import IngestStatus
    from drover.watcher.debounce import EventDebouncer
    from drover.watcher.pipeline import IngestionPipeline

    notifier = _build_notifier()
    try:
        async with RemoteSubmissionClient(
            base_url, trans_mode=INGEST_TRANS_MODE, timeout=INGEST_TIMEOUT
        ) as client:
            pipeline = IngestionPipeline(
                config_source=config_source,
                client=client,
                notifier=notifier,
                debouncer=EventDebouncer(WATCH_DEBOUNCE_SECONDS),
                file_patterns=file_patterns,
                check_duplicates=duplicate_check,
                worker_count=workers,
                queue_size=WATCH_QUEUE_SIZE,
                refresh_interval=WATCH_REFRESH_SECONDS,
            )

            if once:
                click.echo(f"Scanning configured folders (once mode) via {config_source!r}…")
                results = await pipeline.scan_existing()
                await pipeline.shutdown()
                success = sum(1 for r in results if r == IngestStatus.SUCCESS)
                dupes = sum(1 for r in results if r == IngestStatus.DUPLICATE)
                errors = sum(1 for r in results if r == IngestStatus.ERROR)
                click.echo(
                    f"Done. Files: {len(results)}, "
                    f"Ingested: {success}, Duplicates: {dupes}, Errors: {errors}"
                )
                return

            stop_event = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, stop_event.set)
                except NotImplementedError:
                    pass

            click.echo("Watching configured folders for new files (Ctrl+C to stop)…")
            click.echo(f"  Patterns: {file_patterns}")
            click.echo(f"  Workers: {workers}")
            await pipeline.run(stop_event)
    finally:
        await notifier.close()
        close = getattr(config_source, "close", None)
        if close is not None:
            await close()


# ------------------------------------------------------------------
# drover folders
# ------------------------------------------------------------------


@cli.command()
@click.option("--folders-file", default=WATCH_FOLDERS_FILE, show_default=True)
@click.option("--config-url", default=WATCH_CONFIG_URL)
@click.option("--config-ids", default=WATCH_CONFIG_IDS)
def folders(folders_file: str, config_url: str, config_ids: str) -> None:
    """Show the watched folder configuration."""
    if not config_url:
        _validate_folders_file(folders_file)

    source = _config_source(folders_file, config_url, config_ids)

    async def _fetch():
        try:
            return await source.fetch_folders()
        finally:
            await source.close()

    result = asyncio.run(_fetch())
    if not result:
        click.echo("No watched folders configured.", err=True)
        sys.exit(1)

    for folder in result:
        click.echo(f"{folder.display_name}  [{folder.client_code}]")
        click.echo(f"  Path:       {folder.path}{' (recursive)' if folder.include_subdirectories else ''}")
        if folder.enable_archiving:
            click.echo(f"  Archive:    {folder.archive_path or '(not set)'}")
        if folder.relay_enabled:
            relay = folder.relay
            click.echo(
                f"  Relay:      {relay.protocol.value}://{relay.host}:{relay.effective_port}"
                f"/{relay.remote_directory.lstrip('/')}"
            )


if __name__ == "__main__":
    cli()
