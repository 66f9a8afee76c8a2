"""Relay and archive handling for successfully submitted files.

Runs only after the remote side accepted the content. Failures here are
reported back as issues; they never cause the content to be resubmitted.
"""

import asyncio
import ftplib
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import paramiko

from drover.integrations.relay import RelayError, relay_file
from drover.schemas.ingest import WatchedFolder

logger = logging.getLogger(__name__)

RELAY_ERRORS = (RelayError, paramiko.SSHException, ValueError, *ftplib.all_errors)


@dataclass
class PostProcessResult:
    """What happened to a file after submission."""

    relayed: bool = False
    archived_to: Path | None = None
    duplicate_removed: bool = False
    issues: list[str] = field(default_factory=list)


def archive_file(source: Path, archive_dir: Path) -> tuple[Path, bool]:
    """Move a file into the archive directory.

    If a file with the same name is already archived, the source is treated
    as a re-run duplicate and deleted; the archived copy is left untouched.

    Returns:
        Tuple of (destination path, whether the source was a duplicate).
    """
    if not archive_dir.exists():
        logger.warning("Archive directory %s does not exist. Creating...", archive_dir)
        archive_dir.mkdir(parents=True, exist_ok=True)

    dest = archive_dir / source.name
    if dest.exists():
        source.unlink()
        return dest, True

    shutil.move(str(source), str(dest))
    return dest, False


class FilePostProcessor:
    """Relays (FTP/SFTP) and archives files for a watched folder."""

    def __init__(self, relay=relay_file) -> None:
        self._relay = relay

    async def process(self, source: str | Path, folder: WatchedFolder) -> PostProcessResult:
        source = Path(source)
        outcome = PostProcessResult()

        if folder.relay_enabled:
            try:
                outcome.relayed = await asyncio.to_thread(self._relay, source, folder.relay)
                if outcome.relayed:
                    logger.info("Relayed %s to %s", source.name, folder.relay.host)
            except RELAY_ERRORS as exc:
                logger.warning("Relay of %s to %s failed: %s", source.name, folder.relay.host, exc)
                outcome.issues.append(f"Relay failed: {exc}")

        if folder.enable_archiving:
            if not folder.archive_path:
                logger.warning("Archive path is not set for %s. Cannot move file.", folder.path)
                outcome.issues.append("Archiving enabled but no archive path configured")
                return outcome
            try:
                dest, duplicate = await asyncio.to_thread(
                    archive_file, source, Path(folder.archive_path)
                )
            except OSError as exc:
                logger.warning("Failed to archive %s: %s", source, exc)
                outcome.issues.append(f"Archive failed: {exc}")
                return outcome

            outcome.archived_to = dest
            outcome.duplicate_removed = duplicate
            if duplicate:
                logger.info("Already archived, removed duplicate source %s", source)
            else:
                logger.info("Moved file from %s to %s", source, dest)

        return outcome
