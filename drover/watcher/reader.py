"""Read a freshly written file, tolerating writers that still hold it."""

import asyncio
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
INITIAL_DELAY = 0.2
READ_TIMEOUT = 30.0


def _read_text(path: Path) -> str:
    with path.open("r", encoding="utf-8") as f:
        return f.read()


async def read_with_retry(
    path: str | Path,
    *,
    max_attempts: int = MAX_ATTEMPTS,
    initial_delay: float = INITIAL_DELAY,
    timeout: float = READ_TIMEOUT,
) -> str | None:
    """Read a text file, retrying on I/O errors with exponential backoff.

    Args:
        path: File to read.
        max_attempts: Total read attempts before giving up.
        initial_delay: Seconds to wait after the first failure; doubles
            after every further failure.
        timeout: Overall deadline for all attempts, in seconds.

    Returns:
        The file content, or None if attempts ran out, the deadline passed,
        or the file disappeared. Non-I/O errors (e.g. decoding) propagate.
    """
    path = Path(path)
    delay = initial_delay

    try:
        async with asyncio.timeout(timeout):
            for attempt in range(1, max_attempts + 1):
                try:
                    return await asyncio.to_thread(_read_text, path)
                except FileNotFoundError:
                    logger.info("File vanished before it could be read: %s", path)
                    return None
                except OSError as exc:
                    if attempt == max_attempts:
                        logger.warning(
                            "Giving up reading %s after %d attempts: %s",
                            path,
                            max_attempts,
                            exc,
                        )
                        return None
                    logger.debug(
                        "File busy (attempt %d/%d), retrying in %.1fs: %s",
                        attempt,
                        max_attempts,
                        delay,
                        exc,
                    )
                    await asyncio.sleep(delay)
                    delay *= 2
    except TimeoutError:
        logger.warning("Timed out after %.1fs reading %s", timeout, path)
        return None
    return None
