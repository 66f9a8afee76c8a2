"""Sources for the authoritative list of watched folders.

The folder list is either served by a remote configuration endpoint or
read from a local JSON file. Both accept a bare JSON array of folder
records, or the ``{statusCode, message, result, isSuccess}`` envelope with
the array in ``result``.

Fetch problems (transport errors, non-success status, malformed payloads)
return None: the caller keeps its current watches.
"""

import json
import logging
from collections import Counter
from pathlib import Path
from typing import Any

import httpx
from pydantic import TypeAdapter

from drover.schemas.ingest import WatchedFolder

logger = logging.getLogger(__name__)

_FOLDER_LIST = TypeAdapter(list[WatchedFolder])


def parse_folders(payload: Any) -> list[WatchedFolder]:
    """Validate a folder payload.

    Raises:
        ValueError: If the envelope reports failure or the payload does not
            have a recognised shape.
        pydantic.ValidationError: If a folder record is invalid.
    """
    if isinstance(payload, dict):
        success = payload.get("isSuccess", payload.get("is_success", True))
        if not success:
            raise ValueError(f"Configuration source reported failure: {payload.get('message')}")
        payload = payload.get("result")
    if not isinstance(payload, list):
        raise ValueError("Expected a list of watched folders")
    return _FOLDER_LIST.validate_python(payload)


def folders_differ(current: list[WatchedFolder], new: list[WatchedFolder]) -> bool:
    """Order-independent, by-value comparison of two folder lists.

    Display names are ignored; every other field (relay credentials
    included) counts.
    """
    return Counter(f.fingerprint() for f in current) != Counter(f.fingerprint() for f in new)


class FileWatchConfigSource:
    """Reads the folder list from a local JSON file.

    Usage::

        source = FileWatchConfigSource("/etc/drover/watched_folders.json")
        folders = await source.fetch_folders()
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def __repr__(self) -> str:
        return f"FileWatchConfigSource({str(self._path)!r})"

    def load(self) -> list[WatchedFolder]:
        """Read and validate the file, raising on any problem.

        Used at startup, where a bad folder definition is a configuration
        error rather than "no update".
        """
        payload = json.loads(self._path.read_text(encoding="utf-8"))
        return parse_folders(payload)

    async def fetch_folders(self) -> list[WatchedFolder] | None:
        try:
            return self.load()
        except FileNotFoundError:
            logger.warning("Watched folders file not found: %s", self._path)
        except (OSError, ValueError) as exc:
            logger.warning("Invalid watched folders file %s: %s", self._path, exc)
        return None

    async def close(self) -> None:
        pass


class HttpWatchConfigSource:
    """Fetches the folder list from a remote configuration endpoint.

    The request carries the configured identifiers as repeated ``configIds``
    query parameters.
    """

    def __init__(
        self,
        url: str,
        config_ids: list[str] | None = None,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._config_ids = list(config_ids or [])
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    def __repr__(self) -> str:
        return f"HttpWatchConfigSource({self._url!r})"

    async def __aenter__(self) -> "HttpWatchConfigSource":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_folders(self) -> list[WatchedFolder] | None:
        params = [("configIds", config_id) for config_id in self._config_ids]
        try:
            response = await self._client.get(self._url, params=params)
            response.raise_for_status()
            return parse_folders(response.json())
        except httpx.HTTPError as exc:
            logger.warning("Failed to fetch watched folders from %s: %s", self._url, exc)
        except ValueError as exc:
            logger.warning("Malformed watched folders payload from %s: %s", self._url, exc)
        return None
