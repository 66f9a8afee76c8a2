"""Async client for the remote data ingestion API.

Every call is a single request/response. Retry policy belongs to the caller;
failures come back as values (``SubmissionResult``/``bool``), not exceptions.
"""

import logging
import socket

import httpx

from drover.schemas.ingest import SubmissionResult

logger = logging.getLogger(__name__)

DEFAULT_TRANS_MODE = "GPRS"

CONTENT_PATH = (
    "DataLoggerReceiver/StationEnvDataReceives/ReceivesStationEnvData/"
    "{clientCode}/{transMode}/{hostDetail}"
)
FILE_LOG_PATH = (
    "DataLoggerReceiver/StationEnvDataReceives/ReceivesFileLogs/{clientCode}/{hostDetail}"
)
PROCESSED_CHECK_PATH = (
    "DataLoggerReceiver/StationEnvDataReceives/IsFileProcessed/{clientCode}/{hostDetail}"
)


def _parse_result(response: httpx.Response) -> SubmissionResult:
    """Deserialize a ``{statusCode, message, result, isSuccess}`` body."""
    return SubmissionResult.model_validate_json(response.content)


class RemoteSubmissionClient:
    """Async HTTP client for the ingestion endpoints.

    Usage::

        async with RemoteSubmissionClient(base_url) as client:
            url = client.content_url("C1")
            result = await client.submit_file_content(url, text)
    """

    def __init__(
        self,
        base_url: str,
        *,
        trans_mode: str = DEFAULT_TRANS_MODE,
        host_name: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/") + "/"
        self._trans_mode = trans_mode
        self._host_name = host_name or socket.gethostname()
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "RemoteSubmissionClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def host_name(self) -> str:
        return self._host_name

    # ------------------------------------------------------------------
    # URL building
    # ------------------------------------------------------------------

    def _url(self, template: str, client_code: str) -> str:
        return template.format(
            clientCode=client_code,
            transMode=self._trans_mode,
            hostDetail=self._host_name,
        )

    def content_url(self, client_code: str) -> str:
        return self._url(CONTENT_PATH, client_code)

    def file_log_url(self, client_code: str) -> str:
        return self._url(FILE_LOG_PATH, client_code)

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def check_already_processed(self, client_code: str, file_name: str) -> bool:
        """Ask the remote side whether ``file_name`` was already ingested.

        Failures count as "not processed" so a remote outage never freezes
        ingestion; they are logged as warnings.
        """
        url = self._url(PROCESSED_CHECK_PATH, client_code)
        try:
            response = await self._client.get(url, params={"fileName": file_name})
            response.raise_for_status()
            result = _parse_result(response)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "Duplicate check failed for %s (client %s), assuming not processed: %s",
                file_name,
                client_code,
                exc,
            )
            return False

        if not result.is_success:
            logger.warning(
                "Duplicate check unsuccessful for %s: %s", file_name, result.message
            )
            return False
        return bool(result.result)

    async def submit_file_content(self, url: str, content: str) -> SubmissionResult:
        """POST raw file text and return the structured result."""
        try:
            response = await self._client.post(
                url,
                content=content.encode("utf-8"),
                headers={"Content-Type": "text/plain; charset=utf-8"},
            )
        except httpx.HTTPError as exc:
            logger.warning("API call to %s failed: %s", url, exc)
            return SubmissionResult.failure(f"Request failed: {exc}")

        if not response.is_success:
            logger.warning("API call failed: %d - %s", response.status_code, response.text)
            return SubmissionResult.failure(response.text, status_code=response.status_code)

        try:
            return _parse_result(response)
        except ValueError as exc:
            logger.error("Failed to deserialize API response: %s", exc)
            return SubmissionResult.failure(
                "Malformed response body", status_code=response.status_code
            )

    async def submit_file_log(self, url: str, file_names: list[str]) -> bool:
        """Best-effort POST of the observed file names. Never raises."""
        try:
            response = await self._client.post(url, json=file_names)
            if not response.is_success:
                logger.warning("Error in file log API call -> %s", response.text)
                return False
            result = _parse_result(response)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("File log API call failed: %s", exc)
            return False

        if not result.is_success or result.status_code != 200:
            logger.warning("File log API response was not successful.")
            return False

        logger.debug("File log API response successful.")
        return True
