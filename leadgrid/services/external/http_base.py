"""
Shared httpx plumbing for the HTTP collaborator adapters.
"""

from typing import Any

import httpx

from leadgrid.config import settings
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.services.external.errors import PermanentError, RetryableError

logger = get_logger(__name__)

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class HttpAdapter:
    """Owns one AsyncClient and maps HTTP failures onto retryable/permanent errors."""

    service = "http"

    def __init__(
        self,
        base_url: str | None,
        api_key: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        if not base_url:
            raise PermanentError(f"{self.service} base URL not configured", service=self.service)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or settings.EXTERNAL_HTTP_TIMEOUT_SECONDS),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Send a request and return the decoded JSON body.

        Transport errors (timeouts, connection failures) propagate as httpx
        exceptions; the retry policy classifies them as transient.
        """
        response = await self._client.request(
            method, f"{self.base_url}{path}", headers=self._headers(), **kwargs
        )
        if response.status_code in RETRY_STATUS_CODES:
            logger.warning(
                f"{self.service} transient HTTP error",
                status_code=response.status_code,
                path=path,
            )
            raise RetryableError(
                f"{self.service} returned HTTP {response.status_code}",
                service=self.service,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise PermanentError(
                f"{self.service} returned HTTP {response.status_code}: {response.text[:200]}",
                service=self.service,
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()
