"""
HTTP adapter for the place extraction service.

The service performs the actual map search for one query around one
coordinate and returns raw place records.
"""

from typing import Any

from leadgrid.config import settings
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.services.external.errors import PermanentError
from leadgrid.services.external.http_base import HttpAdapter

logger = get_logger(__name__)


class HttpExtractor(HttpAdapter):
    service = "extractor"

    def __init__(self, base_url: str | None = None, **kwargs):
        kwargs.setdefault("timeout", settings.EXTRACTOR_TIMEOUT_SECONDS)
        super().__init__(base_url or settings.EXTRACTOR_URL, **kwargs)

    async def extract(
        self, query: str, coordinates: tuple[float, float] | None, limit: int
    ) -> list[dict[str, Any]]:
        payload = {
            "query": query,
            "limit": limit,
            "coordinates": (
                {"lat": coordinates[0], "lng": coordinates[1]} if coordinates else None
            ),
        }
        body = await self._request("POST", "/extract", json=payload)
        results = (body or {}).get("results")
        if results is None:
            raise PermanentError("Extractor response has no results field", service=self.service)

        logger.debug(
            "Extraction finished", query=query, coordinates=coordinates, results=len(results)
        )
        return [item for item in results if isinstance(item, dict)]
