"""HTTP adapter for the CRM the pipeline syncs leads into."""

from typing import Any

from leadgrid.config import settings
from leadgrid.services.external.errors import PermanentError
from leadgrid.services.external.http_base import HttpAdapter


class HttpCrmSink(HttpAdapter):
    service = "crm"

    def __init__(self, base_url: str | None = None, api_key: str | None = None, **kwargs):
        super().__init__(
            base_url or settings.CRM_API_URL,
            api_key=api_key or settings.CRM_API_KEY,
            **kwargs,
        )

    async def push(self, lead: dict[str, Any]) -> str:
        body = await self._request("POST", "/leads", json=lead)
        record_id = (body or {}).get("id")
        if not record_id:
            raise PermanentError("CRM response has no record id", service=self.service)
        return str(record_id)
