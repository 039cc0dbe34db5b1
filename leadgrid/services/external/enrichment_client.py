"""HTTP adapter for the contact enrichment vendor."""

from leadgrid.config import settings
from leadgrid.models.domain.lead_domain import ContactRecord
from leadgrid.services.external.http_base import HttpAdapter


class HttpContactEnricher(HttpAdapter):
    service = "enrichment"

    def __init__(self, base_url: str | None = None, api_key: str | None = None, **kwargs):
        super().__init__(
            base_url or settings.ENRICHMENT_API_URL,
            api_key=api_key or settings.ENRICHMENT_API_KEY,
            **kwargs,
        )

    async def resolve_domain(self, company_name: str) -> str | None:
        body = await self._request("GET", "/companies/resolve", params={"name": company_name})
        domain = (body or {}).get("domain")
        return domain.strip().lower() if domain else None

    async def fetch_contacts(self, domain: str) -> list[ContactRecord]:
        body = await self._request("GET", "/contacts", params={"domain": domain})
        return [ContactRecord.model_validate(item) for item in (body or {}).get("contacts", [])]
