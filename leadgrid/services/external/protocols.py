"""
Interfaces of the external collaborators the core depends on.

Production adapters live next to this module; tests substitute in-memory
fakes that satisfy the same protocols.
"""

from typing import Any, Protocol

from leadgrid.models.domain.lead_domain import ContactRecord, ScoreResult


class Extractor(Protocol):
    async def extract(
        self, query: str, coordinates: tuple[float, float] | None, limit: int
    ) -> list[dict[str, Any]]:
        """Raw place records found around `coordinates` (anywhere when None)."""
        ...


class Scorer(Protocol):
    async def score(self, context: dict[str, Any]) -> ScoreResult | None:
        """Rate a lead; None means no scoring rule applies to it."""
        ...


class ContactEnricher(Protocol):
    async def resolve_domain(self, company_name: str) -> str | None: ...

    async def fetch_contacts(self, domain: str) -> list[ContactRecord]: ...


class CrmSink(Protocol):
    async def push(self, lead: dict[str, Any]) -> str:
        """Create or update the lead in the CRM; returns the vendor record id."""
        ...
