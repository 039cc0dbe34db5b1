"""
Enrichment consumer: finds the company's domain and contacts, then hands
the lead to CRM sync whatever the outcome.
"""

from leadgrid.config import settings
from leadgrid.features.pipeline.repository.pipeline_repository import PipelineRepository
from leadgrid.features.pipeline.services.handoff import hand_off, queue_for
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.models.domain.lead_domain import EnrichStatus, Stage
from leadgrid.services.external.protocols import ContactEnricher
from leadgrid.services.queue.retry_policy import RetryPolicy, policy_for

logger = get_logger(__name__)

CONTACT_SOURCE = "enrichment"
UNRESOLVED_DOMAIN = "Unable to resolve company domain"


class EnrichmentService:
    def __init__(
        self,
        enricher: ContactEnricher,
        repository=None,
        crm_queue=None,
        policy: RetryPolicy | None = None,
    ):
        self.enricher = enricher
        self.repository = repository or PipelineRepository
        self.crm_queue = crm_queue or queue_for(Stage.CRM)
        self.policy = policy or policy_for("enrich", settings.MAX_JOB_ATTEMPTS)

    async def enrich(self, lead_id: str, attempt: int = 1) -> str:
        state = await self.repository.get_stage(lead_id, Stage.ENRICH)
        if state is None:
            logger.warning("Enrich stage missing for lead", lead_id=lead_id)
            return "skipped"
        if state.status == EnrichStatus.ENRICHED:
            logger.info("Lead already enriched", lead_id=lead_id)
            await hand_off(self.crm_queue, Stage.CRM, lead_id)
            return EnrichStatus.ENRICHED.value
        if state.status != EnrichStatus.PENDING:
            logger.info("Enrichment not pending", lead_id=lead_id, status=state.status)
            return "skipped"

        lead = await self.repository.get_lead(lead_id)
        if lead is None:
            logger.warning("Lead not found for enrichment", lead_id=lead_id)
            return "skipped"

        try:
            domain = lead.domain or await self.enricher.resolve_domain(lead.company_name)
            if not domain:
                await self._finish(lead_id, EnrichStatus.FAILED, error=UNRESOLVED_DOMAIN)
                return EnrichStatus.FAILED.value

            contacts = await self.enricher.fetch_contacts(domain)
            contacts = [
                contact.model_copy(update={"is_primary": index == 0})
                for index, contact in enumerate(contacts)
            ]
            added = await self.repository.add_contacts(lead_id, contacts, CONTACT_SOURCE)
        except Exception as exc:

            async def mark_failed(message: str) -> None:
                await self._finish(lead_id, EnrichStatus.FAILED, error=message)

            await self.policy.apply_failure(exc, attempt, on_terminal=mark_failed)

        logger.info("Lead enriched", lead_id=lead_id, domain=domain, contacts=added)
        await self._finish(lead_id, EnrichStatus.ENRICHED)
        return EnrichStatus.ENRICHED.value

    async def _finish(self, lead_id: str, status: EnrichStatus, error: str | None = None) -> None:
        moved = await self.repository.transition(
            lead_id, Stage.ENRICH, [EnrichStatus.PENDING], status, error=error, count_attempt=True
        )
        if status == EnrichStatus.FAILED:
            logger.warning("Enrichment failed", lead_id=lead_id, error=error)
        if moved:
            await hand_off(self.crm_queue, Stage.CRM, lead_id)
