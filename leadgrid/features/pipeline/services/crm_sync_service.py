"""
CRM sync consumer: pushes a lead with its rating and contacts to the CRM
and keeps an automation log of every terminal outcome.
"""

from dataclasses import asdict
from typing import Any

from leadgrid.config import settings
from leadgrid.features.pipeline.repository.pipeline_repository import PipelineRepository
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.models.domain.lead_domain import CrmSyncStatus, Lead, Stage
from leadgrid.services.external.protocols import CrmSink
from leadgrid.services.queue.retry_policy import RetryPolicy, policy_for

logger = get_logger(__name__)

ACTION_CRM_SYNC = "crm_sync"


def build_payload(
    lead: Lead, rating: dict[str, Any] | None, contacts: list[dict[str, Any]]
) -> dict[str, Any]:
    data = asdict(lead)
    data.pop("raw_data", None)
    data["rating_result"] = (
        {key: rating.get(key) for key in ("overall_rating", "suggestion", "reasoning")}
        if rating
        else None
    )
    data["contacts"] = contacts
    return data


class CrmSyncService:
    def __init__(self, sink: CrmSink, repository=None, policy: RetryPolicy | None = None):
        self.sink = sink
        self.repository = repository or PipelineRepository
        self.policy = policy or policy_for("crm", settings.MAX_JOB_ATTEMPTS)

    async def _claim(self, lead_id: str, attempt: int) -> bool:
        if await self.repository.transition(
            lead_id, Stage.CRM, [CrmSyncStatus.PENDING], CrmSyncStatus.PROCESSING, count_attempt=True
        ):
            return True
        state = await self.repository.get_stage(lead_id, Stage.CRM)
        if state is not None and state.status == CrmSyncStatus.PROCESSING and attempt > 1:
            logger.warning("Taking over stale CRM claim", lead_id=lead_id, attempt=attempt)
            return True
        logger.info(
            "CRM sync not claimable", lead_id=lead_id, status=state.status if state else None
        )
        return False

    async def sync(self, lead_id: str, attempt: int = 1) -> str:
        if not await self._claim(lead_id, attempt):
            return "skipped"

        try:
            lead = await self.repository.get_lead(lead_id)
            if lead is None:
                raise LookupError(f"Lead not found: {lead_id}")
            rating = await self.repository.get_rating(lead_id)
            contacts = await self.repository.list_contacts(lead_id)
            external_ref = await self.sink.push(build_payload(lead, rating, contacts))
        except Exception as exc:
            await self._handle_failure(lead_id, exc, attempt)

        await self.repository.transition(
            lead_id,
            Stage.CRM,
            [CrmSyncStatus.PROCESSING],
            CrmSyncStatus.SYNCED,
            external_ref=external_ref,
        )
        await self.repository.log_automation(lead_id, ACTION_CRM_SYNC, "success")
        logger.info("Lead synced to CRM", lead_id=lead_id, external_ref=external_ref)
        return CrmSyncStatus.SYNCED.value

    async def _handle_failure(self, lead_id: str, exc: Exception, attempt: int) -> None:
        if self.policy.decide(exc, attempt).should_retry:
            await self.repository.transition(
                lead_id,
                Stage.CRM,
                [CrmSyncStatus.PROCESSING],
                CrmSyncStatus.PENDING,
                error=str(exc),
            )

        async def mark_failed(message: str) -> None:
            await self.repository.transition(
                lead_id, Stage.CRM, [CrmSyncStatus.PROCESSING], CrmSyncStatus.FAILED, error=message
            )
            await self.repository.log_automation(lead_id, ACTION_CRM_SYNC, "failed", message)
            logger.error("CRM sync failed", lead_id=lead_id, error=message)

        await self.policy.apply_failure(exc, attempt, on_terminal=mark_failed)
