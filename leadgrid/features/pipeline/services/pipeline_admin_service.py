"""
Operator operations on the lead pipeline: re-arming failed stages,
skipping leads, and stage read models.
"""

from typing import Any

from leadgrid.features.pipeline.domain.transitions import REARMABLE, InvalidTransition, sources_for
from leadgrid.features.pipeline.repository.pipeline_repository import PipelineRepository
from leadgrid.features.pipeline.services.handoff import hand_off, queue_for
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.models.domain.lead_domain import STAGE_STATUS_TYPES, Stage

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


class PipelineAdminService:
    def __init__(self, repository=None, queues: dict[Stage, Any] | None = None):
        self.repository = repository or PipelineRepository
        self._queues = queues or {}

    def _queue(self, stage: Stage):
        if stage not in self._queues:
            self._queues[stage] = queue_for(stage)
        return self._queues[stage]

    async def rearm(
        self,
        stage: Stage | str,
        lead_ids: list[str] | None = None,
        status: str | None = None,
    ) -> int:
        """
        Send failed (and, for rating, pending_config) leads back to pending
        and enqueue a fresh job for each.

        Args:
            stage: pipeline stage to re-arm
            lead_ids: restrict to these leads; all matching leads when None
            status: restrict to one source status

        Returns:
            Number of leads re-armed
        """
        stage = Stage(stage)
        allowed = REARMABLE[stage]
        if status is not None:
            if status not in allowed:
                raise InvalidTransition(stage, status, "pending")
            statuses = [status]
        else:
            statuses = sorted(allowed)

        rearmed = await self.repository.rearm(stage, statuses, lead_ids)

        queue = self._queue(stage)
        for lead_id in rearmed:
            try:
                await hand_off(queue, stage, lead_id)
            except Exception as e:
                logger.error("Failed to enqueue re-armed lead", lead_id=lead_id, stage=stage.value, error=str(e))

        logger.info("Leads re-armed", stage=stage.value, statuses=statuses, count=len(rearmed))
        return len(rearmed)

    async def skip(self, stage: Stage | str, lead_ids: list[str]) -> int:
        """Mark leads as deliberately not processed in a stage that supports skipping."""
        stage = Stage(stage)
        sources = sources_for(stage, "skipped")
        if not sources:
            raise InvalidTransition(stage, "*", "skipped")

        skipped = 0
        for lead_id in lead_ids:
            if await self.repository.transition(lead_id, stage, sources, "skipped"):
                skipped += 1
        logger.info("Leads skipped", stage=stage.value, requested=len(lead_ids), skipped=skipped)
        return skipped

    async def list_leads_by_stage(
        self,
        stage: Stage | str,
        status: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict[str, Any]:
        stage = Stage(stage)
        if status is not None:
            status = STAGE_STATUS_TYPES[stage](status).value
        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        rows, total = await self.repository.list_leads_by_stage(
            stage, status=status, limit=page_size, offset=(page - 1) * page_size
        )
        return {"items": rows, "total": total, "page": page, "page_size": page_size}

    async def stage_counts(self, stage: Stage | str) -> dict[str, int]:
        stage = Stage(stage)
        counts = {status.value: 0 for status in STAGE_STATUS_TYPES[stage]}
        counts.update(await self.repository.stage_counts(stage))
        return counts
