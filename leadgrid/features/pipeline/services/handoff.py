"""Queue hand-off between pipeline stages."""

from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.models.domain.lead_domain import Stage
from leadgrid.services.queue.job_queue import CRM_QUEUE, ENRICH_QUEUE, RATING_QUEUE, get_queue

logger = get_logger(__name__)

STAGE_QUEUES: dict[Stage, str] = {
    Stage.RATING: RATING_QUEUE,
    Stage.ENRICH: ENRICH_QUEUE,
    Stage.CRM: CRM_QUEUE,
}


def stage_job_id(stage: Stage | str, lead_id: str) -> str:
    """One live job per (stage, lead); a second enqueue while it exists is a no-op."""
    return f"{Stage(stage).value}-{lead_id}"


def queue_for(stage: Stage | str):
    return get_queue(STAGE_QUEUES[Stage(stage)])


async def hand_off(queue, stage: Stage | str, lead_id: str) -> str | None:
    job_id = await queue.enqueue({"lead_id": lead_id}, job_id=stage_job_id(stage, lead_id))
    logger.debug("Lead handed off", lead_id=lead_id, stage=Stage(stage).value, job_id=job_id)
    return job_id
