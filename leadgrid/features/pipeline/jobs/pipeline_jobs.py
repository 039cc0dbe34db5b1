"""
Queue workers for the rating, enrichment and CRM sync stages.
"""

from leadgrid.config import settings
from leadgrid.features.pipeline.services.crm_sync_service import CrmSyncService
from leadgrid.features.pipeline.services.enrichment_service import EnrichmentService
from leadgrid.features.pipeline.services.rating_service import RatingService
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.services.external.crm_client import HttpCrmSink
from leadgrid.services.external.enrichment_client import HttpContactEnricher
from leadgrid.services.external.scoring_client import OpenAIScorer
from leadgrid.services.queue.consumer import QueueConsumer
from leadgrid.services.queue.job_queue import (
    CRM_QUEUE,
    ENRICH_QUEUE,
    RATING_QUEUE,
    Job,
    get_queue,
)

logger = get_logger(__name__)


def _consumer(name: str, handler, policy, queue=None) -> QueueConsumer:
    options = settings.queue_options(name)
    return QueueConsumer(
        queue or get_queue(name),
        handler,
        policy=policy,
        concurrency=options["concurrency"],
        rate_per_second=options["rate_per_second"],
    )


def build_rating_consumer(service: RatingService, queue=None) -> QueueConsumer:
    async def handle(job: Job) -> None:
        await service.rate(job.data["lead_id"], attempt=job.attempt, force=bool(job.data.get("force")))

    return _consumer(RATING_QUEUE, handle, service.policy, queue)


def build_enrich_consumer(service: EnrichmentService, queue=None) -> QueueConsumer:
    async def handle(job: Job) -> None:
        await service.enrich(job.data["lead_id"], attempt=job.attempt)

    return _consumer(ENRICH_QUEUE, handle, service.policy, queue)


def build_crm_consumer(service: CrmSyncService, queue=None) -> QueueConsumer:
    async def handle(job: Job) -> None:
        await service.sync(job.data["lead_id"], attempt=job.attempt)

    return _consumer(CRM_QUEUE, handle, service.policy, queue)


async def start_rating_worker() -> None:
    logger.info("Rating worker starting", model=settings.OPENAI_MODEL)
    await build_rating_consumer(RatingService(OpenAIScorer())).run()


async def start_enrich_worker() -> None:
    enricher = HttpContactEnricher()
    try:
        await build_enrich_consumer(EnrichmentService(enricher)).run()
    finally:
        await enricher.close()


async def start_crm_worker() -> None:
    sink = HttpCrmSink()
    try:
        await build_crm_consumer(CrmSyncService(sink)).run()
    finally:
        await sink.close()
