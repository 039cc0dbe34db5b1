"""
Crawl worker: recovers interrupted tasks, then consumes the crawl queue.
"""

from leadgrid.config import settings
from leadgrid.features.crawl.services.orchestrator import CrawlOrchestrator
from leadgrid.features.crawl.services.recovery_service import RecoveryService
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.services.external.extractor_client import HttpExtractor
from leadgrid.services.queue.consumer import QueueConsumer
from leadgrid.services.queue.job_queue import CRAWL_QUEUE, Job, get_queue

logger = get_logger(__name__)


def build_crawl_consumer(orchestrator: CrawlOrchestrator, queue=None) -> QueueConsumer:
    async def handle(job: Job) -> None:
        await orchestrator.run(job.data, attempt=job.attempt, job_id=job.id)

    options = settings.queue_options(CRAWL_QUEUE)
    return QueueConsumer(
        queue or get_queue(CRAWL_QUEUE),
        handle,
        policy=orchestrator.policy,
        concurrency=options["concurrency"],
        rate_per_second=options["rate_per_second"],
    )


async def start_crawl_worker() -> None:
    extractor = HttpExtractor()
    try:
        recovered = await RecoveryService().recover_interrupted_tasks()
        logger.info("Crawl worker starting", recovered=recovered)
        consumer = build_crawl_consumer(CrawlOrchestrator(extractor))
        await consumer.run()
    finally:
        await extractor.close()
