"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, opens the shared resources (database pool, Redis) and runs the
matching queue consumer until SIGINT/SIGTERM.
"""

import asyncio
import os
import signal
import sys
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

from leadgrid.config import settings
from leadgrid.db.pool import db_pool
from leadgrid.features.crawl.jobs.crawl_job import start_crawl_worker
from leadgrid.features.pipeline.jobs.pipeline_jobs import (
    start_crm_worker,
    start_enrich_worker,
    start_rating_worker,
)
from leadgrid.infrastructure.observability.logging import get_logger, setup_logging
from leadgrid.services.infrastructure.redis_client import fast_redis

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]


async def start_all_workers() -> None:
    """Run every consumer in one process (handy for local development)."""
    await asyncio.gather(
        start_crawl_worker(),
        start_rating_worker(),
        start_enrich_worker(),
        start_crm_worker(),
    )


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "crawl": start_crawl_worker,
    "rating": start_rating_worker,
    "enrich": start_enrich_worker,
    "crm": start_crm_worker,
    "all": start_all_workers,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "all").strip().lower()


@asynccontextmanager
async def worker_resources():
    """Open the database pool and Redis for the lifetime of a worker."""
    await db_pool.initialize()
    try:
        await fast_redis.initialize()
        try:
            yield
        finally:
            await fast_redis.close()
    finally:
        await db_pool.close()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name, environment=settings.environment)
    async with worker_resources():
        await JOB_REGISTRY[name]()


async def _serve(job_name: str) -> None:
    task = asyncio.create_task(run_worker(job_name))
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, task.cancel)
    try:
        await task
    except asyncio.CancelledError:
        logger.info("Background worker stopped", job=job_name)


def main() -> None:
    """CLI entrypoint."""
    setup_logging(settings.LOG_LEVEL)
    job_name = _resolve_job_name()
    asyncio.run(_serve(job_name))


if __name__ == "__main__":
    main()
