"""
Startup recovery for crawl tasks interrupted by a crash.

A task can only legitimately be `running` while an orchestrator holds it,
so any running task seen at startup is re-submitted. The orchestrator's
resume cursor takes care of skipping finished points.
"""

from leadgrid.features.crawl.repository.task_repository import TaskRepository
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.services.queue.job_queue import CRAWL_QUEUE, HIGHEST_PRIORITY, get_queue

logger = get_logger(__name__)


def recovery_job_id(task_id: str) -> str:
    return f"recovery-{task_id}"


class RecoveryService:
    def __init__(self, tasks=None, queue=None):
        self.tasks = tasks or TaskRepository
        self.queue = queue or get_queue(CRAWL_QUEUE)

    async def recover_interrupted_tasks(self) -> int:
        """Re-enqueue every running task at top priority; returns how many were queued."""
        running = await self.tasks.list_running_tasks()
        if not running:
            logger.info("No interrupted crawl tasks found")
            return 0

        recovered = 0
        for task in running:
            try:
                job_id = await self.queue.enqueue(
                    {"task_id": task.id},
                    priority=HIGHEST_PRIORITY,
                    job_id=recovery_job_id(task.id),
                )
            except Exception as e:
                logger.error("Failed to re-enqueue interrupted task", task_id=task.id, error=str(e))
                continue

            if job_id is None:
                logger.info("Recovery job already queued", task_id=task.id)
                continue
            recovered += 1
            logger.info("Interrupted task re-enqueued", task_id=task.id, job_id=job_id)

        logger.info("Crawl recovery finished", running=len(running), recovered=recovered)
        return recovered
