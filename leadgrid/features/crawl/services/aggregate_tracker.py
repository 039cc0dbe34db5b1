"""
Aggregate progress tracker.

Rolls sub-task outcomes into their aggregate. The counter increment and
the terminal transition are two separate atomic statements; the second is
a compare-and-set so exactly one caller finalizes, however many finish at
the same moment.
"""

from leadgrid.features.crawl.repository.task_repository import AggregateRepository
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.models.domain.crawl_domain import AggregateProgress, SubTaskOutcome, TaskStatus

logger = get_logger(__name__)


class AggregateTracker:
    def __init__(self, aggregates=None):
        self.aggregates = aggregates or AggregateRepository

    async def on_sub_task_finished(
        self, aggregate_id: str, outcome: SubTaskOutcome | str
    ) -> AggregateProgress | None:
        outcome = SubTaskOutcome(outcome)
        counts = await self.aggregates.increment_counter(aggregate_id, outcome)

        if counts is None:
            aggregate = await self.aggregates.get_aggregate(aggregate_id)
            if aggregate is None:
                logger.warning("Aggregate task not found", aggregate_task_id=aggregate_id)
                return None
            logger.warning(
                "Aggregate counters already saturated, outcome ignored",
                aggregate_task_id=aggregate_id,
                outcome=outcome.value,
            )
            counts = {
                "total_sub_tasks": aggregate.total_sub_tasks,
                "completed_sub_tasks": aggregate.completed_sub_tasks,
                "failed_sub_tasks": aggregate.failed_sub_tasks,
                "status": aggregate.status,
            }

        progress = AggregateProgress(
            aggregate_task_id=aggregate_id,
            total_sub_tasks=counts["total_sub_tasks"],
            completed_sub_tasks=counts["completed_sub_tasks"],
            failed_sub_tasks=counts["failed_sub_tasks"],
            status=counts["status"],
        )

        if progress.completed_sub_tasks + progress.failed_sub_tasks >= progress.total_sub_tasks:
            final_status = (
                TaskStatus.COMPLETED if progress.completed_sub_tasks > 0 else TaskStatus.FAILED
            )
            if await self.aggregates.finalize_if_open(aggregate_id, final_status):
                progress.status = final_status.value
                progress.finalized = True
                logger.info(
                    "Aggregate task finished",
                    aggregate_task_id=aggregate_id,
                    status=final_status.value,
                    completed=progress.completed_sub_tasks,
                    failed=progress.failed_sub_tasks,
                )

        logger.debug(
            "Aggregate progress recorded",
            aggregate_task_id=aggregate_id,
            outcome=outcome.value,
            completed=progress.completed_sub_tasks,
            failed=progress.failed_sub_tasks,
            total=progress.total_sub_tasks,
        )
        return progress
