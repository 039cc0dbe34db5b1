"""
Crawl orchestrator: runs one task point by point.

Progress lives entirely in the search_points table. A restarted run asks
the store for points still pending or failed and continues from there,
so a crash costs at most the point that was in flight.

Cancellation is polled once per point, before the point starts; an
extraction call already in progress is never interrupted.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from leadgrid.config import settings
from leadgrid.db.helpers import DatabaseError
from leadgrid.features.crawl.domain.lead_normalizer import SeenSet, is_valid, normalize
from leadgrid.features.crawl.grid.planner import plan_points
from leadgrid.features.crawl.repository.lead_repository import LeadRepository
from leadgrid.features.crawl.repository.search_point_repository import (
    PointsAlreadyPlannedError,
    SearchPointRepository,
)
from leadgrid.features.crawl.repository.task_repository import AggregateRepository, TaskRepository
from leadgrid.features.crawl.services.aggregate_tracker import AggregateTracker
from leadgrid.infrastructure.observability.logging import bind_job_context, get_logger
from leadgrid.models.domain.crawl_domain import (
    TERMINAL_TASK_STATUSES,
    CrawlRunResult,
    GeoConfig,
    GridPoint,
    SubTaskOutcome,
    Task,
    TaskStatus,
)
from leadgrid.services.external.protocols import Extractor
from leadgrid.services.queue.job_queue import RATING_QUEUE, get_queue
from leadgrid.services.queue.retry_policy import RetryPolicy, policy_for

logger = get_logger(__name__)

PARENT_TERMINATED = "Parent aggregate task terminated"


class CrawlJobError(Exception):
    """Raised when a crawl job cannot be admitted."""

    def __init__(self, message: str, task_id: str | None = None, recoverable: bool = False):
        super().__init__(message)
        self.task_id = task_id
        self.recoverable = recoverable


def rating_job_id(lead_id: str) -> str:
    return f"rating-{lead_id}"


def task_id_for_job(job_id: str) -> str:
    """Stable task id for a crawl job submitted without one, so redeliveries share a task."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"leadgrid:crawl-job:{job_id}"))


class CrawlOrchestrator:
    def __init__(
        self,
        extractor: Extractor,
        tasks=None,
        aggregates=None,
        points=None,
        leads=None,
        tracker: AggregateTracker | None = None,
        rating_queue=None,
        policy: RetryPolicy | None = None,
        inter_point_delay: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.extractor = extractor
        self.tasks = tasks or TaskRepository
        self.aggregates = aggregates or AggregateRepository
        self.points = points or SearchPointRepository
        self.leads = leads or LeadRepository
        self.tracker = tracker or AggregateTracker(self.aggregates)
        self.rating_queue = rating_queue or get_queue(RATING_QUEUE)
        self.policy = policy or policy_for("crawl", settings.MAX_JOB_ATTEMPTS)
        self.inter_point_delay = (
            settings.CRAWL_INTER_POINT_DELAY_SECONDS
            if inter_point_delay is None
            else inter_point_delay
        )
        self._sleep = sleep

    async def run(
        self, data: dict[str, Any], attempt: int = 1, job_id: str | None = None
    ) -> CrawlRunResult:
        """
        Execute (or resume) the crawl described by a queue job.

        Args:
            data: job payload; `task_id` for an existing task, otherwise
                `query` plus optional `geolocation` and `limit`
            attempt: 1-based delivery attempt of the job
            job_id: queue job id; required when the payload has no `task_id`

        Raises:
            The run's exception after recording it, whether or not the
            queue will retry.
        """
        task = await self._load_task(data, job_id)
        bind_job_context(task_id=task.id)

        # A task already running when picked up is being resumed after an interruption.
        resumed = task.status == TaskStatus.RUNNING
        skip_reason = await self._admit(task)
        if skip_reason:
            logger.info("Crawl task skipped", task_id=task.id, reason=skip_reason)
            return CrawlRunResult(task_id=task.id, skipped=True, skip_reason=skip_reason)

        try:
            return await self._execute(task, resumed)
        except Exception as exc:
            logger.error("Crawl task run failed", task_id=task.id, attempt=attempt, error=str(exc))
            await self.policy.apply_failure(
                exc, attempt, on_terminal=lambda message: self._fail(task, message)
            )

    async def _load_task(self, data: dict[str, Any], job_id: str | None) -> Task:
        task_id = data.get("task_id")
        if task_id:
            task = await self.tasks.get_task(task_id)
            if task is None:
                raise CrawlJobError(f"Task {task_id} not found", task_id=task_id)
            return task

        query = (data.get("query") or "").strip()
        if not query:
            raise CrawlJobError("Crawl job has neither task_id nor query")
        if not job_id:
            raise CrawlJobError("Crawl job without task_id needs a job id")

        task_id = task_id_for_job(job_id)
        task = await self.tasks.get_task(task_id)
        if task is not None:
            return task

        config = {"geolocation": data["geolocation"]} if data.get("geolocation") else {}
        await self.tasks.create_task(
            task_id=task_id,
            name=data.get("name") or query,
            query=query,
            source=settings.CRAWL_SOURCE,
            target_count=data.get("limit") or settings.CRAWL_DEFAULT_LIMIT,
            config=config,
        )
        logger.info("Crawl task created from job", task_id=task_id, job_id=job_id, query=query)
        return await self.tasks.get_task(task_id)

    async def _admit(self, task: Task) -> str | None:
        """Return a skip reason, or None once the task is marked running."""
        if task.status in TERMINAL_TASK_STATUSES:
            return f"task already {task.status}"

        if task.aggregate_task_id:
            parent_status = await self.aggregates.get_status(task.aggregate_task_id)
            if parent_status in TERMINAL_TASK_STATUSES:
                await self.tasks.cancel(task.id, PARENT_TERMINATED)
                return PARENT_TERMINATED

        if not await self.tasks.mark_running(task.id):
            return "task no longer runnable"
        return None

    async def _plan(self, task: Task) -> None:
        if await self.points.has_points(task.id):
            return
        geo = GeoConfig.from_task_config(task.config)
        grid = plan_points(geo, settings.CRAWL_DEFAULT_STEP)
        if grid is None:
            # Unbounded search: one point without coordinates.
            grid = [GridPoint(sequence=1, latitude=None, longitude=None)]
        try:
            await self.points.create_points(task.id, grid)
        except PointsAlreadyPlannedError:
            logger.info("Search points planned concurrently", task_id=task.id)

    async def _execute(self, task: Task, resumed: bool) -> CrawlRunResult:
        result = CrawlRunResult(task_id=task.id)

        await self._plan(task)
        cursor = await self.points.pending_or_retryable(task.id, include_interrupted=resumed)
        total_points = await self.points.count_points(task.id)
        seen = SeenSet(await self.leads.dedup_keys(task.id))

        geo = GeoConfig.from_task_config(task.config)
        region = geo.city if geo else None
        limit = task.target_count or settings.CRAWL_DEFAULT_LIMIT

        logger.info(
            "Crawl task started",
            task_id=task.id,
            resumed=resumed,
            remaining_points=len(cursor),
            total_points=total_points,
        )

        for index, point in enumerate(cursor):
            if await self._is_cancelled(task):
                result.cancelled = True
                logger.info("Crawl task cancelled", task_id=task.id, next_point=point.sequence)
                return result

            await self.points.mark_running(task.id, point.sequence)
            try:
                items = await self.extractor.extract(task.query, point.coordinates, limit)
                saved = await self._save_items(task, items, seen, result, region)
                await self.points.mark_completed(task.id, point.sequence, len(items), saved)
                logger.info(
                    "Search point completed",
                    task_id=task.id,
                    point=point.sequence,
                    found=len(items),
                    saved=saved,
                )
            except Exception as exc:
                logger.warning(
                    "Search point failed", task_id=task.id, point=point.sequence, error=str(exc)
                )
                await self.points.mark_failed(task.id, point.sequence, str(exc))

            result.points_visited += 1
            await self._update_progress(task.id, total_points)

            if index < len(cursor) - 1 and self.inter_point_delay > 0:
                await self._sleep(self.inter_point_delay)

        await self._finalize(task, result)
        return result

    async def _save_items(
        self,
        task: Task,
        items: list[dict[str, Any]],
        seen: SeenSet,
        result: CrawlRunResult,
        region: str | None,
    ) -> int:
        saved = 0
        result.scraped += len(items)
        for raw in items:
            if not is_valid(raw):
                result.invalid += 1
                await self.tasks.add_lead_counts(task.id, failed=1)
                continue
            if not seen.add(raw):
                result.duplicates += 1
                continue

            try:
                lead_id = await self.leads.save_lead(task.id, normalize(raw, region), task.source)
            except DatabaseError as e:
                logger.error("Lead save failed", task_id=task.id, error=str(e))
                await self.tasks.add_lead_counts(task.id, failed=1)
                continue

            saved += 1
            result.saved += 1
            await self.tasks.add_lead_counts(task.id, saved=1)
            try:
                await self.rating_queue.enqueue({"lead_id": lead_id}, job_id=rating_job_id(lead_id))
            except Exception as e:
                logger.error("Failed to enqueue rating job", lead_id=lead_id, error=str(e))
        return saved

    async def _is_cancelled(self, task: Task) -> bool:
        if await self.tasks.get_status(task.id) == TaskStatus.CANCELLED:
            return True
        if task.aggregate_task_id:
            parent_status = await self.aggregates.get_status(task.aggregate_task_id)
            if parent_status == TaskStatus.CANCELLED:
                await self.tasks.cancel(task.id, PARENT_TERMINATED)
                return True
        return False

    async def _update_progress(self, task_id: str, total_points: int) -> None:
        if not total_points:
            return
        stats = await self.points.point_stats(task_id)
        done = stats.get("completed", 0) + stats.get("failed", 0)
        await self.tasks.update_progress(task_id, round(100 * done / total_points))

    async def _finalize(self, task: Task, result: CrawlRunResult) -> None:
        if await self.tasks.get_status(task.id) == TaskStatus.CANCELLED:
            result.cancelled = True
            logger.info("Crawl task cancelled before finalization", task_id=task.id)
            return

        if not await self.tasks.mark_completed(task.id):
            logger.warning("Crawl task could not be completed", task_id=task.id)
            return

        logger.info(
            "Crawl task completed",
            task_id=task.id,
            points_visited=result.points_visited,
            scraped=result.scraped,
            saved=result.saved,
            duplicates=result.duplicates,
            invalid=result.invalid,
        )
        if task.aggregate_task_id:
            await self.tracker.on_sub_task_finished(task.aggregate_task_id, SubTaskOutcome.COMPLETED)

    async def _fail(self, task: Task, message: str) -> None:
        if not await self.tasks.mark_failed(task.id, message):
            logger.info("Crawl task already terminal, failure not recorded", task_id=task.id)
            return
        logger.error("Crawl task failed", task_id=task.id, error=message)
        if task.aggregate_task_id:
            await self.tracker.on_sub_task_finished(task.aggregate_task_id, SubTaskOutcome.FAILED)
