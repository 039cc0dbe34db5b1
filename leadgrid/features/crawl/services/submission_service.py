"""
Crawl task operations exposed to operators: submission, cancellation and
read models for tasks and aggregate batches.
"""

import uuid
from dataclasses import asdict
from typing import Any

import pydantic

from leadgrid.config import settings
from leadgrid.features.crawl.grid.planner import (
    GridConfigError,
    list_places,
    plan_points,
    resolve_search_area,
)
from leadgrid.features.crawl.repository.search_point_repository import SearchPointRepository
from leadgrid.features.crawl.repository.task_repository import AggregateRepository, TaskRepository
from leadgrid.features.crawl.services.aggregate_tracker import AggregateTracker
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.models.domain.crawl_domain import GeoConfig, SubTaskOutcome, TaskStatus
from leadgrid.services.queue.job_queue import CRAWL_QUEUE, DEFAULT_PRIORITY, get_queue

logger = get_logger(__name__)

AGGREGATE_DEFAULT_LIMIT = 99
AGGREGATE_DEFAULT_STEP = 0.1
AGGREGATE_DEFAULT_RADIUS = 0.2
MAX_PAGE_SIZE = 100


class SubmissionError(Exception):
    """Raised when a crawl or aggregate submission is rejected."""

    def __init__(self, message: str, field: str | None = None, recoverable: bool = False):
        super().__init__(message)
        self.field = field
        self.recoverable = recoverable


def crawl_job_id(task_id: str) -> str:
    return f"crawl-{task_id}"


def aggregate_job_id(aggregate_id: str, task_id: str) -> str:
    return f"aggregate-{aggregate_id}-{task_id}"


def _page(page: int, page_size: int) -> tuple[int, int]:
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
    return page_size, (page - 1) * page_size


class CrawlSubmissionService:
    def __init__(self, tasks=None, aggregates=None, points=None, queue=None, tracker=None):
        self.tasks = tasks or TaskRepository
        self.aggregates = aggregates or AggregateRepository
        self.points = points or SearchPointRepository
        self.queue = queue or get_queue(CRAWL_QUEUE)
        self.tracker = tracker or AggregateTracker(self.aggregates)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_crawl(
        self,
        query: str,
        geo_config: dict[str, Any] | None = None,
        limit: int | None = None,
        name: str | None = None,
    ) -> str:
        """Create a pending task and enqueue its crawl job; returns the task id."""
        query = (query or "").strip()
        if not query:
            raise SubmissionError("query is required", field="query")
        if geo_config:
            self._validate_geo(geo_config)

        task_id = str(uuid.uuid4())
        await self.tasks.create_task(
            task_id=task_id,
            name=name or query,
            query=query,
            source=settings.CRAWL_SOURCE,
            target_count=limit or settings.CRAWL_DEFAULT_LIMIT,
            config={"geolocation": geo_config} if geo_config else {},
        )
        await self.queue.enqueue(
            {"task_id": task_id}, priority=DEFAULT_PRIORITY, job_id=crawl_job_id(task_id)
        )
        logger.info("Crawl task submitted", task_id=task_id, query=query)
        return task_id

    async def submit_aggregate(
        self,
        name: str,
        keywords: list[str],
        targets: list[dict[str, Any]],
        description: str | None = None,
        limit: int = AGGREGATE_DEFAULT_LIMIT,
        step: float = AGGREGATE_DEFAULT_STEP,
        radius: float = AGGREGATE_DEFAULT_RADIUS,
    ) -> str:
        """
        Fan a keyword x city batch out into one crawl task per pair.

        Each target is {"country": ..., "city": ...}, optionally with its own
        "radius". Returns the aggregate id.
        """
        keywords = [keyword.strip() for keyword in keywords if keyword and keyword.strip()]
        if not keywords or not targets:
            raise SubmissionError("An aggregate needs at least one keyword and one target")
        for target in targets:
            if not target.get("country") or not target.get("city"):
                raise SubmissionError("Each target needs a country and a city", field="targets")
            if resolve_search_area({"country": target["country"], "city": target["city"]}) is None:
                raise SubmissionError(
                    f"Unknown place: {target['city']}, {target['country']}", field="targets"
                )

        aggregate_id = str(uuid.uuid4())
        sub_tasks = []
        for keyword in keywords:
            for target in targets:
                geo = {
                    "country": target["country"],
                    "city": target["city"],
                    "radius": target.get("radius", radius),
                    "step": step,
                }
                sub_tasks.append(
                    {
                        "id": str(uuid.uuid4()),
                        "name": f"{keyword} - {target['city']}, {target['country']}",
                        "source": settings.CRAWL_SOURCE,
                        "query": keyword,
                        "target_count": limit,
                        "config": {"geolocation": geo},
                    }
                )

        await self.aggregates.create_with_tasks(
            {
                "id": aggregate_id,
                "name": name,
                "description": description,
                "keywords": keywords,
                "targets": targets,
            },
            sub_tasks,
        )

        for task in sub_tasks:
            try:
                await self.queue.enqueue(
                    {"task_id": task["id"]},
                    priority=DEFAULT_PRIORITY,
                    job_id=aggregate_job_id(aggregate_id, task["id"]),
                )
            except Exception as e:
                logger.error(
                    "Failed to enqueue aggregate sub-task",
                    aggregate_task_id=aggregate_id,
                    task_id=task["id"],
                    error=str(e),
                )

        logger.info(
            "Aggregate task submitted", aggregate_task_id=aggregate_id, sub_tasks=len(sub_tasks)
        )
        return aggregate_id

    def _validate_geo(self, geo_config: dict[str, Any]) -> None:
        try:
            geo = GeoConfig.model_validate(geo_config)
        except pydantic.ValidationError as e:
            raise SubmissionError(f"Invalid geolocation: {e}", field="geolocation") from e
        if geo.country and geo.city and resolve_search_area(geo) is None:
            raise SubmissionError(
                f"Unknown place: {geo.city}, {geo.country}", field="geolocation"
            )
        try:
            plan_points(geo, settings.CRAWL_DEFAULT_STEP)
        except GridConfigError as e:
            raise SubmissionError(str(e), field="geolocation") from e

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel_task(self, task_id: str) -> bool:
        """Cancel one task; a cancelled sub-task counts as failed toward its aggregate."""
        task = await self.tasks.get_task(task_id)
        if task is None:
            return False
        cancelled = await self.tasks.cancel(task_id)
        logger.info("Cancel task requested", task_id=task_id, cancelled=cancelled)
        if cancelled and task.aggregate_task_id:
            await self.tracker.on_sub_task_finished(task.aggregate_task_id, SubTaskOutcome.FAILED)
        return cancelled

    async def cancel_aggregate(self, aggregate_id: str) -> dict[str, Any]:
        """Cancel a batch and its open sub-tasks. Search points stay as they are."""
        cancelled, tasks_cancelled = await self.aggregates.cancel(aggregate_id)
        logger.info(
            "Cancel aggregate requested",
            aggregate_task_id=aggregate_id,
            cancelled=cancelled,
            tasks_cancelled=tasks_cancelled,
        )
        return {"cancelled": cancelled, "tasks_cancelled": tasks_cancelled}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str) -> dict[str, Any] | None:
        task = await self.tasks.get_task(task_id)
        if task is None:
            return None
        stats = await self.points.point_stats(task_id)
        total = stats.get("total", 0)
        done = stats.get("completed", 0) + stats.get("failed", 0)
        return {
            **asdict(task),
            "search_points": stats,
            "point_progress": round(100 * done / total) if total else task.progress,
        }

    async def list_tasks(
        self,
        status: str | None = None,
        query: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict[str, Any]:
        if status:
            status = TaskStatus(status).value
        limit, offset = _page(page, page_size)
        tasks, total = await self.tasks.list_tasks(status=status, query=query, limit=limit, offset=offset)
        return {
            "items": [asdict(task) for task in tasks],
            "total": total,
            "page": max(page, 1),
            "page_size": limit,
        }

    async def get_aggregate(self, aggregate_id: str) -> dict[str, Any] | None:
        aggregate = await self.aggregates.get_aggregate(aggregate_id)
        if aggregate is None:
            return None
        return {
            **asdict(aggregate),
            "sub_task_status": await self.aggregates.sub_task_status_counts(aggregate_id),
        }

    async def list_aggregates(
        self, status: str | None = None, page: int = 1, page_size: int = 20
    ) -> dict[str, Any]:
        limit, offset = _page(page, page_size)
        aggregates, total = await self.aggregates.list_aggregates(
            status=status, limit=limit, offset=offset
        )
        return {
            "items": [asdict(aggregate) for aggregate in aggregates],
            "total": total,
            "page": max(page, 1),
            "page_size": limit,
        }

    @staticmethod
    def list_places() -> list[dict[str, Any]]:
        return list_places()
