"""Persistence for tasks, aggregate batches, search points and leads."""

from leadgrid.features.crawl.repository.lead_repository import LeadRepository
from leadgrid.features.crawl.repository.search_point_repository import (
    PointsAlreadyPlannedError,
    SearchPointRepository,
)
from leadgrid.features.crawl.repository.task_repository import AggregateRepository, TaskRepository

__all__ = [
    "AggregateRepository",
    "LeadRepository",
    "PointsAlreadyPlannedError",
    "SearchPointRepository",
    "TaskRepository",
]
