# models/domain/crawl_domain.py
"""
Crawl domain models: aggregate tasks, tasks, search points and the
geographic configuration a task is planned from.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class TaskStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_TASK_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)


class PointStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# Statuses the resume cursor picks up.
RESUMABLE_POINT_STATUSES = (PointStatus.PENDING, PointStatus.FAILED)


class SubTaskOutcome(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"


class Bounds(BaseModel):
    north: float
    south: float
    east: float
    west: float


class GeoConfig(BaseModel):
    """
    Geographic search configuration stored in tasks.config["geolocation"].

    Three styles are accepted: a named place (country + city), an explicit
    centre + radius, or a bounding rectangle. Radius and step are in
    coordinate degrees.
    """

    country: str | None = None
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    radius: float | None = Field(default=None, ge=0)
    bounds: Bounds | None = None
    step: float | None = Field(default=None, gt=0)
    zoom: int | None = None

    @classmethod
    def from_task_config(cls, config: dict[str, Any] | None) -> "GeoConfig | None":
        if not config:
            return None
        geo = config.get("geolocation")
        if not geo:
            return None
        return cls.model_validate(geo)


@dataclass(slots=True)
class GridPoint:
    sequence: int
    latitude: float | None
    longitude: float | None


@dataclass(slots=True)
class SearchArea:
    center_lat: float
    center_lng: float
    radius: float


@dataclass(slots=True)
class SearchPoint:
    """Represents a search_points row."""

    task_id: str
    sequence: int
    latitude: float | None
    longitude: float | None
    status: str
    results_found: int = 0
    results_saved: int = 0
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def coordinates(self) -> tuple[float, float] | None:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)


@dataclass(slots=True)
class Task:
    """Represents a tasks row."""

    id: str
    name: str
    query: str
    status: str
    aggregate_task_id: str | None = None
    source: str = "google_maps"
    target_count: int | None = None
    config: dict[str, Any] | None = None
    progress: int = 0
    total_leads: int = 0
    success_leads: int = 0
    failed_leads: int = 0
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES


@dataclass(slots=True)
class AggregateTask:
    """Represents an aggregate_tasks row."""

    id: str
    name: str
    status: str
    keywords: list[str]
    targets: list[dict[str, Any]]
    total_sub_tasks: int
    completed_sub_tasks: int = 0
    failed_sub_tasks: int = 0
    description: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES

    @property
    def finished_sub_tasks(self) -> int:
        return self.completed_sub_tasks + self.failed_sub_tasks


@dataclass(slots=True)
class AggregateProgress:
    """Snapshot returned by the aggregate tracker after recording an outcome."""

    aggregate_task_id: str
    total_sub_tasks: int
    completed_sub_tasks: int
    failed_sub_tasks: int
    status: str
    finalized: bool = False


@dataclass(slots=True)
class CrawlRunResult:
    task_id: str
    points_visited: int = 0
    scraped: int = 0
    saved: int = 0
    duplicates: int = 0
    invalid: int = 0
    cancelled: bool = False
    skipped: bool = False
    skip_reason: str | None = None
