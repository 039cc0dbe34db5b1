# models/domain/lead_domain.py
"""
Lead domain models.

A lead carries three independent pipeline axes (rating, enrichment, CRM
sync). Each axis is stored as its own lead_stage_status row so it can move
without touching the other two.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class Stage(StrEnum):
    RATING = "rating"
    ENRICH = "enrich"
    CRM = "crm"


class RatingStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PENDING_CONFIG = "pending_config"
    SKIPPED = "skipped"


class EnrichStatus(StrEnum):
    PENDING = "pending"
    ENRICHED = "enriched"
    FAILED = "failed"
    SKIPPED = "skipped"


class CrmSyncStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    SYNCED = "synced"
    FAILED = "failed"


STAGE_STATUS_TYPES: dict[Stage, type[StrEnum]] = {
    Stage.RATING: RatingStatus,
    Stage.ENRICH: EnrichStatus,
    Stage.CRM: CrmSyncStatus,
}


@dataclass(slots=True)
class LeadRecord:
    """A normalized record ready to be persisted as a leads row."""

    company_name: str
    industry: str | None = None
    website: str | None = None
    domain: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    region: str | None = None
    rating: float | None = None
    review_count: int | None = None
    source_url: str | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Lead:
    """Represents a leads row joined with the owning task's query."""

    id: str
    task_id: str
    company_name: str
    domain: str | None = None
    website: str | None = None
    phone: str | None = None
    industry: str | None = None
    region: str | None = None
    address: str | None = None
    rating: float | None = None
    review_count: int | None = None
    raw_data: dict[str, Any] | None = None
    source: str | None = None
    source_url: str | None = None
    task_name: str | None = None
    task_query: str | None = None
    scraped_at: datetime | None = None


@dataclass(slots=True)
class StageState:
    """Represents one lead_stage_status row."""

    lead_id: str
    stage: Stage
    status: str
    error: str | None = None
    attempts: int = 0
    version: int = 1
    external_ref: str | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None


class ContactRecord(BaseModel):
    """Contact returned by the enrichment vendor."""

    name: str | None = None
    title: str | None = None
    email: str | None = None
    phone: str | None = None
    linkedin_url: str | None = None
    is_primary: bool = False

    def identity(self) -> tuple[str, str | None]:
        """Email (case-insensitive) when known, else the name; used to skip re-inserts."""
        if self.email:
            return ("email", self.email.lower())
        return ("name", self.name)


class ScoreResult(BaseModel):
    """Scorer output: a rating label plus free text."""

    overall_rating: str = Field(min_length=1, max_length=32)
    suggestion: str = ""
    reasoning: str = ""


@dataclass(slots=True)
class ExistingRating:
    """A completed rating found on another lead with the same domain."""

    overall_rating: str
    suggestion: str | None
    reasoning: str | None
    source_lead_id: str
    source_company_name: str
