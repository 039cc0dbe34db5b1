"""Crawl services: orchestration, recovery, aggregate tracking and submission."""

from leadgrid.features.crawl.services.aggregate_tracker import AggregateTracker
from leadgrid.features.crawl.services.orchestrator import CrawlJobError, CrawlOrchestrator
from leadgrid.features.crawl.services.recovery_service import RecoveryService
from leadgrid.features.crawl.services.submission_service import (
    CrawlSubmissionService,
    SubmissionError,
)

__all__ = [
    "AggregateTracker",
    "CrawlJobError",
    "CrawlOrchestrator",
    "CrawlSubmissionService",
    "RecoveryService",
    "SubmissionError",
]
