"""
Rating consumer: claims a lead's rating stage, scores it, and hands the
lead on to enrichment.
"""

from dataclasses import asdict
from typing import Any

from leadgrid.config import settings
from leadgrid.features.pipeline.repository.pipeline_repository import PipelineRepository
from leadgrid.features.pipeline.services.handoff import hand_off, queue_for
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.models.domain.lead_domain import Lead, RatingStatus, ScoreResult, Stage
from leadgrid.services.external.protocols import Scorer
from leadgrid.services.queue.retry_policy import RetryPolicy, policy_for

logger = get_logger(__name__)

DUPLICATE_MARKER = "(duplicate)"

_CONTEXT_FIELDS = (
    "company_name",
    "industry",
    "website",
    "domain",
    "phone",
    "address",
    "region",
    "rating",
    "review_count",
    "task_query",
)


def build_context(lead: Lead) -> dict[str, Any]:
    """Lead fields the scorer sees."""
    data = asdict(lead)
    return {field: data[field] for field in _CONTEXT_FIELDS if data.get(field) is not None}


def mark_duplicate(rating: str) -> str:
    return rating if DUPLICATE_MARKER in rating else f"{rating}{DUPLICATE_MARKER}"


class RatingService:
    def __init__(
        self,
        scorer: Scorer,
        repository=None,
        enrich_queue=None,
        policy: RetryPolicy | None = None,
    ):
        self.scorer = scorer
        self.repository = repository or PipelineRepository
        self.enrich_queue = enrich_queue or queue_for(Stage.ENRICH)
        self.policy = policy or policy_for("rating", settings.MAX_JOB_ATTEMPTS)

    async def _claim(self, lead_id: str, attempt: int) -> bool:
        if await self.repository.transition(
            lead_id, Stage.RATING, [RatingStatus.PENDING], RatingStatus.PROCESSING, count_attempt=True
        ):
            return True

        state = await self.repository.get_stage(lead_id, Stage.RATING)
        if state is None:
            logger.warning("Rating stage missing for lead", lead_id=lead_id)
            return False
        if state.status == RatingStatus.PROCESSING and attempt > 1:
            # Redelivery after a crash mid-scoring: the stale claim is ours.
            logger.warning("Taking over stale rating claim", lead_id=lead_id, attempt=attempt)
            return True
        logger.info("Rating not claimable", lead_id=lead_id, status=state.status)
        return False

    async def rate(self, lead_id: str, attempt: int = 1, force: bool = False) -> str:
        """
        Process one rating job.

        Returns the resulting rating status, or "skipped" when the lead was
        not claimable. Failures are recorded and re-raised.
        """
        if not await self._claim(lead_id, attempt):
            return "skipped"

        lead = await self.repository.get_lead(lead_id)
        if lead is None:
            await self.repository.transition(
                lead_id,
                Stage.RATING,
                [RatingStatus.PROCESSING],
                RatingStatus.FAILED,
                error="Lead not found",
            )
            return RatingStatus.FAILED.value

        try:
            result = None
            if lead.domain and not force:
                result = await self._copy_domain_rating(lead)
            if result is None:
                result = await self.scorer.score(build_context(lead))

            if result is None:
                await self.repository.transition(
                    lead_id,
                    Stage.RATING,
                    [RatingStatus.PROCESSING],
                    RatingStatus.PENDING_CONFIG,
                    error=f"No scoring rule configured for industry {lead.industry!r}",
                )
                logger.info("Rating waits for configuration", lead_id=lead_id, industry=lead.industry)
                return RatingStatus.PENDING_CONFIG.value

            await self.repository.save_rating(lead_id, result)
            await self.repository.transition(
                lead_id, Stage.RATING, [RatingStatus.PROCESSING], RatingStatus.COMPLETED
            )
        except Exception as exc:
            await self._handle_failure(lead_id, exc, attempt)

        logger.info("Lead rated", lead_id=lead_id, company=lead.company_name, rating=result.overall_rating)
        await hand_off(self.enrich_queue, Stage.ENRICH, lead_id)
        return RatingStatus.COMPLETED.value

    async def _copy_domain_rating(self, lead: Lead) -> ScoreResult | None:
        existing = await self.repository.find_rating_by_domain(lead.domain, lead.id)
        if existing is None:
            return None
        logger.info(
            "Copying rating from lead with same domain",
            lead_id=lead.id,
            domain=lead.domain,
            source_lead_id=existing.source_lead_id,
        )
        return ScoreResult(
            overall_rating=mark_duplicate(existing.overall_rating),
            suggestion=existing.suggestion or "",
            reasoning=existing.reasoning
            or f"Copied from lead with the same domain: {existing.source_company_name}",
        )

    async def _handle_failure(self, lead_id: str, exc: Exception, attempt: int) -> None:
        if self.policy.decide(exc, attempt).should_retry:
            # Release the claim so the retried job can take it again.
            await self.repository.transition(
                lead_id,
                Stage.RATING,
                [RatingStatus.PROCESSING],
                RatingStatus.PENDING,
                error=str(exc),
            )

        async def mark_failed(message: str) -> None:
            await self.repository.transition(
                lead_id, Stage.RATING, [RatingStatus.PROCESSING], RatingStatus.FAILED, error=message
            )
            logger.error("Rating failed", lead_id=lead_id, error=message)

        await self.policy.apply_failure(exc, attempt, on_terminal=mark_failed)
