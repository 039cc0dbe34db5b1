"""
Repository for the lead pipeline: stage status rows, ratings, contacts and
the CRM automation log.

Every status change is a compare-and-set on (lead_id, stage, expected
status) that bumps the row's version, so two consumers can never both
believe they own the same stage of the same lead.
"""

import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from leadgrid.db.helpers import execute_query, fetch_all, fetch_one, fetch_val
from leadgrid.db.pool import get_db_transaction
from leadgrid.features.pipeline.domain.transitions import validate_transition
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.models.domain.lead_domain import (
    ContactRecord,
    CrmSyncStatus,
    EnrichStatus,
    ExistingRating,
    Lead,
    RatingStatus,
    ScoreResult,
    Stage,
    StageState,
)

logger = get_logger(__name__)

# Reaching one of these stamps completed_at.
_DONE_STATUSES = frozenset({RatingStatus.COMPLETED, EnrichStatus.ENRICHED, CrmSyncStatus.SYNCED})


def _lead_from_row(row: dict[str, Any]) -> Lead:
    return Lead(
        id=row["id"],
        task_id=row["task_id"],
        company_name=row["company_name"],
        domain=row.get("domain"),
        website=row.get("website"),
        phone=row.get("phone"),
        industry=row.get("industry"),
        region=row.get("region"),
        address=row.get("address"),
        rating=row.get("rating"),
        review_count=row.get("review_count"),
        raw_data=row.get("raw_data"),
        source=row.get("source"),
        source_url=row.get("source_url"),
        task_name=row.get("task_name"),
        task_query=row.get("task_query"),
        scraped_at=row.get("scraped_at"),
    )


class PipelineRepository:
    @staticmethod
    async def get_lead(lead_id: str) -> Lead | None:
        row = await fetch_one(
            """
            SELECT l.id, l.task_id, l.company_name, l.domain, l.website, l.phone,
                   l.industry, l.region, l.address, l.rating, l.review_count, l.raw_data,
                   l.source, l.source_url, l.scraped_at,
                   t.name AS task_name, t.query AS task_query
            FROM leads l
            LEFT JOIN tasks t ON t.id = l.task_id
            WHERE l.id = %s
            """,
            (lead_id,),
        )
        return _lead_from_row(row) if row else None

    @staticmethod
    async def get_stage(lead_id: str, stage: Stage) -> StageState | None:
        row = await fetch_one(
            """
            SELECT lead_id, stage, status, error, attempts, version, external_ref,
                   completed_at, updated_at
            FROM lead_stage_status
            WHERE lead_id = %s AND stage = %s
            """,
            (lead_id, Stage(stage).value),
        )
        if not row:
            return None
        return StageState(
            lead_id=row["lead_id"],
            stage=Stage(row["stage"]),
            status=row["status"],
            error=row.get("error"),
            attempts=row.get("attempts") or 0,
            version=row.get("version") or 1,
            external_ref=row.get("external_ref"),
            completed_at=row.get("completed_at"),
            updated_at=row.get("updated_at"),
        )

    @staticmethod
    async def transition(
        lead_id: str,
        stage: Stage,
        from_statuses: Iterable[str],
        to_status: str,
        *,
        error: str | None = None,
        external_ref: str | None = None,
        count_attempt: bool = False,
    ) -> bool:
        """
        Compare-and-set a stage status.

        Returns False when the row was not in any of `from_statuses` (someone
        else moved it first).

        Raises:
            InvalidTransition: if any from -> to pair is not in the stage's table
        """
        stage = Stage(stage)
        sources = [str(status) for status in from_statuses]
        for source in sources:
            validate_transition(stage, source, to_status)

        updated = await execute_query(
            """
            UPDATE lead_stage_status
            SET status = %s,
                error = %s,
                attempts = attempts + %s,
                version = version + 1,
                external_ref = COALESCE(%s, external_ref),
                completed_at = CASE WHEN %s THEN NOW() ELSE completed_at END,
                updated_at = NOW()
            WHERE lead_id = %s AND stage = %s AND status = ANY(%s)
            """,
            (
                str(to_status),
                error[:2000] if error else None,
                1 if count_attempt else 0,
                external_ref,
                to_status in _DONE_STATUSES,
                lead_id,
                stage.value,
                sources,
            ),
        )
        if updated:
            logger.debug(
                "Lead stage transition",
                lead_id=lead_id,
                stage=stage.value,
                from_statuses=sources,
                to_status=str(to_status),
            )
        return updated == 1

    @staticmethod
    async def rearm(
        stage: Stage, statuses: Iterable[str], lead_ids: list[str] | None = None
    ) -> list[str]:
        """Move matching rows back to pending, clearing the error; returns the lead ids."""
        stage = Stage(stage)
        sources = [str(status) for status in statuses]
        for source in sources:
            validate_transition(stage, source, "pending")

        params: list[Any] = [stage.value, sources]
        lead_filter = ""
        if lead_ids is not None:
            lead_filter = "AND lead_id = ANY(%s)"
            params.append(list(lead_ids))

        rows = await fetch_all(
            f"""
            UPDATE lead_stage_status
            SET status = 'pending', error = NULL, version = version + 1, updated_at = NOW()
            WHERE stage = %s AND status = ANY(%s) {lead_filter}
            RETURNING lead_id
            """,
            tuple(params),
        )
        return [row["lead_id"] for row in rows]

    @staticmethod
    async def find_rating_by_domain(domain: str, exclude_lead_id: str) -> ExistingRating | None:
        row = await fetch_one(
            """
            SELECT r.overall_rating, r.suggestion, r.reasoning,
                   l.id AS source_lead_id, l.company_name AS source_company_name
            FROM leads l
            JOIN lead_stage_status s ON s.lead_id = l.id AND s.stage = 'rating'
            JOIN lead_ratings r ON r.lead_id = l.id
            WHERE l.domain = %s AND l.id <> %s AND s.status = 'completed'
            ORDER BY r.rated_at DESC
            LIMIT 1
            """,
            (domain, exclude_lead_id),
        )
        if not row:
            return None
        return ExistingRating(
            overall_rating=row["overall_rating"],
            suggestion=row.get("suggestion"),
            reasoning=row.get("reasoning"),
            source_lead_id=row["source_lead_id"],
            source_company_name=row["source_company_name"],
        )

    @staticmethod
    async def save_rating(lead_id: str, result: ScoreResult) -> None:
        await execute_query(
            """
            INSERT INTO lead_ratings (id, lead_id, overall_rating, suggestion, reasoning, rated_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (lead_id) DO UPDATE
            SET overall_rating = EXCLUDED.overall_rating,
                suggestion = EXCLUDED.suggestion,
                reasoning = EXCLUDED.reasoning,
                rated_at = EXCLUDED.rated_at
            """,
            (
                str(uuid.uuid4()),
                lead_id,
                result.overall_rating,
                result.suggestion,
                result.reasoning,
                datetime.now(UTC),
            ),
        )

    @staticmethod
    async def get_rating(lead_id: str) -> dict[str, Any] | None:
        return await fetch_one(
            """
            SELECT overall_rating, suggestion, reasoning, rated_at
            FROM lead_ratings
            WHERE lead_id = %s
            """,
            (lead_id,),
        )

    @staticmethod
    async def add_contacts(lead_id: str, contacts: list[ContactRecord], source: str) -> int:
        """Insert contacts not already stored for the lead; returns how many were added."""
        if not contacts:
            return 0
        added = 0
        async with await get_db_transaction() as conn:
            for contact in contacts:
                added += await execute_query(
                    """
                    INSERT INTO contacts
                        (id, lead_id, name, title, email, phone, linkedin_url, source, is_primary)
                    SELECT %s, %s, %s, %s, %s, %s, %s, %s, %s
                    WHERE NOT EXISTS (
                        SELECT 1 FROM contacts
                        WHERE lead_id = %s
                          AND (
                              LOWER(email) = LOWER(%s)
                              OR (%s::text IS NULL AND email IS NULL AND name IS NOT DISTINCT FROM %s)
                          )
                    )
                    """,
                    (
                        str(uuid.uuid4()),
                        lead_id,
                        contact.name,
                        (contact.title or "")[:100] or None,
                        contact.email,
                        (contact.phone or "")[:50] or None,
                        contact.linkedin_url,
                        source,
                        contact.is_primary,
                        lead_id,
                        contact.email,
                        contact.email,
                        contact.name,
                    ),
                    connection=conn,
                )
        return added

    @staticmethod
    async def list_contacts(lead_id: str) -> list[dict[str, Any]]:
        return await fetch_all(
            """
            SELECT name, title, email, phone, linkedin_url, source, is_primary
            FROM contacts
            WHERE lead_id = %s
            ORDER BY is_primary DESC, created_at
            """,
            (lead_id,),
        )

    @staticmethod
    async def log_automation(
        lead_id: str, action_type: str, status: str, error: str | None = None
    ) -> None:
        await execute_query(
            """
            INSERT INTO automation_logs (id, lead_id, action_type, status, error)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (str(uuid.uuid4()), lead_id, action_type, status, error),
        )

    @staticmethod
    async def list_leads_by_stage(
        stage: Stage, status: str | None = None, limit: int = 20, offset: int = 0
    ) -> tuple[list[dict[str, Any]], int]:
        stage = Stage(stage)
        status_filter = "AND s.status = %s" if status else ""
        params: tuple = (stage.value, status) if status else (stage.value,)

        total = await fetch_val(
            f"""
            SELECT COUNT(*) AS total
            FROM lead_stage_status s
            WHERE s.stage = %s {status_filter}
            """,
            params,
        )
        rows = await fetch_all(
            f"""
            SELECT l.id, l.company_name, l.domain, l.industry, l.region, l.phone,
                   s.status, s.error, s.attempts, s.version, s.updated_at
            FROM lead_stage_status s
            JOIN leads l ON l.id = s.lead_id
            WHERE s.stage = %s {status_filter}
            ORDER BY s.updated_at DESC
            LIMIT %s OFFSET %s
            """,
            (*params, limit, offset),
        )
        return rows, int(total or 0)

    @staticmethod
    async def stage_counts(stage: Stage) -> dict[str, int]:
        rows = await fetch_all(
            """
            SELECT status, COUNT(*) AS count
            FROM lead_stage_status
            WHERE stage = %s
            GROUP BY status
            """,
            (Stage(stage).value,),
        )
        return {row["status"]: int(row["count"]) for row in rows}
