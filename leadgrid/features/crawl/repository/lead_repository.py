"""
Lead persistence for the crawl side.

Saving a lead also opens its three pipeline axes as `pending`, in the
same transaction, so a lead never exists without its stage rows.
"""

import json
import uuid
from datetime import UTC, datetime

from leadgrid.db.helpers import execute_query, fetch_all
from leadgrid.db.pool import get_db_transaction
from leadgrid.features.crawl.domain.lead_normalizer import record_key
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.models.domain.lead_domain import LeadRecord, Stage

logger = get_logger(__name__)


class LeadRepository:
    @staticmethod
    async def save_lead(task_id: str, record: LeadRecord, source: str) -> str:
        lead_id = str(uuid.uuid4())
        async with await get_db_transaction() as conn:
            await execute_query(
                """
                INSERT INTO leads (
                    id, task_id, company_name, domain, website, phone, industry, region,
                    address, rating, review_count, raw_data, source, source_url, scraped_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s, %s)
                """,
                (
                    lead_id,
                    task_id,
                    record.company_name,
                    record.domain,
                    record.website,
                    record.phone,
                    record.industry,
                    record.region,
                    record.address,
                    record.rating,
                    record.review_count,
                    json.dumps(record.raw_data, default=str),
                    source,
                    record.source_url,
                    datetime.now(UTC),
                ),
                connection=conn,
            )
            for stage in Stage:
                await execute_query(
                    "INSERT INTO lead_stage_status (lead_id, stage, status) VALUES (%s, %s, 'pending')",
                    (lead_id, stage.value),
                    connection=conn,
                )
            if record.email:
                await execute_query(
                    """
                    INSERT INTO contacts (id, lead_id, email, phone, source, is_primary)
                    VALUES (%s, %s, %s, %s, %s, TRUE)
                    """,
                    (str(uuid.uuid4()), lead_id, record.email, record.phone, source),
                    connection=conn,
                )

        logger.debug("Lead saved", task_id=task_id, lead_id=lead_id)
        return lead_id

    @staticmethod
    async def dedup_keys(task_id: str) -> set[str]:
        """Keys of leads already saved for a task, used to seed a resumed run."""
        rows = await fetch_all(
            "SELECT company_name, phone FROM leads WHERE task_id = %s", (task_id,)
        )
        return {record_key(row["company_name"], row.get("phone")) for row in rows}
