"""
Search point store.

The planned grid is written once per task; afterwards the resume cursor is
nothing more than "points still pending or failed, by sequence".
"""

from typing import Any

from leadgrid.db.helpers import DatabaseError, execute_many, execute_query, fetch_all, fetch_val
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.models.domain.crawl_domain import (
    RESUMABLE_POINT_STATUSES,
    GridPoint,
    PointStatus,
    SearchPoint,
)

logger = get_logger(__name__)


class PointsAlreadyPlannedError(DatabaseError):
    """Raised when a task's grid is persisted a second time."""

    def __init__(self, task_id: str):
        super().__init__(
            f"Search points already exist for task {task_id}",
            operation="create_points",
            recoverable=False,
        )
        self.task_id = task_id


def _point_from_row(row: dict[str, Any]) -> SearchPoint:
    return SearchPoint(
        task_id=row["task_id"],
        sequence=row["sequence"],
        latitude=row.get("latitude"),
        longitude=row.get("longitude"),
        status=row["status"],
        results_found=row.get("results_found") or 0,
        results_saved=row.get("results_saved") or 0,
        error=row.get("error"),
        started_at=row.get("started_at"),
        completed_at=row.get("completed_at"),
    )


class SearchPointRepository:
    @staticmethod
    async def has_points(task_id: str) -> bool:
        found = await fetch_val(
            "SELECT EXISTS(SELECT 1 FROM search_points WHERE task_id = %s) AS found", (task_id,)
        )
        return bool(found)

    @staticmethod
    async def create_points(task_id: str, points: list[GridPoint | SearchPoint]) -> int:
        """
        Persist the planned grid for a task.

        Raises:
            PointsAlreadyPlannedError: if the task already has points
        """
        if await SearchPointRepository.has_points(task_id):
            raise PointsAlreadyPlannedError(task_id)

        params = [
            (task_id, point.sequence, point.latitude, point.longitude, PointStatus.PENDING.value)
            for point in points
        ]
        try:
            created = await execute_many(
                """
                INSERT INTO search_points (task_id, sequence, latitude, longitude, status)
                VALUES (%s, %s, %s, %s, %s)
                """,
                params,
            )
        except DatabaseError as e:
            # Lost a race with another planner: the unique (task_id, sequence) key fired.
            if await SearchPointRepository.has_points(task_id):
                raise PointsAlreadyPlannedError(task_id) from e
            raise

        logger.info("Search points planned", task_id=task_id, points=created)
        return created

    @staticmethod
    async def pending_or_retryable(
        task_id: str, include_interrupted: bool = False
    ) -> list[SearchPoint]:
        """
        Resume cursor: pending and failed points ordered by sequence.

        With include_interrupted, points left `running` by a crashed worker
        are returned too; only a resuming orchestrator asks for them.
        """
        statuses = [status.value for status in RESUMABLE_POINT_STATUSES]
        if include_interrupted:
            statuses.append(PointStatus.RUNNING.value)
        rows = await fetch_all(
            """
            SELECT task_id, sequence, latitude, longitude, status, results_found,
                   results_saved, error, started_at, completed_at
            FROM search_points
            WHERE task_id = %s AND status = ANY(%s)
            ORDER BY sequence
            """,
            (task_id, statuses),
        )
        return [_point_from_row(row) for row in rows]

    @staticmethod
    async def list_points(task_id: str) -> list[SearchPoint]:
        rows = await fetch_all(
            """
            SELECT task_id, sequence, latitude, longitude, status, results_found,
                   results_saved, error, started_at, completed_at
            FROM search_points
            WHERE task_id = %s
            ORDER BY sequence
            """,
            (task_id,),
        )
        return [_point_from_row(row) for row in rows]

    @staticmethod
    async def mark_running(task_id: str, sequence: int) -> bool:
        updated = await execute_query(
            """
            UPDATE search_points
            SET status = 'running', started_at = NOW(), error = NULL
            WHERE task_id = %s AND sequence = %s AND status IN ('pending', 'failed', 'running')
            """,
            (task_id, sequence),
        )
        return updated == 1

    @staticmethod
    async def mark_completed(task_id: str, sequence: int, found: int, saved: int) -> bool:
        updated = await execute_query(
            """
            UPDATE search_points
            SET status = 'completed', results_found = %s, results_saved = %s,
                error = NULL, completed_at = NOW()
            WHERE task_id = %s AND sequence = %s AND status IN ('running', 'completed')
            """,
            (found, saved, task_id, sequence),
        )
        return updated == 1

    @staticmethod
    async def mark_failed(task_id: str, sequence: int, error: str) -> bool:
        updated = await execute_query(
            """
            UPDATE search_points
            SET status = 'failed', error = %s, completed_at = NOW()
            WHERE task_id = %s AND sequence = %s AND status IN ('running', 'failed')
            """,
            (error[:2000], task_id, sequence),
        )
        return updated == 1

    @staticmethod
    async def count_points(task_id: str) -> int:
        total = await fetch_val(
            "SELECT COUNT(*) AS total FROM search_points WHERE task_id = %s", (task_id,)
        )
        return int(total or 0)

    @staticmethod
    async def point_stats(task_id: str) -> dict[str, int]:
        rows = await fetch_all(
            """
            SELECT status, COUNT(*) AS count
            FROM search_points
            WHERE task_id = %s
            GROUP BY status
            """,
            (task_id,),
        )
        stats = {status.value: 0 for status in PointStatus}
        for row in rows:
            stats[row["status"]] = int(row["count"])
        stats["total"] = sum(stats.values())
        return stats
