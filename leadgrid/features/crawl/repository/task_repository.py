"""
Repository for crawl tasks and aggregate tasks.

Every status write is a single guarded UPDATE so a cancelled (terminal)
row is never overwritten by a worker that is still finishing.
"""

import json
from typing import Any

from leadgrid.db.helpers import execute_query, fetch_all, fetch_one, fetch_val
from leadgrid.db.pool import get_db_transaction
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.models.domain.crawl_domain import (
    TERMINAL_TASK_STATUSES,
    AggregateTask,
    SubTaskOutcome,
    Task,
    TaskStatus,
)

logger = get_logger(__name__)

_TERMINAL = sorted(status.value for status in TERMINAL_TASK_STATUSES)
_OPEN = [TaskStatus.PENDING.value, TaskStatus.RUNNING.value]

_TASK_COLUMNS = """
    id, aggregate_task_id, name, source, query, target_count, config, status,
    progress, total_leads, success_leads, failed_leads, error,
    started_at, completed_at, created_at
"""

_AGGREGATE_COLUMNS = """
    id, name, description, keywords, targets, total_sub_tasks,
    completed_sub_tasks, failed_sub_tasks, status, started_at, completed_at, created_at
"""

_INCREMENT_QUERIES = {
    SubTaskOutcome.COMPLETED: """
        UPDATE aggregate_tasks
        SET completed_sub_tasks = completed_sub_tasks + 1, updated_at = NOW()
        WHERE id = %s AND completed_sub_tasks + failed_sub_tasks < total_sub_tasks
        RETURNING id, total_sub_tasks, completed_sub_tasks, failed_sub_tasks, status
    """,
    SubTaskOutcome.FAILED: """
        UPDATE aggregate_tasks
        SET failed_sub_tasks = failed_sub_tasks + 1, updated_at = NOW()
        WHERE id = %s AND completed_sub_tasks + failed_sub_tasks < total_sub_tasks
        RETURNING id, total_sub_tasks, completed_sub_tasks, failed_sub_tasks, status
    """,
}


def _task_from_row(row: dict[str, Any]) -> Task:
    return Task(
        id=row["id"],
        aggregate_task_id=row.get("aggregate_task_id"),
        name=row["name"],
        source=row.get("source") or "google_maps",
        query=row["query"],
        target_count=row.get("target_count"),
        config=row.get("config"),
        status=row["status"],
        progress=row.get("progress") or 0,
        total_leads=row.get("total_leads") or 0,
        success_leads=row.get("success_leads") or 0,
        failed_leads=row.get("failed_leads") or 0,
        error=row.get("error"),
        started_at=row.get("started_at"),
        completed_at=row.get("completed_at"),
        created_at=row.get("created_at"),
    )


def _aggregate_from_row(row: dict[str, Any]) -> AggregateTask:
    return AggregateTask(
        id=row["id"],
        name=row["name"],
        description=row.get("description"),
        keywords=list(row.get("keywords") or []),
        targets=list(row.get("targets") or []),
        total_sub_tasks=row["total_sub_tasks"],
        completed_sub_tasks=row["completed_sub_tasks"],
        failed_sub_tasks=row["failed_sub_tasks"],
        status=row["status"],
        started_at=row.get("started_at"),
        completed_at=row.get("completed_at"),
        created_at=row.get("created_at"),
    )


class TaskRepository:
    """Reads and guarded status writes for the tasks table."""

    @staticmethod
    async def create_task(
        task_id: str,
        name: str,
        query: str,
        source: str,
        target_count: int | None,
        config: dict[str, Any] | None,
        aggregate_task_id: str | None = None,
        status: str = TaskStatus.PENDING,
    ) -> None:
        await execute_query(
            """
            INSERT INTO tasks (id, aggregate_task_id, name, source, query, target_count, config, status)
            VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, %s)
            """,
            (
                task_id,
                aggregate_task_id,
                name,
                source,
                query,
                target_count,
                json.dumps(config or {}),
                str(status),
            ),
        )
        logger.debug("Task created", task_id=task_id, aggregate_task_id=aggregate_task_id)

    @staticmethod
    async def get_task(task_id: str) -> Task | None:
        row = await fetch_one(f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = %s", (task_id,))
        return _task_from_row(row) if row else None

    @staticmethod
    async def get_status(task_id: str) -> str | None:
        return await fetch_val("SELECT status FROM tasks WHERE id = %s", (task_id,))

    @staticmethod
    async def list_tasks(
        status: str | None = None,
        query: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Task], int]:
        clauses = []
        params: list[Any] = []
        if status:
            clauses.append("status = %s")
            params.append(status)
        if query:
            clauses.append("query ILIKE %s")
            params.append(f"%{query}%")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        total = await fetch_val(f"SELECT COUNT(*) AS total FROM tasks {where}", tuple(params))
        rows = await fetch_all(
            f"SELECT {_TASK_COLUMNS} FROM tasks {where} ORDER BY created_at DESC LIMIT %s OFFSET %s",
            (*params, limit, offset),
        )
        return [_task_from_row(row) for row in rows], int(total or 0)

    @staticmethod
    async def list_running_tasks() -> list[Task]:
        rows = await fetch_all(
            f"SELECT {_TASK_COLUMNS} FROM tasks WHERE status = %s ORDER BY created_at",
            (TaskStatus.RUNNING.value,),
        )
        return [_task_from_row(row) for row in rows]

    @staticmethod
    async def mark_running(task_id: str) -> bool:
        updated = await execute_query(
            """
            UPDATE tasks
            SET status = 'running', started_at = COALESCE(started_at, NOW()), updated_at = NOW()
            WHERE id = %s AND status IN ('pending', 'running')
            """,
            (task_id,),
        )
        return updated == 1

    @staticmethod
    async def mark_completed(task_id: str) -> bool:
        """Finalize a running task; refused once the task is terminal."""
        updated = await execute_query(
            """
            UPDATE tasks
            SET status = 'completed', progress = 100, completed_at = NOW(), updated_at = NOW()
            WHERE id = %s AND status = 'running'
            """,
            (task_id,),
        )
        return updated == 1

    @staticmethod
    async def mark_failed(task_id: str, error: str) -> bool:
        updated = await execute_query(
            """
            UPDATE tasks
            SET status = 'failed', error = %s, completed_at = NOW(), updated_at = NOW()
            WHERE id = %s AND status <> ALL(%s)
            """,
            (error, task_id, _TERMINAL),
        )
        return updated == 1

    @staticmethod
    async def cancel(task_id: str, error: str | None = None) -> bool:
        updated = await execute_query(
            """
            UPDATE tasks
            SET status = 'cancelled', error = COALESCE(%s, error), completed_at = NOW(), updated_at = NOW()
            WHERE id = %s AND status = ANY(%s)
            """,
            (error, task_id, _OPEN),
        )
        return updated == 1

    @staticmethod
    async def update_progress(task_id: str, progress: int) -> None:
        await execute_query(
            "UPDATE tasks SET progress = %s, updated_at = NOW() WHERE id = %s AND status = 'running'",
            (progress, task_id),
        )

    @staticmethod
    async def add_lead_counts(task_id: str, saved: int = 0, failed: int = 0) -> None:
        await execute_query(
            """
            UPDATE tasks
            SET total_leads = total_leads + %s,
                success_leads = success_leads + %s,
                failed_leads = failed_leads + %s,
                updated_at = NOW()
            WHERE id = %s
            """,
            (saved + failed, saved, failed, task_id),
        )


class AggregateRepository:
    """Aggregate task rows plus the atomic counters the tracker relies on."""

    @staticmethod
    async def create_with_tasks(
        aggregate: dict[str, Any], tasks: list[dict[str, Any]]
    ) -> None:
        """Insert the aggregate, its sub-tasks and flip it to running in one transaction."""
        async with await get_db_transaction() as conn:
            await execute_query(
                """
                INSERT INTO aggregate_tasks
                    (id, name, description, keywords, targets, total_sub_tasks, status, started_at)
                VALUES (%s, %s, %s, %s::jsonb, %s::jsonb, %s, 'running', NOW())
                """,
                (
                    aggregate["id"],
                    aggregate["name"],
                    aggregate.get("description"),
                    json.dumps(aggregate["keywords"]),
                    json.dumps(aggregate["targets"]),
                    len(tasks),
                ),
                connection=conn,
            )
            for task in tasks:
                await execute_query(
                    """
                    INSERT INTO tasks
                        (id, aggregate_task_id, name, source, query, target_count, config, status)
                    VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, 'pending')
                    """,
                    (
                        task["id"],
                        aggregate["id"],
                        task["name"],
                        task["source"],
                        task["query"],
                        task["target_count"],
                        json.dumps(task["config"]),
                    ),
                    connection=conn,
                )
        logger.info("Aggregate task created", aggregate_task_id=aggregate["id"], sub_tasks=len(tasks))

    @staticmethod
    async def get_aggregate(aggregate_id: str) -> AggregateTask | None:
        row = await fetch_one(
            f"SELECT {_AGGREGATE_COLUMNS} FROM aggregate_tasks WHERE id = %s", (aggregate_id,)
        )
        return _aggregate_from_row(row) if row else None

    @staticmethod
    async def get_status(aggregate_id: str) -> str | None:
        return await fetch_val("SELECT status FROM aggregate_tasks WHERE id = %s", (aggregate_id,))

    @staticmethod
    async def list_aggregates(
        status: str | None = None, limit: int = 20, offset: int = 0
    ) -> tuple[list[AggregateTask], int]:
        where = "WHERE status = %s" if status else ""
        params: tuple = (status,) if status else ()
        total = await fetch_val(f"SELECT COUNT(*) AS total FROM aggregate_tasks {where}", params)
        rows = await fetch_all(
            f"""
            SELECT {_AGGREGATE_COLUMNS} FROM aggregate_tasks {where}
            ORDER BY created_at DESC LIMIT %s OFFSET %s
            """,
            (*params, limit, offset),
        )
        return [_aggregate_from_row(row) for row in rows], int(total or 0)

    @staticmethod
    async def sub_task_status_counts(aggregate_id: str) -> dict[str, int]:
        rows = await fetch_all(
            """
            SELECT status, COUNT(*) AS count
            FROM tasks
            WHERE aggregate_task_id = %s
            GROUP BY status
            """,
            (aggregate_id,),
        )
        return {row["status"]: int(row["count"]) for row in rows}

    @staticmethod
    async def increment_counter(
        aggregate_id: str, outcome: SubTaskOutcome
    ) -> dict[str, Any] | None:
        """
        Atomically bump the completed or failed counter.

        Returns the post-increment counts, or None when the counters are
        already saturated (a duplicate delivery) or the aggregate is missing.
        """
        return await fetch_one(_INCREMENT_QUERIES[SubTaskOutcome(outcome)], (aggregate_id,))

    @staticmethod
    async def finalize_if_open(aggregate_id: str, status: str) -> bool:
        """Compare-and-set to a terminal status; True only for the caller that won."""
        updated = await execute_query(
            """
            UPDATE aggregate_tasks
            SET status = %s, completed_at = NOW(), updated_at = NOW()
            WHERE id = %s AND status <> ALL(%s)
            """,
            (str(status), aggregate_id, _TERMINAL),
        )
        return updated == 1

    @staticmethod
    async def cancel(aggregate_id: str) -> tuple[bool, int]:
        """Cancel the aggregate and its open sub-tasks; search points are not touched."""
        async with await get_db_transaction() as conn:
            updated = await execute_query(
                """
                UPDATE aggregate_tasks
                SET status = 'cancelled', completed_at = NOW(), updated_at = NOW()
                WHERE id = %s AND status <> ALL(%s)
                """,
                (aggregate_id, _TERMINAL),
                connection=conn,
            )
            if not updated:
                return False, 0
            cancelled_tasks = await execute_query(
                """
                UPDATE tasks
                SET status = 'cancelled', error = 'Parent aggregate task terminated',
                    completed_at = NOW(), updated_at = NOW()
                WHERE aggregate_task_id = %s AND status = ANY(%s)
                """,
                (aggregate_id, _OPEN),
                connection=conn,
            )
        return True, cancelled_tasks
