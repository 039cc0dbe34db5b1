import asyncio
import dataclasses
from datetime import UTC, datetime

import pytest

from leadgrid.features.crawl.domain.lead_normalizer import record_key
from leadgrid.features.crawl.repository.search_point_repository import PointsAlreadyPlannedError
from leadgrid.features.pipeline.domain.transitions import validate_transition
from leadgrid.models.domain.crawl_domain import (
    TERMINAL_TASK_STATUSES,
    AggregateTask,
    SearchPoint,
    SubTaskOutcome,
    Task,
)
from leadgrid.models.domain.lead_domain import (
    ContactRecord,
    ExistingRating,
    Lead,
    ScoreResult,
    Stage,
    StageState,
)
from leadgrid.services.queue.job_queue import Job


class FakeTaskRepository:
    def __init__(self):
        self.tasks: dict[str, Task] = {}

    def add(self, task_id: str, status: str = "pending", **fields) -> Task:
        task = Task(
            id=task_id,
            name=fields.pop("name", task_id),
            query=fields.pop("query", "coffee"),
            status=status,
            **fields,
        )
        self.tasks[task_id] = task
        return task

    async def create_task(
        self,
        task_id,
        name,
        query,
        source,
        target_count,
        config,
        aggregate_task_id=None,
        status="pending",
    ):
        self.add(
            task_id,
            status=str(status),
            name=name,
            query=query,
            source=source,
            target_count=target_count,
            config=config,
            aggregate_task_id=aggregate_task_id,
        )

    async def get_task(self, task_id):
        task = self.tasks.get(task_id)
        return dataclasses.replace(task) if task else None

    async def get_status(self, task_id):
        task = self.tasks.get(task_id)
        return task.status if task else None

    async def list_tasks(self, status=None, query=None, limit=20, offset=0):
        items = [
            task
            for task in self.tasks.values()
            if (status is None or task.status == status) and (query is None or query in task.query)
        ]
        return items[offset : offset + limit], len(items)

    async def list_running_tasks(self):
        return [task for task in self.tasks.values() if task.status == "running"]

    async def mark_running(self, task_id):
        task = self.tasks[task_id]
        if task.status not in ("pending", "running"):
            return False
        task.status = "running"
        task.started_at = task.started_at or datetime.now(UTC)
        return True

    async def mark_completed(self, task_id):
        task = self.tasks[task_id]
        if task.status != "running":
            return False
        task.status = "completed"
        task.progress = 100
        return True

    async def mark_failed(self, task_id, error):
        task = self.tasks[task_id]
        if task.status in TERMINAL_TASK_STATUSES:
            return False
        task.status = "failed"
        task.error = error
        return True

    async def cancel(self, task_id, error=None):
        task = self.tasks.get(task_id)
        if task is None or task.status not in ("pending", "running"):
            return False
        task.status = "cancelled"
        task.error = error or task.error
        return True

    async def update_progress(self, task_id, progress):
        self.tasks[task_id].progress = progress

    async def add_lead_counts(self, task_id, saved=0, failed=0):
        task = self.tasks[task_id]
        task.total_leads += saved + failed
        task.success_leads += saved
        task.failed_leads += failed


class FakeAggregateRepository:
    def __init__(self, tasks: FakeTaskRepository | None = None):
        self.aggregates: dict[str, AggregateTask] = {}
        self.task_repo = tasks or FakeTaskRepository()
        self.finalize_calls = 0

    def add(self, aggregate_id: str, total: int, status: str = "running", **fields) -> AggregateTask:
        aggregate = AggregateTask(
            id=aggregate_id,
            name=fields.pop("name", aggregate_id),
            status=status,
            keywords=fields.pop("keywords", []),
            targets=fields.pop("targets", []),
            total_sub_tasks=total,
            **fields,
        )
        self.aggregates[aggregate_id] = aggregate
        return aggregate

    async def create_with_tasks(self, aggregate, tasks):
        self.add(
            aggregate["id"],
            total=len(tasks),
            name=aggregate["name"],
            keywords=aggregate["keywords"],
            targets=aggregate["targets"],
            description=aggregate.get("description"),
        )
        for task in tasks:
            await self.task_repo.create_task(
                task["id"],
                task["name"],
                task["query"],
                task["source"],
                task["target_count"],
                task["config"],
                aggregate_task_id=aggregate["id"],
            )

    async def get_aggregate(self, aggregate_id):
        aggregate = self.aggregates.get(aggregate_id)
        return dataclasses.replace(aggregate) if aggregate else None

    async def get_status(self, aggregate_id):
        aggregate = self.aggregates.get(aggregate_id)
        return aggregate.status if aggregate else None

    async def list_aggregates(self, status=None, limit=20, offset=0):
        items = [a for a in self.aggregates.values() if status is None or a.status == status]
        return items[offset : offset + limit], len(items)

    async def sub_task_status_counts(self, aggregate_id):
        counts: dict[str, int] = {}
        for task in self.task_repo.tasks.values():
            if task.aggregate_task_id == aggregate_id:
                counts[task.status] = counts.get(task.status, 0) + 1
        return counts

    async def increment_counter(self, aggregate_id, outcome):
        aggregate = self.aggregates.get(aggregate_id)
        if aggregate is None or aggregate.finished_sub_tasks >= aggregate.total_sub_tasks:
            return None
        if SubTaskOutcome(outcome) == SubTaskOutcome.COMPLETED:
            aggregate.completed_sub_tasks += 1
        else:
            aggregate.failed_sub_tasks += 1
        # Let concurrent callers interleave between the increment and the read-back.
        await asyncio.sleep(0)
        return {
            "id": aggregate.id,
            "total_sub_tasks": aggregate.total_sub_tasks,
            "completed_sub_tasks": aggregate.completed_sub_tasks,
            "failed_sub_tasks": aggregate.failed_sub_tasks,
            "status": aggregate.status,
        }

    async def finalize_if_open(self, aggregate_id, status):
        self.finalize_calls += 1
        aggregate = self.aggregates[aggregate_id]
        if aggregate.status in TERMINAL_TASK_STATUSES:
            return False
        aggregate.status = str(status)
        return True

    async def cancel(self, aggregate_id):
        aggregate = self.aggregates.get(aggregate_id)
        if aggregate is None or aggregate.status in TERMINAL_TASK_STATUSES:
            return False, 0
        aggregate.status = "cancelled"
        cancelled = 0
        for task in self.task_repo.tasks.values():
            if task.aggregate_task_id == aggregate_id and task.status in ("pending", "running"):
                task.status = "cancelled"
                task.error = "Parent aggregate task terminated"
                cancelled += 1
        return True, cancelled


class FakeSearchPointRepository:
    def __init__(self):
        self.points: dict[str, list[SearchPoint]] = {}

    def seed(self, task_id: str, count: int, statuses: dict[int, str] | None = None) -> None:
        statuses = statuses or {}
        self.points[task_id] = [
            SearchPoint(
                task_id=task_id,
                sequence=sequence,
                latitude=10.0 + sequence / 100,
                longitude=20.0,
                status=statuses.get(sequence, "pending"),
            )
            for sequence in range(1, count + 1)
        ]

    def status_of(self, task_id: str) -> dict[int, str]:
        return {point.sequence: point.status for point in self.points.get(task_id, [])}

    def _point(self, task_id, sequence) -> SearchPoint:
        return next(p for p in self.points[task_id] if p.sequence == sequence)

    async def has_points(self, task_id):
        return bool(self.points.get(task_id))

    async def create_points(self, task_id, points):
        if self.points.get(task_id):
            raise PointsAlreadyPlannedError(task_id)
        self.points[task_id] = [
            SearchPoint(
                task_id=task_id,
                sequence=point.sequence,
                latitude=point.latitude,
                longitude=point.longitude,
                status="pending",
            )
            for point in points
        ]
        return len(points)

    async def pending_or_retryable(self, task_id, include_interrupted=False):
        statuses = {"pending", "failed"} | ({"running"} if include_interrupted else set())
        return sorted(
            (dataclasses.replace(p) for p in self.points.get(task_id, []) if p.status in statuses),
            key=lambda p: p.sequence,
        )

    async def list_points(self, task_id):
        return list(self.points.get(task_id, []))

    async def mark_running(self, task_id, sequence):
        point = self._point(task_id, sequence)
        if point.status not in ("pending", "failed", "running"):
            return False
        point.status = "running"
        return True

    async def mark_completed(self, task_id, sequence, found, saved):
        point = self._point(task_id, sequence)
        if point.status not in ("running", "completed"):
            return False
        point.status = "completed"
        point.results_found = found
        point.results_saved = saved
        return True

    async def mark_failed(self, task_id, sequence, error):
        point = self._point(task_id, sequence)
        if point.status not in ("running", "failed"):
            return False
        point.status = "failed"
        point.error = error
        return True

    async def count_points(self, task_id):
        return len(self.points.get(task_id, []))

    async def point_stats(self, task_id):
        stats = {s: 0 for s in ("pending", "running", "completed", "failed", "skipped")}
        for point in self.points.get(task_id, []):
            stats[point.status] += 1
        stats["total"] = len(self.points.get(task_id, []))
        return stats


class FakeLeadRepository:
    def __init__(self):
        self.saved: list[tuple[str, str, object]] = []

    async def save_lead(self, task_id, record, source):
        lead_id = f"lead-{len(self.saved) + 1}"
        self.saved.append((lead_id, task_id, record))
        return lead_id

    async def dedup_keys(self, task_id):
        return {
            record_key(record.company_name, record.phone)
            for _, owner, record in self.saved
            if owner == task_id
        }

    def names(self, task_id: str | None = None) -> list[str]:
        return [r.company_name for _, owner, r in self.saved if task_id in (None, owner)]


class FakeQueue:
    def __init__(self, name: str = "test", visibility_timeout: int = 60):
        self.name = name
        self.visibility_timeout = visibility_timeout
        self.enqueued: list[dict] = []
        self.live: set[str] = set()
        self.pending: list[Job] = []
        self.acked: list[str] = []
        self.retried: list[tuple[str, float]] = []
        self.dead: list[tuple[str, str]] = []

    async def enqueue(self, data, priority=5, delay=0, job_id=None):
        job_id = job_id or f"job-{len(self.enqueued) + 1}"
        if job_id in self.live:
            return None
        self.live.add(job_id)
        self.enqueued.append({"data": data, "priority": priority, "delay": delay, "job_id": job_id})
        self.pending.append(Job(id=job_id, queue=self.name, data=data, priority=priority))
        return job_id

    def job_ids(self) -> list[str]:
        return [entry["job_id"] for entry in self.enqueued]

    async def reserve(self, timeout=0, poll_interval=0.5):
        if not self.pending:
            await asyncio.sleep(0)
            return None
        return self.pending.pop(0)

    async def touch(self, job):
        return None

    async def ack(self, job):
        self.live.discard(job.id)
        self.acked.append(job.id)

    async def retry(self, job, delay):
        self.retried.append((job.id, delay))

    async def dead_letter(self, job, error):
        self.live.discard(job.id)
        self.dead.append((job.id, error))

    async def requeue_expired(self):
        return 0


class FakeExtractor:
    """Returns canned results per call; `on_call` runs before each result is returned."""

    def __init__(self, results=None, on_call=None):
        self.results = results or {}
        self.on_call = on_call
        self.calls: list[tuple] = []

    async def extract(self, query, coordinates, limit):
        self.calls.append((query, coordinates, limit))
        call_number = len(self.calls)
        if self.on_call:
            await self.on_call(call_number)
        result = self.results.get(call_number, self.results.get("default", []))
        if isinstance(result, Exception):
            raise result
        return [dict(item) for item in result]


class FakePipelineRepository:
    def __init__(self):
        self.leads: dict[str, Lead] = {}
        self.stages: dict[tuple[str, str], StageState] = {}
        self.ratings: dict[str, dict] = {}
        self.contacts: dict[str, list] = {}
        self.automation_logs: list[tuple] = []

    def add_lead(self, lead_id: str, statuses: dict[str, str] | None = None, **fields) -> Lead:
        lead = Lead(
            id=lead_id,
            task_id=fields.pop("task_id", "task-1"),
            company_name=fields.pop("company_name", f"Company {lead_id}"),
            **fields,
        )
        self.leads[lead_id] = lead
        statuses = statuses or {}
        for stage in Stage:
            self.stages[(lead_id, stage.value)] = StageState(
                lead_id=lead_id, stage=stage, status=statuses.get(stage.value, "pending")
            )
        return lead

    def status(self, lead_id: str, stage: Stage) -> str:
        return self.stages[(lead_id, Stage(stage).value)].status

    def state(self, lead_id: str, stage: Stage) -> StageState:
        return self.stages[(lead_id, Stage(stage).value)]

    async def get_lead(self, lead_id):
        return self.leads.get(lead_id)

    async def get_stage(self, lead_id, stage):
        state = self.stages.get((lead_id, Stage(stage).value))
        return dataclasses.replace(state) if state else None

    async def transition(
        self,
        lead_id,
        stage,
        from_statuses,
        to_status,
        *,
        error=None,
        external_ref=None,
        count_attempt=False,
    ):
        sources = [str(s) for s in from_statuses]
        for source in sources:
            validate_transition(stage, source, to_status)
        state = self.stages.get((lead_id, Stage(stage).value))
        if state is None or state.status not in sources:
            return False
        state.status = str(to_status)
        state.error = error
        state.version += 1
        state.attempts += 1 if count_attempt else 0
        if external_ref:
            state.external_ref = external_ref
        return True

    async def rearm(self, stage, statuses, lead_ids=None):
        sources = [str(s) for s in statuses]
        for source in sources:
            validate_transition(stage, source, "pending")
        rearmed = []
        for (lead_id, stage_name), state in self.stages.items():
            if stage_name != Stage(stage).value or state.status not in sources:
                continue
            if lead_ids is not None and lead_id not in lead_ids:
                continue
            state.status = "pending"
            state.error = None
            state.version += 1
            rearmed.append(lead_id)
        return rearmed

    async def find_rating_by_domain(self, domain, exclude_lead_id):
        for lead_id, lead in self.leads.items():
            if lead_id == exclude_lead_id or lead.domain != domain:
                continue
            if self.status(lead_id, Stage.RATING) == "completed" and lead_id in self.ratings:
                rating = self.ratings[lead_id]
                return ExistingRating(
                    overall_rating=rating["overall_rating"],
                    suggestion=rating["suggestion"],
                    reasoning=rating["reasoning"],
                    source_lead_id=lead_id,
                    source_company_name=lead.company_name,
                )
        return None

    async def save_rating(self, lead_id, result: ScoreResult):
        self.ratings[lead_id] = result.model_dump()

    async def get_rating(self, lead_id):
        return self.ratings.get(lead_id)

    async def add_contacts(self, lead_id, contacts, source):
        stored = self.contacts.setdefault(lead_id, [])
        known = {ContactRecord.model_validate(c).identity() for c in stored}
        added = 0
        for contact in contacts:
            if contact.identity() in known:
                continue
            known.add(contact.identity())
            stored.append({**contact.model_dump(), "source": source})
            added += 1
        return added

    async def list_contacts(self, lead_id):
        return list(self.contacts.get(lead_id, []))

    async def log_automation(self, lead_id, action_type, status, error=None):
        self.automation_logs.append((lead_id, action_type, status, error))

    async def list_leads_by_stage(self, stage, status=None, limit=20, offset=0):
        rows = [
            {"id": lead_id, "status": state.status}
            for (lead_id, stage_name), state in self.stages.items()
            if stage_name == Stage(stage).value and (status is None or state.status == status)
        ]
        return rows[offset : offset + limit], len(rows)

    async def stage_counts(self, stage):
        counts: dict[str, int] = {}
        for (_, stage_name), state in self.stages.items():
            if stage_name == Stage(stage).value:
                counts[state.status] = counts.get(state.status, 0) + 1
        return counts


class FakeScorer:
    def __init__(self, result: ScoreResult | None = None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[dict] = []

    async def score(self, context):
        self.calls.append(context)
        if self.error:
            raise self.error
        return self.result


class FakeEnricher:
    def __init__(self, domain=None, contacts=None, error: Exception | None = None):
        self.domain = domain
        self.contacts = contacts or []
        self.error = error
        self.resolved: list[str] = []
        self.fetched: list[str] = []

    async def resolve_domain(self, company_name):
        self.resolved.append(company_name)
        return self.domain

    async def fetch_contacts(self, domain):
        self.fetched.append(domain)
        if self.error:
            raise self.error
        return list(self.contacts)


class FakeCrmSink:
    def __init__(self, record_id: str = "crm-1", error: Exception | None = None):
        self.record_id = record_id
        self.error = error
        self.pushed: list[dict] = []

    async def push(self, lead):
        self.pushed.append(lead)
        if self.error:
            raise self.error
        return self.record_id


@pytest.fixture
def task_repo():
    return FakeTaskRepository()


@pytest.fixture
def aggregate_repo(task_repo):
    return FakeAggregateRepository(task_repo)


@pytest.fixture
def point_repo():
    return FakeSearchPointRepository()


@pytest.fixture
def lead_repo():
    return FakeLeadRepository()


@pytest.fixture
def pipeline_repo():
    return FakePipelineRepository()


@pytest.fixture
def fake_queue():
    return FakeQueue()


class FakeRedis:
    """Just enough of redis.asyncio for JobQueue.enqueue and touch."""

    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.counters: dict[str, int] = {}

    async def get_client(self):
        return self

    async def hsetnx(self, key: str, field: str, value: str) -> bool:
        bucket = self.hashes.setdefault(key, {})
        if field in bucket:
            return False
        bucket[field] = value
        return True

    async def incr(self, key: str) -> int:
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def zadd(self, key: str, mapping: dict[str, float], xx: bool = False) -> int:
        zset = self.zsets.setdefault(key, {})
        added = 0
        for member, score in mapping.items():
            if xx and member not in zset:
                continue
            added += member not in zset
            zset[member] = score
        return added


@pytest.fixture
def fake_redis():
    return FakeRedis()
