"""
Reliable Redis job queue.

Layout per queue (all keys under `<prefix>:<name>:`):
    waiting   zset, score = priority * 1e12 + sequence (lowest pops first)
    delayed   zset, score = due unix time
    inflight  zset, score = visibility deadline
    jobs      hash, job id -> JSON payload; presence means the id is live
    attempts  hash, job id -> deliveries so far
    dead      list of dead-lettered payloads

Delivery is at-least-once: a reserved job that is neither acked nor
retried before its deadline goes back to `waiting`.
"""

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

import redis.asyncio as redis

from leadgrid.config import settings
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.services.infrastructure.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

DEFAULT_PRIORITY = 5
HIGHEST_PRIORITY = 1
_PRIORITY_SCALE = 1_000_000_000_000
_DEAD_LETTER_KEEP = 1000


class QueueError(Exception):
    """Raised when the queue backend cannot complete an operation."""

    def __init__(self, message: str, queue: str, operation: str, recoverable: bool = True):
        super().__init__(message)
        self.queue = queue
        self.operation = operation
        self.recoverable = recoverable


@dataclass(slots=True)
class Job:
    id: str
    queue: str
    data: dict[str, Any]
    priority: int = DEFAULT_PRIORITY
    attempt: int = 1
    enqueued_at: float = field(default_factory=time.time)


class JobQueue:
    """Named priority queue with delayed retries and visibility timeouts."""

    # KEYS: waiting, delayed, inflight, jobs, attempts, seq
    # ARGV: now, visibility deadline
    RESERVE_LUA_SCRIPT = """
    local now = tonumber(ARGV[1])
    local due = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', now, 'LIMIT', 0, 100)
    for _, id in ipairs(due) do
        redis.call('ZREM', KEYS[2], id)
        local payload = redis.call('HGET', KEYS[4], id)
        if payload then
            local job = cjson.decode(payload)
            local seq = redis.call('INCR', KEYS[6])
            redis.call('ZADD', KEYS[1], job['priority'] * 1000000000000 + seq, id)
        end
    end

    local popped = redis.call('ZPOPMIN', KEYS[1])
    if #popped == 0 then
        return nil
    end
    local id = popped[1]
    local payload = redis.call('HGET', KEYS[4], id)
    if not payload then
        return nil
    end
    local attempt = redis.call('HINCRBY', KEYS[5], id, 1)
    redis.call('ZADD', KEYS[3], ARGV[2], id)
    return {id, payload, attempt}
    """

    # KEYS: inflight, waiting, jobs, seq
    # ARGV: now
    REQUEUE_LUA_SCRIPT = """
    local expired = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
    local moved = 0
    for _, id in ipairs(expired) do
        redis.call('ZREM', KEYS[1], id)
        local payload = redis.call('HGET', KEYS[3], id)
        if payload then
            local job = cjson.decode(payload)
            local seq = redis.call('INCR', KEYS[4])
            redis.call('ZADD', KEYS[2], job['priority'] * 1000000000000 + seq, id)
            moved = moved + 1
        end
    end
    return moved
    """

    def __init__(
        self,
        name: str,
        redis_client: FastRedisClient | None = None,
        prefix: str | None = None,
        visibility_timeout: int | None = None,
    ):
        self.name = name
        self.redis = redis_client or fast_redis
        self.prefix = f"{prefix or settings.QUEUE_PREFIX}:{name}"
        self.visibility_timeout = visibility_timeout or settings.QUEUE_VISIBILITY_TIMEOUT_SECONDS

    def _key(self, suffix: str) -> str:
        return f"{self.prefix}:{suffix}"

    def _error(self, operation: str, error: Exception) -> QueueError:
        logger.error("Queue operation failed", queue=self.name, operation=operation, error=str(error))
        return QueueError(f"Queue {operation} failed: {error}", queue=self.name, operation=operation)

    async def enqueue(
        self,
        data: dict[str, Any],
        priority: int = DEFAULT_PRIORITY,
        delay: float = 0,
        job_id: str | None = None,
    ) -> str | None:
        """
        Add a job. Lower priority numbers run first; ties are FIFO.

        Returns the job id, or None when a job with the same id is still live.
        """
        job_id = job_id or str(uuid.uuid4())
        payload = json.dumps(
            {"id": job_id, "data": data, "priority": int(priority), "enqueued_at": time.time()},
            default=str,
        )
        try:
            client = await self.redis.get_client()
            if not await client.hsetnx(self._key("jobs"), job_id, payload):
                logger.debug("Duplicate job ignored", queue=self.name, job_id=job_id)
                return None

            if delay > 0:
                await client.zadd(self._key("delayed"), {job_id: time.time() + delay})
            else:
                seq = await client.incr(self._key("seq"))
                await client.zadd(self._key("waiting"), {job_id: priority * _PRIORITY_SCALE + seq})
        except redis.RedisError as e:
            raise self._error("enqueue", e) from e

        logger.debug("Job enqueued", queue=self.name, job_id=job_id, priority=priority, delay=delay)
        return job_id

    async def reserve(self, timeout: float = 0, poll_interval: float = 0.5) -> Job | None:
        """Pop the next due job, waiting up to `timeout` seconds for one."""
        deadline = time.monotonic() + timeout
        try:
            client = await self.redis.get_client()
            while True:
                now = time.time()
                result = await client.eval(
                    self.RESERVE_LUA_SCRIPT,
                    6,
                    self._key("waiting"),
                    self._key("delayed"),
                    self._key("inflight"),
                    self._key("jobs"),
                    self._key("attempts"),
                    self._key("seq"),
                    now,
                    now + self.visibility_timeout,
                )
                if result:
                    job_id, payload, attempt = result
                    body = json.loads(payload)
                    return Job(
                        id=job_id,
                        queue=self.name,
                        data=body.get("data") or {},
                        priority=int(body.get("priority", DEFAULT_PRIORITY)),
                        attempt=int(attempt),
                        enqueued_at=float(body.get("enqueued_at") or now),
                    )
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                await asyncio.sleep(min(poll_interval, remaining))
        except redis.RedisError as e:
            raise self._error("reserve", e) from e

    async def touch(self, job: Job) -> None:
        """Push the visibility deadline of a job still being worked on."""
        try:
            client = await self.redis.get_client()
            await client.zadd(
                self._key("inflight"), {job.id: time.time() + self.visibility_timeout}, xx=True
            )
        except redis.RedisError as e:
            raise self._error("touch", e) from e

    async def ack(self, job: Job) -> None:
        try:
            client = await self.redis.get_client()
            async with client.pipeline(transaction=True) as pipe:
                pipe.zrem(self._key("inflight"), job.id)
                pipe.hdel(self._key("jobs"), job.id)
                pipe.hdel(self._key("attempts"), job.id)
                await pipe.execute()
        except redis.RedisError as e:
            raise self._error("ack", e) from e

    async def retry(self, job: Job, delay: float) -> None:
        try:
            client = await self.redis.get_client()
            async with client.pipeline(transaction=True) as pipe:
                pipe.zrem(self._key("inflight"), job.id)
                pipe.zadd(self._key("delayed"), {job.id: time.time() + max(delay, 0)})
                await pipe.execute()
        except redis.RedisError as e:
            raise self._error("retry", e) from e
        logger.info("Job scheduled for retry", queue=self.name, job_id=job.id, attempt=job.attempt, delay=delay)

    async def dead_letter(self, job: Job, error: str) -> None:
        entry = json.dumps(
            {
                "id": job.id,
                "data": job.data,
                "attempt": job.attempt,
                "error": error,
                "failed_at": time.time(),
            },
            default=str,
        )
        try:
            client = await self.redis.get_client()
            async with client.pipeline(transaction=True) as pipe:
                pipe.zrem(self._key("inflight"), job.id)
                pipe.hdel(self._key("jobs"), job.id)
                pipe.hdel(self._key("attempts"), job.id)
                pipe.lpush(self._key("dead"), entry)
                pipe.ltrim(self._key("dead"), 0, _DEAD_LETTER_KEEP - 1)
                await pipe.execute()
        except redis.RedisError as e:
            raise self._error("dead_letter", e) from e
        logger.warning("Job dead-lettered", queue=self.name, job_id=job.id, attempt=job.attempt, error=error)

    async def requeue_expired(self) -> int:
        """Return in-flight jobs whose visibility deadline passed to `waiting`."""
        try:
            client = await self.redis.get_client()
            moved = await client.eval(
                self.REQUEUE_LUA_SCRIPT,
                4,
                self._key("inflight"),
                self._key("waiting"),
                self._key("jobs"),
                self._key("seq"),
                time.time(),
            )
        except redis.RedisError as e:
            raise self._error("requeue_expired", e) from e
        moved = int(moved or 0)
        if moved:
            logger.warning("Expired in-flight jobs requeued", queue=self.name, count=moved)
        return moved

    async def stats(self) -> dict[str, int]:
        try:
            client = await self.redis.get_client()
            async with client.pipeline(transaction=False) as pipe:
                pipe.zcard(self._key("waiting"))
                pipe.zcard(self._key("delayed"))
                pipe.zcard(self._key("inflight"))
                pipe.llen(self._key("dead"))
                waiting, delayed, inflight, dead = await pipe.execute()
        except redis.RedisError as e:
            raise self._error("stats", e) from e
        return {"waiting": waiting, "delayed": delayed, "inflight": inflight, "dead": dead}


CRAWL_QUEUE = "crawl"
RATING_QUEUE = "rating"
ENRICH_QUEUE = "enrich"
CRM_QUEUE = "crm"

_queues: dict[str, JobQueue] = {}


def get_queue(name: str) -> JobQueue:
    """Process-wide JobQueue per name, bound to the shared Redis client."""
    if name not in _queues:
        _queues[name] = JobQueue(name)
    return _queues[name]
