"""
Queue consumer: runs a handler over reserved jobs with bounded concurrency,
a start-rate limit, and the retry/backoff policy on failure.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from leadgrid.config import settings
from leadgrid.infrastructure.observability.logging import (
    bind_job_context,
    clear_job_context,
    get_logger,
    log_job_outcome,
)
from leadgrid.services.queue.job_queue import Job, JobQueue
from leadgrid.services.queue.retry_policy import RetryPolicy

logger = get_logger(__name__)

JobHandler = Callable[[Job], Awaitable[object]]


class RateLimiter:
    """Spaces out acquisitions so at most `rate_per_second` pass per second."""

    def __init__(self, rate_per_second: float | None):
        self.interval = 1.0 / rate_per_second if rate_per_second else 0.0
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        if not self.interval:
            return
        async with self._lock:
            now = time.monotonic()
            wait = self._next_slot - now
            self._next_slot = max(now, self._next_slot) + self.interval
        if wait > 0:
            await asyncio.sleep(wait)


class QueueConsumer:
    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler,
        policy: RetryPolicy,
        concurrency: int = 1,
        rate_per_second: float | None = None,
        poll_timeout: float | None = None,
        sweep_interval: float = 30.0,
    ):
        self.queue = queue
        self.handler = handler
        self.policy = policy
        self.concurrency = max(1, concurrency)
        self.rate_limiter = RateLimiter(rate_per_second)
        self.poll_timeout = (
            poll_timeout if poll_timeout is not None else settings.QUEUE_POLL_TIMEOUT_SECONDS
        )
        self.sweep_interval = sweep_interval
        self._stopping = asyncio.Event()

    def stop(self) -> None:
        self._stopping.set()

    async def run(self) -> None:
        """Consume until stop() is called or the surrounding task is cancelled."""
        logger.info(
            "Queue consumer started",
            queue=self.queue.name,
            concurrency=self.concurrency,
            rate_interval=self.rate_limiter.interval,
        )
        loops = [
            asyncio.create_task(self._loop(index), name=f"{self.queue.name}-{index}")
            for index in range(self.concurrency)
        ]
        loops.append(asyncio.create_task(self._sweep(), name=f"{self.queue.name}-sweep"))
        try:
            await asyncio.gather(*loops)
        finally:
            for task in loops:
                task.cancel()
            await asyncio.gather(*loops, return_exceptions=True)
            logger.info("Queue consumer stopped", queue=self.queue.name)

    async def _sweep(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.queue.requeue_expired()
            except Exception as e:
                logger.error("Expired job sweep failed", queue=self.queue.name, error=str(e))
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.sweep_interval)
            except TimeoutError:
                pass

    async def _loop(self, index: int) -> None:
        while not self._stopping.is_set():
            try:
                job = await self.queue.reserve(timeout=self.poll_timeout)
            except Exception as e:
                logger.error("Job reserve failed", queue=self.queue.name, worker=index, error=str(e))
                await asyncio.sleep(min(self.poll_timeout, 5) or 1)
                continue
            if job is None:
                continue
            await self.rate_limiter.acquire()
            try:
                await self.process(job)
            except Exception as e:
                # The job stays in-flight and is redelivered after its deadline.
                logger.error("Job settlement failed", queue=self.queue.name, job_id=job.id, error=str(e))

    async def _keep_alive(self, job: Job) -> None:
        interval = max(self.queue.visibility_timeout / 3, 1)
        while True:
            await asyncio.sleep(interval)
            try:
                await self.queue.touch(job)
            except Exception as e:
                logger.warning("Job keep-alive failed", queue=self.queue.name, job_id=job.id, error=str(e))

    async def process(self, job: Job) -> str:
        """Run the handler for one job and settle it; returns the outcome."""
        bind_job_context(queue=self.queue.name, job_id=job.id, attempt=job.attempt)
        started = time.monotonic()
        keep_alive = asyncio.create_task(self._keep_alive(job))
        try:
            try:
                await self.handler(job)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                return await self._settle_failure(job, exc, started)
            finally:
                keep_alive.cancel()

            await self.queue.ack(job)
            log_job_outcome(self.queue.name, job.id, "completed", _elapsed_ms(started))
            return "completed"
        finally:
            clear_job_context()

    async def _settle_failure(self, job: Job, exc: Exception, started: float) -> str:
        decision = self.policy.decide(exc, job.attempt)
        if decision.should_retry:
            await self.queue.retry(job, decision.delay_seconds)
            log_job_outcome(self.queue.name, job.id, "retrying", _elapsed_ms(started), error=str(exc))
            return "retrying"

        await self.queue.dead_letter(job, str(exc))
        log_job_outcome(self.queue.name, job.id, "failed", _elapsed_ms(started), error=str(exc))
        return "failed"


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)
