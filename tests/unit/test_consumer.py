import pytest

from leadgrid.services.external.errors import PermanentError, RetryableError
from leadgrid.services.queue.consumer import QueueConsumer, RateLimiter
from leadgrid.services.queue.job_queue import Job
from leadgrid.services.queue.retry_policy import RetryPolicy

POLICY = RetryPolicy(base_delay=2.0, max_delay=8.0, max_attempts=3)


def _job(attempt=1):
    return Job(id="job-1", queue="test", data={"lead_id": "l1"}, attempt=attempt)


@pytest.mark.asyncio
async def test_successful_job_is_acked(fake_queue):
    seen = []

    async def handler(job):
        seen.append(job.data["lead_id"])

    outcome = await QueueConsumer(fake_queue, handler, POLICY).process(_job())

    assert outcome == "completed"
    assert seen == ["l1"]
    assert fake_queue.acked == ["job-1"]


@pytest.mark.asyncio
async def test_retryable_failure_is_rescheduled_with_backoff(fake_queue):
    async def handler(job):
        raise RetryableError("rate limit")

    outcome = await QueueConsumer(fake_queue, handler, POLICY).process(_job(attempt=2))

    assert outcome == "retrying"
    assert fake_queue.retried == [("job-1", 4.0)]
    assert fake_queue.acked == []


@pytest.mark.asyncio
async def test_exhausted_job_is_dead_lettered(fake_queue):
    async def handler(job):
        raise RetryableError("timeout")

    outcome = await QueueConsumer(fake_queue, handler, POLICY).process(_job(attempt=3))

    assert outcome == "failed"
    assert fake_queue.dead == [("job-1", "timeout")]


@pytest.mark.asyncio
async def test_permanent_failure_skips_retries(fake_queue):
    async def handler(job):
        raise PermanentError("bad payload")

    outcome = await QueueConsumer(fake_queue, handler, POLICY).process(_job())

    assert outcome == "failed"
    assert fake_queue.retried == []


@pytest.mark.asyncio
async def test_run_drains_queue_until_stopped(fake_queue):
    await fake_queue.enqueue({"lead_id": "l1"}, job_id="a")
    await fake_queue.enqueue({"lead_id": "l2"}, job_id="b")
    handled = []
    consumer = None

    async def handler(job):
        handled.append(job.id)
        if len(handled) == 2:
            consumer.stop()

    consumer = QueueConsumer(fake_queue, handler, POLICY, concurrency=2, poll_timeout=0)
    await consumer.run()

    assert sorted(handled) == ["a", "b"]
    assert sorted(fake_queue.acked) == ["a", "b"]


@pytest.mark.asyncio
async def test_rate_limiter_without_rate_never_waits():
    limiter = RateLimiter(None)

    await limiter.acquire()

    assert limiter.interval == 0.0
    assert RateLimiter(4).interval == 0.25
