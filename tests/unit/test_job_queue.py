import json

import pytest

from leadgrid.services.queue.job_queue import Job, JobQueue


@pytest.fixture
def queue(fake_redis):
    return JobQueue("rating", redis_client=fake_redis, prefix="test", visibility_timeout=60)


@pytest.mark.asyncio
async def test_enqueue_stores_payload_and_orders_by_priority(queue, fake_redis):
    low = await queue.enqueue({"lead_id": "l1"}, priority=5, job_id="rating-l1")
    high = await queue.enqueue({"lead_id": "l2"}, priority=1, job_id="rating-l2")

    assert (low, high) == ("rating-l1", "rating-l2")
    payload = json.loads(fake_redis.hashes["test:rating:jobs"]["rating-l1"])
    assert payload["data"] == {"lead_id": "l1"}
    waiting = fake_redis.zsets["test:rating:waiting"]
    assert waiting["rating-l2"] < waiting["rating-l1"]


@pytest.mark.asyncio
async def test_enqueue_ignores_live_duplicate_job_id(queue, fake_redis):
    assert await queue.enqueue({"lead_id": "l1"}, job_id="rating-l1") == "rating-l1"
    assert await queue.enqueue({"lead_id": "l1"}, job_id="rating-l1") is None

    assert len(fake_redis.zsets["test:rating:waiting"]) == 1


@pytest.mark.asyncio
async def test_delayed_jobs_wait_in_delayed_set(queue, fake_redis):
    await queue.enqueue({"lead_id": "l1"}, delay=30, job_id="rating-l1")

    assert "test:rating:waiting" not in fake_redis.zsets
    assert "rating-l1" in fake_redis.zsets["test:rating:delayed"]


@pytest.mark.asyncio
async def test_touch_only_extends_jobs_still_in_flight(queue, fake_redis):
    fake_redis.zsets["test:rating:inflight"] = {"rating-l1": 1.0}

    await queue.touch(Job(id="rating-l1", queue="rating", data={}))
    await queue.touch(Job(id="rating-gone", queue="rating", data={}))

    inflight = fake_redis.zsets["test:rating:inflight"]
    assert inflight["rating-l1"] > 1.0
    assert "rating-gone" not in inflight
