import pytest

from leadgrid.features.crawl.services import RecoveryService
from leadgrid.services.queue.job_queue import HIGHEST_PRIORITY


@pytest.mark.asyncio
async def test_running_tasks_are_requeued_at_top_priority(task_repo, fake_queue):
    task_repo.add("t1", status="running")
    task_repo.add("t2", status="completed")
    task_repo.add("t3", status="running")

    recovered = await RecoveryService(task_repo, fake_queue).recover_interrupted_tasks()

    assert recovered == 2
    assert fake_queue.job_ids() == ["recovery-t1", "recovery-t3"]
    assert {entry["priority"] for entry in fake_queue.enqueued} == {HIGHEST_PRIORITY}
    assert fake_queue.enqueued[0]["data"] == {"task_id": "t1"}


@pytest.mark.asyncio
async def test_second_recovery_does_not_duplicate_jobs(task_repo, fake_queue):
    task_repo.add("t1", status="running")
    service = RecoveryService(task_repo, fake_queue)

    await service.recover_interrupted_tasks()
    recovered = await service.recover_interrupted_tasks()

    assert recovered == 0
    assert fake_queue.job_ids() == ["recovery-t1"]


@pytest.mark.asyncio
async def test_enqueue_error_does_not_stop_recovery(task_repo, fake_queue):
    task_repo.add("t1", status="running")
    task_repo.add("t2", status="running")
    enqueue = fake_queue.enqueue

    async def flaky_enqueue(data, priority=5, delay=0, job_id=None):
        if data["task_id"] == "t1":
            raise ConnectionError("redis down")
        return await enqueue(data, priority=priority, delay=delay, job_id=job_id)

    fake_queue.enqueue = flaky_enqueue

    recovered = await RecoveryService(task_repo, fake_queue).recover_interrupted_tasks()

    assert recovered == 1
    assert fake_queue.job_ids() == ["recovery-t2"]


@pytest.mark.asyncio
async def test_nothing_to_recover(task_repo, fake_queue):
    assert await RecoveryService(task_repo, fake_queue).recover_interrupted_tasks() == 0
