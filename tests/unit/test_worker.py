from contextlib import asynccontextmanager

import pytest

from leadgrid.jobs import worker


@asynccontextmanager
async def _no_resources():
    yield


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)
    monkeypatch.setattr(worker, "worker_resources", _no_resources)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_job_name_defaults_to_all(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["leadgrid-worker"])
    monkeypatch.delenv("WORKER_JOB", raising=False)

    assert worker._resolve_job_name() == "all"


def test_job_name_from_environment(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["leadgrid-worker"])
    monkeypatch.setenv("WORKER_JOB", " Rating ")

    assert worker._resolve_job_name() == "rating"


def test_every_stage_has_a_worker():
    assert {"crawl", "rating", "enrich", "crm", "all"} <= set(worker.JOB_REGISTRY)
