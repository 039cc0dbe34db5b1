import pytest

from leadgrid.db.helpers import DatabaseError
from leadgrid.features.pipeline.services import EnrichmentService
from leadgrid.models.domain.lead_domain import ContactRecord, Stage
from leadgrid.services.external.errors import PermanentError, RetryableError
from leadgrid.services.queue.retry_policy import RetryPolicy
from tests.conftest import FakeEnricher, FakeQueue


@pytest.fixture
def crm_queue():
    return FakeQueue("crm")


@pytest.fixture
def make_service(pipeline_repo, crm_queue):
    def _make(enricher):
        return EnrichmentService(
            enricher,
            repository=pipeline_repo,
            crm_queue=crm_queue,
            policy=RetryPolicy(base_delay=1.0, max_delay=1.0, max_attempts=2),
        )

    return _make


@pytest.mark.asyncio
async def test_contacts_are_stored_with_first_as_primary(make_service, pipeline_repo, crm_queue):
    pipeline_repo.add_lead("l1", domain="acme.com")
    enricher = FakeEnricher(
        contacts=[ContactRecord(name="Ada", email="ada@acme.com"), ContactRecord(name="Bob")]
    )

    status = await make_service(enricher).enrich("l1")

    assert status == "enriched"
    assert enricher.resolved == []
    assert enricher.fetched == ["acme.com"]
    contacts = pipeline_repo.contacts["l1"]
    assert [(c["name"], c["is_primary"], c["source"]) for c in contacts] == [
        ("Ada", True, "enrichment"),
        ("Bob", False, "enrichment"),
    ]
    assert pipeline_repo.status("l1", Stage.ENRICH) == "enriched"
    assert crm_queue.job_ids() == ["crm-l1"]


@pytest.mark.asyncio
async def test_unresolved_domain_fails_and_still_reaches_crm(make_service, pipeline_repo, crm_queue):
    pipeline_repo.add_lead("l1", company_name="Nameless Co")
    enricher = FakeEnricher(domain=None)

    status = await make_service(enricher).enrich("l1")

    assert status == "failed"
    assert enricher.resolved == ["Nameless Co"]
    state = pipeline_repo.state("l1", Stage.ENRICH)
    assert (state.status, state.error) == ("failed", "Unable to resolve company domain")
    assert crm_queue.job_ids() == ["crm-l1"]


@pytest.mark.asyncio
async def test_terminal_vendor_error_hands_off_to_crm_once(make_service, pipeline_repo, crm_queue):
    pipeline_repo.add_lead("l1", domain="acme.com")
    service = make_service(FakeEnricher(error=PermanentError("402 payment required")))

    with pytest.raises(PermanentError):
        await service.enrich("l1")
    # A duplicate delivery finds the stage failed and does nothing.
    assert await service.enrich("l1") == "skipped"

    assert pipeline_repo.status("l1", Stage.ENRICH) == "failed"
    assert crm_queue.job_ids() == ["crm-l1"]


@pytest.mark.asyncio
async def test_retryable_vendor_error_keeps_stage_pending(make_service, pipeline_repo, crm_queue):
    pipeline_repo.add_lead("l1", domain="acme.com")

    with pytest.raises(RetryableError):
        await make_service(FakeEnricher(error=RetryableError("503"))).enrich("l1", attempt=1)

    assert pipeline_repo.status("l1", Stage.ENRICH) == "pending"
    assert crm_queue.enqueued == []


@pytest.mark.asyncio
async def test_already_enriched_lead_is_only_handed_off(make_service, pipeline_repo, crm_queue):
    pipeline_repo.add_lead("l1", statuses={"enrich": "enriched"})
    enricher = FakeEnricher(domain="acme.com")

    assert await make_service(enricher).enrich("l1") == "enriched"
    assert enricher.fetched == []
    assert crm_queue.job_ids() == ["crm-l1"]


@pytest.mark.asyncio
async def test_redelivery_after_a_failed_finish_does_not_duplicate_contacts(
    make_service, pipeline_repo, crm_queue, monkeypatch
):
    pipeline_repo.add_lead("l1", domain="acme.com")
    enricher = FakeEnricher(
        contacts=[ContactRecord(name="Ada", email="Ada@acme.com"), ContactRecord(name="Bob")]
    )
    service = make_service(enricher)
    transition = pipeline_repo.transition
    failures = [DatabaseError("connection lost", operation="execute_query", recoverable=True)]

    async def flaky_transition(*args, **kwargs):
        if failures:
            raise failures.pop()
        return await transition(*args, **kwargs)

    monkeypatch.setattr(pipeline_repo, "transition", flaky_transition)

    with pytest.raises(DatabaseError):
        await service.enrich("l1", attempt=1)
    status = await service.enrich("l1", attempt=2)

    assert status == "enriched"
    assert [c["name"] for c in pipeline_repo.contacts["l1"]] == ["Ada", "Bob"]
    assert crm_queue.job_ids() == ["crm-l1"]


def test_contact_identity_prefers_email_over_name():
    assert ContactRecord(name="Ada", email="ADA@acme.com").identity() == ("email", "ada@acme.com")
    assert ContactRecord(name="Bob").identity() == ("name", "Bob")
