import json
from types import SimpleNamespace

import httpx
import pydantic
import pytest

from leadgrid.config import settings
from leadgrid.services.external.crm_client import HttpCrmSink
from leadgrid.services.external.enrichment_client import HttpContactEnricher
from leadgrid.services.external.errors import PermanentError, RetryableError
from leadgrid.services.external.extractor_client import HttpExtractor
from leadgrid.services.external.scoring_client import OpenAIScorer


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_extractor_posts_query_and_coordinates():
    requests = []

    def handler(request):
        requests.append(json.loads(request.content))
        return httpx.Response(200, json={"results": [{"name": "A"}, "junk"]})

    extractor = HttpExtractor("http://extractor", client=_client(handler))
    results = await extractor.extract("coffee", (1.5, 2.5), 20)
    await extractor.close()

    assert results == [{"name": "A"}]
    assert requests == [{"query": "coffee", "limit": 20, "coordinates": {"lat": 1.5, "lng": 2.5}}]


@pytest.mark.asyncio
@pytest.mark.parametrize(("status", "error"), [(429, RetryableError), (503, RetryableError), (404, PermanentError)])
async def test_http_status_maps_to_error_class(status, error):
    extractor = HttpExtractor(
        "http://extractor", client=_client(lambda request: httpx.Response(status, text="nope"))
    )

    with pytest.raises(error) as exc_info:
        await extractor.extract("coffee", None, 20)

    assert exc_info.value.status_code == status


def test_missing_base_url_is_a_permanent_error(monkeypatch):
    monkeypatch.setattr(settings, "CRM_API_URL", None)

    with pytest.raises(PermanentError):
        HttpCrmSink()


@pytest.mark.asyncio
async def test_enricher_resolves_domain_and_contacts():
    def handler(request):
        if request.url.path == "/companies/resolve":
            assert request.url.params["name"] == "Acme"
            return httpx.Response(200, json={"domain": " ACME.com "})
        assert request.headers["Authorization"] == "Bearer key"
        return httpx.Response(200, json={"contacts": [{"name": "Ada", "email": "ada@acme.com"}]})

    enricher = HttpContactEnricher("http://vendor", api_key="key", client=_client(handler))

    assert await enricher.resolve_domain("Acme") == "acme.com"
    contacts = await enricher.fetch_contacts("acme.com")
    assert [(c.name, c.email) for c in contacts] == [("Ada", "ada@acme.com")]


@pytest.mark.asyncio
async def test_crm_sink_requires_record_id():
    sink = HttpCrmSink("http://crm", client=_client(lambda request: httpx.Response(200, json={})))

    with pytest.raises(PermanentError):
        await sink.push({"company_name": "Acme"})


class _Completions:
    def __init__(self, content):
        self.content = content
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _openai(content):
    completions = _Completions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


@pytest.mark.asyncio
async def test_scorer_uses_industry_rule_then_default():
    client, completions = _openai('{"overall_rating": "B", "suggestion": "Email", "reasoning": "ok"}')
    scorer = OpenAIScorer(rules={"cafe": "Prefer busy cafes", "default": "Anything"}, client=client)

    result = await scorer.score({"company_name": "Acme", "industry": "Cafe"})

    assert result.overall_rating == "B"
    assert "Prefer busy cafes" in completions.calls[0]["messages"][1]["content"]
    assert scorer.rule_for("Florist") == "Anything"


@pytest.mark.asyncio
async def test_scorer_without_rule_reports_unconfigured():
    client, completions = _openai("{}")
    scorer = OpenAIScorer(rules={}, client=client)

    assert await scorer.score({"industry": "Cafe"}) is None
    assert completions.calls == []


@pytest.mark.asyncio
async def test_scorer_rejects_malformed_output():
    client, _ = _openai("not json")
    scorer = OpenAIScorer(rules={"default": "Anything"}, client=client)

    with pytest.raises(pydantic.ValidationError):
        await scorer.score({"industry": "Cafe"})
