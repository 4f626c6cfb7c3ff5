from __future__ import annotations

import asyncio

import pytest

from scout.models.company import FreshsalesDeal, FreshsalesStatus, HubSpotStatus
from scout.services import enrichment as enrichment_module
from scout.services.cache import CacheLayer, InMemoryCacheStore
from scout.services.enrichment import (
    ApolloEnricher,
    CompanyEnricher,
    FreshsalesIntelProvider,
    HubSpotStatusProvider,
    derive_freshsales_status,
    derive_hubspot_status,
    is_stalled,
    run_in_batches,
)
from scout.services.resilience import RetryPolicy
from tests.helpers.metrics_stub import StubMetrics
from tests.helpers.search_stubs import make_company, utc

ORGANIZATION = {
    "name": "Acme Foods",
    "industry": "Food Production",
    "estimated_num_employees": 120,
    "city": "Milan",
    "country": "Italy",
    "short_description": "Apollo description",
    "phone": "+39 02 000",
    "founded_year": 1987,
}


class _FakeApollo:
    def __init__(self, organization=None, people_total: int | None = 7) -> None:
        self.organization = organization
        self.people_total = people_total
        self.enrich_calls = 0
        self.people_calls = 0

    async def enrich_organization(self, domain):
        self.enrich_calls += 1
        return self.organization

    async def search_people(self, domain):
        self.people_calls += 1
        return {"people": [{"id": 1}, {"id": 2}], "pagination": {"total_entries": self.people_total}}


class _FakeHubSpot:
    def __init__(self, company=None, stages=(), error: Exception | None = None) -> None:
        self.company = company
        self.stages = list(stages)
        self.error = error
        self.calls = 0

    async def find_company(self, domain):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.company

    async def deal_stages(self, company_id):
        return self.stages


class _FakeFreshsales:
    def __init__(self, records: dict[str, list[dict]]) -> None:
        self.records = records
        self.calls: list[tuple[str, list[dict], int]] = []

    async def filtered_search(self, entity, filter_rule, *, max_pages=1):
        self.calls.append((entity, filter_rule, max_pages))
        return self.records.get(entity, [])


@pytest.fixture
def cache() -> CacheLayer:
    return CacheLayer(InMemoryCacheStore())


@pytest.fixture
def retry(no_sleep) -> RetryPolicy:
    return RetryPolicy(sleep=no_sleep)


@pytest.mark.asyncio
async def test_run_in_batches_bounds_concurrency_and_keeps_order():
    in_flight = 0
    peak = 0

    async def worker(value: int) -> int:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        in_flight -= 1
        return value * 10

    result = await run_in_batches(list(range(7)), worker, batch_size=2, max_concurrency=1)

    assert result == [0, 10, 20, 30, 40, 50, 60]
    assert peak == 2


@pytest.mark.asyncio
async def test_run_in_batches_rejects_invalid_sizes():
    async def worker(value):
        return value

    with pytest.raises(ValueError):
        await run_in_batches([1], worker, batch_size=0)
    with pytest.raises(ValueError):
        await run_in_batches([1], worker, max_concurrency=0)


@pytest.mark.parametrize(
    ("lifecycle", "stages", "expected"),
    [
        ("lead", [], HubSpotStatus.NEW),
        ("salesqualifiedlead", [], HubSpotStatus.NEW),
        ("opportunity", [], HubSpotStatus.OPEN),
        ("customer", [], HubSpotStatus.CLOSED_WON),
        (None, [], HubSpotStatus.NONE),
        ("lead", ["appointmentscheduled"], HubSpotStatus.IN_PROGRESS),
        ("lead", ["appointmentscheduled", "closedlost"], HubSpotStatus.CLOSED_LOST),
        ("opportunity", ["closedlost", "closedwon"], HubSpotStatus.CLOSED_WON),
    ],
)
def test_derive_hubspot_status(lifecycle, stages, expected):
    assert derive_hubspot_status(lifecycle, stages) == expected


def test_derive_freshsales_status():
    assert derive_freshsales_status([]) == FreshsalesStatus.NEW_LEAD
    assert derive_freshsales_status([FreshsalesDeal(id=1, stage="Proposal")]) == FreshsalesStatus.NEGOTIATION
    assert derive_freshsales_status(
        [FreshsalesDeal(id=1, stage="Closed Lost"), FreshsalesDeal(id=2, stage="Won")]
    ) == FreshsalesStatus.WON
    assert derive_freshsales_status([FreshsalesDeal(id=1, stage="lost")]) == FreshsalesStatus.LOST


def test_is_stalled():
    assert is_stalled(FreshsalesDeal(id=1, stage="Demo", days_in_stage=31))
    assert not is_stalled(FreshsalesDeal(id=1, stage="Demo", days_in_stage=30))
    assert not is_stalled(FreshsalesDeal(id=1, stage="Demo"))
    assert not is_stalled(FreshsalesDeal(id=1, stage="Closed Won", days_in_stage=90))


@pytest.mark.asyncio
async def test_apollo_company_lookup_is_mapped_and_cached(cache, retry):
    client = _FakeApollo(ORGANIZATION)
    enricher = ApolloEnricher(client, cache=cache, retry=retry)

    first = await enricher.enrich_company("www.acme.com")
    second = await enricher.enrich_company("acme.com")

    assert first == second
    assert client.enrich_calls == 1
    assert first["employee_count"] == 120
    assert first["location"] == "Milan, Italy"
    assert first["founded"] == "1987"
    assert first["revenue"] is None


@pytest.mark.asyncio
async def test_apollo_unknown_domain_is_not_cached(cache, retry):
    client = _FakeApollo(None)
    enricher = ApolloEnricher(client, cache=cache, retry=retry)

    assert await enricher.enrich_company("ghost.com") is None
    assert await enricher.enrich_company("ghost.com") is None
    assert client.enrich_calls == 2


@pytest.mark.asyncio
async def test_apollo_contact_count_prefers_pagination_total(cache, retry):
    enricher = ApolloEnricher(_FakeApollo(people_total=None), cache=cache, retry=retry)

    assert await enricher.count_contacts("acme.com") == 2
    assert await ApolloEnricher(None, cache=cache).count_contacts("acme.com") == 0


@pytest.mark.asyncio
async def test_hubspot_status_is_cached(cache, retry):
    client = _FakeHubSpot({"id": 77, "properties": {"lifecyclestage": "lead"}}, stages=["closedwon"])
    provider = HubSpotStatusProvider(client, cache=cache, retry=retry)

    assert await provider.status("acme.com") == HubSpotStatus.CLOSED_WON
    assert await provider.status("acme.com") == HubSpotStatus.CLOSED_WON
    assert client.calls == 1


@pytest.mark.asyncio
async def test_hubspot_unknown_company_is_none(cache, retry):
    provider = HubSpotStatusProvider(_FakeHubSpot(None), cache=cache, retry=retry)

    assert await provider.status("acme.com") == HubSpotStatus.NONE


@pytest.mark.asyncio
async def test_freshsales_intel_collects_deals_and_contacts(cache, retry):
    client = _FakeFreshsales(
        {
            "sales_account": [{"id": 9, "name": "Acme Foods"}],
            "deal": [
                {
                    "id": 501,
                    "name": "Pilot",
                    "deal_stage": {"name": "Proposal"},
                    "amount": 12000.0,
                    "updated_at": "2026-08-01T00:00:00Z",
                }
            ],
            "contact": [{"id": 3, "first_name": "Ada", "job_title": "COO", "tags": ["Decision Maker"]}],
        }
    )
    provider = FreshsalesIntelProvider(client, cache=cache, retry=retry, clock=lambda: utc(2026, 10, 1))

    intel = await provider.intel("shop.acme.com")

    assert intel.status == FreshsalesStatus.NEGOTIATION
    assert intel.account_id == 9
    assert intel.deals[0].stage == "Proposal"
    assert intel.deals[0].days_in_stage == 61
    assert intel.contacts[0].id == "freshsales-3"
    assert intel.contacts[0].title == "COO"
    assert client.calls[0] == (
        "sales_account",
        [{"attribute": "website", "operator": "contains", "value": "acme.com"}],
        1,
    )
    assert {call[0] for call in client.calls[1:]} == {"deal", "contact"}
    assert all(call[2] == 4 for call in client.calls[1:])

    cached = await provider.intel("shop.acme.com")
    assert cached == intel
    assert len(client.calls) == 3


@pytest.mark.asyncio
async def test_freshsales_missing_account_yields_empty_intel(cache, retry):
    provider = FreshsalesIntelProvider(_FakeFreshsales({}), cache=cache, retry=retry)

    intel = await provider.intel("acme.com")

    assert intel.status == FreshsalesStatus.NONE
    assert intel.deals == []


@pytest.mark.asyncio
async def test_company_enricher_backfills_only_empty_fields(cache, retry):
    enricher = CompanyEnricher(apollo=ApolloEnricher(_FakeApollo(ORGANIZATION), cache=cache, retry=retry))
    company = make_company("acme.com", description="From search", sources=["exa"], contact_count=3)

    [enriched] = await enricher.enrich_all([company])

    assert enriched.description == "From search"
    assert enriched.industry == "Food Production"
    assert enriched.vertical == "Food Production"
    assert enriched.employee_count == 120
    assert enriched.phone == "+39 02 000"
    assert enriched.sources == ["exa", "apollo"]
    assert enriched.contact_count == 7


@pytest.mark.asyncio
async def test_company_enricher_swallows_source_failures(cache, retry, monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(enrichment_module, "metrics", stub)
    hubspot = _FakeHubSpot(error=RuntimeError("hubspot exploded"))
    enricher = CompanyEnricher(hubspot=HubSpotStatusProvider(hubspot, cache=cache, retry=retry))
    company = make_company("acme.com")

    [enriched] = await enricher.enrich_all([company])

    assert enriched == company
    assert hubspot.calls == 1
    assert stub.names() == ["enrichment.failed"]
    assert stub.increment_calls[0]["tags"] == {"source": "hubspot"}


@pytest.mark.asyncio
async def test_unconfigured_enricher_is_a_no_op():
    enricher = CompanyEnricher()
    companies = [make_company("acme.com")]

    assert enricher.is_configured is False
    assert await enricher.enrich_all(companies) == companies
