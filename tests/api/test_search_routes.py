from __future__ import annotations

from contextlib import contextmanager

from scout.clients.errors import ProviderRateLimitError
from scout.main import app
from scout.models.health import CallOutcome
from scout.services.cache import CacheLayer, InMemoryCacheStore
from scout.services.exclusions import ExclusionFilter, InMemoryExclusionStore
from scout.services.health import HealthTracker
from scout.services.pipeline import SearchPipeline, get_pipeline
from scout.services.router import RouterState
from tests.helpers.search_stubs import StubSearchProvider, make_company, ok_result


def _build_pipeline(*, configured: bool = True, health: HealthTracker | None = None) -> SearchPipeline:
    providers = {
        "parallel": StubSearchProvider(
            "parallel",
            [ok_result("parallel", [make_company("acme.com", vertical="Food")], avg_relevance=0.5)],
            configured=configured,
        ),
        "serper": StubSearchProvider("serper", configured=configured),
        "exa": StubSearchProvider("exa", configured=configured),
    }
    tracker = health or HealthTracker()
    router = RouterState(providers, health=tracker, budgets={"exa": 50, "serper": 100})
    cache = CacheLayer(InMemoryCacheStore())
    return SearchPipeline(
        router=router,
        providers=providers,
        health=tracker,
        cache=cache,
        exclusions=ExclusionFilter(InMemoryExclusionStore(), cache=cache),
    )


class _RateLimitedPipeline:
    async def search(self, query, filters):
        raise ProviderRateLimitError(provider="exa")


@contextmanager
def _override_pipeline(pipeline):
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    try:
        yield
    finally:
        app.dependency_overrides.pop(get_pipeline, None)


def test_search_returns_scored_companies(client):
    with _override_pipeline(_build_pipeline()):
        response = client.post(
            "/api/search",
            json={"query": "cold chain logistics", "filters": {"verticals": ["food"]}},
        )

    assert response.status_code == 200
    body = response.json()
    assert body["engine"] == "parallel"
    assert body["companies"][0]["domain"] == "acme.com"
    assert body["companies"][0]["icp_score"] == 30
    assert body["companies"][0]["root_domain"] == "acme.com"
    assert body["usage"]["parallel"]["count"] == 1


def test_search_without_providers_is_unavailable(client):
    with _override_pipeline(_build_pipeline(configured=False)):
        response = client.post("/api/search", json={"query": "BASF"})

    assert response.status_code == 503


def test_search_maps_rate_limits_to_429(client):
    with _override_pipeline(_RateLimitedPipeline()):
        response = client.post("/api/search", json={"query": "BASF"})

    assert response.status_code == 429


def test_search_rejects_out_of_range_result_count(client):
    with _override_pipeline(_build_pipeline()):
        response = client.post("/api/search", json={"query": "BASF", "filters": {"num_results": 0}})

    assert response.status_code == 422


def test_score_endpoint_returns_breakdown(client):
    response = client.post(
        "/api/score",
        json={
            "company": {"domain": "www.acme.com", "name": "Acme", "vertical": "Food"},
            "criteria": {"verticals": ["food"]},
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["score"] == 30
    assert body["breakdown"][0] == {"factor": "Vertical: Food", "points": 30, "matched": True}


def test_dedupe_endpoint_merges_by_root_domain(client):
    response = client.post(
        "/api/dedupe",
        json={
            "companies": [
                {
                    "domain": "example.com",
                    "name": "Example",
                    "icp_score": 80,
                    "sources": ["exa"],
                    "last_refreshed": "2026-01-01T00:00:00Z",
                },
                {
                    "domain": "www.example.com",
                    "name": "Example Inc",
                    "icp_score": 60,
                    "sources": ["serper"],
                    "last_refreshed": "2026-03-01T00:00:00Z",
                },
            ]
        },
    )

    assert response.status_code == 200
    [merged] = response.json()
    assert merged["icp_score"] == 68
    assert merged["sources"] == ["serper", "exa"]


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_provider_health_reports_error_rates(client):
    tracker = HealthTracker()
    tracker.log_call(CallOutcome(source="exa", endpoint="search/company", success=True, latency_ms=100))
    tracker.log_call(CallOutcome(source="exa", endpoint="search/company", success=False, latency_ms=300))

    with _override_pipeline(_build_pipeline(health=tracker)):
        response = client.get("/health/providers", params={"hours": 2})

    assert response.status_code == 200
    body = response.json()
    assert body["window_hours"] == 2
    assert body["sources"]["exa"]["error_rate"] == 50.0
    assert body["sources"]["exa"]["status"] == "down"
    assert len(body["recent_errors"]) == 1


def test_provider_health_rejects_invalid_window(client):
    with _override_pipeline(_build_pipeline()):
        response = client.get("/health/providers", params={"hours": 0})

    assert response.status_code == 422


def test_usage_endpoint_lists_budgets(client):
    with _override_pipeline(_build_pipeline()):
        response = client.get("/health/usage")

    assert response.status_code == 200
    body = response.json()
    assert body["exa"] == {"count": 0, "budget": 50, "pct_used": 0.0}
    assert body["parallel"]["budget"] is None


def test_exclusions_can_be_managed_and_hide_results(client):
    pipeline = _build_pipeline()
    with _override_pipeline(pipeline):
        created = client.post("/api/exclusions", json={"value": " Acme.com ", "reason": "customer"})
        listed = client.get("/api/exclusions")
        searched = client.post("/api/search", json={"query": "cold chain logistics"})
        removed = client.delete("/api/exclusions/acme.com")
        missing = client.delete("/api/exclusions/acme.com")
        blank = client.post("/api/exclusions", json={"value": "   "})

    assert created.status_code == 201
    assert created.json() == {"value": "acme.com", "created": True}
    assert listed.json() == ["acme.com"]
    assert searched.status_code == 200
    assert searched.json()["companies"] == []
    assert removed.status_code == 204
    assert missing.status_code == 404
    assert blank.status_code == 422
