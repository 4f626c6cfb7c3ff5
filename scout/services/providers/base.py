"""Search provider contract and the cache-backed adapter flow shared by every engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from scout.core.domains import is_noise_domain, root_domain
from scout.models.company import CanonicalCompany, Signal
from scout.observability.metrics import metrics
from scout.services.cache import CacheKeys, CacheLayer, cache_ttl, hash_filters
from scout.services.resilience import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class ProviderResult:
    """Outcome of one provider search; ``error`` is set instead of raising."""

    engine: str
    companies: list[CanonicalCompany] = field(default_factory=list)
    signals: list[Signal] = field(default_factory=list)
    error: Exception | None = None
    cache_hit: bool = False
    network_called: bool = False
    avg_relevance: float | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_cache(self) -> dict[str, Any]:
        return {
            "companies": [company.model_dump(mode="json") for company in self.companies],
            "signals": [signal.model_dump(mode="json") for signal in self.signals],
            "avg_relevance": self.avg_relevance,
        }

    @classmethod
    def from_cache(cls, engine: str, payload: dict[str, Any]) -> ProviderResult:
        return cls(
            engine=engine,
            companies=[CanonicalCompany.model_validate(entry) for entry in payload.get("companies", [])],
            signals=[Signal.model_validate(entry) for entry in payload.get("signals", [])],
            avg_relevance=payload.get("avg_relevance"),
            cache_hit=True,
        )


class SearchProvider(Protocol):
    """Uniform interface the router and pipeline use for every search engine."""

    name: str

    @property
    def is_configured(self) -> bool:
        ...

    async def search(self, query: str, num_results: int) -> ProviderResult:
        ...


def dedupe_by_root_domain(companies: list[CanonicalCompany]) -> list[CanonicalCompany]:
    """Keep the first record per root domain, preserving provider ranking order."""
    seen: set[str] = set()
    unique: list[CanonicalCompany] = []
    for company in companies:
        root = root_domain(company.domain)
        if root in seen:
            continue
        seen.add(root)
        unique.append(company)
    return unique


class CachedSearchProvider:
    """Cache check, resilient fetch, normalize, filter, dedupe, cache write.

    Subclasses implement ``_fetch`` (the network call, retried as a unit) and
    ``_map`` (raw payload to canonical records). ``search`` never raises.
    """

    name = "provider"
    cache_ttl_name = "exa_search"
    over_fetch = 10
    min_relevance: float | None = None

    def __init__(
        self,
        client: Any | None,
        *,
        cache: CacheLayer,
        retry: RetryPolicy | None = None,
        ttl_overrides: dict[str, int] | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._retry = retry or RetryPolicy()
        self._ttl = cache_ttl(self.cache_ttl_name, ttl_overrides)

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    def cache_key(self, query: str, num_results: int) -> str:
        return CacheKeys.search(self.name, hash_filters({"query": query, "num": num_results}))

    async def search(self, query: str, num_results: int) -> ProviderResult:
        if not self.is_configured:
            return ProviderResult(engine=self.name)

        key = self.cache_key(query, num_results)
        cached = await self._cache.get(key)
        if cached is not None:
            try:
                result = ProviderResult.from_cache(self.name, cached)
            except (ValueError, TypeError) as exc:
                logger.warning("provider.cache_corrupt", extra={"engine": self.name, "error": type(exc).__name__})
            else:
                logger.info("provider.cache_hit", extra={"engine": self.name, "query": query[:60]})
                return result

        try:
            raw = await self._retry.run(lambda: self._fetch(query, num_results), self.name)
        except Exception as exc:
            logger.warning(
                "provider.search_failed",
                extra={"engine": self.name, "query": query[:60], "error": type(exc).__name__},
            )
            metrics.increment("provider.search_failed", tags={"engine": self.name})
            return ProviderResult(engine=self.name, error=exc, network_called=True)

        try:
            companies, signals = await self._map(raw, query)
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning(
                "provider.mapping_failed",
                extra={"engine": self.name, "query": query[:60], "error": type(exc).__name__},
            )
            return ProviderResult(engine=self.name, error=exc, network_called=True)
        companies = [company for company in companies if self._keep(company)]
        companies, avg_relevance = self._finalize(dedupe_by_root_domain(companies), num_results)
        result = ProviderResult(
            engine=self.name,
            companies=companies,
            signals=signals,
            network_called=True,
            avg_relevance=avg_relevance,
        )
        await self._cache.set(key, result.to_cache(), self._ttl)
        metrics.gauge("provider.results", len(companies), tags={"engine": self.name})
        return result

    async def _fetch(self, query: str, num_results: int) -> Any:
        raise NotImplementedError

    async def _map(self, raw: Any, query: str) -> tuple[list[CanonicalCompany], list[Signal]]:
        raise NotImplementedError

    def _keep(self, company: CanonicalCompany) -> bool:
        if is_noise_domain(company.domain):
            return False
        if self.min_relevance is not None and company.relevance_score is not None:
            return company.relevance_score >= self.min_relevance
        return True

    def _finalize(
        self, companies: list[CanonicalCompany], num_results: int
    ) -> tuple[list[CanonicalCompany], float | None]:
        trimmed = companies[:num_results]
        scores = [company.relevance_score for company in trimmed if company.relevance_score is not None]
        return trimmed, (round(sum(scores) / len(scores), 3) if scores else None)
