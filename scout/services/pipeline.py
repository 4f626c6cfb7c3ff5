"""Search orchestration: route, fan out, fall back, merge, enrich, score, rank."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import timedelta

from scout.clients.apollo import ApolloClient
from scout.clients.base import ProviderClient
from scout.clients.errors import NoProviderAvailableError, ProviderCircuitOpenError
from scout.clients.exa import ExaClient
from scout.clients.freshsales import FreshsalesClient
from scout.clients.hubspot import HubSpotClient
from scout.clients.parallel import ParallelClient
from scout.clients.serper import SerperClient
from scout.config import Settings, settings
from scout.core.database import create_sync_engine
from scout.core.domains import root_domain
from scout.models.company import CanonicalCompany, IcpWeights, Signal, TargetCriteria
from scout.models.search import DidYouMean, SearchErrorDetail, SearchFilters, SearchResponse
from scout.observability.metrics import metrics
from scout.services.cache import CacheLayer, DiskCacheStore
from scout.services.circuit_breaker import CircuitBreaker
from scout.services.dedup import dedupe
from scout.services.enrichment import (
    ApolloEnricher,
    CompanyEnricher,
    FreshsalesIntelProvider,
    HubSpotStatusProvider,
)
from scout.services.exclusions import ExclusionFilter, InMemoryExclusionStore, SqlExclusionStore
from scout.services.health import HealthTracker, InMemoryCallLogStore, SqlCallLogStore
from scout.services.providers.base import ProviderResult, SearchProvider
from scout.services.providers.exa import ExaSearchProvider
from scout.services.providers.parallel import ParallelSearchProvider
from scout.services.providers.serper import SerperSearchProvider
from scout.services.query import (
    build_query,
    flag_exact_match,
    looks_like_company_name,
    simplify_query,
    strip_legal_suffix,
)
from scout.services.resilience import RetryPolicy, classify_error
from scout.services.router import FALLBACK_ENGINE, RouterState
from scout.services.scoring import score_many
from scout.services.signals import OpenAISignalClient, SignalExtractor
from scout.services.usage import InMemoryUsageStore, SqlUsageStore

logger = logging.getLogger(__name__)

NAME_QUERY_RESULTS = 15
DISCOVERY_QUERY_RESULTS = 25
MIN_DISCOVERY_RESULTS = 3
MIN_DISCOVERY_RELEVANCE = 0.2


@dataclass
class _SearchRun:
    """Mutable accumulator for one ``search`` call."""

    companies: list[CanonicalCompany] = field(default_factory=list)
    signals: list[Signal] = field(default_factory=list)
    errors: list[SearchErrorDetail] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    results: list[ProviderResult] = field(default_factory=list)
    engine: str | None = None


class SearchPipeline:
    """Public entry point: ``search(query, filters) -> SearchResponse``.

    Only ``NoProviderAvailableError`` escapes; every provider failure is
    reported in the response instead.
    """

    def __init__(
        self,
        *,
        router: RouterState,
        providers: Mapping[str, SearchProvider],
        health: HealthTracker,
        cache: CacheLayer,
        exclusions: ExclusionFilter | None = None,
        enricher: CompanyEnricher | None = None,
        weights: IcpWeights | None = None,
        name_results: int = NAME_QUERY_RESULTS,
        discovery_results: int = DISCOVERY_QUERY_RESULTS,
        batch_size: int = 5,
        max_concurrency: int = 3,
        clients: Sequence[ProviderClient] = (),
    ) -> None:
        self.router = router
        self.health = health
        self.cache = cache
        self._providers = dict(providers)
        self._exclusions = exclusions
        self._enricher = enricher
        self._weights = weights
        self._name_results = name_results
        self._discovery_results = discovery_results
        self._batch_size = batch_size
        self._max_concurrency = max_concurrency
        self._clients = list(clients)

    @property
    def exclusions(self) -> ExclusionFilter | None:
        return self._exclusions

    async def aclose(self) -> None:
        for client in self._clients:
            await client.aclose()
        self.cache.close()

    async def search(self, query: str, filters: SearchFilters | None = None) -> SearchResponse:
        filters = filters or SearchFilters()
        if not any(provider.is_configured for provider in self._providers.values()):
            raise NoProviderAvailableError()

        started = time.perf_counter()
        free_text = (query or "").strip()
        is_name_query = looks_like_company_name(free_text)
        search_query = strip_legal_suffix(free_text) if is_name_query else build_query(free_text, filters)
        if not search_query:
            return SearchResponse(warnings=["Enter a query or choose at least one filter."])

        limit = filters.num_results or (self._name_results if is_name_query else self._discovery_results)
        run = _SearchRun()

        planned = self._plan(filters, is_name_query, run)
        await self._execute(planned, search_query, limit, run)
        if not filters.engines and run.engine is not None:
            await self._maybe_fallback(run.engine, is_name_query, search_query, limit, run)

        query_simplified = False
        did_you_mean: DidYouMean | None = None
        if not run.companies and free_text:
            simplified = simplify_query(free_text)
            if simplified != free_text:
                retried = await self._rephrase(simplified, filters, is_name_query, limit, run)
                if retried:
                    query_simplified = True
                    did_you_mean = DidYouMean(original=free_text, simplified=simplified)
                    run.warnings.append(f'No exact results for "{free_text}". Showing results for: "{simplified}"')

        executed = [result for result in run.results if result.network_called or result.cache_hit]
        if executed and all(not result.ok for result in executed):
            run.errors.append(
                SearchErrorDetail(
                    code="ALL_ENGINES_FAILED",
                    message="Every search engine failed for this query.",
                    retryable=True,
                    suggested_action="Try again in a minute.",
                )
            )
            run.warnings.append("All search engines failed; results may be incomplete.")

        candidates = run.companies
        excluded_count = 0
        if filters.hide_excluded and self._exclusions is not None:
            excluded = await self._exclusions.excluded_values()
            kept = self._exclusions.apply(candidates, excluded)
            excluded_count = len(candidates) - len(kept)
            candidates = kept

        companies = _attach_signals(dedupe(candidates), run.signals)
        if filters.enrich and self._enricher is not None:
            companies = await self._enricher.enrich_all(companies)
        criteria = TargetCriteria(
            verticals=filters.verticals,
            regions=filters.regions,
            sizes=filters.sizes,
            signals=filters.signals,
        )
        companies = await score_many(
            companies,
            self._weights,
            criteria,
            batch_size=self._batch_size,
            max_concurrency=self._max_concurrency,
        )
        if free_text:
            companies = flag_exact_match(companies, free_text)
        companies = rank(companies)[:limit]

        if not companies and not run.errors:
            run.errors.append(
                SearchErrorDetail(
                    code="EMPTY_RESULTS",
                    message="No companies matched this search.",
                    retryable=False,
                    suggested_action="Broaden the query or remove some filters.",
                )
            )

        duration_ms = (time.perf_counter() - started) * 1000
        metrics.timing("search.duration_ms", duration_ms, tags={"engine": run.engine or "none"})
        metrics.gauge("search.results", len(companies), tags={"engine": run.engine or "none"})
        logger.info(
            "search.completed",
            extra={
                "query": free_text[:60],
                "engine": run.engine,
                "results": len(companies),
                "excluded": excluded_count,
                "errors": len(run.errors),
                "duration_ms": round(duration_ms, 1),
            },
        )
        return SearchResponse(
            companies=companies,
            signals=run.signals,
            warnings=run.warnings,
            errors=run.errors,
            engine=run.engine,
            excluded_count=excluded_count,
            query_simplified=query_simplified,
            did_you_mean=did_you_mean,
            usage=self.router.usage_summary(),
        )

    def _plan(self, filters: SearchFilters, is_name_query: bool, run: _SearchRun) -> list[str]:
        if filters.engines:
            planned: list[str] = []
            for engine in filters.engines:
                if engine in planned:
                    continue
                if self._is_configured(engine):
                    planned.append(engine)
                else:
                    run.warnings.append(f"{engine} is not configured and was skipped.")
            if planned:
                return planned
            # None of the requested engines are usable; route normally.

        engine = self.router.pick_name_engine() if is_name_query else self.router.pick_discovery_engine()
        if self._is_configured(engine):
            return [engine]
        substitute = next(name for name, provider in self._providers.items() if provider.is_configured)
        run.warnings.append(f"{engine} is not configured; using {substitute} instead.")
        return [substitute]

    def _is_configured(self, engine: str) -> bool:
        provider = self._providers.get(engine)
        return provider is not None and provider.is_configured

    async def _execute(self, engines: Sequence[str], query: str, limit: int, run: _SearchRun) -> None:
        results = await asyncio.gather(*(self._call(engine, query, limit) for engine in engines))
        for result in results:
            self._absorb(result, run)
        succeeded = next((result.engine for result in results if result.ok and result.companies), None)
        run.engine = succeeded or (engines[0] if engines else None)

    async def _call(self, engine: str, query: str, limit: int) -> ProviderResult:
        if not self.router.breaker.allow_request(engine):
            # Open, or half-open with its trial call in flight; a skipped call records no outcome.
            logger.info("search.circuit_skipped", extra={"engine": engine})
            return ProviderResult(engine=engine, error=ProviderCircuitOpenError(engine))
        result = await self._providers[engine].search(query, limit)
        if result.network_called and not result.cache_hit:
            self.router.record_usage(engine)
        if result.ok:
            self.router.breaker.record_success(engine)
        else:
            self.router.breaker.record_failure(engine)
        return result

    def _absorb(self, result: ProviderResult, run: _SearchRun) -> None:
        run.results.append(result)
        if not result.ok:
            detail = classify_error(result.error, result.engine)
            run.errors.append(detail)
            run.warnings.append(f"{result.engine} search failed: {detail.message}")
            return
        run.companies.extend(result.companies)
        seen = {signal.id for signal in run.signals}
        run.signals.extend(signal for signal in result.signals if signal.id not in seen)

    async def _maybe_fallback(
        self,
        primary: str,
        is_name_query: bool,
        query: str,
        limit: int,
        run: _SearchRun,
    ) -> None:
        if primary == FALLBACK_ENGINE or not self._is_configured(FALLBACK_ENGINE):
            return
        last = run.results[-1]
        if not last.ok:
            needed = True
        elif is_name_query:
            needed = not last.companies
        else:
            needed = (
                len(last.companies) < MIN_DISCOVERY_RESULTS
                and (last.avg_relevance or 0.0) < MIN_DISCOVERY_RELEVANCE
            )
        if not needed or not self.router.is_fallback_allowed(FALLBACK_ENGINE):
            return
        logger.info("search.fallback", extra={"primary": primary, "fallback": FALLBACK_ENGINE})
        result = await self._call(FALLBACK_ENGINE, query, limit)
        self._absorb(result, run)
        if result.ok and result.companies:
            # Fallback results rank ahead of the thin primary set.
            run.companies = result.companies + [
                company for company in run.companies if company not in result.companies
            ]
            run.engine = FALLBACK_ENGINE

    async def _rephrase(
        self,
        simplified: str,
        filters: SearchFilters,
        is_name_query: bool,
        limit: int,
        run: _SearchRun,
    ) -> bool:
        engine = run.engine if run.engine and self._is_configured(run.engine) else None
        if engine is None:
            engine = next((name for name, provider in self._providers.items() if provider.is_configured), None)
        if engine is None:
            return False
        query = strip_legal_suffix(simplified) if is_name_query else build_query(simplified, filters)
        result = await self._call(engine, query, limit)
        if not result.ok:
            logger.info("search.rephrase_failed", extra={"engine": engine, "error": type(result.error).__name__})
            return False
        if not result.companies:
            return False
        self._absorb(result, run)
        run.engine = engine
        return True


def rank(companies: Sequence[CanonicalCompany]) -> list[CanonicalCompany]:
    """Exact match first, then fit score, then provider relevance."""
    return sorted(
        companies,
        key=lambda company: (
            not company.exact_match,
            -company.icp_score,
            -(company.relevance_score or 0.0),
        ),
    )


def _attach_signals(companies: list[CanonicalCompany], signals: Sequence[Signal]) -> list[CanonicalCompany]:
    if not signals:
        return companies
    by_root: dict[str, list[Signal]] = {}
    for signal in signals:
        by_root.setdefault(root_domain(signal.company_domain), []).append(signal)
    attached: list[CanonicalCompany] = []
    for company in companies:
        extra = by_root.get(company.root_domain)
        if not extra:
            attached.append(company)
            continue
        known = {signal.id for signal in company.signals}
        merged = company.signals + [signal for signal in extra if signal.id not in known]
        attached.append(company.model_copy(update={"signals": merged}))
    return attached


def build_pipeline(config: Settings) -> SearchPipeline:
    """Wire clients, adapters, router and stores from settings."""
    db_engine = create_sync_engine(config.database_url, auto_create_schema=True) if config.database_url else None
    call_log = SqlCallLogStore(db_engine) if db_engine is not None else InMemoryCallLogStore(config.health_call_log_size)
    usage_store = SqlUsageStore(db_engine) if db_engine is not None else InMemoryUsageStore()
    exclusion_store = SqlExclusionStore(db_engine) if db_engine is not None else InMemoryExclusionStore()
    health = HealthTracker(call_log)
    cache = CacheLayer(DiskCacheStore(config.cache_dir, size_limit=config.cache_size_limit_bytes))
    retry = RetryPolicy(
        max_retries=config.retry_max_retries,
        base_delay=config.retry_base_delay_seconds,
        max_delay=config.retry_max_delay_seconds,
        deadline_seconds=config.search_deadline_seconds,
    )
    timeout = config.provider_request_timeout_seconds
    overrides = dict(config.cache_ttl_overrides)

    exa = ExaClient(config.exa_api_key, timeout=timeout, observer=health) if config.exa_api_key else None
    parallel = (
        ParallelClient(config.parallel_api_key, timeout=timeout, observer=health) if config.parallel_api_key else None
    )
    serper = SerperClient(config.serper_api_key, timeout=timeout, observer=health) if config.serper_api_key else None
    apollo = ApolloClient(config.apollo_api_key, timeout=timeout, observer=health) if config.apollo_api_key else None
    hubspot = (
        HubSpotClient(config.hubspot_access_token, timeout=timeout, observer=health)
        if config.hubspot_access_token
        else None
    )
    freshsales = (
        FreshsalesClient(config.freshsales_api_key, config.freshsales_domain, timeout=timeout, observer=health)
        if config.freshsales_api_key and config.freshsales_domain
        else None
    )

    signals = SignalExtractor(
        OpenAISignalClient(config.openai_api_key) if config.openai_api_key else None,
        cache=cache,
        health=health,
        model=config.signal_model,
        temperature=config.signal_temperature,
        max_content_chars=config.signal_max_content_chars,
        ttl_overrides=overrides,
    )
    providers: dict[str, SearchProvider] = {
        "parallel": ParallelSearchProvider(parallel, cache=cache, retry=retry, ttl_overrides=overrides),
        "serper": SerperSearchProvider(serper, cache=cache, retry=retry, ttl_overrides=overrides),
        "exa": ExaSearchProvider(exa, signals=signals, cache=cache, retry=retry, ttl_overrides=overrides),
    }
    router = RouterState(
        providers,
        health=health,
        budgets=config.daily_budgets,
        usage_store=usage_store,
        breaker=CircuitBreaker(
            failure_threshold=config.circuit_failure_threshold,
            open_duration_seconds=config.circuit_open_seconds,
        ),
        routing_window=timedelta(minutes=config.health_routing_window_minutes),
        snapshot_ttl=timedelta(seconds=config.health_snapshot_ttl_seconds),
    )
    enricher = None
    if config.enrichment_enabled:
        enricher = CompanyEnricher(
            apollo=ApolloEnricher(apollo, cache=cache, retry=retry, ttl_overrides=overrides),
            hubspot=HubSpotStatusProvider(hubspot, cache=cache, retry=retry, ttl_overrides=overrides),
            freshsales=FreshsalesIntelProvider(freshsales, cache=cache, retry=retry, ttl_overrides=overrides),
            batch_size=config.enrichment_batch_size,
            max_concurrency=config.enrichment_max_concurrency,
        )
    clients = [client for client in (exa, parallel, serper, apollo, hubspot, freshsales) if client is not None]
    logger.info(
        "pipeline.configured",
        extra={
            "search_engines": [name for name, provider in providers.items() if provider.is_configured],
            "enrichment": enricher is not None and enricher.is_configured,
            "persistent_stores": db_engine is not None,
        },
    )
    return SearchPipeline(
        router=router,
        providers=providers,
        health=health,
        cache=cache,
        exclusions=ExclusionFilter(exclusion_store, cache=cache, ttl_overrides=overrides),
        enricher=enricher,
        name_results=config.search_name_results,
        discovery_results=config.search_default_results,
        batch_size=config.enrichment_batch_size,
        max_concurrency=config.enrichment_max_concurrency,
        clients=clients,
    )


_PIPELINE_INSTANCE: SearchPipeline | None = None


def get_pipeline() -> SearchPipeline:
    """Singleton accessor used by API routes and CLI tools."""
    global _PIPELINE_INSTANCE  # noqa: PLW0603
    if _PIPELINE_INSTANCE is None:
        _PIPELINE_INSTANCE = build_pipeline(settings)
    return _PIPELINE_INSTANCE


async def close_pipeline() -> None:
    global _PIPELINE_INSTANCE  # noqa: PLW0603
    if _PIPELINE_INSTANCE is not None:
        await _PIPELINE_INSTANCE.aclose()
        _PIPELINE_INSTANCE = None
