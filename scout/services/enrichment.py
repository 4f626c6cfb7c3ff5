"""Post-search enrichment: Apollo firmographics/contacts and CRM status."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timezone
from typing import Any, TypeVar

from scout.clients.apollo import ApolloClient
from scout.clients.freshsales import FreshsalesClient
from scout.clients.hubspot import HubSpotClient
from scout.core.domains import normalize_domain, root_domain
from scout.models.company import (
    CanonicalCompany,
    FreshsalesContact,
    FreshsalesDeal,
    FreshsalesIntel,
    FreshsalesStatus,
    HubSpotStatus,
)
from scout.observability.metrics import metrics
from scout.services.cache import CacheKeys, CacheLayer, cache_ttl
from scout.services.resilience import RetryPolicy

logger = logging.getLogger(__name__)

_T = TypeVar("_T")
_R = TypeVar("_R")

DEFAULT_BATCH_SIZE = 5
DEFAULT_MAX_CONCURRENT_BATCHES = 3
_CLOSED_STAGES = {"won", "lost", "closed won", "closed lost", "closedwon", "closedlost"}


async def run_in_batches(
    items: Sequence[_T],
    worker: Callable[[_T], Awaitable[_R]],
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_concurrency: int = DEFAULT_MAX_CONCURRENT_BATCHES,
) -> list[_R]:
    """Apply ``worker`` to fixed-size batches, at most ``max_concurrency`` batches in flight.

    Results keep input order. Each batch runs its items concurrently.
    """
    if batch_size < 1 or max_concurrency < 1:
        raise ValueError("batch_size and max_concurrency must be >= 1")
    batches = [list(items[start : start + batch_size]) for start in range(0, len(items), batch_size)]
    semaphore = asyncio.Semaphore(max_concurrency)

    async def _run(batch: list[_T]) -> list[_R]:
        async with semaphore:
            return list(await asyncio.gather(*(worker(item) for item in batch)))

    results = await asyncio.gather(*(_run(batch) for batch in batches))
    return [item for batch in results for item in batch]


def derive_hubspot_status(lifecycle_stage: str | None, deal_stages: Sequence[str]) -> HubSpotStatus:
    """Deal stages win over lifecycle stage; closed deals win over open ones."""
    lowered = [stage.lower() for stage in deal_stages]
    if "closedwon" in lowered:
        return HubSpotStatus.CLOSED_WON
    if "closedlost" in lowered:
        return HubSpotStatus.CLOSED_LOST
    if lowered:
        return HubSpotStatus.IN_PROGRESS
    stage = (lifecycle_stage or "").lower()
    if stage in {"lead", "marketingqualifiedlead", "salesqualifiedlead"}:
        return HubSpotStatus.NEW
    if stage == "opportunity":
        return HubSpotStatus.OPEN
    if stage == "customer":
        return HubSpotStatus.CLOSED_WON
    return HubSpotStatus.NONE


def derive_freshsales_status(deals: Sequence[FreshsalesDeal]) -> FreshsalesStatus:
    if not deals:
        return FreshsalesStatus.NEW_LEAD
    stages = [deal.stage.lower() for deal in deals]
    if any(stage in {"won", "closed won", "closedwon"} for stage in stages):
        return FreshsalesStatus.WON
    if any(stage in {"lost", "closed lost", "closedlost"} for stage in stages):
        return FreshsalesStatus.LOST
    return FreshsalesStatus.NEGOTIATION


def is_stalled(deal: FreshsalesDeal, *, threshold_days: int = 30) -> bool:
    return (
        deal.days_in_stage is not None
        and deal.days_in_stage > threshold_days
        and deal.stage.lower() not in _CLOSED_STAGES
    )


class ApolloEnricher:
    """Firmographics and contact counts from Apollo, cached per domain."""

    def __init__(
        self,
        client: ApolloClient | None,
        *,
        cache: CacheLayer,
        retry: RetryPolicy | None = None,
        ttl_overrides: dict[str, int] | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._retry = retry or RetryPolicy()
        self._company_ttl = cache_ttl("company", ttl_overrides)
        self._contacts_ttl = cache_ttl("apollo_contacts", ttl_overrides)

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def enrich_company(self, domain: str) -> dict[str, Any] | None:
        if self._client is None:
            return None
        normalized = normalize_domain(domain)
        key = CacheKeys.company(normalized)
        cached = await self._cache.get(key)
        if cached is not None:
            return cached
        organization = await self._retry.run(
            lambda: self._client.enrich_organization(normalized), "apollo"
        )
        if organization is None:
            return None
        firmographics = _map_organization(organization)
        await self._cache.set(key, firmographics, self._company_ttl)
        return firmographics

    async def count_contacts(self, domain: str) -> int:
        if self._client is None:
            return 0
        normalized = normalize_domain(domain)
        key = CacheKeys.contacts(normalized)
        cached = await self._cache.get(key)
        if cached is not None:
            return int(cached.get("count", 0))
        payload = await self._retry.run(lambda: self._client.search_people(normalized), "apollo")
        people = payload.get("people") or []
        pagination = payload.get("pagination") or {}
        count = int(pagination.get("total_entries") or len(people))
        await self._cache.set(key, {"count": count}, self._contacts_ttl)
        return count


def _map_organization(organization: dict[str, Any]) -> dict[str, Any]:
    location = ", ".join(
        part for part in (organization.get("city"), organization.get("state"), organization.get("country")) if part
    )
    revenue = organization.get("estimated_annual_revenue")
    founded = organization.get("founded_year")
    return {
        "name": organization.get("name") or None,
        "industry": organization.get("industry") or "",
        "employee_count": int(organization.get("estimated_num_employees") or 0),
        "location": location,
        "region": organization.get("country") or "",
        "description": organization.get("short_description") or organization.get("seo_description") or "",
        "website": organization.get("website_url") or None,
        "phone": organization.get("phone") or None,
        "logo_url": organization.get("logo_url") or None,
        "revenue": f"${revenue}" if revenue else organization.get("annual_revenue_printed") or None,
        "founded": str(founded) if founded else None,
    }


class HubSpotStatusProvider:
    def __init__(
        self,
        client: HubSpotClient | None,
        *,
        cache: CacheLayer,
        retry: RetryPolicy | None = None,
        ttl_overrides: dict[str, int] | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._retry = retry or RetryPolicy()
        self._ttl = cache_ttl("hubspot", ttl_overrides)

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def status(self, domain: str) -> HubSpotStatus:
        if self._client is None:
            return HubSpotStatus.NONE
        normalized = normalize_domain(domain)
        key = CacheKeys.hubspot(normalized)
        cached = await self._cache.get(key)
        if cached is not None:
            return HubSpotStatus(cached["status"])
        company = await self._retry.run(lambda: self._client.find_company(normalized), "hubspot")
        if company is None:
            status = HubSpotStatus.NONE
        else:
            deal_stages = await self._retry.run(
                lambda: self._client.deal_stages(str(company.get("id"))), "hubspot"
            )
            lifecycle = (company.get("properties") or {}).get("lifecyclestage")
            status = derive_hubspot_status(lifecycle, deal_stages)
        await self._cache.set(key, {"status": status.value}, self._ttl)
        return status


class FreshsalesIntelProvider:
    def __init__(
        self,
        client: FreshsalesClient | None,
        *,
        cache: CacheLayer,
        retry: RetryPolicy | None = None,
        ttl_overrides: dict[str, int] | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._client = client
        self._cache = cache
        self._retry = retry or RetryPolicy()
        self._ttl = cache_ttl("freshsales", ttl_overrides)
        self._clock = clock

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def intel(self, domain: str) -> FreshsalesIntel:
        normalized = normalize_domain(domain)
        if self._client is None:
            return FreshsalesIntel(domain=normalized)
        key = CacheKeys.freshsales(normalized)
        cached = await self._cache.get(key)
        if cached is not None:
            return FreshsalesIntel.model_validate(cached)

        accounts = await self._search(
            "sales_account",
            [{"attribute": "website", "operator": "contains", "value": root_domain(normalized)}],
        )
        if not accounts:
            intel = FreshsalesIntel(domain=normalized)
        else:
            account = accounts[0]
            account_rule = [{"attribute": "sales_account_id", "operator": "is_in", "value": account.get("id")}]
            raw_deals, raw_contacts = await asyncio.gather(
                self._search("deal", account_rule, max_pages=4),
                self._search("contact", account_rule, max_pages=4),
            )
            deals = [self._to_deal(raw) for raw in raw_deals]
            intel = FreshsalesIntel(
                domain=normalized,
                status=derive_freshsales_status(deals),
                account_id=account.get("id"),
                account_name=account.get("name") or normalized,
                deals=deals,
                contacts=[_to_contact(raw, index) for index, raw in enumerate(raw_contacts)],
            )
        await self._cache.set(key, intel.model_dump(mode="json"), self._ttl)
        return intel

    async def _search(
        self, entity: str, filter_rule: list[dict[str, Any]], *, max_pages: int = 1
    ) -> list[dict[str, Any]]:
        return await self._retry.run(
            lambda: self._client.filtered_search(entity, filter_rule, max_pages=max_pages),
            "freshsales",
        )

    def _to_deal(self, raw: dict[str, Any]) -> FreshsalesDeal:
        updated_at = _parse_timestamp(raw.get("updated_at"))
        days = (self._clock() - updated_at).days if updated_at else None
        stage = raw.get("deal_stage")
        stage_name = stage.get("name") if isinstance(stage, dict) else None
        return FreshsalesDeal(
            id=raw.get("id") or 0,
            name=raw.get("name") or "Untitled Deal",
            stage=stage_name or str(raw.get("deal_stage_id") or "Unknown"),
            amount=raw.get("amount"),
            updated_at=updated_at,
            days_in_stage=days,
        )


def _to_contact(raw: dict[str, Any], index: int) -> FreshsalesContact:
    tags = raw.get("tags")
    return FreshsalesContact(
        id=f"freshsales-{raw.get('id') or index}",
        first_name=raw.get("first_name") or "",
        last_name=raw.get("last_name") or "",
        title=raw.get("job_title") or "",
        email=raw.get("email") or None,
        tags=[str(tag) for tag in tags] if isinstance(tags, list) else [],
    )


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class CompanyEnricher:
    """Applies every configured enrichment source to merged companies; failures are swallowed."""

    def __init__(
        self,
        *,
        apollo: ApolloEnricher | None = None,
        hubspot: HubSpotStatusProvider | None = None,
        freshsales: FreshsalesIntelProvider | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_concurrency: int = DEFAULT_MAX_CONCURRENT_BATCHES,
    ) -> None:
        self._apollo = apollo
        self._hubspot = hubspot
        self._freshsales = freshsales
        self._batch_size = batch_size
        self._max_concurrency = max_concurrency

    @property
    def is_configured(self) -> bool:
        return any(
            source is not None and source.is_configured
            for source in (self._apollo, self._hubspot, self._freshsales)
        )

    async def enrich_all(self, companies: Sequence[CanonicalCompany]) -> list[CanonicalCompany]:
        if not self.is_configured or not companies:
            return list(companies)
        return await run_in_batches(
            companies,
            self.enrich,
            batch_size=self._batch_size,
            max_concurrency=self._max_concurrency,
        )

    async def enrich(self, company: CanonicalCompany) -> CanonicalCompany:
        updates: dict[str, Any] = {}
        sources = list(company.sources)

        if self._apollo is not None and self._apollo.is_configured:
            firmographics = await self._attempt("apollo.company", self._apollo.enrich_company, company.domain)
            if firmographics:
                updates.update(_backfill(company, firmographics))
                if "apollo" not in sources:
                    sources.append("apollo")
            contacts = await self._attempt("apollo.contacts", self._apollo.count_contacts, company.domain)
            if contacts:
                updates["contact_count"] = max(company.contact_count, contacts)

        if self._hubspot is not None and self._hubspot.is_configured:
            status = await self._attempt("hubspot.status", self._hubspot.status, company.domain)
            if status is not None:
                updates["hubspot_status"] = status

        if self._freshsales is not None and self._freshsales.is_configured:
            intel = await self._attempt("freshsales.intel", self._freshsales.intel, company.domain)
            if intel is not None:
                updates["freshsales_status"] = intel.status
                updates["freshsales_intel"] = intel

        if not updates and sources == company.sources:
            return company
        updates["sources"] = sources
        return company.model_copy(update=updates)

    async def _attempt(self, label: str, func: Callable[[str], Awaitable[_R]], domain: str) -> _R | None:
        try:
            return await func(domain)
        except Exception as exc:
            logger.warning("enrichment.failed", extra={"source": label, "domain": domain, "error": type(exc).__name__})
            metrics.increment("enrichment.failed", tags={"source": label.split(".", 1)[0]})
            return None


def _backfill(company: CanonicalCompany, firmographics: dict[str, Any]) -> dict[str, Any]:
    """Fill only the fields the search provider left empty."""
    updates: dict[str, Any] = {}
    for field_name in (
        "industry",
        "location",
        "region",
        "description",
        "phone",
        "logo_url",
        "revenue",
        "founded",
        "website",
    ):
        value = firmographics.get(field_name)
        if value and not getattr(company, field_name):
            updates[field_name] = value
    if firmographics.get("employee_count") and not company.employee_count:
        updates["employee_count"] = firmographics["employee_count"]
    if firmographics.get("industry") and not company.vertical:
        updates["vertical"] = firmographics["industry"]
    return updates
