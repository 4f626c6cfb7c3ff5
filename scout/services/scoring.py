"""Weighted fit scoring with an auditable per-factor breakdown."""

from __future__ import annotations

from collections.abc import Sequence

from scout.models.company import (
    CanonicalCompany,
    FreshsalesStatus,
    HubSpotStatus,
    IcpBreakdownItem,
    IcpScoreResult,
    IcpWeights,
    TargetCriteria,
)
from scout.services.dedup import round_half_up
from scout.services.enrichment import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_CONCURRENT_BATCHES,
    is_stalled,
    run_in_batches,
)

DEFAULT_WEIGHTS = IcpWeights()

BUYING_SIGNAL_TYPES = ("hiring", "funding", "expansion")
NEGATIVE_SIGNAL_KEYWORDS = ("layoff", "downsizing", "restructuring", "bankruptcy")
BOOST_TAGS = {"decision maker", "champion", "key contact"}
PENALTY_TAGS = {"churned", "bad fit", "competitor"}
DEFAULT_RELEVANCE = 0.5

_HUBSPOT_LEAD = {HubSpotStatus.NEW, HubSpotStatus.OPEN, HubSpotStatus.IN_PROGRESS}
_FRESHSALES_CUSTOMER = {FreshsalesStatus.CUSTOMER, FreshsalesStatus.WON}
_FRESHSALES_LEAD = {FreshsalesStatus.NEW_LEAD, FreshsalesStatus.CONTACTED, FreshsalesStatus.NEGOTIATION}


def size_matches_bucket(employee_count: int, bucket: str) -> bool:
    if bucket == "1-50":
        return 1 <= employee_count <= 50
    if bucket == "51-200":
        return 51 <= employee_count <= 200
    if bucket == "201-1000":
        return 201 <= employee_count <= 1000
    if bucket == "1000+":
        return employee_count >= 1000
    return False


def _contains_any(haystacks: Sequence[str], needles: Sequence[str]) -> bool:
    lowered = [value.lower() for value in haystacks if value]
    return any(needle.lower() in value for needle in needles for value in lowered)


def score(
    company: CanonicalCompany,
    weights: IcpWeights | None = None,
    criteria: TargetCriteria | None = None,
) -> IcpScoreResult:
    """Score one company against target criteria. Pure: no I/O, no mutation."""
    w = weights or DEFAULT_WEIGHTS
    target = criteria or TargetCriteria()
    breakdown: list[IcpBreakdownItem] = []

    def add(factor: str, points: int, matched: bool) -> None:
        breakdown.append(IcpBreakdownItem(factor=factor, points=points, matched=matched))

    vertical_matched = bool(target.verticals) and _contains_any(
        [company.vertical, company.industry], target.verticals
    )
    add(
        f"Vertical: {company.vertical or company.industry}" if vertical_matched else "Vertical match",
        w.vertical_match if vertical_matched else 0,
        vertical_matched,
    )

    size_matched = (
        bool(target.sizes)
        and company.employee_count > 0
        and any(size_matches_bucket(company.employee_count, bucket) for bucket in target.sizes)
    )
    add(
        f"Size: {company.employee_count:,} emp" if size_matched else "Size match",
        w.size_match if size_matched else 0,
        size_matched,
    )

    region_matched = bool(target.regions) and _contains_any([company.region, company.location], target.regions)
    add(
        f"Region: {company.region or company.location}" if region_matched else "Region match",
        w.region_match if region_matched else 0,
        region_matched,
    )

    buying = [signal.type for signal in company.signals if signal.type in BUYING_SIGNAL_TYPES]
    add(
        f"Signals: {', '.join(buying)}" if buying else "Buying signals",
        w.buying_signals if buying else 0,
        bool(buying),
    )

    if any(
        _contains_any([f"{signal.title} {signal.description}"], NEGATIVE_SIGNAL_KEYWORDS)
        for signal in company.signals
    ):
        add("Negative signals detected", w.negative_signals, True)

    relevance = company.relevance_score
    if relevance is None and "exa" in company.sources:
        relevance = DEFAULT_RELEVANCE
    if relevance is not None:
        points = round_half_up(w.relevance * relevance)
        add(f"Provider relevance: {round_half_up(relevance * 100)}%", points, points > 0)

    if company.hubspot_status == HubSpotStatus.CLOSED_WON:
        add("HubSpot: existing customer", w.hubspot_customer, True)
    elif company.hubspot_status in _HUBSPOT_LEAD:
        add("HubSpot: active lead", w.hubspot_lead, True)

    if company.freshsales_status in _FRESHSALES_CUSTOMER:
        add("Freshsales: existing customer", w.freshsales_customer, True)
    elif company.freshsales_status in _FRESHSALES_LEAD:
        add("Freshsales: active lead", w.freshsales_lead, True)

    intel = company.freshsales_intel
    if intel is not None:
        tags = {tag.lower() for contact in intel.contacts for tag in contact.tags}
        if tags & BOOST_TAGS:
            add("Freshsales: positive contact tag", w.freshsales_tag_boost, True)
        if tags & PENALTY_TAGS:
            add("Freshsales: negative contact tag", w.freshsales_tag_penalty, True)
        stalled = next((deal for deal in intel.deals if is_stalled(deal)), None)
        if stalled is not None:
            add(f"Freshsales: deal stalled {stalled.days_in_stage}d", w.freshsales_deal_stalled, True)

    total = max(0, min(100, sum(item.points for item in breakdown)))
    # Positives first, then everything else; larger magnitude first within each side.
    breakdown.sort(key=lambda item: (item.points <= 0, -abs(item.points)))
    return IcpScoreResult(score=total, breakdown=breakdown)


def apply_score(
    company: CanonicalCompany,
    weights: IcpWeights | None = None,
    criteria: TargetCriteria | None = None,
) -> CanonicalCompany:
    result = score(company, weights, criteria)
    return company.model_copy(update={"icp_score": result.score, "icp_breakdown": result.breakdown})


async def score_many(
    companies: Sequence[CanonicalCompany],
    weights: IcpWeights | None = None,
    criteria: TargetCriteria | None = None,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_concurrency: int = DEFAULT_MAX_CONCURRENT_BATCHES,
) -> list[CanonicalCompany]:
    """Score a result set in fixed batches, preserving input order."""

    async def _score(company: CanonicalCompany) -> CanonicalCompany:
        return apply_score(company, weights, criteria)

    return await run_in_batches(companies, _score, batch_size=batch_size, max_concurrency=max_concurrency)
