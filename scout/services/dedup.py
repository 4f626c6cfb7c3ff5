"""Cross-provider dedupe: one record per root domain, newest record wins."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

from scout.core.domains import root_domain
from scout.models.company import CanonicalCompany, Signal

MERGE_RECENCY_WEIGHT = 1.5

SOURCE_LABELS = {
    "exa": "Exa",
    "parallel": "Parallel",
    "serper": "Google",
    "apollo": "Apollo",
    "hubspot": "HubSpot",
    "freshsales": "Freshsales",
}

_BACKFILL_FIELDS = ("revenue", "founded", "phone", "logo_url", "description")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def dedupe(
    companies: Iterable[CanonicalCompany],
    *,
    newest_weight: float = MERGE_RECENCY_WEIGHT,
) -> list[CanonicalCompany]:
    """Collapse records sharing a root domain, keeping first-appearance order."""
    groups: dict[str, list[CanonicalCompany]] = {}
    for company in companies:
        groups.setdefault(root_domain(company.domain), []).append(company)
    return [
        group[0] if len(group) == 1 else merge_group(group, newest_weight=newest_weight)
        for group in groups.values()
    ]


def merge_group(
    group: Sequence[CanonicalCompany],
    *,
    newest_weight: float = MERGE_RECENCY_WEIGHT,
) -> CanonicalCompany:
    if not group:
        raise ValueError("Cannot merge an empty group.")
    # sorted() is stable, so equal timestamps keep input order.
    ordered = sorted(group, key=lambda company: company.last_refreshed, reverse=True)
    newest, others = ordered[0], ordered[1:]

    sources: list[str] = []
    signals: list[Signal] = []
    seen_signals: set[str] = set()
    for company in ordered:
        for source in company.sources:
            if source not in sources:
                sources.append(source)
        for signal in company.signals:
            if signal.id not in seen_signals:
                seen_signals.add(signal.id)
                signals.append(signal)

    updates: dict[str, object] = {
        "sources": sources,
        "signals": signals,
        "contact_count": max(company.contact_count for company in ordered),
        "icp_score": round_half_up(
            (newest.icp_score * newest_weight + sum(company.icp_score for company in others))
            / (newest_weight + len(others))
        ),
    }
    for field_name in _BACKFILL_FIELDS:
        if getattr(newest, field_name):
            continue
        donor = next((company for company in others if getattr(company, field_name)), None)
        if donor is not None:
            updates[field_name] = getattr(donor, field_name)
    return newest.model_copy(update=updates)


def source_label(sources: Sequence[str]) -> str:
    """Human label for where a record came from, e.g. ``Found by Exa + Apollo``."""
    names = [SOURCE_LABELS.get(source, source.title()) for source in sources]
    if len(names) >= 2:
        return "Found by " + " + ".join(names)
    if names:
        return f"Found by {names[0]}"
    return ""
