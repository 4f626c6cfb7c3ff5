"""Query classification and shaping: company-name vs discovery, rephrasing, exact-match."""

from __future__ import annotations

import re
from collections.abc import Sequence

from scout.models.company import CanonicalCompany
from scout.models.search import SearchFilters

MAX_NAME_QUERY_WORDS = 4

# Words that only show up in descriptive, category-style queries.
DISCOVERY_WORDS = frozenset(
    {
        "companies",
        "company",
        "firms",
        "manufacturers",
        "manufacturer",
        "suppliers",
        "supplier",
        "distributors",
        "vendors",
        "providers",
        "startups",
        "businesses",
        "brands",
        "producers",
        "in",
        "near",
        "with",
        "that",
        "which",
        "who",
        "hiring",
        "expanding",
        "funded",
        "growing",
        "like",
        "similar",
    }
)

# A trailing qualifier turns "<place|name> <sector>" into a discovery query.
QUALIFIER_WORDS = frozenset(
    {
        "food",
        "foods",
        "chemical",
        "chemicals",
        "pharma",
        "pharmaceutical",
        "pharmaceuticals",
        "tech",
        "technology",
        "fintech",
        "healthtech",
        "biotech",
        "saas",
        "software",
        "logistics",
        "manufacturing",
        "retail",
        "ecommerce",
        "energy",
        "automotive",
        "agriculture",
        "ingredients",
        "packaging",
        "cosmetics",
    }
)

SIMPLIFY_DROP_WORDS = frozenset(
    {
        "mid-size",
        "midsize",
        "mid-sized",
        "mid-market",
        "small",
        "large",
        "big",
        "enterprise",
        "smb",
        "sme",
        "fast-growing",
        "growing",
        "expanding",
        "hiring",
        "funded",
        "recently",
        "new",
        "top",
        "leading",
        "best",
    }
)

LEGAL_SUFFIXES = (
    "incorporated",
    "corporation",
    "limited",
    "s.p.a.",
    "s.a.",
    "gmbh",
    "inc",
    "llc",
    "ltd",
    "corp",
    "plc",
    "spa",
    "srl",
    "ag",
    "se",
    "sa",
    "bv",
    "nv",
    "kg",
    "oy",
    "ab",
    "co",
)
_LEGAL_SUFFIX_PATTERN = re.compile(
    r"[\s,]+(?:" + "|".join(re.escape(suffix) for suffix in LEGAL_SUFFIXES) + r")\.?$",
    re.IGNORECASE,
)
_EXACT_MATCH_TLD = re.compile(r"\.(com|io|org|net|co|ai|de|it|eu)$", re.IGNORECASE)


def looks_like_company_name(query: str) -> bool:
    """True for short proper-name lookups like ``BASF SE`` or ``Tata Steel``."""
    words = (query or "").split()
    if not words or len(words) > MAX_NAME_QUERY_WORDS:
        return False
    lowered = [word.lower().strip(",.") for word in words]
    if any(word in DISCOVERY_WORDS for word in lowered):
        return False
    return lowered[-1] not in QUALIFIER_WORDS


def strip_legal_suffix(name: str) -> str:
    stripped = (name or "").strip()
    while True:
        shorter = _LEGAL_SUFFIX_PATTERN.sub("", stripped).strip()
        if shorter == stripped or not shorter:
            return stripped
        stripped = shorter


def simplify_query(query: str) -> str:
    """Drop size/intent qualifiers; never returns an empty query."""
    original = (query or "").strip()
    kept = [word for word in original.split() if word.lower() not in SIMPLIFY_DROP_WORDS]
    return " ".join(kept) if kept else original


def build_query(free_text: str | None, filters: SearchFilters | None = None) -> str:
    """Combine free text with filter facets into one discovery query."""
    parts: list[str] = []
    if free_text and free_text.strip():
        parts.append(free_text.strip())
    if filters is not None:
        if filters.verticals:
            parts.append(f"industry: {' OR '.join(filters.verticals)}")
        if filters.regions:
            parts.append(f"region: {' OR '.join(filters.regions)}")
        if filters.signals:
            parts.append(f"signals: {', '.join(filters.signals)}")
    return " ".join(parts)


def is_exact_match(company: CanonicalCompany, query: str) -> bool:
    target = strip_legal_suffix(query.lower().strip())
    if not target:
        return False
    domain_base = _EXACT_MATCH_TLD.sub("", company.domain).lower()
    name = strip_legal_suffix(company.name.lower())
    return (
        domain_base == target
        or name == target
        or target.replace(" ", "") in domain_base
        or target in name
        or (bool(name) and target.startswith(name))
    )


def flag_exact_match(companies: Sequence[CanonicalCompany], query: str) -> list[CanonicalCompany]:
    """Flag the first company matching ``query`` unless one is already flagged."""
    flagged = list(companies)
    if any(company.exact_match for company in flagged):
        return flagged
    for index, company in enumerate(flagged):
        if is_exact_match(company, query):
            flagged[index] = company.model_copy(update={"exact_match": True})
            break
    return flagged
