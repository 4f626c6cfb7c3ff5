"""Serper adapter: Google results for exact company-name lookups."""

from __future__ import annotations

import re
from typing import Any

from scout.clients.serper import SerperClient
from scout.core.domains import extract_domain, is_noise_domain, root_domain
from scout.models.company import CanonicalCompany, Signal
from scout.services.providers.base import CachedSearchProvider

_SITE_SUFFIX = re.compile(
    r"\s*[-–|]\s*(Wikipedia|LinkedIn|Crunchbase|Bloomberg|Reuters|Glassdoor|ZoomInfo|G2|Forbes|Yahoo Finance).*$",
    re.IGNORECASE,
)
_TRAILING_PARENTHETICAL = re.compile(r"\s*\(.*?\)\s*$")


def clean_title(title: str) -> str:
    """Strip listing-site suffixes and a trailing parenthetical from a result title."""
    cleaned = _SITE_SUFFIX.sub("", title or "")
    cleaned = _TRAILING_PARENTHETICAL.sub("", cleaned)
    return cleaned.strip()


class SerperSearchProvider(CachedSearchProvider):
    name = "serper"
    cache_ttl_name = "serper_search"
    over_fetch = 0

    def __init__(self, client: SerperClient | None, **kwargs: Any) -> None:
        super().__init__(client, **kwargs)

    async def _fetch(self, query: str, num_results: int) -> dict[str, Any]:
        return await self._client.search(query=query, num=num_results)

    async def _map(self, raw: dict[str, Any], query: str) -> tuple[list[CanonicalCompany], list[Signal]]:
        companies: list[CanonicalCompany] = []
        for entry in raw.get("organic") or []:
            link = entry.get("link") or ""
            domain = extract_domain(link)
            if not domain:
                continue
            companies.append(
                CanonicalCompany(
                    domain=domain,
                    name=clean_title(entry.get("title") or "") or domain,
                    description=entry.get("snippet") or "",
                    website=link,
                    sources=["serper"],
                )
            )
        return _promote_knowledge_graph(companies, raw.get("knowledgeGraph")), []


def _promote_knowledge_graph(
    companies: list[CanonicalCompany], graph: dict[str, Any] | None
) -> list[CanonicalCompany]:
    """Flag (or insert at the front) the company named by Google's knowledge graph."""
    if not graph or not graph.get("website"):
        return companies
    graph_domain = extract_domain(graph["website"])
    if not graph_domain or is_noise_domain(graph_domain):
        return companies
    graph_root = root_domain(graph_domain)
    for index, company in enumerate(companies):
        if root_domain(company.domain) == graph_root:
            companies[index] = company.model_copy(
                update={
                    "name": graph.get("title") or company.name,
                    "description": graph.get("description") or company.description,
                    "exact_match": True,
                }
            )
            return companies
    promoted = CanonicalCompany(
        domain=graph_domain,
        name=graph.get("title") or graph_domain,
        description=graph.get("description") or "",
        website=graph["website"],
        sources=["serper"],
        exact_match=True,
    )
    return [promoted, *companies]
