"""Parallel adapter: broad-coverage discovery search."""

from __future__ import annotations

from typing import Any

from scout.clients.parallel import ParallelClient
from scout.core.domains import extract_domain
from scout.models.company import CanonicalCompany, Signal
from scout.services.providers.base import CachedSearchProvider

DESCRIPTION_MAX_CHARS = 500


class ParallelSearchProvider(CachedSearchProvider):
    name = "parallel"
    cache_ttl_name = "parallel_search"

    def __init__(self, client: ParallelClient | None, **kwargs: Any) -> None:
        super().__init__(client, **kwargs)

    async def _fetch(self, query: str, num_results: int) -> list[dict[str, Any]]:
        return await self._client.search(query=query, max_results=num_results + self.over_fetch)

    async def _map(self, raw: list[dict[str, Any]], query: str) -> tuple[list[CanonicalCompany], list[Signal]]:
        companies: list[CanonicalCompany] = []
        for entry in raw:
            url = entry.get("url") or ""
            domain = extract_domain(url)
            if not domain:
                continue
            companies.append(
                CanonicalCompany(
                    domain=domain,
                    name=entry.get("title") or domain,
                    description=" ".join(entry.get("excerpts") or [])[:DESCRIPTION_MAX_CHARS],
                    website=url,
                    sources=["parallel"],
                )
            )
        return companies, []

    def _finalize(
        self, companies: list[CanonicalCompany], num_results: int
    ) -> tuple[list[CanonicalCompany], float | None]:
        trimmed = companies[:num_results]
        total = max(len(trimmed), 1)
        # No provider scores: rank position maps onto 1.0 .. 0.5.
        ranked = [
            company.model_copy(update={"relevance_score": round(1.0 - (index / total) * 0.5, 2)})
            for index, company in enumerate(trimmed)
        ]
        if len(ranked) >= 3:
            avg_relevance = 0.5
        elif ranked:
            avg_relevance = 0.2
        else:
            avg_relevance = 0.0
        return ranked, avg_relevance
