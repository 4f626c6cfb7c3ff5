"""Exa adapter: semantic company search plus news-derived signals."""

from __future__ import annotations

import asyncio
from typing import Any

from scout.clients.exa import ExaClient
from scout.core.domains import extract_domain
from scout.models.company import CanonicalCompany, Signal
from scout.services.providers.base import CachedSearchProvider
from scout.services.signals import SignalExtractor

MIN_EXA_RELEVANCE = 0.10
NEWS_RESULTS = 10


class ExaSearchProvider(CachedSearchProvider):
    name = "exa"
    cache_ttl_name = "exa_search"
    min_relevance = MIN_EXA_RELEVANCE

    def __init__(self, client: ExaClient | None, *, signals: SignalExtractor | None = None, **kwargs: Any) -> None:
        super().__init__(client, **kwargs)
        self._signals = signals

    async def _fetch(self, query: str, num_results: int) -> dict[str, list[dict[str, Any]]]:
        companies, news = await asyncio.gather(
            self._client.search(
                query=query,
                num_results=num_results + self.over_fetch,
                category="company",
                highlight_sentences=6,
            ),
            self._client.search(query=query, num_results=NEWS_RESULTS, category="news"),
        )
        return {"companies": companies, "news": news}

    async def _map(self, raw: dict[str, list[dict[str, Any]]], query: str) -> tuple[list[CanonicalCompany], list[Signal]]:
        companies = [company for company in (_to_company(entry) for entry in raw["companies"]) if company]
        signals = await self._extract_signals(raw["news"], query)
        return companies, signals

    async def _extract_signals(self, news: list[dict[str, Any]], query: str) -> list[Signal]:
        if self._signals is None or not news:
            return []
        content = "\n\n".join(
            f"[{entry.get('title') or ''}] ({entry.get('url') or ''})\n{' '.join(entry.get('highlights') or [])}"
            for entry in news
        )
        signals = await self._signals.extract(content, query, source=self.name)
        linked: list[Signal] = []
        for signal in signals:
            match = next(
                (
                    entry
                    for entry in news
                    if entry.get("title") and entry["title"].lower()[:20] in signal.title.lower()
                ),
                None,
            )
            linked.append(signal.model_copy(update={"source_url": match.get("url")}) if match else signal)
        return linked


def _to_company(entry: dict[str, Any]) -> CanonicalCompany | None:
    url = entry.get("url") or ""
    domain = extract_domain(url)
    if not domain:
        return None
    score = entry.get("score")
    relevance = max(0.0, min(1.0, float(score))) if isinstance(score, (int, float)) else None
    return CanonicalCompany(
        domain=domain,
        name=entry.get("title") or domain,
        description=" ".join(entry.get("highlights") or []),
        website=url,
        relevance_score=relevance,
        sources=["exa"],
    )
