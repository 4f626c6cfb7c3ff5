"""Client for the Parallel AI search API."""

from __future__ import annotations

import os
from typing import Any

import httpx

from scout.clients.base import CallObserver, ProviderClient
from scout.clients.errors import ProviderSchemaError

PARALLEL_BETA_HEADER = "search-extract-2025-10-10"


class ParallelClient(ProviderClient):
    """Objective-style web search used for broad company discovery."""

    provider = "parallel"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.parallel.ai",
        timeout: float = 4.0,
        http_client: httpx.AsyncClient | None = None,
        observer: CallObserver | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("PARALLEL_API_KEY is required to create a ParallelClient.")
        super().__init__(
            base_url=base_url,
            timeout=timeout,
            headers={
                "x-api-key": api_key,
                "Content-Type": "application/json",
                "parallel-beta": PARALLEL_BETA_HEADER,
            },
            http_client=http_client,
            observer=observer,
        )

    @classmethod
    def from_env(cls) -> "ParallelClient":
        return cls(os.getenv("PARALLEL_API_KEY", ""))

    async def search(self, *, query: str, max_results: int, max_chars: int = 2000) -> list[dict[str, Any]]:
        payload = {
            "objective": (
                f"Find companies matching: {query}. "
                "Focus on company websites, not news articles or directories."
            ),
            "search_queries": [query],
            "max_results": max_results,
            "excerpts": {"max_chars_per_result": max_chars},
        }
        data = await self._request_json(
            "POST",
            "/v1beta/search",
            endpoint="search",
            json=payload,
            context={"query": query[:60]},
        )
        results = data.get("results") or []
        if not isinstance(results, list) or not all(isinstance(entry, dict) for entry in results):
            raise ProviderSchemaError("Entries in `results` must be JSON objects.", provider=self.provider)
        return results
