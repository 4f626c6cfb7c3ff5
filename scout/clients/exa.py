"""Client for interacting with the Exa semantic search API."""

from __future__ import annotations

import os
from typing import Any

import httpx

from scout.clients.base import CallObserver, ProviderClient
from scout.clients.errors import ProviderSchemaError


class ExaClient(ProviderClient):
    """Minimal async Exa API client."""

    provider = "exa"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.exa.ai",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        observer: CallObserver | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("EXA_API_KEY is required to create an ExaClient.")
        super().__init__(
            base_url=base_url,
            timeout=timeout,
            headers={"x-api-key": api_key, "Content-Type": "application/json"},
            http_client=http_client,
            observer=observer,
        )

    @classmethod
    def from_env(cls) -> "ExaClient":
        """Instantiate the client using the EXA_API_KEY environment variable."""
        return cls(os.getenv("EXA_API_KEY", ""))

    async def search(
        self,
        *,
        query: str,
        num_results: int,
        category: str,
        highlight_sentences: int = 4,
    ) -> list[dict[str, Any]]:
        """Run one Exa search restricted to ``category`` ("company" or "news")."""
        if num_results <= 0:
            raise ValueError("num_results must be a positive integer.")

        payload = {
            "query": query,
            "type": "auto",
            "numResults": num_results,
            "category": category,
            "contents": {
                "highlights": {
                    "numSentences": highlight_sentences,
                    "highlightsPerUrl": highlight_sentences,
                }
            },
        }
        data = await self._request_json(
            "POST",
            "/search",
            endpoint=f"search/{category}",
            json=payload,
            context={"query": query[:60]},
        )
        results = data.get("results")
        if not isinstance(results, list):
            raise ProviderSchemaError("`results` missing from Exa response.", provider=self.provider)
        if not all(isinstance(entry, dict) for entry in results):
            raise ProviderSchemaError("Entries in `results` must be JSON objects.", provider=self.provider)
        return results
