"""Client for the Serper (Google search) API."""

from __future__ import annotations

import os
from typing import Any

import httpx

from scout.clients.base import CallObserver, ProviderClient
from scout.clients.errors import ProviderSchemaError


class SerperClient(ProviderClient):
    provider = "serper"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://google.serper.dev",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        observer: CallObserver | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("SERPER_API_KEY is required to create a SerperClient.")
        super().__init__(
            base_url=base_url,
            timeout=timeout,
            headers={"X-API-KEY": api_key, "Content-Type": "application/json"},
            http_client=http_client,
            observer=observer,
        )

    @classmethod
    def from_env(cls) -> "SerperClient":
        return cls(os.getenv("SERPER_API_KEY", ""))

    async def search(self, *, query: str, num: int) -> dict[str, Any]:
        """Return the raw payload; callers read ``organic`` and ``knowledgeGraph``."""
        data = await self._request_json(
            "POST",
            "/search",
            endpoint="search",
            json={"q": query, "num": num},
            context={"query": query[:60]},
        )
        organic = data.get("organic", [])
        if not isinstance(organic, list):
            raise ProviderSchemaError("`organic` must be a list.", provider=self.provider)
        return data
