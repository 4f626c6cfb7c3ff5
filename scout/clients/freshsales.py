"""Client for the Freshsales CRM filtered-search API."""

from __future__ import annotations

import os
from typing import Any

import httpx

from scout.clients.base import CallObserver, ProviderClient

PAGE_SIZE = 25
_ENTITY_KEYS = {"sales_account": "sales_accounts", "deal": "deals", "contact": "contacts"}


class FreshsalesClient(ProviderClient):
    provider = "freshsales"

    def __init__(
        self,
        api_key: str,
        domain: str,
        *,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        observer: CallObserver | None = None,
    ) -> None:
        if not api_key or not domain:
            raise ValueError("FRESHSALES_API_KEY and FRESHSALES_DOMAIN are required to create a FreshsalesClient.")
        super().__init__(
            base_url=f"https://{domain}.freshsales.io/api",
            timeout=timeout,
            headers={"Authorization": f"Token token={api_key}", "Content-Type": "application/json"},
            http_client=http_client,
            observer=observer,
        )

    @classmethod
    def from_env(cls) -> "FreshsalesClient":
        return cls(os.getenv("FRESHSALES_API_KEY", ""), os.getenv("FRESHSALES_DOMAIN", ""))

    async def filtered_search(
        self,
        entity: str,
        filter_rule: list[dict[str, Any]],
        *,
        max_pages: int = 1,
    ) -> list[dict[str, Any]]:
        """Page through ``filtered_search/<entity>`` until a short page or ``max_pages``."""
        if entity not in _ENTITY_KEYS:
            raise ValueError(f"Unsupported Freshsales entity: {entity}")
        records: list[dict[str, Any]] = []
        for page in range(1, max_pages + 1):
            data = await self._request_json(
                "POST",
                f"/filtered_search/{entity}",
                endpoint=f"filtered_search/{entity}",
                params={"page": page},
                json={"filter_rule": filter_rule},
                context={"entity": entity, "page": page},
            )
            items = [item for item in data.get(_ENTITY_KEYS[entity]) or [] if isinstance(item, dict)]
            records.extend(items)
            if len(items) < PAGE_SIZE:
                break
        return records
