"""Client for the Apollo contact/firmographic enrichment API."""

from __future__ import annotations

import os
from typing import Any

import httpx

from scout.clients.base import CallObserver, ProviderClient

CONTACT_SENIORITIES = ("c_suite", "vp", "director", "manager")


class ApolloClient(ProviderClient):
    provider = "apollo"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.apollo.io/api/v1",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        observer: CallObserver | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("APOLLO_API_KEY is required to create an ApolloClient.")
        super().__init__(
            base_url=base_url,
            timeout=timeout,
            headers={"x-api-key": api_key, "Content-Type": "application/json", "Cache-Control": "no-cache"},
            http_client=http_client,
            observer=observer,
        )

    @classmethod
    def from_env(cls) -> "ApolloClient":
        return cls(os.getenv("APOLLO_API_KEY", ""))

    async def enrich_organization(self, domain: str) -> dict[str, Any] | None:
        """Return Apollo's organization record for ``domain`` or None when unknown."""
        data = await self._request_json(
            "GET",
            "/organizations/enrich",
            endpoint="organizations/enrich",
            params={"domain": domain},
            context={"domain": domain},
        )
        organization = data.get("organization")
        return organization if isinstance(organization, dict) else None

    async def search_people(self, domain: str, *, per_page: int = 25) -> dict[str, Any]:
        return await self._request_json(
            "POST",
            "/mixed_people/api_search",
            endpoint="mixed_people/api_search",
            json={
                "q_organization_domains": domain,
                "per_page": per_page,
                "page": 1,
                "person_seniorities": list(CONTACT_SENIORITIES),
            },
            context={"domain": domain},
        )
