"""Client for HubSpot CRM company/deal lookups."""

from __future__ import annotations

import os
from typing import Any

import httpx

from scout.clients.base import CallObserver, ProviderClient

COMPANY_PROPERTIES = ("name", "domain", "lifecyclestage", "hs_lead_status", "num_associated_deals")


class HubSpotClient(ProviderClient):
    provider = "hubspot"

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = "https://api.hubapi.com",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        observer: CallObserver | None = None,
    ) -> None:
        if not access_token:
            raise ValueError("HUBSPOT_ACCESS_TOKEN is required to create a HubSpotClient.")
        super().__init__(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"},
            http_client=http_client,
            observer=observer,
        )

    @classmethod
    def from_env(cls) -> "HubSpotClient":
        return cls(os.getenv("HUBSPOT_ACCESS_TOKEN", ""))

    async def find_company(self, domain: str) -> dict[str, Any] | None:
        data = await self._request_json(
            "POST",
            "/crm/v3/objects/companies/search",
            endpoint="companies/search",
            json={
                "filterGroups": [
                    {"filters": [{"propertyName": "domain", "operator": "EQ", "value": domain}]}
                ],
                "properties": list(COMPANY_PROPERTIES),
                "limit": 1,
            },
            context={"domain": domain},
        )
        results = data.get("results") or []
        return results[0] if results and isinstance(results[0], dict) else None

    async def deal_stages(self, company_id: str, *, limit: int = 5) -> list[str]:
        """Return the ``dealstage`` of up to ``limit`` deals associated with a company."""
        associations = await self._request_json(
            "GET",
            f"/crm/v3/objects/companies/{company_id}/associations/deals",
            endpoint="companies/associations/deals",
            context={"company_id": company_id},
        )
        stages: list[str] = []
        for entry in (associations.get("results") or [])[:limit]:
            deal_id = entry.get("toObjectId") or entry.get("id")
            if not deal_id:
                continue
            deal = await self._request_json(
                "GET",
                f"/crm/v3/objects/deals/{deal_id}",
                endpoint="deals/get",
                params={"properties": "dealstage"},
                context={"deal_id": str(deal_id)},
            )
            stage = (deal.get("properties") or {}).get("dealstage")
            if stage:
                stages.append(str(stage))
        return stages
