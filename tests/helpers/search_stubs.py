from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from scout.models.company import CanonicalCompany
from scout.services.providers.base import ProviderResult


def make_company(domain: str, **overrides: Any) -> CanonicalCompany:
    fields: dict[str, Any] = {"domain": domain, "name": domain.split(".")[0].title()}
    fields.update(overrides)
    return CanonicalCompany(**fields)


def utc(year: int, month: int, day: int, hour: int = 0) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


class StubSearchProvider:
    """Scripted ``SearchProvider``: returns queued results, then repeats the last one."""

    def __init__(
        self,
        name: str,
        results: list[ProviderResult] | None = None,
        *,
        configured: bool = True,
    ) -> None:
        self.name = name
        self._results = list(results or [ProviderResult(engine=name, network_called=True)])
        self._configured = configured
        self.calls: list[tuple[str, int]] = []

    @property
    def is_configured(self) -> bool:
        return self._configured

    async def search(self, query: str, num_results: int) -> ProviderResult:
        self.calls.append((query, num_results))
        if len(self._results) > 1:
            return self._results.pop(0)
        return self._results[0]


def ok_result(engine: str, companies: list[CanonicalCompany], **kwargs: Any) -> ProviderResult:
    kwargs.setdefault("network_called", True)
    return ProviderResult(engine=engine, companies=companies, **kwargs)


def failed_result(engine: str, error: Exception) -> ProviderResult:
    return ProviderResult(engine=engine, error=error, network_called=True)
