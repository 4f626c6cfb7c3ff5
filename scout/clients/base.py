"""Shared async HTTP plumbing for provider clients."""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

import httpx

from scout.clients.errors import (
    ProviderError,
    ProviderNetworkError,
    ProviderSchemaError,
    ProviderTimeoutError,
    raise_for_provider_status,
    rate_limit_remaining,
)
from scout.models.health import CallOutcome

logger = logging.getLogger(__name__)


class CallObserver(Protocol):
    """Fire-and-forget sink for call outcomes."""

    def log_call(self, outcome: CallOutcome) -> None:
        ...


class ProviderClient:
    """Base for provider clients: owns an ``httpx.AsyncClient`` and reports every call."""

    provider = "provider"

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float,
        headers: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        observer: CallObserver | None = None,
    ) -> None:
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)
        self._headers = dict(headers or {})
        self._timeout_ms = int(timeout * 1000)
        self._observer = observer

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        endpoint: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        started = time.perf_counter()
        status_code = 0
        remaining: int | None = None
        try:
            try:
                response = await self._http.request(
                    method, path, json=json, params=params, headers=self._headers
                )
            except httpx.TimeoutException as exc:
                raise ProviderTimeoutError(
                    self.provider, self._timeout_ms, provider=self.provider
                ) from exc
            except httpx.HTTPError as exc:
                raise ProviderNetworkError(
                    f"HTTP error calling {self.provider}: {exc}", provider=self.provider
                ) from exc

            status_code = response.status_code
            remaining = rate_limit_remaining(response)
            raise_for_provider_status(response, self.provider)
            try:
                payload = response.json()
            except ValueError as exc:
                raise ProviderSchemaError(
                    f"Failed to decode {self.provider} response JSON.", provider=self.provider
                ) from exc
            if not isinstance(payload, dict):
                raise ProviderSchemaError(
                    f"{self.provider} response must be a JSON object.", provider=self.provider
                )
        except ProviderError as exc:
            self._report(endpoint, started, status_code, remaining, context, error=exc)
            raise
        self._report(endpoint, started, status_code, remaining, context)
        return payload

    def _report(
        self,
        endpoint: str,
        started: float,
        status_code: int,
        remaining: int | None,
        context: dict[str, Any] | None,
        *,
        error: Exception | None = None,
    ) -> None:
        if self._observer is None:
            return
        outcome = CallOutcome(
            source=self.provider,
            endpoint=endpoint,
            status_code=status_code,
            success=error is None,
            latency_ms=int((time.perf_counter() - started) * 1000),
            rate_limit_remaining=remaining,
            error_message=str(error)[:200] if error else None,
            context=context or {},
        )
        try:
            self._observer.log_call(outcome)
        except Exception:  # pragma: no cover - observers must never break a call
            logger.debug("provider.observer_failed", exc_info=True)
