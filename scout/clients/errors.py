"""Error taxonomy shared by every outbound provider client."""

from __future__ import annotations

import httpx


class ProviderError(RuntimeError):
    """Base error for provider client failures."""

    retryable = False

    def __init__(self, message: str, code: str = "PROVIDER_ERROR", *, provider: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.provider = provider


class ProviderHttpError(ProviderError):
    """Raised for non-2xx responses; carries the status for retry decisions."""

    def __init__(
        self,
        status: int,
        message: str | None = None,
        *,
        provider: str | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(
            message or f"HTTP {status}",
            code=code or f"HTTP_{status}",
            provider=provider,
        )
        self.status = status
        self.retryable = status >= 500


class ProviderRateLimitError(ProviderHttpError):
    """Raised when a provider responds with HTTP 429."""

    def __init__(self, message: str | None = None, *, provider: str | None = None) -> None:
        super().__init__(
            429,
            message or f"Rate limited by {provider or 'provider'}",
            provider=provider,
            code="RATE_LIMITED",
        )
        self.retryable = True


class ProviderAuthError(ProviderHttpError):
    """Raised on HTTP 401/403; a configuration problem, never retried."""

    def __init__(self, status: int = 401, message: str | None = None, *, provider: str | None = None) -> None:
        super().__init__(
            status,
            message or f"{provider or 'Provider'} rejected the configured credentials",
            provider=provider,
            code="AUTH_FAILED",
        )
        self.retryable = False


class ProviderTimeoutError(ProviderError):
    """Raised when an operation exceeds its deadline."""

    retryable = True

    def __init__(
        self,
        label: str,
        timeout_ms: int,
        message: str | None = None,
        *,
        provider: str | None = None,
    ) -> None:
        super().__init__(
            message or f"{label} timed out after {timeout_ms}ms",
            code="TIMEOUT",
            provider=provider or label,
        )
        self.label = label
        self.timeout_ms = timeout_ms


class ProviderNetworkError(ProviderError):
    """Raised on transport-level failures (DNS, connection reset, TLS)."""

    retryable = True

    def __init__(self, message: str = "Network error calling provider", *, provider: str | None = None) -> None:
        super().__init__(message, code="NETWORK_ERROR", provider=provider)


class ProviderSchemaError(ProviderError):
    """Raised when a provider response does not match the expected schema."""

    def __init__(self, message: str = "Unexpected provider response schema", *, provider: str | None = None) -> None:
        super().__init__(message, code="SCHEMA_ERROR", provider=provider)


class ProviderCircuitOpenError(ProviderError):
    """Raised in place of a call while the engine's circuit is not admitting requests."""

    retryable = True

    def __init__(self, provider: str) -> None:
        super().__init__(f"{provider} is recovering; try again shortly.", code="CIRCUIT_OPEN", provider=provider)


class NoProviderAvailableError(ProviderError):
    """Raised when no search provider is configured at all."""

    def __init__(self, message: str = "No search engine configured.") -> None:
        super().__init__(message, code="NO_ENGINE_AVAILABLE")


def raise_for_provider_status(response: httpx.Response, provider: str) -> None:
    """Map a non-2xx response onto the error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    if status == 429:
        raise ProviderRateLimitError(provider=provider)
    if status in (401, 403):
        raise ProviderAuthError(status, provider=provider)
    if status == 504:
        raise ProviderTimeoutError(provider, 0, f"{provider} upstream timed out ({status})", provider=provider)

    detail: str | None = None
    try:
        payload = response.json()
        if isinstance(payload, dict):
            detail = payload.get("message") or payload.get("detail") or payload.get("error")
    except ValueError:
        detail = response.text[:200] or None
    message = f"{provider} request failed: {status}"
    if detail:
        message = f"{message} - {str(detail)[:200]}"
    raise ProviderHttpError(status, message, provider=provider)


def rate_limit_remaining(response: httpx.Response) -> int | None:
    raw = response.headers.get("x-ratelimit-remaining")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None
