"""Timeout and retry primitives wrapped around every outbound provider call."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from random import SystemRandom
from typing import TypeVar

import httpx

from scout.clients.errors import (
    NoProviderAvailableError,
    ProviderAuthError,
    ProviderCircuitOpenError,
    ProviderError,
    ProviderHttpError,
    ProviderNetworkError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)
from scout.models.search import SearchErrorDetail
from scout.observability.metrics import metrics

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY = 0.5
DEFAULT_MAX_DELAY = 5.0
JITTER_RATIO = 0.25

_rng = SystemRandom()


async def with_timeout(
    op: Callable[[], Awaitable[_T]],
    timeout_seconds: float,
    label: str,
) -> _T:
    """Await ``op()`` under a deadline, cancelling it and raising ``ProviderTimeoutError`` on expiry."""
    try:
        return await asyncio.wait_for(op(), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        timeout_ms = int(timeout_seconds * 1000)
        logger.warning("provider.timeout", extra={"label": label, "timeout_ms": timeout_ms})
        metrics.increment("provider.timeout", tags={"provider": label})
        raise ProviderTimeoutError(label, timeout_ms) from exc


def base_delay_for(
    attempt: int,
    *,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> float:
    """Delay before retry ``attempt`` (1-based) without jitter."""
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


def compute_delay(
    attempt: int,
    *,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    jitter: float = JITTER_RATIO,
) -> float:
    capped = base_delay_for(attempt, base_delay=base_delay, max_delay=max_delay)
    return capped + (_rng.uniform(0, capped * jitter) if jitter > 0 else 0.0)


def default_retry_on(error: BaseException) -> bool:
    """Retry transport failures, timeouts, 429 and 5xx; never other 4xx."""
    if isinstance(error, (ProviderRateLimitError, ProviderTimeoutError, ProviderNetworkError)):
        return True
    if isinstance(error, ProviderHttpError):
        return error.status == 429 or error.status >= 500
    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return False


async def with_retry(
    op: Callable[[], Awaitable[_T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    retry_on: Callable[[BaseException], bool] = default_retry_on,
    label: str = "provider",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> _T:
    """Call ``op`` up to ``max_retries + 1`` times; re-raise the last error when exhausted."""
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")
    attempt = 0
    while True:
        try:
            return await op()
        except Exception as exc:
            if attempt >= max_retries or not retry_on(exc):
                raise
            attempt += 1
            delay = compute_delay(attempt, base_delay=base_delay, max_delay=max_delay)
            logger.warning(
                "provider.retry",
                extra={
                    "label": label,
                    "attempt": attempt,
                    "max_retries": max_retries,
                    "delay_seconds": round(delay, 3),
                    "error": type(exc).__name__,
                },
            )
            metrics.increment("provider.retry", tags={"provider": label})
            await sleep(delay)


def classify_error(error: BaseException, engine: str | None = None) -> SearchErrorDetail:
    """Map any exception onto a structured, presentable error detail."""
    message = str(error) or type(error).__name__
    if isinstance(error, (ProviderTimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return SearchErrorDetail(
            code="TIMEOUT",
            message=message,
            engine=engine,
            retryable=True,
            suggested_action="Try again; the engine may be slow right now.",
        )
    if isinstance(error, ProviderRateLimitError):
        return SearchErrorDetail(
            code="RATE_LIMITED",
            message=message,
            engine=engine,
            retryable=True,
            suggested_action="Wait 30 seconds",
        )
    if isinstance(error, ProviderAuthError):
        return SearchErrorDetail(
            code="AUTH_FAILED",
            message=message,
            engine=engine,
            retryable=False,
            suggested_action="Check API key configuration.",
        )
    if isinstance(error, ProviderHttpError):
        if error.status == 429:
            return classify_error(ProviderRateLimitError(message, provider=engine), engine)
        if error.status in (401, 403):
            return classify_error(ProviderAuthError(error.status, message, provider=engine), engine)
        if error.status >= 500:
            return SearchErrorDetail(
                code="UNKNOWN",
                message=message,
                engine=engine,
                retryable=True,
                suggested_action="Server error; retry shortly.",
            )
        return SearchErrorDetail(code="UNKNOWN", message=message, engine=engine, retryable=False)
    if isinstance(error, (ProviderNetworkError, httpx.TransportError)):
        return SearchErrorDetail(
            code="NETWORK_ERROR",
            message=message,
            engine=engine,
            retryable=True,
            suggested_action="Check network connectivity.",
        )
    if isinstance(error, ProviderCircuitOpenError):
        return SearchErrorDetail(
            code="CIRCUIT_OPEN",
            message=message,
            engine=engine,
            retryable=True,
            suggested_action="Wait a minute while the engine recovers.",
        )
    if isinstance(error, NoProviderAvailableError):
        return SearchErrorDetail(
            code="NO_ENGINE_AVAILABLE",
            message=message,
            engine=engine,
            retryable=False,
            suggested_action="Configure at least one search provider API key.",
        )
    retryable = error.retryable if isinstance(error, ProviderError) else True
    return SearchErrorDetail(code="UNKNOWN", message=message, engine=engine, retryable=retryable)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry and deadline settings applied as ``with_timeout(with_retry(op))``."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    deadline_seconds: float = 20.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    async def run(self, op: Callable[[], Awaitable[_T]], label: str) -> _T:
        return await with_timeout(
            lambda: with_retry(
                op,
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                label=label,
                sleep=self.sleep,
            ),
            self.deadline_seconds,
            label,
        )
