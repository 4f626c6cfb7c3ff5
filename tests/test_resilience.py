from __future__ import annotations

import asyncio

import httpx
import pytest

from scout.clients.errors import (
    NoProviderAvailableError,
    ProviderAuthError,
    ProviderCircuitOpenError,
    ProviderHttpError,
    ProviderNetworkError,
    ProviderRateLimitError,
    ProviderSchemaError,
    ProviderTimeoutError,
    raise_for_provider_status,
)
from scout.services import resilience
from scout.services.resilience import (
    RetryPolicy,
    base_delay_for,
    classify_error,
    compute_delay,
    default_retry_on,
    with_retry,
    with_timeout,
)
from tests.helpers.metrics_stub import StubMetrics


class _FlakyOp:
    def __init__(self, errors: list[Exception], result: str = "ok") -> None:
        self._errors = list(errors)
        self._result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return self._result


@pytest.mark.asyncio
async def test_with_timeout_returns_result_before_deadline():
    async def _fast() -> int:
        return 7

    assert await with_timeout(_fast, 1.0, "fast") == 7


@pytest.mark.asyncio
async def test_with_timeout_raises_typed_error_and_cancels():
    cancelled = asyncio.Event()

    async def _slow() -> None:
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    with pytest.raises(ProviderTimeoutError) as excinfo:
        await with_timeout(_slow, 0.01, "exa")

    assert excinfo.value.label == "exa"
    assert excinfo.value.timeout_ms == 10
    assert excinfo.value.code == "TIMEOUT"
    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_with_timeout_propagates_op_error_unchanged():
    async def _boom() -> None:
        raise ProviderSchemaError("bad payload")

    with pytest.raises(ProviderSchemaError):
        await with_timeout(_boom, 1.0, "exa")


@pytest.mark.asyncio
async def test_with_retry_makes_at_most_max_retries_plus_one_calls(no_sleep):
    op = _FlakyOp([ProviderNetworkError() for _ in range(10)])

    with pytest.raises(ProviderNetworkError):
        await with_retry(op, max_retries=2, sleep=no_sleep)

    assert op.calls == 3
    assert len(no_sleep.delays) == 2


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_non_retryable(no_sleep):
    op = _FlakyOp([ProviderAuthError(401, provider="serper")])

    with pytest.raises(ProviderAuthError):
        await with_retry(op, max_retries=2, sleep=no_sleep)

    assert op.calls == 1
    assert no_sleep.delays == []


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_request_timeout_status(no_sleep):
    request = httpx.Request("POST", "https://api.exa.ai/search")
    response = httpx.Response(408, request=request)
    calls = 0

    async def _op():
        nonlocal calls
        calls += 1
        raise_for_provider_status(response, "exa")

    with pytest.raises(ProviderHttpError) as excinfo:
        await with_retry(_op, max_retries=2, sleep=no_sleep)

    assert calls == 1
    assert excinfo.value.code == "HTTP_408"


@pytest.mark.asyncio
async def test_with_retry_recovers_after_transient_errors(no_sleep):
    op = _FlakyOp([ProviderRateLimitError(provider="exa"), ProviderHttpError(503)])

    assert await with_retry(op, max_retries=2, sleep=no_sleep) == "ok"
    assert op.calls == 3


@pytest.mark.asyncio
async def test_with_retry_honours_custom_predicate(no_sleep):
    op = _FlakyOp([ValueError("flaky"), ValueError("flaky")])

    result = await with_retry(op, max_retries=3, retry_on=lambda exc: isinstance(exc, ValueError), sleep=no_sleep)

    assert result == "ok"
    assert op.calls == 3


def test_base_delay_is_non_decreasing_and_capped():
    delays = [base_delay_for(attempt, base_delay=0.5, max_delay=5.0) for attempt in range(1, 10)]

    assert delays[:4] == [0.5, 1.0, 2.0, 4.0]
    assert all(later >= earlier for earlier, later in zip(delays, delays[1:]))
    assert max(delays) == 5.0


def test_compute_delay_adds_bounded_jitter():
    for attempt in range(1, 6):
        base = base_delay_for(attempt)
        for _ in range(20):
            delay = compute_delay(attempt)
            assert base <= delay <= base * 1.25


def test_compute_delay_without_jitter_is_exact():
    assert compute_delay(3, jitter=0) == 2.0


def test_base_delay_rejects_attempt_zero():
    with pytest.raises(ValueError):
        base_delay_for(0)


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ProviderNetworkError(), True),
        (ProviderTimeoutError("exa", 1000), True),
        (ProviderRateLimitError(), True),
        (ProviderHttpError(500), True),
        (ProviderHttpError(502), True),
        (ProviderHttpError(408), False),
        (ProviderHttpError(404), False),
        (ProviderHttpError(400), False),
        (ProviderAuthError(403), False),
        (httpx.ConnectError("refused"), True),
        (ValueError("not a provider error"), False),
    ],
)
def test_default_retry_on(error, expected):
    assert default_retry_on(error) is expected


@pytest.mark.parametrize(
    ("error", "code", "retryable"),
    [
        (ProviderTimeoutError("exa", 4000), "TIMEOUT", True),
        (ProviderCircuitOpenError("parallel"), "CIRCUIT_OPEN", True),
        (ProviderRateLimitError(provider="exa"), "RATE_LIMITED", True),
        (ProviderAuthError(401, provider="exa"), "AUTH_FAILED", False),
        (ProviderHttpError(429), "RATE_LIMITED", True),
        (ProviderHttpError(403), "AUTH_FAILED", False),
        (ProviderHttpError(500), "UNKNOWN", True),
        (ProviderNetworkError(), "NETWORK_ERROR", True),
        (NoProviderAvailableError(), "NO_ENGINE_AVAILABLE", False),
        (RuntimeError("boom"), "UNKNOWN", True),
    ],
)
def test_classify_error(error, code, retryable):
    detail = classify_error(error, "exa")

    assert detail.code == code
    assert detail.retryable is retryable
    assert detail.engine == "exa"


def test_rate_limit_detail_suggests_waiting():
    assert classify_error(ProviderRateLimitError(), "serper").suggested_action == "Wait 30 seconds"


@pytest.mark.asyncio
async def test_retry_policy_wraps_retry_in_deadline(no_sleep):
    op = _FlakyOp([ProviderNetworkError()])
    policy = RetryPolicy(max_retries=2, deadline_seconds=1.0, sleep=no_sleep)

    assert await policy.run(op, "parallel") == "ok"
    assert op.calls == 2


@pytest.mark.asyncio
async def test_retry_policy_deadline_bounds_total_time():
    async def _hang() -> None:
        await asyncio.sleep(5)

    policy = RetryPolicy(max_retries=5, deadline_seconds=0.01)

    with pytest.raises(ProviderTimeoutError) as excinfo:
        await policy.run(_hang, "parallel")

    assert excinfo.value.label == "parallel"


@pytest.mark.asyncio
async def test_retry_emits_metric(monkeypatch, no_sleep):
    stub = StubMetrics()
    monkeypatch.setattr(resilience, "metrics", stub)
    op = _FlakyOp([ProviderNetworkError()])

    await with_retry(op, label="serper", sleep=no_sleep)

    assert stub.increment_calls[0]["metric"] == "provider.retry"
    assert stub.increment_calls[0]["tags"] == {"provider": "serper"}
