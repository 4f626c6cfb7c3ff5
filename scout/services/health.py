"""Provider health: call-log sink plus rolling-window aggregation."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Protocol, TypeVar

from sqlalchemy.engine import Engine
from sqlmodel import select

from scout.core.database import session_scope
from scout.models.health import CallOutcome, HealthStatus, HealthSummary, ProviderHealth
from scout.models.records import ApiCallRecord
from scout.observability.metrics import metrics

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

HEALTHY_ERROR_RATE = 5.0
DEGRADED_ERROR_RATE = 20.0
RECENT_ERRORS_LIMIT = 25


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallLogStore(Protocol):
    """Persistence contract for call outcomes."""

    def append(self, outcome: CallOutcome) -> None:
        ...

    def since(self, cutoff: datetime) -> list[CallOutcome]:
        ...


class InMemoryCallLogStore(CallLogStore):
    """Bounded, thread-safe call log used for local development and tests."""

    def __init__(self, max_records: int = 5000) -> None:
        self._records: deque[CallOutcome] = deque(maxlen=max_records)
        self._lock = Lock()

    def append(self, outcome: CallOutcome) -> None:
        with self._lock:
            self._records.append(outcome)

    def since(self, cutoff: datetime) -> list[CallOutcome]:
        with self._lock:
            return [record for record in self._records if record.created_at >= cutoff]


class SqlCallLogStore(CallLogStore):
    """SQLModel-backed call log (``api_call_log`` table)."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def append(self, outcome: CallOutcome) -> None:
        with session_scope(self._engine) as session:
            session.add(ApiCallRecord.from_outcome(outcome))
            session.commit()

    def since(self, cutoff: datetime) -> list[CallOutcome]:
        with session_scope(self._engine) as session:
            statement = (
                select(ApiCallRecord)
                .where(ApiCallRecord.created_at >= cutoff)
                .order_by(ApiCallRecord.created_at.asc())
            )
            return [record.to_outcome() for record in session.exec(statement).all()]


def classify_error_rate(error_rate: float, call_count: int) -> HealthStatus:
    """Map an error-rate percentage onto the three health states."""
    if call_count == 0 or error_rate < HEALTHY_ERROR_RATE:
        return HealthStatus.HEALTHY
    if error_rate < DEGRADED_ERROR_RATE:
        return HealthStatus.DEGRADED
    return HealthStatus.DOWN


class HealthTracker:
    """Consumes call outcomes and derives per-provider health over a window."""

    def __init__(
        self,
        store: CallLogStore | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store or InMemoryCallLogStore()
        self._clock = clock

    def log_call(self, outcome: CallOutcome) -> None:
        """Record an outcome; store failures are logged and never raised."""
        tags = {"provider": outcome.source, "success": str(outcome.success).lower()}
        metrics.increment("provider.calls", tags=tags)
        metrics.timing("provider.latency_ms", outcome.latency_ms, tags={"provider": outcome.source})
        try:
            self._store.append(outcome)
        except Exception as exc:
            logger.warning(
                "health.log_failed",
                extra={"source": outcome.source, "endpoint": outcome.endpoint, "error": type(exc).__name__},
            )

    async def track(
        self,
        source: str,
        endpoint: str,
        op: Callable[[], Awaitable[_T]],
        *,
        context: dict[str, Any] | None = None,
    ) -> _T:
        """Time ``op()`` and log its outcome; the op's error is re-raised."""
        started = time.perf_counter()
        try:
            result = await op()
        except Exception as exc:
            self.log_call(
                CallOutcome(
                    source=source,
                    endpoint=endpoint,
                    status_code=getattr(exc, "status", 0) or 0,
                    success=False,
                    latency_ms=int((time.perf_counter() - started) * 1000),
                    error_message=str(exc)[:200],
                    context=context or {},
                )
            )
            raise
        self.log_call(
            CallOutcome(
                source=source,
                endpoint=endpoint,
                status_code=200,
                success=True,
                latency_ms=int((time.perf_counter() - started) * 1000),
                context=context or {},
            )
        )
        return result

    def summary(self, window: timedelta = timedelta(hours=1)) -> HealthSummary:
        """Aggregate outcomes newer than ``now - window`` per source."""
        cutoff = self._clock() - window
        try:
            outcomes = self._store.since(cutoff)
        except Exception as exc:
            logger.warning("health.read_failed", extra={"error": type(exc).__name__})
            outcomes = []

        grouped: dict[str, list[CallOutcome]] = {}
        for outcome in outcomes:
            grouped.setdefault(outcome.source, []).append(outcome)

        sources = {source: _aggregate(records) for source, records in grouped.items()}
        errors = sorted(
            (outcome for outcome in outcomes if not outcome.success),
            key=lambda outcome: outcome.created_at,
            reverse=True,
        )[:RECENT_ERRORS_LIMIT]
        return HealthSummary(
            window_hours=round(window.total_seconds() / 3600, 3),
            sources=sources,
            recent_errors=errors,
        )

    def provider_health(self, source: str, window: timedelta = timedelta(hours=1)) -> ProviderHealth:
        # Zero observed calls means healthy.
        return self.summary(window).sources.get(source, ProviderHealth())


def _aggregate(records: list[CallOutcome]) -> ProviderHealth:
    call_count = len(records)
    failures = sum(1 for record in records if not record.success)
    # Classify on the exact rate; only the reported figure is rounded.
    raw_error_rate = failures / call_count * 100 if call_count else 0.0
    avg_latency = round(sum(record.latency_ms for record in records) / call_count) if call_count else 0
    successes = [record.created_at for record in records if record.success]
    ordered = sorted(records, key=lambda record: record.created_at, reverse=True)
    remaining = next(
        (record.rate_limit_remaining for record in ordered if record.rate_limit_remaining is not None),
        None,
    )
    return ProviderHealth(
        status=classify_error_rate(raw_error_rate, call_count),
        error_rate=round(raw_error_rate, 1),
        avg_latency_ms=avg_latency,
        last_success=max(successes) if successes else None,
        rate_limit_remaining=remaining,
        call_count=call_count,
    )
