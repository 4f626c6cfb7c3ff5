"""Budget- and health-aware engine selection."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from threading import Lock
from typing import Protocol

from scout.models.health import HealthStatus, ProviderHealth
from scout.models.search import UsageSummary
from scout.observability.metrics import metrics
from scout.services.circuit_breaker import CircuitBreaker
from scout.services.health import HealthTracker
from scout.services.usage import InMemoryUsageStore, UsageStore

logger = logging.getLogger(__name__)

# (cheap high-budget engine, constrained higher-quality engine)
DISCOVERY_PRIORITY = ("parallel", "exa")
NAME_PRIORITY = ("serper", "exa")
FALLBACK_ENGINE = "exa"

ROUTING_WINDOW = timedelta(minutes=5)
SNAPSHOT_TTL = timedelta(minutes=2)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConfigurableEngine(Protocol):
    @property
    def is_configured(self) -> bool:
        ...


@dataclass
class DailyUsageCounter:
    count: int
    day: date


class RouterState:
    """Owns daily usage counters and the cached health snapshot used for routing."""

    def __init__(
        self,
        providers: Mapping[str, ConfigurableEngine],
        *,
        health: HealthTracker,
        budgets: Mapping[str, int] | None = None,
        usage_store: UsageStore | None = None,
        breaker: CircuitBreaker | None = None,
        clock: Callable[[], datetime] = _utcnow,
        routing_window: timedelta = ROUTING_WINDOW,
        snapshot_ttl: timedelta = SNAPSHOT_TTL,
    ) -> None:
        self._providers = dict(providers)
        self._health = health
        self._budgets = dict(budgets or {})
        self._usage_store = usage_store or InMemoryUsageStore()
        self.breaker = breaker or CircuitBreaker()
        self._clock = clock
        self._routing_window = routing_window
        self._snapshot_ttl = snapshot_ttl
        self._counters: dict[str, DailyUsageCounter] = {}
        self._seeded_day: date | None = None
        self._snapshot: dict[str, ProviderHealth] | None = None
        self._snapshot_at: datetime | None = None
        self._lock = Lock()

    @property
    def providers(self) -> dict[str, ConfigurableEngine]:
        return dict(self._providers)

    def is_available(self, engine: str) -> bool:
        provider = self._providers.get(engine)
        return provider is not None and provider.is_configured

    def any_available(self) -> bool:
        return any(self.is_available(engine) for engine in self._providers)

    # Usage ---------------------------------------------------------------

    def usage_count(self, engine: str) -> int:
        with self._lock:
            return self._counter_locked(engine).count

    def is_under_budget(self, engine: str) -> bool:
        budget = self._budgets.get(engine)
        if budget is None:
            return True
        return self.usage_count(engine) < budget

    def record_usage(self, engine: str) -> None:
        """Count one real outbound call; never call this for cache hits."""
        with self._lock:
            counter = self._counter_locked(engine)
            counter.count += 1
            count, day = counter.count, counter.day
        metrics.gauge("router.usage", count, tags={"engine": engine})
        try:
            self._usage_store.save(engine, day, count)
        except Exception as exc:
            logger.warning("router.usage_persist_failed", extra={"engine": engine, "error": type(exc).__name__})

    def usage_summary(self) -> dict[str, UsageSummary]:
        summary: dict[str, UsageSummary] = {}
        for engine in sorted(set(self._budgets) | set(self._providers)):
            count = self.usage_count(engine)
            budget = self._budgets.get(engine)
            pct = round(count / budget * 100, 1) if budget else 0.0
            summary[engine] = UsageSummary(count=count, budget=budget, pct_used=pct)
        return summary

    def _counter_locked(self, engine: str) -> DailyUsageCounter:
        today = self._clock().date()
        if self._seeded_day != today:
            self._seed_locked(today)
        counter = self._counters.get(engine)
        if counter is None or counter.day != today:
            counter = DailyUsageCounter(count=0, day=today)
            self._counters[engine] = counter
        return counter

    def _seed_locked(self, today: date) -> None:
        self._seeded_day = today
        try:
            persisted = self._usage_store.load(today)
        except Exception as exc:
            logger.warning("router.usage_seed_failed", extra={"error": type(exc).__name__})
            return
        for engine, count in persisted.items():
            current = self._counters.get(engine)
            if current is None or current.day != today or current.count < count:
                self._counters[engine] = DailyUsageCounter(count=count, day=today)

    # Health --------------------------------------------------------------

    def health_snapshot(self) -> dict[str, ProviderHealth]:
        now = self._clock()
        with self._lock:
            if (
                self._snapshot is not None
                and self._snapshot_at is not None
                and now - self._snapshot_at < self._snapshot_ttl
            ):
                return self._snapshot
        snapshot = self._health.summary(self._routing_window).sources
        with self._lock:
            self._snapshot = snapshot
            self._snapshot_at = now
        return snapshot

    def invalidate_health(self) -> None:
        with self._lock:
            self._snapshot = None
            self._snapshot_at = None

    def is_healthy(self, engine: str) -> bool:
        health = self.health_snapshot().get(engine)
        return health is None or health.status != HealthStatus.DOWN

    # Selection -----------------------------------------------------------

    def pick_discovery_engine(self) -> str:
        return self._pick(DISCOVERY_PRIORITY)

    def pick_name_engine(self) -> str:
        return self._pick(NAME_PRIORITY)

    def is_fallback_allowed(self, engine: str = FALLBACK_ENGINE) -> bool:
        return self.is_available(engine) and self.is_under_budget(engine)

    def _usable(self, engine: str) -> bool:
        return (
            self.is_available(engine)
            and not self.breaker.is_open(engine)
            and self.is_healthy(engine)
            and self.is_under_budget(engine)
        )

    def _pick(self, priority: tuple[str, str]) -> str:
        cheap, constrained = priority
        if self._usable(cheap):
            choice, reason = cheap, "preferred"
        elif self._usable(constrained):
            choice, reason = constrained, "fallback"
        elif self.is_available(cheap):
            choice, reason = cheap, "over_budget"
        else:
            choice, reason = constrained, "last_resort"
        logger.info("router.pick", extra={"engine": choice, "reason": reason, "priority": list(priority)})
        return choice
