"""Call-outcome records and derived provider health."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


class CallOutcome(BaseModel):
    """One outbound provider call, as reported to the health sink."""

    source: str
    endpoint: str
    status_code: int = 0
    success: bool
    latency_ms: int = 0
    rate_limit_remaining: int | None = None
    error_message: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class ProviderHealth(BaseModel):
    status: HealthStatus = HealthStatus.HEALTHY
    error_rate: float = 0.0
    avg_latency_ms: int = 0
    last_success: datetime | None = None
    rate_limit_remaining: int | None = None
    call_count: int = 0


class HealthSummary(BaseModel):
    window_hours: float
    sources: dict[str, ProviderHealth] = Field(default_factory=dict)
    recent_errors: list[CallOutcome] = Field(default_factory=list)
