"""Request/response models for the search pipeline."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from scout.models.company import CanonicalCompany, Signal

SearchErrorCode = Literal[
    "TIMEOUT",
    "RATE_LIMITED",
    "AUTH_FAILED",
    "NETWORK_ERROR",
    "NO_ENGINE_AVAILABLE",
    "CIRCUIT_OPEN",
    "ALL_ENGINES_FAILED",
    "EMPTY_RESULTS",
    "UNKNOWN",
]


class SearchErrorDetail(BaseModel):
    """Structured, user-presentable description of a provider failure."""

    code: SearchErrorCode
    message: str
    engine: str | None = None
    retryable: bool = True
    suggested_action: str | None = None


class SearchFilters(BaseModel):
    verticals: list[str] = Field(default_factory=list)
    regions: list[str] = Field(default_factory=list)
    sizes: list[str] = Field(default_factory=list)
    signals: list[str] = Field(default_factory=list)
    hide_excluded: bool = True
    num_results: int | None = Field(default=None, ge=1, le=100)
    engines: list[str] | None = None
    enrich: bool = True


class DidYouMean(BaseModel):
    original: str
    simplified: str


class UsageSummary(BaseModel):
    count: int
    budget: int | None
    pct_used: float


class SearchResponse(BaseModel):
    companies: list[CanonicalCompany] = Field(default_factory=list)
    signals: list[Signal] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    errors: list[SearchErrorDetail] = Field(default_factory=list)
    engine: str | None = None
    excluded_count: int = 0
    query_simplified: bool = False
    did_you_mean: DidYouMean | None = None
    usage: dict[str, UsageSummary] = Field(default_factory=dict)
