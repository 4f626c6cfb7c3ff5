"""Domain models for canonical company records, signals and fit scores."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, computed_field, field_validator

from scout.core.domains import normalize_domain, root_domain

SignalType = Literal["hiring", "funding", "expansion", "news"]
SIGNAL_TYPES: tuple[str, ...] = ("hiring", "funding", "expansion", "news")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HubSpotStatus(str, Enum):
    NONE = "none"
    NEW = "new"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


class FreshsalesStatus(str, Enum):
    NONE = "none"
    NEW_LEAD = "new_lead"
    CONTACTED = "contacted"
    NEGOTIATION = "negotiation"
    WON = "won"
    LOST = "lost"
    CUSTOMER = "customer"


class Signal(BaseModel):
    """Typed, timestamped event tied to one company domain."""

    id: str
    company_domain: str
    type: SignalType
    title: str
    description: str = ""
    date: str | None = None
    source_url: str | None = None
    source: str

    @staticmethod
    def make_id(company_domain: str, signal_type: str, title: str) -> str:
        """Deterministic id so the same event from two providers collapses."""
        digest = hashlib.sha256(
            f"{normalize_domain(company_domain)}|{signal_type}|{title.strip().lower()}".encode("utf-8")
        ).hexdigest()
        return f"sig_{digest[:16]}"


class FreshsalesDeal(BaseModel):
    id: int | str
    name: str = "Untitled Deal"
    stage: str = "Unknown"
    amount: float | None = None
    updated_at: datetime | None = None
    days_in_stage: int | None = None


class FreshsalesContact(BaseModel):
    id: str
    first_name: str = ""
    last_name: str = ""
    title: str = ""
    email: str | None = None
    tags: list[str] = Field(default_factory=list)


class FreshsalesIntel(BaseModel):
    """CRM context pulled from Freshsales for one account."""

    domain: str
    status: FreshsalesStatus = FreshsalesStatus.NONE
    account_id: int | str | None = None
    account_name: str | None = None
    contacts: list[FreshsalesContact] = Field(default_factory=list)
    deals: list[FreshsalesDeal] = Field(default_factory=list)


class IcpBreakdownItem(BaseModel):
    """Single auditable contribution to a fit score."""

    factor: str
    points: int
    matched: bool


class CanonicalCompany(BaseModel):
    """Provider-agnostic company representation keyed by normalized domain."""

    domain: str
    name: str
    industry: str = ""
    vertical: str = ""
    employee_count: int = 0
    location: str = ""
    region: str = ""
    description: str = ""
    website: str | None = None
    phone: str | None = None
    logo_url: str | None = None
    revenue: str | None = None
    founded: str | None = None
    relevance_score: float | None = Field(default=None, ge=0.0, le=1.0)
    sources: list[str] = Field(default_factory=list)
    signals: list[Signal] = Field(default_factory=list)
    contact_count: int = 0
    icp_score: int = 0
    icp_breakdown: list[IcpBreakdownItem] = Field(default_factory=list)
    hubspot_status: HubSpotStatus = HubSpotStatus.NONE
    freshsales_status: FreshsalesStatus = FreshsalesStatus.NONE
    freshsales_intel: FreshsalesIntel | None = None
    last_refreshed: datetime = Field(default_factory=_utcnow)
    exact_match: bool = False

    @field_validator("domain")
    @classmethod
    def _normalize_domain(cls, value: str) -> str:
        normalized = normalize_domain(value)
        if not normalized:
            raise ValueError("domain must not be empty.")
        return normalized

    @field_validator("icp_score")
    @classmethod
    def _clamp_score(cls, value: int) -> int:
        return max(0, min(100, int(value)))

    @field_validator("last_refreshed")
    @classmethod
    def _ensure_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @computed_field  # type: ignore[misc]
    @property
    def root_domain(self) -> str:
        return root_domain(self.domain)


class IcpWeights(BaseModel):
    """Per-factor point weights; negative values are penalties."""

    vertical_match: int = 30
    size_match: int = 20
    region_match: int = 10
    buying_signals: int = 20
    negative_signals: int = -30
    relevance: int = 10
    hubspot_lead: int = 15
    hubspot_customer: int = -50
    freshsales_lead: int = 10
    freshsales_customer: int = -40
    freshsales_tag_boost: int = 15
    freshsales_tag_penalty: int = -20
    freshsales_deal_stalled: int = -10


class TargetCriteria(BaseModel):
    """Targeting criteria a company is scored against."""

    verticals: list[str] = Field(default_factory=list)
    regions: list[str] = Field(default_factory=list)
    sizes: list[str] = Field(default_factory=list)
    signals: list[str] = Field(default_factory=list)


class IcpScoreResult(BaseModel):
    score: int = Field(ge=0, le=100)
    breakdown: list[IcpBreakdownItem]
