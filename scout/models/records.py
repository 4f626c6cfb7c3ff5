"""SQLModel mappings for the provider call log, daily engine usage and exclusions."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import expression
from sqlmodel import Field, SQLModel

from scout.models.health import CallOutcome


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


JSON_BACKING_TYPE = sa.JSON().with_variant(JSONB(astext_type=sa.Text()), "postgresql")


class UtcNow(expression.FunctionElement):
    """Dialect-aware server default that pins timestamps to UTC."""

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(UtcNow)
def _utc_now_default(element, compiler, **kwargs) -> str:  # pragma: no cover - sql generator
    return "CURRENT_TIMESTAMP"


@compiles(UtcNow, "postgresql")
def _utc_now_default_postgres(element, compiler, **kwargs) -> str:  # pragma: no cover
    return "timezone('utc', now())"


class ApiCallRecord(SQLModel, table=True):
    """Row in the provider call log that feeds health aggregation."""

    __tablename__ = "api_call_log"
    __table_args__ = (sa.Index("ix_api_call_log_source_created", "source", "created_at"),)

    id: int | None = Field(default=None, sa_column=Column(Integer, primary_key=True, autoincrement=True))
    source: str = Field(sa_column=Column(String(length=64), nullable=False))
    endpoint: str = Field(sa_column=Column(String(length=255), nullable=False))
    status_code: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    success: bool = Field(sa_column=Column(Boolean, nullable=False))
    latency_ms: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    rate_limit_remaining: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    context: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON_BACKING_TYPE, nullable=False),
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )

    @classmethod
    def from_outcome(cls, outcome: CallOutcome) -> ApiCallRecord:
        return cls(**outcome.model_dump(mode="python"))

    def to_outcome(self) -> CallOutcome:
        created_at = self.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return CallOutcome(
            source=self.source,
            endpoint=self.endpoint,
            status_code=self.status_code,
            success=self.success,
            latency_ms=self.latency_ms,
            rate_limit_remaining=self.rate_limit_remaining,
            error_message=self.error_message,
            context=dict(self.context or {}),
            created_at=created_at,
        )


class EngineUsageRecord(SQLModel, table=True):
    """Outbound search count per engine per UTC day."""

    __tablename__ = "engine_usage"
    __table_args__ = (sa.UniqueConstraint("engine", "usage_date", name="uq_engine_usage_engine_date"),)

    id: int | None = Field(default=None, sa_column=Column(Integer, primary_key=True, autoincrement=True))
    engine: str = Field(sa_column=Column(String(length=64), nullable=False))
    usage_date: date = Field(sa_column=Column(Date, nullable=False))
    count: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=UtcNow(),
            onupdate=UtcNow(),
        ),
    )


class ExclusionRecord(SQLModel, table=True):
    """Domain or company name hidden from search results."""

    __tablename__ = "exclusions"
    __table_args__ = (sa.UniqueConstraint("value", name="uq_exclusions_value"),)

    id: int | None = Field(default=None, sa_column=Column(Integer, primary_key=True, autoincrement=True))
    value: str = Field(sa_column=Column(String(length=255), nullable=False))
    reason: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )
