"""Persistence for per-engine daily usage counters."""

from __future__ import annotations

from datetime import date, datetime, timezone
from threading import Lock
from typing import Protocol

from sqlalchemy.engine import Engine
from sqlmodel import select

from scout.core.database import session_scope
from scout.models.records import EngineUsageRecord


class UsageStore(Protocol):
    def load(self, day: date) -> dict[str, int]:
        ...

    def save(self, engine: str, day: date, count: int) -> None:
        ...


class InMemoryUsageStore(UsageStore):
    def __init__(self, initial: dict[tuple[str, date], int] | None = None) -> None:
        self._counts: dict[tuple[str, date], int] = dict(initial or {})
        self._lock = Lock()

    def load(self, day: date) -> dict[str, int]:
        with self._lock:
            return {engine: count for (engine, stored_day), count in self._counts.items() if stored_day == day}

    def save(self, engine: str, day: date, count: int) -> None:
        with self._lock:
            self._counts[(engine, day)] = count


class SqlUsageStore(UsageStore):
    """SQLModel-backed store over the ``engine_usage`` table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def load(self, day: date) -> dict[str, int]:
        with session_scope(self._engine) as session:
            statement = select(EngineUsageRecord).where(EngineUsageRecord.usage_date == day)
            return {record.engine: record.count for record in session.exec(statement).all()}

    def save(self, engine: str, day: date, count: int) -> None:
        with session_scope(self._engine) as session:
            statement = select(EngineUsageRecord).where(
                EngineUsageRecord.engine == engine,
                EngineUsageRecord.usage_date == day,
            )
            existing = session.exec(statement).first()
            if existing:
                existing.count = max(existing.count, count)
                existing.updated_at = datetime.now(timezone.utc)
            else:
                session.add(EngineUsageRecord(engine=engine, usage_date=day, count=count))
            session.commit()
