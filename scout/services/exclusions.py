"""Exclusion list: domains and names a user never wants to see in results."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from threading import Lock
from typing import Protocol

from sqlalchemy.engine import Engine
from sqlmodel import select

from scout.core.database import session_scope
from scout.models.company import CanonicalCompany
from scout.models.records import ExclusionRecord
from scout.services.cache import CacheKeys, CacheLayer, cache_ttl

logger = logging.getLogger(__name__)


def normalize_exclusion(value: str | None) -> str:
    return (value or "").strip().lower()


class ExclusionStore(Protocol):
    def list_values(self) -> list[str]:
        ...

    def add(self, value: str, reason: str | None = None) -> bool:
        ...

    def remove(self, value: str) -> bool:
        ...


class InMemoryExclusionStore(ExclusionStore):
    def __init__(self, values: Iterable[str] = ()) -> None:
        self._values: list[str] = list(values)
        self._lock = Lock()

    def add(self, value: str, reason: str | None = None) -> bool:
        with self._lock:
            if value in self._values:
                return False
            self._values.append(value)
            return True

    def remove(self, value: str) -> bool:
        with self._lock:
            if value not in self._values:
                return False
            self._values.remove(value)
            return True

    def list_values(self) -> list[str]:
        with self._lock:
            return list(self._values)


class SqlExclusionStore(ExclusionStore):
    """SQLModel-backed store over the ``exclusions`` table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def list_values(self) -> list[str]:
        with session_scope(self._engine) as session:
            return [record.value for record in session.exec(select(ExclusionRecord)).all()]

    def add(self, value: str, reason: str | None = None) -> bool:
        value = normalize_exclusion(value)
        if not value:
            raise ValueError("Exclusion value must not be blank.")
        with session_scope(self._engine) as session:
            existing = session.exec(select(ExclusionRecord).where(ExclusionRecord.value == value)).first()
            if existing:
                return False
            session.add(ExclusionRecord(value=value, reason=reason))
            session.commit()
            return True

    def remove(self, value: str) -> bool:
        value = normalize_exclusion(value)
        with session_scope(self._engine) as session:
            existing = session.exec(select(ExclusionRecord).where(ExclusionRecord.value == value)).first()
            if not existing:
                return False
            session.delete(existing)
            session.commit()
            return True


class ExclusionFilter:
    """Drops companies whose domain or name appears on the exclusion list."""

    def __init__(
        self,
        store: ExclusionStore,
        *,
        cache: CacheLayer,
        ttl_overrides: dict[str, int] | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._ttl = cache_ttl("exclusions", ttl_overrides)

    async def excluded_values(self) -> set[str]:
        cached = await self._cache.get(CacheKeys.EXCLUSIONS)
        if cached is not None:
            return set(cached)
        try:
            values = sorted({normalize_exclusion(str(value)) for value in self._store.list_values() if value})
        except Exception as exc:
            logger.warning("exclusions.load_failed", extra={"error": type(exc).__name__})
            return set()
        values = [value for value in values if value]
        await self._cache.set(CacheKeys.EXCLUSIONS, values, self._ttl)
        return set(values)

    async def add(self, value: str, reason: str | None = None) -> bool:
        """Persist ``value`` and drop the cached list; False when already present."""
        normalized = normalize_exclusion(value)
        if not normalized:
            raise ValueError("Exclusion value must not be blank.")
        added = self._store.add(normalized, reason)
        await self.invalidate()
        logger.info("exclusions.added", extra={"value": normalized, "created": added})
        return added

    async def remove(self, value: str) -> bool:
        removed = self._store.remove(normalize_exclusion(value))
        await self.invalidate()
        return removed

    async def invalidate(self) -> None:
        await self._cache.delete(CacheKeys.EXCLUSIONS)

    @staticmethod
    def apply(companies: Sequence[CanonicalCompany], excluded: set[str]) -> list[CanonicalCompany]:
        if not excluded:
            return list(companies)
        return [
            company
            for company in companies
            if company.domain.lower() not in excluded and company.name.lower() not in excluded
        ]
