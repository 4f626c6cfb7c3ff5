"""TTL cache shared by every provider adapter."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Protocol

import diskcache

from scout.core.domains import normalize_domain
from scout.observability.metrics import metrics

logger = logging.getLogger(__name__)

# Minutes. Stale CRM status is a correctness problem, so CRM entries stay short.
CACHE_TTLS: dict[str, int] = {
    "exa_search": 360,
    "parallel_search": 360,
    "serper_search": 360,
    "apollo_person": 1440,
    "apollo_contacts": 120,
    "company": 120,
    "hubspot": 60,
    "freshsales": 30,
    "email_verification": 30 * 24 * 60,
    "signals": 60,
    "signal_extraction": 360,
    "exclusions": 5,
}


def cache_ttl(name: str, overrides: Mapping[str, int] | None = None) -> int:
    """Return the TTL (minutes) for a data class, honouring configured overrides."""
    if overrides and name in overrides:
        return int(overrides[name])
    return CACHE_TTLS[name]


def hash_filters(filters: Mapping[str, Any]) -> str:
    """Stable short hash of a parameter mapping, independent of key order."""
    serialized = json.dumps(filters, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()[:16]


class CacheKeys:
    """Namespaced key builders; namespaces never collide."""

    @staticmethod
    def search(engine: str, params_hash: str) -> str:
        return f"search:{engine}:{params_hash}"

    @staticmethod
    def company(domain: str) -> str:
        return f"company:{normalize_domain(domain)}"

    @staticmethod
    def contacts(domain: str) -> str:
        return f"contacts:{normalize_domain(domain)}"

    @staticmethod
    def signals(domain: str) -> str:
        return f"signals:{normalize_domain(domain)}"

    @staticmethod
    def email(address: str) -> str:
        return f"email:{address.strip().lower()}"

    @staticmethod
    def hubspot(domain: str) -> str:
        return f"hubspot:{normalize_domain(domain)}"

    @staticmethod
    def freshsales(domain: str) -> str:
        return f"freshsales:{normalize_domain(domain)}"

    EXCLUSIONS = "exclusions:all"


class CacheStore(Protocol):
    """Key-value store with whole-minute TTLs."""

    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any, ttl_minutes: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def clear(self) -> None:
        ...

    def close(self) -> None:
        ...


DEFAULT_CACHE_DIR = Path("data/cache")
DEFAULT_CACHE_SIZE_LIMIT = 1024 * 1024 * 1024  # 1 GB


class DiskCacheStore:
    """Persistent store on ``diskcache`` (SQLite-backed); entries survive restarts.

    Expiry is delegated to diskcache (``expire`` in seconds). When the size
    limit is reached diskcache evicts the least-recently-stored entries.
    """

    def __init__(
        self,
        directory: str | Path = DEFAULT_CACHE_DIR,
        *,
        size_limit: int = DEFAULT_CACHE_SIZE_LIMIT,
        timeout: float = 30.0,
    ) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._cache = diskcache.Cache(str(self.directory), timeout=timeout, size_limit=size_limit)

    def __len__(self) -> int:
        return len(self._cache)

    @property
    def size_limit(self) -> int:
        return self._cache.size_limit

    async def get(self, key: str) -> Any | None:
        raw = await asyncio.to_thread(self._cache.get, key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_minutes: int) -> None:
        if ttl_minutes <= 0:
            raise ValueError("ttl_minutes must be a positive integer.")
        raw = json.dumps(value, default=str)
        await asyncio.to_thread(self._cache.set, key, raw, expire=ttl_minutes * 60)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._cache.delete, key)

    async def clear(self) -> None:
        await asyncio.to_thread(self._cache.clear)

    def close(self) -> None:
        self._cache.close()


@dataclass(frozen=True)
class _CacheEntry:
    expires_at: float
    value: str


class InMemoryCacheStore:
    """Process-local store for tests and one-off runs; expired entries are purged lazily on read."""

    def __init__(
        self,
        *,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries: dict[str, _CacheEntry] = {}
        self._max_entries = max_entries
        self._clock = clock
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def get(self, key: str) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if now > entry.expires_at:
                del self._entries[key]
                return None
            raw = entry.value
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_minutes: int) -> None:
        if ttl_minutes <= 0:
            raise ValueError("ttl_minutes must be a positive integer.")
        # Stored serialized so callers can never mutate a cached value in place.
        raw = json.dumps(value, default=str)
        expires_at = self._clock() + ttl_minutes * 60
        with self._lock:
            self._entries[key] = _CacheEntry(expires_at=expires_at, value=raw)
            if self._max_entries is not None and len(self._entries) > self._max_entries:
                self._evict_locked()

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def close(self) -> None:
        return None

    def _evict_locked(self) -> None:
        now = self._clock()
        for key in [key for key, entry in self._entries.items() if now > entry.expires_at]:
            del self._entries[key]
        overflow = len(self._entries) - (self._max_entries or 0)
        if overflow <= 0:
            return
        oldest = sorted(self._entries.items(), key=lambda item: item[1].expires_at)[:overflow]
        for key, _ in oldest:
            del self._entries[key]


class CacheLayer:
    """Best-effort wrapper: read failures are misses, write failures are logged."""

    def __init__(self, store: CacheStore) -> None:
        self._store = store
        self._hits = 0
        self._misses = 0

    @property
    def stats(self) -> dict[str, int]:
        return {"hits": self._hits, "misses": self._misses}

    async def get(self, key: str) -> Any | None:
        namespace = key.split(":", 1)[0]
        try:
            value = await self._store.get(key)
        except Exception as exc:
            logger.warning("cache.read_failed", extra={"key": key, "error": type(exc).__name__})
            metrics.increment("cache.read_failed", tags={"namespace": namespace})
            value = None
        if value is None:
            self._misses += 1
            metrics.increment("cache.miss", tags={"namespace": namespace})
            return None
        self._hits += 1
        metrics.increment("cache.hit", tags={"namespace": namespace})
        return value

    async def set(self, key: str, value: Any, ttl_minutes: int) -> bool:
        try:
            await self._store.set(key, value, ttl_minutes)
        except Exception as exc:
            logger.warning("cache.write_failed", extra={"key": key, "error": type(exc).__name__})
            metrics.increment("cache.write_failed", tags={"namespace": key.split(":", 1)[0]})
            return False
        return True

    async def delete(self, key: str) -> None:
        try:
            await self._store.delete(key)
        except Exception as exc:
            logger.warning("cache.delete_failed", extra={"key": key, "error": type(exc).__name__})

    async def clear(self) -> None:
        await self._store.clear()

    def close(self) -> None:
        try:
            self._store.close()
        except Exception as exc:
            logger.warning("cache.close_failed", extra={"error": type(exc).__name__})

    async def get_or_set(
        self,
        key: str,
        ttl_minutes: int,
        factory: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Read-through: return the cached value or compute, store and return it."""
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await factory()
        if value is not None:
            await self.set(key, value, ttl_minutes)
        return value
