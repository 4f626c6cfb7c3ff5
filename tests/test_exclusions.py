from __future__ import annotations

import pytest

from scout.core.database import create_sync_engine
from scout.services.cache import CacheLayer, InMemoryCacheStore
from scout.services.exclusions import ExclusionFilter, InMemoryExclusionStore, SqlExclusionStore
from tests.helpers.search_stubs import make_company


class _BrokenStore:
    def list_values(self):
        raise ConnectionError("database unavailable")


@pytest.mark.asyncio
async def test_excluded_values_are_normalized_and_cached():
    store = InMemoryExclusionStore([" Acme.com ", "GLOBEX", ""])
    exclusions = ExclusionFilter(store, cache=CacheLayer(InMemoryCacheStore()))

    assert await exclusions.excluded_values() == {"acme.com", "globex"}

    store.add("initech.com")
    assert await exclusions.excluded_values() == {"acme.com", "globex"}

    await exclusions.invalidate()
    assert await exclusions.excluded_values() == {"acme.com", "globex", "initech.com"}


@pytest.mark.asyncio
async def test_store_failures_exclude_nothing():
    exclusions = ExclusionFilter(_BrokenStore(), cache=CacheLayer(InMemoryCacheStore()))

    assert await exclusions.excluded_values() == set()


def test_apply_matches_domain_or_name():
    companies = [
        make_company("acme.com"),
        make_company("globex.io", name="Globex"),
        make_company("initech.com"),
    ]

    kept = ExclusionFilter.apply(companies, {"acme.com", "globex"})

    assert [company.domain for company in kept] == ["initech.com"]
    assert ExclusionFilter.apply(companies, set()) == companies


def _sql_store(tmp_path) -> SqlExclusionStore:
    engine = create_sync_engine(f"sqlite:///{tmp_path / 'exclusions.db'}", auto_create_schema=True)
    return SqlExclusionStore(engine)


def test_sql_store_round_trip(tmp_path):
    store = _sql_store(tmp_path)

    assert store.add(" WWW-Acme.com ", reason="existing customer") is True
    assert store.add("www-acme.com") is False
    assert store.add("Globex") is True
    assert sorted(store.list_values()) == ["globex", "www-acme.com"]

    assert store.remove("GLOBEX") is True
    assert store.remove("globex") is False
    assert store.list_values() == ["www-acme.com"]

    with pytest.raises(ValueError):
        store.add("   ")


@pytest.mark.asyncio
async def test_filter_add_and_remove_refresh_the_cached_list(tmp_path):
    exclusions = ExclusionFilter(_sql_store(tmp_path), cache=CacheLayer(InMemoryCacheStore()))
    assert await exclusions.excluded_values() == set()

    assert await exclusions.add("Acme.com") is True
    assert await exclusions.excluded_values() == {"acme.com"}

    assert await exclusions.remove("acme.com") is True
    assert await exclusions.excluded_values() == set()

    with pytest.raises(ValueError):
        await exclusions.add(" ")
