from __future__ import annotations

import argparse

import pytest

from scout.models.search import SearchFilters, SearchResponse
from tools import provider_health, run_search


class _ClosingPipeline:
    def __init__(self) -> None:
        self.closed = False
        self.seen: tuple[str, SearchFilters] | None = None

    async def search(self, query, filters):
        self.seen = (query, filters)
        return SearchResponse(engine="parallel")

    async def aclose(self):
        self.closed = True


def test_cli_flags_become_filters():
    args = run_search.parse_args(
        [
            "food manufacturers",
            "--vertical",
            "Food",
            "--vertical",
            "Beverages",
            "--region",
            "EU",
            "--size",
            "51-200",
            "--engine",
            "exa",
            "--num-results",
            "10",
            "--no-enrich",
            "--show-excluded",
        ]
    )

    filters = run_search.build_filters(args)

    assert args.query == "food manufacturers"
    assert filters.verticals == ["Food", "Beverages"]
    assert filters.regions == ["EU"]
    assert filters.sizes == ["51-200"]
    assert filters.engines == ["exa"]
    assert filters.num_results == 10
    assert filters.enrich is False
    assert filters.hide_excluded is False


def test_cli_defaults_route_automatically():
    filters = run_search.build_filters(run_search.parse_args(["BASF"]))

    assert filters.engines is None
    assert filters.enrich is True
    assert filters.hide_excluded is True


def test_cli_rejects_unknown_size_bucket():
    with pytest.raises(SystemExit):
        run_search.parse_args(["BASF", "--size", "huge"])


@pytest.mark.asyncio
async def test_run_closes_pipeline():
    pipeline = _ClosingPipeline()

    response = await run_search.run(pipeline, "BASF", SearchFilters())

    assert response.engine == "parallel"
    assert pipeline.seen[0] == "BASF"
    assert pipeline.closed is True


def test_positive_hours():
    assert provider_health._positive_hours("1.5") == 1.5
    with pytest.raises(argparse.ArgumentTypeError):
        provider_health._positive_hours("0")
    with pytest.raises(argparse.ArgumentTypeError):
        provider_health._positive_hours("soon")
