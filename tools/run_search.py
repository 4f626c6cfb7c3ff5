"""Run one search through the full pipeline and print the JSON response."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from collections.abc import Sequence

from scout.clients.errors import NoProviderAvailableError
from scout.config import settings
from scout.models.search import SearchFilters, SearchResponse
from scout.services.pipeline import SearchPipeline, build_pipeline

logger = logging.getLogger("tools.run_search")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Search for companies across the configured providers.")
    parser.add_argument("query", help="Company name or free-text discovery query.")
    parser.add_argument("--vertical", action="append", default=[], dest="verticals", help="Target vertical (repeatable).")
    parser.add_argument("--region", action="append", default=[], dest="regions", help="Target region (repeatable).")
    parser.add_argument(
        "--size",
        action="append",
        default=[],
        dest="sizes",
        choices=["1-50", "51-200", "201-1000", "1000+"],
        help="Employee-count bucket (repeatable).",
    )
    parser.add_argument("--signal", action="append", default=[], dest="signals", help="Buying signal (repeatable).")
    parser.add_argument("--engine", action="append", default=None, dest="engines", help="Force an engine (repeatable).")
    parser.add_argument("--num-results", type=int, default=None, help="Maximum companies to return.")
    parser.add_argument("--no-enrich", action="store_true", help="Skip Apollo/CRM enrichment.")
    parser.add_argument("--show-excluded", action="store_true", help="Keep companies on the exclusion list.")
    return parser.parse_args(argv)


def build_filters(args: argparse.Namespace) -> SearchFilters:
    return SearchFilters(
        verticals=args.verticals,
        regions=args.regions,
        sizes=args.sizes,
        signals=args.signals,
        engines=args.engines,
        num_results=args.num_results,
        enrich=not args.no_enrich,
        hide_excluded=not args.show_excluded,
    )


async def run(pipeline: SearchPipeline, query: str, filters: SearchFilters) -> SearchResponse:
    try:
        return await pipeline.search(query, filters)
    finally:
        await pipeline.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    args = parse_args(argv)
    try:
        response = asyncio.run(run(build_pipeline(settings), args.query, build_filters(args)))
    except NoProviderAvailableError as exc:
        logger.error("No search provider configured: %s", exc)
        return 2
    print(json.dumps(response.model_dump(mode="json"), indent=2))
    logger.info(
        "Search finished engine=%s companies=%s warnings=%s",
        response.engine,
        len(response.companies),
        len(response.warnings),
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
