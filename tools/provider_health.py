"""Print per-provider health and today's usage as JSON."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from collections.abc import Sequence
from datetime import timedelta

from scout.config import settings
from scout.services.pipeline import build_pipeline

logger = logging.getLogger("tools.provider_health")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Summarize provider health from the call log.")
    parser.add_argument(
        "--hours",
        type=_positive_hours,
        default=settings.health_report_window_hours,
        help=f"Reporting window in hours (default {settings.health_report_window_hours}).",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    args = parse_args(argv)
    pipeline = build_pipeline(settings)
    try:
        summary = pipeline.health.summary(timedelta(hours=args.hours))
        report = {
            "health": summary.model_dump(mode="json"),
            "usage": {engine: usage.model_dump() for engine, usage in pipeline.router.usage_summary().items()},
        }
    finally:
        asyncio.run(pipeline.aclose())
    print(json.dumps(report, indent=2))
    if not settings.database_url:
        logger.warning("DATABASE_URL not set; call log is in-memory and empty for a fresh process.")
    return 0


def _positive_hours(value: str) -> float:
    try:
        hours = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("hours must be a number") from exc
    if hours <= 0:
        raise argparse.ArgumentTypeError("hours must be positive")
    return hours


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
