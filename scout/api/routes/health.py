from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Query

from scout.config import settings
from scout.models.health import HealthSummary
from scout.models.search import UsageSummary
from scout.services.pipeline import SearchPipeline, get_pipeline

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/providers", response_model=HealthSummary)
async def provider_health(
    hours: float = Query(settings.health_report_window_hours, gt=0, le=168, description="Reporting window."),
    pipeline: SearchPipeline = Depends(get_pipeline),
) -> HealthSummary:
    """Per-provider error rate, latency and status over the window."""
    return pipeline.health.summary(timedelta(hours=hours))


@router.get("/usage", response_model=dict[str, UsageSummary])
async def provider_usage(pipeline: SearchPipeline = Depends(get_pipeline)) -> dict[str, UsageSummary]:
    """Today's outbound call counts against each provider's daily budget."""
    return pipeline.router.usage_summary()
