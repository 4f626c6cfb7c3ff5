"""API endpoints for company search, fit scoring and dedupe."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from scout.clients.errors import NoProviderAvailableError, ProviderError
from scout.models.company import CanonicalCompany, IcpScoreResult, IcpWeights, TargetCriteria
from scout.models.search import SearchFilters, SearchResponse
from scout.services.dedup import MERGE_RECENCY_WEIGHT, dedupe
from scout.services.exclusions import ExclusionFilter, normalize_exclusion
from scout.services.pipeline import SearchPipeline, get_pipeline
from scout.services.scoring import score

router = APIRouter()
logger = logging.getLogger(__name__)


class SearchRequest(BaseModel):
    query: str = Field(default="", description="Company name or free-text discovery query.")
    filters: SearchFilters = Field(default_factory=SearchFilters)


class ScoreRequest(BaseModel):
    company: CanonicalCompany
    weights: IcpWeights | None = None
    criteria: TargetCriteria | None = None


class DedupeRequest(BaseModel):
    companies: list[CanonicalCompany]
    newest_weight: float = Field(default=MERGE_RECENCY_WEIGHT, gt=0)


class ExclusionRequest(BaseModel):
    value: str = Field(min_length=1, max_length=255, description="Domain or company name to hide.")
    reason: str | None = None


@router.post("/search", response_model=SearchResponse)
async def search_companies(
    payload: SearchRequest,
    pipeline: SearchPipeline = Depends(get_pipeline),
) -> SearchResponse:
    """Run the full discovery pipeline for one query."""
    try:
        return await pipeline.search(payload.query, payload.filters)
    except ProviderError as exc:
        logger.error("search.api_error", extra={"query": payload.query[:60], "code": exc.code})
        raise HTTPException(status_code=_map_error_code(exc), detail=str(exc)) from exc


@router.post("/score", response_model=IcpScoreResult)
async def score_company(payload: ScoreRequest) -> IcpScoreResult:
    """Score a single company against the supplied criteria."""
    return score(payload.company, payload.weights, payload.criteria)


@router.post("/dedupe", response_model=list[CanonicalCompany])
async def dedupe_companies(payload: DedupeRequest) -> list[CanonicalCompany]:
    return dedupe(payload.companies, newest_weight=payload.newest_weight)


@router.get("/exclusions", response_model=list[str])
async def list_exclusions(pipeline: SearchPipeline = Depends(get_pipeline)) -> list[str]:
    return sorted(await _exclusion_filter(pipeline).excluded_values())


@router.post("/exclusions", status_code=status.HTTP_201_CREATED)
async def add_exclusion(
    payload: ExclusionRequest,
    pipeline: SearchPipeline = Depends(get_pipeline),
) -> dict[str, object]:
    """Hide a domain or company name from future search results."""
    try:
        created = await _exclusion_filter(pipeline).add(payload.value, payload.reason)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return {"value": normalize_exclusion(payload.value), "created": created}


@router.delete("/exclusions/{value}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def remove_exclusion(value: str, pipeline: SearchPipeline = Depends(get_pipeline)) -> Response:
    if not await _exclusion_filter(pipeline).remove(value):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exclusion not found.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _exclusion_filter(pipeline: SearchPipeline) -> ExclusionFilter:
    if pipeline.exclusions is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Exclusions are not configured.")
    return pipeline.exclusions


def _map_error_code(exc: ProviderError) -> int:
    if isinstance(exc, NoProviderAvailableError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if exc.code == "RATE_LIMITED":
        return status.HTTP_429_TOO_MANY_REQUESTS
    if exc.code == "TIMEOUT":
        return status.HTTP_504_GATEWAY_TIMEOUT
    return status.HTTP_502_BAD_GATEWAY
