"""
Onboarding Pipeline API

Resume, advance and rewind the per-(domain, version) analysis pipeline.
Advancing out of phrase generation runs the AI query batch and, when it
produces results, completes the pipeline with the dashboard compute.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Response
from pydantic import ValidationError

from aivis.cache.config import CacheTTL
from aivis.errors import InvalidPayload
from aivis.pipeline.stages import parse_payload
from aivis.services.analysis import AnalysisPipeline

from api.dependencies import get_pipeline

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/onboarding", tags=["Onboarding"])


@router.get("/{domain_id}/{version_id}")
async def resume(
    domain_id: int,
    version_id: int,
    response: Response,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """Persisted step and stage data; a fresh pipeline starts at submission."""
    response.headers["Cache-Control"] = CacheTTL.cache_control("onboarding")
    return pipeline.resume(domain_id, version_id).to_dict()


@router.post("/{domain_id}/{version_id}/advance")
async def advance(
    domain_id: int,
    version_id: int,
    payload: Dict[str, Any] = Body(..., examples=[{"stage": "submission", "url": "example.com"}]),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """Submit the current stage's payload, tagged by its `stage` field."""
    try:
        data = parse_payload(payload)
    except ValidationError as e:
        raise InvalidPayload(f"Invalid stage payload: {e.errors()[0]['msg']}") from e
    state = await pipeline.advance(domain_id, version_id, data)
    return state.to_dict()


@router.post("/{domain_id}/{version_id}/rewind")
async def rewind(
    domain_id: int,
    version_id: int,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """Step back one stage. No-op at submission."""
    return pipeline.rewind(domain_id, version_id).to_dict()


@router.post("/{domain_id}/{version_id}/run-queries")
async def run_queries(
    domain_id: int,
    version_id: int,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """Re-run the query batch of a pipeline left at ai_querying."""
    state = await pipeline.run_queries(domain_id, version_id)
    return state.to_dict()
