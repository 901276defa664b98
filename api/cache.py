"""
Cache Management API

Endpoints for cache monitoring and explicit recomputation.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from aivis.cache.manager import AnalysisCacheManager

from api.dependencies import get_cache_manager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cache", tags=["Cache Management"])


@router.get("/stats")
async def cache_stats(cache: AnalysisCacheManager = Depends(get_cache_manager)) -> Dict[str, Any]:
    """Process-wide hit/miss/write counters."""
    return cache.get_stats()


@router.post("/{domain_id}/reanalyze")
async def reanalyze(domain_id: int, cache: AnalysisCacheManager = Depends(get_cache_manager)):
    """Recompute the dashboard of the newest queried version."""
    artifact = await cache.reanalyze(domain_id)
    logger.info(f"Reanalyzed domain {domain_id} (version {artifact.version_id})")
    return artifact.to_dict()
