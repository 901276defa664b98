"""
Dashboard API

Serves the cached per-domain artifacts:
- Dashboard analysis (metrics, insights, industry analysis) with the raw
  query results and phrases of the served version
- Competitor analysis (read cached / recompute from a competitor list)
- Suggested competitors
- First-time analysis trigger

Artifacts are computed at most once per domain concurrently; see
aivis.cache.manager.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from aivis.cache.config import CacheTTL
from aivis.cache.manager import AnalysisCacheManager
from aivis.database import repository
from aivis.database.models import AIQueryResult
from aivis.database.session import get_db
from aivis.services.analysis import AnalysisPipeline

from api.dependencies import get_cache_manager, get_pipeline

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CompetitorListRequest(BaseModel):
    """Competitor list to analyze."""
    competitors: List[str] = Field(default_factory=list, max_length=50)


class FirstTimeAnalysisRequest(BaseModel):
    versionId: int


# =============================================================================
# HELPERS
# =============================================================================

def query_result_to_dict(result: AIQueryResult, keyword: Optional[str], phrase_text: Optional[str]) -> Dict[str, Any]:
    """Flatten a query result with its keyword and phrase text."""
    return {
        "id": result.id,
        "phraseId": result.phrase_id,
        "keyword": keyword,
        "phraseText": phrase_text,
        "model": result.model,
        "response": result.response,
        "latency": result.latency,
        "cost": result.cost,
        "status": result.status,
        "errorType": result.error_type,
        "errorMessage": result.error_message,
        "attempts": result.attempts,
        "presence": result.presence,
        "relevance": result.relevance,
        "accuracy": result.accuracy,
        "sentiment": result.sentiment,
        "overall": result.overall,
        "createdAt": result.created_at.isoformat() if result.created_at else None,
    }


def version_details(db: Session, version_id: int) -> Dict[str, Any]:
    """Raw results, phrases and extraction info of a version."""
    keywords = {k.id: k.term for k in repository.get_keywords(db, version_id)}
    phrases = repository.get_phrases(db, version_id)
    phrase_rows = {p.id: p for p in phrases}

    results = []
    for r in repository.get_query_results(db, version_id):
        phrase = phrase_rows.get(r.phrase_id)
        results.append(query_result_to_dict(
            r,
            keywords.get(phrase.keyword_id) if phrase else None,
            phrase.text if phrase else None,
        ))

    crawl = repository.get_crawl_result(db, version_id)
    return {
        "aiQueryResults": results,
        "phrases": [
            {"id": p.id, "text": p.text, "keywordId": p.keyword_id, "isSelected": p.is_selected}
            for p in phrases
        ],
        "extraction": {"tokenUsage": crawl.token_usage or 0} if crawl else None,
    }


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/all")
async def list_dashboards(db: Session = Depends(get_db)):
    """
    List every domain with its cached dashboard metrics.

    Only stored artifacts are read; domains without one have
    `hasAnalysis: false` and `metrics: null`.
    """
    domains = []
    for summary in repository.list_domain_summaries(db):
        domain = summary["domain"]
        dashboard = summary["dashboard"]
        last_analyzed = summary["last_analyzed"]
        domains.append({
            "id": domain.id,
            "url": domain.url,
            "context": domain.context,
            "location": domain.location,
            "industry": domain.industry,
            "currentVersionId": domain.current_version_id,
            "createdAt": domain.created_at.isoformat() if domain.created_at else None,
            "updatedAt": domain.updated_at.isoformat() if domain.updated_at else None,
            "lastAnalyzed": last_analyzed.isoformat() if last_analyzed else None,
            "hasAnalysis": dashboard is not None,
            "isPartial": bool(dashboard.is_partial) if dashboard else False,
            "keywordCount": summary["keyword_count"],
            "crawlCount": summary["crawl_count"],
            "metrics": dashboard.metrics if dashboard else None,
        })
    return {"domains": domains}


@router.get("/{domain_id}")
async def get_dashboard(
    domain_id: int,
    response: Response,
    versionId: Optional[int] = Query(None, description="Serve a specific domain version"),
    db: Session = Depends(get_db),
    cache: AnalysisCacheManager = Depends(get_cache_manager),
):
    """
    Get the dashboard artifact for a domain.

    Computes it once when missing. `isStale` is set when a newer version
    exists or a recompute is in flight; `isPartial` when some queries failed.
    """
    artifact = await cache.get_or_compute(domain_id, versionId)
    domain = repository.get_domain(db, domain_id)

    response.headers["Cache-Control"] = CacheTTL.cache_control("dashboard")
    return {
        "id": domain.id,
        "url": domain.url,
        "context": domain.context,
        "industry": domain.industry,
        **artifact.to_dict(),
        **version_details(db, artifact.version_id),
    }


@router.get("/{domain_id}/competitors")
async def get_competitors(
    domain_id: int,
    response: Response,
    cache: AnalysisCacheManager = Depends(get_cache_manager),
):
    """Cached competitor analysis; 404 when none has been computed."""
    analysis = cache.get_competitor_analysis(domain_id)
    response.headers["Cache-Control"] = CacheTTL.cache_control("competitors")
    return analysis


@router.post("/{domain_id}/competitors")
async def update_competitors(
    domain_id: int,
    request: CompetitorListRequest,
    cache: AnalysisCacheManager = Depends(get_cache_manager),
):
    """Run a fresh competitor analysis for the list and replace the cached one."""
    return await cache.recompute(domain_id, request.competitors)


@router.get("/{domain_id}/suggested-competitors")
async def get_suggested_competitors(
    domain_id: int,
    response: Response,
    refresh: bool = Query(False, description="Regenerate the suggestions"),
    cache: AnalysisCacheManager = Depends(get_cache_manager),
):
    """Cached competitor suggestions, generated on first read."""
    suggestions = await cache.get_suggested_competitors(domain_id, refresh=refresh)
    response.headers["Cache-Control"] = CacheTTL.cache_control("suggested-competitors")
    return suggestions


@router.post("/{domain_id}/first-time-analysis")
async def first_time_analysis(
    domain_id: int,
    request: FirstTimeAnalysisRequest,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """Idempotent trigger for the terminal-stage dashboard compute."""
    artifact = await pipeline.first_time_analysis(domain_id, request.versionId)
    return artifact.to_dict()
