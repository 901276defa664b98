"""
FastAPI dependency providers.

Sessions are per request. The provider registry, the scorer and the
competitor analyzer are process-wide and built lazily from settings.
"""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from aivis.cache.manager import AnalysisCacheManager
from aivis.collector.orchestrator import OrchestratorConfig, QueryOrchestrator
from aivis.collector.providers import build_registry, default_models
from aivis.collector.scoring import LLMResponseScorer
from aivis.competitors.analyzer import CompetitorAnalyzer, LLMCompetitorAnalyzer
from aivis.database.session import get_db
from aivis.services.analysis import AnalysisPipeline
from aivis.utils.claude import ClaudeClient
from aivis.utils.config import get_settings

logger = logging.getLogger(__name__)


def _claude(model: str) -> Optional[ClaudeClient]:
    settings = get_settings()
    if not settings.ANTHROPIC_API_KEY:
        logger.warning(f"ANTHROPIC_API_KEY not set, {model} unavailable")
        return None
    return ClaudeClient(settings.ANTHROPIC_API_KEY, model=model, timeout=settings.QUERY_TIMEOUT)


@lru_cache
def get_orchestrator() -> QueryOrchestrator:
    settings = get_settings()
    return QueryOrchestrator(
        build_registry(settings),
        LLMResponseScorer(_claude(settings.SCORING_MODEL)),
        OrchestratorConfig.from_settings(settings),
    )


@lru_cache
def get_competitor_analyzer() -> Optional[CompetitorAnalyzer]:
    client = _claude(get_settings().COMPETITOR_MODEL)
    return LLMCompetitorAnalyzer(client) if client else None


def get_cache_manager(
    db: Session = Depends(get_db),
    analyzer: Optional[CompetitorAnalyzer] = Depends(get_competitor_analyzer),
) -> AnalysisCacheManager:
    return AnalysisCacheManager(db, analyzer)


def get_pipeline(
    db: Session = Depends(get_db),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
    cache: AnalysisCacheManager = Depends(get_cache_manager),
) -> AnalysisPipeline:
    return AnalysisPipeline(db, orchestrator, cache, default_models())
