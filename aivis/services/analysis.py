"""
Analysis Pipeline Service

Drives a (domain, version) through the onboarding stages and runs the side
effects of each transition:

    submission -> extraction -> keyword_discovery -> phrase_generation
        -> ai_querying -> report

- Stage outputs (crawl result, keywords, phrases) are stored in the same
  transaction as the step that carries them
- Entering ai_querying runs the query batch; its summary is the
  ai_querying payload and moves the pipeline to report
- Reaching report computes the dashboard once and stamps the first-time
  analysis
"""

import logging
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from aivis.cache.manager import AnalysisCacheManager, DashboardArtifact
from aivis.collector.orchestrator import BatchResult, PhraseQuery, QueryOrchestrator
from aivis.collector.providers import default_models
from aivis.database import repository
from aivis.database.models import Domain, DomainVersion
from aivis.errors import AnalysisFailed, BatchTimeout, InvalidTransition
from aivis.pipeline.stages import (
    AIQueryingData, ExtractionData, KeywordDiscoveryData, PhraseGenerationData,
    ReportData, Stage, stage_of,
)
from aivis.pipeline.state_machine import PipelineState, PipelineStateMachine

logger = logging.getLogger(__name__)

# Payloads the engine produces itself; clients never submit them
ENGINE_STAGES = (Stage.AI_QUERYING, Stage.REPORT)


class AnalysisPipeline:
    """
    Usage:
        pipeline = AnalysisPipeline(db, orchestrator, cache_manager)
        state = await pipeline.advance(domain_id, version_id, ExtractionData(...))
    """

    def __init__(
        self,
        db: Session,
        orchestrator: QueryOrchestrator,
        cache: AnalysisCacheManager,
        models: Optional[List[str]] = None,
    ):
        self.db = db
        self.orchestrator = orchestrator
        self.cache = cache
        self.models = models if models is not None else default_models()
        self.machine = PipelineStateMachine(db)

    # -------------------------------------------------------------------------
    # Domains & versions
    # -------------------------------------------------------------------------

    def create_domain(
        self,
        url: str,
        context: Optional[str] = None,
        location: Optional[str] = None,
        industry: Optional[str] = None,
    ) -> DomainVersion:
        domain, version = repository.create_domain(self.db, url, context, location, industry)
        self.db.commit()
        return version

    def create_version(self, domain_id: int, name: Optional[str] = None) -> DomainVersion:
        """
        Start a re-analysis snapshot. Older versions keep their results and
        any batch still running for them writes under the old version id.
        """
        version = repository.create_domain_version(self.db, domain_id, name)
        self.db.commit()
        return version

    # -------------------------------------------------------------------------
    # Stage navigation
    # -------------------------------------------------------------------------

    def resume(self, domain_id: int, version_id: int) -> PipelineState:
        repository.get_version(self.db, domain_id, version_id)
        return self.machine.resume(domain_id, version_id)

    def rewind(self, domain_id: int, version_id: int) -> PipelineState:
        repository.get_version(self.db, domain_id, version_id)
        return self.machine.rewind(domain_id, version_id)

    async def advance(self, domain_id: int, version_id: int, payload: BaseModel) -> PipelineState:
        """
        Submit the payload of the current stage.

        Raises:
            InvalidTransition: completed pipeline, out-of-order payload, or an
                engine-produced payload (ai_querying, report)
        """
        domain = repository.get_domain(self.db, domain_id)
        version = repository.get_version(self.db, domain_id, version_id)
        stage = stage_of(payload)
        if stage in ENGINE_STAGES:
            raise InvalidTransition(f"The {stage.key} stage is produced by the engine")

        state = self.machine.resume(domain_id, version_id)
        if state.is_completed or stage != state.current_step:
            # Let the state machine raise with its own message
            return self.machine.advance(domain_id, version_id, payload)

        try:
            self._store_stage_output(domain, version, payload)
        except Exception:
            self.db.rollback()
            raise
        state = self.machine.advance(domain_id, version_id, payload)

        if state.current_step == Stage.AI_QUERYING:
            state = await self.run_queries(domain_id, version_id)
        return state

    def _store_stage_output(self, domain: Domain, version: DomainVersion, payload: BaseModel) -> None:
        if isinstance(payload, ExtractionData):
            repository.store_crawl_result(
                self.db, domain.id, version.id,
                extracted_context=payload.extracted_context,
                pages_scanned=payload.pages_scanned,
                token_usage=payload.token_usage,
                analyzed_urls=payload.analyzed_urls,
            )
        elif isinstance(payload, KeywordDiscoveryData):
            repository.store_keywords(
                self.db, domain.id, version.id, [kw.model_dump() for kw in payload.keywords]
            )
        elif isinstance(payload, PhraseGenerationData):
            repository.store_phrases(
                self.db, domain.id, version.id, [p.model_dump() for p in payload.phrases]
            )

    # -------------------------------------------------------------------------
    # Side effects
    # -------------------------------------------------------------------------

    async def run_queries(self, domain_id: int, version_id: int) -> PipelineState:
        """
        Run the query batch for a version sitting at ai_querying.

        Also the resume entry point after a failed or timed-out batch.

        Raises:
            InvalidTransition: not at ai_querying, or no selected phrases
            BatchTimeout: finished observations are stored before re-raising
            AnalysisFailed: every attempt failed; the pipeline stays put
        """
        async with self.cache.locks.hold(("queries", domain_id, version_id)):
            self.db.expire_all()
            return await self._run_queries(domain_id, version_id)

    async def _run_queries(self, domain_id: int, version_id: int) -> PipelineState:
        state = self.machine.resume(domain_id, version_id)
        if state.current_step != Stage.AI_QUERYING:
            raise InvalidTransition(f"Queries run at ai_querying, pipeline is at {state.current_step.key}")

        domain = repository.get_domain(self.db, domain_id)
        phrases = repository.get_phrases(self.db, version_id, selected_only=True)
        if not phrases:
            raise InvalidTransition(f"No selected phrases for version {version_id}")

        queries = [PhraseQuery(id=p.id, text=p.text, keyword_id=p.keyword_id) for p in phrases]
        try:
            result = await self.orchestrator.run_batch(version_id, queries, self.models, domain.url)
        except BatchTimeout as e:
            if e.completed:
                repository.store_query_results(self.db, version_id, e.batch_id or "timeout", e.completed)
                self.db.commit()
            raise

        repository.store_query_results(self.db, version_id, result.batch_id, result.observations)
        self.db.commit()

        if result.succeeded == 0:
            raise AnalysisFailed(
                f"All {result.total} queries failed for version {version_id}"
                + (f" (circuit open: {', '.join(result.circuit_open_models)})" if result.circuit_open_models else "")
            )

        self.machine.advance(domain_id, version_id, self._querying_payload(result))
        await self.complete(domain_id, version_id)
        return self.machine.resume(domain_id, version_id)

    @staticmethod
    def _querying_payload(result: BatchResult) -> AIQueryingData:
        return AIQueryingData(
            batch_id=result.batch_id,
            models=result.models,
            total_attempts=result.total,
            successful_attempts=result.succeeded,
            failed_attempts=result.failed,
            circuit_open_models=result.circuit_open_models,
            is_partial=result.is_partial,
        )

    async def complete(self, domain_id: int, version_id: int) -> DashboardArtifact:
        """Terminal transition: compute the dashboard and record the report."""
        artifact = await self.cache.compute_dashboard(domain_id, version_id)
        self.machine.record(domain_id, version_id, ReportData(
            dashboard_analysis_id=artifact.id,
            visibility_score=artifact.metrics["visibilityScore"],
            mention_rate=artifact.metrics["mentionRate"],
            is_partial=artifact.is_partial,
        ))
        if self.machine.mark_first_analysis(domain_id, version_id):
            logger.info(f"First-time analysis completed for domain {domain_id} version {version_id}")
        return artifact

    async def first_time_analysis(self, domain_id: int, version_id: int) -> DashboardArtifact:
        """
        Idempotent trigger for the terminal compute.

        Repeated calls return the cached artifact instead of recomputing.
        """
        state = self.resume(domain_id, version_id)
        if not state.is_completed:
            raise InvalidTransition(
                f"Domain {domain_id} version {version_id} is at {state.current_step.key}, not report"
            )
        if state.first_analysis_at is not None:
            return await self.cache.get_or_compute(domain_id, version_id)
        return await self.complete(domain_id, version_id)
