"""
Analysis Cache Manager

Owns the compute-or-serve decision for per-domain artifacts:
- dashboard analysis (metrics, insights, industry analysis)
- competitor analysis (keyed on the submitted competitor list)
- suggested competitors

Rows are unique per domain and upserted in place. At most one computation
per domain is in flight: compute-and-persist sections run under a keyed
asyncio lock, and waiters re-read after acquiring it so they pick up the
winner's row instead of computing again. A unique-constraint race (another
process) is turned into a re-read.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aivis.competitors.analyzer import CompetitorAnalyzer
from aivis.database.models import (
    CompetitorAnalysis, DashboardAnalysis, Domain, DomainVersion, SuggestedCompetitor,
)
from aivis.database import repository
from aivis.errors import AnalysisFailed, CacheMiss, ConcurrencyConflict
from aivis.scoring.insights import build_industry_analysis, build_insights
from aivis.scoring.metrics import aggregate_metrics, is_success
from aivis.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

# Shared by every manager in the process
domain_locks = KeyedLock()
cache_stats: Dict[str, int] = {
    "hits": 0,
    "misses": 0,
    "writes": 0,
    "skipped_writes": 0,
}


# =============================================================================
# ARTIFACTS
# =============================================================================

@dataclass
class DashboardArtifact:
    domain_id: int
    version_id: int
    metrics: Dict[str, Any]
    insights: Dict[str, Any]
    industry_analysis: Dict[str, Any]
    is_partial: bool = False
    is_stale: bool = False
    persisted: bool = True
    updated_at: Optional[datetime] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "domainId": self.domain_id,
            "versionId": self.version_id,
            "metrics": self.metrics,
            "insights": self.insights,
            "industryAnalysis": self.industry_analysis,
            "isPartial": self.is_partial,
            "isStale": self.is_stale,
            "persisted": self.persisted,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


def competitor_list_array(competitor_list: str) -> List[str]:
    """Split the stored flat list, dropping bullets and blanks."""
    items = []
    for line in (competitor_list or "").split("\n"):
        line = line.strip()
        if line.startswith("- "):
            line = line[2:].strip()
        if line:
            items.append(line)
    return items


def normalize_competitors(competitors: List[str]) -> List[str]:
    """Strip, drop blanks and duplicates, keep submission order."""
    seen = set()
    result = []
    for name in competitors:
        name = (name or "").strip()
        if name and name.lower() not in seen:
            seen.add(name.lower())
            result.append(name)
    return result


def list_fingerprint(competitors: List[str]) -> str:
    return hashlib.sha256("\n".join(competitors).encode("utf-8")).hexdigest()


def competitor_to_dict(row: CompetitorAnalysis) -> Dict[str, Any]:
    return {
        "id": row.id,
        "domainId": row.domain_id,
        "competitors": row.competitors,
        "marketInsights": row.market_insights,
        "strategicRecommendations": row.strategic_recommendations,
        "competitiveAnalysis": row.competitive_analysis,
        "competitorList": row.competitor_list,
        "competitorListArr": competitor_list_array(row.competitor_list),
        "revision": row.revision,
        "tokenUsage": row.token_usage or 0,
        "createdAt": row.created_at.isoformat() if row.created_at else None,
        "updatedAt": row.updated_at.isoformat() if row.updated_at else None,
    }


def suggestion_to_dict(row: SuggestedCompetitor) -> Dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "domain": row.competitor_domain,
        "reason": row.reason,
        "type": row.type,
    }


# =============================================================================
# MANAGER
# =============================================================================

class AnalysisCacheManager:
    """
    Per-request facade over the cached artifact tables.

    The session is the request's; the lock registry and stats are process-wide.
    """

    def __init__(
        self,
        db: Session,
        analyzer: Optional[CompetitorAnalyzer] = None,
        locks: Optional[KeyedLock] = None,
        stats: Optional[Dict[str, int]] = None,
    ):
        self.db = db
        self.analyzer = analyzer
        self.locks = locks if locks is not None else domain_locks
        self._stats = stats if stats is not None else cache_stats

    # -------------------------------------------------------------------------
    # Dashboard
    # -------------------------------------------------------------------------

    async def get_or_compute(self, domain_id: int, version_id: Optional[int] = None) -> DashboardArtifact:
        """
        Serve the cached dashboard, computing it once if missing.

        A version other than the cached one is computed on the fly and not
        persisted, so it can never replace the current artifact.

        Raises:
            DomainNotFound: unknown domain or version
            CacheMiss: nothing has been queried for the domain yet
            AnalysisFailed: every query attempt of the version failed
        """
        domain = repository.get_domain(self.db, domain_id)
        row = self._get_dashboard_row(domain_id)
        target: Optional[DomainVersion] = None

        if version_id is not None:
            target = repository.get_version(self.db, domain_id, version_id)
            if row is not None and row.domain_version_id == target.id:
                self._stats["hits"] += 1
                return self._dashboard_artifact(row, domain)
            if row is not None or target.id != domain.current_version_id:
                self._stats["misses"] += 1
                logger.info(f"Computing non-cached version {target.id} for domain {domain_id}")
                return self._build_dashboard(domain, target, persisted=False)
        elif row is not None:
            self._stats["hits"] += 1
            return self._dashboard_artifact(row, domain)

        self._stats["misses"] += 1
        async with self.locks.hold(("dashboard", domain_id)):
            self.db.expire_all()
            row = self._get_dashboard_row(domain_id)
            if row is not None and (target is None or row.domain_version_id == target.id):
                return self._dashboard_artifact(row, domain, in_flight=False)

            if target is None:
                target = repository.get_latest_queried_version(self.db, domain_id)
            if target is None:
                raise CacheMiss(f"No analysis computed for domain {domain_id}")
            return self._compute_and_store(domain, target)

    async def compute_dashboard(self, domain_id: int, version_id: int) -> DashboardArtifact:
        """
        Compute and upsert the dashboard for a version.

        Never replaces a row computed from a newer version; in that case
        the freshly computed artifact is returned with persisted=False.
        """
        domain = repository.get_domain(self.db, domain_id)
        async with self.locks.hold(("dashboard", domain_id)):
            self.db.expire_all()
            version = repository.get_version(self.db, domain_id, version_id)
            return self._compute_and_store(domain, version)

    async def reanalyze(self, domain_id: int) -> DashboardArtifact:
        """Explicitly recompute the dashboard of the newest queried version."""
        version = repository.get_latest_queried_version(self.db, domain_id)
        if version is None:
            repository.get_domain(self.db, domain_id)
            raise CacheMiss(f"No query results for domain {domain_id}")
        return await self.compute_dashboard(domain_id, version.id)

    def _compute_and_store(self, domain: Domain, version: DomainVersion) -> DashboardArtifact:
        artifact = self._build_dashboard(domain, version, persisted=True)
        try:
            row = self._upsert_dashboard(artifact, version)
        except ConcurrencyConflict:
            row = self._get_dashboard_row(domain.id)
            if row is None:
                raise
            logger.info(f"Dashboard for domain {domain.id} written concurrently, serving stored row")
        if row is None:
            artifact.persisted = False
            return artifact
        return self._dashboard_artifact(row, domain, in_flight=False)

    def _build_dashboard(self, domain: Domain, version: DomainVersion, persisted: bool) -> DashboardArtifact:
        results = repository.get_query_results(self.db, version.id)
        if not results:
            raise CacheMiss(f"No query results for domain {domain.id} version {version.id}")
        if not any(is_success(r) for r in results):
            raise AnalysisFailed(
                f"All {len(results)} query attempts failed for domain {domain.id} version {version.id}"
            )

        keywords = repository.get_keywords(self.db, version.id)
        phrases = repository.get_phrases(self.db, version.id)
        history = repository.get_domain_history(self.db, domain.id, up_to_version=version.version)
        crawl = repository.get_crawl_result(self.db, version.id)

        metrics = aggregate_metrics(results, keywords, phrases, history=history)
        return DashboardArtifact(
            domain_id=domain.id,
            version_id=version.id,
            metrics=metrics.to_dict(),
            insights=build_insights(metrics, crawl.pages_scanned if crawl else None),
            industry_analysis=build_industry_analysis(metrics, domain.industry),
            is_partial=metrics.coverage.isPartial,
            is_stale=version.id != domain.current_version_id,
            persisted=persisted,
        )

    def _upsert_dashboard(self, artifact: DashboardArtifact, version: DomainVersion) -> Optional[DashboardAnalysis]:
        """Returns the stored row, or None when a newer version owns the row."""
        row = self._get_dashboard_row(artifact.domain_id, for_update=True)
        if row is not None:
            owner = self.db.get(DomainVersion, row.domain_version_id)
            if owner is not None and owner.version > version.version:
                self.db.rollback()
                self._stats["skipped_writes"] += 1
                logger.info(
                    f"Not replacing dashboard of domain {artifact.domain_id}: "
                    f"stored version {owner.version} is newer than {version.version}"
                )
                return None
            row.domain_version_id = version.id
            row.metrics = artifact.metrics
            row.insights = artifact.insights
            row.industry_analysis = artifact.industry_analysis
            row.is_partial = artifact.is_partial
            row.updated_at = datetime.utcnow()
        else:
            row = DashboardAnalysis(
                domain_id=artifact.domain_id,
                domain_version_id=version.id,
                metrics=artifact.metrics,
                insights=artifact.insights,
                industry_analysis=artifact.industry_analysis,
                is_partial=artifact.is_partial,
            )
            self.db.add(row)

        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConcurrencyConflict(f"Dashboard for domain {artifact.domain_id} written concurrently") from e

        self._stats["writes"] += 1
        logger.info(f"Stored dashboard for domain {artifact.domain_id} (version {version.version})")
        return row

    def _get_dashboard_row(self, domain_id: int, for_update: bool = False) -> Optional[DashboardAnalysis]:
        query = self.db.query(DashboardAnalysis).filter(DashboardAnalysis.domain_id == domain_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def _dashboard_artifact(
        self,
        row: DashboardAnalysis,
        domain: Domain,
        in_flight: Optional[bool] = None,
    ) -> DashboardArtifact:
        if in_flight is None:
            in_flight = self.locks.is_busy(("dashboard", domain.id))
        return DashboardArtifact(
            id=row.id,
            domain_id=row.domain_id,
            version_id=row.domain_version_id,
            metrics=row.metrics,
            insights=row.insights,
            industry_analysis=row.industry_analysis,
            is_partial=bool(row.is_partial),
            is_stale=row.domain_version_id != domain.current_version_id or in_flight,
            persisted=True,
            updated_at=row.updated_at,
        )

    # -------------------------------------------------------------------------
    # Competitor analysis
    # -------------------------------------------------------------------------

    def get_competitor_analysis(self, domain_id: int) -> Dict[str, Any]:
        """
        Read the cached competitor analysis. Never computes.

        Raises:
            CacheMiss: nothing computed yet
        """
        repository.get_domain(self.db, domain_id)
        row = self._get_competitor_row(domain_id)
        if row is None:
            self._stats["misses"] += 1
            raise CacheMiss(f"No competitor analysis found for domain {domain_id}")
        self._stats["hits"] += 1
        return competitor_to_dict(row)

    async def recompute(self, domain_id: int, competitor_list: List[str]) -> Dict[str, Any]:
        """
        Run a fresh competitor analysis and replace the cached row.

        Concurrent identical requests collapse into one computation: a
        waiter that finds a newer revision computed from the same list
        returns that row.
        """
        domain = repository.get_domain(self.db, domain_id)
        competitors = normalize_competitors(competitor_list)
        fingerprint = list_fingerprint(competitors)

        seen = self._get_competitor_row(domain_id)
        seen_revision = seen.revision if seen is not None else 0

        async with self.locks.hold(("competitors", domain_id)):
            self.db.expire_all()
            row = self._get_competitor_row(domain_id)
            if row is not None and row.revision > seen_revision and row.list_fingerprint == fingerprint:
                self._stats["hits"] += 1
                logger.info(f"Competitor analysis for domain {domain_id} computed by a concurrent request")
                return competitor_to_dict(row)

            context, location = self._domain_context(domain)
            intel = await self._require_analyzer().analyze(domain.url, context, competitors, location)

            if row is None:
                row = CompetitorAnalysis(domain_id=domain_id, revision=1)
                self.db.add(row)
            else:
                row.revision = row.revision + 1
                row.updated_at = datetime.utcnow()
            row.competitors = intel.competitors
            row.market_insights = intel.market_insights
            row.strategic_recommendations = intel.strategic_recommendations
            row.competitive_analysis = intel.competitive_analysis
            row.competitor_list = "\n".join(competitors)
            row.list_fingerprint = fingerprint
            row.token_usage = intel.token_usage

            try:
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                row = self._get_competitor_row(domain_id)
                if row is None:
                    raise ConcurrencyConflict(
                        f"Competitor analysis for domain {domain_id} written concurrently"
                    ) from e
                logger.info(f"Competitor analysis for domain {domain_id} written concurrently, serving stored row")
                return competitor_to_dict(row)

        self._stats["writes"] += 1
        logger.info(f"Stored competitor analysis for domain {domain_id} (revision {row.revision})")
        return competitor_to_dict(row)

    def _get_competitor_row(self, domain_id: int) -> Optional[CompetitorAnalysis]:
        return self.db.query(CompetitorAnalysis).filter(CompetitorAnalysis.domain_id == domain_id).first()

    # -------------------------------------------------------------------------
    # Suggested competitors
    # -------------------------------------------------------------------------

    async def get_suggested_competitors(self, domain_id: int, refresh: bool = False) -> Dict[str, Any]:
        """
        Serve cached suggestions; generate on first read or when refresh is set.
        """
        domain = repository.get_domain(self.db, domain_id)
        rows = self._get_suggestion_rows(domain_id)
        if rows and not refresh:
            self._stats["hits"] += 1
            return {"suggestedCompetitors": [suggestion_to_dict(r) for r in rows], "tokenUsage": 0}

        self._stats["misses"] += 1
        seen_max_id = max((r.id for r in rows), default=0)

        async with self.locks.hold(("suggestions", domain_id)):
            self.db.expire_all()
            rows = self._get_suggestion_rows(domain_id)
            if rows and max(r.id for r in rows) > seen_max_id:
                return {"suggestedCompetitors": [suggestion_to_dict(r) for r in rows], "tokenUsage": 0}

            context, location = self._domain_context(domain)
            keywords = []
            if domain.current_version_id is not None:
                keywords = [k.term for k in repository.get_keywords(self.db, domain.current_version_id)]
            result = await self._require_analyzer().suggest(domain.url, context, keywords, location)

            for old in rows:
                self.db.delete(old)
            new_rows = [
                SuggestedCompetitor(
                    domain_id=domain_id,
                    name=s.name,
                    competitor_domain=s.domain,
                    reason=s.reason,
                    type=s.type,
                )
                for s in result.suggestions
            ]
            self.db.add_all(new_rows)
            self.db.commit()

        self._stats["writes"] += 1
        logger.info(f"Stored {len(new_rows)} competitor suggestions for domain {domain_id}")
        return {
            "suggestedCompetitors": [suggestion_to_dict(r) for r in new_rows],
            "tokenUsage": result.token_usage,
        }

    def _get_suggestion_rows(self, domain_id: int) -> List[SuggestedCompetitor]:
        return (
            self.db.query(SuggestedCompetitor)
            .filter(SuggestedCompetitor.domain_id == domain_id)
            .order_by(SuggestedCompetitor.id)
            .all()
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _domain_context(self, domain: Domain) -> Tuple[str, Optional[str]]:
        context = domain.context or ""
        if not context and domain.current_version_id is not None:
            crawl = repository.get_crawl_result(self.db, domain.current_version_id)
            context = crawl.extracted_context if crawl and crawl.extracted_context else ""
        return context, domain.location

    def _require_analyzer(self) -> CompetitorAnalyzer:
        if self.analyzer is None:
            raise AnalysisFailed("No competitor analyzer configured")
        return self.analyzer

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / total * 100) if total > 0 else 0
        return {
            **self._stats,
            "total_requests": total,
            "hit_rate_percent": round(hit_rate, 1),
            "domains_computing": len(self.locks),
        }
