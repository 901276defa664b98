"""
Tests for the analysis cache manager.

These tests verify:
- Dashboards are computed once and then served from the table
- Concurrent requests collapse into a single computation
- Older versions never replace a newer version's artifact
- Competitor analysis and suggestions follow their own cache rules
"""

import asyncio

import pytest

from aivis.cache.config import CacheTTL
from aivis.cache.manager import (
    AnalysisCacheManager, competitor_list_array, list_fingerprint, normalize_competitors,
)
from aivis.collector.orchestrator import QueryObservation
from aivis.collector.scoring import ResponseScores
from aivis.database import repository
from aivis.database.models import CompetitorAnalysis, DashboardAnalysis, SuggestedCompetitor
from aivis.errors import AnalysisFailed, CacheMiss, DomainNotFound


def store_results(db, version, phrases, mentions=(), failed=(), models=("fake:a",)):
    """Store one observation per (phrase, model); phrase ids in `failed` fail."""
    observations = []
    for p in phrases:
        for model in models:
            if p.id in failed:
                observations.append(QueryObservation(
                    phrase_id=p.id, model=model, status="failed",
                    attempts=2, error_type="TransientProviderError", error_message="503",
                ))
                continue
            observations.append(QueryObservation(
                phrase_id=p.id, model=model, response="answer", latency_ms=100.0, cost=0.001, attempts=1,
                scores=ResponseScores(
                    presence=1 if p.id in mentions else 0,
                    relevance=4.0, accuracy=4.0, sentiment=4.0, overall=4.0,
                ),
            ))
    repository.store_query_results(db, version.id, "batch-test", observations)
    db.commit()


def copy_phrases(db, seeded, version):
    """Give a new version the same catalog as the seeded one."""
    repository.store_keywords(db, seeded.domain.id, version.id, [
        {"term": k.term, "volume": k.volume, "difficulty": k.difficulty} for k in seeded.keywords
    ])
    phrases = repository.store_phrases(db, seeded.domain.id, version.id, [
        {"keyword": p.keyword.term, "text": p.text} for p in seeded.phrases
    ])
    db.commit()
    return phrases


@pytest.fixture
def manager(db, fake_analyzer, locks, stats):
    return AnalysisCacheManager(db, fake_analyzer, locks=locks, stats=stats)


# =============================================================================
# DASHBOARD
# =============================================================================

class TestDashboard:
    """Test compute-once dashboard caching."""

    @pytest.mark.asyncio
    async def test_computed_once_then_served(self, db, seeded, manager, stats):
        store_results(db, seeded.version, seeded.phrases, mentions={seeded.phrases[0].id})

        first = await manager.get_or_compute(seeded.domain.id)
        second = await manager.get_or_compute(seeded.domain.id)

        assert stats["writes"] == 1
        assert stats["hits"] == 1
        assert first.id == second.id
        assert first.metrics == second.metrics
        assert first.version_id == seeded.version.id
        assert first.is_stale is False
        assert first.persisted is True
        assert round(first.metrics["mentionRate"], 1) == 33.3
        assert db.query(DashboardAnalysis).count() == 1

    @pytest.mark.asyncio
    async def test_concurrent_requests_compute_once(self, db, seeded, manager, stats):
        store_results(db, seeded.version, seeded.phrases, mentions={seeded.phrases[0].id})

        artifacts = await asyncio.gather(*(manager.get_or_compute(seeded.domain.id) for _ in range(5)))

        assert stats["writes"] == 1
        assert len({a.id for a in artifacts}) == 1
        assert len({str(a.metrics) for a in artifacts}) == 1

    @pytest.mark.asyncio
    async def test_nothing_queried_is_cache_miss(self, seeded, manager):
        with pytest.raises(CacheMiss):
            await manager.get_or_compute(seeded.domain.id)

    @pytest.mark.asyncio
    async def test_all_failed_is_analysis_failed(self, db, seeded, manager):
        store_results(db, seeded.version, seeded.phrases, failed={p.id for p in seeded.phrases})

        with pytest.raises(AnalysisFailed):
            await manager.get_or_compute(seeded.domain.id)
        assert db.query(DashboardAnalysis).count() == 0

    @pytest.mark.asyncio
    async def test_partial_batch_is_flagged(self, db, seeded, manager):
        store_results(db, seeded.version, seeded.phrases, failed={seeded.phrases[2].id})

        artifact = await manager.get_or_compute(seeded.domain.id)

        assert artifact.is_partial is True
        assert artifact.metrics["coverage"]["failedAttempts"] == 1

    @pytest.mark.asyncio
    async def test_unknown_domain(self, manager):
        with pytest.raises(DomainNotFound):
            await manager.get_or_compute(404)

    @pytest.mark.asyncio
    async def test_to_dict_shape(self, db, seeded, manager):
        store_results(db, seeded.version, seeded.phrases)

        payload = (await manager.get_or_compute(seeded.domain.id)).to_dict()

        assert set(payload) >= {"metrics", "insights", "industryAnalysis", "isStale", "isPartial", "versionId"}
        assert len(payload["insights"]["recommendations"]) == 4


# =============================================================================
# VERSION ISOLATION
# =============================================================================

class TestVersionIsolation:
    """Test that artifacts follow the newest version."""

    @pytest.mark.asyncio
    async def test_new_version_marks_artifact_stale(self, db, seeded, manager):
        store_results(db, seeded.version, seeded.phrases)
        await manager.get_or_compute(seeded.domain.id)

        repository.create_domain_version(db, seeded.domain.id)
        db.commit()
        artifact = await manager.get_or_compute(seeded.domain.id)

        assert artifact.version_id == seeded.version.id
        assert artifact.is_stale is True

    @pytest.mark.asyncio
    async def test_older_version_never_replaces_newer(self, db, seeded, manager, stats):
        store_results(db, seeded.version, seeded.phrases, mentions={p.id for p in seeded.phrases})
        v2 = repository.create_domain_version(db, seeded.domain.id)
        db.commit()
        v2_phrases = copy_phrases(db, seeded, v2)
        store_results(db, v2, v2_phrases)

        newer = await manager.compute_dashboard(seeded.domain.id, v2.id)
        older = await manager.compute_dashboard(seeded.domain.id, seeded.version.id)

        assert newer.persisted is True
        assert older.persisted is False
        assert stats["skipped_writes"] == 1
        row = db.query(DashboardAnalysis).one()
        assert row.domain_version_id == v2.id
        assert row.metrics["mentionRate"] == 0.0

    @pytest.mark.asyncio
    async def test_non_current_version_is_computed_on_the_fly(self, db, seeded, manager):
        store_results(db, seeded.version, seeded.phrases, mentions={p.id for p in seeded.phrases})
        v2 = repository.create_domain_version(db, seeded.domain.id)
        db.commit()
        store_results(db, v2, copy_phrases(db, seeded, v2))
        await manager.compute_dashboard(seeded.domain.id, v2.id)

        old = await manager.get_or_compute(seeded.domain.id, seeded.version.id)

        assert old.version_id == seeded.version.id
        assert old.persisted is False
        assert old.is_stale is True
        assert old.metrics["mentionRate"] == 100.0
        assert db.query(DashboardAnalysis).one().domain_version_id == v2.id

    @pytest.mark.asyncio
    async def test_version_of_other_domain_rejected(self, db, seeded, manager):
        _, other_version = repository.create_domain(db, "other.com")
        db.commit()

        with pytest.raises(DomainNotFound):
            await manager.get_or_compute(seeded.domain.id, other_version.id)

    @pytest.mark.asyncio
    async def test_reanalyze_uses_latest_queried_version(self, db, seeded, manager):
        store_results(db, seeded.version, seeded.phrases)
        repository.create_domain_version(db, seeded.domain.id)
        db.commit()

        artifact = await manager.reanalyze(seeded.domain.id)

        assert artifact.version_id == seeded.version.id
        assert artifact.is_stale is True


# =============================================================================
# COMPETITORS
# =============================================================================

class TestCompetitorAnalysis:
    """Test competitor analysis caching."""

    def test_read_before_compute_is_cache_miss(self, seeded, manager):
        with pytest.raises(CacheMiss):
            manager.get_competitor_analysis(seeded.domain.id)

    @pytest.mark.asyncio
    async def test_recompute_then_read(self, seeded, manager, fake_analyzer):
        stored = await manager.recompute(seeded.domain.id, [" Pipedrive ", "HubSpot", "pipedrive", ""])
        read = manager.get_competitor_analysis(seeded.domain.id)

        assert fake_analyzer.analyze_calls == 1
        assert read["competitorListArr"] == ["Pipedrive", "HubSpot"]
        assert read["competitorList"] == "Pipedrive\nHubSpot"
        assert read["revision"] == stored["revision"] == 1
        assert read["tokenUsage"] == 1500

    @pytest.mark.asyncio
    async def test_concurrent_identical_recomputes_run_once(self, db, seeded, fake_analyzer, locks, stats):
        managers = [AnalysisCacheManager(db, fake_analyzer, locks=locks, stats=stats) for _ in range(5)]

        results = await asyncio.gather(*(
            m.recompute(seeded.domain.id, ["Pipedrive", "HubSpot"]) for m in managers
        ))

        assert fake_analyzer.analyze_calls == 1
        assert {r["revision"] for r in results} == {1}
        assert db.query(CompetitorAnalysis).count() == 1

    @pytest.mark.asyncio
    async def test_explicit_edit_recomputes(self, seeded, manager, fake_analyzer):
        await manager.recompute(seeded.domain.id, ["Pipedrive"])
        updated = await manager.recompute(seeded.domain.id, ["Pipedrive", "Salesforce"])

        assert fake_analyzer.analyze_calls == 2
        assert updated["revision"] == 2
        assert updated["competitorListArr"] == ["Pipedrive", "Salesforce"]

    @pytest.mark.asyncio
    async def test_without_analyzer(self, db, seeded, locks, stats):
        manager = AnalysisCacheManager(db, None, locks=locks, stats=stats)

        with pytest.raises(AnalysisFailed):
            await manager.recompute(seeded.domain.id, ["Pipedrive"])


class TestSuggestedCompetitors:
    """Test suggestion caching."""

    @pytest.mark.asyncio
    async def test_generated_on_first_read_then_cached(self, seeded, manager, fake_analyzer):
        first = await manager.get_suggested_competitors(seeded.domain.id)
        second = await manager.get_suggested_competitors(seeded.domain.id)

        assert fake_analyzer.suggest_calls == 1
        assert first["tokenUsage"] == 600
        assert second["tokenUsage"] == 0
        assert [s["name"] for s in second["suggestedCompetitors"]] == ["Pipedrive", "HubSpot"]

    @pytest.mark.asyncio
    async def test_refresh_replaces_rows(self, db, seeded, manager, fake_analyzer):
        await manager.get_suggested_competitors(seeded.domain.id)
        await manager.get_suggested_competitors(seeded.domain.id, refresh=True)

        assert fake_analyzer.suggest_calls == 2
        assert db.query(SuggestedCompetitor).count() == 2

    @pytest.mark.asyncio
    async def test_concurrent_first_reads_generate_once(self, db, seeded, fake_analyzer, locks, stats):
        managers = [AnalysisCacheManager(db, fake_analyzer, locks=locks, stats=stats) for _ in range(3)]

        results = await asyncio.gather(*(m.get_suggested_competitors(seeded.domain.id) for m in managers))

        assert fake_analyzer.suggest_calls == 1
        assert all(len(r["suggestedCompetitors"]) == 2 for r in results)


# =============================================================================
# HELPERS AND STATS
# =============================================================================

class TestHelpers:
    """Test list handling, TTLs and stats."""

    def test_competitor_list_array_strips_bullets(self):
        assert competitor_list_array("- Pipedrive\n\n  HubSpot \n- ") == ["Pipedrive", "HubSpot"]

    def test_normalize_keeps_order(self):
        assert normalize_competitors(["b", "A", "a", " b "]) == ["b", "A"]

    def test_fingerprint_depends_on_order(self):
        assert list_fingerprint(["a", "b"]) != list_fingerprint(["b", "a"])

    def test_cache_control(self):
        assert CacheTTL.cache_control("dashboard") == "private, max-age=1800"
        assert CacheTTL.cache_control("onboarding") == "no-store"

    @pytest.mark.asyncio
    async def test_stats(self, db, seeded, manager):
        store_results(db, seeded.version, seeded.phrases)
        await manager.get_or_compute(seeded.domain.id)
        await manager.get_or_compute(seeded.domain.id)

        stats = manager.get_stats()

        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate_percent"] == 50.0
        assert stats["domains_computing"] == 0
