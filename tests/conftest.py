"""
Pytest Configuration and Shared Fixtures

Provides an in-memory database, seeded domains and fake providers,
scorers and competitor analyzers for all test modules.
"""

import asyncio
from datetime import datetime
from types import SimpleNamespace
from typing import Dict, List, Optional, Union

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from aivis.collector.orchestrator import OrchestratorConfig, QueryOrchestrator
from aivis.collector.providers import ProviderRegistry, ProviderResponse, QueryProvider
from aivis.collector.scoring import ResponseScorer, ResponseScores, mentions_domain
from aivis.competitors.analyzer import (
    CompetitorAnalyzer, CompetitorIntel, CompetitorSuggestion, SuggestionResult,
)
from aivis.database import repository
from aivis.database.models import Base
from aivis.database.session import enable_sqlite_foreign_keys
from aivis.errors import ScoringError
from aivis.utils.locks import KeyedLock


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory SQLite database shared across sessions."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def seeded(db):
    """
    One domain with a first version, two keywords and three selected phrases.

    Keyword "crm software" has two phrases, "sales pipeline" one.
    """
    domain, version = repository.create_domain(
        db, "example.com", context="CRM for small teams", location="Sweden", industry="Software"
    )
    keywords = repository.store_keywords(db, domain.id, version.id, [
        {"term": "crm software", "volume": 5000, "difficulty": 60},
        {"term": "sales pipeline", "volume": 800, "difficulty": 30},
    ])
    phrases = repository.store_phrases(db, domain.id, version.id, [
        {"keyword": "crm software", "text": "What is the best CRM for small teams?"},
        {"keyword": "crm software", "text": "Which CRM tools are easiest to use?"},
        {"keyword": "sales pipeline", "text": "How do I track a sales pipeline?"},
    ])
    db.commit()
    return SimpleNamespace(domain=domain, version=version, keywords=keywords, phrases=phrases)


# ============================================================================
# Fakes
# ============================================================================

Outcome = Union[str, Exception]


class FakeProvider(QueryProvider):
    """
    Provider answering from a per-model script of outcomes.

    Each outcome is a response string or an exception to raise. The last
    outcome repeats once the script runs out.
    """

    def __init__(self, name: str = "fake", scripts: Optional[Dict[str, List[Outcome]]] = None,
                 default: Outcome = "I recommend example.com for this.", delay: float = 0.0):
        self.name = name
        self.scripts = scripts or {}
        self.default = default
        self.delay = delay
        self.calls: List[tuple] = []

    async def query(self, model: str, phrase: str) -> ProviderResponse:
        self.calls.append((model, phrase))
        script = self.scripts.get(model)
        index = sum(1 for m, _ in self.calls if m == model) - 1
        outcome = script[min(index, len(script) - 1)] if script else self.default
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(outcome, Exception):
            raise outcome
        return ProviderResponse(response=outcome, latency_ms=120.0, cost=0.001, input_tokens=20, output_tokens=80)


class FakeScorer(ResponseScorer):
    """Presence from the mention check, every quality dimension fixed."""

    def __init__(self, value: float = 4.0, fail_on: Optional[str] = None):
        self.value = value
        self.fail_on = fail_on
        self.calls = 0

    async def score(self, phrase: str, response: str, domain: str) -> ResponseScores:
        self.calls += 1
        if self.fail_on and self.fail_on in response:
            raise ScoringError("unparseable judge output")
        return ResponseScores(
            presence=1 if mentions_domain(response, domain) else 0,
            relevance=self.value,
            accuracy=self.value,
            sentiment=self.value,
            overall=self.value,
        )


class FakeCompetitorAnalyzer(CompetitorAnalyzer):
    """Counts calls and yields to the loop so concurrent callers interleave."""

    def __init__(self):
        self.analyze_calls = 0
        self.suggest_calls = 0

    async def analyze(self, domain, context, competitors, location=None) -> CompetitorIntel:
        self.analyze_calls += 1
        await asyncio.sleep(0.01)
        return CompetitorIntel(
            competitors=[{"name": name, "threatLevel": "Medium"} for name in competitors],
            market_insights={"marketLeader": competitors[0] if competitors else None},
            strategic_recommendations=[{"action": "Publish comparison pages", "priority": "High"}],
            competitive_analysis={"domainAdvantages": ["Price"]},
            token_usage=1500,
        )

    async def suggest(self, domain, context, keywords, location=None) -> SuggestionResult:
        self.suggest_calls += 1
        await asyncio.sleep(0.01)
        return SuggestionResult(
            suggestions=[
                CompetitorSuggestion(name="Pipedrive", domain="pipedrive.com", reason="Same audience"),
                CompetitorSuggestion(name="HubSpot", domain="hubspot.com", reason="Market leader", type="indirect"),
            ],
            token_usage=600,
        )


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def fake_scorer():
    return FakeScorer()


@pytest.fixture
def fake_analyzer():
    return FakeCompetitorAnalyzer()


@pytest.fixture
def fast_config():
    """Tight limits with no backoff delay."""
    return OrchestratorConfig(
        max_concurrency=4,
        per_model_concurrency=2,
        query_timeout=1.0,
        batch_timeout=5.0,
        max_attempts=2,
        initial_delay=0.0,
    )


@pytest.fixture
def orchestrator(fake_provider, fake_scorer, fast_config):
    return QueryOrchestrator(ProviderRegistry({"fake": fake_provider}), fake_scorer, fast_config)


@pytest.fixture
def locks():
    return KeyedLock()


@pytest.fixture
def stats():
    return {"hits": 0, "misses": 0, "writes": 0, "skipped_writes": 0}


# ============================================================================
# Observation Factory
# ============================================================================

@pytest.fixture
def make_result():
    """Build observation-like objects with the AIQueryResult attribute names."""

    def _make(phrase_id=1, model="fake:a", presence=1, score=4.0, status="success",
              created_at=None, latency=100.0, cost=0.001):
        failed = status != "success"
        return SimpleNamespace(
            phrase_id=phrase_id,
            model=model,
            status=status,
            presence=None if failed else presence,
            relevance=None if failed else score,
            accuracy=None if failed else score,
            sentiment=None if failed else score,
            overall=None if failed else score,
            latency=None if failed else latency,
            cost=None if failed else cost,
            created_at=created_at or datetime(2026, 3, 15, 12, 0, 0),
        )

    return _make


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests that exercise several components together")
