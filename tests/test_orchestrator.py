"""
Tests for the AI query orchestrator.

These tests verify:
- One observation per (phrase, model) pair, sorted
- Retry with backoff on transient failures
- Circuit opening on permanent failures
- Per-call and batch deadlines
- Scoring failures recorded as failed attempts
- Concurrency bounds
"""

import pytest

from aivis.collector.orchestrator import (
    BatchResult, OrchestratorConfig, PhraseQuery, QueryObservation, QueryOrchestrator,
)
from aivis.collector.providers import ProviderRegistry
from aivis.errors import BatchTimeout, PermanentProviderError, TransientProviderError

from conftest import FakeProvider, FakeScorer


PHRASES = [
    PhraseQuery(id=3, text="How do I track a sales pipeline?", keyword_id=2),
    PhraseQuery(id=1, text="What is the best CRM for small teams?", keyword_id=1),
    PhraseQuery(id=2, text="Which CRM tools are easiest to use?", keyword_id=1),
]


def make_orchestrator(providers, scorer=None, **overrides):
    settings = dict(
        max_concurrency=4,
        per_model_concurrency=2,
        query_timeout=1.0,
        batch_timeout=5.0,
        max_attempts=2,
        initial_delay=0.0,
    )
    settings.update(overrides)
    registry = ProviderRegistry({p.name: p for p in providers})
    return QueryOrchestrator(registry, scorer or FakeScorer(), OrchestratorConfig(**settings))


class ConcurrencyProbe(FakeProvider):
    """Records the highest number of simultaneous calls per model."""

    def __init__(self, name="probe", delay=0.02):
        super().__init__(name=name, delay=delay)
        self.in_flight = {}
        self.peak = {}
        self.total_in_flight = 0
        self.total_peak = 0

    async def query(self, model, phrase):
        self.in_flight[model] = self.in_flight.get(model, 0) + 1
        self.total_in_flight += 1
        self.peak[model] = max(self.peak.get(model, 0), self.in_flight[model])
        self.total_peak = max(self.total_peak, self.total_in_flight)
        try:
            return await super().query(model, phrase)
        finally:
            self.in_flight[model] -= 1
            self.total_in_flight -= 1


# =============================================================================
# BATCH RESULTS
# =============================================================================

class TestRunBatch:
    """Test fan-out and result shape."""

    @pytest.mark.asyncio
    async def test_one_observation_per_pair_sorted(self, orchestrator):
        result = await orchestrator.run_batch(7, PHRASES, ["fake:b", "fake:a"], "example.com")

        assert result.total == 6
        assert result.succeeded == 6
        assert result.is_partial is False
        assert [(o.phrase_id, o.model) for o in result.observations] == [
            (1, "fake:a"), (1, "fake:b"),
            (2, "fake:a"), (2, "fake:b"),
            (3, "fake:a"), (3, "fake:b"),
        ]
        assert all(o.presence == 1 for o in result.observations)
        assert result.domain_version_id == 7

    @pytest.mark.asyncio
    async def test_unmentioned_domain_scores_zero_presence(self):
        provider = FakeProvider(default="Try Pipedrive or HubSpot.")
        orchestrator = make_orchestrator([provider])

        result = await orchestrator.run_batch(1, PHRASES[:1], ["fake:a"], "example.com")

        observation = result.observations[0]
        assert observation.succeeded
        assert observation.presence == 0
        assert observation.overall == 4.0
        assert observation.latency == 120.0
        assert observation.cost == 0.001

    @pytest.mark.asyncio
    async def test_empty_batch(self, orchestrator):
        result = await orchestrator.run_batch(1, [], ["fake:a"], "example.com")

        assert result.total == 0
        assert result.is_partial is False

    @pytest.mark.asyncio
    async def test_to_dict_counts(self):
        provider = FakeProvider(scripts={"b": [PermanentProviderError("bad key")]})
        orchestrator = make_orchestrator([provider], per_model_concurrency=1)

        result = await orchestrator.run_batch(1, PHRASES, ["fake:a", "fake:b"], "example.com")
        summary = result.to_dict()

        assert summary["totalAttempts"] == 6
        assert summary["successfulAttempts"] == 3
        assert summary["failedAttempts"] == 3
        assert summary["isPartial"] is True
        assert summary["circuitOpenModels"] == ["fake:b"]


# =============================================================================
# FAILURE HANDLING
# =============================================================================

class TestFailureHandling:
    """Test retries, circuit breaking and scoring failures."""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self):
        provider = FakeProvider(scripts={"a": [
            TransientProviderError("rate limited", status_code=429),
            "example.com is a good choice",
        ]})
        orchestrator = make_orchestrator([provider])

        result = await orchestrator.run_batch(1, PHRASES[:1], ["fake:a"], "example.com")

        observation = result.observations[0]
        assert observation.succeeded
        assert observation.attempts == 2
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_transient_failure_gives_up_after_max_attempts(self):
        provider = FakeProvider(scripts={"a": [TransientProviderError("503 from upstream")]})
        orchestrator = make_orchestrator([provider], max_attempts=3)

        result = await orchestrator.run_batch(1, PHRASES[:1], ["fake:a"], "example.com")

        observation = result.observations[0]
        assert observation.status == "failed"
        assert observation.error_type == "TransientProviderError"
        assert observation.attempts == 3
        assert observation.presence is None
        assert len(provider.calls) == 3

    @pytest.mark.asyncio
    async def test_permanent_failure_opens_circuit(self):
        provider = FakeProvider(scripts={"b": [PermanentProviderError("invalid api key", status_code=401)]})
        orchestrator = make_orchestrator([provider], per_model_concurrency=1)

        result = await orchestrator.run_batch(1, PHRASES, ["fake:a", "fake:b"], "example.com")

        b_calls = [c for c in provider.calls if c[0] == "b"]
        assert len(b_calls) == 1
        failed = [o for o in result.observations if o.model == "fake:b"]
        assert all(o.status == "failed" for o in failed)
        assert sorted(o.error_type for o in failed) == ["CircuitOpen", "CircuitOpen", "PermanentProviderError"]
        assert all(o.succeeded for o in result.observations if o.model == "fake:a")
        assert result.circuit_open_models == ["fake:b"]

    @pytest.mark.asyncio
    async def test_unknown_provider_fails_permanently(self, orchestrator):
        result = await orchestrator.run_batch(1, PHRASES[:1], ["missing:model"], "example.com")

        assert result.observations[0].error_type == "PermanentProviderError"
        assert result.circuit_open_models == ["missing:model"]

    @pytest.mark.asyncio
    async def test_per_call_timeout(self):
        provider = FakeProvider(delay=0.5)
        orchestrator = make_orchestrator([provider], query_timeout=0.05, max_attempts=1)

        result = await orchestrator.run_batch(1, PHRASES[:1], ["fake:a"], "example.com")

        observation = result.observations[0]
        assert observation.status == "failed"
        assert observation.error_type == "TransientProviderError"
        assert "timed out" in observation.error_message

    @pytest.mark.asyncio
    async def test_scoring_failure_is_failed_attempt(self):
        provider = FakeProvider(scripts={"a": ["garbled answer"]})
        orchestrator = make_orchestrator([provider], scorer=FakeScorer(fail_on="garbled"))

        result = await orchestrator.run_batch(1, PHRASES[:1], ["fake:a", "fake:b"], "example.com")

        by_model = {o.model: o for o in result.observations}
        assert by_model["fake:a"].status == "failed"
        assert by_model["fake:a"].error_type == "ScoringError"
        assert by_model["fake:a"].overall is None
        assert by_model["fake:b"].succeeded

    @pytest.mark.asyncio
    async def test_unexpected_provider_error_fails_only_its_pair(self):
        provider = FakeProvider(scripts={"a": [RuntimeError("driver bug")]})
        orchestrator = make_orchestrator([provider])

        result = await orchestrator.run_batch(1, PHRASES, ["fake:a", "fake:b"], "example.com")

        assert result.total == 6
        failed = [o for o in result.observations if not o.succeeded]
        assert [(o.model, o.error_type) for o in failed] == [("fake:a", "RuntimeError")] * 3
        assert all(o.attempts == 1 for o in failed)
        assert all(o.succeeded for o in result.observations if o.model == "fake:b")
        assert result.circuit_open_models == []

    @pytest.mark.asyncio
    async def test_scorer_crash_is_failed_attempt(self):
        class CrashingScorer(FakeScorer):
            async def score(self, phrase, response, domain):
                if "pipeline" in phrase:
                    raise KeyError("relevance")
                return await super().score(phrase, response, domain)

        orchestrator = make_orchestrator([FakeProvider()], scorer=CrashingScorer())

        result = await orchestrator.run_batch(1, PHRASES, ["fake:a"], "example.com")

        by_phrase = {o.phrase_id: o for o in result.observations}
        assert by_phrase[3].status == "failed"
        assert by_phrase[3].error_type == "ScoringError"
        assert "KeyError" in by_phrase[3].error_message
        assert by_phrase[1].succeeded and by_phrase[2].succeeded


# =============================================================================
# DEADLINES AND LIMITS
# =============================================================================

class TestDeadlinesAndLimits:
    """Test the batch deadline and semaphores."""

    @pytest.mark.asyncio
    async def test_batch_timeout_carries_completed(self):
        fast = FakeProvider(name="fast")
        slow = FakeProvider(name="slow", delay=5.0)
        orchestrator = make_orchestrator([fast, slow], query_timeout=10.0, batch_timeout=0.2)

        with pytest.raises(BatchTimeout) as exc_info:
            await orchestrator.run_batch(1, PHRASES, ["fast:x", "slow:x"], "example.com")

        error = exc_info.value
        assert [o.phrase_id for o in error.completed] == [1, 2, 3]
        assert all(o.model == "fast:x" for o in error.completed)
        assert error.pending == 3
        assert error.batch_id

    @pytest.mark.asyncio
    async def test_per_model_concurrency_bound(self):
        probe = ConcurrencyProbe()
        phrases = [PhraseQuery(id=i, text=f"question {i}") for i in range(8)]
        orchestrator = make_orchestrator([probe], max_concurrency=10, per_model_concurrency=2)

        await orchestrator.run_batch(1, phrases, ["probe:a", "probe:b"], "example.com")

        assert probe.peak["a"] <= 2
        assert probe.peak["b"] <= 2

    @pytest.mark.asyncio
    async def test_global_concurrency_bound(self):
        probe = ConcurrencyProbe()
        phrases = [PhraseQuery(id=i, text=f"question {i}") for i in range(6)]
        orchestrator = make_orchestrator([probe], max_concurrency=3, per_model_concurrency=3)

        result = await orchestrator.run_batch(1, phrases, ["probe:a", "probe:b", "probe:c"], "example.com")

        assert probe.total_peak <= 3
        assert result.total == 18


class TestObservation:
    """Test observation helpers."""

    def test_failed_observation_has_no_scores(self):
        observation = QueryObservation(phrase_id=1, model="fake:a", status="failed")

        assert not observation.succeeded
        assert observation.presence is None
        assert observation.relevance is None

    def test_batch_result_partial(self):
        result = BatchResult(batch_id="b", domain_version_id=1, models=["fake:a"], observations=[
            QueryObservation(phrase_id=1, model="fake:a"),
            QueryObservation(phrase_id=2, model="fake:a", status="failed"),
        ])

        assert result.failed == 1
        assert result.is_partial
