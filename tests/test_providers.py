"""
Tests for provider clients, response scoring and output parsing.

Provider HTTP calls run against httpx.MockTransport; the Claude judge is an
AsyncMock.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from aivis.collector.providers import (
    OpenAICompatibleProvider, ProviderRegistry, build_registry, default_models, estimate_cost,
)
from aivis.collector.orchestrator import OrchestratorConfig, PhraseQuery, QueryOrchestrator
from aivis.collector.scoring import (
    LLMResponseScorer, clamp_score, mentions_domain, normalize_domain,
)
from aivis.errors import PermanentProviderError, ScoringError, TransientProviderError
from aivis.utils.claude import CompletionResponse, TokenUsage
from aivis.utils.config import Settings
from aivis.utils.parsing import extract_json

from conftest import FakeScorer


def mock_provider(handler, api_key="sk-test"):
    provider = OpenAICompatibleProvider("openai", "https://api.openai.com/v1", api_key)
    provider._client = httpx.AsyncClient(
        base_url="https://api.openai.com/v1",
        transport=httpx.MockTransport(handler),
    )
    return provider


# =============================================================================
# PROVIDERS
# =============================================================================

class TestOpenAICompatibleProvider:
    """Test status classification and response parsing."""

    @pytest.mark.asyncio
    async def test_successful_completion(self):
        def handler(request):
            body = json.loads(request.content)
            assert body["model"] == "gpt-4o-mini"
            assert body["messages"][-1]["content"] == "best crm?"
            return httpx.Response(200, json={
                "choices": [{"message": {"content": "Try example.com"}}],
                "usage": {"prompt_tokens": 1000, "completion_tokens": 2000},
            })

        provider = mock_provider(handler)
        response = await provider.query("gpt-4o-mini", "best crm?")

        assert response.response == "Try example.com"
        assert response.input_tokens == 1000
        assert response.cost == pytest.approx(estimate_cost("gpt-4o-mini", 1000, 2000))
        assert response.latency_ms >= 0
        await provider.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_retryable_status_is_transient(self, status):
        provider = mock_provider(lambda request: httpx.Response(status, json={}))

        with pytest.raises(TransientProviderError) as exc_info:
            await provider.query("gpt-4o-mini", "best crm?")
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 404])
    async def test_client_error_is_permanent(self, status):
        provider = mock_provider(lambda request: httpx.Response(status, text="nope"))

        with pytest.raises(PermanentProviderError):
            await provider.query("gpt-4o-mini", "best crm?")

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientProviderError):
            await mock_provider(handler).query("gpt-4o-mini", "best crm?")

    @pytest.mark.asyncio
    async def test_html_body_with_200_is_transient(self):
        provider = mock_provider(lambda request: httpx.Response(200, text="<html>gateway</html>"))

        with pytest.raises(TransientProviderError) as exc_info:
            await provider.query("gpt-4o-mini", "best crm?")
        assert "unreadable body" in str(exc_info.value)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"choices": [{"message": {"content": None}}]},
        {"choices": [{"message": None}]},
        {"choices": ["not an object"]},
        ["not", "an", "object"],
    ])
    async def test_malformed_completion_is_transient(self, body):
        provider = mock_provider(lambda request: httpx.Response(200, json=body))

        with pytest.raises(TransientProviderError):
            await provider.query("gpt-4o-mini", "best crm?")

    @pytest.mark.asyncio
    async def test_bad_body_fails_only_its_pair(self):
        def handler(request):
            phrase = json.loads(request.content)["messages"][-1]["content"]
            if phrase == "broken":
                return httpx.Response(200, text="<html>gateway</html>")
            return httpx.Response(200, json={"choices": [{"message": {"content": "Use example.com"}}]})

        registry = ProviderRegistry({"openai": mock_provider(handler)})
        config = OrchestratorConfig(max_attempts=1, initial_delay=0.0)
        orchestrator = QueryOrchestrator(registry, FakeScorer(), config)
        phrases = [PhraseQuery(id=1, text="best crm?"), PhraseQuery(id=2, text="broken")]

        result = await orchestrator.run_batch(1, phrases, ["openai:gpt-4o-mini"], "example.com")

        assert result.total == 2
        assert result.observations[0].succeeded
        assert result.observations[0].presence == 1
        assert result.observations[1].status == "failed"
        assert result.observations[1].error_type == "TransientProviderError"
        assert result.circuit_open_models == []

    @pytest.mark.asyncio
    async def test_missing_key_is_permanent(self):
        provider = mock_provider(lambda request: httpx.Response(200, json={}), api_key=None)

        with pytest.raises(PermanentProviderError):
            await provider.query("gpt-4o-mini", "best crm?")


class TestRegistry:
    """Test model id resolution."""

    def test_resolve(self):
        provider = MagicMock()
        provider.name = "openai"
        registry = ProviderRegistry({"openai": provider})

        assert registry.resolve("openai:gpt-4o") == (provider, "gpt-4o")

    def test_resolve_rejects_bare_model(self):
        with pytest.raises(PermanentProviderError):
            ProviderRegistry().resolve("gpt-4o")

    def test_build_registry_from_settings(self):
        settings = Settings(_env_file=None, OPENAI_API_KEY="sk-test")
        registry = build_registry(settings)

        assert registry.names == ["anthropic", "openai", "perplexity"]

    def test_default_models(self):
        settings = Settings(_env_file=None, QUERY_MODELS="OpenAI:gpt-4o, perplexity:sonar ,")

        assert default_models(settings) == ["openai:gpt-4o", "perplexity:sonar"]

    def test_estimate_cost_unknown_model(self):
        assert estimate_cost("mystery", 1_000_000, 1_000_000) == 4.0


# =============================================================================
# SCORING
# =============================================================================

class TestMentionCheck:
    """Test presence detection."""

    def test_normalize_domain(self):
        assert normalize_domain("https://www.Example.com/pricing") == "example.com"

    def test_host_mention(self):
        assert mentions_domain("Check out example.com for this.", "https://www.example.com")

    def test_brand_mention(self):
        assert mentions_domain("Tools like Example and Pipedrive work well.", "example.com")

    def test_brand_inside_other_word_is_not_a_mention(self):
        assert not mentions_domain("Counterexamples abound.", "example.com")

    def test_empty_response(self):
        assert not mentions_domain("", "example.com")


class TestLLMResponseScorer:
    """Test the judge-backed scorer."""

    def make_client(self, content):
        client = MagicMock()
        client.complete = AsyncMock(return_value=CompletionResponse(
            content=content, usage=TokenUsage(input_tokens=100, output_tokens=20), model="judge",
        ))
        return client

    @pytest.mark.asyncio
    async def test_scores_parsed_and_clamped(self):
        client = self.make_client('```json\n{"relevance": 4, "accuracy": 7, "sentiment": 0, "overall": "3.5"}\n```')
        scorer = LLMResponseScorer(client)

        scores = await scorer.score("best crm?", "example.com is great", "example.com")

        assert scores.presence == 1
        assert scores.relevance == 4.0
        assert scores.accuracy == 5.0
        assert scores.sentiment == 1.0
        assert scores.overall == 3.5

    @pytest.mark.asyncio
    async def test_missing_dimension_raises(self):
        scorer = LLMResponseScorer(self.make_client('{"relevance": 4}'))

        with pytest.raises(ScoringError):
            await scorer.score("best crm?", "answer", "example.com")

    @pytest.mark.asyncio
    async def test_judge_failure_raises(self):
        client = MagicMock()
        client.complete = AsyncMock(side_effect=TransientProviderError("overloaded"))

        with pytest.raises(ScoringError):
            await LLMResponseScorer(client).score("best crm?", "answer", "example.com")

    @pytest.mark.asyncio
    async def test_without_client_raises(self):
        with pytest.raises(ScoringError):
            await LLMResponseScorer(None).score("best crm?", "answer", "example.com")

    def test_clamp_rejects_text(self):
        with pytest.raises(ScoringError):
            clamp_score("high")


# =============================================================================
# PARSING
# =============================================================================

class TestExtractJson:
    """Test JSON extraction from model output."""

    def test_fenced_block(self):
        assert extract_json('Here:\n```json\n{"a": 1}\n```\nDone') == {"a": 1}

    def test_bare_object(self):
        assert extract_json('Result {"a": {"b": 2}} end') == {"a": {"b": 2}}

    def test_no_json(self):
        assert extract_json("no structured output") is None

    def test_invalid_json(self):
        assert extract_json("{not json}") is None
