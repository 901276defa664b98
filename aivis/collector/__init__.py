"""
AI Query Collection

Usage:
    from aivis.collector import QueryOrchestrator, build_registry, LLMResponseScorer

    orchestrator = QueryOrchestrator(build_registry(), scorer)
    result = await orchestrator.run_batch(version_id, phrases, models, domain)
"""

from .providers import (
    ProviderRegistry,
    ProviderResponse,
    QueryProvider,
    OpenAICompatibleProvider,
    AnthropicProvider,
    build_registry,
    default_models,
    estimate_cost,
)
from .scoring import (
    ResponseScorer,
    ResponseScores,
    LLMResponseScorer,
    mentions_domain,
    normalize_domain,
)
from .orchestrator import (
    BatchResult,
    OrchestratorConfig,
    PhraseQuery,
    QueryObservation,
    QueryOrchestrator,
)

__all__ = [
    "ProviderRegistry", "ProviderResponse", "QueryProvider", "OpenAICompatibleProvider",
    "AnthropicProvider", "build_registry", "default_models", "estimate_cost",
    "ResponseScorer", "ResponseScores", "LLMResponseScorer", "mentions_domain",
    "normalize_domain",
    "BatchResult", "OrchestratorConfig", "PhraseQuery", "QueryObservation", "QueryOrchestrator",
]
