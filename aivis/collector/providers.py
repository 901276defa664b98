"""
AI Provider Clients

One provider per backend, all exposing the same capability:

    await provider.query(model, phrase_text) -> ProviderResponse

Failures are classified for the orchestrator:
- TransientProviderError: network errors, timeouts, 429 and 5xx
- PermanentProviderError: missing credentials, 400/401/403/404, unknown model

Providers:
- OpenAI and Perplexity (OpenAI-compatible chat completions over httpx)
- Anthropic (official SDK)
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import anthropic
import httpx

from aivis.errors import PermanentProviderError, TransientProviderError
from aivis.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = (408, 409, 429, 500, 502, 503, 504)

# USD per 1M tokens (input, output)
PRICING: Dict[str, Tuple[float, float]] = {
    "gpt-4o": (2.50, 10.00),
    "gpt-4o-mini": (0.15, 0.60),
    "claude-sonnet-4-20250514": (3.00, 15.00),
    "claude-3-5-haiku-20241022": (0.80, 4.00),
    "sonar": (1.00, 1.00),
    "sonar-pro": (3.00, 15.00),
}
DEFAULT_PRICE = (1.00, 3.00)

SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer the user's question directly and "
    "recommend specific companies, products or websites where relevant."
)


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Estimate the USD cost of a call from its token usage."""
    input_price, output_price = PRICING.get(model, DEFAULT_PRICE)
    return (input_tokens / 1_000_000) * input_price + (output_tokens / 1_000_000) * output_price


@dataclass
class ProviderResponse:
    """Raw answer from a provider."""
    response: str
    latency_ms: float
    cost: float
    input_tokens: int = 0
    output_tokens: int = 0


class QueryProvider(ABC):
    """An AI backend that can answer a phrase with a given model."""

    name: str = ""

    @abstractmethod
    async def query(self, model: str, phrase: str) -> ProviderResponse:
        ...

    async def close(self) -> None:
        pass


# =============================================================================
# OPENAI-COMPATIBLE (OpenAI, Perplexity)
# =============================================================================

class OpenAICompatibleProvider(QueryProvider):
    """Chat-completions provider over httpx."""

    def __init__(self, name: str, base_url: str, api_key: Optional[str], timeout: float = 60.0):
        self.name = name
        self.api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key or ''}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout),
        )

    async def query(self, model: str, phrase: str) -> ProviderResponse:
        if not self.api_key:
            raise PermanentProviderError(f"No API key configured for {self.name}", provider=self.name)

        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": phrase},
            ],
            "temperature": 0.2,
            "max_tokens": 1024,
        }

        start = time.perf_counter()
        try:
            response = await self._client.post("/chat/completions", json=payload)
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"{self.name} request timed out: {e}", provider=self.name) from e
        except httpx.RequestError as e:
            raise TransientProviderError(f"{self.name} request failed: {e}", provider=self.name) from e
        latency_ms = (time.perf_counter() - start) * 1000

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise TransientProviderError(
                f"{self.name} returned {response.status_code}",
                provider=self.name,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise PermanentProviderError(
                f"{self.name} returned {response.status_code}: {response.text[:200]}",
                provider=self.name,
                status_code=response.status_code,
            )

        try:
            data = response.json()
            choices = data.get("choices") or []
            content = (choices[0].get("message") or {}).get("content") if choices else None
            usage = data.get("usage") or {}
            input_tokens = int(usage.get("prompt_tokens") or 0)
            output_tokens = int(usage.get("completion_tokens") or 0)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            # Gateways sometimes answer 200 with an HTML error page
            raise TransientProviderError(
                f"{self.name} returned an unreadable body: {response.text[:200]!r}",
                provider=self.name,
                status_code=response.status_code,
            ) from e
        if not isinstance(content, str):
            raise TransientProviderError(f"{self.name} returned no message content", provider=self.name)

        return ProviderResponse(
            response=content,
            latency_ms=latency_ms,
            cost=estimate_cost(model, input_tokens, output_tokens),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    async def close(self) -> None:
        await self._client.aclose()


# =============================================================================
# ANTHROPIC
# =============================================================================

class AnthropicProvider(QueryProvider):
    """Claude models through the Anthropic SDK."""

    name = "anthropic"

    def __init__(self, api_key: Optional[str], timeout: float = 60.0):
        self.api_key = api_key
        # Retries are owned by the orchestrator
        self._client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0) if api_key else None

    async def query(self, model: str, phrase: str) -> ProviderResponse:
        if self._client is None:
            raise PermanentProviderError("No API key configured for anthropic", provider=self.name)

        start = time.perf_counter()
        try:
            response = await self._client.messages.create(
                model=model,
                max_tokens=1024,
                temperature=0.2,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": phrase}],
            )
        except (anthropic.APIConnectionError, anthropic.APITimeoutError) as e:
            raise TransientProviderError(f"anthropic request failed: {e}", provider=self.name) from e
        except anthropic.APIStatusError as e:
            error_class = (
                TransientProviderError if e.status_code in RETRYABLE_STATUS_CODES else PermanentProviderError
            )
            raise error_class(
                f"anthropic returned {e.status_code}: {e.message}",
                provider=self.name,
                status_code=e.status_code,
            ) from e
        latency_ms = (time.perf_counter() - start) * 1000

        content = "".join(block.text for block in response.content if hasattr(block, "text"))
        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens

        return ProviderResponse(
            response=content,
            latency_ms=latency_ms,
            cost=estimate_cost(model, input_tokens, output_tokens),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()


# =============================================================================
# REGISTRY
# =============================================================================

class ProviderRegistry:
    """
    Maps model ids to providers.

    Model ids are "provider:model" strings, e.g. "openai:gpt-4o-mini".
    """

    def __init__(self, providers: Optional[Dict[str, QueryProvider]] = None):
        self._providers: Dict[str, QueryProvider] = dict(providers or {})

    def register(self, provider: QueryProvider) -> None:
        self._providers[provider.name] = provider

    def resolve(self, model_id: str) -> Tuple[QueryProvider, str]:
        """
        Find the provider for a model id.

        Raises:
            PermanentProviderError: unknown provider prefix
        """
        provider_name, sep, model = model_id.partition(":")
        if not sep:
            raise PermanentProviderError(f"Model id must be 'provider:model', got {model_id!r}")
        provider = self._providers.get(provider_name)
        if provider is None:
            raise PermanentProviderError(f"Unknown provider {provider_name!r}", provider=provider_name)
        return provider, model

    async def query(self, model_id: str, phrase: str) -> ProviderResponse:
        provider, model = self.resolve(model_id)
        return await provider.query(model, phrase)

    @property
    def names(self) -> List[str]:
        return sorted(self._providers)

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()


def build_registry(settings: Optional[Settings] = None) -> ProviderRegistry:
    """Build the default registry from settings."""
    settings = settings or get_settings()
    registry = ProviderRegistry()
    registry.register(OpenAICompatibleProvider(
        "openai", "https://api.openai.com/v1", settings.OPENAI_API_KEY, settings.QUERY_TIMEOUT,
    ))
    registry.register(OpenAICompatibleProvider(
        "perplexity", "https://api.perplexity.ai", settings.PERPLEXITY_API_KEY, settings.QUERY_TIMEOUT,
    ))
    registry.register(AnthropicProvider(settings.ANTHROPIC_API_KEY, settings.QUERY_TIMEOUT))
    return registry


def default_models(settings: Optional[Settings] = None) -> List[str]:
    """Model ids to query, from QUERY_MODELS."""
    settings = settings or get_settings()
    return [f"{provider}:{model}" for provider, model in settings.query_models]
