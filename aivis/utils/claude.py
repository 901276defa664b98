"""
Claude API Client

Thin async wrapper used for scoring responses and competitor intelligence,
with token usage and cost tracking.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import anthropic

from aivis.errors import PermanentProviderError, TransientProviderError

logger = logging.getLogger(__name__)


@dataclass
class TokenUsage:
    """Token counts reported for a completion."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class CompletionResponse:
    content: str
    usage: TokenUsage
    model: str


class ClaudeClient:
    """Async Claude client with cumulative usage tracking."""

    DEFAULT_MODEL = "claude-sonnet-4-20250514"
    MAX_TOKENS = 2000
    TEMPERATURE = 0.3

    def __init__(self, api_key: Optional[str], model: Optional[str] = None, timeout: float = 60.0):
        if not api_key:
            raise PermanentProviderError("ANTHROPIC_API_KEY not provided", provider="anthropic")
        self.model = model or self.DEFAULT_MODEL
        self.async_client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout)
        self.total_usage = TokenUsage()
        self.call_count = 0

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = MAX_TOKENS,
        temperature: float = TEMPERATURE,
    ) -> CompletionResponse:
        """
        Send a single-turn prompt.

        Raises:
            TransientProviderError: connection problems, rate limits, 5xx
            PermanentProviderError: any other API error
        """
        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self.async_client.messages.create(**kwargs)
        except (anthropic.APIConnectionError, anthropic.RateLimitError, anthropic.InternalServerError) as e:
            raise TransientProviderError(f"Claude call failed: {e}", provider="anthropic") from e
        except anthropic.APIError as e:
            raise PermanentProviderError(f"Claude call failed: {e}", provider="anthropic") from e

        content = ""
        for block in response.content:
            if hasattr(block, "text"):
                content += block.text

        usage = TokenUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        self.total_usage.input_tokens += usage.input_tokens
        self.total_usage.output_tokens += usage.output_tokens
        self.call_count += 1
        logger.debug(f"Claude call {self.call_count}: {usage.total_tokens} tokens")

        return CompletionResponse(content=content, usage=usage, model=self.model)
