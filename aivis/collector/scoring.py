"""
Response scoring capability.

Maps a raw model response to presence (0/1) and four 1-5 quality scores.
Presence is a direct mention check against the domain; the quality
dimensions come from an LLM judge.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from aivis.errors import ProviderError, ScoringError
from aivis.utils.claude import ClaudeClient
from aivis.utils.parsing import extract_json

logger = logging.getLogger(__name__)

DIMENSIONS = ("relevance", "accuracy", "sentiment", "overall")

SCORING_PROMPT = """Rate how an AI assistant's answer represents the website {domain}.

Question asked: {phrase}

Answer:
\"\"\"
{response}
\"\"\"

Score each dimension from 1 (poor) to 5 (excellent):
- relevance: how relevant {domain} is to the answer
- accuracy: how accurately the answer describes {domain}
- sentiment: how positively {domain} is portrayed (3 = neutral or not mentioned)
- overall: overall quality of {domain}'s representation

Return only JSON: {{"relevance": n, "accuracy": n, "sentiment": n, "overall": n}}"""


@dataclass
class ResponseScores:
    presence: int
    relevance: float
    accuracy: float
    sentiment: float
    overall: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_domain(domain: str) -> str:
    """example.com from https://www.example.com/path."""
    host = re.sub(r"^[a-z]+://", "", domain.strip().lower())
    host = host.split("/")[0]
    if host.startswith("www."):
        host = host[4:]
    return host


def mentions_domain(response: str, domain: str) -> bool:
    """
    True when the response names the domain or its brand.

    The brand is the first label of the host (example.com -> example).
    """
    if not response or not domain:
        return False
    host = normalize_domain(domain)
    text = response.lower()
    if host in text:
        return True
    brand = host.split(".")[0]
    return len(brand) >= 3 and re.search(rf"\b{re.escape(brand)}\b", text) is not None


def clamp_score(value: Any) -> float:
    """Coerce a judge score to the 1-5 scale."""
    try:
        score = float(value)
    except (TypeError, ValueError) as e:
        raise ScoringError(f"Non-numeric score: {value!r}") from e
    return max(1.0, min(5.0, score))


class ResponseScorer(ABC):
    """Scores one raw response."""

    @abstractmethod
    async def score(self, phrase: str, response: str, domain: str) -> ResponseScores:
        ...


class LLMResponseScorer(ResponseScorer):
    """
    Claude-backed judge for the quality dimensions.

    Without a client every response fails scoring, so queries still run and
    are recorded as failed attempts.
    """

    def __init__(self, client: Optional[ClaudeClient]):
        self.client = client

    async def score(self, phrase: str, response: str, domain: str) -> ResponseScores:
        if self.client is None:
            raise ScoringError("No scoring model configured")
        prompt = SCORING_PROMPT.format(domain=normalize_domain(domain), phrase=phrase, response=response)
        try:
            completion = await self.client.complete(prompt, max_tokens=200, temperature=0.0)
        except ProviderError as e:
            raise ScoringError(f"Scoring call failed: {e}") from e

        data: Optional[Dict[str, Any]] = extract_json(completion.content)
        if data is None or any(dim not in data for dim in DIMENSIONS):
            raise ScoringError(f"Scoring output missing dimensions: {completion.content[:200]!r}")

        return ResponseScores(
            presence=1 if mentions_domain(response, domain) else 0,
            relevance=clamp_score(data["relevance"]),
            accuracy=clamp_score(data["accuracy"]),
            sentiment=clamp_score(data["sentiment"]),
            overall=clamp_score(data["overall"]),
        )
