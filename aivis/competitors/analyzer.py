"""
Competitor Intelligence

LLM-backed competitor landscape analysis and competitor suggestions.
Both return parsed JSON plus token usage; neither invents fallback data
when the model call or parsing fails.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from aivis.errors import AnalysisFailed, ProviderError
from aivis.utils.claude import ClaudeClient
from aivis.utils.parsing import extract_json

logger = logging.getLogger(__name__)


ANALYSIS_PROMPT = """You are an expert market research analyst specializing in competitive intelligence. Analyze the competitive landscape for the domain "{domain}".

DOMAIN CONTEXT: {context}{location}

{scope}

For each competitor provide name, domain, strength (Strong/Moderate/Weak), estimated market share, 3-4 key strengths, 2-3 weaknesses, threat level (High/Medium/Low), monitoring recommendations and a comparison to the target domain.
Then summarize the market, give 5-7 strategic recommendations and a competitive analysis summary.

Return ONLY a valid JSON object with this structure:
{{
  "competitors": [
    {{
      "name": "Company Name",
      "domain": "competitor.com",
      "strength": "Strong|Moderate|Weak",
      "marketShare": "X%",
      "keyStrengths": ["..."],
      "weaknesses": ["..."],
      "threatLevel": "High|Medium|Low",
      "recommendations": ["..."],
      "comparisonToDomain": {{
        "keywordOverlap": "X%",
        "marketPosition": "Leading|Competing|Following",
        "competitiveAdvantage": "...",
        "vulnerabilityAreas": ["..."]
      }}
    }}
  ],
  "marketInsights": {{
    "totalCompetitors": "number",
    "marketLeader": "company name",
    "emergingThreats": ["..."],
    "opportunities": ["..."],
    "marketTrends": ["..."],
    "marketSize": "$X.XB",
    "growthRate": "X% YoY"
  }},
  "strategicRecommendations": [
    {{
      "category": "...",
      "priority": "High|Medium|Low",
      "action": "...",
      "expectedImpact": "...",
      "timeline": "...",
      "resourceRequirement": "High|Medium|Low"
    }}
  ],
  "competitiveAnalysis": {{
    "domainAdvantages": ["..."],
    "domainWeaknesses": ["..."],
    "competitiveGaps": ["..."],
    "marketOpportunities": ["..."],
    "threatMitigation": ["..."]
  }}
}}"""

SUGGESTION_PROMPT = """You are a competitive intelligence expert. Based on the domain "{domain}" and its business context, suggest 6-8 potential competitors for analysis.

DOMAIN CONTEXT: {context}{keywords}{location}

Include direct and indirect competitors: companies targeting similar audiences, overlapping offerings, the same keywords, emerging threats and market leaders worth benchmarking.

Return ONLY a valid JSON object:
{{
  "suggestedCompetitors": [
    {{"name": "Company Name", "domain": "competitor.com", "reason": "why it is relevant", "type": "direct|indirect"}}
  ]
}}"""


@dataclass
class CompetitorIntel:
    """Parsed competitor landscape."""
    competitors: List[Dict[str, Any]] = field(default_factory=list)
    market_insights: Dict[str, Any] = field(default_factory=dict)
    strategic_recommendations: List[Dict[str, Any]] = field(default_factory=list)
    competitive_analysis: Dict[str, Any] = field(default_factory=dict)
    token_usage: int = 0


@dataclass
class CompetitorSuggestion:
    name: str
    domain: Optional[str] = None
    reason: str = ""
    type: str = "direct"


@dataclass
class SuggestionResult:
    suggestions: List[CompetitorSuggestion] = field(default_factory=list)
    token_usage: int = 0


class CompetitorAnalyzer(ABC):
    """Capability used by the cache manager and the suggestion service."""

    @abstractmethod
    async def analyze(
        self,
        domain: str,
        context: str,
        competitors: List[str],
        location: Optional[str] = None,
    ) -> CompetitorIntel:
        ...

    @abstractmethod
    async def suggest(
        self,
        domain: str,
        context: str,
        keywords: List[str],
        location: Optional[str] = None,
    ) -> SuggestionResult:
        ...


class LLMCompetitorAnalyzer(CompetitorAnalyzer):
    """Claude-backed competitor analysis."""

    def __init__(self, client: ClaudeClient):
        self.client = client

    async def analyze(
        self,
        domain: str,
        context: str,
        competitors: List[str],
        location: Optional[str] = None,
    ) -> CompetitorIntel:
        if competitors:
            scope = (
                f"Analyze ONLY these competitors: {', '.join(competitors)}. "
                "Do not add other competitors."
            )
        else:
            scope = "Identify 5-8 direct and indirect competitors, established players and emerging threats."

        prompt = ANALYSIS_PROMPT.format(
            domain=domain,
            context=context or "",
            location=f"\nTarget Market: {location}" if location else "",
            scope=scope,
        )
        data, tokens = await self._complete_json(prompt, max_tokens=4000)
        logger.info(f"Competitor analysis for {domain} completed with {tokens} tokens")

        return CompetitorIntel(
            competitors=data.get("competitors") or [],
            market_insights=data.get("marketInsights") or {},
            strategic_recommendations=data.get("strategicRecommendations") or [],
            competitive_analysis=data.get("competitiveAnalysis") or {},
            token_usage=tokens,
        )

    async def suggest(
        self,
        domain: str,
        context: str,
        keywords: List[str],
        location: Optional[str] = None,
    ) -> SuggestionResult:
        prompt = SUGGESTION_PROMPT.format(
            domain=domain,
            context=context or "",
            keywords=f"\nKey Keywords: {', '.join(keywords)}" if keywords else "",
            location=f"\nTarget Market: {location}" if location else "",
        )
        data, tokens = await self._complete_json(prompt, max_tokens=1500)
        logger.info(f"Competitor suggestions for {domain} generated with {tokens} tokens")

        suggestions = []
        for item in data.get("suggestedCompetitors") or []:
            if not item.get("name"):
                continue
            suggestions.append(CompetitorSuggestion(
                name=item["name"],
                domain=item.get("domain"),
                reason=item.get("reason", ""),
                type=item.get("type") if item.get("type") in ("direct", "indirect") else "direct",
            ))
        return SuggestionResult(suggestions=suggestions, token_usage=tokens)

    async def _complete_json(self, prompt: str, max_tokens: int):
        try:
            completion = await self.client.complete(prompt, max_tokens=max_tokens, temperature=0.3)
        except ProviderError as e:
            raise AnalysisFailed(f"Competitor model call failed: {e}") from e

        data = extract_json(completion.content)
        if data is None:
            raise AnalysisFailed("No valid JSON found in competitor model response")
        return data, completion.usage.total_tokens
