"""Competitor intelligence."""

from .analyzer import (
    CompetitorAnalyzer,
    CompetitorIntel,
    CompetitorSuggestion,
    LLMCompetitorAnalyzer,
    SuggestionResult,
)

__all__ = [
    "CompetitorAnalyzer",
    "CompetitorIntel",
    "CompetitorSuggestion",
    "LLMCompetitorAnalyzer",
    "SuggestionResult",
]
