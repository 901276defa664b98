"""
Metrics aggregation and insights.

Usage:
    from aivis.scoring import aggregate_metrics, build_insights, build_industry_analysis

    metrics = aggregate_metrics(results, keywords, phrases)
    insights = build_insights(metrics)
"""

from .metrics import (
    Coverage,
    DashboardMetrics,
    KeywordPerformance,
    ModelPerformance,
    PerformancePoint,
    PhrasePerformance,
    aggregate_metrics,
    quality_index,
    visibility_score,
)
from .insights import (
    build_industry_analysis,
    build_insights,
    build_recommendations,
    market_position,
)

__all__ = [
    "Coverage", "DashboardMetrics", "KeywordPerformance", "ModelPerformance",
    "PerformancePoint", "PhrasePerformance", "aggregate_metrics", "quality_index",
    "visibility_score", "build_industry_analysis", "build_insights",
    "build_recommendations", "market_position",
]
