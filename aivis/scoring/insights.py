"""
Insights and industry analysis derived from dashboard metrics.

Rule-based and deterministic, so a cached artifact can be recomputed and
compared byte for byte.
"""

from typing import Any, Dict, List, Optional

from .metrics import DashboardMetrics

# Mention rate thresholds (percent) for market position
LEADER_THRESHOLD = 50
CHALLENGER_THRESHOLD = 25

STRONG_SCORE = 4.0
WEAK_SCORE = 2.5
HIGH_DIFFICULTY = 70
LOW_VOLUME = 1000
SMALL_SITE_PAGES = 50


def market_position(mention_rate: float) -> str:
    if mention_rate > LEADER_THRESHOLD:
        return "leader"
    if mention_rate > CHALLENGER_THRESHOLD:
        return "challenger"
    return "niche"


def build_insights(metrics: DashboardMetrics, pages_scanned: Optional[int] = None) -> Dict[str, List[Dict[str, Any]]]:
    """Strengths, weaknesses and prioritized recommendations."""
    strengths = []
    weaknesses = []

    if metrics.coverage.successfulAttempts:
        strengths.append({
            "title": "AI Visibility Established",
            "description": (
                f"Domain achieves {metrics.visibilityScore} visibility score "
                f"with {metrics.mentionRate}% mention rate"
            ),
            "metric": f"{metrics.visibilityScore} visibility score",
        })

    scored_models = [m for m in metrics.modelPerformance if m.successful]
    if scored_models:
        best = max(scored_models, key=lambda m: (m.score, m.model))
        worst = min(scored_models, key=lambda m: (m.score, m.model))
        if best.mentionRate > CHALLENGER_THRESHOLD:
            strengths.append({
                "title": f"Strong presence on {best.model}",
                "description": f"Mentioned in {best.mentionRate}% of {best.model} answers",
                "metric": f"{best.score} model score",
            })
        if len(scored_models) > 1 and worst.model != best.model and worst.mentionRate < best.mentionRate:
            weaknesses.append({
                "title": f"Low presence on {worst.model}",
                "description": f"Mentioned in only {worst.mentionRate}% of {worst.model} answers",
                "metric": f"{worst.score} model score",
            })

    if metrics.avgSentiment >= STRONG_SCORE:
        strengths.append({
            "title": "Positive Portrayal",
            "description": "AI answers describe the domain favourably",
            "metric": f"{metrics.avgSentiment}/5 sentiment",
        })
    elif metrics.coverage.successfulAttempts and metrics.avgSentiment < WEAK_SCORE:
        weaknesses.append({
            "title": "Weak Portrayal",
            "description": "AI answers describe the domain unfavourably or vaguely",
            "metric": f"{metrics.avgSentiment}/5 sentiment",
        })

    if metrics.coverage.successfulAttempts and metrics.avgAccuracy < WEAK_SCORE:
        weaknesses.append({
            "title": "Inaccurate Descriptions",
            "description": "AI answers frequently misdescribe the domain's offering",
            "metric": f"{metrics.avgAccuracy}/5 accuracy",
        })

    if metrics.coverage.isPartial:
        weaknesses.append({
            "title": "Partial Coverage",
            "description": (
                f"{metrics.coverage.failedAttempts} of {metrics.coverage.totalAttempts} "
                "queries failed and were excluded"
            ),
            "metric": f"{metrics.coverage.coveragePercent}% coverage",
        })

    return {
        "strengths": strengths,
        "weaknesses": weaknesses,
        "recommendations": build_recommendations(metrics, pages_scanned),
    }


def build_recommendations(metrics: DashboardMetrics, pages_scanned: Optional[int] = None) -> List[Dict[str, str]]:
    recommendations = [
        {
            "priority": "High",
            "type": "Content Optimization",
            "description": "Focus on creating intent-driven content for high-volume, low-competition keywords",
            "impact": "Could increase AI mentions by 35-50%",
        },
        {
            "priority": "High",
            "type": "Competitor Analysis",
            "description": "Target competitor content gaps identified in the AI answers",
            "impact": "Potential to capture 20-30% share of voice in identified niches",
        },
        {
            "priority": "Medium",
            "type": "Technical SEO",
            "description": "Improve page load speed and structured data so crawlers can read the site",
            "impact": "Expected 10-15% improvement in AI visibility",
        },
        {
            "priority": "Low",
            "type": "Long-tail Strategy",
            "description": "Expand content to cover related intent phrases with lower competition",
            "impact": "Steady growth in qualified mentions",
        },
    ]

    with_market = [k for k in metrics.keywordPerformance if k.difficulty is not None or k.volume is not None]
    if with_market:
        difficulties = [k.difficulty for k in with_market if k.difficulty is not None]
        volumes = [k.volume for k in with_market if k.volume is not None]
        if difficulties and sum(difficulties) / len(difficulties) > HIGH_DIFFICULTY:
            recommendations[0]["description"] = (
                "Focus on long-tail keywords with lower competition to build domain authority"
            )
            recommendations[0]["impact"] = "Could increase AI mentions by 25-40%"
        if volumes and sum(volumes) / len(volumes) < LOW_VOLUME:
            recommendations[3]["priority"] = "Medium"
            recommendations[3]["description"] = (
                "Target higher-volume keywords to increase organic traffic potential"
            )
            recommendations[3]["impact"] = "Could increase AI mentions by 40-60%"

    if pages_scanned is not None and pages_scanned < SMALL_SITE_PAGES:
        recommendations[2]["priority"] = "High"
        recommendations[2]["description"] = "Expand website content to cover more relevant topics and keywords"
        recommendations[2]["impact"] = "Could increase AI mentions by 30-45%"

    return recommendations


def build_industry_analysis(metrics: DashboardMetrics, industry: Optional[str] = None) -> Dict[str, Any]:
    """Market position and narrative fields for the industry panel."""
    opportunities = []
    weak_keywords = [k.keyword for k in metrics.keywordPerformance if k.queries and k.mentions == 0]
    if weak_keywords:
        opportunities.append(f"Win mentions for: {', '.join(weak_keywords[:3])}")
    opportunities.extend(["Expand keyword portfolio", "Improve content quality"])

    return {
        "industry": industry,
        "marketPosition": market_position(metrics.mentionRate),
        "competitiveAdvantage": (
            f"AI visibility score of {metrics.visibilityScore} across {metrics.totalQueries} analyzed queries"
        ),
        "marketTrends": ["AI-powered search answers", "Conversational product discovery"],
        "growthOpportunities": opportunities,
        "threats": ["Increasing competition", "Model and algorithm changes"],
    }
