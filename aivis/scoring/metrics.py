"""
Metrics Aggregator

Pure, deterministic aggregation of raw per-(phrase, model) observations into
domain-level dashboard metrics.

Observations are anything with the AIQueryResult attribute names
(stored rows or orchestrator observations):
    phrase_id, model, status, presence, relevance, accuracy, sentiment,
    overall, latency, cost, created_at

Failed attempts count toward coverage only; every rate and average is
computed over successful (scored) attempts.
"""

from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from aivis.database.models import QueryStatus

QUALITY_DIMENSIONS = ("relevance", "accuracy", "sentiment", "overall")

# visibilityScore = MENTION_WEIGHT * mentionRate + QUALITY_WEIGHT * qualityIndex
MENTION_WEIGHT = 0.5
QUALITY_WEIGHT = 0.5

TOP_PHRASES_LIMIT = 10
RANK_KEYS = ("score", "mentions")


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class ModelPerformance:
    model: str
    totalQueries: int
    successful: int
    failed: int
    mentions: int
    mentionRate: float
    score: float
    avgRelevance: float
    avgAccuracy: float
    avgSentiment: float
    avgOverall: float
    avgLatency: float
    avgCost: float
    totalCost: float


@dataclass
class KeywordPerformance:
    keywordId: int
    keyword: str
    visibility: float
    mentions: int
    queries: int
    mentionRate: float
    avgSentiment: float
    avgOverall: float
    volume: Optional[int] = None
    difficulty: Optional[float] = None
    cpc: Optional[float] = None


@dataclass
class PhrasePerformance:
    phraseId: int
    phrase: Optional[str]
    keywordId: Optional[int]
    count: int
    mentions: int
    avgScore: float


@dataclass
class PerformancePoint:
    period: str
    score: float
    mentionRate: float
    mentions: int
    queries: int


@dataclass
class Coverage:
    totalAttempts: int = 0
    successfulAttempts: int = 0
    failedAttempts: int = 0
    coveragePercent: float = 0.0
    isPartial: bool = False


@dataclass
class DashboardMetrics:
    visibilityScore: float = 0.0
    mentionRate: float = 0.0
    avgRelevance: float = 0.0
    avgAccuracy: float = 0.0
    avgSentiment: float = 0.0
    avgOverall: float = 0.0
    totalQueries: int = 0
    keywordCount: int = 0
    phraseCount: int = 0
    modelPerformance: List[ModelPerformance] = field(default_factory=list)
    keywordPerformance: List[KeywordPerformance] = field(default_factory=list)
    topPhrases: List[PhrasePerformance] = field(default_factory=list)
    performanceData: List[PerformancePoint] = field(default_factory=list)
    coverage: Coverage = field(default_factory=Coverage)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# HELPERS
# =============================================================================

def is_success(observation) -> bool:
    return observation.status == QueryStatus.SUCCESS.value and observation.presence is not None


def _mean(values: Iterable[Optional[float]]) -> float:
    values = [v for v in values if v is not None]
    return sum(values) / len(values) if values else 0.0


def _round1(value: float) -> float:
    return round(value, 1)


def quality_index(averages: Dict[str, float]) -> float:
    """Mean of the quality averages mapped from the 1-5 scale to 0-100."""
    mapped = [max(0.0, min(100.0, (averages[d] - 1.0) / 4.0 * 100.0)) for d in QUALITY_DIMENSIONS]
    return sum(mapped) / len(mapped)


def visibility_score(mention_rate: float, averages: Dict[str, float]) -> float:
    """
    Composite 0-100 score, non-decreasing in mention rate and every average.

    With no scored rows every average is 0, which maps to a quality index of 0.
    """
    score = MENTION_WEIGHT * mention_rate + QUALITY_WEIGHT * quality_index(averages)
    return _round1(max(0.0, min(100.0, score)))


@dataclass
class _Rollup:
    """Counts and raw averages over a group of observations."""
    total: int
    successful: int
    mentions: int
    averages: Dict[str, float]

    @property
    def mention_rate(self) -> float:
        return 100.0 * self.mentions / self.successful if self.successful else 0.0

    @property
    def score(self) -> float:
        return visibility_score(self.mention_rate, self.averages)


def _rollup(observations: Sequence) -> _Rollup:
    scored = [o for o in observations if is_success(o)]
    return _Rollup(
        total=len(observations),
        successful=len(scored),
        mentions=sum(1 for o in scored if o.presence == 1),
        averages={d: _mean(getattr(o, d) for o in scored) for d in QUALITY_DIMENSIONS},
    )


# =============================================================================
# SECTIONS
# =============================================================================

def _model_performance(observations: Sequence) -> List[ModelPerformance]:
    by_model = defaultdict(list)
    for o in observations:
        by_model[o.model].append(o)

    rows = []
    for model in sorted(by_model):
        group = by_model[model]
        rollup = _rollup(group)
        scored = [o for o in group if is_success(o)]
        costs = [o.cost for o in scored if o.cost is not None]
        rows.append(ModelPerformance(
            model=model,
            totalQueries=rollup.total,
            successful=rollup.successful,
            failed=rollup.total - rollup.successful,
            mentions=rollup.mentions,
            mentionRate=_round1(rollup.mention_rate),
            score=rollup.score,
            avgRelevance=_round1(rollup.averages["relevance"]),
            avgAccuracy=_round1(rollup.averages["accuracy"]),
            avgSentiment=_round1(rollup.averages["sentiment"]),
            avgOverall=_round1(rollup.averages["overall"]),
            avgLatency=_round1(_mean(o.latency for o in scored)),
            avgCost=round(_mean(costs), 6),
            totalCost=round(sum(costs), 6),
        ))
    return rows


def _keyword_performance(
    observations: Sequence,
    keywords: Sequence,
    phrases: Sequence,
    market_data: Optional[Dict[str, Dict[str, Any]]],
) -> List[KeywordPerformance]:
    keyword_of_phrase = {p.id: p.keyword_id for p in phrases}
    by_keyword = defaultdict(list)
    for o in observations:
        keyword_id = keyword_of_phrase.get(o.phrase_id)
        if keyword_id is not None:
            by_keyword[keyword_id].append(o)

    market_data = market_data or {}
    rows = []
    for kw in keywords:
        rollup = _rollup(by_keyword.get(kw.id, []))
        market = market_data.get(kw.term, {})
        rows.append(KeywordPerformance(
            keywordId=kw.id,
            keyword=kw.term,
            visibility=rollup.score,
            mentions=rollup.mentions,
            queries=rollup.total,
            mentionRate=_round1(rollup.mention_rate),
            avgSentiment=_round1(rollup.averages["sentiment"]),
            avgOverall=_round1(rollup.averages["overall"]),
            volume=market.get("volume", getattr(kw, "volume", None)),
            difficulty=market.get("difficulty", getattr(kw, "difficulty", None)),
            cpc=market.get("cpc", getattr(kw, "cpc", None)),
        ))
    rows.sort(key=lambda r: (-r.visibility, r.keywordId))
    return rows


def _top_phrases(observations: Sequence, phrases: Sequence, rank_by: str) -> List[PhrasePerformance]:
    phrase_rows = {p.id: p for p in phrases}
    by_phrase = defaultdict(list)
    for o in observations:
        by_phrase[o.phrase_id].append(o)

    rows = []
    for phrase_id, group in by_phrase.items():
        rollup = _rollup(group)
        phrase = phrase_rows.get(phrase_id)
        rows.append(PhrasePerformance(
            phraseId=phrase_id,
            phrase=phrase.text if phrase is not None else None,
            keywordId=phrase.keyword_id if phrase is not None else None,
            count=rollup.total,
            mentions=rollup.mentions,
            avgScore=_round1(rollup.averages["overall"]),
        ))

    if rank_by == "mentions":
        rows.sort(key=lambda r: (-r.mentions, r.phraseId))
    else:
        rows.sort(key=lambda r: (-r.avgScore, r.phraseId))
    return rows[:TOP_PHRASES_LIMIT]


def _performance_data(history: Sequence) -> List[PerformancePoint]:
    by_month = defaultdict(list)
    for o in history:
        by_month[o.created_at.strftime("%Y-%m")].append(o)

    points = []
    for period in sorted(by_month):
        rollup = _rollup(by_month[period])
        points.append(PerformancePoint(
            period=period,
            score=rollup.score,
            mentionRate=_round1(rollup.mention_rate),
            mentions=rollup.mentions,
            queries=rollup.successful,
        ))
    return points


# =============================================================================
# ENTRY POINT
# =============================================================================

def aggregate_metrics(
    observations: Sequence,
    keywords: Sequence = (),
    phrases: Sequence = (),
    market_data: Optional[Dict[str, Dict[str, Any]]] = None,
    history: Optional[Sequence] = None,
    rank_by: str = "score",
) -> DashboardMetrics:
    """
    Aggregate observations of one domain version into dashboard metrics.

    Args:
        observations: Query results of the version (failed attempts included)
        keywords: Keyword rows (id, term, volume, difficulty, cpc)
        phrases: Phrase rows (id, keyword_id, text)
        market_data: Optional {term: {volume, difficulty, cpc}} overriding keyword rows
        history: Query results across the domain's runs for the monthly series;
            defaults to `observations`
        rank_by: "score" or "mentions" for topPhrases

    Returns:
        DashboardMetrics; the zero struct when there are no observations
    """
    if rank_by not in RANK_KEYS:
        raise ValueError(f"rank_by must be one of {RANK_KEYS}, got {rank_by!r}")

    observations = list(observations)
    metrics = DashboardMetrics(keywordCount=len(keywords), phraseCount=len(phrases))
    if not observations:
        return metrics

    rollup = _rollup(observations)
    failed = rollup.total - rollup.successful

    metrics.mentionRate = _round1(rollup.mention_rate)
    metrics.avgRelevance = _round1(rollup.averages["relevance"])
    metrics.avgAccuracy = _round1(rollup.averages["accuracy"])
    metrics.avgSentiment = _round1(rollup.averages["sentiment"])
    metrics.avgOverall = _round1(rollup.averages["overall"])
    metrics.visibilityScore = rollup.score
    metrics.totalQueries = rollup.total
    metrics.modelPerformance = _model_performance(observations)
    metrics.keywordPerformance = _keyword_performance(observations, keywords, phrases, market_data)
    metrics.topPhrases = _top_phrases(observations, phrases, rank_by)
    metrics.performanceData = _performance_data(history if history else observations)
    metrics.coverage = Coverage(
        totalAttempts=rollup.total,
        successfulAttempts=rollup.successful,
        failedAttempts=failed,
        coveragePercent=_round1(100.0 * rollup.successful / rollup.total),
        isPartial=failed > 0,
    )
    return metrics
