"""
AI Query Orchestrator

Fans a batch of phrases out across models, one query per (phrase, model)
pair, and collects raw observations with latency, cost and error status.

- Global and per-model semaphores bound concurrency
- Every call has its own timeout; the batch has an overall deadline
- Transient failures are retried with exponential backoff
- A permanent failure opens the circuit for that model: its remaining
  pairs are recorded as failed without being sent
- A failure never aborts the batch; the result reports partial coverage
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set

from aivis.database.models import QueryStatus
from aivis.errors import (
    BatchTimeout, PermanentProviderError, ScoringError, TransientProviderError,
)
from aivis.utils.config import Settings, get_settings
from .providers import ProviderRegistry, ProviderResponse
from .scoring import ResponseScorer, ResponseScores

logger = logging.getLogger(__name__)


@dataclass
class PhraseQuery:
    """A phrase to send to every model."""
    id: int
    text: str
    keyword_id: Optional[int] = None


@dataclass
class OrchestratorConfig:
    """Limits for a batch run."""
    max_concurrency: int = 10
    per_model_concurrency: int = 3
    query_timeout: float = 60.0
    batch_timeout: float = 900.0
    max_attempts: int = 2
    initial_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "OrchestratorConfig":
        settings = settings or get_settings()
        return cls(
            max_concurrency=settings.MAX_CONCURRENT_QUERIES,
            per_model_concurrency=settings.PER_MODEL_CONCURRENCY,
            query_timeout=settings.QUERY_TIMEOUT,
            batch_timeout=settings.BATCH_TIMEOUT,
            max_attempts=settings.QUERY_MAX_ATTEMPTS,
            initial_delay=settings.RETRY_INITIAL_DELAY,
        )


@dataclass
class QueryObservation:
    """Outcome of one (phrase, model) pair."""
    phrase_id: int
    model: str
    status: str = QueryStatus.SUCCESS.value
    response: Optional[str] = None
    latency_ms: Optional[float] = None
    cost: Optional[float] = None
    attempts: int = 0
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    scores: Optional[ResponseScores] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def succeeded(self) -> bool:
        return self.status == QueryStatus.SUCCESS.value

    # Same attribute names as stored AIQueryResult rows
    @property
    def latency(self) -> Optional[float]:
        return self.latency_ms

    @property
    def presence(self) -> Optional[int]:
        return self.scores.presence if self.scores else None

    @property
    def relevance(self) -> Optional[float]:
        return self.scores.relevance if self.scores else None

    @property
    def accuracy(self) -> Optional[float]:
        return self.scores.accuracy if self.scores else None

    @property
    def sentiment(self) -> Optional[float]:
        return self.scores.sentiment if self.scores else None

    @property
    def overall(self) -> Optional[float]:
        return self.scores.overall if self.scores else None


@dataclass
class BatchResult:
    """Observations of a batch plus coverage bookkeeping."""
    batch_id: str
    domain_version_id: int
    models: List[str]
    observations: List[QueryObservation] = field(default_factory=list)
    circuit_open_models: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def total(self) -> int:
        return len(self.observations)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.observations if o.succeeded)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def is_partial(self) -> bool:
        return self.failed > 0

    def to_dict(self) -> Dict:
        return {
            "batchId": self.batch_id,
            "domainVersionId": self.domain_version_id,
            "models": self.models,
            "totalAttempts": self.total,
            "successfulAttempts": self.succeeded,
            "failedAttempts": self.failed,
            "circuitOpenModels": self.circuit_open_models,
            "isPartial": self.is_partial,
            "durationSeconds": round(self.duration_seconds, 2),
        }


class QueryOrchestrator:
    """
    Runs query batches against a provider registry.

    Usage:
        orchestrator = QueryOrchestrator(registry, scorer)
        result = await orchestrator.run_batch(version_id, phrases, ["openai:gpt-4o-mini"], "example.com")
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        scorer: ResponseScorer,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.registry = registry
        self.scorer = scorer
        self.config = config or OrchestratorConfig.from_settings()

    async def run_batch(
        self,
        domain_version_id: int,
        phrases: Sequence[PhraseQuery],
        models: Sequence[str],
        domain: str = "",
    ) -> BatchResult:
        """
        Query every (phrase, model) pair.

        Returns:
            BatchResult with one observation per pair, sorted by (phrase id, model)

        Raises:
            BatchTimeout: the batch deadline passed; carries finished observations
        """
        start = datetime.utcnow()
        batch_id = str(uuid.uuid4())
        config = self.config

        global_semaphore = asyncio.Semaphore(config.max_concurrency)
        model_semaphores = {m: asyncio.Semaphore(config.per_model_concurrency) for m in models}
        open_circuits: Set[str] = set()
        observations: List[QueryObservation] = []

        async def run_pair(phrase: PhraseQuery, model: str) -> None:
            async with model_semaphores[model]:
                async with global_semaphore:
                    observation = await self._query_pair(phrase, model, domain, open_circuits)
            observations.append(observation)

        pairs = [(p, m) for p in phrases for m in models]
        logger.info(
            f"Batch {batch_id}: {len(pairs)} queries "
            f"({len(phrases)} phrases x {len(models)} models) for version {domain_version_id}"
        )

        try:
            await asyncio.wait_for(
                asyncio.gather(*(run_pair(p, m) for p, m in pairs)),
                timeout=config.batch_timeout,
            )
        except asyncio.TimeoutError:
            finished = _sorted(observations)
            logger.error(
                f"Batch {batch_id} timed out after {config.batch_timeout}s "
                f"({len(finished)}/{len(pairs)} finished)"
            )
            raise BatchTimeout(
                f"Batch {batch_id} exceeded {config.batch_timeout}s",
                completed=finished,
                pending=len(pairs) - len(finished),
                batch_id=batch_id,
            )

        result = BatchResult(
            batch_id=batch_id,
            domain_version_id=domain_version_id,
            models=list(models),
            observations=_sorted(observations),
            circuit_open_models=sorted(open_circuits),
            duration_seconds=(datetime.utcnow() - start).total_seconds(),
        )
        logger.info(
            f"Batch {batch_id} complete: {result.succeeded}/{result.total} succeeded"
            + (f", circuit open for {result.circuit_open_models}" if open_circuits else "")
        )
        return result

    async def _query_pair(
        self,
        phrase: PhraseQuery,
        model: str,
        domain: str,
        open_circuits: Set[str],
    ) -> QueryObservation:
        """Query one pair with bounded retries, then score it."""
        config = self.config
        observation = QueryObservation(phrase_id=phrase.id, model=model)
        response: Optional[ProviderResponse] = None

        for attempt in range(1, config.max_attempts + 1):
            if model in open_circuits:
                return _failed(observation, "CircuitOpen", f"Circuit open for {model}")

            observation.attempts = attempt
            try:
                response = await asyncio.wait_for(
                    self.registry.query(model, phrase.text),
                    timeout=config.query_timeout,
                )
                break
            except asyncio.TimeoutError:
                error = TransientProviderError(f"Query timed out after {config.query_timeout}s")
            except TransientProviderError as e:
                error = e
            except PermanentProviderError as e:
                if model not in open_circuits:
                    logger.warning(f"Opening circuit for {model}: {e}")
                open_circuits.add(model)
                return _failed(observation, type(e).__name__, str(e))
            except Exception as e:
                logger.exception(f"Unexpected error from {model} on phrase {phrase.id}")
                return _failed(observation, type(e).__name__, str(e))

            if attempt < config.max_attempts:
                delay = min(
                    config.initial_delay * (config.exponential_base ** (attempt - 1)),
                    config.max_delay,
                )
                logger.debug(f"Transient failure for {model} on phrase {phrase.id}, retry in {delay:.1f}s: {error}")
                await asyncio.sleep(delay)
            else:
                logger.warning(f"Giving up on {model} for phrase {phrase.id} after {attempt} attempts: {error}")
                return _failed(observation, type(error).__name__, str(error))

        observation.response = response.response
        observation.latency_ms = response.latency_ms
        observation.cost = response.cost

        try:
            observation.scores = await self.scorer.score(phrase.text, response.response, domain)
        except ScoringError as e:
            logger.warning(f"Scoring failed for {model} on phrase {phrase.id}: {e}")
            return _failed(observation, "ScoringError", str(e))
        except Exception as e:
            logger.exception(f"Scorer crashed for {model} on phrase {phrase.id}")
            return _failed(observation, "ScoringError", f"{type(e).__name__}: {e}")

        return observation


def _failed(observation: QueryObservation, error_type: str, message: str) -> QueryObservation:
    observation.status = QueryStatus.FAILED.value
    observation.error_type = error_type
    observation.error_message = message
    observation.scores = None
    return observation


def _sorted(observations: List[QueryObservation]) -> List[QueryObservation]:
    return sorted(observations, key=lambda o: (o.phrase_id, o.model))
