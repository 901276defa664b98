"""
Error taxonomy for the analysis engine.

Provider errors stay inside the query orchestrator (retried or turned into
failed attempts). Everything else is surfaced to callers and mapped to HTTP
status codes by the API layer.
"""

from typing import Any, List, Optional


class AnalysisError(Exception):
    """Base class for all engine errors."""


# =============================================================================
# PROVIDER ERRORS (handled inside the orchestrator)
# =============================================================================

class ProviderError(AnalysisError):
    """A query to an AI provider failed."""

    retryable = False

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Network error, timeout, rate limit or 5xx. Worth retrying."""

    retryable = True


class PermanentProviderError(ProviderError):
    """Auth or configuration error. The model is skipped for the rest of the batch."""


# =============================================================================
# SURFACED ERRORS
# =============================================================================

class DomainNotFound(AnalysisError):
    """No domain (or domain version) with the given id."""


class InvalidTransition(AnalysisError):
    """Pipeline step misuse: completed pipeline or out-of-order payload."""


class CacheMiss(AnalysisError):
    """No computed artifact exists yet for the domain."""


class ConcurrencyConflict(AnalysisError):
    """Lost a write race. Callers re-issue the request as a plain read."""

    retryable = True


class AnalysisFailed(AnalysisError):
    """No metrics artifact could be produced (every query attempt failed)."""


class BatchTimeout(AnalysisError):
    """The batch as a whole exceeded its deadline."""

    def __init__(
        self,
        message: str,
        completed: Optional[List[Any]] = None,
        pending: int = 0,
        batch_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.batch_id = batch_id
        self.completed = completed or []
        self.pending = pending


class ScoringError(AnalysisError):
    """A raw response could not be scored. Recorded as a failed attempt."""


class InvalidPayload(AnalysisError):
    """A stage payload references data that does not exist."""
