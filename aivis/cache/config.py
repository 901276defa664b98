"""
Cache Configuration

Artifacts live in PostgreSQL (dashboard_analyses, competitor_analyses,
suggested_competitors) and stay valid until a new version, an explicit
reanalysis or a competitor-list edit replaces them. The TTLs here only
drive HTTP Cache-Control headers.
"""

from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class CacheTTL:
    """Cache TTL configuration by artifact type."""

    # Dashboard artifact (stable until the next terminal transition)
    DASHBOARD: timedelta = timedelta(minutes=30)

    # Competitor data (user edits replace it)
    COMPETITORS: timedelta = timedelta(minutes=5)
    SUGGESTED_COMPETITORS: timedelta = timedelta(hours=12)

    # Pipeline progress (polled while onboarding)
    ONBOARDING: timedelta = timedelta(seconds=0)

    @classmethod
    def for_endpoint(cls, endpoint: str) -> timedelta:
        """Get TTL for an endpoint name."""
        mapping = {
            "dashboard": cls.DASHBOARD,
            "competitors": cls.COMPETITORS,
            "suggested-competitors": cls.SUGGESTED_COMPETITORS,
            "onboarding": cls.ONBOARDING,
        }
        return mapping.get(endpoint, cls.ONBOARDING)

    @classmethod
    def cache_control(cls, endpoint: str) -> str:
        """Cache-Control header value for an endpoint."""
        seconds = int(cls.for_endpoint(endpoint).total_seconds())
        if seconds <= 0:
            return "no-store"
        return f"private, max-age={seconds}"
