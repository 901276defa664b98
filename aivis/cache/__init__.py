"""
Artifact Cache

Dashboard, competitor and suggestion artifacts cached in the database,
one row per domain, computed at most once concurrently per domain.

Usage:
    from aivis.cache import AnalysisCacheManager

    manager = AnalysisCacheManager(db, analyzer)
    artifact = await manager.get_or_compute(domain_id)
"""

from .config import CacheTTL
from .manager import (
    AnalysisCacheManager,
    DashboardArtifact,
    competitor_list_array,
    domain_locks,
    list_fingerprint,
    normalize_competitors,
)

__all__ = [
    "CacheTTL",
    "AnalysisCacheManager",
    "DashboardArtifact",
    "competitor_list_array",
    "domain_locks",
    "list_fingerprint",
    "normalize_competitors",
]
