"""
Database Layer

Usage:
    from aivis.database import init_db, get_db, get_db_context, Domain

    init_db()
    with get_db_context() as db:
        domain, version = create_domain(db, "example.com")
"""

from .models import (
    Base,
    Domain,
    DomainVersion,
    CrawlResult,
    Keyword,
    Phrase,
    AIQueryResult,
    OnboardingProgress,
    DashboardAnalysis,
    CompetitorAnalysis,
    SuggestedCompetitor,
    QueryStatus,
    CompetitorType,
)
from .session import (
    get_engine,
    configure_engine,
    get_db,
    get_db_context,
    init_db,
    check_db_connection,
)
from .repository import (
    get_domain,
    create_domain,
    create_domain_version,
    get_version,
    get_latest_version,
    get_latest_queried_version,
    store_crawl_result,
    get_crawl_result,
    store_keywords,
    store_phrases,
    get_keywords,
    get_phrases,
    store_query_results,
    get_query_results,
    get_domain_history,
    latest_per_pair,
    list_domain_summaries,
)

__all__ = [
    "Base", "Domain", "DomainVersion", "CrawlResult", "Keyword", "Phrase",
    "AIQueryResult", "OnboardingProgress", "DashboardAnalysis",
    "CompetitorAnalysis", "SuggestedCompetitor", "QueryStatus", "CompetitorType",
    "get_engine", "configure_engine", "get_db", "get_db_context", "init_db",
    "check_db_connection",
    "get_domain", "create_domain", "create_domain_version", "get_version",
    "get_latest_version", "get_latest_queried_version", "store_crawl_result",
    "get_crawl_result", "store_keywords", "store_phrases", "get_keywords",
    "get_phrases", "store_query_results", "get_query_results", "get_domain_history",
    "latest_per_pair", "list_domain_summaries",
]
