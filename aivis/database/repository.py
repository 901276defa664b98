"""
Repository Layer - Clean Interface for Data Operations

Provides simple functions to store and retrieve data.
Every function takes the caller's session and only flushes; the caller owns
the transaction (commit/rollback).
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from aivis.errors import DomainNotFound, InvalidPayload
from .models import (
    Domain, DomainVersion, CrawlResult, Keyword, Phrase, AIQueryResult,
    DashboardAnalysis, QueryStatus,
)

logger = logging.getLogger(__name__)


# =============================================================================
# DOMAINS & VERSIONS
# =============================================================================

def get_domain(db: Session, domain_id: int) -> Domain:
    """Get a domain or raise DomainNotFound."""
    domain = db.get(Domain, domain_id)
    if domain is None:
        raise DomainNotFound(f"Domain {domain_id} not found")
    return domain


def create_domain(
    db: Session,
    url: str,
    context: Optional[str] = None,
    location: Optional[str] = None,
    industry: Optional[str] = None,
) -> Tuple[Domain, DomainVersion]:
    """
    Find or create a domain by URL, together with its first version.

    Returns:
        (domain, current version)
    """
    domain = db.query(Domain).filter(Domain.url == url).first()
    if domain:
        return domain, get_latest_version(db, domain.id)

    domain = Domain(url=url, context=context, location=location, industry=industry)
    db.add(domain)
    db.flush()

    version = DomainVersion(domain_id=domain.id, version=1, name="Version 1")
    db.add(version)
    db.flush()

    domain.current_version_id = version.id
    db.flush()
    logger.info(f"Created domain {url} (id={domain.id}, version_id={version.id})")
    return domain, version


def create_domain_version(db: Session, domain_id: int, name: Optional[str] = None) -> DomainVersion:
    """Create the next version of a domain and make it current."""
    domain = get_domain(db, domain_id)
    latest = (
        db.query(func.max(DomainVersion.version))
        .filter(DomainVersion.domain_id == domain_id)
        .scalar()
    ) or 0

    version = DomainVersion(
        domain_id=domain_id,
        version=latest + 1,
        name=name or f"Version {latest + 1}",
    )
    db.add(version)
    db.flush()

    domain.current_version_id = version.id
    db.flush()
    logger.info(f"Created version {version.version} for domain {domain_id}")
    return version


def get_version(db: Session, domain_id: int, version_id: int) -> DomainVersion:
    """Get a version that belongs to the domain, or raise DomainNotFound."""
    version = db.get(DomainVersion, version_id)
    if version is None or version.domain_id != domain_id:
        raise DomainNotFound(f"Version {version_id} not found for domain {domain_id}")
    return version


def get_latest_version(db: Session, domain_id: int) -> Optional[DomainVersion]:
    return (
        db.query(DomainVersion)
        .filter(DomainVersion.domain_id == domain_id)
        .order_by(DomainVersion.version.desc())
        .first()
    )


def get_latest_queried_version(db: Session, domain_id: int) -> Optional[DomainVersion]:
    """Newest version of the domain that has at least one query result."""
    return (
        db.query(DomainVersion)
        .join(AIQueryResult, AIQueryResult.domain_version_id == DomainVersion.id)
        .filter(DomainVersion.domain_id == domain_id)
        .order_by(DomainVersion.version.desc())
        .first()
    )


# =============================================================================
# STAGE OUTPUTS
# =============================================================================

def store_crawl_result(
    db: Session,
    domain_id: int,
    version_id: int,
    extracted_context: Optional[str],
    pages_scanned: int = 0,
    token_usage: int = 0,
    analyzed_urls: Optional[List[str]] = None,
) -> CrawlResult:
    crawl = CrawlResult(
        domain_id=domain_id,
        domain_version_id=version_id,
        extracted_context=extracted_context,
        pages_scanned=pages_scanned,
        token_usage=token_usage,
        analyzed_urls=analyzed_urls or [],
    )
    db.add(crawl)
    db.flush()
    return crawl


def get_crawl_result(db: Session, version_id: int) -> Optional[CrawlResult]:
    return (
        db.query(CrawlResult)
        .filter(CrawlResult.domain_version_id == version_id)
        .order_by(CrawlResult.id.desc())
        .first()
    )


def store_keywords(
    db: Session,
    domain_id: int,
    version_id: int,
    keywords: Iterable[Dict[str, Any]],
) -> List[Keyword]:
    """
    Store discovered keywords for a version.

    Each keyword dict has `term` and optional `volume`, `difficulty`, `cpc`
    and `is_selected`. A term already stored for the version is updated in
    place (re-submission after a rewind).
    """
    existing = {kw.term: kw for kw in get_keywords(db, version_id)}
    rows = []
    for kw in keywords:
        row = existing.get(kw["term"])
        if row is not None:
            row.volume = kw.get("volume")
            row.difficulty = kw.get("difficulty")
            row.cpc = kw.get("cpc")
            row.is_selected = kw.get("is_selected", True)
            rows.append(row)
            continue
        row = Keyword(
            domain_id=domain_id,
            domain_version_id=version_id,
            term=kw["term"],
            volume=kw.get("volume"),
            difficulty=kw.get("difficulty"),
            cpc=kw.get("cpc"),
            is_selected=kw.get("is_selected", True),
        )
        db.add(row)
        rows.append(row)
    db.flush()
    logger.info(f"Stored {len(rows)} keywords for version {version_id}")
    return rows


def store_phrases(
    db: Session,
    domain_id: int,
    version_id: int,
    phrases: Iterable[Dict[str, Any]],
) -> List[Phrase]:
    """
    Store generated phrases, each attached to a keyword of the same version.

    Each phrase dict has `keyword` (term), `text` and optional `is_selected`.
    An identical phrase already stored for the keyword only has its
    selection updated. Raises InvalidPayload when the keyword is unknown.
    """
    by_term = {kw.term: kw for kw in get_keywords(db, version_id)}
    existing = {(p.keyword_id, p.text): p for p in get_phrases(db, version_id)}
    rows = []
    for item in phrases:
        keyword = by_term.get(item["keyword"])
        if keyword is None:
            raise InvalidPayload(f"Unknown keyword for version {version_id}: {item['keyword']!r}")
        row = existing.get((keyword.id, item["text"]))
        if row is not None:
            row.is_selected = item.get("is_selected", True)
            rows.append(row)
            continue
        row = Phrase(
            keyword_id=keyword.id,
            domain_id=domain_id,
            domain_version_id=version_id,
            text=item["text"],
            is_selected=item.get("is_selected", True),
        )
        db.add(row)
        rows.append(row)
    db.flush()
    logger.info(f"Stored {len(rows)} phrases for version {version_id}")
    return rows


def get_keywords(db: Session, version_id: int) -> List[Keyword]:
    return (
        db.query(Keyword)
        .filter(Keyword.domain_version_id == version_id)
        .order_by(Keyword.id)
        .all()
    )


def get_phrases(db: Session, version_id: int, selected_only: bool = False) -> List[Phrase]:
    query = db.query(Phrase).filter(Phrase.domain_version_id == version_id)
    if selected_only:
        query = query.filter(Phrase.is_selected.is_(True))
    return query.order_by(Phrase.id).all()


# =============================================================================
# QUERY RESULTS
# =============================================================================

def store_query_results(db: Session, version_id: int, batch_id: str, observations) -> int:
    """
    Append one AIQueryResult row per observation.

    Observations come from the query orchestrator; failed ones carry no scores.
    """
    count = 0
    for obs in observations:
        scores = obs.scores
        db.add(AIQueryResult(
            phrase_id=obs.phrase_id,
            domain_version_id=version_id,
            batch_id=batch_id,
            model=obs.model,
            response=obs.response,
            latency=obs.latency_ms,
            cost=obs.cost,
            status=QueryStatus.SUCCESS.value if obs.succeeded else QueryStatus.FAILED.value,
            error_type=obs.error_type,
            error_message=obs.error_message,
            attempts=obs.attempts,
            presence=scores.presence if scores else None,
            relevance=scores.relevance if scores else None,
            accuracy=scores.accuracy if scores else None,
            sentiment=scores.sentiment if scores else None,
            overall=scores.overall if scores else None,
        ))
        count += 1
    db.flush()
    logger.info(f"Stored {count} query results for version {version_id} (batch {batch_id})")
    return count


def latest_per_pair(results: Iterable[AIQueryResult]) -> List[AIQueryResult]:
    """
    Keep the newest row for each (version, phrase, model).

    A re-run batch (after a failure, a timeout or a rewind) supersedes the
    rows an earlier batch stored for the same pair.
    """
    newest: Dict[Tuple[int, int, str], AIQueryResult] = {}
    for row in results:
        key = (row.domain_version_id, row.phrase_id, row.model)
        current = newest.get(key)
        if current is None or row.id > current.id:
            newest[key] = row
    return list(newest.values())


def get_query_results(db: Session, version_id: int, latest_only: bool = True) -> List[AIQueryResult]:
    """
    Query results of a version, ordered by phrase and model.

    Args:
        latest_only: Drop rows superseded by a later batch for the same pair
    """
    rows = (
        db.query(AIQueryResult)
        .filter(AIQueryResult.domain_version_id == version_id)
        .order_by(AIQueryResult.phrase_id, AIQueryResult.model, AIQueryResult.id)
        .all()
    )
    if not latest_only:
        return rows
    return sorted(latest_per_pair(rows), key=lambda r: (r.phrase_id, r.model))


def get_domain_history(db: Session, domain_id: int, up_to_version: Optional[int] = None) -> List[AIQueryResult]:
    """
    Query results across every version of a domain, oldest first.

    Only the newest row per (version, phrase, model) is kept.

    Args:
        up_to_version: Only include versions with this version number or lower
    """
    query = (
        db.query(AIQueryResult)
        .join(DomainVersion, AIQueryResult.domain_version_id == DomainVersion.id)
        .filter(DomainVersion.domain_id == domain_id)
    )
    if up_to_version is not None:
        query = query.filter(DomainVersion.version <= up_to_version)
    rows = latest_per_pair(query.all())
    return sorted(rows, key=lambda r: (r.created_at, r.id))


# =============================================================================
# LISTINGS
# =============================================================================

def list_domain_summaries(db: Session) -> List[Dict[str, Any]]:
    """
    Every domain with its cached dashboard row, newest activity first.

    Reads stored rows only; nothing is computed. Keyword counts are for the
    current version.
    """
    keyword_counts = dict(
        db.query(Keyword.domain_version_id, func.count(Keyword.id))
        .group_by(Keyword.domain_version_id)
        .all()
    )
    crawl_counts = dict(
        db.query(CrawlResult.domain_id, func.count(CrawlResult.id))
        .group_by(CrawlResult.domain_id)
        .all()
    )
    dashboards = {row.domain_id: row for row in db.query(DashboardAnalysis).all()}

    summaries = []
    for domain in db.query(Domain).order_by(Domain.updated_at.desc(), Domain.id.desc()).all():
        dashboard = dashboards.get(domain.id)
        last_analyzed = (dashboard.updated_at or dashboard.created_at) if dashboard else domain.updated_at
        summaries.append({
            "domain": domain,
            "dashboard": dashboard,
            "last_analyzed": last_analyzed,
            "keyword_count": keyword_counts.get(domain.current_version_id, 0),
            "crawl_count": crawl_counts.get(domain.id, 0),
        })
    summaries.sort(key=lambda s: (s["last_analyzed"] is not None, s["last_analyzed"]), reverse=True)
    return summaries
