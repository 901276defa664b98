"""
SQLAlchemy Models for the AI Visibility Engine

Design Principles:
1. Domains are immutable, re-analysis creates a new DomainVersion
2. Raw per-query observations are append-only
3. Computed artifacts are cached one row per domain
4. Onboarding progress is keyed on (domain, version)

JSON blobs use JSONB on PostgreSQL and plain JSON elsewhere (SQLite in
local development and tests).
"""

import enum
from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text,
    ForeignKey, Index, UniqueConstraint, CheckConstraint, JSON,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")


def domain_fk():
    """Foreign key to domains with restrict-on-delete, cascade-on-update."""
    return ForeignKey("domains.id", ondelete="RESTRICT", onupdate="CASCADE")


def version_fk():
    return ForeignKey("domain_versions.id", ondelete="RESTRICT", onupdate="CASCADE")


# =============================================================================
# ENUMS
# =============================================================================

class QueryStatus(enum.Enum):
    """Outcome of a single (phrase, model) query attempt"""
    SUCCESS = "success"
    FAILED = "failed"


class CompetitorType(enum.Enum):
    """Kind of suggested competitor"""
    DIRECT = "direct"
    INDIRECT = "indirect"
    EMERGING = "emerging"


# =============================================================================
# CORE TABLES
# =============================================================================

class Domain(Base):
    """Domains being analyzed"""
    __tablename__ = "domains"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(String(255), nullable=False)

    # Business context captured at submission
    context = Column(Text)
    location = Column(String(100))
    industry = Column(String(100))

    current_version_id = Column(Integer)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    versions = relationship("DomainVersion", back_populates="domain", order_by="DomainVersion.version")

    __table_args__ = (
        UniqueConstraint("url", name="uq_domain_url"),
    )


class DomainVersion(Base):
    """Re-analysis snapshot of a domain. Newer versions supersede older ones."""
    __tablename__ = "domain_versions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain_id = Column(Integer, domain_fk(), nullable=False)
    version = Column(Integer, nullable=False)
    name = Column(String(255))

    created_at = Column(DateTime, default=datetime.utcnow)

    domain = relationship("Domain", back_populates="versions")

    __table_args__ = (
        UniqueConstraint("domain_id", "version", name="uq_domain_version"),
        Index("idx_domain_version_domain", "domain_id"),
    )


class CrawlResult(Base):
    """Output of the external extraction step for a domain version"""
    __tablename__ = "crawl_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain_id = Column(Integer, domain_fk(), nullable=False)
    domain_version_id = Column(Integer, version_fk(), nullable=False)

    extracted_context = Column(Text)
    pages_scanned = Column(Integer, default=0)
    token_usage = Column(Integer, default=0)
    analyzed_urls = Column(JSONType, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_crawl_domain_version", "domain_id", "domain_version_id"),
    )


# =============================================================================
# DISCOVERY TABLES
# =============================================================================

class Keyword(Base):
    """Keywords discovered for a domain version, with optional market data"""
    __tablename__ = "keywords"

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain_id = Column(Integer, domain_fk(), nullable=False)
    domain_version_id = Column(Integer, version_fk(), nullable=False)

    term = Column(String(500), nullable=False)
    volume = Column(Integer)
    difficulty = Column(Float)
    cpc = Column(Float)
    is_selected = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    phrases = relationship("Phrase", back_populates="keyword")

    __table_args__ = (
        Index("idx_keyword_domain_version", "domain_id", "domain_version_id"),
    )


class Phrase(Base):
    """Natural-language queries derived from a keyword"""
    __tablename__ = "phrases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    keyword_id = Column(
        Integer, ForeignKey("keywords.id", ondelete="RESTRICT", onupdate="CASCADE"), nullable=False
    )
    domain_id = Column(Integer, domain_fk(), nullable=False)
    domain_version_id = Column(Integer, version_fk(), nullable=False)

    text = Column(Text, nullable=False)
    is_selected = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    keyword = relationship("Keyword", back_populates="phrases")

    __table_args__ = (
        Index("idx_phrase_domain_version", "domain_id", "domain_version_id"),
        Index("idx_phrase_keyword", "keyword_id"),
    )


# =============================================================================
# RAW OBSERVATIONS
# =============================================================================

class AIQueryResult(Base):
    """
    One row per (phrase, model) query attempt.

    Failed attempts keep their error and leave every score column NULL.
    """
    __tablename__ = "ai_query_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phrase_id = Column(
        Integer, ForeignKey("phrases.id", ondelete="RESTRICT", onupdate="CASCADE"), nullable=False
    )
    domain_version_id = Column(Integer, version_fk(), nullable=False)
    batch_id = Column(String(36), nullable=False)

    model = Column(String(100), nullable=False)
    response = Column(Text)
    latency = Column(Float)  # milliseconds
    cost = Column(Float)     # USD

    status = Column(String(20), nullable=False, default=QueryStatus.SUCCESS.value)
    error_type = Column(String(50))
    error_message = Column(Text)
    attempts = Column(Integer, default=1)

    # Scores (presence 0/1, others 1-5)
    presence = Column(Integer)
    relevance = Column(Float)
    accuracy = Column(Float)
    sentiment = Column(Float)
    overall = Column(Float)

    created_at = Column(DateTime, default=datetime.utcnow)

    phrase = relationship("Phrase")

    __table_args__ = (
        Index("idx_query_result_version", "domain_version_id"),
        Index("idx_query_result_phrase", "phrase_id"),
        CheckConstraint("presence IS NULL OR presence IN (0, 1)", name="ck_presence_binary"),
    )


# =============================================================================
# PIPELINE PROGRESS
# =============================================================================

class OnboardingProgress(Base):
    """Pipeline position per (domain, version). Mutated only by the state machine."""
    __tablename__ = "onboarding_progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain_id = Column(Integer, domain_fk(), nullable=False)
    domain_version_id = Column(Integer, version_fk(), nullable=False)

    current_step = Column(Integer, nullable=False, default=0)
    is_completed = Column(Boolean, nullable=False, default=False)
    step_data = Column(JSONType, default=dict)

    first_analysis_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("domain_id", "domain_version_id", name="uq_onboarding_domain_version"),
    )


# =============================================================================
# CACHED ARTIFACTS
# =============================================================================

class DashboardAnalysis(Base):
    """Computed dashboard artifact, one row per domain"""
    __tablename__ = "dashboard_analyses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain_id = Column(Integer, domain_fk(), nullable=False)
    domain_version_id = Column(Integer, version_fk(), nullable=False)

    metrics = Column(JSONType, nullable=False)
    insights = Column(JSONType, nullable=False)
    industry_analysis = Column(JSONType, nullable=False)
    is_partial = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("domain_id", name="uq_dashboard_domain"),
    )


class CompetitorAnalysis(Base):
    """Computed competitor landscape, one row per domain"""
    __tablename__ = "competitor_analyses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain_id = Column(Integer, domain_fk(), nullable=False)

    competitors = Column(JSONType, nullable=False)
    market_insights = Column(JSONType, nullable=False)
    strategic_recommendations = Column(JSONType, nullable=False)
    competitive_analysis = Column(JSONType, nullable=False)

    # Input the computation was keyed on
    competitor_list = Column(Text, nullable=False, default="")
    list_fingerprint = Column(String(64), nullable=False)
    revision = Column(Integer, nullable=False, default=1)
    token_usage = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("domain_id", name="uq_competitor_analysis_domain"),
        Index("idx_competitor_analysis_domain", "domain_id"),
    )


class SuggestedCompetitor(Base):
    """Independently cached competitor suggestions for a domain"""
    __tablename__ = "suggested_competitors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain_id = Column(Integer, domain_fk(), nullable=False)

    name = Column(String(255), nullable=False)
    competitor_domain = Column(String(255))
    reason = Column(Text)
    type = Column(String(20), default=CompetitorType.DIRECT.value)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_suggested_competitor_domain", "domain_id"),
    )
