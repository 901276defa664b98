"""
API Endpoints for Domain Management

Handles:
1. Create domain (with its first version)
2. Get single domain details with its versions
3. Create a new version for re-analysis
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from aivis.database import repository
from aivis.database.models import Domain, DomainVersion
from aivis.database.session import get_db
from aivis.services.analysis import AnalysisPipeline

from api.dependencies import get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/domains", tags=["Domains"])


# =============================================================================
# MODELS
# =============================================================================

class VersionResponse(BaseModel):
    id: int
    version: int
    name: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DomainResponse(BaseModel):
    """Single domain response."""
    id: int
    url: str
    context: Optional[str] = None
    location: Optional[str] = None
    industry: Optional[str] = None
    current_version_id: Optional[int] = None
    created_at: Optional[datetime] = None
    versions: List[VersionResponse] = []


class CreateDomainRequest(BaseModel):
    url: str = Field(..., min_length=3, max_length=255)
    context: Optional[str] = None
    location: Optional[str] = None
    industry: Optional[str] = None


class CreateVersionRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)


def domain_to_response(domain: Domain, versions: List[DomainVersion]) -> DomainResponse:
    return DomainResponse(
        id=domain.id,
        url=domain.url,
        context=domain.context,
        location=domain.location,
        industry=domain.industry,
        current_version_id=domain.current_version_id,
        created_at=domain.created_at,
        versions=[VersionResponse.model_validate(v) for v in versions],
    )


def _versions(db: Session, domain_id: int) -> List[DomainVersion]:
    return (
        db.query(DomainVersion)
        .filter(DomainVersion.domain_id == domain_id)
        .order_by(DomainVersion.version)
        .all()
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=DomainResponse, status_code=201)
async def create_domain(
    request: CreateDomainRequest,
    db: Session = Depends(get_db),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """Create a domain (or return the existing one for the URL)."""
    version = pipeline.create_domain(request.url, request.context, request.location, request.industry)
    domain = repository.get_domain(db, version.domain_id)
    return domain_to_response(domain, _versions(db, domain.id))


@router.get("/{domain_id}", response_model=DomainResponse)
async def get_domain(domain_id: int, db: Session = Depends(get_db)):
    domain = repository.get_domain(db, domain_id)
    return domain_to_response(domain, _versions(db, domain_id))


@router.post("/{domain_id}/versions", response_model=VersionResponse, status_code=201)
async def create_version(
    domain_id: int,
    request: CreateVersionRequest,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """Start a new analysis version; the previous artifact is served as stale until it completes."""
    version = pipeline.create_version(domain_id, request.name)
    logger.info(f"Domain {domain_id}: created version {version.version}")
    return VersionResponse.model_validate(version)
