"""
AI Visibility Engine API

FastAPI application wiring the routers and mapping engine errors to HTTP
status codes:

    InvalidTransition     409
    ConcurrencyConflict   409 (retry as a plain read)
    CacheMiss             404
    DomainNotFound        404
    InvalidPayload        422
    AnalysisFailed        502
    BatchTimeout          504
"""

import logging
import sys
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from aivis import __version__
from aivis.database import check_db_connection, init_db
from aivis.errors import (
    AnalysisError, AnalysisFailed, BatchTimeout, CacheMiss, ConcurrencyConflict,
    DomainNotFound, InvalidPayload, InvalidTransition,
)
from aivis.utils.config import get_settings

from api import cache, dashboard, domains, onboarding

# Configure logging to stdout
logging.basicConfig(
    level=getattr(logging, get_settings().LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

app = FastAPI(
    title="AI Visibility Engine",
    description="Domain visibility analysis across AI language models",
    version=__version__,
)

app.include_router(domains.router)
app.include_router(onboarding.router)
app.include_router(dashboard.router)
app.include_router(cache.router)


# ============================================================================
# STARTUP - Initialize Database
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize database on startup."""
    logger.info("Initializing database...")
    init_db()
    if check_db_connection():
        logger.info("Database connection verified")
    else:
        logger.warning("Database connection check failed - continuing anyway")


# ============================================================================
# ERROR MAPPING
# ============================================================================

ERROR_STATUS = {
    InvalidTransition: 409,
    ConcurrencyConflict: 409,
    CacheMiss: 404,
    DomainNotFound: 404,
    InvalidPayload: 422,
    AnalysisFailed: 502,
    BatchTimeout: 504,
}


@app.exception_handler(AnalysisError)
async def analysis_error_handler(request: Request, exc: AnalysisError):
    status_code = 500
    for error_class, code in ERROR_STATUS.items():
        if isinstance(exc, error_class):
            status_code = code
            break

    body = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, ConcurrencyConflict):
        body["retryable"] = True
    if isinstance(exc, BatchTimeout):
        body["completed"] = len(exc.completed)
        body["pending"] = exc.pending

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content=body)


# ============================================================================
# HEALTH
# ============================================================================

@app.get("/")
async def root():
    return {"status": "ok", "service": "AI Visibility Engine"}


@app.get("/health")
async def health():
    """Health check including database status."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__,
        "database": "connected" if check_db_connection() else "disconnected",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
