"""
FastAPI Sanctions Watchlist API Server

Provides REST API endpoints for screening queries and list refresh.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import time
import logging
import asyncio
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Query, Security
from fastapi.responses import RedirectResponse
from fastapi.security import APIKeyHeader

from api.models import (
    ScreeningRequest,
    MatchResponse,
    SanctionedResponse,
    RefreshResponse,
    SourceOutcome,
    HealthResponse,
    SourceHealth,
    ErrorResponse,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from config_manager import get_config, ConfigurationError
from fetcher import HttpSourceFetcher
from log_utils import configure_logging
from store.repositories import RepositoryError
from validator import SanctionsValidator

logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CONFIG_PATH = os.getenv("CONFIG_PATH") or None
API_KEY = os.getenv("API_KEY", "")  # Required for authenticated endpoints

# Global state
_validator: Optional[SanctionsValidator] = None
_startup_time: Optional[datetime] = None
_refresh_lock = asyncio.Lock()  # One refresh at a time per process
_executor = ThreadPoolExecutor(max_workers=2)  # For blocking store and network I/O

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Verify API key for protected endpoints.

    If API_KEY environment variable is not set, authentication is disabled.
    """
    if not API_KEY:
        return "dev-mode"

    if not api_key:
        raise HTTPException(
            status_code=401, detail="Missing API key. Provide X-API-Key header."
        )

    if api_key != API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key


def get_validator() -> SanctionsValidator:
    """Dependency to get the validator instance."""
    if _validator is None:
        raise HTTPException(
            status_code=503, detail="Validator not initialized. Service is starting up."
        )
    return _validator


def build_validator() -> SanctionsValidator:
    """Build the validator from configuration.

    Refresh is only available when at least one source is configured.
    """
    config = get_config(CONFIG_PATH)
    configure_logging(config.logging)
    fetcher = HttpSourceFetcher(config) if config.sources.endpoints else None
    return SanctionsValidator(config=config, fetcher=fetcher)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the validator and load the snapshot on startup."""
    global _validator, _startup_time

    logger.info("🚀 Starting Sanctions Watchlist API...")
    start_time = time.time()

    try:
        loop = asyncio.get_running_loop()
        _validator = await loop.run_in_executor(_executor, build_validator)
    except ConfigurationError as e:
        logger.error(f"✗ Configuration error: {e}")
        raise

    _startup_time = datetime.now(timezone.utc)
    entries = _validator.snapshot.entry_count if _validator.store.can_read else 0
    logger.info("✓ API ready: %d entries loaded in %.2f seconds", entries, time.time() - start_time)

    yield

    logger.info("Shutting down Sanctions Watchlist API...")
    if _validator is not None:
        _validator.store.close()


app = FastAPI(
    title="Sanctions Watchlist API",
    description="Screen people against synchronized sanctions lists",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

setup_cors(app)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


@app.post(
    "/api/v1/screen",
    response_model=MatchResponse,
    responses={
        422: {"model": ErrorResponse, "description": "Validation error"},
        503: {"model": ErrorResponse, "description": "Store not readable"},
    },
    summary="Screen an individual",
    description="Match a structured query against every loaded sanctions list",
)
async def screen(
    request: ScreeningRequest,
    validator: SanctionsValidator = Depends(get_validator),
):
    """First matching entry, or matched=false."""
    result = validator.get_match_info(request.to_query())
    return MatchResponse(
        matched=result.matched,
        list=result.list,
        matched_args=result.matched_args,
        comment=result.comment,
    )


@app.get(
    "/api/v1/sanctioned",
    response_model=SanctionedResponse,
    responses={
        422: {"model": ErrorResponse, "description": "Validation error"},
        503: {"model": ErrorResponse, "description": "Store not readable"},
    },
    summary="Is this person sanctioned",
)
async def sanctioned(
    first_name: Optional[str] = Query(default=None, max_length=200),
    last_name: Optional[str] = Query(default=None, max_length=200),
    dob: Optional[str] = Query(default=None, description="YYYY-MM-DD"),
    validator: SanctionsValidator = Depends(get_validator),
):
    return SanctionedResponse(sanctioned=validator.is_sanctioned(first_name, last_name, dob))


@app.post(
    "/api/v1/data/refresh",
    response_model=RefreshResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Missing API key"},
        403: {"model": ErrorResponse, "description": "Invalid API key"},
        503: {"model": ErrorResponse, "description": "Refresh not configured"},
    },
    summary="Refresh sanctions lists",
    description="Fetch every configured list, reconcile it into the store and reload",
)
async def refresh_data(
    validator: SanctionsValidator = Depends(get_validator),
    api_key: str = Depends(verify_api_key),
):
    """Run one refresh cycle.

    Queries keep using the previous snapshot until the reload completes.
    Requires API key authentication via X-API-Key header.
    """
    async with _refresh_lock:
        loop = asyncio.get_running_loop()
        report = await loop.run_in_executor(_executor, validator.refresh)

    entries_loaded = validator.snapshot.entry_count if validator.store.can_read else 0
    return RefreshResponse(
        started_at=report.started_at,
        success=report.success,
        outcomes=[SourceOutcome(**o.to_dict()) for o in report.outcomes],
        missing_sources=report.missing_sources,
        processing_time_ms=report.processing_time_ms,
        entries_loaded=entries_loaded,
    )


@app.get(
    "/api/v1/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Per-source sync state",
)
async def health_check():
    """Always answers 200; problems are reported in the body."""
    uptime_seconds = None
    if _startup_time:
        uptime_seconds = int((datetime.now(timezone.utc) - _startup_time).total_seconds())

    if _validator is None:
        return HealthResponse(status="error", error_message="Validator not initialized")

    try:
        report = _validator.health()
    except (ConfigurationError, RepositoryError) as e:
        return HealthResponse(status="error", uptime_seconds=uptime_seconds, error_message=str(e))

    if not report['store_available']:
        return HealthResponse(
            status="error",
            store_available=False,
            uptime_seconds=uptime_seconds,
            error_message="Store is not reachable",
        )

    return HealthResponse(
        status="healthy" if report['healthy'] else "degraded",
        entries_loaded=_validator.snapshot.entry_count,
        sources={name: SourceHealth(**state) for name, state in report['sources'].items()},
        uptime_seconds=uptime_seconds,
    )


@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
