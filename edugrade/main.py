"""FastAPI application for the EduGrade evaluation service."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Union

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded  # type: ignore[import-not-found]

from edugrade.config import get_settings
from edugrade.errors import EvaluationError
from edugrade.middleware.logging import RequestLoggingMiddleware
from edugrade.middleware.rate_limit import limiter, rate_limit_exceeded_handler
from edugrade.routers import evaluations, history
from edugrade.services.credentials import SettingsCredentialProvider
from edugrade.services.history_store import get_history_store

# Application metadata
VERSION = "1.0.0"
COMMIT_HASH = "development"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan event handler for startup and shutdown."""
    try:
        # Raises ValidationError if environment values are invalid
        settings = get_settings()
        logger.info(f"Starting EduGrade API v{VERSION}")
        logger.info(f"Model: {settings.model_name}")
        logger.info(f"History backend: {settings.history_backend}")
        if SettingsCredentialProvider().resolve() is None:
            logger.warning("GEMINI_API_KEY is not set; evaluations will fail until it is configured")
    except Exception as e:
        logger.error(f"Startup validation failed: {e}")
        raise

    yield

    logger.info("Shutting down EduGrade API")


app = FastAPI(
    title="EduGrade API",
    description="Exam answer sheet evaluation backed by Gemini multimodal grading",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add rate limiter to app state (required by slowapi)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)  # type: ignore[arg-type]


@app.exception_handler(EvaluationError)
async def evaluation_error_handler(request: Request, exc: EvaluationError) -> Response:
    """Render pipeline errors raised outside the evaluation endpoint."""
    return evaluations.error_response(exc)


app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict this to specific domains
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", response_model=None)
async def health_check() -> Union[Dict[str, Any], Response]:
    """
    Health check endpoint.

    Returns:
        JSON response with overall status and individual service statuses.

    Status Codes:
        200: All services healthy
        503: One or more services unavailable
    """
    timestamp = datetime.now(timezone.utc).isoformat()
    services: Dict[str, str] = {}
    overall_healthy = True

    # Gemini credential (no network call)
    if SettingsCredentialProvider().resolve():
        services["gemini_api"] = "healthy"
    else:
        services["gemini_api"] = "unhealthy: GEMINI_API_KEY not set"
        overall_healthy = False

    # History storage
    try:
        log = await get_history_store().load()
        services["history"] = f"healthy ({len(log)} reports)"
    except Exception as e:
        services["history"] = f"unhealthy: {str(e)}"
        overall_healthy = False

    response_data: Dict[str, Any] = {
        "status": "healthy" if overall_healthy else "unhealthy",
        "timestamp": timestamp,
        "services": services,
    }

    if not overall_healthy:
        return JSONResponse(content=response_data, status_code=503)

    return response_data


@app.get("/version")
async def version_info() -> Dict[str, str]:
    """Get version information for the API."""
    return {
        "version": VERSION,
        "commit_hash": COMMIT_HASH,
    }


app.include_router(evaluations.router)
app.include_router(history.router)
