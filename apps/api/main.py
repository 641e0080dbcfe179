"""FastAPI application for the decision memory.

Features:
- SQLite store opened in the lifespan, schema created on startup
- Standardized error responses for domain, validation and HTTP errors
- Request and session ids propagated into structured logs
- Circuit breaker stats and readiness probes under /health
"""

from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from db.sqlite import check_db_connection, close_db, init_db
from middleware import RequestIDMiddleware, RequestSizeLimitMiddleware
from middleware.request_id import REQUEST_ID_HEADER, SESSION_ID_HEADER
from models.errors import (
    DecisionMemoryError,
    ErrorType,
    create_error_response,
    create_validation_error_response,
)
from routers import checkpoints, decisions, links, quality, search, tier
from services.embeddings import close_embedding_service
from services.tier import get_tier_detector
from utils.circuit_breaker import CircuitBreakerOpen, get_circuit_breaker_stats
from utils.logging import configure_logging, get_logger

APP_VERSION = "0.1.0"
APP_NAME = "Decision Memory API"

# HTTP errors raised by Starlette itself (unknown route, wrong method, ...)
HTTP_ERROR_TYPES = {
    400: ErrorType.BAD_REQUEST,
    404: ErrorType.NOT_FOUND,
    405: ErrorType.BAD_REQUEST,
    409: ErrorType.CONFLICT,
    503: ErrorType.SERVICE_UNAVAILABLE,
}

logger = get_logger(__name__)


def get_request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None) or request.headers.get(REQUEST_ID_HEADER)


def error_json(
    status_code: int,
    content: dict[str, Any],
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _validation_field(loc: tuple) -> str:
    """("body", "topic") -> "topic"; query and path params keep their prefix."""
    parts = [str(part) for part in loc]
    if parts and parts[0] == "body":
        parts = parts[1:]
    return ".".join(parts) or "body"


def log_startup_banner(settings) -> None:
    logger.info(
        "Decision memory ready",
        extra={
            "event": "startup",
            "app_name": APP_NAME,
            "app_version": APP_VERSION,
            "store": settings._mask_url(settings.get_database_url()),
            "memory_disabled": settings.memory_disabled,
            "embeddings_disabled": settings.embeddings_disabled,
            "embedding_model": settings.embedding_model,
            "embedding_timeout_ms": settings.embedding_timeout_ms,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the store on startup; close it and the provider clients on shutdown."""
    settings = get_settings()
    configure_logging(settings.log_level, json_format=not settings.debug)

    try:
        await init_db()
    except Exception as e:
        logger.error(f"Failed to open the decision store: {e}")
        raise
    log_startup_banner(settings)

    yield

    logger.info("Shutting down", extra={"event": "shutdown"})
    try:
        await close_embedding_service()
    except Exception as e:
        logger.error(f"Error closing embedding service: {e}")
    await close_db()


app = FastAPI(
    title=APP_NAME,
    description="Tiered decision memory and reasoning graph",
    version=APP_VERSION,
    lifespan=lifespan,
)


# =============================================================================
# Exception handlers
# =============================================================================


@app.exception_handler(DecisionMemoryError)
async def decision_memory_exception_handler(
    request: Request, exc: DecisionMemoryError
) -> JSONResponse:
    """Map domain errors onto their HTTP status with the standard error body."""
    log = logger.warning if exc.status_code >= 500 else logger.info
    log(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")

    return error_json(
        exc.status_code,
        exc.to_response(request_id=get_request_id(request), path=request.url.path),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies and query params are 422 with one entry per field."""
    errors = [
        {
            "field": _validation_field(error.get("loc", ())),
            "message": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error"),
        }
        for error in exc.errors()
    ]
    logger.info(
        f"Rejected {request.method} {request.url.path}: "
        f"{', '.join(e['field'] for e in errors)}"
    )
    return error_json(
        422,
        create_validation_error_response(
            message="Request validation failed",
            errors=errors,
            request_id=get_request_id(request),
            path=request.url.path,
        ),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return error_json(
        exc.status_code,
        create_error_response(
            error=HTTP_ERROR_TYPES.get(exc.status_code, ErrorType.INTERNAL_ERROR),
            message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
            status_code=exc.status_code,
            request_id=get_request_id(request),
            path=request.url.path,
        ),
    )


@app.exception_handler(CircuitBreakerOpen)
async def circuit_breaker_exception_handler(
    request: Request, exc: CircuitBreakerOpen
) -> JSONResponse:
    """An open breaker that escaped the tier fallback is a 503 with Retry-After."""
    return error_json(
        503,
        create_error_response(
            error=ErrorType.CIRCUIT_BREAKER_OPEN,
            message=str(exc),
            status_code=503,
            details={"circuit_name": exc.name, "retry_after_seconds": exc.time_remaining},
            request_id=get_request_id(request),
            path=request.url.path,
        ),
        headers={"Retry-After": str(int(exc.time_remaining + 1))},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}")

    # Internal details stay in the log
    return error_json(
        500,
        create_error_response(
            error=ErrorType.INTERNAL_ERROR,
            message="The decision memory hit an unexpected error.",
            status_code=500,
            request_id=get_request_id(request),
            path=request.url.path,
        ),
    )


# =============================================================================
# Middleware (last added runs first on the way in)
# =============================================================================

settings = get_settings()

app.add_middleware(RequestSizeLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", REQUEST_ID_HEADER, SESSION_ID_HEADER],
    expose_headers=[REQUEST_ID_HEADER],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)
# Outermost so the id is set before any other middleware logs
app.add_middleware(RequestIDMiddleware)

# =============================================================================
# Routers
# =============================================================================

app.include_router(decisions.router, prefix="/api/decisions", tags=["Decisions"])
app.include_router(search.router, prefix="/api/search", tags=["Search"])
app.include_router(links.router, prefix="/api/links", tags=["Links"])
app.include_router(checkpoints.router, prefix="/api/checkpoints", tags=["Checkpoints"])
app.include_router(tier.router, prefix="/api/tier", tags=["Tier"])
app.include_router(quality.router, prefix="/api/quality", tags=["Quality"])


# =============================================================================
# Health
# =============================================================================


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.get("/health/ready")
async def readiness_check():
    """The store must answer. A degraded tier is reported, not treated as unready."""
    store_ok = await check_db_connection()
    tier_info = await get_tier_detector().current_tier()

    body = {
        "ready": store_ok,
        "checks": {"database": "healthy" if store_ok else "unhealthy"},
        "tier": tier_info.tier,
        "reason": tier_info.reason,
    }
    return body if store_ok else JSONResponse(status_code=503, content=body)


@app.get("/health/live")
async def liveness_check():
    return {"alive": True}


@app.get("/health/circuits")
async def circuit_breaker_status():
    return {"circuit_breakers": [asdict(stats) for stats in get_circuit_breaker_stats()]}


@app.get("/")
async def root():
    return {"name": APP_NAME, "version": APP_VERSION, "docs": "/docs"}
