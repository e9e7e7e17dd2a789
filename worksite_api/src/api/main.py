from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from postgrest.exceptions import APIError

from src.core.errors import classify_error, http_status_for
from src.core.logging import configure_logging, correlation_id_var
from src.core.settings import get_app_settings
from src.db.client import create_data_client
from src.db.config import get_settings
from src.schemas.common import ErrorInfo, ErrorResponse, MessageResponse

# Routers
from src.api.routes.cache import router as cache_router

settings = get_app_settings()

# Configure structured logging once at import
configure_logging(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "Health", "description": "Liveness probe."},
    {"name": "Cache", "description": "Query cache inspection/invalidation and data layer metrics."},
]

app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    openapi_tags=openapi_tags,
)
app.state.data_client = None

# CORS - avoid wildcard with credentials
cors_allow_credentials = settings.CORS_ALLOW_CREDENTIALS
if settings.CORS_ORIGINS == ["*"] and cors_allow_credentials:
    logger.warning("CORS_ALLOW_CREDENTIALS=True with '*' origins is not permitted; disabling credentials.")
    cors_allow_credentials = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """
    Enrich request context with a correlation_id for logging and error responses.
    Adds 'X-Correlation-ID' to every response.
    """
    corr = request.headers.get("X-Correlation-ID") or request.headers.get("X-Request-ID") or str(uuid4())
    token_corr = correlation_id_var.set(corr)
    request.state.correlation_id = corr

    logger.info("Incoming request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
    finally:
        correlation_id_var.reset(token_corr)

    response.headers["X-Correlation-ID"] = corr
    return response


def _build_error_response(
    request: Request,
    status_code: int,
    error_type: str,
    message: str,
    details: Any | None = None,
) -> JSONResponse:
    """Build a standardized ErrorResponse JSONResponse."""
    err = ErrorResponse(
        status=status_code,
        error=ErrorInfo(type=error_type, message=message, details=details),
        correlation_id=getattr(request.state, "correlation_id", None),
        path=request.url.path,
        method=request.method,
        timestamp=datetime.now(tz=timezone.utc),
    )
    return JSONResponse(status_code=status_code, content=err.model_dump(mode="json"))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Global handler for HTTPException to produce a standardized error envelope.
    """
    detail = exc.detail if isinstance(exc.detail, str) else "HTTP Error"
    return _build_error_response(
        request=request,
        status_code=exc.status_code,
        error_type="http_error",
        message=str(detail),
        details=None if isinstance(exc.detail, str) else exc.detail,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Global handler for request validation errors with a standard structure.
    """
    return _build_error_response(
        request=request,
        status_code=422,
        error_type="validation_error",
        message="Request validation failed",
        details=exc.errors(),
    )


@app.exception_handler(APIError)
async def data_api_exception_handler(request: Request, exc: APIError):
    """
    Map errors from the upstream data API to HTTP statuses by error category.

    The call context attached by the data layer (table, operation, duration) is
    returned in details.
    """
    category = classify_error(exc)
    logger.warning("Data API error code=%s category=%s", getattr(exc, "code", None), category.value)
    return _build_error_response(
        request=request,
        status_code=http_status_for(category),
        error_type=f"data_{category.value}",
        message=getattr(exc, "message", None) or str(exc),
        details=getattr(exc, "call_context", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler to avoid leaking stack traces and to return a structured error.
    """
    logger.exception("Unhandled error processing request")
    return _build_error_response(
        request=request,
        status_code=500,
        error_type="internal_error",
        message="An unexpected error occurred",
        details=None,
    )


@app.on_event("startup")
async def on_startup() -> None:
    """
    Build the process-wide DataClient and store it on app.state.

    Skipped when SUPABASE_URL/SUPABASE_KEY are missing; data routes then answer 503.
    """
    if not settings.CONNECT_DATA_CLIENT_ON_STARTUP:
        return
    data_settings = get_settings()
    if not data_settings.is_configured:
        logger.warning("SUPABASE_URL/SUPABASE_KEY not set; data client disabled.")
        return
    try:
        app.state.data_client = await create_data_client(data_settings)
    except Exception as exc:
        logger.exception("Data client initialization failed: %s", exc)
        # Keep serving health checks; data routes report 503 until restart.


# Build API v1 router and include sub-routers
api_v1 = APIRouter(prefix="/api/v1")


# PUBLIC_INTERFACE
@api_v1.get(
    "/health",
    response_model=MessageResponse,
    summary="Health Check",
    tags=["Health"],
)
def health_check(request: Request) -> MessageResponse:
    """
    Basic liveness health check endpoint.

    Returns:
        MessageResponse: Confirmation that the service is running, and whether
        the data client is available.
    """
    return MessageResponse(
        message="Healthy",
        details={"data_client": request.app.state.data_client is not None},
    )


api_v1.include_router(cache_router)

# Attach api_v1 to app
app.include_router(api_v1)
