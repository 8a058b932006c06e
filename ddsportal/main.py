"""
FastAPI application entry point.

Configures the application with routes, middleware, and settings.
"""
import os
import traceback

import sentry_sdk
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from ddsportal import __version__
from ddsportal.api.routes import attachments, preferences, processing_jobs
from ddsportal.config import get_settings
from ddsportal.database import init_db
from ddsportal.exceptions import DDSError
from ddsportal.middleware.logging import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    SENSITIVE_FIELDS,
    configure_logging,
)


def _filter_sensitive_data(event: dict, hint: dict) -> dict:
    """Filter sensitive data from Sentry events before sending."""

    def _redact(obj):
        if isinstance(obj, dict):
            return {
                k: "[REDACTED]" if any(s in k.lower() for s in SENSITIVE_FIELDS) else _redact(v)
                for k, v in obj.items()
            }
        elif isinstance(obj, list):
            return [_redact(item) for item in obj]
        return obj

    if "request" in event and "data" in event["request"]:
        event["request"]["data"] = _redact(event["request"]["data"])
    if "extra" in event:
        event["extra"] = _redact(event["extra"])

    return event


# Initialize Sentry for error tracking (must be done early)
sentry_dsn = os.getenv("SENTRY_DSN")
if sentry_dsn:
    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=os.getenv("ENVIRONMENT", "development"),
        release=os.getenv("APP_VERSION", __version__),
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(level=None, event_level="ERROR"),
        ],
        send_default_pii=False,
        before_send=_filter_sensitive_data,
    )

settings = get_settings()
configure_logging(settings.log_level, json_logs=settings.json_logs)

logger = structlog.get_logger(__name__)

app = FastAPI(
    title="DDS Portal API",
    description="User preferences, invoice attachment processing and watermarking.",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Preferences", "description": "Per-user settings and notification flags"},
        {"name": "Attachments", "description": "Watermark jobs and derivatives"},
        {"name": "Processing Jobs", "description": "Job listing and retries plus attachment statistics"},
        {"name": "Monitoring", "description": "Health checks"},
    ],
)

# Order matters: correlation ID first
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(preferences.router, prefix="/api/v1/users", tags=["Preferences"])
app.include_router(attachments.router, prefix="/api/v1/attachments", tags=["Attachments"])
app.include_router(processing_jobs.router, prefix="/api/v1/processing-jobs", tags=["Processing Jobs"])


@app.exception_handler(DDSError)
async def dds_exception_handler(request: Request, exc: DDSError):
    """Handle all DDS Portal custom exceptions."""
    log = logger.warning if exc.http_status < 500 else logger.error
    log(
        "dds_error",
        error_code=exc.error_code,
        message=exc.message,
        details=exc.details,
        path=str(request.url.path),
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions with consistent format."""
    sentry_sdk.capture_exception(exc)

    logger.error(
        "unhandled_error",
        error_type=type(exc).__name__,
        message=str(exc),
        path=str(request.url.path),
        traceback=traceback.format_exc(),
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": True,
            "error_code": "DDS-999",
            "message": "An unexpected error occurred. Please try again.",
            "details": {"error_type": type(exc).__name__} if settings.debug else {},
        },
    )


@app.on_event("startup")
async def startup_event() -> None:
    """Initialize application on startup."""
    logger.info("Starting DDS Portal API", debug=settings.debug)

    if sentry_dsn:
        logger.info("Sentry error tracking enabled", environment=os.getenv("ENVIRONMENT", "development"))
    else:
        logger.warning("Sentry error tracking not configured (SENTRY_DSN not set)")

    settings.storage_root.mkdir(parents=True, exist_ok=True)
    init_db()

    logger.info("DDS Portal API started successfully")


@app.get("/health", tags=["Monitoring"])
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}
