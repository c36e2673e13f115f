"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from careconnect.core.config import settings
from careconnect.core.connection_errors import (
    ConcurrencyConflictError,
    ConnectionForbiddenError,
    ConnectionNotFoundError,
    ConnectionServiceError,
    ConnectionValidationError,
    EntitlementRequiredError,
    InvalidTransitionError,
    StoreTimeoutError,
    StoreUnavailableError,
)
from careconnect.core.structured_logging import build_log_context
from careconnect.db.session import engine

logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,  # 10% of requests for performance monitoring
        send_default_pii=False,  # Names and thread text stay out of Sentry
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from careconnect.core.rate_limit import limiter


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="CareConnect API",
    description="Connection lifecycle engine for the senior-care marketplace",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Required for cookies
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Requested-With"],
    expose_headers=["X-Request-ID"],
)


# ============================================================================
# Connection errors
# ============================================================================

def _error_response(exc: ConnectionServiceError) -> tuple[int, str]:
    """HTTP status and client-facing message for a connection error."""
    # Order matters: subclasses before their parents
    if isinstance(exc, ConnectionNotFoundError):
        return 404, "Connection not found"
    if isinstance(exc, EntitlementRequiredError):
        return 402, str(exc) or "Upgrade your membership to continue."
    if isinstance(exc, ConnectionForbiddenError):
        # Same answer as not-found so ids cannot be probed
        return 404, "Connection not found"
    if isinstance(exc, InvalidTransitionError):
        return 409, str(exc)
    if isinstance(exc, ConnectionValidationError):
        return 400, str(exc)
    if isinstance(exc, ConcurrencyConflictError):
        return 409, "This connection was just updated. Please try again."
    if isinstance(exc, StoreTimeoutError):
        return 504, "The request timed out. Please try again."
    if isinstance(exc, StoreUnavailableError):
        return 503, "Service temporarily unavailable. Please try again."
    return 500, "Internal server error"


async def connection_error_handler(request: Request, exc: ConnectionServiceError):
    status_code, detail = _error_response(exc)
    context = build_log_context(
        request_id=request.headers.get("X-Request-ID"),
        route=request.url.path,
        method=request.method,
    )
    context["error"] = type(exc).__name__
    if status_code >= 500:
        logger.error("connection request failed: %s", exc, extra=context)
    else:
        logger.info("connection request rejected: %s", exc, extra=context)
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "retryable": exc.retryable},
    )


app.add_exception_handler(ConnectionServiceError, connection_error_handler)

# ============================================================================
# Routers
# ============================================================================

from careconnect.routers import connections

app.include_router(connections.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
