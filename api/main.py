"""
api/main.py -- FastAPI application entry point for the authorization service.

Run with:  uvicorn api.main:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. CORSMiddleware    -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter

Lifespan builds the stores, the session orchestrator and the confirmation
worker on startup, and tears them down in reverse on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.confirmation import ConfirmAccountStore
from auth.errors import AuthServiceError, InternalInconsistency
from auth.events import EventQueue
from auth.mailer import build_mailer
from auth.refresh import RefreshTokenStore
from auth.sessions import SessionOrchestrator
from auth.store import UserStore
from auth.tokens import CredentialVerifier, TokenConfig, TokenIssuer
from auth.worker import ConfirmationWorker
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authorization.api")

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_sessions(settings: Settings, events: EventQueue) -> SessionOrchestrator:
    """Construct the orchestrator and its stores from settings."""
    users = UserStore(settings.database_url)
    if settings.seed_default_role:
        users.ensure_role(settings.default_role, "Default role for self-registered accounts")
    return SessionOrchestrator(
        users=users,
        verifier=CredentialVerifier(users),
        issuer=TokenIssuer(TokenConfig.from_settings(settings)),
        refresh_tokens=RefreshTokenStore(
            settings.database_url,
            secret_key=settings.secret_key,
            token_length=settings.refresh_token_length,
        ),
        confirmations=ConfirmAccountStore(settings.database_url),
        events=events,
        default_role=settings.default_role,
        refresh_token_ttl_seconds=settings.refresh_token_ttl_seconds,
    )


def close_sessions(sessions: SessionOrchestrator) -> None:
    sessions.users.close()
    sessions.refresh_tokens.close()
    sessions.confirmations.close()


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired, never-used confirmation tokens every interval_seconds.

    A failed pass is logged and retried on the next interval.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = await asyncio.to_thread(app.state.sessions.confirmations.purge_expired)
        except Exception:
            logger.exception("Confirmation token purge failed")
            continue
        if removed:
            logger.info("Purged %d expired confirmation tokens", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters: the event queue must exist before the orchestrator
    (which publishes to it) and the worker (which consumes it). The queue is
    created here and bound to the running loop so the threadpool handlers can
    publish to it.
    """
    settings = get_settings()
    logger.info("Authorization API starting up")
    events = EventQueue()
    events.bind(asyncio.get_running_loop())
    app.state.sessions = build_sessions(settings, events)
    worker = ConfirmationWorker(
        events=events,
        confirmations=app.state.sessions.confirmations,
        mailer=build_mailer(settings),
        confirm_ttl_seconds=settings.confirm_token_ttl_seconds,
    )
    app.state.worker_task = asyncio.create_task(worker.run())
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.worker_task.cancel()
    close_sessions(app.state.sessions)
    logger.info("Authorization API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Authorization API",
    description="User registration, login, account confirmation and token lifecycle.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthServiceError)
async def auth_error_handler(request: Request, exc: AuthServiceError) -> JSONResponse:
    """Render a typed auth failure.

    InternalInconsistency carries operator detail in its message; that detail
    goes to the log and the client only sees the generic class message.
    """
    message = exc.message
    if isinstance(exc, InternalInconsistency):
        logger.error("Invariant violated on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = InternalInconsistency.message
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=message)).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error and a Retry-After header."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
