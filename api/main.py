"""
api/main.py -- FastAPI application entry point for AuthGate.

Run with:      uvicorn asgi:app --reload

Composition root: the lifespan is the ONLY place that reads Settings and
constructs components. Each component is built once and handed to the
routes through app.state:

    app.state.user_store       UserStore (credential store)
    app.state.token_engine     TokenEngine
    app.state.auth_service     AuthService(user_store, token_engine)
    app.state.rate_limiter     RateLimiter (shared by every limited route)
    app.state.rate_limit_policies  {"api": ..., "auth": ...}
    app.state.purge_task       background compaction of the rate limiter

Middleware stack (outermost to innermost; Starlette wraps later registrations
around earlier ones):
  1. security_headers -- nosniff, frame denial, CSP and friends on every response
  2. log_requests     -- one access-log line per request
  3. CORSMiddleware   -- adds CORS headers for allowed browser origins

Rate limiting is NOT middleware: it runs as route dependencies
(api/limiter.py) so a 429 goes through the same exception handlers and
envelope as every other failure.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import RateLimitPolicy, rate_limit_headers
from api.models import ErrorBody, ErrorEnvelope, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenEngine
from core.clock import SystemClock
from core.config import Settings, get_settings
from core.errors import ErrorKind, GatewayError, RateLimitDetail
from core.ratelimit import RateLimiter, RateLimitResult

APP_NAME = "AuthGate"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

_RESERVED_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, plus any `extra` fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-5s %(name)s %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        )
    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)


logger = logging.getLogger("authgate.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval_seconds: float) -> None:
    """Purge expired rate limit records every interval_seconds.

    Runs as a background asyncio task started in lifespan startup. A failing
    purge is logged and the loop carries on with the next interval. Only
    CancelledError (from stop_purge_task during shutdown) ends the loop.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            app.state.rate_limiter.purge_expired()
        except Exception:
            logger.exception("Rate limit purge failed; retrying in %ss", interval_seconds)


async def stop_purge_task(task: asyncio.Task) -> None:
    """Cancel the purge task and wait for it to unwind."""
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


def build_components(app: FastAPI, settings: Settings, clock=None) -> None:
    """Construct every component from settings and attach it to app.state."""
    clock = clock or SystemClock()
    app.state.settings = settings
    app.state.clock = clock
    app.state.user_store = UserStore(
        settings.database_url,
        max_login_attempts=settings.max_login_attempts,
        lockout_seconds=settings.lockout_seconds,
        bcrypt_rounds=settings.bcrypt_rounds,
        clock=clock,
    )
    app.state.token_engine = TokenEngine(
        settings.secret_key,
        issuer=settings.token_issuer,
        expire_seconds=settings.token_expire_seconds,
        clock=clock,
    )
    app.state.auth_service = AuthService(app.state.user_store, app.state.token_engine, clock=clock)
    app.state.rate_limiter = RateLimiter(clock=clock)
    app.state.rate_limit_policies = {
        "api": RateLimitPolicy(settings.rate_limit_window_seconds, settings.rate_limit_max_requests),
        "auth": RateLimitPolicy(settings.auth_rate_limit_window_seconds, settings.auth_rate_limit_max_requests),
    }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The purge task is started last because it references
    app.state.rate_limiter.
    """
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    logger.info("%s starting up", APP_NAME)
    build_components(app, settings)
    logger.info(
        "Auth initialized (max_login_attempts=%d, lockout_seconds=%d)",
        settings.max_login_attempts,
        settings.lockout_seconds,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.rate_limit_purge_interval_seconds))

    yield

    await stop_purge_task(app.state.purge_task)
    app.state.user_store.close()
    logger.info("%s shutdown complete", APP_NAME)


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthGate API",
    description="Credential authentication gateway: login, registration, token verification.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


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
# Security headers middleware
# ---------------------------------------------------------------------------

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    """Set browser hardening headers on every response. Route-set values win."""
    response = await call_next(request)
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorEnvelope so API clients can parse errors
# uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(
    request: Request, status_code: int, error: ErrorBody, headers: dict | None = None
) -> JSONResponse:
    """Build the failure envelope.

    Limited routes keep their X-RateLimit-* headers on error responses too:
    the dependency in api/limiter.py leaves its last result on request.state.
    """
    merged: dict[str, str] = {}
    result: RateLimitResult | None = getattr(request.state, "rate_limit", None)
    if result is not None:
        merged.update(rate_limit_headers(result))
    merged.update(headers or {})
    return JSONResponse(
        status_code=status_code,
        content=ErrorEnvelope(error=error).model_dump(exclude_none=True),
        headers=merged,
    )


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Render a GatewayError. Status and extra headers follow exc.kind."""
    headers: dict[str, str] = {}
    if exc.kind is ErrorKind.RATE_LIMIT and isinstance(exc.detail, RateLimitDetail):
        headers["Retry-After"] = str(exc.detail.retry_after)
    elif exc.kind is ErrorKind.AUTHENTICATION:
        headers["Cache-Control"] = "no-store"  # [M5]

    if exc.kind is ErrorKind.INTERNAL:
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning(
            "Request failed on %s %s: %s %s", request.method, request.url.path, exc.kind.value, exc.message
        )
    return _error_response(request, exc.status_code, ErrorBody(**exc.to_error_body()), headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when the request body is not parseable as the expected shape."""
    details = [f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()]
    return _error_response(
        request,
        400,
        ErrorBody(code="validation_error", message="Validation failed", details=details),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Envelope for routing-level errors (404 unknown route, 405 wrong method)."""
    if exc.status_code == 404:
        error = ErrorBody(code="not_found", message=f"Route not found: {request.url.path}")
    else:
        error = ErrorBody(code=f"http_{exc.status_code}", message=str(exc.detail))
    return _error_response(request, exc.status_code, error, getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception goes to the log only, never to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(request, 500, ErrorBody(code="internal_error", message="An unexpected error occurred."))


# ---------------------------------------------------------------------------
# Service endpoints
#
# Defined directly in main.py (not in a router) so they are always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/", include_in_schema=False)
async def root() -> dict:
    prefix = "/api/v1/auth"
    return {
        "success": True,
        "message": f"{APP_NAME} API",
        "version": app.version,
        "endpoints": {
            "login": f"{prefix}/login",
            "register": f"{prefix}/register",
            "verify": f"{prefix}/verify",
            "logout": f"{prefix}/logout",
            "health": "/api/v1/health",
        },
    }


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and a database reachability check."""
    components = {"app": "ok"}
    try:
        request.app.state.user_store.ping()
        components["database"] = "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    return HealthResponse(
        status="healthy" if components["database"] == "ok" else "degraded",
        version=app.version,
        components=components,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
