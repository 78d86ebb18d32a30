"""
api/main.py -- FastAPI application entry point for Warden.

Exposes the authentication flows and the permission graph over HTTP so other
services can log users in, rotate tokens, and manage grants.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (engine, cache backend, component wiring, purge
task) and shutdown (cancel purge task, close cache, dispose engine)
symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from api.errors import HTTP_STATUS
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.permissions import router as permissions_router
from auth.dependencies import get_identity
from auth.gate import AuthorizationGate
from auth.lockout import LoginAttemptGuard
from auth.models import Identity
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.sessions import SessionCache
from auth.store import AccountStore
from auth.token_store import TokenStore
from auth.tokens import TokenIssuer
from cache.redis_store import RedisCache
from cache.store import KeyValueCache, TTLCache
from core.clock import Clock, SystemClock
from core.config import Settings, get_settings
from core.database import create_db_engine
from core.errors import ErrorCode, WardenError
from rbac.store import PermissionGraph

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("warden.api")

# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_cache(settings: Settings, clock: Clock | None = None) -> KeyValueCache:
    """Redis when REDIS_URL is set, otherwise the SQLite TTLCache at CACHE_PATH."""
    if settings.redis_url:
        cache = RedisCache.from_url(settings.redis_url, socket_timeout=settings.store_timeout_seconds)
        cache.verify_connection()
        logger.info("Cache backend: redis")
        return cache
    logger.info("Cache backend: sqlite (%s)", settings.cache_path)
    return TTLCache(settings.cache_path, clock=clock, timeout=settings.store_timeout_seconds)


def wire_components(
    app: FastAPI,
    settings: Settings,
    engine: Engine,
    cache: KeyValueCache,
    clock: Clock | None = None,
) -> None:
    """Build every component from settings and attach it to app.state.

    Shared by the real lifespan and the test fixtures, so both run the same
    object graph.
    """
    clock = clock or SystemClock()
    issuer = TokenIssuer.from_settings(settings, clock)
    app.state.settings = settings
    app.state.engine = engine
    app.state.cache = cache
    app.state.accounts = AccountStore(engine, clock)
    app.state.token_store = TokenStore(
        engine,
        clock,
        refresh_ttl_seconds=issuer.refresh_ttl_seconds,
        reset_ttl_seconds=settings.password_reset_ttl_seconds,
        verification_ttl_seconds=settings.email_verification_ttl_seconds,
    )
    app.state.graph = PermissionGraph(engine, clock)
    app.state.issuer = issuer
    app.state.gate = AuthorizationGate(app.state.issuer, app.state.graph)
    app.state.sessions = SessionCache(cache, settings.session_ttl_seconds)
    app.state.guard = LoginAttemptGuard(cache, settings.lockout_threshold, settings.lockout_window_seconds)
    app.state.auth_service = AuthService(
        accounts=app.state.accounts,
        tokens=app.state.token_store,
        issuer=app.state.issuer,
        hasher=PasswordHasher(settings.bcrypt_rounds),
        checker=app.state.graph,
        sessions=app.state.sessions,
        guard=app.state.guard,
        reuse_revokes_all=settings.refresh_reuse_revokes_all,
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


def purge_expired(app: FastAPI) -> None:
    """One maintenance pass: expired tokens, expired grants, expired cache rows.

    Storage hygiene only. Every read path already ignores expired rows.
    """
    app.state.token_store.purge_expired()
    app.state.graph.cleanup_expired_grants()
    if isinstance(app.state.cache, TTLCache):
        app.state.cache.purge_expired()


async def _purge_loop(app: FastAPI, interval_seconds: int) -> None:
    """Run purge_expired() every interval_seconds.

    A failing pass is logged and the loop keeps going; the next pass retries.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(purge_expired, app)
        except WardenError as exc:
            logger.error("Purge pass failed: %s", exc)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Settings first -- a bad secret fails startup before anything opens.
      2. Engine and cache -- every component depends on one of them.
      3. Components, then the purge task, which references them.
    """
    logger.info("Warden API starting up")
    settings = get_settings()
    engine = create_db_engine(settings.database_url, settings.store_timeout_seconds)
    cache = build_cache(settings)
    wire_components(app, settings, engine, cache)
    logger.info("Components initialized (accounts present=%s)", app.state.accounts.has_accounts())
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.cache.close()
    engine.dispose()
    logger.info("Warden API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Warden API",
    description="Authentication, token rotation, and role/permission authorization.",
    version=VERSION,
    lifespan=lifespan,
    # Disable built-in /docs and /redoc so we can add auth protection.
    # Auth-protected equivalents are registered below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Captures wall-clock time around call_next to report latency on every
# response. Logs method, path, status, and client address; never headers,
# so bearer tokens stay out of the log.
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
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(permissions_router, prefix="/api/v1", tags=["Permissions"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(identity: Identity = Depends(get_identity)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Warden API")


@app.get("/redoc", include_in_schema=False)
async def redoc(identity: Identity = Depends(get_identity)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="Warden API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(WardenError)
async def warden_error_handler(request: Request, exc: WardenError) -> JSONResponse:
    """Map a raised WardenError to its HTTP status via the ErrorCode table.

    Infrastructure failures are logged with their detail; clients only ever
    see the generic message for the code.
    """
    if exc.code in (ErrorCode.STORE_UNAVAILABLE, ErrorCode.CREDENTIAL_FORMAT):
        logger.error("%s on %s %s: %s", exc.code.value, request.method, request.url.path, exc)
    failure = exc.to_failure()
    return JSONResponse(
        status_code=HTTP_STATUS[exc.code],
        content=ErrorResponse(error=ErrorDetail(code=failure.code.value, message=failure.message)).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
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

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail; it is used directly as the error field. Headers on the exception
    (WWW-Authenticate, Cache-Control) are carried over.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
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
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus a probe of the relational store and the cache."""
    components = {"app": "ok", "database": "ok", "cache": "ok"}
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check: database probe failed")
        components["database"] = "error"
    try:
        request.app.state.cache.get("health:probe")
    except WardenError:
        components["cache"] = "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
