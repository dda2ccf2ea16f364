"""
api/main.py -- FastAPI application entry point for Cypress.

Run with:      uvicorn asgi:app --reload

Request path (outermost layer first):
  1. log_requests          -- one access-log line per request with latency
  2. CORSMiddleware        -- answers browser pre-flight requests and adds
                              CORS headers for allowed origins

Lifespan builds the identity core once per process (stores, id generator,
token service, verification service, resolver, auth gate, account service)
and tears it down symmetrically on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.users import router as users_router
from auth.accounts import AccountService
from auth.gate import AuthGate
from auth.passwords import BcryptHasher
from auth.resolver import IdentityResolver
from auth.store import AccountStore
from auth.tokens import TokenService
from auth.verification import VerificationService
from cache.store import ChallengeStore
from core.config import DATA_DIR, Settings, get_settings
from core.ids import IdGenerator

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("cypress.api")

_PURGE_INTERVAL_SECONDS = 60 * 60


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(
    app: FastAPI,
    settings: Settings,
    account_store: AccountStore,
    challenge_store: ChallengeStore,
    ids: IdGenerator | None = None,
    tokens: TokenService | None = None,
) -> None:
    """Build the identity core on top of the given stores and attach it to app.state.

    Shared by the real lifespan and the test fixtures, so both run the exact
    same object graph. ids / tokens may be passed in to control clocks.
    """
    hasher = BcryptHasher(rounds=settings.bcrypt_rounds)
    ids = ids or IdGenerator(worker_id=settings.worker_id)
    tokens = tokens or TokenService(settings.secret_key, settings.token_expire_seconds)
    verification = VerificationService(
        challenge_store,
        ttl_seconds=settings.verification_code_ttl_seconds,
        code_length=settings.verification_code_length,
    )
    resolver = IdentityResolver(account_store, hasher)

    app.state.settings = settings
    app.state.account_store = account_store
    app.state.challenge_store = challenge_store
    app.state.ids = ids
    app.state.tokens = tokens
    app.state.auth_gate = AuthGate(tokens, account_store)
    app.state.account_service = AccountService(
        account_store,
        ids,
        verification,
        resolver,
        hasher,
        single_use_codes=settings.single_use_verification_codes,
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Purge expired verification challenges every hour.

    Expired rows are already invisible to readers; this only reclaims space.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        removed = app.state.challenge_store.purge_expired()
        if removed:
            logger.info("Purged %d expired verification challenges", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the identity core on startup and release its stores on shutdown.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. Settings are validated first so a missing SECRET_KEY fails the
    boot before any store is opened.
    """
    settings = get_settings()
    logger.info("Cypress API starting up (worker_id=%d)", settings.worker_id)

    DATA_DIR.mkdir(parents=True, exist_ok=True)
    Path(settings.challenge_db_path).parent.mkdir(parents=True, exist_ok=True)
    wire_services(
        app,
        settings,
        AccountStore(settings.database_url),
        ChallengeStore(settings.challenge_db_path),
    )
    logger.info("Identity services initialized")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.challenge_store.close()
    app.state.account_store.close()
    logger.info("Cypress API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Cypress Identity API",
    description="Registration, password and verification-code login, and profile management.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allow_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    allow_credentials=True,
    max_age=3600,
)


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

app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves the API as {"error": {"code", "message", "detail"?}},
# whatever raised it.
# ---------------------------------------------------------------------------


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
    field rather than stringifying it. Headers (WWW-Authenticate on 401) are
    carried over.
    """
    if isinstance(exc.detail, dict):
        content = {"error": exc.detail}
    else:
        content = ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump()
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors (including a clock regression in the id generator).

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
# Lives on the app rather than the users router and needs no credential, so
# load balancers can poll it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, current version, and store status."""
    store: AccountStore = request.app.state.account_store
    return HealthResponse(
        version=__version__,
        components={"app": "ok", "database": "ok" if store.ping() else "error"},
    )
