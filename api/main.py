"""
api/main.py -- FastAPI application entry point for PermGate.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for configured browser origins
  2. log_requests          -- one log line per request with latency
  3. authentication_gate   -- public-path allowlist, then AuthenticationGate;
                              attaches the finished Identity to request.state

Route-level authorization (require_admin / require_permission) runs as
FastAPI dependencies after the gate has attached the identity.

Lifespan handles startup (stores, auth components, permission seeding,
revocation purge task) and shutdown (cancel purge task, close stores)
symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ApiResponse, ErrorResponse, HealthData
from api.routes.v1.auth import router as auth_router
from api.routes.v1.permissions import router as permissions_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError
from auth.gate import AuthenticationGate, PublicPathAllowlist
from auth.passwords import PasswordHasher
from auth.permissions import PermissionResolver
from auth.revocation import RevocationRegistry
from auth.service import AuthService
from auth.store import PermissionStore, UserStore
from auth.tokens import TokenService
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

_settings = get_settings()

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("permgate.api")

# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def attach_auth_components(
    app: FastAPI,
    settings: Settings,
    user_store: UserStore,
    permission_store: PermissionStore,
) -> None:
    """Build the auth components around the given stores and publish them on app.state.

    Shared by the real lifespan and the test lifespan so both run the exact
    same wiring. The revocation registry is created here, once per app, and
    owned by app.state for the life of the process.
    """
    tokens = TokenService(settings.secret_key, expire_seconds=settings.token_expire_seconds)
    revocations = RevocationRegistry()
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    resolver = PermissionResolver(permission_store, user_store)

    app.state.user_store = user_store
    app.state.permission_store = permission_store
    app.state.tokens = tokens
    app.state.revocations = revocations
    app.state.hasher = hasher
    app.state.resolver = resolver
    app.state.gate = AuthenticationGate(tokens, revocations, user_store, resolver)
    app.state.auth_service = AuthService(
        user_store,
        hasher,
        tokens,
        revocations,
        resolver,
        registration_status=settings.registration_status,
    )
    app.state.public_paths = PublicPathAllowlist(settings.public_paths, settings.public_path_prefixes)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Drop revocation entries for tokens that have expired on their own.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        removed = app.state.revocations.purge_expired()
        if removed:
            logger.info("Purged %d expired revocation entries", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Stores first -- every other component reads through them.
      2. Auth components -- built around the stores.
      3. Permission seeding -- needs the resolver.
      4. Purge task last -- references app.state.revocations.
    """
    settings = get_settings()
    logger.info("PermGate API starting up")
    user_store = UserStore(settings.database_url)
    permission_store = PermissionStore(settings.database_url)
    attach_auth_components(app, settings, user_store, permission_store)
    if settings.seed_permissions:
        app.state.resolver.seed_defaults()
    logger.info("Auth initialized (has_users=%s)", user_store.has_users())
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.revocation_purge_seconds))

    yield

    app.state.purge_task.cancel()
    user_store.close()
    permission_store.close()
    logger.info("PermGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="PermGate API",
    description="Session-token authentication and role/permission access control.",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)


def _error_response(status_code: int, msg: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(code=status_code, msg=msg).model_dump())


# ---------------------------------------------------------------------------
# Authentication middleware
#
# Public paths skip the gate entirely. Everything else must present a valid
# bearer token. The gate runs in the thread pool (store lookups are
# blocking) and returns a complete Identity, which is assigned to
# request.state in a single statement before call_next -- downstream code
# can never observe a half-built identity.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def authentication_gate(request: Request, call_next):
    allowlist: PublicPathAllowlist = request.app.state.public_paths
    if allowlist.matches(request.url.path):
        return await call_next(request)

    gate: AuthenticationGate = request.app.state.gate
    try:
        identity = await run_in_threadpool(gate.authenticate, request.headers.get("Authorization"))
    except AuthError as exc:
        return _error_response(exc.status_code, exc.msg)
    request.state.identity = identity
    return await call_next(request)


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


app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(permissions_router, prefix="/api/v1", tags=["Permissions"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {code, msg, data: null} envelope so API
# clients can parse errors uniformly.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Domain errors carry their own status and client-safe message."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s", type(exc).__name__, request.method, request.url.path)
    return _error_response(exc.status_code, exc.msg)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when request body or query params fail validation."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return _error_response(400, "Invalid request: " + "; ".join(parts))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured error for framework HTTP exceptions (404 route, 405 method, ...)."""
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "Internal server error, please try again later.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Listed in PUBLIC_PATHS by default.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"], response_model=ApiResponse)
def health(request: Request) -> ApiResponse:
    """Return API liveness, version and a database probe."""
    try:
        request.app.state.user_store.has_users()
        database = "ok"
    except Exception:
        logger.warning("Health check database probe failed", exc_info=True)
        database = "error"
    return ApiResponse(
        msg="ok",
        data=HealthData(version=VERSION, components={"app": "ok", "database": database}),
    )
