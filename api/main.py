"""
api/main.py -- FastAPI application entry point for the auth gateway.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- credentialed CORS for the configured origins

Lifespan builds the process-wide collaborators exactly once and shares them
through app.state:
  auth_store / auth_engine -- the authentication engine and its repository
  delegate                 -- the AuthDelegate the route handlers talk to
  profile_store            -- persistence for profile edits and deletion
Shutdown disposes both SQLAlchemy engines.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.delegate import AuthDelegate
from api.models import ErrorResponse
from api.routes.auth import router as auth_router
from api.routes.health import router as health_router
from auth.engine import AuthEngine
from auth.store import AuthStore
from core.config import get_settings
from profiles.store import ProfileStore

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgateway.api")

_STATUS_MESSAGES = {
    401: "Unauthorized",
    404: "Not found",
    405: "Method not allowed",
}


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the shared auth engine, delegate and profile store; dispose on shutdown.

    The AuthStore is created first because it owns the schema (create_all);
    the ProfileStore only reads and writes the users table it defines.
    """
    logger.info("Auth gateway starting up")
    app.state.auth_store = AuthStore(settings.database_url)
    app.state.auth_engine = AuthEngine(app.state.auth_store, settings)
    app.state.delegate = AuthDelegate(app.state.auth_engine)
    app.state.profile_store = ProfileStore(settings.database_url)
    logger.info("Auth engine initialized (cookie=%s)", settings.session_cookie_name)

    yield

    app.state.profile_store.close()
    app.state.auth_store.close()
    logger.info("Auth gateway shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Auth Gateway",
    description="Registration, login, session and profile endpoints over an email/password auth engine.",
    version="0.1.0",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Cookie"],
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
# Router registration
# ---------------------------------------------------------------------------

app.include_router(health_router, tags=["Health"])
app.include_router(auth_router, tags=["Auth"])
# The native /api/auth/* router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the ErrorResponse envelope {"error", "details"?} so
# clients parse every failure the same way.
# ---------------------------------------------------------------------------


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Path/query validation errors from FastAPI itself (bodies go through api.validation)."""
    details = [f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error="Validation failed", details=details).model_dump(exclude_none=True),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTPExceptions, including the router's own 404/405.

    Route code raises HTTPException with detail=ErrorResponse(...).model_dump()
    (a dict); that dict is the body. Anything else gets a generic message for
    its status code.
    """
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        message = _STATUS_MESSAGES.get(exc.status_code) or str(exc.detail)
        content = ErrorResponse(error=message).model_dump(exclude_none=True)
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The exception is logged with its traceback; the client only ever sees the
    generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="Internal server error").model_dump(exclude_none=True),
    )
