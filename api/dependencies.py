"""
api/dependencies.py -- FastAPI Depends() helpers for the gateway routes.

  require_session  -- the authorization gate for protected endpoints. Resolves
                      the request cookie through the AuthDelegate; raises 401
                      before the handler body runs when there is no session.
  validated(name)  -- reads the JSON body and runs the named validation schema.
                      Malformed JSON and rule violations both raise 400.

Errors are raised as HTTPException with a dict detail shaped like
ErrorResponse; the handler in api/main.py renders the dict as the body.

FastAPI resolves dependencies in parameter order, so a handler that declares
require_session before validated(...) authorizes before it validates.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fastapi import HTTPException, Request
from pydantic import BaseModel

from api.delegate import AuthDelegate
from api.models import ErrorResponse
from api.validation import validate_payload
from auth.models import Session, User
from profiles.store import ProfileStore

logger = logging.getLogger("authgateway.api")


@dataclass(frozen=True)
class AuthContext:
    """The resolved identity a protected handler works with."""

    user: User
    session: Session
    set_cookie: str | None = None


def get_delegate(request: Request) -> AuthDelegate:
    return request.app.state.delegate


def get_profile_store(request: Request) -> ProfileStore:
    return request.app.state.profile_store


def require_session(request: Request) -> AuthContext:
    """Authorization gate. Raises HTTP 401 if the request has no valid session.

    On success the user and session are also placed on request.state for
    middleware and logging.
    """
    result = get_delegate(request).get_session(request.headers)
    if result is None:
        raise HTTPException(status_code=401, detail=ErrorResponse(error="Unauthorized").model_dump(exclude_none=True))
    request.state.user = result.user
    request.state.session = result.session
    return AuthContext(user=result.user, session=result.session, set_cookie=result.set_cookie)


async def read_json(request: Request) -> object:
    """Decode the request body as JSON. Raises HTTP 400 if it is not JSON or nests too deeply."""
    body = await request.body()
    try:
        return json.loads(body)
    except (ValueError, RecursionError) as exc:
        raise HTTPException(
            status_code=400,
            detail=ErrorResponse(
                error="Invalid JSON format",
                details=["Request body must be valid JSON"],
            ).model_dump(exclude_none=True),
        ) from exc


def validated(schema_name: str) -> Callable[[Request], Awaitable[BaseModel]]:
    """Build a dependency that returns the typed payload for schema_name.

    Usage:
        @router.post("/auth/login")
        def login(payload: LoginPayload = Depends(validated("login"))): ...
    """

    async def dependency(request: Request) -> BaseModel:
        raw = await read_json(request)
        result = validate_payload(schema_name, raw)
        if not result.ok:
            # Field names only; submitted values may be credentials.
            logger.info(
                "%s validation failed on %s (%d error(s))",
                schema_name,
                request.url.path,
                len(result.errors),
            )
            raise HTTPException(
                status_code=400,
                detail=ErrorResponse(error="Validation failed", details=result.errors).model_dump(exclude_none=True),
            )
        return result.data

    return dependency
