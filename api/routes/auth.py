"""
api/routes/auth.py -- Registration, login, session and profile endpoints.

Routes:
  POST   /auth/register         -- create account; 201
  POST   /auth/login            -- sign in; forwards the session cookie
  POST   /auth/logout           -- sign out; forwards the clearing cookie (requires auth)
  POST   /auth/refresh          -- current user + session (requires auth)
  GET    /auth/me               -- current user (requires auth)
  PUT    /auth/me               -- update name and/or email (requires auth)
  DELETE /auth/me               -- delete account, clear cookie (requires auth)
  POST   /auth/forgot-password  -- request a reset link; always 200
  POST   /auth/reset-password   -- set a new password with a reset token

Each handler is validator -> delegate / profile store -> mapper -> response.
Validation and authorization failures never reach the handler body (see
api/dependencies.py).

Security:
  Login failures are always 401 "Invalid credentials", whether the email is
  unknown or the password is wrong.
  forgot-password returns the same 200 body for registered and unknown emails.
  Cache-Control: no-store on responses that carry a session cookie.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError

from api.delegate import AuthDelegate, DelegateFailure
from api.dependencies import AuthContext, get_delegate, get_profile_store, require_session, validated
from api.models import (
    ErrorResponse,
    ForgotPasswordPayload,
    LoginPayload,
    LoginResponse,
    MessageResponse,
    ProfileUpdatePayload,
    PublicSession,
    PublicUser,
    RegisterPayload,
    RegisterResponse,
    ResetPasswordPayload,
    SessionResponse,
    UserResponse,
)
from profiles.store import ProfileStore

logger = logging.getLogger("authgateway.api.auth")

FORGOT_PASSWORD_MESSAGE = "If an account exists for that email, a password reset link has been sent"

# Auth policy:
# - POST   /auth/register, /auth/login, /auth/forgot-password, /auth/reset-password: public
# - POST   /auth/logout, /auth/refresh: require_session
# - GET/PUT/DELETE /auth/me:            require_session
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _respond(model: BaseModel, status_code: int = 200, set_cookie: str | None = None) -> JSONResponse:
    """Render a response model, appending the engine's Set-Cookie value verbatim."""
    resp = JSONResponse(status_code=status_code, content=model.model_dump(by_alias=True))
    if set_cookie:
        resp.headers.append("set-cookie", set_cookie)
        resp.headers["Cache-Control"] = "no-store"
    return resp


def _error(status_code: int, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail=ErrorResponse(error=message).model_dump(exclude_none=True))


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201, response_model=RegisterResponse)
def register(
    payload: RegisterPayload = Depends(validated("register")),
    delegate: AuthDelegate = Depends(get_delegate),
) -> JSONResponse:
    """Create an account. Does not sign the user in."""
    result = delegate.sign_up(payload.email, payload.password, payload.name)
    if isinstance(result, DelegateFailure):
        logger.info("Registration rejected: %s", result.code)
        raise _error(result.status, result.message)
    return _respond(
        RegisterResponse(message="Registration successful", user=PublicUser.from_user(result.user)),
        status_code=201,
    )


@router.post("/auth/login", response_model=LoginResponse)
def login(
    request: Request,
    payload: LoginPayload = Depends(validated("login")),
    delegate: AuthDelegate = Depends(get_delegate),
) -> JSONResponse:
    """Sign in with email and password; forward the session cookie."""
    result = delegate.sign_in(
        payload.email,
        payload.password,
        headers=request.headers,
        ip_address=request.client.host if request.client else None,
    )
    if isinstance(result, DelegateFailure):
        logger.info("Login rejected: %s", result.code)
        raise _error(401, "Invalid credentials")
    return _respond(
        LoginResponse(
            message="Login successful",
            user=PublicUser.from_user(result.user),
            session=PublicSession.from_session(result.session),
        ),
        set_cookie=result.set_cookie,
    )


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(
    payload: ForgotPasswordPayload = Depends(validated("forgotPassword")),
    delegate: AuthDelegate = Depends(get_delegate),
) -> JSONResponse:
    delegate.request_password_reset(payload.email)
    return _respond(MessageResponse(message=FORGOT_PASSWORD_MESSAGE))


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    payload: ResetPasswordPayload = Depends(validated("resetPassword")),
    delegate: AuthDelegate = Depends(get_delegate),
) -> JSONResponse:
    result = delegate.reset_password(payload.token, payload.password)
    if isinstance(result, DelegateFailure):
        logger.info("Password reset rejected: %s", result.code)
        raise _error(400, "Invalid or expired token")
    return _respond(MessageResponse(message="Password has been reset"))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    auth: AuthContext = Depends(require_session),
    delegate: AuthDelegate = Depends(get_delegate),
) -> JSONResponse:
    result = delegate.sign_out(request.headers)
    return _respond(MessageResponse(message="Logout successful"), set_cookie=result.set_cookie)


@router.post("/auth/refresh", response_model=SessionResponse)
def refresh(auth: AuthContext = Depends(require_session)) -> JSONResponse:
    """Return the live session. The engine extends it once it passes its update age."""
    return _respond(
        SessionResponse(user=PublicUser.from_user(auth.user), session=PublicSession.from_session(auth.session)),
        set_cookie=auth.set_cookie,
    )


@router.get("/auth/me", response_model=UserResponse)
def me(auth: AuthContext = Depends(require_session)) -> JSONResponse:
    return _respond(UserResponse(user=PublicUser.from_user(auth.user)), set_cookie=auth.set_cookie)


@router.put("/auth/me", response_model=UserResponse)
def update_me(
    auth: AuthContext = Depends(require_session),
    payload: ProfileUpdatePayload = Depends(validated("profileUpdate")),
    profiles: ProfileStore = Depends(get_profile_store),
) -> JSONResponse:
    """Update only the provided fields, then return the re-read user."""
    try:
        profiles.update_profile(auth.user.id, name=payload.name, email=payload.email)
    except IntegrityError as exc:
        raise _error(400, "Email already in use") from exc

    updated = profiles.get_user(auth.user.id)
    if updated is None:
        # Deleted between the session check and the update.
        raise _error(401, "Unauthorized")
    return _respond(UserResponse(user=PublicUser.from_user(updated)), set_cookie=auth.set_cookie)


@router.delete("/auth/me", response_model=MessageResponse)
def delete_me(
    request: Request,
    auth: AuthContext = Depends(require_session),
    delegate: AuthDelegate = Depends(get_delegate),
    profiles: ProfileStore = Depends(get_profile_store),
) -> JSONResponse:
    """Delete the account (sessions and accounts cascade) and clear the cookie."""
    profiles.delete_user(auth.user.id)
    result = delegate.sign_out(request.headers)
    return _respond(MessageResponse(message="Account deleted successfully"), set_cookie=result.set_cookie)
