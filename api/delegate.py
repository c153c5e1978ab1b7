"""
api/delegate.py -- Adapter between the gateway and the auth engine.

The route handlers never see AuthResponse objects, status codes chosen by the
engine, or its {"code", "message"} error bodies. They get small typed results
or a DelegateFailure, and branch with isinstance().

Rules:
  - No business logic here. Every method is one engine call plus reshaping.
  - Set-Cookie values are copied from the engine response unchanged.
  - Engine failures (bad credentials, duplicate email, bad token) come back as
    DelegateFailure values. Unexpected exceptions are not caught; they reach
    the app's 500 handler.

One AuthDelegate is built in the lifespan and shared via app.state.delegate.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from auth.engine import AuthEngine, AuthResponse
from auth.models import Session, User

# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DelegateFailure:
    status: int
    code: str
    message: str


@dataclass(frozen=True)
class SignUpResult:
    user: User


@dataclass(frozen=True)
class SignInResult:
    user: User
    session: Session
    set_cookie: str | None


@dataclass(frozen=True)
class SignOutResult:
    set_cookie: str | None


@dataclass(frozen=True)
class SessionResult:
    user: User
    session: Session
    set_cookie: str | None = None  # present only when the engine refreshed the session


def _failure(resp: AuthResponse) -> DelegateFailure:
    body = resp.body if isinstance(resp.body, dict) else {}
    return DelegateFailure(
        status=resp.status,
        code=str(body.get("code", "UNKNOWN")),
        message=str(body.get("message", "Request failed")),
    )


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class AuthDelegate:
    def __init__(self, engine: AuthEngine) -> None:
        self.engine = engine

    def sign_up(self, email: str, password: str, name: str) -> SignUpResult | DelegateFailure:
        resp = self.engine.sign_up_email(email, password, name)
        if not resp.ok:
            return _failure(resp)
        return SignUpResult(user=resp.body["user"])

    def sign_in(
        self,
        email: str,
        password: str,
        headers: Mapping[str, str] | None = None,
        ip_address: str | None = None,
    ) -> SignInResult | DelegateFailure:
        user_agent = headers.get("user-agent") if headers is not None else None
        resp = self.engine.sign_in_email(email, password, ip_address=ip_address, user_agent=user_agent)
        if not resp.ok:
            return _failure(resp)
        return SignInResult(
            user=resp.body["user"],
            session=resp.body["session"],
            set_cookie=resp.header("set-cookie"),
        )

    def sign_out(self, headers: Mapping[str, str]) -> SignOutResult:
        resp = self.engine.sign_out(headers)
        return SignOutResult(set_cookie=resp.header("set-cookie"))

    def get_session(self, headers: Mapping[str, str]) -> SessionResult | None:
        resp = self.engine.get_session(headers)
        if not resp.ok or not resp.body:
            return None
        user = resp.body.get("user")
        session = resp.body.get("session")
        if user is None or session is None:
            return None
        return SessionResult(user=user, session=session, set_cookie=resp.header("set-cookie"))

    def request_password_reset(self, email: str) -> None:
        """Always succeeds from the caller's point of view."""
        self.engine.forget_password(email)

    def reset_password(self, token: str, new_password: str) -> bool | DelegateFailure:
        resp = self.engine.reset_password(token, new_password)
        if not resp.ok:
            return _failure(resp)
        return True
