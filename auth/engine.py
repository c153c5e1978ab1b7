"""
auth/engine.py -- Email/password authentication engine.

AuthEngine owns every credential and session decision: sign-up, sign-in,
sign-out, session lookup and refresh, and the password-reset flow. It is used
two ways:

  Typed API   -- engine.sign_in_email(...), engine.get_session(headers), ...
                 Used by the gateway's AuthDelegate (api/delegate.py).
  Raw handler -- engine.handle(method, path, headers, body)
                 Used by the native /api/auth/* routes (auth/routes.py).

Every operation returns an AuthResponse(status, body, headers). Failures are
responses with status >= 400 and a {"code", "message"} body, never exceptions;
only genuinely unexpected faults (DB down, bug) raise.

Cookie contract:
  Sign-in and session refresh emit one Set-Cookie header for the session
  cookie; sign-out emits a clearing cookie. Callers forward the header string
  unchanged.

Layer rule: no imports from api/ or profiles/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any
from urllib.parse import urlencode, urlsplit

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import IntegrityError

from auth.models import Session, User, Verification
from auth.store import AuthStore, utcnow
from auth.tokens import (
    DUMMY_HASH,
    build_clearing_cookie,
    build_session_cookie,
    generate_token,
    hash_password,
    hash_reset_token,
    read_cookie,
    sign_token,
    unsign_token,
    verify_password,
)
from core.config import Settings, get_settings

logger = logging.getLogger("authgateway.auth")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128

ResetPasswordSender = Callable[[User, str, str], None]


@dataclass
class AuthResponse:
    """Result of one engine operation, shaped like an HTTP response.

    body holds domain objects (User, Session) for typed API calls; the native
    routes serialize it with to_json_body().
    """

    status: int
    body: Any = None
    headers: list[tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status < 400

    def header(self, name: str) -> str | None:
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None


def _error(status: int, code: str, message: str) -> AuthResponse:
    return AuthResponse(status=status, body={"code": code, "message": message})


class AuthEngine:
    """Email/password authentication over an AuthStore.

    Usage:
        engine = AuthEngine(AuthStore(db_url))
        resp = engine.sign_in_email("a@example.com", "Passw0rd1")
        cookie = resp.header("set-cookie")
    """

    def __init__(
        self,
        store: AuthStore,
        settings: Settings | None = None,
        send_reset_password: ResetPasswordSender | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.send_reset_password = send_reset_password or self._log_reset_link

    # ------------------------------------------------------------------
    # Sign-up / sign-in / sign-out
    # ------------------------------------------------------------------

    def sign_up_email(self, email: str, password: str, name: str | None = None, image: str | None = None) -> AuthResponse:
        """Create a user with a credential account. Does not start a session."""
        email = email.strip().lower()
        if not _is_email(email):
            return _error(400, "INVALID_EMAIL", "Invalid email")
        failure = _check_password_length(password)
        if failure is not None:
            return failure
        if self.store.get_user_by_email(email) is not None:
            return _error(400, "USER_ALREADY_EXISTS", "User already exists")

        try:
            user = self.store.create_user(User(email=email, name=name, image=image), hash_password(password))
        except IntegrityError:
            # Lost a race with a concurrent sign-up for the same email.
            return _error(400, "USER_ALREADY_EXISTS", "User already exists")
        logger.info("User %s registered", user.id)
        return AuthResponse(status=200, body={"user": user})

    def sign_in_email(
        self,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResponse:
        """Verify credentials and issue a session cookie.

        bcrypt always runs, against DUMMY_HASH when the email is unknown, so
        an unknown email and a wrong password cost the same time.
        """
        user = self.store.get_user_by_email(email.strip().lower())
        account = self.store.get_credential_account(user.id) if user is not None else None
        if user is None or account is None or account.password is None:
            verify_password(password, DUMMY_HASH)
            return _error(401, "INVALID_EMAIL_OR_PASSWORD", "Invalid email or password")
        if not verify_password(password, account.password):
            return _error(401, "INVALID_EMAIL_OR_PASSWORD", "Invalid email or password")

        session = self.store.create_session(
            Session(
                user_id=user.id,
                token=generate_token(),
                expires_at=utcnow() + timedelta(seconds=self.settings.session_expires_in),
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )
        logger.info("Session %s created for user %s", session.id, user.id)
        return AuthResponse(
            status=200,
            body={"user": user, "session": session},
            headers=[("set-cookie", self._session_cookie(session.token))],
        )

    def sign_out(self, headers: Mapping[str, str]) -> AuthResponse:
        """Invalidate the session named by the request cookie, if any.

        Always succeeds and always clears the cookie; signing out without a
        session is a no-op rather than an error.
        """
        token = self._token_from_headers(headers)
        if token is not None and self.store.delete_session(token):
            logger.info("Session revoked on sign-out")
        cookie = build_clearing_cookie(self.settings.session_cookie_name, self.settings.secure_cookies)
        return AuthResponse(status=200, body={"success": True}, headers=[("set-cookie", cookie)])

    # ------------------------------------------------------------------
    # Session lookup
    # ------------------------------------------------------------------

    def get_session(self, headers: Mapping[str, str]) -> AuthResponse:
        """Resolve the request cookie to {"user", "session"}; body is None when absent.

        Expired sessions are deleted on sight. A session older than
        session_update_age is extended to a full session_expires_in and a
        fresh cookie is returned with it.
        """
        token = self._token_from_headers(headers)
        if token is None:
            return AuthResponse(status=200, body=None)
        session = self.store.get_session_by_token(token)
        if session is None:
            return AuthResponse(status=200, body=None)

        now = utcnow()
        if session.expires_at <= now:
            self.store.delete_session(token)
            return AuthResponse(status=200, body=None)
        user = self.store.get_user_by_id(session.user_id)
        if user is None:
            return AuthResponse(status=200, body=None)

        response = AuthResponse(status=200, body={"user": user, "session": session})
        expires_in = timedelta(seconds=self.settings.session_expires_in)
        update_age = timedelta(seconds=self.settings.session_update_age)
        if session.expires_at - expires_in + update_age <= now:
            session.expires_at = now + expires_in
            self.store.extend_session(session.id, session.expires_at)
            response.headers.append(("set-cookie", self._session_cookie(session.token)))
        return response

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forget_password(self, email: str, redirect_to: str | None = None) -> AuthResponse:
        """Issue a reset token for a credential account. Always 200.

        The response is identical whether or not the email is registered.
        """
        user = self.store.get_user_by_email(email.strip().lower())
        account = self.store.get_credential_account(user.id) if user is not None else None
        if user is not None and account is not None:
            token = generate_token()
            self.store.create_verification(
                Verification(
                    identifier=_reset_identifier(token),
                    value=user.id,
                    expires_at=utcnow() + timedelta(seconds=self.settings.reset_token_expire_seconds),
                )
            )
            target = self._reset_target(redirect_to)
            url = f"{target}?{urlencode({'token': token})}"
            try:
                self.send_reset_password(user, url, token)
            except Exception:
                # Surfacing this would tell the caller the email is registered.
                logger.exception("Password reset sender failed for user %s", user.id)
        return AuthResponse(status=200, body={"status": True})

    def reset_password(self, token: str, new_password: str) -> AuthResponse:
        """Consume a reset token and set a new password."""
        failure = _check_password_length(new_password)
        if failure is not None:
            return failure

        verification = self.store.get_verification(_reset_identifier(token))
        if verification is None:
            return _error(400, "INVALID_TOKEN", "Invalid token")
        if verification.expires_at <= utcnow():
            self.store.delete_verification(verification.id)
            return _error(400, "INVALID_TOKEN", "Invalid token")

        user_id = verification.value
        if not self.store.update_password(user_id, hash_password(new_password)):
            self.store.delete_verification(verification.id)
            return _error(400, "INVALID_TOKEN", "Invalid token")
        self.store.delete_verification(verification.id)
        if self.settings.revoke_sessions_on_password_reset:
            revoked = self.store.delete_user_sessions(user_id)
            logger.info("Revoked %d session(s) after password reset for user %s", revoked, user_id)
        logger.info("Password reset for user %s", user_id)
        return AuthResponse(status=200, body={"status": True})

    # ------------------------------------------------------------------
    # Raw HTTP-style dispatcher (native /api/auth/* endpoints)
    # ------------------------------------------------------------------

    def handle(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        body: bytes = b"",
        client_host: str | None = None,
    ) -> AuthResponse:
        """Dispatch a raw request to an engine operation.

        path is relative to the mount point, e.g. "/sign-in/email".
        """
        route = (method.upper(), "/" + path.strip("/"))
        if route == ("GET", "/get-session"):
            return self.get_session(headers)
        if route == ("POST", "/sign-out"):
            return self.sign_out(headers)
        if route not in _JSON_ROUTES:
            return _error(404, "NOT_FOUND", "Not found")

        try:
            payload = json.loads(body or b"{}")
        except (ValueError, RecursionError):
            return _error(400, "INVALID_JSON", "Request body must be valid JSON")
        if not isinstance(payload, dict):
            return _error(400, "INVALID_JSON", "Request body must be a JSON object")

        if route == ("POST", "/sign-up/email"):
            fields = _string_fields(payload, required=("email", "password"), optional=("name", "image"))
            if fields is None:
                return _error(400, "VALIDATION_ERROR", "email and password are required")
            return self.sign_up_email(fields["email"], fields["password"], fields.get("name"), fields.get("image"))
        if route == ("POST", "/sign-in/email"):
            fields = _string_fields(payload, required=("email", "password"))
            if fields is None:
                return _error(400, "VALIDATION_ERROR", "email and password are required")
            return self.sign_in_email(
                fields["email"],
                fields["password"],
                ip_address=client_host,
                user_agent=headers.get("user-agent") or headers.get("User-Agent"),
            )
        if route == ("POST", "/forget-password"):
            fields = _string_fields(payload, required=("email",), optional=("redirectTo",))
            if fields is None:
                return _error(400, "VALIDATION_ERROR", "email is required")
            return self.forget_password(fields["email"], fields.get("redirectTo"))
        fields = _string_fields(payload, required=("token", "newPassword"))
        if fields is None:
            return _error(400, "VALIDATION_ERROR", "token and newPassword are required")
        return self.reset_password(fields["token"], fields["newPassword"])

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _log_reset_link(self, user: User, url: str, token: str) -> None:
        """Default reset sender. There is no mail transport; the link is only logged in DEBUG."""
        if self.settings.debug:
            logger.info("Password reset link for user %s: %s", user.id, url)
        else:
            logger.info("Password reset link issued for user %s", user.id)

    def _reset_target(self, redirect_to: str | None) -> str:
        """Page the reset link points at.

        A caller-supplied redirect is honoured only when its origin is the
        service's own base URL or one of the configured CORS origins; anything
        else falls back to <base_url>/reset-password so a token is never sent
        to a foreign host.
        """
        default = f"{self.settings.base_url.rstrip('/')}/reset-password"
        if not redirect_to:
            return default
        origin = _origin(redirect_to)
        trusted = {_origin(self.settings.base_url), *(_origin(o) for o in self.settings.cors_origins)}
        if origin is None or origin not in trusted:
            logger.warning("Ignoring untrusted reset redirect origin %s", origin or "<invalid>")
            return default
        return redirect_to

    def _session_cookie(self, token: str) -> str:
        return build_session_cookie(
            self.settings.session_cookie_name,
            sign_token(self.settings.secret_key, token),
            max_age=self.settings.session_expires_in,
            secure=self.settings.secure_cookies,
        )

    def _token_from_headers(self, headers: Mapping[str, str]) -> str | None:
        value = read_cookie(headers, self.settings.session_cookie_name)
        if value is None:
            return None
        return unsign_token(self.settings.secret_key, value)


_JSON_ROUTES = {
    ("POST", "/sign-up/email"),
    ("POST", "/sign-in/email"),
    ("POST", "/forget-password"),
    ("POST", "/reset-password"),
}


def _is_email(value: str) -> bool:
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def _origin(url: str) -> str | None:
    """scheme://host[:port] of an absolute http(s) URL, lower-cased; None otherwise."""
    parts = urlsplit(url.strip())
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        return None
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


def _reset_identifier(token: str) -> str:
    return f"reset-password:{hash_reset_token(token)}"


def _check_password_length(password: str) -> AuthResponse | None:
    if len(password) < MIN_PASSWORD_LENGTH:
        return _error(400, "PASSWORD_TOO_SHORT", "Password too short")
    if len(password) > MAX_PASSWORD_LENGTH:
        return _error(400, "PASSWORD_TOO_LONG", "Password too long")
    return None


def _string_fields(payload: dict, required: tuple[str, ...], optional: tuple[str, ...] = ()) -> dict[str, str] | None:
    """Pick string fields out of a JSON payload. None if a required one is missing or not a string."""
    fields: dict[str, str] = {}
    for key in required:
        value = payload.get(key)
        if not isinstance(value, str) or not value:
            return None
        fields[key] = value
    for key in optional:
        value = payload.get(key)
        if isinstance(value, str):
            fields[key] = value
    return fields


# ---------------------------------------------------------------------------
# JSON rendering for the native endpoints
# ---------------------------------------------------------------------------


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "emailVerified": user.email_verified,
        "name": user.name,
        "image": user.image,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
        "updatedAt": user.updated_at.isoformat() if user.updated_at else None,
    }


def session_to_dict(session: Session) -> dict:
    return {
        "id": session.id,
        "userId": session.user_id,
        "expiresAt": session.expires_at.isoformat(),
        "ipAddress": session.ip_address,
        "userAgent": session.user_agent,
        "createdAt": session.created_at.isoformat() if session.created_at else None,
        "updatedAt": session.updated_at.isoformat() if session.updated_at else None,
    }


def to_json_body(body: Any) -> Any:
    """Render an AuthResponse body (which may hold User/Session objects) as JSON-safe data."""
    if isinstance(body, User):
        return user_to_dict(body)
    if isinstance(body, Session):
        return session_to_dict(body)
    if isinstance(body, dict):
        return {key: to_json_body(value) for key, value in body.items()}
    return body
