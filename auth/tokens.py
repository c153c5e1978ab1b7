"""
auth/tokens.py -- Password hashing, session tokens, and cookie utilities.

Security design decisions:
  Passwords: bcrypt, used directly (no passlib wrapper). bcrypt only looks at
       the first 72 bytes of its input and recent releases reject longer
       input outright, while accepted passwords may be up to 128 characters.
       Every password is therefore pre-hashed with SHA-256 and base64-encoded
       (44 ASCII bytes, no NULs) before bcrypt sees it.

  Timing: DUMMY_HASH lets the engine run a full bcrypt check when the email
       is unknown, so response time does not reveal whether an account exists.

  Session tokens: secrets.token_urlsafe(32) -- 256 bits of entropy. The cookie
       carries the token signed with itsdangerous (HMAC keyed by SECRET_KEY,
       salted per purpose). A forged or truncated cookie fails the signature
       check before any DB lookup happens.

  Reset tokens: the raw token goes to the user; only its SHA-256 digest is
       stored, so a DB leak does not expose usable reset links.

Layer rule: no imports from api/ or profiles/.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from collections.abc import Mapping

import bcrypt
from itsdangerous import BadSignature, Signer
from starlette.requests import cookie_parser
from starlette.responses import Response

logger = logging.getLogger("authgateway.auth")

SESSION_COOKIE_SALT = "authgateway.session-cookie"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def _prehash(plain: str) -> bytes:
    return base64.b64encode(hashlib.sha256(plain.encode("utf-8")).digest())


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_prehash(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_prehash(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB -- treat as a mismatch, never as a 500.
        logger.warning("Stored password hash could not be parsed")
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
DUMMY_HASH: str = hash_password("authgateway_timing_dummy")


# ---------------------------------------------------------------------------
# Session tokens and cookie signing
# ---------------------------------------------------------------------------


def generate_token() -> str:
    """Return a new URL-safe random token (session or reset)."""
    return secrets.token_urlsafe(32)


def _signer(secret: str) -> Signer:
    return Signer(secret, salt=SESSION_COOKIE_SALT)


def sign_token(secret: str, token: str) -> str:
    """Return the cookie value for a session token: "<token>.<signature>"."""
    return _signer(secret).sign(token).decode("utf-8")


def unsign_token(secret: str, value: str) -> str | None:
    """Verify a signed cookie value. Returns the raw token or None if tampered."""
    try:
        token = _signer(secret).unsign(value).decode("utf-8")
    except BadSignature:
        return None
    return token or None


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Set-Cookie / Cookie headers
# ---------------------------------------------------------------------------


def build_session_cookie(name: str, value: str, max_age: int, secure: bool = False) -> str:
    """Render a Set-Cookie header value for the session cookie.

    httponly: JS cannot read the cookie (XSS mitigation).
    samesite=Lax: not sent on cross-site POSTs (CSRF mitigation).
    max_age=0 with an empty value clears the cookie.

    The engine returns headers rather than responses, so the cookie is set on
    a scratch Starlette Response and its raw header value is handed back.
    """
    response = Response()
    response.set_cookie(
        name,
        value=value,
        max_age=max_age,
        path="/",
        httponly=True,
        samesite="lax",
        secure=secure,
    )
    return response.headers["set-cookie"]


def build_clearing_cookie(name: str, secure: bool = False) -> str:
    return build_session_cookie(name, "", max_age=0, secure=secure)


def read_cookie(headers: Mapping[str, str], name: str) -> str | None:
    """Return the named cookie from a request's Cookie header, if present.

    headers may be a Starlette Headers object (case-insensitive) or a plain
    dict from a direct engine call.
    """
    raw = headers.get("cookie") or headers.get("Cookie")
    if not raw:
        return None
    return cookie_parser(raw).get(name) or None
