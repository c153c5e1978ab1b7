"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The store maps rows to
these; the engine and the gateway's mapper read them. Timestamps are
timezone-aware UTC datetimes.

Layer rule: no imports from api/ or profiles/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A registered identity.

    email is stored lower-cased and is globally unique. id is assigned once
    by the store and never changes.
    """

    email: str
    id: str | None = None
    name: str | None = None
    image: str | None = None
    email_verified: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Session:
    """A login session. Valid only while expires_at is in the future.

    token is the raw session secret; the browser receives it inside a signed
    cookie and it is never rendered in a JSON body.
    """

    user_id: str
    token: str
    expires_at: datetime
    id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Account:
    """Links a User to an authentication provider.

    For email/password sign-up provider_id is "credential", account_id equals
    the user id, and password holds the bcrypt hash. (user_id, provider_id,
    account_id) is unique.
    """

    user_id: str
    account_id: str
    provider_id: str
    id: str | None = None
    password: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    access_token_expires_at: datetime | None = None
    refresh_token_expires_at: datetime | None = None
    scope: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Verification:
    """Short-lived identifier/value pair (password reset, email verification).

    Inert once expires_at has passed.
    """

    identifier: str
    value: str
    expires_at: datetime
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
