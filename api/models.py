"""
API request and response models for the auth gateway.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which are the
engine's internal representation. PublicUser.from_user and
PublicSession.from_session are the mapping seam between the two.

Wire format: camelCase keys (alias_generator=to_camel), timestamps as UTC
ISO 8601 with millisecond precision and a trailing "Z". Always dump with
by_alias=True.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from auth.models import Session, User

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def iso_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Normalize a datetime to "YYYY-MM-DDTHH:MM:SS.mmmZ". Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Request payloads
#
# Built by api.validation.validate_payload() only after every rule has
# passed. Values arrive already stripped and normalized, so these carry no
# constraints or sanitizing of their own.
# ---------------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class RegisterPayload(_Payload):
    email: str
    password: str
    name: str


class LoginPayload(_Payload):
    email: str
    password: str


class ProfileUpdatePayload(_Payload):
    name: Optional[str] = None
    email: Optional[str] = None


class ForgotPasswordPayload(_Payload):
    email: str


class ResetPasswordPayload(_Payload):
    token: str
    password: str


# ---------------------------------------------------------------------------
# Public shapes (Session/User mapper)
# ---------------------------------------------------------------------------


class _Public(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class PublicUser(_Public):
    """The user as the gateway exposes it. Credentials never appear here."""

    id: str
    email: str
    email_verified: bool
    name: Optional[str]
    image: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        """Factory Method: engine/store User -> public shape."""
        return cls(
            id=user.id,
            email=user.email,
            email_verified=user.email_verified,
            name=user.name,
            image=user.image,
            created_at=iso_timestamp(user.created_at),
            updated_at=iso_timestamp(user.updated_at),
        )


class PublicSession(_Public):
    """Session metadata. The token itself travels only in the cookie."""

    id: str
    user_id: str
    expires_at: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]

    @classmethod
    def from_session(cls, session: Session) -> "PublicSession":
        return cls(
            id=session.id,
            user_id=session.user_id,
            expires_at=iso_timestamp(session.expires_at),
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            created_at=iso_timestamp(session.created_at),
            updated_at=iso_timestamp(session.updated_at),
        )


# ---------------------------------------------------------------------------
# Response envelopes
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class UserResponse(BaseModel):
    """Response for GET/PUT /auth/me."""

    model_config = ConfigDict(frozen=True)

    user: PublicUser


class RegisterResponse(UserResponse):
    """Response for POST /auth/register."""

    message: str


class SessionResponse(BaseModel):
    """Response for POST /auth/refresh."""

    model_config = ConfigDict(frozen=True)

    user: PublicUser
    session: PublicSession


class LoginResponse(SessionResponse):
    """Response for POST /auth/login."""

    message: str


class ErrorResponse(BaseModel):
    """Error envelope returned on every 4xx/5xx. details only on 400s that have them."""

    model_config = ConfigDict(frozen=True)

    error: str
    details: Optional[list[str]] = None


class HealthResponse(BaseModel):
    """Response for GET /."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    service: str
    timestamp: str
