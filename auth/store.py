"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AuthStore is the repository; the row mappers at the bottom translate rows to dataclasses.
The engine never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Password hashes live on the accounts table, never on users, so nothing that
  serializes a User can leak a credential.

Schema notes:
  sessions.user_id and accounts.user_id cascade on user delete. SQLite only
  honours ON DELETE CASCADE with PRAGMA foreign_keys=ON, which is set on every
  pooled connection (see _set_sqlite_pragmas).

  Timestamps are stored as ISO 8601 UTC strings and parsed back into aware
  datetimes by the row mappers.

Layer rule: no imports from api/ or profiles/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine

from auth.models import Account, Session, User, Verification
from core.config import get_settings

CREDENTIAL_PROVIDER = "credential"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(254), nullable=False, unique=True),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("name", String(100)),
    Column("image", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

sessions = Table(
    "sessions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("token", String(64), unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Index("idx_sessions_user_id", "user_id"),
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("account_id", String(255), nullable=False),
    Column("provider_id", String(50), nullable=False),
    Column("access_token", Text),
    Column("refresh_token", Text),
    Column("access_token_expires_at", String(32)),
    Column("refresh_token_expires_at", String(32)),
    Column("scope", Text),
    Column("password", Text),  # bcrypt hash, credential provider only
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("user_id", "provider_id", "account_id", name="uq_account_provider"),
    Index("idx_accounts_user_id", "user_id"),
)

verifications = Table(
    "verifications",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("identifier", String(255), nullable=False),
    Column("value", Text, nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Index("idx_verifications_identifier", "identifier"),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Build a SQLAlchemy engine with the SQLite pragmas wired in.

    Shared by AuthStore and profiles.store.ProfileStore so both see the same
    cascade behaviour.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User, Account, Session and Verification records.

    Usage:
        store = AuthStore("sqlite:///auth.db")
        user = store.create_user(User(email="a@example.com"), password_hash=hash_password("..."))
        session = store.create_session(Session(user_id=user.id, token=token, expires_at=expiry))
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = create_db_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)

    def reset_schema(self) -> None:
        """Drop and recreate every auth table. Development only."""
        metadata.drop_all(self.engine)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users and accounts
    # ------------------------------------------------------------------

    def create_user(self, user: User, password_hash: str) -> User:
        """Insert a user and its credential account in one transaction.

        Raises sqlalchemy.exc.IntegrityError if the email already exists. The
        engine treats that as USER_ALREADY_EXISTS, which also covers the race
        where two sign-ups for the same email pass the pre-check together.
        """
        created_at = utcnow()
        now = to_iso(created_at)
        user_id = _new_id()
        with self.engine.begin() as conn:
            conn.execute(
                users.insert().values(
                    id=user_id,
                    email=user.email,
                    email_verified=1 if user.email_verified else 0,
                    name=user.name,
                    image=user.image,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.execute(
                accounts.insert().values(
                    id=_new_id(),
                    user_id=user_id,
                    account_id=user_id,
                    provider_id=CREDENTIAL_PROVIDER,
                    password=password_hash,
                    created_at=now,
                    updated_at=now,
                )
            )
        return User(
            id=user_id,
            email=user.email,
            name=user.name,
            image=user.image,
            email_verified=user.email_verified,
            created_at=created_at,
            updated_at=created_at,
        )

    def get_user_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        """Look up a user by email. The caller passes the lower-cased form."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        return row_to_user(row) if row is not None else None

    def get_credential_account(self, user_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                accounts.select().where(
                    (accounts.c.user_id == user_id) & (accounts.c.provider_id == CREDENTIAL_PROVIDER)
                )
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def update_password(self, user_id: str, password_hash: str) -> bool:
        """Replace the credential hash. Returns False if the user has no credential account."""
        with self.engine.begin() as conn:
            result = conn.execute(
                accounts.update()
                .where((accounts.c.user_id == user_id) & (accounts.c.provider_id == CREDENTIAL_PROVIDER))
                .values(password=password_hash, updated_at=to_iso(utcnow()))
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> Session:
        now = utcnow()
        session.id = _new_id()
        session.created_at = now
        session.updated_at = now
        with self.engine.begin() as conn:
            conn.execute(
                sessions.insert().values(
                    id=session.id,
                    token=session.token,
                    expires_at=to_iso(session.expires_at),
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                    user_id=session.user_id,
                    created_at=to_iso(now),
                    updated_at=to_iso(now),
                )
            )
        return session

    def get_session_by_token(self, token: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(sessions.select().where(sessions.c.token == token)).fetchone()
        return _row_to_session(row) if row is not None else None

    def extend_session(self, session_id: str, expires_at: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                sessions.update()
                .where(sessions.c.id == session_id)
                .values(expires_at=to_iso(expires_at), updated_at=to_iso(utcnow()))
            )

    def delete_session(self, token: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(sessions.delete().where(sessions.c.token == token))
        return result.rowcount > 0

    def delete_user_sessions(self, user_id: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(sessions.delete().where(sessions.c.user_id == user_id))
        return result.rowcount

    # ------------------------------------------------------------------
    # Verifications
    # ------------------------------------------------------------------

    def create_verification(self, verification: Verification) -> Verification:
        now = utcnow()
        verification.id = _new_id()
        verification.created_at = now
        verification.updated_at = now
        with self.engine.begin() as conn:
            conn.execute(
                verifications.insert().values(
                    id=verification.id,
                    identifier=verification.identifier,
                    value=verification.value,
                    expires_at=to_iso(verification.expires_at),
                    created_at=to_iso(now),
                    updated_at=to_iso(now),
                )
            )
        return verification

    def get_verification(self, identifier: str) -> Verification | None:
        """Return the newest verification record for identifier, if any."""
        with self.engine.connect() as conn:
            row = conn.execute(
                verifications.select()
                .where(verifications.c.identifier == identifier)
                .order_by(verifications.c.created_at.desc())
            ).fetchone()
        return _row_to_verification(row) if row is not None else None

    def delete_verification(self, verification_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(verifications.delete().where(verifications.c.id == verification_id))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        email_verified=bool(row.email_verified),
        name=row.name,
        image=row.image,
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        token=row.token,
        expires_at=from_iso(row.expires_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        user_id=row.user_id,
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        user_id=row.user_id,
        account_id=row.account_id,
        provider_id=row.provider_id,
        password=row.password,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        access_token_expires_at=from_iso(row.access_token_expires_at),
        refresh_token_expires_at=from_iso(row.refresh_token_expires_at),
        scope=row.scope,
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )


def _row_to_verification(row) -> Verification:
    return Verification(
        id=row.id,
        identifier=row.identifier,
        value=row.value,
        expires_at=from_iso(row.expires_at),
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )
