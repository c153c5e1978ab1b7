"""
profiles/store.py -- Profile persistence for the gateway's /auth/me endpoints.

The auth engine owns the users table; this store covers the two mutations the
engine has no operation for: editing name/email and deleting the account.
It never writes sessions, accounts or verifications. Deleting a user relies on
ON DELETE CASCADE (enabled for SQLite by create_db_engine) to remove them.

Pattern: Repository, same as auth/store.py. Route handlers never touch SQL.

Usage:
    store = ProfileStore(db_url)
    store.update_profile(user_id, name="Alice B")
    user = store.get_user(user_id)
    store.delete_user(user_id)
    store.close()
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import Engine

from auth.models import User
from auth.store import create_db_engine, row_to_user, to_iso, users, utcnow
from core.config import get_settings

logger = logging.getLogger("authgateway.profiles")


class ProfileStore:
    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = create_db_engine(db_url or get_settings().database_url)

    def get_user(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return row_to_user(row) if row is not None else None

    def update_profile(self, user_id: str, name: str | None = None, email: str | None = None) -> bool:
        """Apply only the provided fields and stamp updated_at.

        Concurrent updates are last-write-wins. Raises
        sqlalchemy.exc.IntegrityError when email belongs to another user.
        Returns False if nothing was provided or the user no longer exists.
        """
        updates: dict = {}
        if name is not None:
            updates["name"] = name
        if email is not None:
            updates["email"] = email.strip().lower()
        if not updates:
            return False
        updates["updated_at"] = to_iso(utcnow())

        with self.engine.begin() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(**updates))
        if result.rowcount:
            logger.info("Profile updated for user %s (%s)", user_id, ", ".join(sorted(updates)))
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Delete the user row; sessions and accounts go with it."""
        with self.engine.begin() as conn:
            result = conn.execute(users.delete().where(users.c.id == user_id))
        if result.rowcount:
            logger.info("User %s deleted", user_id)
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()
