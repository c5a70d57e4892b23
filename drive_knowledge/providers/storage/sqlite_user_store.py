"""SQLite-backed user repository.

Users, ownership entries, share grants and Microsoft tokens live in four
tables of the shared :class:`Database`.  Grants are upserted on
``(email, knowledge_source_id, shared_by)`` so sharing twice updates the
access level rather than duplicating the grant.
"""

from __future__ import annotations

from datetime import datetime

import aiosqlite
import structlog

from drive_knowledge.interfaces.user_store import IUserStore
from drive_knowledge.models.user import AccessLevel, MicrosoftToken, SharedGrant, User
from drive_knowledge.providers.storage.database import Database
from drive_knowledge.utils.errors import StoreError

logger = structlog.get_logger(logger_name=__name__)

_UPSERT_GRANT_SQL = """\
INSERT INTO shared_grants (email, knowledge_source_id, shared_by, access_level, shared_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(email, knowledge_source_id, shared_by)
DO UPDATE SET access_level = excluded.access_level,
              shared_at    = excluded.shared_at;
"""

_UPSERT_TOKEN_SQL = """\
INSERT INTO microsoft_tokens (email, access_token, refresh_token, expires_at)
VALUES (?, ?, ?, ?)
ON CONFLICT(email)
DO UPDATE SET access_token  = excluded.access_token,
              refresh_token = COALESCE(excluded.refresh_token, microsoft_tokens.refresh_token),
              expires_at    = excluded.expires_at;
"""


class SQLiteUserStore(IUserStore):
    """User persistence on the shared :class:`Database`."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def get(self, email: str) -> User | None:
        conn = self._db.connection
        cursor = await conn.execute("SELECT email, name FROM users WHERE email = ?", (email,))
        row = await cursor.fetchone()
        if row is None:
            return None

        cursor = await conn.execute(
            "SELECT knowledge_source_id FROM owned_sources WHERE email = ? ORDER BY rowid",
            (email,),
        )
        owned = [r["knowledge_source_id"] for r in await cursor.fetchall()]

        cursor = await conn.execute(
            "SELECT knowledge_source_id, shared_by, access_level, shared_at "
            "FROM shared_grants WHERE email = ? ORDER BY shared_at",
            (email,),
        )
        shared = [
            SharedGrant(
                knowledge_source_id=r["knowledge_source_id"],
                shared_by=r["shared_by"],
                access_level=AccessLevel(r["access_level"]),
                shared_at=datetime.fromisoformat(r["shared_at"]),
            )
            for r in await cursor.fetchall()
        ]

        token = await self.get_microsoft_token(email)
        return User(email=row["email"], name=row["name"], owned=owned, shared=shared, microsoft_token=token)

    async def get_or_create(self, email: str, name: str | None = None) -> User:
        await self._write(
            "INSERT OR IGNORE INTO users (email, name) VALUES (?, ?)",
            (email, name),
        )
        user = await self.get(email)
        if user is None:
            raise StoreError(f"User {email} vanished after insert", "sqlite")
        return user

    async def add_owned(self, email: str, knowledge_source_id: str) -> None:
        await self._write("INSERT OR IGNORE INTO users (email) VALUES (?)", (email,))
        await self._write(
            "INSERT OR IGNORE INTO owned_sources (email, knowledge_source_id) VALUES (?, ?)",
            (email, knowledge_source_id),
        )

    async def add_shared_grant(self, email: str, grant: SharedGrant) -> SharedGrant:
        await self._write("INSERT OR IGNORE INTO users (email) VALUES (?)", (email,))
        await self._write(
            _UPSERT_GRANT_SQL,
            (
                email,
                grant.knowledge_source_id,
                grant.shared_by,
                grant.access_level.value,
                grant.shared_at.isoformat(),
            ),
        )
        logger.info(
            "shared_grant_saved",
            email=email,
            knowledge_source_id=grant.knowledge_source_id,
            shared_by=grant.shared_by,
            access_level=grant.access_level.value,
        )
        return grant

    async def remove_shared_grant(self, email: str, knowledge_source_id: str, shared_by: str) -> bool:
        rowcount = await self._write(
            "DELETE FROM shared_grants WHERE email = ? AND knowledge_source_id = ? AND shared_by = ?",
            (email, knowledge_source_id, shared_by),
        )
        return rowcount > 0

    async def remove_grants_for_source(self, knowledge_source_id: str) -> int:
        removed = await self._write(
            "DELETE FROM shared_grants WHERE knowledge_source_id = ?", (knowledge_source_id,)
        )
        await self._write(
            "DELETE FROM owned_sources WHERE knowledge_source_id = ?", (knowledge_source_id,)
        )
        return removed

    async def get_access_level(self, email: str, knowledge_source_id: str) -> AccessLevel | None:
        cursor = await self._db.connection.execute(
            "SELECT access_level FROM shared_grants WHERE email = ? AND knowledge_source_id = ?",
            (email, knowledge_source_id),
        )
        levels = {AccessLevel(r["access_level"]) for r in await cursor.fetchall()}
        if AccessLevel.WRITE in levels:
            return AccessLevel.WRITE
        if AccessLevel.READ in levels:
            return AccessLevel.READ
        return None

    async def save_microsoft_token(self, email: str, token: MicrosoftToken) -> None:
        await self._write("INSERT OR IGNORE INTO users (email) VALUES (?)", (email,))
        await self._write(
            _UPSERT_TOKEN_SQL,
            (email, token.access_token, token.refresh_token, token.expires_at.isoformat()),
        )
        logger.info("microsoft_token_saved", email=email, expires_at=token.expires_at.isoformat())

    async def get_microsoft_token(self, email: str) -> MicrosoftToken | None:
        cursor = await self._db.connection.execute(
            "SELECT access_token, refresh_token, expires_at FROM microsoft_tokens WHERE email = ?",
            (email,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return MicrosoftToken(
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=datetime.fromisoformat(row["expires_at"]),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _write(self, sql: str, params: tuple) -> int:
        """Execute one statement and commit; returns the affected row count."""
        conn = self._db.connection
        try:
            cursor = await conn.execute(sql, params)
            await conn.commit()
        except aiosqlite.Error as exc:
            raise StoreError(f"User store write failed: {exc}", "sqlite") from exc
        return cursor.rowcount
