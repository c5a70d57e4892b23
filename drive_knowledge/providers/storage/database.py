"""SQLite database lifecycle for the knowledge-source and user repositories.

One :class:`Database` is constructed by the process entry point and
injected into both SQLite repositories.  It owns a single ``aiosqlite``
connection; ``connect()`` and ``close()`` are idempotent and the schema is
created on first connect.
"""

from __future__ import annotations

from pathlib import Path

import aiosqlite
import structlog

from drive_knowledge.utils.errors import StoreError

logger = structlog.get_logger(logger_name=__name__)

_SCHEMA_SQL = [
    """\
CREATE TABLE IF NOT EXISTS knowledge_sources (
    id           TEXT PRIMARY KEY,
    name         TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    source_type  TEXT NOT NULL,
    source_url   TEXT NOT NULL,
    created_by   TEXT NOT NULL,
    status       TEXT NOT NULL,
    error        TEXT,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL,
    UNIQUE(name, created_by)
);
""",
    """\
CREATE TABLE IF NOT EXISTS users (
    email       TEXT PRIMARY KEY,
    name        TEXT,
    created_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
""",
    """\
CREATE TABLE IF NOT EXISTS owned_sources (
    email                TEXT NOT NULL,
    knowledge_source_id  TEXT NOT NULL,
    PRIMARY KEY (email, knowledge_source_id)
);
""",
    """\
CREATE TABLE IF NOT EXISTS shared_grants (
    email                TEXT NOT NULL,
    knowledge_source_id  TEXT NOT NULL,
    shared_by            TEXT NOT NULL,
    access_level         TEXT NOT NULL,
    shared_at            TEXT NOT NULL,
    UNIQUE(email, knowledge_source_id, shared_by)
);
""",
    """\
CREATE TABLE IF NOT EXISTS microsoft_tokens (
    email          TEXT PRIMARY KEY,
    access_token   TEXT NOT NULL,
    refresh_token  TEXT,
    expires_at     TEXT NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS idx_ks_created_by ON knowledge_sources(created_by);",
    "CREATE INDEX IF NOT EXISTS idx_grants_source ON shared_grants(knowledge_source_id);",
]


class Database:
    """Owns the aiosqlite connection shared by the SQLite repositories.

    Usable as an async context manager::

        async with Database("data/knowledge.db") as db:
            store = SQLiteKnowledgeSourceStore(db)

    Pass ``":memory:"`` for a throwaway database.
    """

    def __init__(self, path: str | Path = "data/knowledge.db") -> None:
        self._path = str(path)
        self._conn: aiosqlite.Connection | None = None

    @property
    def path(self) -> str:
        return self._path

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreError(
                message="Database is not connected; call connect() first",
                provider_name="sqlite",
            )
        return self._conn

    async def connect(self) -> None:
        """Open the connection and create the schema.  No-op when already open."""
        if self._conn is not None:
            return

        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = await aiosqlite.connect(self._path)
        except aiosqlite.Error as exc:
            raise StoreError(
                message=f"Failed to open database at {self._path}: {exc}",
                provider_name="sqlite",
            ) from exc

        try:
            conn.row_factory = aiosqlite.Row
            for statement in _SCHEMA_SQL:
                await conn.execute(statement)
            await conn.commit()
        except aiosqlite.Error as exc:
            await conn.close()
            raise StoreError(
                message=f"Failed to create schema in {self._path}: {exc}",
                provider_name="sqlite",
            ) from exc

        self._conn = conn
        logger.info("database_connected", path=self._path)

    async def close(self) -> None:
        """Close the connection.  No-op when already closed."""
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        await conn.close()
        logger.info("database_closed", path=self._path)

    async def __aenter__(self) -> Database:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
