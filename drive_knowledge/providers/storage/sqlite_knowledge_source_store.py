"""SQLite-backed knowledge-source repository.

Stores :class:`KnowledgeSource` records in the ``knowledge_sources`` table.
The ``UNIQUE(name, created_by)`` constraint enforces per-owner name
uniqueness; violations surface as :class:`DuplicateNameError`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import aiosqlite
import structlog

from drive_knowledge.interfaces.knowledge_source_store import IKnowledgeSourceStore
from drive_knowledge.models.knowledge import (
    KnowledgeSource,
    KnowledgeSourceStatus,
    SourceType,
    utc_now,
)
from drive_knowledge.providers.storage.database import Database
from drive_knowledge.utils.errors import DuplicateNameError, NotFoundError, StoreError

logger = structlog.get_logger(logger_name=__name__)

_COLUMNS = (
    "id, name, description, source_type, source_url, created_by, "
    "status, error, created_at, updated_at"
)

_INSERT_SQL = f"""\
INSERT INTO knowledge_sources ({_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_UPDATABLE_FIELDS = frozenset({"name", "description", "source_url", "status", "error"})


class SQLiteKnowledgeSourceStore(IKnowledgeSourceStore):
    """Knowledge-source persistence on the shared :class:`Database`."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create(self, source: KnowledgeSource) -> KnowledgeSource:
        conn = self._db.connection
        try:
            await conn.execute(_INSERT_SQL, self._to_row(source))
            await conn.commit()
        except aiosqlite.IntegrityError as exc:
            await conn.rollback()
            raise DuplicateNameError(
                f"A knowledge source named '{source.name}' already exists for this user."
            ) from exc
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to create knowledge source: {exc}", "sqlite") from exc

        logger.info(
            "knowledge_source_created",
            knowledge_source_id=source.id,
            name=source.name,
            owner=source.created_by,
        )
        return source

    async def get(self, knowledge_source_id: str) -> KnowledgeSource | None:
        cursor = await self._db.connection.execute(
            f"SELECT {_COLUMNS} FROM knowledge_sources WHERE id = ?",
            (knowledge_source_id,),
        )
        row = await cursor.fetchone()
        return self._from_row(row) if row else None

    async def find_by_name_and_owner(self, name: str, owner: str) -> KnowledgeSource | None:
        cursor = await self._db.connection.execute(
            f"SELECT {_COLUMNS} FROM knowledge_sources WHERE name = ? AND created_by = ?",
            (name, owner),
        )
        row = await cursor.fetchone()
        return self._from_row(row) if row else None

    async def list(
        self,
        owner: str | None = None,
        name_contains: str | None = None,
        ids: list[str] | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> list[KnowledgeSource]:
        clauses: list[str] = []
        params: list[Any] = []

        scope: list[str] = []
        if owner is not None:
            scope.append("created_by = ?")
            params.append(owner)
        if ids is not None:
            if ids:
                scope.append(f"id IN ({', '.join('?' for _ in ids)})")
                params.extend(ids)
            elif owner is None:
                return []
        if scope:
            clauses.append("(" + " OR ".join(scope) + ")")

        if name_contains:
            clauses.append("LOWER(name) LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(name_contains.lower())}%")

        sql = f"SELECT {_COLUMNS} FROM knowledge_sources"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, name ASC LIMIT ? OFFSET ?"
        params.extend([limit, skip])

        cursor = await self._db.connection.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._from_row(r) for r in rows]

    async def update(self, knowledge_source_id: str, **fields: Any) -> KnowledgeSource:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        current = await self.get(knowledge_source_id)
        if current is None:
            raise NotFoundError(f"Knowledge source {knowledge_source_id} not found")
        if not fields:
            return current

        updated = current.model_copy(update={**fields, "updated_at": utc_now()})
        conn = self._db.connection
        try:
            await conn.execute(
                "UPDATE knowledge_sources SET name = ?, description = ?, source_url = ?, "
                "status = ?, error = ?, updated_at = ? WHERE id = ?",
                (
                    updated.name,
                    updated.description,
                    updated.source_url,
                    KnowledgeSourceStatus(updated.status).value,
                    updated.error,
                    updated.updated_at.isoformat(),
                    knowledge_source_id,
                ),
            )
            await conn.commit()
        except aiosqlite.IntegrityError as exc:
            await conn.rollback()
            raise DuplicateNameError(
                f"A knowledge source named '{updated.name}' already exists for this user."
            ) from exc
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to update knowledge source: {exc}", "sqlite") from exc
        return updated

    async def update_status(
        self,
        knowledge_source_id: str,
        status: KnowledgeSourceStatus,
        error: str | None = None,
    ) -> KnowledgeSource:
        error = error if status == KnowledgeSourceStatus.ERROR else None
        source = await self.update(knowledge_source_id, status=status, error=error)
        logger.info(
            "knowledge_source_status_updated",
            knowledge_source_id=knowledge_source_id,
            status=status.value,
            error=error,
        )
        return source

    async def delete(self, knowledge_source_id: str) -> bool:
        conn = self._db.connection
        try:
            cursor = await conn.execute(
                "DELETE FROM knowledge_sources WHERE id = ?", (knowledge_source_id,)
            )
            await conn.commit()
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to delete knowledge source: {exc}", "sqlite") from exc
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _to_row(source: KnowledgeSource) -> tuple:
        return (
            source.id,
            source.name,
            source.description,
            source.source_type.value,
            source.source_url,
            source.created_by,
            source.status.value,
            source.error,
            source.created_at.isoformat(),
            source.updated_at.isoformat(),
        )

    @staticmethod
    def _from_row(row: aiosqlite.Row) -> KnowledgeSource:
        return KnowledgeSource(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            source_type=SourceType(row["source_type"]),
            source_url=row["source_url"],
            created_by=row["created_by"],
            status=KnowledgeSourceStatus(row["status"]),
            error=row["error"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
