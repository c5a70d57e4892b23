"""Abstract base class for the knowledge-source repository."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from drive_knowledge.models.knowledge import KnowledgeSource, KnowledgeSourceStatus


# Concrete implementation: SQLiteKnowledgeSourceStore (drive_knowledge/providers/storage/)
class IKnowledgeSourceStore(ABC):
    """Contract for persisting knowledge-source records.

    Names are unique per owner: :meth:`create` and :meth:`update` raise
    :class:`~drive_knowledge.utils.errors.DuplicateNameError` when another
    record of the same owner already uses the name.
    """

    @abstractmethod
    async def create(self, source: KnowledgeSource) -> KnowledgeSource:
        """Insert a new record and return it.

        Raises
        ------
        drive_knowledge.utils.errors.DuplicateNameError
            If ``(name, created_by)`` is already taken.
        """

    @abstractmethod
    async def get(self, knowledge_source_id: str) -> KnowledgeSource | None:
        """Return the record with the given id, or ``None``."""

    @abstractmethod
    async def find_by_name_and_owner(self, name: str, owner: str) -> KnowledgeSource | None:
        """Return the record named *name* owned by *owner*, or ``None``."""

    @abstractmethod
    async def list(
        self,
        owner: str | None = None,
        name_contains: str | None = None,
        ids: list[str] | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> list[KnowledgeSource]:
        """List records, newest first.

        Parameters
        ----------
        owner:
            Restrict to records created by this user.
        name_contains:
            Case-insensitive substring filter on the name.
        ids:
            Restrict to these ids (combined with *owner* as OR when both
            are given, so "owned or shared" can be listed in one call).
        skip, limit:
            Offset pagination.
        """

    @abstractmethod
    async def update(self, knowledge_source_id: str, **fields: Any) -> KnowledgeSource:
        """Update name / description / source_url / status / error and return the record.

        Raises
        ------
        drive_knowledge.utils.errors.NotFoundError
            If the record does not exist.
        drive_knowledge.utils.errors.DuplicateNameError
            If the new name collides with another record of the same owner.
        """

    @abstractmethod
    async def update_status(
        self,
        knowledge_source_id: str,
        status: KnowledgeSourceStatus,
        error: str | None = None,
    ) -> KnowledgeSource:
        """Set the lifecycle status; ``error`` is cleared unless status is ``error``."""

    @abstractmethod
    async def delete(self, knowledge_source_id: str) -> bool:
        """Delete a record.  Returns ``False`` when it did not exist."""
