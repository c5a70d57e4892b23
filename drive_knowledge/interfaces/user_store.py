"""Abstract base class for the user repository."""

from __future__ import annotations

from abc import ABC, abstractmethod

from drive_knowledge.models.user import AccessLevel, MicrosoftToken, SharedGrant, User


# Concrete implementation: SQLiteUserStore (drive_knowledge/providers/storage/)
class IUserStore(ABC):
    """Contract for users, their owned sources, share grants and drive tokens.

    Grants have set semantics per ``(user, knowledge_source_id, shared_by)``:
    adding the same grant again replaces its access level.
    """

    @abstractmethod
    async def get(self, email: str) -> User | None:
        """Return the user with owned ids and grants loaded, or ``None``."""

    @abstractmethod
    async def get_or_create(self, email: str, name: str | None = None) -> User:
        """Return the user, creating an empty record on first sight."""

    @abstractmethod
    async def add_owned(self, email: str, knowledge_source_id: str) -> None:
        """Record that *email* owns the knowledge source."""

    @abstractmethod
    async def add_shared_grant(self, email: str, grant: SharedGrant) -> SharedGrant:
        """Insert or replace a grant and return the stored value."""

    @abstractmethod
    async def remove_shared_grant(self, email: str, knowledge_source_id: str, shared_by: str) -> bool:
        """Remove one grant.  Returns ``False`` when it did not exist."""

    @abstractmethod
    async def remove_grants_for_source(self, knowledge_source_id: str) -> int:
        """Remove every grant and ownership entry of a deleted source; returns grants removed."""

    @abstractmethod
    async def get_access_level(self, email: str, knowledge_source_id: str) -> AccessLevel | None:
        """Return the highest granted level for the source, or ``None``."""

    @abstractmethod
    async def save_microsoft_token(self, email: str, token: MicrosoftToken) -> None:
        """Persist (insert or replace) the user's Microsoft credentials."""

    @abstractmethod
    async def get_microsoft_token(self, email: str) -> MicrosoftToken | None:
        """Return the stored Microsoft credentials, or ``None``."""
