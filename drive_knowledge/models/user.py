"""User, share-grant and credential models."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from drive_knowledge.models.knowledge import utc_now


class AccessLevel(str, Enum):
    """Level granted by a share.  ``write`` is reserved for owners in practice."""

    READ = "read"
    WRITE = "write"


class SharedGrant(BaseModel):
    """A knowledge source shared with a user by its owner."""

    model_config = ConfigDict(frozen=True)

    knowledge_source_id: str
    shared_by: str = Field(description="Email of the owner who created the grant.")
    access_level: AccessLevel = AccessLevel.READ
    shared_at: datetime = Field(default_factory=utc_now)


class MicrosoftToken(BaseModel):
    """Stored OAuth credentials for the user's Microsoft account."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime

    def expires_within(self, seconds: int, now: datetime | None = None) -> bool:
        """Return ``True`` if the token expires within *seconds* of *now*."""
        now = now or utc_now()
        return self.expires_at - now <= timedelta(seconds=seconds)


class User(BaseModel):
    """An identified caller with owned sources, share grants and drive credentials."""

    model_config = ConfigDict(frozen=True)

    email: str
    name: str | None = None
    owned: list[str] = Field(default_factory=list, description="Owned knowledge source ids.")
    shared: list[SharedGrant] = Field(default_factory=list)
    microsoft_token: MicrosoftToken | None = None
