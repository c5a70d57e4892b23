"""Pydantic v2 data models for drive-knowledge.

- **knowledge** -- KnowledgeSource, EmbeddedChunk, RetrievedChunk,
  SearchPage and the remote-drive descriptors.
- **user** -- User, SharedGrant, AccessLevel, MicrosoftToken.
- **outcomes** -- ingestion outcomes, progress events and the tool-layer
  ActionResult envelope.
"""

from drive_knowledge.models.knowledge import (
    EmbeddedChunk,
    KnowledgeSource,
    KnowledgeSourceStatus,
    RemoteFile,
    RemoteFileMetadata,
    RemoteItem,
    RetrievedChunk,
    SearchPage,
    SourceType,
)
from drive_knowledge.models.outcomes import (
    ActionResult,
    AuthorizationRequired,
    DeleteOutcome,
    FailedFile,
    IngestionOutcome,
    IngestionPhase,
    IngestionProgress,
    ToolDefinition,
)
from drive_knowledge.models.user import AccessLevel, MicrosoftToken, SharedGrant, User

__all__ = [
    "AccessLevel",
    "ActionResult",
    "AuthorizationRequired",
    "DeleteOutcome",
    "EmbeddedChunk",
    "FailedFile",
    "IngestionOutcome",
    "IngestionPhase",
    "IngestionProgress",
    "KnowledgeSource",
    "KnowledgeSourceStatus",
    "MicrosoftToken",
    "RemoteFile",
    "RemoteFileMetadata",
    "RemoteItem",
    "RetrievedChunk",
    "SearchPage",
    "SharedGrant",
    "SourceType",
    "ToolDefinition",
    "User",
]
