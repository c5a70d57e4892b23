"""Result models returned by the ingestion pipeline and the tool surface."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from drive_knowledge.models.knowledge import KnowledgeSourceStatus


class FailedFile(BaseModel):
    """A file that failed during an ingestion run, with the reason."""

    model_config = ConfigDict(frozen=True)

    file: str = Field(description="Name of the file that failed.")
    error: str


class IngestionPhase(str, Enum):
    FILES = "files"
    BATCHES = "batches"


class IngestionProgress(BaseModel):
    """Progress event emitted after each file (phase 1) and each batch (phase 2)."""

    model_config = ConfigDict(frozen=True)

    current: int = Field(ge=0)
    total: int = Field(ge=0)
    message: str
    phase: IngestionPhase


class IngestionOutcome(BaseModel):
    """Summary of a completed ingestion run.

    ``processed`` counts every enumerated file; a file counts toward
    ``success`` only when it produced chunks and none of them failed to
    embed or persist.
    """

    model_config = ConfigDict(frozen=True)

    knowledge_source_id: str
    name: str
    description: str = ""
    status: KnowledgeSourceStatus
    processed: int = Field(default=0, ge=0)
    success: int = Field(default=0, ge=0)
    failed: list[FailedFile] = Field(default_factory=list)
    chunk_count: int = Field(default=0, ge=0)
    message: str = ""
    next_steps: list[str] = Field(default_factory=list)


class AuthorizationRequired(BaseModel):
    """Returned instead of an outcome when the user must authorize drive access."""

    model_config = ConfigDict(frozen=True)

    auth_url: str
    message: str = "User has not authorized Microsoft account."
    next_steps: list[str] = Field(
        default_factory=lambda: [
            "Instruct the user to follow this authentication link.",
            "Re-try the last tool after the user has provided feedback "
            "that they have successfully authenticated.",
        ]
    )
    knowledge_source_id: str | None = None


class DeleteOutcome(BaseModel):
    """Result of a delete-by-name request.  ``found`` is False for unknown names."""

    model_config = ConfigDict(frozen=True)

    found: bool
    name: str
    knowledge_source_id: str | None = None
    chunks_deleted: int = 0


class ActionResult(BaseModel):
    """Envelope returned to the host tool layer: ``{result, message, nextSteps}``."""

    model_config = ConfigDict(frozen=True)

    result: Any = None
    message: str = ""
    next_steps: list[str] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        """Render the host wire shape, omitting ``nextSteps`` when empty."""
        payload: dict[str, Any] = {"result": self.result, "message": self.message}
        if self.next_steps:
            payload["nextSteps"] = list(self.next_steps)
        return payload


class ToolDefinition(BaseModel):
    """A callable tool bound to one knowledge source (or the static catalogue)."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    input_schema: dict[str, Any]
    annotations: dict[str, Any] = Field(default_factory=dict)
    action: str
    knowledge_source_id: str | None = None
