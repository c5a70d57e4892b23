"""Knowledge-source data models for drive-knowledge.

Defines Pydantic v2 models for knowledge sources, embedded chunks,
retrieval results and the remote-drive file descriptors the ingestion
pipeline works on.  All models use frozen config; state transitions
produce copies via ``model_copy(update=...)``.

Knowledge flow overview:

    1. ENUMERATION: every file under a drive folder becomes a
       :class:`RemoteFile`.
    2. EXTRACTION + CHUNKING: each file's text is split into overlapping
       character windows.
    3. EMBEDDING: windows are embedded in batches and stored as
       :class:`EmbeddedChunk` records keyed by
       ``(knowledge_source_id, file_id, chunk_index)``.
    4. RETRIEVAL: a query is embedded and compared against the chunks of
       one :class:`KnowledgeSource`, producing :class:`RetrievedChunk`
       results wrapped in a :class:`SearchPage`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SourceType(str, Enum):
    """Remote origin of a knowledge source's documents."""

    ONEDRIVE = "onedrive"


class KnowledgeSourceStatus(str, Enum):
    """Lifecycle state of a knowledge source.

    ``processing`` while an ingestion run is in flight, ``ready`` after a
    run with zero failed files, ``error`` otherwise.
    """

    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


# ---------------------------------------------------------------------------
# KnowledgeSource -- a named, owned collection of ingested documents.
# ---------------------------------------------------------------------------
class KnowledgeSource(BaseModel):
    """A named collection of documents ingested from one drive folder.

    Names are unique per owner (``created_by``).  The ``error`` field is
    only meaningful while ``status`` is ``error``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Opaque identifier of the knowledge source.")
    name: str = Field(description="Human-readable name, unique per owner.")
    description: str = Field(default="", description="Free-form description.")
    source_type: SourceType = Field(default=SourceType.ONEDRIVE)
    source_url: str = Field(description="Root folder path inside the drive.")
    created_by: str = Field(description="Email of the owning user.")
    status: KnowledgeSourceStatus = Field(default=KnowledgeSourceStatus.PROCESSING)
    error: str | None = Field(default=None, description="Failure summary when status is error.")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# EmbeddedChunk -- one stored, embedded text window.
# ---------------------------------------------------------------------------
class EmbeddedChunk(BaseModel):
    """A text window of one file together with its embedding vector.

    Identity is the composite ``(knowledge_source_id, file_id,
    chunk_index)``; chunk indices are contiguous from 0 within a file.
    """

    model_config = ConfigDict(frozen=True)

    knowledge_source_id: str
    file_id: str
    chunk_index: int = Field(ge=0)
    file_name: str
    file_path: str
    text: str
    embedding: list[float]
    mime_type: str | None = None
    last_modified: datetime | None = None
    size: int | None = Field(default=None, ge=0)

    @property
    def chunk_id(self) -> str:
        """Composite key rendered as ``"{knowledge_source_id}:{file_id}:{chunk_index}"``."""
        return f"{self.knowledge_source_id}:{self.file_id}:{self.chunk_index}"


class RetrievedChunk(BaseModel):
    """A chunk returned from a similarity search with its score."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    knowledge_source_id: str
    file_id: str
    file_name: str
    file_path: str
    chunk_index: int = Field(ge=0)
    text: str
    mime_type: str | None = None
    similarity: float = Field(ge=0.0, le=1.0, description="Cosine similarity in [0, 1].")


class SearchPage(BaseModel):
    """One page of similarity-search results.

    ``total`` counts the candidates that survived the ``min_score``
    filter within the fetched window of ``skip + limit`` rows, so it is a
    lower bound on the true number of matches.  ``next_skip`` is set
    only when another page may exist.
    """

    model_config = ConfigDict(frozen=True)

    results: list[RetrievedChunk] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    limit: int = Field(ge=1)
    skip: int = Field(default=0, ge=0)
    min_score: float | None = None
    next_skip: int | None = None


# ---------------------------------------------------------------------------
# Remote drive descriptors
# ---------------------------------------------------------------------------
class RemoteItem(BaseModel):
    """A raw child entry of a drive folder (file or folder)."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    is_folder: bool = False
    size: int | None = None
    mime_type: str | None = None
    last_modified: datetime | None = None
    web_url: str | None = None


class RemoteFile(BaseModel):
    """A file discovered by recursive enumeration, with its full drive path."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    path: str = Field(description="Full path from the drive root, e.g. '/docs/a.txt'.")
    size: int | None = None
    mime_type: str | None = None
    last_modified: datetime | None = None


class RemoteFileMetadata(BaseModel):
    """Metadata of a single drive item, as returned by a metadata lookup."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    size: int | None = None
    mime_type: str | None = None
    web_url: str | None = None
    last_modified: datetime | None = None
