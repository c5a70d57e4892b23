"""Shared pytest fixtures for the drive-knowledge test suite.

The fakes below implement the collaborator interfaces in memory so the
services can be exercised end to end without Graph, OpenAI, ChromaDB or
SQLite.  Provider adapters have their own tests against the real client
libraries.
"""

from __future__ import annotations

import hashlib
import math
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from drive_knowledge.interfaces.chunk_store import IChunkStore
from drive_knowledge.interfaces.embedding_provider import IEmbeddingProvider
from drive_knowledge.interfaces.file_origin_provider import IFileOriginProvider
from drive_knowledge.interfaces.knowledge_source_store import IKnowledgeSourceStore
from drive_knowledge.interfaces.user_store import IUserStore
from drive_knowledge.models.knowledge import (
    EmbeddedChunk,
    KnowledgeSource,
    KnowledgeSourceStatus,
    RemoteFileMetadata,
    RemoteItem,
    RetrievedChunk,
    utc_now,
)
from drive_knowledge.models.user import AccessLevel, MicrosoftToken, SharedGrant, User
from drive_knowledge.services.access_control import AccessControlService
from drive_knowledge.services.ingestion.chunker import TextChunker
from drive_knowledge.services.ingestion.embedding_batcher import EmbeddingBatchClient
from drive_knowledge.services.ingestion.file_enumerator import FileEnumerator
from drive_knowledge.services.ingestion.ingestion_service import IngestionService
from drive_knowledge.services.ingestion.text_extractor import TextExtractor
from drive_knowledge.services.retrieval_service import RetrievalService
from drive_knowledge.utils.errors import (
    DuplicateNameError,
    EmbeddingError,
    FileOriginError,
    NotAuthorizedError,
    NotFoundError,
)

FAKE_DIMENSION = 32
AUTH_URL = "https://login.example.com/authorize?state=test"


# ---------------------------------------------------------------------------
# Embedding
# ---------------------------------------------------------------------------


def hashed_embedding(text: str, dimension: int = FAKE_DIMENSION) -> list[float]:
    """Deterministic bag-of-words vector: shared words mean higher cosine similarity."""
    vector = [0.0] * dimension
    for word in text.lower().split():
        bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % dimension
        vector[bucket] += 1.0
    if not any(vector):
        vector[0] = 1.0
    return vector


class FakeEmbeddingProvider(IEmbeddingProvider):
    """Hashes words into buckets; raises for any batch containing a poison marker."""

    def __init__(self, dimension: int = FAKE_DIMENSION, poison: str | None = None) -> None:
        self.dimension = dimension
        self.poison = poison
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.poison and any(self.poison in t for t in texts):
            raise EmbeddingError("rate limit exceeded", provider_name="fake")
        return [hashed_embedding(t, self.dimension) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        return hashed_embedding(text, self.dimension)

    def get_dimension(self) -> int:
        return self.dimension

    def get_provider_name(self) -> str:
        return "fake"

    def is_available(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Chunk store
# ---------------------------------------------------------------------------


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryChunkStore(IChunkStore):
    def __init__(self) -> None:
        self.chunks: dict[str, EmbeddedChunk] = {}
        self.fail_inserts = 0

    async def insert_many(self, chunks: list[EmbeddedChunk]) -> int:
        if self.fail_inserts:
            self.fail_inserts -= 1
            raise RuntimeError("disk full")
        for chunk in chunks:
            self.chunks[chunk.chunk_id] = chunk
        return len(chunks)

    async def delete_by_knowledge_source(self, knowledge_source_id: str) -> int:
        doomed = [k for k, c in self.chunks.items() if c.knowledge_source_id == knowledge_source_id]
        for key in doomed:
            del self.chunks[key]
        return len(doomed)

    async def find_by_knowledge_source(self, knowledge_source_id: str) -> list[EmbeddedChunk]:
        return [c for c in self.chunks.values() if c.knowledge_source_id == knowledge_source_id]

    async def count_by_knowledge_source(self, knowledge_source_id: str) -> int:
        return len(await self.find_by_knowledge_source(knowledge_source_id))

    async def find_similar(
        self,
        embedding: list[float],
        knowledge_source_id: str,
        candidates: int,
        min_score: float | None = None,
    ) -> list[RetrievedChunk]:
        scored = []
        for chunk in await self.find_by_knowledge_source(knowledge_source_id):
            similarity = max(0.0, min(1.0, _cosine(embedding, chunk.embedding)))
            if min_score is not None and similarity < min_score:
                continue
            scored.append(
                RetrievedChunk(
                    chunk_id=chunk.chunk_id,
                    knowledge_source_id=chunk.knowledge_source_id,
                    file_id=chunk.file_id,
                    file_name=chunk.file_name,
                    file_path=chunk.file_path,
                    chunk_index=chunk.chunk_index,
                    text=chunk.text,
                    mime_type=chunk.mime_type,
                    similarity=similarity,
                )
            )
        scored.sort(key=lambda c: c.similarity, reverse=True)
        return scored[:candidates]

    def get_provider_name(self) -> str:
        return "memory"

    def is_available(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class InMemoryKnowledgeSourceStore(IKnowledgeSourceStore):
    def __init__(self) -> None:
        self.records: dict[str, KnowledgeSource] = {}

    async def create(self, source: KnowledgeSource) -> KnowledgeSource:
        if await self.find_by_name_and_owner(source.name, source.created_by) is not None:
            raise DuplicateNameError(f"A knowledge source named '{source.name}' already exists")
        self.records[source.id] = source
        return source

    async def get(self, knowledge_source_id: str) -> KnowledgeSource | None:
        return self.records.get(knowledge_source_id)

    async def find_by_name_and_owner(self, name: str, owner: str) -> KnowledgeSource | None:
        for record in self.records.values():
            if record.name == name and record.created_by == owner:
                return record
        return None

    async def list(
        self,
        owner: str | None = None,
        name_contains: str | None = None,
        ids: list[str] | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> list[KnowledgeSource]:
        rows = list(self.records.values())
        if owner is not None or ids is not None:
            allowed = set(ids or [])
            rows = [r for r in rows if r.created_by == owner or r.id in allowed]
        if name_contains:
            rows = [r for r in rows if name_contains.lower() in r.name.lower()]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows[skip : skip + limit]

    async def update(self, knowledge_source_id: str, **fields: Any) -> KnowledgeSource:
        record = self.records.get(knowledge_source_id)
        if record is None:
            raise NotFoundError(f"Knowledge source {knowledge_source_id} not found")
        updated = record.model_copy(update={**fields, "updated_at": utc_now()})
        self.records[knowledge_source_id] = updated
        return updated

    async def update_status(
        self,
        knowledge_source_id: str,
        status: KnowledgeSourceStatus,
        error: str | None = None,
    ) -> KnowledgeSource:
        if status != KnowledgeSourceStatus.ERROR:
            error = None
        return await self.update(knowledge_source_id, status=status, error=error)

    async def delete(self, knowledge_source_id: str) -> bool:
        return self.records.pop(knowledge_source_id, None) is not None


class InMemoryUserStore(IUserStore):
    def __init__(self) -> None:
        self.names: dict[str, str | None] = {}
        self.owned: dict[str, list[str]] = {}
        self.grants: dict[str, dict[tuple[str, str], SharedGrant]] = {}
        self.tokens: dict[str, MicrosoftToken] = {}

    async def get(self, email: str) -> User | None:
        if email not in self.names:
            return None
        return User(
            email=email,
            name=self.names[email],
            owned=list(self.owned.get(email, [])),
            shared=list(self.grants.get(email, {}).values()),
            microsoft_token=self.tokens.get(email),
        )

    async def get_or_create(self, email: str, name: str | None = None) -> User:
        self.names.setdefault(email, name)
        return await self.get(email)

    async def add_owned(self, email: str, knowledge_source_id: str) -> None:
        await self.get_or_create(email)
        owned = self.owned.setdefault(email, [])
        if knowledge_source_id not in owned:
            owned.append(knowledge_source_id)

    async def add_shared_grant(self, email: str, grant: SharedGrant) -> SharedGrant:
        await self.get_or_create(email)
        self.grants.setdefault(email, {})[(grant.knowledge_source_id, grant.shared_by)] = grant
        return grant

    async def remove_shared_grant(self, email: str, knowledge_source_id: str, shared_by: str) -> bool:
        return self.grants.get(email, {}).pop((knowledge_source_id, shared_by), None) is not None

    async def remove_grants_for_source(self, knowledge_source_id: str) -> int:
        removed = 0
        for grants in self.grants.values():
            for key in [k for k in grants if k[0] == knowledge_source_id]:
                del grants[key]
                removed += 1
        for owned in self.owned.values():
            if knowledge_source_id in owned:
                owned.remove(knowledge_source_id)
        return removed

    async def get_access_level(self, email: str, knowledge_source_id: str) -> AccessLevel | None:
        levels = [
            g.access_level
            for g in self.grants.get(email, {}).values()
            if g.knowledge_source_id == knowledge_source_id
        ]
        if not levels:
            return None
        return AccessLevel.WRITE if AccessLevel.WRITE in levels else AccessLevel.READ

    async def save_microsoft_token(self, email: str, token: MicrosoftToken) -> None:
        await self.get_or_create(email)
        self.tokens[email] = token

    async def get_microsoft_token(self, email: str) -> MicrosoftToken | None:
        return self.tokens.get(email)


# ---------------------------------------------------------------------------
# Drive
# ---------------------------------------------------------------------------

_MODIFIED = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeDrive(IFileOriginProvider):
    """A folder tree held in memory.

    ``add_file("/docs/a.txt", "text")`` creates the intermediate folders.
    Downloads of ids in ``failing_downloads`` raise :class:`FileOriginError`;
    with ``authorized = False`` every call raises :class:`NotAuthorizedError`.
    """

    def __init__(self) -> None:
        self.children: dict[str, list[RemoteItem]] = {"/": []}
        self.contents: dict[str, bytes] = {}
        self.paths: dict[str, str] = {}
        self.failing_downloads: set[str] = set()
        self.authorized = True
        self.listing_error: Exception | None = None
        self.downloads: list[str] = []

    def add_file(self, path: str, content: str | bytes, mime_type: str | None = None) -> str:
        folder, _, name = path.rpartition("/")
        self._ensure_folder(folder or "/")
        file_id = f"id-{len(self.contents) + 1}"
        data = content.encode() if isinstance(content, str) else content
        self.contents[file_id] = data
        self.paths[file_id] = path
        self.children[folder or "/"].append(
            RemoteItem(
                id=file_id,
                name=name,
                size=len(data),
                mime_type=mime_type,
                last_modified=_MODIFIED,
                web_url=f"https://onedrive.example.com{path}",
            )
        )
        return file_id

    def _ensure_folder(self, folder: str) -> None:
        if folder in self.children:
            return
        parent, _, name = folder.rpartition("/")
        self._ensure_folder(parent or "/")
        self.children[folder] = []
        self.children[parent or "/"].append(RemoteItem(id=f"folder{folder}", name=name, is_folder=True))

    def _check(self) -> None:
        if not self.authorized:
            raise NotAuthorizedError(provider_name="onedrive", auth_url=AUTH_URL)

    async def list_children(self, user_id: str, path: str) -> list[RemoteItem]:
        self._check()
        if self.listing_error is not None:
            raise self.listing_error
        key = "/" + path.strip("/") if path.strip("/") else "/"
        if key not in self.children:
            raise FileOriginError(f"Folder not found: {path}", provider_name="onedrive", status_code=404)
        return list(self.children[key])

    async def download_file(self, user_id: str, file_id: str) -> bytes:
        self._check()
        self.downloads.append(file_id)
        if file_id in self.failing_downloads:
            raise FileOriginError("Download failed with 500", provider_name="onedrive", status_code=500)
        return self.contents[file_id]

    async def get_metadata(self, user_id: str, file_id: str) -> RemoteFileMetadata:
        self._check()
        path = self.paths[file_id]
        return RemoteFileMetadata(
            id=file_id,
            name=path.rpartition("/")[2],
            size=len(self.contents[file_id]),
            web_url=f"https://onedrive.example.com{path}",
            last_modified=_MODIFIED,
        )

    async def search_files(
        self,
        user_id: str,
        query: str | None = None,
        path: str | None = None,
        limit: int = 20,
    ) -> list[RemoteItem]:
        self._check()
        if not query:
            return (await self.list_children(user_id, path or "/"))[:limit]
        items = [i for items in self.children.values() for i in items if query.lower() in i.name.lower()]
        return items[:limit]

    async def get_authorization_url(self, user_id: str) -> str:
        return AUTH_URL

    def get_provider_name(self) -> str:
        return "onedrive"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def embedding_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def poisoned_embedding_provider() -> FakeEmbeddingProvider:
    """Fails every batch containing the word ``POISON``."""
    return FakeEmbeddingProvider(poison="POISON")


@pytest.fixture
def embed_text():
    """The deterministic vector the fake provider assigns to a text."""
    return hashed_embedding


@pytest.fixture
def auth_url() -> str:
    return AUTH_URL


@pytest.fixture
def mock_embedding_provider() -> MagicMock:
    """A ``MagicMock(spec=IEmbeddingProvider)`` returning constant 8-dim vectors."""
    mock = MagicMock(spec=IEmbeddingProvider)
    mock.embed = AsyncMock(side_effect=lambda texts: [[0.1] * 8 for _ in texts])
    mock.embed_single = AsyncMock(return_value=[0.1] * 8)
    mock.get_dimension.return_value = 8
    mock.get_provider_name.return_value = "mock"
    mock.is_available.return_value = True
    return mock


@pytest.fixture
def chunk_store() -> InMemoryChunkStore:
    return InMemoryChunkStore()


@pytest.fixture
def knowledge_sources() -> InMemoryKnowledgeSourceStore:
    return InMemoryKnowledgeSourceStore()


@pytest.fixture
def users() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def access(users, knowledge_sources) -> AccessControlService:
    return AccessControlService(users=users, knowledge_sources=knowledge_sources)


@pytest.fixture
def extractor() -> TextExtractor:
    return TextExtractor()


def _make_ingestion_service(
    knowledge_sources: IKnowledgeSourceStore,
    chunks: IChunkStore,
    users: IUserStore,
    access: AccessControlService,
    drive: IFileOriginProvider,
    embedding_provider: IEmbeddingProvider,
    chunk_size: int = 100,
    overlap: int = 20,
    batch_size: int = 100,
    file_concurrency: int = 1,
) -> IngestionService:
    return IngestionService(
        knowledge_sources=knowledge_sources,
        chunks=chunks,
        users=users,
        access=access,
        origin=drive,
        enumerator=FileEnumerator(drive),
        extractor=TextExtractor(),
        chunker=TextChunker(chunk_size=chunk_size, overlap=overlap),
        embedder=EmbeddingBatchClient(embedding_provider, batch_size=batch_size),
        file_concurrency=file_concurrency,
    )


@pytest.fixture
def ingestion(knowledge_sources, chunk_store, users, access, drive, embedding_provider) -> IngestionService:
    return _make_ingestion_service(
        knowledge_sources, chunk_store, users, access, drive, embedding_provider
    )


@pytest.fixture
def retrieval(chunk_store, embedding_provider, access) -> RetrievalService:
    return RetrievalService(chunks=chunk_store, embedding_provider=embedding_provider, access=access)


@pytest.fixture
def ingestion_factory(knowledge_sources, chunk_store, users, access, drive, embedding_provider):
    """Build an IngestionService over the shared fakes with custom knobs.

    ``ingestion_factory(batch_size=4, embedding_provider=...)``
    """

    def build(embedding_provider: IEmbeddingProvider = embedding_provider, **knobs: int) -> IngestionService:
        return _make_ingestion_service(
            knowledge_sources, chunk_store, users, access, drive, embedding_provider, **knobs
        )

    return build
