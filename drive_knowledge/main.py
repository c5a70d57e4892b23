"""drive-knowledge composition root.

Wires every repository, provider and service together via constructor
injection.  The host process (a tool server, the CLI or a test) builds one
:class:`ServiceContainer`, opens it once and closes it on shutdown::

    settings = apply_config(Settings(), load_config())
    async with build_container(settings) as container:
        result = await container.tools.handle("list-knowledge-sources", {}, session)
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog

from drive_knowledge.config.settings import Settings
from drive_knowledge.interfaces.chunk_store import IChunkStore
from drive_knowledge.interfaces.embedding_provider import IEmbeddingProvider
from drive_knowledge.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from drive_knowledge.providers.file_origin.microsoft_auth import MicrosoftAuth
from drive_knowledge.providers.file_origin.onedrive_provider import OneDriveProvider
from drive_knowledge.providers.storage.database import Database
from drive_knowledge.providers.storage.sqlite_knowledge_source_store import (
    SQLiteKnowledgeSourceStore,
)
from drive_knowledge.providers.storage.sqlite_user_store import SQLiteUserStore
from drive_knowledge.services.access_control import AccessControlService
from drive_knowledge.services.ingestion.chunker import TextChunker
from drive_knowledge.services.ingestion.embedding_batcher import EmbeddingBatchClient
from drive_knowledge.services.ingestion.file_enumerator import FileEnumerator
from drive_knowledge.services.ingestion.ingestion_service import IngestionService
from drive_knowledge.services.ingestion.text_extractor import TextExtractor
from drive_knowledge.services.knowledge_tools import KnowledgeToolHandler
from drive_knowledge.services.retrieval_service import RetrievalService

logger = structlog.get_logger(logger_name=__name__)


@dataclass
class ServiceContainer:
    """Every long-lived component of the process, built once."""

    settings: Settings
    database: Database
    http_client: httpx.AsyncClient
    knowledge_sources: SQLiteKnowledgeSourceStore
    users: SQLiteUserStore
    auth: MicrosoftAuth
    origin: OneDriveProvider
    embedding_provider: IEmbeddingProvider
    chunks: IChunkStore
    access: AccessControlService
    ingestion: IngestionService
    retrieval: RetrievalService
    tools: KnowledgeToolHandler
    owns_http_client: bool = True

    async def open(self) -> None:
        await self.database.connect()
        logger.info(
            "service_container_opened",
            database=self.database.path,
            embedding=self.embedding_provider.get_provider_name(),
            chunk_store=self.chunks.get_provider_name(),
            microsoft_configured=self.settings.is_microsoft_configured(),
        )

    async def close(self) -> None:
        # An injected client belongs to the caller.
        if self.owns_http_client:
            await self.http_client.aclose()
        await self.database.close()
        logger.info("service_container_closed")

    async def __aenter__(self) -> ServiceContainer:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


def _build_chunk_store(app_settings: Settings, embedding_provider: IEmbeddingProvider) -> IChunkStore:
    # Deferred: importing chromadb is slow and only needed once per process.
    from drive_knowledge.providers.vector_store.chromadb_provider import ChromaDBChunkStore

    return ChromaDBChunkStore(
        embedding_provider=embedding_provider,
        persist_directory=app_settings.chromadb_persist_dir,
        collection_name=app_settings.chromadb_collection,
    )


def build_container(
    app_settings: Settings,
    embedding_provider: IEmbeddingProvider | None = None,
    chunks: IChunkStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> ServiceContainer:
    """Construct every repository, provider and service for the application.

    The optional arguments replace the default adapters (tests pass fakes).
    Nothing touches the network or disk until :meth:`ServiceContainer.open`.
    """
    # -- Shared resources --
    owns_http_client = http_client is None
    http_client = http_client or httpx.AsyncClient(timeout=app_settings.graph_timeout_seconds)
    database = Database(app_settings.sqlite_db_path)

    # -- Repositories --
    knowledge_sources = SQLiteKnowledgeSourceStore(database)
    users = SQLiteUserStore(database)

    # -- Drive --
    auth = MicrosoftAuth(settings=app_settings, users=users, http_client=http_client)
    origin = OneDriveProvider(
        auth=auth,
        http_client=http_client,
        graph_base_url=app_settings.graph_base_url,
    )

    # -- Embeddings and vector store --
    embedding_provider = embedding_provider or OpenAIEmbeddingProvider(settings=app_settings)
    chunks = chunks or _build_chunk_store(app_settings, embedding_provider)

    # -- Services --
    access = AccessControlService(users=users, knowledge_sources=knowledge_sources)
    extractor = TextExtractor()
    ingestion = IngestionService(
        knowledge_sources=knowledge_sources,
        chunks=chunks,
        users=users,
        access=access,
        origin=origin,
        enumerator=FileEnumerator(origin),
        extractor=extractor,
        chunker=TextChunker(
            chunk_size=app_settings.chunk_size,
            overlap=app_settings.chunk_overlap,
        ),
        embedder=EmbeddingBatchClient(
            embedding_provider,
            batch_size=app_settings.embedding_batch_size,
            concurrency=app_settings.batch_concurrency,
        ),
        file_concurrency=app_settings.file_concurrency,
    )
    retrieval = RetrievalService(
        chunks=chunks,
        embedding_provider=embedding_provider,
        access=access,
        default_limit=app_settings.search_default_limit,
    )
    tools = KnowledgeToolHandler(
        ingestion=ingestion,
        retrieval=retrieval,
        access=access,
        origin=origin,
        extractor=extractor,
        list_default_limit=app_settings.list_default_limit,
        retrieve_max_length=app_settings.retrieve_max_length,
    )

    return ServiceContainer(
        settings=app_settings,
        database=database,
        http_client=http_client,
        knowledge_sources=knowledge_sources,
        users=users,
        auth=auth,
        origin=origin,
        embedding_provider=embedding_provider,
        chunks=chunks,
        access=access,
        ingestion=ingestion,
        retrieval=retrieval,
        tools=tools,
        owns_http_client=owns_http_client,
    )
