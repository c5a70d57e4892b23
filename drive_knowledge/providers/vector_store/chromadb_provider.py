"""ChromaDB chunk store adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IChunkStore`.
Uses cosine distance; similarity is reported as ``1 - distance`` clamped
to ``[0, 1]``.  Every chunk carries its ``knowledge_source_id`` in the
metadata, which is the ``where`` filter for all scoped operations.
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any

# Disable ChromaDB telemetry before importing chromadb.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import chromadb
import structlog

from drive_knowledge.interfaces.chunk_store import IChunkStore
from drive_knowledge.interfaces.embedding_provider import IEmbeddingProvider
from drive_knowledge.models.knowledge import EmbeddedChunk, RetrievedChunk
from drive_knowledge.utils.errors import StoreError

logger = structlog.get_logger(logger_name=__name__)

_PAGE_SIZE = 5000
_UPSERT_BATCH_SIZE = 500


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """No-op embedding function that prevents ChromaDB from loading a model.

    Chunks are always stored with pre-computed embeddings, so ChromaDB's
    built-in embedding is never invoked.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError(
            "drive-knowledge uses pre-computed embeddings; "
            "ChromaDB's built-in embedding should never be called."
        )

    def name(self) -> str:
        """Return function name (required by ChromaDB's EmbeddingFunction protocol)."""
        return "noop_precomputed"


class ChromaDBChunkStore(IChunkStore):
    """Chunk store backed by ChromaDB with local persistence.

    The embedding provider is only used at startup to check that stored
    vectors have the provider's dimension; queries receive pre-computed
    vectors.  Pass ``client`` to share an existing (e.g. ephemeral) client.
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "drive_knowledge_chunks",
        client: Any | None = None,
    ) -> None:
        self._embedding_provider = embedding_provider
        self._persist_directory = persist_directory
        self._collection_name = collection_name
        self._client = client or chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        # Collections created by an older ChromaDB with the default embedding
        # function reject a different one; reopen without it in that case.
        try:
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
            )

        self._validate_embedding_dimensions()

    # ------------------------------------------------------------------
    # Startup validation
    # ------------------------------------------------------------------

    def _validate_embedding_dimensions(self) -> None:
        """Verify the provider's dimension matches vectors already stored.

        A mismatch would make every query meaningless, so it fails loudly.
        """
        try:
            collection_count = self._collection.count()
            if collection_count == 0:
                return

            sample = self._collection.peek(limit=1)
            embeddings = sample.get("embeddings") if sample else None
            if embeddings is None or len(embeddings) == 0:
                return

            stored_dim = len(embeddings[0])
            expected_dim = self._embedding_provider.get_dimension()
        except Exception as exc:
            logger.warning("embedding_dimension_check_skipped", error=str(exc))
            return

        if stored_dim != expected_dim:
            logger.error(
                "embedding_dimension_mismatch",
                stored_dim=stored_dim,
                expected_dim=expected_dim,
                provider=self._embedding_provider.get_provider_name(),
            )
            raise StoreError(
                message=(
                    f"Embedding dimension mismatch: store has {stored_dim}-dim vectors "
                    f"but provider '{self._embedding_provider.get_provider_name()}' "
                    f"produces {expected_dim}-dim vectors. "
                    f"Set OPENAI_EMBEDDING_MODEL to the model used to build the store."
                ),
                provider_name=self.get_provider_name(),
            )

        logger.info(
            "embedding_dimension_validated",
            dimension=stored_dim,
            stored_chunks=collection_count,
        )

    # ------------------------------------------------------------------
    # IChunkStore implementation
    # ------------------------------------------------------------------

    async def insert_many(self, chunks: list[EmbeddedChunk]) -> int:
        """Upsert chunks in slices of 500 to bound peak memory."""
        if not chunks:
            return 0

        expected_dim = self._embedding_provider.get_dimension()
        for chunk in chunks:
            if len(chunk.embedding) != expected_dim:
                raise StoreError(
                    message=(
                        f"Chunk {chunk.chunk_id} has a {len(chunk.embedding)}-dim vector, "
                        f"expected {expected_dim}"
                    ),
                    provider_name=self.get_provider_name(),
                )

        try:
            total_stored = 0
            for start in range(0, len(chunks), _UPSERT_BATCH_SIZE):
                batch = chunks[start : start + _UPSERT_BATCH_SIZE]
                self._collection.upsert(
                    ids=[c.chunk_id for c in batch],
                    embeddings=[c.embedding for c in batch],
                    documents=[c.text for c in batch],
                    metadatas=[self._chunk_to_metadata(c) for c in batch],
                )
                total_stored += len(batch)

            logger.info("chromadb_insert_many", count=total_stored)
            return total_stored
        except Exception as exc:
            raise StoreError(
                message=f"ChromaDB insert_many failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def delete_by_knowledge_source(self, knowledge_source_id: str) -> int:
        try:
            where = {"knowledge_source_id": knowledge_source_id}
            existing = self._collection.get(where=where, include=[])
            count = len(existing["ids"]) if existing["ids"] else 0
            if count > 0:
                self._collection.delete(where=where)

            logger.info(
                "chromadb_delete_by_knowledge_source",
                knowledge_source_id=knowledge_source_id,
                deleted_count=count,
            )
            return count
        except Exception as exc:
            raise StoreError(
                message=f"ChromaDB delete_by_knowledge_source failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def find_by_knowledge_source(self, knowledge_source_id: str) -> list[EmbeddedChunk]:
        """Return every chunk of a source, paginated in 5K-row pages."""
        try:
            chunks: list[EmbeddedChunk] = []
            offset = 0
            while True:
                page = self._collection.get(
                    where={"knowledge_source_id": knowledge_source_id},
                    include=["documents", "metadatas", "embeddings"],
                    limit=_PAGE_SIZE,
                    offset=offset,
                )
                ids = page["ids"] or []
                if not ids:
                    break
                embeddings = page["embeddings"] if page["embeddings"] is not None else [[]] * len(ids)
                for doc, meta, vector in zip(page["documents"], page["metadatas"], embeddings, strict=True):
                    chunks.append(self._metadata_to_chunk(meta, doc, vector))
                if len(ids) < _PAGE_SIZE:
                    break
                offset += _PAGE_SIZE

            chunks.sort(key=lambda c: (c.file_path, c.chunk_index))
            return chunks
        except Exception as exc:
            raise StoreError(
                message=f"ChromaDB find_by_knowledge_source failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def count_by_knowledge_source(self, knowledge_source_id: str) -> int:
        try:
            existing = self._collection.get(
                where={"knowledge_source_id": knowledge_source_id}, include=[]
            )
            return len(existing["ids"]) if existing["ids"] else 0
        except Exception as exc:
            raise StoreError(
                message=f"ChromaDB count_by_knowledge_source failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def find_similar(
        self,
        embedding: list[float],
        knowledge_source_id: str,
        candidates: int,
        min_score: float | None = None,
    ) -> list[RetrievedChunk]:
        if candidates <= 0:
            return []

        expected_dim = self._embedding_provider.get_dimension()
        if len(embedding) != expected_dim:
            raise StoreError(
                message=f"Query vector has {len(embedding)} dimensions, expected {expected_dim}",
                provider_name=self.get_provider_name(),
            )

        try:
            available = await self.count_by_knowledge_source(knowledge_source_id)
            if available == 0:
                return []

            results = self._collection.query(
                query_embeddings=[embedding],
                n_results=min(candidates, available),
                where={"knowledge_source_id": knowledge_source_id},
                include=["documents", "metadatas", "distances"],
            )

            if not results["documents"] or not results["documents"][0]:
                return []

            ids = results["ids"][0]
            documents = results["documents"][0]
            metadatas = results["metadatas"][0]
            distances = results["distances"][0]

            retrieved: list[RetrievedChunk] = []
            for chunk_id, doc_text, meta, distance in zip(
                ids, documents, metadatas, distances, strict=True
            ):
                similarity = max(0.0, min(1.0, 1.0 - distance))
                if min_score is not None and similarity < min_score:
                    continue
                retrieved.append(
                    RetrievedChunk(
                        chunk_id=chunk_id,
                        knowledge_source_id=meta["knowledge_source_id"],
                        file_id=meta["file_id"],
                        file_name=meta.get("file_name", ""),
                        file_path=meta.get("file_path", ""),
                        chunk_index=int(meta.get("chunk_index", 0)),
                        text=doc_text,
                        mime_type=meta.get("mime_type"),
                        similarity=similarity,
                    )
                )

            # ChromaDB already orders by distance; the stable sort keeps its
            # order for equal scores.
            retrieved.sort(key=lambda rc: rc.similarity, reverse=True)
            logger.info(
                "chromadb_find_similar",
                knowledge_source_id=knowledge_source_id,
                candidates=candidates,
                results_count=len(retrieved),
                top_score=retrieved[0].similarity if retrieved else 0.0,
            )
            return retrieved
        except StoreError:
            raise
        except Exception as exc:
            raise StoreError(
                message=f"ChromaDB query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        """Return ``True`` if the ChromaDB collection is accessible."""
        try:
            self._collection.count()
            return True
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Metadata mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _chunk_to_metadata(chunk: EmbeddedChunk) -> dict[str, Any]:
        """Flatten a chunk to ChromaDB metadata (scalars only, no ``None``)."""
        meta: dict[str, Any] = {
            "knowledge_source_id": chunk.knowledge_source_id,
            "file_id": chunk.file_id,
            "chunk_index": chunk.chunk_index,
            "file_name": chunk.file_name,
            "file_path": chunk.file_path,
        }
        if chunk.mime_type:
            meta["mime_type"] = chunk.mime_type
        if chunk.last_modified is not None:
            meta["last_modified"] = chunk.last_modified.isoformat()
        if chunk.size is not None:
            meta["size"] = chunk.size
        return meta

    @staticmethod
    def _metadata_to_chunk(meta: dict[str, Any], text: str, vector: Any) -> EmbeddedChunk:
        last_modified = meta.get("last_modified")
        return EmbeddedChunk(
            knowledge_source_id=meta["knowledge_source_id"],
            file_id=meta["file_id"],
            chunk_index=int(meta["chunk_index"]),
            file_name=meta.get("file_name", ""),
            file_path=meta.get("file_path", ""),
            text=text,
            embedding=[float(v) for v in vector],
            mime_type=meta.get("mime_type"),
            last_modified=datetime.fromisoformat(last_modified) if last_modified else None,
            size=meta.get("size"),
        )
