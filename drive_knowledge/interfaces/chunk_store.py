"""Abstract base class for the embedded-chunk store.

Defines the contract for storing, filtering and similarity-querying
embedded chunks of knowledge sources.  Implementations may wrap ChromaDB
(local), a managed vector database, or an in-memory store for tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from drive_knowledge.models.knowledge import EmbeddedChunk, RetrievedChunk


# Concrete implementation: ChromaDBChunkStore (drive_knowledge/providers/vector_store/)
class IChunkStore(ABC):
    """Contract for the vector/document store holding embedded chunks.

    Every query is scoped to one knowledge source; chunks of other sources
    are never returned.
    """

    @abstractmethod
    async def insert_many(self, chunks: list[EmbeddedChunk]) -> int:
        """Persist a batch of embedded chunks.

        Re-inserting a chunk with the same
        ``(knowledge_source_id, file_id, chunk_index)`` replaces it.

        Parameters
        ----------
        chunks:
            Chunks to persist, each carrying its embedding vector.

        Returns
        -------
        int
            Number of chunks written.

        Raises
        ------
        drive_knowledge.utils.errors.StoreError
            If the write fails.
        """

    @abstractmethod
    async def delete_by_knowledge_source(self, knowledge_source_id: str) -> int:
        """Delete every chunk of a knowledge source.

        Returns
        -------
        int
            Number of chunks deleted (0 when none existed).
        """

    @abstractmethod
    async def find_by_knowledge_source(self, knowledge_source_id: str) -> list[EmbeddedChunk]:
        """Return every stored chunk of a knowledge source (embeddings included)."""

    @abstractmethod
    async def count_by_knowledge_source(self, knowledge_source_id: str) -> int:
        """Return the number of stored chunks of a knowledge source."""

    @abstractmethod
    async def find_similar(
        self,
        embedding: list[float],
        knowledge_source_id: str,
        candidates: int,
        min_score: float | None = None,
    ) -> list[RetrievedChunk]:
        """Nearest-neighbour search restricted to one knowledge source.

        Parameters
        ----------
        embedding:
            Query vector; must have the store's dimension.
        knowledge_source_id:
            Only chunks of this source are considered.
        candidates:
            Maximum number of rows to return.
        min_score:
            When given, rows with cosine similarity below it are dropped.

        Returns
        -------
        list[RetrievedChunk]
            At most *candidates* chunks ordered by similarity descending.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"chromadb"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the backing store is initialised and reachable."""
