"""Batched embedding of pending chunks with per-batch failure isolation.

Pending chunks from all files of an ingestion run are embedded in fixed
size batches (100 by default) that freely span file boundaries.  When a
batch fails, every chunk in it is reported failed and the failure is
attributed to each file that contributed a chunk; the other batches are
unaffected.  A batch whose response has the wrong number of vectors, or
vectors of the wrong dimension, fails the same way.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

import structlog

from drive_knowledge.interfaces.embedding_provider import IEmbeddingProvider
from drive_knowledge.models.knowledge import EmbeddedChunk, RemoteFile
from drive_knowledge.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 100


@dataclass(frozen=True)
class PendingChunk:
    """A chunk produced in phase 1, awaiting its embedding."""

    file: RemoteFile
    chunk_index: int
    text: str

    def embed_with(self, knowledge_source_id: str, embedding: list[float]) -> EmbeddedChunk:
        return EmbeddedChunk(
            knowledge_source_id=knowledge_source_id,
            file_id=self.file.id,
            chunk_index=self.chunk_index,
            file_name=self.file.name,
            file_path=self.file.path,
            text=self.text,
            embedding=embedding,
            mime_type=self.file.mime_type,
            last_modified=self.file.last_modified,
            size=self.file.size,
        )


@dataclass
class BatchResult:
    """Outcome of one batch: either embeddings for every chunk, or an error."""

    index: int
    chunks: list[PendingChunk]
    embeddings: list[list[float]] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def file_names(self) -> list[str]:
        """Distinct originating file names, in first-seen order."""
        return list(dict.fromkeys(c.file.name for c in self.chunks))


@dataclass
class BatchEmbeddingResult:
    batches: list[BatchResult] = field(default_factory=list)

    @property
    def failed_batches(self) -> list[BatchResult]:
        return [b for b in self.batches if not b.ok]

    @property
    def embedded_count(self) -> int:
        return sum(len(b.chunks) for b in self.batches if b.ok)


BatchCallback = Callable[[BatchResult, int], Awaitable[None]]


def iter_batches(items: Sequence[T], batch_size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most *batch_size* items."""
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    for start in range(0, len(items), batch_size):
        yield list(items[start : start + batch_size])


class EmbeddingBatchClient:
    """Embeds pending chunks batch by batch through an :class:`IEmbeddingProvider`.

    Parameters
    ----------
    provider:
        The embedding backend.
    batch_size:
        Chunks per embedding call (default 100).
    concurrency:
        Maximum batches in flight at once (default 1, sequential).
        Results are always reported in batch order.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        batch_size: int = DEFAULT_BATCH_SIZE,
        concurrency: int = 1,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if concurrency <= 0:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        self._provider = provider
        self._batch_size = batch_size
        self._concurrency = concurrency

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def embed_batches(
        self,
        pending: Sequence[PendingChunk],
        on_batch: BatchCallback | None = None,
    ) -> BatchEmbeddingResult:
        """Embed *pending* in batches; ``on_batch(result, total_batches)`` runs after each.

        With ``concurrency > 1`` the callback still runs once per batch in
        completion order, while the returned result is in batch order.
        """
        batches = list(iter_batches(pending, self._batch_size))
        total = len(batches)
        semaphore = asyncio.Semaphore(self._concurrency)

        async def run(index: int, chunks: list[PendingChunk]) -> BatchResult:
            async with semaphore:
                result = await self._embed_one(index, chunks)
                if on_batch is not None:
                    await on_batch(result, total)
                return result

        if self._concurrency == 1:
            results = [await run(i, chunks) for i, chunks in enumerate(batches)]
        else:
            results = list(await asyncio.gather(*(run(i, c) for i, c in enumerate(batches))))

        outcome = BatchEmbeddingResult(batches=results)
        logger.info(
            "embedding_batches_complete",
            batches=total,
            failed_batches=len(outcome.failed_batches),
            embedded=outcome.embedded_count,
        )
        return outcome

    async def _embed_one(self, index: int, chunks: list[PendingChunk]) -> BatchResult:
        try:
            embeddings = await self._provider.embed([c.text for c in chunks])
            self._check_vectors(embeddings, len(chunks))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "embedding_batch_failed",
                batch=index,
                size=len(chunks),
                files=len({c.file.id for c in chunks}),
                error=str(exc),
            )
            return BatchResult(index=index, chunks=chunks, error=str(exc))
        return BatchResult(index=index, chunks=chunks, embeddings=embeddings)

    def _check_vectors(self, embeddings: list[list[float]], expected_count: int) -> None:
        if len(embeddings) != expected_count:
            raise EmbeddingError(
                message=f"Expected {expected_count} embeddings, got {len(embeddings)}",
                provider_name=self._provider.get_provider_name(),
            )
        dimension = self._provider.get_dimension()
        for vector in embeddings:
            if len(vector) != dimension:
                raise EmbeddingError(
                    message=f"Embedding has {len(vector)} dimensions, expected {dimension}",
                    provider_name=self._provider.get_provider_name(),
                )
