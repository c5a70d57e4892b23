"""Similarity search over the chunks of one knowledge source.

Search is a read operation gated on access to the source: the query is
embedded once, the chunk store returns the nearest chunks of that
source at or above ``min_score`` and the requested page is sliced from
what remains.

The store is asked for one row beyond the page (``skip + limit + 1``) so
that a further page can be detected.  ``SearchPage.total`` counts only
that fetched window after the ``min_score`` filter, so it is a lower bound
on the number of qualifying chunks; ``next_skip`` is set exactly when
``skip + limit < total``.
"""

from __future__ import annotations

import structlog

from drive_knowledge.interfaces.chunk_store import IChunkStore
from drive_knowledge.interfaces.embedding_provider import IEmbeddingProvider
from drive_knowledge.models.knowledge import SearchPage
from drive_knowledge.models.user import AccessLevel
from drive_knowledge.services.access_control import AccessControlService
from drive_knowledge.utils.errors import ValidationError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_LIMIT = 5


class RetrievalService:
    """Answers similarity queries scoped to a single knowledge source."""

    def __init__(
        self,
        chunks: IChunkStore,
        embedding_provider: IEmbeddingProvider,
        access: AccessControlService,
        default_limit: int = DEFAULT_LIMIT,
    ) -> None:
        if default_limit < 1:
            raise ValueError(f"default_limit must be at least 1, got {default_limit}")
        self._chunks = chunks
        self._embedding_provider = embedding_provider
        self._access = access
        self._default_limit = default_limit

    @property
    def default_limit(self) -> int:
        return self._default_limit

    async def search(
        self,
        user_id: str,
        query: str,
        knowledge_source_id: str,
        limit: int | None = None,
        skip: int = 0,
        min_score: float | None = None,
    ) -> SearchPage:
        """Return one page of chunks ranked by cosine similarity to *query*.

        *limit* falls back to the service's ``default_limit``.

        Raises
        ------
        ValidationError
            If query or source id is missing, ``limit < 1``, ``skip < 0``
            or ``min_score`` is outside ``[0, 1]``.
        NotFoundError
            If the knowledge source does not exist.
        AccessDeniedError
            If the user neither owns the source nor holds a grant on it.
        """
        if limit is None:
            limit = self._default_limit
        if not (query or "").strip():
            raise ValidationError("Query is required")
        if not (knowledge_source_id or "").strip():
            raise ValidationError("Knowledge source id is required")
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        if skip < 0:
            raise ValidationError("skip must not be negative")
        if min_score is not None and not 0.0 <= min_score <= 1.0:
            raise ValidationError("minScore must be between 0 and 1")

        await self._access.require_access(user_id, knowledge_source_id, AccessLevel.READ)

        vector = await self._embedding_provider.embed_single(query)
        # One extra row past the page reveals whether a next page exists.
        window = skip + limit + 1
        candidates = await self._chunks.find_similar(
            vector, knowledge_source_id, candidates=window, min_score=min_score
        )
        # Stable: equal scores keep the store's order.
        candidates = sorted(candidates, key=lambda c: c.similarity, reverse=True)

        total = len(candidates)
        results = candidates[skip : skip + limit]
        next_skip = skip + limit if skip + limit < total else None

        logger.info(
            "knowledge_search",
            user=user_id,
            knowledge_source_id=knowledge_source_id,
            query_length=len(query),
            total=total,
            returned=len(results),
            skip=skip,
            min_score=min_score,
        )
        return SearchPage(
            results=results,
            total=total,
            limit=limit,
            skip=skip,
            min_score=min_score,
            next_skip=next_skip,
        )
