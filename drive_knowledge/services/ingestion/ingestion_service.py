"""Orchestrator for knowledge-source ingestion runs.

Pipeline stages: **enumerate -> download -> extract -> chunk -> embed -> store**.

The :class:`IngestionService` coordinates its collaborators (file
enumerator, file origin, text extractor, chunker, embedding batch client,
chunk store and the two repositories) without any of them knowing about
each other.  Every run follows the same two-phase flow:

    Phase 1 (per file)  -- download, extract text, split into windows.
                           A failing file is recorded and skipped.
    Phase 2 (batched)   -- embed all pending windows in batches of 100
                           across file boundaries and persist each
                           successful batch.  A failing batch marks every
                           contributing file as failed.

The source record is written in ``processing`` before any remote work and
ends in ``ready`` (no failures) or ``error`` (with a summary message).
Only one run per knowledge source may be in flight at a time.

All dependencies are injected via constructor.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import structlog

from drive_knowledge.interfaces.chunk_store import IChunkStore
from drive_knowledge.interfaces.file_origin_provider import IFileOriginProvider
from drive_knowledge.interfaces.knowledge_source_store import IKnowledgeSourceStore
from drive_knowledge.interfaces.user_store import IUserStore
from drive_knowledge.models.knowledge import (
    KnowledgeSource,
    KnowledgeSourceStatus,
    RemoteFile,
    SourceType,
)
from drive_knowledge.models.outcomes import (
    AuthorizationRequired,
    DeleteOutcome,
    FailedFile,
    IngestionOutcome,
    IngestionPhase,
    IngestionProgress,
)
from drive_knowledge.models.user import AccessLevel
from drive_knowledge.services.access_control import AccessControlService
from drive_knowledge.services.ingestion.chunker import TextChunker
from drive_knowledge.services.ingestion.embedding_batcher import (
    BatchResult,
    EmbeddingBatchClient,
    PendingChunk,
)
from drive_knowledge.services.ingestion.file_enumerator import FileEnumerator
from drive_knowledge.services.ingestion.text_extractor import TextExtractor
from drive_knowledge.utils.errors import (
    DuplicateNameError,
    IngestionError,
    IngestionInProgressError,
    NotAuthorizedError,
    ValidationError,
)

logger = structlog.get_logger(logger_name=__name__)

ProgressCallback = Callable[[IngestionProgress], Awaitable[None]]

_REVIEW_FAILED_STEP = "Review failed files and try again."


@dataclass
class _FileResult:
    file: RemoteFile
    chunks: list[PendingChunk] = field(default_factory=list)
    error: str | None = None


class IngestionService:
    """Creates, refreshes, updates, deletes and lists knowledge sources.

    Parameters
    ----------
    knowledge_sources:
        Repository of knowledge-source records.
    chunks:
        Store of embedded chunks.
    users:
        Repository of users (ownership, grants).
    access:
        Access gate; write operations require ownership.
    origin:
        Remote drive used to download files.
    enumerator:
        Walks the source's drive folder.
    extractor:
        Turns file bytes into text.
    chunker:
        Splits text into overlapping windows.
    embedder:
        Embeds pending windows in batches.
    file_concurrency:
        Files downloaded and extracted at once in phase 1 (default 1).
    """

    def __init__(
        self,
        knowledge_sources: IKnowledgeSourceStore,
        chunks: IChunkStore,
        users: IUserStore,
        access: AccessControlService,
        origin: IFileOriginProvider,
        enumerator: FileEnumerator,
        extractor: TextExtractor,
        chunker: TextChunker,
        embedder: EmbeddingBatchClient,
        file_concurrency: int = 1,
    ) -> None:
        if file_concurrency <= 0:
            raise ValueError(f"file_concurrency must be positive, got {file_concurrency}")
        self._knowledge_sources = knowledge_sources
        self._chunks = chunks
        self._users = users
        self._access = access
        self._origin = origin
        self._enumerator = enumerator
        self._extractor = extractor
        self._chunker = chunker
        self._embedder = embedder
        self._file_concurrency = file_concurrency
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def add_knowledge_source(
        self,
        user_id: str,
        name: str,
        description: str,
        path: str,
        progress: ProgressCallback | None = None,
    ) -> IngestionOutcome | AuthorizationRequired:
        """Create a knowledge source from a drive folder and ingest it.

        Raises
        ------
        ValidationError
            If user, name, description or path is missing.
        DuplicateNameError
            If the user already owns a source with this name.
        IngestionError
            If the drive folder cannot be enumerated.
        """
        user_id = _require(user_id, "User")
        name = _require(name, "Name")
        description = _require(description, "Description")
        path = _require(path, "Path")

        if await self._knowledge_sources.find_by_name_and_owner(name, user_id) is not None:
            raise DuplicateNameError(
                f"A knowledge source named '{name}' already exists for this user."
            )

        await self._users.get_or_create(user_id)
        source = await self._knowledge_sources.create(
            KnowledgeSource(
                id=uuid.uuid4().hex,
                name=name,
                description=description,
                source_type=SourceType.ONEDRIVE,
                source_url=path,
                created_by=user_id,
                status=KnowledgeSourceStatus.PROCESSING,
            )
        )
        try:
            await self._users.add_owned(user_id, source.id)
        except Exception as exc:
            logger.error("knowledge_source_ownership_failed", knowledge_source_id=source.id, error=str(exc))
            await self._set_status(
                source.id, KnowledgeSourceStatus.ERROR, f"Failed to record ownership: {exc}"
            )
            raise

        async with self._exclusive(source.id):
            return await self._run_guarded(source, user_id, progress)

    async def refresh_knowledge_source(
        self,
        user_id: str,
        knowledge_source_id: str,
        progress: ProgressCallback | None = None,
    ) -> IngestionOutcome | AuthorizationRequired:
        """Delete all chunks of a source and ingest its folder again."""
        user_id = _require(user_id, "User")
        knowledge_source_id = _require(knowledge_source_id, "Knowledge source id")
        source = await self._access.require_access(user_id, knowledge_source_id, AccessLevel.WRITE)

        async with self._exclusive(source.id):
            return await self._run_guarded(source, user_id, progress, reset=True)

    async def update_knowledge_source(
        self,
        user_id: str,
        knowledge_source_id: str,
        name: str | None = None,
        description: str | None = None,
        path: str | None = None,
        progress: ProgressCallback | None = None,
    ) -> IngestionOutcome | AuthorizationRequired:
        """Rename, re-describe or re-point a source, then re-ingest it.

        Keeping the source's own name is allowed; taking the name of
        another source of the same owner raises :class:`DuplicateNameError`.
        """
        user_id = _require(user_id, "User")
        knowledge_source_id = _require(knowledge_source_id, "Knowledge source id")
        fields: dict[str, str] = {}
        if name is not None:
            fields["name"] = _require(name, "Name")
        if description is not None:
            fields["description"] = _require(description, "Description")
        if path is not None:
            fields["source_url"] = _require(path, "Path")
        if not fields:
            raise ValidationError("Nothing to update: provide a name, description or path")

        source = await self._access.require_access(user_id, knowledge_source_id, AccessLevel.WRITE)
        if "name" in fields:
            clash = await self._knowledge_sources.find_by_name_and_owner(fields["name"], source.created_by)
            if clash is not None and clash.id != source.id:
                raise DuplicateNameError(
                    f"A knowledge source named '{fields['name']}' already exists for this user."
                )

        async with self._exclusive(source.id):
            return await self._run_guarded(source, user_id, progress, reset=True, fields=fields)

    async def delete_knowledge_source(self, user_id: str, name: str) -> DeleteOutcome:
        """Delete the user's source named *name*, its chunks and its grants.

        An unknown name returns ``DeleteOutcome(found=False)`` instead of
        raising, so deleting twice is safe.
        """
        user_id = _require(user_id, "User")
        name = _require(name, "Name")

        source = await self._knowledge_sources.find_by_name_and_owner(name, user_id)
        if source is None:
            logger.info("knowledge_source_delete_not_found", user=user_id, name=name)
            return DeleteOutcome(found=False, name=name)

        if self._is_running(source.id):
            raise IngestionInProgressError(
                f"Knowledge source '{name}' is being ingested; try again when it finishes."
            )

        # Record first, then chunks: a crash in between leaves orphaned
        # chunks that no search can reach, never a source without chunks.
        await self._knowledge_sources.delete(source.id)
        deleted_chunks = await self._chunks.delete_by_knowledge_source(source.id)
        await self._users.remove_grants_for_source(source.id)
        self._locks.pop(source.id, None)

        logger.info(
            "knowledge_source_deleted",
            knowledge_source_id=source.id,
            name=name,
            chunks_deleted=deleted_chunks,
        )
        return DeleteOutcome(
            found=True,
            name=name,
            knowledge_source_id=source.id,
            chunks_deleted=deleted_chunks,
        )

    async def list_knowledge_sources(
        self,
        user_id: str,
        name_contains: str | None = None,
        limit: int = 10,
        skip: int = 0,
    ) -> list[KnowledgeSource]:
        """List sources the user owns or has been granted, newest first."""
        user_id = _require(user_id, "User")
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        if skip < 0:
            raise ValidationError("skip must not be negative")

        user = await self._users.get(user_id)
        shared_ids = [g.knowledge_source_id for g in user.shared] if user else []
        return await self._knowledge_sources.list(
            owner=user_id,
            ids=shared_ids,
            name_contains=name_contains,
            skip=skip,
            limit=limit,
        )

    def is_running(self, knowledge_source_id: str) -> bool:
        return self._is_running(knowledge_source_id)

    # ------------------------------------------------------------------
    # Run orchestration
    # ------------------------------------------------------------------

    def _is_running(self, knowledge_source_id: str) -> bool:
        lock = self._locks.get(knowledge_source_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def _exclusive(self, knowledge_source_id: str) -> AsyncIterator[None]:
        """Hold the source's run lock, refusing if a run already holds it.

        The lock entry is dropped when the run ends.
        """
        lock = self._locks.setdefault(knowledge_source_id, asyncio.Lock())
        if lock.locked():
            raise IngestionInProgressError(
                f"An ingestion run is already in progress for knowledge source {knowledge_source_id}"
            )
        async with lock:
            try:
                yield
            finally:
                self._locks.pop(knowledge_source_id, None)

    async def _reset(self, source: KnowledgeSource) -> KnowledgeSource:
        source = await self._knowledge_sources.update_status(source.id, KnowledgeSourceStatus.PROCESSING)
        deleted = await self._chunks.delete_by_knowledge_source(source.id)
        logger.info("knowledge_source_reset", knowledge_source_id=source.id, chunks_deleted=deleted)
        return source

    async def _run_guarded(
        self,
        source: KnowledgeSource,
        user_id: str,
        progress: ProgressCallback | None,
        reset: bool = False,
        fields: dict[str, str] | None = None,
    ) -> IngestionOutcome | AuthorizationRequired:
        """Run ingestion, leaving the record in ``error`` if the run dies.

        *fields* are written and old chunks dropped (``reset``) inside the
        guard, so a failing store call cannot strand the record in
        ``processing``.
        """
        try:
            if fields:
                source = await self._knowledge_sources.update(source.id, **fields)
                logger.info("knowledge_source_updated", knowledge_source_id=source.id, fields=sorted(fields))
            if reset:
                source = await self._reset(source)
            return await self._run(source, user_id, progress)
        except asyncio.CancelledError:
            logger.warning("ingestion_cancelled", knowledge_source_id=source.id)
            await self._set_status(source.id, KnowledgeSourceStatus.ERROR, "Ingestion cancelled")
            raise
        except IngestionError:
            raise
        except Exception as exc:
            logger.error("ingestion_crashed", knowledge_source_id=source.id, error=str(exc))
            await self._set_status(source.id, KnowledgeSourceStatus.ERROR, f"Ingestion failed: {exc}")
            raise

    async def _run(
        self,
        source: KnowledgeSource,
        user_id: str,
        progress: ProgressCallback | None,
    ) -> IngestionOutcome | AuthorizationRequired:
        log = logger.bind(knowledge_source_id=source.id, user=user_id)

        try:
            files = await self._enumerator.list_files(user_id, source.source_url)
        except NotAuthorizedError as exc:
            auth_url = exc.auth_url or await self._origin.get_authorization_url(user_id)
            log.info("ingestion_authorization_required")
            await self._set_status(
                source.id,
                KnowledgeSourceStatus.ERROR,
                "Microsoft account authorization required; re-run after authenticating.",
            )
            return AuthorizationRequired(auth_url=auth_url, knowledge_source_id=source.id)
        except Exception as exc:
            log.warning("file_enumeration_failed", error=str(exc))
            await self._set_status(source.id, KnowledgeSourceStatus.ERROR, f"Failed to list files: {exc}")
            raise IngestionError(f"Failed to list files: {exc}") from exc

        log.info("ingestion_started", file_count=len(files), path=source.source_url)

        # Phase 1 -- download, extract and chunk every file.
        file_results = await self._process_files(user_id, files, progress)
        failures: list[FailedFile] = [
            FailedFile(file=r.file.name, error=r.error) for r in file_results if r.error
        ]
        failed_file_ids = {r.file.id for r in file_results if r.error}
        pending = [chunk for r in file_results for chunk in r.chunks]

        # Phase 2 -- embed in batches across files and store each batch.
        chunk_count = 0
        batches_done = 0

        async def on_batch(batch: BatchResult, total_batches: int) -> None:
            nonlocal chunk_count, batches_done
            if batch.ok:
                embedded = [
                    c.embed_with(source.id, vector)
                    for c, vector in zip(batch.chunks, batch.embeddings or [], strict=True)
                ]
                try:
                    chunk_count += await self._chunks.insert_many(embedded)
                except Exception as exc:
                    log.warning("chunk_batch_store_failed", batch=batch.index, error=str(exc))
                    batch.error = f"Failed to store chunks: {exc}"
            if not batch.ok:
                for chunk_file in {c.file.id: c.file for c in batch.chunks}.values():
                    failed_file_ids.add(chunk_file.id)
                    failures.append(
                        FailedFile(
                            file=chunk_file.name,
                            error=f"Embedding batch {batch.index + 1} failed: {batch.error}",
                        )
                    )
            batches_done += 1
            await self._emit(
                progress,
                IngestionProgress(
                    current=batches_done,
                    total=total_batches,
                    message=f"Embedded batch {batches_done} of {total_batches}",
                    phase=IngestionPhase.BATCHES,
                ),
            )

        if pending:
            await self._embedder.embed_batches(pending, on_batch=on_batch)

        processed = len(files)
        failed_count = len(failed_file_ids)
        success = processed - failed_count

        if failed_count:
            await self._set_status(
                source.id,
                KnowledgeSourceStatus.ERROR,
                f"{failed_count} file(s) failed to process",
            )
            status = KnowledgeSourceStatus.ERROR
        else:
            await self._set_status(source.id, KnowledgeSourceStatus.READY)
            status = KnowledgeSourceStatus.READY

        log.info(
            "ingestion_complete",
            processed=processed,
            success=success,
            failed=failed_count,
            chunks=chunk_count,
            status=status.value,
        )
        return IngestionOutcome(
            knowledge_source_id=source.id,
            name=source.name,
            description=source.description,
            status=status,
            processed=processed,
            success=success,
            failed=failures,
            chunk_count=chunk_count,
            message=(
                f"Processed {processed} files, {success} succeeded, {failed_count} failed. "
                f"{chunk_count} chunks stored."
            ),
            next_steps=[_REVIEW_FAILED_STEP] if failed_count else [],
        )

    async def _process_files(
        self,
        user_id: str,
        files: list[RemoteFile],
        progress: ProgressCallback | None,
    ) -> list[_FileResult]:
        """Phase 1; results come back in enumeration order whatever the pool size."""
        semaphore = asyncio.Semaphore(self._file_concurrency)
        done = 0
        total = len(files)

        async def process(remote_file: RemoteFile) -> _FileResult:
            nonlocal done
            async with semaphore:
                result = await self._process_file(user_id, remote_file)
            # Counted after the work so "current" only ever increases.
            done += 1
            await self._emit(
                progress,
                IngestionProgress(
                    current=done,
                    total=total,
                    message=f"Processed {remote_file.name}",
                    phase=IngestionPhase.FILES,
                ),
            )
            return result

        if self._file_concurrency == 1:
            return [await process(f) for f in files]
        return list(await asyncio.gather(*(process(f) for f in files)))

    async def _process_file(self, user_id: str, remote_file: RemoteFile) -> _FileResult:
        try:
            content = await self._origin.download_file(user_id, remote_file.id)
            text = await self._extractor.extract_async(content, remote_file.name, remote_file.mime_type)
            windows = self._chunker.chunk(text)
        except Exception as exc:
            logger.warning("file_processing_failed", file=remote_file.path, error=str(exc))
            return _FileResult(file=remote_file, error=str(exc))

        if not windows:
            logger.warning("file_produced_no_chunks", file=remote_file.path)
            return _FileResult(file=remote_file, error="No text chunks produced")

        logger.debug("file_chunked", file=remote_file.path, chunks=len(windows))
        return _FileResult(
            file=remote_file,
            chunks=[PendingChunk(file=remote_file, chunk_index=i, text=t) for i, t in enumerate(windows)],
        )

    async def _set_status(
        self,
        knowledge_source_id: str,
        status: KnowledgeSourceStatus,
        error: str | None = None,
    ) -> None:
        """Write the final status; a failing write is logged, never raised."""
        try:
            await self._knowledge_sources.update_status(knowledge_source_id, status, error)
        except Exception as exc:
            logger.error(
                "knowledge_source_status_update_failed",
                knowledge_source_id=knowledge_source_id,
                status=status.value,
                error=str(exc),
            )

    @staticmethod
    async def _emit(progress: ProgressCallback | None, event: IngestionProgress) -> None:
        if progress is None:
            return
        try:
            await progress(event)
        except Exception as exc:
            logger.warning("progress_callback_failed", phase=event.phase.value, error=str(exc))


def _require(value: str | None, label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{label} is required")
    return value
