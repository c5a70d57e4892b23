"""Tool surface exposed to the host: typed arguments, dispatch and envelopes.

Each :class:`KnowledgeAction` has a pydantic argument model and a handler
method.  :meth:`KnowledgeToolHandler.handle` validates the raw argument
dict, takes the caller's identity from the :class:`SessionContext` only,
and converts expected domain errors into an :class:`ActionResult` with a
remediation hint.  Unexpected exceptions propagate to the host.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from drive_knowledge.interfaces.file_origin_provider import IFileOriginProvider
from drive_knowledge.models.knowledge import KnowledgeSource
from drive_knowledge.models.outcomes import (
    ActionResult,
    AuthorizationRequired,
    IngestionOutcome,
    ToolDefinition,
)
from drive_knowledge.models.user import AccessLevel
from drive_knowledge.services.access_control import AccessControlService
from drive_knowledge.services.ingestion.ingestion_service import IngestionService
from drive_knowledge.services.ingestion.text_extractor import TextExtractor
from drive_knowledge.services.retrieval_service import RetrievalService
from drive_knowledge.utils.errors import (
    AccessDeniedError,
    DuplicateNameError,
    EmbeddingError,
    ExtractionError,
    FileOriginError,
    IngestionError,
    IngestionInProgressError,
    NotAuthorizedError,
    NotFoundError,
    StoreError,
    ValidationError,
)

logger = structlog.get_logger(logger_name=__name__)

_AUTH_MESSAGE = "Please follow this authentication link to authorize OneDrive access."


class KnowledgeAction(str, Enum):
    ADD_KNOWLEDGE = "add-knowledge"
    SEARCH = "search"
    REFRESH = "refresh-knowledge-source"
    DELETE = "delete-knowledge-source"
    LIST = "list-knowledge-sources"
    SHARE = "share-knowledge-source"
    USE_KNOWLEDGE_SOURCE = "use-knowledge-source"
    SEARCH_DRIVE_FILES = "search-onedrive-files"
    RETRIEVE_DRIVE_FILE = "retrieve-onedrive-file"


class SessionContext(BaseModel):
    """Caller identity supplied by the host session, never by tool arguments."""

    model_config = ConfigDict(frozen=True)

    user_email: str | None = None


# ---------------------------------------------------------------------------
# Argument models -- camelCase aliases match the host's wire format.
# ---------------------------------------------------------------------------
class _Args(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class AddKnowledgeArgs(_Args):
    name: str = Field(description="Unique identifier for the knowledge source")
    description: str = Field(description="Human-readable description of the knowledge source")
    path: str = Field(description="OneDrive folder path to ingest")


class SearchArgs(_Args):
    query: str = Field(description="The search query")
    knowledge_source_id: str = Field(
        alias="knowledgeSourceId", description="ID of the knowledge source to search"
    )
    limit: int | None = Field(default=None, ge=1, description="Maximum number of results to return")
    skip: int = Field(default=0, ge=0, description="Number of results to skip")
    min_score: float | None = Field(
        default=None, alias="minScore", ge=0.0, le=1.0, description="Minimum similarity score"
    )


class RefreshArgs(_Args):
    knowledge_source_id: str = Field(
        alias="knowledgeSourceId", description="ID of the knowledge source to refresh"
    )
    name: str | None = Field(default=None, description="(Optional) Name, for display only")


class DeleteArgs(_Args):
    name: str = Field(description="Name of the knowledge source to delete")


class ListArgs(_Args):
    name_contains: str | None = Field(
        default=None, alias="nameContains", description="Only sources whose name contains this text"
    )
    limit: int | None = Field(default=None, ge=1, description="Maximum number of sources to return")


class ShareArgs(_Args):
    knowledge_source_id: str = Field(
        alias="knowledgeSourceId", description="ID of the knowledge source to share"
    )
    target_email: str = Field(alias="targetEmail", description="Email of the user to share with")
    access_level: AccessLevel = Field(
        default=AccessLevel.READ, alias="accessLevel", description="Access level to grant"
    )


class UseKnowledgeSourceArgs(_Args):
    name: str = Field(description="Name of the knowledge source to create a tool for")
    description: str = Field(description="Description of what the specialized tool does")


class SearchDriveFilesArgs(_Args):
    query: str | None = Field(default=None, description="Search query for file names or contents")
    path: str | None = Field(default=None, description="OneDrive folder path to list instead")
    limit: int = Field(default=20, ge=1, description="Maximum number of results to return")


class RetrieveDriveFileArgs(_Args):
    file_id: str = Field(alias="fileId", description="ID of the OneDrive file to retrieve")
    max_length: int | None = Field(
        default=None, alias="maxLength", ge=1, description="Maximum characters of text to return"
    )


_ARG_MODELS: dict[KnowledgeAction, type[_Args]] = {
    KnowledgeAction.ADD_KNOWLEDGE: AddKnowledgeArgs,
    KnowledgeAction.SEARCH: SearchArgs,
    KnowledgeAction.REFRESH: RefreshArgs,
    KnowledgeAction.DELETE: DeleteArgs,
    KnowledgeAction.LIST: ListArgs,
    KnowledgeAction.SHARE: ShareArgs,
    KnowledgeAction.USE_KNOWLEDGE_SOURCE: UseKnowledgeSourceArgs,
    KnowledgeAction.SEARCH_DRIVE_FILES: SearchDriveFilesArgs,
    KnowledgeAction.RETRIEVE_DRIVE_FILE: RetrieveDriveFileArgs,
}

# (title, description, readOnly, destructive, idempotent, openWorld)
_CATALOGUE: dict[KnowledgeAction, tuple[str, str, bool, bool, bool, bool]] = {
    KnowledgeAction.ADD_KNOWLEDGE: (
        "Add Knowledge", "Add a new knowledge source to the system", False, False, False, True,
    ),
    KnowledgeAction.SEARCH: (
        "Search Knowledge", "Search a knowledge source for relevant information", True, False, True, True,
    ),
    KnowledgeAction.REFRESH: (
        "Refresh Knowledge Source",
        "Refresh a knowledge source by re-ingesting its original content from OneDrive.",
        False, True, False, False,
    ),
    KnowledgeAction.DELETE: (
        "Delete Knowledge Source",
        "Delete a knowledge source and all of its stored chunks",
        False, True, True, False,
    ),
    KnowledgeAction.LIST: (
        "List Knowledge Sources",
        "List the knowledge sources you own or that were shared with you",
        True, False, True, False,
    ),
    KnowledgeAction.SHARE: (
        "Share Knowledge Source", "Share a knowledge source with another user", False, False, True, False,
    ),
    KnowledgeAction.USE_KNOWLEDGE_SOURCE: (
        "Use Knowledge Source",
        "Create a specialized search tool for a specific knowledge source",
        False, False, True, True,
    ),
    KnowledgeAction.SEARCH_DRIVE_FILES: (
        "Search OneDrive Files", "Search for files in the user's OneDrive account.", True, False, True, True,
    ),
    KnowledgeAction.RETRIEVE_DRIVE_FILE: (
        "Retrieve OneDrive File",
        "Retrieve a OneDrive file and return its extracted text.",
        True, False, True, True,
    ),
}


def tool_definitions() -> list[ToolDefinition]:
    """Return the static tool catalogue, with JSON schemas from the argument models."""
    definitions: list[ToolDefinition] = []
    for action in KnowledgeAction:
        title, description, read_only, destructive, idempotent, open_world = _CATALOGUE[action]
        definitions.append(
            ToolDefinition(
                name=action.value,
                description=description,
                input_schema=_ARG_MODELS[action].model_json_schema(by_alias=True),
                annotations={
                    "title": title,
                    "readOnlyHint": read_only,
                    "destructiveHint": destructive,
                    "idempotentHint": idempotent,
                    "openWorldHint": open_world,
                },
                action=action.value,
            )
        )
    return definitions


def tool_slug(name: str) -> str:
    """``"Team Handbook"`` -> ``"team-handbook"``."""
    return "-".join(name.lower().split())


Handler = Callable[[Any, str], Awaitable[ActionResult]]


class KnowledgeToolHandler:
    """Routes host tool calls to the ingestion, retrieval and access services."""

    def __init__(
        self,
        ingestion: IngestionService,
        retrieval: RetrievalService,
        access: AccessControlService,
        origin: IFileOriginProvider,
        extractor: TextExtractor,
        list_default_limit: int = 10,
        retrieve_max_length: int = 1000,
    ) -> None:
        self._ingestion = ingestion
        self._retrieval = retrieval
        self._access = access
        self._origin = origin
        self._extractor = extractor
        self._list_default_limit = list_default_limit
        self._retrieve_max_length = retrieve_max_length
        self._handlers: dict[KnowledgeAction, Handler] = {
            KnowledgeAction.ADD_KNOWLEDGE: self._add_knowledge,
            KnowledgeAction.SEARCH: self._search,
            KnowledgeAction.REFRESH: self._refresh,
            KnowledgeAction.DELETE: self._delete,
            KnowledgeAction.LIST: self._list,
            KnowledgeAction.SHARE: self._share,
            KnowledgeAction.USE_KNOWLEDGE_SOURCE: self._use_knowledge_source,
            KnowledgeAction.SEARCH_DRIVE_FILES: self._search_drive_files,
            KnowledgeAction.RETRIEVE_DRIVE_FILE: self._retrieve_drive_file,
        }
        missing = set(KnowledgeAction) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler registered for: {sorted(a.value for a in missing)}")

    @property
    def list_default_limit(self) -> int:
        return self._list_default_limit

    @property
    def retrieve_max_length(self) -> int:
        return self._retrieve_max_length

    async def handle(
        self,
        action: KnowledgeAction | str,
        args: dict[str, Any] | None,
        session: SessionContext,
    ) -> ActionResult:
        """Validate *args* for *action*, run it as the session's user, wrap the result."""
        try:
            action = KnowledgeAction(action)
        except ValueError:
            return ActionResult(
                message=f"Unknown knowledge action: {action}",
                next_steps=["Use one of the listed knowledge tools."],
            )

        if not session.user_email:
            return ActionResult(
                message="User email is required for knowledge actions.",
                next_steps=["Ensure the user is authenticated and has an email address."],
            )

        try:
            parsed = _ARG_MODELS[action].model_validate(args or {})
        except PydanticValidationError as exc:
            return _error_result(ValidationError(_describe_validation(exc)))

        log = logger.bind(action=action.value, user=session.user_email)
        try:
            result = await self._handlers[action](parsed, session.user_email)
        except NotAuthorizedError as exc:
            log.info("tool_authorization_required")
            auth_url = exc.auth_url or await self._origin.get_authorization_url(session.user_email)
            return _auth_result(AuthorizationRequired(auth_url=auth_url))
        except (
            ValidationError,
            AccessDeniedError,
            NotFoundError,
            IngestionError,
            FileOriginError,
            ExtractionError,
            EmbeddingError,
            StoreError,
        ) as exc:
            log.info("tool_action_rejected", error=str(exc), error_type=type(exc).__name__)
            return _error_result(exc)

        log.info("tool_action_complete")
        return result

    # ------------------------------------------------------------------
    # Action handlers
    # ------------------------------------------------------------------

    async def _add_knowledge(self, args: AddKnowledgeArgs, user: str) -> ActionResult:
        outcome = await self._ingestion.add_knowledge_source(
            user, args.name, args.description, args.path
        )
        return _ingestion_result(outcome)

    async def _refresh(self, args: RefreshArgs, user: str) -> ActionResult:
        outcome = await self._ingestion.refresh_knowledge_source(user, args.knowledge_source_id)
        return _ingestion_result(outcome)

    async def _search(self, args: SearchArgs, user: str) -> ActionResult:
        page = await self._retrieval.search(
            user,
            args.query,
            args.knowledge_source_id,
            limit=args.limit,
            skip=args.skip,
            min_score=args.min_score,
        )
        next_steps: list[str] = []
        if page.next_skip is not None:
            next_steps.append(
                "If the information you need is not in these results, you can re-submit your "
                f"request with skip={page.next_skip} to receive the next batch of search results."
            )
        score_note = f" (minScore: {page.min_score})" if page.min_score else ""
        shown = len(page.results)
        return ActionResult(
            result=page.model_dump(mode="json"),
            message=(
                f"Found {page.total} relevant chunks{score_note}. "
                f"Showing {shown} results from {page.skip + 1} to {page.skip + shown}."
            ),
            next_steps=next_steps,
        )

    async def _delete(self, args: DeleteArgs, user: str) -> ActionResult:
        outcome = await self._ingestion.delete_knowledge_source(user, args.name)
        if not outcome.found:
            return ActionResult(
                result=None,
                message=f"No knowledge source named '{args.name}' found for this user.",
                next_steps=["Check the name and try again."],
            )
        return ActionResult(
            result={"knowledge_source_id": outcome.knowledge_source_id, "name": outcome.name},
            message=f"Knowledge source '{outcome.name}' and all associated data deleted.",
        )

    async def _list(self, args: ListArgs, user: str) -> ActionResult:
        sources = await self._ingestion.list_knowledge_sources(
            user, name_contains=args.name_contains, limit=args.limit or self._list_default_limit
        )
        return ActionResult(
            result=[_source_summary(s) for s in sources],
            message=f"Found {len(sources)} knowledge source(s).",
        )

    async def _share(self, args: ShareArgs, user: str) -> ActionResult:
        grant = await self._access.share(
            user, args.target_email, args.knowledge_source_id, args.access_level
        )
        return ActionResult(
            result={
                "knowledge_source_id": grant.knowledge_source_id,
                "target_email": args.target_email,
                "access_level": grant.access_level.value,
            },
            message=f"Successfully shared knowledge source with {args.target_email}",
        )

    async def _use_knowledge_source(self, args: UseKnowledgeSourceArgs, user: str) -> ActionResult:
        source = await self._resolve_by_name(user, args.name)
        await self._access.require_access(user, source.id, AccessLevel.READ)
        definition = ToolDefinition(
            name=f"search-{tool_slug(source.name)}",
            description=f"Search for information about {source.name}. {args.description}",
            input_schema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": f"What would you like to know about {source.name}?",
                    },
                    "limit": {
                        "type": "number",
                        "description": "Maximum number of results to return",
                        "default": self._retrieval.default_limit,
                    },
                },
                "required": ["query"],
            },
            annotations={
                "title": f"Search {source.name}",
                "readOnlyHint": True,
                "destructiveHint": False,
                "idempotentHint": True,
                "openWorldHint": True,
            },
            action=KnowledgeAction.SEARCH.value,
            knowledge_source_id=source.id,
        )
        return ActionResult(
            result={"tool_definition": definition.model_dump(mode="json")},
            message=f'Created new tool for knowledge source "{source.name}"',
        )

    async def _search_drive_files(self, args: SearchDriveFilesArgs, user: str) -> ActionResult:
        if not args.query and not args.path:
            raise ValidationError("Either query or path must be provided.")
        if args.path:
            items = await self._origin.search_files(user, path=args.path, limit=args.limit)
        else:
            items = await self._origin.search_files(user, query=args.query, limit=args.limit)
        files = [
            {
                "id": item.id,
                "name": item.name,
                "web_url": item.web_url,
                "size": item.size,
                "last_modified": item.last_modified.isoformat() if item.last_modified else None,
                "folder": item.is_folder,
            }
            for item in items
        ]
        return ActionResult(
            result={"files": files, "count": len(files)},
            message=f"Found {len(files)} file(s) matching your search.",
            next_steps=(
                ["Select a file to retrieve or view details."]
                if files
                else ["Try a different search query or path."]
            ),
        )

    async def _retrieve_drive_file(self, args: RetrieveDriveFileArgs, user: str) -> ActionResult:
        metadata = await self._origin.get_metadata(user, args.file_id)
        content = await self._origin.download_file(user, args.file_id)
        text = await self._extractor.extract_async(content, metadata.name, metadata.mime_type)
        return ActionResult(
            result={
                "file": metadata.model_dump(mode="json"),
                "text": text[: args.max_length or self._retrieve_max_length],
            },
            message=f"Successfully extracted text from '{metadata.name}'.",
            next_steps=["Use the extracted text for further processing or analysis."],
        )

    async def _resolve_by_name(self, user: str, name: str) -> KnowledgeSource:
        """Find an owned source by name, falling back to sources shared with the user."""
        name = name.strip()
        candidates = await self._ingestion.list_knowledge_sources(user, name_contains=name, limit=100)
        owned = [s for s in candidates if s.name == name and s.created_by == user]
        shared = [s for s in candidates if s.name == name and s.created_by != user]
        if owned:
            return owned[0]
        if shared:
            return shared[0]
        raise NotFoundError(f'Knowledge source "{name}" not found')


# ---------------------------------------------------------------------------
# Envelope helpers
# ---------------------------------------------------------------------------

def _ingestion_result(outcome: IngestionOutcome | AuthorizationRequired) -> ActionResult:
    if isinstance(outcome, AuthorizationRequired):
        return _auth_result(outcome)
    return ActionResult(
        result=outcome.model_dump(mode="json", exclude={"message", "next_steps"}),
        message=outcome.message,
        next_steps=list(outcome.next_steps),
    )


def _auth_result(required: AuthorizationRequired) -> ActionResult:
    return ActionResult(
        result={"authUrl": required.auth_url},
        message=_AUTH_MESSAGE,
        next_steps=list(required.next_steps),
    )


def _error_result(exc: Exception) -> ActionResult:
    message = exc.message if hasattr(exc, "message") else str(exc)
    if isinstance(exc, DuplicateNameError):
        step = "Choose a different name and try again."
    elif isinstance(exc, ValidationError):
        step = "Check the arguments and try again."
    elif isinstance(exc, AccessDeniedError):
        step = "Ask the owner to share the knowledge source with you."
    elif isinstance(exc, NotFoundError):
        step = "Check the knowledge source name or id and try again."
    elif isinstance(exc, IngestionInProgressError):
        step = "Wait for the current ingestion run to finish and try again."
    elif isinstance(exc, IngestionError):
        step = "Check the OneDrive path and try again."
    elif isinstance(exc, (EmbeddingError, StoreError)):
        step = "The service is temporarily unavailable; try again later."
    elif isinstance(exc, ExtractionError):
        message = f"Could not extract text: {message}"
        step = "Try a different file type or check file contents."
    else:
        message = f"OneDrive API error: {message}"
        step = "Check the query/path and try again."
    return ActionResult(result=None, message=message, next_steps=[step])


def _source_summary(source: KnowledgeSource) -> dict[str, Any]:
    return {
        "id": source.id,
        "name": source.name,
        "description": source.description,
        "status": source.status.value,
        "created_by": source.created_by,
        "created_at": source.created_at.isoformat(),
        "updated_at": source.updated_at.isoformat(),
        "error": source.error,
    }


def _describe_validation(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error["loc"]) or "arguments"
        parts.append(f"{location}: {error['msg']}")
    return "Invalid arguments: " + "; ".join(parts)
