"""Custom exception hierarchy for drive-knowledge.

All application exceptions inherit from :class:`KnowledgeServiceError`,
which carries an optional ``provider_name`` so error handlers can identify
which external service (e.g. "openai", "onedrive", "chromadb") caused the
failure.

The hierarchy is organized by pipeline domain:

    KnowledgeServiceError  (base -- catch-all for any drive-knowledge error)
    +-- ValidationError           (missing / malformed caller input)
    |   +-- DuplicateNameError    (name already used by the same owner)
    +-- NotAuthorizedError        (drive credentials missing or rejected)
    +-- FileOriginError           (drive listing / download failure)
    +-- ExtractionError           (per-file text extraction failure)
    |   +-- UnsupportedFileTypeError
    +-- EmbeddingError            (embedding API failure)
    +-- AccessDeniedError         (no ownership / share grant)
    +-- NotFoundError             (missing knowledge source)
    +-- StoreError                (persistence / vector query failure)
    +-- IngestionError            (whole-run failure, e.g. enumeration)
    |   +-- IngestionInProgressError
    +-- ConfigurationError        (startup / missing config)

Per-file and per-batch errors (ExtractionError, EmbeddingError) are caught
by the ingestion orchestrator and recorded; the rest are surfaced to the
caller with a remediation hint.
"""


class KnowledgeServiceError(Exception):
    """Base exception for all drive-knowledge errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  ``__str__`` prefixes the provider name in brackets for log
    scanning, e.g. ``[openai_embedding] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Caller input errors
# ---------------------------------------------------------------------------

class ValidationError(KnowledgeServiceError):
    """Raised when required input (name, description, path, query, ids) is missing."""

    def __init__(
        self,
        message: str = "Invalid or missing input",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DuplicateNameError(ValidationError):
    """Raised when an owner already has a knowledge source with the given name."""

    def __init__(
        self,
        message: str = "A knowledge source with this name already exists",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Remote drive errors
# ---------------------------------------------------------------------------

class NotAuthorizedError(KnowledgeServiceError):
    """Raised when the user has not authorized (or has revoked) drive access.

    Carries ``auth_url`` so the caller can send the user through the
    consent flow and retry afterwards.  Not a hard failure.
    """

    def __init__(
        self,
        message: str = "User has not authorized Microsoft account.",
        provider_name: str | None = None,
        auth_url: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._auth_url = auth_url

    @property
    def auth_url(self) -> str | None:
        return self._auth_url


class FileOriginError(KnowledgeServiceError):
    """Raised when a drive API call (list, download, metadata) fails."""

    def __init__(
        self,
        message: str = "Remote drive request failed",
        provider_name: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._status_code = status_code

    @property
    def status_code(self) -> int | None:
        return self._status_code


# ---------------------------------------------------------------------------
# Per-file / per-batch errors (recorded, never abort a run)
# ---------------------------------------------------------------------------

class ExtractionError(KnowledgeServiceError):
    """Raised when text cannot be extracted from a downloaded file."""

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class UnsupportedFileTypeError(ExtractionError):
    """Raised when no extractor is registered for a file extension."""

    def __init__(
        self,
        message: str = "Unsupported file type",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingError(KnowledgeServiceError):
    """Raised when the embedding API call fails or returns malformed vectors."""

    def __init__(
        self,
        message: str = "Embedding request failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Access / lookup errors
# ---------------------------------------------------------------------------

class AccessDeniedError(KnowledgeServiceError):
    """Raised when a user lacks ownership or a share grant for a knowledge source."""

    def __init__(
        self,
        message: str = "Access denied",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class NotFoundError(KnowledgeServiceError):
    """Raised when a knowledge source (or user) does not exist."""

    def __init__(
        self,
        message: str = "Knowledge source not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Persistence / orchestration / configuration errors
# ---------------------------------------------------------------------------

class StoreError(KnowledgeServiceError):
    """Raised when a persistence or vector-query operation fails."""

    def __init__(
        self,
        message: str = "Store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class IngestionError(KnowledgeServiceError):
    """Raised when an ingestion run fails as a whole (e.g. enumeration failure)."""

    def __init__(
        self,
        message: str = "Ingestion failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class IngestionInProgressError(IngestionError):
    """Raised when a run is requested for a source that already has one in flight."""

    def __init__(
        self,
        message: str = "An ingestion run is already in progress for this knowledge source",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(KnowledgeServiceError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
