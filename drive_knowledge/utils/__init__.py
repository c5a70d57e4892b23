"""Utility modules for drive-knowledge.

- **errors** -- Domain exception hierarchy rooted at KnowledgeServiceError;
  each pipeline stage raises its own subclass so callers can handle
  failures granularly.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
"""

from drive_knowledge.utils.errors import (
    AccessDeniedError,
    ConfigurationError,
    DuplicateNameError,
    EmbeddingError,
    ExtractionError,
    FileOriginError,
    IngestionError,
    IngestionInProgressError,
    KnowledgeServiceError,
    NotAuthorizedError,
    NotFoundError,
    StoreError,
    UnsupportedFileTypeError,
    ValidationError,
)
from drive_knowledge.utils.logging import configure_logging, get_logger

__all__ = [
    "AccessDeniedError",
    "ConfigurationError",
    "DuplicateNameError",
    "EmbeddingError",
    "ExtractionError",
    "FileOriginError",
    "IngestionError",
    "IngestionInProgressError",
    "KnowledgeServiceError",
    "NotAuthorizedError",
    "NotFoundError",
    "StoreError",
    "UnsupportedFileTypeError",
    "ValidationError",
    "configure_logging",
    "get_logger",
]
