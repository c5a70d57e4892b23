"""Public interface definitions for all external collaborators.

Every external API or store used by drive-knowledge is accessed through
the abstract base classes defined here.  Concrete adapters implement them
and are wired together in :mod:`drive_knowledge.main`; tests inject fakes.

CONCRETE PROVIDER MAP:
    Interface                  ->  Concrete implementation
    ---------------------------------------------------------------
    IEmbeddingProvider         ->  OpenAIEmbeddingProvider
    IChunkStore                ->  ChromaDBChunkStore
    IFileOriginProvider        ->  OneDriveProvider
    IKnowledgeSourceStore      ->  SQLiteKnowledgeSourceStore
    IUserStore                 ->  SQLiteUserStore
"""

from drive_knowledge.interfaces.chunk_store import IChunkStore
from drive_knowledge.interfaces.embedding_provider import IEmbeddingProvider
from drive_knowledge.interfaces.file_origin_provider import IFileOriginProvider
from drive_knowledge.interfaces.knowledge_source_store import IKnowledgeSourceStore
from drive_knowledge.interfaces.user_store import IUserStore

__all__ = [
    "IChunkStore",
    "IEmbeddingProvider",
    "IFileOriginProvider",
    "IKnowledgeSourceStore",
    "IUserStore",
]
