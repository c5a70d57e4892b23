"""SQLite repositories for knowledge sources and users.

Both repositories share one :class:`Database`, whose lifecycle is owned by
the process entry point.
"""

from drive_knowledge.providers.storage.database import Database
from drive_knowledge.providers.storage.sqlite_knowledge_source_store import (
    SQLiteKnowledgeSourceStore,
)
from drive_knowledge.providers.storage.sqlite_user_store import SQLiteUserStore

__all__ = ["Database", "SQLiteKnowledgeSourceStore", "SQLiteUserStore"]
