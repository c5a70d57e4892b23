"""Chunk store implementations (ChromaDB, cosine distance, local persistence)."""

from drive_knowledge.providers.vector_store.chromadb_provider import ChromaDBChunkStore

__all__ = ["ChromaDBChunkStore"]
