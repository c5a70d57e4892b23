"""Embedding provider implementations.

Embeddings convert text chunks into vectors stored in the chunk store and
compared at query time.  ``OpenAIEmbeddingProvider`` talks to OpenAI or any
OpenAI-compatible endpoint (``text-embedding-ada-002``, 1536 dims, by default).
"""

from drive_knowledge.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]
