"""Ingestion pipeline: enumerate, download, extract, chunk, embed, store."""

from drive_knowledge.services.ingestion.chunker import TextChunker, chunk_text
from drive_knowledge.services.ingestion.embedding_batcher import EmbeddingBatchClient
from drive_knowledge.services.ingestion.file_enumerator import FileEnumerator
from drive_knowledge.services.ingestion.ingestion_service import IngestionService
from drive_knowledge.services.ingestion.text_extractor import TextExtractor

__all__ = [
    "EmbeddingBatchClient",
    "FileEnumerator",
    "IngestionService",
    "TextChunker",
    "TextExtractor",
    "chunk_text",
]
