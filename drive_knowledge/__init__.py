"""drive-knowledge: OneDrive knowledge ingestion and similarity retrieval."""

__version__ = "0.1.0"
