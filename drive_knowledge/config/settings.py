"""Application settings loaded from environment variables via pydantic-settings.

Two sources, in priority order:

  1. Environment variables, e.g. ``OPENAI_API_KEY=sk-abc123``
  2. A ``.env`` file in the working directory

Field ``openai_api_key`` maps to env var ``OPENAI_API_KEY``; defaults apply
when neither source sets a value.  Empty strings mean "not configured".
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """drive-knowledge application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Embeddings ===
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoints (Azure proxy, TogetherAI, ...)
    openai_embedding_model: str = "text-embedding-ada-002"

    # === Microsoft identity / Graph ===
    microsoft_client_id: str = ""
    microsoft_client_secret: str = ""
    microsoft_tenant_id: str = "common"
    microsoft_redirect_uri: str = "http://localhost:3000/auth/microsoft/callback"
    microsoft_scopes: str = "offline_access Files.ReadWrite.All User.Read"
    microsoft_authority: str = "https://login.microsoftonline.com"
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    graph_timeout_seconds: float = 60.0

    # === Storage ===
    sqlite_db_path: str = "data/knowledge.db"
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "drive_knowledge_chunks"

    # === Ingestion ===
    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    embedding_batch_size: int = Field(default=100, gt=0)
    file_concurrency: int = Field(default=1, ge=1)
    batch_concurrency: int = Field(default=1, ge=1)

    # === Retrieval / tools ===
    search_default_limit: int = Field(default=5, ge=1)
    list_default_limit: int = Field(default=10, ge=1)
    retrieve_max_length: int = Field(default=1000, ge=1)

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def is_microsoft_configured(self) -> bool:
        """Return ``True`` when the OAuth client credentials are present."""
        return bool(self.microsoft_client_id and self.microsoft_client_secret)
