"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

  1. config/config.yaml  -- static defaults checked into the repo
  2. .env file           -- local developer overrides (not committed)
  3. Environment vars    -- set at deploy time

Only values explicitly set in the environment (or ``.env``) override the
YAML file; Settings defaults never clobber a YAML value.
"""

from pathlib import Path
from typing import Any

import yaml

from drive_knowledge.config.settings import Settings
from drive_knowledge.utils.errors import ConfigurationError

# Settings field -> (section, key) in the resolved config dict.
_SETTINGS_LAYOUT: dict[str, tuple[str, str]] = {
    "app_env": ("app", "env"),
    "log_level": ("logging", "level"),
    "openai_api_key": ("embedding", "api_key"),
    "openai_base_url": ("embedding", "base_url"),
    "openai_embedding_model": ("embedding", "model"),
    "microsoft_client_id": ("microsoft", "client_id"),
    "microsoft_client_secret": ("microsoft", "client_secret"),
    "microsoft_tenant_id": ("microsoft", "tenant_id"),
    "microsoft_redirect_uri": ("microsoft", "redirect_uri"),
    "graph_base_url": ("microsoft", "graph_base_url"),
    "sqlite_db_path": ("storage", "sqlite_db_path"),
    "chromadb_persist_dir": ("storage", "chromadb_persist_dir"),
    "chromadb_collection": ("storage", "chromadb_collection"),
    "chunk_size": ("ingestion", "chunk_size"),
    "chunk_overlap": ("ingestion", "chunk_overlap"),
    "embedding_batch_size": ("ingestion", "embedding_batch_size"),
    "file_concurrency": ("ingestion", "file_concurrency"),
    "batch_concurrency": ("ingestion", "batch_concurrency"),
    "search_default_limit": ("retrieval", "default_limit"),
    "list_default_limit": ("tools", "list_default_limit"),
    "retrieve_max_length": ("tools", "retrieve_max_length"),
}


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.

    Args:
        path: Path to the YAML configuration file.
        settings: Pre-built settings; a fresh ``Settings()`` is read when omitted.

    Returns:
        Fully resolved configuration dictionary.

    Raises:
        ConfigurationError: If the YAML file is malformed or not a mapping.
    """
    config_path = Path(path)
    if config_path.exists():
        try:
            with open(config_path) as f:
                yaml_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(yaml_config, dict):
            raise ConfigurationError(f"Top-level YAML in {config_path} must be a mapping")
    else:
        yaml_config = {}

    settings = settings or Settings()
    defaults: dict[str, Any] = {}
    env_overrides: dict[str, Any] = {}
    for field, (section, key) in _SETTINGS_LAYOUT.items():
        value = getattr(settings, field)
        target = env_overrides if field in settings.model_fields_set else defaults
        target.setdefault(section, {})[key] = value

    _deep_merge(defaults, yaml_config)
    _deep_merge(defaults, env_overrides)
    return defaults


def apply_config(settings: Settings, config: dict) -> Settings:
    """Return a copy of *settings* with the resolved config sections applied."""
    updates: dict[str, Any] = {}
    for field, (section, key) in _SETTINGS_LAYOUT.items():
        section_values = config.get(section) or {}
        if key in section_values and section_values[key] is not None:
            updates[field] = section_values[key]
    return settings.model_copy(update=updates)


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
