"""Configuration management for drive-knowledge.

Settings are loaded from environment variables and an optional ``.env``
file via pydantic-settings; :func:`load_config` layers an optional YAML
file underneath them.
"""

from drive_knowledge.config.loader import apply_config, load_config
from drive_knowledge.config.settings import Settings

__all__ = ["Settings", "apply_config", "load_config"]
