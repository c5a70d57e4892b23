"""Remote drive adapters: Microsoft Graph (OneDrive) and its OAuth helper."""

from drive_knowledge.providers.file_origin.microsoft_auth import MicrosoftAuth
from drive_knowledge.providers.file_origin.onedrive_provider import OneDriveProvider

__all__ = ["MicrosoftAuth", "OneDriveProvider"]
