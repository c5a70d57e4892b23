"""Abstract base class for remote-drive file origins.

Defines the contract the file enumerator, the ingestion orchestrator and
the drive-browsing tools use to reach a user's documents.  The concrete
adapter talks to Microsoft Graph (OneDrive); tests use a fake.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from drive_knowledge.models.knowledge import RemoteFileMetadata, RemoteItem


# Concrete implementation: OneDriveProvider (drive_knowledge/providers/file_origin/)
class IFileOriginProvider(ABC):
    """Contract for listing and downloading files on behalf of a user.

    All methods resolve credentials for *user_id* themselves and raise
    :class:`~drive_knowledge.utils.errors.NotAuthorizedError` (carrying an
    authorization URL) when the user has not granted access.
    """

    @abstractmethod
    async def list_children(self, user_id: str, path: str) -> list[RemoteItem]:
        """List the direct children of a drive folder.

        Parameters
        ----------
        user_id:
            Email of the acting user.
        path:
            Folder path from the drive root; ``"/"`` is the root itself.

        Returns
        -------
        list[RemoteItem]
            Files and folders, in the order the drive returns them.

        Raises
        ------
        drive_knowledge.utils.errors.NotAuthorizedError
            If the user has no (or revoked) credentials.
        drive_knowledge.utils.errors.FileOriginError
            If the listing request fails.
        """

    @abstractmethod
    async def download_file(self, user_id: str, file_id: str) -> bytes:
        """Download the raw content of a file."""

    @abstractmethod
    async def get_metadata(self, user_id: str, file_id: str) -> RemoteFileMetadata:
        """Return name, size, web URL and modification time of a file."""

    @abstractmethod
    async def search_files(
        self,
        user_id: str,
        query: str | None = None,
        path: str | None = None,
        limit: int = 20,
    ) -> list[RemoteItem]:
        """Search the drive by text, or list *path* when no query is given.

        At most *limit* items are returned.
        """

    @abstractmethod
    async def get_authorization_url(self, user_id: str) -> str:
        """Return the URL the user must visit to grant drive access."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"onedrive"``."""
