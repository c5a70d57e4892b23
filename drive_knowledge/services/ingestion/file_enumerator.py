"""Recursive file enumeration under a drive folder."""

from __future__ import annotations

import structlog

from drive_knowledge.interfaces.file_origin_provider import IFileOriginProvider
from drive_knowledge.models.knowledge import RemoteFile
from drive_knowledge.utils.errors import FileOriginError, NotAuthorizedError

logger = structlog.get_logger(logger_name=__name__)


class FileEnumerator:
    """Walks a drive folder depth-first and returns every file beneath it.

    One ``list_children`` call is made per folder.  File paths are built
    as ``parent_path + "/" + name`` with the root ``"/"`` mapped to an
    empty prefix, so a file directly under the root gets ``"/name"``.
    """

    def __init__(self, origin: IFileOriginProvider) -> None:
        self._origin = origin

    async def list_files(self, user_id: str, root_path: str) -> list[RemoteFile]:
        """Return every file under *root_path*, depth-first in listing order.

        Raises
        ------
        NotAuthorizedError
            Propagated unchanged so the caller can return the consent URL.
        FileOriginError
            For any other listing failure.
        """
        files: list[RemoteFile] = []
        try:
            await self._walk(user_id, root_path or "/", files)
        except (NotAuthorizedError, FileOriginError):
            raise
        except Exception as exc:
            raise FileOriginError(
                message=f"Failed to enumerate {root_path}: {exc}",
                provider_name=self._origin.get_provider_name(),
            ) from exc

        logger.info("files_enumerated", user=user_id, root_path=root_path, file_count=len(files))
        return files

    async def _walk(self, user_id: str, path: str, files: list[RemoteFile]) -> None:
        prefix = "" if path.strip("/") == "" else path.rstrip("/")
        for item in await self._origin.list_children(user_id, path):
            item_path = f"{prefix}/{item.name}"
            if item.is_folder:
                await self._walk(user_id, item_path, files)
                continue
            files.append(
                RemoteFile(
                    id=item.id,
                    name=item.name,
                    path=item_path,
                    size=item.size,
                    mime_type=item.mime_type,
                    last_modified=item.last_modified,
                )
            )
