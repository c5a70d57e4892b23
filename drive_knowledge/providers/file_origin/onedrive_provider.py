"""OneDrive file origin over the Microsoft Graph v1.0 REST API.

Implements :class:`IFileOriginProvider`.  Listings follow
``@odata.nextLink`` pagination; downloads follow the pre-authenticated
redirect Graph returns for ``/content``.  A 401 from Graph means the
stored credentials were revoked and surfaces as
:class:`NotAuthorizedError`; any other non-2xx status is a
:class:`FileOriginError`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from drive_knowledge.interfaces.file_origin_provider import IFileOriginProvider
from drive_knowledge.models.knowledge import RemoteFileMetadata, RemoteItem
from drive_knowledge.providers.file_origin.microsoft_auth import MicrosoftAuth
from drive_knowledge.utils.errors import FileOriginError, NotAuthorizedError

logger = structlog.get_logger(logger_name=__name__)

_PROVIDER_NAME = "onedrive"


class OneDriveProvider(IFileOriginProvider):
    """Lists, searches and downloads a user's OneDrive files.

    The ``httpx.AsyncClient`` is injected via the constructor for
    testability; credentials come from :class:`MicrosoftAuth`.
    """

    def __init__(
        self,
        auth: MicrosoftAuth,
        http_client: httpx.AsyncClient,
        graph_base_url: str = "https://graph.microsoft.com/v1.0",
    ) -> None:
        self._auth = auth
        self._http = http_client
        self._base_url = graph_base_url.rstrip("/")

    # ------------------------------------------------------------------
    # IFileOriginProvider implementation
    # ------------------------------------------------------------------

    async def list_children(self, user_id: str, path: str) -> list[RemoteItem]:
        url = f"{self._base_url}{self._children_endpoint(path)}"
        items: list[RemoteItem] = []
        while url:
            payload = (await self._get(user_id, url)).json()
            items.extend(self._to_item(raw) for raw in payload.get("value", []))
            url = payload.get("@odata.nextLink")

        logger.debug("onedrive_children_listed", user=user_id, path=path, count=len(items))
        return items

    async def download_file(self, user_id: str, file_id: str) -> bytes:
        url = f"{self._base_url}/me/drive/items/{quote(file_id, safe='')}/content"
        response = await self._get(user_id, url, follow_redirects=True)
        return response.content

    async def get_metadata(self, user_id: str, file_id: str) -> RemoteFileMetadata:
        url = f"{self._base_url}/me/drive/items/{quote(file_id, safe='')}"
        raw = (await self._get(user_id, url)).json()
        return RemoteFileMetadata(
            id=raw["id"],
            name=raw.get("name", ""),
            size=raw.get("size"),
            mime_type=(raw.get("file") or {}).get("mimeType"),
            web_url=raw.get("webUrl"),
            last_modified=_parse_datetime(raw.get("lastModifiedDateTime")),
        )

    async def search_files(
        self,
        user_id: str,
        query: str | None = None,
        path: str | None = None,
        limit: int = 20,
    ) -> list[RemoteItem]:
        if not query:
            return (await self.list_children(user_id, path or "/"))[:limit]

        escaped = query.replace("'", "''")
        url = (
            f"{self._base_url}/me/drive/root/search(q='{quote(escaped, safe='')}')"
            f"?$top={limit}"
        )
        payload = (await self._get(user_id, url)).json()
        items = [self._to_item(raw) for raw in payload.get("value", [])]
        return items[:limit]

    async def get_authorization_url(self, user_id: str) -> str:
        return self._auth.get_authorization_url(user_id)

    def get_provider_name(self) -> str:
        return _PROVIDER_NAME

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _children_endpoint(path: str) -> str:
        normalized = "/" + path.strip("/") if path and path.strip("/") else "/"
        if normalized == "/":
            return "/me/drive/root/children"
        return f"/me/drive/root:{quote(normalized)}:/children"

    async def _get(self, user_id: str, url: str, follow_redirects: bool = False) -> httpx.Response:
        token = await self._auth.ensure_valid_token(user_id)
        try:
            response = await self._http.get(
                url,
                headers={"Authorization": f"Bearer {token}"},
                follow_redirects=follow_redirects,
            )
        except httpx.HTTPError as exc:
            raise FileOriginError(
                message=f"Graph request failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        if response.status_code == 401:
            raise NotAuthorizedError(
                message="Microsoft Graph rejected the stored credentials.",
                provider_name=_PROVIDER_NAME,
                auth_url=self._auth.get_authorization_url(user_id),
            )
        if not response.is_success:
            logger.warning(
                "onedrive_request_failed",
                user=user_id,
                url=url,
                status=response.status_code,
            )
            raise FileOriginError(
                message=f"Graph request failed ({response.status_code}): {response.text}",
                provider_name=_PROVIDER_NAME,
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _to_item(raw: dict[str, Any]) -> RemoteItem:
        return RemoteItem(
            id=raw["id"],
            name=raw.get("name", ""),
            is_folder="folder" in raw,
            size=raw.get("size"),
            mime_type=(raw.get("file") or {}).get("mimeType"),
            last_modified=_parse_datetime(raw.get("lastModifiedDateTime")),
            web_url=raw.get("webUrl"),
        )


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    # Graph returns "2024-01-02T03:04:05Z"; fromisoformat needs an explicit offset before 3.11.
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
