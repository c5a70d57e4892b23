"""Microsoft identity platform (OAuth 2.0) helper for OneDrive access.

Builds the consent URL, exchanges authorization codes, and keeps each
user's stored access token fresh.  Tokens are refreshed when they expire
within 60 seconds.  The HTTP route that receives the OAuth callback is
the host's concern; it calls :meth:`MicrosoftAuth.exchange_code`.
"""

from __future__ import annotations

from datetime import timedelta
from urllib.parse import urlencode

import httpx
import structlog

from drive_knowledge.config.settings import Settings
from drive_knowledge.interfaces.user_store import IUserStore
from drive_knowledge.models.knowledge import utc_now
from drive_knowledge.models.user import MicrosoftToken
from drive_knowledge.utils.errors import NotAuthorizedError

logger = structlog.get_logger(logger_name=__name__)

_REFRESH_MARGIN_SECONDS = 60


class MicrosoftAuth:
    """OAuth client for the Microsoft identity platform.

    The ``httpx.AsyncClient`` is injected via the constructor for
    testability.
    """

    def __init__(self, settings: Settings, users: IUserStore, http_client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._users = users
        self._http = http_client
        base = f"{settings.microsoft_authority.rstrip('/')}/{settings.microsoft_tenant_id}/oauth2/v2.0"
        self._authorize_url = f"{base}/authorize"
        self._token_url = f"{base}/token"

    def get_authorization_url(self, user_id: str) -> str:
        """Return the consent URL; ``state`` carries the user id back to the callback."""
        params = {
            "client_id": self._settings.microsoft_client_id,
            "response_type": "code",
            "redirect_uri": self._settings.microsoft_redirect_uri,
            "response_mode": "query",
            "scope": self._settings.microsoft_scopes,
            "state": user_id,
        }
        return f"{self._authorize_url}?{urlencode(params)}"

    async def ensure_valid_token(self, user_id: str) -> str:
        """Return a usable access token for *user_id*, refreshing it if needed.

        Raises
        ------
        NotAuthorizedError
            If no token is stored, or the refresh grant is rejected.
        """
        token = await self._users.get_microsoft_token(user_id)
        if token is None:
            raise NotAuthorizedError(
                provider_name="microsoft_auth",
                auth_url=self.get_authorization_url(user_id),
            )

        if not token.expires_within(_REFRESH_MARGIN_SECONDS):
            return token.access_token

        if not token.refresh_token:
            raise NotAuthorizedError(
                message="Microsoft access token expired and no refresh token is stored.",
                provider_name="microsoft_auth",
                auth_url=self.get_authorization_url(user_id),
            )

        refreshed = await self._request_token(
            user_id,
            {
                "grant_type": "refresh_token",
                "refresh_token": token.refresh_token,
            },
        )
        logger.info("microsoft_token_refreshed", user=user_id)
        return refreshed.access_token

    async def exchange_code(self, user_id: str, code: str) -> MicrosoftToken:
        """Exchange an authorization code for tokens and store them."""
        token = await self._request_token(
            user_id,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._settings.microsoft_redirect_uri,
            },
        )
        logger.info("microsoft_code_exchanged", user=user_id)
        return token

    async def _request_token(self, user_id: str, grant: dict[str, str]) -> MicrosoftToken:
        data = {
            "client_id": self._settings.microsoft_client_id,
            "client_secret": self._settings.microsoft_client_secret,
            "scope": self._settings.microsoft_scopes,
            **grant,
        }
        try:
            response = await self._http.post(self._token_url, data=data)
        except httpx.HTTPError as exc:
            raise NotAuthorizedError(
                message=f"Token request failed: {exc}",
                provider_name="microsoft_auth",
                auth_url=self.get_authorization_url(user_id),
            ) from exc

        if response.status_code != 200:
            logger.warning(
                "microsoft_token_request_rejected",
                user=user_id,
                grant_type=grant["grant_type"],
                status=response.status_code,
            )
            raise NotAuthorizedError(
                message=f"Token request rejected ({response.status_code}): {response.text}",
                provider_name="microsoft_auth",
                auth_url=self.get_authorization_url(user_id),
            )

        payload = response.json()
        token = MicrosoftToken(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=utc_now() + timedelta(seconds=int(payload.get("expires_in", 3600))),
        )
        await self._users.save_microsoft_token(user_id, token)
        return token
