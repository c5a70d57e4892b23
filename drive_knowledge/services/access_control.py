"""Per-user access control for knowledge sources.

Ownership grants everything.  A share grant gives read access (search and
use-as-tool); write operations (refresh, update, delete, share) stay with
the owner regardless of the granted level.
"""

from __future__ import annotations

import structlog

from drive_knowledge.interfaces.knowledge_source_store import IKnowledgeSourceStore
from drive_knowledge.interfaces.user_store import IUserStore
from drive_knowledge.models.knowledge import KnowledgeSource
from drive_knowledge.models.user import AccessLevel, SharedGrant
from drive_knowledge.utils.errors import AccessDeniedError, NotFoundError, ValidationError

logger = structlog.get_logger(logger_name=__name__)


class AccessControlService:
    """Answers "may this user do X with this source?" and manages share grants."""

    def __init__(self, users: IUserStore, knowledge_sources: IKnowledgeSourceStore) -> None:
        self._users = users
        self._knowledge_sources = knowledge_sources

    async def has_access(
        self,
        user_id: str,
        knowledge_source_id: str,
        level: AccessLevel = AccessLevel.READ,
    ) -> bool:
        source = await self._knowledge_sources.get(knowledge_source_id)
        if source is None:
            return False
        return await self._check(user_id, source, level)

    async def require_access(
        self,
        user_id: str,
        knowledge_source_id: str,
        level: AccessLevel = AccessLevel.READ,
    ) -> KnowledgeSource:
        """Return the source if *user_id* holds *level* on it.

        Raises
        ------
        NotFoundError
            If the source does not exist.
        AccessDeniedError
            If the user is neither the owner nor (for READ) a grantee.
        """
        source = await self._knowledge_sources.get(knowledge_source_id)
        if source is None:
            raise NotFoundError(f"Knowledge source {knowledge_source_id} not found")
        if not await self._check(user_id, source, level):
            logger.info(
                "access_denied",
                user=user_id,
                knowledge_source_id=knowledge_source_id,
                level=level.value,
            )
            raise AccessDeniedError(
                f"User {user_id} does not have {level.value} access to knowledge source "
                f"'{source.name}'"
            )
        return source

    async def share(
        self,
        owner_id: str,
        target_email: str,
        knowledge_source_id: str,
        access_level: AccessLevel = AccessLevel.READ,
    ) -> SharedGrant:
        """Grant *target_email* access to a source owned by *owner_id*.

        Sharing again with the same target replaces the access level.
        """
        target_email = (target_email or "").strip()
        if not target_email:
            raise ValidationError("Target email is required")
        if target_email.lower() == owner_id.lower():
            raise ValidationError("Cannot share a knowledge source with yourself")

        source = await self.require_access(owner_id, knowledge_source_id, AccessLevel.WRITE)
        await self._users.get_or_create(target_email)
        grant = await self._users.add_shared_grant(
            target_email,
            SharedGrant(
                knowledge_source_id=source.id,
                shared_by=owner_id,
                access_level=access_level,
            ),
        )
        logger.info(
            "knowledge_source_shared",
            knowledge_source_id=source.id,
            owner=owner_id,
            target=target_email,
            access_level=access_level.value,
        )
        return grant

    async def unshare(self, owner_id: str, target_email: str, knowledge_source_id: str) -> bool:
        """Revoke a grant made by *owner_id*.  Returns ``False`` if none existed."""
        await self.require_access(owner_id, knowledge_source_id, AccessLevel.WRITE)
        removed = await self._users.remove_shared_grant(target_email, knowledge_source_id, owner_id)
        logger.info(
            "knowledge_source_unshared",
            knowledge_source_id=knowledge_source_id,
            owner=owner_id,
            target=target_email,
            removed=removed,
        )
        return removed

    async def accessible_source_ids(self, user_id: str) -> list[str]:
        """Owned ids followed by shared ids, without duplicates."""
        user = await self._users.get(user_id)
        if user is None:
            return []
        ids = list(user.owned) + [g.knowledge_source_id for g in user.shared]
        return list(dict.fromkeys(ids))

    async def _check(self, user_id: str, source: KnowledgeSource, level: AccessLevel) -> bool:
        if source.created_by == user_id:
            return True
        if level == AccessLevel.WRITE:
            return False
        return await self._users.get_access_level(user_id, source.id) is not None
