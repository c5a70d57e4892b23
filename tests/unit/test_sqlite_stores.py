"""Unit tests for the Database lifecycle and the SQLite repositories."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import aiosqlite
import pytest

from drive_knowledge.models.knowledge import KnowledgeSource, KnowledgeSourceStatus
from drive_knowledge.models.user import AccessLevel, MicrosoftToken, SharedGrant
from drive_knowledge.providers.storage.database import Database
from drive_knowledge.providers.storage.sqlite_knowledge_source_store import (
    SQLiteKnowledgeSourceStore,
)
from drive_knowledge.providers.storage.sqlite_user_store import SQLiteUserStore
from drive_knowledge.utils.errors import DuplicateNameError, NotFoundError, StoreError

OWNER = "ana@example.com"
GUEST = "ben@example.com"


@pytest.fixture
async def database():
    db = Database(":memory:")
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def source_store(database) -> SQLiteKnowledgeSourceStore:
    return SQLiteKnowledgeSourceStore(database)


@pytest.fixture
def user_store(database) -> SQLiteUserStore:
    return SQLiteUserStore(database)


def _source(ks_id: str, name: str, owner: str = OWNER, minutes: int = 0) -> KnowledgeSource:
    created = datetime(2024, 5, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes)
    return KnowledgeSource(
        id=ks_id,
        name=name,
        description=f"{name} docs",
        source_url=f"/{name}",
        created_by=owner,
        created_at=created,
        updated_at=created,
    )


class TestDatabase:
    @pytest.mark.asyncio
    async def test_connection_before_connect_raises(self) -> None:
        with pytest.raises(StoreError, match="not connected"):
            _ = Database(":memory:").connection

    @pytest.mark.asyncio
    async def test_connect_and_close_are_idempotent(self, tmp_path) -> None:
        db = Database(tmp_path / "nested" / "knowledge.db")
        await db.connect()
        await db.connect()
        assert db.is_connected
        assert (tmp_path / "nested" / "knowledge.db").exists()
        await db.close()
        await db.close()
        assert not db.is_connected

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path) -> None:
        path = tmp_path / "knowledge.db"
        async with Database(path) as db:
            await SQLiteKnowledgeSourceStore(db).create(_source("ks-1", "handbook"))
        async with Database(path) as db:
            assert (await SQLiteKnowledgeSourceStore(db).get("ks-1")).name == "handbook"

    @pytest.mark.asyncio
    async def test_schema_failure_closes_connection(self, monkeypatch) -> None:
        closed: list[aiosqlite.Connection] = []
        real_close = aiosqlite.Connection.close

        async def tracking_close(conn: aiosqlite.Connection) -> None:
            closed.append(conn)
            await real_close(conn)

        monkeypatch.setattr(aiosqlite.Connection, "close", tracking_close)
        monkeypatch.setattr(
            "drive_knowledge.providers.storage.database._SCHEMA_SQL", ["CREATE TABLE broken ("]
        )
        db = Database(":memory:")

        with pytest.raises(StoreError, match="Failed to create schema"):
            await db.connect()

        assert len(closed) == 1
        assert not db.is_connected


class TestSQLiteKnowledgeSourceStore:
    @pytest.mark.asyncio
    async def test_create_and_get_round_trip(self, source_store) -> None:
        created = await source_store.create(_source("ks-1", "handbook"))
        fetched = await source_store.get("ks-1")
        assert fetched == created
        assert fetched.status == KnowledgeSourceStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_get_missing(self, source_store) -> None:
        assert await source_store.get("nope") is None

    @pytest.mark.asyncio
    async def test_name_unique_per_owner(self, source_store) -> None:
        await source_store.create(_source("ks-1", "handbook"))
        with pytest.raises(DuplicateNameError):
            await source_store.create(_source("ks-2", "handbook"))
        await source_store.create(_source("ks-3", "handbook", owner=GUEST))

    @pytest.mark.asyncio
    async def test_find_by_name_and_owner(self, source_store) -> None:
        await source_store.create(_source("ks-1", "handbook"))
        assert (await source_store.find_by_name_and_owner("handbook", OWNER)).id == "ks-1"
        assert await source_store.find_by_name_and_owner("handbook", GUEST) is None

    @pytest.mark.asyncio
    async def test_list_newest_first_with_paging(self, source_store) -> None:
        for i, name in enumerate(["a", "b", "c"]):
            await source_store.create(_source(f"ks-{i}", name, minutes=i))

        assert [s.name for s in await source_store.list(owner=OWNER)] == ["c", "b", "a"]
        assert [s.name for s in await source_store.list(owner=OWNER, skip=1, limit=1)] == ["b"]

    @pytest.mark.asyncio
    async def test_list_owner_or_ids(self, source_store) -> None:
        await source_store.create(_source("ks-1", "mine"))
        await source_store.create(_source("ks-2", "shared", owner=GUEST, minutes=1))
        await source_store.create(_source("ks-3", "hidden", owner=GUEST, minutes=2))

        listed = await source_store.list(owner=OWNER, ids=["ks-2"])

        assert [s.id for s in listed] == ["ks-2", "ks-1"]

    @pytest.mark.asyncio
    async def test_list_empty_ids_without_owner(self, source_store) -> None:
        await source_store.create(_source("ks-1", "mine"))
        assert await source_store.list(ids=[]) == []

    @pytest.mark.asyncio
    async def test_list_name_filter_escapes_wildcards(self, source_store) -> None:
        await source_store.create(_source("ks-1", "100%_done"))
        await source_store.create(_source("ks-2", "100 done"))

        assert [s.id for s in await source_store.list(owner=OWNER, name_contains="%_")] == ["ks-1"]
        assert len(await source_store.list(owner=OWNER, name_contains="DONE")) == 2

    @pytest.mark.asyncio
    async def test_update_fields(self, source_store) -> None:
        await source_store.create(_source("ks-1", "handbook"))

        updated = await source_store.update("ks-1", description="New", source_url="/new")

        assert updated.description == "New"
        assert (await source_store.get("ks-1")).source_url == "/new"
        assert updated.updated_at > updated.created_at

    @pytest.mark.asyncio
    async def test_update_to_taken_name(self, source_store) -> None:
        await source_store.create(_source("ks-1", "a"))
        await source_store.create(_source("ks-2", "b"))
        with pytest.raises(DuplicateNameError):
            await source_store.update("ks-2", name="a")
        assert (await source_store.get("ks-2")).name == "b"

    @pytest.mark.asyncio
    async def test_update_missing_or_unknown_field(self, source_store) -> None:
        with pytest.raises(NotFoundError):
            await source_store.update("nope", name="x")
        await source_store.create(_source("ks-1", "a"))
        with pytest.raises(ValueError):
            await source_store.update("ks-1", created_by=GUEST)

    @pytest.mark.asyncio
    async def test_update_status_clears_error_unless_error(self, source_store) -> None:
        await source_store.create(_source("ks-1", "a"))

        failed = await source_store.update_status("ks-1", KnowledgeSourceStatus.ERROR, "2 file(s) failed")
        assert failed.error == "2 file(s) failed"

        ready = await source_store.update_status("ks-1", KnowledgeSourceStatus.READY, "ignored")
        assert ready.status == KnowledgeSourceStatus.READY
        assert ready.error is None

    @pytest.mark.asyncio
    async def test_delete(self, source_store) -> None:
        await source_store.create(_source("ks-1", "a"))
        assert await source_store.delete("ks-1") is True
        assert await source_store.delete("ks-1") is False
        assert await source_store.get("ks-1") is None


class TestSQLiteUserStore:
    @pytest.mark.asyncio
    async def test_get_or_create(self, user_store) -> None:
        assert await user_store.get(OWNER) is None
        created = await user_store.get_or_create(OWNER, name="Ana")
        again = await user_store.get_or_create(OWNER, name="Other")
        assert created.name == again.name == "Ana"
        assert created.owned == [] and created.shared == []

    @pytest.mark.asyncio
    async def test_ownership(self, user_store) -> None:
        await user_store.add_owned(OWNER, "ks-1")
        await user_store.add_owned(OWNER, "ks-1")
        await user_store.add_owned(OWNER, "ks-2")
        assert (await user_store.get(OWNER)).owned == ["ks-1", "ks-2"]

        await user_store.remove_grants_for_source("ks-1")
        assert (await user_store.get(OWNER)).owned == ["ks-2"]

    @pytest.mark.asyncio
    async def test_grant_upsert_changes_level(self, user_store) -> None:
        await user_store.add_shared_grant(GUEST, SharedGrant(knowledge_source_id="ks-1", shared_by=OWNER))
        await user_store.add_shared_grant(
            GUEST, SharedGrant(knowledge_source_id="ks-1", shared_by=OWNER, access_level=AccessLevel.WRITE)
        )

        user = await user_store.get(GUEST)
        assert len(user.shared) == 1
        assert await user_store.get_access_level(GUEST, "ks-1") == AccessLevel.WRITE

    @pytest.mark.asyncio
    async def test_access_level_none_without_grant(self, user_store) -> None:
        assert await user_store.get_access_level(GUEST, "ks-1") is None

    @pytest.mark.asyncio
    async def test_remove_grant(self, user_store) -> None:
        await user_store.add_shared_grant(GUEST, SharedGrant(knowledge_source_id="ks-1", shared_by=OWNER))
        assert await user_store.remove_shared_grant(GUEST, "ks-1", OWNER) is True
        assert await user_store.remove_shared_grant(GUEST, "ks-1", OWNER) is False

    @pytest.mark.asyncio
    async def test_remove_grants_for_source(self, user_store) -> None:
        await user_store.add_owned(OWNER, "ks-1")
        await user_store.add_shared_grant(GUEST, SharedGrant(knowledge_source_id="ks-1", shared_by=OWNER))
        await user_store.add_shared_grant("cy@example.com", SharedGrant(knowledge_source_id="ks-1", shared_by=OWNER))
        await user_store.add_shared_grant(GUEST, SharedGrant(knowledge_source_id="ks-2", shared_by=OWNER))

        assert await user_store.remove_grants_for_source("ks-1") == 2
        assert [g.knowledge_source_id for g in (await user_store.get(GUEST)).shared] == ["ks-2"]
        assert (await user_store.get(OWNER)).owned == []

    @pytest.mark.asyncio
    async def test_token_upsert_keeps_refresh_token(self, user_store) -> None:
        expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
        await user_store.save_microsoft_token(
            OWNER, MicrosoftToken(access_token="a1", refresh_token="r1", expires_at=expires)
        )
        await user_store.save_microsoft_token(OWNER, MicrosoftToken(access_token="a2", expires_at=expires))

        token = await user_store.get_microsoft_token(OWNER)
        assert token.access_token == "a2"
        assert token.refresh_token == "r1"
        assert token.expires_at == expires
        assert (await user_store.get(OWNER)).microsoft_token == token

    @pytest.mark.asyncio
    async def test_missing_token(self, user_store) -> None:
        assert await user_store.get_microsoft_token(OWNER) is None
