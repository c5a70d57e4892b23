"""Unit tests for the knowledge CLI (drive_knowledge.cli.knowledge)."""

from __future__ import annotations

from argparse import Namespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from drive_knowledge.cli import knowledge as cli
from drive_knowledge.models.knowledge import (
    KnowledgeSource,
    KnowledgeSourceStatus,
    RetrievedChunk,
    SearchPage,
)
from drive_knowledge.models.outcomes import (
    AuthorizationRequired,
    DeleteOutcome,
    FailedFile,
    IngestionOutcome,
)
from drive_knowledge.models.user import AccessLevel, SharedGrant


def _container() -> MagicMock:
    container = MagicMock()
    container.ingestion.add_knowledge_source = AsyncMock()
    container.ingestion.delete_knowledge_source = AsyncMock()
    container.ingestion.list_knowledge_sources = AsyncMock(return_value=[])
    container.retrieval.search = AsyncMock()
    container.access.share = AsyncMock()
    return container


def _outcome(**overrides) -> IngestionOutcome:
    values = {
        "knowledge_source_id": "ks-1",
        "name": "handbook",
        "status": KnowledgeSourceStatus.READY,
        "processed": 2,
        "success": 2,
        "chunk_count": 5,
    }
    values.update(overrides)
    return IngestionOutcome(**values)


# ======================================================================
# Parser
# ======================================================================


class TestParser:
    def test_add_arguments(self) -> None:
        args = cli._build_parser().parse_args(
            ["add", "--user", "ana@example.com", "--name", "h", "--description", "d", "--path", "/Docs"]
        )
        assert args.command == "add"
        assert args.path == "/Docs"
        assert args.config == "config/config.yaml"

    def test_search_defaults(self) -> None:
        args = cli._build_parser().parse_args(
            ["search", "--user", "u@example.com", "--source", "ks-1", "--query", "leave"]
        )
        assert args.limit is None
        assert args.skip == 0
        assert args.min_score is None

    def test_share_rejects_unknown_level(self) -> None:
        with pytest.raises(SystemExit):
            cli._build_parser().parse_args(
                ["share", "--user", "u", "--source", "ks", "--target", "t", "--access-level", "admin"]
            )

    def test_every_command_has_a_handler(self) -> None:
        parser = cli._build_parser()
        subparsers = next(a for a in parser._actions if a.dest == "command")
        assert set(subparsers.choices) == set(cli._HANDLERS)

    def test_no_command_prints_help_and_exits(self, capsys) -> None:
        with pytest.raises(SystemExit) as excinfo:
            cli.main([])
        assert excinfo.value.code == 1
        assert "Manage OneDrive knowledge sources" in capsys.readouterr().out


# ======================================================================
# Handlers
# ======================================================================


class TestHandlers:
    def test_print_outcome_with_failures(self, capsys) -> None:
        code = cli._print_outcome(
            _outcome(status=KnowledgeSourceStatus.ERROR, failed=[FailedFile(file="a.pdf", error="bad")])
        )
        out = capsys.readouterr().out
        assert code == 1
        assert "a.pdf: bad" in out
        assert "Status:     error" in out

    def test_print_outcome_authorization(self, capsys) -> None:
        code = cli._print_outcome(AuthorizationRequired(auth_url="https://login.test/consent"))
        assert code == 2
        assert "https://login.test/consent" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_add(self, capsys) -> None:
        container = _container()
        container.ingestion.add_knowledge_source.return_value = _outcome()
        args = Namespace(user="ana@example.com", name="handbook", description="d", path="/Docs")

        assert await cli._handle_add(args, container) == 0
        assert "Chunks:     5" in capsys.readouterr().out
        assert container.ingestion.add_knowledge_source.await_args.kwargs["progress"] is cli._print_progress

    @pytest.mark.asyncio
    async def test_delete_with_yes(self, capsys) -> None:
        container = _container()
        container.ingestion.delete_knowledge_source.return_value = DeleteOutcome(
            found=True, name="handbook", knowledge_source_id="ks-1", chunks_deleted=4
        )

        code = await cli._handle_delete(Namespace(user="u", name="handbook", yes=True), container)

        assert code == 0
        assert "Deleted 'handbook' (4 chunks)." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_delete_aborted_at_prompt(self, monkeypatch) -> None:
        container = _container()
        monkeypatch.setattr("builtins.input", lambda prompt: "n")

        assert await cli._handle_delete(Namespace(user="u", name="handbook", yes=False), container) == 0
        container.ingestion.delete_knowledge_source.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_unknown(self) -> None:
        container = _container()
        container.ingestion.delete_knowledge_source.return_value = DeleteOutcome(found=False, name="x")
        assert await cli._handle_delete(Namespace(user="u", name="x", yes=True), container) == 1

    @pytest.mark.asyncio
    async def test_list(self, capsys) -> None:
        container = _container()
        container.ingestion.list_knowledge_sources.return_value = [
            KnowledgeSource(
                id="ks-1",
                name="handbook",
                source_url="/Docs",
                created_by="ana@example.com",
                status=KnowledgeSourceStatus.ERROR,
                error="1 file(s) failed",
            )
        ]

        await cli._handle_list(Namespace(user="ana@example.com", name_contains=None, limit=10), container)

        out = capsys.readouterr().out
        assert "handbook" in out
        assert "error: 1 file(s) failed" in out

    @pytest.mark.asyncio
    async def test_list_limit_defaults_to_settings(self) -> None:
        container = _container()
        container.settings.list_default_limit = 25

        await cli._handle_list(Namespace(user="u", name_contains=None, limit=None), container)

        assert container.ingestion.list_knowledge_sources.await_args.kwargs["limit"] == 25

    @pytest.mark.asyncio
    async def test_search_prints_next_page_hint(self, capsys) -> None:
        container = _container()
        container.retrieval.search.return_value = SearchPage(
            results=[
                RetrievedChunk(
                    chunk_id="ks-1:f:0", knowledge_source_id="ks-1", file_id="f", file_name="a.txt",
                    file_path="/Docs/a.txt", chunk_index=0, text="annual   leave\npolicy", similarity=0.91,
                )
            ],
            total=3,
            limit=1,
            next_skip=1,
        )
        args = Namespace(user="u", source="ks-1", query="leave", limit=1, skip=0, min_score=None)

        await cli._handle_search(args, container)

        out = capsys.readouterr().out
        assert "1. /Docs/a.txt #0 (score 0.910)" in out
        assert "annual leave policy" in out
        assert "--skip 1" in out

    @pytest.mark.asyncio
    async def test_share(self, capsys) -> None:
        container = _container()
        container.access.share.return_value = SharedGrant(
            knowledge_source_id="ks-1", shared_by="u", access_level=AccessLevel.WRITE
        )
        args = Namespace(user="u", source="ks-1", target="t@example.com", access_level="write")

        await cli._handle_share(args, container)

        assert container.access.share.await_args.args[3] == AccessLevel.WRITE
        assert "(write)" in capsys.readouterr().out
