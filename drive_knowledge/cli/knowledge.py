"""Operator CLI for managing knowledge sources.

Usage::

    python -m drive_knowledge.cli add --user ana@example.com \\
        --name handbook --description "Team handbook" --path /Docs/Handbook

    python -m drive_knowledge.cli search --user ana@example.com \\
        --source <knowledge-source-id> --query "parental leave" --limit 5

    python -m drive_knowledge.cli list --user ana@example.com

Drive access needs a Microsoft token for the user; ``auth-url`` prints the
consent link and ``auth-code`` stores the token from the returned code.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from drive_knowledge.config.loader import apply_config, load_config
from drive_knowledge.config.settings import Settings
from drive_knowledge.main import ServiceContainer, build_container
from drive_knowledge.models.outcomes import (
    AuthorizationRequired,
    IngestionOutcome,
    IngestionProgress,
)
from drive_knowledge.models.user import AccessLevel
from drive_knowledge.utils.errors import KnowledgeServiceError
from drive_knowledge.utils.logging import configure_logging


async def _print_progress(event: IngestionProgress) -> None:
    print(f"  [{event.phase.value}] {event.current}/{event.total} {event.message}")


def _print_outcome(outcome: IngestionOutcome | AuthorizationRequired) -> int:
    if isinstance(outcome, AuthorizationRequired):
        print("Microsoft authorization required. Open this link, then re-run:")
        print(f"  {outcome.auth_url}")
        return 2

    print("\nIngestion complete:")
    print(f"  Source ID:  {outcome.knowledge_source_id}")
    print(f"  Status:     {outcome.status.value}")
    print(f"  Processed:  {outcome.processed}")
    print(f"  Succeeded:  {outcome.success}")
    print(f"  Chunks:     {outcome.chunk_count}")
    if outcome.failed:
        print("  Failed files:")
        for failure in outcome.failed:
            print(f"    {failure.file}: {failure.error}")
    return 0 if not outcome.failed else 1


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_add(args: argparse.Namespace, container: ServiceContainer) -> int:
    print(f"Adding knowledge source '{args.name}' from {args.path}")
    outcome = await container.ingestion.add_knowledge_source(
        args.user, args.name, args.description, args.path, progress=_print_progress
    )
    return _print_outcome(outcome)


async def _handle_refresh(args: argparse.Namespace, container: ServiceContainer) -> int:
    print(f"Refreshing knowledge source {args.source}")
    outcome = await container.ingestion.refresh_knowledge_source(
        args.user, args.source, progress=_print_progress
    )
    return _print_outcome(outcome)


async def _handle_update(args: argparse.Namespace, container: ServiceContainer) -> int:
    print(f"Updating knowledge source {args.source}")
    outcome = await container.ingestion.update_knowledge_source(
        args.user,
        args.source,
        name=args.name,
        description=args.description,
        path=args.path,
        progress=_print_progress,
    )
    return _print_outcome(outcome)


async def _handle_delete(args: argparse.Namespace, container: ServiceContainer) -> int:
    if not args.yes:
        confirm = input(f"  Delete knowledge source '{args.name}' and its chunks? [y/N] ")
        if confirm.strip().lower() not in ("y", "yes"):
            print("  Aborted.")
            return 0

    outcome = await container.ingestion.delete_knowledge_source(args.user, args.name)
    if not outcome.found:
        print(f"No knowledge source named '{args.name}' found for this user.")
        return 1
    print(f"Deleted '{outcome.name}' ({outcome.chunks_deleted} chunks).")
    return 0


async def _handle_list(args: argparse.Namespace, container: ServiceContainer) -> int:
    sources = await container.ingestion.list_knowledge_sources(
        args.user,
        name_contains=args.name_contains,
        limit=args.limit or container.settings.list_default_limit,
    )
    if not sources:
        print("No knowledge sources.")
        return 0

    print(f"{'ID':<34} {'STATUS':<11} {'OWNER':<28} NAME")
    for source in sources:
        print(f"{source.id:<34} {source.status.value:<11} {source.created_by:<28} {source.name}")
        if source.error:
            print(f"{'':<34} error: {source.error}")
    return 0


async def _handle_search(args: argparse.Namespace, container: ServiceContainer) -> int:
    page = await container.retrieval.search(
        args.user,
        args.query,
        args.source,
        limit=args.limit,
        skip=args.skip,
        min_score=args.min_score,
    )
    print(f"Found {page.total} relevant chunks.")
    for rank, chunk in enumerate(page.results, start=page.skip + 1):
        preview = " ".join(chunk.text.split())[:200]
        print(f"\n{rank}. {chunk.file_path or chunk.file_name} #{chunk.chunk_index} "
              f"(score {chunk.similarity:.3f})")
        print(f"   {preview}")
    if page.next_skip is not None:
        print(f"\nMore results: re-run with --skip {page.next_skip}")
    return 0


async def _handle_share(args: argparse.Namespace, container: ServiceContainer) -> int:
    grant = await container.access.share(
        args.user, args.target, args.source, AccessLevel(args.access_level)
    )
    print(f"Shared {grant.knowledge_source_id} with {args.target} ({grant.access_level.value}).")
    return 0


async def _handle_unshare(args: argparse.Namespace, container: ServiceContainer) -> int:
    removed = await container.access.unshare(args.user, args.target, args.source)
    print("Grant removed." if removed else "No grant to remove.")
    return 0


async def _handle_auth_url(args: argparse.Namespace, container: ServiceContainer) -> int:
    print(container.auth.get_authorization_url(args.user))
    return 0


async def _handle_auth_code(args: argparse.Namespace, container: ServiceContainer) -> int:
    await container.auth.exchange_code(args.user, args.code)
    print(f"Microsoft account authorized for {args.user}.")
    return 0


_HANDLERS = {
    "add": _handle_add,
    "refresh": _handle_refresh,
    "update": _handle_update,
    "delete": _handle_delete,
    "list": _handle_list,
    "search": _handle_search,
    "share": _handle_share,
    "unshare": _handle_unshare,
    "auth-url": _handle_auth_url,
    "auth-code": _handle_auth_code,
}


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the knowledge CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m drive_knowledge.cli",
        description="Manage OneDrive knowledge sources.",
    )
    parser.add_argument(
        "--config", default="config/config.yaml", help="YAML config file (default: config/config.yaml)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Knowledge commands")

    def command(name: str, help_text: str) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--user", required=True, help="Email of the acting user")
        return sub

    # -- add --
    add_parser = command("add", "Create a knowledge source from a OneDrive folder")
    add_parser.add_argument("--name", required=True, help="Unique name for the source")
    add_parser.add_argument("--description", required=True, help="What the source contains")
    add_parser.add_argument("--path", required=True, help="OneDrive folder path, e.g. /Docs")

    # -- refresh --
    refresh_parser = command("refresh", "Re-ingest a knowledge source")
    refresh_parser.add_argument("--source", required=True, help="Knowledge source id")

    # -- update --
    update_parser = command("update", "Rename, re-describe or re-point a source, then re-ingest")
    update_parser.add_argument("--source", required=True, help="Knowledge source id")
    update_parser.add_argument("--name", help="New name")
    update_parser.add_argument("--description", help="New description")
    update_parser.add_argument("--path", help="New OneDrive folder path")

    # -- delete --
    delete_parser = command("delete", "Delete a knowledge source by name")
    delete_parser.add_argument("--name", required=True, help="Name of the source")
    delete_parser.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")

    # -- list --
    list_parser = command("list", "List owned and shared knowledge sources")
    list_parser.add_argument("--name-contains", dest="name_contains", help="Filter by name")
    list_parser.add_argument("--limit", type=int, help="Maximum rows (default: list_default_limit)")

    # -- search --
    search_parser = command("search", "Similarity search within one knowledge source")
    search_parser.add_argument("--source", required=True, help="Knowledge source id")
    search_parser.add_argument("--query", required=True, help="Search query")
    search_parser.add_argument(
        "--limit", type=int, help="Results per page (default: search_default_limit)"
    )
    search_parser.add_argument("--skip", type=int, default=0, help="Results to skip (default: 0)")
    search_parser.add_argument(
        "--min-score", dest="min_score", type=float, help="Minimum similarity (0..1)"
    )

    # -- share / unshare --
    share_parser = command("share", "Share a knowledge source with another user")
    share_parser.add_argument("--source", required=True, help="Knowledge source id")
    share_parser.add_argument("--target", required=True, help="Email of the grantee")
    share_parser.add_argument(
        "--access-level",
        dest="access_level",
        choices=[level.value for level in AccessLevel],
        default=AccessLevel.READ.value,
        help="Access level (default: read)",
    )
    unshare_parser = command("unshare", "Revoke a share grant")
    unshare_parser.add_argument("--source", required=True, help="Knowledge source id")
    unshare_parser.add_argument("--target", required=True, help="Email of the grantee")

    # -- auth --
    command("auth-url", "Print the Microsoft consent link for a user")
    code_parser = command("auth-code", "Store the token for an authorization code")
    code_parser.add_argument("--code", required=True, help="Code from the consent redirect")

    return parser


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    async with build_container(app_settings) as container:
        try:
            return await _HANDLERS[args.command](args, container)
        except KnowledgeServiceError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse, load configuration, dispatch, exit with the handler's code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        app_settings = apply_config(Settings(), load_config(args.config))
    except KnowledgeServiceError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(log_level=app_settings.log_level, app_env=app_settings.app_env)
    sys.exit(asyncio.run(_run(args, app_settings)))


if __name__ == "__main__":
    main()
