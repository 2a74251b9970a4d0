"""Command-line entry point: run one sync command on an outline document."""

import argparse
import asyncio
import json
import logging
import sys

from . import __version__
from .config import resolve_config
from .config_loader import ensure_config
from .core.async_utils import init_semaphore, reset_semaphore
from .core.client import TrelloClient
from .core.errors import TrelloSyncError
from .document import OutlineDocument
from .logger import setup_logging
from .sync.engine import COMMANDS, SyncEngine
from .sync.models import SessionState, SyncReport
from .sync.reporter import (
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trello-sync",
        description="Synchronise an outline document with a Trello board",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create a config file skeleton in .trello_sync/config.yml
  trello-sync init-config

  # Bind a document to an existing board and its lists
  trello-sync install-board-metadata board.org --board-id 5f0c1a...

  # Or create the board and its lists from the document
  trello-sync create-board-and-bootstrap board.org

  # Preview a full two-way sync, then run it
  trello-sync sync-document board.org --dry-run
  trello-sync sync-document board.org

  # Push one card and everything under it
  trello-sync sync-subtree-to-remote board.org --entity 3b1e...

  # Full report after the summary line
  trello-sync sync-document board.org --report

  # Per-operation output and JSON logs
  trello-sync sync-document board.org --trace --debug --debug-format json
        """,
    )
    parser.add_argument(
        "command",
        choices=[*COMMANDS, "init-config"],
        metavar="COMMAND",
        help="One of: " + ", ".join([*COMMANDS, "init-config"]),
    )
    parser.add_argument(
        "document",
        nargs="?",
        metavar="DOCUMENT",
        help="Path to the outline document",
    )
    parser.add_argument(
        "--entity",
        help="sync-local-id of the entity (entity, subtree and delete-entity commands)",
    )
    parser.add_argument(
        "--board-id",
        help="Trello board id to bind (install-board-metadata)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Fetch and plan, but change nothing",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        default=None,
        help="Print one line per finished operation",
    )
    parser.add_argument(
        "--report",
        action="store_true",
        help="Also print the full session report",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON (notifications go to stderr)",
    )
    parser.add_argument(
        "--api-key",
        help="Override Trello API key (takes precedence over TRELLO_API_KEY and config files)",
    )
    parser.add_argument(
        "--token",
        help="Override Trello token (visible in process list -- prefer TRELLO_TOKEN)",
    )
    parser.add_argument(
        "--base-url",
        help="Override Trello REST endpoint",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--debug-format",
        choices=["text", "json"],
        help="Log record format (default: text)",
    )
    parser.add_argument(
        "--log-file",
        help="Also write the log to this file",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"trello-sync version {__version__}",
    )
    return parser


async def run_command(
    client: TrelloClient,
    document_path: str,
    command: str,
    *,
    entity_id: str | None = None,
    board_id: str | None = None,
    dry_run: bool = False,
    trace: bool = False,
    json_output: bool = False,
) -> SyncReport:
    """Load the document and run one command on it.

    Notifications (the summary line, plus one line per operation when
    tracing) go to stdout, or to stderr when stdout carries JSON.
    """
    document = await OutlineDocument.load_async(document_path)
    stream = sys.stderr if json_output else sys.stdout

    def notify(message: str) -> None:
        print(message, file=stream, flush=True)

    engine = SyncEngine(client, document, notify=notify, trace=trace)
    return await engine.run(
        command, entity_id, board_id=board_id, dry_run=dry_run
    )


async def _main_async(args: argparse.Namespace, config, unified) -> int:
    init_semaphore(config.max_parallel_requests)
    try:
        client = TrelloClient(config)
        report = await run_command(
            client,
            args.document,
            args.command,
            entity_id=args.entity,
            board_id=args.board_id,
            dry_run=(
                args.dry_run
                if args.dry_run is not None
                else unified.sync.dry_run
            ),
            trace=(
                args.trace if args.trace is not None else unified.sync.trace
            ),
            json_output=args.json,
        )
    finally:
        reset_semaphore()

    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    elif report.dry_run:
        print(format_dry_run_preview(report))
    elif args.report:
        print(format_sync_report(report))

    if report.state is SessionState.DONE:
        return EXIT_OK
    return EXIT_PARTIAL_FAILURE


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "init-config":
        path = ensure_config()
        print(f"Config file: {path}")
        return EXIT_OK

    if not args.document:
        parser.error(f"{args.command} needs a DOCUMENT")

    overrides = {
        "api_key": args.api_key,
        "token": args.token,
        "base_url": args.base_url,
        "debug": args.debug,
    }
    try:
        config, unified = resolve_config(overrides)
    except ValueError as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return EXIT_USAGE

    setup_logging(
        mode="cli",
        debug=config.debug,
        log_file=args.log_file or unified.logging.file,
        debug_format=args.debug_format or unified.logging.format,
        level=unified.logging.level,
    )
    logger.debug("trello-sync %s: %s %s", __version__, args.command, args.document)

    try:
        return asyncio.run(_main_async(args, config, unified))
    except (ValueError, KeyError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_USAGE
    except TrelloSyncError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_PARTIAL_FAILURE
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
