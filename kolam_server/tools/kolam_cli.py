"""
Command-line front-end for Kolam.

Works directly on the local database; no server needs to be running.

Commands:
- streams: List streams, or create one with --create
- show: Print a stream's entries with their staging and version state
- add: Append a user entry from text (argument or stdin)
- stage: Stage or unstage an entry
- export: Package staged entries and print the prompt
- cancel: Abandon the newest export and re-stage its entries
- paste: Import a pasted response from stdin or a file
- commit: Snapshot an entry as a new version
- versions: List an entry's versions
- revert: Restore a version's snapshot as working content

Usage:
    kolam streams --create "Thesis notes"
    kolam stage <entry-id>
    kolam export <stream-id> CRITIQUE > prompt.txt
    pbpaste | kolam paste <stream-id>

Invariants:
    - Kolam errors print "Error [CODE]: message" and exit with status 1
    - Prompts go to stdout, status messages to stderr
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from datetime import datetime

from ..bridge import BridgeService, document_to_text, text_to_document
from ..config import ServerConfig
from ..errors import KolamError
from ..store import ContentStore, Database, StagingSet, StreamStore

logger = logging.getLogger(__name__)


def _format_time(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M")


def _preview(content: dict, width: int = 60) -> str:
    text = " ".join(document_to_text(content).split())
    return text if len(text) <= width else text[: width - 3] + "..."


class KolamCLI:
    """Commands over one open database.

    Each method prints its result and returns nothing; errors propagate as
    KolamError for main() to report.

    Example:
        >>> cli = KolamCLI(db, config)
        >>> await cli.stage(entry_id, staged=True)
    """

    def __init__(self, db: Database, config: ServerConfig) -> None:
        self.db = db
        self.streams = StreamStore(db)
        self.content = ContentStore(db)
        self.staging = StagingSet(db)
        self.bridge = BridgeService(db, config=config.bridge)

    async def list_streams(self, create: str | None = None) -> None:
        if create:
            stream = await self.streams.create_stream(create)
            print(f"Created stream {stream.id}", file=sys.stderr)

        for meta in await self.streams.list_streams():
            pin = "*" if meta.pinned else " "
            print(
                f"{pin} {meta.id}  {meta.title}  "
                f"({meta.entry_count} entries, updated {_format_time(meta.last_updated)})"
            )

    async def show(self, stream_id: str) -> None:
        details = await self.streams.get_stream_details(stream_id)
        print(f"# {details.stream.title}")
        for entry in details.entries:
            staged = "S" if entry.is_staged else " "
            print(
                f"{staged} {entry.sequence_id:>3} {entry.id}  [{entry.role}] "
                f"v{entry.version_head}  {_preview(entry.content)}"
            )

        block = await self.bridge.pending(stream_id)
        if block is not None:
            print(f"Pending export {block.bridge_key} ({block.directive}), awaiting paste")

    async def add(self, stream_id: str, text: str) -> None:
        entry = await self.streams.create_entry(stream_id, "user", text_to_document(text))
        print(entry.id)

    async def stage(self, entry_id: str, staged: bool) -> None:
        await self.staging.set_staged(entry_id, staged)
        print(f"{'Staged' if staged else 'Unstaged'} {entry_id}", file=sys.stderr)

    async def export(self, stream_id: str, directive: str, output: str | None = None) -> None:
        export, _ = await self.bridge.export(stream_id, directive)
        if output:
            with open(output, "w") as f:
                f.write(export.prompt)
            print(f"Prompt written to {output}", file=sys.stderr)
        else:
            print(export.prompt)
        print(
            f"Bridge key {export.bridge_key}, {len(export.staged_entry_ids)} entries, "
            f"~{export.token_estimate} tokens",
            file=sys.stderr,
        )

    async def cancel(self, stream_id: str) -> None:
        block = await self.bridge.cancel(stream_id)
        print(
            f"Cancelled export {block.bridge_key}; "
            f"re-staged {len(block.staged_context_ids)} entries",
            file=sys.stderr,
        )

    async def paste(self, stream_id: str, text: str, target_entry_id: str | None = None) -> None:
        entry, version = await self.bridge.import_response(stream_id, text, target_entry_id)
        print(f"Imported into {entry.id} as version {version.version_number}", file=sys.stderr)

    async def commit(self, entry_id: str, message: str | None = None) -> None:
        version = await self.content.commit(entry_id, message)
        print(f"Committed version {version.version_number} of {entry_id}", file=sys.stderr)

    async def versions(self, entry_id: str) -> None:
        for version in await self.content.list_versions(entry_id):
            message = version.commit_message or ""
            print(
                f"v{version.version_number}  {_format_time(version.committed_at)}  "
                f"{message}  {_preview(version.content_snapshot)}"
            )

    async def revert(self, entry_id: str, version_number: int) -> None:
        await self.content.revert(entry_id, version_number)
        print(f"Reverted {entry_id} to version {version_number}", file=sys.stderr)


def _read_text(path: str | None) -> str:
    if path:
        with open(path) as f:
            return f.read()
    return sys.stdin.read()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kolam", description="Kolam writing streams")
    parser.add_argument("--db", help="Database path (default: KOLAM_DB_PATH)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    streams_parser = subparsers.add_parser("streams", help="List streams")
    streams_parser.add_argument("--create", metavar="TITLE", help="Create a stream first")

    show_parser = subparsers.add_parser("show", help="Show a stream's entries")
    show_parser.add_argument("stream_id")

    add_parser = subparsers.add_parser("add", help="Append a user entry")
    add_parser.add_argument("stream_id")
    add_parser.add_argument("text", nargs="?", help="Entry text (default: stdin)")

    stage_parser = subparsers.add_parser("stage", help="Stage an entry for export")
    stage_parser.add_argument("entry_id")
    stage_parser.add_argument("--off", action="store_true", help="Unstage instead")

    export_parser = subparsers.add_parser("export", help="Package staged entries into a prompt")
    export_parser.add_argument("stream_id")
    export_parser.add_argument("directive", help="DUMP, CRITIQUE or GENERATE")
    export_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    cancel_parser = subparsers.add_parser("cancel", help="Abandon the pending export")
    cancel_parser.add_argument("stream_id")

    paste_parser = subparsers.add_parser("paste", help="Import a pasted response")
    paste_parser.add_argument("stream_id")
    paste_parser.add_argument("--file", "-f", help="Read the response from a file")
    paste_parser.add_argument("--target", help="Overwrite this entry instead of appending")

    commit_parser = subparsers.add_parser("commit", help="Commit an entry version")
    commit_parser.add_argument("entry_id")
    commit_parser.add_argument("--message", "-m", help="Commit message")

    versions_parser = subparsers.add_parser("versions", help="List an entry's versions")
    versions_parser.add_argument("entry_id")

    revert_parser = subparsers.add_parser("revert", help="Restore a version's content")
    revert_parser.add_argument("entry_id")
    revert_parser.add_argument("version_number", type=int)

    return parser


async def run(args: argparse.Namespace, config: ServerConfig) -> None:
    """Open the database, dispatch one command, close."""
    db = Database.from_config(config.storage)
    await db.initialize()
    try:
        cli = KolamCLI(db, config)

        if args.command == "streams":
            await cli.list_streams(args.create)
        elif args.command == "show":
            await cli.show(args.stream_id)
        elif args.command == "add":
            text = args.text if args.text is not None else _read_text(None)
            await cli.add(args.stream_id, text)
        elif args.command == "stage":
            await cli.stage(args.entry_id, staged=not args.off)
        elif args.command == "export":
            await cli.export(args.stream_id, args.directive, args.output)
        elif args.command == "cancel":
            await cli.cancel(args.stream_id)
        elif args.command == "paste":
            await cli.paste(args.stream_id, _read_text(args.file), args.target)
        elif args.command == "commit":
            await cli.commit(args.entry_id, args.message)
        elif args.command == "versions":
            await cli.versions(args.entry_id)
        elif args.command == "revert":
            await cli.revert(args.entry_id, args.version_number)
    finally:
        await db.close()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.db:
        config.storage = replace(config.storage, db_path=args.db)

    try:
        asyncio.run(run(args, config))
    except KolamError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
