#!/usr/bin/env python3
"""
BACKLOG SYNC - CLI Interface
============================
Command-line tool for syncing a repository's backlog.md into a
persisted backlog.

Usage:
    backlog-sync create my-project --repo ~/code/my-project
    backlog-sync preview
    backlog-sync sync --requeue 0 --skip 1
    backlog-sync status
    backlog-sync list
"""

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from .manager import BacklogManager, BacklogSyncError, DEFAULT_BACKLOGS_DIR, DEFAULT_BACKLOG_FILE
from .schema import ConflictReason, ConflictResolution, ItemStatus, ResolutionAction, SyncPreviewReport


def _default_dir() -> str:
    return os.environ.get("BACKLOG_SYNC_DIR", DEFAULT_BACKLOGS_DIR)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="backlog-sync",
        description="Sync a markdown backlog into a persisted backlog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  backlog-sync create web --repo ~/code/web   Track ~/code/web/backlog.md
  backlog-sync preview                         Show what a sync would change
  backlog-sync check                           Exit 1 if backlog.md changed
  backlog-sync sync --requeue 0                Sync, requeueing conflict #0
  backlog-sync status                          Show backlog items
  backlog-sync set-status a1b2c3d4 DONE        Record a workflow transition
  backlog-sync list                            List all backlogs
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--dir", default=_default_dir(), help="Backlogs directory")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # CREATE command
    create_parser = subparsers.add_parser("create", parents=[common], help="Create a backlog")
    create_parser.add_argument("name", help="Backlog name")
    create_parser.add_argument("--repo", required=True, help="Repository path holding the markdown")
    create_parser.add_argument("--file", default=DEFAULT_BACKLOG_FILE, help="Markdown file name")

    # LIST command
    list_parser = subparsers.add_parser("list", parents=[common], help="List all backlogs")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # STATUS command
    status_parser = subparsers.add_parser("status", parents=[common], help="Show backlog items")
    status_parser.add_argument("backlog_id", nargs="?", help="Specific backlog ID")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # PREVIEW command
    preview_parser = subparsers.add_parser("preview", parents=[common], help="Preview a sync")
    preview_parser.add_argument("backlog_id", nargs="?", help="Specific backlog ID")
    preview_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # CHECK command
    check_parser = subparsers.add_parser("check", parents=[common], help="Has backlog.md changed?")
    check_parser.add_argument("backlog_id", nargs="?", help="Specific backlog ID")

    # SYNC command
    sync_parser = subparsers.add_parser("sync", parents=[common], help="Apply backlog.md")
    sync_parser.add_argument("backlog_id", nargs="?", help="Specific backlog ID")
    sync_parser.add_argument("--requeue", type=int, action="append", default=[],
                             metavar="N", help="Requeue conflict N")
    sync_parser.add_argument("--skip", type=int, action="append", default=[],
                             metavar="N", help="Skip conflict N")
    sync_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # ADD command
    add_parser = subparsers.add_parser("add", parents=[common], help="Add a queued item")
    add_parser.add_argument("backlog_id", help="Backlog ID")
    add_parser.add_argument("content", help="Item title")
    add_parser.add_argument("--description", help="Item description")

    # SET-STATUS command
    set_status_parser = subparsers.add_parser("set-status", parents=[common], help="Set item status")
    set_status_parser.add_argument("item_id", help="Item ID")
    set_status_parser.add_argument("status", type=ItemStatus, choices=list(ItemStatus),
                                   metavar="STATUS", help="New status")
    set_status_parser.add_argument("--backlog", dest="backlog_id", help="Backlog ID")

    return parser


def _resolutions(requeue: List[int], skip: List[int]) -> List[ConflictResolution]:
    return (
        [ConflictResolution(conflict_index=i, action=ResolutionAction.REQUEUE) for i in requeue]
        + [ConflictResolution(conflict_index=i, action=ResolutionAction.SKIP) for i in skip]
    )


def _print_preview(report: SyncPreviewReport) -> None:
    preview = report.preview
    print(f"🔍 Document hash: {report.current_hash[:12]} "
          f"(last synced: {(report.last_synced_hash or 'never')[:12]})")
    if not report.has_changes:
        print("✅ Nothing to sync")
        return

    for add in preview.adds:
        print(f"  + [line {add.line_number}] {add.content}")
    for update in preview.updates:
        print(f"  ~ [{update.existing_item_id}] {update.existing_content} -> "
              f"{update.new_content} ({update.similarity:.0%})")
    for remove in preview.removes:
        print(f"  - [{remove.existing_item_id}] {remove.content}")
    for index, conflict in enumerate(preview.conflicts):
        hint = "requeue with --requeue" if conflict.reason is ConflictReason.COMPLETED_MATCH else "in flight"
        print(f"  ! #{index} [{conflict.existing_item_id}] {conflict.existing_content} "
              f"({conflict.existing_status.value}, {hint})")
    print(f"  = {preview.unchanged_count} unchanged")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s"
    )

    manager = BacklogManager(backlogs_dir=args.dir)

    try:
        return _run(manager, args)
    except (BacklogSyncError, ValueError) as e:
        print(f"❌ {e}")
        return 1


def _run(manager: BacklogManager, args: argparse.Namespace) -> int:
    if args.command == "create":
        backlog = manager.create_backlog(args.name, args.repo, backlog_file=args.file)
        print(f"✅ Created: {backlog.id}")
        print(f"   Name: {backlog.name}")
        print(f"   Markdown: {backlog.backlog_path}")
        print(f"   File: {manager.backlogs_dir}/{backlog.id}.json")

    elif args.command == "list":
        backlogs = manager.list_backlogs()

        if args.json:
            print(json.dumps(backlogs, indent=2))
        elif not backlogs:
            print("No backlogs found")
        else:
            print("📋 Backlogs:")
            print("-" * 60)
            for bl in backlogs:
                print(f"  [{bl['id']}] {bl['name']}")
                print(f"      Items: {bl['items']} | Last synced: {bl['last_synced_at'] or 'never'}")
                print(f"      Updated: {bl['updated_at']}")
            print("-" * 60)

    elif args.command == "status":
        backlog_id = manager.resolve_backlog_id(args.backlog_id)
        if args.json:
            print(json.dumps(manager.load(backlog_id).model_dump(mode="json"), indent=2))
        else:
            print(manager.get_status_report(backlog_id))

    elif args.command == "preview":
        report = manager.preview_sync(manager.resolve_backlog_id(args.backlog_id))
        if args.json:
            print(report.model_dump_json(by_alias=True, indent=2))
        else:
            _print_preview(report)

    elif args.command == "check":
        if manager.needs_sync(manager.resolve_backlog_id(args.backlog_id)):
            print("🔔 backlog.md changed since last sync")
            return 1
        print("✅ In sync")

    elif args.command == "sync":
        result = manager.sync(
            manager.resolve_backlog_id(args.backlog_id),
            _resolutions(args.requeue, args.skip)
        )
        if args.json:
            print(result.model_dump_json(by_alias=True, indent=2))
        else:
            print(f"🔄 Added {result.added}, updated {result.updated}, removed {result.removed}")
            if result.requeued_conflicts or result.skipped_conflicts:
                print(f"   Conflicts: {result.requeued_conflicts} requeued, "
                      f"{result.skipped_conflicts} skipped")

    elif args.command == "add":
        item = manager.add_item(args.backlog_id, args.content, description=args.description)
        print(f"➕ Added: [{item.id}] {item.content} (position {item.position})")

    elif args.command == "set-status":
        item = manager.set_item_status(
            manager.resolve_backlog_id(args.backlog_id), args.item_id, args.status
        )
        print(f"🔀 {item.content}: {item.status.value}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
