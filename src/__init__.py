"""
BACKLOG SYNC - Markdown Backlog Reconciliation
==============================================

Keep a project's task list in a plain backlog.md while a persisted
store tracks each item's lifecycle (assignee, branch, pull request).

Usage:
    from backlog_sync import BacklogManager, parse_backlog_markdown, compute_sync_preview

    manager = BacklogManager()
    backlog = manager.create_backlog("web", "~/code/web")

    report = manager.preview_sync(backlog.id)   # nothing written
    result = manager.sync(backlog.id, [
        ConflictResolution(conflict_index=0, action="requeue"),
    ])

    # Or the pure pieces directly
    parsed = parse_backlog_markdown(text)
    preview = compute_sync_preview(parsed.items, existing_items)
"""

from .schema import (
    ItemStatus,
    StatusClass,
    ParsedItem,
    ParseResult,
    BacklogItem,
    Backlog,
    SyncAdd,
    SyncUpdate,
    SyncRemove,
    SyncConflict,
    SyncPreview,
    ConflictReason,
    ConflictResolution,
    ResolutionAction,
    ResolvedActions,
    SyncPreviewReport,
    SyncResult
)

from .parser import parse_backlog_markdown, fingerprint
from .similarity import SIMILARITY_THRESHOLD, calculate_similarity, find_best_match
from .sync import (
    ClaimPool,
    compute_sync_preview,
    apply_conflict_resolutions,
    calculate_positions
)
from .manager import (
    BacklogManager,
    BacklogSyncError,
    BacklogNotFoundError,
    BacklogFileNotFoundError,
    BacklogLockedError
)

__version__ = "1.0.0"
__all__ = [
    "BacklogManager",
    "BacklogSyncError",
    "BacklogNotFoundError",
    "BacklogFileNotFoundError",
    "BacklogLockedError",
    "ItemStatus",
    "StatusClass",
    "ParsedItem",
    "ParseResult",
    "BacklogItem",
    "Backlog",
    "SyncAdd",
    "SyncUpdate",
    "SyncRemove",
    "SyncConflict",
    "SyncPreview",
    "ConflictReason",
    "ConflictResolution",
    "ResolutionAction",
    "ResolvedActions",
    "SyncPreviewReport",
    "SyncResult",
    "parse_backlog_markdown",
    "fingerprint",
    "SIMILARITY_THRESHOLD",
    "calculate_similarity",
    "find_best_match",
    "ClaimPool",
    "compute_sync_preview",
    "apply_conflict_resolutions",
    "calculate_positions"
]
