"""
BACKLOG SYNC - Backlog Manager
==============================
Persists backlogs and applies markdown syncs to them.
File-based storage: one JSON document per backlog.

A sync is applied to a copy of the backlog and committed with a single
atomic file replace, so a failure part way through leaves the stored
backlog exactly as it was.
"""

import json
import os
import tempfile
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterator, Sequence
import logging

from .parser import parse_backlog_markdown, fingerprint
from .schema import (
    Backlog, BacklogItem, ItemStatus, ConflictResolution,
    SyncPreviewReport, SyncResult
)
from .sync import compute_sync_preview, apply_conflict_resolutions, count_requeued

logger = logging.getLogger("backlog_sync")

DEFAULT_BACKLOGS_DIR = ".backlog_sync/backlogs"
DEFAULT_BACKLOG_FILE = "backlog.md"


class BacklogSyncError(Exception):
    """Base error for backlog sync operations"""


class BacklogNotFoundError(BacklogSyncError):
    def __init__(self, backlog_id: str):
        super().__init__(f"Backlog not found: {backlog_id}")
        self.backlog_id = backlog_id


class BacklogFileNotFoundError(BacklogSyncError, FileNotFoundError):
    def __init__(self, path: Path):
        super().__init__(f"Backlog file not found at {path}")
        self.path = path


class BacklogLockedError(BacklogSyncError):
    def __init__(self, backlog_id: str, lock_path: Path):
        super().__init__(
            f"Backlog {backlog_id} is being written by another process "
            f"(remove {lock_path} if that process is gone)"
        )
        self.backlog_id = backlog_id
        self.lock_path = lock_path


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BacklogManager:
    """
    Backlog store and sync orchestrator

    Primary storage: {backlogs_dir}/{backlog_id}.json
    Write lock:      {backlogs_dir}/.{backlog_id}.lock, held by one
                     process at a time across read, compute and commit

    Callers get:
    - preview_sync(): what a sync would do, nothing written
    - sync(): preview + conflict resolutions, applied all-or-nothing
    - needs_sync(): hash-only check against the last synced document
    """

    def __init__(self, backlogs_dir: str = DEFAULT_BACKLOGS_DIR):
        self.backlogs_dir = Path(backlogs_dir)
        self.backlogs_dir.mkdir(parents=True, exist_ok=True)
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    # ========================================
    # PERSISTENCE OPERATIONS
    # ========================================

    def _get_backlog_file(self, backlog_id: str) -> Path:
        return self.backlogs_dir / f"{backlog_id}.json"

    def _lock_for(self, backlog_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[backlog_id]

    def _get_lock_file(self, backlog_id: str) -> Path:
        return self.backlogs_dir / f".{backlog_id}.lock"

    @contextmanager
    def _scope_lock(self, backlog_id: str) -> Iterator[None]:
        """Serialize writers of one backlog, in this process and across processes"""
        with self._lock_for(backlog_id):
            lock_path = self._get_lock_file(backlog_id)
            try:
                fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                logger.warning(f"⛔ Backlog {backlog_id} is locked: {lock_path}")
                raise BacklogLockedError(backlog_id, lock_path) from None
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(str(os.getpid()))
                yield
            finally:
                lock_path.unlink(missing_ok=True)

    def save(self, backlog: Backlog) -> None:
        """Write backlog atomically (temp file + rename)"""
        backlog.updated_at = _utcnow()

        file_path = self._get_backlog_file(backlog.id)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.backlogs_dir, prefix=f".{backlog.id}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(backlog.model_dump(mode="json"), f, indent=2)
            os.replace(tmp_name, file_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.info(f"✅ Saved backlog: {backlog.id} ({len(backlog.items)} items)")

    def load(self, backlog_id: str) -> Backlog:
        """Load backlog from file"""
        file_path = self._get_backlog_file(backlog_id)

        if not file_path.exists():
            logger.warning(f"Backlog not found: {backlog_id}")
            raise BacklogNotFoundError(backlog_id)

        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        backlog = Backlog.model_validate(data)
        logger.debug(f"📂 Loaded backlog: {backlog.id} ({len(backlog.items)} items)")
        return backlog

    def list_backlogs(self) -> List[Dict[str, Any]]:
        """List all backlogs, most recently updated first"""
        backlogs = []

        for file_path in self.backlogs_dir.glob("*.json"):
            try:
                with open(file_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                backlogs.append({
                    "id": data["id"],
                    "name": data["name"],
                    "items": len(data.get("items", [])),
                    "updated_at": data["updated_at"],
                    "last_synced_at": data.get("last_synced_at"),
                })
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Error reading {file_path}: {e}")

        return sorted(backlogs, key=lambda x: x["updated_at"], reverse=True)

    def resolve_backlog_id(self, backlog_id: Optional[str] = None) -> str:
        """Given id, or the most recently updated backlog"""
        if backlog_id:
            return backlog_id
        backlogs = self.list_backlogs()
        if not backlogs:
            raise BacklogSyncError("No backlogs found")
        return backlogs[0]["id"]

    # ========================================
    # BACKLOG & ITEM OPERATIONS
    # ========================================

    def create_backlog(
        self,
        name: str,
        repository_path: str,
        backlog_file: str = DEFAULT_BACKLOG_FILE
    ) -> Backlog:
        backlog = Backlog(
            name=name,
            repository_path=str(Path(repository_path).expanduser()),
            backlog_file=backlog_file,
        )
        self.save(backlog)
        logger.info(f"🚀 Created backlog: {backlog.name} ({backlog.backlog_path})")
        return backlog

    def add_item(
        self,
        backlog_id: str,
        content: str,
        description: Optional[str] = None,
        status: ItemStatus = ItemStatus.QUEUED
    ) -> BacklogItem:
        with self._scope_lock(backlog_id):
            backlog = self.load(backlog_id)
            item = BacklogItem(
                content=content,
                description=description or None,
                status=status,
                position=backlog.max_position + 1,
            )
            backlog.items.append(item)
            self.save(backlog)
        logger.info(f"➕ Added item: {item.content} ({item.id})")
        return item

    def update_item(
        self,
        backlog_id: str,
        item_id: str,
        content: Optional[str] = None,
        description: Optional[str] = None
    ) -> BacklogItem:
        with self._scope_lock(backlog_id):
            backlog = self.load(backlog_id)
            item = self._get_item(backlog, item_id)
            if content is not None:
                item.content = content
            if description is not None:
                item.description = description or None
            item.updated_at = _utcnow()
            self.save(backlog)
        return item

    def delete_item(self, backlog_id: str, item_id: str) -> None:
        with self._scope_lock(backlog_id):
            backlog = self.load(backlog_id)
            item = self._get_item(backlog, item_id)
            backlog.items.remove(item)
            self.save(backlog)
        logger.info(f"🗑️ Deleted item: {item.content} ({item_id})")

    def set_item_status(self, backlog_id: str, item_id: str, status: ItemStatus) -> BacklogItem:
        """Status transitions come from the workflow that runs items"""
        with self._scope_lock(backlog_id):
            backlog = self.load(backlog_id)
            item = self._get_item(backlog, item_id)
            item.status = ItemStatus(status)
            item.updated_at = _utcnow()
            self.save(backlog)
        logger.info(f"🔀 {item.content} ({item_id}) -> {item.status.value}")
        return item

    # ========================================
    # SYNC
    # ========================================

    def read_markdown(self, backlog: Backlog) -> str:
        path = backlog.backlog_path
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            logger.warning(f"Backlog file not found: {path}")
            raise BacklogFileNotFoundError(path) from None

    def needs_sync(self, backlog_id: str) -> bool:
        """True when the document changed since the last successful sync"""
        backlog = self.load(backlog_id)
        return fingerprint(self.read_markdown(backlog)) != backlog.last_synced_hash

    def preview_sync(self, backlog_id: str) -> SyncPreviewReport:
        """What sync() would do right now; writes nothing"""
        backlog = self.load(backlog_id)
        parsed = parse_backlog_markdown(self.read_markdown(backlog))
        preview = compute_sync_preview(parsed.items, backlog.ordered_items())

        report = SyncPreviewReport.build(preview, parsed.hash, backlog.last_synced_hash)
        logger.info(
            f"🔍 Preview {backlog.id}: +{len(preview.adds)} ~{len(preview.updates)} "
            f"-{len(preview.removes)} !{len(preview.conflicts)} ={len(preview.unchanged)}"
        )
        return report

    def sync(
        self,
        backlog_id: str,
        resolutions: Sequence[ConflictResolution] = ()
    ) -> SyncResult:
        """
        Apply the markdown document to the backlog.

        The preview is recomputed here from fresh state, so conflict
        indices refer to this computation; callers holding an older
        preview should re-check it first. Conflicts without a requeue
        resolution are skipped.
        """
        resolutions = list(resolutions)

        with self._scope_lock(backlog_id):
            backlog = self.load(backlog_id)
            parsed = parse_backlog_markdown(self.read_markdown(backlog))
            preview = compute_sync_preview(parsed.items, backlog.ordered_items())
            actions = apply_conflict_resolutions(
                preview, resolutions, start_after=backlog.max_position
            )

            requeued = count_requeued(preview, resolutions)
            result = SyncResult(
                requeued_conflicts=requeued,
                skipped_conflicts=len(preview.conflicts) - requeued,
                current_hash=parsed.hash,
            )

            staged = backlog.model_copy(deep=True)
            items_by_id = {item.id: item for item in staged.items}
            now = _utcnow()

            removed_ids = {remove.existing_item.id for remove in actions.removes}
            staged.items = [item for item in staged.items if item.id not in removed_ids]
            result.removed = len(removed_ids)

            for update in actions.updates:
                item = items_by_id[update.existing_item.id]
                item.content = update.new_content
                item.description = update.new_description or None
                item.updated_at = now
                result.updated += 1
                logger.debug(f"~ {item.id}: {item.content}")

            for add in actions.adds:
                staged.items.append(BacklogItem(
                    content=add.content,
                    description=add.description or None,
                    status=ItemStatus.QUEUED,
                    position=add.position,
                ))
                result.added += 1
                logger.debug(f"+ {add.position}: {add.content}")

            staged.last_synced_hash = parsed.hash
            staged.last_synced_at = now
            self.save(staged)

        logger.info(
            f"🔄 Synced {backlog.id}: added {result.added}, updated {result.updated}, "
            f"removed {result.removed}, requeued {result.requeued_conflicts}, "
            f"skipped {result.skipped_conflicts}"
        )
        return result

    # ========================================
    # HELPER METHODS
    # ========================================

    def _get_item(self, backlog: Backlog, item_id: str) -> BacklogItem:
        for item in backlog.items:
            if item.id == item_id:
                return item
        raise ValueError(f"Item not found: {item_id}")

    # ========================================
    # REPORTING
    # ========================================

    def get_status_report(self, backlog_id: str) -> str:
        """Human-readable backlog listing"""
        backlog = self.load(backlog_id)

        status_icons = {
            ItemStatus.QUEUED: "⬜",
            ItemStatus.IN_PROGRESS: "🔵",
            ItemStatus.WAITING: "🟡",
            ItemStatus.PR_OPEN: "🟣",
            ItemStatus.DONE: "✅",
            ItemStatus.FAILED: "❌",
        }

        synced = backlog.last_synced_at.isoformat() if backlog.last_synced_at else "never"
        lines = [
            f"📋 {backlog.name} ({backlog.backlog_path})",
            f"Last synced: {synced}",
            f"Status: {backlog.status_summary}",
            "",
            "Items:"
        ]

        for item in backlog.ordered_items():
            icon = status_icons.get(item.status, "❓")
            branch = f" [{item.branch}]" if item.branch else ""
            lines.append(f"  {icon} {item.position:>3}. [{item.id}] {item.content}{branch}")

        return "\n".join(lines)
