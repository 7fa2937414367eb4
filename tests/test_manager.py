"""Tests for the file-backed backlog manager."""

import json

import pytest

from backlog_sync import (
    BacklogFileNotFoundError,
    BacklogLockedError,
    BacklogNotFoundError,
    BacklogSyncError,
    ConflictResolution,
    ItemStatus,
    ResolutionAction,
)
from backlog_sync.parser import fingerprint

DOCUMENT = """# Web backlog

### [ ] Implement user authentication
Use the existing session store.

### [ ] Add dark mode

---
Notes below the rule are ignored.

### [x] Set up CI
"""


def contents(backlog):
    return [item.content for item in backlog.ordered_items()]


class TestPersistence:
    def test_create_and_load(self, manager, backlog, repo):
        loaded = manager.load(backlog.id)

        assert loaded.name == "web"
        assert loaded.backlog_path == repo / "backlog.md"
        assert loaded.items == []
        assert loaded.last_synced_hash is None

    def test_unknown_backlog(self, manager):
        with pytest.raises(BacklogNotFoundError):
            manager.load("nope")

    def test_list_backlogs(self, manager, repo):
        first = manager.create_backlog("one", str(repo))
        second = manager.create_backlog("two", str(repo))

        ids = {bl["id"] for bl in manager.list_backlogs()}

        assert ids == {first.id, second.id}

    def test_list_skips_unreadable_files(self, manager, backlog):
        (manager.backlogs_dir / "broken.json").write_text("{not json", encoding="utf-8")

        assert [bl["id"] for bl in manager.list_backlogs()] == [backlog.id]

    def test_resolve_backlog_id_without_backlogs(self, manager):
        with pytest.raises(BacklogSyncError):
            manager.resolve_backlog_id()

    def test_resolve_backlog_id_defaults_to_latest(self, manager, backlog):
        assert manager.resolve_backlog_id() == backlog.id
        assert manager.resolve_backlog_id("explicit") == "explicit"

    def test_repository_path_expands_home(self, manager, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))

        backlog = manager.create_backlog("home", "~/repo")

        assert manager.load(backlog.id).backlog_path == tmp_path / "repo" / "backlog.md"


class TestItemOperations:
    def test_add_item_appends_position(self, manager, backlog):
        manager.add_item(backlog.id, "First")
        second = manager.add_item(backlog.id, "Second", description="body")

        assert second.position == 2
        assert contents(manager.load(backlog.id)) == ["First", "Second"]

    def test_update_item(self, manager, backlog):
        item = manager.add_item(backlog.id, "Draft", description="old")

        manager.update_item(backlog.id, item.id, content="Final", description="")

        stored = manager.load(backlog.id).items[0]
        assert stored.content == "Final"
        assert stored.description is None

    def test_delete_item(self, manager, backlog):
        item = manager.add_item(backlog.id, "Temp")

        manager.delete_item(backlog.id, item.id)

        assert manager.load(backlog.id).items == []

    def test_set_item_status(self, manager, backlog):
        item = manager.add_item(backlog.id, "Work")

        manager.set_item_status(backlog.id, item.id, ItemStatus.PR_OPEN)

        assert manager.load(backlog.id).items[0].status is ItemStatus.PR_OPEN

    def test_unknown_item(self, manager, backlog):
        with pytest.raises(ValueError):
            manager.delete_item(backlog.id, "missing")


class TestPreview:
    def test_missing_markdown(self, manager, backlog):
        with pytest.raises(BacklogFileNotFoundError) as exc_info:
            manager.preview_sync(backlog.id)

        assert isinstance(exc_info.value, FileNotFoundError)
        assert "backlog.md" in str(exc_info.value)

    def test_preview_writes_nothing(self, manager, backlog, write_backlog):
        write_backlog(DOCUMENT)
        before = manager._get_backlog_file(backlog.id).read_text(encoding="utf-8")

        report = manager.preview_sync(backlog.id)

        assert [a.content for a in report.preview.adds] == [
            "Implement user authentication",
            "Add dark mode",
        ]
        assert report.current_hash == fingerprint(DOCUMENT)
        assert report.last_synced_hash is None
        assert report.has_changes is True
        assert manager._get_backlog_file(backlog.id).read_text(encoding="utf-8") == before

    def test_report_wire_shape(self, manager, backlog, write_backlog):
        write_backlog("### [ ] Fix bug\n### [ ] Brand new\n")
        done = manager.add_item(backlog.id, "Fix bug")
        manager.set_item_status(backlog.id, done.id, ItemStatus.DONE)

        payload = manager.preview_sync(backlog.id).model_dump(mode="json", by_alias=True)

        assert set(payload) == {"preview", "currentHash", "lastSyncedHash", "hasChanges"}
        assert payload["preview"]["adds"] == [{"content": "Brand new", "lineNumber": 2, "position": 2}]
        assert payload["preview"]["conflicts"] == [{
            "existingItemId": done.id,
            "existingContent": "Fix bug",
            "existingStatus": "DONE",
            "markdownContent": "Fix bug",
            "similarity": 1.0,
            "reason": "completed_match",
        }]
        assert payload["preview"]["unchangedCount"] == 0

    def test_invalid_utf8_is_replaced(self, manager, backlog, repo):
        (repo / "backlog.md").write_bytes(b"### [ ] Fix \xff bug\n")

        report = manager.preview_sync(backlog.id)

        assert [a.content for a in report.preview.adds] == ["Fix \ufffd bug"]


class TestSync:
    def test_initial_sync(self, manager, backlog, write_backlog):
        write_backlog(DOCUMENT)

        result = manager.sync(backlog.id)

        stored = manager.load(backlog.id)
        assert (result.added, result.updated, result.removed) == (2, 0, 0)
        assert contents(stored) == ["Implement user authentication", "Add dark mode"]
        assert stored.items[0].description == "Use the existing session store."
        assert stored.items[1].description is None
        assert all(item.status is ItemStatus.QUEUED for item in stored.items)
        assert stored.last_synced_hash == fingerprint(DOCUMENT)
        assert stored.last_synced_at is not None

    def test_resync_is_idempotent(self, manager, backlog, write_backlog):
        write_backlog(DOCUMENT)
        manager.sync(backlog.id)

        report = manager.preview_sync(backlog.id)

        assert report.has_changes is False
        assert report.preview.adds == []
        assert report.preview.updates == []
        assert report.preview.removes == []
        assert report.preview.conflicts == []
        assert report.preview.unchanged_count == 2

    def test_edit_and_removal(self, manager, backlog, write_backlog):
        write_backlog(DOCUMENT)
        manager.sync(backlog.id)
        write_backlog("### [ ] Implement user authentication system\nUse the existing session store.\n")

        result = manager.sync(backlog.id)

        assert (result.added, result.updated, result.removed) == (0, 1, 1)
        assert contents(manager.load(backlog.id)) == ["Implement user authentication system"]

    def test_active_items_survive(self, manager, backlog, write_backlog):
        write_backlog(DOCUMENT)
        manager.sync(backlog.id)
        stored = manager.load(backlog.id)
        active = stored.items[1]
        manager.set_item_status(backlog.id, active.id, ItemStatus.IN_PROGRESS)
        write_backlog("")

        result = manager.sync(backlog.id)

        remaining = manager.load(backlog.id).items
        assert result.removed == 1
        assert [item.id for item in remaining] == [active.id]
        assert remaining[0].status is ItemStatus.IN_PROGRESS

    def test_requeue_completed_item(self, manager, backlog, write_backlog):
        write_backlog("### [ ] Fix bug\n")
        manager.sync(backlog.id)
        done = manager.load(backlog.id).items[0]
        manager.set_item_status(backlog.id, done.id, ItemStatus.DONE)
        write_backlog("### [ ] Fix bug\nIt came back.\n")

        result = manager.sync(backlog.id, [
            ConflictResolution(conflict_index=0, action=ResolutionAction.REQUEUE)
        ])

        stored = manager.load(backlog.id).ordered_items()
        assert result.added == 1
        assert result.requeued_conflicts == 1
        assert result.skipped_conflicts == 0
        assert [(i.status, i.position) for i in stored] == [
            (ItemStatus.DONE, 1),
            (ItemStatus.QUEUED, 2),
        ]
        assert stored[1].description == "It came back."

    def test_unresolved_conflicts_are_skipped(self, manager, backlog, write_backlog):
        write_backlog("### [ ] Fix bug\n")
        manager.sync(backlog.id)
        done = manager.load(backlog.id).items[0]
        manager.set_item_status(backlog.id, done.id, ItemStatus.FAILED)

        result = manager.sync(backlog.id)

        assert result.added == 0
        assert result.skipped_conflicts == 1
        assert len(manager.load(backlog.id).items) == 1

    def test_failed_commit_leaves_store_untouched(self, manager, backlog, write_backlog, monkeypatch):
        write_backlog(DOCUMENT)
        path = manager._get_backlog_file(backlog.id)
        before = path.read_text(encoding="utf-8")

        def boom(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("backlog_sync.manager.os.replace", boom)

        with pytest.raises(OSError):
            manager.sync(backlog.id)

        assert path.read_text(encoding="utf-8") == before
        assert [p.name for p in manager.backlogs_dir.iterdir()] == [path.name]
        assert json.loads(before)["last_synced_hash"] is None

    def test_missing_markdown_changes_nothing(self, manager, backlog):
        manager.add_item(backlog.id, "Queued")

        with pytest.raises(BacklogFileNotFoundError):
            manager.sync(backlog.id)

        assert contents(manager.load(backlog.id)) == ["Queued"]

    def test_locked_backlog_is_not_written(self, manager, backlog, write_backlog):
        write_backlog(DOCUMENT)
        path = manager._get_backlog_file(backlog.id)
        before = path.read_text(encoding="utf-8")
        lock = manager._get_lock_file(backlog.id)
        lock.write_text("12345", encoding="utf-8")

        with pytest.raises(BacklogLockedError) as exc_info:
            manager.sync(backlog.id)

        assert exc_info.value.lock_path == lock
        assert path.read_text(encoding="utf-8") == before
        assert lock.exists()

    def test_lock_released_after_sync(self, manager, backlog, write_backlog):
        write_backlog(DOCUMENT)

        manager.sync(backlog.id)
        manager.add_item(backlog.id, "After sync")

        assert not manager._get_lock_file(backlog.id).exists()
        assert len(manager.load(backlog.id).items) == 3


class TestNeedsSync:
    def test_changes_detected_by_hash(self, manager, backlog, write_backlog):
        write_backlog(DOCUMENT)
        assert manager.needs_sync(backlog.id) is True

        manager.sync(backlog.id)
        assert manager.needs_sync(backlog.id) is False

        write_backlog(DOCUMENT + "\nA trailing note.\n")
        assert manager.needs_sync(backlog.id) is True

    def test_custom_backlog_file(self, manager, repo, write_backlog):
        custom = manager.create_backlog("docs", str(repo), backlog_file="TODO.md")
        write_backlog("### [ ] Only here\n", name="TODO.md")

        manager.sync(custom.id)

        assert contents(manager.load(custom.id)) == ["Only here"]


class TestStatusReport:
    def test_lists_items(self, manager, backlog, write_backlog):
        write_backlog(DOCUMENT)
        manager.sync(backlog.id)

        report = manager.get_status_report(backlog.id)

        assert "📋 web" in report
        assert "Implement user authentication" in report
        assert "Last synced: never" not in report
