"""Shared fixtures for file-backed backlog tests."""

import pytest

from backlog_sync import BacklogManager


@pytest.fixture
def repo(tmp_path):
    """Repository directory that holds backlog.md."""
    path = tmp_path / "repo"
    path.mkdir()
    return path


@pytest.fixture
def manager(tmp_path):
    return BacklogManager(backlogs_dir=str(tmp_path / "backlogs"))


@pytest.fixture
def write_backlog(repo):
    """Write backlog.md in the repository and return its path."""

    def _write(text: str, name: str = "backlog.md"):
        path = repo / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def backlog(manager, repo):
    return manager.create_backlog("web", str(repo))
