"""Shared test fixtures for timemachine."""

from __future__ import annotations

import os
import shutil
import sqlite3
import subprocess
import uuid
from datetime import datetime
from pathlib import Path

import pytest

from timemachine.extraction.models import Commit, Repository
from timemachine.extraction.snapshot import Snapshot
from timemachine.storage.db import get_connection
from timemachine.storage.store import Store


class FakeGenerator:
    """TextGenerator that replays canned responses and records every call."""

    def __init__(self, *responses: str) -> None:
        self._responses = list(responses) or [""]
        self.calls: list[tuple[str, int]] = []

    def generate(self, prompt: str, max_tokens: int) -> str:
        self.calls.append((prompt, max_tokens))
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]


class GitRepo:
    """Scratch git repository with deterministic author identity and dates."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._tick = 0
        self.git("init", "-q")

    def git(self, *args: str) -> str:
        env = {
            **os.environ,
            "GIT_AUTHOR_NAME": "Ada Lovelace",
            "GIT_AUTHOR_EMAIL": "ada@example.com",
            "GIT_COMMITTER_NAME": "Ada Lovelace",
            "GIT_COMMITTER_EMAIL": "ada@example.com",
            "GIT_AUTHOR_DATE": f"2023-01-{self._tick + 1:02d}T12:00:00+00:00",
            "GIT_COMMITTER_DATE": f"2023-01-{self._tick + 1:02d}T12:00:00+00:00",
        }
        result = subprocess.run(
            ["git", "-c", "commit.gpgsign=false", "-c", "init.defaultBranch=main", *args],
            cwd=self.path,
            env=env,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout

    def write(self, rel_path: str, content: str | bytes) -> Path:
        target = self.path / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content)
        return target

    def commit(self, message: str) -> str:
        self.git("add", "-A")
        self.git("commit", "-q", "-m", message)
        self._tick += 1
        return self.git("rev-parse", "HEAD").strip()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def db_conn(db_path: Path) -> sqlite3.Connection:
    conn = get_connection(db_path)
    yield conn
    conn.close()


@pytest.fixture
def store(db_conn: sqlite3.Connection) -> Store:
    return Store(db_conn)


@pytest.fixture
def git_repo(tmp_path: Path) -> GitRepo:
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    path = tmp_path / "repo"
    path.mkdir()
    return GitRepo(path)


@pytest.fixture
def sample_repository(tmp_path: Path) -> Repository:
    return Repository(
        id=str(uuid.uuid4()),
        name="webapp",
        path=str(tmp_path),
        url="https://github.com/acme/webapp",
        created_at=datetime(2024, 6, 15, 10, 0, 0),
        total_commits=2,
        total_files=3,
        languages={"Python", "Markdown"},
    )


def make_commit(
    repo_id: str,
    hash: str,
    date: str,
    message: str = "Update code",
    files_changed: int = 1,
    author: str = "Ada Lovelace",
) -> Commit:
    return Commit(
        id=str(uuid.uuid4()),
        repo_id=repo_id,
        hash=hash,
        author=author,
        email="ada@example.com",
        date=date,
        message=message,
        files_changed=files_changed,
        insertions=10,
        deletions=2,
        parents=[],
    )


@pytest.fixture
def sample_commits(sample_repository: Repository) -> list[Commit]:
    """Two commits, newest first, as the store returns them."""
    return [
        make_commit(sample_repository.id, "b" * 40, "2023-06-01T09:30:00+02:00", "Refactor storage layer", 7),
        make_commit(sample_repository.id, "a" * 40, "2023-03-01T12:00:00+00:00", "Initial commit", 3),
    ]


@pytest.fixture
def sample_snapshot() -> Snapshot:
    return Snapshot(
        file_contents={"README.md": "# webapp\n", "src/app.py": "print('hi')\n"},
        key_files=["README.md", "src/app.py"],
        total_lines=4,
    )


@pytest.fixture
def populated_store(
    store: Store, sample_repository: Repository, sample_commits: list[Commit]
) -> Store:
    """Store pre-loaded with the sample repository and its commits."""
    store.save_repository(sample_repository)
    for commit in sample_commits:
        store.save_commit(commit, [])
    return store
