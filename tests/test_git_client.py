"""Tests for timemachine.git.client output parsing."""

from __future__ import annotations

from pathlib import Path

import pytest

from timemachine.exceptions import GitCommandError
from timemachine.git.client import (
    FIELD_SEP,
    RECORD_SEP,
    GitClient,
    parse_log,
    parse_name_status,
    parse_numstat,
)


def _log_record(*fields: str) -> str:
    return FIELD_SEP.join(fields) + RECORD_SEP


class TestParseLog:
    def test_parses_records(self):
        output = (
            _log_record("a" * 40, "b" * 40, "Ada", "ada@example.com", "2023-01-02T10:00:00+00:00", "Add parser")
            + "\n"
            + _log_record("b" * 40, "", "Bob", "bob@example.com", "2023-01-01T10:00:00+00:00", "Initial")
            + "\n"
        )
        commits = parse_log(output)
        assert [c.subject for c in commits] == ["Add parser", "Initial"]
        assert commits[0].first_parent == "b" * 40
        assert commits[1].parents == []
        assert commits[1].first_parent is None

    def test_merge_commit_parents(self):
        output = _log_record("m" * 40, f"{'p' * 40} {'q' * 40}", "Ada", "a@x", "2023-01-01T00:00:00Z", "Merge")
        assert parse_log(output)[0].parents == ["p" * 40, "q" * 40]

    def test_subject_with_separator_like_text(self):
        output = _log_record("a" * 40, "", "Ada", "a@x", "2023-01-01T00:00:00Z", "fix: a | b ; c")
        assert parse_log(output)[0].subject == "fix: a | b ; c"

    def test_skips_malformed(self):
        assert parse_log("garbage" + RECORD_SEP) == []

    def test_empty(self):
        assert parse_log("") == []


class TestParseNameStatus:
    def test_simple_statuses(self):
        output = "A\0src/new.py\0M\0README.md\0D\0old.txt\0"
        entries = parse_name_status(output)
        assert [(e.status, e.path) for e in entries] == [
            ("A", "src/new.py"),
            ("M", "README.md"),
            ("D", "old.txt"),
        ]

    def test_rename(self):
        entries = parse_name_status("R087\0src/old.py\0src/new.py\0")
        assert entries[0].status == "R087"
        assert entries[0].old_path == "src/old.py"
        assert entries[0].path == "src/new.py"

    def test_path_with_spaces_and_tabs(self):
        entries = parse_name_status("M\0docs/my file\twith tab.md\0")
        assert entries[0].path == "docs/my file\twith tab.md"

    def test_truncated_rename(self):
        with pytest.raises(GitCommandError):
            parse_name_status("R100\0only-one-path")


class TestParseNumstat:
    def test_counts(self):
        entries = parse_numstat("10\t2\tsrc/app.py\0")
        assert entries[0].path == "src/app.py"
        assert (entries[0].insertions, entries[0].deletions) == (10, 2)
        assert entries[0].binary is False

    def test_binary_counts_zero(self):
        entries = parse_numstat("-\t-\tlogo.png\0")
        assert entries[0].binary is True
        assert (entries[0].insertions, entries[0].deletions) == (0, 0)

    def test_rename_form(self):
        entries = parse_numstat("1\t1\t\0src/old.py\0src/new.py\0")
        assert entries[0].path == "src/new.py"
        assert entries[0].old_path == "src/old.py"

    def test_mixed(self):
        output = "3\t0\ta.py\0" + "0\t0\t\0b.py\0c.py\0" + "-\t-\td.bin\0"
        assert [e.path for e in parse_numstat(output)] == ["a.py", "c.py", "d.bin"]


class TestGitClientOutsideRepository:
    def test_not_a_repo(self, tmp_path: Path):
        client = GitClient(tmp_path)
        assert client.is_repo() is False

    def test_log_raises(self, tmp_path: Path):
        with pytest.raises(GitCommandError):
            GitClient(tmp_path).log()

    def test_missing_directory_raises(self, tmp_path: Path):
        with pytest.raises(GitCommandError):
            GitClient(tmp_path / "missing").log()

    def test_tolerant_helpers_return_empty(self, tmp_path: Path):
        client = GitClient(tmp_path)
        assert client.show("HEAD", "README.md") == ""
        assert client.file_history("README.md") == []
        assert client.diff("HEAD~1", "HEAD") == ""
