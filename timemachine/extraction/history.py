"""Commit history extraction.

Walks a repository's commit log and turns each commit into a Commit record
plus one FileChange per changed path, diffed against the first parent (or
the empty tree for root commits).

History can be large and partially broken (shallow clones, rewritten refs,
missing objects), so the walk is failure-isolated per commit: a commit whose
diff can't be computed is logged and skipped. Commits are upserted by hash,
so running the walk again over the same repository overwrites rather than
duplicates.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath

from timemachine.exceptions import GitCommandError
from timemachine.extraction.models import Commit, FileChange
from timemachine.extraction.snapshot import list_repository_files
from timemachine.git.client import GitClient, RawCommit, RawDiffEntry, RawNumstat
from timemachine.storage.store import Store

logger = logging.getLogger(__name__)

DEFAULT_MAX_COMMITS = 1000
UNKNOWN_AUTHOR = "Unknown"

LANGUAGE_MAP: dict[str, str] = {
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".py": "Python",
    ".java": "Java",
    ".go": "Go",
    ".rs": "Rust",
    ".c": "C",
    ".cpp": "C++",
    ".cc": "C++",
    ".cxx": "C++",
    ".h": "C/C++",
    ".hpp": "C++",
    ".cs": "C#",
    ".php": "PHP",
    ".rb": "Ruby",
    ".swift": "Swift",
    ".kt": "Kotlin",
    ".scala": "Scala",
    ".clj": "Clojure",
    ".hs": "Haskell",
    ".ml": "OCaml",
    ".fs": "F#",
    ".dart": "Dart",
    ".lua": "Lua",
    ".r": "R",
    ".m": "Objective-C",
    ".mm": "Objective-C++",
    ".sh": "Shell",
    ".bash": "Shell",
    ".zsh": "Shell",
    ".fish": "Shell",
    ".ps1": "PowerShell",
    ".sql": "SQL",
    ".html": "HTML",
    ".css": "CSS",
    ".scss": "SCSS",
    ".sass": "Sass",
    ".less": "Less",
    ".vue": "Vue",
    ".svelte": "Svelte",
    ".json": "JSON",
    ".xml": "XML",
    ".yaml": "YAML",
    ".yml": "YAML",
    ".toml": "TOML",
    ".md": "Markdown",
    ".mdx": "MDX",
}

STATUS_TO_CHANGE_TYPE = {
    "A": "added",
    "M": "modified",
    "D": "deleted",
    "R": "renamed",
}


@dataclass
class ExtractionReport:
    """Outcome of one history walk."""

    repo_id: str
    processed: int = 0
    file_changes: int = 0
    skipped: list[str] = field(default_factory=list)  # hashes whose diff failed

    @property
    def total_seen(self) -> int:
        return self.processed + len(self.skipped)


def language_for_path(path: str) -> str | None:
    return LANGUAGE_MAP.get(PurePosixPath(path).suffix.lower())


def classify_change(status: str) -> str:
    """Map a git status letter to a change type. Unknown statuses count as modified."""
    return STATUS_TO_CHANGE_TYPE.get(status[:1].upper(), "modified")


class HistoryExtractor:
    """Reads one repository's history and persists it through a Store."""

    def __init__(self, repo_path: str | Path, store: Store, git: GitClient | None = None) -> None:
        self._repo_path = Path(repo_path)
        self._store = store
        self._git = git or GitClient(self._repo_path)

    def list_all_commits(self, max_count: int | None = None) -> list[RawCommit]:
        """All commits across refs, newest first. Empty when there is no usable history."""
        try:
            return self._git.log(max_count=max_count)
        except GitCommandError as e:
            logger.info(f"No git history available at {self._repo_path}: {e}")
            return []

    def collect_authors(self) -> set[str]:
        """Distinct author names, or the "Unknown" sentinel when history can't be read."""
        try:
            commits = self._git.log()
        except GitCommandError:
            return {UNKNOWN_AUTHOR}
        if not commits:
            return {UNKNOWN_AUTHOR}
        return {commit.author_name for commit in commits}

    def detect_languages(self) -> set[str]:
        languages: set[str] = set()
        for path in list_repository_files(self._repo_path):
            language = language_for_path(path)
            if language:
                languages.add(language)
        return languages

    def process_commit_history(
        self, repo_id: str, max_commits: int = DEFAULT_MAX_COMMITS
    ) -> ExtractionReport:
        """Walk up to max_commits commits and persist Commit + FileChange rows."""
        logger.info(f"Analyzing commit history for repository {repo_id}...")
        report = ExtractionReport(repo_id=repo_id)

        for raw in self.list_all_commits(max_count=max_commits):
            try:
                commit, changes = self._extract_commit(repo_id, raw)
                self._store.save_commit(commit, changes)
            except (GitCommandError, ValueError, sqlite3.Error) as e:
                logger.warning(f"Skipping commit {raw.hash[:8]}: {e}")
                report.skipped.append(raw.hash)
                continue

            report.processed += 1
            report.file_changes += len(changes)
            if report.processed % 100 == 0:
                logger.info(f"  processed {report.processed} commits...")

        self._store.update_repository_stats(
            repo_id,
            total_commits=self._store.count_commits(repo_id),
            last_analyzed=datetime.now(),
        )
        logger.info(
            f"Commit history analysis complete. Processed {report.processed} commits, "
            f"skipped {len(report.skipped)}"
        )
        return report

    def _extract_commit(self, repo_id: str, raw: RawCommit) -> tuple[Commit, list[FileChange]]:
        parent = raw.first_parent
        entries = self._git.name_status(raw.hash, parent)
        numstats = self._git.numstat(raw.hash, parent)

        changes = [self._build_file_change(entry, numstats) for entry in entries]
        commit = Commit(
            id=str(uuid.uuid4()),
            repo_id=repo_id,
            hash=raw.hash,
            author=raw.author_name,
            email=raw.author_email,
            date=raw.date,
            message=raw.subject,
            files_changed=len(changes),
            insertions=sum(c.insertions for c in changes),
            deletions=sum(c.deletions for c in changes),
            parents=list(raw.parents),
        )
        return commit, changes

    def _build_file_change(self, entry: RawDiffEntry, numstats: dict[str, RawNumstat]) -> FileChange:
        change_type = classify_change(entry.status)
        stat = numstats.get(entry.path)
        return FileChange(
            id=str(uuid.uuid4()),
            commit_id="",  # filled in by Store.save_commit
            file_path=entry.path,
            change_type=change_type,
            insertions=stat.insertions if stat else 0,
            deletions=stat.deletions if stat else 0,
            old_path=entry.old_path if change_type == "renamed" else None,
        )
