"""Context assembly: commits + snapshot -> bounded JSON payload per analysis mode.

Each mode takes the newest commits from the store, narrows them (date range,
file path, "major" commits), caps the candidate set, then slices a small
number into compact summaries. The payload is the literal document handed to
the model, so optional fields that weren't supplied are left out entirely
rather than sent as null.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, time, timezone

from timemachine.extraction.models import Commit, parse_commit_date
from timemachine.extraction.snapshot import Snapshot

logger = logging.getLogger(__name__)

QUERY_COMMIT_CAP = 100

EVOLUTION_FETCH_LIMIT = 500
PATTERN_FETCH_LIMIT = 200
ARCHITECTURE_FETCH_LIMIT = 300

EVOLUTION_CONTEXT_COMMITS = 20
PATTERN_CONTEXT_COMMITS = 30
ARCHITECTURE_CONTEXT_COMMITS = 20

MAJOR_COMMIT_MIN_FILES = 5  # strictly more than this many files
MAJOR_COMMIT_KEYWORDS = ("refactor", "architecture", "redesign", "breaking")


@dataclass
class DateRange:
    """Inclusive range on commit instants. Date-only bounds are whole UTC days."""

    start: str
    end: str

    def __post_init__(self) -> None:
        self._start = _parse_bound(self.start, end_of_day=False)
        self._end = _parse_bound(self.end, end_of_day=True)
        if self._start > self._end:
            raise ValueError(f"Date range starts after it ends: {self.start} > {self.end}")

    def contains(self, commit_date: str) -> bool:
        when = _parse_commit_date(commit_date)
        if when is None:
            return False
        return self._start <= when <= self._end

    def to_dict(self) -> dict:
        return {"from": self.start, "to": self.end}


def summarize_commit(commit: Commit) -> dict:
    return {
        "hash": commit.short_hash,
        "date": commit.date,
        "author": commit.author,
        "message": commit.message,
        "filesChanged": commit.files_changed,
        "insertions": commit.insertions,
        "deletions": commit.deletions,
    }


def repository_stats(commits: list[Commit], count_key: str = "totalCommits") -> dict:
    """Count and date span of the commits in scope (newest-first input)."""
    stats: dict = {count_key: len(commits)}
    if commits:
        dates = [c.date for c in commits]
        stats["earliestDate"] = min(dates, key=_sort_key)
        stats["latestDate"] = max(dates, key=_sort_key)
    return stats


def filter_commits_by_date(commits: list[Commit], date_range: DateRange) -> list[Commit]:
    return [c for c in commits if date_range.contains(c.date)]


def filter_commits_by_path(
    commits: list[Commit], file_path: str, commit_paths: dict[str, set[str]]
) -> list[Commit]:
    """Keep commits that touched file_path, or anything under it as a directory."""
    target = file_path.strip("/")
    prefix = target + "/"

    def touched(commit: Commit) -> bool:
        return any(
            path == target or path.startswith(prefix)
            for path in commit_paths.get(commit.id, ())
        )

    return [c for c in commits if touched(c)]


def is_major_commit(commit: Commit) -> bool:
    if commit.files_changed > MAJOR_COMMIT_MIN_FILES:
        return True
    message = commit.message.lower()
    return any(keyword in message for keyword in MAJOR_COMMIT_KEYWORDS)


def snapshot_block(snapshot: Snapshot) -> dict:
    return {
        "keyFiles": list(snapshot.key_files),
        "fileContents": dict(snapshot.file_contents),
    }


def build_evolution_context(
    commits: list[Commit],
    question: str,
    snapshot: Snapshot,
    file_path: str | None = None,
    date_range: DateRange | None = None,
    commit_paths: dict[str, set[str]] | None = None,
) -> dict:
    """Payload for a free-form evolution question."""
    scoped = commits
    if date_range is not None:
        scoped = filter_commits_by_date(scoped, date_range)
    if file_path:
        scoped = filter_commits_by_path(scoped, file_path, commit_paths or {})
    # Cap after filtering: the oldest matches beyond the cap are dropped
    scoped = scoped[:QUERY_COMMIT_CAP]

    payload: dict = {"query": question}
    if file_path:
        payload["filePath"] = file_path
    if date_range is not None:
        payload["timeRange"] = date_range.to_dict()
    payload["commits"] = [summarize_commit(c) for c in scoped[:EVOLUTION_CONTEXT_COMMITS]]
    payload["codebaseSnapshot"] = snapshot_block(snapshot)
    payload["repositoryStats"] = repository_stats(scoped)
    return payload


def build_pattern_context(
    commits: list[Commit],
    snapshot: Snapshot,
    file_path: str | None = None,
    commit_paths: dict[str, set[str]] | None = None,
) -> dict:
    """Payload for pattern detection, optionally scoped to a path."""
    scoped = commits
    if file_path:
        scoped = filter_commits_by_path(scoped, file_path, commit_paths or {})
    scoped = scoped[:QUERY_COMMIT_CAP]

    payload: dict = {}
    if file_path:
        payload["filePath"] = file_path
    payload["commits"] = [summarize_commit(c) for c in scoped[:PATTERN_CONTEXT_COMMITS]]
    payload["codebaseSnapshot"] = snapshot_block(snapshot)
    payload["analysisTarget"] = file_path or "entire repository"
    payload["repositoryStats"] = repository_stats(scoped)
    return payload


def build_architecture_context(commits: list[Commit], snapshot: Snapshot) -> dict:
    """Payload for architectural-decision detection over major commits."""
    major = [c for c in commits if is_major_commit(c)][:QUERY_COMMIT_CAP]
    return {
        "majorCommits": [summarize_commit(c) for c in major[:ARCHITECTURE_CONTEXT_COMMITS]],
        "codebaseSnapshot": snapshot_block(snapshot),
        "analysisTarget": "architectural decisions in major commits",
        "repositoryStats": repository_stats(major, count_key="totalMajorCommits"),
    }


def serialize_context(payload: dict) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _parse_bound(value: str, end_of_day: bool) -> datetime:
    parsed = parse_commit_date(value)
    if end_of_day and len(value.strip()) == 10:  # YYYY-MM-DD
        parsed = datetime.combine(parsed.date(), time.max, tzinfo=timezone.utc)
    return parsed


def _parse_commit_date(value: str) -> datetime | None:
    try:
        return parse_commit_date(value)
    except ValueError:
        logger.debug(f"Unparseable commit date: {value!r}")
        return None


def _sort_key(value: str) -> datetime:
    return _parse_commit_date(value) or datetime.min.replace(tzinfo=timezone.utc)
