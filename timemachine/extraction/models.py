"""Core data models for timemachine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

CHANGE_TYPES = ("added", "modified", "deleted", "renamed")
ANALYSIS_TYPES = ("pattern", "complexity", "ownership", "evolution", "architecture")


@dataclass
class Repository:
    id: str  # UUID
    name: str  # display name
    path: str  # filesystem location of the working tree
    url: str | None = None  # origin URL, if known
    created_at: datetime = field(default_factory=datetime.now)
    last_analyzed: datetime | None = None  # set when a history walk completes
    total_commits: int = 0
    total_files: int = 0
    languages: set[str] = field(default_factory=set)


@dataclass
class Commit:
    id: str  # UUID, kept stable across re-ingestion
    repo_id: str  # FK to Repository
    hash: str
    author: str
    email: str
    date: str  # ISO-8601 author date
    message: str
    files_changed: int = 0
    insertions: int = 0
    deletions: int = 0
    parents: list[str] = field(default_factory=list)

    @property
    def short_hash(self) -> str:
        return self.hash[:8]


def parse_commit_date(value: str) -> datetime:
    """Parse an ISO-8601 date into an aware UTC datetime. Naive values are taken as UTC."""
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class FileChange:
    id: str  # UUID
    commit_id: str  # FK to Commit
    file_path: str
    change_type: str  # "added" | "modified" | "deleted" | "renamed"
    insertions: int = 0
    deletions: int = 0
    old_path: str | None = None  # only for renames

    def __post_init__(self) -> None:
        if self.change_type not in CHANGE_TYPES:
            raise ValueError(f"Unknown change type: {self.change_type!r}")
        if self.insertions < 0 or self.deletions < 0:
            raise ValueError(
                f"Negative line counts for {self.file_path}: "
                f"+{self.insertions} -{self.deletions}"
            )
        if self.change_type == "renamed" and not self.old_path:
            raise ValueError(f"Renamed file {self.file_path} has no prior path")
        if self.change_type != "renamed":
            self.old_path = None


@dataclass
class Analysis:
    id: str  # UUID
    repo_id: str  # FK to Repository
    analysis_type: str  # "pattern" | "complexity" | "ownership" | "evolution" | "architecture"
    result: str  # JSON text, shape depends on analysis_type
    commit_id: str | None = None
    file_path: str | None = None
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if self.analysis_type not in ANALYSIS_TYPES:
            raise ValueError(f"Unknown analysis type: {self.analysis_type!r}")
