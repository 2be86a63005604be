"""Thin wrapper around the git command line for reading repository history.

Output of each git invocation is parsed into small raw records (RawCommit,
RawDiffEntry, RawNumstat). These mirror git's output shapes and are converted
into the canonical models by the history extractor; nothing outside
timemachine.extraction should handle them.

Everything is read through plumbing commands with NUL/unit-separator framing
so that paths and messages never need unquoting.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from timemachine.exceptions import GitCommandError

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 60  # seconds

FIELD_SEP = "\x1f"
RECORD_SEP = "\x1e"
LOG_FORMAT = FIELD_SEP.join(["%H", "%P", "%an", "%ae", "%aI", "%s"]) + RECORD_SEP


@dataclass
class RawCommit:
    """One record of `git log` output."""

    hash: str
    parents: list[str]
    author_name: str
    author_email: str
    date: str  # strict ISO-8601, as printed by %aI
    subject: str

    @property
    def first_parent(self) -> str | None:
        return self.parents[0] if self.parents else None


@dataclass
class RawDiffEntry:
    """One record of `git diff-tree --name-status` output."""

    status: str  # e.g. "A", "M", "D", "R100", "C075", "T"
    path: str
    old_path: str | None = None  # set for renames and copies


@dataclass
class RawNumstat:
    """One record of `git diff-tree --numstat` output."""

    path: str
    insertions: int = 0
    deletions: int = 0
    binary: bool = False
    old_path: str | None = None


@dataclass
class GitClient:
    """Runs git commands against a single working tree."""

    repo_dir: Path
    timeout: int = GIT_TIMEOUT
    _is_repo: bool | None = field(default=None, init=False, repr=False)

    def is_repo(self) -> bool:
        """Check whether repo_dir is inside a git work tree."""
        if self._is_repo is None:
            result = self._git("rev-parse", "--is-inside-work-tree")
            self._is_repo = bool(result and result.strip() == "true")
        return self._is_repo

    def log(self, max_count: int | None = None, all_refs: bool = True) -> list[RawCommit]:
        """Commits newest first. Raises GitCommandError if git fails."""
        args = ["log", f"--format={LOG_FORMAT}"]
        if all_refs:
            args.append("--all")
        if max_count is not None:
            args.append(f"--max-count={max_count}")
        return parse_log(self._run(*args))

    def ls_files(self) -> list[str]:
        """Tracked files relative to the repository root. Raises GitCommandError."""
        output = self._run("ls-files", "-z")
        return [path for path in output.split("\0") if path]

    def name_status(self, commit: str, parent: str | None) -> list[RawDiffEntry]:
        """Changed paths of `commit` against `parent`, or against the empty tree."""
        return parse_name_status(self._run(*self._diff_tree_args("--name-status", commit, parent)))

    def numstat(self, commit: str, parent: str | None) -> dict[str, RawNumstat]:
        """Per-path line counts of `commit` against `parent`, keyed by new path."""
        entries = parse_numstat(self._run(*self._diff_tree_args("--numstat", commit, parent)))
        return {entry.path: entry for entry in entries}

    def show(self, commit: str, path: str | None = None) -> str:
        """File content at a commit, or the whole commit when no path is given."""
        target = f"{commit}:{path}" if path else commit
        return self._git("show", target) or ""

    def file_history(self, path: str) -> list[RawCommit]:
        """Commits that touched `path`, following renames."""
        output = self._git("log", f"--format={LOG_FORMAT}", "--follow", "--", path)
        return parse_log(output) if output else []

    def diff(self, from_commit: str, to_commit: str, path: str | None = None) -> str:
        args = ["diff", from_commit, to_commit]
        if path:
            args.extend(["--", path])
        return self._git(*args) or ""

    def _diff_tree_args(self, mode: str, commit: str, parent: str | None) -> list[str]:
        args = ["diff-tree", "-r", "-M", "-z", "--no-commit-id", mode]
        if parent:
            return [*args, parent, commit]
        # Root commit: --root diffs against the empty tree
        return [*args, "--root", commit]

    def _run(self, *args: str) -> str:
        """Run a git command in the repo directory, raising on any failure."""
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.repo_dir,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError, NotADirectoryError) as e:
            raise GitCommandError(f"git {args[0]} failed: {e}") from e

        if result.returncode != 0:
            raise GitCommandError(
                f"git {' '.join(args[:2])} exited {result.returncode}: {result.stderr.strip()}"
            )
        return result.stdout

    def _git(self, *args: str) -> str | None:
        """Run a git command, returning None instead of raising."""
        try:
            return self._run(*args)
        except GitCommandError as e:
            logger.debug(str(e))
            return None


def parse_log(output: str) -> list[RawCommit]:
    commits: list[RawCommit] = []
    for record in output.split(RECORD_SEP):
        record = record.strip("\n")
        if not record:
            continue
        fields = record.split(FIELD_SEP, 5)
        if len(fields) != 6:
            logger.warning(f"Skipping malformed log record: {record[:80]!r}")
            continue
        commit_hash, parents, name, email, date, subject = fields
        commits.append(
            RawCommit(
                hash=commit_hash,
                parents=parents.split(),
                author_name=name,
                author_email=email,
                date=date,
                subject=subject,
            )
        )
    return commits


def parse_name_status(output: str) -> list[RawDiffEntry]:
    """Parse `--name-status -z` output: STATUS\\0path\\0, or STATUS\\0old\\0new\\0."""
    tokens = output.split("\0")
    entries: list[RawDiffEntry] = []
    i = 0
    while i < len(tokens):
        status = tokens[i].strip()
        if not status:
            i += 1
            continue
        if status[0] in ("R", "C"):
            if i + 2 >= len(tokens):
                raise GitCommandError(f"Truncated rename record in diff output: {status}")
            entries.append(RawDiffEntry(status=status, path=tokens[i + 2], old_path=tokens[i + 1]))
            i += 3
        else:
            if i + 1 >= len(tokens):
                raise GitCommandError(f"Truncated record in diff output: {status}")
            entries.append(RawDiffEntry(status=status, path=tokens[i + 1]))
            i += 2
    return entries


def parse_numstat(output: str) -> list[RawNumstat]:
    """Parse `--numstat -z` output.

    Plain records are "ins\\tdel\\tpath\\0"; renames are "ins\\tdel\\t\\0old\\0new\\0".
    Binary files report "-" for both counts.
    """
    tokens = output.split("\0")
    entries: list[RawNumstat] = []
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if not token.strip():
            i += 1
            continue
        parts = token.split("\t", 2)
        if len(parts) != 3:
            i += 1
            continue
        ins, dels, path = parts
        old_path = None
        if path == "":
            if i + 2 >= len(tokens):
                break
            old_path, path = tokens[i + 1], tokens[i + 2]
            i += 3
        else:
            i += 1

        binary = ins == "-" or dels == "-"
        entries.append(
            RawNumstat(
                path=path,
                insertions=0 if binary else _to_count(ins),
                deletions=0 if binary else _to_count(dels),
                binary=binary,
                old_path=old_path,
            )
        )
    return entries


def _to_count(value: str) -> int:
    try:
        return max(int(value), 0)
    except ValueError:
        return 0
