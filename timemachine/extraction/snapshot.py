"""Snapshot collection: a bounded sample of current source files for LLM context.

This is a best-effort relevance sample, not a complete copy of the working
tree. Key files (READMEs, entry points, manifests) are taken first, the total
is capped, and anything binary, oversized or unreadable is left out.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from timemachine.exceptions import GitCommandError
from timemachine.git.client import GitClient

logger = logging.getLogger(__name__)

MAX_SNAPSHOT_FILES = 50
MAX_FILE_CHARS = 100_000
MAX_CONTROL_CHAR_RATIO = 0.1

EXCLUDE_PATTERNS = [
    "node_modules/",
    "dist/",
    "build/",
    ".git/",
    "coverage/",
    "target/",
    "vendor/",
]

SOURCE_EXTENSIONS = {
    ".js", ".jsx", ".ts", ".tsx", ".py", ".java", ".go", ".rs",
    ".c", ".cpp", ".h", ".hpp", ".cs", ".php", ".rb", ".md",
}

# Matched as substrings of the lowercased basename
CONFIG_NAMES = [
    "readme", "package.json", "tsconfig.json", "cargo.toml", "pom.xml",
    "build.gradle", "pyproject.toml", "go.mod",
]

EXACT_NAMES = {"dockerfile", "makefile"}

KEY_FILE_PATTERNS = [
    "readme", "index", "main", "app", "server", "client",
    "package.json", "tsconfig", "dockerfile", "makefile",
    "config", "setup", "init", "bootstrap",
]

# Directories never descended into when walking a non-repository location
WALK_SKIP_DIRS = {"node_modules"}

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0E-\x1F\x7F]")


@dataclass
class Snapshot:
    """Point-in-time sample of repository file contents."""

    file_contents: dict[str, str] = field(default_factory=dict)  # relative path -> text
    key_files: list[str] = field(default_factory=list)
    total_lines: int = 0


def collect_snapshot(root: str | Path, max_files: int = MAX_SNAPSHOT_FILES) -> Snapshot:
    """Read a prioritized, size-bounded set of text files under `root`."""
    root = Path(root)
    snapshot = Snapshot()

    for rel_path in select_snapshot_files(list_repository_files(root), max_files):
        content = _read_text(root / rel_path)
        if content is None:
            continue
        if not is_text_content(content) or len(content) >= MAX_FILE_CHARS:
            logger.debug(f"Skipping {rel_path}: binary or too large")
            continue

        snapshot.file_contents[rel_path] = content
        snapshot.total_lines += len(content.split("\n"))
        if is_key_file(rel_path):
            snapshot.key_files.append(rel_path)

    return snapshot


def list_repository_files(root: Path) -> list[str]:
    """Tracked files as relative POSIX paths, or a directory walk outside git."""
    client = GitClient(root)
    if client.is_repo():
        try:
            return client.ls_files()
        except GitCommandError as e:
            logger.warning(f"git ls-files failed in {root}, walking the directory instead: {e}")
    return _walk_files(root)


def select_snapshot_files(paths: list[str], max_files: int = MAX_SNAPSHOT_FILES) -> list[str]:
    """Filter to eligible files and order key files first, capped at max_files."""
    eligible = [p for p in paths if is_eligible_file(p)]
    key = [p for p in eligible if is_key_file(p)]
    rest = [p for p in eligible if not is_key_file(p)]
    return (key + rest)[:max_files]


def is_eligible_file(path: str) -> bool:
    if any(pattern in path for pattern in EXCLUDE_PATTERNS):
        return False

    name = PurePosixPath(path).name.lower()
    ext = PurePosixPath(name).suffix
    return (
        ext in SOURCE_EXTENSIONS
        or any(config in name for config in CONFIG_NAMES)
        or name in EXACT_NAMES
    )


def is_key_file(path: str) -> bool:
    name = PurePosixPath(path).name.lower()
    return any(pattern in name for pattern in KEY_FILE_PATTERNS)


def is_text_content(content: str) -> bool:
    """Heuristic: text unless 10% or more of the characters are control characters."""
    if not content:
        return True
    control = len(_CONTROL_CHARS.findall(content))
    return control < len(content) * MAX_CONTROL_CHAR_RATIO


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"Couldn't read {path}: {e}")
        return None


def _walk_files(root: Path) -> list[str]:
    files: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(
            d for d in dirnames if not d.startswith(".") and d not in WALK_SKIP_DIRS
        )
        for filename in sorted(filenames):
            full = Path(dirpath) / filename
            files.append(full.relative_to(root).as_posix())
    return files
