"""SQLite database setup and schema management."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS repositories (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    path TEXT NOT NULL,
    url TEXT,
    created_at TIMESTAMP NOT NULL,
    last_analyzed TIMESTAMP,
    total_commits INTEGER NOT NULL DEFAULT 0,
    total_files INTEGER NOT NULL DEFAULT 0,
    languages TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS commits (
    id TEXT PRIMARY KEY,
    repo_id TEXT NOT NULL REFERENCES repositories(id),
    hash TEXT NOT NULL,
    author TEXT NOT NULL,
    email TEXT NOT NULL,
    date TEXT NOT NULL,
    date_utc TEXT NOT NULL DEFAULT '',  -- UTC "YYYY-MM-DDTHH:MM:SSZ", sorts as text
    message TEXT NOT NULL,
    files_changed INTEGER NOT NULL DEFAULT 0,
    insertions INTEGER NOT NULL DEFAULT 0 CHECK (insertions >= 0),
    deletions INTEGER NOT NULL DEFAULT 0 CHECK (deletions >= 0),
    parents TEXT NOT NULL DEFAULT '[]',
    UNIQUE (repo_id, hash)
);

CREATE TABLE IF NOT EXISTS file_changes (
    id TEXT PRIMARY KEY,
    commit_id TEXT NOT NULL REFERENCES commits(id),
    position INTEGER NOT NULL DEFAULT 0,
    file_path TEXT NOT NULL,
    change_type TEXT NOT NULL
        CHECK (change_type IN ('added', 'modified', 'deleted', 'renamed')),
    insertions INTEGER NOT NULL DEFAULT 0 CHECK (insertions >= 0),
    deletions INTEGER NOT NULL DEFAULT 0 CHECK (deletions >= 0),
    old_path TEXT,
    CHECK (change_type != 'renamed' OR (old_path IS NOT NULL AND old_path != ''))
);

CREATE TABLE IF NOT EXISTS analysis (
    id TEXT PRIMARY KEY,
    repo_id TEXT NOT NULL REFERENCES repositories(id),
    commit_id TEXT REFERENCES commits(id),
    file_path TEXT,
    analysis_type TEXT NOT NULL,
    result TEXT NOT NULL,
    created_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_commits_repo_date_utc ON commits(repo_id, date_utc);
CREATE INDEX IF NOT EXISTS idx_file_changes_commit ON file_changes(commit_id);
CREATE INDEX IF NOT EXISTS idx_file_changes_path ON file_changes(file_path);
CREATE INDEX IF NOT EXISTS idx_analysis_repo_type ON analysis(repo_id, analysis_type);
"""

# Keyed by the version each step upgrades to. Fresh databases get SCHEMA_SQL directly.
MIGRATIONS: dict[int, str] = {
    2: """
ALTER TABLE commits ADD COLUMN date_utc TEXT NOT NULL DEFAULT '';
UPDATE commits SET date_utc = COALESCE(strftime('%Y-%m-%dT%H:%M:%SZ', date), date);
DROP INDEX IF EXISTS idx_commits_repo_date;
""",
}


def get_connection(db_path: Path, check_same_thread: bool = True) -> sqlite3.Connection:
    """Create or open a SQLite database with the timemachine schema."""
    conn = sqlite3.connect(str(db_path), check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    migrate(conn)
    return conn


def migrate(conn: sqlite3.Connection) -> int:
    """Bring the schema up to SCHEMA_VERSION. Returns the resulting version."""
    current = conn.execute("PRAGMA user_version").fetchone()[0]
    if current > SCHEMA_VERSION:
        raise RuntimeError(
            f"Database schema version {current} is newer than supported ({SCHEMA_VERSION})"
        )

    if current:
        for version in range(current + 1, SCHEMA_VERSION + 1):
            step = MIGRATIONS.get(version)
            if step:
                logger.info(f"Applying schema migration to version {version}")
                conn.executescript(step)
    conn.executescript(SCHEMA_SQL)

    if current != SCHEMA_VERSION:
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    conn.commit()
    return SCHEMA_VERSION
