"""CRUD operations for repositories, commits, file changes and analyses."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime

from timemachine.extraction.models import (
    Analysis,
    Commit,
    FileChange,
    Repository,
    parse_commit_date,
)

# Sortable as text, unlike author dates with mixed offsets
UTC_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class Store:
    """Data access layer for the timemachine SQLite database."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # --- repositories ---

    def save_repository(self, repo: Repository) -> None:
        """Insert a repository record, or update it in place if the id exists."""
        self._conn.execute(
            """INSERT INTO repositories
            (id, name, path, url, created_at, last_analyzed, total_commits, total_files, languages)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                path = excluded.path,
                url = excluded.url,
                last_analyzed = excluded.last_analyzed,
                total_commits = excluded.total_commits,
                total_files = excluded.total_files,
                languages = excluded.languages""",
            (
                repo.id,
                repo.name,
                repo.path,
                repo.url,
                repo.created_at.isoformat(),
                repo.last_analyzed.isoformat() if repo.last_analyzed else None,
                repo.total_commits,
                repo.total_files,
                json.dumps(sorted(repo.languages)),
            ),
        )
        self._conn.commit()

    def get_repository(self, repo_id: str) -> Repository | None:
        row = self._conn.execute(
            "SELECT * FROM repositories WHERE id = ?", (repo_id,)
        ).fetchone()
        return self._row_to_repository(row) if row else None

    def list_repositories(self) -> list[Repository]:
        rows = self._conn.execute(
            "SELECT * FROM repositories ORDER BY created_at DESC"
        ).fetchall()
        return [self._row_to_repository(row) for row in rows]

    def update_repository_stats(
        self,
        repo_id: str,
        total_commits: int | None = None,
        total_files: int | None = None,
        last_analyzed: datetime | None = None,
    ) -> None:
        """Update the mutable counters of a repository. None leaves a field unchanged."""
        assignments: list[str] = []
        params: list = []
        if total_commits is not None:
            assignments.append("total_commits = ?")
            params.append(total_commits)
        if total_files is not None:
            assignments.append("total_files = ?")
            params.append(total_files)
        if last_analyzed is not None:
            assignments.append("last_analyzed = ?")
            params.append(last_analyzed.isoformat())
        if not assignments:
            return

        params.append(repo_id)
        self._conn.execute(
            f"UPDATE repositories SET {', '.join(assignments)} WHERE id = ?", params
        )
        self._conn.commit()

    # --- commits and file changes ---

    def save_commit(self, commit: Commit, file_changes: list[FileChange] | None = None) -> Commit:
        """Upsert a commit by (repo_id, hash) and replace its file changes.

        Re-ingesting an existing hash keeps the stored row id, so the returned
        commit may carry a different id than the one passed in. File changes
        are re-pointed at the stored id.
        """
        try:
            self._conn.execute(
                """INSERT INTO commits
                (id, repo_id, hash, author, email, date, date_utc, message,
                 files_changed, insertions, deletions, parents)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(repo_id, hash) DO UPDATE SET
                    author = excluded.author,
                    email = excluded.email,
                    date = excluded.date,
                    date_utc = excluded.date_utc,
                    message = excluded.message,
                    files_changed = excluded.files_changed,
                    insertions = excluded.insertions,
                    deletions = excluded.deletions,
                    parents = excluded.parents""",
                (
                    commit.id,
                    commit.repo_id,
                    commit.hash,
                    commit.author,
                    commit.email,
                    commit.date,
                    parse_commit_date(commit.date).strftime(UTC_DATE_FORMAT),
                    commit.message,
                    commit.files_changed,
                    commit.insertions,
                    commit.deletions,
                    json.dumps(commit.parents),
                ),
            )
            stored_id = self._conn.execute(
                "SELECT id FROM commits WHERE repo_id = ? AND hash = ?",
                (commit.repo_id, commit.hash),
            ).fetchone()["id"]

            if file_changes is not None:
                # Clear existing changes for this commit (in case of re-ingestion)
                self._conn.execute(
                    "DELETE FROM file_changes WHERE commit_id = ?", (stored_id,)
                )
                for position, change in enumerate(file_changes):
                    change.commit_id = stored_id
                    self._conn.execute(
                        """INSERT INTO file_changes
                        (id, commit_id, position, file_path, change_type, insertions, deletions, old_path)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                        (
                            change.id,
                            stored_id,
                            position,
                            change.file_path,
                            change.change_type,
                            change.insertions,
                            change.deletions,
                            change.old_path,
                        ),
                    )
            self._conn.commit()
        except sqlite3.Error:
            self._conn.rollback()
            raise

        commit.id = stored_id
        return commit

    def get_commits(self, repo_id: str, limit: int = 100, offset: int = 0) -> list[Commit]:
        """Commits for a repository, newest first."""
        rows = self._conn.execute(
            """SELECT * FROM commits
            WHERE repo_id = ?
            ORDER BY date_utc DESC
            LIMIT ? OFFSET ?""",
            (repo_id, limit, offset),
        ).fetchall()
        return [self._row_to_commit(row) for row in rows]

    def get_commit_by_hash(self, repo_id: str, commit_hash: str) -> Commit | None:
        """Find a commit by full hash or unique prefix."""
        rows = self._conn.execute(
            "SELECT * FROM commits WHERE repo_id = ? AND hash LIKE ? LIMIT 2",
            (repo_id, f"{commit_hash}%"),
        ).fetchall()
        if len(rows) != 1:
            return None
        return self._row_to_commit(rows[0])

    def count_commits(self, repo_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM commits WHERE repo_id = ?", (repo_id,)
        ).fetchone()[0]

    def get_file_changes(self, commit_id: str) -> list[FileChange]:
        """File changes of a commit in diff-listing order."""
        rows = self._conn.execute(
            "SELECT * FROM file_changes WHERE commit_id = ? ORDER BY position",
            (commit_id,),
        ).fetchall()
        return [
            FileChange(
                id=row["id"],
                commit_id=row["commit_id"],
                file_path=row["file_path"],
                change_type=row["change_type"],
                insertions=row["insertions"],
                deletions=row["deletions"],
                old_path=row["old_path"],
            )
            for row in rows
        ]

    def get_commit_paths(self, repo_id: str) -> dict[str, set[str]]:
        """Map commit id -> every path (current and prior) it touched."""
        rows = self._conn.execute(
            """SELECT fc.commit_id, fc.file_path, fc.old_path
            FROM file_changes fc
            JOIN commits c ON fc.commit_id = c.id
            WHERE c.repo_id = ?""",
            (repo_id,),
        ).fetchall()
        paths: dict[str, set[str]] = {}
        for row in rows:
            touched = paths.setdefault(row["commit_id"], set())
            touched.add(row["file_path"])
            if row["old_path"]:
                touched.add(row["old_path"])
        return paths

    # --- analyses ---

    def save_analysis(self, analysis: Analysis) -> None:
        """Append an analysis record. Analyses are never updated."""
        self._conn.execute(
            """INSERT INTO analysis
            (id, repo_id, commit_id, file_path, analysis_type, result, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                analysis.id,
                analysis.repo_id,
                analysis.commit_id,
                analysis.file_path,
                analysis.analysis_type,
                analysis.result,
                analysis.created_at.isoformat(),
            ),
        )
        self._conn.commit()

    def get_analyses(
        self,
        repo_id: str,
        analysis_type: str | None = None,
        limit: int = 50,
    ) -> list[Analysis]:
        """Analyses for a repository, most recent first."""
        query = "SELECT * FROM analysis WHERE repo_id = ?"
        params: list = [repo_id]
        if analysis_type:
            query += " AND analysis_type = ?"
            params.append(analysis_type)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        rows = self._conn.execute(query, params).fetchall()
        return [
            Analysis(
                id=row["id"],
                repo_id=row["repo_id"],
                analysis_type=row["analysis_type"],
                result=row["result"],
                commit_id=row["commit_id"],
                file_path=row["file_path"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def get_stats(self, repo_id: str | None = None) -> dict:
        """Get summary statistics, optionally scoped to one repository."""
        if repo_id is None:
            repos = self._conn.execute("SELECT COUNT(*) FROM repositories").fetchone()[0]
            commits = self._conn.execute("SELECT COUNT(*) FROM commits").fetchone()[0]
            changes = self._conn.execute("SELECT COUNT(*) FROM file_changes").fetchone()[0]
            analyses = self._conn.execute("SELECT COUNT(*) FROM analysis").fetchone()[0]
            return {
                "total_repositories": repos,
                "total_commits": commits,
                "total_file_changes": changes,
                "total_analyses": analyses,
            }

        commits = self.count_commits(repo_id)
        changes = self._conn.execute(
            """SELECT COUNT(*) FROM file_changes fc
            JOIN commits c ON fc.commit_id = c.id
            WHERE c.repo_id = ?""",
            (repo_id,),
        ).fetchone()[0]
        authors = self._conn.execute(
            "SELECT COUNT(DISTINCT author) FROM commits WHERE repo_id = ?", (repo_id,)
        ).fetchone()[0]
        analysis_rows = self._conn.execute(
            """SELECT analysis_type, COUNT(*) AS n FROM analysis
            WHERE repo_id = ? GROUP BY analysis_type""",
            (repo_id,),
        ).fetchall()
        return {
            "total_commits": commits,
            "total_file_changes": changes,
            "unique_authors": authors,
            "analyses": {row["analysis_type"]: row["n"] for row in analysis_rows},
        }

    def _row_to_repository(self, row: sqlite3.Row) -> Repository:
        try:
            languages = set(json.loads(row["languages"] or "[]"))
        except json.JSONDecodeError:
            languages = set()
        return Repository(
            id=row["id"],
            name=row["name"],
            path=row["path"],
            url=row["url"],
            created_at=datetime.fromisoformat(row["created_at"]),
            last_analyzed=(
                datetime.fromisoformat(row["last_analyzed"]) if row["last_analyzed"] else None
            ),
            total_commits=row["total_commits"],
            total_files=row["total_files"],
            languages=languages,
        )

    def _row_to_commit(self, row: sqlite3.Row) -> Commit:
        try:
            parents = json.loads(row["parents"] or "[]")
        except json.JSONDecodeError:
            parents = []
        return Commit(
            id=row["id"],
            repo_id=row["repo_id"],
            hash=row["hash"],
            author=row["author"],
            email=row["email"],
            date=row["date"],
            message=row["message"],
            files_changed=row["files_changed"],
            insertions=row["insertions"],
            deletions=row["deletions"],
            parents=parents,
        )
