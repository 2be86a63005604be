"""Repository ingestion: quick metadata pass now, full history walk in the background.

begin_ingestion() returns as soon as the repository record exists, with
counts, authors and languages filled in. The commit-by-commit walk is handed
to a TaskRegistry, which runs it on a worker thread and records whether it
is running, completed or failed, so background failures are never silent.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from timemachine.exceptions import IngestionInProgressError, RepositoryNotFoundError
from timemachine.extraction.history import (
    DEFAULT_MAX_COMMITS,
    ExtractionReport,
    HistoryExtractor,
)
from timemachine.extraction.models import Repository
from timemachine.extraction.snapshot import collect_snapshot
from timemachine.storage.db import get_connection
from timemachine.storage.store import Store

logger = logging.getLogger(__name__)

TASK_RUNNING = "running"
TASK_COMPLETED = "completed"
TASK_FAILED = "failed"


@dataclass
class TaskInfo:
    id: str
    key: str  # what the task works on, e.g. a repository id
    status: str = TASK_RUNNING  # "running" | "completed" | "failed"
    result: Any = None
    error: str | None = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None

    @property
    def done(self) -> bool:
        return self.status != TASK_RUNNING


class TaskRegistry:
    """Runs background tasks and keeps their lifecycle queryable.

    At most one running task per key: submitting a second one for the same
    key while the first is still running raises IngestionInProgressError.
    """

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ingest")
        self._lock = threading.Lock()
        self._tasks: dict[str, TaskInfo] = {}
        self._futures: dict[str, Future] = {}

    def submit(self, key: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> TaskInfo:
        with self._lock:
            if self._active_for(key) is not None:
                raise IngestionInProgressError(key)
            task = TaskInfo(id=str(uuid.uuid4()), key=key)
            self._tasks[task.id] = task
            self._futures[task.id] = self._executor.submit(self._run, task, fn, args, kwargs)
        logger.info(f"Started background task {task.id} for {key}")
        return task

    def get(self, task_id: str) -> TaskInfo | None:
        with self._lock:
            return self._tasks.get(task_id)

    def active_for(self, key: str) -> TaskInfo | None:
        with self._lock:
            return self._active_for(key)

    def list_tasks(self) -> list[TaskInfo]:
        with self._lock:
            return sorted(self._tasks.values(), key=lambda t: t.started_at)

    def wait(self, task_id: str, timeout: float | None = None) -> TaskInfo:
        """Block until the task finishes (or the timeout passes) and return its info."""
        with self._lock:
            future = self._futures.get(task_id)
            task = self._tasks.get(task_id)
        if future is None or task is None:
            raise KeyError(f"Unknown task: {task_id}")
        wait_futures([future], timeout=timeout)
        return task

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _active_for(self, key: str) -> TaskInfo | None:
        for task in self._tasks.values():
            if task.key == key and not task.done:
                return task
        return None

    def _run(self, task: TaskInfo, fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
        # Status is recorded here, on the worker, so it is final before the future resolves
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            logger.exception(f"Background task {task.id} for {task.key} failed")
            with self._lock:
                task.status = TASK_FAILED
                task.error = f"{type(e).__name__}: {e}"
                task.finished_at = datetime.now()
            return

        with self._lock:
            task.status = TASK_COMPLETED
            task.result = result
            task.finished_at = datetime.now()


@dataclass
class IngestionResult:
    """What the caller gets back immediately from begin_ingestion."""

    repository: Repository
    task: TaskInfo
    authors: set[str] = field(default_factory=set)
    languages: set[str] = field(default_factory=set)
    first_commit_date: str | None = None
    last_commit_date: str | None = None
    total_lines: int = 0
    key_files: list[str] = field(default_factory=list)


class IngestionService:
    """Creates repository records and schedules their history walks."""

    def __init__(
        self,
        store: Store,
        db_path: Path,
        registry: TaskRegistry,
        max_commits: int = DEFAULT_MAX_COMMITS,
    ) -> None:
        self._store = store
        self._db_path = Path(db_path)
        self._registry = registry
        self._max_commits = max_commits

    def begin_ingestion(
        self, name: str, location: str | Path, url: str | None = None
    ) -> IngestionResult:
        """Record the repository, then start the history walk in the background."""
        path = Path(location).resolve()
        logger.info(f"Starting analysis of repository {name} at {path}")

        extractor = HistoryExtractor(path, self._store)
        commits = extractor.list_all_commits()
        if not commits:
            logger.info(f"No git history found at {path}, continuing with an empty history")
        authors = extractor.collect_authors()
        languages = extractor.detect_languages()
        snapshot = collect_snapshot(path)

        repository = Repository(
            id=str(uuid.uuid4()),
            name=name,
            path=str(path),
            url=url,
            created_at=datetime.now(),
            last_analyzed=None,
            total_commits=len(commits),
            total_files=len(snapshot.file_contents),
            languages=languages,
        )
        self._store.save_repository(repository)
        logger.info(
            f"Repository analysis complete. Found {len(commits)} commits, {len(authors)} authors, "
            f"{len(languages)} languages, {snapshot.total_lines} lines of code"
        )

        task = self._registry.submit(repository.id, self._walk_history, repository.id, path)
        return IngestionResult(
            repository=repository,
            task=task,
            authors=authors,
            languages=languages,
            first_commit_date=commits[-1].date if commits else None,
            last_commit_date=commits[0].date if commits else None,
            total_lines=snapshot.total_lines,
            key_files=snapshot.key_files,
        )

    def reingest(self, repo_id: str) -> TaskInfo:
        """Walk an existing repository's history again. Commits are overwritten by hash."""
        repository = self._store.get_repository(repo_id)
        if repository is None:
            raise RepositoryNotFoundError(repo_id)
        return self._registry.submit(repo_id, self._walk_history, repo_id, Path(repository.path))

    def _walk_history(self, repo_id: str, path: Path) -> ExtractionReport:
        # sqlite3 connections stay on the thread that opened them
        conn = get_connection(self._db_path)
        try:
            extractor = HistoryExtractor(path, Store(conn))
            return extractor.process_commit_history(repo_id, max_commits=self._max_commits)
        finally:
            conn.close()
