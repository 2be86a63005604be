"""Analysis engine: repository id -> context payload -> model -> typed result.

The three entry points share one shape: resolve the repository (or raise
RepositoryNotFoundError), pull recent commits from the store, take a file
snapshot of the working tree, assemble the mode's payload, hand it to the
interpreter, and append the result to the analysis history.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from pathlib import Path

from timemachine.analysis.context import (
    ARCHITECTURE_FETCH_LIMIT,
    EVOLUTION_FETCH_LIMIT,
    PATTERN_FETCH_LIMIT,
    DateRange,
    build_architecture_context,
    build_evolution_context,
    build_pattern_context,
    serialize_context,
)
from timemachine.analysis.interpreter import ResponseInterpreter
from timemachine.analysis.results import (
    ArchitecturalDecision,
    EvolutionResult,
    PatternResult,
)
from timemachine.exceptions import RepositoryNotFoundError
from timemachine.extraction.models import Analysis, Repository
from timemachine.extraction.snapshot import Snapshot, collect_snapshot
from timemachine.llm.client import TextGenerator
from timemachine.storage.store import Store

logger = logging.getLogger(__name__)


class AnalysisEngine:
    """Answers evolution questions and detects patterns and architectural decisions."""

    def __init__(
        self,
        store: Store,
        generator: TextGenerator,
        snapshot_collector: Callable[[Path], Snapshot] = collect_snapshot,
    ) -> None:
        self._store = store
        self._interpreter = ResponseInterpreter(generator)
        self._collect_snapshot = snapshot_collector

    def ask_evolution_question(
        self,
        repo_id: str,
        question: str,
        file_path: str | None = None,
        date_range: DateRange | None = None,
    ) -> EvolutionResult:
        logger.info(f"Analyzing evolution query: {question}")
        repo = self._get_repository(repo_id)

        commits = self._store.get_commits(repo_id, limit=EVOLUTION_FETCH_LIMIT)
        commit_paths = self._store.get_commit_paths(repo_id) if file_path else None
        payload = build_evolution_context(
            commits,
            question,
            self._snapshot(repo),
            file_path=file_path,
            date_range=date_range,
            commit_paths=commit_paths,
        )

        result = self._interpreter.interpret_evolution(question, serialize_context(payload))
        self._save(repo_id, "evolution", {"query": question, **result.to_dict()}, file_path)
        return result

    def detect_patterns(self, repo_id: str, file_path: str | None = None) -> list[PatternResult]:
        logger.info(f"Analyzing patterns for repository {repo_id}")
        repo = self._get_repository(repo_id)

        commits = self._store.get_commits(repo_id, limit=PATTERN_FETCH_LIMIT)
        commit_paths = self._store.get_commit_paths(repo_id) if file_path else None
        payload = build_pattern_context(
            commits, self._snapshot(repo), file_path=file_path, commit_paths=commit_paths
        )

        patterns = self._interpreter.interpret_patterns(serialize_context(payload))
        self._save(repo_id, "pattern", [p.to_dict() for p in patterns], file_path)
        return patterns

    def detect_architectural_decisions(self, repo_id: str) -> list[ArchitecturalDecision]:
        logger.info(f"Analyzing architectural decisions for repository {repo_id}")
        repo = self._get_repository(repo_id)

        commits = self._store.get_commits(repo_id, limit=ARCHITECTURE_FETCH_LIMIT)
        payload = build_architecture_context(commits, self._snapshot(repo))

        decisions = self._interpreter.interpret_architecture(serialize_context(payload))
        self._save(repo_id, "architecture", [d.to_dict() for d in decisions], None)
        return decisions

    def _get_repository(self, repo_id: str) -> Repository:
        repo = self._store.get_repository(repo_id)
        if repo is None:
            raise RepositoryNotFoundError(repo_id)
        return repo

    def _snapshot(self, repo: Repository) -> Snapshot:
        return self._collect_snapshot(Path(repo.path))

    def _save(self, repo_id: str, analysis_type: str, result, file_path: str | None) -> None:
        self._store.save_analysis(
            Analysis(
                id=str(uuid.uuid4()),
                repo_id=repo_id,
                analysis_type=analysis_type,
                result=json.dumps(result),
                file_path=file_path,
            )
        )
