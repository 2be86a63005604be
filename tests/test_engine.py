"""Tests for timemachine.analysis.engine."""

from __future__ import annotations

import json
import uuid
from pathlib import Path

import pytest

from conftest import FakeGenerator
from timemachine.analysis.context import DateRange
from timemachine.analysis.engine import AnalysisEngine
from timemachine.exceptions import GenerationError, RepositoryNotFoundError
from timemachine.extraction.models import FileChange, Repository
from timemachine.extraction.snapshot import Snapshot
from timemachine.storage.store import Store

ARCHITECTURE_REPLY = json.dumps(
    [
        {
            "decision": "Adopt layered architecture",
            "rationale": "separation of concerns",
            "commit": "abcd1234",
            "impact": "improved testability",
            "alternatives": ["monolith"],
        }
    ]
)


class FailingGenerator:
    def generate(self, prompt: str, max_tokens: int) -> str:
        raise GenerationError("Text generation failed: connection reset")


def _engine(store: Store, generator, snapshot: Snapshot | None = None) -> tuple[AnalysisEngine, list]:
    seen_paths: list[Path] = []

    def collector(root: Path) -> Snapshot:
        seen_paths.append(root)
        return snapshot or Snapshot()

    return AnalysisEngine(store, generator, snapshot_collector=collector), seen_paths


class TestUnknownRepository:
    @pytest.mark.parametrize(
        "call",
        [
            lambda e: e.ask_evolution_question("missing", "why?"),
            lambda e: e.detect_patterns("missing"),
            lambda e: e.detect_architectural_decisions("missing"),
        ],
    )
    def test_raises_not_found(self, store: Store, call):
        generator = FakeGenerator("[]")
        engine, _ = _engine(store, generator)
        with pytest.raises(RepositoryNotFoundError, match="Repository not found: missing"):
            call(engine)
        assert generator.calls == []


class TestEvolution:
    def test_answers_and_records_analysis(
        self, populated_store: Store, sample_repository: Repository, sample_snapshot: Snapshot
    ):
        generator = FakeGenerator('{"answer": "It was refactored.", "relevantCommits": ["bbbbbbbb"]}')
        engine, seen_paths = _engine(populated_store, generator, sample_snapshot)

        result = engine.ask_evolution_question(sample_repository.id, "How did storage evolve?")

        assert result.answer == "It was refactored."
        assert seen_paths == [Path(sample_repository.path)]
        prompt, _ = generator.calls[0]
        assert "Refactor storage layer" in prompt
        assert "README.md" in prompt

        analyses = populated_store.get_analyses(sample_repository.id, "evolution")
        assert len(analyses) == 1
        stored = json.loads(analyses[0].result)
        assert stored["query"] == "How did storage evolve?"
        assert stored["answer"] == "It was refactored."

    def test_date_range_and_path_scope(
        self, populated_store: Store, sample_repository: Repository
    ):
        newest = populated_store.get_commits(sample_repository.id)[0]
        populated_store.save_commit(
            newest,
            [FileChange(id=str(uuid.uuid4()), commit_id="", file_path="src/db.py", change_type="modified")],
        )
        generator = FakeGenerator('{"answer": "ok"}')
        engine, _ = _engine(populated_store, generator)

        engine.ask_evolution_question(
            sample_repository.id,
            "q",
            file_path="src",
            date_range=DateRange("2023-01-01", "2023-12-31"),
        )

        prompt, _ = generator.calls[0]
        assert '"filePath": "src"' in prompt
        assert "Refactor storage layer" in prompt
        assert "Initial commit" not in prompt
        analysis = populated_store.get_analyses(sample_repository.id, "evolution")[0]
        assert analysis.file_path == "src"

    def test_generation_failure_propagates(
        self, populated_store: Store, sample_repository: Repository
    ):
        engine, _ = _engine(populated_store, FailingGenerator())
        with pytest.raises(GenerationError):
            engine.ask_evolution_question(sample_repository.id, "why?")
        assert populated_store.get_analyses(sample_repository.id) == []


class TestPatterns:
    def test_fallback_result_is_recorded(
        self, populated_store: Store, sample_repository: Repository
    ):
        engine, _ = _engine(populated_store, FakeGenerator("Sorry, nothing structured."))

        patterns = engine.detect_patterns(sample_repository.id)

        assert patterns[0].pattern == "Analysis Error"
        stored = json.loads(populated_store.get_analyses(sample_repository.id, "pattern")[0].result)
        assert stored[0]["pattern"] == "Analysis Error"
        assert stored[0]["impact"] == "low"


class TestArchitecture:
    def test_decisions_recorded(self, populated_store: Store, sample_repository: Repository):
        generator = FakeGenerator(ARCHITECTURE_REPLY)
        engine, _ = _engine(populated_store, generator)

        decisions = engine.detect_architectural_decisions(sample_repository.id)

        assert [d.decision for d in decisions] == ["Adopt layered architecture"]
        prompt, max_tokens = generator.calls[0]
        assert max_tokens == 1800
        assert '"totalMajorCommits": 1' in prompt
        analysis = populated_store.get_analyses(sample_repository.id, "architecture")[0]
        assert analysis.file_path is None
        assert json.loads(analysis.result) == json.loads(ARCHITECTURE_REPLY)

    def test_empty_history_still_answers(self, store: Store, sample_repository: Repository):
        store.save_repository(sample_repository)
        engine, _ = _engine(store, FakeGenerator("[]"))
        assert engine.detect_architectural_decisions(sample_repository.id) == []
