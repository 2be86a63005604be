"""Error taxonomy for timemachine."""

from __future__ import annotations


class TimeMachineError(Exception):
    """Base class for all timemachine errors."""


class RepositoryNotFoundError(TimeMachineError):
    """The referenced repository id is not in the store."""

    def __init__(self, repo_id: str) -> None:
        super().__init__(f"Repository not found: {repo_id}")
        self.repo_id = repo_id


class GitCommandError(TimeMachineError):
    """A git invocation failed or returned unusable output."""


class GenerationError(TimeMachineError):
    """The text-generation service call itself failed (network, auth, quota)."""


class IngestionInProgressError(TimeMachineError):
    """A history walk for this repository is still running."""

    def __init__(self, repo_id: str) -> None:
        super().__init__(f"Ingestion already running for repository {repo_id}")
        self.repo_id = repo_id
