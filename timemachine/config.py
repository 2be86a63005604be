"""Configuration loading for timemachine.

Config sources (in priority order):
1. Explicit arguments passed to functions
2. Environment variables (ANTHROPIC_API_KEY, TIMEMACHINE_DB_PATH, etc.)
3. .env file in current directory
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DB_PATH = Path("timemachine.db")
DEFAULT_MODEL = "claude-3-5-haiku-20241022"
DEFAULT_MAX_COMMITS = 1000


@dataclass
class Config:
    anthropic_api_key: str = ""
    db_path: Path = DEFAULT_DB_PATH
    model: str = DEFAULT_MODEL
    max_commits: int = DEFAULT_MAX_COMMITS  # history walk limit per ingestion

    @classmethod
    def load(cls) -> Config:
        return cls(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            db_path=Path(os.getenv("TIMEMACHINE_DB_PATH", str(DEFAULT_DB_PATH))),
            model=os.getenv("TIMEMACHINE_MODEL", DEFAULT_MODEL),
            max_commits=_int_env("TIMEMACHINE_MAX_COMMITS", DEFAULT_MAX_COMMITS),
        )

    def validate(self) -> list[str]:
        """Return a list of missing config issues."""
        issues = []
        if not self.anthropic_api_key:
            issues.append("Anthropic API key not set (ANTHROPIC_API_KEY)")
        if self.max_commits <= 0:
            issues.append("Max commits must be positive (TIMEMACHINE_MAX_COMMITS)")
        return issues


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default
