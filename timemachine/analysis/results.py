"""Typed result shapes returned by the analysis modes.

Field names on the wire (to_dict/from_dict) are the camelCase keys the
prompts ask the model to produce.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class EvolutionResult:
    answer: str
    relevant_commits: list[str] = field(default_factory=list)  # short hashes
    key_insights: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    business_context: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> EvolutionResult:
        return cls(
            answer=data.get("answer", ""),
            relevant_commits=_as_list(data.get("relevantCommits")),
            key_insights=_as_list(data.get("keyInsights")),
            patterns=_as_list(data.get("patterns")),
            business_context=data.get("businessContext"),
        )

    def to_dict(self) -> dict:
        d = {
            "answer": self.answer,
            "relevantCommits": self.relevant_commits,
            "keyInsights": self.key_insights,
            "patterns": self.patterns,
        }
        if self.business_context is not None:
            d["businessContext"] = self.business_context
        return d


@dataclass
class PatternResult:
    pattern: str
    description: str = ""
    introduced_at: str = ""  # commit hash or date
    evolution: list[str] = field(default_factory=list)
    impact: str = "medium"  # "high" | "medium" | "low"
    reasoning: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> PatternResult:
        return cls(
            pattern=data.get("pattern", ""),
            description=data.get("description", ""),
            introduced_at=data.get("introducedAt", ""),
            evolution=_as_list(data.get("evolution")),
            impact=data.get("impact", "medium"),
            reasoning=data.get("reasoning", ""),
        )

    def to_dict(self) -> dict:
        return {
            "pattern": self.pattern,
            "description": self.description,
            "introducedAt": self.introduced_at,
            "evolution": self.evolution,
            "impact": self.impact,
            "reasoning": self.reasoning,
        }


@dataclass
class ArchitecturalDecision:
    decision: str
    rationale: str = ""
    commit: str = ""
    impact: str = ""
    alternatives: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> ArchitecturalDecision:
        return cls(
            decision=data.get("decision", ""),
            rationale=data.get("rationale", ""),
            commit=data.get("commit", ""),
            impact=data.get("impact", ""),
            alternatives=_as_list(data.get("alternatives")),
        )

    def to_dict(self) -> dict:
        return {
            "decision": self.decision,
            "rationale": self.rationale,
            "commit": self.commit,
            "impact": self.impact,
            "alternatives": self.alternatives,
        }


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        return [value]
    raise TypeError(f"Expected a list, got {type(value).__name__}")
