"""Response interpretation: prompt templates, one generation call, tolerant parsing.

Model output is prose that usually contains JSON. Parsing takes the first
greedy bracket match ({...} for evolution, [...] for patterns and decisions),
falls back to the whole text, and if that still doesn't parse into the
expected shape, returns a labeled placeholder result instead of raising.
Callers always get a well-formed result; only failures of the generation
call itself (GenerationError) propagate.
"""

from __future__ import annotations

import json
import logging
import re

from timemachine.analysis.results import (
    ArchitecturalDecision,
    EvolutionResult,
    PatternResult,
)
from timemachine.llm.client import TextGenerator

logger = logging.getLogger(__name__)

EVOLUTION_MAX_TOKENS = 2000
PATTERN_MAX_TOKENS = 1500
ARCHITECTURE_MAX_TOKENS = 1800

EVOLUTION_ANSWER_PREVIEW = 500
RAW_RESPONSE_PREVIEW = 200

PARSE_ERROR_LABEL = "Analysis Error"

_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")

# json.loads raises RecursionError on deeply nested input
_PARSE_ERRORS = (ValueError, TypeError, AttributeError, RecursionError)

EVOLUTION_PROMPT = """\
You are an expert software architect analyzing a codebase's evolution. You have access \
to both commit history and actual source code.

User Question: "{question}"

Rich Context (commits, file contents, and repository structure):
{context}

Instructions:
- Analyze the actual code content to understand the repository's purpose and architecture
- Use commit messages and timestamps to understand how the codebase evolved
- Look for patterns, refactoring, architectural decisions, and feature development
- Connect technical changes to business decisions where possible
- Be specific and cite actual file names and commit hashes

IMPORTANT: You must respond with ONLY valid JSON. Do not include any text before or after the JSON.

Format your response as a JSON object with the following structure:
{{
  "answer": "Comprehensive answer based on actual code analysis and commit history",
  "relevantCommits": ["commit1", "commit2"],
  "keyInsights": ["specific insight about the codebase evolution", "another insight"],
  "patterns": ["architectural pattern observed", "development pattern identified"],
  "businessContext": "Inferred business reasoning behind technical decisions"
}}
"""

PATTERN_PROMPT = """\
You are an expert software architect. Analyze this codebase history and source snapshot \
to identify architectural and design patterns that were introduced over time.

Context (commits, file contents, and repository structure):
{context}

Identify patterns such as:
- Design patterns (MVC, Observer, Factory, etc.)
- Architectural patterns (Microservices, Layered, Event-driven, etc.)
- Code organization patterns
- Development practices
- Technology adoption patterns

For each pattern, provide:
- Pattern name and description
- When it was likely introduced (commit hash if identifiable)
- How it evolved over time
- Impact level (high/medium/low)
- Reasoning for introduction

IMPORTANT: You must respond with ONLY a valid JSON array. Do not include any text before or after the JSON.

Format as JSON array:
[
  {{
    "pattern": "Pattern name",
    "description": "What this pattern is",
    "introducedAt": "Commit hash or date",
    "evolution": ["Change 1", "Change 2"],
    "impact": "high|medium|low",
    "reasoning": "Why this pattern was likely adopted"
  }}
]
"""

ARCHITECTURE_PROMPT = """\
You are an expert software architect analyzing a codebase's architectural decisions. \
You have access to both major commit history AND actual source code content.

Rich Context (major commits, file contents, and repository structure):
{context}

Identify key architectural decisions by examining the code structure, commit messages \
about refactoring or framework adoption, how the codebase is organized, and which \
technologies were chosen. Look for decisions such as:
- Technology and framework choices (React vs Vue, REST vs GraphQL, etc.)
- Architectural patterns (MVC, microservices, monolith, etc.)
- Code organization decisions (folder structure, module boundaries)
- Database and storage decisions
- API design choices
- Security, performance and testing approaches

Only identify decisions that are actually evident in the codebase, and base them on \
the actual code content, not just commit messages.

IMPORTANT: You must respond with ONLY a valid JSON array. Do not include any text before or after the JSON.

Format as JSON array:
[
  {{
    "decision": "Specific architectural decision made",
    "rationale": "Evidence-based reasoning for why this decision was made",
    "commit": "Relevant commit hash",
    "impact": "Concrete impact on codebase architecture and development",
    "alternatives": ["Alternative approach 1", "Alternative approach 2"]
  }}
]
"""


def build_evolution_prompt(question: str, context: str) -> str:
    return EVOLUTION_PROMPT.format(question=question, context=context)


def build_pattern_prompt(context: str) -> str:
    return PATTERN_PROMPT.format(context=context)


def build_architecture_prompt(context: str) -> str:
    return ARCHITECTURE_PROMPT.format(context=context)


def extract_json_text(text: str, pattern: re.Pattern[str]) -> str:
    """First greedy bracket-delimited match, or the whole text if there is none."""
    match = pattern.search(text)
    return match.group(0) if match else text


def parse_evolution_response(text: str) -> EvolutionResult:
    try:
        data = json.loads(extract_json_text(text, _OBJECT_PATTERN))
        if not isinstance(data, dict):
            raise TypeError(f"Expected a JSON object, got {type(data).__name__}")
        return EvolutionResult.from_dict(data)
    except _PARSE_ERRORS as e:
        logger.warning(f"Failed to parse evolution response: {e}")
        return evolution_fallback(text)


def parse_pattern_response(text: str) -> list[PatternResult]:
    try:
        data = json.loads(extract_json_text(text, _ARRAY_PATTERN))
        if not isinstance(data, list):
            raise TypeError(f"Expected a JSON array, got {type(data).__name__}")
        return [PatternResult.from_dict(item) for item in data]
    except _PARSE_ERRORS as e:
        logger.warning(f"Failed to parse pattern response: {e}")
        return pattern_fallback(text)


def parse_architecture_response(text: str) -> list[ArchitecturalDecision]:
    try:
        data = json.loads(extract_json_text(text, _ARRAY_PATTERN))
        if not isinstance(data, list):
            raise TypeError(f"Expected a JSON array, got {type(data).__name__}")
        return [ArchitecturalDecision.from_dict(item) for item in data]
    except _PARSE_ERRORS as e:
        logger.warning(f"Failed to parse architecture response: {e}")
        return architecture_fallback(text)


def evolution_fallback(text: str) -> EvolutionResult:
    if len(text) > EVOLUTION_ANSWER_PREVIEW:
        answer = text[:EVOLUTION_ANSWER_PREVIEW] + "..."
    else:
        answer = text
    return EvolutionResult(
        answer=answer,
        relevant_commits=[],
        key_insights=["Unable to parse structured response"],
        patterns=["Raw response provided above"],
        business_context="Please try asking a more specific question",
    )


def pattern_fallback(text: str) -> list[PatternResult]:
    return [
        PatternResult(
            pattern=PARSE_ERROR_LABEL,
            description="Unable to parse pattern analysis response",
            introduced_at="Unknown",
            evolution=["Raw response: " + text[:RAW_RESPONSE_PREVIEW] + "..."],
            impact="low",
            reasoning="Please try the analysis again or check if there's actual commit history",
        )
    ]


def architecture_fallback(text: str) -> list[ArchitecturalDecision]:
    return [
        ArchitecturalDecision(
            decision=PARSE_ERROR_LABEL,
            rationale="Unable to parse architectural analysis response",
            commit="Unknown",
            impact="Raw response: " + text[:RAW_RESPONSE_PREVIEW] + "...",
            alternatives=["retry", "verify history exists"],
        )
    ]


class ResponseInterpreter:
    """Sends one prompt per analysis to the generator and parses the reply."""

    def __init__(self, generator: TextGenerator) -> None:
        self._generator = generator

    def interpret_evolution(self, question: str, context: str) -> EvolutionResult:
        text = self._generator.generate(
            build_evolution_prompt(question, context), EVOLUTION_MAX_TOKENS
        )
        return parse_evolution_response(text)

    def interpret_patterns(self, context: str) -> list[PatternResult]:
        text = self._generator.generate(build_pattern_prompt(context), PATTERN_MAX_TOKENS)
        return parse_pattern_response(text)

    def interpret_architecture(self, context: str) -> list[ArchitecturalDecision]:
        text = self._generator.generate(
            build_architecture_prompt(context), ARCHITECTURE_MAX_TOKENS
        )
        return parse_architecture_response(text)
