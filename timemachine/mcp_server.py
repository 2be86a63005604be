"""MCP server for timemachine.

Exposes ingested repositories and the three history analyses to AI coding
agents via the Model Context Protocol.

Usage:
    timemachine serve [--db-path /path/to/timemachine.db]
    python -m timemachine.mcp_server --db /path/to/timemachine.db
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

import mcp.server.stdio
import mcp.types as types
from mcp.server import Server

from timemachine.analysis.context import DateRange
from timemachine.analysis.engine import AnalysisEngine
from timemachine.config import Config
from timemachine.exceptions import GenerationError, RepositoryNotFoundError
from timemachine.llm.client import AnthropicGenerator
from timemachine.storage.db import get_connection
from timemachine.storage.store import Store

logger = logging.getLogger(__name__)


def _resolve_db_path() -> Path:
    """Find the database, checking CLI args, env var, then current directory."""
    for i, arg in enumerate(sys.argv):
        if arg == "--db" and i + 1 < len(sys.argv):
            return Path(sys.argv[i + 1])

    env_db = os.getenv("TIMEMACHINE_DB_PATH")
    if env_db:
        return Path(env_db)

    return Path("timemachine.db")


DB_PATH = _resolve_db_path()

server = Server("timemachine")


def _get_store() -> Store:
    if not DB_PATH.exists():
        raise FileNotFoundError(
            f"Database not found at {DB_PATH}. "
            "Run 'timemachine ingest' first, or set TIMEMACHINE_DB_PATH."
        )
    return Store(get_connection(DB_PATH))


def _get_engine(store: Store) -> AnalysisEngine:
    config = Config.load()
    if not config.anthropic_api_key:
        raise GenerationError("ANTHROPIC_API_KEY not set; analyses need a text-generation backend")
    return AnalysisEngine(store, AnthropicGenerator.from_api_key(config.anthropic_api_key, config.model))


_REPO_ID = {"type": "string", "description": "Repository id (see list_repositories)"}


@server.list_tools()
async def list_tools() -> list[types.Tool]:
    return [
        types.Tool(
            name="list_repositories",
            description="List ingested repositories with their ids, commit counts and languages.",
            inputSchema={"type": "object", "properties": {}},
        ),
        types.Tool(
            name="ask_evolution",
            description=(
                "Ask a free-form question about how a repository evolved, answered from its "
                "commit history and current source. Examples: 'why was the storage layer "
                "rewritten?', 'how did authentication change over time?'"
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "repo_id": _REPO_ID,
                    "question": {"type": "string", "description": "Your question"},
                    "file_path": {
                        "type": "string",
                        "description": "Optional: only consider commits touching this path",
                    },
                    "from_date": {"type": "string", "description": "Optional: YYYY-MM-DD"},
                    "to_date": {"type": "string", "description": "Optional: YYYY-MM-DD"},
                },
                "required": ["repo_id", "question"],
            },
        ),
        types.Tool(
            name="detect_patterns",
            description="Identify design and architectural patterns introduced over a repository's history.",
            inputSchema={
                "type": "object",
                "properties": {
                    "repo_id": _REPO_ID,
                    "file_path": {"type": "string", "description": "Optional: scope to this path"},
                },
                "required": ["repo_id"],
            },
        ),
        types.Tool(
            name="detect_architecture",
            description="Identify architectural decisions from a repository's major commits.",
            inputSchema={
                "type": "object",
                "properties": {"repo_id": _REPO_ID},
                "required": ["repo_id"],
            },
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
    try:
        return _dispatch_tool(name, arguments)
    except FileNotFoundError as e:
        return [types.TextContent(type="text", text=f"Setup required: {e}")]
    except RepositoryNotFoundError as e:
        return [types.TextContent(type="text", text=str(e))]
    except GenerationError as e:
        return [types.TextContent(type="text", text=f"Analysis failed: {e}")]
    except KeyError as e:
        return [types.TextContent(type="text", text=f"Invalid arguments: missing {e}")]
    except ValueError as e:
        return [types.TextContent(type="text", text=f"Invalid arguments: {e}")]


def _dispatch_tool(name: str, arguments: dict) -> list[types.TextContent]:
    """Route a tool call to the appropriate handler."""
    if name == "list_repositories":
        return _handle_list_repositories()
    elif name == "ask_evolution":
        return _handle_ask(arguments)
    elif name == "detect_patterns":
        return _handle_patterns(arguments["repo_id"], arguments.get("file_path"))
    elif name == "detect_architecture":
        return _handle_architecture(arguments["repo_id"])
    else:
        return [types.TextContent(type="text", text=f"Unknown tool: {name}")]


def _handle_list_repositories() -> list[types.TextContent]:
    store = _get_store()
    repos = [
        {
            "id": r.id,
            "name": r.name,
            "path": r.path,
            "total_commits": r.total_commits,
            "languages": sorted(r.languages),
            "last_analyzed": r.last_analyzed.isoformat() if r.last_analyzed else None,
        }
        for r in store.list_repositories()
    ]
    return [types.TextContent(type="text", text=json.dumps(repos, indent=2))]


def _handle_ask(arguments: dict) -> list[types.TextContent]:
    repo_id, question = arguments["repo_id"], arguments["question"]
    from_date, to_date = arguments.get("from_date"), arguments.get("to_date")
    if bool(from_date) != bool(to_date):
        raise ValueError("from_date and to_date must be given together")
    date_range = DateRange(from_date, to_date) if from_date else None

    store = _get_store()
    result = _get_engine(store).ask_evolution_question(
        repo_id,
        question,
        file_path=arguments.get("file_path"),
        date_range=date_range,
    )
    return [types.TextContent(type="text", text=json.dumps(result.to_dict(), indent=2))]


def _handle_patterns(repo_id: str, file_path: str | None) -> list[types.TextContent]:
    store = _get_store()
    patterns = _get_engine(store).detect_patterns(repo_id, file_path)
    return [types.TextContent(type="text", text=json.dumps([p.to_dict() for p in patterns], indent=2))]


def _handle_architecture(repo_id: str) -> list[types.TextContent]:
    store = _get_store()
    decisions = _get_engine(store).detect_architectural_decisions(repo_id)
    return [types.TextContent(type="text", text=json.dumps([d.to_dict() for d in decisions], indent=2))]


async def main() -> None:
    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


if __name__ == "__main__":
    import asyncio
    asyncio.run(main())
