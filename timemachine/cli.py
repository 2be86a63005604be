"""CLI entry point for timemachine."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import NoReturn

import typer
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from timemachine.analysis.context import DateRange
from timemachine.analysis.engine import AnalysisEngine
from timemachine.config import Config
from timemachine.exceptions import (
    GenerationError,
    IngestionInProgressError,
    RepositoryNotFoundError,
)
from timemachine.extraction.models import Commit
from timemachine.git.client import GitClient
from timemachine.ingestion import TASK_FAILED, IngestionService, TaskInfo, TaskRegistry
from timemachine.llm.client import AnthropicGenerator
from timemachine.storage.db import get_connection
from timemachine.storage.store import Store

app = typer.Typer(help="Ask how a codebase evolved, using its full commit history.")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False, markup=False)],
    )


def _resolve_db(db_path: str | None) -> Path:
    return Path(db_path) if db_path else Config.load().db_path


def _open_store(db_path: str | None, must_exist: bool = True) -> Store:
    db = _resolve_db(db_path)
    if must_exist and not db.exists():
        rprint(f"[red]Database not found at {db}. Run 'timemachine ingest' first.[/red]")
        raise typer.Exit(1)
    return Store(get_connection(db))


def _engine(store: Store) -> AnalysisEngine:
    config = Config.load()
    if not config.anthropic_api_key:
        rprint("[red]ANTHROPIC_API_KEY not set[/red]")
        raise typer.Exit(1)
    return AnalysisEngine(store, AnthropicGenerator.from_api_key(config.anthropic_api_key, config.model))


def _wait_for(registry: TaskRegistry, task: TaskInfo) -> TaskInfo:
    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}")) as progress:
        progress.add_task("Walking commit history...", total=None)
        return registry.wait(task.id)


def _print_walk_outcome(task: TaskInfo) -> None:
    if task.status == TASK_FAILED:
        rprint(f"[red]History walk failed: {task.error}[/red]")
        raise typer.Exit(1)
    report = task.result
    rprint(
        f"Stored [bold]{report.processed}[/bold] commits and "
        f"[bold]{report.file_changes}[/bold] file changes"
    )
    if report.skipped:
        rprint(f"[yellow]Skipped {len(report.skipped)} commit(s) whose diff could not be read[/yellow]")


@app.command()
def ingest(
    path: str = typer.Argument(help="Path to a local repository"),
    name: str = typer.Option(None, "--name", "-n", help="Display name (defaults to directory name)"),
    url: str = typer.Option(None, "--url", help="Origin URL of the repository"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Ingest a repository: record its metadata and walk its commit history."""
    location = Path(path)
    if not location.is_dir():
        rprint(f"[red]Not a directory: {location}[/red]")
        raise typer.Exit(1)

    config = Config.load()
    db = _resolve_db(db_path)
    store = _open_store(str(db), must_exist=False)
    registry = TaskRegistry()
    service = IngestionService(store, db, registry, max_commits=config.max_commits)

    try:
        result = service.begin_ingestion(name or location.resolve().name, location, url)
        repo = result.repository
        rprint(f"Repository [bold]{repo.name}[/bold] recorded as [cyan]{repo.id}[/cyan]")
        rprint(f"  Commits:   {repo.total_commits}")
        rprint(f"  Authors:   {', '.join(sorted(result.authors))}")
        rprint(f"  Languages: {', '.join(sorted(result.languages)) or '(none detected)'}")
        if result.first_commit_date:
            rprint(f"  History:   {result.first_commit_date} to {result.last_commit_date}")

        _print_walk_outcome(_wait_for(registry, result.task))
    finally:
        registry.shutdown()


@app.command()
def reingest(
    repo_id: str = typer.Argument(help="Repository id"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Walk an ingested repository's history again (commits are overwritten, not duplicated)."""
    config = Config.load()
    db = _resolve_db(db_path)
    store = _open_store(str(db))
    registry = TaskRegistry()
    service = IngestionService(store, db, registry, max_commits=config.max_commits)

    try:
        task = service.reingest(repo_id)
        _print_walk_outcome(_wait_for(registry, task))
    except RepositoryNotFoundError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except IngestionInProgressError as e:
        rprint(f"[yellow]{e}[/yellow]")
        raise typer.Exit(1)
    finally:
        registry.shutdown()


@app.command()
def repos(
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """List ingested repositories."""
    store = _open_store(db_path)
    table = Table("id", "name", "commits", "files", "languages", "last analyzed")
    for repo in store.list_repositories():
        table.add_row(
            repo.id,
            repo.name,
            str(repo.total_commits),
            str(repo.total_files),
            ", ".join(sorted(repo.languages)),
            repo.last_analyzed.isoformat(timespec="seconds") if repo.last_analyzed else "-",
        )
    rprint(table)


@app.command()
def commits(
    repo_id: str = typer.Argument(help="Repository id"),
    limit: int = typer.Option(20, help="Number of commits to show"),
    files: bool = typer.Option(False, "--files", help="Show changed files per commit"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Show stored commits, newest first."""
    store = _open_store(db_path)
    for commit in store.get_commits(repo_id, limit=limit):
        rprint(
            f"[cyan]{commit.short_hash}[/cyan] {commit.date} {commit.author}: {commit.message} "
            f"([green]+{commit.insertions}[/green] [red]-{commit.deletions}[/red], "
            f"{commit.files_changed} files)"
        )
        if files:
            for change in store.get_file_changes(commit.id):
                renamed = f" (from {change.old_path})" if change.old_path else ""
                rprint(f"    {change.change_type:<8} {change.file_path}{renamed}")


@app.command()
def ask(
    repo_id: str = typer.Argument(help="Repository id"),
    question: str = typer.Argument(help="Question about how the codebase evolved"),
    file: str = typer.Option(None, "--file", help="Only consider commits touching this path"),
    since: str = typer.Option(None, "--from", help="Earliest commit date (YYYY-MM-DD)"),
    until: str = typer.Option(None, "--to", help="Latest commit date (YYYY-MM-DD)"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Ask a free-form question about the repository's evolution."""
    if bool(since) != bool(until):
        rprint("[red]--from and --to must be given together[/red]")
        raise typer.Exit(1)
    try:
        date_range = DateRange(since, until) if since else None
    except ValueError as e:
        rprint(f"[red]Invalid date range: {e}[/red]")
        raise typer.Exit(1)

    store = _open_store(db_path)
    engine = _engine(store)
    try:
        result = engine.ask_evolution_question(repo_id, question, file, date_range)
    except (RepositoryNotFoundError, GenerationError) as e:
        _fail(e)

    if format == "json":
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return

    rprint(result.answer)
    if result.key_insights:
        rprint("\n[bold]Key insights:[/bold]")
        for insight in result.key_insights:
            rprint(f"  - {insight}")
    if result.patterns:
        rprint("\n[bold]Patterns:[/bold]")
        for pattern in result.patterns:
            rprint(f"  - {pattern}")
    if result.relevant_commits:
        rprint(f"\n[bold]Relevant commits:[/bold] {', '.join(result.relevant_commits)}")
    if result.business_context:
        rprint(f"\n[bold]Business context:[/bold] {result.business_context}")


@app.command()
def patterns(
    repo_id: str = typer.Argument(help="Repository id"),
    file: str = typer.Option(None, "--file", help="Scope the analysis to this path"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Detect design and architectural patterns introduced over time."""
    store = _open_store(db_path)
    engine = _engine(store)
    try:
        results = engine.detect_patterns(repo_id, file)
    except (RepositoryNotFoundError, GenerationError) as e:
        _fail(e)

    if format == "json":
        typer.echo(json.dumps([p.to_dict() for p in results], indent=2))
        return

    for p in results:
        rprint(f"[bold]{p.pattern}[/bold] [{p.impact}] introduced at {p.introduced_at or '?'}")
        if p.description:
            rprint(f"  {p.description}")
        for step in p.evolution:
            rprint(f"    - {step}")
        if p.reasoning:
            rprint(f"  [dim]{p.reasoning}[/dim]")


@app.command()
def architecture(
    repo_id: str = typer.Argument(help="Repository id"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Detect architectural decisions from major commits."""
    store = _open_store(db_path)
    engine = _engine(store)
    try:
        results = engine.detect_architectural_decisions(repo_id)
    except (RepositoryNotFoundError, GenerationError) as e:
        _fail(e)

    if format == "json":
        typer.echo(json.dumps([d.to_dict() for d in results], indent=2))
        return

    for d in results:
        rprint(f"[bold]{d.decision}[/bold] ({d.commit or 'no commit'})")
        if d.rationale:
            rprint(f"  Rationale: {d.rationale}")
        if d.impact:
            rprint(f"  Impact: {d.impact}")
        if d.alternatives:
            rprint(f"  Alternatives: {', '.join(d.alternatives)}")


@app.command()
def history(
    repo_id: str = typer.Argument(help="Repository id"),
    analysis_type: str = typer.Option(None, "--type", help="evolution, pattern or architecture"),
    limit: int = typer.Option(10, help="Number of analyses to show"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Show previous analysis results for a repository."""
    store = _open_store(db_path)
    for analysis in store.get_analyses(repo_id, analysis_type, limit=limit):
        scope = f" [{analysis.file_path}]" if analysis.file_path else ""
        rprint(f"[bold]{analysis.created_at.isoformat(timespec='seconds')}[/bold] {analysis.analysis_type}{scope}")
        rprint(json.dumps(json.loads(analysis.result), indent=2))


@app.command(name="file-history")
def file_history(
    path: str = typer.Argument(help="Path to a local repository"),
    file: str = typer.Argument(help="File path inside the repository"),
) -> None:
    """List the commits that touched a file, following renames."""
    for commit in GitClient(Path(path)).file_history(file):
        rprint(f"[cyan]{commit.hash[:8]}[/cyan] {commit.date} {commit.author_name}: {commit.subject}")


def _stored_commit(store: Store, repo_id: str, ref: str) -> Commit:
    commit = store.get_commit_by_hash(repo_id, ref)
    if commit is None:
        rprint(f"[red]No single stored commit matches {ref!r} in repository {repo_id}[/red]")
        raise typer.Exit(1)
    return commit


def _repository_git(store: Store, repo_id: str) -> GitClient:
    repo = store.get_repository(repo_id)
    if repo is None:
        _fail(RepositoryNotFoundError(f"Repository {repo_id} not found"))
    return GitClient(Path(repo.path))


@app.command()
def show(
    repo_id: str = typer.Argument(help="Repository id"),
    ref: str = typer.Argument(help="Commit hash or unique prefix"),
    file: str = typer.Argument(None, help="Show this file's content at the commit"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Show an ingested commit, or a file as it was at that commit."""
    store = _open_store(db_path)
    git = _repository_git(store, repo_id)
    commit = _stored_commit(store, repo_id, ref)

    output = git.show(commit.hash, file)
    if not output:
        target = f"{file} at {commit.short_hash}" if file else commit.short_hash
        rprint(f"[red]git could not show {target}[/red]")
        raise typer.Exit(1)
    typer.echo(output, nl=False)


@app.command()
def diff(
    repo_id: str = typer.Argument(help="Repository id"),
    from_ref: str = typer.Argument(help="Older commit hash or unique prefix"),
    to_ref: str = typer.Argument(help="Newer commit hash or unique prefix"),
    file: str = typer.Argument(None, help="Limit the diff to this path"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Diff two ingested commits, optionally for a single path."""
    store = _open_store(db_path)
    git = _repository_git(store, repo_id)
    older = _stored_commit(store, repo_id, from_ref)
    newer = _stored_commit(store, repo_id, to_ref)

    output = git.diff(older.hash, newer.hash, file)
    if not output:
        rprint(f"No differences between {older.short_hash} and {newer.short_hash}")
        return
    typer.echo(output, nl=False)


@app.command()
def stats(
    repo_id: str = typer.Argument(None, help="Repository id (omit for totals)"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Show statistics about ingested data."""
    store = _open_store(db_path)
    s = store.get_stats(repo_id)
    rprint("[bold]timemachine statistics:[/bold]")
    for key, value in s.items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}: {v}" for k, v in value.items()) or "none"
        rprint(f"  {key.replace('_', ' ').capitalize()}: {value}")


@app.command()
def serve(
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Start the MCP server (stdio transport)."""
    import asyncio
    import os

    if db_path:
        os.environ["TIMEMACHINE_DB_PATH"] = db_path

    from timemachine.mcp_server import main as mcp_main

    asyncio.run(mcp_main())


def _fail(error: Exception) -> NoReturn:
    if isinstance(error, GenerationError):
        rprint(f"[red]Analysis failed: {error}[/red]")
    else:
        rprint(f"[red]{error}[/red]")
    raise typer.Exit(1)


if __name__ == "__main__":
    app()
