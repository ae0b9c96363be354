"""docembed train — embed a local docs tree into the database.

The first Ctrl-C requests cancellation: no new files are started, files in
flight finish and are stored.
"""

from __future__ import annotations

import concurrent.futures
import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from docembed.cli.errors import (
    err_config,
    err_no_api_key,
    err_quota_exceeded,
    err_source_not_found,
)
from docembed.config import ConfigError, load_config
from docembed.db.connection import Database
from docembed.db.repository import Repository
from docembed.db.schema import initialize
from docembed.ingest.embeddings import EmbeddingGenerator
from docembed.ingest.errors import API_ERROR_ID_CONTENT_TOKEN_QUOTA_EXCEEDED
from docembed.ingest.orchestrator import (
    Orchestrator,
    TrainingState,
    TrainingStatus,
    TrainingSummary,
)
from docembed.ingest.sources import DirectorySource
from docembed.ingest.tokens import CharsPerTokenEstimator

console = Console()

_DEFAULT_DB = ".docembed.db"
_MAX_LISTED_ERRORS = 20


def train_cmd(
    source: Annotated[
        Path,
        typer.Option("--source", "-s", help="Directory of documents to train on."),
    ],
    project: Annotated[
        str,
        typer.Option("--project", "-p", help="Project the trained files belong to."),
    ] = "default",
    source_id: Annotated[
        str | None,
        typer.Option("--source-id", help="Stable source id (defaults to the directory path)."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the docembed database (created if missing)."),
    ] = Path(_DEFAULT_DB),
    include: Annotated[
        list[str] | None,
        typer.Option("--include", help="Glob pattern to include (repeatable)."),
    ] = None,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", help="Glob pattern to exclude (repeatable)."),
    ] = None,
    workers: Annotated[
        int | None,
        typer.Option("--workers", "-w", min=1, help="Number of parallel workers."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="Re-embed files even if unchanged."),
    ] = False,
) -> None:
    """Embed the documents under --source, skipping unchanged files."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    if include:
        cfg.training.include = list(include)
    if exclude:
        cfg.training.exclude = list(exclude)

    try:
        files = DirectorySource(source)
    except NotADirectoryError:
        console.print(err_source_not_found(str(source)))
        raise typer.Exit(1)

    conn = _open_db(db)
    repo = Repository(conn, dimensions=cfg.embedding.dimensions)
    embedder = EmbeddingGenerator(
        cfg.embedding, estimator=CharsPerTokenEstimator(cfg.chunking.chars_per_token)
    )

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            transient=True,
            console=console,
        ) as prog:
            task = prog.add_task("Scanning…", total=None)

            def on_state_change(status: TrainingStatus) -> None:
                if status.state is TrainingState.LOADING:
                    prog.update(
                        task,
                        completed=status.progress,
                        total=status.total,
                        description=status.filename or "",
                    )
                elif status.state is TrainingState.CANCEL_REQUESTED:
                    prog.update(task, description="Cancelling, finishing files in flight…")

            orchestrator = Orchestrator(
                repo,
                embedder,
                cfg,
                project_id=project,
                max_workers=workers,
                on_state_change=on_state_change,
            )
            summary = _run(orchestrator, source_id or str(source.resolve()), files, force)
    except OSError as exc:
        provider = cfg.embedding.model.split("/")[0] if "/" in cfg.embedding.model else cfg.embedding.model
        console.print(
            err_no_api_key(provider) if "API key" in str(exc) else f"[red]Error:[/] {escape(str(exc))}"
        )
        raise typer.Exit(1)
    finally:
        used_tokens = repo.sum_token_count(project)
        conn.close()

    _print_summary(summary)

    quota_errors = [e for e in summary.errors if e.id == API_ERROR_ID_CONTENT_TOKEN_QUOTA_EXCEEDED]
    if quota_errors:
        console.print(
            err_quota_exceeded(
                cfg.quota.token_allowance or 0, used_tokens, quota_errors[0].attempted_tokens
            )
        )
    if summary.errors:
        raise typer.Exit(1)


def _run(
    orchestrator: Orchestrator, source_id: str, files: DirectorySource, force: bool
) -> TrainingSummary:
    """Train on a helper thread so Ctrl-C in the main thread can request cancellation."""
    job = orchestrator.new_job()
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as runner:
        future = runner.submit(orchestrator.train, source_id, files, job, force)
        while True:
            try:
                return future.result(timeout=0.2)
            except concurrent.futures.TimeoutError:
                continue
            except KeyboardInterrupt:
                if job.token.cancelled:
                    raise
                console.print("[yellow]Cancelling…[/] files in flight will finish.")
                job.request_cancel()


def _print_summary(summary: TrainingSummary) -> None:
    status = "[yellow]Cancelled[/]" if summary.cancelled else "[green]✓[/]"
    console.print(
        f"{status} {summary.processed} files processed, "
        f"{summary.skipped} unchanged, {summary.token_count} tokens"
    )
    for warning in summary.warnings:
        console.print(f"  [dim]{escape(warning)}[/]")
    if summary.errors:
        console.print(f"[red]✗ {len(summary.errors)} errors:[/]")
        for error in summary.errors[:_MAX_LISTED_ERRORS]:
            console.print(f"  [red]•[/] {escape(error.path)}: {escape(error.message)}")
        if len(summary.errors) > _MAX_LISTED_ERRORS:
            console.print(f"  … and {len(summary.errors) - _MAX_LISTED_ERRORS} more")


def _open_db(path: Path) -> sqlite3.Connection:
    db = Database(path)
    conn = db.connect()
    initialize(conn)
    return conn
