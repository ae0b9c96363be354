"""docembed status — stored files, sections and token usage."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from docembed.cli.errors import err_no_db
from docembed.config import DocembedConfig, load_config
from docembed.db.connection import Database
from docembed.db.repository import Repository
from docembed.db.schema import initialize

console = Console()

_DEFAULT_DB = Path(".docembed.db")


def status_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the docembed database."),
    ] = _DEFAULT_DB,
    project: Annotated[
        str,
        typer.Option("--project", "-p", help="Project to report on."),
    ] = "default",
) -> None:
    """Show stored files and the project's token usage."""
    # Status works without docembed.yaml; a broken config only loses the allowance line.
    try:
        cfg = load_config()
    except Exception:
        cfg = DocembedConfig()

    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    conn = Database(db).connect()
    try:
        initialize(conn)
        repo = Repository(conn)
        files = repo.list_files(project_id=project)
        total_tokens = repo.sum_token_count(project)

        if not files:
            console.print(f"[yellow]No files stored for project '{project}'.[/]")
        else:
            table = Table(title=f"Project '{project}'", show_lines=False)
            table.add_column("Path")
            table.add_column("Title")
            table.add_column("Sections", justify="right")
            table.add_column("Tokens", justify="right")
            for f in files:
                table.add_row(
                    f.path,
                    f.title or "",
                    str(repo.count_sections(file_id=f.id)),
                    str(f.token_count),
                )
            console.print(table)
    finally:
        conn.close()

    allowance = cfg.quota.token_allowance
    limit = f" / {allowance}" if allowance is not None else " (unlimited)"
    console.print(f"Files: {len(files)}   Tokens used: {total_tokens}{limit}")
