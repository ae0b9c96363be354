"""docembed CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from docembed.cli.status import status_cmd
from docembed.cli.train import train_cmd
from docembed.log import configure_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("docembed")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"docembed {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="docembed",
    help=(
        "docembed — document ingestion and embedding pipeline.\n\n"
        "  docembed train   Embed a docs directory (Markdown, MDX, Markdoc, RST, HTML, text).\n"
        "  docembed status  Show stored files and token usage."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """docembed — document ingestion and embedding pipeline."""
    configure_logging(verbose=verbose)


app.command("train")(train_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed docembed version."""
    typer.echo(f"docembed {_installed_version()}")


if __name__ == "__main__":
    app()
