"""notebookqa CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from notebookqa.cli._common import DEFAULT_DB, DbOption, console, open_service, setup_logging
from notebookqa.cli.ask import ask_cmd, reindex_cmd
from notebookqa.cli.learning import cached_cmd, edit_answer_cmd, feedback_cmd, metrics_cmd
from notebookqa.cli.notebook import notebook_app
from notebookqa.cli.source import source_app
from notebookqa.config import ensure_global_config


def _installed_version() -> str:
    try:
        return importlib.metadata.version("notebookqa")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"notebookqa {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="notebookqa",
    help=(
        "notebookqa — self-learning question answering over notebooks of sources.\n\n"
        "  notebookqa ask       Answer a question (cache → store → inline → chunks → mock).\n"
        "  notebookqa feedback  Rate an answer so similar questions can reuse it."
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
        bool, typer.Option("--verbose", "-v", help="Log tier decisions and provider calls.")
    ] = False,
) -> None:
    """notebookqa — self-learning question answering over notebooks of sources."""
    setup_logging(verbose)


app.add_typer(notebook_app, name="notebook")
app.add_typer(source_app, name="source")
app.command("ask")(ask_cmd)
app.command("reindex")(reindex_cmd)
app.command("feedback")(feedback_cmd)
app.command("edit-answer")(edit_answer_cmd)
app.command("cached")(cached_cmd)
app.command("metrics")(metrics_cmd)


@app.command("init")
def init_cmd(db: DbOption = DEFAULT_DB) -> None:
    """Create the global config (if missing) and an empty notebook database."""
    config_path = ensure_global_config()
    with open_service(db):
        pass
    console.print(f"[green]✓[/] Config:   {config_path}")
    console.print(f"[green]✓[/] Database: {db}")
    console.print("\n  Next:  notebookqa source add <notebook> --name ... --content ...")


@app.command("version")
def version_cmd() -> None:
    """Show the installed notebookqa version."""
    typer.echo(f"notebookqa {_installed_version()}")


if __name__ == "__main__":
    app()
