"""Shared plumbing for the CLI commands: service construction, logging, result handling."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from notebookqa.cli.errors import err_config, err_from_failure, err_no_sources
from notebookqa.config import ConfigError, load_config
from notebookqa.db.connection import Database
from notebookqa.db.repository import Repository
from notebookqa.db.schema import initialize
from notebookqa.rag.providers import build_providers
from notebookqa.results import Failure, Result
from notebookqa.service import NotebookService

console = Console()

DEFAULT_DB = Path(".notebookqa.db")

DbOption = Annotated[Path, typer.Option("--db", help="Path to the notebook database.")]


def setup_logging(verbose: bool) -> None:
    """Route engine logs through rich on stderr; INFO with --verbose, WARNING otherwise."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@contextmanager
def open_service(db_path: Path) -> Iterator[NotebookService]:
    """Open *db_path* (creating and migrating it if needed) and yield a configured service."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    db = Database(db_path)
    conn = db.connect()
    try:
        initialize(conn)
        yield NotebookService(Repository(conn), build_providers(cfg), cfg)
    finally:
        conn.close()


def unwrap(result: Result, notebook_id: str | None = None) -> Any:
    """Return the value of an Ok result; print the failure and exit 1 otherwise."""
    if isinstance(result, Failure):
        if result.kind == "no_sources" and notebook_id is not None:
            console.print(err_no_sources(notebook_id))
        else:
            console.print(err_from_failure(result))
        raise typer.Exit(1)
    return result.value
