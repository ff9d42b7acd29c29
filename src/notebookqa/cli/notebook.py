"""notebookqa notebook CLI commands.

Commands:
  notebookqa notebook create <name>            — create an empty notebook
  notebookqa notebook list                     — show notebooks with source counts
  notebookqa notebook delete <id>              — delete a notebook and everything in it
"""

from __future__ import annotations

from typing import Annotated, Optional

import typer
from rich.markup import escape
from rich.table import Table

from notebookqa.cli._common import DEFAULT_DB, DbOption, console, open_service, unwrap

notebook_app = typer.Typer(
    name="notebook",
    help="Manage notebooks (create, list, delete).",
    add_completion=False,
)


@notebook_app.command("create")
def notebook_create_cmd(
    name: Annotated[str, typer.Argument(help="Notebook name.")],
    owner: Annotated[Optional[str], typer.Option("--owner", help="Owner id.")] = None,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Create a new notebook."""
    with open_service(db) as service:
        notebook = unwrap(service.create_notebook(name, owner))
    console.print(f"[green]✓[/] Created notebook [bold]{escape(notebook.name)}[/]  ({notebook.id})")


@notebook_app.command("list")
def notebook_list_cmd(
    owner: Annotated[Optional[str], typer.Option("--owner", help="Only this owner's notebooks.")] = None,
    db: DbOption = DEFAULT_DB,
) -> None:
    """List notebooks, newest first."""
    with open_service(db) as service:
        notebooks = unwrap(service.list_notebooks(owner))

    if not notebooks:
        console.print("[yellow]No notebooks yet.[/]\n  Run:  notebookqa notebook create <name>")
        raise typer.Exit(0)

    table = Table(title="Notebooks", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Owner")
    table.add_column("Sources", justify="right")
    for nb in notebooks:
        table.add_row(nb.id, escape(nb.name), nb.owner, str(nb.source_count))
    console.print(table)


@notebook_app.command("delete")
def notebook_delete_cmd(
    notebook_id: Annotated[str, typer.Argument(help="Notebook id.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Delete a notebook with its sources, chunks and cached answers."""
    if not yes and not typer.confirm(f"Delete notebook {notebook_id}?", default=False):
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(0)
    with open_service(db) as service:
        unwrap(service.delete_notebook(notebook_id))
    console.print(f"[green]✓[/] Deleted notebook {notebook_id}")

