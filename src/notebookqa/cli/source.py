"""notebookqa source CLI commands.

Commands:
  notebookqa source add <notebook> --name N (--content T | --file F | --image I)
  notebookqa source list <notebook>
  notebookqa source select <source-id> [--off]
  notebookqa source delete <notebook> <source-id>
  notebookqa source refresh <notebook> <source-id>
  notebookqa source translate <source-id>... --to LANG [--output FILE]
"""

from __future__ import annotations

import asyncio
import mimetypes
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.markup import escape
from rich.table import Table

from notebookqa.cli._common import DEFAULT_DB, DbOption, console, open_service, unwrap

source_app = typer.Typer(
    name="source",
    help="Manage notebook sources (add, list, select, delete, refresh, translate).",
    add_completion=False,
)


@source_app.command("add")
def source_add_cmd(
    notebook_id: Annotated[str, typer.Argument(help="Notebook id (created if it does not exist).")],
    name: Annotated[Optional[str], typer.Option("--name", "-n", help="Display name.")] = None,
    source_type: Annotated[str, typer.Option("--type", "-t", help="Source type label.")] = "text",
    content: Annotated[Optional[str], typer.Option("--content", "-c", help="Inline text.")] = None,
    file: Annotated[
        Optional[Path], typer.Option("--file", "-f", exists=True, dir_okay=False, help="Text file.")
    ] = None,
    image: Annotated[
        Optional[Path], typer.Option("--image", exists=True, dir_okay=False, help="Image file.")
    ] = None,
    url: Annotated[Optional[str], typer.Option("--url", help="Origin URL (enables refresh).")] = None,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Add a source to a notebook and index it."""
    payload: bytes | None = None
    media_type: str | None = None
    text = content or ""

    if image is not None:
        payload = image.read_bytes()
        media_type = mimetypes.guess_type(image.name)[0] or "application/octet-stream"
        source_type = "image"
        name = name or image.name
    elif file is not None:
        text = file.read_text(encoding="utf-8", errors="replace")
        name = name or file.name

    if not name:
        console.print("[red]Error:[/] --name is required unless --file or --image is given.")
        raise typer.Exit(1)

    with open_service(db) as service:
        source = unwrap(
            asyncio.run(
                service.add_source(
                    notebook_id,
                    source_type,
                    name,
                    text,
                    url=url,
                    payload=payload,
                    media_type=media_type,
                )
            )
        )
    console.print(
        f"[green]✓[/] Added [bold]{escape(source.name)}[/] ({source.type}, {source.content_length:,} chars)"
        f"  id={source.id}"
    )


@source_app.command("list")
def source_list_cmd(
    notebook_id: Annotated[str, typer.Argument(help="Notebook id.")],
    db: DbOption = DEFAULT_DB,
) -> None:
    """List the sources of a notebook with their selection state."""
    with open_service(db) as service:
        sources = unwrap(service.list_sources(notebook_id))

    if not sources:
        console.print(
            f"[yellow]Notebook {notebook_id} has no sources.[/]\n"
            f"  Run:  notebookqa source add {notebook_id} --name ... --content ..."
        )
        raise typer.Exit(0)

    table = Table(title="Sources", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Type")
    table.add_column("Size", justify="right")
    table.add_column("Selected")
    for source in sources:
        size = f"{len(source.payload):,} B" if source.is_visual else f"{source.content_length:,} ch"
        selected = "[green]✓[/]" if source.selected else "[dim]✗[/]"
        table.add_row(source.id, escape(source.name), source.type, size, selected)
    console.print(table)


@source_app.command("select")
def source_select_cmd(
    source_id: Annotated[str, typer.Argument(help="Source id.")],
    off: Annotated[bool, typer.Option("--off", help="Deselect instead.")] = False,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Include (or with --off, exclude) a source from default questions."""
    with open_service(db) as service:
        selected = unwrap(service.set_source_selected(source_id, not off))
    state = "selected" if selected else "deselected"
    console.print(f"[green]✓[/] Source {source_id} {state}")


@source_app.command("delete")
def source_delete_cmd(
    notebook_id: Annotated[str, typer.Argument(help="Notebook id.")],
    source_id: Annotated[str, typer.Argument(help="Source id.")],
    db: DbOption = DEFAULT_DB,
) -> None:
    """Delete a source and its chunks."""
    with open_service(db) as service:
        unwrap(service.delete_source(notebook_id, source_id))
    console.print(f"[green]✓[/] Deleted source {source_id}")


@source_app.command("refresh")
def source_refresh_cmd(
    notebook_id: Annotated[str, typer.Argument(help="Notebook id.")],
    source_id: Annotated[str, typer.Argument(help="Source id.")],
    db: DbOption = DEFAULT_DB,
) -> None:
    """Re-fetch a website or video-transcript source from its URL and re-index it."""
    with open_service(db) as service:
        source = unwrap(asyncio.run(service.refresh_source(notebook_id, source_id)))
    console.print(
        f"[green]✓[/] Refreshed [bold]{escape(source.name)}[/] ({source.content_length:,} chars)"
    )


@source_app.command("translate")
def source_translate_cmd(
    source_ids: Annotated[list[str], typer.Argument(help="Source ids to translate together.")],
    to: Annotated[str, typer.Option("--to", "-t", help="Target language, e.g. German.")],
    output: Annotated[
        Optional[Path], typer.Option("--output", "-o", help="Write the translation to this file.")
    ] = None,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Translate the content of one or more sources with the generation model."""
    with open_service(db) as service:
        translation = unwrap(asyncio.run(service.translate_sources(source_ids, to)))

    if output is not None:
        output.write_text(translation.content, encoding="utf-8")
        console.print(
            f"[green]✓[/] Translated {translation.source_count} source(s) to "
            f"{escape(translation.target_language)} → {output}"
        )
        return
    console.print(escape(translation.content))
