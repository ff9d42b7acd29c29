"""notebookqa ask / reindex commands.

Usage:
  notebookqa ask trip-notes "What should I see in Paris?"
  notebookqa ask trip-notes "Opening hours?" --source <id> --source <id>
  notebookqa reindex trip-notes
"""

from __future__ import annotations

import asyncio
from typing import Annotated, Optional

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from notebookqa.cli._common import DEFAULT_DB, DbOption, console, open_service, unwrap
from notebookqa.results import QueryOutcome


def ask_cmd(
    notebook_id: Annotated[str, typer.Argument(help="Notebook id.")],
    question: Annotated[str, typer.Argument(help="Question to answer.")],
    source: Annotated[
        Optional[list[str]],
        typer.Option("--source", "-s", help="Restrict to these source ids (repeatable)."),
    ] = None,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Answer a question from the notebook's sources."""
    with open_service(db) as service:
        outcome = unwrap(asyncio.run(service.query(notebook_id, question, source)), notebook_id)
    _print_outcome(outcome)


def reindex_cmd(
    notebook_id: Annotated[str, typer.Argument(help="Notebook id.")],
    db: DbOption = DEFAULT_DB,
) -> None:
    """Rebuild chunks and embeddings for every source in a notebook."""
    with open_service(db) as service:
        count = unwrap(asyncio.run(service.reindex_sources(notebook_id)))
    console.print(f"[green]✓[/] Reindexed {count} source(s)")


def _print_outcome(outcome: QueryOutcome) -> None:
    subtitle = f"tier: {outcome.tier.value}"
    if outcome.confidence is not None:
        subtitle += f"  |  confidence: {outcome.confidence:.2f}"
    if outcome.from_cache:
        subtitle += f"  |  used {outcome.usage_count}×"
    console.print(Panel(Text(outcome.answer), title="[bold]Answer[/]", subtitle=subtitle, expand=False))

    if outcome.citations:
        console.print("  Citations: " + escape(", ".join(outcome.citations)))
    if outcome.sources_used:
        console.print("  Sources:   " + escape(", ".join(s.name for s in outcome.sources_used)))
    console.print(f"  Query id:  [dim]{outcome.query_id}[/]")
    console.print(
        f"\n  Rate it:   notebookqa feedback {outcome.query_id} --helpful | --not-helpful"
    )
