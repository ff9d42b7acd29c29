"""Feedback and learning commands: feedback, edit-answer, cached, metrics."""

from __future__ import annotations

import asyncio
from typing import Annotated, Optional

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from notebookqa.cli._common import DEFAULT_DB, DbOption, console, open_service, unwrap
from notebookqa.results import CachedAnswerView


def feedback_cmd(
    query_id: Annotated[str, typer.Argument(help="Query id printed by `notebookqa ask`.")],
    helpful: Annotated[
        bool, typer.Option("--helpful/--not-helpful", help="Rate the answer.")
    ] = True,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Mark an answer helpful (reusable from the cache) or not."""
    with open_service(db) as service:
        qa = unwrap(service.submit_feedback(query_id, helpful))
    if helpful:
        console.print(f"[green]✓[/] Answer {qa.id} marked helpful; similar questions will reuse it.")
    else:
        console.print(f"[yellow]✓[/] Answer {qa.id} marked not helpful; it will not be reused.")


def edit_answer_cmd(
    query_id: Annotated[str, typer.Argument(help="Query id.")],
    answer: Annotated[str, typer.Argument(help="Corrected answer text.")],
    source: Annotated[
        Optional[list[str]],
        typer.Option("--source", "-s", help="Re-bind the answer to these source ids."),
    ] = None,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Replace an answer with a corrected one (stored as helpful)."""
    with open_service(db) as service:
        qa = unwrap(asyncio.run(service.update_answer(query_id, answer, source)))
    console.print(f"[green]✓[/] Answer {qa.id} updated ({qa.provenance})")


def cached_cmd(
    notebook_id: Annotated[str, typer.Argument(help="Notebook id.")],
    db: DbOption = DEFAULT_DB,
) -> None:
    """List the helpful answers the cache can serve."""
    with open_service(db) as service:
        answers = unwrap(service.list_cached_answers(notebook_id))

    if not answers:
        console.print("[yellow]No cached answers yet.[/]  Rate answers with: notebookqa feedback")
        raise typer.Exit(0)
    console.print(_answers_table("Cached answers", answers))


def metrics_cmd(
    notebook_id: Annotated[
        Optional[str], typer.Argument(help="Notebook id; omit for all notebooks.")
    ] = None,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Show how much the engine has learned from feedback."""
    with open_service(db) as service:
        metrics = unwrap(service.learning_metrics(notebook_id))

    lines = [
        f"Answers:          {metrics.total_answers}",
        f"Helpful:          {metrics.helpful_answers}  ({metrics.helpful_ratio:.0%})",
        f"With embeddings:  {metrics.answers_with_embeddings}",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Learning[/]", expand=False))
    if metrics.top_used:
        console.print(_answers_table("Most used", metrics.top_used))


def _answers_table(title: str, answers: tuple[CachedAnswerView, ...] | list[CachedAnswerView]) -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Question", style="bold")
    table.add_column("Answer")
    table.add_column("Via")
    table.add_column("Used", justify="right")
    for view in answers:
        table.add_row(
            view.id,
            escape(view.question),
            escape(view.answer_preview),
            view.provenance,
            str(view.usage_count),
        )
    return table
