"""notebookqa rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from notebookqa.cli.errors import err_from_failure
    console.print(err_from_failure(result))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from notebookqa.results import Failure


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'gemini'. Set:  export GEMINI_API_KEY=...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "perplexity": "PERPLEXITYAI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=..."
    )


def err_not_found(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  List what exists:  notebookqa notebook list  /  notebookqa source list <notebook>"
    )


def err_validation(message: str) -> str:
    return f"[red]Error:[/] {message}\n  Check the command arguments:  notebookqa --help"


def err_no_sources(notebook_id: str) -> str:
    """Question asked against a notebook with nothing to answer from."""
    return (
        f"[red]Error:[/] Notebook '{notebook_id}' has no selected sources.\n"
        f"  Add one:     notebookqa source add {notebook_id} --name ... --content ...\n"
        f"  Or select:   notebookqa source select <source-id>"
    )


def err_provider_unavailable(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  Check the configured models in notebookqa.yaml and that their API keys are exported."
    )


def err_unsupported(message: str) -> str:
    return f"[red]Error:[/] {message}"


def err_content_too_large(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  Split the content into several sources, or raise limits.max_content_chars in notebookqa.yaml."
    )


def err_config(message: str) -> str:
    return (
        f"[red]Config error:[/] {message}\n"
        "  Fix notebookqa.yaml or ~/.notebookqa/config.yaml."
    )


_BY_KIND = {
    "not_found": err_not_found,
    "validation": err_validation,
    "no_sources": err_validation,
    "provider_unavailable": err_provider_unavailable,
    "tiers_exhausted": err_provider_unavailable,
    "unsupported": err_unsupported,
    "content_too_large": err_content_too_large,
}


def err_from_failure(failure: Failure) -> str:
    """Render a service Failure as a rich-markup message."""
    builder = _BY_KIND.get(failure.kind, err_unsupported)
    return builder(escape(failure.message))
