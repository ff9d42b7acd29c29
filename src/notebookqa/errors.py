"""Exception taxonomy for the notebook query engine.

Core code raises these; ``NotebookService`` turns them into ``Failure``
results at the operation boundary.
"""

from __future__ import annotations


class NotebookError(Exception):
    """Base class for every structured failure the engine reports."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(NotebookError):
    """A notebook, source, or query id does not exist."""

    kind = "not_found"


class ValidationError(NotebookError):
    """A required field is missing or malformed."""

    kind = "validation"


class ProviderUnavailable(NotebookError):
    """An embedding, generation, or fetch provider failed or is not configured."""

    kind = "provider_unavailable"


class TiersExhausted(ProviderUnavailable):
    """Every generation tier declined the question."""

    kind = "tiers_exhausted"

    def __init__(self, reasons: dict[str, str]) -> None:
        detail = "; ".join(f"{tier}: {why}" for tier, why in reasons.items()) or "no tier available"
        super().__init__(f"All answer tiers failed ({detail})")
        self.reasons = reasons


class UnsupportedOperation(NotebookError):
    """The operation is not defined for this kind of source."""

    kind = "unsupported"


class ContentTooLarge(NotebookError):
    """A payload exceeds the configured size limits."""

    kind = "content_too_large"


class NoSources(ValidationError):
    """A question was asked against a notebook with no selected sources."""

    kind = "no_sources"
