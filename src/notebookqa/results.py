"""Tagged operation results and answer outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar, Union

from notebookqa.db.models import Provenance

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful operation carrying *value*."""

    value: T
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Failure:
    """Failed operation; *kind* mirrors the raising NotebookError subclass."""

    kind: str
    message: str
    ok: bool = field(default=False, init=False)


Result = Union[Ok[T], Failure]


@dataclass(frozen=True)
class SourceRef:
    id: str
    name: str
    type: str


@dataclass(frozen=True)
class QueryOutcome:
    """The answer to one question, tagged with the tier that produced it.

    ``tier`` is the discriminant: ``cache``, ``managed-store``, ``inline``,
    ``visual``, ``local-chunks``, ``hybrid`` or ``mock``.
    """

    tier: Provenance
    answer: str
    query_id: str
    confidence: float | None = None
    citations: tuple[str, ...] = ()
    sources_used: tuple[SourceRef, ...] = ()
    usage_count: int | None = None

    @property
    def from_cache(self) -> bool:
        return self.tier is Provenance.CACHE


@dataclass(frozen=True)
class CachedAnswerView:
    id: str
    question: str
    answer_preview: str
    provenance: str
    usage_count: int
    source_set_key: str
    created_at: str | None


@dataclass(frozen=True)
class LearningMetrics:
    total_answers: int
    helpful_answers: int
    helpful_ratio: float
    answers_with_embeddings: int
    top_used: tuple[CachedAnswerView, ...] = ()


@dataclass(frozen=True)
class Translation:
    content: str
    source_count: int
    target_language: str
