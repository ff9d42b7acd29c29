"""Feedback loop — user signal that promotes, demotes or corrects cached answers.

Writes are last-writer-wins; no concurrency token is used.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from notebookqa.db.models import Provenance, QueryAnswer
from notebookqa.db.repository import Repository
from notebookqa.errors import NotFound, ValidationError
from notebookqa.rag.cache import source_set_key
from notebookqa.rag.providers import EmbeddingProvider

logger = logging.getLogger(__name__)


class FeedbackLoop:
    def __init__(self, repo: Repository, embedder: EmbeddingProvider | None) -> None:
        self._repo = repo
        self._embedder = embedder

    def submit(self, query_id: str, helpful: bool) -> QueryAnswer:
        """Record a helpful / not-helpful verdict.

        Helpful answers are promoted and become eligible for cache hits and
        few-shot injection; unhelpful ones are excluded from both for good.

        Raises:
            NotFound: If *query_id* does not exist.
        """
        qa = self._get(query_id)
        provenance = Provenance.PROMOTED.value if helpful else qa.provenance
        self._repo.record_feedback(query_id, helpful, provenance)
        logger.info(
            "Feedback recorded: %s marked %s", query_id, "helpful" if helpful else "not helpful"
        )
        qa.helpful = helpful
        qa.provenance = provenance
        return qa

    async def correct(
        self,
        query_id: str,
        new_answer: str,
        source_ids: Sequence[str] | None = None,
    ) -> QueryAnswer:
        """Replace an answer with a user correction and trust it fully.

        The question embedding is regenerated (the stored one is kept when the
        provider is unavailable), the answer is marked helpful and re-tagged
        ``user-edited``. A non-empty *source_ids* re-binds the source-set key.

        Raises:
            ValidationError: If *new_answer* is blank.
            NotFound: If *query_id* does not exist.
        """
        if not new_answer or not new_answer.strip():
            raise ValidationError("newAnswer is required")
        qa = self._get(query_id)

        embedding = await self._embedder.embed(qa.question) if self._embedder else None
        key = source_set_key(source_ids) if source_ids else qa.source_set_key
        self._repo.rewrite_answer(
            query_id, new_answer, embedding, key, Provenance.USER_EDITED.value
        )
        logger.info("Answer %s edited by user (sources: %s)", query_id, key or "unbound")

        qa.answer = new_answer
        qa.helpful = True
        qa.provenance = Provenance.USER_EDITED.value
        qa.source_set_key = key
        if embedding is not None:
            qa.embedding = embedding
        return qa

    def _get(self, query_id: str) -> QueryAnswer:
        qa = self._repo.get_query_answer(query_id)
        if qa is None:
            raise NotFound(f"Query not found: {query_id}")
        return qa
