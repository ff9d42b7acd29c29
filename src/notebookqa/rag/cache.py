"""Answer cache — reuse and learn from previously answered questions.

Only answers with ``helpful == true`` are ever served from the cache or
injected as few-shot examples, and a direct hit additionally requires the
caller's source-set key to equal the key the answer was grounded in.

Matching is embedding-first: candidates with a question embedding are
scored by cosine similarity, and the word-overlap heuristic is applied only
to candidates that have no embedding signal (no question vector, or the
candidate's vector could not be produced).
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from notebookqa.config import CacheCfg
from notebookqa.db.models import Provenance, QueryAnswer
from notebookqa.db.repository import Repository
from notebookqa.rag.providers import EmbeddingProvider
from notebookqa.rag.similarity import cosine_similarity, word_overlap

logger = logging.getLogger(__name__)


def source_set_key(source_ids: Iterable[str]) -> str:
    """Canonical identifier of a source selection: sorted, de-duplicated, comma-joined."""
    return ",".join(sorted(set(source_ids)))


@dataclass(frozen=True)
class CacheHit:
    answer: QueryAnswer
    similarity: float
    method: str  # "embedding" | "words"


@dataclass(frozen=True)
class FewShotExample:
    question: str
    answer: str
    similarity: float


class AnswerCache:
    """Read and write side of the QueryAnswer table used by the orchestrator."""

    def __init__(
        self,
        repo: Repository,
        embedder: EmbeddingProvider | None,
        config: CacheCfg | None = None,
    ) -> None:
        self._repo = repo
        self._embedder = embedder
        self._config = config or CacheCfg()

    async def lookup(
        self,
        notebook_id: str,
        question: str,
        key: str | None,
        question_embedding: Sequence[float] | None,
    ) -> CacheHit | None:
        """Return the best helpful answer for *question* under *key*, or None."""
        cfg = self._config
        candidates = self._repo.helpful_answers(notebook_id, key, limit=cfg.candidate_limit)
        if not candidates:
            return None

        best: QueryAnswer | None = None
        best_similarity = 0.0
        unscored: list[QueryAnswer] = []

        for candidate in candidates:
            embedding = (
                await self._embedding_for(candidate) if question_embedding is not None else None
            )
            if embedding is None:
                unscored.append(candidate)
                continue
            similarity = cosine_similarity(question_embedding, embedding)
            if similarity > cfg.similarity_threshold and similarity > best_similarity:
                best, best_similarity = candidate, similarity

        if best is not None:
            logger.info("Semantic cache hit: %.1f%% similarity", best_similarity * 100)
            return CacheHit(answer=best, similarity=best_similarity, method="embedding")

        for candidate in unscored:
            ratio = word_overlap(question, candidate.question)
            if ratio > cfg.word_overlap_threshold:
                logger.info("Word cache hit: %.1f%% overlap", ratio * 100)
                return CacheHit(answer=candidate, similarity=ratio, method="words")

        return None

    async def few_shot_examples(
        self,
        notebook_id: str,
        question_embedding: Sequence[float] | None,
        key: str | None,
    ) -> list[FewShotExample]:
        """Return up to ``few_shot_count`` helpful Q&A pairs similar to the question.

        Answers grounded in the same source set come first, then the most
        similar, then the most used.
        """
        if question_embedding is None:
            return []
        cfg = self._config
        pool = self._repo.helpful_answers(notebook_id, None, limit=cfg.few_shot_pool)

        ranked: list[tuple[bool, float, int, QueryAnswer]] = []
        for candidate in pool:
            embedding = await self._embedding_for(candidate)
            if embedding is None:
                continue
            similarity = cosine_similarity(question_embedding, embedding)
            if similarity > cfg.few_shot_threshold:
                same_key = key is not None and candidate.source_set_key == key
                ranked.append((same_key, similarity, candidate.usage_count, candidate))

        ranked.sort(key=lambda r: (r[0], r[1], r[2]), reverse=True)
        examples = [
            FewShotExample(question=qa.question, answer=qa.answer, similarity=sim)
            for _, sim, _, qa in ranked[: cfg.few_shot_count]
        ]
        if examples:
            logger.info(
                "Found %d few-shot examples (best %.1f%%)", len(examples), examples[0].similarity * 100
            )
        return examples

    def mark_used(self, answer: QueryAnswer) -> int:
        """Count a cache hit; returns the new usage count."""
        return self._repo.increment_usage(answer.id)

    def record(
        self,
        notebook_id: str,
        question: str,
        answer: str,
        provenance: Provenance,
        key: str,
        question_embedding: Sequence[float] | None,
    ) -> QueryAnswer:
        """Persist a freshly generated answer with no feedback yet."""
        qa = QueryAnswer(
            id=str(uuid.uuid4()),
            notebook_id=notebook_id,
            question=question,
            answer=answer,
            provenance=provenance.value,
            source_set_key=key,
            embedding=list(question_embedding) if question_embedding is not None else None,
        )
        self._repo.add_query_answer(qa)
        return qa

    async def _embedding_for(self, answer: QueryAnswer) -> list[float] | None:
        """Stored question embedding, generated and persisted on first use."""
        if answer.embedding is not None:
            return answer.embedding
        if self._embedder is None:
            return None
        embedding = await self._embedder.embed(answer.question)
        if embedding is not None:
            self._repo.set_answer_embedding(answer.id, embedding)
            answer.embedding = embedding
        return embedding
