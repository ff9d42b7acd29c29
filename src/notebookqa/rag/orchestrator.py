"""Query orchestrator — the tiered fallback state machine.

1. Answer cache: helpful answers for the same source set, matched by
   embedding similarity (> 0.85) or, without embeddings, word overlap (> 0.70).
2. Generation tiers in order (see notebookqa.rag.tiers); the first answer wins
   and is logged as a new QueryAnswer with ``helpful = NULL``.

Tiers run strictly one after another. A tier that raises or times out is
treated as having declined; cancellation of the request propagates and
nothing is persisted for it.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from notebookqa.config import NotebookConfig
from notebookqa.db.models import Notebook, Provenance, Source
from notebookqa.errors import TiersExhausted
from notebookqa.ingest.indexer import ChunkIndex
from notebookqa.rag.cache import AnswerCache, source_set_key
from notebookqa.rag.providers import Providers
from notebookqa.rag.tiers import (
    InlineTier,
    LocalChunksTier,
    ManagedStoreTier,
    MockTier,
    QueryContext,
    Tier,
)
from notebookqa.results import QueryOutcome, SourceRef

logger = logging.getLogger(__name__)


class QueryOrchestrator:
    def __init__(
        self,
        providers: Providers,
        cache: AnswerCache,
        index: ChunkIndex,
        config: NotebookConfig | None = None,
        tiers: Sequence[Tier] | None = None,
    ) -> None:
        self._providers = providers
        self._cache = cache
        self._config = config or NotebookConfig()
        self._tiers: list[Tier] = list(tiers) if tiers is not None else [
            ManagedStoreTier(providers, self._config.managed_store.timeout),
            InlineTier(providers, cache, self._config),
            LocalChunksTier(providers, index, self._config),
            MockTier(providers),
        ]

    async def answer(
        self, notebook: Notebook, sources: Sequence[Source], question: str
    ) -> QueryOutcome:
        """Answer *question* from the selected *sources* of *notebook*.

        Raises:
            TiersExhausted: If no cache entry matched and every tier declined.
        """
        key = source_set_key(s.id for s in sources)
        embedding = await self._embed(question)
        refs = tuple(SourceRef(id=s.id, name=s.name, type=s.type) for s in sources)

        hit = await self._cache.lookup(notebook.id, question, key, embedding)
        if hit is not None:
            usage = self._cache.mark_used(hit.answer)
            return QueryOutcome(
                tier=Provenance.CACHE,
                answer=hit.answer.answer,
                query_id=hit.answer.id,
                confidence=0.95,
                sources_used=refs,
                usage_count=usage,
            )

        ctx = QueryContext(
            notebook=notebook,
            sources=list(sources),
            question=question,
            key=key,
            question_embedding=embedding,
        )
        reasons: dict[str, str] = {}
        for tier in self._tiers:
            if not tier.available(ctx):
                continue
            try:
                result = await tier.attempt(ctx)
            except Exception as exc:
                logger.warning("Tier %s failed: %s", tier.name, exc)
                reasons[tier.name] = str(exc) or type(exc).__name__
                continue
            if result is None:
                logger.info("Tier %s produced no answer", tier.name)
                reasons[tier.name] = "no answer"
                continue

            qa = self._cache.record(
                notebook.id, question, result.text, result.provenance, key, embedding
            )
            logger.info("Answered via %s (query %s)", result.provenance.value, qa.id)
            return QueryOutcome(
                tier=result.provenance,
                answer=result.text,
                query_id=qa.id,
                confidence=result.confidence,
                citations=result.citations,
                sources_used=refs,
                usage_count=0,
            )

        raise TiersExhausted(reasons)

    async def _embed(self, text: str) -> list[float] | None:
        if self._providers.embedder is None:
            return None
        try:
            return await self._providers.embedder.embed(text)
        except Exception as exc:
            logger.warning("Question embedding unavailable: %s", exc)
            return None
