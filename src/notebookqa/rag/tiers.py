"""Generation tiers, tried in order until one produces an answer.

  managed-store  → provider-hosted retrieval store bound to the notebook
  inline/visual  → every selected source inlined in one prompt (multimodal
                   when a source carries an image), with few-shot examples
  local-chunks   → top-k similar chunks (backfilled on demand), optionally
                   blended with live web search ("hybrid")
  mock           → placeholder when no generation model is configured

A tier returns None to decline; provider exceptions are handled by the
orchestrator as a decline too.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from notebookqa.config import NotebookConfig
from notebookqa.db.models import Notebook, Provenance, Source
from notebookqa.errors import ProviderUnavailable
from notebookqa.ingest.indexer import ChunkIndex
from notebookqa.rag import prompts
from notebookqa.rag.cache import AnswerCache
from notebookqa.rag.providers import Providers

logger = logging.getLogger(__name__)


@dataclass
class QueryContext:
    """Everything a tier needs to answer one question."""

    notebook: Notebook
    sources: list[Source]
    question: str
    key: str
    question_embedding: list[float] | None = None

    @property
    def source_ids(self) -> list[str]:
        return [s.id for s in self.sources]


@dataclass(frozen=True)
class TierAnswer:
    provenance: Provenance
    text: str
    confidence: float | None
    citations: tuple[str, ...] = field(default_factory=tuple)


class Tier(Protocol):
    name: str

    def available(self, ctx: QueryContext) -> bool: ...

    async def attempt(self, ctx: QueryContext) -> TierAnswer | None: ...


class ManagedStoreTier:
    name = "managed-store"

    def __init__(self, providers: Providers, timeout: float = 60.0) -> None:
        self._providers = providers
        self._timeout = timeout

    def available(self, ctx: QueryContext) -> bool:
        return self._providers.managed_store is not None and bool(ctx.notebook.store_handle)

    async def attempt(self, ctx: QueryContext) -> TierAnswer | None:
        logger.info("Querying managed store %s", ctx.notebook.store_handle)
        try:
            result = await asyncio.wait_for(
                self._providers.managed_store.query(ctx.notebook.store_handle, ctx.question),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailable(
                f"Managed store did not answer within {self._timeout:g}s"
            ) from exc
        if result is None or not result.text.strip():
            return None
        return TierAnswer(Provenance.MANAGED_STORE, result.text, 0.95, result.citations)


class InlineTier:
    """All selected sources in one prompt; switches to multimodal when images are present."""

    name = "inline"

    def __init__(self, providers: Providers, cache: AnswerCache, config: NotebookConfig) -> None:
        self._providers = providers
        self._cache = cache
        self._config = config

    def available(self, ctx: QueryContext) -> bool:
        return self._providers.generator is not None and self._config.generation.inline

    async def attempt(self, ctx: QueryContext) -> TierAnswer | None:
        retrieval = self._config.retrieval
        examples = await self._cache.few_shot_examples(
            ctx.notebook.id, ctx.question_embedding, ctx.key
        )
        if any(s.is_visual for s in ctx.sources):
            logger.info(
                "Visual query with %d sources (%d images)",
                len(ctx.sources),
                sum(s.is_visual for s in ctx.sources),
            )
            prompt = prompts.visual_parts(
                ctx.question,
                ctx.sources,
                examples,
                max_images=retrieval.max_images,
                max_chars_per_source=retrieval.max_chars_per_source,
            )
            provenance = Provenance.VISUAL
        else:
            logger.info(
                "Inline query with %d sources, %d few-shot examples", len(ctx.sources), len(examples)
            )
            prompt = prompts.inline_prompt(
                ctx.question,
                ctx.sources,
                examples,
                max_chars_per_source=retrieval.max_chars_per_source,
            )
            provenance = Provenance.INLINE

        result = await self._providers.generator.generate(prompt)
        if result is None:
            return None
        return TierAnswer(provenance, result.text, 0.90, result.citations)


class LocalChunksTier:
    """Grounded prompt from the most similar chunks, with optional live-search blending."""

    name = "local-chunks"

    def __init__(self, providers: Providers, index: ChunkIndex, config: NotebookConfig) -> None:
        self._providers = providers
        self._index = index
        self._config = config

    def available(self, ctx: QueryContext) -> bool:
        return self._providers.generator is not None

    async def attempt(self, ctx: QueryContext) -> TierAnswer | None:
        retrieval = self._config.retrieval
        context = await self._chunk_context(ctx)
        if len(context) < retrieval.min_context_chars:
            logger.info("Chunk context too small (%d chars), using source excerpts", len(context))
            context = prompts.excerpt_context(ctx.sources, retrieval.excerpt_chars)

        live_text, live_citations = "", ()
        wants_live = len(context) < retrieval.live_search_below_chars or prompts.needs_current_info(
            ctx.question
        )
        if wants_live and self._providers.live_search is not None:
            logger.info("Blending live search (context %d chars)", len(context))
            try:
                live = await self._providers.live_search.search(ctx.question, context)
            except Exception as exc:
                logger.warning("Live search failed: %s", exc)
                live = None
            if live is not None:
                live_text, live_citations = live.text, live.citations

        result = await self._providers.generator.generate(
            prompts.grounded_prompt(ctx.question, context, live_text)
        )
        if result is None:
            return None
        if live_text:
            citations = tuple(dict.fromkeys(result.citations + live_citations))
            return TierAnswer(Provenance.HYBRID, result.text, 0.85, citations)
        return TierAnswer(Provenance.LOCAL_CHUNKS, result.text, 0.75, result.citations)

    async def _chunk_context(self, ctx: QueryContext) -> str:
        top_k = self._config.retrieval.top_k
        if ctx.question_embedding is not None:
            chunks = self._index.search(ctx.source_ids, ctx.question_embedding, top_k)
            if not chunks and await self._index.backfill(ctx.sources):
                chunks = self._index.search(ctx.source_ids, ctx.question_embedding, top_k)
            if chunks:
                logger.info("Using %d semantically relevant chunks", len(chunks))
                return prompts.chunk_context(chunks)

        await self._index.backfill(ctx.sources)
        chunks = self._index.keyword_search(ctx.question, ctx.source_ids, top_k)
        if chunks:
            logger.info("Using %d keyword-matched chunks", len(chunks))
        return prompts.chunk_context(chunks)


class MockTier:
    """Terminal placeholder used when no generation model is configured; never fails."""

    name = "mock"

    def __init__(self, providers: Providers) -> None:
        self._providers = providers

    def available(self, ctx: QueryContext) -> bool:
        return self._providers.generator is None

    async def attempt(self, ctx: QueryContext) -> TierAnswer | None:
        text = (
            "[MOCK] Configure a generation model for real answers. "
            f"Notebook has {ctx.notebook.source_count} source(s)."
        )
        return TierAnswer(Provenance.MOCK, text, None)
