"""Chunk index — chunk, embed and persist sources; rank chunks against a question.

For each source:
1. Split its content with ``TextChunker``.
2. Embed every chunk; a failed embedding is stored as NULL and the chunk
   stays reachable through the FTS5 keyword index.
3. Replace the source's chunks wholesale via ``Repository.replace_chunks()``.

Concurrent backfills of the same source are serialised through an indexing
claim row; a caller that loses the claim skips the source instead of
writing a duplicate chunk set.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from notebookqa.db.models import ScoredChunk, Source
from notebookqa.db.repository import Repository
from notebookqa.ingest.chunker import TextChunker
from notebookqa.rag.providers import EmbeddingProvider

logger = logging.getLogger(__name__)


class ChunkIndex:
    """Per-source chunk store with cosine-similarity search.

    Args:
        repo:       Open Repository instance.
        embedder:   Embedding provider, or None to store chunks without vectors.
        chunker:    Window settings used to split content.
        claim_ttl:  Seconds after which an unreleased indexing claim is taken over.
    """

    def __init__(
        self,
        repo: Repository,
        embedder: EmbeddingProvider | None,
        chunker: TextChunker | None = None,
        claim_ttl: float = 300.0,
    ) -> None:
        self._repo = repo
        self._embedder = embedder
        self._chunker = chunker or TextChunker()
        self._claim_ttl = claim_ttl

    async def index(self, source: Source) -> int | None:
        """Rebuild the chunks of *source*. Returns the chunk count, or None if skipped."""
        if not self._repo.claim_indexing(source.id, self._claim_ttl):
            logger.info("Skipping %s: already being indexed", source.name)
            return None
        try:
            chunks = self._chunker.chunk(source.id, source.content)
            embedded = 0
            for chunk in chunks:
                if self._embedder is not None:
                    chunk.embedding = await self._embedder.embed(chunk.text)
                    if chunk.embedding is not None:
                        embedded += 1
            self._repo.replace_chunks(source.id, chunks)
            logger.info(
                "Indexed %s: %d chunks (%d embedded)", source.name, len(chunks), embedded
            )
            return len(chunks)
        finally:
            self._repo.release_indexing(source.id)

    async def backfill(self, sources: Sequence[Source]) -> int:
        """Index every source in *sources* that has no chunks yet. Returns how many were indexed."""
        indexed = 0
        for source in sources:
            if self._repo.count_chunks_by_source(source.id) == 0:
                logger.info("No chunks for %s, backfilling", source.name)
                if await self.index(source) is not None:
                    indexed += 1
        return indexed

    def search(
        self,
        source_ids: Sequence[str],
        query_embedding: Sequence[float],
        top_k: int = 5,
    ) -> list[ScoredChunk]:
        """Rank the embedded chunks of *source_ids* by cosine similarity, best first."""
        top = self._repo.search_vec(source_ids, query_embedding, limit=top_k)
        if top:
            logger.debug(
                "Found %d relevant chunks (top similarity %.3f)", len(top), top[0].similarity
            )
        return top

    def keyword_search(
        self, question: str, source_ids: Sequence[str], top_k: int = 5
    ) -> list[ScoredChunk]:
        """BM25 fallback over all chunks of *source_ids*, embedded or not."""
        return self._repo.search_fts(question, source_ids, limit=top_k)
