"""Notebook service — the transport-agnostic operations of the query engine.

Every public method returns a tagged ``Ok`` / ``Failure`` result. Engine code
underneath raises ``NotebookError`` subclasses; they are converted here and
never escape to the caller. Other exceptions are programming errors and
propagate.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import re
import uuid
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from notebookqa.config import NotebookConfig
from notebookqa.db.models import (
    REFRESHABLE_SOURCE_TYPES,
    VISUAL_SOURCE_TYPES,
    Notebook,
    QueryAnswer,
    Source,
)
from notebookqa.db.repository import Repository
from notebookqa.errors import (
    ContentTooLarge,
    NoSources,
    NotebookError,
    NotFound,
    ProviderUnavailable,
    UnsupportedOperation,
    ValidationError,
)
from notebookqa.ingest.chunker import TextChunker
from notebookqa.ingest.fetchers import SourceFetcher, default_fetchers
from notebookqa.ingest.indexer import ChunkIndex
from notebookqa.rag import prompts
from notebookqa.rag.cache import AnswerCache
from notebookqa.rag.feedback import FeedbackLoop
from notebookqa.rag.orchestrator import QueryOrchestrator
from notebookqa.rag.providers import Providers
from notebookqa.results import (
    CachedAnswerView,
    Failure,
    LearningMetrics,
    Ok,
    QueryOutcome,
    Result,
    Translation,
)

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 200
_READABLE_CHARS = re.compile(r"[a-zA-Z0-9 .,!?;:'\"-]")
_ENCODING_NOISE = re.compile(r"[\xa0-\xff]{5,}|[^\x00-\x7f]{10,}")


def _operation(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Wrap a service method so NotebookErrors become Failure results."""

    def _failure(exc: NotebookError) -> Failure:
        logger.info("%s failed: %s", fn.__name__, exc.message)
        return Failure(kind=exc.kind, message=exc.message)

    if inspect.iscoroutinefunction(fn):

        @functools.wraps(fn)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Result:
            try:
                return Ok(await fn(*args, **kwargs))
            except NotebookError as exc:
                return _failure(exc)

        return async_wrapper

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Result:
        try:
            return Ok(fn(*args, **kwargs))
        except NotebookError as exc:
            return _failure(exc)

    return wrapper


def _looks_binary(text: str) -> bool:
    """Heuristic for binary documents pasted as text (mostly unreadable characters)."""
    if len("".join(text.split())) < 100:
        return True
    ratio = len(_READABLE_CHARS.findall(text)) / len(text)
    return ratio < 0.6 or _ENCODING_NOISE.search(text) is not None


def _preview(qa: QueryAnswer) -> CachedAnswerView:
    answer = qa.answer
    if len(answer) > _PREVIEW_CHARS:
        answer = answer[:_PREVIEW_CHARS] + "..."
    return CachedAnswerView(
        id=qa.id,
        question=qa.question,
        answer_preview=answer,
        provenance=qa.provenance,
        usage_count=qa.usage_count,
        source_set_key=qa.source_set_key,
        created_at=qa.created_at,
    )


class NotebookService:
    """Facade over the repository, chunk index, answer cache and orchestrator.

    Args:
        repo:       Open Repository instance.
        providers:  External collaborators (any may be None).
        config:     Engine configuration.
        fetchers:   Source type → fetcher used by refresh_source. Defaults to
                    a fetcher for every refreshable type.
    """

    def __init__(
        self,
        repo: Repository,
        providers: Providers | None = None,
        config: NotebookConfig | None = None,
        fetchers: Mapping[str, SourceFetcher] | None = None,
    ) -> None:
        self._repo = repo
        self._providers = providers or Providers()
        self._config = config or NotebookConfig()
        self._fetchers = (
            dict(fetchers)
            if fetchers is not None
            else default_fetchers(self._config.fetch.timeout, self._config.fetch.max_chars)
        )

        chunker_cfg = self._config.chunker
        self._index = ChunkIndex(
            repo,
            self._providers.embedder,
            TextChunker(
                chunk_size=chunker_cfg.chunk_size,
                overlap=chunker_cfg.overlap,
                max_chunks=chunker_cfg.max_chunks,
                min_chunk_chars=chunker_cfg.min_chunk_chars,
            ),
            claim_ttl=self._config.indexing.claim_ttl_seconds,
        )
        self._cache = AnswerCache(repo, self._providers.embedder, self._config.cache)
        self._feedback = FeedbackLoop(repo, self._providers.embedder)
        self._orchestrator = QueryOrchestrator(
            self._providers, self._cache, self._index, self._config
        )

    # ------------------------------------------------------------------
    # Notebooks
    # ------------------------------------------------------------------

    @_operation
    def create_notebook(self, name: str, owner: str | None = None) -> Notebook:
        if not name or not name.strip():
            raise ValidationError("Notebook name is required")
        notebook = Notebook(id=str(uuid.uuid4()), name=name.strip(), owner=owner or "anonymous")
        self._repo.add_notebook(notebook)
        return self._notebook(notebook.id)

    @_operation
    def ensure_notebook(
        self, notebook_id: str, name: str | None = None, owner: str | None = None
    ) -> Notebook:
        """Create-or-fetch: returns the existing notebook untouched, or creates it with *notebook_id*."""
        return self._ensure_notebook(notebook_id, name, owner)

    @_operation
    def list_notebooks(self, owner: str | None = None) -> list[Notebook]:
        return self._repo.list_notebooks(owner)

    @_operation
    def delete_notebook(self, notebook_id: str) -> str:
        self._notebook(notebook_id)
        self._repo.delete_notebook(notebook_id)
        logger.info("Deleted notebook %s", notebook_id)
        return notebook_id

    @_operation
    def attach_managed_store(self, notebook_id: str, store_handle: str | None) -> str | None:
        """Bind (or with None, unbind) a provider-hosted retrieval store to a notebook."""
        self._notebook(notebook_id)
        self._repo.set_store_handle(notebook_id, store_handle)
        return store_handle

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    @_operation
    async def add_source(
        self,
        notebook_id: str,
        type: str,
        name: str,
        content: str = "",
        url: str | None = None,
        payload: bytes | None = None,
        media_type: str | None = None,
        owner: str | None = None,
    ) -> Source:
        """Store a source and index its chunks.

        The notebook is created first when *notebook_id* is unknown (see
        ensure_notebook).
        """
        self._validate_source(type, name, content, payload, media_type)
        self._ensure_notebook(notebook_id, None, owner)

        source = Source(
            id=str(uuid.uuid4()),
            notebook_id=notebook_id,
            type=type,
            name=name.strip(),
            content=content or "",
            url=url,
            media_type=media_type if payload is not None else None,
            payload=payload,
        )
        self._repo.add_source(source)
        logger.info("Added %s source %s (%d chars)", type, source.name, source.content_length)
        await self._index.index(source)
        return self._repo.get_source(source.id)

    @_operation
    def list_sources(self, notebook_id: str) -> list[Source]:
        self._notebook(notebook_id)
        return self._repo.list_sources(notebook_id)

    @_operation
    def set_source_selected(self, source_id: str, selected: bool) -> bool:
        self._source(source_id)
        self._repo.set_source_selected(source_id, selected)
        return selected

    @_operation
    def delete_source(self, notebook_id: str, source_id: str) -> str:
        self._notebook(notebook_id)
        self._source(source_id, notebook_id)
        self._repo.delete_source(source_id)
        return source_id

    @_operation
    async def refresh_source(self, notebook_id: str, source_id: str) -> Source:
        """Re-fetch an externally refreshable source and rebuild its chunks."""
        source = self._source(source_id, notebook_id)
        if source.type not in REFRESHABLE_SOURCE_TYPES:
            raise UnsupportedOperation(
                f"Only {', '.join(sorted(REFRESHABLE_SOURCE_TYPES))} sources can be refreshed"
            )
        if not source.url:
            raise ValidationError("Source has no URL to refresh from")
        fetcher = self._fetchers.get(source.type)
        if fetcher is None:
            raise ProviderUnavailable(f"No fetcher configured for {source.type} sources")

        try:
            fetched = await asyncio.to_thread(fetcher.fetch, source.url)
        except Exception as exc:
            raise ProviderUnavailable(f"Failed to refresh: {exc}") from exc
        if not fetched.content.strip():
            raise ProviderUnavailable("Could not fetch updated content")
        if len(fetched.content) > self._config.limits.max_content_chars:
            raise ContentTooLarge("Refreshed content exceeds the size limit")

        self._repo.update_source_content(source.id, fetched.name or source.name, fetched.content)
        refreshed = self._repo.get_source(source.id)
        await self._index.index(refreshed)
        return refreshed

    @_operation
    async def reindex_sources(self, notebook_id: str) -> int:
        """Rebuild the chunks of every source in the notebook. Returns how many were reindexed."""
        self._notebook(notebook_id)
        reindexed = 0
        for source in self._repo.list_sources(notebook_id):
            if await self._index.index(source) is not None:
                reindexed += 1
        return reindexed

    # ------------------------------------------------------------------
    # Querying and feedback
    # ------------------------------------------------------------------

    @_operation
    async def query(
        self, notebook_id: str, question: str, source_ids: Sequence[str] | None = None
    ) -> QueryOutcome:
        """Answer *question* from the given sources, or the notebook's selected ones."""
        if not question or not question.strip():
            raise ValidationError("Question is required")
        notebook = self._notebook(notebook_id)
        sources = self._repo.list_sources(notebook_id)
        if not sources:
            raise NoSources("No sources in notebook")

        if source_ids:
            wanted = set(source_ids)
            selected = [s for s in sources if s.id in wanted]
        else:
            selected = [s for s in sources if s.selected]
        if not selected:
            raise NoSources("No sources selected")

        return await self._orchestrator.answer(notebook, selected, question.strip())

    @_operation
    def submit_feedback(self, query_id: str, helpful: bool) -> QueryAnswer:
        return self._feedback.submit(query_id, helpful)

    @_operation
    async def update_answer(
        self, query_id: str, new_answer: str, source_ids: Sequence[str] | None = None
    ) -> QueryAnswer:
        if source_ids:
            qa = self._repo.get_query_answer(query_id)
            if qa is None:
                raise NotFound(f"Query not found: {query_id}")
            for source_id in source_ids:
                self._source(source_id, qa.notebook_id)
        return await self._feedback.correct(query_id, new_answer, source_ids)

    @_operation
    def list_cached_answers(self, notebook_id: str) -> list[CachedAnswerView]:
        """Helpful answers of the notebook, most used first."""
        self._notebook(notebook_id)
        return [_preview(qa) for qa in self._repo.helpful_answers(notebook_id)]

    @_operation
    def learning_metrics(self, notebook_id: str | None = None) -> LearningMetrics:
        if notebook_id is not None:
            self._notebook(notebook_id)
        stats = self._repo.answer_stats(notebook_id)
        total = stats["total"]
        return LearningMetrics(
            total_answers=total,
            helpful_answers=stats["helpful"],
            helpful_ratio=stats["helpful"] / total if total else 0.0,
            answers_with_embeddings=stats["embedded"],
            top_used=tuple(_preview(qa) for qa in self._repo.top_used_answers(notebook_id)),
        )

    # ------------------------------------------------------------------
    # Translation
    # ------------------------------------------------------------------

    @_operation
    async def translate_sources(
        self, source_ids: Sequence[str], target_language: str
    ) -> Translation:
        """Translate the combined content of *source_ids* into *target_language*."""
        if not source_ids:
            raise ValidationError("No sources selected")
        if not target_language or not target_language.strip():
            raise ValidationError("Target language is required")
        if self._providers.generator is None:
            raise ProviderUnavailable("Translation needs a generation model (generation.model)")

        language = target_language.strip()
        sources = [self._source(source_id) for source_id in dict.fromkeys(source_ids)]
        logger.info("Translating %d source(s) to %s", len(sources), language)
        result = await self._providers.generator.generate(
            prompts.translate_prompt(sources, language)
        )
        if result is None or not result.text.strip():
            raise ProviderUnavailable("Empty translation response")
        return Translation(
            content=result.text, source_count=len(sources), target_language=language
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _notebook(self, notebook_id: str) -> Notebook:
        notebook = self._repo.get_notebook(notebook_id)
        if notebook is None:
            raise NotFound(f"Notebook not found: {notebook_id}")
        return notebook

    def _source(self, source_id: str, notebook_id: str | None = None) -> Source:
        source = self._repo.get_source(source_id)
        if source is None or (notebook_id is not None and source.notebook_id != notebook_id):
            raise NotFound(f"Source not found: {source_id}")
        return source

    def _ensure_notebook(
        self, notebook_id: str, name: str | None, owner: str | None
    ) -> Notebook:
        if not notebook_id or not notebook_id.strip():
            raise ValidationError("Notebook id is required")
        existing = self._repo.get_notebook(notebook_id)
        if existing is not None:
            return existing
        self._repo.add_notebook(
            Notebook(id=notebook_id, name=name or notebook_id, owner=owner or "anonymous")
        )
        logger.info("Created notebook %s", notebook_id)
        return self._notebook(notebook_id)

    def _validate_source(
        self,
        type: str,
        name: str,
        content: str,
        payload: bytes | None,
        media_type: str | None,
    ) -> None:
        limits = self._config.limits
        if not type or not type.strip():
            raise ValidationError("Source type is required")
        if not name or not name.strip():
            raise ValidationError("Source name is required")
        if payload is not None:
            if type not in VISUAL_SOURCE_TYPES:
                raise ValidationError(
                    f"Binary payloads are only accepted for {', '.join(sorted(VISUAL_SOURCE_TYPES))} sources"
                )
            if not media_type:
                raise ValidationError("mediaType is required with a binary payload")
            if len(payload) > limits.max_payload_bytes:
                raise ContentTooLarge(
                    f"Payload is {len(payload)} bytes; the limit is {limits.max_payload_bytes}"
                )
        elif not content or not content.strip():
            raise ValidationError("Source content is required")
        if content and len(content) > limits.max_content_chars:
            raise ContentTooLarge(
                f"Content is {len(content)} characters; the limit is {limits.max_content_chars}"
            )
        if name.lower().endswith(".pdf") and payload is None and _looks_binary(content):
            raise ValidationError(
                "PDF files cannot be added as raw text. Extract the text first, "
                "or add the file through a document converter."
            )
