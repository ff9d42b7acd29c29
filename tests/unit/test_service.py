"""Tests for NotebookService — the Ok/Failure operation boundary."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from notebookqa.config import NotebookConfig
from notebookqa.db.models import Provenance
from notebookqa.ingest.fetchers import FetchedContent
from notebookqa.rag.providers import Generation, Providers
from notebookqa.results import Failure, Ok
from notebookqa.service import NotebookService

PARIS = (
    "Paris is the capital of France. The Eiffel Tower and the Louvre museum are "
    "its most visited sights; the Musee d'Orsay holds impressionist paintings. "
) * 5


@pytest.fixture
def service(repo):
    return NotebookService(repo, Providers(), NotebookConfig(), fetchers={})


def _add(service, notebook_id="trip-notes", name="Paris Guide", content=PARIS, **kw):
    result = asyncio.run(service.add_source(notebook_id, kw.pop("type", "text"), name, content, **kw))
    assert isinstance(result, Ok), result
    return result.value


def _ask(service, question="What should I see in Paris?", notebook_id="trip-notes", ids=None):
    return asyncio.run(service.query(notebook_id, question, ids))


# ------------------------------------------------------------------
# End-to-end learning scenario
# ------------------------------------------------------------------


def test_mock_answer_feedback_then_cache_hit(service):
    _add(service)

    first = _ask(service)
    assert first.ok
    assert first.value.tier is Provenance.MOCK
    assert "1 source(s)" in first.value.answer

    assert service.submit_feedback(first.value.query_id, True).ok

    second = _ask(service)
    assert second.value.tier is Provenance.CACHE
    assert second.value.query_id == first.value.query_id
    assert second.value.usage_count == 1


def test_unhelpful_answer_is_never_reused(service):
    _add(service)
    first = _ask(service)
    service.submit_feedback(first.value.query_id, False)
    second = _ask(service)
    assert second.value.tier is Provenance.MOCK
    assert second.value.query_id != first.value.query_id


def test_cache_isolated_per_source_selection(service):
    paris = _add(service)
    london = _add(service, name="London Guide", content="London has the British Museum. " * 10)
    first = _ask(service, ids=[paris.id])
    service.submit_feedback(first.value.query_id, True)

    both = _ask(service, ids=[paris.id, london.id])
    assert both.value.tier is Provenance.MOCK

    again = _ask(service, ids=[paris.id])
    assert again.value.tier is Provenance.CACHE


def test_edited_answer_served_from_cache(service):
    _add(service)
    first = _ask(service)
    edited = asyncio.run(service.update_answer(first.value.query_id, "See the Louvre first."))
    assert edited.value.provenance == "user-edited"

    again = _ask(service)
    assert again.value.tier is Provenance.CACHE
    assert again.value.answer == "See the Louvre first."


# ------------------------------------------------------------------
# Notebooks
# ------------------------------------------------------------------


def test_create_and_list_notebooks(service):
    created = service.create_notebook("Trip notes", owner="alice")
    assert created.ok
    listed = service.list_notebooks("alice").value
    assert [nb.name for nb in listed] == ["Trip notes"]


def test_create_notebook_requires_name(service):
    result = service.create_notebook("  ")
    assert result == Failure(kind="validation", message="Notebook name is required")


def test_ensure_notebook_is_create_or_fetch(service):
    first = service.ensure_notebook("trip-notes", name="Trip notes").value
    second = service.ensure_notebook("trip-notes", name="Other name").value
    assert first.id == second.id == "trip-notes"
    assert second.name == "Trip notes"


def test_add_source_creates_missing_notebook(service, repo):
    _add(service, notebook_id="new-notebook")
    assert repo.get_notebook("new-notebook").source_count == 1


def test_delete_notebook(service):
    _add(service)
    assert service.delete_notebook("trip-notes").ok
    assert service.list_sources("trip-notes").kind == "not_found"


def test_attach_managed_store(service, repo):
    service.ensure_notebook("trip-notes")
    assert service.attach_managed_store("trip-notes", "store-9").value == "store-9"
    assert repo.get_notebook("trip-notes").store_handle == "store-9"


def test_attach_managed_store_unknown_notebook(service):
    assert service.attach_managed_store("missing", "store").kind == "not_found"


# ------------------------------------------------------------------
# Sources
# ------------------------------------------------------------------


def test_add_source_indexes_chunks(service, repo):
    source = _add(service)
    assert repo.count_chunks_by_source(source.id) > 0


@pytest.mark.parametrize(
    "kwargs,kind",
    [
        ({"name": "", "content": PARIS}, "validation"),
        ({"name": "Empty", "content": "   "}, "validation"),
        ({"name": "Huge", "content": "x" * 101}, "content_too_large"),
    ],
)
def test_add_source_validation(repo, kwargs, kind):
    config = NotebookConfig()
    config.limits.max_content_chars = 100
    service = NotebookService(repo, Providers(), config, fetchers={})
    result = asyncio.run(service.add_source("trip-notes", "text", **kwargs))
    assert result.kind == kind


def test_add_source_rejects_payload_for_text_type(service):
    result = asyncio.run(
        service.add_source("nb", "text", "x.png", payload=b"png", media_type="image/png")
    )
    assert result.kind == "validation"


def test_add_image_source(service):
    source = _add(service, name="map.png", content="", type="image", payload=b"png", media_type="image/png")
    assert source.is_visual
    assert source.media_type == "image/png"


def test_add_source_rejects_binary_pdf_text(service):
    garbage = "%PDF-1.4 \x01\x02 ÿþýüû ÀÁÂÃÄ ÈÉÊË " * 20
    result = asyncio.run(service.add_source("nb", "document", "report.pdf", garbage))
    assert result.kind == "validation"
    assert "PDF" in result.message


def test_add_source_rejects_long_non_ascii_run(service):
    mangled = PARIS + "\u0413\u0404\u0402\u0403\u0453\u0409\u0459\u040a\u045a\u040c\u045c"
    result = asyncio.run(service.add_source("nb", "document", "report.pdf", mangled))
    assert result.kind == "validation"


def test_add_source_accepts_readable_pdf_text(service):
    assert asyncio.run(service.add_source("nb", "document", "report.pdf", PARIS)).ok


def test_deselected_sources_excluded_by_default(service):
    paris = _add(service)
    _add(service, name="Notes", content="Misc notes about packing lists. " * 5)
    service.set_source_selected(paris.id, False)
    outcome = _ask(service).value
    assert [s.name for s in outcome.sources_used] == ["Notes"]


def test_delete_source_scoped_to_notebook(service):
    source = _add(service)
    service.ensure_notebook("other")
    assert service.delete_source("other", source.id).kind == "not_found"
    assert service.delete_source("trip-notes", source.id).ok
    assert service.list_sources("trip-notes").value == []


# ------------------------------------------------------------------
# Query validation
# ------------------------------------------------------------------


def test_query_unknown_notebook(service):
    assert _ask(service, notebook_id="missing").kind == "not_found"


def test_query_without_sources(service):
    service.ensure_notebook("trip-notes")
    result = _ask(service)
    assert result == Failure(kind="no_sources", message="No sources in notebook")


def test_query_with_no_selected_sources(service):
    source = _add(service)
    service.set_source_selected(source.id, False)
    assert _ask(service) == Failure(kind="no_sources", message="No sources selected")


def test_query_with_unknown_source_ids(service):
    _add(service)
    assert _ask(service, ids=["nope"]).kind == "no_sources"


def test_query_blank_question(service):
    _add(service)
    assert _ask(service, question=" ").kind == "validation"


def test_tiers_exhausted_reported_as_failure(repo):
    gen = AsyncMock()
    gen.generate.return_value = None
    service = NotebookService(repo, Providers(generator=gen), NotebookConfig(), fetchers={})
    _add(service)
    result = _ask(service)
    assert result.kind == "tiers_exhausted"
    assert "inline: no answer" in result.message


def test_generated_answer_through_service(repo):
    gen = AsyncMock()
    gen.generate.return_value = Generation(text="The Louvre [Paris Guide].", citations=("Paris Guide",))
    service = NotebookService(repo, Providers(generator=gen), NotebookConfig(), fetchers={})
    _add(service)
    outcome = _ask(service).value
    assert outcome.tier is Provenance.INLINE
    assert outcome.citations == ("Paris Guide",)


# ------------------------------------------------------------------
# Refresh
# ------------------------------------------------------------------


def test_refresh_rejects_non_refreshable_type(service):
    source = _add(service)
    assert asyncio.run(service.refresh_source("trip-notes", source.id)).kind == "unsupported"


def test_refresh_requires_url(service):
    source = _add(service, type="website")
    assert asyncio.run(service.refresh_source("trip-notes", source.id)).kind == "validation"


def test_refresh_without_fetcher(service):
    source = _add(service, type="video-transcript", url="https://video.example/1")
    result = asyncio.run(service.refresh_source("trip-notes", source.id))
    assert result.kind == "provider_unavailable"


def test_refresh_video_transcript_with_default_fetchers(repo):
    service = NotebookService(repo, Providers(), NotebookConfig())
    source = _add(
        service,
        name="Louvre Tour",
        type="video-transcript",
        url="https://www.youtube.com/watch?v=louvre01",
    )
    api = MagicMock()
    api.return_value.fetch.return_value = [
        SimpleNamespace(text="Welcome to the Louvre, home of the Mona Lisa."),
        SimpleNamespace(text="The museum opens at nine every day except Tuesday. " * 3),
    ]
    with patch("notebookqa.ingest.fetchers.YouTubeTranscriptApi", api):
        result = asyncio.run(service.refresh_source("trip-notes", source.id))

    assert isinstance(result, Ok), result
    assert result.value.name == "Louvre Tour"
    assert result.value.content.startswith("Welcome to the Louvre")
    api.return_value.fetch.assert_called_once_with("louvre01", languages=["en"])


def test_refresh_website_updates_and_reindexes(repo):
    fetcher = MagicMock()
    fetcher.fetch.return_value = FetchedContent(
        name="Louvre Hours", content="The Louvre opens at nine every day except Tuesday. " * 5
    )
    service = NotebookService(repo, Providers(), NotebookConfig(), fetchers={"website": fetcher})
    source = _add(service, type="website", url="https://louvre.example")

    refreshed = asyncio.run(service.refresh_source("trip-notes", source.id)).value
    assert refreshed.name == "Louvre Hours"
    assert "Tuesday" in refreshed.content
    assert all("Tuesday" in c.text for c in repo.list_chunks(source.id))
    fetcher.fetch.assert_called_once_with("https://louvre.example")


def test_refresh_fetch_error_is_provider_unavailable(repo):
    fetcher = MagicMock()
    fetcher.fetch.side_effect = RuntimeError("connection reset")
    service = NotebookService(repo, Providers(), NotebookConfig(), fetchers={"website": fetcher})
    source = _add(service, type="website", url="https://louvre.example")
    result = asyncio.run(service.refresh_source("trip-notes", source.id))
    assert result.kind == "provider_unavailable"
    assert "connection reset" in result.message


# ------------------------------------------------------------------
# Feedback, cached answers, metrics, reindex
# ------------------------------------------------------------------


def test_feedback_unknown_query(service):
    assert service.submit_feedback("missing", True).kind == "not_found"


def test_update_answer_validates_source_ids(service):
    _add(service)
    first = _ask(service)
    result = asyncio.run(service.update_answer(first.value.query_id, "New", ["unknown-source"]))
    assert result.kind == "not_found"


def test_list_cached_answers_previews(service):
    _add(service)
    first = _ask(service)
    asyncio.run(service.update_answer(first.value.query_id, "A" * 300))
    views = service.list_cached_answers("trip-notes").value
    assert len(views) == 1
    assert views[0].answer_preview == "A" * 200 + "..."


def test_learning_metrics(service):
    _add(service)
    first = _ask(service)
    service.submit_feedback(first.value.query_id, True)
    _ask(service)
    _ask(service, question="Where can I eat near the Louvre?")

    metrics = service.learning_metrics("trip-notes").value
    assert metrics.total_answers == 2
    assert metrics.helpful_answers == 1
    assert metrics.helpful_ratio == pytest.approx(0.5)
    assert metrics.top_used[0].usage_count == 1


def test_learning_metrics_empty(service):
    metrics = service.learning_metrics().value
    assert metrics.total_answers == 0
    assert metrics.helpful_ratio == 0.0


def test_reindex_sources(service):
    _add(service)
    _add(service, name="Notes", content="Packing list and metro tips. " * 5)
    assert asyncio.run(service.reindex_sources("trip-notes")).value == 2


# ------------------------------------------------------------------
# Translation
# ------------------------------------------------------------------


def test_translate_sources(repo):
    gen = AsyncMock()
    gen.generate.return_value = Generation(text="=== Paris Guide ===\nParis est la capitale.")
    service = NotebookService(repo, Providers(generator=gen), NotebookConfig(), fetchers={})
    paris = _add(service)
    notes = _add(service, name="Notes", content="Pack light for the metro. " * 5)

    translation = asyncio.run(service.translate_sources([paris.id, notes.id], " French ")).value
    assert translation.content.startswith("=== Paris Guide ===")
    assert translation.source_count == 2
    assert translation.target_language == "French"
    prompt = gen.generate.await_args.args[0]
    assert "=== Paris Guide ===\nParis is the capital" in prompt
    assert "=== Notes ===" in prompt
    assert "TRANSLATED CONTENT IN FRENCH:" in prompt


@pytest.mark.parametrize(
    "ids,language,message",
    [
        ([], "French", "No sources selected"),
        (["any"], "  ", "Target language is required"),
    ],
)
def test_translate_sources_validation(service, ids, language, message):
    result = asyncio.run(service.translate_sources(ids, language))
    assert result == Failure(kind="validation", message=message)


def test_translate_sources_without_generator(service):
    source = _add(service)
    result = asyncio.run(service.translate_sources([source.id], "French"))
    assert result.kind == "provider_unavailable"


def test_translate_unknown_source(repo):
    gen = AsyncMock()
    service = NotebookService(repo, Providers(generator=gen), NotebookConfig(), fetchers={})
    result = asyncio.run(service.translate_sources(["missing"], "French"))
    assert result.kind == "not_found"
    gen.generate.assert_not_awaited()


def test_translate_empty_response_is_provider_unavailable(repo):
    gen = AsyncMock()
    gen.generate.return_value = None
    service = NotebookService(repo, Providers(generator=gen), NotebookConfig(), fetchers={})
    source = _add(service)
    result = asyncio.run(service.translate_sources([source.id], "French"))
    assert result == Failure(kind="provider_unavailable", message="Empty translation response")
