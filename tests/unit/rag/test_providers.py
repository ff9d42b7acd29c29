"""Tests for LiteLLM-backed providers and provider construction."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from notebookqa.config import NotebookConfig
from notebookqa.errors import ProviderUnavailable
from notebookqa.rag.providers import (
    LiteLLMEmbedder,
    LiteLLMGenerator,
    LiteLLMLiveSearch,
    build_providers,
    extract_citations,
    validate_api_key,
)


def _completion(text, citations=None):
    response = MagicMock()
    response.choices[0].message.content = text
    response.citations = citations or []
    return response


# ------------------------------------------------------------------
# validate_api_key
# ------------------------------------------------------------------


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="GEMINI_API_KEY"):
        validate_api_key("gemini/gemini-2.0-flash")


def test_validate_api_key_perplexity(monkeypatch):
    monkeypatch.setenv("PERPLEXITYAI_API_KEY", "pplx-test")
    validate_api_key("perplexity/sonar-pro")


def test_validate_api_key_ollama_no_key_required():
    validate_api_key("ollama/llama3")


# ------------------------------------------------------------------
# extract_citations
# ------------------------------------------------------------------


def test_extract_citations_unique_in_order():
    answer = "See [Paris Guide] and [Museum Hours], again [Paris Guide]."
    assert extract_citations(answer) == ("Paris Guide", "Museum Hours")


# ------------------------------------------------------------------
# LiteLLMEmbedder
# ------------------------------------------------------------------


def test_embed_returns_vector():
    response = MagicMock()
    response.data = [{"embedding": [0.1, 0.2]}]
    with patch("notebookqa.rag.providers.litellm.aembedding", AsyncMock(return_value=response)) as m:
        result = asyncio.run(LiteLLMEmbedder("openai/text-embedding-3-small").embed("hello"))
    assert result == [0.1, 0.2]
    assert m.call_args.kwargs["input"] == ["hello"]


def test_embed_failure_returns_none():
    with patch(
        "notebookqa.rag.providers.litellm.aembedding",
        AsyncMock(side_effect=RuntimeError("rate limited")),
    ):
        assert asyncio.run(LiteLLMEmbedder("openai/x").embed("hello")) is None


def test_embed_blank_text_skips_provider():
    with patch("notebookqa.rag.providers.litellm.aembedding", AsyncMock()) as m:
        assert asyncio.run(LiteLLMEmbedder("openai/x").embed("   ")) is None
    m.assert_not_called()


def test_embed_timeout_returns_none():
    async def hang(**kwargs):
        await asyncio.sleep(10)

    with patch("notebookqa.rag.providers.litellm.aembedding", side_effect=hang):
        assert asyncio.run(LiteLLMEmbedder("openai/x", timeout=0.01).embed("hello")) is None


# ------------------------------------------------------------------
# LiteLLMGenerator
# ------------------------------------------------------------------


def test_generate_returns_text_and_citations():
    with patch(
        "notebookqa.rag.providers.litellm.acompletion",
        AsyncMock(return_value=_completion("Visit the Louvre [Paris Guide].")),
    ):
        result = asyncio.run(LiteLLMGenerator("gemini/gemini-2.0-flash").generate("prompt"))
    assert result.text == "Visit the Louvre [Paris Guide]."
    assert result.citations == ("Paris Guide",)


def test_generate_uses_vision_model_for_content_parts():
    mock = AsyncMock(return_value=_completion("A map."))
    with patch("notebookqa.rag.providers.litellm.acompletion", mock):
        gen = LiteLLMGenerator("openai/gpt-4o-mini", vision_model="openai/gpt-4o")
        asyncio.run(gen.generate([{"type": "text", "text": "hi"}]))
    assert mock.call_args.kwargs["model"] == "openai/gpt-4o"


def test_generate_empty_text_is_no_answer():
    with patch(
        "notebookqa.rag.providers.litellm.acompletion", AsyncMock(return_value=_completion(None))
    ):
        assert asyncio.run(LiteLLMGenerator("openai/x").generate("prompt")) is None


def test_generate_error_raises_provider_unavailable():
    with patch(
        "notebookqa.rag.providers.litellm.acompletion",
        AsyncMock(side_effect=RuntimeError("500")),
    ):
        with pytest.raises(ProviderUnavailable, match="500"):
            asyncio.run(LiteLLMGenerator("openai/x").generate("prompt"))


def test_generate_timeout_raises_provider_unavailable():
    async def hang(**kwargs):
        await asyncio.sleep(10)

    with patch("notebookqa.rag.providers.litellm.acompletion", side_effect=hang):
        with pytest.raises(ProviderUnavailable, match="timed out"):
            asyncio.run(LiteLLMGenerator("openai/x", timeout=0.01).generate("prompt"))


# ------------------------------------------------------------------
# LiteLLMLiveSearch
# ------------------------------------------------------------------


def test_live_search_passes_context_hint_and_citations():
    mock = AsyncMock(return_value=_completion("Prices rose.", ["https://news.example"]))
    with patch("notebookqa.rag.providers.litellm.acompletion", mock):
        result = asyncio.run(LiteLLMLiveSearch().search("latest prices?", "x" * 3000))
    system = mock.call_args.kwargs["messages"][0]["content"]
    assert "x" * 2000 in system
    assert "x" * 2001 not in system
    assert result.citations == ("https://news.example",)


# ------------------------------------------------------------------
# build_providers
# ------------------------------------------------------------------


def test_build_providers_skips_models_without_keys(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    providers = build_providers(NotebookConfig())
    assert providers.generator is None
    assert isinstance(providers.embedder, LiteLLMEmbedder)
    assert providers.live_search is None


def test_build_providers_configures_live_search(monkeypatch):
    monkeypatch.setenv("PERPLEXITYAI_API_KEY", "pplx-test")
    cfg = NotebookConfig()
    cfg.search.model = "perplexity/sonar-pro"
    assert isinstance(build_providers(cfg).live_search, LiteLLMLiveSearch)
