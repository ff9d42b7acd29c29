"""Tests for prompt builders."""

from __future__ import annotations

import base64

import pytest

from notebookqa.db.models import ScoredChunk, Source
from notebookqa.rag import prompts
from notebookqa.rag.cache import FewShotExample


def _text(name, content, id=None):
    return Source(id=id or name, notebook_id="nb", type="text", name=name, content=content)


def _image(name, payload=b"img"):
    return Source(
        id=name, notebook_id="nb", type="image", name=name, payload=payload, media_type="image/jpeg"
    )


@pytest.mark.parametrize(
    "question",
    ["What are the latest trends?", "Ticket prices in 2025?", "Any news about the museum?"],
)
def test_needs_current_info(question):
    assert prompts.needs_current_info(question)


def test_timeless_question_does_not_need_current_info():
    assert not prompts.needs_current_info("Who painted the Mona Lisa?")


def test_inline_prompt_contains_every_source_truncated():
    prompt = prompts.inline_prompt(
        "Q?", [_text("Paris Guide", "a" * 50), _text("Notes", "b" * 50)], max_chars_per_source=10
    )
    assert "=== SOURCE: Paris Guide ===\naaaaaaaaaa\n" in prompt
    assert "=== SOURCE: Notes ===" in prompt
    assert "b" * 11 not in prompt
    assert prompt.endswith("QUESTION: Q?")


def test_inline_prompt_includes_examples():
    examples = [FewShotExample(question="Old Q", answer="Old A", similarity=0.91)]
    prompt = prompts.inline_prompt("Q?", [_text("S", "text")], examples)
    assert "Example 1 (91% relevant):\nQ: Old Q\nA: Old A" in prompt


def test_inline_prompt_without_examples_has_no_examples_block():
    assert "RELEVANT EXAMPLES" not in prompts.inline_prompt("Q?", [_text("S", "text")])


def test_visual_parts_embed_images_as_data_uris():
    parts = prompts.visual_parts("What is shown?", [_text("Notes", "context"), _image("map.jpg")])
    image_parts = [p for p in parts if p["type"] == "image_url"]
    assert len(image_parts) == 1
    expected = "data:image/jpeg;base64," + base64.b64encode(b"img").decode()
    assert image_parts[0]["image_url"]["url"] == expected
    assert any("=== TEXT: Notes ===" in p.get("text", "") for p in parts)


def test_visual_parts_limit_images_with_note():
    images = [_image(f"img{i}.jpg") for i in range(4)]
    parts = prompts.visual_parts("Q?", images, max_images=2)
    assert sum(p["type"] == "image_url" for p in parts) == 2
    assert any("Showing first 2 of 4 images" in p.get("text", "") for p in parts)


def test_chunk_context_labels_sources():
    chunks = [ScoredChunk("Paris Guide", "Louvre hours", 0.9), ScoredChunk("Notes", "Metro", 0.5)]
    assert prompts.chunk_context(chunks) == "[Paris Guide]: Louvre hours\n\n[Notes]: Metro"


def test_excerpt_context_skips_empty_sources():
    context = prompts.excerpt_context([_text("A", "x" * 20), _image("img")], excerpt_chars=5)
    assert context == "--- Source: A ---\nxxxxx"


def test_grounded_prompt_with_live_results():
    prompt = prompts.grounded_prompt("Q?", "ctx", "fresh web facts")
    assert "--- Web Search Results ---\nfresh web facts" in prompt
    assert "Web Search Results" not in prompts.grounded_prompt("Q?", "ctx")


def test_translate_prompt_headers_each_source():
    prompt = prompts.translate_prompt([_text("Paris Guide", "The Louvre."), _text("Notes", "Pack light.")], "French")
    assert "=== Paris Guide ===\nThe Louvre.\n\n=== Notes ===\nPack light." in prompt
    assert "into French" in prompt
    assert prompt.endswith("TRANSLATED CONTENT IN FRENCH:")
    assert "truncated" not in prompt


def test_translate_prompt_truncates_long_content():
    prompt = prompts.translate_prompt([_text("Big", "x" * 100)], "German", max_chars=40)
    assert "x" * 28 in prompt
    assert "x" * 29 not in prompt
    assert "[... content truncated for translation ...]" in prompt
