"""Prompt builders for the generation tiers."""

from __future__ import annotations

import base64
import re
from collections.abc import Sequence
from typing import Any

from notebookqa.db.models import ScoredChunk, Source
from notebookqa.ingest.chunker import sanitize
from notebookqa.rag.cache import FewShotExample

_NEEDS_CURRENT_INFO = re.compile(
    r"\b(current|currently|latest|recent|recently|today|tonight|now|this (?:week|month|year)"
    r"|trends?|industry|markets?|news|prices?|20\d\d)\b",
    re.IGNORECASE,
)

_INLINE_PROMPT = """\
You are a helpful assistant that answers questions based on the provided sources.

INSTRUCTIONS:
- Respond in the SAME LANGUAGE as the user's question, translating source material if needed.
- Answer based ONLY on the sources below.
- Cite specific sources by name in brackets [Source Name].
- If the sources don't contain the answer, say "I cannot find this information in the provided sources".
- Be specific, factual, concise but comprehensive.

SOURCES:
{sources}
{examples}
QUESTION: {question}"""

_EXAMPLES_BLOCK = """
RELEVANT EXAMPLES FROM PREVIOUS SUCCESSFUL ANSWERS:
{examples}

Use these examples as guidance for answering style and depth.
"""

_VISUAL_INSTRUCTIONS = """

INSTRUCTIONS:
- Respond in the SAME LANGUAGE as the user's question.
- Describe what you see in the images.
- Answer based on the visual content and any text context.
- Cite specific source names in brackets [Source Name].
- Be detailed and specific about visual elements."""

_GROUNDED_PROMPT = """\
You are an assistant that answers questions based on provided source excerpts.

SOURCE EXCERPTS:
{context}{live}

QUESTION: {question}

INSTRUCTIONS:
- Answer ONLY using information from the excerpts above.
- Quote relevant passages and cite the source in brackets [Source Name].
- If the excerpts don't contain the answer, say "The sources don't contain enough information about this topic".
- Do NOT make up information not found in the excerpts."""


_TRANSLATE_PROMPT = """\
You are a professional translator.

TASK: Translate the following content into {language}.

INSTRUCTIONS:
- Translate ALL text accurately to {language}.
- Preserve the original formatting (headings, lists, code blocks).
- Keep the section headers (=== Name ===) but translate the content under them.
- Keep technical terms and proper nouns where translating them would mislead.
- Do not add explanations; reply with the translated content only.

CONTENT TO TRANSLATE:
{content}

TRANSLATED CONTENT IN {language_upper}:"""

_TRANSLATION_TRUNCATED = "\n\n[... content truncated for translation ...]"


def needs_current_info(question: str) -> bool:
    """True when *question* asks about time-relative, market or news information."""
    return _NEEDS_CURRENT_INFO.search(question) is not None


def _examples_block(examples: Sequence[FewShotExample]) -> str:
    if not examples:
        return ""
    body = "\n\n".join(
        f"Example {i} ({ex.similarity * 100:.0f}% relevant):\nQ: {ex.question}\nA: {ex.answer}"
        for i, ex in enumerate(examples, start=1)
    )
    return _EXAMPLES_BLOCK.format(examples=body)


def inline_prompt(
    question: str,
    sources: Sequence[Source],
    examples: Sequence[FewShotExample] = (),
    max_chars_per_source: int = 8_000,
) -> str:
    """Single text prompt holding every selected source under a name header."""
    context = "\n\n".join(
        f"=== SOURCE: {s.name} ===\n{sanitize(s.content)[:max_chars_per_source]}"
        for s in sources
    )
    return _INLINE_PROMPT.format(
        sources=context, examples=_examples_block(examples), question=question
    )


def visual_parts(
    question: str,
    sources: Sequence[Source],
    examples: Sequence[FewShotExample] = (),
    max_images: int = 10,
    max_chars_per_source: int = 8_000,
) -> list[dict[str, Any]]:
    """OpenAI-style multimodal content parts: all text sources, at most *max_images* images."""
    images = [s for s in sources if s.is_visual]
    texts = [s for s in sources if not s.is_visual]
    shown = images[:max_images]

    parts: list[dict[str, Any]] = [
        _text(
            f"Question: {question}\n\n"
            "Please analyze the following sources and images and answer based on what you see:\n"
        )
    ]
    for source in texts:
        parts.append(
            _text(f"\n=== TEXT: {source.name} ===\n{sanitize(source.content)[:max_chars_per_source]}")
        )
    for source in shown:
        parts.append(_text(f"\n=== IMAGE: {source.name} ==="))
        parts.append(_image(source))
    if len(images) > max_images:
        parts.append(
            _text(f"\n\n[Note: Showing first {max_images} of {len(images)} images due to size limits]")
        )
    examples_text = _examples_block(examples)
    if examples_text:
        parts.append(_text(examples_text))
    parts.append(_text(_VISUAL_INSTRUCTIONS))
    return parts


def chunk_context(chunks: Sequence[ScoredChunk]) -> str:
    return "\n\n".join(f"[{c.source_name}]: {c.content}" for c in chunks)


def excerpt_context(sources: Sequence[Source], excerpt_chars: int = 5_000) -> str:
    """Leading excerpt of every source, used when chunk search found too little."""
    return "\n\n".join(
        f"--- Source: {s.name} ---\n{s.content[:excerpt_chars]}" for s in sources if s.content
    )


def grounded_prompt(question: str, context: str, live_context: str = "") -> str:
    live = f"\n\n--- Web Search Results ---\n{live_context}" if live_context else ""
    return _GROUNDED_PROMPT.format(context=context, live=live, question=question)


def _text(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def _image(source: Source) -> dict[str, Any]:
    data = base64.b64encode(source.payload or b"").decode("ascii")
    media_type = source.media_type or "image/png"
    return {"type": "image_url", "image_url": {"url": f"data:{media_type};base64,{data}"}}


def translate_prompt(sources: Sequence[Source], language: str, max_chars: int = 30_000) -> str:
    """Every source under a ``=== name ===`` header, cut at *max_chars* with a marker."""
    content = "\n\n".join(f"=== {s.name} ===\n{s.content}" for s in sources)
    if len(content) > max_chars:
        content = content[:max_chars] + _TRANSLATION_TRUNCATED
    return _TRANSLATE_PROMPT.format(
        language=language, language_upper=language.upper(), content=content
    )
