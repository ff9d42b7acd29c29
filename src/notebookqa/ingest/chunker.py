"""Sliding-window text chunker with sanitisation and a hard chunk cap.

Windows are measured in sanitised characters. The window advances by
``chunk_size - overlap``; chunking stops once ``max_chunks`` windows have
been emitted, however much text remains.
"""

from __future__ import annotations

import re
from collections.abc import Iterator

from notebookqa.db.models import Chunk

_SURROGATES = re.compile("[\ud800-\udfff]")
_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
# Anything outside printable Latin-1 and the BMP (tabs/newlines included) becomes a space.
_UNPRINTABLE = re.compile("[^\x20-\x7e\xa0-\uffff]")
_WHITESPACE = re.compile(r"\s+")


def sanitize(text: str) -> str:
    """Return *text* safe to persist and embed.

    Drops lone surrogates and control characters, maps any other
    non-printable code point to a space, then collapses whitespace.
    """
    text = _SURROGATES.sub("", text)
    text = _CONTROL.sub("", text)
    text = _UNPRINTABLE.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def chunk_text(
    text: str,
    chunk_size: int = 800,
    overlap: int = 100,
    max_chunks: int = 50,
    min_chunk_chars: int = 50,
) -> Iterator[str]:
    """Yield overlapping windows of the sanitised *text*.

    Windows shorter than *min_chunk_chars* are skipped. The generator is
    lazy and yields at most *max_chunks* strings.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if not 0 <= overlap < chunk_size:
        raise ValueError("overlap must be in [0, chunk_size)")

    clean = sanitize(text)
    length = len(clean)
    start = 0
    emitted = 0

    while start < length and emitted < max_chunks:
        end = min(start + chunk_size, length)
        window = clean[start:end].strip()
        if len(window) >= min_chunk_chars:
            yield window
            emitted += 1
        if end >= length:
            break
        start = end - overlap


class TextChunker:
    """Split source text into Chunk rows using the configured window."""

    def __init__(
        self,
        chunk_size: int = 800,
        overlap: int = 100,
        max_chunks: int = 50,
        min_chunk_chars: int = 50,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        if max_chunks < 1:
            raise ValueError("max_chunks must be >= 1")
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.max_chunks = max_chunks
        self.min_chunk_chars = min_chunk_chars

    def split(self, text: str) -> Iterator[str]:
        return chunk_text(
            text,
            chunk_size=self.chunk_size,
            overlap=self.overlap,
            max_chunks=self.max_chunks,
            min_chunk_chars=self.min_chunk_chars,
        )

    def chunk(self, source_id: str, content: str) -> list[Chunk]:
        """Return sequentially indexed Chunks for *content* (no embeddings yet)."""
        return [
            Chunk(source_id=source_id, chunk_index=i, text=t)
            for i, t in enumerate(self.split(content))
        ]
