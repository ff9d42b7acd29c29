"""Source ingestion — text chunking, chunk indexing, and source refresh fetchers."""

from notebookqa.ingest.chunker import TextChunker, chunk_text, sanitize
from notebookqa.ingest.fetchers import FetchedContent, SourceFetcher, WebFetcher
from notebookqa.ingest.indexer import ChunkIndex

__all__ = [
    "ChunkIndex",
    "FetchedContent",
    "SourceFetcher",
    "TextChunker",
    "WebFetcher",
    "chunk_text",
    "sanitize",
]
