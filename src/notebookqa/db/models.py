"""Domain models for the notebook store."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

# Source types whose rows may carry a binary payload for multimodal prompts.
VISUAL_SOURCE_TYPES: frozenset[str] = frozenset({"image", "video"})

# Source types that can be re-fetched from their URL.
REFRESHABLE_SOURCE_TYPES: frozenset[str] = frozenset({"website", "video-transcript"})


class Provenance(str, Enum):
    """Which strategy produced (or last rewrote) an answer."""

    CACHE = "cache"
    MANAGED_STORE = "managed-store"
    INLINE = "inline"
    VISUAL = "visual"
    LOCAL_CHUNKS = "local-chunks"
    HYBRID = "hybrid"
    MOCK = "mock"
    PROMOTED = "learning"
    USER_EDITED = "user-edited"


@dataclass
class Notebook:
    id: str
    name: str
    owner: str = "anonymous"
    store_handle: str | None = None
    created_at: str | None = None
    source_count: int = 0


@dataclass
class Source:
    id: str
    notebook_id: str
    type: str
    name: str
    content: str = ""
    url: str | None = None
    media_type: str | None = None
    payload: bytes | None = field(default=None, repr=False)
    selected: bool = True
    created_at: str | None = None

    @property
    def content_length(self) -> int:
        return len(self.content)

    @property
    def is_visual(self) -> bool:
        return self.payload is not None


@dataclass
class Chunk:
    source_id: str
    chunk_index: int
    text: str
    embedding: list[float] | None = None
    created_at: str | None = None
    rowid: int | None = None  # set after insert; None for unsaved chunks


@dataclass
class ScoredChunk:
    """A chunk ranked against a question, labelled with its source's name."""

    source_name: str
    content: str
    similarity: float


@dataclass
class QueryAnswer:
    id: str
    notebook_id: str
    question: str
    answer: str
    provenance: str
    source_set_key: str = ""
    embedding: list[float] | None = None
    helpful: bool | None = None
    usage_count: int = 0
    created_at: str | None = None
