"""Embedding columns backed by sqlite-vec.

Vectors are stored as float32 BLOBs in the sqlite-vec layout, so the
extension's SQL functions (vec_length, vec_distance_cosine, vec_to_json)
work on them directly. Reads go back through vec_to_json().
"""

from __future__ import annotations

import json
import re

from sqlite_vec import serialize_float32


def to_blob(vector: list[float] | None) -> bytes | None:
    """Pack *vector* for storage; None and empty vectors stay NULL."""
    if not vector:
        return None
    return serialize_float32(vector)


def embedding_json(column: str) -> str:
    """SQL expression decoding a vector *column* to JSON text, NULL-safe.

    Example:
        embedding_json("c.embedding")
        -> "CASE WHEN c.embedding IS NULL THEN NULL ELSE vec_to_json(c.embedding) END"
    """
    if not re.fullmatch(r"[a-z_.]+", column):
        raise ValueError(f"Invalid column name '{column}'")
    return f"CASE WHEN {column} IS NULL THEN NULL ELSE vec_to_json({column}) END"


def from_json(text: str | None) -> list[float] | None:
    """Decode a vec_to_json() value; NULL stays None."""
    if not text:
        return None
    return [float(v) for v in json.loads(text)]
