"""Repository pattern for all notebook store operations.

Single interface for: notebooks, sources, chunks (+ FTS5), indexing claims,
and cached query answers. Embeddings are BLOB columns on chunks and
query_answers; see notebookqa.db.vectors for the encoding.
"""

from __future__ import annotations

import re
import sqlite3
import time
from collections.abc import Sequence

from notebookqa.db.models import Chunk, Notebook, QueryAnswer, ScoredChunk, Source
from notebookqa.db.vectors import embedding_json, from_json, to_blob

_SOURCE_COLUMNS = (
    "id, notebook_id, type, name, content, url, media_type, payload, selected, created_at"
)
_ANSWER_COLUMNS = (
    "id, notebook_id, question, answer, "
    f"{embedding_json('embedding')} AS embedding, provenance, helpful, "
    "usage_count, source_set_key, created_at"
)


class Repository:
    """Data access layer for all notebook store entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see notebookqa.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Notebooks
    # ------------------------------------------------------------------

    def add_notebook(self, notebook: Notebook) -> None:
        """Insert a new notebook record."""
        self._conn.execute(
            "INSERT INTO notebooks (id, name, owner, store_handle) VALUES (?, ?, ?, ?)",
            (notebook.id, notebook.name, notebook.owner, notebook.store_handle),
        )
        self._conn.commit()

    def get_notebook(self, notebook_id: str) -> Notebook | None:
        """Return a notebook (with its source count) by ID, or None if not found."""
        row = self._conn.execute(
            """
            SELECT n.id, n.name, n.owner, n.store_handle, n.created_at,
                   (SELECT COUNT(*) FROM sources s WHERE s.notebook_id = n.id) AS source_count
            FROM notebooks n WHERE n.id = ?
            """,
            (notebook_id,),
        ).fetchone()
        return _row_to_notebook(row) if row else None

    def list_notebooks(self, owner: str | None = None) -> list[Notebook]:
        """Return notebooks, newest first, optionally filtered by *owner*."""
        sql = """
            SELECT n.id, n.name, n.owner, n.store_handle, n.created_at,
                   (SELECT COUNT(*) FROM sources s WHERE s.notebook_id = n.id) AS source_count
            FROM notebooks n
        """
        params: tuple = ()
        if owner is not None:
            sql += " WHERE n.owner = ?"
            params = (owner,)
        sql += " ORDER BY n.created_at DESC"
        return [_row_to_notebook(r) for r in self._conn.execute(sql, params).fetchall()]

    def set_store_handle(self, notebook_id: str, handle: str | None) -> None:
        self._conn.execute(
            "UPDATE notebooks SET store_handle = ? WHERE id = ?", (handle, notebook_id)
        )
        self._conn.commit()

    def delete_notebook(self, notebook_id: str) -> None:
        """Delete a notebook. Sources, chunks and answers cascade; FTS rows are purged here."""
        self._conn.execute(
            """
            DELETE FROM chunks_fts WHERE rowid IN (
                SELECT c.rowid FROM chunks c JOIN sources s ON s.id = c.source_id
                WHERE s.notebook_id = ?
            )
            """,
            (notebook_id,),
        )
        self._conn.execute("DELETE FROM notebooks WHERE id = ?", (notebook_id,))
        self._conn.commit()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_source(self, source: Source) -> None:
        """Insert a new source record."""
        self._conn.execute(
            """
            INSERT INTO sources (id, notebook_id, type, name, content, url, media_type, payload, selected)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.id,
                source.notebook_id,
                source.type,
                source.name,
                source.content,
                source.url,
                source.media_type,
                source.payload,
                int(source.selected),
            ),
        )
        self._conn.commit()

    def get_source(self, source_id: str) -> Source | None:
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self, notebook_id: str) -> list[Source]:
        """Return a notebook's sources in insertion order (oldest first)."""
        rows = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE notebook_id = ? ORDER BY created_at, rowid",
            (notebook_id,),
        ).fetchall()
        return [_row_to_source(r) for r in rows]

    def set_source_selected(self, source_id: str, selected: bool) -> None:
        self._conn.execute(
            "UPDATE sources SET selected = ? WHERE id = ?", (int(selected), source_id)
        )
        self._conn.commit()

    def update_source_content(self, source_id: str, name: str, content: str) -> None:
        """Replace a source's display name and extracted text (refresh)."""
        self._conn.execute(
            "UPDATE sources SET name = ?, content = ? WHERE id = ?",
            (name, content, source_id),
        )
        self._conn.commit()

    def delete_source(self, source_id: str) -> None:
        """Delete a source record; its chunks cascade and their FTS rows are purged."""
        self._conn.execute(
            "DELETE FROM chunks_fts WHERE rowid IN (SELECT rowid FROM chunks WHERE source_id = ?)",
            (source_id,),
        )
        self._conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        self._conn.commit()

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def replace_chunks(self, source_id: str, chunks: Sequence[Chunk]) -> list[int]:
        """Delete every chunk of *source_id* and insert *chunks*, in one transaction.

        Returns the rowids of the inserted chunks.
        """
        rowids: list[int] = []
        with self._conn:
            self._conn.execute(
                "DELETE FROM chunks_fts WHERE rowid IN (SELECT rowid FROM chunks WHERE source_id = ?)",
                (source_id,),
            )
            self._conn.execute("DELETE FROM chunks WHERE source_id = ?", (source_id,))
            for chunk in chunks:
                cur = self._conn.execute(
                    "INSERT INTO chunks (source_id, chunk_index, text, embedding) VALUES (?, ?, ?, ?)",
                    (source_id, chunk.chunk_index, chunk.text, to_blob(chunk.embedding)),
                )
                rowid = cur.lastrowid
                # Keep FTS5 in sync with explicit rowid mapping
                self._conn.execute(
                    "INSERT INTO chunks_fts(rowid, text) VALUES (?, ?)", (rowid, chunk.text)
                )
                chunk.rowid = rowid
                rowids.append(rowid)
        return rowids

    def list_chunks(self, source_id: str) -> list[Chunk]:
        rows = self._conn.execute(
            f"""
            SELECT rowid, source_id, chunk_index, text,
                   {embedding_json("embedding")} AS embedding, created_at
            FROM chunks WHERE source_id = ? ORDER BY chunk_index
            """,  # noqa: S608
            (source_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks_by_source(self, source_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE source_id = ?", (source_id,)
        ).fetchone()[0]

    def search_vec(
        self, source_ids: Sequence[str], embedding: Sequence[float], limit: int = 5
    ) -> list[ScoredChunk]:
        """Cosine nearest-neighbour search over the embedded chunks of *source_ids*.

        Ranking happens inside sqlite-vec. Chunks whose vector length differs
        from *embedding* score 0; zero-norm vectors also score 0.
        """
        if not source_ids or not embedding:
            return []
        placeholders = ",".join("?" * len(source_ids))
        rows = self._conn.execute(
            f"""
            SELECT s.name AS source_name, c.text,
                   CASE WHEN vec_length(c.embedding) = ?
                        THEN COALESCE(1 - vec_distance_cosine(c.embedding, ?), 0)
                        ELSE 0 END AS similarity
            FROM chunks c JOIN sources s ON s.id = c.source_id
            WHERE c.source_id IN ({placeholders}) AND c.embedding IS NOT NULL
            ORDER BY similarity DESC, c.source_id, c.chunk_index
            LIMIT ?
            """,  # noqa: S608
            [len(embedding), to_blob(list(embedding)), *source_ids, limit],
        ).fetchall()
        return [
            ScoredChunk(source_name=r["source_name"], content=r["text"], similarity=r["similarity"])
            for r in rows
        ]

    def search_fts(
        self, query: str, source_ids: Sequence[str], limit: int = 10
    ) -> list[ScoredChunk]:
        """BM25 keyword search scoped to *source_ids*, best match first.

        Query words are OR-ed together; the returned similarity is the
        negated bm25() score, so larger is better.
        """
        if not source_ids:
            return []
        # FTS5 MATCH rejects punctuation; quote each word so AND/OR/NOT stay literal.
        words = [w for w in re.sub(r"[^\w\s]", " ", query).split() if len(w) > 2]
        if not words:
            return []
        fts_query = " OR ".join(f'"{w}"' for w in words)
        placeholders = ",".join("?" * len(source_ids))
        rows = self._conn.execute(
            f"""
            SELECT s.name AS source_name, c.text, bm25(chunks_fts) AS score
            FROM chunks_fts
            JOIN chunks c ON c.rowid = chunks_fts.rowid
            JOIN sources s ON s.id = c.source_id
            WHERE chunks_fts MATCH ? AND c.source_id IN ({placeholders})
            ORDER BY score LIMIT ?
            """,  # noqa: S608
            [fts_query, *source_ids, limit],
        ).fetchall()
        return [
            ScoredChunk(source_name=r["source_name"], content=r["text"], similarity=-r["score"])
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Indexing claims
    # ------------------------------------------------------------------

    def claim_indexing(self, source_id: str, ttl_seconds: float) -> bool:
        """Mark *source_id* as being indexed. False if a live claim already exists.

        Claims older than *ttl_seconds* are considered abandoned and are taken over.
        """
        now = time.time()
        cur = self._conn.execute(
            """
            INSERT INTO indexing_claims (source_id, claimed_at) VALUES (?, ?)
            ON CONFLICT(source_id) DO UPDATE SET claimed_at = excluded.claimed_at
            WHERE indexing_claims.claimed_at < ?
            """,
            (source_id, now, now - ttl_seconds),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def release_indexing(self, source_id: str) -> None:
        self._conn.execute("DELETE FROM indexing_claims WHERE source_id = ?", (source_id,))
        self._conn.commit()

    # ------------------------------------------------------------------
    # Query answers
    # ------------------------------------------------------------------

    def add_query_answer(self, qa: QueryAnswer) -> None:
        self._conn.execute(
            """
            INSERT INTO query_answers
                (id, notebook_id, question, answer, embedding, provenance, helpful, usage_count, source_set_key)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                qa.id,
                qa.notebook_id,
                qa.question,
                qa.answer,
                to_blob(qa.embedding),
                qa.provenance,
                _bool_to_db(qa.helpful),
                qa.usage_count,
                qa.source_set_key,
            ),
        )
        self._conn.commit()

    def get_query_answer(self, query_id: str) -> QueryAnswer | None:
        row = self._conn.execute(
            f"SELECT {_ANSWER_COLUMNS} FROM query_answers WHERE id = ?", (query_id,)
        ).fetchone()
        return _row_to_answer(row) if row else None

    def helpful_answers(
        self,
        notebook_id: str,
        source_set_key: str | None = None,
        limit: int | None = None,
    ) -> list[QueryAnswer]:
        """Return helpful answers for a notebook, most used first.

        Args:
            notebook_id: Owning notebook.
            source_set_key: When given, only answers grounded in exactly this source set.
            limit: Maximum rows; None for all.
        """
        sql = f"SELECT {_ANSWER_COLUMNS} FROM query_answers WHERE notebook_id = ? AND helpful = 1"
        params: list = [notebook_id]
        if source_set_key is not None:
            sql += " AND source_set_key = ?"
            params.append(source_set_key)
        sql += " ORDER BY usage_count DESC, created_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_answer(r) for r in self._conn.execute(sql, params).fetchall()]

    def set_answer_embedding(self, query_id: str, embedding: list[float]) -> None:
        self._conn.execute(
            "UPDATE query_answers SET embedding = ? WHERE id = ?",
            (to_blob(embedding), query_id),
        )
        self._conn.commit()

    def increment_usage(self, query_id: str) -> int:
        """Add one to an answer's usage counter and return the new value."""
        self._conn.execute(
            "UPDATE query_answers SET usage_count = usage_count + 1 WHERE id = ?",
            (query_id,),
        )
        self._conn.commit()
        row = self._conn.execute(
            "SELECT usage_count FROM query_answers WHERE id = ?", (query_id,)
        ).fetchone()
        return row["usage_count"] if row else 0

    def record_feedback(self, query_id: str, helpful: bool, provenance: str) -> None:
        self._conn.execute(
            "UPDATE query_answers SET helpful = ?, provenance = ? WHERE id = ?",
            (_bool_to_db(helpful), provenance, query_id),
        )
        self._conn.commit()

    def rewrite_answer(
        self,
        query_id: str,
        answer: str,
        embedding: list[float] | None,
        source_set_key: str,
        provenance: str,
    ) -> None:
        """Overwrite an answer with a user correction and mark it helpful.

        A None *embedding* keeps the stored one.
        """
        self._conn.execute(
            """
            UPDATE query_answers
            SET answer = ?, helpful = 1, provenance = ?, source_set_key = ?,
                embedding = COALESCE(?, embedding)
            WHERE id = ?
            """,
            (answer, provenance, source_set_key, to_blob(embedding), query_id),
        )
        self._conn.commit()

    def answer_stats(self, notebook_id: str | None = None) -> dict[str, int]:
        """Return total / helpful / embedded answer counts, optionally per notebook."""
        where = "WHERE notebook_id = ?" if notebook_id is not None else ""
        params = (notebook_id,) if notebook_id is not None else ()
        row = self._conn.execute(
            f"""
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(CASE WHEN helpful = 1 THEN 1 ELSE 0 END), 0) AS helpful,
                   COALESCE(SUM(CASE WHEN embedding IS NOT NULL THEN 1 ELSE 0 END), 0) AS embedded
            FROM query_answers {where}
            """,  # noqa: S608
            params,
        ).fetchone()
        return {"total": row["total"], "helpful": row["helpful"], "embedded": row["embedded"]}

    def top_used_answers(self, notebook_id: str | None = None, limit: int = 5) -> list[QueryAnswer]:
        sql = f"SELECT {_ANSWER_COLUMNS} FROM query_answers"
        params: list = []
        if notebook_id is not None:
            sql += " WHERE notebook_id = ?"
            params.append(notebook_id)
        sql += " ORDER BY usage_count DESC, created_at DESC LIMIT ?"
        params.append(limit)
        return [_row_to_answer(r) for r in self._conn.execute(sql, params).fetchall()]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _bool_to_db(value: bool | None) -> int | None:
    return None if value is None else int(value)


def _row_to_notebook(row: sqlite3.Row) -> Notebook:
    return Notebook(
        id=row["id"],
        name=row["name"],
        owner=row["owner"],
        store_handle=row["store_handle"],
        created_at=row["created_at"],
        source_count=row["source_count"],
    )


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        notebook_id=row["notebook_id"],
        type=row["type"],
        name=row["name"],
        content=row["content"],
        url=row["url"],
        media_type=row["media_type"],
        payload=row["payload"],
        selected=bool(row["selected"]),
        created_at=row["created_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        rowid=row["rowid"],
        source_id=row["source_id"],
        chunk_index=row["chunk_index"],
        text=row["text"],
        embedding=from_json(row["embedding"]),
        created_at=row["created_at"],
    )


def _row_to_answer(row: sqlite3.Row) -> QueryAnswer:
    helpful = row["helpful"]
    return QueryAnswer(
        id=row["id"],
        notebook_id=row["notebook_id"],
        question=row["question"],
        answer=row["answer"],
        embedding=from_json(row["embedding"]),
        provenance=row["provenance"],
        helpful=None if helpful is None else bool(helpful),
        usage_count=row["usage_count"],
        source_set_key=row["source_set_key"],
        created_at=row["created_at"],
    )
