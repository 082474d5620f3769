"""SQLite-backed chunk repository with semantic and full-text lookups.

Semantic search loads the filtered candidate embeddings and ranks them by
cosine similarity with numpy.  Keyword search runs an FTS5 ``MATCH`` over
the enriched (or plain) search text and normalises ``bm25`` to ``[0, 1)``
with ``r / (1 + r)`` where ``r = -bm25``.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

import aiosqlite
import numpy as np
import structlog

from src.interfaces.chunk_store import IChunkStore
from src.models.chunk import Chunk
from src.models.migration import EmbeddingModelStats, ReindexCandidate
from src.models.search import ChunkMatch, SearchFilters
from src.providers.storage.sqlite_schema import SQLiteStoreBase
from src.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/folio.db")

_CHUNK_COLUMNS = (
    "c.id, c.document_id, c.batch_index, c.chunk_index, c.prompt_config_id, "
    "c.chunk_type, c.sub_type, c.page_start, c.page_end, c.confidence, "
    "c.search_content, c.display_content, c.enriched_content, c.context_text, "
    "c.embedding, c.embedding_model, c.embedding_dimension, c.created_at"
)

_INSERT_CHUNK_SQL = """\
INSERT INTO chunks (
    id, document_id, batch_index, chunk_index, prompt_config_id, chunk_type, sub_type,
    page_start, page_end, confidence, search_content, display_content, enriched_content,
    context_text, fts_text, embedding, embedding_model, embedding_dimension, created_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def build_fts_query(text: str) -> str:
    """Quote each word and OR them so user input never breaks FTS5 syntax."""
    tokens = _TOKEN_RE.findall(text.lower())
    return " OR ".join(f'"{token}"' for token in dict.fromkeys(tokens))


def bm25_to_score(rank: float) -> float:
    relevance = max(0.0, -rank)
    return relevance / (1.0 + relevance)


def _filter_clause(filters: SearchFilters | None) -> tuple[str, list[Any]]:
    """Return ``(sql, params)`` to AND onto a query over ``chunks c``."""
    if filters is None:
        return "", []

    clauses: list[str] = []
    params: list[Any] = []

    def _in(column: str, values: list[Any]) -> None:
        clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
        params.extend(values)

    if filters.document_types:
        clauses.append(
            "c.document_id IN (SELECT id FROM documents WHERE document_type IN "
            f"({', '.join('?' for _ in filters.document_types)}))"
        )
        params.extend(filters.document_types)
    if filters.chunk_types:
        _in("c.chunk_type", [t.value for t in filters.chunk_types])
    if filters.sub_types:
        _in("c.sub_type", list(filters.sub_types))
    if filters.min_confidence is not None:
        clauses.append("c.confidence >= ?")
        params.append(filters.min_confidence)
    if filters.document_ids:
        _in("c.document_id", list(filters.document_ids))
    if filters.page_range is not None:
        clauses.append("c.page_start <= ? AND c.page_end >= ?")
        params.extend([filters.page_range.end, filters.page_range.start])
    if filters.prompt_config_ids:
        _in("c.prompt_config_id", list(filters.prompt_config_ids))

    if not clauses:
        return "", []
    return " AND " + " AND ".join(clauses), params


def _row_to_chunk(row: aiosqlite.Row) -> Chunk:
    data: dict[str, Any] = dict(row)
    data.pop("score", None)
    data["embedding"] = json.loads(data["embedding"])
    return Chunk.model_validate(data)


class SQLiteChunkStore(SQLiteStoreBase, IChunkStore):
    """Chunks, their embeddings, and the FTS5 index."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        super().__init__(db_path)

    async def insert_chunks(self, chunks: list[Chunk]) -> int:
        if not chunks:
            return 0
        rows = [
            (
                c.id,
                c.document_id,
                c.batch_index,
                c.chunk_index,
                c.prompt_config_id,
                c.chunk_type.value,
                c.sub_type,
                c.page_start,
                c.page_end,
                c.confidence,
                c.search_content,
                c.display_content,
                c.enriched_content,
                c.context_text,
                c.enriched_content or c.search_content,
                json.dumps(c.embedding),
                c.embedding_model,
                c.embedding_dimension,
                c.created_at.isoformat(),
            )
            for c in chunks
        ]
        try:
            async with self._connect() as db:
                await db.executemany(_INSERT_CHUNK_SQL, rows)
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Failed to insert {len(chunks)} chunks: {exc}", retryable=False
            ) from exc
        logger.debug("chunks_inserted", document_id=chunks[0].document_id, count=len(chunks))
        return len(chunks)

    async def search_semantic(
        self,
        embedding: list[float],
        limit: int,
        filters: SearchFilters | None = None,
        min_score: float | None = None,
    ) -> list[ChunkMatch]:
        where, params = _filter_clause(filters)
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE 1 = 1{where}", params
            )
            rows = await cursor.fetchall()
        if not rows:
            return []

        query = np.asarray(embedding, dtype=np.float32)
        vectors = [json.loads(r["embedding"]) for r in rows]
        stored = {len(v) for v in vectors}
        if stored != {query.shape[0]}:
            raise StorageError(
                f"Query dimension {query.shape[0]} does not match stored embeddings "
                f"(dimensions {sorted(stored)}); re-index chunks with the current "
                "embedding model",
                retryable=False,
            )
        matrix = np.asarray(vectors, dtype=np.float32)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        similarities = np.divide(
            matrix @ query, norms, out=np.zeros(len(rows), dtype=np.float32), where=norms > 0
        )

        order = np.argsort(-similarities)
        matches: list[ChunkMatch] = []
        for index in order:
            score = float(np.clip(similarities[index], 0.0, 1.0))
            if min_score is not None and score < min_score:
                break
            matches.append(ChunkMatch(chunk=_row_to_chunk(rows[index]), score=score))
            if len(matches) >= limit:
                break
        return matches

    async def search_keyword(
        self,
        query: str,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> list[ChunkMatch]:
        match = build_fts_query(query)
        if not match:
            return []
        where, params = _filter_clause(filters)
        sql = (
            f"SELECT {_CHUNK_COLUMNS}, bm25(chunks_fts) AS score "
            "FROM chunks_fts JOIN chunks c ON c.seq = chunks_fts.rowid "
            f"WHERE chunks_fts MATCH ?{where} "
            "ORDER BY score LIMIT ?"
        )
        try:
            async with self._connect() as db:
                cursor = await db.execute(sql, [match, *params, limit])
                rows = await cursor.fetchall()
        except aiosqlite.OperationalError as exc:
            raise StorageError(f"Keyword search failed: {exc}") from exc
        return [
            ChunkMatch(chunk=_row_to_chunk(r), score=bm25_to_score(r["score"])) for r in rows
        ]

    async def get_chunks(self, document_id: str) -> list[Chunk]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE c.document_id = ? "
                "ORDER BY c.batch_index, c.chunk_index",
                (document_id,),
            )
            rows = await cursor.fetchall()
        return [_row_to_chunk(r) for r in rows]

    async def count_chunks(
        self,
        document_id: str | None = None,
        prompt_config_id: str | None = None,
    ) -> int:
        sql = "SELECT COUNT(*) FROM chunks WHERE 1 = 1"
        params: list[Any] = []
        if document_id is not None:
            sql += " AND document_id = ?"
            params.append(document_id)
        if prompt_config_id is not None:
            sql += " AND prompt_config_id = ?"
            params.append(prompt_config_id)
        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            row = await cursor.fetchone()
        return int(row[0])

    async def delete_batch_chunks(self, document_id: str, batch_index: int) -> int:
        async with self._connect() as db:
            cursor = await db.execute(
                "DELETE FROM chunks WHERE document_id = ? AND batch_index = ?",
                (document_id, batch_index),
            )
            deleted = cursor.rowcount
            await db.commit()
        return deleted

    async def delete_document_chunks(self, document_id: str) -> int:
        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            deleted = cursor.rowcount
            await db.commit()
        logger.info("document_chunks_deleted", document_id=document_id, count=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Embedding-model migration
    # ------------------------------------------------------------------

    async def embedding_model_stats(self) -> list[EmbeddingModelStats]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT embedding_model, embedding_dimension, COUNT(*) AS n FROM chunks "
                "GROUP BY embedding_model, embedding_dimension ORDER BY n DESC"
            )
            rows = await cursor.fetchall()
        return [
            EmbeddingModelStats(
                model=r["embedding_model"], dimension=r["embedding_dimension"], count=r["n"]
            )
            for r in rows
        ]

    @staticmethod
    def _reindex_clause(
        exclude_model: str | None, document_ids: list[str] | None
    ) -> tuple[str, list[Any]]:
        sql = ""
        params: list[Any] = []
        if exclude_model is not None:
            sql += " AND (embedding_model IS NULL OR embedding_model != ?)"
            params.append(exclude_model)
        if document_ids:
            sql += f" AND document_id IN ({', '.join('?' for _ in document_ids)})"
            params.extend(document_ids)
        return sql, params

    async def count_chunks_for_reindex(
        self,
        exclude_model: str | None = None,
        document_ids: list[str] | None = None,
    ) -> int:
        where, params = self._reindex_clause(exclude_model, document_ids)
        async with self._connect() as db:
            cursor = await db.execute(f"SELECT COUNT(*) FROM chunks WHERE 1 = 1{where}", params)
            row = await cursor.fetchone()
        return int(row[0])

    async def list_chunks_for_reindex(
        self,
        exclude_model: str | None = None,
        document_ids: list[str] | None = None,
        after_seq: int = 0,
        limit: int = 50,
    ) -> list[ReindexCandidate]:
        where, params = self._reindex_clause(exclude_model, document_ids)
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT seq, id, COALESCE(enriched_content, search_content) AS text "
                f"FROM chunks WHERE seq > ?{where} ORDER BY seq LIMIT ?",
                [after_seq, *params, limit],
            )
            rows = await cursor.fetchall()
        return [ReindexCandidate(seq=r["seq"], id=r["id"], text=r["text"]) for r in rows]

    async def update_embeddings(
        self, embeddings: dict[str, list[float]], model: str, dimension: int
    ) -> int:
        if not embeddings:
            return 0
        rows = [
            (json.dumps(vector), model, dimension, chunk_id)
            for chunk_id, vector in embeddings.items()
        ]
        try:
            async with self._connect() as db:
                await db.executemany(
                    "UPDATE chunks SET embedding = ?, embedding_model = ?, "
                    "embedding_dimension = ? WHERE id = ?",
                    rows,
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to update {len(rows)} embeddings: {exc}") from exc
        return len(rows)

    async def storage_bytes(self) -> int:
        """Approximate on-disk size of the database file."""
        return self._db_path.stat().st_size if self._db_path.exists() else 0
