"""SQLite-backed document and batch repository (aiosqlite).

Counters are bumped with single ``UPDATE ... SET n = n + 1`` statements so
concurrent batch workers never lose an increment.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from src.interfaces.document_store import IDocumentStore
from src.models.document import (
    Batch,
    BatchSpec,
    BatchStatus,
    Document,
    DocumentStatus,
    TokenUsage,
    derive_document_status,
)
from src.providers.storage.sqlite_schema import SQLiteStoreBase
from src.utils.errors import NotFoundError, StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/folio.db")

_INSERT_DOCUMENT_SQL = """\
INSERT INTO documents (
    id, filename, file_hash, file_size, page_count, document_type, experiment_id,
    model_name, prompt_config_id, status, total_batches, created_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_INSERT_BATCH_SQL = """\
INSERT INTO batches (id, document_id, batch_index, page_start, page_end, status)
VALUES (?, ?, ?, ?, ?, ?);
"""

_SELECT_DOCUMENT_SQL = "SELECT * FROM documents WHERE id = ?;"

_FIND_BY_HASH_SQL = """\
SELECT * FROM documents
WHERE file_hash = ? AND experiment_id IS ?
ORDER BY created_at DESC
LIMIT 1;
"""

_INCREMENT_COMPLETED_SQL = (
    "UPDATE documents SET completed_batches = completed_batches + 1 WHERE id = ?;"
)
_INCREMENT_FAILED_SQL = "UPDATE documents SET failed_batches = failed_batches + 1 WHERE id = ?;"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_document(row: aiosqlite.Row) -> Document:
    data: dict[str, Any] = dict(row)
    data["token_usage"] = TokenUsage(
        input=data.pop("input_tokens"),
        output=data.pop("output_tokens"),
        total=data.pop("total_tokens"),
        embedding=data.pop("embedding_tokens"),
    )
    return Document.model_validate(data)


def _row_to_batch(row: aiosqlite.Row) -> Batch:
    data: dict[str, Any] = dict(row)
    data["token_usage"] = TokenUsage(
        input=data.pop("input_tokens"),
        output=data.pop("output_tokens"),
        total=data.pop("total_tokens"),
        embedding=data.pop("embedding_tokens"),
    )
    return Batch.model_validate(data)


class SQLiteDocumentStore(SQLiteStoreBase, IDocumentStore):
    """Documents and batches in the shared SQLite database."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        super().__init__(db_path)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def create_document(
        self, document: Document, batches: list[BatchSpec]
    ) -> tuple[Document, list[Batch]]:
        document = document.model_copy(update={"total_batches": len(batches)})
        batch_rows = [
            Batch(
                id=f"{document.id}:{spec.batch_index}",
                document_id=document.id,
                batch_index=spec.batch_index,
                page_start=spec.page_start,
                page_end=spec.page_end,
            )
            for spec in batches
        ]
        try:
            async with self._connect() as db:
                await db.execute(
                    _INSERT_DOCUMENT_SQL,
                    (
                        document.id,
                        document.filename,
                        document.file_hash,
                        document.file_size,
                        document.page_count,
                        document.document_type,
                        document.experiment_id,
                        document.model_name,
                        document.prompt_config_id,
                        document.status.value,
                        document.total_batches,
                        document.created_at.isoformat(),
                    ),
                )
                await db.executemany(
                    _INSERT_BATCH_SQL,
                    [
                        (b.id, b.document_id, b.batch_index, b.page_start, b.page_end, b.status.value)
                        for b in batch_rows
                    ],
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to create document {document.id}: {exc}") from exc

        logger.info(
            "document_created",
            document_id=document.id,
            filename=document.filename,
            batches=len(batch_rows),
        )
        return document, batch_rows

    async def get_document(self, document_id: str) -> Document:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_DOCUMENT_SQL, (document_id,))
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("Document", document_id)
        return _row_to_document(row)

    async def find_by_hash(self, file_hash: str, experiment_id: str | None) -> Document | None:
        async with self._connect() as db:
            cursor = await db.execute(_FIND_BY_HASH_SQL, (file_hash, experiment_id))
            row = await cursor.fetchone()
        return _row_to_document(row) if row is not None else None

    async def list_documents(self, limit: int = 50, offset: int = 0) -> list[Document]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM documents ORDER BY created_at DESC LIMIT ? OFFSET ?",
                (limit, offset),
            )
            rows = await cursor.fetchall()
        return [_row_to_document(r) for r in rows]

    async def count_documents(self) -> int:
        async with self._connect() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM documents")
            row = await cursor.fetchone()
        return int(row[0])

    async def set_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: str | None = None,
    ) -> None:
        async with self._connect() as db:
            cursor = await db.execute(
                "UPDATE documents SET status = ?, error_message = ? WHERE id = ?",
                (status.value, error_message, document_id),
            )
            await db.commit()
            updated = cursor.rowcount
        if updated == 0:
            raise NotFoundError("Document", document_id)

    async def increment_completed(self, document_id: str) -> None:
        async with self._connect() as db:
            await db.execute(_INCREMENT_COMPLETED_SQL, (document_id,))
            await db.commit()

    async def increment_failed(self, document_id: str) -> None:
        async with self._connect() as db:
            await db.execute(_INCREMENT_FAILED_SQL, (document_id,))
            await db.commit()

    async def mark_document_completed(
        self, document_id: str, token_usage: TokenUsage, processing_ms: int
    ) -> Document:
        document = await self.get_document(document_id)
        status = derive_document_status(
            document.total_batches, document.completed_batches, document.failed_batches
        )
        async with self._connect() as db:
            await db.execute(
                """\
UPDATE documents
SET status = ?, input_tokens = ?, output_tokens = ?, total_tokens = ?, embedding_tokens = ?,
    processing_ms = ?, completed_at = ?
WHERE id = ?;
""",
                (
                    status.value,
                    token_usage.input,
                    token_usage.output,
                    token_usage.total,
                    token_usage.embedding,
                    processing_ms,
                    _now(),
                    document_id,
                ),
            )
            await db.commit()
        logger.info(
            "document_finalized",
            document_id=document_id,
            status=status.value,
            completed=document.completed_batches,
            failed=document.failed_batches,
        )
        return await self.get_document(document_id)

    async def delete_document(self, document_id: str) -> None:
        async with self._connect() as db:
            # Explicit chunk delete so the FTS trigger sees every row.
            await db.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            await db.execute("DELETE FROM batches WHERE document_id = ?", (document_id,))
            cursor = await db.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            if cursor.rowcount == 0:
                await db.rollback()
                raise NotFoundError("Document", document_id)
            await db.commit()
        logger.info("document_deleted", document_id=document_id)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def get_batches(
        self, document_id: str, status: BatchStatus | None = None
    ) -> list[Batch]:
        sql = "SELECT * FROM batches WHERE document_id = ?"
        params: list[Any] = [document_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        sql += " ORDER BY batch_index"
        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [_row_to_batch(r) for r in rows]

    async def mark_batch_processing(self, batch_id: str) -> None:
        await self._update_batch(
            batch_id,
            "status = ?, started_at = ?",
            (BatchStatus.PROCESSING.value, _now()),
        )

    async def mark_batch_retrying(self, batch_id: str, retry_count: int, error: str) -> None:
        await self._update_batch(
            batch_id,
            "status = ?, retry_count = ?, last_error = ?",
            (BatchStatus.RETRYING.value, retry_count, error),
        )

    async def mark_batch_completed(
        self, batch_id: str, token_usage: TokenUsage, processing_ms: int
    ) -> None:
        await self._update_batch(
            batch_id,
            "status = ?, input_tokens = ?, output_tokens = ?, total_tokens = ?, "
            "embedding_tokens = ?, processing_ms = ?, completed_at = ?",
            (
                BatchStatus.COMPLETED.value,
                token_usage.input,
                token_usage.output,
                token_usage.total,
                token_usage.embedding,
                processing_ms,
                _now(),
            ),
        )

    async def mark_batch_failed(self, batch_id: str, error: str) -> None:
        await self._update_batch(
            batch_id,
            "status = ?, last_error = ?, completed_at = ?",
            (BatchStatus.FAILED.value, error, _now()),
        )

    async def reset_batches_for_retry(self, document_id: str, batch_ids: list[str]) -> None:
        if not batch_ids:
            return
        placeholders = ", ".join("?" for _ in batch_ids)
        async with self._connect() as db:
            cursor = await db.execute(
                f"UPDATE batches SET status = ?, retry_count = 0, completed_at = NULL "
                f"WHERE document_id = ? AND status = ? AND id IN ({placeholders})",
                (BatchStatus.PENDING.value, document_id, BatchStatus.FAILED.value, *batch_ids),
            )
            reset = cursor.rowcount
            await db.execute(
                "UPDATE documents SET failed_batches = MAX(0, failed_batches - ?), "
                "status = ?, error_message = NULL, completed_at = NULL WHERE id = ?",
                (reset, DocumentStatus.PROCESSING.value, document_id),
            )
            await db.commit()
        logger.info("batches_reset_for_retry", document_id=document_id, count=reset)

    async def _update_batch(self, batch_id: str, assignments: str, params: tuple[Any, ...]) -> None:
        async with self._connect() as db:
            cursor = await db.execute(
                f"UPDATE batches SET {assignments} WHERE id = ?", (*params, batch_id)
            )
            await db.commit()
            updated = cursor.rowcount
        if updated == 0:
            raise NotFoundError("Batch", batch_id)
