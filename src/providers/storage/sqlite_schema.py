"""Shared SQLite schema for the document, chunk and prompt-config stores.

All three stores live in one database file so a document delete can cascade
to its batches and chunks.  Chunk text is indexed by an external-content
FTS5 table kept in sync by triggers; embeddings are stored as JSON arrays.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite
import structlog

logger = structlog.get_logger(logger_name=__name__)

_SCHEMA_SQL = [
    """\
CREATE TABLE IF NOT EXISTS documents (
    id                TEXT    PRIMARY KEY,
    filename          TEXT    NOT NULL,
    file_hash         TEXT    NOT NULL,
    file_size         INTEGER NOT NULL DEFAULT 0,
    page_count        INTEGER NOT NULL,
    document_type     TEXT,
    experiment_id     TEXT,
    model_name        TEXT,
    prompt_config_id  TEXT,
    status            TEXT    NOT NULL,
    total_batches     INTEGER NOT NULL DEFAULT 0,
    completed_batches INTEGER NOT NULL DEFAULT 0,
    failed_batches    INTEGER NOT NULL DEFAULT 0,
    input_tokens      INTEGER NOT NULL DEFAULT 0,
    output_tokens     INTEGER NOT NULL DEFAULT 0,
    total_tokens      INTEGER NOT NULL DEFAULT 0,
    embedding_tokens  INTEGER NOT NULL DEFAULT 0,
    processing_ms     INTEGER,
    error_message     TEXT,
    created_at        TEXT    NOT NULL,
    completed_at      TEXT
);
""",
    "CREATE INDEX IF NOT EXISTS idx_documents_hash ON documents(file_hash, experiment_id);",
    "CREATE INDEX IF NOT EXISTS idx_documents_type ON documents(document_type);",
    """\
CREATE TABLE IF NOT EXISTS batches (
    id             TEXT    PRIMARY KEY,
    document_id    TEXT    NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    batch_index    INTEGER NOT NULL,
    page_start     INTEGER NOT NULL,
    page_end       INTEGER NOT NULL,
    status         TEXT    NOT NULL,
    retry_count    INTEGER NOT NULL DEFAULT 0,
    last_error     TEXT,
    input_tokens   INTEGER NOT NULL DEFAULT 0,
    output_tokens  INTEGER NOT NULL DEFAULT 0,
    total_tokens   INTEGER NOT NULL DEFAULT 0,
    embedding_tokens INTEGER NOT NULL DEFAULT 0,
    processing_ms  INTEGER,
    started_at     TEXT,
    completed_at   TEXT,
    UNIQUE(document_id, batch_index)
);
""",
    """\
CREATE TABLE IF NOT EXISTS chunks (
    seq               INTEGER PRIMARY KEY AUTOINCREMENT,
    id                TEXT    NOT NULL UNIQUE,
    document_id       TEXT    NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    batch_index       INTEGER NOT NULL,
    chunk_index       INTEGER NOT NULL,
    prompt_config_id  TEXT,
    chunk_type        TEXT    NOT NULL,
    sub_type          TEXT,
    page_start        INTEGER NOT NULL,
    page_end          INTEGER NOT NULL,
    confidence        REAL    NOT NULL,
    search_content    TEXT    NOT NULL,
    display_content   TEXT    NOT NULL,
    enriched_content  TEXT,
    context_text      TEXT,
    fts_text          TEXT    NOT NULL,
    embedding         TEXT    NOT NULL,
    embedding_model   TEXT,
    embedding_dimension INTEGER,
    created_at        TEXT    NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id, batch_index);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_type ON chunks(chunk_type);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_prompt_config ON chunks(prompt_config_id);",
    """\
CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
    fts_text,
    content='chunks',
    content_rowid='seq',
    tokenize='unicode61 remove_diacritics 2'
);
""",
    """\
CREATE TRIGGER IF NOT EXISTS chunks_fts_insert AFTER INSERT ON chunks BEGIN
    INSERT INTO chunks_fts(rowid, fts_text) VALUES (new.seq, new.fts_text);
END;
""",
    """\
CREATE TRIGGER IF NOT EXISTS chunks_fts_delete AFTER DELETE ON chunks BEGIN
    INSERT INTO chunks_fts(chunks_fts, rowid, fts_text) VALUES ('delete', old.seq, old.fts_text);
END;
""",
    """\
CREATE TABLE IF NOT EXISTS prompt_configs (
    id              TEXT    PRIMARY KEY,
    document_type   TEXT    NOT NULL,
    name            TEXT    NOT NULL,
    system_prompt   TEXT    NOT NULL,
    chunk_strategy  TEXT    NOT NULL,
    version         INTEGER NOT NULL,
    is_active       INTEGER NOT NULL DEFAULT 1,
    is_default      INTEGER NOT NULL DEFAULT 0,
    created_by      TEXT,
    change_log      TEXT,
    created_at      TEXT    NOT NULL,
    UNIQUE(document_type, version)
);
""",
    "CREATE INDEX IF NOT EXISTS idx_prompt_configs_type ON prompt_configs(document_type, is_default);",
]


# Columns added after the first release; older databases gain them on startup.
_ADDED_COLUMNS = [
    ("documents", "embedding_tokens", "INTEGER NOT NULL DEFAULT 0"),
    ("batches", "embedding_tokens", "INTEGER NOT NULL DEFAULT 0"),
    ("chunks", "embedding_model", "TEXT"),
    ("chunks", "embedding_dimension", "INTEGER"),
]


async def _add_missing_columns(db: aiosqlite.Connection) -> None:
    for table, column, definition in _ADDED_COLUMNS:
        async with db.execute(f"PRAGMA table_info({table});") as cursor:
            existing = {row[1] for row in await cursor.fetchall()}
        if column not in existing:
            await db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition};")
            logger.info("sqlite_column_added", table=table, column=column)


async def ensure_schema(db_path: Path) -> None:
    """Create every table, index and trigger if missing.  Idempotent."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(str(db_path)) as db:
        await db.execute("PRAGMA journal_mode = WAL;")
        for statement in _SCHEMA_SQL:
            await db.execute(statement)
        await _add_missing_columns(db)
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_chunks_embedding_model ON chunks(embedding_model);"
        )
        await db.commit()
    logger.debug("sqlite_schema_ready", path=str(db_path))


class SQLiteStoreBase:
    """Common lifecycle for the stores sharing one database file."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        await ensure_schema(self._db_path)

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(str(self._db_path), timeout=30) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys = ON;")
            yield db
