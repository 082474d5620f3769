"""SQLite-backed versioned prompt-config repository."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from src.interfaces.prompt_config_store import IPromptConfigStore
from src.models.prompt import ChunkStrategy, CreatePromptConfig, PromptConfig, PromptConfigFilters
from src.providers.storage.sqlite_schema import SQLiteStoreBase
from src.utils.errors import NotFoundError, ValidationError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/folio.db")

_INSERT_SQL = """\
INSERT INTO prompt_configs (
    id, document_type, name, system_prompt, chunk_strategy, version,
    is_active, is_default, created_by, change_log, created_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_NEXT_VERSION_SQL = (
    "SELECT COALESCE(MAX(version), 0) + 1 FROM prompt_configs WHERE document_type = ?;"
)

_DEMOTE_DEFAULT_SQL = (
    "UPDATE prompt_configs SET is_default = 0 WHERE document_type = ? AND is_default = 1;"
)


def _row_to_config(row: aiosqlite.Row) -> PromptConfig:
    data: dict[str, Any] = dict(row)
    data["chunk_strategy"] = ChunkStrategy.model_validate_json(data["chunk_strategy"])
    data["is_active"] = bool(data["is_active"])
    data["is_default"] = bool(data["is_default"])
    return PromptConfig.model_validate(data)


class SQLitePromptConfigStore(SQLiteStoreBase, IPromptConfigStore):
    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        super().__init__(db_path)

    async def create(self, data: CreatePromptConfig) -> PromptConfig:
        async with self._connect() as db:
            cursor = await db.execute(_NEXT_VERSION_SQL, (data.document_type,))
            version = int((await cursor.fetchone())[0])
            config = PromptConfig(
                id=str(uuid.uuid4()),
                document_type=data.document_type,
                name=data.name,
                system_prompt=data.system_prompt,
                chunk_strategy=data.chunk_strategy or ChunkStrategy(),
                version=version,
                is_active=True,
                is_default=data.set_as_default,
                created_by=data.created_by,
                change_log=data.change_log,
                created_at=datetime.now(timezone.utc),
            )
            if data.set_as_default:
                await db.execute(_DEMOTE_DEFAULT_SQL, (data.document_type,))
            await db.execute(
                _INSERT_SQL,
                (
                    config.id,
                    config.document_type,
                    config.name,
                    config.system_prompt,
                    config.chunk_strategy.model_dump_json(),
                    config.version,
                    int(config.is_active),
                    int(config.is_default),
                    config.created_by,
                    config.change_log,
                    config.created_at.isoformat(),
                ),
            )
            await db.commit()
        logger.info(
            "prompt_config_created",
            config_id=config.id,
            document_type=config.document_type,
            version=config.version,
            is_default=config.is_default,
        )
        return config

    async def get(self, config_id: str) -> PromptConfig:
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM prompt_configs WHERE id = ?", (config_id,))
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("PromptConfig", config_id)
        return _row_to_config(row)

    async def list(self, filters: PromptConfigFilters | None = None) -> list[PromptConfig]:
        sql = "SELECT * FROM prompt_configs WHERE 1 = 1"
        params: list[Any] = []
        if filters is not None:
            if filters.document_type is not None:
                sql += " AND document_type = ?"
                params.append(filters.document_type)
            if filters.is_active is not None:
                sql += " AND is_active = ?"
                params.append(int(filters.is_active))
            if filters.is_default is not None:
                sql += " AND is_default = ?"
                params.append(int(filters.is_default))
            if filters.created_by is not None:
                sql += " AND created_by = ?"
                params.append(filters.created_by)
        sql += " ORDER BY document_type, version DESC"
        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [_row_to_config(r) for r in rows]

    async def get_default(self, document_type: str) -> PromptConfig | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM prompt_configs "
                "WHERE document_type = ? AND is_default = 1 AND is_active = 1 "
                "ORDER BY version DESC LIMIT 1",
                (document_type,),
            )
            row = await cursor.fetchone()
        return _row_to_config(row) if row is not None else None

    async def activate(self, config_id: str) -> PromptConfig:
        config = await self.get(config_id)
        async with self._connect() as db:
            await db.execute(_DEMOTE_DEFAULT_SQL, (config.document_type,))
            await db.execute(
                "UPDATE prompt_configs SET is_active = 1, is_default = 1 WHERE id = ?",
                (config_id,),
            )
            await db.commit()
        logger.info("prompt_config_activated", config_id=config_id)
        return config.model_copy(update={"is_active": True, "is_default": True})

    async def deactivate(self, config_id: str) -> None:
        await self.get(config_id)
        async with self._connect() as db:
            await db.execute(
                "UPDATE prompt_configs SET is_active = 0, is_default = 0 WHERE id = ?",
                (config_id,),
            )
            await db.commit()
        logger.info("prompt_config_deactivated", config_id=config_id)

    async def delete(self, config_id: str) -> None:
        await self.get(config_id)
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM chunks WHERE prompt_config_id = ?", (config_id,)
            )
            referenced = int((await cursor.fetchone())[0])
            if referenced:
                raise ValidationError(
                    f"Prompt config {config_id} is referenced by {referenced} chunks",
                    field="config_id",
                )
            await db.execute("DELETE FROM prompt_configs WHERE id = ?", (config_id,))
            await db.commit()
        logger.info("prompt_config_deleted", config_id=config_id)

    async def count(self) -> int:
        async with self._connect() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM prompt_configs")
            row = await cursor.fetchone()
        return int(row[0])
