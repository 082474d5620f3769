"""SQLite-backed stores for documents, batches, chunks and prompt configs."""

from src.providers.storage.sqlite_chunk_store import SQLiteChunkStore
from src.providers.storage.sqlite_document_store import SQLiteDocumentStore
from src.providers.storage.sqlite_prompt_config_store import SQLitePromptConfigStore

__all__ = ["SQLiteChunkStore", "SQLiteDocumentStore", "SQLitePromptConfigStore"]
