"""Repository contract for documents and their batches.

The store is the single source of truth for ingestion state.  Each batch
worker mutates only its own batch row and bumps its parent document's
counters with :meth:`increment_completed` / :meth:`increment_failed`,
which implementations must make atomic (single ``UPDATE ... SET n = n + 1``
or equivalent) so concurrent workers never lose an increment.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.document import (
    Batch,
    BatchSpec,
    BatchStatus,
    Document,
    DocumentStatus,
    TokenUsage,
)


# Concrete implementation: SQLiteDocumentStore (src/providers/storage/)
class IDocumentStore(ABC):
    """Persistence for :class:`Document` and :class:`Batch` rows."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables/indices if missing."""

    # -- documents --------------------------------------------------------

    @abstractmethod
    async def create_document(
        self, document: Document, batches: list[BatchSpec]
    ) -> tuple[Document, list[Batch]]:
        """Insert a document and its batch rows in one transaction."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Document:
        """Return the document.

        Raises
        ------
        src.utils.errors.NotFoundError
            If no document has this id.
        """

    @abstractmethod
    async def find_by_hash(self, file_hash: str, experiment_id: str | None) -> Document | None:
        """Look up a document by content hash within one experiment scope."""

    @abstractmethod
    async def list_documents(self, limit: int = 50, offset: int = 0) -> list[Document]:
        """Return documents, newest first."""

    @abstractmethod
    async def count_documents(self) -> int: ...

    @abstractmethod
    async def set_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: str | None = None,
    ) -> None: ...

    @abstractmethod
    async def increment_completed(self, document_id: str) -> None:
        """Atomically add one to ``completed_batches``."""

    @abstractmethod
    async def increment_failed(self, document_id: str) -> None:
        """Atomically add one to ``failed_batches``."""

    @abstractmethod
    async def mark_document_completed(
        self, document_id: str, token_usage: TokenUsage, processing_ms: int
    ) -> Document:
        """Record usage/duration and derive the final status from counters.

        Status becomes COMPLETED iff ``failed == 0 and completed == total``
        and PARTIAL iff ``failed > 0 and completed + failed == total``.
        """

    @abstractmethod
    async def delete_document(self, document_id: str) -> None:
        """Delete the document, its batches, and its chunks."""

    # -- batches ------------------------------------------------------------

    @abstractmethod
    async def get_batches(
        self, document_id: str, status: BatchStatus | None = None
    ) -> list[Batch]:
        """Return the document's batches ordered by ``batch_index``."""

    @abstractmethod
    async def mark_batch_processing(self, batch_id: str) -> None: ...

    @abstractmethod
    async def mark_batch_retrying(self, batch_id: str, retry_count: int, error: str) -> None: ...

    @abstractmethod
    async def mark_batch_completed(
        self, batch_id: str, token_usage: TokenUsage, processing_ms: int
    ) -> None: ...

    @abstractmethod
    async def mark_batch_failed(self, batch_id: str, error: str) -> None: ...

    @abstractmethod
    async def reset_batches_for_retry(self, document_id: str, batch_ids: list[str]) -> None:
        """Return FAILED batches to PENDING and roll back the failure counter.

        Also moves the document back to PROCESSING.
        """
