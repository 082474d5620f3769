"""Document and batch models for the ingestion pipeline.

A :class:`Document` owns a set of :class:`Batch` rows that partition its
pages ``[1..page_count]`` into contiguous, non-overlapping ranges.  Every
batch is processed by exactly one worker, which mutates only its own row
and atomically bumps the parent document's counters.

Status derivation (enforced by :func:`derive_document_status`):

    COMPLETED  iff  failed == 0  and  completed == total
    PARTIAL    iff  failed >  0  and  completed + failed == total
    PROCESSING otherwise, while batches are outstanding
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class DocumentStatus(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    PENDING = "PENDING"
    DISCOVERING = "DISCOVERING"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"


class BatchStatus(str, Enum):  # noqa: UP042
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    RETRYING = "RETRYING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def derive_document_status(total: int, completed: int, failed: int) -> DocumentStatus:
    """Return the document status implied by its batch counters."""
    if failed == 0 and completed == total:
        return DocumentStatus.COMPLETED
    if failed > 0 and completed + failed == total:
        return DocumentStatus.PARTIAL
    return DocumentStatus.PROCESSING


# ---------------------------------------------------------------------------
# Token usage
# ---------------------------------------------------------------------------
class TokenUsage(BaseModel):
    """Token counts for one unit of work.

    ``input``, ``output`` and ``total`` are reported by the extraction model;
    ``embedding`` counts tokens sent to the embedding provider and is not part
    of ``total``.
    """

    model_config = ConfigDict(frozen=True)

    input: int = Field(default=0, ge=0)
    output: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    embedding: int = Field(default=0, ge=0)

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input=self.input + other.input,
            output=self.output + other.output,
            total=self.total + other.total,
            embedding=self.embedding + other.embedding,
        )


# ---------------------------------------------------------------------------
# PDF loading
# ---------------------------------------------------------------------------
class PdfMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str
    file_hash: str = Field(description="sha256 of the raw file bytes.")
    file_size: int = Field(ge=0)
    page_count: int = Field(ge=1)
    title: str | None = None
    author: str | None = None


class PdfDocument(BaseModel):
    """A loaded PDF: raw bytes plus metadata."""

    model_config = ConfigDict(frozen=True)

    content: bytes = Field(repr=False)
    metadata: PdfMetadata


class BatchSpec(BaseModel):
    """A contiguous 1-indexed page range assigned to one batch."""

    model_config = ConfigDict(frozen=True)

    batch_index: int = Field(ge=0)
    page_start: int = Field(ge=1)
    page_end: int = Field(ge=1)

    @model_validator(mode="after")
    def _check_range(self) -> BatchSpec:
        if self.page_start > self.page_end:
            msg = f"page_start {self.page_start} > page_end {self.page_end}"
            raise ValueError(msg)
        return self


# ---------------------------------------------------------------------------
# Persisted rows
# ---------------------------------------------------------------------------
class Document(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    filename: str
    file_hash: str
    file_size: int = 0
    page_count: int = Field(ge=1)
    document_type: str | None = None
    experiment_id: str | None = None
    model_name: str | None = None
    prompt_config_id: str | None = None
    status: DocumentStatus = DocumentStatus.PENDING
    total_batches: int = Field(default=0, ge=0)
    completed_batches: int = Field(default=0, ge=0)
    failed_batches: int = Field(default=0, ge=0)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    processing_ms: int | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None


class Batch(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    batch_index: int = Field(ge=0)
    page_start: int = Field(ge=1)
    page_end: int = Field(ge=1)
    status: BatchStatus = BatchStatus.PENDING
    retry_count: int = Field(default=0, ge=0)
    last_error: str | None = None
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    processing_ms: int | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


# ---------------------------------------------------------------------------
# Ingestion request / result
# ---------------------------------------------------------------------------
class IngestOptions(BaseModel):
    """Caller input for :meth:`IngestionOrchestrator.ingest`."""

    model_config = ConfigDict(frozen=True)

    file: bytes | str = Field(repr=False, description="Raw PDF bytes or a filesystem path.")
    filename: str | None = None
    document_type: str | None = None
    prompt_config_id: str | None = None
    custom_prompt: str | None = None
    experiment_id: str | None = None
    skip_existing: bool = False
    # Callable[[ProgressEvent], Any | Awaitable[Any]]; kept untyped so
    # pydantic does not try to validate it.
    on_progress: Any = Field(default=None, repr=False)


class BatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_index: int
    status: BatchStatus
    chunk_count: int = 0
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    processing_ms: int = 0
    retry_count: int = 0
    error: str | None = None


class IngestionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str
    status: DocumentStatus
    chunk_count: int = 0
    batch_count: int = 0
    failed_batch_count: int = 0
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    processing_ms: int = 0
    batches: list[BatchResult] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ProgressEvent(BaseModel):
    """Emitted to the caller's ``on_progress`` callback per batch transition."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    batch_index: int
    total_batches: int
    status: BatchStatus
    page_start: int
    page_end: int
    attempt: int = 1
    error: str | None = None


class DocumentStatusReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    filename: str
    status: DocumentStatus
    document_type: str | None = None
    page_count: int
    total_batches: int
    completed_batches: int
    failed_batches: int
    percentage: float = Field(ge=0.0, le=100.0)
    token_usage: TokenUsage
    processing_ms: int | None = None
    error: str | None = None
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_document(cls, document: Document) -> DocumentStatusReport:
        resolved = document.completed_batches + document.failed_batches
        percentage = (
            round(resolved / document.total_batches * 100, 1) if document.total_batches else 0.0
        )
        return cls(
            id=document.id,
            filename=document.filename,
            status=document.status,
            document_type=document.document_type,
            page_count=document.page_count,
            total_batches=document.total_batches,
            completed_batches=document.completed_batches,
            failed_batches=document.failed_batches,
            percentage=percentage,
            token_usage=document.token_usage,
            processing_ms=document.processing_ms,
            error=document.error_message,
            created_at=document.created_at,
            completed_at=document.completed_at,
        )


class CorpusStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_documents: int = 0
    total_chunks: int = 0
    prompt_configs: int = 0
    storage_bytes: int = 0


class HealthReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = Field(description='"healthy", "degraded" or "unhealthy".')
    database: bool
    document_ai: bool
    embeddings: bool
    reranker: str | None = None
