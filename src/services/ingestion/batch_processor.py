"""Processes one page batch end to end.

Per batch::

    PROCESSING -> [retry loop: extract -> parse -> enrich -> embed -> store]
               -> COMPLETED | FAILED

Inside each attempt the structured (JSON) extraction is tried first; an
:class:`ExtractionValidationError` switches that attempt to free-text
extraction with SECTION markers.  Transport failures are left to the retry
executor.  A batch only ever writes its own row and its own chunks; the
parent document's counters move through the store's atomic increments.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.interfaces.chunk_store import IChunkStore
from src.interfaces.document_ai_provider import DocumentAIResponse, IDocumentAIProvider
from src.interfaces.document_store import IDocumentStore
from src.interfaces.enrichment_handler import EnrichmentContext, IEnrichmentHandler
from src.models.chunk import Chunk, ChunkCandidate
from src.models.document import (
    Batch,
    BatchResult,
    BatchStatus,
    PdfDocument,
    ProgressEvent,
    TokenUsage,
)
from src.services.ingestion.embedding_pipeline import EmbeddingPipeline
from src.services.ingestion.extraction_parser import ExtractionParser
from src.services.ingestion.prompts import build_extraction_prompt
from src.utils.errors import ExtractionValidationError
from src.utils.rate_limiter import RateLimiter
from src.utils.retry import RetryOptions, with_retry

logger = structlog.get_logger(logger_name=__name__)

ProgressCallback = Callable[[ProgressEvent], Any]


@dataclass(frozen=True)
class BatchJob:
    """Document-level inputs shared by every batch of one ingest run."""

    document_id: str
    document: PdfDocument
    total_batches: int
    instructions: list[str]
    document_type: str | None = None
    prompt_config_id: str | None = None
    example_formats: dict[str, str] = field(default_factory=dict)
    on_progress: ProgressCallback | None = None


@dataclass
class _AttemptOutput:
    chunks: list[Chunk]
    usage: TokenUsage
    used_fallback: bool


async def emit_progress(callback: ProgressCallback | None, event: ProgressEvent) -> None:
    """Invoke a sync or async progress callback; its failures are only logged."""
    if callback is None:
        return
    try:
        outcome = callback(event)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as exc:
        logger.warning(
            "progress_callback_failed",
            document_id=event.document_id,
            batch_index=event.batch_index,
            error=str(exc),
        )


class BatchProcessor:
    """Runs extraction, enrichment, embedding and persistence for a batch.

    Parameters
    ----------
    document_ai:
        PDF-aware extraction provider.
    parser:
        Structured / marker / heuristic parser.
    enrichment:
        Contextual enrichment strategy.
    embeddings:
        Embedding pipeline (rate-limited internally).
    document_store, chunk_store:
        Persistence.
    rate_limiter:
        Shared limiter for the extraction calls.
    retry_options:
        Backoff policy for a whole attempt.
    use_structured_output:
        When ``False`` the JSON path is skipped and every attempt asks for
        SECTION-marked text directly.
    sleep:
        Injectable async sleep used between retries.
    """

    def __init__(
        self,
        document_ai: IDocumentAIProvider,
        parser: ExtractionParser,
        enrichment: IEnrichmentHandler,
        embeddings: EmbeddingPipeline,
        document_store: IDocumentStore,
        chunk_store: IChunkStore,
        rate_limiter: RateLimiter,
        retry_options: RetryOptions,
        *,
        use_structured_output: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._document_ai = document_ai
        self._parser = parser
        self._enrichment = enrichment
        self._embeddings = embeddings
        self._documents = document_store
        self._chunks = chunk_store
        self._rate_limiter = rate_limiter
        self._retry_options = retry_options
        self._use_structured = use_structured_output
        self._sleep = sleep

    async def process(
        self, batch: Batch, job: BatchJob, retry_options: RetryOptions | None = None
    ) -> BatchResult:
        """Process ``batch``; never raises for extraction/embedding failures.

        ``retry_options`` overrides the processor's default backoff policy.
        """
        log = logger.bind(
            document_id=job.document_id,
            batch_index=batch.batch_index,
            page_start=batch.page_start,
            page_end=batch.page_end,
        )
        started = time.monotonic()
        retries = 0

        await emit_progress(job.on_progress, self._event(batch, job, BatchStatus.PROCESSING))
        await self._documents.mark_batch_processing(batch.id)

        async def _on_retry(attempt: int, error: BaseException, delay_ms: int) -> None:
            nonlocal retries
            retries = attempt
            log.warning("batch_retrying", attempt=attempt, delay_ms=delay_ms, error=str(error))
            await self._documents.mark_batch_retrying(batch.id, attempt, str(error))
            await emit_progress(
                job.on_progress,
                self._event(batch, job, BatchStatus.RETRYING, attempt=attempt + 1, error=str(error)),
            )

        try:
            output = await with_retry(
                lambda: self._attempt(batch, job),
                retry_options or self._retry_options,
                _on_retry,
                sleep=self._sleep,
            )
        except Exception as exc:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            log.error("batch_failed", attempts=retries + 1, error=str(exc))
            await self._documents.mark_batch_failed(batch.id, str(exc))
            await self._documents.increment_failed(job.document_id)
            await emit_progress(
                job.on_progress,
                self._event(batch, job, BatchStatus.FAILED, attempt=retries + 1, error=str(exc)),
            )
            return BatchResult(
                batch_index=batch.batch_index,
                status=BatchStatus.FAILED,
                processing_ms=elapsed_ms,
                retry_count=retries,
                error=str(exc),
            )

        elapsed_ms = int((time.monotonic() - started) * 1000)
        await self._documents.mark_batch_completed(batch.id, output.usage, elapsed_ms)
        await self._documents.increment_completed(job.document_id)
        await emit_progress(
            job.on_progress,
            self._event(batch, job, BatchStatus.COMPLETED, attempt=retries + 1),
        )
        log.info(
            "batch_completed",
            chunks=len(output.chunks),
            tokens=output.usage.total,
            fallback=output.used_fallback,
            processing_ms=elapsed_ms,
        )
        return BatchResult(
            batch_index=batch.batch_index,
            status=BatchStatus.COMPLETED,
            chunk_count=len(output.chunks),
            token_usage=output.usage,
            processing_ms=elapsed_ms,
            retry_count=retries,
        )

    # ------------------------------------------------------------------
    # One attempt
    # ------------------------------------------------------------------

    async def _attempt(self, batch: Batch, job: BatchJob) -> _AttemptOutput:
        candidates, usage, used_fallback = await self._extract(batch, job)

        context = EnrichmentContext(
            document_id=job.document_id,
            filename=job.document.metadata.filename,
            document_type=job.document_type,
            page_count=job.document.metadata.page_count,
            page_start=batch.page_start,
            page_end=batch.page_end,
        )
        candidates = await self._enrichment.enrich(candidates, context)
        embedded = await self._embeddings.embed_candidates(candidates)
        usage = usage + TokenUsage(embedding=embedded.token_count)

        chunks = [
            self._to_chunk(candidate, vector, batch, job, index)
            for index, (candidate, vector) in enumerate(zip(candidates, embedded.vectors))
        ]
        # A previous attempt may have stored chunks before failing later on.
        await self._chunks.delete_batch_chunks(job.document_id, batch.batch_index)
        await self._chunks.insert_chunks(chunks)
        return _AttemptOutput(chunks=chunks, usage=usage, used_fallback=used_fallback)

    async def _extract(
        self, batch: Batch, job: BatchJob
    ) -> tuple[list[ChunkCandidate], TokenUsage, bool]:
        usage = TokenUsage()
        if self._use_structured:
            prompt = build_extraction_prompt(
                job.instructions,
                batch.page_start,
                batch.page_end,
                structured=True,
                example_formats=job.example_formats,
            )
            response: DocumentAIResponse = await self._rate_limiter.throttle(
                lambda: self._document_ai.extract_structured(job.document, prompt)
            )
            usage = usage + response.usage
            try:
                candidates = self._parser.parse_structured(
                    response.text, batch.page_start, batch.page_end
                )
                return candidates, usage, False
            except ExtractionValidationError as exc:
                logger.warning(
                    "structured_output_invalid",
                    document_id=job.document_id,
                    batch_index=batch.batch_index,
                    error=str(exc),
                )

        prompt = build_extraction_prompt(
            job.instructions,
            batch.page_start,
            batch.page_end,
            structured=False,
            example_formats=job.example_formats,
        )
        response = await self._rate_limiter.throttle(
            lambda: self._document_ai.extract_text(job.document, prompt)
        )
        usage = usage + response.usage
        candidates = self._parser.parse_text(response.text, batch.page_start, batch.page_end)
        return candidates, usage, self._use_structured

    def _to_chunk(
        self,
        candidate: ChunkCandidate,
        vector: list[float],
        batch: Batch,
        job: BatchJob,
        index: int,
    ) -> Chunk:
        return Chunk(
            id=str(uuid.uuid4()),
            document_id=job.document_id,
            batch_index=batch.batch_index,
            chunk_index=index,
            prompt_config_id=job.prompt_config_id,
            chunk_type=candidate.chunk_type,
            sub_type=candidate.sub_type,
            page_start=candidate.page_start,
            page_end=candidate.page_end,
            confidence=candidate.confidence,
            search_content=candidate.search_content,
            display_content=candidate.display_content,
            enriched_content=candidate.enriched_content,
            context_text=candidate.context_text,
            embedding=vector,
            embedding_model=self._embeddings.model_id,
            embedding_dimension=len(vector),
        )

    @staticmethod
    def _event(
        batch: Batch,
        job: BatchJob,
        status: BatchStatus,
        *,
        attempt: int = 1,
        error: str | None = None,
    ) -> ProgressEvent:
        return ProgressEvent(
            document_id=job.document_id,
            batch_index=batch.batch_index,
            total_batches=job.total_batches,
            status=status,
            page_start=batch.page_start,
            page_end=batch.page_end,
            attempt=attempt,
            error=error,
        )
