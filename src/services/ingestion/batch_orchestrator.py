"""Ingestion orchestrator: PDF -> page batches -> chunks.

Splits a document into contiguous page batches, persists the document and
batch rows, runs the batches in waves of ``max_concurrency`` and finalises
the document from its batch counters.  One failing batch never affects its
siblings; the document then ends PARTIAL.

Once batching has begun :meth:`IngestionOrchestrator.ingest` does not
raise.  An unexpected error past that point marks the document FAILED and
is reported in the result's warnings.
"""

from __future__ import annotations

import time
import uuid
from pathlib import Path

import structlog

from src.interfaces.document_ai_provider import IDocumentAIProvider
from src.interfaces.document_store import IDocumentStore
from src.interfaces.prompt_config_store import IPromptConfigStore
from src.models.config import BatchConfig
from src.models.document import (
    Batch,
    BatchResult,
    BatchStatus,
    Document,
    DocumentStatus,
    DocumentStatusReport,
    IngestionResult,
    IngestOptions,
    TokenUsage,
)
from src.services.ingestion.batch_processor import BatchJob, BatchProcessor, ProgressCallback
from src.services.ingestion.pdf_processor import PdfProcessor
from src.services.ingestion.prompts import DEFAULT_DOCUMENT_INSTRUCTIONS
from src.utils.concurrency import run_in_waves
from src.utils.errors import ValidationError
from src.utils.logging import bind_log_context
from src.utils.retry import RetryOptions

logger = structlog.get_logger(logger_name=__name__)

SKIPPED_WARNING = "Document already exists for this experiment, skipped processing"


def retry_options_for(config: BatchConfig) -> RetryOptions:
    return RetryOptions(
        max_retries=config.max_retries,
        retry_delay_ms=config.retry_delay_ms,
        backoff_multiplier=config.backoff_multiplier,
    )


def _split_lines(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


class IngestionOrchestrator:
    """Drives batch processing for whole documents.

    Parameters
    ----------
    pdf_processor:
        Loads PDFs and plans batches.
    batch_processor:
        Per-batch pipeline.
    document_store:
        Document and batch persistence.
    prompt_configs:
        Source of per-document-type default instructions.
    document_ai:
        Only consulted for the model name recorded on the document.
    batch_config:
        Batch size, wave size and retry policy.
    """

    def __init__(
        self,
        pdf_processor: PdfProcessor,
        batch_processor: BatchProcessor,
        document_store: IDocumentStore,
        prompt_configs: IPromptConfigStore,
        document_ai: IDocumentAIProvider,
        batch_config: BatchConfig,
    ) -> None:
        self._pdf = pdf_processor
        self._processor = batch_processor
        self._documents = document_store
        self._prompt_configs = prompt_configs
        self._document_ai = document_ai
        self._config = batch_config

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    async def ingest(self, options: IngestOptions) -> IngestionResult:
        """Ingest one PDF.

        Raises
        ------
        ValidationError
            If the PDF cannot be loaded.
        NotFoundError
            If ``options.prompt_config_id`` does not exist.
        """
        started = time.monotonic()
        pdf = self._pdf.load(options.file, options.filename)
        metadata = pdf.metadata

        if options.skip_existing:
            existing = await self._documents.find_by_hash(metadata.file_hash, options.experiment_id)
            if existing is not None:
                logger.info(
                    "document_skipped_existing",
                    document_id=existing.id,
                    experiment_id=options.experiment_id,
                )
                return IngestionResult(
                    document_id=existing.id,
                    status=existing.status,
                    chunk_count=0,
                    batch_count=existing.total_batches,
                    failed_batch_count=existing.failed_batches,
                    token_usage=existing.token_usage,
                    processing_ms=0,
                    warnings=[SKIPPED_WARNING],
                )

        instructions, prompt_config_id = await self._resolve_instructions(options)
        specs = self._pdf.create_batches(metadata.page_count, self._config.pages_per_batch)

        document, batches = await self._documents.create_document(
            Document(
                id=str(uuid.uuid4()),
                filename=metadata.filename,
                file_hash=metadata.file_hash,
                file_size=metadata.file_size,
                page_count=metadata.page_count,
                document_type=options.document_type,
                experiment_id=options.experiment_id,
                model_name=self._document_ai.get_model_name(),
                prompt_config_id=prompt_config_id,
            ),
            specs,
        )

        with bind_log_context(document_id=document.id):
            logger.info(
                "ingestion_started",
                filename=metadata.filename,
                page_count=metadata.page_count,
                batches=len(batches),
                document_type=options.document_type,
            )
            job = BatchJob(
                document_id=document.id,
                document=pdf,
                total_batches=len(batches),
                instructions=instructions,
                document_type=options.document_type,
                prompt_config_id=prompt_config_id,
                on_progress=options.on_progress,
            )
            return await self._run(document.id, batches, job, started)

    async def _resolve_instructions(
        self, options: IngestOptions
    ) -> tuple[list[str], str | None]:
        """Pick extraction instructions.

        Precedence: ``custom_prompt`` > explicit prompt config > the
        document type's default config > built-in defaults.  The prompt
        config id is recorded even when a custom prompt overrides its text.
        """
        instructions: list[str] = []
        prompt_config_id = options.prompt_config_id

        if prompt_config_id is not None:
            config = await self._prompt_configs.get(prompt_config_id)
            instructions = config.instructions
        elif options.document_type:
            config = await self._prompt_configs.get_default(options.document_type)
            if config is not None:
                prompt_config_id = config.id
                instructions = config.instructions

        if options.custom_prompt:
            instructions = _split_lines(options.custom_prompt)
        if not instructions:
            instructions = list(DEFAULT_DOCUMENT_INSTRUCTIONS)
        return instructions, prompt_config_id

    async def _run(
        self,
        document_id: str,
        batches: list[Batch],
        job: BatchJob,
        started: float,
        retry_options: RetryOptions | None = None,
        *,
        prior_usage: TokenUsage | None = None,
    ) -> IngestionResult:
        try:
            await self._documents.set_document_status(document_id, DocumentStatus.PROCESSING)

            async def _worker(batch: Batch) -> BatchResult:
                try:
                    return await self._processor.process(batch, job, retry_options)
                except Exception as exc:
                    # Storage failure while recording the outcome.
                    logger.error(
                        "batch_worker_crashed", batch_index=batch.batch_index, error=str(exc)
                    )
                    await self._record_crashed_batch(document_id, batch, str(exc))
                    return BatchResult(
                        batch_index=batch.batch_index, status=BatchStatus.FAILED, error=str(exc)
                    )

            results = await run_in_waves(batches, _worker, self._config.max_concurrency)

            usage = TokenUsage()
            for result in results:
                usage = usage + result.token_usage
            processing_ms = int((time.monotonic() - started) * 1000)
            # The stored total also covers any earlier run of this document.
            document = await self._documents.mark_document_completed(
                document_id, usage + (prior_usage or TokenUsage()), processing_ms
            )
            if document.status is DocumentStatus.PROCESSING:
                document = await self._settle_status(document_id, results)
        except Exception as exc:
            logger.exception("ingestion_aborted", error=str(exc))
            await self._mark_aborted(document_id, str(exc))
            return IngestionResult(
                document_id=document_id,
                status=DocumentStatus.FAILED,
                batch_count=len(batches),
                processing_ms=int((time.monotonic() - started) * 1000),
                warnings=[f"Ingestion aborted: {exc}"],
            )

        failed = sum(1 for r in results if r.status is BatchStatus.FAILED)
        warnings = [f"{failed} batch(es) failed to process"] if failed else []
        result = IngestionResult(
            document_id=document_id,
            status=document.status,
            chunk_count=sum(r.chunk_count for r in results),
            batch_count=len(batches),
            failed_batch_count=failed,
            token_usage=usage,
            processing_ms=processing_ms,
            batches=sorted(results, key=lambda r: r.batch_index),
            warnings=warnings,
        )
        logger.info(
            "ingestion_completed",
            status=result.status.value,
            chunk_count=result.chunk_count,
            batch_count=result.batch_count,
            failed_batch_count=failed,
            processing_ms=processing_ms,
        )
        return result

    async def _record_crashed_batch(self, document_id: str, batch: Batch, error: str) -> None:
        """Count a batch whose processor raised as failed so the document can settle."""
        try:
            await self._documents.mark_batch_failed(batch.id, error)
            await self._documents.increment_failed(document_id)
        except Exception as exc:
            logger.error(
                "batch_failure_record_failed", batch_index=batch.batch_index, error=str(exc)
            )

    async def _settle_status(self, document_id: str, results: list[BatchResult]) -> Document:
        # Counters were not fully recorded; fall back to this run's outcomes.
        failed = any(r.status is BatchStatus.FAILED for r in results)
        status = DocumentStatus.PARTIAL if failed else DocumentStatus.COMPLETED
        logger.warning("document_counters_inconsistent", status=status.value)
        await self._documents.set_document_status(document_id, status)
        return await self._documents.get_document(document_id)

    async def _mark_aborted(self, document_id: str, error: str) -> None:
        try:
            await self._documents.set_document_status(document_id, DocumentStatus.FAILED, error)
        except Exception as exc:
            logger.error("document_status_update_failed", error=str(exc))

    # ------------------------------------------------------------------
    # Retry / status
    # ------------------------------------------------------------------

    async def retry_failed_batches(
        self,
        document_id: str,
        file: bytes | str | Path,
        *,
        max_retries: int | None = None,
        error_filter: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> IngestionResult:
        """Reprocess a document's FAILED batches.

        Parameters
        ----------
        document_id:
            Document to repair.
        file:
            The same PDF; it is not stored, so the caller supplies it again.
        max_retries:
            Overrides the configured retry count for this run.
        error_filter:
            Only batches whose ``last_error`` contains this text are retried.

        Raises
        ------
        NotFoundError
            If the document does not exist.
        ValidationError
            If ``file`` is not the document's PDF.
        """
        started = time.monotonic()
        document = await self._documents.get_document(document_id)
        pdf = self._pdf.load(file, document.filename)
        if pdf.metadata.file_hash != document.file_hash:
            raise ValidationError(
                f"File does not match document {document_id} (hash mismatch)", field="file"
            )

        failed = await self._documents.get_batches(document_id, BatchStatus.FAILED)
        if error_filter:
            failed = [b for b in failed if b.last_error and error_filter in b.last_error]
        if not failed:
            return IngestionResult(
                document_id=document_id,
                status=document.status,
                batch_count=document.total_batches,
                failed_batch_count=document.failed_batches,
                token_usage=document.token_usage,
                warnings=["No failed batches to retry"],
            )

        with bind_log_context(document_id=document_id):
            logger.info("retrying_failed_batches", count=len(failed), error_filter=error_filter)
            await self._documents.reset_batches_for_retry(document_id, [b.id for b in failed])

            instructions: list[str] = list(DEFAULT_DOCUMENT_INSTRUCTIONS)
            if document.prompt_config_id is not None:
                config = await self._prompt_configs.get(document.prompt_config_id)
                instructions = config.instructions or instructions

            job = BatchJob(
                document_id=document_id,
                document=pdf,
                total_batches=document.total_batches,
                instructions=instructions,
                document_type=document.document_type,
                prompt_config_id=document.prompt_config_id,
                on_progress=on_progress,
            )
            retry_options = None
            if max_retries is not None:
                retry_options = retry_options_for(self._config).model_copy(
                    update={"max_retries": max_retries}
                )
            return await self._run(
                document_id,
                failed,
                job,
                started,
                retry_options,
                prior_usage=document.token_usage,
            )

    async def get_document_status(self, document_id: str) -> DocumentStatusReport:
        document = await self._documents.get_document(document_id)
        return DocumentStatusReport.from_document(document)
