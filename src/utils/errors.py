"""Custom exception hierarchy for folio-rag.

All application exceptions inherit from :class:`FolioError`, which carries
an optional ``provider_name`` (which external service failed), a stable
machine-readable ``code``, a ``details`` dict for structured logging, and a
``retryable`` flag consulted by :mod:`src.utils.retry`.

The hierarchy is organized by pipeline domain:

    FolioError  (base -- catch-all for any folio-rag error)
    +-- ConfigurationError         (startup / missing config, never retried)
    +-- ValidationError            (bad caller input)
    +-- NotFoundError              (missing document / batch / prompt config)
    +-- StorageError               (repository failure)
    +-- IngestionError             (a batch failed to process)
    +-- ExtractionValidationError  (structured output failed its schema)
    +-- LLMError                   (any LLM / document-AI call failure)
    +-- EmbeddingError             (embedding provider failure)
    +-- RateLimitError             (provider rate-limit exceeded, always retried)
    +-- RerankingError             (reranker failure, recovered by retrieval)
    +-- SearchError                (retrieval failure)
    +-- DiscoveryError             (document discovery failure)

Callers handle errors at exactly the right level -- the retry executor
retries on ``retryable`` errors, the batch processor falls back to the
marker parser on ``ExtractionValidationError``, and the retrieval engine
degrades to the fused ranking on ``RerankingError``.
"""

from __future__ import annotations

from typing import Any


class FolioError(Exception):
    """Base exception for all folio-rag errors.

    The ``__str__`` method prefixes the provider name in brackets for
    structured log output, e.g. ``[anthropic] Rate limit exceeded``.
    """

    default_code = "FOLIO_ERROR"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        self._code = code or self.default_code
        self._details = dict(details or {})
        # None means "not stated" -- the retry executor then falls back to
        # message-pattern classification.
        self._retryable = retryable
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    @property
    def code(self) -> str:
        return self._code

    @property
    def details(self) -> dict[str, Any]:
        return self._details

    @property
    def retryable(self) -> bool | None:
        return self._retryable

    def to_dict(self) -> dict[str, Any]:
        """Serialise for JSON error bodies and log events."""
        return {
            "error": type(self).__name__,
            "code": self._code,
            "message": self._message,
            "provider": self._provider_name,
            "details": self._details,
        }

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Caller / configuration errors
# ---------------------------------------------------------------------------


class ConfigurationError(FolioError):
    """Raised when configuration is invalid or missing at startup."""

    default_code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message=message, provider_name=provider_name, **kwargs)


class ValidationError(FolioError):
    """Raised when caller input fails validation."""

    default_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str = "Invalid input",
        field: str | None = None,
        **kwargs: Any,
    ) -> None:
        self._field = field
        details = dict(kwargs.pop("details", None) or {})
        if field:
            details["field"] = field
        kwargs.setdefault("retryable", False)
        super().__init__(message=message, details=details, **kwargs)

    @property
    def field(self) -> str | None:
        return self._field


class NotFoundError(FolioError):
    """Raised when a document, batch, or prompt config does not exist."""

    default_code = "NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self._resource_type = resource_type
        self._resource_id = resource_id
        super().__init__(
            message=f"{resource_type} not found: {resource_id}",
            details={"resource_type": resource_type, "resource_id": resource_id},
            retryable=False,
        )

    @property
    def resource_type(self) -> str:
        return self._resource_type

    @property
    def resource_id(self) -> str:
        return self._resource_id


class StorageError(FolioError):
    """Raised when a repository operation fails."""

    default_code = "STORAGE_ERROR"

    def __init__(
        self,
        message: str = "Storage operation failed",
        provider_name: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


# ---------------------------------------------------------------------------
# Ingestion errors
# ---------------------------------------------------------------------------


class IngestionError(FolioError):
    """Raised when a batch (or the ingest call as a whole) fails."""

    default_code = "INGESTION_ERROR"

    def __init__(
        self,
        message: str = "Ingestion failed",
        batch_index: int | None = None,
        **kwargs: Any,
    ) -> None:
        self._batch_index = batch_index
        details = dict(kwargs.pop("details", None) or {})
        if batch_index is not None:
            details["batch_index"] = batch_index
        super().__init__(message=message, details=details, **kwargs)

    @property
    def batch_index(self) -> int | None:
        return self._batch_index


class ExtractionValidationError(FolioError):
    """Raised when structured extraction output does not match its schema.

    Never propagated past the batch processor: it triggers the free-text
    marker fallback instead.
    """

    default_code = "EXTRACTION_VALIDATION_ERROR"

    def __init__(
        self,
        message: str = "Structured extraction failed validation",
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message=message, **kwargs)


# ---------------------------------------------------------------------------
# External service / provider errors
# ---------------------------------------------------------------------------


class LLMError(FolioError):
    """Raised when an LLM or document-AI call fails or returns nothing usable."""

    default_code = "LLM_ERROR"

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


class EmbeddingError(FolioError):
    """Raised when an embedding provider call fails."""

    default_code = "EMBEDDING_ERROR"

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


class RateLimitError(FolioError):
    """Raised when an API rate limit is exceeded.

    Always retryable.  ``retry_after_ms`` (when the provider sent one)
    overrides the computed backoff delay.
    """

    default_code = "RATE_LIMIT"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
        retry_after_ms: int | None = None,
    ) -> None:
        self._retry_after_ms = retry_after_ms
        super().__init__(
            message=message,
            provider_name=provider_name,
            details={"retry_after_ms": retry_after_ms} if retry_after_ms else None,
            retryable=True,
        )

    @property
    def retry_after_ms(self) -> int | None:
        return self._retry_after_ms


class RerankingError(FolioError):
    """Raised inside a reranker; the retrieval engine recovers from it."""

    default_code = "RERANKING_ERROR"

    def __init__(
        self,
        message: str = "Reranking failed",
        provider_name: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, **kwargs)


# ---------------------------------------------------------------------------
# Retrieval / discovery errors
# ---------------------------------------------------------------------------


class SearchError(FolioError):
    """Raised when a search cannot be executed at all."""

    default_code = "SEARCH_ERROR"

    def __init__(self, message: str = "Search failed", **kwargs: Any) -> None:
        super().__init__(message=message, **kwargs)


class DiscoveryError(FolioError):
    """Raised when document discovery fails."""

    default_code = "DISCOVERY_ERROR"

    def __init__(self, message: str = "Document discovery failed", **kwargs: Any) -> None:
        super().__init__(message=message, **kwargs)
