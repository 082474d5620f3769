"""Utility modules for folio-rag.

- **errors** -- exception hierarchy rooted at FolioError; every error carries
  a stable code and a retryable flag.
- **retry** -- exponential backoff with jitter for retryable errors.
- **rate_limiter** -- adaptive token bucket shared by all LLM-backed calls.
- **concurrency** -- semaphore-bounded gather and wave execution.
- **logging** -- structlog setup with console or JSON rendering.
"""

from src.utils.concurrency import run_in_waves, throttled_gather
from src.utils.errors import (
    ConfigurationError,
    DiscoveryError,
    EmbeddingError,
    FolioError,
    IngestionError,
    LLMError,
    NotFoundError,
    RateLimitError,
    RerankingError,
    SearchError,
    StorageError,
    ValidationError,
)
from src.utils.logging import bind_log_context, configure_logging, get_logger
from src.utils.rate_limiter import RateLimiter, RateLimiterStatus
from src.utils.retry import RetryOptions, is_retryable, with_retry

__all__ = [
    "ConfigurationError",
    "DiscoveryError",
    "EmbeddingError",
    "FolioError",
    "IngestionError",
    "LLMError",
    "NotFoundError",
    "RateLimitError",
    "RateLimiter",
    "RateLimiterStatus",
    "RerankingError",
    "RetryOptions",
    "SearchError",
    "StorageError",
    "ValidationError",
    "bind_log_context",
    "configure_logging",
    "get_logger",
    "is_retryable",
    "run_in_waves",
    "throttled_gather",
    "with_retry",
]
