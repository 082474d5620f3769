"""Unit tests for the FolioError hierarchy."""

from __future__ import annotations

import pytest

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


class TestFolioError:
    def test_str_prefixes_provider(self) -> None:
        assert str(LLMError("boom", provider_name="anthropic")) == "[anthropic] boom"
        assert str(LLMError("boom")) == "boom"

    def test_default_codes(self) -> None:
        assert FolioError().code == "FOLIO_ERROR"
        assert StorageError().code == "STORAGE_ERROR"
        assert RateLimitError().code == "RATE_LIMIT"
        assert SearchError().code == "SEARCH_ERROR"
        assert DiscoveryError().code == "DISCOVERY_ERROR"

    def test_custom_code_and_details(self) -> None:
        error = EmbeddingError("dims", code="DIMENSION_MISMATCH", details={"expected": 3})
        assert error.code == "DIMENSION_MISMATCH"
        assert error.details == {"expected": 3}

    def test_to_dict(self) -> None:
        payload = RerankingError("bad json", provider_name="llm:fake").to_dict()
        assert payload == {
            "error": "RerankingError",
            "code": "RERANKING_ERROR",
            "message": "bad json",
            "provider": "llm:fake",
            "details": {},
        }

    @pytest.mark.parametrize(
        "error_cls",
        [ConfigurationError, ValidationError, StorageError, LLMError, SearchError],
    )
    def test_every_error_is_a_folio_error(self, error_cls: type[FolioError]) -> None:
        assert isinstance(error_cls(), FolioError)


class TestSubclassFields:
    def test_validation_error_records_field(self) -> None:
        error = ValidationError("bad filename", field="filename")
        assert error.field == "filename"
        assert error.details["field"] == "filename"
        assert error.retryable is False

    def test_not_found_message(self) -> None:
        error = NotFoundError("Document", "doc-9")
        assert error.message == "Document not found: doc-9"
        assert error.resource_type == "Document"
        assert error.resource_id == "doc-9"
        assert error.retryable is False

    def test_ingestion_error_batch_index(self) -> None:
        error = IngestionError("batch failed", batch_index=4)
        assert error.batch_index == 4
        assert error.details == {"batch_index": 4}

    def test_rate_limit_error_carries_retry_after(self) -> None:
        error = RateLimitError("slow", provider_name="openai", retry_after_ms=3000)
        assert error.retry_after_ms == 3000
        assert error.retryable is True
        assert error.details == {"retry_after_ms": 3000}

    def test_configuration_error_is_never_retryable(self) -> None:
        assert ConfigurationError().retryable is False

    def test_retryable_unset_by_default(self) -> None:
        assert LLMError().retryable is None
