"""Abstract base class for document-AI providers (PDF in, content out).

A document-AI provider receives the whole PDF plus a page-range-scoped
extraction instruction and returns either:

- **structured output** -- a JSON array of ``{type, page, confidence,
  content}`` objects (validated later by the extraction parser), or
- **free text** annotated with paired ``<!-- SECTION ... -->`` markers.

Both carry token usage so the orchestrator can aggregate cost per
document.  Providers do *not* validate the structured payload: that is
the parser's job, so that validation failures can trigger the marker
fallback uniformly across vendors.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict, Field

from src.models.document import PdfDocument, TokenUsage


class DocumentAIResponse(BaseModel):
    """Raw model output plus usage."""

    model_config = ConfigDict(frozen=True)

    text: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str | None = None


# Concrete implementations: AnthropicDocumentProvider, OpenAIDocumentProvider
# Located in: src/providers/document_ai/
class IDocumentAIProvider(ABC):
    """Contract for PDF-aware generation used by extraction and discovery."""

    @abstractmethod
    async def extract_structured(self, document: PdfDocument, prompt: str) -> DocumentAIResponse:
        """Ask the model for a JSON array of sections.

        Parameters
        ----------
        document:
            The loaded PDF (bytes + metadata).
        prompt:
            Extraction instructions including the page-range restriction.

        Returns
        -------
        DocumentAIResponse
            ``text`` holds the raw JSON (possibly fenced); it is not
            validated here.

        Raises
        ------
        src.utils.errors.RateLimitError
            When the provider signals throttling.
        src.utils.errors.LLMError
            On any other API failure; ``retryable`` is set for transient
            (timeout / connection / 5xx) failures.
        """

    @abstractmethod
    async def extract_text(self, document: PdfDocument, prompt: str) -> DocumentAIResponse:
        """Ask the model for free text (SECTION-marker annotated markdown)."""

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the model identifier recorded on ingested documents."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"anthropic-document"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if credentials are configured."""
