"""Document-AI provider adapters (PDF in, structured or marked-up text out).

Two concrete implementations of IDocumentAIProvider
(src/interfaces/document_ai_provider.py):
    - AnthropicDocumentProvider: base64 ``document`` content block
    - OpenAIDocumentProvider: chat ``file`` part with a PDF data URI

Both translate SDK rate-limit errors into RateLimitError so the shared
rate limiter can back off.
"""

from src.providers.document_ai.anthropic_document_provider import AnthropicDocumentProvider
from src.providers.document_ai.openai_document_provider import OpenAIDocumentProvider

__all__ = ["AnthropicDocumentProvider", "OpenAIDocumentProvider"]
