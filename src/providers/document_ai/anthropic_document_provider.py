"""Anthropic document-AI adapter.

Sends the whole PDF as a base64 ``document`` content block followed by the
page-scoped instruction.  Claude reads PDFs natively (text plus page
images), so no local text extraction happens before the call.
"""

from __future__ import annotations

import base64

import anthropic
import structlog

from src.config.settings import Settings
from src.interfaces.document_ai_provider import DocumentAIResponse, IDocumentAIProvider
from src.models.config import GenerationConfig
from src.models.document import PdfDocument, TokenUsage
from src.providers.llm.anthropic_provider import translate_anthropic_error
from src.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)

_STRUCTURED_SYSTEM = "Respond with valid JSON only. Do not wrap it in prose."
_TEXT_SYSTEM = "Respond in Markdown using the requested SECTION markers."


class AnthropicDocumentProvider(IDocumentAIProvider):
    """Claude Messages API with PDF document blocks."""

    def __init__(self, settings: Settings, generation: GenerationConfig | None = None) -> None:
        self._api_key = settings.anthropic_api_key
        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        self._model = settings.anthropic_model
        self._generation = generation or GenerationConfig()

    async def extract_structured(self, document: PdfDocument, prompt: str) -> DocumentAIResponse:
        return await self._generate(document, prompt, _STRUCTURED_SYSTEM)

    async def extract_text(self, document: PdfDocument, prompt: str) -> DocumentAIResponse:
        return await self._generate(document, prompt, _TEXT_SYSTEM)

    async def _generate(
        self, document: PdfDocument, prompt: str, system_prompt: str
    ) -> DocumentAIResponse:
        data = base64.b64encode(document.content).decode("ascii")
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=self._generation.max_output_tokens,
                temperature=self._generation.temperature,
                system=system_prompt,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "document",
                                "source": {
                                    "type": "base64",
                                    "media_type": "application/pdf",
                                    "data": data,
                                },
                            },
                            {"type": "text", "text": prompt},
                        ],
                    }
                ],
            )
        except anthropic.APIError as exc:
            raise translate_anthropic_error(exc, self.get_provider_name()) from exc

        text = "\n".join(block.text for block in response.content if block.type == "text")
        if not text.strip():
            raise LLMError(
                message="Anthropic returned no text for the document",
                provider_name=self.get_provider_name(),
                retryable=True,
            )
        usage = TokenUsage(
            input=response.usage.input_tokens,
            output=response.usage.output_tokens,
            total=response.usage.input_tokens + response.usage.output_tokens,
        )
        logger.debug(
            "anthropic_document_generation",
            model=self._model,
            filename=document.metadata.filename,
            input_tokens=usage.input,
            output_tokens=usage.output,
            stop_reason=response.stop_reason,
        )
        return DocumentAIResponse(text=text, usage=usage, model=self._model)

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return "anthropic-document"

    def is_available(self) -> bool:
        return bool(self._api_key)
