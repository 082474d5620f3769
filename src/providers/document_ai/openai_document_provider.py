"""OpenAI document-AI adapter.

PDFs travel as a chat ``file`` content part carrying a base64 data URI;
the model receives both the extracted text and an image of every page.
"""

from __future__ import annotations

import base64

import openai
import structlog

from src.config.settings import Settings
from src.interfaces.document_ai_provider import DocumentAIResponse, IDocumentAIProvider
from src.models.config import GenerationConfig
from src.models.document import PdfDocument, TokenUsage
from src.providers.llm.openai_provider import build_openai_client, translate_openai_error
from src.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)

# Whole-document requests take far longer than chat completions.
_DOCUMENT_TIMEOUT = openai.Timeout(300.0, connect=10.0)


class OpenAIDocumentProvider(IDocumentAIProvider):
    """Chat completions with PDF file input (``gpt-4o`` by default)."""

    def __init__(
        self,
        settings: Settings,
        generation: GenerationConfig | None = None,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self._api_key = settings.openai_api_key
        self._client = client or build_openai_client(settings, _DOCUMENT_TIMEOUT)
        self._model = settings.openai_document_model or "gpt-4o"
        self._generation = generation or GenerationConfig()

    async def extract_structured(self, document: PdfDocument, prompt: str) -> DocumentAIResponse:
        return await self._generate(document, prompt)

    async def extract_text(self, document: PdfDocument, prompt: str) -> DocumentAIResponse:
        return await self._generate(document, prompt)

    async def _generate(self, document: PdfDocument, prompt: str) -> DocumentAIResponse:
        data = base64.b64encode(document.content).decode("ascii")
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "file",
                                "file": {
                                    "filename": document.metadata.filename,
                                    "file_data": f"data:application/pdf;base64,{data}",
                                },
                            },
                            {"type": "text", "text": prompt},
                        ],
                    }
                ],
                temperature=self._generation.temperature,
                max_tokens=self._generation.max_output_tokens,
            )
        except openai.APIError as exc:
            raise translate_openai_error(exc, self.get_provider_name()) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMError(
                message="OpenAI returned no text for the document",
                provider_name=self.get_provider_name(),
                retryable=True,
            )
        usage = TokenUsage()
        if response.usage is not None:
            usage = TokenUsage(
                input=response.usage.prompt_tokens,
                output=response.usage.completion_tokens,
                total=response.usage.total_tokens,
            )
        logger.debug(
            "openai_document_generation",
            model=self._model,
            filename=document.metadata.filename,
            tokens=usage.total,
        )
        return DocumentAIResponse(text=content, usage=usage, model=self._model)

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return "openai-document"

    def is_available(self) -> bool:
        return bool(self._api_key)
