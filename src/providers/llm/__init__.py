"""LLM provider adapters.

Two concrete implementations of ILLMProvider (src/interfaces/llm_provider.py):
    - AnthropicLLMProvider: Claude via the Messages API
    - OpenAILLMProvider: gpt-4o-mini, or any OpenAI-compatible endpoint

main.py picks the provider named by LLM_PROVIDER (or the first one with an
API key) and shares it between enrichment, reranking and discovery.
"""

from src.providers.llm.anthropic_provider import AnthropicLLMProvider
from src.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["AnthropicLLMProvider", "OpenAILLMProvider"]
