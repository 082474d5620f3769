"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ─────────────────────────────────────────────────
#
# Values are read from two sources (in priority order):
#
#   1. Environment variables -- e.g. ANTHROPIC_API_KEY=sk-ant-...
#   2. .env file in the working directory (local development)
#
# Field ``anthropic_api_key`` maps to env var ``ANTHROPIC_API_KEY``.
# Defaults apply when neither source provides a value.  Engine tuning
# knobs also live in config/config.yaml; env values win on overlap
# (see src/config/loader.py).
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """folio-rag application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Providers ===
    # Empty string = "not configured"; the factories in main.py skip
    # providers with empty keys.
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_text_model: str = ""
    openai_document_model: str = ""
    openai_embedding_model: str = ""
    cohere_api_key: str = ""
    cohere_embedding_model: str = "embed-multilingual-v3.0"

    # Provider selection tags.  "auto" picks the first provider with a key.
    document_ai_provider: str = "auto"
    llm_provider: str = "auto"
    embedding_provider: str = "auto"
    reranker_provider: str = "llm"

    # === Storage ===
    database_path: str = "data/folio.db"

    # === Ingestion ===
    pages_per_batch: int = 15
    max_concurrency: int = 3
    max_retries: int = 3
    retry_delay_ms: int = 1000
    backoff_multiplier: float = 2.0
    requests_per_minute: int = 60
    adaptive_rate_limit: bool = True
    use_structured_output: bool = True
    enrichment_strategy: str = "none"

    # === Retrieval ===
    reranking_enabled: bool = False
    rerank_candidates: int = 50

    # === Discovery ===
    discovery_session_ttl_seconds: int = 24 * 60 * 60
    discovery_max_sessions: int = 1000

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_llm_providers(self) -> list[str]:
        """Return LLM provider names that have non-empty API keys configured."""
        providers: list[str] = []
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.openai_api_key:
            providers.append("openai")
        return providers

    def get_available_embedding_providers(self) -> list[str]:
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.cohere_api_key:
            providers.append("cohere")
        return providers
