"""Unit tests for Settings and the YAML/env configuration loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.config.loader import build_rag_config, load_config
from src.config.settings import Settings
from src.models.chunk import ChunkType
from src.models.config import EnrichmentStrategy, RerankerKind
from src.utils.errors import ConfigurationError

_REPO_CONFIG = Path(__file__).resolve().parents[2] / "config" / "config.yaml"


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def _write(tmp_path: Path, text: str) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return str(path)


# ======================================================================
# Settings
# ======================================================================


class TestSettings:
    def test_defaults(self) -> None:
        settings = _settings()
        assert settings.pages_per_batch == 15
        assert settings.database_path == "data/folio.db"
        assert settings.reranker_provider == "llm"

    def test_env_vars_are_read(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAX_CONCURRENCY", "7")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        settings = _settings()
        assert settings.max_concurrency == 7
        assert settings.get_available_llm_providers() == ["anthropic"]

    def test_available_providers(self) -> None:
        settings = _settings(anthropic_api_key="a", openai_api_key="o", cohere_api_key="c")
        assert settings.get_available_llm_providers() == ["anthropic", "openai"]
        assert settings.get_available_embedding_providers() == ["openai", "cohere"]


# ======================================================================
# load_config
# ======================================================================


class TestLoadConfig:
    def test_yaml_values_survive_unset_settings(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "batch:\n  pages_per_batch: 8\n  max_retries: 1\n")
        config = load_config(path, _settings())
        assert config["batch"] == {"pages_per_batch": 8, "max_retries": 1}

    def test_explicit_settings_override_yaml(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "batch:\n  pages_per_batch: 8\n  max_retries: 1\n")
        config = load_config(
            path, _settings(max_retries=5, reranking_enabled=True, log_level="DEBUG")
        )
        assert config["batch"] == {"pages_per_batch": 8, "max_retries": 5}
        assert config["reranking"] == {"enabled": True}
        assert config["logging"] == {"level": "DEBUG"}

    def test_cohere_key_always_flows(self, tmp_path: Path) -> None:
        config = load_config(str(tmp_path / "absent.yaml"), _settings(cohere_api_key="co"))
        assert config["reranking"]["cohere_api_key"] == "co"

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        assert load_config(str(tmp_path / "absent.yaml"), _settings()) == {}

    def test_empty_file_is_empty(self, tmp_path: Path) -> None:
        assert load_config(_write(tmp_path, ""), _settings()) == {}

    def test_non_mapping_is_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(_write(tmp_path, "- a\n- b\n"), _settings())


# ======================================================================
# build_rag_config
# ======================================================================


class TestBuildRagConfig:
    def test_repository_config(self) -> None:
        rag = build_rag_config(load_config(str(_REPO_CONFIG), _settings()))

        assert rag.batch.pages_per_batch == 15
        assert rag.rate_limit.requests_per_minute == 60
        assert rag.reranking.provider is RerankerKind.LLM
        assert rag.enrichment.strategy is EnrichmentStrategy.NONE
        assert rag.chunk_type_mapping == {"CLAUSE": ChunkType.TEXT, "RECIPE_STEP": ChunkType.LIST}
        assert rag.log_level == "INFO"

    def test_empty_config_uses_defaults(self) -> None:
        rag = build_rag_config({})
        assert rag.batch.max_concurrency == 3
        assert rag.reranking.enabled is False
        assert rag.use_structured_output is True

    def test_unknown_sections_are_ignored(self) -> None:
        assert build_rag_config({"unrelated": {"x": 1}}).embedding_batch_size == 100

    @pytest.mark.parametrize(
        "config",
        [
            {"batch": {"pages_per_batch": 0}},
            {"batch": {"pages_per_batch": 51}},
            {"reranking": {"provider": "magic"}},
        ],
    )
    def test_invalid_values(self, config: dict) -> None:
        with pytest.raises(ConfigurationError, match="Invalid engine configuration"):
            build_rag_config(config)
