"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ──────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml -- static engine defaults checked into the repo
#   2. .env file -- local developer overrides (not committed)
#   3. Environment vars -- set at deploy time
#
# Only Settings fields that were explicitly provided (env or .env) are
# merged over the YAML, so an unset env var never clobbers a YAML value
# with the Settings default.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from src.config.settings import Settings
from src.models.config import RagConfig
from src.utils.errors import ConfigurationError

# Settings field -> (yaml section, yaml key)
_ENV_TO_YAML: dict[str, tuple[str, str]] = {
    "pages_per_batch": ("batch", "pages_per_batch"),
    "max_concurrency": ("batch", "max_concurrency"),
    "max_retries": ("batch", "max_retries"),
    "retry_delay_ms": ("batch", "retry_delay_ms"),
    "backoff_multiplier": ("batch", "backoff_multiplier"),
    "requests_per_minute": ("rate_limit", "requests_per_minute"),
    "adaptive_rate_limit": ("rate_limit", "adaptive"),
    "reranking_enabled": ("reranking", "enabled"),
    "reranker_provider": ("reranking", "provider"),
    "rerank_candidates": ("reranking", "default_candidates"),
    "cohere_api_key": ("reranking", "cohere_api_key"),
    "enrichment_strategy": ("enrichment", "strategy"),
    "log_level": ("logging", "level"),
}


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.  A missing file yields
              an empty base config.
        settings: Pre-built settings; constructed from the environment
                  when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    if not isinstance(yaml_config, dict):
        raise ConfigurationError(f"Top level of {path} must be a mapping")

    settings = settings or Settings()
    env_overrides: dict[str, Any] = {}
    for field_name, (section, key) in _ENV_TO_YAML.items():
        if field_name in settings.model_fields_set:
            env_overrides.setdefault(section, {})[key] = getattr(settings, field_name)
    if "use_structured_output" in settings.model_fields_set:
        env_overrides["use_structured_output"] = settings.use_structured_output
    # The cohere key always flows through so the reranker factory can see it.
    if settings.cohere_api_key:
        env_overrides.setdefault("reranking", {})["cohere_api_key"] = settings.cohere_api_key

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def build_rag_config(config: dict) -> RagConfig:
    """Validate a merged config dict into typed engine sections."""
    payload = {
        key: value
        for key, value in config.items()
        if key in RagConfig.model_fields
    }
    logging_section = config.get("logging") or {}
    if "level" in logging_section:
        payload["log_level"] = logging_section["level"]
    try:
        return RagConfig.model_validate(payload)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid engine configuration: {exc}") from exc


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
