"""
AI Configuration
================
Resolves which chat and embedding providers to use from the environment.

Chat provider resolution order:
  1. explicit override passed to resolve_ai_config()
  2. LLM_PROVIDER, if it names a registered provider
  3. first registry entry whose API key variable is set

Other variables:
  EMBEDDING_MODEL   embedding model name (default text-embedding-3-small)
  AI_DEBUG          "true" or "1" turns on debug_ai() events
  THREAD_DB_PATH    SQLite file for durable threads (default ai_threads.db)
"""
import logging
import os
from dataclasses import dataclass

from .ai_logging import set_ai_debug
from .registry import (
    PROVIDER_REGISTRY,
    detect_available_provider,
    detect_embedding_capable_provider,
)

logger = logging.getLogger(__name__)

DEFAULT_THREAD_DB_PATH  = "ai_threads.db"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


@dataclass
class AIConfig:
    chat_provider: str | None = None
    chat_api_key: str | None = None
    chat_model: str | None = None
    chat_base_url: str | None = None
    embedding_provider: str | None = None
    embedding_api_key: str | None = None
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    debug: bool = False
    thread_db_path: str = DEFAULT_THREAD_DB_PATH


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("true", "1")


def resolve_ai_config(**overrides) -> AIConfig:
    forced = overrides.get("chat_provider") or os.getenv("LLM_PROVIDER", "").strip().lower()
    if forced and forced not in PROVIDER_REGISTRY:
        logger.warning("[config] LLM_PROVIDER=%s is not registered, auto-detecting", forced)
        forced = None
    chat_provider = forced or detect_available_provider()

    config = AIConfig(
        embedding_model=os.getenv("EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL,
        debug=_env_flag("AI_DEBUG"),
        thread_db_path=os.getenv("THREAD_DB_PATH") or DEFAULT_THREAD_DB_PATH,
    )

    if chat_provider:
        entry = PROVIDER_REGISTRY[chat_provider]
        config.chat_provider = chat_provider
        config.chat_api_key  = os.getenv(entry.api_key_env_var)
        config.chat_model    = entry.default_model
        config.chat_base_url = entry.base_url

    embedding_provider = detect_embedding_capable_provider()
    if embedding_provider:
        config.embedding_provider = embedding_provider
        config.embedding_api_key  = os.getenv(PROVIDER_REGISTRY[embedding_provider].api_key_env_var)

    for key, value in overrides.items():
        if not hasattr(config, key):
            raise TypeError(f"Unknown AI config field: {key}")
        if value is not None:
            setattr(config, key, value)
    return config


_config: AIConfig | None = None


def get_ai_config() -> AIConfig:
    global _config
    if _config is None:
        _config = resolve_ai_config()
        set_ai_debug(_config.debug)
        logger.info(
            "[config] chat=%s embedding=%s",
            _config.chat_provider or "none", _config.embedding_provider or "none",
        )
    return _config


def reset_ai_config() -> None:
    global _config
    _config = None
