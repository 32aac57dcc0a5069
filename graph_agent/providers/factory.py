"""
Provider Factory
================
Builds LLM and embedding providers from registry names or from the resolved
AIConfig. Dispatch happens on the registry entry's wire family, never on the
vendor name, so adding an OpenAI-compatible vendor needs no code here.
"""
import logging
import os

from ..config import AIConfig, get_ai_config
from ..errors import UnknownEmbeddingModelError, UnknownProviderError
from ..registry import PROVIDER_REGISTRY, detect_available_provider, detect_embedding_capable_provider
from ..token_tracker import TokenTracker
from .anthropic_provider import AnthropicProvider
from .base import LLMProvider
from .embeddings import DEFAULT_EMBEDDING_MODEL, OpenAIEmbeddingProvider
from .openai_compatible import OpenAICompatibleProvider

logger = logging.getLogger(__name__)


def create_llm_provider(
    provider: str,
    api_key: str,
    model: str | None = None,
    tracker: TokenTracker | None = None,
    base_url: str | None = None,
) -> LLMProvider:
    entry = PROVIDER_REGISTRY.get(provider)
    if entry is None:
        raise UnknownProviderError(provider)

    if entry.wire_family == "anthropic":
        return AnthropicProvider(
            api_key=api_key,
            model=model or entry.default_model,
            tracker=tracker,
            provider_name=entry.name,
        )
    return OpenAICompatibleProvider(
        api_key=api_key,
        provider_name=entry.name,
        base_url=base_url or entry.base_url,
        model=model or entry.default_model,
        tracker=tracker,
    )


def detect_llm_provider(tracker: TokenTracker | None = None) -> LLMProvider | None:
    """Provider for the first registry entry with a credential set, or None."""
    name = detect_available_provider()
    if name is None:
        return None
    entry = PROVIDER_REGISTRY[name]
    logger.info("[providers] Auto-detected LLM provider: %s", name)
    return create_llm_provider(name, os.environ[entry.api_key_env_var], tracker=tracker)


def detect_embedding_provider(tracker: TokenTracker | None = None) -> OpenAIEmbeddingProvider | None:
    name = detect_embedding_capable_provider()
    if name is None:
        return None
    entry = PROVIDER_REGISTRY[name]
    model = os.getenv("EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL
    try:
        return OpenAIEmbeddingProvider(
            os.environ[entry.api_key_env_var], model=model, base_url=entry.base_url, tracker=tracker,
        )
    except UnknownEmbeddingModelError as exc:
        logger.warning("[providers] %s", exc)
        return None


def create_llm_provider_from_config(
    config: AIConfig | None = None,
    tracker: TokenTracker | None = None,
) -> LLMProvider | None:
    config = config or get_ai_config()
    if not config.chat_provider or not config.chat_api_key:
        return None
    return create_llm_provider(
        config.chat_provider,
        config.chat_api_key,
        model=config.chat_model,
        tracker=tracker,
        base_url=config.chat_base_url,
    )


def create_embedding_provider_from_config(
    config: AIConfig | None = None,
    tracker: TokenTracker | None = None,
) -> OpenAIEmbeddingProvider | None:
    config = config or get_ai_config()
    if not config.embedding_provider or not config.embedding_api_key:
        return None
    entry = PROVIDER_REGISTRY.get(config.embedding_provider)
    try:
        return OpenAIEmbeddingProvider(
            config.embedding_api_key,
            model=config.embedding_model,
            base_url=entry.base_url if entry else None,
            tracker=tracker,
        )
    except UnknownEmbeddingModelError as exc:
        logger.warning("[providers] %s", exc)
        return None
