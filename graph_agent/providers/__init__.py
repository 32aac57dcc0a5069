from .anthropic_provider import AnthropicProvider
from .base import LLMProvider, LLMResponse, StreamEvent, TokenUsage
from .embeddings import EMBEDDING_MODELS, EmbeddingProvider, OpenAIEmbeddingProvider
from .factory import (
    create_embedding_provider_from_config,
    create_llm_provider,
    create_llm_provider_from_config,
    detect_embedding_provider,
    detect_llm_provider,
)
from .openai_compatible import OpenAICompatibleProvider

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "StreamEvent",
    "TokenUsage",
    "OpenAICompatibleProvider",
    "AnthropicProvider",
    "EmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "EMBEDDING_MODELS",
    "create_llm_provider",
    "detect_llm_provider",
    "create_llm_provider_from_config",
    "create_embedding_provider_from_config",
    "detect_embedding_provider",
]
