"""
Provider Registry
=================
Single source of truth for every LLM vendor graph_agent can talk to.

Adding a provider is one PROVIDER_REGISTRY entry. Nothing else branches on
the vendor name: the factory dispatches on `wire_family`, the token tracker
looks prices up here, and auto-detection walks the entries in declared
order and picks the first whose credential variable is set.
"""
import os
from dataclasses import dataclass
from typing import Literal

WireFamily = Literal["openai-compatible", "anthropic"]


@dataclass(frozen=True)
class TokenPricing:
    """USD per million tokens."""
    input_per_million: float
    cached_input_per_million: float
    output_per_million: float


@dataclass(frozen=True)
class ProviderEntry:
    name: str
    wire_family: WireFamily
    base_url: str
    default_model: str
    pricing: TokenPricing
    api_key_env_var: str
    supports_embedding: bool


PROVIDER_REGISTRY: dict[str, ProviderEntry] = {
    "deepseek": ProviderEntry(
        name="deepseek",
        wire_family="openai-compatible",
        base_url="https://api.deepseek.com",
        default_model="deepseek-chat",
        pricing=TokenPricing(0.28, 0.028, 0.42),
        api_key_env_var="DEEPSEEK_API_KEY",
        supports_embedding=False,
    ),
    "openai": ProviderEntry(
        name="openai",
        wire_family="openai-compatible",
        base_url="https://api.openai.com/v1",
        default_model="gpt-4o",
        pricing=TokenPricing(2.50, 1.25, 10.00),
        api_key_env_var="OPENAI_API_KEY",
        supports_embedding=True,
    ),
    "openai-mini": ProviderEntry(
        name="openai-mini",
        wire_family="openai-compatible",
        base_url="https://api.openai.com/v1",
        default_model="gpt-4o-mini",
        pricing=TokenPricing(0.15, 0.075, 0.60),
        api_key_env_var="OPENAI_API_KEY",
        supports_embedding=True,
    ),
    "anthropic": ProviderEntry(
        name="anthropic",
        wire_family="anthropic",
        base_url="https://api.anthropic.com",
        default_model="claude-sonnet-4-20250514",
        pricing=TokenPricing(3.00, 0.30, 15.00),
        api_key_env_var="ANTHROPIC_API_KEY",
        supports_embedding=False,
    ),
    "groq": ProviderEntry(
        name="groq",
        wire_family="openai-compatible",
        base_url="https://api.groq.com/openai/v1",
        default_model="llama-3.3-70b-versatile",
        pricing=TokenPricing(0.59, 0.59, 0.79),
        api_key_env_var="GROQ_API_KEY",
        supports_embedding=False,
    ),
}

# Pricing used for names that are not registered.
DEFAULT_PRICING_PROVIDER = "deepseek"


def get_provider_entry(name: str) -> ProviderEntry | None:
    return PROVIDER_REGISTRY.get(name)


def get_provider_pricing(name: str | None) -> TokenPricing:
    entry = PROVIDER_REGISTRY.get(name) if name else None
    if entry is None:
        return PROVIDER_REGISTRY[DEFAULT_PRICING_PROVIDER].pricing
    return entry.pricing


def detect_available_provider() -> str | None:
    """First registered provider whose API key variable is set."""
    for name, entry in PROVIDER_REGISTRY.items():
        if os.getenv(entry.api_key_env_var):
            return name
    return None


def detect_embedding_capable_provider() -> str | None:
    for name, entry in PROVIDER_REGISTRY.items():
        if entry.supports_embedding and os.getenv(entry.api_key_env_var):
            return name
    return None
