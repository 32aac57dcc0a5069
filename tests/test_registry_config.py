"""
Tests for graph_agent/registry.py and graph_agent/config.py
===========================================================
Covers:
  - registry lookups and default pricing
  - provider auto-detection follows registry order
  - embedding-capable detection
  - resolve_ai_config: LLM_PROVIDER override, unknown names, explicit overrides
  - get_ai_config caching and reset
"""
import pytest

from graph_agent.config import (
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_THREAD_DB_PATH,
    get_ai_config,
    reset_ai_config,
    resolve_ai_config,
)
from graph_agent.registry import (
    PROVIDER_REGISTRY,
    detect_available_provider,
    detect_embedding_capable_provider,
    get_provider_entry,
    get_provider_pricing,
)


@pytest.fixture(autouse=True)
def _fresh_config():
    reset_ai_config()
    yield
    reset_ai_config()


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TestRegistry:
    def test_entries_are_consistent(self):
        for name, entry in PROVIDER_REGISTRY.items():
            assert entry.name == name
            assert entry.wire_family in ("openai-compatible", "anthropic")
            assert entry.api_key_env_var.endswith("_API_KEY")

    def test_lookup(self):
        assert get_provider_entry("anthropic").wire_family == "anthropic"
        assert get_provider_entry("nope") is None

    def test_pricing_fallback(self):
        assert get_provider_pricing(None) == PROVIDER_REGISTRY["deepseek"].pricing
        assert get_provider_pricing("groq") == PROVIDER_REGISTRY["groq"].pricing

    def test_no_keys_detects_nothing(self):
        assert detect_available_provider() is None
        assert detect_embedding_capable_provider() is None

    def test_detection_follows_registry_order(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "a")
        monkeypatch.setenv("DEEPSEEK_API_KEY", "d")
        assert detect_available_provider() == "deepseek"

    def test_embedding_needs_capable_provider(self, monkeypatch):
        monkeypatch.setenv("DEEPSEEK_API_KEY", "d")
        assert detect_embedding_capable_provider() is None
        monkeypatch.setenv("OPENAI_API_KEY", "o")
        assert detect_embedding_capable_provider() == "openai"


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

class TestConfig:
    def test_defaults_without_keys(self):
        config = resolve_ai_config()
        assert config.chat_provider is None
        assert config.embedding_provider is None
        assert config.embedding_model == DEFAULT_EMBEDDING_MODEL
        assert config.thread_db_path == DEFAULT_THREAD_DB_PATH
        assert config.debug is False

    def test_auto_detected_provider(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        config = resolve_ai_config()
        assert config.chat_provider == "openai"
        assert config.chat_api_key == "sk-test"
        assert config.chat_model == "gpt-4o"
        assert config.embedding_provider == "openai"

    def test_llm_provider_override(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("LLM_PROVIDER", "openai-mini")
        config = resolve_ai_config()
        assert config.chat_provider == "openai-mini"
        assert config.chat_model == "gpt-4o-mini"

    def test_unknown_llm_provider_falls_back(self, monkeypatch):
        monkeypatch.setenv("GROQ_API_KEY", "g")
        monkeypatch.setenv("LLM_PROVIDER", "mystery")
        assert resolve_ai_config().chat_provider == "groq"

    def test_env_variables(self, monkeypatch):
        monkeypatch.setenv("EMBEDDING_MODEL", "text-embedding-3-large")
        monkeypatch.setenv("AI_DEBUG", "1")
        monkeypatch.setenv("THREAD_DB_PATH", "/tmp/threads.db")
        config = resolve_ai_config()
        assert config.embedding_model == "text-embedding-3-large"
        assert config.debug is True
        assert config.thread_db_path == "/tmp/threads.db"

    def test_explicit_overrides(self):
        config = resolve_ai_config(chat_model="custom", chat_api_key="k")
        assert config.chat_model == "custom"
        assert config.chat_api_key == "k"

    def test_unknown_override_raises(self):
        with pytest.raises(TypeError):
            resolve_ai_config(temperature=0.1)

    def test_get_ai_config_is_cached(self, monkeypatch):
        first = get_ai_config()
        monkeypatch.setenv("OPENAI_API_KEY", "sk-late")
        assert get_ai_config() is first
        reset_ai_config()
        assert get_ai_config().chat_provider == "openai"
