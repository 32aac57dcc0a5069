"""
Tests for graph_agent/token_tracker.py
======================================
Covers:
  - cost formula with and without cached tokens (both usage conventions)
  - worked default-rate example, convention-independent record(), additive totals
  - registry pricing vs explicit TokenPricing override
  - embedding cost
  - summary / averages / format_summary
  - per-call pre-flight limit (raises, records nothing)
  - total budgets notify listeners without raising
  - process-wide default tracker
"""
import pytest

from graph_agent.errors import TokenLimitError
from graph_agent.registry import PROVIDER_REGISTRY, TokenPricing
from graph_agent.token_tracker import (
    TokenLimits,
    TokenTracker,
    compute_cost,
    estimate_tokens,
    extract_cached_tokens,
    get_token_tracker,
    init_token_tracker,
)

FLAT = TokenPricing(input_per_million=1.0, cached_input_per_million=0.1, output_per_million=2.0)


# ---------------------------------------------------------------------------
# Cost arithmetic
# ---------------------------------------------------------------------------

class TestCost:
    def test_cached_tokens_conventions(self):
        assert extract_cached_tokens({"prompt_cache_hit_tokens": 7}) == 7
        assert extract_cached_tokens({"prompt_tokens_details": {"cached_tokens": 5}}) == 5
        assert extract_cached_tokens({"prompt_tokens_details": None}) == 0
        assert extract_cached_tokens({}) == 0

    def test_compute_cost(self):
        cost = compute_cost(1_000_000, 500_000, 200_000, FLAT)
        assert cost == pytest.approx(0.8 + 0.02 + 1.0)

    def test_record_uses_override_pricing(self):
        tracker = TokenTracker(pricing=FLAT)
        cost = tracker.record({"prompt_tokens": 1_000_000, "completion_tokens": 0}, "m", provider="openai")
        assert cost == pytest.approx(1.0)

    def test_record_uses_registry_pricing(self):
        tracker = TokenTracker()
        cost = tracker.record({"prompt_tokens": 1_000_000, "completion_tokens": 0}, "gpt-4o", provider="openai")
        assert cost == pytest.approx(PROVIDER_REGISTRY["openai"].pricing.input_per_million)

    def test_unknown_provider_uses_default_pricing(self):
        tracker = TokenTracker()
        cost = tracker.record({"prompt_tokens": 1_000_000}, "x", provider="mystery")
        assert cost == pytest.approx(PROVIDER_REGISTRY["deepseek"].pricing.input_per_million)

    def test_worked_example_at_default_rates(self):
        tracker = TokenTracker(pricing=TokenPricing(0.28, 0.028, 0.42))
        cost = tracker.record({"prompt_tokens": 1000, "completion_tokens": 500}, "deepseek-chat")
        assert PROVIDER_REGISTRY["deepseek"].pricing == TokenPricing(0.28, 0.028, 0.42)
        assert cost == pytest.approx(0.00049)

    def test_record_cost_same_for_both_cache_conventions(self):
        tracker = TokenTracker(pricing=FLAT)
        flat = tracker.record(
            {"prompt_tokens": 10_000, "completion_tokens": 100, "prompt_cache_hit_tokens": 4_000}, "m")
        nested = tracker.record(
            {"prompt_tokens": 10_000, "completion_tokens": 100,
             "prompt_tokens_details": {"cached_tokens": 4_000}}, "m")
        assert flat == pytest.approx(nested)
        assert flat < tracker.record({"prompt_tokens": 10_000, "completion_tokens": 100}, "m")
        assert tracker.get_summary()["total_cached_tokens"] == 8_000

    def test_costs_add_up_in_summary(self):
        tracker = TokenTracker(pricing=FLAT)
        a = tracker.record({"prompt_tokens": 1_234, "completion_tokens": 56}, "m", label="a")
        b = tracker.record(
            {"prompt_tokens": 789, "completion_tokens": 10, "prompt_cache_hit_tokens": 300}, "m", label="b")
        assert tracker.get_summary()["total_cost"] == pytest.approx(a + b)

    def test_total_defaults_to_sum(self):
        tracker = TokenTracker(pricing=FLAT)
        tracker.record({"prompt_tokens": 3, "completion_tokens": 4}, "m")
        assert tracker.get_last_entry().total_tokens == 7

    def test_embedding_cost(self):
        tracker = TokenTracker(pricing=FLAT)
        cost = tracker.record_embedding(2_000_000, "text-embedding-3-small", 0.02, label="embed")
        assert cost == pytest.approx(0.04)
        entry = tracker.get_last_entry()
        assert entry.completion_tokens == 0
        assert entry.label == "embed"

    def test_estimate_tokens(self):
        assert estimate_tokens([{"role": "user", "content": "x" * 400}]) >= 100


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

class TestSummary:
    def test_empty_summary(self):
        summary = TokenTracker().get_summary()
        assert summary["total_calls"] == 0
        assert summary["total_cost"] == 0.0

    def test_summary_aggregates(self):
        tracker = TokenTracker(pricing=FLAT)
        tracker.record({"prompt_tokens": 100, "completion_tokens": 10, "prompt_cache_hit_tokens": 40}, "m")
        tracker.record({"prompt_tokens": 300, "completion_tokens": 30}, "m")

        s = tracker.get_summary()
        assert s["total_calls"] == 2
        assert s["total_prompt_tokens"] == 400
        assert s["total_completion_tokens"] == 40
        assert s["total_cached_tokens"] == 40
        assert s["average_prompt_tokens"] == 200
        assert s["average_cost"] == pytest.approx(s["total_cost"] / 2)

    def test_format_summary_mentions_cache_and_budget(self):
        tracker = TokenTracker(pricing=FLAT, limits=TokenLimits(max_total_tokens=1000))
        tracker.record({"prompt_tokens": 100, "completion_tokens": 10, "prompt_cache_hit_tokens": 50}, "m")

        text = tracker.format_summary()
        assert "Calls: 1" in text
        assert "50.0% of input" in text
        assert "Token budget: 110/1000" in text

    def test_format_entry(self):
        tracker = TokenTracker(pricing=FLAT)
        tracker.record({"prompt_tokens": 10, "completion_tokens": 2, "prompt_cache_hit_tokens": 4}, "m", label="tools")
        line = TokenTracker.format_entry(tracker.get_last_entry())
        assert "(4 cached)" in line
        assert "[tools]" in line

    def test_reset(self):
        tracker = TokenTracker(pricing=FLAT)
        tracker.record({"prompt_tokens": 1}, "m")
        tracker.reset()
        assert tracker.get_entries() == ()


# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------

class TestLimits:
    def test_per_call_limit_raises_and_records_nothing(self):
        tracker = TokenTracker(limits=TokenLimits(max_tokens_per_call=100))
        with pytest.raises(TokenLimitError) as exc_info:
            tracker.check_call_limit(101)
        assert exc_info.value.limit_type == "max_tokens_per_call"
        assert tracker.get_entries() == ()
        tracker.check_call_limit(100)

    def test_total_budget_notifies_listeners(self):
        tracker = TokenTracker(pricing=FLAT, limits=TokenLimits(max_total_tokens=50, max_cost_usd=0.0))
        seen = []
        tracker.on_limit_exceeded(lambda name, actual, limit: seen.append((name, actual, limit)))

        tracker.record({"prompt_tokens": 40, "completion_tokens": 20}, "m")

        names = [s[0] for s in seen]
        assert names == ["max_total_tokens", "max_cost_usd"]
        assert seen[0][1:] == (60, 50)

    def test_set_limits_merges(self):
        tracker = TokenTracker(limits=TokenLimits(max_total_tokens=10))
        tracker.set_limits(max_cost_usd=1.5)
        assert tracker.get_limits() == TokenLimits(max_total_tokens=10, max_cost_usd=1.5)


class TestDefaultTracker:
    def test_init_replaces_default(self):
        tracker = init_token_tracker(pricing=FLAT)
        assert get_token_tracker() is tracker
        assert get_token_tracker() is tracker
