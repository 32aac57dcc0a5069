"""
Token Tracker
=============
Meters the cost of every provider call and enforces token/cost budgets.

Chat cost:

    cached   = prompt_cache_hit_tokens            (DeepSeek style)
               or prompt_tokens_details.cached_tokens (OpenAI style)
               or 0
    cost     = (prompt - cached) / 1e6 * input_rate
             + cached            / 1e6 * cached_input_rate
             + completion        / 1e6 * output_rate

Embedding cost is single-rate: tokens / 1e6 * rate.

Rates come from the provider registry for the call's provider, unless the
tracker was built with an explicit TokenPricing, which always wins.

Budgets:
  check_call_limit() is the pre-flight check callers run before a request.
  It raises TokenLimitError and leaves the tracker untouched.
  max_total_tokens / max_cost_usd are checked after every record() and only
  notify the registered listeners; recording never raises.

Instances are injectable. get_token_tracker() returns a process-wide default
for callers that don't care.
"""
import json
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Mapping

from .errors import TokenLimitError
from .registry import TokenPricing, get_provider_pricing

LimitListener = Callable[[str, float, float], None]


@dataclass(frozen=True)
class TokenUsageEntry:
    model: str
    prompt_tokens: int
    completion_tokens: int
    cached_tokens: int
    total_tokens: int
    cost: float
    timestamp: float
    label: str | None = None


@dataclass(frozen=True)
class TokenLimits:
    max_tokens_per_call: int | None = None
    max_total_tokens: int | None = None
    max_cost_usd: float | None = None


def extract_cached_tokens(usage: Mapping) -> int:
    """Support both cached-token conventions; 0 when neither is reported."""
    flat = usage.get("prompt_cache_hit_tokens")
    if flat is not None:
        return int(flat)
    details = usage.get("prompt_tokens_details") or {}
    nested = details.get("cached_tokens") if isinstance(details, Mapping) else None
    return int(nested) if nested is not None else 0


def compute_cost(prompt_tokens: int, completion_tokens: int, cached_tokens: int,
                 pricing: TokenPricing) -> float:
    uncached = prompt_tokens - cached_tokens
    return (
        uncached / 1_000_000 * pricing.input_per_million
        + cached_tokens / 1_000_000 * pricing.cached_input_per_million
        + completion_tokens / 1_000_000 * pricing.output_per_million
    )


def estimate_tokens(messages: list[dict]) -> int:
    """Rough pre-flight estimate: about four characters per token."""
    return len(json.dumps(messages, default=str, ensure_ascii=False)) // 4


class TokenTracker:
    def __init__(
        self,
        pricing: TokenPricing | None = None,
        limits: TokenLimits | None = None,
    ):
        self._pricing   = pricing
        self._limits    = limits or TokenLimits()
        self._entries: list[TokenUsageEntry] = []
        self._listeners: list[LimitListener] = []
        self._lock      = threading.Lock()

    # ── Listeners ───────────────────────────────────────────────────────────

    def on_limit_exceeded(self, callback: LimitListener) -> None:
        """Register a listener called with (limit_name, actual, limit)."""
        self._listeners.append(callback)

    # ── Recording ───────────────────────────────────────────────────────────

    def pricing_for(self, provider: str | None) -> TokenPricing:
        if self._pricing is not None:
            return self._pricing
        return get_provider_pricing(provider)

    def record(
        self,
        usage: Mapping,
        model: str,
        label: str | None = None,
        provider: str | None = None,
    ) -> float:
        """Record one chat call from a raw usage mapping and return its cost."""
        prompt     = int(usage.get("prompt_tokens") or 0)
        completion = int(usage.get("completion_tokens") or 0)
        total      = usage.get("total_tokens")
        total      = int(total) if total is not None else prompt + completion
        cached     = extract_cached_tokens(usage)

        cost = compute_cost(prompt, completion, cached, self.pricing_for(provider))
        self._append(TokenUsageEntry(
            model=model,
            prompt_tokens=prompt,
            completion_tokens=completion,
            cached_tokens=cached,
            total_tokens=total,
            cost=cost,
            timestamp=time.time(),
            label=label,
        ))
        return cost

    def record_embedding(
        self,
        tokens: int,
        model: str,
        rate_per_million: float,
        label: str | None = None,
    ) -> float:
        cost = tokens / 1_000_000 * rate_per_million
        self._append(TokenUsageEntry(
            model=model,
            prompt_tokens=tokens,
            completion_tokens=0,
            cached_tokens=0,
            total_tokens=tokens,
            cost=cost,
            timestamp=time.time(),
            label=label,
        ))
        return cost

    def _append(self, entry: TokenUsageEntry) -> None:
        with self._lock:
            self._entries.append(entry)
        self._check_limits()

    # ── Budgets ─────────────────────────────────────────────────────────────

    def check_call_limit(self, token_count: int) -> None:
        limit = self._limits.max_tokens_per_call
        if limit is not None and token_count > limit:
            raise TokenLimitError(
                f"Token limit per call exceeded: {token_count} > {limit}",
                "max_tokens_per_call", token_count, limit,
            )

    def _check_limits(self) -> None:
        summary = self.get_summary()
        limits  = self._limits
        exceeded: list[tuple[str, float, float]] = []

        if limits.max_total_tokens is not None and summary["total_tokens"] > limits.max_total_tokens:
            exceeded.append(("max_total_tokens", summary["total_tokens"], limits.max_total_tokens))
        if limits.max_cost_usd is not None and summary["total_cost"] > limits.max_cost_usd:
            exceeded.append(("max_cost_usd", summary["total_cost"], limits.max_cost_usd))

        for name, actual, limit in exceeded:
            for listener in list(self._listeners):
                listener(name, actual, limit)

    def set_limits(self, **limits) -> None:
        """Merge new limit values into the current ones."""
        self._limits = replace(self._limits, **limits)

    def get_limits(self) -> TokenLimits:
        return self._limits

    # ── Reporting ───────────────────────────────────────────────────────────

    def get_summary(self) -> dict:
        with self._lock:
            entries = list(self._entries)

        calls = len(entries)
        if calls == 0:
            return {
                "total_calls":               0,
                "total_prompt_tokens":       0,
                "total_completion_tokens":   0,
                "total_tokens":              0,
                "total_cached_tokens":       0,
                "total_cost":                0.0,
                "average_prompt_tokens":     0,
                "average_completion_tokens": 0,
                "average_cost":              0.0,
            }

        prompt     = sum(e.prompt_tokens for e in entries)
        completion = sum(e.completion_tokens for e in entries)
        cost       = sum(e.cost for e in entries)
        return {
            "total_calls":               calls,
            "total_prompt_tokens":       prompt,
            "total_completion_tokens":   completion,
            "total_tokens":              sum(e.total_tokens for e in entries),
            "total_cached_tokens":       sum(e.cached_tokens for e in entries),
            "total_cost":                cost,
            "average_prompt_tokens":     round(prompt / calls),
            "average_completion_tokens": round(completion / calls),
            "average_cost":              cost / calls,
        }

    def get_entries(self) -> tuple[TokenUsageEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def get_last_entry(self) -> TokenUsageEntry | None:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def format_summary(self) -> str:
        s = self.get_summary()
        lines = [
            f"  Calls: {s['total_calls']}",
            f"  Tokens: {s['total_prompt_tokens']} in + {s['total_completion_tokens']} out"
            f" = {s['total_tokens']} total",
        ]
        if s["total_cached_tokens"] > 0 and s["total_prompt_tokens"] > 0:
            pct = s["total_cached_tokens"] / s["total_prompt_tokens"] * 100
            lines.append(f"  Cached: {s['total_cached_tokens']} tokens ({pct:.1f}% of input)")
        lines.append(f"  Cost: ${s['total_cost']:.6f} (avg ${s['average_cost']:.6f}/call)")

        if self._limits.max_total_tokens:
            pct = s["total_tokens"] / self._limits.max_total_tokens * 100
            lines.append(
                f"  Token budget: {s['total_tokens']}/{self._limits.max_total_tokens} ({pct:.1f}%)"
            )
        if self._limits.max_cost_usd:
            pct = s["total_cost"] / self._limits.max_cost_usd * 100
            lines.append(
                f"  Cost budget: ${s['total_cost']:.6f}/${self._limits.max_cost_usd} ({pct:.1f}%)"
            )
        return "\n".join(lines)

    @staticmethod
    def format_entry(entry: TokenUsageEntry) -> str:
        label  = f" [{entry.label}]" if entry.label else ""
        cached = f" ({entry.cached_tokens} cached)" if entry.cached_tokens > 0 else ""
        return (
            f"{entry.prompt_tokens} in{cached} + {entry.completion_tokens} out"
            f" = {entry.total_tokens} tok | ${entry.cost:.6f}{label}"
        )

    def reset(self) -> None:
        with self._lock:
            self._entries = []


# ── Process-wide default ────────────────────────────────────────────────────

_default_tracker: TokenTracker | None = None


def get_token_tracker() -> TokenTracker:
    global _default_tracker
    if _default_tracker is None:
        _default_tracker = TokenTracker()
    return _default_tracker


def init_token_tracker(
    pricing: TokenPricing | None = None,
    limits: TokenLimits | None = None,
) -> TokenTracker:
    global _default_tracker
    _default_tracker = TokenTracker(pricing, limits)
    return _default_tracker
