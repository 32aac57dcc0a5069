"""
LLM Provider Interface
======================
One capability set over every wire family:

    chat_completion              plain completion
    chat_completion_with_tools   completion with function-calling tools
    stream_completion_with_tools async iterator of StreamEvent dicts
    get_model / get_provider_name

Messages and tool definitions are always in the OpenAI chat format. Each
adapter converts them to its own wire format and converts the response
back, so the agent never knows which vendor it is talking to.

Stream events:

    {"type": "token",           "token": str}
    {"type": "tool_call_start", "tool_call": {"id", "name", "arguments": ""}}
    {"type": "tool_call_done",  "tool_call": {"id", "name", "arguments": str}}
    {"type": "usage",           "usage": {"prompt_tokens", "completion_tokens", "total_tokens"}}
    {"type": "done"}

A stream is finite and forward-only. Setting the `cancel_event` passed to
stream_completion_with_tools stops it: nothing is emitted afterwards and the
underlying HTTP stream is closed. Events already yielded stay valid.
"""
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator

from typing_extensions import NotRequired, TypedDict

from ..ai_logging import log_token_usage
from ..token_tracker import TokenTracker, estimate_tokens, get_token_tracker


@dataclass
class TokenUsage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cached_tokens: int = 0


@dataclass
class LLMResponse:
    # OpenAI-format assistant message: {role, content, tool_calls?}
    message: dict[str, Any]
    usage: TokenUsage | None
    model: str
    raw: Any = None

    @property
    def content(self) -> str | None:
        return self.message.get("content")

    @property
    def tool_calls(self) -> list[dict[str, Any]]:
        return self.message.get("tool_calls") or []


class StreamToolCall(TypedDict):
    id: str
    name: str
    arguments: str


class StreamEvent(TypedDict):
    type: str
    token: NotRequired[str]
    tool_call: NotRequired[StreamToolCall]
    usage: NotRequired[dict[str, int]]


def is_cancelled(cancel_event: asyncio.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


class LLMProvider(ABC):
    """Base class for wire-family adapters. Holds the model, name and tracker."""

    def __init__(self, provider_name: str, model: str, tracker: TokenTracker | None = None):
        self._provider_name = provider_name
        self._model         = model
        self._tracker       = tracker

    @property
    def tracker(self) -> TokenTracker:
        return self._tracker or get_token_tracker()

    def get_model(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return self._provider_name

    @abstractmethod
    async def chat_completion(
        self,
        messages: list[dict],
        options: dict | None = None,
        label: str | None = None,
    ) -> LLMResponse: ...

    @abstractmethod
    async def chat_completion_with_tools(
        self,
        messages: list[dict],
        tools: list[dict],
        options: dict | None = None,
        label: str | None = None,
    ) -> LLMResponse: ...

    @abstractmethod
    def stream_completion_with_tools(
        self,
        messages: list[dict],
        tools: list[dict],
        options: dict | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]: ...

    # ── Shared helpers ──────────────────────────────────────────────────────

    def _preflight(self, messages: list[dict]) -> None:
        self.tracker.check_call_limit(estimate_tokens(messages))

    def _track(self, usage: TokenUsage, model: str, label: str) -> None:
        raw = {
            "prompt_tokens":     usage.prompt_tokens,
            "completion_tokens": usage.completion_tokens,
            "total_tokens":      usage.total_tokens,
        }
        if usage.cached_tokens:
            raw["prompt_cache_hit_tokens"] = usage.cached_tokens
        self.tracker.record(raw, model, label, provider=self._provider_name)
        log_token_usage(
            provider=self._provider_name,
            model=model,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            cached_tokens=usage.cached_tokens,
            label=label,
        )
