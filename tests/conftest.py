"""
pytest configuration for the graph-agent test suite.

Sets PYTHONPATH so tests can import from the project root.
Clears provider credentials so nothing picks up a real key during tests.

asyncio_mode = "auto" (set in pyproject.toml) means all async test functions
are automatically collected as asyncio tests, no @pytest.mark.asyncio needed
on individual tests.

Shared fixtures:
  ScriptedProvider   LLMProvider that replays queued responses, used by agent,
                     thread store and API tests
  sample_source      fresh InMemoryGraphDataSource with the demo graph
"""
import copy
import json
import os
import sys

import pytest

# Ensure the project root is on sys.path so `import graph_agent` and `import api` work
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from graph_agent.providers.base import LLMProvider, LLMResponse, TokenUsage  # noqa: E402
from graph_agent.sample_data import build_sample_data_source  # noqa: E402
from graph_agent.token_tracker import TokenTracker  # noqa: E402

PROVIDER_ENV_VARS = (
    "DEEPSEEK_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GROQ_API_KEY",
    "LLM_PROVIDER", "EMBEDDING_MODEL", "AI_DEBUG", "THREAD_DB_PATH",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in PROVIDER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# ---------------------------------------------------------------------------
# Scripted provider
# ---------------------------------------------------------------------------

def text_reply(text: str) -> LLMResponse:
    return LLMResponse(
        message={"role": "assistant", "content": text},
        usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        model="fake-model",
    )


def tool_call(call_id: str, name: str, args: dict | str | None = None) -> dict:
    raw = args if isinstance(args, str) else json.dumps(args or {})
    return {"id": call_id, "type": "function", "function": {"name": name, "arguments": raw}}


def tool_reply(*calls: dict, content: str | None = None) -> LLMResponse:
    return LLMResponse(
        message={"role": "assistant", "content": content, "tool_calls": list(calls)},
        usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        model="fake-model",
    )


class ScriptedProvider(LLMProvider):
    """
    Replays queued LLMResponses in order. Every call records a deep copy of the
    messages it received so tests can inspect exactly what the model saw.

    Streaming turns a queued response into token events (one per word) followed
    by one tool_call_done event per tool call.
    """

    def __init__(self, responses: list[LLMResponse] | None = None):
        super().__init__("fake", "fake-model", tracker=TokenTracker())
        self.responses = list(responses or [])
        self.calls: list[dict] = []

    def queue(self, *responses: LLMResponse) -> None:
        self.responses.extend(responses)

    def _next(self, kind: str, messages: list[dict], tools: list[dict] | None) -> LLMResponse:
        self.calls.append({"kind": kind, "messages": copy.deepcopy(messages), "tools": tools})
        if not self.responses:
            raise AssertionError("ScriptedProvider ran out of responses")
        return self.responses.pop(0)

    async def chat_completion(self, messages, options=None, label=None):
        return self._next("chat", messages, None)

    async def chat_completion_with_tools(self, messages, tools, options=None, label=None):
        return self._next("tools", messages, tools)

    async def stream_completion_with_tools(self, messages, tools, options=None, cancel_event=None):
        response = self._next("stream", messages, tools)
        words = (response.content or "").split(" ")
        for i, word in enumerate(words):
            if cancel_event is not None and cancel_event.is_set():
                return
            if word or i:
                yield {"type": "token", "token": word if i == 0 else " " + word}
        for tc in response.tool_calls:
            yield {"type": "tool_call_start",
                   "tool_call": {"id": tc["id"], "name": tc["function"]["name"], "arguments": ""}}
            yield {"type": "tool_call_done",
                   "tool_call": {"id": tc["id"], "name": tc["function"]["name"],
                                 "arguments": tc["function"]["arguments"]}}
        yield {"type": "usage", "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}}
        yield {"type": "done"}


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def sample_source():
    return build_sample_data_source()
