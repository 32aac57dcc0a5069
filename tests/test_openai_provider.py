"""
Tests for graph_agent/providers/openai_compatible.py
====================================================
The AsyncOpenAI client is replaced with a MagicMock; responses and stream
chunks are SimpleNamespace objects shaped like the SDK's.

Covers:
  - response → LLMResponse (content, tool calls, usage, cached tokens)
  - token tracking with the provider's registry pricing
  - options pass-through and the pre-flight call limit
  - stream: tokens, fragmented tool calls, usage, done, cancellation, close()
"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from graph_agent.errors import TokenLimitError
from graph_agent.providers.openai_compatible import OpenAICompatibleProvider, usage_from_openai
from graph_agent.token_tracker import TokenLimits, TokenTracker


def completion(content=None, tool_calls=None, usage=None, model="gpt-4o"):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=usage, model=model)


def sdk_tool_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def chunk(content=None, tool_calls=None, usage=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta)], usage=usage, model="gpt-4o")


def tool_delta(index, call_id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


class FakeStream:
    def __init__(self, chunks):
        self._chunks = list(chunks)
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for c in self._chunks:
            yield c

    async def close(self):
        self.closed = True


def make_provider(result=None, limits=None):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=result)
    tracker = TokenTracker(limits=limits)
    provider = OpenAICompatibleProvider(
        api_key="sk-test", provider_name="openai", base_url="https://api.openai.com/v1",
        model="gpt-4o", tracker=tracker, client=client,
    )
    return provider, client, tracker


async def collect(iterator):
    return [event async for event in iterator]


# ---------------------------------------------------------------------------
# Non-streaming
# ---------------------------------------------------------------------------

class TestCompletion:
    async def test_plain_completion(self):
        usage = {"prompt_tokens": 100, "completion_tokens": 20, "total_tokens": 120}
        provider, client, tracker = make_provider(completion("Hello", usage=usage))

        result = await provider.chat_completion([{"role": "user", "content": "hi"}])

        assert result.content == "Hello"
        assert result.tool_calls == []
        assert result.usage.total_tokens == 120
        assert tracker.get_last_entry().label == "chat"
        assert "tools" not in client.chat.completions.create.call_args.kwargs

    async def test_tool_calls_are_unified(self):
        calls = [sdk_tool_call("c1", "read_node_detail", '{"node_key": "root"}')]
        provider, client, _ = make_provider(completion(None, tool_calls=calls))
        tools = [{"type": "function", "function": {"name": "read_node_detail"}}]

        result = await provider.chat_completion_with_tools([{"role": "user", "content": "x"}], tools)

        assert result.tool_calls == [{
            "id": "c1", "type": "function",
            "function": {"name": "read_node_detail", "arguments": '{"node_key": "root"}'},
        }]
        assert client.chat.completions.create.call_args.kwargs["tools"] == tools
        assert result.usage is None

    async def test_options_pass_through(self):
        provider, client, _ = make_provider(completion("ok"))
        await provider.chat_completion([{"role": "user", "content": "x"}], options={"temperature": 0.2})
        assert client.chat.completions.create.call_args.kwargs["temperature"] == 0.2

    async def test_cached_tokens_tracked(self):
        usage = {"prompt_tokens": 100, "completion_tokens": 0, "prompt_tokens_details": {"cached_tokens": 60}}
        provider, _, tracker = make_provider(completion("ok", usage=usage))
        await provider.chat_completion([{"role": "user", "content": "x"}], label="final")

        entry = tracker.get_last_entry()
        assert entry.cached_tokens == 60
        assert entry.label == "final"

    async def test_preflight_limit(self):
        provider, client, _ = make_provider(completion("ok"), limits=TokenLimits(max_tokens_per_call=1))
        with pytest.raises(TokenLimitError):
            await provider.chat_completion([{"role": "user", "content": "a long enough message"}])
        client.chat.completions.create.assert_not_called()

    def test_usage_from_sdk_object(self):
        usage = SimpleNamespace(prompt_tokens=3, completion_tokens=4, total_tokens=None)
        assert usage_from_openai(usage).total_tokens == 7
        assert usage_from_openai(None) is None


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

class TestStream:
    async def test_tokens_tool_calls_usage_done(self):
        stream = FakeStream([
            chunk("Hel"),
            chunk("lo"),
            chunk(tool_calls=[tool_delta(0, "c1", "read_node_detail", '{"node_')]),
            chunk(tool_calls=[tool_delta(0, arguments='key": "root"}')]),
            chunk(tool_calls=[tool_delta(1, arguments='{"orphan": true}')]),
            SimpleNamespace(choices=[], usage={"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
                            model="gpt-4o"),
        ])
        provider, client, tracker = make_provider(stream)

        events = await collect(provider.stream_completion_with_tools([{"role": "user", "content": "x"}], []))

        assert [e["type"] for e in events] == [
            "token", "token", "tool_call_start", "usage", "tool_call_done", "done",
        ]
        assert events[-2]["tool_call"] == {
            "id": "c1", "name": "read_node_detail", "arguments": '{"node_key": "root"}',
        }
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["stream_options"] == {"include_usage": True}
        assert "tools" not in kwargs
        assert tracker.get_last_entry().label == "stream"
        assert stream.closed

    async def test_cancel_stops_stream(self):
        cancel = asyncio.Event()
        stream = FakeStream([chunk("one"), chunk("two"), chunk("three")])
        provider, _, tracker = make_provider(stream)

        events = []
        async for event in provider.stream_completion_with_tools([], [], cancel_event=cancel):
            events.append(event)
            cancel.set()

        assert events == [{"type": "token", "token": "one"}]
        assert stream.closed
        assert tracker.get_entries() == ()

    async def test_stream_options_forwarded(self):
        provider, client, _ = make_provider(FakeStream([]))
        await collect(provider.stream_completion_with_tools(
            [], [{"type": "function"}], options={"temperature": 0, "max_tokens": 50, "top_p": 1},
        ))
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0
        assert kwargs["max_tokens"] == 50
        assert "top_p" not in kwargs
