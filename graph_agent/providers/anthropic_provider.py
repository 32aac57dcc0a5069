"""
Anthropic Provider
==================
Adapter for the Anthropic Messages API, whose envelope differs from the
OpenAI one in three ways:

  - the system prompt is a top-level field, not a message
  - tool calls are `tool_use` content blocks on the assistant message
  - tool results are `tool_result` blocks carried by a *user* message

convert_messages_to_anthropic() maps the unified history onto that envelope.
After conversion, consecutive same-role messages are merged because tool
results interleaved with user turns would otherwise produce two adjacent
user messages, which the API rejects.

Streaming: tool arguments arrive as `input_json_delta` fragments keyed by
content-block index. They are accumulated per index and flushed as a single
tool_call_done on `content_block_stop`. Fragments for an index that never
started a tool_use block are dropped.
"""
import asyncio
import json
import logging
from typing import Any, AsyncIterator

from anthropic import AsyncAnthropic

from ..ai_logging import debug_ai, log_malformed_json
from ..registry import PROVIDER_REGISTRY
from ..token_tracker import TokenTracker
from .base import LLMProvider, LLMResponse, StreamEvent, TokenUsage, is_cancelled

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096


# ── Conversion helpers ──────────────────────────────────────────────────────

def _to_blocks(content: Any) -> list[dict]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    return list(content or [])


def convert_messages_to_anthropic(messages: list[dict]) -> tuple[str | None, list[dict]]:
    """Return (system, messages) in Anthropic format."""
    system_parts: list[str] = []
    converted: list[dict] = []

    for msg in messages:
        role = msg.get("role")

        if role == "system":
            text = msg.get("content")
            if isinstance(text, str) and text:
                system_parts.append(text)
            continue

        if role == "assistant":
            tool_calls = msg.get("tool_calls") or []
            text = msg.get("content") if isinstance(msg.get("content"), str) else ""
            if not tool_calls:
                if text:
                    converted.append({"role": "assistant", "content": text})
                continue

            blocks: list[dict] = []
            if text:
                blocks.append({"type": "text", "text": text})
            for tc in tool_calls:
                fn = tc.get("function", {})
                try:
                    tool_input = json.loads(fn.get("arguments") or "{}")
                except json.JSONDecodeError:
                    log_malformed_json(
                        raw=fn.get("arguments") or "",
                        context=f"convert_messages_to_anthropic tool={fn.get('name')}",
                        provider="anthropic",
                    )
                    tool_input = {}
                if not isinstance(tool_input, dict):
                    tool_input = {}
                blocks.append({
                    "type":  "tool_use",
                    "id":    tc.get("id"),
                    "name":  fn.get("name"),
                    "input": tool_input,
                })
            converted.append({"role": "assistant", "content": blocks})
            continue

        if role == "tool":
            content = msg.get("content")
            block = {
                "type":        "tool_result",
                "tool_use_id": msg.get("tool_call_id"),
                "content":     content if isinstance(content, str) else "",
            }
            prev = converted[-1] if converted else None
            if prev and prev["role"] == "user" and isinstance(prev["content"], list):
                prev["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
            continue

        if role == "user":
            content = msg.get("content")
            if isinstance(content, list):
                content = list(content)
            converted.append({"role": "user", "content": content if content is not None else ""})

    merged: list[dict] = []
    for msg in converted:
        if merged and merged[-1]["role"] == msg["role"]:
            prev = merged[-1]
            prev["content"] = _to_blocks(prev["content"]) + _to_blocks(msg["content"])
        else:
            merged.append(dict(msg))

    system = "\n\n".join(system_parts) if system_parts else None
    return system, merged


def convert_tools_to_anthropic(tools: list[dict]) -> list[dict]:
    converted = []
    for tool in tools:
        fn = tool.get("function", tool)
        converted.append({
            "name":         fn["name"],
            "description":  fn.get("description") or "",
            "input_schema": fn.get("parameters") or {"type": "object", "properties": {}},
        })
    return converted


def _cached_tokens(usage: Any) -> int:
    return int(getattr(usage, "cache_read_input_tokens", None) or 0)


def _prompt_tokens(usage: Any) -> int:
    """input_tokens counts only uncached input; cache reads and writes are reported beside it."""
    return (
        int(getattr(usage, "input_tokens", None) or 0)
        + _cached_tokens(usage)
        + int(getattr(usage, "cache_creation_input_tokens", None) or 0)
    )


def convert_anthropic_response(response: Any) -> LLMResponse:
    text_parts: list[str] = []
    tool_calls: list[dict] = []

    for block in response.content:
        if block.type == "text":
            text_parts.append(block.text)
        elif block.type == "tool_use":
            tool_calls.append({
                "id":   block.id,
                "type": "function",
                "function": {"name": block.name, "arguments": json.dumps(block.input)},
            })

    message: dict[str, Any] = {"role": "assistant", "content": "".join(text_parts) or None}
    if tool_calls:
        message["tool_calls"] = tool_calls

    usage  = response.usage
    prompt = _prompt_tokens(usage)
    return LLMResponse(
        message=message,
        usage=TokenUsage(
            prompt_tokens=prompt,
            completion_tokens=usage.output_tokens,
            total_tokens=prompt + usage.output_tokens,
            cached_tokens=_cached_tokens(usage),
        ),
        model=response.model,
        raw=response,
    )


# ── Provider ────────────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        tracker: TokenTracker | None = None,
        client: AsyncAnthropic | None = None,
        provider_name: str = "anthropic",
    ):
        super().__init__(
            provider_name,
            model or PROVIDER_REGISTRY["anthropic"].default_model,
            tracker,
        )
        self._client = client or AsyncAnthropic(api_key=api_key)

    def _params(self, messages: list[dict], tools: list[dict] | None, options: dict | None) -> dict:
        options = options or {}
        system, converted = convert_messages_to_anthropic(messages)
        params: dict[str, Any] = {
            "model":      self._model,
            "max_tokens": options.get("max_tokens") or DEFAULT_MAX_TOKENS,
            "messages":   converted,
        }
        if system:
            params["system"] = system
        if tools:
            params["tools"] = convert_tools_to_anthropic(tools)
        if options.get("temperature") is not None:
            params["temperature"] = options["temperature"]
        return params

    async def chat_completion(
        self,
        messages: list[dict],
        options: dict | None = None,
        label: str | None = None,
    ) -> LLMResponse:
        return await self._complete(messages, None, options, label or "chat")

    async def chat_completion_with_tools(
        self,
        messages: list[dict],
        tools: list[dict],
        options: dict | None = None,
        label: str | None = None,
    ) -> LLMResponse:
        return await self._complete(messages, tools, options, label or "tool-call")

    async def _complete(self, messages, tools, options, label) -> LLMResponse:
        self._preflight(messages)
        debug_ai(
            "llm_call_start",
            provider=self._provider_name, model=self._model, label=label,
            tool_count=len(tools) if tools else 0,
        )
        response = await self._client.messages.create(**self._params(messages, tools, options))
        result   = convert_anthropic_response(response)
        self._track(result.usage, result.model or self._model, label)
        debug_ai(
            "llm_call_done",
            provider=self._provider_name, model=self._model, tokens=result.usage.total_tokens,
        )
        return result

    async def stream_completion_with_tools(
        self,
        messages: list[dict],
        tools: list[dict],
        options: dict | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]:
        self._preflight(messages)
        params = self._params(messages, tools, options)
        stream = await self._client.messages.create(**params, stream=True)

        # content-block index -> {id, name, json}
        accum: dict[int, dict[str, str]] = {}
        model      = self._model
        prompt     = 0
        cached     = 0
        completion = 0

        try:
            async for event in stream:
                if is_cancelled(cancel_event):
                    return

                kind = event.type

                if kind == "message_start":
                    message = event.message
                    model   = getattr(message, "model", None) or model
                    usage   = getattr(message, "usage", None)
                    if usage is not None:
                        prompt     = _prompt_tokens(usage)
                        cached     = _cached_tokens(usage)
                        completion = getattr(usage, "output_tokens", 0) or 0

                elif kind == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        accum[event.index] = {"id": block.id, "name": block.name, "json": ""}
                        yield {"type": "tool_call_start", "tool_call": {
                            "id": block.id, "name": block.name, "arguments": "",
                        }}

                elif kind == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        yield {"type": "token", "token": delta.text}
                    elif delta.type == "input_json_delta":
                        slot = accum.get(event.index)
                        if slot is not None:
                            slot["json"] += delta.partial_json

                elif kind == "content_block_stop":
                    slot = accum.pop(event.index, None)
                    if slot is not None:
                        yield {"type": "tool_call_done", "tool_call": {
                            "id": slot["id"], "name": slot["name"], "arguments": slot["json"],
                        }}

                elif kind == "message_delta":
                    usage = getattr(event, "usage", None)
                    if usage is not None and getattr(usage, "output_tokens", None) is not None:
                        completion = usage.output_tokens

            if is_cancelled(cancel_event):
                return

            usage = TokenUsage(
                prompt_tokens=prompt,
                completion_tokens=completion,
                total_tokens=prompt + completion,
                cached_tokens=cached,
            )
            yield {"type": "usage", "usage": {
                "prompt_tokens":     usage.prompt_tokens,
                "completion_tokens": usage.completion_tokens,
                "total_tokens":      usage.total_tokens,
            }}
            self._track(usage, model, "stream")

            if is_cancelled(cancel_event):
                return
            yield {"type": "done"}
        finally:
            await stream.close()
