"""
OpenAI-Compatible Provider
==========================
Adapter for every vendor that speaks the OpenAI chat-completions protocol
(OpenAI, DeepSeek, Groq, ...). They differ only in base URL, default model
and pricing, all of which come from the provider registry.

Messages and tools are already in the unified (OpenAI) format, so the only
conversion is response -> LLMResponse and chunk stream -> StreamEvent.
"""
import asyncio
import logging
from collections.abc import Mapping
from typing import Any, AsyncIterator

from openai import AsyncOpenAI

from ..ai_logging import debug_ai
from ..token_tracker import TokenTracker, extract_cached_tokens
from .base import LLMProvider, LLMResponse, StreamEvent, TokenUsage, is_cancelled

logger = logging.getLogger(__name__)


def _usage_to_dict(usage: Any) -> dict:
    if usage is None:
        return {}
    if isinstance(usage, Mapping):
        return dict(usage)
    if hasattr(usage, "model_dump"):
        return usage.model_dump()
    return dict(vars(usage))


def usage_from_openai(usage: Any) -> TokenUsage | None:
    raw = _usage_to_dict(usage)
    if not raw:
        return None
    prompt     = int(raw.get("prompt_tokens") or 0)
    completion = int(raw.get("completion_tokens") or 0)
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=int(raw.get("total_tokens") or prompt + completion),
        cached_tokens=extract_cached_tokens(raw),
    )


def to_llm_response(response: Any) -> LLMResponse:
    choice  = response.choices[0] if response.choices else None
    message = choice.message if choice else None

    tool_calls = []
    for tc in (getattr(message, "tool_calls", None) or []):
        tool_calls.append({
            "id":   tc.id,
            "type": "function",
            "function": {"name": tc.function.name, "arguments": tc.function.arguments or ""},
        })

    unified: dict[str, Any] = {
        "role":    "assistant",
        "content": getattr(message, "content", None),
    }
    if tool_calls:
        unified["tool_calls"] = tool_calls

    return LLMResponse(
        message=unified,
        usage=usage_from_openai(response.usage),
        model=response.model,
        raw=response,
    )


class OpenAICompatibleProvider(LLMProvider):
    def __init__(
        self,
        api_key: str,
        provider_name: str,
        base_url: str,
        model: str,
        tracker: TokenTracker | None = None,
        client: AsyncOpenAI | None = None,
    ):
        super().__init__(provider_name, model, tracker)
        self._base_url = base_url
        self._client   = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    def get_base_url(self) -> str:
        return self._base_url

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

        params: dict[str, Any] = {"model": self._model, "messages": messages}
        if tools:
            params["tools"] = tools
        params.update(options or {})

        response = await self._client.chat.completions.create(**params)
        result   = to_llm_response(response)
        if result.usage:
            self._track(result.usage, result.model or self._model, label)

        debug_ai(
            "llm_call_done",
            provider=self._provider_name, model=self._model,
            tokens=result.usage.total_tokens if result.usage else None,
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
        options = options or {}

        params: dict[str, Any] = {
            "model":          self._model,
            "messages":       messages,
            "stream":         True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            params["tools"] = tools
        if options.get("temperature") is not None:
            params["temperature"] = options["temperature"]
        if options.get("max_tokens") is not None:
            params["max_tokens"] = options["max_tokens"]

        stream = await self._client.chat.completions.create(**params)

        # tool-call index -> {id, name, arguments, started}
        accum: dict[int, dict[str, Any]] = {}
        usage: TokenUsage | None = None
        model = self._model

        try:
            async for chunk in stream:
                if is_cancelled(cancel_event):
                    return
                pending: list[StreamEvent] = []
                model = getattr(chunk, "model", None) or model

                if getattr(chunk, "usage", None):
                    usage = usage_from_openai(chunk.usage)
                    pending.append({"type": "usage", "usage": {
                        "prompt_tokens":     usage.prompt_tokens,
                        "completion_tokens": usage.completion_tokens,
                        "total_tokens":      usage.total_tokens,
                    }})

                delta = chunk.choices[0].delta if chunk.choices else None
                if delta is not None:
                    if delta.content:
                        pending.append({"type": "token", "token": delta.content})

                    for tc in delta.tool_calls or []:
                        fn   = tc.function
                        slot = accum.setdefault(
                            tc.index, {"id": "", "name": "", "arguments": "", "started": False}
                        )
                        if tc.id and not slot["id"]:
                            slot["id"] = tc.id
                        if fn is not None and fn.name and not slot["name"]:
                            slot["name"] = fn.name
                        if fn is not None and fn.arguments:
                            slot["arguments"] += fn.arguments
                        if not slot["started"] and slot["id"] and slot["name"]:
                            slot["started"] = True
                            pending.append({"type": "tool_call_start", "tool_call": {
                                "id": slot["id"], "name": slot["name"], "arguments": "",
                            }})

                for event in pending:
                    if is_cancelled(cancel_event):
                        return
                    yield event

            # Fragments that never got an id + name cannot be replayed: drop them.
            for index in sorted(accum):
                slot = accum[index]
                if not slot["started"]:
                    continue
                if is_cancelled(cancel_event):
                    return
                yield {"type": "tool_call_done", "tool_call": {
                    "id": slot["id"], "name": slot["name"], "arguments": slot["arguments"],
                }}

            if usage is not None:
                self._track(usage, model, "stream")
            if is_cancelled(cancel_event):
                return
            yield {"type": "done"}
        finally:
            await stream.close()
