"""
Graph Nodes
===========
Each factory here returns one node of the turn graph.

  create_agent_node  the model call; streams tokens when asked, records the
                     assistant message and either a final result or the tool
                     calls to run next
  create_tools_node  runs queued tool calls in order; the first valid
                     propose_* call becomes the pending interrupt

Nodes read TurnState and return a dict of updated fields. Per-run collaborators
come in through config["configurable"]:

  emit          async callable receiving agent events (token, tool_start,
                tool_result); awaited so the consumer sets the pace
  stream        use the provider's streaming call
  cancel_event  asyncio.Event checked by the provider and after each call
"""
import json
import logging
from contextlib import aclosing
from typing import Any

from langchain_core.runnables import RunnableConfig
from pydantic import ValidationError

from .ai_logging import debug_ai, log_malformed_json
from .errors import UnknownWriteToolError
from .providers.base import LLMProvider, is_cancelled
from .state import AgentResult, TurnState
from .tools import GraphToolkit, invalid_arguments, is_write_tool, parse_proposed_action

logger = logging.getLogger(__name__)

FALLBACK_FINAL_MESSAGE = "I could not complete the analysis."


def _configurable(config: RunnableConfig | None) -> dict[str, Any]:
    return (config or {}).get("configurable", {})


async def emit_event(config: RunnableConfig | None, event: dict[str, Any]) -> None:
    emit = _configurable(config).get("emit")
    if emit is not None:
        await emit(event)


def tool_message(tool_call_id: str, content: str) -> dict:
    return {"role": "tool", "tool_call_id": tool_call_id, "content": content}


# ── Agent node ──────────────────────────────────────────────────────────────

def create_agent_node(llm: LLMProvider, tools: list[dict], max_tool_rounds: int):
    """
    Factory for the model-call node. The first max_tool_rounds calls of a
    turn offer the tools; after that one last call goes out without them and
    its text (or FALLBACK_FINAL_MESSAGE) is the answer.
    """

    async def stream_reply(messages, offered, config) -> tuple[str, list[dict], bool]:
        cancel_event = _configurable(config).get("cancel_event")
        text_parts: list[str] = []
        tool_calls: list[dict] = []
        events = llm.stream_completion_with_tools(messages, offered, cancel_event=cancel_event)
        async with aclosing(events) as provider_stream:
            async for chunk in provider_stream:
                if chunk["type"] == "token":
                    text_parts.append(chunk["token"])
                    await emit_event(config, {"type": "token", "token": chunk["token"]})
                elif chunk["type"] == "tool_call_done":
                    tc = chunk["tool_call"]
                    tool_calls.append({
                        "id":   tc["id"],
                        "type": "function",
                        "function": {"name": tc["name"], "arguments": tc["arguments"]},
                    })
        return "".join(text_parts), tool_calls, is_cancelled(cancel_event)

    async def agent_node(state: TurnState, config: RunnableConfig) -> dict:
        settings   = _configurable(config)
        if is_cancelled(settings.get("cancel_event")):
            return {"cancelled": True}

        final_call = state["rounds"] >= max_tool_rounds
        offered    = [] if final_call else tools
        messages   = state["messages"]

        if settings.get("stream"):
            text, tool_calls, cancelled = await stream_reply(messages, offered, config)
            if cancelled:
                logger.info("[agent] Stream cancelled after %d characters", len(text))
                partial = [{"role": "assistant", "content": text}] if text else []
                return {"messages": partial, "cancelled": True}
            content = text or None
        elif final_call:
            response   = await llm.chat_completion(messages, label="final")
            content    = response.content
            tool_calls = []
        else:
            response   = await llm.chat_completion_with_tools(messages, tools)
            content    = response.content
            tool_calls = response.tool_calls

        if final_call or not tool_calls:
            text = content or ""
            if final_call:
                text = text or FALLBACK_FINAL_MESSAGE
            result: AgentResult = {"type": "message", "message": text, "tool_calls": state["tool_call_log"]}
            return {
                "messages": [{"role": "assistant", "content": text}],
                "result":   result,
                "rounds":   state["rounds"] + 1,
            }

        return {
            "messages":     [{"role": "assistant", "content": content or None, "tool_calls": tool_calls}],
            "queued_calls": tool_calls,
            "message":      content or "",
            "rounds":       state["rounds"] + 1,
        }

    return agent_node


# ── Tools node ──────────────────────────────────────────────────────────────

def create_tools_node(toolkit: GraphToolkit, llm: LLMProvider, graph_key: str):
    """
    Factory for the tool-execution node. Read tools run immediately and their
    JSON results are fed back. A propose_* call is validated; a valid one stops
    processing and is stored as the pending interrupt together with the calls
    that came after it, an invalid one is answered with an error result.
    """

    async def tools_node(state: TurnState, config: RunnableConfig) -> dict:
        queued = state["queued_calls"]
        log    = list(state["tool_call_log"])
        added: list[dict] = []

        async def record(tc: dict, name: str, args: dict, result: str) -> None:
            log.append({"name": name, "args": args, "result": result})
            added.append(tool_message(tc["id"], result))
            await emit_event(config, {"type": "tool_result", "tool_call_id": tc["id"],
                                      "name": name, "result": result})

        for index, tc in enumerate(queued):
            fn   = tc.get("function", {})
            name = fn.get("name", "")
            raw  = fn.get("arguments") or "{}"

            await emit_event(config, {"type": "tool_start", "tool_call_id": tc["id"], "name": name})

            try:
                args = json.loads(raw)
            except json.JSONDecodeError:
                args = None
            if not isinstance(args, dict):
                log_malformed_json(raw=raw, context=f"tool_loop tool={name}",
                                   provider=llm.get_provider_name(), model=llm.get_model())
                await record(tc, name, {}, json.dumps({"error": "Invalid JSON in tool arguments", "raw": raw}))
                continue

            if not is_write_tool(name):
                debug_ai("tool_execute", tool_name=name)
                await record(tc, name, args, await toolkit.execute_read_tool(name, args))
                continue

            if not toolkit.can_write:
                await record(tc, name, args,
                             json.dumps({"error": f"{name} is not available to the {toolkit.role} role"}))
                continue
            try:
                action = parse_proposed_action(name, args)
            except ValidationError as exc:
                await record(tc, name, args, invalid_arguments(name, exc))
                continue
            except UnknownWriteToolError:
                await record(tc, name, args, json.dumps({"error": f"Unknown tool: {name}"}))
                continue

            debug_ai("hitl_interrupt", tool_name=name, action_type=action["type"])
            logger.info("[agent] Awaiting approval for %s on %s", name, graph_key)
            result: AgentResult = {
                "type":            "interrupt",
                "message":         state["message"],
                "tool_calls":      list(log),
                "proposed_action": action,
                "tool_call":       {"id": tc["id"], "name": name, "args": args},
            }
            return {
                "messages":      added,
                "queued_calls":  [],
                "tool_call_log": log,
                "result":        result,
                "pending": {
                    "tool_call_id":         tc["id"],
                    "tool_name":            name,
                    "args":                 args,
                    "proposed_action":      action,
                    "context":              state["context"],
                    "tool_call_log":        list(log),
                    "remaining_tool_calls": list(queued[index + 1:]),
                },
            }

        return {"messages": added, "queued_calls": [], "tool_call_log": log}

    return tools_node
