"""
Graph Agent
===========
One conversation about one graph: GraphRAG retrieval, a bounded tool loop,
and a human-in-the-loop gate in front of every graph mutation.

States:

    idle               chat() accepted
    awaiting_approval  a propose_* call is pending; only resume_conversation*()
                       moves the conversation forward

Per turn:
  1. retrieve context for the user's message
  2. first turn only: push the system prompt
  3. push "[RAG context for this question]" + summary, then the user message
  4. run the compiled turn graph (graph.py): the agent node asks the model,
     the tools node runs read tools and stops at the first valid propose_*
     call, routing.py loops between them at most max_tool_rounds times, and
     one last call without tools answers when the rounds run out

The pending interrupt keeps everything resume needs (the gated call, the
context, the calls logged so far, and the calls from the same model response
that were not processed yet) as plain JSON, so the thread store can persist
it and another process can rebuild the agent and resume.

Streaming variants yield agent events instead of returning once:

    {"type": "token",       "token": str}
    {"type": "tool_start",  "tool_call_id": str, "name": str}
    {"type": "tool_result", "tool_call_id": str, "name": str, "result": str}
    {"type": "complete",    "result": AgentResult}

Both paths run the same graph; chat() and resume_conversation() simply
keep the "complete" result.
"""
import asyncio
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator

from .ai_logging import debug_ai
from .data_source import GraphDataSource, MutableGraphDataSource
from .errors import (
    ActionApplyError,
    NoPendingInterruptError,
    PendingInterruptError,
)
from .graph import build_turn_graph
from .hitl import build_resolution_result
from .nodes import tool_message
from .prompts import build_context_summary, build_system_prompt
from .providers.base import LLMProvider
from .providers.embeddings import EmbeddingProvider
from .retriever import GraphRAGRetriever
from .state import AgentResult, GraphRAGContext, PendingInterrupt, Role, ToolCallLogEntry, TurnState
from .tools import GraphToolkit, apply_proposed_action

logger = logging.getLogger(__name__)

RAG_CONTEXT_HEADER     = "[RAG context for this question]\n"
APPROVED_MESSAGE       = "Action approved and applied."
REJECTED_MESSAGE       = "Action rejected by the user."

AgentEvent = dict[str, Any]


class GraphAgent:
    """
    Args:
        graph_key:          The only graph this agent may read or edit.
        data_source:        Graph store. Approved actions are applied to it when
                            it implements MutableGraphDataSource.
        llm_provider:       Chat model adapter.
        role:               "viewer" gets read tools only.
        max_tool_rounds:    Upper bound on model calls with tools per turn.
        embedding_provider: Optional; enables vector search in retrieval.
        retriever:          Share one retriever (and its cache) across agents.
    """

    def __init__(
        self,
        graph_key: str,
        data_source: GraphDataSource,
        llm_provider: LLMProvider,
        role: Role = "editor",
        max_tool_rounds: int = 5,
        embedding_provider: EmbeddingProvider | None = None,
        retriever: GraphRAGRetriever | None = None,
    ):
        self.graph_key       = graph_key
        self.role            = role
        self.max_tool_rounds = max_tool_rounds
        self._data_source    = data_source
        self._llm            = llm_provider
        self._retriever      = retriever or GraphRAGRetriever(
            data_source, embedding_provider=embedding_provider,
        )
        self._toolkit        = GraphToolkit(data_source, graph_key, role)
        self._graph          = build_turn_graph(llm_provider, self._toolkit, graph_key, max_tool_rounds)
        self._history: list[dict[str, Any]] = []
        self._pending: PendingInterrupt | None = None

    # ── State accessors ─────────────────────────────────────────────────────

    def has_pending_interrupt(self) -> bool:
        return self._pending is not None

    def reset(self) -> None:
        self._history = []
        self._pending = None

    def get_conversation_history(self) -> list[dict[str, Any]]:
        return self._history

    def load_conversation_history(self, history: list[dict[str, Any]]) -> None:
        self._history = list(history)

    def get_pending_interrupt(self) -> PendingInterrupt | None:
        return self._pending

    def load_pending_interrupt(self, snapshot: PendingInterrupt | None) -> None:
        self._pending = snapshot

    def get_tool_definitions(self) -> list[dict]:
        return self._toolkit.get_tool_definitions()

    # ── Public entry points ─────────────────────────────────────────────────

    async def chat(self, message: str) -> AgentResult:
        return await self._collect(self._chat_events(message, stream=False))

    async def chat_stream(
        self,
        message: str,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[AgentEvent]:
        async with aclosing(self._chat_events(message, True, cancel_event)) as events:
            async for event in events:
                yield event

    async def resume_conversation(self, approved: bool, feedback: str | None = None) -> AgentResult:
        return await self._collect(self._resume_events(approved, feedback, stream=False))

    async def resume_conversation_stream(
        self,
        approved: bool,
        feedback: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[AgentEvent]:
        async with aclosing(self._resume_events(approved, feedback, True, cancel_event)) as events:
            async for event in events:
                yield event

    @staticmethod
    async def _collect(events: AsyncIterator[AgentEvent]) -> AgentResult:
        result: AgentResult | None = None
        async with aclosing(events) as stream:
            async for event in stream:
                if event["type"] == "complete":
                    result = event["result"]
        if result is None:
            raise RuntimeError("Agent turn ended without a result")
        return result

    # ── Turn setup ──────────────────────────────────────────────────────────

    async def _chat_events(
        self,
        message: str,
        stream: bool,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[AgentEvent]:
        if self._pending is not None:
            raise PendingInterruptError()

        debug_ai("agent_chat_start", graph_key=self.graph_key, message_length=len(message))
        context = await self._retriever.retrieve(self.graph_key, message)

        if not self._history:
            self._history.append({"role": "system", "content": build_system_prompt(context, self.role)})
        summary = build_context_summary(context)
        if summary:
            self._history.append({"role": "system", "content": RAG_CONTEXT_HEADER + summary})
        self._history.append({"role": "user", "content": message})

        async for event in self._run(context, [], [], stream, cancel_event):
            yield event

    async def _resume_events(
        self,
        approved: bool,
        feedback: str | None,
        stream: bool,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[AgentEvent]:
        pending = self._pending
        if pending is None:
            raise NoPendingInterruptError()

        # The approved action may have changed the graph.
        self._retriever.clear_cache(self.graph_key)
        self._pending = None

        if approved:
            status, text = await self._apply(pending)
        else:
            status, text = "rejected", feedback or REJECTED_MESSAGE
        if status == "approved" and feedback:
            text = feedback

        result = build_resolution_result(status, text)
        log = list(pending["tool_call_log"])
        log.append({"name": pending["tool_name"], "args": pending["args"], "result": result})
        self._history.append(tool_message(pending["tool_call_id"], result))
        logger.info("[agent] %s %s on %s", status, pending["tool_name"], self.graph_key)

        yield {"type": "tool_result", "tool_call_id": pending["tool_call_id"],
               "name": pending["tool_name"], "result": result}

        async for event in self._run(
            pending["context"], log, pending["remaining_tool_calls"], stream, cancel_event,
        ):
            yield event

    async def _apply(self, pending: PendingInterrupt) -> tuple[str, str]:
        if not isinstance(self._data_source, MutableGraphDataSource):
            return "approved", APPROVED_MESSAGE
        try:
            summary = await apply_proposed_action(
                self._data_source, self.graph_key, pending["proposed_action"],
            )
        except ActionApplyError as exc:
            logger.warning("[agent] Approved action failed: %s", exc)
            return "failed", str(exc)
        except Exception:
            self._pending = pending
            raise
        return "approved", summary

    # ── Graph run ───────────────────────────────────────────────────────────

    async def _run(
        self,
        context: GraphRAGContext,
        log: list[ToolCallLogEntry],
        queued_calls: list[dict],
        stream: bool,
        cancel_event: asyncio.Event | None,
    ) -> AsyncIterator[AgentEvent]:
        """
        Runs the turn graph as a task and relays the events its nodes emit.
        Each event is handed over only once the previous one was consumed, so
        a cancel_event set between two events stops the turn before the next.
        """
        handoff: asyncio.Queue = asyncio.Queue()

        async def emit(event: AgentEvent) -> None:
            await handoff.put(event)
            await handoff.join()

        state: TurnState = {
            "messages":      list(self._history),
            "context":       context,
            "queued_calls":  list(queued_calls),
            "tool_call_log": log,
            "message":       "",
            "rounds":        0,
            "pending":       None,
            "result":        None,
            "cancelled":     False,
        }
        config = {
            "recursion_limit": 2 * self.max_tool_rounds + 4,
            "configurable": {"emit": emit, "stream": stream, "cancel_event": cancel_event},
        }

        run = asyncio.ensure_future(self._graph.ainvoke(state, config=config))
        getter: asyncio.Future | None = None
        try:
            while True:
                getter = asyncio.ensure_future(handoff.get())
                done, _ = await asyncio.wait({getter, run}, return_when=asyncio.FIRST_COMPLETED)
                if getter not in done:
                    break
                event = getter.result()
                try:
                    yield event
                finally:
                    handoff.task_done()
            final: TurnState = run.result()
        finally:
            if getter is not None and not getter.done():
                getter.cancel()
            if not run.done():
                run.cancel()

        self._history = list(final["messages"])
        self._pending = final.get("pending")
        if final.get("cancelled") or final.get("result") is None:
            return
        yield {"type": "complete", "result": final["result"]}
