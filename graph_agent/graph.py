"""
Turn Graph Construction
=======================
Assembles the LangGraph StateGraph that runs one conversation turn.

Architecture:

    START ── queued calls (resume) ──► tools
      │
      ▼
    agent ──────────────────────────────────────► END (final answer / cancelled)
      │ tool calls                                 ▲
      ▼                                            │
    tools ──── propose_* (pending interrupt) ──────┤
      │                                            │
      └──────────► agent  (ReAct loop)             │

The graph is compiled without a checkpointer. A paused conversation is the
PendingInterrupt left in the final state; the agent keeps it and the thread
store persists it as part of the AIThreadDocument, so any process can rebuild
the agent and start the next run from it.
"""
from langgraph.graph import END, StateGraph

from .providers.base import LLMProvider
from .nodes import create_agent_node, create_tools_node
from .routing import route_after_agent, route_after_tools, route_from_start
from .state import TurnState
from .tools import GraphToolkit


def build_turn_graph(llm: LLMProvider, toolkit: GraphToolkit, graph_key: str, max_tool_rounds: int):
    """
    Build and compile the turn graph for one agent.

    Args:
        llm:             Chat model adapter used by the agent node.
        toolkit:         Role-filtered tools; their definitions are offered to the model.
        graph_key:       Graph the tools operate on, used in log lines.
        max_tool_rounds: Model calls with tools before the final call without them.

    Returns:
        A compiled graph ready for ainvoke().
    """
    workflow = StateGraph(TurnState)

    workflow.add_node("agent", create_agent_node(llm, toolkit.get_tool_definitions(), max_tool_rounds))
    workflow.add_node("tools", create_tools_node(toolkit, llm, graph_key))

    workflow.set_conditional_entry_point(
        route_from_start,
        {"tools": "tools", "agent": "agent"},
    )
    workflow.add_conditional_edges(
        "agent",
        route_after_agent,
        {"tools": "tools", END: END},
    )
    workflow.add_conditional_edges(
        "tools",
        route_after_tools,
        {"agent": "agent", END: END},
    )

    return workflow.compile()
