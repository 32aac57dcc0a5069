"""
Routing Functions
=================
Pure functions that read TurnState and return a destination node name.
LangGraph calls these at conditional edges to decide where a turn goes next.

Graph routing map:
  START  → route_from_start   → "tools" | "agent"
  agent  → route_after_agent  → "tools" | END
  tools  → route_after_tools  → "agent" | END
"""
from typing import Literal

from langgraph.graph import END

from .state import TurnState


def route_from_start(state: TurnState) -> Literal["tools", "agent"]:
    """A resumed turn first finishes the calls left over from the interrupted response."""
    if state.get("queued_calls"):
        return "tools"
    return "agent"


def route_after_agent(state: TurnState) -> Literal["tools", "__end__"]:
    """
    After the model answers:
      - cancelled stream, or a final message   → END
      - tool calls                             → "tools"
    """
    if state.get("cancelled") or state.get("result") is not None:
        return END
    if state.get("queued_calls"):
        return "tools"
    return END


def route_after_tools(state: TurnState) -> Literal["agent", "__end__"]:
    """A propose_* call leaves a pending interrupt and ends the turn; otherwise loop."""
    if state.get("pending") is not None:
        return END
    return "agent"
