"""
Tests for graph_agent/routing.py and graph_agent/graph.py
==========================================================
Routing functions are pure: they take state dicts and return strings.
No LLM, no graph, no async needed for those.

Covers:
  - route_from_start: fresh turn / resumed turn with leftover calls
  - route_after_agent: final message / tool calls / cancelled stream
  - route_after_tools: pending interrupt / keep looping
  - build_turn_graph: node layout, a propose_* call ends the run with pending set
"""
from langgraph.graph import END

from conftest import ScriptedProvider, text_reply, tool_call, tool_reply
from graph_agent.graph import build_turn_graph
from graph_agent.routing import route_after_agent, route_after_tools, route_from_start
from graph_agent.sample_data import SAMPLE_GRAPH_KEY
from graph_agent.tools import GraphToolkit

EMPTY_CONTEXT = {"graph": {}, "relevant_nodes": [], "relevant_edges": [], "node_type_configs": []}


def _state(**overrides) -> dict:
    state = {
        "messages":      [{"role": "user", "content": "hi"}],
        "context":       EMPTY_CONTEXT,
        "queued_calls":  [],
        "tool_call_log": [],
        "message":       "",
        "rounds":        0,
        "pending":       None,
        "result":        None,
        "cancelled":     False,
    }
    state.update(overrides)
    return state


# ---------------------------------------------------------------------------
# route_from_start
# ---------------------------------------------------------------------------

class TestRouteFromStart:
    def test_fresh_turn_goes_to_agent(self):
        assert route_from_start(_state()) == "agent"

    def test_leftover_calls_go_to_tools(self):
        state = _state(queued_calls=[tool_call("c1", "read_graph_overview")])
        assert route_from_start(state) == "tools"


# ---------------------------------------------------------------------------
# route_after_agent
# ---------------------------------------------------------------------------

class TestRouteAfterAgent:
    def test_final_message_goes_to_end(self):
        state = _state(result={"type": "message", "message": "done", "tool_calls": []})
        assert route_after_agent(state) == END

    def test_tool_calls_go_to_tools(self):
        state = _state(queued_calls=[tool_call("c1", "read_graph_overview")])
        assert route_after_agent(state) == "tools"

    def test_cancelled_goes_to_end_even_with_calls(self):
        state = _state(cancelled=True, queued_calls=[tool_call("c1", "read_graph_overview")])
        assert route_after_agent(state) == END

    def test_nothing_to_do_goes_to_end(self):
        assert route_after_agent(_state()) == END


# ---------------------------------------------------------------------------
# route_after_tools
# ---------------------------------------------------------------------------

class TestRouteAfterTools:
    def test_pending_interrupt_goes_to_end(self):
        state = _state(pending={"tool_call_id": "w1", "tool_name": "propose_delete_node"})
        assert route_after_tools(state) == END

    def test_otherwise_back_to_agent(self):
        assert route_after_tools(_state()) == "agent"


# ---------------------------------------------------------------------------
# Compiled graph
# ---------------------------------------------------------------------------

class TestTurnGraph:
    def _graph(self, provider, sample_source, max_tool_rounds=5):
        toolkit = GraphToolkit(sample_source, SAMPLE_GRAPH_KEY)
        return build_turn_graph(provider, toolkit, SAMPLE_GRAPH_KEY, max_tool_rounds)

    def test_has_agent_and_tools_nodes(self, sample_source):
        graph = self._graph(ScriptedProvider(), sample_source)
        nodes = graph.get_graph().nodes
        assert "agent" in nodes
        assert "tools" in nodes

    async def test_propose_call_ends_run_with_pending(self, sample_source):
        provider = ScriptedProvider([tool_reply(
            tool_call("w1", "propose_delete_node", {"node_key": "error-handler", "reason": "unused"}),
            tool_call("r2", "read_graph_overview"),
            content="Removing it.",
        )])
        final = await self._graph(provider, sample_source).ainvoke(_state())

        assert final["result"]["type"] == "interrupt"
        assert final["result"]["message"] == "Removing it."
        assert final["pending"]["tool_call_id"] == "w1"
        assert [c["id"] for c in final["pending"]["remaining_tool_calls"]] == ["r2"]
        assert len(provider.calls) == 1
        assert final["messages"][-1]["tool_calls"][0]["id"] == "w1"

    async def test_read_tool_loops_back_to_agent(self, sample_source):
        provider = ScriptedProvider([
            tool_reply(tool_call("r1", "read_graph_overview")),
            text_reply("All good."),
        ])
        final = await self._graph(provider, sample_source).ainvoke(_state())

        assert final["pending"] is None
        assert final["result"] == {"type": "message", "message": "All good.",
                                   "tool_calls": final["tool_call_log"]}
        assert [m["role"] for m in final["messages"]] == ["user", "assistant", "tool", "assistant"]
        assert final["rounds"] == 2

    async def test_round_cap_makes_last_call_without_tools(self, sample_source):
        provider = ScriptedProvider([
            tool_reply(tool_call("r1", "read_graph_overview")),
            text_reply("Summary follows."),
        ])
        final = await self._graph(provider, sample_source, max_tool_rounds=1).ainvoke(_state())

        assert [c["kind"] for c in provider.calls] == ["tools", "chat"]
        assert final["result"]["message"] == "Summary follows."
