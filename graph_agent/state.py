"""
Shared Data Model
=================
JSON-shaped records that flow between the retriever, the prompt builder,
the agent and the thread store. They are TypedDicts on purpose: every one
of them is persisted or sent over the wire as-is.

Graph records (GraphInfo, GraphNode, GraphEdge, NodeTypeConfig) are what a
GraphDataSource returns. The retrieval records (GraphRAGContext and friends)
are the bounded, truncated projection handed to the model.
"""
import operator
from typing import Annotated, Any, Literal

from typing_extensions import NotRequired, TypedDict

Role      = Literal["viewer", "editor", "admin"]
Direction = Literal["inbound", "outbound", "any"]


# ── Graph records (external data source) ────────────────────────────────────

class HandlePoint(TypedDict):
    id: str
    type: Literal["in", "out"]
    accept: str
    display: NotRequired[str]


class HandleGroup(TypedDict):
    position: Literal["separate", "fix"]
    point: list[HandlePoint]


class GraphInfo(TypedDict):
    key: str
    name: str
    sheets: dict[str, str]
    description: NotRequired[str]
    metadata: NotRequired[dict[str, Any]]


class GraphNode(TypedDict):
    key: str
    type: str
    sheet: str
    process: NotRequired[str]
    handles: NotRequired[dict[str, HandleGroup]]
    data: NotRequired[Any]
    pos_x: NotRequired[float]
    pos_y: NotRequired[float]
    size: NotRequired[dict[str, float]]


class GraphEdge(TypedDict):
    key: str
    source: str
    source_handle: str
    target: str
    target_handle: str
    sheet: NotRequired[str]
    label: NotRequired[str]


class NodeTypeConfig(TypedDict):
    key: str
    display_name: str
    description: NotRequired[str]
    category: NotRequired[str]
    icon: NotRequired[str]
    handles: NotRequired[dict[str, HandleGroup]]


class Neighborhood(TypedDict):
    nodes: list[GraphNode]
    edges: list[GraphEdge]


# ── Retrieval context ───────────────────────────────────────────────────────

class HandleSummaryPoint(TypedDict):
    id: str
    direction: Literal["in", "out"]
    accepted_type: str
    display: NotRequired[str]


class HandleSummary(TypedDict):
    side: str
    points: list[HandleSummaryPoint]


class RelevantNode(TypedDict):
    key: str
    type: str
    sheet: str
    sheet_name: str
    process: str
    handles: list[HandleSummary]
    type_name: NotRequired[str]
    data_summary: NotRequired[str]


class RelevantEdge(TypedDict):
    source: str
    source_handle: str
    target: str
    target_handle: str
    label: NotRequired[str]


class NodeTypeConfigSummary(TypedDict):
    key: str
    display_name: str
    description: str
    category: str
    handles_summary: str
    icon: NotRequired[str]


class GraphRAGContext(TypedDict):
    graph: GraphInfo
    relevant_nodes: list[RelevantNode]
    relevant_edges: list[RelevantEdge]
    node_type_configs: list[NodeTypeConfigSummary]


# ── Proposed actions (HITL) ─────────────────────────────────────────────────

ActionType = Literal[
    "create_node", "delete_node", "update_node",
    "create_edge", "delete_edge", "move_node", "batch",
]


class ProposedAction(TypedDict):
    """
    Tagged variant: `type` selects the payload shape.

        create_node  {type_key, sheet, pos_x, pos_y, process?, handles?, data?}
        create_edge  {source_key, source_handle, target_key, target_handle, sheet, label?}
        delete_node  {node_key}
        update_node  {node_key, changes}
        delete_edge  {edge_key}
        move_node    {node_key, pos_x, pos_y}
        batch        {actions: [ProposedAction, ...]}
    """
    type: ActionType
    payload: dict[str, Any]
    reason: NotRequired[str]


# ── Agent conversation ──────────────────────────────────────────────────────

class ToolCallLogEntry(TypedDict):
    name: str
    args: dict[str, Any]
    result: str


class ToolCallRef(TypedDict):
    id: str
    name: str
    args: dict[str, Any]


class AgentResult(TypedDict):
    type: Literal["message", "interrupt"]
    message: str
    tool_calls: list[ToolCallLogEntry]
    proposed_action: NotRequired[ProposedAction]
    tool_call: NotRequired[ToolCallRef]


class PendingInterrupt(TypedDict):
    """Everything resume_conversation() needs, in a JSON-serialisable form."""
    tool_call_id: str
    tool_name: str
    args: dict[str, Any]
    proposed_action: ProposedAction
    context: GraphRAGContext
    tool_call_log: list[ToolCallLogEntry]
    remaining_tool_calls: list[dict[str, Any]]


class TurnState(TypedDict):
    """
    State of one compiled turn graph run. messages uses an appending reducer,
    so nodes return only the entries they add; the other fields are replaced.
    """
    messages: Annotated[list[dict[str, Any]], operator.add]
    context: GraphRAGContext
    queued_calls: list[dict[str, Any]]
    tool_call_log: list[ToolCallLogEntry]
    message: str
    rounds: int
    pending: PendingInterrupt | None
    result: AgentResult | None
    cancelled: bool


# ── Thread persistence ──────────────────────────────────────────────────────

class AIThreadDocument(TypedDict):
    key: str
    graph_key: str
    workspace: str
    user_id: str
    conversation_history: list[dict[str, Any]]
    pending_interrupt: PendingInterrupt | None
    created_time: int
    last_updated_time: int


# Prefix that marks a tool call as a graph mutation requiring human approval.
WRITE_TOOL_PREFIX = "propose_"
