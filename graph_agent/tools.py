"""
Agent Tools
===========
Read tools run automatically inside the tool loop. Write tools (prefix
"propose_") never run: the agent turns the call into a ProposedAction and
stops for human approval. apply_proposed_action() performs the mutation
once the user approved it.

Read tools are langchain_core StructuredTools bound to one
(data_source, graph_key) pair by closure, with pydantic argument models.
Every tool returns a JSON string; failures are JSON too:

    {"error": "Unknown tool: <name>"}
    {"error": "Invalid arguments for <name>", "details": [...]}
    {"error": "Node not found"}

Tool definitions reach the providers in OpenAI function format via
convert_to_openai_tool(). Viewers only ever see the read tools.
"""
import copy
import json
import logging
from typing import Any, Literal

from langchain_core.tools import StructuredTool
from langchain_core.utils.function_calling import convert_to_openai_tool
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .data_source import GraphDataSource, MutableGraphDataSource
from .errors import ActionApplyError, UnknownWriteToolError
from .prompts import BUILTIN_NODE_TYPES
from .retriever import summarize_handles, truncate
from .state import WRITE_TOOL_PREFIX, ProposedAction, Role

logger = logging.getLogger(__name__)

DirectionArg = Literal["outbound", "inbound", "any"]


def _dump(value: Any) -> str:
    return json.dumps(value, default=str)


def invalid_arguments(name: str, exc: ValidationError) -> str:
    return _dump({
        "error":   f"Invalid arguments for {name}",
        "details": exc.errors(include_url=False),
    })


# ── Read tool argument models ───────────────────────────────────────────────

class NoArgs(BaseModel):
    pass


class SearchNodesArgs(BaseModel):
    query: str = Field(description="Search text")
    sheet_id: str | None = Field(None, description="Only keep nodes from this sheet")
    max_results: int = Field(10, ge=1, le=50, description="Maximum number of results")


class ExploreNeighborhoodArgs(BaseModel):
    node_key: str = Field(description="Key of the starting node")
    max_depth: int = Field(2, ge=1, le=3, description="Traversal depth (1-3)")
    direction: DirectionArg = Field("any", description="Edge direction to follow")


class NodeKeyArgs(BaseModel):
    node_key: str = Field(description="Key of the node")


class TypeKeyArgs(BaseModel):
    type_key: str = Field(description="Key of the node type config")


class ListNodeEdgesArgs(BaseModel):
    node_key: str = Field(description="Key of the node")
    direction: DirectionArg = Field("any", description="inbound, outbound or any")


def build_read_tools(data_source: GraphDataSource, graph_key: str) -> list[StructuredTool]:
    """Read tools bound to one graph."""

    async def read_graph_overview() -> str:
        graph = await data_source.get_graph(graph_key)
        if graph is None:
            return _dump({"error": "Graph not found"})
        nodes = await data_source.get_nodes(graph_key)
        edges = await data_source.get_edges(graph_key)
        return _dump({
            "name":        graph["name"],
            "description": graph.get("description"),
            "sheets": [
                {
                    "id":         sid,
                    "name":       name,
                    "node_count": sum(1 for n in nodes if n["sheet"] == sid),
                    "edge_count": sum(1 for e in edges if e.get("sheet") == sid),
                }
                for sid, name in graph["sheets"].items()
            ],
            "metadata": graph.get("metadata"),
        })

    async def search_nodes(query: str = "", sheet_id: str | None = None, max_results: int = 10) -> str:
        results = await data_source.search_nodes(graph_key, query, max_results)
        if sheet_id:
            results = [n for n in results if n["sheet"] == sheet_id]
        return _dump([
            {
                "key":          n["key"],
                "type":         n["type"],
                "sheet":        n["sheet"],
                "process":      truncate(n.get("process"), 200),
                "data_summary": truncate(json.dumps(n["data"]), 200) if n.get("data") else None,
            }
            for n in results
        ])

    async def explore_neighborhood(node_key: str = "", max_depth: int = 2, direction: str = "any") -> str:
        hood = await data_source.get_neighborhood(graph_key, node_key, max_depth, direction)
        return _dump({
            "nodes": [
                {"key": n["key"], "type": n["type"], "sheet": n["sheet"],
                 "process": truncate(n.get("process"), 300)}
                for n in hood["nodes"]
            ],
            "edges": [
                {"source": e["source"], "source_handle": e["source_handle"],
                 "target": e["target"], "target_handle": e["target_handle"],
                 "label": e.get("label")}
                for e in hood["edges"]
            ],
        })

    async def read_node_detail(node_key: str = "") -> str:
        node = await data_source.get_node_by_key(graph_key, node_key)
        if node is None:
            return _dump({"error": "Node not found"})
        return _dump({
            "key":     node["key"],
            "type":    node["type"],
            "sheet":   node["sheet"],
            "pos_x":   node.get("pos_x"),
            "pos_y":   node.get("pos_y"),
            "size":    node.get("size"),
            "process": node.get("process"),
            "handles": summarize_handles(node.get("handles")),
            "data":    truncate(json.dumps(node["data"]), 500) if node.get("data") else None,
        })

    async def read_node_config(type_key: str = "") -> str:
        configs = await data_source.get_node_configs(graph_key)
        config  = next((c for c in configs if c["key"] == type_key), None)
        if config is None:
            return _dump({"error": "NodeTypeConfig not found"})
        return _dump({
            "key":          config["key"],
            "display_name": config["display_name"],
            "description":  config.get("description"),
            "category":     config.get("category"),
            "icon":         config.get("icon"),
            "handles":      summarize_handles(config.get("handles")),
        })

    async def list_available_node_types() -> str:
        configs  = await data_source.get_node_configs(graph_key)
        built_in = [
            {"key": key, "display_name": name, "description": desc, "category": "built-in"}
            for key, name, desc, _ in BUILTIN_NODE_TYPES
        ]
        return _dump(built_in + [
            {"key": c["key"], "display_name": c["display_name"], "description": c.get("description"),
             "category": c.get("category"), "icon": c.get("icon")}
            for c in configs
        ])

    async def list_node_edges(node_key: str = "", direction: str = "any") -> str:
        edges = await data_source.get_edges(graph_key)
        if direction == "outbound":
            edges = [e for e in edges if e["source"] == node_key]
        elif direction == "inbound":
            edges = [e for e in edges if e["target"] == node_key]
        else:
            edges = [e for e in edges if node_key in (e["source"], e["target"])]
        return _dump([
            {"key": e["key"], "source": e["source"], "source_handle": e["source_handle"],
             "target": e["target"], "target_handle": e["target_handle"], "label": e.get("label")}
            for e in edges
        ])

    return [
        StructuredTool.from_function(
            coroutine=read_graph_overview,
            name="read_graph_overview",
            description="Get the current graph's metadata: name, sheets, node and edge count per sheet.",
            args_schema=NoArgs,
        ),
        StructuredTool.from_function(
            coroutine=search_nodes,
            name="search_nodes",
            description="Search nodes in the graph by key, type, description or content.",
            args_schema=SearchNodesArgs,
        ),
        StructuredTool.from_function(
            coroutine=explore_neighborhood,
            name="explore_neighborhood",
            description="Explore the nodes connected around a node, direct and indirect neighbours.",
            args_schema=ExploreNeighborhoodArgs,
        ),
        StructuredTool.from_function(
            coroutine=read_node_detail,
            name="read_node_detail",
            description="Get every detail of one node: type, process code, data, handles, position.",
            args_schema=NodeKeyArgs,
        ),
        StructuredTool.from_function(
            coroutine=read_node_config,
            name="read_node_config",
            description="Get the definition of a custom node type: description, category, handles.",
            args_schema=TypeKeyArgs,
        ),
        StructuredTool.from_function(
            coroutine=list_available_node_types,
            name="list_available_node_types",
            description="List every available node type, built-in and custom.",
            args_schema=NoArgs,
        ),
        StructuredTool.from_function(
            coroutine=list_node_edges,
            name="list_node_edges",
            description="List a node's connections (edges), inbound and/or outbound.",
            args_schema=ListNodeEdgesArgs,
        ),
    ]


# ── Write tool argument models ──────────────────────────────────────────────

class HandlePointArgs(BaseModel):
    id: str
    type: Literal["in", "out"]
    accept: str
    display: str | None = None


class HandleGroupArgs(BaseModel):
    position: Literal["separate", "fix"]
    point: list[HandlePointArgs]


class ProposeArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(description="Why this change is needed")


class ProposeCreateNodeArgs(ProposeArgs):
    type_key: str = Field(description="Node type to create (e.g. 'api-call', 'filter', 'starter')")
    sheet: str = Field(description="Sheet id to place the node on (e.g. '0')")
    pos_x: float = Field(description="X position on the canvas")
    pos_y: float = Field(description="Y position on the canvas")
    process: str = Field("", description="JavaScript process code")
    handles: dict[str, HandleGroupArgs] | None = Field(
        None, description="Handles keyed by side (T, D, R, L, 0). Defaults to the type's handles.",
    )
    data: dict[str, Any] | None = Field(None, description="Type-specific data")


class ProposeCreateEdgeArgs(ProposeArgs):
    source_key: str = Field(description="Key of the source node")
    source_handle: str = Field(description="Output handle id on the source node")
    target_key: str = Field(description="Key of the target node")
    target_handle: str = Field(description="Input handle id on the target node")
    sheet: str = Field(description="Sheet id holding both nodes")
    label: str | None = Field(None, description="Optional label, e.g. 'success' or 'error'")


class ProposeDeleteNodeArgs(ProposeArgs):
    node_key: str = Field(description="Key of the node to delete; its edges go with it")


class ProposeUpdateNodeArgs(ProposeArgs):
    node_key: str = Field(description="Key of the node to update")
    changes: dict[str, Any] = Field(
        description="Fields to set, e.g. {'process': '...'}; nested data paths as 'data.url'",
    )


class ProposeDeleteEdgeArgs(ProposeArgs):
    edge_key: str = Field(description="Key of the edge to delete")


class ProposeMoveNodeArgs(ProposeArgs):
    node_key: str = Field(description="Key of the node to move")
    pos_x: float = Field(description="New X position")
    pos_y: float = Field(description="New Y position")


class BatchItemArgs(BaseModel):
    tool: Literal[
        "propose_create_node", "propose_create_edge", "propose_delete_node",
        "propose_update_node", "propose_delete_edge", "propose_move_node",
    ] = Field(description="Write tool to batch")
    args: dict[str, Any] = Field(description="That tool's arguments; 'reason' may be omitted")


class ProposeBatchArgs(ProposeArgs):
    actions: list[BatchItemArgs] = Field(min_length=1, description="Changes applied together, in order")


WRITE_TOOL_SCHEMAS: dict[str, tuple[type[ProposeArgs], str]] = {
    "propose_create_node": (ProposeCreateNodeArgs, "Propose creating a new node."),
    "propose_create_edge": (ProposeCreateEdgeArgs, "Propose connecting two nodes with an edge."),
    "propose_delete_node": (ProposeDeleteNodeArgs, "Propose deleting a node and its edges."),
    "propose_update_node": (ProposeUpdateNodeArgs, "Propose changing fields of an existing node."),
    "propose_delete_edge": (ProposeDeleteEdgeArgs, "Propose deleting an edge."),
    "propose_move_node":   (ProposeMoveNodeArgs, "Propose moving a node on the canvas."),
    "propose_batch":       (ProposeBatchArgs, "Propose several changes to be approved together."),
}


def is_write_tool(name: str) -> bool:
    return name.startswith(WRITE_TOOL_PREFIX)


def build_write_tools() -> list[StructuredTool]:
    """Definitions only. Calling one just echoes the action it would propose."""
    tools = []
    for name, (schema, summary) in WRITE_TOOL_SCHEMAS.items():

        async def propose(_name=name, **kwargs) -> str:
            return _dump(parse_proposed_action(_name, kwargs))

        tools.append(StructuredTool.from_function(
            coroutine=propose,
            name=name,
            description=summary + " It is shown to the user and only applied after approval.",
            args_schema=schema,
        ))
    return tools


def parse_proposed_action(name: str, args: dict[str, Any]) -> ProposedAction:
    """Validate a propose_* call. Raises ValidationError or UnknownWriteToolError."""
    entry = WRITE_TOOL_SCHEMAS.get(name)
    if entry is None:
        raise UnknownWriteToolError(name)
    parsed = entry[0].model_validate(args)

    if isinstance(parsed, ProposeCreateNodeArgs):
        payload = {
            "type_key": parsed.type_key,
            "sheet":    parsed.sheet,
            "pos_x":    parsed.pos_x,
            "pos_y":    parsed.pos_y,
            "process":  parsed.process,
        }
        if parsed.handles is not None:
            payload["handles"] = {
                side: group.model_dump(exclude_none=True) for side, group in parsed.handles.items()
            }
        if parsed.data is not None:
            payload["data"] = parsed.data
        return {"type": "create_node", "payload": payload, "reason": parsed.reason}

    if isinstance(parsed, ProposeCreateEdgeArgs):
        payload = parsed.model_dump(exclude={"reason"}, exclude_none=True)
        return {"type": "create_edge", "payload": payload, "reason": parsed.reason}

    if isinstance(parsed, ProposeDeleteNodeArgs):
        return {"type": "delete_node", "payload": {"node_key": parsed.node_key}, "reason": parsed.reason}

    if isinstance(parsed, ProposeUpdateNodeArgs):
        return {
            "type":    "update_node",
            "payload": {"node_key": parsed.node_key, "changes": parsed.changes},
            "reason":  parsed.reason,
        }

    if isinstance(parsed, ProposeDeleteEdgeArgs):
        return {"type": "delete_edge", "payload": {"edge_key": parsed.edge_key}, "reason": parsed.reason}

    if isinstance(parsed, ProposeMoveNodeArgs):
        return {
            "type":    "move_node",
            "payload": {"node_key": parsed.node_key, "pos_x": parsed.pos_x, "pos_y": parsed.pos_y},
            "reason":  parsed.reason,
        }

    actions = [
        parse_proposed_action(item.tool, {"reason": parsed.reason, **item.args})
        for item in parsed.actions
    ]
    return {"type": "batch", "payload": {"actions": actions}, "reason": parsed.reason}


# ── Applying approved actions ───────────────────────────────────────────────

def _set_path(target: dict, path: list[str], value: Any) -> None:
    for part in path[:-1]:
        child = target.get(part)
        if not isinstance(child, dict):
            child = {}
            target[part] = child
        target = child
    target[path[-1]] = value


async def apply_proposed_action(
    data_source: MutableGraphDataSource,
    graph_key: str,
    action: ProposedAction,
) -> str:
    """Apply an approved action. Returns a one-line summary; raises ActionApplyError."""
    kind    = action["type"]
    payload = action["payload"]

    if kind == "create_node":
        handles = payload.get("handles")
        if handles is None:
            configs = await data_source.get_node_configs(graph_key)
            config  = next((c for c in configs if c["key"] == payload["type_key"]), None)
            handles = copy.deepcopy(config.get("handles", {})) if config else {}
        node = await data_source.create_node(graph_key, {
            "type":    payload["type_key"],
            "sheet":   payload["sheet"],
            "pos_x":   payload["pos_x"],
            "pos_y":   payload["pos_y"],
            "process": payload.get("process", ""),
            "handles": handles,
            "data":    payload.get("data", {}),
        })
        return f"Created node {node['key']} ({payload['type_key']}) on sheet {payload['sheet']}"

    if kind == "create_edge":
        for key in (payload["source_key"], payload["target_key"]):
            if await data_source.get_node_by_key(graph_key, key) is None:
                raise ActionApplyError(f"Node not found: {key}")
        edge = {
            "sheet":         payload["sheet"],
            "source":        payload["source_key"],
            "source_handle": payload["source_handle"],
            "target":        payload["target_key"],
            "target_handle": payload["target_handle"],
        }
        if payload.get("label"):
            edge["label"] = payload["label"]
        created = await data_source.create_edge(graph_key, edge)
        return f"Created edge {created['key']} from {edge['source']} to {edge['target']}"

    if kind == "delete_node":
        if not await data_source.delete_node(graph_key, payload["node_key"]):
            raise ActionApplyError(f"Node not found: {payload['node_key']}")
        return f"Deleted node {payload['node_key']}"

    if kind == "update_node":
        node = await data_source.get_node_by_key(graph_key, payload["node_key"])
        if node is None:
            raise ActionApplyError(f"Node not found: {payload['node_key']}")
        changes: dict[str, Any] = {}
        for key, value in payload["changes"].items():
            parts = key.split(".")
            if len(parts) == 1:
                changes[key] = value
                continue
            root = changes.setdefault(parts[0], copy.deepcopy(node.get(parts[0])) or {})
            _set_path(root, parts[1:], value)
        await data_source.update_node(graph_key, payload["node_key"], changes)
        return f"Updated node {payload['node_key']} ({', '.join(payload['changes'])})"

    if kind == "move_node":
        moved = await data_source.update_node(
            graph_key, payload["node_key"], {"pos_x": payload["pos_x"], "pos_y": payload["pos_y"]},
        )
        if moved is None:
            raise ActionApplyError(f"Node not found: {payload['node_key']}")
        return f"Moved node {payload['node_key']} to ({payload['pos_x']}, {payload['pos_y']})"

    if kind == "delete_edge":
        if not await data_source.delete_edge(graph_key, payload["edge_key"]):
            raise ActionApplyError(f"Edge not found: {payload['edge_key']}")
        return f"Deleted edge {payload['edge_key']}"

    if kind == "batch":
        summaries = [
            await apply_proposed_action(data_source, graph_key, sub)
            for sub in payload["actions"]
        ]
        return "; ".join(summaries)

    raise ActionApplyError(f"Unsupported action type: {kind}")


# ── Toolkit ─────────────────────────────────────────────────────────────────

class GraphToolkit:
    """Role-filtered tool set for one graph."""

    def __init__(self, data_source: GraphDataSource, graph_key: str, role: Role = "editor"):
        self.role        = role
        self.read_tools  = build_read_tools(data_source, graph_key)
        self.write_tools = build_write_tools() if role != "viewer" else []
        self._read_by_name = {t.name: t for t in self.read_tools}

    @property
    def can_write(self) -> bool:
        return self.role != "viewer"

    def get_tools(self) -> list[StructuredTool]:
        return self.read_tools + self.write_tools

    def get_tool_definitions(self) -> list[dict]:
        return [convert_to_openai_tool(t) for t in self.get_tools()]

    async def execute_read_tool(self, name: str, args: dict[str, Any]) -> str:
        tool = self._read_by_name.get(name)
        if tool is None:
            return _dump({"error": f"Unknown tool: {name}"})
        try:
            return await tool.ainvoke(args)
        except ValidationError as exc:
            return invalid_arguments(name, exc)
