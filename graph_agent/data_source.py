"""
Graph Data Source
=================
The graph store is an external collaborator. The agent reads it through
GraphDataSource and mutates it through MutableGraphDataSource, and only
ever mutates after a human approved a proposed action.

InMemoryGraphDataSource is the reference implementation used by the demo,
the API default and the tests. Search mirrors what a database backend does:

  - with a query embedding: cosine similarity against stored node vectors,
    scores <= 0.3 discarded; no hits falls through to keyword search
  - keyword: query split on whitespace, tokens of 3+ chars, one point per
    token found in key/type/process/data/config text; score 0 excluded
  - queries of 2 characters or fewer return the first max_results nodes
"""
import copy
import json
import logging
import math
import uuid
from typing import Any, Protocol, runtime_checkable

from .state import Direction, GraphEdge, GraphInfo, GraphNode, Neighborhood, NodeTypeConfig

logger = logging.getLogger(__name__)

VECTOR_MIN_SCORE = 0.3


@runtime_checkable
class GraphDataSource(Protocol):
    async def get_graph(self, graph_key: str) -> GraphInfo | None: ...

    async def get_nodes(self, graph_key: str, sheet_id: str | None = None) -> list[GraphNode]: ...

    async def get_edges(self, graph_key: str, sheet_id: str | None = None) -> list[GraphEdge]: ...

    async def get_node_by_key(self, graph_key: str, node_key: str) -> GraphNode | None: ...

    async def get_node_configs(self, graph_key: str) -> list[NodeTypeConfig]: ...

    async def search_nodes(
        self,
        graph_key: str,
        query: str,
        max_results: int = 10,
        query_embedding: list[float] | None = None,
    ) -> list[GraphNode]: ...

    async def get_neighborhood(
        self,
        graph_key: str,
        node_key: str,
        max_depth: int = 2,
        direction: Direction = "any",
    ) -> Neighborhood: ...


@runtime_checkable
class MutableGraphDataSource(GraphDataSource, Protocol):
    async def create_node(self, graph_key: str, node: dict[str, Any]) -> GraphNode: ...

    async def delete_node(self, graph_key: str, node_key: str) -> bool: ...

    async def update_node(self, graph_key: str, node_key: str, changes: dict[str, Any]) -> GraphNode | None: ...

    async def create_edge(self, graph_key: str, edge: dict[str, Any]) -> GraphEdge: ...

    async def delete_edge(self, graph_key: str, edge_key: str) -> bool: ...


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot    = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class InMemoryGraphDataSource:
    """
    Dict-backed graph store.

    Args:
        graphs:      GraphInfo records.
        nodes:       graph_key -> list of GraphNode.
        edges:       graph_key -> list of GraphEdge.
        configs:     NodeTypeConfig records shared by every graph.
        embeddings:  graph_key -> {node_key: vector}, optional.
    """

    def __init__(
        self,
        graphs: list[GraphInfo] | None = None,
        nodes: dict[str, list[GraphNode]] | None = None,
        edges: dict[str, list[GraphEdge]] | None = None,
        configs: list[NodeTypeConfig] | None = None,
        embeddings: dict[str, dict[str, list[float]]] | None = None,
    ):
        self._graphs: dict[str, GraphInfo] = {g["key"]: copy.deepcopy(g) for g in graphs or []}
        self._nodes: dict[str, dict[str, GraphNode]] = {
            gk: {n["key"]: copy.deepcopy(n) for n in ns} for gk, ns in (nodes or {}).items()
        }
        self._edges: dict[str, dict[str, GraphEdge]] = {
            gk: {e["key"]: copy.deepcopy(e) for e in es} for gk, es in (edges or {}).items()
        }
        self._configs: list[NodeTypeConfig] = [copy.deepcopy(c) for c in configs or []]
        self._embeddings: dict[str, dict[str, list[float]]] = {
            gk: dict(vectors) for gk, vectors in (embeddings or {}).items()
        }

    # ── Reads ───────────────────────────────────────────────────────────────

    async def get_graph(self, graph_key: str) -> GraphInfo | None:
        return self._graphs.get(graph_key)

    async def get_nodes(self, graph_key: str, sheet_id: str | None = None) -> list[GraphNode]:
        nodes = self._nodes.get(graph_key, {}).values()
        return [n for n in nodes if sheet_id is None or n["sheet"] == sheet_id]

    async def get_edges(self, graph_key: str, sheet_id: str | None = None) -> list[GraphEdge]:
        edges = self._edges.get(graph_key, {}).values()
        return [e for e in edges if sheet_id is None or e.get("sheet") == sheet_id]

    async def get_node_by_key(self, graph_key: str, node_key: str) -> GraphNode | None:
        return self._nodes.get(graph_key, {}).get(node_key)

    async def get_node_configs(self, graph_key: str) -> list[NodeTypeConfig]:
        return list(self._configs)

    async def search_nodes(
        self,
        graph_key: str,
        query: str,
        max_results: int = 10,
        query_embedding: list[float] | None = None,
    ) -> list[GraphNode]:
        nodes = await self.get_nodes(graph_key)

        if query_embedding:
            vectors = self._embeddings.get(graph_key, {})
            scored = [
                (cosine_similarity(query_embedding, vectors[n["key"]]), n)
                for n in nodes if n["key"] in vectors
            ]
            hits = [n for score, n in sorted(scored, key=lambda s: s[0], reverse=True)
                    if score > VECTOR_MIN_SCORE]
            if hits:
                return hits[:max_results]

        q = query.lower().strip()
        if len(q) <= 2:
            return nodes[:max_results]

        tokens  = [t for t in q.split() if len(t) > 2]
        configs = {c["key"]: c for c in self._configs}
        scored_nodes = []
        for node in nodes:
            config = configs.get(node["type"], {})
            text = " ".join([
                node["key"],
                node["type"],
                node.get("process") or "",
                json.dumps(node.get("data", "")),
                config.get("display_name") or "",
                config.get("description") or "",
            ]).lower()
            score = sum(1 for token in tokens if token in text)
            if score > 0:
                scored_nodes.append((score, node))

        # sorted() is stable, so ties keep insertion order.
        scored_nodes.sort(key=lambda s: s[0], reverse=True)
        return [n for _, n in scored_nodes[:max_results]]

    async def get_neighborhood(
        self,
        graph_key: str,
        node_key: str,
        max_depth: int = 2,
        direction: Direction = "any",
    ) -> Neighborhood:
        nodes = self._nodes.get(graph_key, {})
        edges = list(self._edges.get(graph_key, {}).values())

        result_nodes: list[GraphNode] = []
        result_edges: dict[str, GraphEdge] = {}
        visited  = {node_key}
        frontier = [node_key]
        if node_key in nodes:
            result_nodes.append(nodes[node_key])

        for _ in range(max_depth):
            if not frontier:
                break
            next_frontier = []
            for current in frontier:
                for edge in edges:
                    neighbor = None
                    if direction in ("outbound", "any") and edge["source"] == current:
                        neighbor = edge["target"]
                    elif direction in ("inbound", "any") and edge["target"] == current:
                        neighbor = edge["source"]
                    if neighbor is None:
                        continue
                    result_edges.setdefault(edge["key"], edge)
                    if neighbor not in visited:
                        visited.add(neighbor)
                        next_frontier.append(neighbor)
                        if neighbor in nodes:
                            result_nodes.append(nodes[neighbor])
            frontier = next_frontier

        return {"nodes": result_nodes, "edges": list(result_edges.values())}

    # ── Writes ──────────────────────────────────────────────────────────────

    async def create_node(self, graph_key: str, node: dict[str, Any]) -> GraphNode:
        created = copy.deepcopy(node)
        created["key"] = created.get("key") or f"node_{uuid.uuid4().hex[:10]}"
        self._nodes.setdefault(graph_key, {})[created["key"]] = created
        logger.info("[data] Created node %s in %s", created["key"], graph_key)
        return created

    async def delete_node(self, graph_key: str, node_key: str) -> bool:
        removed = self._nodes.get(graph_key, {}).pop(node_key, None)
        if removed is None:
            return False
        edges = self._edges.get(graph_key, {})
        for key in [k for k, e in edges.items() if node_key in (e["source"], e["target"])]:
            del edges[key]
        self._embeddings.get(graph_key, {}).pop(node_key, None)
        logger.info("[data] Deleted node %s from %s", node_key, graph_key)
        return True

    async def update_node(self, graph_key: str, node_key: str, changes: dict[str, Any]) -> GraphNode | None:
        node = self._nodes.get(graph_key, {}).get(node_key)
        if node is None:
            return None
        node.update({k: v for k, v in changes.items() if k != "key"})
        return node

    async def create_edge(self, graph_key: str, edge: dict[str, Any]) -> GraphEdge:
        created = copy.deepcopy(edge)
        created["key"] = created.get("key") or f"edge_{uuid.uuid4().hex[:10]}"
        self._edges.setdefault(graph_key, {})[created["key"]] = created
        logger.info("[data] Created edge %s in %s", created["key"], graph_key)
        return created

    async def delete_edge(self, graph_key: str, edge_key: str) -> bool:
        return self._edges.get(graph_key, {}).pop(edge_key, None) is not None

    def set_node_embedding(self, graph_key: str, node_key: str, vector: list[float]) -> None:
        self._embeddings.setdefault(graph_key, {})[node_key] = list(vector)
