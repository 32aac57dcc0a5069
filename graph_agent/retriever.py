"""
GraphRAG Retriever
==================
Builds the bounded GraphRAGContext the agent injects into the prompt.

    1. graph lookup                 (GraphNotFoundError when missing)
    2. optional query embedding     (failures logged, never fatal)
    3. search_nodes, capped to max_nodes; no hits -> first max_nodes nodes
    4. neighbourhood expansion of the top 5 seeds up to max_depth hops
       (max_depth=0 keeps the seeds only)
    5. cap to max_nodes, truncate process/data text
    6. drop edges with an endpoint outside the final node set
    7. one NodeTypeConfigSummary per node type present

Results are cached per (graph_key, query) for cache_ttl_ms. A hit returns
the very same object. Expiry is checked on read; there is no sweeper.
"""
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from .ai_logging import debug_ai
from .data_source import GraphDataSource
from .errors import GraphNotFoundError
from .providers.embeddings import EmbeddingProvider
from .state import (
    GraphEdge,
    GraphNode,
    GraphRAGContext,
    HandleGroup,
    HandleSummary,
    NodeTypeConfig,
    NodeTypeConfigSummary,
    RelevantEdge,
    RelevantNode,
)

logger = logging.getLogger(__name__)

MAX_SEED_NODES = 5
ELLIPSIS = "..."


@dataclass(frozen=True)
class RetrieverOptions:
    max_nodes: int = 20
    max_depth: int = 2
    truncate_process: int = 500
    truncate_data: int = 200
    cache_ttl_ms: int = 120_000


def truncate(text: str | None, max_len: int) -> str:
    if not text:
        return ""
    return text[:max_len] + ELLIPSIS if len(text) > max_len else text


def summarize_handles(handles: dict[str, HandleGroup] | None) -> list[HandleSummary]:
    if not handles:
        return []
    summaries: list[HandleSummary] = []
    for side, group in handles.items():
        points = []
        for p in group.get("point") or []:
            point = {"id": p["id"], "direction": p["type"], "accepted_type": p["accept"]}
            if p.get("display"):
                point["display"] = p["display"]
            points.append(point)
        summaries.append({"side": side, "points": points})
    return summaries


def summarize_config(config: NodeTypeConfig) -> NodeTypeConfigSummary:
    parts = [
        f"{side}:{p['type']}({p['accept']})"
        for side, group in (config.get("handles") or {}).items()
        for p in group.get("point") or []
    ]
    summary: NodeTypeConfigSummary = {
        "key":             config["key"],
        "display_name":    config["display_name"],
        "description":     config.get("description") or "",
        "category":        config.get("category") or "",
        "handles_summary": ", ".join(parts),
    }
    if config.get("icon"):
        summary["icon"] = config["icon"]
    return summary


class GraphRAGRetriever:
    """
    Args:
        data_source:        Graph store to read from.
        options:            Size bounds and cache TTL.
        embedding_provider: Optional; enables vector search.
        clock:              Returns milliseconds. Injectable for TTL tests.
    """

    def __init__(
        self,
        data_source: GraphDataSource,
        options: RetrieverOptions | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self._data_source        = data_source
        self._options            = options or RetrieverOptions()
        self._embedding_provider = embedding_provider
        self._clock              = clock or (lambda: time.monotonic() * 1000)
        self._cache: dict[tuple[str, str], tuple[GraphRAGContext, float]] = {}
        self._lock               = threading.Lock()

    @property
    def options(self) -> RetrieverOptions:
        return self._options

    # ── Cache ───────────────────────────────────────────────────────────────

    def _cache_get(self, graph_key: str, query: str) -> GraphRAGContext | None:
        ttl = self._options.cache_ttl_ms
        if ttl <= 0:
            return None
        with self._lock:
            hit = self._cache.get((graph_key, query))
            if hit is None:
                return None
            context, stored_at = hit
            if self._clock() - stored_at >= ttl:
                del self._cache[(graph_key, query)]
                return None
            return context

    def _cache_put(self, graph_key: str, query: str, context: GraphRAGContext) -> None:
        if self._options.cache_ttl_ms <= 0:
            return
        with self._lock:
            self._cache[(graph_key, query)] = (context, self._clock())

    def clear_cache(self, graph_key: str | None = None) -> None:
        with self._lock:
            if graph_key is None:
                self._cache.clear()
                return
            for key in [k for k in self._cache if k[0] == graph_key]:
                del self._cache[key]

    def get_cache_size(self) -> int:
        with self._lock:
            return len(self._cache)

    # ── Retrieval ───────────────────────────────────────────────────────────

    async def _embed(self, query: str) -> list[float] | None:
        if self._embedding_provider is None or not query.strip():
            return None
        try:
            vector = await self._embedding_provider.generate_embedding(query)
        except Exception as exc:
            logger.warning("[retriever] Embedding generation failed, using keyword search: %s", exc)
            return None
        debug_ai("rag_embedding", query_length=len(query), dim=len(vector))
        return vector

    async def retrieve(self, graph_key: str, query: str) -> GraphRAGContext:
        cached = self._cache_get(graph_key, query)
        if cached is not None:
            debug_ai("rag_retrieve", graph_key=graph_key, query=query, cache_hit=True)
            return cached

        opts  = self._options
        graph = await self._data_source.get_graph(graph_key)
        if graph is None:
            raise GraphNotFoundError(graph_key)

        embedding = await self._embed(query)

        results = await self._data_source.search_nodes(graph_key, query, opts.max_nodes, embedding)
        results = list(results)[:opts.max_nodes]
        if not results:
            results = list(await self._data_source.get_nodes(graph_key))[:opts.max_nodes]

        found: dict[str, GraphNode] = {n["key"]: n for n in results}
        edges: dict[str, GraphEdge] = {}
        if opts.max_depth > 0:
            for seed in results[:MAX_SEED_NODES]:
                hood = await self._data_source.get_neighborhood(
                    graph_key, seed["key"], opts.max_depth, "any",
                )
                for node in hood["nodes"]:
                    found.setdefault(node["key"], node)
                for edge in hood["edges"]:
                    edges.setdefault(edge["key"], edge)

        nodes    = list(found.values())[:opts.max_nodes]
        node_set = {n["key"] for n in nodes}

        configs    = await self._data_source.get_node_configs(graph_key)
        used_types = {n["type"] for n in nodes}
        relevant_configs = [c for c in configs if c["key"] in used_types]
        config_by_key    = {c["key"]: c for c in relevant_configs}

        context: GraphRAGContext = {
            "graph": graph,
            "relevant_nodes": [
                self._node_to_relevant(n, graph["sheets"], config_by_key.get(n["type"]))
                for n in nodes
            ],
            "relevant_edges": [
                self._edge_to_relevant(e)
                for e in edges.values()
                if e["source"] in node_set and e["target"] in node_set
            ],
            "node_type_configs": [summarize_config(c) for c in relevant_configs],
        }

        debug_ai("rag_retrieve", graph_key=graph_key, query=query,
                 node_count=len(nodes), cache_hit=False)
        self._cache_put(graph_key, query, context)
        return context

    def _node_to_relevant(
        self,
        node: GraphNode,
        sheets: dict[str, str],
        config: NodeTypeConfig | None,
    ) -> RelevantNode:
        relevant: RelevantNode = {
            "key":        node["key"],
            "type":       node["type"],
            "sheet":      node["sheet"],
            "sheet_name": sheets.get(node["sheet"], node["sheet"]),
            "process":    truncate(node.get("process"), self._options.truncate_process),
            "handles":    summarize_handles(node.get("handles")),
        }
        if config is not None:
            relevant["type_name"] = config["display_name"]
        data: Any = node.get("data")
        if data:
            relevant["data_summary"] = truncate(json.dumps(data), self._options.truncate_data)
        return relevant

    @staticmethod
    def _edge_to_relevant(edge: GraphEdge) -> RelevantEdge:
        relevant: RelevantEdge = {
            "source":        edge["source"],
            "source_handle": edge["source_handle"],
            "target":        edge["target"],
            "target_handle": edge["target_handle"],
        }
        if edge.get("label"):
            relevant["label"] = edge["label"]
        return relevant
