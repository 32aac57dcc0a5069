"""
graph_agent: GraphRAG + HITL Agent Package
==========================================

Package layout:

    state.py            TypedDicts for graphs, contexts, actions, results, documents
    errors.py           GraphAgentError hierarchy
    ai_logging.py       Structured AI event logging + debug switch
    config.py           AIConfig resolved from environment variables
    registry.py         Provider registry: wire family, base URL, model, pricing
    token_tracker.py    Per-call usage/cost accounting and budgets
    error_classifier.py Provider errors -> user-safe ClassifiedError
    providers/          OpenAI-compatible + Anthropic adapters, embeddings, factory
    data_source.py      GraphDataSource protocols + InMemoryGraphDataSource
    sample_data.py      "NBA Stats Pipeline" demo graph
    retriever.py        GraphRAGRetriever with TTL cache
    prompts.py          System prompt + compact context summary
    tools.py            Read tools, propose_* tools, action parsing and applying
    hitl.py             Approval prompts and yes/no parsing
    agent.py            GraphAgent: tool loop + interrupt/resume state machine
    persistence.py      SQLite + memory LangGraph store backends
    thread_store.py     ThreadStore: cached, persisted, roamable conversations

Entry points for external callers:
"""
from .agent import GraphAgent
from .config import AIConfig, get_ai_config, resolve_ai_config
from .data_source import GraphDataSource, InMemoryGraphDataSource, MutableGraphDataSource
from .error_classifier import ClassifiedError, classify_llm_error
from .errors import (
    GraphAgentError,
    GraphNotFoundError,
    NoPendingInterruptError,
    PendingInterruptError,
    TokenLimitError,
)
from .persistence import memory_store, sqlite_store
from .retriever import GraphRAGRetriever, RetrieverOptions
from .thread_store import AIThread, ThreadStore
from .token_tracker import TokenTracker, get_token_tracker

__all__ = [
    "GraphAgent",
    "GraphRAGRetriever",
    "RetrieverOptions",
    "ThreadStore",
    "AIThread",
    "GraphDataSource",
    "MutableGraphDataSource",
    "InMemoryGraphDataSource",
    "TokenTracker",
    "get_token_tracker",
    "ClassifiedError",
    "classify_llm_error",
    "AIConfig",
    "get_ai_config",
    "resolve_ai_config",
    "sqlite_store",
    "memory_store",
    "GraphAgentError",
    "GraphNotFoundError",
    "TokenLimitError",
    "NoPendingInterruptError",
    "PendingInterruptError",
]
