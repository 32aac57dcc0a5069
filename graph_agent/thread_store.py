"""
Thread Store
============
Registry of live AI conversations, keyed by thread id.

The in-process cache is authoritative for the running process. Every write is
also projected to an AIThreadDocument and upserted into a LangGraph store so
that another process can rebuild the agent later ("thread roaming"):

    process A: chat()  -> set(thread)      cache + store
    process B: resume  -> load_thread(id)  store -> new GraphAgent -> cache

Persistence is best-effort. When the backing store cannot be opened the
ThreadStore silently runs cache-only, and individual write failures are
logged and swallowed.

get() only looks at the cache: rebuilding an agent needs a data source and an
LLM provider, which the caller owns and passes to load_thread().
"""
import copy
import itertools
import logging
import secrets
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Iterator

from langgraph.store.base import BaseStore

from .agent import GraphAgent
from .data_source import GraphDataSource
from .persistence import THREAD_NAMESPACE, memory_store, sqlite_store
from .providers.base import LLMProvider
from .providers.embeddings import EmbeddingProvider
from .retriever import GraphRAGRetriever
from .state import AIThreadDocument, Role

logger = logging.getLogger(__name__)

LIST_LIMIT = 1000


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class AIThread:
    thread_id: str
    graph_key: str
    workspace: str
    user_id: str
    agent: GraphAgent
    created_time: int = field(default_factory=now_ms)
    last_updated_time: int = field(default_factory=now_ms)

    def touch(self) -> None:
        self.last_updated_time = now_ms()


def thread_to_document(thread: AIThread) -> AIThreadDocument:
    return {
        "key":                  thread.thread_id,
        "graph_key":            thread.graph_key,
        "workspace":            thread.workspace,
        "user_id":              thread.user_id,
        "conversation_history": thread.agent.get_conversation_history(),
        "pending_interrupt":    thread.agent.get_pending_interrupt(),
        "created_time":         thread.created_time,
        "last_updated_time":    thread.last_updated_time,
    }


class ThreadStore:
    """
    Args:
        db_path:   SQLite file for the durable store. Defaults to THREAD_DB_PATH.
        in_memory: Use an InMemoryStore (no durability across processes).
        store:     An already-open LangGraph store; the caller owns its lifetime.
    """

    def __init__(
        self,
        db_path: str | None = None,
        in_memory: bool = False,
        store: BaseStore | None = None,
    ):
        self._db_path   = db_path
        self._in_memory = in_memory
        self._store     = store
        self._cache: dict[str, AIThread] = {}
        self._counter   = itertools.count(1)
        self._exit_stack: AsyncExitStack | None = None

    # ── Lifecycle ───────────────────────────────────────────────────────────

    async def init(self) -> None:
        """Open the backing store. Any failure leaves the store cache-only."""
        if self._store is not None:
            return
        if self._in_memory:
            self._store = memory_store()
            logger.info("[threads] Using in-memory thread store")
            return
        stack = AsyncExitStack()
        try:
            self._store = await stack.enter_async_context(sqlite_store(self._db_path))
        except Exception as exc:
            await stack.aclose()
            self._store = None
            logger.warning("[threads] Thread persistence unavailable, running cache-only: %s", exc)
            return
        self._exit_stack = stack

    async def close(self) -> None:
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
            self._exit_stack = None
            self._store = None

    @property
    def is_persistent(self) -> bool:
        return self._store is not None

    # ── Cache ───────────────────────────────────────────────────────────────

    def generate_thread_id(self) -> str:
        return f"ai_{now_ms()}_{next(self._counter)}_{secrets.token_hex(4)}"

    def has(self, thread_id: str) -> bool:
        return thread_id in self._cache

    def get(self, thread_id: str) -> AIThread | None:
        return self._cache.get(thread_id)

    @property
    def size(self) -> int:
        return len(self._cache)

    def values(self) -> Iterator[AIThread]:
        return iter(list(self._cache.values()))

    thread_to_document = staticmethod(thread_to_document)

    # ── Durable storage ─────────────────────────────────────────────────────

    async def get_document(self, thread_id: str) -> AIThreadDocument | None:
        if self._store is None:
            return None
        try:
            item = await self._store.aget(THREAD_NAMESPACE, thread_id)
        except Exception as exc:
            logger.warning("[threads] Failed to read thread %s: %s", thread_id, exc)
            return None
        return item.value if item is not None else None

    async def load_thread(
        self,
        thread_id: str,
        data_source: GraphDataSource,
        llm_provider: LLMProvider,
        role: Role = "editor",
        embedding_provider: EmbeddingProvider | None = None,
        retriever: GraphRAGRetriever | None = None,
    ) -> AIThread | None:
        """Cache-first; otherwise rebuild the agent from the persisted document."""
        cached = self._cache.get(thread_id)
        if cached is not None:
            return cached

        doc = await self.get_document(thread_id)
        if doc is None:
            return None

        agent = GraphAgent(
            graph_key=doc["graph_key"],
            data_source=data_source,
            llm_provider=llm_provider,
            role=role,
            embedding_provider=embedding_provider,
            retriever=retriever,
        )
        if doc.get("conversation_history"):
            agent.load_conversation_history(doc["conversation_history"])
        if doc.get("pending_interrupt"):
            agent.load_pending_interrupt(doc["pending_interrupt"])

        thread = AIThread(
            thread_id=doc["key"],
            graph_key=doc["graph_key"],
            workspace=doc["workspace"],
            user_id=doc["user_id"],
            agent=agent,
            created_time=doc["created_time"],
            last_updated_time=doc["last_updated_time"],
        )
        self._cache[thread_id] = thread
        logger.info("[threads] Reconstructed thread %s for graph %s", thread_id, thread.graph_key)
        return thread

    async def set(self, thread: AIThread) -> None:
        self._cache[thread.thread_id] = thread
        await self._persist(thread)

    async def save(self, thread_id: str) -> None:
        thread = self._cache.get(thread_id)
        if thread is not None:
            await self._persist(thread)

    async def delete(self, thread_id: str) -> None:
        self._cache.pop(thread_id, None)
        if self._store is None:
            return
        try:
            await self._store.adelete(THREAD_NAMESPACE, thread_id)
        except Exception as exc:
            logger.warning("[threads] Failed to delete thread %s: %s", thread_id, exc)

    async def list_by_graph(self, graph_key: str, workspace: str) -> list[AIThreadDocument]:
        """Cached and stored threads for one graph, most recently updated first."""
        docs: dict[str, AIThreadDocument] = {
            t.thread_id: thread_to_document(t)
            for t in self._cache.values()
            if t.graph_key == graph_key and t.workspace == workspace
        }
        if self._store is not None:
            try:
                items = await self._store.asearch(
                    THREAD_NAMESPACE,
                    filter={"graph_key": graph_key, "workspace": workspace},
                    limit=LIST_LIMIT,
                )
            except Exception as exc:
                logger.warning("[threads] Failed to list threads for %s: %s", graph_key, exc)
                items = []
            for item in items:
                docs.setdefault(item.key, item.value)
        return sorted(docs.values(), key=lambda d: d["last_updated_time"], reverse=True)

    async def _persist(self, thread: AIThread) -> None:
        if self._store is None:
            return
        try:
            await self._store.aput(THREAD_NAMESPACE, thread.thread_id, copy.deepcopy(thread_to_document(thread)))
        except Exception as exc:
            logger.warning("[threads] Failed to persist thread %s: %s", thread.thread_id, exc)
