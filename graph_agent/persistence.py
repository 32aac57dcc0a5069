"""
Persistence
===========
Manages the LangGraph key-value store that makes AI threads durable.

Two backends:

  SQLite (default)
  ────────────────
  Uses AsyncSqliteStore from langgraph.store.sqlite.aio (shipped with
  langgraph-checkpoint-sqlite). Threads survive process restarts and can be
  picked up by any process pointing at the same file. The path comes from
  THREAD_DB_PATH, defaulting to "ai_threads.db" in the current directory.

  Memory (in-process only)
  ────────────────────────
  Uses InMemoryStore. Lost on process exit. Appropriate for tests and the CLI
  demo.

Usage pattern, SQLite:

    async with sqlite_store() as store:
        threads = ThreadStore(store=store)

Usage pattern, memory:

    threads = ThreadStore(store=memory_store())

Each thread is one item under THREAD_NAMESPACE, keyed by thread id, whose
value is the AIThreadDocument.
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from langgraph.store.base import BaseStore
from langgraph.store.memory import InMemoryStore
from langgraph.store.sqlite.aio import AsyncSqliteStore

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH  = "ai_threads.db"
THREAD_NAMESPACE = ("ai_threads",)


def get_db_path() -> str:
    """
    Return the SQLite database file path.

    Resolution order:
      1. THREAD_DB_PATH environment variable
      2. DEFAULT_DB_PATH ("ai_threads.db" in the cwd)
    """
    return os.getenv("THREAD_DB_PATH", DEFAULT_DB_PATH)


@asynccontextmanager
async def sqlite_store(db_path: str | None = None) -> AsyncIterator[BaseStore]:
    """
    Async context manager that opens an AsyncSqliteStore and runs setup().

    setup() creates the store tables if they don't exist yet and is safe to
    call on every startup. Pass ":memory:" for SQL semantics without a file.
    """
    path = db_path if db_path is not None else get_db_path()
    logger.info("[persistence] Opening SQLite store at: %s", path)

    async with AsyncSqliteStore.from_conn_string(path) as store:
        await store.setup()
        logger.info("[persistence] SQLite store ready")
        yield store


def memory_store() -> InMemoryStore:
    """Return an in-memory store. State is lost when the process exits."""
    return InMemoryStore()
