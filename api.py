"""
FastAPI HTTP Interface
======================
Exposes the GraphRAG + HITL agent over HTTP and WebSocket.

Endpoints:
  POST   /ai/chat               → send a message (creates or continues a thread)
  POST   /ai/resume             → approve or reject the pending action
  POST   /ai/threads            → list threads for a graph
  DELETE /ai/threads/{thread_id} → delete a thread
  GET    /ai/usage              → token usage summary
  GET    /health                → liveness check
  WS     /ai/ws                 → streaming chat/resume

Caller identity comes from request headers; authentication itself happens
upstream:

  X-Workspace   workspace the thread belongs to   (default "default")
  X-User-Id     owner recorded on new threads     (default "anonymous")
  X-Role        viewer | editor | admin           (default "editor")

Run:
    uvicorn api:app --reload --port 8000

Example cURL flow:

    # 1. Ask for a change (pauses on the approval gate)
    curl -X POST http://localhost:8000/ai/chat \\
         -H "Content-Type: application/json" \\
         -d '{"graph_key": "testgraph001", "message": "Add a logger after fetch-api"}'

    # 2. Approve it
    curl -X POST http://localhost:8000/ai/resume \\
         -H "Content-Type: application/json" \\
         -d '{"thread_id": "<id>", "approved": true}'

WebSocket messages (JSON, "_id" correlates replies with a request):

    → {"type": "ai:chat", "_id": 1, "graph_key": "...", "message": "...", "thread_id"?: "..."}
    → {"type": "ai:resume", "_id": 2, "thread_id": "...", "approved": true, "feedback"?: "..."}
    → {"type": "ai:interrupt", "_id": 3, "thread_id": "..."}
    ← ai:token, ai:tool_start, ai:tool_result, ai:error
    ← {"type": "ai:complete", "_id": 1, "result": {thread_id, type, message, tool_calls, ...}}
"""
import asyncio
import json
import logging
from contextlib import aclosing, asynccontextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

from fastapi import Depends, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from graph_agent import GraphAgent, GraphRAGRetriever, ThreadStore, get_ai_config
from graph_agent.ai_logging import debug_ai, log_client_disconnect, log_llm_error
from graph_agent.data_source import GraphDataSource
from graph_agent.error_classifier import classify_llm_error
from graph_agent.errors import GraphNotFoundError, NoPendingInterruptError, PendingInterruptError, TokenLimitError
from graph_agent.providers import (
    EmbeddingProvider,
    LLMProvider,
    create_embedding_provider_from_config,
    create_llm_provider_from_config,
)
from graph_agent.sample_data import build_sample_data_source
from graph_agent.state import AgentResult, Role
from graph_agent.thread_store import AIThread
from graph_agent.token_tracker import get_token_tracker

logger = logging.getLogger(__name__)

_threads: ThreadStore | None = None
_data_source: GraphDataSource | None = None
_llm_provider: LLMProvider | None = None
_embedding_provider: EmbeddingProvider | None = None
_retriever: GraphRAGRetriever | None = None
_thread_locks: dict[str, "_TurnLock"] = {}

NOT_CONFIGURED = "AI is not configured. No LLM API key found."
TOKEN_LIMIT_MESSAGE = "This request is larger than the configured per-call token budget allows."


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build providers from the environment and open the thread store.

    The thread store path is read from THREAD_DB_PATH (default
    "ai_threads.db"). Threads survive restarts, so a pending approval can be
    resolved after a crash or by another worker sharing the file.
    """
    global _threads, _data_source, _llm_provider, _embedding_provider, _retriever
    config = get_ai_config()

    _data_source        = build_sample_data_source()
    _llm_provider       = create_llm_provider_from_config(config)
    _embedding_provider = create_embedding_provider_from_config(config)
    _retriever          = GraphRAGRetriever(_data_source, embedding_provider=_embedding_provider)

    if _llm_provider:
        logger.info("[api] Using %s (%s)", _llm_provider.get_provider_name(), _llm_provider.get_model())
    else:
        logger.warning("[api] No LLM API key detected; AI endpoints will return 503")

    _threads = ThreadStore(db_path=config.thread_db_path)
    await _threads.init()
    yield
    await _threads.close()


app = FastAPI(
    title="GraphRAG + HITL Agent",
    description="Workflow graph assistant with Human-in-the-Loop approval of every edit.",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def invalid_body(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request body", "errors": jsonable_encoder(exc.errors())},
    )


# ── Request / Response models ──────────────────────────────────────────────────

class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    graph_key: str = Field(min_length=1)
    message: str = Field(min_length=1)
    thread_id: str | None = None


class ResumeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    thread_id: str = Field(min_length=1)
    approved: bool
    feedback: str | None = None


class ThreadsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    graph_key: str = Field(min_length=1)


class ToolCallOut(BaseModel):
    name: str
    args: dict
    result: Any


class AgentResponse(BaseModel):
    thread_id: str
    type: Literal["message", "interrupt"]
    message: str
    tool_calls: list[ToolCallOut]
    proposed_action: dict | None = None
    tool_call: dict | None = None


class ThreadSummary(BaseModel):
    thread_id: str
    graph_key: str
    created_time: int
    last_updated_time: int
    has_pending_action: bool


class ThreadsResponse(BaseModel):
    threads: list[ThreadSummary]


class WsChatMessage(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    type: Literal["ai:chat"]
    request_id: int = Field(alias="_id")
    graph_key: str = Field(min_length=1)
    message: str = Field(min_length=1)
    thread_id: str | None = None


class WsResumeMessage(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    type: Literal["ai:resume"]
    request_id: int = Field(alias="_id")
    thread_id: str = Field(min_length=1)
    approved: bool
    feedback: str | None = None


# ── Helpers ────────────────────────────────────────────────────────────────────

@dataclass
class Caller:
    workspace: str
    user_id: str
    role: Role


def get_caller(
    x_workspace: str = Header("default"),
    x_user_id: str = Header("anonymous"),
    x_role: str = Header("editor"),
) -> Caller:
    role = x_role.strip().lower()
    return Caller(x_workspace, x_user_id, role if role in ("viewer", "admin") else "editor")


@dataclass
class _TurnLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@asynccontextmanager
async def thread_turn(thread_id: str):
    """Serialise turns on one thread. The lock is dropped once nobody holds or awaits it."""
    entry = _thread_locks.setdefault(thread_id, _TurnLock())
    entry.users += 1
    try:
        async with entry.lock:
            yield
    finally:
        entry.users -= 1
        if entry.users == 0 and _thread_locks.get(thread_id) is entry:
            del _thread_locks[thread_id]


def _safe_json(text: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return text


def format_result(thread_id: str, result: AgentResult) -> dict:
    return {
        "thread_id":       thread_id,
        "type":            result["type"],
        "message":         result["message"],
        "tool_calls":      [
            {"name": tc["name"], "args": tc["args"], "result": _safe_json(tc["result"])}
            for tc in result["tool_calls"]
        ],
        "proposed_action": result.get("proposed_action"),
        "tool_call":       result.get("tool_call"),
    }


def _require_ready() -> None:
    if _llm_provider is None or _threads is None or _data_source is None:
        raise HTTPException(status_code=503, detail=NOT_CONFIGURED)


def provider_failure(exc: Exception, thread_id: str | None = None, request_id: int | None = None) -> dict:
    """Classify and log a provider failure; returns the client-safe payload."""
    classified = classify_llm_error(exc, model=_llm_provider.get_model() if _llm_provider else None)
    log_llm_error(
        provider=classified.provider or "unknown",
        model=classified.model or "unknown",
        error=classified.original_error,
        status_code=classified.status_code,
        session_id=request_id,
        thread_id=thread_id,
    )
    return classified.to_payload()


def _http_provider_failure(exc: Exception, thread_id: str) -> HTTPException:
    payload = provider_failure(exc, thread_id=thread_id)
    return HTTPException(status_code=503 if payload["retryable"] else 502, detail=payload)


def token_limit_failure(exc: TokenLimitError, thread_id: str | None = None) -> dict:
    logger.warning("[api] Token budget refused call on thread %s: %s", thread_id, exc)
    return {"error": TOKEN_LIMIT_MESSAGE, "code": "token_limit", "retryable": False}


async def _find_thread(thread_id: str, caller: Caller) -> AIThread | None:
    """Cache first, then the durable store (thread roaming)."""
    thread = _threads.get(thread_id)
    if thread is None:
        thread = await _threads.load_thread(
            thread_id, _data_source, _llm_provider, caller.role, _embedding_provider, _retriever,
        )
    return thread


async def open_thread(graph_key: str, thread_id: str | None, caller: Caller) -> AIThread:
    """Find, load or create the thread for a chat request."""
    thread = await _find_thread(thread_id, caller) if thread_id else None
    if thread is not None:
        if thread.graph_key != graph_key or thread.workspace != caller.workspace:
            raise HTTPException(status_code=403, detail="Thread does not belong to this graph/workspace")
        return thread

    if await _data_source.get_graph(graph_key) is None:
        raise HTTPException(status_code=404, detail=f"Graph not found: {graph_key}")

    agent = GraphAgent(
        graph_key,
        _data_source,
        _llm_provider,
        role=caller.role,
        embedding_provider=_embedding_provider,
        retriever=_retriever,
    )
    thread = AIThread(
        thread_id=thread_id or _threads.generate_thread_id(),
        graph_key=graph_key,
        workspace=caller.workspace,
        user_id=caller.user_id,
        agent=agent,
    )
    await _threads.set(thread)
    logger.info("[api] New thread %s on graph %s", thread.thread_id, graph_key)
    return thread


async def resumable_thread(thread_id: str, caller: Caller) -> AIThread:
    thread = await _find_thread(thread_id, caller)
    if thread is None:
        raise HTTPException(status_code=404, detail="Thread not found")
    if thread.workspace != caller.workspace:
        raise HTTPException(status_code=403, detail="Thread does not belong to this workspace")
    if not thread.agent.has_pending_interrupt():
        raise HTTPException(status_code=409, detail="No pending action to approve/reject")
    return thread


# ── Endpoints ──────────────────────────────────────────────────────────────────

@app.post("/ai/chat", response_model=AgentResponse)
async def chat(request: ChatRequest, caller: Caller = Depends(get_caller)):
    """
    Send a message to the agent.

    Normal flow:
      Response: { type: "message", message: "...", tool_calls: [...] }

    HITL flow (the agent proposed a graph edit):
      Response: { type: "interrupt", proposed_action: {...}, tool_call: {...} }
      → POST /ai/resume with approved true/false to continue.
    """
    _require_ready()
    thread = await open_thread(request.graph_key, request.thread_id, caller)

    async with thread_turn(thread.thread_id):
        thread.touch()
        try:
            result = await thread.agent.chat(request.message)
        except PendingInterruptError:
            raise HTTPException(status_code=409, detail="Resolve the pending action before chatting")
        except GraphNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        except TokenLimitError as exc:
            raise HTTPException(status_code=413, detail=token_limit_failure(exc, thread.thread_id))
        except Exception as exc:
            raise _http_provider_failure(exc, thread.thread_id)
        await _threads.save(thread.thread_id)

    return format_result(thread.thread_id, result)


@app.post("/ai/resume", response_model=AgentResponse)
async def resume(request: ResumeRequest, caller: Caller = Depends(get_caller)):
    """Approve or reject the pending action and let the agent continue."""
    _require_ready()
    thread = await resumable_thread(request.thread_id, caller)

    async with thread_turn(thread.thread_id):
        thread.touch()
        try:
            result = await thread.agent.resume_conversation(request.approved, request.feedback)
        except NoPendingInterruptError:
            raise HTTPException(status_code=409, detail="No pending action to approve/reject")
        except TokenLimitError as exc:
            raise HTTPException(status_code=413, detail=token_limit_failure(exc, thread.thread_id))
        except Exception as exc:
            raise _http_provider_failure(exc, thread.thread_id)
        await _threads.save(thread.thread_id)

    return format_result(thread.thread_id, result)


@app.post("/ai/threads", response_model=ThreadsResponse)
async def list_threads(request: ThreadsRequest, caller: Caller = Depends(get_caller)):
    if _threads is None:
        raise HTTPException(status_code=503, detail=NOT_CONFIGURED)
    docs = await _threads.list_by_graph(request.graph_key, caller.workspace)
    return ThreadsResponse(threads=[
        ThreadSummary(
            thread_id=doc["key"],
            graph_key=doc["graph_key"],
            created_time=doc["created_time"],
            last_updated_time=doc["last_updated_time"],
            has_pending_action=doc.get("pending_interrupt") is not None,
        )
        for doc in docs
    ])


@app.delete("/ai/threads/{thread_id}")
async def delete_thread(thread_id: str, caller: Caller = Depends(get_caller)):
    if _threads is None:
        raise HTTPException(status_code=503, detail=NOT_CONFIGURED)

    thread = _threads.get(thread_id)
    workspace = thread.workspace if thread else None
    if thread is None:
        doc = await _threads.get_document(thread_id)
        if doc is None:
            raise HTTPException(status_code=404, detail="Thread not found")
        workspace = doc["workspace"]
    if workspace != caller.workspace:
        raise HTTPException(status_code=403, detail="Not authorized to delete this thread")

    if thread is not None:
        thread.agent.reset()
    await _threads.delete(thread_id)
    return {"deleted": True}


@app.get("/ai/usage")
async def usage():
    tracker = get_token_tracker()
    return {"summary": tracker.get_summary(), "limits": asdict(tracker.get_limits())}


@app.get("/health")
async def health():
    return {
        "status":      "ok",
        "agent_ready": _llm_provider is not None,
        "persistent":  bool(_threads and _threads.is_persistent),
    }


# ── WebSocket ──────────────────────────────────────────────────────────────────

class _StreamSession:
    def __init__(self, request_id: int, thread_id: str | None = None):
        self.request_id      = request_id
        self.thread_id       = thread_id
        self.cancel          = asyncio.Event()
        self.tokens_streamed = 0


async def _stream_events(websocket: WebSocket, session: _StreamSession, thread: AIThread, events) -> None:
    rid = session.request_id
    async with aclosing(events) as stream:
        async for event in stream:
            if session.cancel.is_set():
                break
            kind = event["type"]
            if kind == "token":
                session.tokens_streamed += 1
                await websocket.send_json({"type": "ai:token", "_id": rid, "token": event["token"]})
            elif kind == "tool_start":
                await websocket.send_json({"type": "ai:tool_start", "_id": rid,
                                           "tool_call_id": event["tool_call_id"], "tool_name": event["name"]})
            elif kind == "tool_result":
                await websocket.send_json({"type": "ai:tool_result", "_id": rid,
                                           "tool_call_id": event["tool_call_id"], "result": event["result"]})
            elif kind == "complete":
                await websocket.send_json({"type": "ai:complete", "_id": rid,
                                           "result": format_result(thread.thread_id, event["result"])})
    await _threads.save(thread.thread_id)


async def _run_ws_request(websocket: WebSocket, session: _StreamSession, raw: dict, caller: Caller) -> None:
    rid = session.request_id
    try:
        _require_ready()
        if raw.get("type") == "ai:chat":
            msg    = WsChatMessage.model_validate(raw)
            thread = await open_thread(msg.graph_key, msg.thread_id, caller)
            session.thread_id = thread.thread_id
            debug_ai("ws_chat", thread_id=thread.thread_id, graph_key=msg.graph_key,
                     message_length=len(msg.message))
            async with thread_turn(thread.thread_id):
                thread.touch()
                await _stream_events(websocket, session, thread,
                                     thread.agent.chat_stream(msg.message, session.cancel))
        else:
            msg    = WsResumeMessage.model_validate(raw)
            thread = await resumable_thread(msg.thread_id, caller)
            session.thread_id = thread.thread_id
            debug_ai("ws_resume", thread_id=thread.thread_id, approved=msg.approved)
            async with thread_turn(thread.thread_id):
                thread.touch()
                await _stream_events(websocket, session, thread, thread.agent.resume_conversation_stream(
                    msg.approved, msg.feedback, session.cancel,
                ))
    except ValidationError as exc:
        await websocket.send_json({"type": "ai:error", "_id": rid, "error": f"Invalid {raw.get('type')} message",
                                   "details": exc.errors(include_url=False)})
    except HTTPException as exc:
        await websocket.send_json({"type": "ai:error", "_id": rid, "error": exc.detail})
    except PendingInterruptError:
        await websocket.send_json({"type": "ai:error", "_id": rid,
                                   "error": "Resolve the pending action before chatting"})
    except TokenLimitError as exc:
        await websocket.send_json({"type": "ai:error", "_id": rid, **token_limit_failure(exc, session.thread_id)})
    except Exception as exc:
        if not session.cancel.is_set():
            payload = provider_failure(exc, thread_id=session.thread_id, request_id=rid)
            await websocket.send_json({"type": "ai:error", "_id": rid, **payload})


@app.websocket("/ai/ws")
async def ai_websocket(websocket: WebSocket, caller: Caller = Depends(get_caller)):
    await websocket.accept()
    sessions: dict[int, _StreamSession] = {}
    tasks: set[asyncio.Task] = set()

    def _start(session: _StreamSession, raw: dict) -> None:
        sessions[session.request_id] = session
        task = asyncio.create_task(_run_ws_request(websocket, session, raw, caller))
        tasks.add(task)
        task.add_done_callback(lambda t: (tasks.discard(t), sessions.pop(session.request_id, None)))

    try:
        while True:
            raw = await websocket.receive_json()
            kind = raw.get("type") if isinstance(raw, dict) else None
            rid  = raw.get("_id", 0) if isinstance(raw, dict) else 0

            if kind in ("ai:chat", "ai:resume"):
                _start(_StreamSession(rid), raw)
            elif kind == "ai:interrupt":
                target = raw.get("thread_id")
                for session in list(sessions.values()):
                    if target is None or session.thread_id == target:
                        session.cancel.set()
            else:
                await websocket.send_json({"type": "ai:error", "_id": rid,
                                           "error": f"Unknown AI message type: {kind}"})
    except WebSocketDisconnect:
        for session in list(sessions.values()):
            log_client_disconnect(session.request_id, thread_id=session.thread_id,
                                  tokens_streamed=session.tokens_streamed)
            session.cancel.set()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
