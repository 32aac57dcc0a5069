"""
Structured AI Event Logging
===========================
Operational events from the AI layer (provider failures, malformed tool
arguments, client disconnects, token usage) go to the "graph_agent.events"
logger as one JSON object per record.

The same dict is attached to the LogRecord as `record.ai_event`, so a
handler can ship the structured form without re-parsing the message.

Debug events (debug_ai) are dropped unless debug mode is on. Debug mode
follows AI_DEBUG through config.get_ai_config(), or set_ai_debug() directly.
"""
import json
import logging
from datetime import datetime, timezone

logger = logging.getLogger("graph_agent.events")

MALFORMED_RAW_MAX       = 500
MALFORMED_CORRECTED_MAX = 200

_debug_enabled = False


def set_ai_debug(enabled: bool) -> None:
    global _debug_enabled
    _debug_enabled = bool(enabled)


def is_ai_debug_enabled() -> bool:
    return _debug_enabled


def _emit(level: int, event: str, **fields) -> dict:
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level":     logging.getLevelName(level).lower(),
        "event":     event,
        **{k: v for k, v in fields.items() if v is not None},
    }
    logger.log(level, json.dumps(entry, default=str), extra={"ai_event": entry})
    return entry


def debug_ai(event: str, **fields) -> None:
    if not _debug_enabled:
        return
    _emit(logging.INFO, f"debug:{event}", **fields)


def log_llm_error(
    provider: str,
    model: str,
    error: BaseException | str,
    status_code: int | None = None,
    session_id: int | None = None,
    thread_id: str | None = None,
) -> None:
    is_exc = isinstance(error, BaseException)
    _emit(
        logging.ERROR,
        "llm_error",
        provider=provider,
        model=model,
        error=str(error),
        error_name=type(error).__name__ if is_exc else None,
        status_code=status_code,
        session_id=session_id,
        thread_id=thread_id,
    )


def log_malformed_json(
    raw: str,
    context: str,
    provider: str | None = None,
    model: str | None = None,
    corrected=None,
) -> None:
    raw = raw or ""
    if len(raw) > MALFORMED_RAW_MAX:
        raw = raw[:MALFORMED_RAW_MAX] + "…"
    _emit(
        logging.WARNING,
        "malformed_json",
        provider=provider,
        model=model,
        raw=raw,
        corrected=str(corrected)[:MALFORMED_CORRECTED_MAX] if corrected is not None else None,
        context=context,
    )


def log_client_disconnect(
    session_id: int,
    thread_id: str | None = None,
    tokens_streamed: int | None = None,
) -> None:
    _emit(
        logging.WARNING,
        "client_disconnect_abort",
        session_id=session_id,
        thread_id=thread_id,
        tokens_streamed=tokens_streamed,
    )


def log_token_usage(
    provider: str,
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    cached_tokens: int = 0,
    thread_id: str | None = None,
    label: str | None = None,
) -> None:
    _emit(
        logging.INFO,
        "token_usage",
        provider=provider,
        model=model,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        cached_tokens=cached_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        thread_id=thread_id,
        label=label,
    )
