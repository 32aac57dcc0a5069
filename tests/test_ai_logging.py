"""
Tests for graph_agent/ai_logging.py
===================================
Covers:
  - every record is one JSON object, also attached as record.ai_event
  - None fields are omitted
  - malformed JSON payloads are truncated
  - debug_ai() is silent unless debug mode is on
"""
import json
import logging

import pytest

from graph_agent.ai_logging import (
    MALFORMED_RAW_MAX,
    debug_ai,
    is_ai_debug_enabled,
    log_client_disconnect,
    log_llm_error,
    log_malformed_json,
    log_token_usage,
    set_ai_debug,
)


@pytest.fixture
def events(caplog):
    caplog.set_level(logging.DEBUG, logger="graph_agent.events")

    def collect() -> list[dict]:
        return [r.ai_event for r in caplog.records if r.name == "graph_agent.events"]

    yield collect
    set_ai_debug(False)


class TestEvents:
    def test_llm_error(self, events, caplog):
        log_llm_error("openai", "gpt-4o", TimeoutError("slow"), status_code=None, thread_id="t1")

        entry = events()[0]
        assert entry["event"] == "llm_error"
        assert entry["level"] == "error"
        assert entry["error_name"] == "TimeoutError"
        assert entry["thread_id"] == "t1"
        assert "status_code" not in entry
        assert json.loads(caplog.records[0].getMessage()) == entry

    def test_malformed_json_truncates(self, events):
        log_malformed_json("x" * (MALFORMED_RAW_MAX + 50), context="tool_loop tool=t", corrected="y" * 500)

        entry = events()[0]
        assert len(entry["raw"]) == MALFORMED_RAW_MAX + 1
        assert len(entry["corrected"]) == 200
        assert entry["context"] == "tool_loop tool=t"

    def test_client_disconnect(self, events):
        log_client_disconnect(3, thread_id="t1", tokens_streamed=12)
        entry = events()[0]
        assert entry["event"] == "client_disconnect_abort"
        assert entry["tokens_streamed"] == 12

    def test_token_usage_total(self, events):
        log_token_usage("deepseek", "deepseek-chat", 10, 5, label="stream")
        assert events()[0]["total_tokens"] == 15


class TestDebug:
    def test_debug_off_by_default(self, events):
        set_ai_debug(False)
        debug_ai("rag_retrieve", graph_key="g")
        assert events() == []

    def test_debug_on(self, events):
        set_ai_debug(True)
        assert is_ai_debug_enabled()
        debug_ai("rag_retrieve", graph_key="g")
        assert events()[0]["event"] == "debug:rag_retrieve"
