"""
Tests for graph_agent/error_classifier.py
=========================================
Covers:
  - classification order (rate limit and server errors before auth, timeouts before network)
  - status code extraction from attributes and text
  - provider detection from the exception type and message
  - localized user messages with English fallback
  - to_payload() never leaks the raw provider text
"""
import asyncio

import pytest

from graph_agent.error_classifier import (
    USER_MESSAGES,
    classify_llm_error,
    detect_provider,
    extract_status_code,
)


class StatusError(Exception):
    def __init__(self, message: str, status: int | None = None, **attrs):
        super().__init__(message)
        self.status = status
        for name, value in attrs.items():
            setattr(self, name, value)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

class TestCategories:
    @pytest.mark.parametrize("error, code, retryable", [
        (StatusError("slow down", status=429),                    "rate_limit",     True),
        (Exception("Rate limit reached for requests"),            "rate_limit",     True),
        (StatusError("bad gateway", status=502),                  "server_error",   True),
        (StatusError("nope", status=401),                         "auth_error",     False),
        (Exception("Invalid x-api-key provided"),                 "auth_error",     False),
        (TimeoutError(),                                          "timeout",        True),
        (asyncio.TimeoutError(),                                  "timeout",        True),
        (Exception("Request timed out"),                          "timeout",        True),
        (ConnectionResetError(),                                  "timeout",        True),
        (ConnectionError("connection refused"),                   "network",        True),
        (Exception("getaddrinfo ENOTFOUND api.openai.com"),       "network",        True),
        (Exception("Output blocked by content filter"),           "content_filter", False),
        (Exception("This model's maximum context length is 8k"),  "context_length", False),
        (ValueError("something odd"),                             "internal",       False),
    ])
    def test_classification(self, error, code, retryable):
        classified = classify_llm_error(error)
        assert classified.code == code
        assert classified.retryable is retryable

    def test_rate_limit_beats_auth_text(self):
        error = StatusError("unauthorized rate limit", status=429)
        assert classify_llm_error(error).code == "rate_limit"

    def test_server_error_keeps_status(self):
        assert classify_llm_error(StatusError("oops", status=503)).status_code == 503

    def test_rate_limit_defaults_status(self):
        assert classify_llm_error(Exception("too many requests")).status_code == 429

    def test_timeout_type_name(self):
        class APITimeoutError(Exception):
            pass
        assert classify_llm_error(APITimeoutError("x")).code == "timeout"

    def test_errno_code_attribute_is_searched(self):
        error = OSError("socket closed")
        error.code = "ECONNREFUSED"
        assert classify_llm_error(error).code == "network"

    def test_non_exception_is_wrapped(self):
        classified = classify_llm_error("HTTP 500 upstream")
        assert classified.code == "server_error"
        assert isinstance(classified.original_error, Exception)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_status_attribute_order(self):
        assert extract_status_code(StatusError("x", status=404)) == 404
        assert extract_status_code(StatusError("x", status_code=418)) == 418
        assert extract_status_code(StatusError("x", statusCode=409)) == 409

    def test_status_from_text(self):
        assert extract_status_code(Exception("upstream returned status 502")) == 502
        assert extract_status_code(Exception("no digits here")) is None

    def test_bool_status_is_ignored(self):
        assert extract_status_code(StatusError("x", status=True)) is None

    def test_detect_provider(self):
        assert detect_provider(Exception("anthropic overloaded")) == "anthropic"
        assert detect_provider(Exception("DeepSeek returned garbage")) == "deepseek"
        assert detect_provider(Exception("plain")) is None


# ---------------------------------------------------------------------------
# Payload and locale
# ---------------------------------------------------------------------------

class TestPayload:
    def test_payload_hides_raw_text(self):
        payload = classify_llm_error(Exception("Incorrect API key sk-abc123 unauthorized")).to_payload()
        assert payload == {
            "error": USER_MESSAGES["en"]["auth_error"],
            "code": "auth_error",
            "retryable": False,
        }

    def test_french_messages(self):
        classified = classify_llm_error(TimeoutError(), locale="fr")
        assert classified.user_message == USER_MESSAGES["fr"]["timeout"]

    def test_unknown_locale_falls_back_to_english(self):
        classified = classify_llm_error(TimeoutError(), locale="de")
        assert classified.user_message == USER_MESSAGES["en"]["timeout"]

    def test_model_is_carried(self):
        assert classify_llm_error(Exception("x"), model="gpt-4o").model == "gpt-4o"
