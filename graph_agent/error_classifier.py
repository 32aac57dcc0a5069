"""
LLM Error Classifier
====================
Maps whatever a provider call raised into a ClassifiedError:

    user_message  localized, safe to show to end users
    code          rate_limit | server_error | auth_error | timeout |
                  network | content_filter | context_length | internal
    retryable     a signal for the caller; nothing in graph_agent retries

classify_llm_error() never raises. Specific categories are checked before
generic ones, so the order of the checks below matters.
"""
import asyncio
import re
from dataclasses import dataclass, field
from typing import Literal

ErrorCode = Literal[
    "rate_limit",
    "server_error",
    "auth_error",
    "timeout",
    "network",
    "content_filter",
    "context_length",
    "internal",
]

USER_MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "rate_limit":     "The AI service is temporarily overloaded. Please retry in a few seconds.",
        "server_error":   "The AI service is temporarily unavailable. Please retry in a moment.",
        "auth_error":     "Authentication with the AI service failed. Check the API key.",
        "timeout":        "The AI request timed out. Try again with a shorter message.",
        "network":        "Unable to reach the AI service. Check the network connection.",
        "content_filter": "The message was blocked by the AI service's content policy.",
        "context_length": "The conversation is too long. Try starting a new thread.",
        "internal":       "An unexpected error occurred with the AI service.",
    },
    "fr": {
        "rate_limit":     "Le service IA est temporairement surchargé. Réessayez dans quelques secondes.",
        "server_error":   "Le service IA est temporairement indisponible. Réessayez dans un instant.",
        "auth_error":     "Erreur d'authentification avec le service IA. Vérifiez la clé API.",
        "timeout":        "La requête IA a expiré. Réessayez avec un message plus court.",
        "network":        "Impossible de contacter le service IA. Vérifiez la connexion réseau.",
        "content_filter": "Le message a été filtré par la politique de contenu du service IA.",
        "context_length": "La conversation est trop longue. Essayez de démarrer un nouveau fil.",
        "internal":       "Une erreur inattendue est survenue avec le service IA.",
    },
}

_RATE_LIMIT_RE     = re.compile(r"rate.?limit|too many requests", re.IGNORECASE)
_AUTH_RE           = re.compile(r"authentication|unauthorized|invalid.*api.*key|permission", re.IGNORECASE)
_TIMEOUT_RE        = re.compile(r"timeout|timed?\s*out|ETIMEDOUT|ECONNRESET", re.IGNORECASE)
_NETWORK_RE        = re.compile(
    r"ECONNREFUSED|ENOTFOUND|fetch failed|network|connection (?:error|refused)",
    re.IGNORECASE,
)
_CONTENT_FILTER_RE = re.compile(r"content.*filter|content.*policy|flagged|moderation|safety", re.IGNORECASE)
_CONTEXT_RE        = re.compile(r"context.*length|maximum.*token|too.*long|max_tokens", re.IGNORECASE)
_STATUS_IN_TEXT_RE = re.compile(r"(?:HTTP|status)\s*(\d{3})", re.IGNORECASE)


@dataclass
class ClassifiedError:
    user_message: str
    code: ErrorCode
    retryable: bool
    original_error: BaseException = field(repr=False)
    status_code: int | None = None
    provider: str | None = None
    model: str | None = None

    def to_payload(self) -> dict:
        """The only view of the error that may be sent to a client."""
        return {"error": self.user_message, "code": self.code, "retryable": self.retryable}


def _as_int(value) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def extract_status_code(error: BaseException) -> int | None:
    """status, then statusCode / status_code, then 'HTTP 429' / 'status 502' in the text."""
    status = _as_int(getattr(error, "status", None))
    if status is not None:
        return status

    for attr in ("statusCode", "status_code"):
        code = _as_int(getattr(error, attr, None))
        if code is not None:
            return code

    match = _STATUS_IN_TEXT_RE.search(str(error))
    if match:
        return int(match.group(1))
    return None


def detect_provider(error: BaseException) -> str | None:
    qualified = f"{type(error).__module__}.{type(error).__name__}".lower()
    if "anthropic" in qualified:
        return "anthropic"
    if "openai" in qualified:
        return "openai"

    text = str(error).lower()
    for name in ("anthropic", "openai", "deepseek"):
        if name in text:
            return name
    return None


def _searchable_text(error: BaseException) -> str:
    # errno-style codes (ECONNRESET, ENOTFOUND, ...) count as part of the message
    code = getattr(error, "code", None)
    text = str(error)
    if isinstance(code, str):
        text = f"{text} {code}"
    return text


def classify_llm_error(
    error: object,
    model: str | None = None,
    locale: str = "en",
) -> ClassifiedError:
    """
    Classify any raised value. Non-exceptions are wrapped in an Exception
    whose message is their string form.
    """
    if not isinstance(error, BaseException):
        error = Exception(str(error))

    messages    = USER_MESSAGES.get(locale, USER_MESSAGES["en"])
    text        = _searchable_text(error)
    type_name   = type(error).__name__
    status_code = extract_status_code(error)
    provider    = detect_provider(error)

    def build(code: ErrorCode, retryable: bool, status: int | None = None) -> ClassifiedError:
        return ClassifiedError(
            user_message=messages[code],
            code=code,
            retryable=retryable,
            original_error=error,
            status_code=status,
            provider=provider,
            model=model,
        )

    if status_code == 429 or _RATE_LIMIT_RE.search(text):
        return build("rate_limit", True, status_code or 429)

    if status_code is not None and status_code >= 500:
        return build("server_error", True, status_code)

    if status_code in (401, 403) or _AUTH_RE.search(text):
        return build("auth_error", False, status_code)

    if (
        isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionResetError))
        or "Timeout" in type_name
        or _TIMEOUT_RE.search(text)
    ):
        return build("timeout", True)

    if (
        isinstance(error, ConnectionError)
        or "Connection" in type_name
        or _NETWORK_RE.search(text)
    ):
        return build("network", True)

    if _CONTENT_FILTER_RE.search(text):
        return build("content_filter", False)

    if _CONTEXT_RE.search(text):
        return build("context_length", False)

    return build("internal", False, status_code)
