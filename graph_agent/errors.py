"""
Exceptions
==========
Every error raised deliberately by graph_agent derives from GraphAgentError,
so callers can catch the whole family in one place.

Provider failures are NOT wrapped here: they surface as whatever the SDK
raised, and error_classifier.classify_llm_error() turns them into a
user-safe ClassifiedError at the edge of the system.
"""


class GraphAgentError(Exception):
    """Base class for graph_agent errors."""


class GraphNotFoundError(GraphAgentError):
    def __init__(self, graph_key: str):
        super().__init__(f"Graph not found: {graph_key}")
        self.graph_key = graph_key


class TokenLimitError(GraphAgentError):
    """Raised by the pre-flight per-call budget check."""

    def __init__(self, message: str, limit_type: str, current: float, limit: float):
        super().__init__(message)
        self.limit_type = limit_type
        self.current    = current
        self.limit      = limit


class NoPendingInterruptError(GraphAgentError):
    def __init__(self, message: str = "No pending interrupt to resume. Call chat() first."):
        super().__init__(message)


class PendingInterruptError(GraphAgentError):
    def __init__(self, message: str = "A proposed action is awaiting approval. Resume it before chatting."):
        super().__init__(message)


class UnknownProviderError(GraphAgentError, ValueError):
    def __init__(self, name: str):
        super().__init__(f"Unknown LLM provider: {name}")
        self.name = name


class UnknownEmbeddingModelError(GraphAgentError, ValueError):
    def __init__(self, model: str, available: list[str]):
        super().__init__(
            f"Unknown embedding model: {model}. Available: {', '.join(available)}"
        )
        self.model = model


class UnknownWriteToolError(GraphAgentError, ValueError):
    def __init__(self, tool_name: str):
        super().__init__(f"Unknown write tool: {tool_name}")
        self.tool_name = tool_name


class ActionApplyError(GraphAgentError):
    """An approved action could not be applied to the graph."""
