"""
Embedding Provider
==================
Optional capability used by the retriever to turn a query into a vector.
Only the OpenAI embeddings endpoint is wired; the model catalogue below is
the single place that knows dimensions and prices.
"""
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from openai import AsyncOpenAI

from ..errors import UnknownEmbeddingModelError
from ..token_tracker import TokenTracker, get_token_tracker

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


@dataclass(frozen=True)
class EmbeddingModelInfo:
    dimension: int
    rate_per_million: float


EMBEDDING_MODELS: dict[str, EmbeddingModelInfo] = {
    "text-embedding-3-small": EmbeddingModelInfo(1536, 0.02),
    "text-embedding-3-large": EmbeddingModelInfo(3072, 0.13),
    "text-embedding-ada-002": EmbeddingModelInfo(1536, 0.10),
}


@runtime_checkable
class EmbeddingProvider(Protocol):
    async def generate_embedding(self, text: str) -> list[float]: ...

    def get_dimension(self) -> int: ...

    def get_model_name(self) -> str: ...


class OpenAIEmbeddingProvider:
    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_EMBEDDING_MODEL,
        base_url: str | None = None,
        tracker: TokenTracker | None = None,
        client: AsyncOpenAI | None = None,
    ):
        info = EMBEDDING_MODELS.get(model)
        if info is None:
            raise UnknownEmbeddingModelError(model, list(EMBEDDING_MODELS))
        self._model   = model
        self._info    = info
        self._tracker = tracker
        self._client  = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    @property
    def tracker(self) -> TokenTracker:
        return self._tracker or get_token_tracker()

    async def generate_embedding(self, text: str) -> list[float]:
        response = await self._client.embeddings.create(model=self._model, input=text)
        usage    = getattr(response, "usage", None)
        tokens   = getattr(usage, "total_tokens", None) or getattr(usage, "prompt_tokens", 0) or 0
        self.tracker.record_embedding(tokens, self._model, self._info.rate_per_million, "embedding")
        return list(response.data[0].embedding)

    def get_dimension(self) -> int:
        return self._info.dimension

    def get_model_name(self) -> str:
        return self._model
