"""Embedding boundary for semantic context retrieval."""

import hashlib
import logging
import math
from collections.abc import Sequence

from langchain_core.embeddings import Embeddings
from langchain_openai import OpenAIEmbeddings
from pydantic import SecretStr

from nudgeguard.config import Settings, get_settings

logger = logging.getLogger(__name__)

CACHE_MAX_ENTRIES = 2048


def get_embeddings(settings: Settings | None = None) -> Embeddings | None:
    """Create an OpenAI embeddings instance, or None when no API key is configured."""
    settings = settings or get_settings()
    if not settings.openai_api_key:
        logger.info("OPENAI_API_KEY not set, semantic context retrieval disabled")
        return None
    return OpenAIEmbeddings(
        api_key=SecretStr(settings.openai_api_key),
        model=settings.embedding_model,
        base_url=settings.openai_base_url or None,
    )


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors. Mismatched or zero vectors score 0."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class CachedEmbedder:
    """Wraps an :class:`Embeddings` model with an in-memory sha256-keyed cache."""

    def __init__(self, embeddings: Embeddings, max_entries: int = CACHE_MAX_ENTRIES) -> None:
        self.embeddings = embeddings
        self.max_entries = max_entries
        self._cache: dict[str, list[float]] = {}

    def __len__(self) -> int:
        return len(self._cache)

    async def embed(self, text: str) -> list[float]:
        key = hashlib.sha256(text.encode("utf-8")).hexdigest()
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        vector = await self.embeddings.aembed_query(text)
        if len(self._cache) >= self.max_entries:
            # dicts keep insertion order, so this drops the oldest entry
            del self._cache[next(iter(self._cache))]
        self._cache[key] = vector
        return vector

    def clear(self) -> None:
        self._cache.clear()
