"""Embedding providers for node text.

Provides:
- EmbeddingProvider: the interface the graph service depends on
- SentenceTransformerEmbedder: local sentence-transformers model, loaded lazily
- CachedEmbedder: VectorCache + retry wrapper around any provider

sentence-transformers is an optional dependency. Nothing is imported
until the first embedding is requested, so the 2-3 second model cold
start is only paid by callers that actually embed.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .cache import VectorCache
from .constants import DEFAULT_EMBEDDING_DIMENSION, DEFAULT_EMBEDDING_MODEL, DEFAULT_PROVIDER_RETRIES
from .errors import ExternalProviderError

if TYPE_CHECKING:
    from .models import KnowledgeNode

logger = logging.getLogger(__name__)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Anything that turns text into fixed-length vectors."""

    name: str

    def embed(self, text: str) -> list[float]:
        ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        ...


class EmbeddingStatus(Enum):
    """Status of a lazily loaded embedding model."""

    NOT_LOADED = "not_loaded"
    READY = "ready"
    UNAVAILABLE = "unavailable"  # import or model load failed


@dataclass
class EmbeddingHealth:
    status: EmbeddingStatus
    error: str | None = None
    model: str | None = None
    dimension: int | None = None


def text_key(text: str) -> str:
    """Deterministic cache key for a text.

    SHA-256 rather than hash(), which is salted per process.
    """
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:32]


def node_to_text(node: KnowledgeNode) -> str:
    """Text used to embed a node."""
    parts = [f"{node.content.title} ({node.type})"]
    if node.content.description:
        parts.append(node.content.description)
    if node.metadata.tags:
        parts.append("tags: " + ", ".join(node.metadata.tags))
    return ". ".join(parts)


class SentenceTransformerEmbedder:
    """Local embedding model via sentence-transformers."""

    def __init__(self, model_name: str = DEFAULT_EMBEDDING_MODEL):
        self.name = f"sentence-transformers/{model_name}"
        self._model_name = model_name
        self._model = None
        self._dims: int | None = None
        self.health = EmbeddingHealth(status=EmbeddingStatus.NOT_LOADED)

    def _try_load_model(self) -> bool:
        """Try to load the model. Returns True on success."""
        if self._model is not None:
            return True

        try:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self._model_name)
            self._dims = self._model.get_sentence_embedding_dimension()
            self.health = EmbeddingHealth(
                status=EmbeddingStatus.READY,
                model=self._model_name,
                dimension=self._dims,
            )
            return True
        except (ImportError, OSError, RuntimeError) as e:
            self.health = EmbeddingHealth(
                status=EmbeddingStatus.UNAVAILABLE,
                error=f"Embedding model failed: {e}",
            )
            logger.warning(f"Embedding model unavailable: {e}")
            return False

    @property
    def model(self):
        """Lazy-load the embedding model.

        Raises:
            ExternalProviderError: If the model cannot be loaded
        """
        if not self._try_load_model():
            raise ExternalProviderError(self.health.error or "Embedding model unavailable", provider=self.name)
        return self._model

    @property
    def dims(self) -> int:
        if self._dims is None and not self._try_load_model():
            return DEFAULT_EMBEDDING_DIMENSION
        return self._dims or DEFAULT_EMBEDDING_DIMENSION

    def embed(self, text: str) -> list[float]:
        return self.model.encode(text).tolist()

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return self.model.encode(texts).tolist()


class CachedEmbedder:
    """Caches and retries calls to another provider.

    Any exception escaping the wrapped provider after the last retry is
    re-raised as ExternalProviderError with the original as its cause.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: VectorCache | None = None,
        retries: int = DEFAULT_PROVIDER_RETRIES,
    ):
        """Wrap a provider.

        Args:
            provider: Underlying embedding provider
            cache: Vector cache (default: VectorCache with default config)
            retries: Extra attempts after the first failure
        """
        self.provider = provider
        self.name = provider.name
        self.cache = cache if cache is not None else VectorCache()
        self.retries = max(0, retries)

    def _call(self, fn, *args):
        last_error: Exception | None = None
        for attempt in range(self.retries + 1):
            try:
                return fn(*args)
            except Exception as e:
                last_error = e
                logger.debug(f"{self.name} attempt {attempt + 1}/{self.retries + 1} failed: {e}")
        raise ExternalProviderError(
            f"Embedding provider {self.name} failed: {last_error}",
            provider=self.name,
        ) from last_error

    def embed(self, text: str) -> list[float]:
        key = text_key(text)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        vector = self._call(self.provider.embed, text)
        self.cache.set(key, vector)
        return vector

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts, sending only cache misses to the provider."""
        results: list[list[float] | None] = [self.cache.get(text_key(t)) for t in texts]
        missing = [i for i, vector in enumerate(results) if vector is None]

        if missing:
            vectors = self._call(self.provider.embed_batch, [texts[i] for i in missing])
            if len(vectors) != len(missing):
                raise ExternalProviderError(
                    f"Embedding provider {self.name} returned {len(vectors)} vectors for {len(missing)} texts",
                    provider=self.name,
                )
            for i, vector in zip(missing, vectors):
                results[i] = vector
                self.cache.set(text_key(texts[i]), vector)

        return results
