"""Embedding service for scoring and semantic search.

Wraps an optional EmbeddingProvider with lazy, thread-safe loading and
bounded-concurrency batch embedding. With no provider configured every
call returns None and the rest of the system falls back to lexical-only
behavior.

Usage:
    service = EmbeddingService(provider=HashingEmbeddingProvider())
    vector = service.embed("some text")
    vectors = service.embed_many(["text1", "text2"])
    service.shutdown()
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, List, Optional, Sequence

from notegraph.config import NotegraphConfig, config
from notegraph.exceptions import ConfigurationError, EmbeddingError, ErrorCode

if TYPE_CHECKING:
    from notegraph.services.embedding_types import EmbeddingProvider

logger = logging.getLogger(__name__)


def embedding_text(title: str, body: str) -> str:
    """Text a note is embedded from."""
    return f"{title}\n{body}"


class EmbeddingService:
    """Manages an embedding provider with lazy loading.

    Thread-safe: model loading and unloading are guarded by a lock, so
    ``embed_many`` workers can share the provider.

    Args:
        provider: An EmbeddingProvider, or None to disable embeddings.
        max_concurrency: Upper bound on concurrent provider calls in
            ``embed_many``.
    """

    def __init__(
        self,
        provider: Optional[EmbeddingProvider] = None,
        max_concurrency: int = 3,
    ) -> None:
        self._provider = provider
        self._max_concurrency = max(1, max_concurrency)
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._provider is not None

    @property
    def dimension(self) -> Optional[int]:
        return self._provider.dimension if self._provider is not None else None

    def _ensure_loaded(self) -> None:
        """Load the provider if not already loaded. Thread-safe."""
        if self._provider.is_loaded:
            return
        with self._lock:
            if self._provider.is_loaded:
                return  # Double-check after acquiring lock
            try:
                self._provider.load()
                logger.info("Embedding provider loaded")
            except Exception as e:
                raise EmbeddingError(
                    f"Failed to load embedding provider: {e}",
                    code=ErrorCode.EMBEDDING_MODEL_LOAD_FAILED,
                    operation="load",
                    original_error=e,
                )

    def embed(self, text: str) -> Optional[List[float]]:
        """Embed one text.

        Returns:
            The vector as a list of floats, or None when embeddings are
            disabled.

        Raises:
            EmbeddingError: If loading or inference fails.
        """
        if self._provider is None:
            return None
        self._ensure_loaded()
        try:
            vector = self._provider.embed(text)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(
                f"Embedding inference failed: {e}",
                code=ErrorCode.EMBEDDING_INFERENCE_FAILED,
                operation="embed",
                original_error=e,
            )
        if vector is None:
            return None
        return [float(x) for x in vector]

    def embed_many(
        self, texts: Sequence[str], max_concurrency: Optional[int] = None
    ) -> List[Optional[List[float]]]:
        """Embed several texts with at most ``max_concurrency`` calls in flight.

        Results are returned in input order.

        Raises:
            EmbeddingError: If any text fails to embed.
        """
        if self._provider is None:
            return [None] * len(texts)
        if not texts:
            return []
        workers = min(max_concurrency or self._max_concurrency, self._max_concurrency)
        self._ensure_loaded()
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="notegraph-embed"
        ) as pool:
            return list(pool.map(self.embed, texts))

    def shutdown(self) -> None:
        """Unload the provider."""
        if self._provider is None:
            return
        with self._lock:
            if self._provider.is_loaded:
                self._provider.unload()
        logger.info("EmbeddingService shut down")


def create_embedding_service(
    settings: Optional[NotegraphConfig] = None,
) -> EmbeddingService:
    """Build the embedding service selected by configuration.

    Raises:
        ConfigurationError: If vectors are enabled with a non-positive
            ``embedding_dim``.
    """
    settings = settings or config
    if not settings.embeddings_enabled:
        logger.info(
            f"Embeddings disabled (provider={settings.embedding_provider!r})"
        )
        return EmbeddingService(None, max_concurrency=settings.embed_concurrency)

    if settings.embedding_dim < 1:
        raise ConfigurationError(
            f"embedding_dim must be positive, got {settings.embedding_dim}",
            config_key="embedding_dim",
        )

    from notegraph.services.hashing_provider import HashingEmbeddingProvider

    return EmbeddingService(
        HashingEmbeddingProvider(dim=settings.embedding_dim),
        max_concurrency=settings.embed_concurrency,
    )
