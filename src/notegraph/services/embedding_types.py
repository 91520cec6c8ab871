"""Type protocol for embedding providers.

Defines the structural contract that both the bundled hashing provider
and test fakes satisfy. Uses Protocol (PEP 544) for structural
subtyping, so implementations don't need to inherit from it.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    import numpy as np


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Contract for embedding text into dense vectors.

    Providers must be deterministic for a fixed model and text. One
    corpus uses one provider; vectors from different providers are not
    comparable.
    """

    @property
    def dimension(self) -> int:
        """Dimensionality of produced vectors."""
        ...

    def load(self) -> None:
        """Load model into memory. May be called multiple times (idempotent)."""
        ...

    def unload(self) -> None:
        """Release model from memory. May be called multiple times (idempotent)."""
        ...

    @property
    def is_loaded(self) -> bool:
        """Whether the model is currently loaded in memory."""
        ...

    def embed(self, text: str) -> np.ndarray:
        """Embed a single text into a 1-D vector of shape (dimension,)."""
        ...
