"""Offline token-hashing embedding provider.

Each content token is hashed with 32-bit FNV-1a into one of ``dimension``
buckets; the bucket counts are L2-normalized. Texts sharing vocabulary
get similar vectors, which is enough for local linking and for corpora
that must never leave the machine.
"""
import numpy as np

from notegraph.services.text_analysis import tokenize

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193


def fnv1a_32(value: str) -> int:
    """32-bit FNV-1a hash of the UTF-8 bytes of ``value``."""
    h = _FNV_OFFSET
    for byte in value.encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return h


class HashingEmbeddingProvider:
    """Deterministic bag-of-tokens embedder.

    Args:
        dim: Number of hash buckets (vector length).
    """

    def __init__(self, dim: int = 384) -> None:
        if dim < 1:
            raise ValueError("dim must be positive")
        self._dim = dim
        self._loaded = False

    @property
    def dimension(self) -> int:
        return self._dim

    def load(self) -> None:
        self._loaded = True

    def unload(self) -> None:
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def embed(self, text: str) -> np.ndarray:
        vector = np.zeros(self._dim, dtype=np.float32)
        for token, count in tokenize(text).items():
            vector[fnv1a_32(token) % self._dim] += count
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector
