"""Relatedness scoring between two notes.

The score is a weighted sum of four components, each in [0, 1]:

- token cosine over normalized token counts,
- embedding cosine (clipped at 0 and raised to ``embedding_exponent``),
- tag Jaccard overlap,
- title word overlap.

The sum is multiplied by ``no_overlap_penalty`` when the notes share
neither a tag nor a title word. When either note lacks an embedding the
embedding component is 0 and its weight is simply lost.
"""

import logging
import math
from collections import Counter
from typing import Mapping, Optional, Sequence, Tuple

import numpy as np

from notegraph.config import NotegraphConfig, config
from notegraph.exceptions import EdgeError, ErrorCode
from notegraph.models.schema import Classification, Note, ScoreComponents
from notegraph.services.text_analysis import TOKEN_DOWNWEIGHTS, tokens_from_title

logger = logging.getLogger(__name__)


def token_cosine(a: Mapping[str, int], b: Mapping[str, int]) -> float:
    """Cosine similarity of two token-count maps with generic terms downweighted."""
    keys = set(a) | set(b)
    if not keys:
        return 0.0
    dot = mag_a = mag_b = 0.0
    for key in sorted(keys):
        weight = TOKEN_DOWNWEIGHTS.get(key, 1.0)
        val_a = a.get(key, 0) * weight
        val_b = b.get(key, 0) * weight
        dot += val_a * val_b
        mag_a += val_a * val_a
        mag_b += val_b * val_b
    if mag_a == 0 or mag_b == 0:
        return 0.0
    return min(1.0, dot / (math.sqrt(mag_a) * math.sqrt(mag_b)))


def embedding_cosine(
    a: Optional[Sequence[float]], b: Optional[Sequence[float]]
) -> float:
    """Raw cosine similarity of two vectors, 0 when either is missing.

    Vectors of different dimensions come from different embedding spaces
    and are not comparable; they score 0.
    """
    if not a or not b:
        return 0.0
    if len(a) != len(b):
        logger.debug(
            f"Embedding dimension mismatch ({len(a)} vs {len(b)}); treating as unrelated"
        )
        return 0.0
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if norm == 0.0:
        return 0.0
    return float(np.clip(np.dot(vec_a, vec_b) / norm, -1.0, 1.0))


def tag_jaccard(a: Sequence[str], b: Sequence[str]) -> Tuple[float, list]:
    """Jaccard overlap of two tag sets, plus the shared tags (sorted)."""
    set_a, set_b = set(a), set(b)
    union = set_a | set_b
    if not union:
        return 0.0, []
    shared = sorted(set_a & set_b)
    return len(shared) / len(union), shared


def title_similarity(a: str, b: str) -> float:
    tokens_a = tokens_from_title(a)
    tokens_b = tokens_from_title(b)
    if not tokens_a or not tokens_b:
        return 0.0
    # Multiset overlap keeps the measure symmetric
    overlap = sum((Counter(tokens_a) & Counter(tokens_b)).values())
    return min(1.0, overlap / math.sqrt(len(tokens_a) * len(tokens_b)))


class ScoringEngine:
    """Computes and classifies the relatedness of note pairs.

    Args:
        settings: Weights, exponent, penalty and thresholds. Defaults to
            the global config.
    """

    def __init__(self, settings: Optional[NotegraphConfig] = None) -> None:
        self.settings = settings or config

    def score(self, a: Note, b: Note) -> Tuple[float, ScoreComponents]:
        """Score two distinct notes. Symmetric in its arguments.

        Raises:
            EdgeError: If both arguments are the same note.
        """
        if a.id == b.id:
            raise EdgeError(
                "Cannot score a note against itself",
                source_id=a.id,
                target_id=b.id,
                code=ErrorCode.EDGE_SELF_REFERENCE,
            )

        s = self.settings
        tag_overlap, shared_tags = tag_jaccard(a.tags, b.tags)
        token_sim = token_cosine(a.token_counts, b.token_counts)
        title_sim = title_similarity(a.title, b.title)
        raw_cosine = embedding_cosine(a.embedding, b.embedding)
        embedding_sim = max(0.0, raw_cosine) ** s.embedding_exponent

        total = (
            s.token_weight * token_sim
            + s.embedding_weight * embedding_sim
            + s.tag_weight * tag_overlap
            + s.title_weight * title_sim
        )
        penalty = s.no_overlap_penalty if tag_overlap == 0 and title_sim == 0 else 1.0
        total = min(1.0, max(0.0, total * penalty))

        components = ScoreComponents(
            token_similarity=token_sim,
            embedding_similarity=embedding_sim,
            tag_overlap=tag_overlap,
            title_similarity=title_sim,
            penalty=penalty,
            shared_tags=shared_tags,
        )
        return total, components

    def classify(self, score: float) -> Classification:
        if score >= self.settings.auto_accept_threshold:
            return Classification.ACCEPT
        if score >= self.settings.suggestion_threshold:
            return Classification.SUGGEST
        return Classification.DISCARD
