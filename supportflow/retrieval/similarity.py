"""Exact cosine-similarity search over stored embedding vectors.

The index is a full linear scan: every query is compared against every
stored vector (O(corpus × dimension)).  Anything that needs sub-linear
search should provide another class with the same ``search`` contract.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from supportflow.models import KnowledgeChunk

logger = logging.getLogger(__name__)


class DimensionMismatch(ValueError):
    """Raised when two vectors of different lengths are compared."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return ``dot(a, b) / (|a| * |b|)`` in [-1, 1].

    A zero-magnitude vector has no direction, so its similarity to
    anything is ``0.0`` rather than an error.
    """
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    if vec_a.shape != vec_b.shape:
        raise DimensionMismatch(vec_a.size, vec_b.size)

    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.clip(np.dot(vec_a, vec_b) / (norm_a * norm_b), -1.0, 1.0))


@dataclass(frozen=True)
class ScoredChunk:
    chunk: KnowledgeChunk
    score: float


class SimilarityIndex:
    """In-memory cosine index over a fixed list of chunks."""

    def __init__(self, chunks: Sequence[KnowledgeChunk]):
        self._chunks = list(chunks)
        if not self._chunks:
            self._matrix = np.empty((0, 0))
            self._norms = np.empty(0)
            return

        dimension = len(self._chunks[0].embedding)
        for chunk in self._chunks:
            if len(chunk.embedding) != dimension:
                raise DimensionMismatch(dimension, len(chunk.embedding))

        self._matrix = np.asarray([c.embedding for c in self._chunks], dtype=np.float64)
        self._norms = np.linalg.norm(self._matrix, axis=1)

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def dimension(self) -> int | None:
        return self._matrix.shape[1] if self._chunks else None

    def search(self, query_vector: Sequence[float], k: int) -> list[ScoredChunk]:
        """Return at most *k* chunks ordered by descending similarity.

        Equal scores keep their storage order (stable sort) so results are
        reproducible.
        """
        if not isinstance(k, int) or isinstance(k, bool) or k < 1:
            raise ValueError(f"k must be a positive integer, got {k!r}")
        if not self._chunks:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        if query.shape != (self._matrix.shape[1],):
            raise DimensionMismatch(self._matrix.shape[1], query.size)

        query_norm = np.linalg.norm(query)
        denominators = self._norms * query_norm
        dots = self._matrix @ query
        scores = np.divide(
            dots, denominators, out=np.zeros_like(dots), where=denominators != 0,
        )
        scores = np.clip(scores, -1.0, 1.0)

        order = np.argsort(-scores, kind="stable")[:k]
        return [ScoredChunk(self._chunks[i], float(scores[i])) for i in order]
