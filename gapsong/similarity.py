from __future__ import annotations

from collections.abc import Sequence
from typing import TypeAlias

import numpy as np
from numpy.typing import NDArray

from .models import Point

SimilarityMatrix: TypeAlias = NDArray[np.float64]


def jaccard(a: frozenset[str], b: frozenset[str]) -> float:
    """|a ∩ b| / |a ∪ b|, or 0 when both sets are empty."""
    union = len(a | b)
    if union == 0:
        return 0.0
    return len(a & b) / union


def similarity_matrix(points: Sequence[Point]) -> SimilarityMatrix:
    """Symmetric N×N Jaccard matrix over link sets with a unit diagonal."""
    count = len(points)
    matrix = np.eye(count, dtype=np.float64)
    link_sets = [point.link_set for point in points]
    for i in range(count):
        for j in range(i + 1, count):
            value = jaccard(link_sets[i], link_sets[j])
            matrix[i, j] = value
            matrix[j, i] = value
    matrix.setflags(write=False)
    return matrix


def similarity_edges(
    matrix: SimilarityMatrix,
    *,
    threshold: float = 0.01,
) -> list[tuple[int, int, float]]:
    """Pairs ``(i, j, similarity)`` with ``i < j`` strictly above ``threshold``."""
    rows, cols = np.triu_indices(matrix.shape[0], k=1)
    values = matrix[rows, cols]
    keep = values > threshold
    return [
        (int(i), int(j), float(value))
        for i, j, value in zip(rows[keep], cols[keep], values[keep], strict=True)
    ]
