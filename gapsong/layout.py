from __future__ import annotations

import logging
import math
from collections.abc import Sequence

import numpy as np
from numpy.typing import NDArray

from .config import LayoutConfig, coerce_layout
from .errors import InvalidConfigError
from .models import Point
from .similarity import SimilarityMatrix, similarity_matrix

_LOGGER = logging.getLogger("gapsong.layout")

Positions = NDArray[np.float64]


def seed_positions(count: int, *, radius: float = 3.0) -> Positions:
    """Point i starts at (cos(i), sin(i)) * radius.

    Indices are used directly as radians, so the seeds are not evenly spread
    around the circle.
    """
    index = np.arange(count, dtype=np.float64)
    return np.stack((np.cos(index) * radius, np.sin(index) * radius), axis=1).reshape(count, 2)


def _displacement(
    positions: Positions,
    i: int,
    similarity: SimilarityMatrix,
    config: LayoutConfig,
) -> NDArray[np.float64]:
    delta = positions - positions[i]
    dist = np.maximum(np.hypot(delta[:, 0], delta[:, 1]), config.min_distance)
    target = config.spring_length * (1.0 - similarity[i])
    force = (dist - target) * config.stiffness
    pull = delta * (force / dist)[:, None]
    pull[i] = 0.0
    return pull.sum(axis=0)


def relax(
    positions: Positions,
    similarity: SimilarityMatrix,
    config: LayoutConfig | None = None,
) -> Positions:
    """Run the fixed number of relaxation passes and return new positions."""
    resolved = coerce_layout(config)
    count = positions.shape[0]
    if similarity.shape != (count, count):
        raise InvalidConfigError(
            f"similarity matrix shape {similarity.shape} does not match {count} points"
        )
    current = np.array(positions, dtype=np.float64, copy=True).reshape(count, 2)
    if count < 2:
        return current

    for _ in range(resolved.iterations):
        if resolved.update == "sequential":
            for i in range(count):
                current[i] += _displacement(current, i, similarity, resolved)
        else:
            snapshot = current.copy()
            for i in range(count):
                current[i] += _displacement(snapshot, i, similarity, resolved)
    return current


def layout_points(
    points: Sequence[Point],
    config: LayoutConfig | None = None,
    *,
    similarity: SimilarityMatrix | None = None,
) -> SimilarityMatrix:
    """Seed, relax, and write positions back onto ``points``.

    Returns the similarity matrix used so callers can reuse it for edges.
    """
    resolved = coerce_layout(config)
    matrix = similarity if similarity is not None else similarity_matrix(points)
    seeded = seed_positions(len(points), radius=resolved.seed_radius)
    relaxed = relax(seeded, matrix, resolved)
    for point, (x, y) in zip(points, relaxed, strict=True):
        if not (math.isfinite(x) and math.isfinite(y)):
            _LOGGER.warning("Layout produced non-finite position for %r", point.id)
        point.position = (float(x), float(y))
    _LOGGER.debug(
        "Laid out %d points (%s, %d passes)",
        len(points),
        resolved.update,
        resolved.iterations,
    )
    return matrix
