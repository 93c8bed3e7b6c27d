import math

import numpy as np
import pytest

from gapsong.config import LayoutConfig
from gapsong.errors import InvalidConfigError
from gapsong.layout import layout_points, relax, seed_positions
from gapsong.models import Point
from gapsong.similarity import similarity_matrix


def test_seed_positions_use_index_as_radians() -> None:
    seeds = seed_positions(3)
    assert seeds.shape == (3, 2)
    assert seeds[0].tolist() == [3.0, 0.0]
    assert seeds[2, 0] == pytest.approx(math.cos(2) * 3)
    assert seeds[2, 1] == pytest.approx(math.sin(2) * 3)


@pytest.mark.parametrize("count", [0, 1])
def test_tiny_point_sets_stay_finite(count: int) -> None:
    points = [Point(id=i, title=f"p{i}", links=["x"]) for i in range(count)]
    layout_points(points)
    for point in points:
        assert all(math.isfinite(value) for value in point.position)
    if count == 1:
        assert point.position == pytest.approx((3.0, 0.0))


def test_identical_link_sets_converge() -> None:
    points = [
        Point(id=1, title="A", links=["x", "y", "z"]),
        Point(id=2, title="B", links=["x", "y", "z"]),
    ]
    layout_points(points)
    (ax, ay), (bx, by) = points[0].position, points[1].position
    assert math.hypot(ax - bx, ay - by) < 1e-3


def test_disjoint_pair_settles_near_spring_length() -> None:
    points = [Point(id=1, title="A", links=["x"]), Point(id=2, title="B", links=["y"])]
    layout_points(points)
    (ax, ay), (bx, by) = points[0].position, points[1].position
    assert math.hypot(ax - bx, ay - by) == pytest.approx(6.0, abs=1e-3)


def test_empty_link_sets_do_not_break() -> None:
    points = [Point(id=i, title=str(i)) for i in range(4)]
    layout_points(points)
    assert all(math.isfinite(v) for point in points for v in point.position)


def test_relax_is_deterministic_and_order_dependent() -> None:
    points = [
        Point(id=1, title="A", links=["a", "b"]),
        Point(id=2, title="B", links=["b", "c"]),
        Point(id=3, title="C", links=["c", "d", "a"]),
        Point(id=4, title="D", links=["d"]),
    ]
    matrix = similarity_matrix(points)
    seeds = seed_positions(len(points))
    first = relax(seeds, matrix)
    second = relax(seeds, matrix)
    synchronous = relax(seeds, matrix, LayoutConfig(update="synchronous"))
    assert np.array_equal(first, second)
    assert not np.allclose(first, synchronous)
    assert np.array_equal(seeds, seed_positions(len(points)))


def test_relax_rejects_mismatched_matrix() -> None:
    with pytest.raises(InvalidConfigError):
        relax(seed_positions(3), np.eye(2))


def test_zero_iterations_keeps_seeds() -> None:
    points = [Point(id=i, title=str(i), links=[str(i)]) for i in range(3)]
    layout_points(points, LayoutConfig(iterations=0))
    assert points[1].position == pytest.approx((math.cos(1) * 3, math.sin(1) * 3))
