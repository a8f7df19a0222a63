"""
Planar Polygon Utilities
========================

Small 2-D helpers used by both region engines:

    - Monotone-chain convex hull
    - Shoelace (signed) area
    - Angular ordering about the centroid
    - Tolerance-based point de-duplication
    - The world <-> network-input coordinate map

World coordinates span [-R, R]² with y pointing up. The network sees the
same square as a normalized (row, col) pair in [0, 1]², row 0 at the top:

    row = (R - y) / (2R)
    col = (x + R) / (2R)
"""

import math
from typing import List, NamedTuple, Sequence, Tuple

import numpy as np

Point = Tuple[float, float]


def cross(o: Point, a: Point, b: Point) -> float:
    """Z component of (a - o) x (b - o); positive for a left turn."""
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def convex_hull(points: Sequence[Point]) -> List[Point]:
    """
    Andrew's monotone chain convex hull.

    Collinear points on the hull boundary are dropped.

    Args:
        points: Any number of (x, y) points, duplicates allowed

    Returns:
        Hull vertices in counter-clockwise order, starting from the
        lowest-x (then lowest-y) point. Fewer than 3 vertices means the
        input was degenerate (empty, a single point, or collinear).
    """
    pts = sorted(set((float(x), float(y)) for x, y in points))
    if len(pts) <= 2:
        return pts

    lower: List[Point] = []
    for p in pts:
        while len(lower) >= 2 and cross(lower[-2], lower[-1], p) <= 0:
            lower.pop()
        lower.append(p)

    upper: List[Point] = []
    for p in reversed(pts):
        while len(upper) >= 2 and cross(upper[-2], upper[-1], p) <= 0:
            upper.pop()
        upper.append(p)

    # Last point of each half is the first point of the other
    return lower[:-1] + upper[:-1]


def signed_area(vertices: Sequence[Point]) -> float:
    """Shoelace area; positive for counter-clockwise vertex order."""
    n = len(vertices)
    if n < 3:
        return 0.0
    total = 0.0
    for i in range(n):
        x1, y1 = vertices[i]
        x2, y2 = vertices[(i + 1) % n]
        total += x1 * y2 - x2 * y1
    return total / 2.0


def polygon_area(vertices: Sequence[Point]) -> float:
    return abs(signed_area(vertices))


def centroid(points: Sequence[Point]) -> Point:
    """Mean of the points (vertex centroid, not the area centroid)."""
    if not points:
        raise ValueError("Cannot take the centroid of no points")
    n = len(points)
    return (sum(p[0] for p in points) / n, sum(p[1] for p in points) / n)


def sort_counter_clockwise(points: Sequence[Point]) -> List[Point]:
    """Order points by polar angle about their centroid."""
    if len(points) < 3:
        return list(points)
    cx, cy = centroid(points)
    return sorted(points, key=lambda p: math.atan2(p[1] - cy, p[0] - cx))


def dedupe_points(points: Sequence[Point], tolerance: float = 1e-8) -> List[Point]:
    """Drop points within ``tolerance`` (on both axes) of an earlier point."""
    unique: List[Point] = []
    for p in points:
        if not any(abs(p[0] - q[0]) <= tolerance and abs(p[1] - q[1]) <= tolerance for q in unique):
            unique.append(p)
    return unique


def is_convex(vertices: Sequence[Point], tolerance: float = 1e-9) -> bool:
    """True if every turn is a left turn (convex, counter-clockwise)."""
    n = len(vertices)
    if n < 3:
        return False
    for i in range(n):
        if cross(vertices[i], vertices[(i + 1) % n], vertices[(i + 2) % n]) < -tolerance:
            return False
    return signed_area(vertices) > 0


# =============================================================================
# COORDINATE MAP
# =============================================================================

def world_to_input(x, y, half_range: float):
    """
    Map world coordinates to the normalized (row, col) network input.

    Works elementwise on scalars or numpy arrays.
    """
    span = 2.0 * half_range
    return (half_range - y) / span, (x + half_range) / span


def input_to_world(row, col, half_range: float):
    """Inverse of ``world_to_input``."""
    span = 2.0 * half_range
    return col * span - half_range, half_range - row * span


class SampleGrid(NamedTuple):
    """A (resolution+1)² lattice over the domain, flattened row-major."""
    xs: np.ndarray       # (N,) world x
    ys: np.ndarray       # (N,) world y
    inputs: np.ndarray   # (N, 2) normalized network inputs
    shape: Tuple[int, int]


def sample_grid(half_range: float, resolution: int) -> SampleGrid:
    """
    Build the sampling lattice shared by the region engines.

    Point (i, j) sits at x = -R + j·step, y = R - i·step with
    step = 2R / resolution, so row i = 0 is the top edge.
    """
    n = resolution + 1
    step = 2.0 * half_range / resolution
    i, j = np.indices((n, n))
    xs = (-half_range + j * step).reshape(-1)
    ys = (half_range - i * step).reshape(-1)
    rows, cols = world_to_input(xs, ys, half_range)
    return SampleGrid(xs=xs, ys=ys, inputs=np.column_stack([rows, cols]), shape=(n, n))


def valid_domain(half_range: float, resolution: int) -> bool:
    """Whether a half-range and lattice resolution describe a usable grid."""
    try:
        return (
            math.isfinite(half_range) and half_range > 0
            and int(resolution) == resolution and resolution > 0
        )
    except (TypeError, ValueError):
        return False
