"""
Analytical Region Solver
========================

Exact polygons for the partition induced by the FIRST hidden layer.

Each first-layer neuron i is active where its pre-activation

    w_row·row + w_col·col + b > 0

Substituting the coordinate map row = (R - y)/(2R), col = (x + R)/(2R)
and multiplying by 2R gives the world-space line

    a·x + b'·y + c = 0   with   a = w_col,  b' = -w_row,
                                c = R·(w_row + w_col) + 2R·b

A region is the intersection of one half-plane per neuron (side chosen by
the neuron's bit in the pattern) and the four sides of the domain square.
Its vertices are the pairwise line intersections that satisfy every
constraint.

Deeper layers bend these regions further; this solver deliberately only
models the first layer and is an approximation for deeper networks.
"""

import math
from typing import List, Optional, Sequence

import numpy as np

from relu_regions.geometry.polygon import Point, dedupe_points, signed_area, sort_counter_clockwise, valid_domain
from relu_regions.geometry.sampled import label_grid, supports_regions
from relu_regions.geometry.types import ActivationPattern, Constraint, Polytope
from relu_regions.nn.network import DenseNetwork
from relu_regions.utils.logger import get_logger

_logger = get_logger(__name__)

# Numeric tolerances
PARALLEL_TOLERANCE = 1e-10   # |det| below this: lines treated as parallel
FEASIBLE_TOLERANCE = 1e-8    # constraint slack allowed for a vertex
DUPLICATE_TOLERANCE = 1e-8   # vertices closer than this are merged
MIN_REGION_AREA = 0.001      # smaller polygons are discarded


def neuron_line(w_row: float, w_col: float, bias: float, half_range: float):
    """World-space (a, b', c) of a first-layer neuron's zero-level line."""
    a = w_col
    b = -w_row
    c = half_range * (w_row + w_col) + 2.0 * half_range * bias
    return a, b, c


def boundary_constraints(half_range: float) -> List[Constraint]:
    """x >= -R, x <= R, y >= -R, y <= R."""
    return [
        Constraint(1.0, 0.0, half_range, 1),
        Constraint(-1.0, 0.0, half_range, 1),
        Constraint(0.0, 1.0, half_range, 1),
        Constraint(0.0, -1.0, half_range, 1),
    ]


def discover_patterns(
    network: DenseNetwork,
    half_range: float,
    resolution: int = 20,
) -> List[ActivationPattern]:
    """First-layer patterns that occur somewhere on the sampling lattice."""
    _, patterns, _, _ = label_grid(network, half_range, resolution, first_layer_only=True)
    return patterns


def build_constraints(
    weights: np.ndarray,
    biases: np.ndarray,
    pattern: ActivationPattern,
    half_range: float,
) -> List[Constraint]:
    """
    Half-planes describing one first-layer pattern inside the domain.

    Args:
        weights: (2, neurons) first-layer weight matrix (row 0 = w_row)
        biases: (neurons,) first-layer biases
        pattern: Which neurons are active
        half_range: Domain half-width R

    Returns:
        One constraint per neuron followed by the four domain sides
    """
    if len(pattern) != biases.size:
        raise ValueError(f"Pattern has {len(pattern)} bits, layer has {biases.size} neurons")
    constraints = []
    for i, active in enumerate(pattern.bits):
        a, b, c = neuron_line(float(weights[0, i]), float(weights[1, i]), float(biases[i]), half_range)
        constraints.append(Constraint(a, b, c, 1 if active else -1))
    return constraints + boundary_constraints(half_range)


def intersect(c1: Constraint, c2: Constraint) -> Optional[Point]:
    """Intersection of two constraint lines, or None if (nearly) parallel."""
    det = c1.a * c2.b - c2.a * c1.b
    if abs(det) < PARALLEL_TOLERANCE:
        return None
    x = (c1.b * c2.c - c2.b * c1.c) / det
    y = (c2.a * c1.c - c1.a * c2.c) / det
    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    return x, y


def polytope_vertices(constraints: Sequence[Constraint]) -> List[Point]:
    """
    Vertices of the intersection of half-planes, counter-clockwise.

    Empty or degenerate intersections yield fewer than 3 points.
    """
    candidates: List[Point] = []
    for i in range(len(constraints)):
        for j in range(i + 1, len(constraints)):
            point = intersect(constraints[i], constraints[j])
            if point is None:
                continue
            if all(c.contains(point[0], point[1], FEASIBLE_TOLERANCE) for c in constraints):
                candidates.append(point)
    return sort_counter_clockwise(dedupe_points(candidates, DUPLICATE_TOLERANCE))


def solve_regions(
    network: DenseNetwork,
    half_range: float,
    resolution: int = 20,
) -> List[Polytope]:
    """
    Exact first-layer regions of the network.

    Args:
        network: Network to analyze (read through a private snapshot)
        half_range: Domain is [-half_range, half_range]²
        resolution: Lattice resolution used to discover candidate patterns

    Returns:
        One convex, counter-clockwise Polytope per discovered pattern whose
        polygon has at least 3 vertices and area >= MIN_REGION_AREA
    """
    if not valid_domain(half_range, resolution):
        _logger.warning(f"Invalid solver domain: half_range={half_range}, resolution={resolution}")
        return []
    snapshot = network.copy()
    if not supports_regions(snapshot):
        _logger.warning("Analytical regions need a 2-D input and at least one hidden layer")
        return []

    weights, biases = snapshot.first_layer()
    regions: List[Polytope] = []
    for pattern in discover_patterns(snapshot, half_range, int(resolution)):
        vertices = polytope_vertices(build_constraints(weights, biases, pattern, half_range))
        if len(vertices) < 3 or signed_area(vertices) < MIN_REGION_AREA:
            continue
        regions.append(Polytope(pattern=pattern, vertices=vertices))

    _logger.debug(f"Solved {len(regions)} first-layer regions")
    return regions
