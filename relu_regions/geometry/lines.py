"""
Boundary lines of the first hidden layer.

Each first-layer neuron switches on/off along one straight line; this module
clips those lines to the domain square so they can be drawn.
"""

from typing import List, Optional

from relu_regions.geometry.analytic import neuron_line
from relu_regions.geometry.polygon import Point, dedupe_points, valid_domain
from relu_regions.geometry.sampled import supports_regions
from relu_regions.geometry.types import LineSegment
from relu_regions.nn.network import DenseNetwork
from relu_regions.utils.logger import get_logger

_logger = get_logger(__name__)

# Coefficients below this are treated as zero
DEGENERATE_TOLERANCE = 1e-6


def clip_line(a: float, b: float, c: float, half_range: float) -> Optional[List[Point]]:
    """
    Clip a*x + b*y + c = 0 to the square [-R, R]².

    Returns:
        The two distinct edge crossings, or None if the line misses the
        square, only touches a corner, or is degenerate
    """
    R = half_range
    if abs(a) < DEGENERATE_TOLERANCE and abs(b) < DEGENERATE_TOLERANCE:
        return None

    hits: List[Point] = []
    if abs(b) > DEGENERATE_TOLERANCE:
        # Left and right edges
        for x in (-R, R):
            y = -(a * x + c) / b
            if -R <= y <= R:
                hits.append((x, y))
    if abs(a) > DEGENERATE_TOLERANCE:
        # Bottom and top edges
        for y in (-R, R):
            x = -(b * y + c) / a
            if -R <= x <= R:
                hits.append((x, y))

    hits = dedupe_points(hits, 1e-9)
    if len(hits) != 2:
        return None
    return hits


def extract_lines(network: DenseNetwork, half_range: float) -> List[LineSegment]:
    """One clipped segment per first-layer neuron whose line crosses the domain."""
    if not valid_domain(half_range, 1):
        _logger.warning(f"Invalid half_range for line extraction: {half_range}")
        return []
    snapshot = network.copy()
    if not supports_regions(snapshot):
        _logger.warning("Boundary lines need a 2-D input and at least one hidden layer")
        return []

    weights, biases = snapshot.first_layer()
    segments = []
    for i in range(biases.size):
        a, b, c = neuron_line(float(weights[0, i]), float(weights[1, i]), float(biases[i]), half_range)
        hits = clip_line(a, b, c, half_range)
        if hits is None:
            continue
        segments.append(LineSegment(neuron=i, start=hits[0], end=hits[1]))
    return segments
