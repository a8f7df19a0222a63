"""
Sampled Region Engine
=====================

Approximates the linear-region partition of a ReLU network by brute force:

    1. Evaluate the network on a (resolution+1)² lattice over [-R, R]²
    2. Record the on/off pattern of every hidden neuron at each point
    3. Flood-fill 4-connected points that share a pattern
    4. Outline each component with its convex hull

Works for any number of hidden layers. Components touching the edge of a
region are only approximated by their hull; finer resolution tightens the
outline at O(resolution²) forward passes.
"""

from collections import deque
from typing import List, Tuple

import numpy as np

from relu_regions.geometry.polygon import convex_hull, sample_grid, valid_domain, world_to_input
from relu_regions.geometry.types import ActivationPattern, Polytope
from relu_regions.nn.network import DenseNetwork
from relu_regions.utils.logger import get_logger

_logger = get_logger(__name__)

# Components smaller than this are treated as noise
MIN_COMPONENT_CELLS = 3


def supports_regions(network: DenseNetwork) -> bool:
    """Region analysis needs a 2-D input and at least one hidden layer."""
    return network.input_size == 2 and len(network.hidden_sizes) > 0


def activation_bits(network: DenseNetwork, inputs: np.ndarray, first_layer_only: bool = False) -> np.ndarray:
    """
    Boolean (N, neurons) matrix of ``activation > 0`` for a batch of inputs.

    Columns are ordered layer first, then neuron.
    """
    hidden = network.forward_batch(inputs).hidden
    if first_layer_only:
        hidden = hidden[:1]
    return np.concatenate([h > 0 for h in hidden], axis=1)


def pattern_at(
    network: DenseNetwork,
    x: float,
    y: float,
    half_range: float,
    first_layer_only: bool = False,
) -> ActivationPattern:
    """Activation pattern of the network at one world point."""
    row, col = world_to_input(x, y, half_range)
    bits = activation_bits(network, np.array([[row, col]]), first_layer_only)
    return ActivationPattern.from_bits(bits[0])


def label_grid(
    network: DenseNetwork,
    half_range: float,
    resolution: int,
    first_layer_only: bool = False,
) -> Tuple[np.ndarray, List[ActivationPattern], np.ndarray, np.ndarray]:
    """
    Evaluate the lattice and give every point a pattern label.

    Returns:
        (labels, patterns, xs, ys): labels is an int (n, n) grid indexing
        into patterns; xs/ys are the world coordinates, flattened row-major
    """
    grid = sample_grid(half_range, resolution)
    bits = activation_bits(network, grid.inputs, first_layer_only)
    unique_bits, inverse = np.unique(bits, axis=0, return_inverse=True)
    patterns = [ActivationPattern.from_bits(row) for row in unique_bits]
    labels = np.asarray(inverse).reshape(grid.shape)
    return labels, patterns, grid.xs, grid.ys


def connected_components(labels: np.ndarray) -> List[List[Tuple[int, int]]]:
    """
    4-connected components of equal labels.

    Components are returned in scan order of their first cell.
    """
    rows, cols = labels.shape
    visited = np.zeros(labels.shape, dtype=bool)
    components: List[List[Tuple[int, int]]] = []

    for si in range(rows):
        for sj in range(cols):
            if visited[si, sj]:
                continue
            target = labels[si, sj]
            visited[si, sj] = True
            queue = deque([(si, sj)])
            cells = []
            while queue:
                i, j = queue.popleft()
                cells.append((i, j))
                for ni, nj in ((i - 1, j), (i + 1, j), (i, j - 1), (i, j + 1)):
                    if 0 <= ni < rows and 0 <= nj < cols and not visited[ni, nj] \
                            and labels[ni, nj] == target:
                        visited[ni, nj] = True
                        queue.append((ni, nj))
            components.append(cells)
    return components


def sample_regions(
    network: DenseNetwork,
    half_range: float,
    resolution: int,
) -> List[Polytope]:
    """
    Linear regions of the network found by lattice sampling.

    Args:
        network: Network to analyze (read through a private snapshot)
        half_range: Domain is [-half_range, half_range]²
        resolution: Lattice steps per axis

    Returns:
        One Polytope per connected component of at least 3 points whose
        hull is a proper polygon. Patterns cover every hidden neuron.
    """
    if not valid_domain(half_range, resolution):
        _logger.warning(f"Invalid sampling domain: half_range={half_range}, resolution={resolution}")
        return []
    snapshot = network.copy()
    if not supports_regions(snapshot):
        _logger.warning("Region sampling needs a 2-D input and at least one hidden layer")
        return []

    labels, patterns, xs, ys = label_grid(snapshot, half_range, int(resolution))
    width = labels.shape[1]

    regions: List[Polytope] = []
    for cells in connected_components(labels):
        if len(cells) < MIN_COMPONENT_CELLS:
            continue
        points = [(xs[i * width + j], ys[i * width + j]) for i, j in cells]
        hull = convex_hull(points)
        if len(hull) < 3:
            continue
        i0, j0 = cells[0]
        regions.append(Polytope(pattern=patterns[labels[i0, j0]], vertices=hull, cell_count=len(cells)))

    _logger.debug(f"Sampled {len(regions)} regions from {len(patterns)} patterns")
    return regions
