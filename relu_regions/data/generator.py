"""
Training Data Generation
========================

Builds the binary label grids the network is trained on and turns them into
training samples.

Each grid cell (i, j) of an H x W label grid becomes one sample:

    input  = [i / H, j / W]     normalized (row, col) coordinate
    target = [label]            0 or 1

Pattern Registry:
    Use generate_pattern(width, height, name) to build a grid
    Use list_patterns() to get all available pattern names
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from relu_regions.utils.logger import get_logger

_logger = get_logger(__name__)


class PatternType(Enum):
    """Built-in label patterns."""
    RANDOM = 'random'
    CHECKERBOARD = 'checkerboard'
    STRIPES_FIFTY_FIFTY = 'stripes_fifty_fifty'
    STRIPES_VERTICAL = 'stripes_vertical'
    CIRCLE = 'circle'
    CORNERS = 'corners'


@dataclass
class TrainingSample:
    """One grid cell as a training example."""
    input: List[float]
    target: List[float]
    row: int = 0
    col: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {'input': list(self.input), 'target': list(self.target),
                'row': self.row, 'col': self.col}


# =============================================================================
# PATTERN GENERATORS
# =============================================================================
# Every generator takes (width, height, rng) and returns an int (H, W) grid.

def _random(width: int, height: int, rng: np.random.Generator) -> np.ndarray:
    return (rng.random((height, width)) > 0.5).astype(int)


def _checkerboard(width: int, height: int, rng: np.random.Generator) -> np.ndarray:
    i, j = np.indices((height, width))
    return (i + j) % 2


def _stripes_fifty_fifty(width: int, height: int, rng: np.random.Generator) -> np.ndarray:
    # Left half 0, right half 1
    _, j = np.indices((height, width))
    return (j >= width // 2).astype(int)


def _stripes_vertical(width: int, height: int, rng: np.random.Generator) -> np.ndarray:
    _, j = np.indices((height, width))
    return (j // 2) % 2


def _circle(width: int, height: int, rng: np.random.Generator) -> np.ndarray:
    i, j = np.indices((height, width))
    radius = min(width, height) / 3
    distance = np.sqrt((j - width / 2) ** 2 + (i - height / 2) ** 2)
    return (distance <= radius).astype(int)


def _corners(width: int, height: int, rng: np.random.Generator) -> np.ndarray:
    i, j = np.indices((height, width))
    top, bottom = i < 2, i >= height - 2
    left, right = j < 2, j >= width - 2
    return ((top | bottom) & (left | right)).astype(int)


PATTERN_REGISTRY: Dict[PatternType, Dict[str, Any]] = {
    PatternType.RANDOM: {
        'generator': _random,
        'description': 'Independent coin flip per cell',
    },
    PatternType.CHECKERBOARD: {
        'generator': _checkerboard,
        'description': 'Alternating cells; hardest for a small network',
    },
    PatternType.STRIPES_FIFTY_FIFTY: {
        'generator': _stripes_fifty_fifty,
        'description': 'Left half 0, right half 1; one line separates it',
    },
    PatternType.STRIPES_VERTICAL: {
        'generator': _stripes_vertical,
        'description': 'Vertical stripes two cells wide',
    },
    PatternType.CIRCLE: {
        'generator': _circle,
        'description': 'Filled disc of radius min(W, H) / 3 in the center',
    },
    PatternType.CORNERS: {
        'generator': _corners,
        'description': '2x2 blocks of ones in each corner',
    },
}


def list_patterns() -> List[str]:
    """Get a list of all available pattern names."""
    return [p.value for p in PATTERN_REGISTRY]


def parse_pattern(pattern: Any) -> PatternType:
    """
    Resolve a pattern name or PatternType.

    Raises:
        ValueError: If the name is unknown
    """
    if isinstance(pattern, PatternType):
        return pattern
    try:
        return PatternType(str(pattern).lower())
    except ValueError:
        raise ValueError(
            f"Unknown pattern {pattern!r}. Available: {', '.join(list_patterns())}"
        ) from None


def generate_pattern(
    width: int,
    height: int,
    pattern: Any = PatternType.RANDOM,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Generate a (height, width) grid of 0/1 labels.

    Args:
        width: Number of columns
        height: Number of rows
        pattern: PatternType or its name
        rng: Random generator (only used by the random pattern)

    Returns:
        Integer numpy array of shape (height, width)
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Grid must be non-empty, got {width}x{height}")
    generator: Callable[..., np.ndarray] = PATTERN_REGISTRY[parse_pattern(pattern)]['generator']
    return generator(width, height, rng if rng is not None else np.random.default_rng())


def grid_to_samples(grid: Any) -> List[TrainingSample]:
    """Convert a label grid to samples in row-major order (unshuffled)."""
    data = np.asarray(grid)
    height, width = data.shape
    return [
        TrainingSample(
            input=[i / height, j / width],
            target=[float(data[i, j])],
            row=i,
            col=j,
        )
        for i in range(height)
        for j in range(width)
    ]


def validate_grid(grid: Any) -> np.ndarray:
    """
    Check that a grid is a non-empty rectangle of 0/1 labels.

    Raises:
        ValueError: If the grid is ragged, empty or non-binary
    """
    try:
        data = np.array(grid, dtype=float)
    except (TypeError, ValueError):
        raise ValueError("Grid must be a rectangular array of numbers") from None
    if data.ndim != 2 or data.size == 0:
        raise ValueError(f"Grid must be a non-empty 2-D array, got shape {data.shape}")
    if not np.all((data == 0) | (data == 1)):
        raise ValueError("Grid labels must be 0 or 1")
    return data.astype(int)


@dataclass
class DataManager:
    """
    Holds the current label grid and produces training samples from it.

    Example:
        >>> data = DataManager(10, 10, 'circle')
        >>> samples = data.samples()
        >>> data.regenerate(10, 10, 'checkerboard')
    """
    width: int = 10
    height: int = 10
    pattern: Any = PatternType.RANDOM
    seed: Optional[int] = None
    grid: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        self.pattern = parse_pattern(self.pattern)
        self._rng = np.random.default_rng(self.seed)
        self.grid = generate_pattern(self.width, self.height, self.pattern, self._rng)

    def regenerate(self, width: int, height: int, pattern: Any = PatternType.RANDOM) -> np.ndarray:
        """Replace the grid with a freshly generated pattern."""
        self.pattern = parse_pattern(pattern)
        self.grid = generate_pattern(width, height, self.pattern, self._rng)
        self.height, self.width = self.grid.shape
        _logger.info(f"Generated {self.width}x{self.height} '{self.pattern.value}' data")
        return self.grid.copy()

    def set_custom_data(self, grid: Sequence[Sequence[float]]) -> np.ndarray:
        """Replace the grid with user-drawn labels (deep-copied)."""
        self.grid = validate_grid(grid)
        self.height, self.width = self.grid.shape
        _logger.info(f"Loaded custom {self.width}x{self.height} data")
        return self.grid.copy()

    def current_data(self) -> np.ndarray:
        return self.grid.copy()

    def samples(self, shuffle: bool = True) -> List[TrainingSample]:
        """Training samples for the current grid, shuffled by default."""
        samples = grid_to_samples(self.grid)
        if shuffle:
            order = self._rng.permutation(len(samples))
            samples = [samples[k] for k in order]
        return samples
