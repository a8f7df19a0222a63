"""
Geometry value types shared by the region engines.

All coordinates are world coordinates in [-half_range, half_range]².
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Tuple

from relu_regions.geometry.polygon import Point, polygon_area


@dataclass(frozen=True, order=True)
class ActivationPattern:
    """
    On/off state of a set of hidden neurons, stored as an integer tag.

    Bit i of ``value`` is neuron i. ``str()`` renders one character per
    neuron, neuron 0 first, so ``ActivationPattern.from_bits([0, 1])``
    prints as ``"01"``.
    """
    value: int
    length: int

    def __post_init__(self):
        if self.length < 0:
            raise ValueError(f"Pattern length must be non-negative, got {self.length}")
        if not 0 <= self.value < (1 << self.length):
            raise ValueError(f"Pattern value {self.value} does not fit in {self.length} bits")

    @classmethod
    def from_bits(cls, bits: Iterable[Any]) -> 'ActivationPattern':
        value = 0
        length = 0
        for i, bit in enumerate(bits):
            if bit:
                value |= 1 << i
            length = i + 1
        return cls(value, length)

    @classmethod
    def from_string(cls, text: str) -> 'ActivationPattern':
        if any(ch not in '01' for ch in text):
            raise ValueError(f"Pattern string must contain only 0 and 1, got {text!r}")
        return cls.from_bits(ch == '1' for ch in text)

    @property
    def bits(self) -> Tuple[bool, ...]:
        return tuple(bool((self.value >> i) & 1) for i in range(self.length))

    def is_active(self, neuron: int) -> bool:
        if not 0 <= neuron < self.length:
            raise IndexError(f"Neuron {neuron} out of range [0, {self.length})")
        return bool((self.value >> neuron) & 1)

    def active_count(self) -> int:
        return bin(self.value).count('1')

    def __len__(self) -> int:
        return self.length

    def __str__(self) -> str:
        return ''.join('1' if b else '0' for b in self.bits)


@dataclass(frozen=True)
class Constraint:
    """Half-plane ``sign * (a*x + b*y + c) >= 0``."""
    a: float
    b: float
    c: float
    sign: int = 1

    def evaluate(self, x: float, y: float) -> float:
        return self.sign * (self.a * x + self.b * y + self.c)

    def contains(self, x: float, y: float, tolerance: float = 0.0) -> bool:
        return self.evaluate(x, y) >= -tolerance


@dataclass
class Polytope:
    """A linear region: one activation pattern and its convex outline."""
    pattern: ActivationPattern
    vertices: List[Point] = field(default_factory=list)
    # Number of grid samples behind a sampled region (0 for analytic regions)
    cell_count: int = 0

    @property
    def area(self) -> float:
        return polygon_area(self.vertices)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pattern': str(self.pattern),
            'vertices': [[float(x), float(y)] for x, y in self.vertices],
            'area': self.area,
            'cell_count': self.cell_count,
        }


@dataclass
class LineSegment:
    """Zero-level line of one first-layer neuron, clipped to the domain."""
    neuron: int
    start: Point
    end: Point

    @property
    def length(self) -> float:
        return ((self.end[0] - self.start[0]) ** 2 + (self.end[1] - self.start[1]) ** 2) ** 0.5

    def to_dict(self) -> Dict[str, Any]:
        return {
            'neuron': self.neuron,
            'start': [float(self.start[0]), float(self.start[1])],
            'end': [float(self.end[0]), float(self.end[1])],
        }
