"""
Geometry Module
===============

Reconstructs the linear regions a ReLU network cuts its 2-D input into.

Functions:
    sample_regions      - Lattice sampling + flood fill + convex hull
    solve_regions       - Exact first-layer half-plane intersection
    extract_lines       - First-layer boundary lines clipped to the domain
    summarize_partition - Counts and coverage of both engines
"""

from .analytic import solve_regions
from .lines import extract_lines
from .sampled import sample_regions
from .summary import PartitionSummary, summarize_partition
from .types import ActivationPattern, Constraint, LineSegment, Polytope

__all__ = [
    'ActivationPattern', 'Constraint', 'LineSegment', 'Polytope',
    'PartitionSummary', 'extract_lines', 'sample_regions', 'solve_regions',
    'summarize_partition',
]
