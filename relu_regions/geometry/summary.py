"""
Partition Summary
=================

One-shot statistics comparing the two region engines on the same network.

Usage:
    summary = summarize_partition(network, half_range=3.0, resolution=80)
    print(summary.to_dict())
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from relu_regions.geometry.analytic import solve_regions
from relu_regions.geometry.lines import extract_lines
from relu_regions.geometry.sampled import sample_regions
from relu_regions.nn.network import DenseNetwork


@dataclass
class PartitionSummary:
    """Region statistics for one network snapshot."""
    half_range: float
    resolution: int

    # Region counts
    sampled_regions: int
    analytic_regions: int
    sampled_patterns: int
    analytic_patterns: int
    boundary_lines: int

    # Coverage of the sampled partition
    domain_area: float
    sampled_area: float
    coverage: float
    analytic_area: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def summarize_partition(
    network: DenseNetwork,
    half_range: float,
    resolution: int,
    analytic_resolution: Optional[int] = None,
) -> PartitionSummary:
    """
    Run both region engines and the line extractor on one snapshot.

    Args:
        network: Network to analyze
        half_range: Domain is [-half_range, half_range]²
        resolution: Sampled-engine lattice resolution
        analytic_resolution: Pattern-discovery resolution for the solver
            (defaults to ``resolution``)
    """
    snapshot = network.copy()
    sampled = sample_regions(snapshot, half_range, resolution)
    analytic = solve_regions(snapshot, half_range, analytic_resolution or resolution)
    lines = extract_lines(snapshot, half_range)

    domain_area = (2.0 * half_range) ** 2 if half_range > 0 else 0.0
    sampled_area = sum(r.area for r in sampled)
    return PartitionSummary(
        half_range=float(half_range),
        resolution=int(resolution),
        sampled_regions=len(sampled),
        analytic_regions=len(analytic),
        sampled_patterns=len({r.pattern for r in sampled}),
        analytic_patterns=len({r.pattern for r in analytic}),
        boundary_lines=len(lines),
        domain_area=domain_area,
        sampled_area=sampled_area,
        coverage=sampled_area / domain_area if domain_area else 0.0,
        analytic_area=sum(r.area for r in analytic),
    )
