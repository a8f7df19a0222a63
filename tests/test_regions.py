"""
Tests for the region engines and the boundary-line extractor.

These tests verify:
    - Sampled regions cover the domain and carry full-length patterns
    - Analytical regions are convex, counter-clockwise and exact
    - Both engines agree on a network with known boundaries
    - Boundary lines are clipped to the domain square
"""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from relu_regions.geometry.analytic import (
    MIN_REGION_AREA,
    build_constraints,
    discover_patterns,
    neuron_line,
    polytope_vertices,
    solve_regions,
)
from relu_regions.geometry.lines import clip_line, extract_lines
from relu_regions.geometry.polygon import centroid, is_convex, signed_area
from relu_regions.geometry.sampled import connected_components, label_grid, pattern_at, sample_regions
from relu_regions.geometry.summary import summarize_partition
from relu_regions.geometry.types import ActivationPattern
from relu_regions.nn.network import DenseNetwork


def single_neuron_network(w_row: float, w_col: float, bias: float) -> DenseNetwork:
    return DenseNetwork.from_parameters(
        [np.array([[w_row], [w_col]]), np.array([[1.0]])],
        [np.array([bias]), np.array([0.0])],
    )


@pytest.fixture
def deep_network():
    return DenseNetwork(2, [5, 3], 1, seed=9)


class TestConnectedComponents:
    """Test the 4-connected flood fill."""

    def test_diagonal_cells_are_separate(self):
        labels = np.array([[1, 0],
                           [0, 1]])
        components = connected_components(labels)
        assert len(components) == 4

    def test_ring_is_one_component(self):
        labels = np.ones((4, 4), dtype=int)
        labels[1:3, 1:3] = 0
        sizes = sorted(len(c) for c in connected_components(labels))
        assert sizes == [4, 12]

    def test_every_cell_assigned_once(self):
        labels = np.random.default_rng(2).integers(0, 3, (9, 7))
        cells = [cell for comp in connected_components(labels) for cell in comp]
        assert len(cells) == labels.size
        assert len(set(cells)) == labels.size


class TestSampledRegions:
    """Test the grid-sampling engine."""

    def test_quadrants(self, quadrant_network):
        regions = sample_regions(quadrant_network, 5.0, 40)
        assert sorted(str(r.pattern) for r in regions) == ['00', '01', '10', '11']

    def test_partition_covers_domain(self, quadrant_network):
        """Hull areas add up to nearly the whole square (one grid step is lost per boundary)."""
        regions = sample_regions(quadrant_network, 5.0, 40)
        total = sum(r.area for r in regions)
        assert 0.9 * 100.0 < total <= 100.0 + 1e-9

    def test_pattern_length_covers_all_hidden_layers(self, deep_network):
        regions = sample_regions(deep_network, 3.0, 30)
        assert regions
        assert all(len(r.pattern) == 8 for r in regions)

    def test_regions_do_not_overlap(self, deep_network):
        """Total hull area cannot exceed the domain when regions are disjoint."""
        regions = sample_regions(deep_network, 3.0, 30)
        assert sum(r.area for r in regions) <= 36.0 + 1e-9

    def test_hulls_are_convex(self, deep_network):
        for region in sample_regions(deep_network, 3.0, 30):
            assert len(region.vertices) >= 3
            assert is_convex(region.vertices)
            assert region.cell_count >= 3

    def test_round_trip(self, deep_network):
        """Re-evaluating any lattice point reproduces its recorded pattern."""
        labels, patterns, xs, ys = label_grid(deep_network, 3.0, 12)
        flat = labels.reshape(-1)
        for k in range(0, flat.size, 7):
            assert pattern_at(deep_network, xs[k], ys[k], 3.0) == patterns[flat[k]]

    def test_does_not_modify_network(self, deep_network):
        before = [w.copy() for w in deep_network.weights]
        sample_regions(deep_network, 3.0, 10)
        for w, b in zip(deep_network.weights, before):
            np.testing.assert_array_equal(w, b)

    @pytest.mark.parametrize("half_range,resolution", [(0.0, 10), (-2.0, 10), (3.0, 0), (3.0, -5)])
    def test_invalid_domain_gives_nothing(self, quadrant_network, half_range, resolution):
        assert sample_regions(quadrant_network, half_range, resolution) == []

    def test_wrong_input_size_gives_nothing(self):
        net = DenseNetwork(3, [4], 1, seed=0)
        assert sample_regions(net, 3.0, 10) == []

    def test_constant_pattern_is_one_region(self):
        """A neuron whose line misses the domain gives a single square."""
        net = single_neuron_network(0.0, 0.0, 1.0)
        regions = sample_regions(net, 2.0, 10)
        assert len(regions) == 1
        assert regions[0].area == pytest.approx(16.0)
        assert str(regions[0].pattern) == '1'


class TestAnalyticRegions:
    """Test the half-plane intersection solver."""

    def test_quadrants(self, quadrant_network):
        """Boundaries x=0 and y=0 give four 5x5 quadrants."""
        regions = solve_regions(quadrant_network, 5.0)
        assert sorted(str(r.pattern) for r in regions) == ['00', '01', '10', '11']
        for region in regions:
            assert region.area == pytest.approx(25.0)
            assert len(region.vertices) == 4

    def test_quadrant_placement(self, quadrant_network):
        """Neuron 0 is on for x > 0, neuron 1 for y < 0."""
        by_pattern = {str(r.pattern): r for r in solve_regions(quadrant_network, 5.0)}
        expected_signs = {'00': (-1, 1), '10': (1, 1), '01': (-1, -1), '11': (1, -1)}
        for key, (sx, sy) in expected_signs.items():
            cx, cy = centroid(by_pattern[key].vertices)
            assert np.sign(cx) == sx and np.sign(cy) == sy

    def test_convex_and_counter_clockwise(self):
        net = DenseNetwork(2, [6], 1, seed=4)
        regions = solve_regions(net, 3.0, 30)
        assert regions
        for region in regions:
            assert is_convex(region.vertices)
            assert signed_area(region.vertices) >= MIN_REGION_AREA

    def test_areas_sum_to_domain(self):
        """First-layer regions tile the square exactly."""
        net = DenseNetwork(2, [5], 1, seed=12)
        regions = solve_regions(net, 3.0, 60)
        assert sum(r.area for r in regions) == pytest.approx(36.0, rel=1e-2)

    def test_pattern_length_is_first_layer_width(self, deep_network):
        regions = solve_regions(deep_network, 3.0)
        assert regions
        assert all(len(r.pattern) == 5 for r in regions)

    def test_centroid_reproduces_pattern(self):
        net = DenseNetwork(2, [4], 1, seed=21)
        for region in solve_regions(net, 3.0, 40):
            cx, cy = centroid(region.vertices)
            assert pattern_at(net, cx, cy, 3.0, first_layer_only=True) == region.pattern

    def test_agrees_with_sampled_engine(self, quadrant_network):
        analytic = {r.pattern: r.area for r in solve_regions(quadrant_network, 5.0)}
        sampled = {r.pattern: r.area for r in sample_regions(quadrant_network, 5.0, 50)}
        assert analytic.keys() == sampled.keys()
        for pattern, area in sampled.items():
            assert area <= analytic[pattern] + 1e-9
            assert area > 0.9 * analytic[pattern]

    def test_discover_patterns(self, quadrant_network):
        patterns = discover_patterns(quadrant_network, 5.0, 20)
        assert {str(p) for p in patterns} == {'00', '01', '10', '11'}

    def test_build_constraints(self, quadrant_network):
        weights, biases = quadrant_network.first_layer()
        constraints = build_constraints(weights, biases, ActivationPattern.from_string('10'), 5.0)
        assert len(constraints) == 2 + 4
        # Neuron 0 active: x >= 0
        assert constraints[0].contains(1.0, 0.0) and not constraints[0].contains(-1.0, 0.0)
        # Neuron 1 inactive: y >= 0
        assert constraints[1].contains(0.0, 1.0) and not constraints[1].contains(0.0, -1.0)

    def test_build_constraints_length_mismatch(self, quadrant_network):
        weights, biases = quadrant_network.first_layer()
        with pytest.raises(ValueError):
            build_constraints(weights, biases, ActivationPattern.from_string('1'), 5.0)

    def test_infeasible_pattern_has_no_polygon(self, quadrant_network):
        """x > 0 and x < 0 at once: nothing survives."""
        weights, biases = quadrant_network.first_layer()
        weights = np.array([[0.0, 0.0], [1.0, 1.0]])
        constraints = build_constraints(weights, biases, ActivationPattern.from_string('10'), 5.0)
        assert len(polytope_vertices(constraints)) < 3

    def test_parallel_lines_are_skipped(self):
        """Two neurons with the same boundary give two half-squares."""
        net = DenseNetwork.from_parameters(
            [np.array([[0.0, 0.0], [1.0, 2.0]]), np.array([[1.0], [1.0]])],
            [np.array([-0.5, -1.0]), np.array([0.0])],
        )
        regions = solve_regions(net, 5.0)
        assert sorted(str(r.pattern) for r in regions) == ['00', '11']
        assert all(r.area == pytest.approx(50.0) for r in regions)

    def test_neuron_line_matches_preactivation(self):
        """a·x + b'·y + c is 2R times the pre-activation at (x, y)."""
        R, w_row, w_col, b = 3.0, 0.7, -1.3, 0.2
        a, bp, c = neuron_line(w_row, w_col, b, R)
        for x, y in [(0.0, 0.0), (1.5, -2.0), (-3.0, 3.0)]:
            row, col = (R - y) / (2 * R), (x + R) / (2 * R)
            pre = w_row * row + w_col * col + b
            assert a * x + bp * y + c == pytest.approx(2 * R * pre)

    def test_invalid_domain_gives_nothing(self, quadrant_network):
        assert solve_regions(quadrant_network, -1.0) == []
        assert solve_regions(quadrant_network, 5.0, 0) == []


class TestBoundaryLines:
    """Test the line extractor."""

    def test_horizontal_line_through_center(self):
        """w_row=1, w_col=0, b=-0.5 switches at y=0."""
        segments = extract_lines(single_neuron_network(1.0, 0.0, -0.5), 5.0)
        assert len(segments) == 1
        seg = segments[0]
        assert seg.neuron == 0
        assert seg.start == pytest.approx((-5.0, 0.0))
        assert seg.end == pytest.approx((5.0, 0.0))

    def test_zero_bias_row_neuron_lies_on_top_edge(self):
        """w_row=1, w_col=0, b=0 switches at row=0, the top edge y=R."""
        segments = extract_lines(single_neuron_network(1.0, 0.0, 0.0), 5.0)
        assert len(segments) == 1
        assert segments[0].start == pytest.approx((-5.0, 5.0))
        assert segments[0].end == pytest.approx((5.0, 5.0))

    def test_one_segment_per_neuron(self, quadrant_network):
        segments = extract_lines(quadrant_network, 5.0)
        assert [s.neuron for s in segments] == [0, 1]
        vertical, horizontal = segments
        assert vertical.start == pytest.approx((0.0, -5.0))
        assert vertical.end == pytest.approx((0.0, 5.0))
        assert horizontal.length == pytest.approx(10.0)

    def test_line_outside_domain_skipped(self):
        assert extract_lines(single_neuron_network(1.0, 0.0, 10.0), 5.0) == []

    def test_degenerate_neuron_skipped(self):
        assert extract_lines(single_neuron_network(0.0, 0.0, 0.3), 5.0) == []

    def test_diagonal_through_corners(self):
        """y = x crosses two edges at each corner; the corners count once."""
        hits = clip_line(1.0, -1.0, 0.0, 5.0)
        assert hits is not None
        assert sorted(hits) == [(-5.0, -5.0), (5.0, 5.0)]

    def test_corner_touch_is_not_a_segment(self):
        # x + y = 10 only touches the corner (5, 5)
        assert clip_line(1.0, 1.0, -10.0, 5.0) is None

    def test_endpoints_inside_domain(self):
        net = DenseNetwork(2, [8], 1, seed=17)
        for seg in extract_lines(net, 3.0):
            for x, y in (seg.start, seg.end):
                assert -3.0 <= x <= 3.0 and -3.0 <= y <= 3.0

    def test_invalid_half_range(self, quadrant_network):
        assert extract_lines(quadrant_network, 0.0) == []


class TestPartitionSummary:
    """Test the combined summary."""

    def test_quadrant_summary(self, quadrant_network):
        summary = summarize_partition(quadrant_network, 5.0, 40, analytic_resolution=20)
        assert summary.sampled_regions == 4
        assert summary.analytic_regions == 4
        assert summary.boundary_lines == 2
        assert summary.domain_area == pytest.approx(100.0)
        assert summary.analytic_area == pytest.approx(100.0)
        assert 0.9 < summary.coverage <= 1.0

    def test_to_dict(self, quadrant_network):
        data = summarize_partition(quadrant_network, 5.0, 20).to_dict()
        assert data['sampled_patterns'] == 4
        assert set(data) >= {'sampled_regions', 'analytic_regions', 'coverage', 'boundary_lines'}
