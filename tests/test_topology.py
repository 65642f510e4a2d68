"""
Tests for the canonical frontal topology.
"""

import numpy as np
import pytest

from face2head.frame import BoundingFrame
from face2head.landmarks import (
    FOREHEAD,
    FRONTAL_VERTEX_COUNT,
    INNER_LIP,
    LEFT_BROW,
    LEFT_EYE,
    LEFT_PUPIL,
    RIGHT_BROW,
    RIGHT_EYE,
    RIGHT_PUPIL,
    canonical_landmarks,
)
from face2head.topology import (
    CANONICAL_TRIANGLES,
    CANONICAL_TRIANGLE_COUNT,
    SILHOUETTE_CONTOUR,
    boundary_edges,
    edge_counts,
    fan,
    loop_edges,
    validate_topology,
    zipper,
)


def _signed_areas(triangles, positions):
    a = positions[triangles[:, 0], :2]
    b = positions[triangles[:, 1], :2]
    c = positions[triangles[:, 2], :2]
    ab = b - a
    ac = c - a
    return 0.5 * (ab[:, 0] * ac[:, 1] - ab[:, 1] * ac[:, 0])


class TestCanonicalTriangles:
    """Test the static triangle table."""

    def test_triangle_count(self):
        assert CANONICAL_TRIANGLE_COUNT == 122
        assert CANONICAL_TRIANGLES.shape == (122, 3)

    def test_indices_in_range(self):
        assert CANONICAL_TRIANGLES.min() >= 0
        assert CANONICAL_TRIANGLES.max() < FRONTAL_VERTEX_COUNT

    def test_every_vertex_used(self):
        """All 77 landmarks, pupils and forehead included, belong to some triangle."""
        used = set(CANONICAL_TRIANGLES.reshape(-1).tolist())
        assert used == set(range(FRONTAL_VERTEX_COUNT))

    def test_no_degenerate_triangles(self):
        for tri in CANONICAL_TRIANGLES.tolist():
            assert len(set(tri)) == 3

    def test_read_only(self):
        with pytest.raises(ValueError):
            CANONICAL_TRIANGLES[0, 0] = 1

    def test_boundary_is_silhouette_and_mouth(self):
        """Open edges are the outer silhouette plus the mouth opening."""
        expected = loop_edges(SILHOUETTE_CONTOUR) | loop_edges(INNER_LIP)
        assert boundary_edges(CANONICAL_TRIANGLES.tolist()) == expected

    def test_manifold(self):
        counts = edge_counts(CANONICAL_TRIANGLES.tolist())
        assert max(counts.values()) == 2

    def test_consistent_winding(self):
        """No directed edge appears twice."""
        directed = []
        for a, b, c in CANONICAL_TRIANGLES.tolist():
            directed.extend([(a, b), (b, c), (c, a)])
        assert len(directed) == len(set(directed))

    def test_faces_viewer(self):
        """On the neutral face the table is wound counter-clockwise from +Z."""
        lm = canonical_landmarks()
        positions = BoundingFrame.from_landmarks(lm).normalize(lm)
        areas = _signed_areas(CANONICAL_TRIANGLES, positions)
        assert areas.sum() > 0.0

    def test_eye_fans_counter_clockwise(self):
        lm = canonical_landmarks()
        positions = BoundingFrame.from_landmarks(lm).normalize(lm)
        for eye, pupil in ((RIGHT_EYE, RIGHT_PUPIL), (LEFT_EYE, LEFT_PUPIL)):
            tris = np.array(fan(eye, pupil), dtype=np.int32)
            assert np.all(_signed_areas(tris, positions) > 0.0)

    def test_silhouette_contour(self):
        assert len(SILHOUETTE_CONTOUR) == 24
        assert len(set(SILHOUETTE_CONTOUR)) == 24
        assert SILHOUETTE_CONTOUR[0] == 0

    def test_contour_runs_over_forehead(self):
        """The outline crosses the forehead arc, not the brows."""
        assert SILHOUETTE_CONTOUR[1:9] == FOREHEAD + (16,)
        assert not set(RIGHT_BROW + LEFT_BROW) & set(SILHOUETTE_CONTOUR)

    def test_contour_reaches_top_of_face(self):
        lm = canonical_landmarks()
        assert lm[:, 1].argmin() in SILHOUETTE_CONTOUR

    def test_forehead_band_faces_viewer(self):
        lm = canonical_landmarks()
        positions = BoundingFrame.from_landmarks(lm).normalize(lm)
        touches = np.isin(CANONICAL_TRIANGLES, FOREHEAD).any(axis=1)
        assert touches.sum() == 17
        assert np.all(_signed_areas(CANONICAL_TRIANGLES[touches], positions) > 0.0)

    def test_brow_edges_interior(self):
        """Brow chain edges are shared by the forehead and brow bands."""
        counts = edge_counts(CANONICAL_TRIANGLES.tolist())
        brow_chain = (0,) + RIGHT_BROW + LEFT_BROW + (16,)
        for u, v in zip(brow_chain, brow_chain[1:]):
            assert counts[(min(u, v), max(u, v))] == 2


class TestZipper:
    """Test strip triangulation between two chains."""

    def test_equal_chains(self):
        """Two chains of k points give 2(k-1) triangles."""
        tris = zipper([0, 1, 2], [3, 4, 5])
        assert len(tris) == 4

    def test_shared_endpoints_dropped(self):
        """Chains meeting at both ends produce no degenerate triangles."""
        tris = zipper([0, 1, 2, 9], [0, 3, 9])
        for tri in tris:
            assert len(set(tri)) == 3
        assert len(tris) == 3

    def test_every_chain_edge_used(self):
        upper, lower = [0, 1, 2, 3], [4, 5]
        edges = {tuple(sorted(e)) for tri in zipper(upper, lower)
                 for e in ((tri[0], tri[1]), (tri[1], tri[2]), (tri[2], tri[0]))}
        for chain in (upper, lower):
            for u, v in zip(chain, chain[1:]):
                assert (min(u, v), max(u, v)) in edges


class TestFan:
    """Test loop closing fans."""

    def test_one_triangle_per_loop_edge(self):
        tris = fan([1, 2, 3, 4], 9)
        assert len(tris) == 4
        assert all(tri[2] == 9 for tri in tris)

    def test_wraps_around(self):
        tris = fan([1, 2, 3], 9)
        assert (1, 3, 9) in tris


class TestValidateTopology:
    """Test structural validation of triangle tables."""

    def _square(self):
        return np.array([[0, 1, 2], [0, 2, 3]], dtype=np.int32)

    def test_accepts_valid_table(self):
        validate_topology(self._square(), 4, loop_edges([0, 1, 2, 3]))

    def test_rejects_out_of_range(self):
        with pytest.raises(ValueError, match="outside"):
            validate_topology(self._square(), 3, loop_edges([0, 1, 2, 3]))

    def test_rejects_degenerate(self):
        table = np.array([[0, 1, 1]], dtype=np.int32)
        with pytest.raises(ValueError, match="Degenerate"):
            validate_topology(table, 4, set())

    def test_rejects_flipped_triangle(self):
        table = np.array([[0, 1, 2], [0, 3, 2]], dtype=np.int32)
        with pytest.raises(ValueError, match="winding"):
            validate_topology(table, 4, loop_edges([0, 1, 2, 3]))

    def test_rejects_unexpected_boundary(self):
        with pytest.raises(ValueError, match="boundary"):
            validate_topology(self._square(), 4, loop_edges([0, 1, 2]))

    def test_rejects_bad_shape(self):
        with pytest.raises(ValueError, match="shape"):
            validate_topology(np.zeros((2, 4), dtype=np.int32), 4, set())
