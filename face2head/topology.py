"""
Canonical frontal topology over the OpenPose Face 70 layout plus the
forehead arc.

The triangle table is static: it is built once at import from fixed index
chains and validated before anything else can use it. Strips are zippered
between pairs of chains that run side by side across the face:

    forehead arc / brows             (forehead band)
    brows        / upper eyelids     (brow band)
    lower lids   / nose              (cheek bands, one per side)
    nose bottom  / upper lip + jaw   (upper-lip band)
    lower lip    / jaw               (chin band)
    outer lip    / inner lip         (lip ring)

Each eye is closed by a fan to its pupil. The inner lip loop is left open
(the mouth opening), so the open boundary of the table is the silhouette
contour plus the inner lip loop.

All triangles are wound counter-clockwise seen from +Z in model space.
"""

from collections import Counter
from typing import Dict, Iterable, List, Sequence, Set, Tuple

import numpy as np
from numpy.typing import NDArray

from .landmarks import (
    FOREHEAD,
    FRONTAL_VERTEX_COUNT,
    INNER_LIP,
    LEFT_EYE,
    LEFT_PUPIL,
    RIGHT_EYE,
    RIGHT_PUPIL,
)

Edge = Tuple[int, int]


# Outer boundary of the frontal mesh: over the forehead arc from the right
# temple to the left temple, then down and back along the jaw. Clockwise
# seen from +Z, so seam triangles built on it face outward.
SILHOUETTE_CONTOUR = (0,) + FOREHEAD + (16,) + tuple(range(15, 0, -1))


# (upper/left chain, lower/right chain) pairs, each chain ordered along the
# direction of travel. The first chain must lie to the left of travel.
_STRIPS = (
    # Forehead band: forehead arc over brows
    ((0,) + FOREHEAD + (16,),
     (0, 17, 18, 19, 20, 21, 22, 23, 24, 25, 26, 16)),
    # Brow band: brows over upper eyelids
    ((0, 17, 18, 19, 20, 21, 22, 23, 24, 25, 26, 16),
     (0, 36, 37, 38, 39, 27, 42, 43, 44, 45, 16)),
    # Right cheek: lower lid over jaw and nose, ending at the bridge top
    ((0, 36, 41, 40, 39, 27),
     (1, 31, 32, 33, 30, 29, 28, 27)),
    # Left cheek: mirrors the right one, travelling down from the bridge top
    ((27, 42, 47, 46, 45, 16),
     (27, 28, 29, 30, 33, 34, 35, 15)),
    # Upper-lip band: nose bottom over the upper outer lip
    ((1, 31, 32, 33, 34, 35, 15),
     (1, 2, 3, 48, 49, 50, 51, 52, 53, 54, 13, 14, 15)),
    # Chin band: lower outer lip over the jaw
    ((3, 48, 59, 58, 57, 56, 55, 54, 13),
     tuple(range(3, 14))),
    # Lip ring: outer loop around the inner loop
    (tuple(range(48, 60)) + (48,),
     tuple(range(60, 68)) + (60,)),
)


def zipper(upper: Sequence[int], lower: Sequence[int]) -> List[Tuple[int, int, int]]:
    """
    Triangulate the band between two chains.

    Both chains are walked in parallel by their index fraction; at every
    step the chain that lags behind advances. Triangles whose corners
    repeat an index (shared chain endpoints) are dropped.

    Args:
        upper: Chain lying to the left of the direction of travel
        lower: Chain lying to the right of the direction of travel

    Returns:
        Counter-clockwise triangles (seen with ``upper`` on the left)
    """
    m = len(upper) - 1
    n = len(lower) - 1
    i = j = 0
    triangles = []

    while i < m or j < n:
        advance_upper = j == n or (i < m and (i + 1) * n <= (j + 1) * m)
        if advance_upper:
            tri = (upper[i], lower[j], upper[i + 1])
            i += 1
        else:
            tri = (upper[i], lower[j], lower[j + 1])
            j += 1

        if len(set(tri)) == 3:
            triangles.append(tri)

    return triangles


def fan(loop: Sequence[int], center: int) -> List[Tuple[int, int, int]]:
    """
    Close a loop with triangles around a center vertex.

    The loop runs clockwise seen from +Z (the OpenPose eye order), so each
    triangle is emitted as (next, current, center).
    """
    count = len(loop)
    return [(loop[(k + 1) % count], loop[k], center) for k in range(count)]


def boundary_edges(triangles: Iterable[Sequence[int]]) -> Set[Edge]:
    """Undirected edges used by exactly one triangle."""
    counts = edge_counts(triangles)
    return {edge for edge, count in counts.items() if count == 1}


def edge_counts(triangles: Iterable[Sequence[int]]) -> Dict[Edge, int]:
    """Number of triangles using each undirected edge."""
    counts: Counter = Counter()
    for a, b, c in triangles:
        for u, v in ((a, b), (b, c), (c, a)):
            counts[(min(u, v), max(u, v))] += 1
    return dict(counts)


def loop_edges(loop: Sequence[int]) -> Set[Edge]:
    """Undirected edges of a closed loop."""
    count = len(loop)
    return {
        (min(loop[k], loop[(k + 1) % count]), max(loop[k], loop[(k + 1) % count]))
        for k in range(count)
    }


def validate_topology(
    triangles: NDArray[np.int32],
    vertex_count: int,
    expected_boundary: Set[Edge]
) -> None:
    """
    Check a triangle table for structural problems.

    Raises:
        ValueError: On out-of-range or degenerate triangles, edges shared
            by more than two triangles, inconsistent winding, or a boundary
            that differs from ``expected_boundary``
    """
    if triangles.ndim != 2 or triangles.shape[1] != 3:
        raise ValueError(f"Triangle table must have shape (T, 3), got {triangles.shape}")

    if triangles.size and (triangles.min() < 0 or triangles.max() >= vertex_count):
        raise ValueError(f"Triangle index outside [0, {vertex_count})")

    for tri in triangles:
        if len(set(tri.tolist())) != 3:
            raise ValueError(f"Degenerate triangle {tuple(tri.tolist())}")

    directed: Set[Edge] = set()
    for a, b, c in triangles.tolist():
        for edge in ((a, b), (b, c), (c, a)):
            if edge in directed:
                raise ValueError(f"Directed edge {edge} used twice (inconsistent winding)")
            directed.add(edge)

    counts = edge_counts(triangles.tolist())
    overused = [edge for edge, count in counts.items() if count > 2]
    if overused:
        raise ValueError(f"Non-manifold edges: {sorted(overused)[:5]}")

    boundary = {edge for edge, count in counts.items() if count == 1}
    if boundary != expected_boundary:
        missing = sorted(expected_boundary - boundary)[:5]
        extra = sorted(boundary - expected_boundary)[:5]
        raise ValueError(
            f"Unexpected open boundary (missing {missing}, extra {extra})"
        )


def _build_canonical_triangles() -> NDArray[np.int32]:
    triangles = []
    for upper, lower in _STRIPS:
        triangles.extend(zipper(upper, lower))
    triangles.extend(fan(RIGHT_EYE, RIGHT_PUPIL))
    triangles.extend(fan(LEFT_EYE, LEFT_PUPIL))

    table = np.array(triangles, dtype=np.int32)
    validate_topology(
        table,
        FRONTAL_VERTEX_COUNT,
        loop_edges(SILHOUETTE_CONTOUR) | loop_edges(INNER_LIP),
    )
    table.setflags(write=False)
    return table


CANONICAL_TRIANGLES = _build_canonical_triangles()
CANONICAL_TRIANGLE_COUNT = len(CANONICAL_TRIANGLES)
