"""
Back-of-head synthesis.

The frontal mesh is an open shell. HeadExtensionSynthesizer closes it by
sweeping the silhouette contour backwards in a series of shrinking rings
and capping the last ring with a single apex vertex. The result is a rough
ellipsoidal skull, colored with the sampled skin tone.

Vertex layout of the extension (indices relative to start_index):

    ring 0:   0 .. K-1
    ring 1:   K .. 2K-1
    ...
    ring N-1: (N-1)K .. NK-1
    apex:     NK
"""

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from .landmarks import FRONTAL_VERTEX_COUNT
from .texture import SkinTone
from .topology import SILHOUETTE_CONTOUR

logger = logging.getLogger(__name__)


FALLOFF_CURVES = ("linear", "cosine")


@dataclass
class HeadExtension:
    """
    Generated back-of-head geometry.

    Attributes:
        positions: Model-space vertices, shape (M, 3)
        colors: Per-vertex RGB in [0, 1], shape (M, 3)
        triangles: Triangles in global vertex indices, shape (T, 3)
        start_index: Global index of the first generated vertex
        ring_count: Number of rings (0 for an empty extension)
        ring_size: Vertices per ring
    """
    positions: NDArray[np.float32]
    colors: NDArray[np.float32]
    triangles: NDArray[np.int32]
    start_index: int
    ring_count: int
    ring_size: int

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def is_empty(self) -> bool:
        return self.vertex_count == 0

    @classmethod
    def empty(cls, start_index: int) -> "HeadExtension":
        return cls(
            positions=np.zeros((0, 3), dtype=np.float32),
            colors=np.zeros((0, 3), dtype=np.float32),
            triangles=np.zeros((0, 3), dtype=np.int32),
            start_index=start_index,
            ring_count=0,
            ring_size=0,
        )


def falloff(curve: str, t: NDArray[np.float64]):
    """
    Lateral-shrink and depth profiles for layer parameters t in [0, 1].

    Returns:
        (shrink, depth) arrays, both 0 at t=0 and 1 at t=1
    """
    if curve == "linear":
        return t.copy(), t.copy()
    if curve == "cosine":
        return 1.0 - np.cos(t * np.pi / 2.0), np.sin(t * np.pi / 2.0)
    raise ValueError(f"Unknown falloff curve '{curve}'. Choose from {FALLOFF_CURVES}")


def band_triangles(
    inner: Sequence[int],
    outer: Sequence[int]
) -> NDArray[np.int32]:
    """
    Close the band between two loops of equal length.

    Each quad (i1, i2, o2, o1) becomes (i1, i2, o1) and (i2, o2, o1), which
    faces outward when the loops run clockwise seen from the front.
    """
    count = len(inner)
    triangles = []
    for k in range(count):
        i1, i2 = inner[k], inner[(k + 1) % count]
        o1, o2 = outer[k], outer[(k + 1) % count]
        triangles.append((i1, i2, o1))
        triangles.append((i2, o2, o1))
    return np.array(triangles, dtype=np.int32).reshape(-1, 3)


class HeadExtensionSynthesizer:
    """
    Extrude the frontal silhouette into a closed head.

    Layer i of N uses t = i / (N - 1). Each layer is the contour scaled
    laterally, lifted (more at the top of the contour), and pushed back:

        s = 1 - (1 - min_scale) * shrink(t)
        lift = max_lift * shrink(t)
        z = -(start_depth + (max_depth - start_depth) * depth(t))

    Args:
        layers: Number of rings (N >= 1)
        start_depth: Depth of the first ring behind the face plane
        max_depth: Depth of the last ring
        min_scale: Lateral scale of the last ring (0 < min_scale <= 1)
        max_lift: Upward lift of the top of the last ring
        apex_offset: Extra depth of the apex behind the last ring
        apex_lift: Height of the apex above the last ring's mean height
        falloff: "cosine" (ellipsoid-like) or "linear"
    """

    def __init__(
        self,
        layers: int = 6,
        start_depth: float = 0.4,
        max_depth: float = 1.4,
        min_scale: float = 0.45,
        max_lift: float = 0.3,
        apex_offset: float = 0.15,
        apex_lift: float = 0.1,
        falloff: str = "cosine"
    ):
        if layers < 1:
            raise ValueError(f"layers must be >= 1, got {layers}")
        if not 0.0 < min_scale <= 1.0:
            raise ValueError(f"min_scale must be in (0, 1], got {min_scale}")
        if not 0.0 <= start_depth < max_depth:
            raise ValueError(
                f"Need 0 <= start_depth < max_depth, got {start_depth}, {max_depth}"
            )
        if max_lift < 0.0:
            raise ValueError(f"max_lift must be >= 0, got {max_lift}")
        if falloff not in FALLOFF_CURVES:
            raise ValueError(f"Unknown falloff curve '{falloff}'. Choose from {FALLOFF_CURVES}")

        self.layers = int(layers)
        self.start_depth = float(start_depth)
        self.max_depth = float(max_depth)
        self.min_scale = float(min_scale)
        self.max_lift = float(max_lift)
        self.apex_offset = float(apex_offset)
        self.apex_lift = float(apex_lift)
        self.falloff = falloff

    def layer_parameters(self):
        """
        Per-layer (scale, lift, z) arrays, each of length N.
        """
        if self.layers == 1:
            t = np.zeros(1, dtype=np.float64)
        else:
            t = np.arange(self.layers, dtype=np.float64) / (self.layers - 1)

        shrink, depth = falloff(self.falloff, t)
        scale = 1.0 - (1.0 - self.min_scale) * shrink
        lift = self.max_lift * shrink
        z = -(self.start_depth + (self.max_depth - self.start_depth) * depth)
        return scale, lift, z

    def synthesize(
        self,
        frontal_positions: NDArray[np.float32],
        skin_tone: SkinTone,
        contour: Sequence[int] = SILHOUETTE_CONTOUR,
        start_index: int = FRONTAL_VERTEX_COUNT
    ) -> HeadExtension:
        """
        Build the back-of-head extension.

        Args:
            frontal_positions: Model-space frontal vertices, shape (V, 3)
            skin_tone: Color for every generated vertex
            contour: Frontal indices of the open silhouette, clockwise
                seen from +Z; a trailing copy of the first index is ignored
            start_index: Global index of the first generated vertex

        Returns:
            HeadExtension; empty if the contour has fewer than 3 points

        Raises:
            ValueError: If an index appears twice (other than the closing copy)
        """
        contour = list(contour)
        if len(contour) > 1 and contour[0] == contour[-1]:
            contour = contour[:-1]

        if len(set(contour)) < 3:
            logger.warning(
                "Silhouette contour has %d distinct points; skipping head extension",
                len(set(contour))
            )
            return HeadExtension.empty(start_index)

        if len(set(contour)) != len(contour):
            repeated = sorted({index for index in contour if contour.count(index) > 1})
            raise ValueError(
                f"Silhouette contour repeats indices {repeated}; "
                f"only a trailing copy of the first index is allowed"
            )

        outline = np.asarray(frontal_positions, dtype=np.float64)[contour]
        ring_size = len(contour)

        # Relative height of each contour point: 1 at the top, 0 at the bottom
        y_min, y_max = outline[:, 1].min(), outline[:, 1].max()
        if y_max - y_min > 1e-9:
            weights = (outline[:, 1] - y_min) / (y_max - y_min)
        else:
            weights = np.zeros(ring_size, dtype=np.float64)

        scales, lifts, depths = self.layer_parameters()

        rings = []
        for scale, lift, z in zip(scales, lifts, depths):
            ring = np.empty((ring_size, 3), dtype=np.float64)
            ring[:, 0] = outline[:, 0] * scale
            ring[:, 1] = outline[:, 1] + lift * weights
            ring[:, 2] = z
            rings.append(ring)

        last = rings[-1]
        apex = np.array([
            0.0,
            last[:, 1].mean() + self.apex_lift,
            -(self.max_depth + self.apex_offset),
        ])

        positions = np.vstack(rings + [apex[np.newaxis]]).astype(np.float32)

        ring_indices = [
            [start_index + i * ring_size + k for k in range(ring_size)]
            for i in range(self.layers)
        ]
        apex_index = start_index + self.layers * ring_size

        # Seam, then ring to ring, then the apex cap
        triangles = [band_triangles(contour, ring_indices[0])]
        for i in range(self.layers - 1):
            triangles.append(band_triangles(ring_indices[i], ring_indices[i + 1]))

        last_ring = ring_indices[-1]
        cap = [
            (last_ring[k], last_ring[(k + 1) % ring_size], apex_index)
            for k in range(ring_size)
        ]
        triangles.append(np.array(cap, dtype=np.int32))

        triangles = np.vstack(triangles).astype(np.int32)
        colors = np.tile(
            np.array(skin_tone.rgb, dtype=np.float32), (len(positions), 1)
        )

        logger.debug(
            "Head extension: %d rings x %d, %d vertices, %d triangles (%s falloff)",
            self.layers, ring_size, len(positions), len(triangles), self.falloff
        )

        return HeadExtension(
            positions=positions,
            colors=colors,
            triangles=triangles,
            start_index=start_index,
            ring_count=self.layers,
            ring_size=ring_size,
        )
