"""
Bounding frame: the single normalization shared by geometry, crop and UVs.

A BoundingFrame is computed once per run from the LandmarkSet. It maps
landmark space to model space and defines the square texture crop, so the
UV of every frontal vertex lands exactly where that landmark sits inside
the extracted texture.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from numpy.typing import NDArray

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CropRect:
    """Square crop in normalized image units (top-left corner + side)."""
    x0: float
    y0: float
    size: float

    def to_pixels(self, width: int, height: int) -> Tuple[float, float, float, float]:
        """
        Convert to a pixel rectangle.

        The x axis scales with the image width and the y axis with the
        image height, matching how normalized landmarks were produced.

        Returns:
            (x, y, w, h) in pixels
        """
        return (
            self.x0 * width,
            self.y0 * height,
            self.size * width,
            self.size * height,
        )


@dataclass(frozen=True)
class BoundingFrame:
    """
    Axis-aligned bounds of a LandmarkSet plus the derived scales.

    Attributes:
        center: Midpoint of the per-axis bounds (cx, cy, cz)
        scale_x: Width of the landmark bounds
        scale_y: Height of the landmark bounds
        depth_scale: Divisor for z, max(scale_x, scale_y) * depth_aspect
        padding: Fractional margin added around the face for the crop
    """
    center: Tuple[float, float, float]
    scale_x: float
    scale_y: float
    depth_scale: float
    padding: float = 0.2

    @classmethod
    def from_landmarks(
        cls,
        landmarks: NDArray[np.float32],
        padding: float = 0.2,
        depth_aspect: float = 2.0,
        min_extent: float = 1e-6
    ) -> "BoundingFrame":
        """
        Compute the frame from a LandmarkSet.

        Args:
            landmarks: (N, 3) landmarks in normalized image space
            padding: Crop margin as a fraction of the larger extent
            depth_aspect: Ratio between depth_scale and the larger extent
            min_extent: Replacement for zero-width extents

        Returns:
            BoundingFrame for this run
        """
        landmarks = np.asarray(landmarks, dtype=np.float64)
        if landmarks.ndim != 2 or landmarks.shape[1] != 3 or len(landmarks) == 0:
            raise ValueError(
                f"Expected landmarks shape (N, 3), got {landmarks.shape}"
            )

        mins = landmarks.min(axis=0)
        maxs = landmarks.max(axis=0)
        center = (mins + maxs) / 2.0

        scale_x = float(maxs[0] - mins[0])
        scale_y = float(maxs[1] - mins[1])

        if scale_x <= min_extent:
            logger.warning(
                "Degenerate landmark width %.3g, using %.3g", scale_x, min_extent
            )
            scale_x = min_extent
        if scale_y <= min_extent:
            logger.warning(
                "Degenerate landmark height %.3g, using %.3g", scale_y, min_extent
            )
            scale_y = min_extent

        depth_scale = max(scale_x, scale_y) * depth_aspect

        frame = cls(
            center=(float(center[0]), float(center[1]), float(center[2])),
            scale_x=scale_x,
            scale_y=scale_y,
            depth_scale=depth_scale,
            padding=padding,
        )
        logger.debug(
            "Bounding frame: center=(%.4f, %.4f, %.4f) sx=%.4f sy=%.4f depth=%.4f",
            *frame.center, scale_x, scale_y, depth_scale
        )
        return frame

    def normalize(self, points: NDArray[np.float32]) -> NDArray[np.float32]:
        """
        Map landmark-space points to model space.

        x and y span [-1, 1] over the landmark bounds; y and z are flipped
        so +y is up and +z points toward the viewer.

        Args:
            points: (N, 3) landmark-space points

        Returns:
            (N, 3) float32 model-space points
        """
        points = np.asarray(points, dtype=np.float64)
        cx, cy, cz = self.center

        result = np.empty(points.shape, dtype=np.float64)
        result[:, 0] = (points[:, 0] - cx) / self.scale_x * 2.0
        result[:, 1] = -(points[:, 1] - cy) / self.scale_y * 2.0
        result[:, 2] = -(points[:, 2] - cz) / self.depth_scale * 2.0
        return result.astype(np.float32)

    def crop_rect(self) -> CropRect:
        """Square crop centered on the face, padded on every side."""
        size = max(self.scale_x, self.scale_y) * (1.0 + self.padding)
        cx, cy, _ = self.center
        return CropRect(x0=cx - size / 2.0, y0=cy - size / 2.0, size=size)

    def uvs(self, points: NDArray[np.float32]) -> NDArray[np.float32]:
        """
        Texture coordinates of landmark-space points inside the crop.

        The origin is the top-left corner of the texture (glTF convention):
        v grows downward with image rows, so a texel is read at
        (u * width, v * height) of the extracted texture.

        Args:
            points: (N, 2) or (N, 3) landmark-space points

        Returns:
            (N, 2) float32 UVs
        """
        points = np.asarray(points, dtype=np.float64)
        rect = self.crop_rect()

        uvs = np.empty((len(points), 2), dtype=np.float64)
        uvs[:, 0] = (points[:, 0] - rect.x0) / rect.size
        uvs[:, 1] = (points[:, 1] - rect.y0) / rect.size
        return uvs.astype(np.float32)
