"""
Asset assembly: one immutable FaceMeshAsset per run.

The assembler concatenates the frontal mesh and the head extension into
flat buffers, attaches UVs, vertex colors and morph targets, and applies
the optional detector pose. Frontal vertices keep indices 0..69 and the
extension follows, so neither the canonical topology nor the extension
triangles need remapping.
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from .coordinates import apply_pose, orthonormalize_rotation, pose_matrix_from_values, rotate_vectors
from .frame import BoundingFrame, CropRect
from .head import HeadExtension
from .landmarks import FRONTAL_VERTEX_COUNT
from .morph import MorphTargets
from .texture import SkinTone
from .topology import CANONICAL_TRIANGLES

logger = logging.getLogger(__name__)


def _frozen(array: NDArray, dtype) -> NDArray:
    result = np.array(array, dtype=dtype, copy=True)
    result.setflags(write=False)
    return result


@dataclass(frozen=True)
class FaceMeshAsset:
    """
    Complete animatable head.

    Attributes:
        positions: Base vertex positions, shape (V, 3)
        uvs: Texture coordinates, shape (V, 2); extension vertices get (0, 0)
        colors: RGB in [0, 1], shape (V, 3); white for textured frontal
            vertices, skin tone for the extension
        indices: Triangles, shape (T, 3), int32
        morph_target_names: ARKit channel names, one per target
        morph_targets: Absolute positions, shape (52, V, 3)
        skin_tone: Tone used for the extension
        frontal_vertex_count: Number of leading frontal vertices
        rotation: 3x3 rotation applied to the asset (None without pose)
    """
    positions: NDArray[np.float32]
    uvs: NDArray[np.float32]
    colors: NDArray[np.float32]
    indices: NDArray[np.int32]
    morph_target_names: Tuple[str, ...]
    morph_targets: NDArray[np.float32]
    skin_tone: SkinTone
    frontal_vertex_count: int = FRONTAL_VERTEX_COUNT
    rotation: Optional[NDArray[np.float64]] = None

    def __post_init__(self):
        for name in ('positions', 'uvs', 'colors', 'indices', 'morph_targets'):
            getattr(self, name).setflags(write=False)

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def triangle_count(self) -> int:
        return len(self.indices)

    @property
    def morph_relative(self) -> bool:
        return False

    def morph_deltas(self) -> NDArray[np.float32]:
        """Morph targets in the relative (glTF) convention: target - base."""
        return (self.morph_targets - self.positions[np.newaxis]).astype(np.float32)

    def evaluate(
        self,
        weights: Union[Mapping[str, float], Sequence[float], NDArray[np.float32]]
    ) -> NDArray[np.float32]:
        """
        Blend morph targets linearly.

        Channels with zero weight contribute nothing, so all-zero weights
        return the base positions exactly.

        Args:
            weights: Channel -> weight map, or one weight per target

        Returns:
            Deformed positions, shape (V, 3)
        """
        if isinstance(weights, Mapping):
            unknown = [name for name in weights if name not in self.morph_target_names]
            if unknown:
                raise ValueError(f"Unknown morph targets: {unknown}")
            vector = np.array(
                [float(weights.get(name, 0.0)) for name in self.morph_target_names]
            )
        else:
            vector = np.asarray(weights, dtype=np.float64)
            if vector.shape != (len(self.morph_target_names),):
                raise ValueError(
                    f"Expected {len(self.morph_target_names)} weights, got shape {vector.shape}"
                )

        result = self.positions.copy()
        for index in np.nonzero(vector)[0]:
            delta = self.morph_targets[index] - self.positions
            result += (vector[index] * delta).astype(np.float32)
        return result


class AssetAssembler:
    """
    Combine frontal mesh, head extension and morph targets into a FaceMeshAsset.

    Args:
        include_translation: Also apply the pose translation (rotation only
            by default, keeping the head centered at the origin)
    """

    def __init__(self, include_translation: bool = False):
        self.include_translation = include_translation

    def assemble(
        self,
        frontal_positions: NDArray[np.float32],
        frontal_uvs: NDArray[np.float32],
        extension: HeadExtension,
        morph_targets: MorphTargets,
        skin_tone: SkinTone,
        pose: Optional[Union[Sequence[float], NDArray[np.float64]]] = None
    ) -> FaceMeshAsset:
        """
        Assemble the asset.

        Args:
            frontal_positions: Model-space frontal vertices, shape (77, 3)
            frontal_uvs: UVs of the frontal vertices, shape (77, 2)
            extension: Back-of-head geometry starting at index 77
            morph_targets: Targets over frontal + extension vertices
            skin_tone: Sampled (or default) skin tone
            pose: Optional 16 row-major values or 4x4 pose matrix

        Returns:
            Read-only FaceMeshAsset
        """
        frontal_count = len(frontal_positions)
        if frontal_count != FRONTAL_VERTEX_COUNT:
            raise ValueError(
                f"Expected {FRONTAL_VERTEX_COUNT} frontal vertices, got {frontal_count}"
            )
        if len(frontal_uvs) != frontal_count:
            raise ValueError(
                f"UV count {len(frontal_uvs)} does not match {frontal_count} frontal vertices"
            )
        if not extension.is_empty and extension.start_index != frontal_count:
            raise ValueError(
                f"Extension starts at {extension.start_index}, expected {frontal_count}"
            )

        positions = np.vstack([
            np.asarray(frontal_positions, dtype=np.float32),
            extension.positions,
        ])
        vertex_count = len(positions)

        uvs = np.vstack([
            np.asarray(frontal_uvs, dtype=np.float32),
            np.zeros((extension.vertex_count, 2), dtype=np.float32),
        ])

        colors = np.vstack([
            np.ones((frontal_count, 3), dtype=np.float32),
            extension.colors,
        ])

        indices = np.vstack([CANONICAL_TRIANGLES, extension.triangles]).astype(np.int32)
        if indices.size and indices.max() >= vertex_count:
            raise ValueError(
                f"Triangle index {indices.max()} out of range for {vertex_count} vertices"
            )

        targets = np.asarray(morph_targets.targets, dtype=np.float32)
        if targets.shape[1:] != positions.shape:
            raise ValueError(
                f"Morph targets have shape {targets.shape}, expected (N, {vertex_count}, 3)"
            )

        rotation = None
        if pose is not None:
            pose = pose_matrix_from_values(pose)
            rotation = orthonormalize_rotation(pose[:3, :3])
            deltas = targets - positions[np.newaxis]
            positions = apply_pose(positions, pose, self.include_translation)
            # Deltas rotate with the head but never translate
            targets = positions[np.newaxis] + np.stack([
                rotate_vectors(delta, pose) for delta in deltas
            ])
            logger.debug(
                "Applied pose (translation %s)",
                "included" if self.include_translation else "ignored"
            )

        asset = FaceMeshAsset(
            positions=_frozen(positions, np.float32),
            uvs=_frozen(uvs, np.float32),
            colors=_frozen(colors, np.float32),
            indices=_frozen(indices, np.int32),
            morph_target_names=tuple(morph_targets.names),
            morph_targets=_frozen(targets, np.float32),
            skin_tone=skin_tone,
            frontal_vertex_count=frontal_count,
            rotation=rotation,
        )

        logger.debug(
            "Assembled asset: %d vertices, %d triangles, %d morph targets",
            asset.vertex_count, asset.triangle_count, len(asset.morph_target_names)
        )
        return asset


@dataclass(frozen=True)
class AssetBundle:
    """
    Everything one run hands to the encoder.

    Attributes:
        asset: The assembled FaceMeshAsset
        texture: Face texture, (H, W, 3) RGB or (H, W, 4) RGBA uint8
        coefficients: All 52 ARKit coefficients in [0, 1]
        crop_rect: Normalized crop the texture and UVs were built from
        frame: BoundingFrame of the run
    """
    asset: FaceMeshAsset
    texture: NDArray[np.uint8]
    coefficients: Mapping[str, float]
    crop_rect: CropRect
    frame: BoundingFrame
