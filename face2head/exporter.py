"""
Export of asset bundles.

This module writes the per-run AssetBundle in the layout the binary glTF
encoder consumes:
- <name>.npz: geometry, UVs (top-left origin, as in glTF), colors, indices
  and morph targets
- <name>_texture.png: the face texture
- <name>_blendshapes.json: the 52 coefficients (plus Blender shape-key list)
- <name>.ply: vertex-colored base mesh for quick previews (optional)

Export never modifies the bundle, so a failed export can simply be retried.
"""

import json
import logging
from pathlib import Path
from typing import List

import numpy as np
from numpy.typing import NDArray

from .assembler import AssetBundle, FaceMeshAsset
from .blendshapes import to_blender_format
from .coordinates import rotation_to_quaternion_wxyz

logger = logging.getLogger(__name__)


# UVs put (0, 0) at the first texel of the first PNG row
UV_ORIGIN = "top_left"


class ExportError(RuntimeError):
    """Raised when the bundle cannot be written."""


def asset_to_trimesh(asset: FaceMeshAsset):
    """
    Build a trimesh.Trimesh of the base mesh with vertex colors.

    Returns:
        trimesh.Trimesh instance

    Note:
        Requires trimesh library to be installed.
    """
    try:
        import trimesh
    except ImportError:
        raise ImportError(
            "trimesh is required for mesh export. "
            "Install with: pip install trimesh"
        )

    colors = np.clip(np.round(asset.colors * 255.0), 0, 255).astype(np.uint8)
    return trimesh.Trimesh(
        vertices=np.array(asset.positions),
        faces=np.array(asset.indices),
        vertex_colors=colors,
        process=False  # Keep vertex order; indices must match morph targets
    )


class AssetExporter:
    """
    Write an AssetBundle to a directory.

    Args:
        bundle: Bundle produced by HeadPipeline.run()
        name: Base name of the exported files
        morph_convention: "relative" (target - base, as glTF expects) or
            "absolute" (target positions)
        preview_ply: Also write a PLY preview of the base mesh
    """

    def __init__(
        self,
        bundle: AssetBundle,
        name: str = "head",
        morph_convention: str = "relative",
        preview_ply: bool = True
    ):
        if morph_convention not in ("relative", "absolute"):
            raise ValueError(
                f"Unknown morph convention '{morph_convention}'. "
                f"Use 'relative' or 'absolute'"
            )

        self.bundle = bundle
        self.name = name
        self.morph_convention = morph_convention
        self.preview_ply = preview_ply

    def export(self, output_dir: Path) -> List[Path]:
        """
        Export the bundle to a directory.

        Args:
            output_dir: Directory to write files to (will be created if needed)

        Returns:
            List of written paths

        Raises:
            ExportError: If any file cannot be written
        """
        output_dir = Path(output_dir)

        try:
            output_dir.mkdir(parents=True, exist_ok=True)

            paths = [
                self._export_geometry(output_dir / f"{self.name}.npz"),
                self._export_texture(output_dir / f"{self.name}_texture.png"),
                self._export_coefficients(output_dir / f"{self.name}_blendshapes.json"),
            ]
            if self.preview_ply:
                paths.append(self._export_ply(output_dir / f"{self.name}.ply"))
        except ExportError:
            raise
        except (OSError, ValueError) as e:
            raise ExportError(f"Failed to export asset to {output_dir}: {e}") from e

        logger.debug("Exported %d files to %s", len(paths), output_dir)
        return paths

    def _export_geometry(self, filepath: Path) -> Path:
        """
        Export the mesh buffers as a compressed .npz.

        Arrays:
            positions (V, 3), uvs (V, 2), colors (V, 3), indices (T, 3),
            morph_targets (52, V, 3), morph_target_names (52,),
            morph_convention, uv_origin, skin_tone (3,), skin_tone_sampled,
            frontal_vertex_count, rotation_wxyz (4,) when a pose was applied
        """
        asset = self.bundle.asset

        if self.morph_convention == "relative":
            morph_targets = asset.morph_deltas()
        else:
            morph_targets = np.array(asset.morph_targets)

        arrays = {
            'positions': np.array(asset.positions),
            'uvs': np.array(asset.uvs),
            'colors': np.array(asset.colors),
            'indices': np.array(asset.indices),
            'morph_targets': morph_targets,
            'morph_target_names': np.array(asset.morph_target_names),
            'morph_convention': np.array(self.morph_convention),
            'uv_origin': np.array(UV_ORIGIN),
            'skin_tone': np.array(asset.skin_tone.rgb, dtype=np.float32),
            'skin_tone_sampled': np.array(asset.skin_tone.sampled),
            'frontal_vertex_count': np.array(asset.frontal_vertex_count),
        }
        if asset.rotation is not None:
            arrays['rotation_wxyz'] = rotation_to_quaternion_wxyz(asset.rotation)

        np.savez_compressed(filepath, **arrays)
        return filepath

    def _export_texture(self, filepath: Path) -> Path:
        """
        Save the texture with OpenCV.

        Note:
            OpenCV expects BGR(A) order, so RGB(A) is converted first.
        """
        try:
            import cv2
        except ImportError:
            raise ImportError(
                "opencv-python is required for texture export. "
                "Install with: pip install opencv-python"
            )

        texture: NDArray[np.uint8] = self.bundle.texture
        if texture.shape[2] == 4:
            texture_bgr = cv2.cvtColor(texture, cv2.COLOR_RGBA2BGRA)
        elif texture.shape[2] == 3:
            texture_bgr = cv2.cvtColor(texture, cv2.COLOR_RGB2BGR)
        else:
            raise ValueError(f"Unexpected number of channels: {texture.shape[2]}")

        if not cv2.imwrite(str(filepath), texture_bgr):
            raise ExportError(f"OpenCV could not write texture to {filepath}")
        return filepath

    def _export_coefficients(self, filepath: Path) -> Path:
        """Export the coefficient map plus the Blender shape-key list."""
        coefficients = {
            name: float(value) for name, value in self.bundle.coefficients.items()
        }
        blender = to_blender_format(coefficients)

        data = {
            'version': blender['version'],
            'blendshapes': coefficients,
            'blender': blender['blendshapes'],
        }

        with open(filepath, 'w') as f:
            json.dump(data, f, indent=2)
        return filepath

    def _export_ply(self, filepath: Path) -> Path:
        """Export the base mesh with vertex colors as PLY."""
        mesh = asset_to_trimesh(self.bundle.asset)
        mesh.export(str(filepath), file_type='ply')
        return filepath
