"""
Tests for asset bundle export.
"""

import json

import numpy as np
import pytest

from face2head.config import TextureConfig
from face2head.exporter import AssetExporter, ExportError, asset_to_trimesh
from face2head.landmarks import FRONTAL_VERTEX_COUNT, DetectionResult, canonical_landmarks
from face2head.pipeline import HeadPipeline

cv2 = pytest.importorskip("cv2")


def _pose():
    pose = np.eye(4)
    pose[:3, :3] = [[0.0, 0.0, 1.0], [0.0, 1.0, 0.0], [-1.0, 0.0, 0.0]]
    return pose


@pytest.fixture
def bundle():
    image = np.full((200, 200, 3), 150, dtype=np.uint8)
    detection = DetectionResult(
        landmarks=np.array(canonical_landmarks()),
        blendshapes={"jawOpen": 0.25},
    )
    return HeadPipeline(texture=TextureConfig(size=32)).run(image, detection)


class TestGeometryExport:
    """Test the .npz geometry file."""

    def test_relative_targets(self, bundle, tmp_path):
        AssetExporter(bundle, preview_ply=False).export(tmp_path)

        with np.load(tmp_path / "head.npz") as data:
            assert str(data["morph_convention"]) == "relative"
            np.testing.assert_allclose(data["morph_targets"], bundle.asset.morph_deltas())
            np.testing.assert_array_equal(data["positions"], bundle.asset.positions)
            np.testing.assert_array_equal(data["indices"], bundle.asset.indices)
            assert list(data["morph_target_names"]) == list(bundle.asset.morph_target_names)
            assert int(data["frontal_vertex_count"]) == FRONTAL_VERTEX_COUNT
            assert str(data["uv_origin"]) == "top_left"
            assert "rotation_wxyz" not in data.files

    def test_absolute_targets(self, bundle, tmp_path):
        AssetExporter(bundle, morph_convention="absolute", preview_ply=False).export(tmp_path)

        with np.load(tmp_path / "head.npz") as data:
            assert str(data["morph_convention"]) == "absolute"
            np.testing.assert_array_equal(data["morph_targets"], bundle.asset.morph_targets)

    def test_rotation_exported_when_posed(self, tmp_path):
        image = np.full((200, 200, 3), 150, dtype=np.uint8)
        detection = DetectionResult(
            landmarks=np.array(canonical_landmarks()), pose_matrix=_pose()
        )
        posed = HeadPipeline(texture=TextureConfig(size=32)).run(image, detection)

        AssetExporter(posed, preview_ply=False).export(tmp_path)

        with np.load(tmp_path / "head.npz") as data:
            s = np.sqrt(0.5)
            np.testing.assert_allclose(data["rotation_wxyz"], [s, 0.0, s, 0.0], atol=1e-6)

    def test_unknown_convention(self, bundle):
        with pytest.raises(ValueError, match="convention"):
            AssetExporter(bundle, morph_convention="sparse")


class TestTextureAndCoefficients:
    """Test texture and coefficient files."""

    def test_texture_round_trip(self, bundle, tmp_path):
        AssetExporter(bundle, name="face", preview_ply=False).export(tmp_path)

        saved = cv2.imread(str(tmp_path / "face_texture.png"), cv2.IMREAD_UNCHANGED)
        saved = cv2.cvtColor(saved, cv2.COLOR_BGR2RGB)
        np.testing.assert_array_equal(saved, bundle.texture)

    def test_coefficients_json(self, bundle, tmp_path):
        AssetExporter(bundle, preview_ply=False).export(tmp_path)

        with open(tmp_path / "head_blendshapes.json") as f:
            data = json.load(f)

        assert data["version"] == "1.0"
        assert len(data["blendshapes"]) == 52
        assert data["blendshapes"]["jawOpen"] == pytest.approx(0.25)
        assert len(data["blender"]) == 52
        assert data["blender"][0]["vertex_group"] == data["blender"][0]["name"]


class TestPreviewMesh:
    """Test the PLY preview."""

    def test_ply_written(self, bundle, tmp_path):
        pytest.importorskip("trimesh")
        paths = AssetExporter(bundle).export(tmp_path)

        assert tmp_path / "head.ply" in paths
        assert (tmp_path / "head.ply").stat().st_size > 0

    def test_trimesh_keeps_vertex_order(self, bundle):
        pytest.importorskip("trimesh")
        mesh = asset_to_trimesh(bundle.asset)

        assert len(mesh.vertices) == bundle.asset.vertex_count
        np.testing.assert_allclose(mesh.vertices, bundle.asset.positions, atol=1e-6)
        np.testing.assert_array_equal(mesh.faces, bundle.asset.indices)


class TestExportErrors:
    """Test failure handling."""

    def test_unwritable_directory(self, bundle, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        with pytest.raises(ExportError):
            AssetExporter(bundle, preview_ply=False).export(blocker / "out")

    def test_bundle_untouched_after_failure(self, bundle, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        positions = np.array(bundle.asset.positions)

        with pytest.raises(ExportError):
            AssetExporter(bundle, preview_ply=False).export(blocker / "out")

        np.testing.assert_array_equal(bundle.asset.positions, positions)
        paths = AssetExporter(bundle, preview_ply=False).export(tmp_path / "retry")
        assert len(paths) == 3
