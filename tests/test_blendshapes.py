"""
Tests for ARKit blendshape coefficient mapping.
"""

import numpy as np
import pytest

from face2head.blendshapes import (
    ARKIT_BLENDSHAPE_NAMES,
    BLENDSHAPE_COUNT,
    NEUTRAL_MEASURES,
    BlendshapeMapper,
    mouth_gap,
    mouth_width,
    to_blender_format,
)
from face2head.frame import BoundingFrame
from face2head.landmarks import canonical_landmarks


def _neutral():
    return np.array(canonical_landmarks(), dtype=np.float32)


class TestChannelNames:
    """Test the ARKit channel list."""

    def test_count(self):
        assert BLENDSHAPE_COUNT == 52
        assert len(set(ARKIT_BLENDSHAPE_NAMES)) == 52

    def test_sorted(self):
        assert list(ARKIT_BLENDSHAPE_NAMES) == sorted(ARKIT_BLENDSHAPE_NAMES)

    def test_contains_core_channels(self):
        for name in ("jawOpen", "eyeBlinkLeft", "mouthSmileRight", "tongueOut"):
            assert name in ARKIT_BLENDSHAPE_NAMES


class TestMeasures:
    """Test geometric measures."""

    def test_scale_invariant(self):
        """Measures do not depend on where or how large the face is."""
        small = canonical_landmarks(center=(0.3, 0.6), extent=0.2)
        large = canonical_landmarks(center=(0.5, 0.5), extent=0.8)

        for measure in (mouth_gap, mouth_width):
            a = measure(small, BoundingFrame.from_landmarks(small))
            b = measure(large, BoundingFrame.from_landmarks(large))
            assert a == pytest.approx(b, rel=1e-4)

    def test_neutral_measures_positive(self):
        assert NEUTRAL_MEASURES["mouth_gap"] > 0
        assert NEUTRAL_MEASURES["mouth_width"] > 0
        assert NEUTRAL_MEASURES["eye_aperture"] > 0


class TestDetectorScores:
    """Test copying of detector scores."""

    def test_all_channels_present(self):
        coefficients = BlendshapeMapper().map({})
        assert list(coefficients) == list(ARKIT_BLENDSHAPE_NAMES)
        assert all(value == 0.0 for value in coefficients.values())

    def test_none_scores(self):
        assert len(BlendshapeMapper().map(None)) == 52

    def test_unknown_names_ignored(self):
        coefficients = BlendshapeMapper().map({"_neutral": 0.9, "jawOpen": 0.4})
        assert "_neutral" not in coefficients
        assert coefficients["jawOpen"] == pytest.approx(0.4)

    def test_values_clipped(self):
        coefficients = BlendshapeMapper().map({
            "jawOpen": 1.7,
            "eyeBlinkLeft": -0.2,
            "mouthPucker": float("nan"),
        })
        assert coefficients["jawOpen"] == 1.0
        assert coefficients["eyeBlinkLeft"] == 0.0
        assert coefficients["mouthPucker"] == 0.0


class TestHeuristics:
    """Test landmark-based backfill."""

    def test_neutral_face_near_zero(self):
        coefficients = BlendshapeMapper().map({}, _neutral())
        for value in coefficients.values():
            assert value == pytest.approx(0.0, abs=1e-3)

    def test_open_mouth_backfills_jaw(self):
        landmarks = _neutral()
        landmarks[66, 1] += 0.05
        landmarks[57, 1] += 0.05

        coefficients = BlendshapeMapper().map({}, landmarks)

        assert coefficients["jawOpen"] > 0.3

    def test_detector_jaw_kept(self):
        """A nonzero detector score is never overridden by geometry."""
        landmarks = _neutral()
        landmarks[66, 1] += 0.05

        coefficients = BlendshapeMapper().map({"jawOpen": 0.2}, landmarks)

        assert coefficients["jawOpen"] == pytest.approx(0.2)

    def test_wide_mouth_raises_smile(self):
        landmarks = _neutral()
        landmarks[48, 0] -= 0.03
        landmarks[54, 0] += 0.03

        coefficients = BlendshapeMapper().map({}, landmarks)

        assert coefficients["mouthSmileLeft"] > 0.3
        assert coefficients["mouthSmileRight"] > 0.3

    def test_doubled_corner_distance(self):
        """Corners twice as far apart never score below the baseline."""
        baseline = _neutral()
        landmarks = _neutral()
        mid = (baseline[48, 0] + baseline[54, 0]) / 2.0
        landmarks[48, 0] = mid + 2.0 * (baseline[48, 0] - mid)
        landmarks[54, 0] = mid + 2.0 * (baseline[54, 0] - mid)

        mapper = BlendshapeMapper()
        before = mapper.map({}, baseline)
        after = mapper.map({}, landmarks)

        for name in ("mouthSmileLeft", "mouthSmileRight"):
            assert before[name] <= after[name] <= 1.0
        assert after["mouthSmileLeft"] > 0.0

    def test_smile_takes_larger_score(self):
        landmarks = _neutral()
        landmarks[48, 0] -= 0.03
        landmarks[54, 0] += 0.03

        mapper = BlendshapeMapper()
        strong = mapper.map({"mouthSmileLeft": 0.9}, landmarks)
        weak = mapper.map({"mouthSmileLeft": 0.01}, landmarks)

        assert strong["mouthSmileLeft"] == pytest.approx(0.9)
        assert weak["mouthSmileLeft"] > 0.3

    def test_raised_brows(self):
        landmarks = _neutral()
        landmarks[[21, 22], 1] -= 0.03

        coefficients = BlendshapeMapper().map({}, landmarks)

        assert coefficients["browInnerUp"] > 0.1
        assert coefficients["browDownLeft"] == 0.0
        assert coefficients["browDownRight"] == 0.0

    def test_closed_left_eye(self):
        """Closing the subject's left eye (42-47) only blinks eyeBlinkLeft."""
        landmarks = _neutral()
        landmarks[43, 1] = landmarks[47, 1]
        landmarks[44, 1] = landmarks[46, 1]

        coefficients = BlendshapeMapper().map({}, landmarks)

        assert coefficients["eyeBlinkLeft"] == pytest.approx(1.0, abs=1e-3)
        assert coefficients["eyeBlinkRight"] == pytest.approx(0.0, abs=1e-3)

    def test_heuristics_disabled(self):
        landmarks = _neutral()
        landmarks[66, 1] += 0.05

        coefficients = BlendshapeMapper(heuristics=False).map({}, landmarks)

        assert coefficients["jawOpen"] == 0.0

    def test_uses_given_frame(self):
        landmarks = _neutral()
        landmarks[66, 1] += 0.05
        frame = BoundingFrame.from_landmarks(landmarks)

        mapper = BlendshapeMapper()
        assert mapper.map({}, landmarks, frame) == mapper.map({}, landmarks)


class TestBlenderFormat:
    """Test the shape-key export format."""

    def test_structure(self):
        coefficients = BlendshapeMapper().map({"jawOpen": 0.5})
        result = to_blender_format(coefficients)

        assert result["version"] == "1.0"
        assert len(result["blendshapes"]) == 52

        entry = next(e for e in result["blendshapes"] if e["name"] == "jawOpen")
        assert entry == {
            "name": "jawOpen",
            "value": 0.5,
            "mute": False,
            "vertex_group": "jawOpen",
        }
