"""
Face landmark ingestion and the canonical frontal layout.

This module provides:
- Canonical face landmarks (70 points) extracted from MediaPipe's canonical face model
- A seven-point forehead arc above the brows that completes the face outline
- Semantic index groups (jaw, brows, eyes, lips, pupils, forehead) used by every other module
- A neutral LandmarkSet in normalized image space built from the canonical face
- FaceLandmarkIngest: Convert detector output (MediaPipe 468/478, OpenPose 70) to the frontal layout
- DetectionResult: landmarks + blendshape scores + optional pose matrix for one image

The first 70 keypoints follow the OpenPose face convention:
  0-16:  Jawline contour (17 points, open chain)
  17-21: Right eyebrow (5 points, open chain)
  22-26: Left eyebrow (5 points, open chain)
  27-30: Nose bridge (4 points, open chain)
  31-35: Nose bottom/nostrils (5 points, open chain)
  36-41: Right eye (6 points, closed loop)
  42-47: Left eye (6 points, closed loop)
  48-59: Outer lip (12 points, closed loop)
  60-67: Inner lip (8 points, closed loop)
  68:    Right pupil (isolated point)
  69:    Left pupil (isolated point)
  70-76: Forehead arc, right temple to left temple (open chain)

OpenPose stops at the brows. The forehead arc is read from MediaPipe's face
oval when the detector provides it, and synthesized above the brows otherwise.

"Right" and "left" are the subject's sides. The subject's left is image right.

A LandmarkSet is a (77, 3) float32 array: x and y normalized to image width
and height (y down), z in MediaPipe's relative depth unit (smaller is closer
to the camera). No MediaPipe dependency is required here.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from .coordinates import pose_matrix_from_values

logger = logging.getLogger(__name__)


class NoFaceDetectedError(ValueError):
    """Raised when the detector output contains no face landmarks."""


# =============================================================================
# Canonical Face Landmarks (70 points)
# =============================================================================
# Extracted from MediaPipe's canonical_face_model.obj using the MaixPy
# single-index mapping from MediaPipe 468 → OpenPose Face 68, plus
# synthesized pupils from eye contour centroids.
#
# Coordinate system: Right-handed, Y-up, face looks toward +Z.
# Units: approximately centimeters.
# Source: https://github.com/google-ai-edge/mediapipe/blob/master/
#         mediapipe/modules/face_geometry/data/canonical_face_model.obj

CANONICAL_FACE_LANDMARKS_70 = np.array([
    # Jawline 0-16
    (-7.555811,   4.106811,  -0.991917),  #  0 jaw
    (-7.664182,   0.673132,  -2.435867),  #  1 jaw
    (-7.542244,  -1.049282,  -2.431321),  #  2 jaw
    (-6.719682,  -4.788645,  -1.745401),  #  3 jaw
    (-5.940524,  -6.223629,  -0.631468),  #  4 jaw
    (-5.085276,  -7.178590,   0.714711),  #  5 jaw
    (-3.210651,  -8.533278,   2.802001),  #  6 jaw
    (-1.292924,  -9.295920,   4.094063),  #  7 jaw
    ( 0.000000,  -9.403378,   4.264492),  #  8 jaw (chin)
    ( 1.292924,  -9.295920,   4.094063),  #  9 jaw
    ( 3.210651,  -8.533278,   2.802001),  # 10 jaw
    ( 5.085276,  -7.178590,   0.714711),  # 11 jaw
    ( 5.940524,  -6.223629,  -0.631468),  # 12 jaw
    ( 6.719682,  -4.788645,  -1.745401),  # 13 jaw
    ( 7.542244,  -1.049282,  -2.431321),  # 14 jaw
    ( 7.664182,   0.673132,  -2.435867),  # 15 jaw
    ( 7.555811,   4.106811,  -0.991917),  # 16 jaw
    # Right eyebrow 17-21
    (-6.374393,   4.785590,   1.591691),  # 17 r_eyebrow
    (-4.985894,   4.802461,   3.751977),  # 18 r_eyebrow
    (-3.986562,   5.109487,   4.466315),  # 19 r_eyebrow
    (-2.760292,   5.100971,   5.015990),  # 20 r_eyebrow
    (-1.395634,   5.011963,   5.316032),  # 21 r_eyebrow
    # Left eyebrow 22-26
    ( 1.395634,   5.011963,   5.316032),  # 22 l_eyebrow
    ( 2.760292,   5.100971,   5.015990),  # 23 l_eyebrow
    ( 3.986562,   5.109487,   4.466315),  # 24 l_eyebrow
    ( 4.985894,   4.802461,   3.751977),  # 25 l_eyebrow
    ( 6.374393,   4.785590,   1.591691),  # 26 l_eyebrow
    # Nose bridge 27-30
    ( 0.000000,   3.271027,   5.236015),  # 27 nose_bridge
    ( 0.000000,   1.728369,   6.316750),  # 28 nose_bridge
    ( 0.000000,   0.365669,   7.242870),  # 29 nose_bridge
    ( 0.000000,  -0.463170,   7.586580),  # 30 nose_bridge (tip)
    # Nose bottom 31-35
    (-1.043625,  -1.464973,   5.662455),  # 31 nose_bottom
    (-0.597442,  -2.013686,   5.866456),  # 32 nose_bottom
    ( 0.000000,  -2.089024,   6.058267),  # 33 nose_bottom
    ( 0.597442,  -2.013686,   5.866456),  # 34 nose_bottom
    ( 1.043625,  -1.464973,   5.662455),  # 35 nose_bottom
    # Right eye 36-41
    (-4.445859,   2.663991,   3.173422),  # 36 r_eye (outer corner)
    (-3.670075,   2.927714,   3.724325),  # 37 r_eye
    (-2.724032,   2.961810,   3.871767),  # 38 r_eye
    (-1.856432,   2.585245,   3.757904),  # 39 r_eye (inner corner)
    (-2.724032,   2.315802,   3.777151),  # 40 r_eye
    (-3.670075,   2.360153,   3.635230),  # 41 r_eye
    # Left eye 42-47
    ( 1.856432,   2.585245,   3.757904),  # 42 l_eye (inner corner)
    ( 2.724032,   2.961810,   3.871767),  # 43 l_eye
    ( 3.670075,   2.927714,   3.724325),  # 44 l_eye
    ( 4.445859,   2.663991,   3.173422),  # 45 l_eye (outer corner)
    ( 3.670075,   2.360153,   3.635230),  # 46 l_eye
    ( 2.724032,   2.315802,   3.777151),  # 47 l_eye
    # Outer lip 48-59
    (-2.456206,  -4.342621,   4.283884),  # 48 outer_lip (R corner)
    (-1.431615,  -3.500953,   5.496189),  # 49 outer_lip
    (-0.711452,  -3.329355,   5.877044),  # 50 outer_lip
    ( 0.000000,  -3.406404,   5.979507),  # 51 outer_lip (top center)
    ( 0.711452,  -3.329355,   5.877044),  # 52 outer_lip
    ( 1.431615,  -3.500953,   5.496189),  # 53 outer_lip
    ( 2.456206,  -4.342621,   4.283884),  # 54 outer_lip (L corner)
    ( 1.325085,  -5.106507,   5.205010),  # 55 outer_lip
    ( 0.699606,  -5.291850,   5.448304),  # 56 outer_lip
    ( 0.000000,  -5.365123,   5.535441),  # 57 outer_lip (bottom center)
    (-0.699606,  -5.291850,   5.448304),  # 58 outer_lip
    (-1.325085,  -5.106507,   5.205010),  # 59 outer_lip
    # Inner lip 60-67
    (-2.153084,  -4.276322,   4.038093),  # 60 inner_lip
    (-0.533422,  -3.993222,   5.138202),  # 61 inner_lip
    ( 0.000000,  -3.994436,   5.219482),  # 62 inner_lip (top center)
    ( 0.533422,  -3.993222,   5.138202),  # 63 inner_lip
    ( 2.153084,  -4.276322,   4.038093),  # 64 inner_lip
    ( 0.583218,  -4.517982,   5.339869),  # 65 inner_lip
    ( 0.000000,  -4.542400,   5.404754),  # 66 inner_lip (bottom center)
    (-0.583218,  -4.517982,   5.339869),  # 67 inner_lip
    # Pupils 68-69 (synthesized from eye contour centroids)
    (-3.181751,   2.635786,   3.656633),  # 68 r_pupil
    ( 3.181751,   2.635786,   3.656633),  # 69 l_pupil
], dtype=np.float32)

OPENPOSE_POINT_COUNT = len(CANONICAL_FACE_LANDMARKS_70)


# =============================================================================
# Semantic index groups
# =============================================================================

JAW = tuple(range(0, 17))
RIGHT_TEMPLE_JAW = 0
LEFT_TEMPLE_JAW = 16
CHIN = 8
RIGHT_BROW = tuple(range(17, 22))
LEFT_BROW = tuple(range(22, 27))
NOSE_BRIDGE = tuple(range(27, 31))
NOSE_BRIDGE_TOP = 27
NOSE_TIP = 30
NOSE_BOTTOM = tuple(range(31, 36))
RIGHT_EYE = tuple(range(36, 42))
LEFT_EYE = tuple(range(42, 48))
OUTER_LIP = tuple(range(48, 60))
INNER_LIP = tuple(range(60, 68))
RIGHT_PUPIL = 68
LEFT_PUPIL = 69
FOREHEAD = tuple(range(70, 77))
FOREHEAD_CENTER = 73

RIGHT_UPPER_LID = (37, 38)
RIGHT_LOWER_LID = (41, 40)
LEFT_UPPER_LID = (43, 44)
LEFT_LOWER_LID = (47, 46)
RIGHT_EYE_CORNERS = (36, 39)   # outer, inner
LEFT_EYE_CORNERS = (45, 42)    # outer, inner

RIGHT_BROW_INNER = 21
LEFT_BROW_INNER = 22

RIGHT_MOUTH_CORNER = 48
LEFT_MOUTH_CORNER = 54
RIGHT_INNER_CORNER = 60
LEFT_INNER_CORNER = 64
UPPER_LIP_CENTER = 62          # inner lip, top center
LOWER_LIP_CENTER = 66          # inner lip, bottom center


# =============================================================================
# Forehead arc (70-76)
# =============================================================================
# Brow point under each forehead point (None: midpoint of the inner brows)
# and its lift as a fraction of the brow-to-chin height.
FOREHEAD_BASES = (17, 18, 20, None, 23, 25, 26)
FOREHEAD_LIFTS = (0.16, 0.26, 0.31, 0.33, 0.31, 0.26, 0.16)

# Depth recession per unit of lift; the forehead slopes back from the brows
FOREHEAD_SLOPE = 0.45


def synthesize_forehead(landmarks: NDArray[np.float32]) -> NDArray[np.float32]:
    """
    Estimate the forehead arc of an OpenPose Face 70 landmark set.

    Each forehead point sits above a brow point along the chin-to-brow
    direction and recedes in depth, toward the side of the nose tip where
    the upper jaw corners lie. Applies in canonical and image space alike.

    Args:
        landmarks: (70, 3) or larger array in OpenPose order

    Returns:
        (7, 3) float32 forehead points, right temple to left temple
    """
    lm = np.asarray(landmarks, dtype=np.float64)

    brow_mid = (lm[RIGHT_BROW_INNER] + lm[LEFT_BROW_INNER]) / 2.0
    rise = brow_mid[:2] - lm[CHIN, :2]
    height = float(np.linalg.norm(rise))
    up = rise / height if height > 1e-12 else np.zeros(2)

    jaw_depth = (lm[RIGHT_TEMPLE_JAW, 2] + lm[LEFT_TEMPLE_JAW, 2]) / 2.0
    back = np.sign(jaw_depth - lm[NOSE_TIP, 2])

    bases = np.array([
        brow_mid if index is None else lm[index] for index in FOREHEAD_BASES
    ])
    lifts = np.asarray(FOREHEAD_LIFTS, dtype=np.float64) * height

    forehead = bases.copy()
    forehead[:, :2] += lifts[:, np.newaxis] * up
    forehead[:, 2] += back * lifts * FOREHEAD_SLOPE
    return forehead.astype(np.float32)


CANONICAL_FACE_LANDMARKS = np.vstack([
    CANONICAL_FACE_LANDMARKS_70,
    synthesize_forehead(CANONICAL_FACE_LANDMARKS_70),
]).astype(np.float32)
CANONICAL_FACE_LANDMARKS.setflags(write=False)

FRONTAL_VERTEX_COUNT = len(CANONICAL_FACE_LANDMARKS)


def complete_landmarks(landmarks: NDArray[np.float32]) -> NDArray[np.float32]:
    """
    Return a full frontal LandmarkSet, adding the forehead arc if missing.

    Args:
        landmarks: (70, 3) OpenPose landmarks or a (77, 3) LandmarkSet

    Returns:
        Read-only (77, 3) float32 LandmarkSet

    Raises:
        ValueError: For any other point count
    """
    lm = np.asarray(landmarks, dtype=np.float32)
    if lm.ndim != 2 or lm.shape[1] != 3:
        raise ValueError(f"Expected landmarks shape (N, 3), got {lm.shape}")

    if lm.shape[0] == OPENPOSE_POINT_COUNT:
        lm = np.vstack([lm, synthesize_forehead(lm)]).astype(np.float32)
    elif lm.shape[0] == FRONTAL_VERTEX_COUNT:
        lm = lm.copy()
    else:
        raise ValueError(
            f"Frontal landmarks require {OPENPOSE_POINT_COUNT} OpenPose points "
            f"or {FRONTAL_VERTEX_COUNT} with the forehead arc, got {lm.shape[0]}"
        )

    lm.setflags(write=False)
    return lm


def canonical_landmarks(
    center: Tuple[float, float] = (0.5, 0.5),
    extent: float = 0.5
) -> NDArray[np.float32]:
    """
    Build a neutral LandmarkSet in normalized image space.

    The canonical face (Y-up, +Z toward the viewer, centimeters) is mapped
    into image space (y down, smaller z closer to the camera) so that the
    face height spans ``extent`` of the image.

    Args:
        center: Normalized image position of the face bounding-box center
        extent: Fraction of the image height covered by the face

    Returns:
        Read-only (77, 3) float32 LandmarkSet
    """
    face = CANONICAL_FACE_LANDMARKS
    mins = face.min(axis=0)
    maxs = face.max(axis=0)
    mid = (mins + maxs) / 2.0
    scale = extent / float(maxs[1] - mins[1])

    result = np.empty_like(face)
    result[:, 0] = center[0] + (face[:, 0] - mid[0]) * scale
    result[:, 1] = center[1] - (face[:, 1] - mid[1]) * scale
    result[:, 2] = -(face[:, 2] - mid[2]) * scale

    result.setflags(write=False)
    return result


# =============================================================================
# Face Landmark Ingestion
# =============================================================================
# Converts detector output to the canonical frontal layout.
# No dependency on MediaPipe or other detection libraries.

# MediaPipe Face Mesh 478 → OpenPose Face 68 index mapping (MaixPy convention).
# Each entry is a single MediaPipe vertex index that maps to the corresponding
# OpenPose face keypoint. Pupils (68-69) are handled separately.
MEDIAPIPE_TO_OPENPOSE_68 = [
    # Jawline 0-16
    162, 234, 93, 58, 172, 136, 149, 148, 152, 377, 378, 365, 397, 288, 323, 454, 389,
    # Right eyebrow 17-21
    71, 63, 105, 66, 107,
    # Left eyebrow 22-26
    336, 296, 334, 293, 301,
    # Nose bridge 27-30
    168, 197, 5, 4,
    # Nose bottom 31-35
    75, 97, 2, 326, 305,
    # Right eye 36-41
    33, 160, 158, 133, 153, 144,
    # Left eye 42-47
    362, 385, 387, 263, 373, 380,
    # Outer lip 48-59
    61, 39, 37, 0, 267, 269, 291, 405, 314, 17, 84, 181,
    # Inner lip 60-67
    78, 82, 13, 312, 308, 317, 14, 87,
]

# Iris center indices in MediaPipe's refined 478-landmark model
MEDIAPIPE_RIGHT_IRIS_CENTER = 468
MEDIAPIPE_LEFT_IRIS_CENTER = 473

# Eye contour indices (in MediaPipe space) for pupil centroid fallback
MEDIAPIPE_RIGHT_EYE_CONTOUR = [33, 160, 158, 133, 153, 144]
MEDIAPIPE_LEFT_EYE_CONTOUR = [362, 385, 387, 263, 373, 380]

# Face-oval points above the brows, right temple to left temple (70-76)
MEDIAPIPE_FOREHEAD = [103, 67, 109, 10, 338, 297, 332]


@dataclass
class DetectionResult:
    """Everything the detector reports for one image."""
    landmarks: NDArray[np.float32]
    blendshapes: Dict[str, float] = field(default_factory=dict)
    pose_matrix: Optional[NDArray[np.float64]] = None
    image_size: Optional[Tuple[int, int]] = None


def _as_landmark_array(landmarks) -> NDArray[np.float32]:
    lm = np.asarray(landmarks, dtype=np.float32)

    if lm.size == 0:
        raise NoFaceDetectedError("No face landmarks detected")

    if lm.ndim != 2 or lm.shape[1] != 3:
        raise ValueError(
            f"Expected landmarks shape (N, 3), got {lm.shape}"
        )

    if not np.all(np.isfinite(lm)):
        raise ValueError("Landmarks contain NaN or infinite values")

    return lm


def _parse_blendshape_scores(raw) -> Dict[str, float]:
    """
    Normalize detector blendshape output to a name → score dict.

    Accepts either a mapping or MediaPipe's category list
    (``[{"categoryName": ..., "score": ...}, ...]``).
    """
    if raw is None:
        return {}

    if isinstance(raw, dict):
        return {str(name): float(score) for name, score in raw.items()}

    scores = {}
    for entry in raw:
        name = entry.get("categoryName", entry.get("category_name"))
        if name is None:
            raise ValueError(f"Blendshape entry without a category name: {entry}")
        scores[str(name)] = float(entry.get("score", 0.0))
    return scores


class FaceLandmarkIngest:
    """
    Convert detector output to the frontal layout.

    Supported input formats:
    - "mediapipe": MediaPipe Face Mesh (468 or 478 landmarks)
    - "openpose_face70": landmarks in OpenPose Face 70 order, optionally
      followed by the 7 forehead points

    The canonical output is always a read-only (77, 3) float32 LandmarkSet
    in normalized image space.

    Usage:
        # From a JSON file saved by tools/extract_face_landmarks.py:
        detection = FaceLandmarkIngest.from_json("landmarks.json")

        # From raw MediaPipe landmarks (list of [x, y, z]):
        landmarks = FaceLandmarkIngest.from_mediapipe(mp_landmarks)
    """

    @staticmethod
    def from_mediapipe(
        landmarks: Union[List[List[float]], NDArray[np.float32]],
    ) -> NDArray[np.float32]:
        """
        Convert MediaPipe Face Mesh landmarks to the frontal layout.

        Applies the MaixPy single-index mapping from MediaPipe 468/478
        landmarks to OpenPose Face 68, then adds pupils (indices 68-69)
        from iris centers (if 478 landmarks) or eye contour centroids,
        and the forehead arc (70-76) from the face oval.

        Coordinates stay normalized: the texture crop and UVs are computed
        in the same normalized space, so no pixel conversion happens here.

        Args:
            landmarks: MediaPipe face landmarks, shape (N, 3) where N is
                468 (standard) or 478 (refined with iris tracking).

        Returns:
            Frontal landmarks, shape (77, 3), float32, read-only.

        Raises:
            NoFaceDetectedError: If the landmark list is empty.
            ValueError: If landmarks have wrong shape or too few points.
        """
        lm = _as_landmark_array(landmarks)

        n = lm.shape[0]
        if n < 468:
            raise ValueError(
                f"MediaPipe landmarks require at least 468 points, got {n}"
            )

        # Map the first 68 keypoints
        openpose_68 = lm[MEDIAPIPE_TO_OPENPOSE_68]  # (68, 3)

        # Pupils (indices 68-69)
        if n >= 478:
            right_pupil = lm[MEDIAPIPE_RIGHT_IRIS_CENTER]
            left_pupil = lm[MEDIAPIPE_LEFT_IRIS_CENTER]
        else:
            right_pupil = lm[MEDIAPIPE_RIGHT_EYE_CONTOUR].mean(axis=0)
            left_pupil = lm[MEDIAPIPE_LEFT_EYE_CONTOUR].mean(axis=0)

        frontal = np.vstack([
            openpose_68,
            right_pupil[np.newaxis],
            left_pupil[np.newaxis],
            lm[MEDIAPIPE_FOREHEAD],
        ]).astype(np.float32)

        frontal.setflags(write=False)
        return frontal

    @staticmethod
    def from_openpose70(
        landmarks: Union[List[List[float]], NDArray[np.float32]],
    ) -> NDArray[np.float32]:
        """
        Validate OpenPose Face 70 landmarks and complete the forehead arc.

        A 77-point array is taken as OpenPose 70 plus its own forehead arc.

        Raises:
            NoFaceDetectedError: If the landmark list is empty.
            ValueError: If the shape is not (70, 3) or (77, 3).
        """
        return complete_landmarks(_as_landmark_array(landmarks))

    @staticmethod
    def from_dict(data: Dict) -> DetectionResult:
        """
        Build a DetectionResult from a decoded detector JSON document.

        Dispatches on the "source" field and parses the optional
        "blendshapes", "transformation_matrix" and "image_size" fields.
        """
        source = str(data.get("source", "")).lower()

        raw_landmarks = data.get("landmarks")
        if raw_landmarks is None:
            raise ValueError("Detector JSON missing 'landmarks' field")

        if source == "mediapipe":
            landmarks = FaceLandmarkIngest.from_mediapipe(raw_landmarks)
        elif source == "openpose_face70":
            landmarks = FaceLandmarkIngest.from_openpose70(raw_landmarks)
        else:
            raise ValueError(
                f"Unsupported face landmark source: '{source}'. "
                f"Supported: 'mediapipe', 'openpose_face70'"
            )

        pose_matrix = None
        if data.get("transformation_matrix") is not None:
            pose_matrix = pose_matrix_from_values(data["transformation_matrix"])

        image_size = data.get("image_size")
        if image_size is not None:
            image_size = (int(image_size[0]), int(image_size[1]))

        blendshapes = _parse_blendshape_scores(data.get("blendshapes"))

        logger.debug(
            "Ingested %s detection: %d blendshape scores, pose=%s, image_size=%s",
            source, len(blendshapes), pose_matrix is not None, image_size
        )

        return DetectionResult(
            landmarks=landmarks,
            blendshapes=blendshapes,
            pose_matrix=pose_matrix,
            image_size=image_size,
        )

    @staticmethod
    def from_json(filepath: Union[str, Path]) -> DetectionResult:
        """
        Load a detector JSON file and convert it to a DetectionResult.

        Supported JSON formats:
        - {"source": "mediapipe", "landmarks": [[x,y,z], ...], ...}
        - {"source": "openpose_face70", "landmarks": [[x,y,z] * 70], ...}

        Args:
            filepath: Path to JSON file.

        Returns:
            DetectionResult with a (77, 3) LandmarkSet.

        Raises:
            NoFaceDetectedError: If the file holds an empty landmark list.
            ValueError: If format is unrecognized or data is invalid.
            FileNotFoundError: If file does not exist.
        """
        filepath = Path(filepath)
        with open(filepath, 'r') as f:
            data = json.load(f)

        logger.debug("Loading detector JSON from %s", filepath)
        try:
            return FaceLandmarkIngest.from_dict(data)
        except NoFaceDetectedError:
            raise
        except ValueError as e:
            raise ValueError(f"{e} (in {filepath})") from e
