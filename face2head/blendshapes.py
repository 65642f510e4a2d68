"""
ARKit blendshape coefficients.

Maps the detector's (partial) blendshape scores onto the 52 ARKit channel
names and backfills a few channels from landmark geometry when the
detector left them empty. Geometric measures are divided by the
BoundingFrame extents so they do not depend on face size in the image,
and are compared against the same measures on the canonical neutral face.
"""

import logging
from typing import Dict, List, Mapping, Optional

import numpy as np
from numpy.typing import NDArray

from .frame import BoundingFrame
from .landmarks import (
    LEFT_BROW_INNER,
    LEFT_LOWER_LID,
    LEFT_MOUTH_CORNER,
    LEFT_UPPER_LID,
    LOWER_LIP_CENTER,
    NOSE_BRIDGE_TOP,
    RIGHT_BROW_INNER,
    RIGHT_LOWER_LID,
    RIGHT_MOUTH_CORNER,
    RIGHT_UPPER_LID,
    UPPER_LIP_CENTER,
    canonical_landmarks,
)

logger = logging.getLogger(__name__)


ARKIT_BLENDSHAPE_NAMES = (
    'browDownLeft',
    'browDownRight',
    'browInnerUp',
    'browOuterUpLeft',
    'browOuterUpRight',
    'cheekPuff',
    'cheekSquintLeft',
    'cheekSquintRight',
    'eyeBlinkLeft',
    'eyeBlinkRight',
    'eyeLookDownLeft',
    'eyeLookDownRight',
    'eyeLookInLeft',
    'eyeLookInRight',
    'eyeLookOutLeft',
    'eyeLookOutRight',
    'eyeLookUpLeft',
    'eyeLookUpRight',
    'eyeSquintLeft',
    'eyeSquintRight',
    'eyeWideLeft',
    'eyeWideRight',
    'jawForward',
    'jawLeft',
    'jawOpen',
    'jawRight',
    'mouthClose',
    'mouthDimpleLeft',
    'mouthDimpleRight',
    'mouthFrownLeft',
    'mouthFrownRight',
    'mouthFunnel',
    'mouthLeft',
    'mouthLowerDownLeft',
    'mouthLowerDownRight',
    'mouthPressLeft',
    'mouthPressRight',
    'mouthPucker',
    'mouthRight',
    'mouthRollLower',
    'mouthRollUpper',
    'mouthShrugLower',
    'mouthShrugUpper',
    'mouthSmileLeft',
    'mouthSmileRight',
    'mouthStretchLeft',
    'mouthStretchRight',
    'mouthUpperUpLeft',
    'mouthUpperUpRight',
    'noseSneerLeft',
    'noseSneerRight',
    'tongueOut',
)

BLENDSHAPE_COUNT = len(ARKIT_BLENDSHAPE_NAMES)


# =============================================================================
# Geometric measures
# =============================================================================
# All measures are in image space (y down) divided by the frame extents.

def mouth_gap(landmarks: NDArray[np.float32], frame: BoundingFrame) -> float:
    """Vertical distance between the inner lip centers."""
    return abs(float(landmarks[LOWER_LIP_CENTER, 1] - landmarks[UPPER_LIP_CENTER, 1])) / frame.scale_y


def mouth_width(landmarks: NDArray[np.float32], frame: BoundingFrame) -> float:
    """Distance between the outer mouth corners."""
    return abs(float(landmarks[LEFT_MOUTH_CORNER, 0] - landmarks[RIGHT_MOUTH_CORNER, 0])) / frame.scale_x


def corner_lift(
    landmarks: NDArray[np.float32],
    frame: BoundingFrame,
    corner: int
) -> float:
    """Height of a mouth corner above the upper inner lip center."""
    return float(landmarks[UPPER_LIP_CENTER, 1] - landmarks[corner, 1]) / frame.scale_y


def brow_height(
    landmarks: NDArray[np.float32],
    frame: BoundingFrame,
    brow: int
) -> float:
    """Height of an inner brow point above the top of the nose bridge."""
    return float(landmarks[NOSE_BRIDGE_TOP, 1] - landmarks[brow, 1]) / frame.scale_y


def eye_aperture(
    landmarks: NDArray[np.float32],
    frame: BoundingFrame,
    upper_lid,
    lower_lid
) -> float:
    """Mean vertical opening between the upper and lower eyelid."""
    upper = landmarks[list(upper_lid), 1].mean()
    lower = landmarks[list(lower_lid), 1].mean()
    return float(lower - upper) / frame.scale_y


def _neutral_measures() -> Dict[str, float]:
    neutral = canonical_landmarks()
    frame = BoundingFrame.from_landmarks(neutral)
    return {
        'mouth_gap': mouth_gap(neutral, frame),
        'mouth_width': mouth_width(neutral, frame),
        'corner_lift': corner_lift(neutral, frame, LEFT_MOUTH_CORNER),
        'brow_height': brow_height(neutral, frame, LEFT_BROW_INNER),
        'eye_aperture': eye_aperture(neutral, frame, LEFT_UPPER_LID, LEFT_LOWER_LID),
    }


NEUTRAL_MEASURES = _neutral_measures()


def _clip_score(value: float) -> float:
    value = float(value)
    if not np.isfinite(value):
        return 0.0
    return float(np.clip(value, 0.0, 1.0))


class BlendshapeMapper:
    """
    Build complete BlendshapeCoefficients from detector scores and landmarks.

    Detector scores are copied by name; unknown names (such as MediaPipe's
    ``_neutral``) are ignored. When ``heuristics`` is enabled:

    - jawOpen, browDown*, browInnerUp and eyeBlink* are filled from
      geometry only if the detector reported 0
    - mouthSmile* takes the max of the detector score and the geometric
      estimate (corner lift and mouth widening)

    Args:
        heuristics: Enable landmark-based backfill
        jaw_gain: Scale from excess lip gap to jawOpen
        smile_lift_gain: Scale from excess corner lift to mouthSmile*
        smile_width_gain: Scale from excess mouth width to mouthSmile*
        brow_gain: Scale from brow height change to browDown*/browInnerUp
        blink_gain: Scale from lost eye aperture to eyeBlink*
    """

    def __init__(
        self,
        heuristics: bool = True,
        jaw_gain: float = 5.0,
        smile_lift_gain: float = 10.0,
        smile_width_gain: float = 4.0,
        brow_gain: float = 8.0,
        blink_gain: float = 1.0
    ):
        self.heuristics = heuristics
        self.jaw_gain = jaw_gain
        self.smile_lift_gain = smile_lift_gain
        self.smile_width_gain = smile_width_gain
        self.brow_gain = brow_gain
        self.blink_gain = blink_gain

    def map(
        self,
        scores: Optional[Mapping[str, float]],
        landmarks: Optional[NDArray[np.float32]] = None,
        frame: Optional[BoundingFrame] = None
    ) -> Dict[str, float]:
        """
        Produce all 52 ARKit coefficients.

        Args:
            scores: Partial name -> score map from the detector (may be None)
            landmarks: LandmarkSet used for backfill
            frame: BoundingFrame of ``landmarks``; computed if omitted

        Returns:
            Dict with every ARKit name, values clipped to [0, 1]
        """
        coefficients = {name: 0.0 for name in ARKIT_BLENDSHAPE_NAMES}

        for name, score in (scores or {}).items():
            if name in coefficients:
                coefficients[name] = _clip_score(score)
            else:
                logger.debug("Ignoring unknown blendshape '%s'", name)

        if self.heuristics and landmarks is not None:
            if frame is None:
                frame = BoundingFrame.from_landmarks(landmarks)
            self._backfill(coefficients, np.asarray(landmarks, dtype=np.float32), frame)

        return {name: _clip_score(value) for name, value in coefficients.items()}

    def _backfill(
        self,
        coefficients: Dict[str, float],
        landmarks: NDArray[np.float32],
        frame: BoundingFrame
    ) -> None:
        if coefficients['jawOpen'] == 0.0:
            gap = mouth_gap(landmarks, frame) - NEUTRAL_MEASURES['mouth_gap']
            coefficients['jawOpen'] = _clip_score(gap * self.jaw_gain)
            logger.debug("Backfilled jawOpen=%.3f", coefficients['jawOpen'])

        widening = mouth_width(landmarks, frame) - NEUTRAL_MEASURES['mouth_width']
        width_term = widening * self.smile_width_gain
        for name, corner in (('mouthSmileLeft', LEFT_MOUTH_CORNER),
                             ('mouthSmileRight', RIGHT_MOUTH_CORNER)):
            lift = corner_lift(landmarks, frame, corner) - NEUTRAL_MEASURES['corner_lift']
            estimate = _clip_score(max(lift * self.smile_lift_gain, width_term))
            coefficients[name] = max(coefficients[name], estimate)

        neutral_brow = NEUTRAL_MEASURES['brow_height']
        heights = {}
        for name, brow in (('browDownLeft', LEFT_BROW_INNER),
                           ('browDownRight', RIGHT_BROW_INNER)):
            heights[name] = brow_height(landmarks, frame, brow)
            if coefficients[name] == 0.0:
                coefficients[name] = _clip_score((neutral_brow - heights[name]) * self.brow_gain)

        if coefficients['browInnerUp'] == 0.0:
            raised = np.mean(list(heights.values())) - neutral_brow
            coefficients['browInnerUp'] = _clip_score(raised * self.brow_gain)

        neutral_eye = NEUTRAL_MEASURES['eye_aperture']
        for name, upper, lower in (('eyeBlinkLeft', LEFT_UPPER_LID, LEFT_LOWER_LID),
                                   ('eyeBlinkRight', RIGHT_UPPER_LID, RIGHT_LOWER_LID)):
            if coefficients[name] == 0.0:
                aperture = eye_aperture(landmarks, frame, upper, lower)
                closed = 1.0 - aperture / neutral_eye
                coefficients[name] = _clip_score(closed * self.blink_gain)


def to_blender_format(coefficients: Mapping[str, float]) -> Dict:
    """
    Shape-key list for Blender import scripts.

    Returns:
        {"version": "1.0", "blendshapes": [{name, value, mute, vertex_group}]}
    """
    entries: List[Dict] = [
        {
            'name': name,
            'value': float(value),
            'mute': False,
            'vertex_group': name,
        }
        for name, value in coefficients.items()
    ]
    return {'version': '1.0', 'blendshapes': entries}
