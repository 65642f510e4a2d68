"""
Rule-table morph target synthesis.

Each ARKit channel is described declaratively by a tuple of MorphRules.
A rule picks frontal vertices (by index or by a model-space predicate),
then scales them about their centroid and/or displaces them along one
axis. The synthesizer copies the base buffer once per channel and applies
that channel's rules to the copy, so every target has the same length as
the base and generated back-of-head rows are never touched.

Displacements are expressed in "rule units"; the synthesizer multiplies
them by ``intensity`` to get model-space offsets.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from .blendshapes import ARKIT_BLENDSHAPE_NAMES
from .landmarks import FRONTAL_VERTEX_COUNT, LEFT_BROW, LEFT_PUPIL, RIGHT_BROW, RIGHT_PUPIL

logger = logging.getLogger(__name__)


AXES = {'x': 0, 'y': 1, 'z': 2}


@dataclass(frozen=True)
class VertexSelector:
    """
    Chooses frontal vertices for a rule.

    Either an explicit index tuple or a model-space predicate
    (``y_below``: every frontal vertex whose base y is lower).
    """
    indices: Tuple[int, ...] = ()
    y_below: Optional[float] = None

    def select(self, frontal_positions: NDArray[np.float32]) -> NDArray[np.intp]:
        if self.indices:
            return np.asarray(self.indices, dtype=np.intp)
        if self.y_below is not None:
            return np.nonzero(frontal_positions[:, 1] < self.y_below)[0]
        return np.zeros(0, dtype=np.intp)


@dataclass(frozen=True)
class MorphRule:
    """Scale about the selection centroid, then displace, along one axis."""
    selector: VertexSelector
    axis: str
    displacement: float = 0.0
    scale: float = 1.0


def _rule(indices: Sequence[int], axis: str, displacement: float = 0.0, scale: float = 1.0) -> MorphRule:
    return MorphRule(VertexSelector(indices=tuple(indices)), axis, displacement, scale)


def _below(y: float, axis: str, displacement: float) -> MorphRule:
    return MorphRule(VertexSelector(y_below=y), axis, displacement)


# "Left" is the subject's left (+x, OpenPose 42-47 / 22-26 / 54 / 64).
JAW_LOWER = tuple(range(4, 13))
LOWER_LIP = (55, 56, 57, 58, 59, 65, 66, 67)
UPPER_LIP = (49, 50, 51, 52, 53, 61, 62, 63)
LIPS = tuple(range(48, 68))
MOUTH_CORNERS = (48, 54, 60, 64)

LEFT_CORNER = (54, 64)
RIGHT_CORNER = (48, 60)
LEFT_UPPER_LIP = (52, 53, 63)
RIGHT_UPPER_LIP = (49, 50, 61)
LEFT_LOWER_LIP = (55, 56, 65)
RIGHT_LOWER_LIP = (58, 59, 67)

LEFT_UPPER_LID = (43, 44)
LEFT_LOWER_LID = (46, 47)
RIGHT_UPPER_LID = (37, 38)
RIGHT_LOWER_LID = (40, 41)

INNER_BROWS = (20, 21, 22, 23)
LEFT_OUTER_BROW = (25, 26)
RIGHT_OUTER_BROW = (17, 18)

LEFT_CHEEK = (13, 14, 15)
RIGHT_CHEEK = (1, 2, 3)
LEFT_NOSTRIL = (34, 35)
RIGHT_NOSTRIL = (31, 32)

# Model-space height below which a vertex moves with the mandible: under the
# mouth corners, above the lower inner lip
MANDIBLE_Y = -0.485


MORPH_RULES: Dict[str, Tuple[MorphRule, ...]] = {
    'browDownLeft': (_rule(LEFT_BROW, 'y', -0.3),),
    'browDownRight': (_rule(RIGHT_BROW, 'y', -0.3),),
    'browInnerUp': (_rule(INNER_BROWS, 'y', 0.4),),
    'browOuterUpLeft': (_rule(LEFT_OUTER_BROW, 'y', 0.4),),
    'browOuterUpRight': (_rule(RIGHT_OUTER_BROW, 'y', 0.4),),
    'cheekPuff': (
        _rule(RIGHT_CHEEK + LEFT_CHEEK, 'x', scale=1.1),
        _rule(RIGHT_CHEEK + LEFT_CHEEK, 'z', 0.2),
    ),
    'cheekSquintLeft': (
        _rule(LEFT_LOWER_LID, 'y', 0.15),
        _rule(LEFT_CHEEK[1:], 'y', 0.1),
    ),
    'cheekSquintRight': (
        _rule(RIGHT_LOWER_LID, 'y', 0.15),
        _rule(RIGHT_CHEEK[:2], 'y', 0.1),
    ),
    'eyeBlinkLeft': (
        _rule(LEFT_UPPER_LID, 'y', -0.6),
        _rule(LEFT_LOWER_LID, 'y', 0.15),
    ),
    'eyeBlinkRight': (
        _rule(RIGHT_UPPER_LID, 'y', -0.6),
        _rule(RIGHT_LOWER_LID, 'y', 0.15),
    ),
    'eyeLookDownLeft': (_rule((LEFT_PUPIL,), 'y', -0.15),),
    'eyeLookDownRight': (_rule((RIGHT_PUPIL,), 'y', -0.15),),
    'eyeLookInLeft': (_rule((LEFT_PUPIL,), 'x', -0.15),),
    'eyeLookInRight': (_rule((RIGHT_PUPIL,), 'x', 0.15),),
    'eyeLookOutLeft': (_rule((LEFT_PUPIL,), 'x', 0.15),),
    'eyeLookOutRight': (_rule((RIGHT_PUPIL,), 'x', -0.15),),
    'eyeLookUpLeft': (_rule((LEFT_PUPIL,), 'y', 0.15),),
    'eyeLookUpRight': (_rule((RIGHT_PUPIL,), 'y', 0.15),),
    'eyeSquintLeft': (
        _rule(LEFT_UPPER_LID, 'y', -0.1),
        _rule(LEFT_LOWER_LID, 'y', 0.2),
    ),
    'eyeSquintRight': (
        _rule(RIGHT_UPPER_LID, 'y', -0.1),
        _rule(RIGHT_LOWER_LID, 'y', 0.2),
    ),
    'eyeWideLeft': (
        _rule(LEFT_UPPER_LID, 'y', 0.25),
        _rule(LEFT_LOWER_LID, 'y', -0.05),
    ),
    'eyeWideRight': (
        _rule(RIGHT_UPPER_LID, 'y', 0.25),
        _rule(RIGHT_LOWER_LID, 'y', -0.05),
    ),
    'jawForward': (_below(MANDIBLE_Y, 'z', 0.4),),
    'jawLeft': (_below(MANDIBLE_Y, 'x', 0.3),),
    'jawOpen': (
        _rule(JAW_LOWER + LOWER_LIP, 'y', -2.5),
        _rule(MOUTH_CORNERS + (3, 13), 'y', -1.2),
    ),
    'jawRight': (_below(MANDIBLE_Y, 'x', -0.3),),
    'mouthClose': (
        _rule(LOWER_LIP, 'y', 0.3),
        _rule(UPPER_LIP, 'y', -0.2),
    ),
    'mouthDimpleLeft': (
        _rule(LEFT_CORNER, 'x', 0.1),
        _rule(LEFT_CORNER, 'z', -0.1),
    ),
    'mouthDimpleRight': (
        _rule(RIGHT_CORNER, 'x', -0.1),
        _rule(RIGHT_CORNER, 'z', -0.1),
    ),
    'mouthFrownLeft': (_rule(LEFT_CORNER, 'y', -0.3),),
    'mouthFrownRight': (_rule(RIGHT_CORNER, 'y', -0.3),),
    'mouthFunnel': (
        _rule(LIPS, 'x', scale=0.85),
        _rule(LIPS, 'z', 0.2),
    ),
    'mouthLeft': (_rule(LIPS, 'x', 0.3),),
    'mouthLowerDownLeft': (_rule(LEFT_LOWER_LIP, 'y', -0.3),),
    'mouthLowerDownRight': (_rule(RIGHT_LOWER_LIP, 'y', -0.3),),
    'mouthPressLeft': (
        _rule(LEFT_LOWER_LIP, 'y', 0.1),
        _rule(LEFT_UPPER_LIP, 'y', -0.1),
    ),
    'mouthPressRight': (
        _rule(RIGHT_LOWER_LIP, 'y', 0.1),
        _rule(RIGHT_UPPER_LIP, 'y', -0.1),
    ),
    'mouthPucker': (
        _rule(LIPS, 'x', scale=0.7),
        _rule(LIPS, 'z', 0.35),
    ),
    'mouthRight': (_rule(LIPS, 'x', -0.3),),
    'mouthRollLower': (
        _rule(LOWER_LIP, 'z', -0.15),
        _rule(LOWER_LIP, 'y', 0.05),
    ),
    'mouthRollUpper': (
        _rule(UPPER_LIP, 'z', -0.15),
        _rule(UPPER_LIP, 'y', -0.05),
    ),
    'mouthShrugLower': (
        _rule(LOWER_LIP, 'y', 0.2),
        _rule((7, 8, 9), 'y', 0.1),
    ),
    'mouthShrugUpper': (_rule(UPPER_LIP, 'y', 0.15),),
    'mouthSmileLeft': (
        _rule(LEFT_CORNER, 'y', 0.3),
        _rule(LEFT_CORNER, 'x', 0.15),
    ),
    'mouthSmileRight': (
        _rule(RIGHT_CORNER, 'y', 0.3),
        _rule(RIGHT_CORNER, 'x', -0.15),
    ),
    'mouthStretchLeft': (
        _rule(LEFT_CORNER, 'x', 0.25),
        _rule(LEFT_CORNER, 'y', -0.05),
    ),
    'mouthStretchRight': (
        _rule(RIGHT_CORNER, 'x', -0.25),
        _rule(RIGHT_CORNER, 'y', -0.05),
    ),
    'mouthUpperUpLeft': (_rule(LEFT_UPPER_LIP, 'y', 0.25),),
    'mouthUpperUpRight': (_rule(RIGHT_UPPER_LIP, 'y', 0.25),),
    'noseSneerLeft': (_rule(LEFT_NOSTRIL, 'y', 0.15),),
    'noseSneerRight': (_rule(RIGHT_NOSTRIL, 'y', 0.15),),
    'tongueOut': (
        _rule((65, 66, 67), 'y', -0.3),
        _rule((65, 66, 67), 'z', 0.2),
    ),
}


def validate_rules(rules: Mapping[str, Sequence[MorphRule]]) -> None:
    """
    Check that a rule table covers exactly the ARKit channels and only
    references frontal vertices.

    Raises:
        ValueError: On missing/unknown channels, bad axes or indices
    """
    missing = [name for name in ARKIT_BLENDSHAPE_NAMES if name not in rules]
    unknown = [name for name in rules if name not in ARKIT_BLENDSHAPE_NAMES]
    if missing or unknown:
        raise ValueError(f"Rule table mismatch (missing {missing}, unknown {unknown})")

    for name, channel_rules in rules.items():
        for rule in channel_rules:
            if rule.axis not in AXES:
                raise ValueError(f"{name}: unknown axis '{rule.axis}'")
            for index in rule.selector.indices:
                if not 0 <= index < FRONTAL_VERTEX_COUNT:
                    raise ValueError(f"{name}: vertex index {index} is not a frontal vertex")


validate_rules(MORPH_RULES)


@dataclass
class MorphTargets:
    """
    Absolute-position morph targets, one per ARKit channel.

    Attributes:
        names: Channel names, in ARKIT_BLENDSHAPE_NAMES order
        targets: Positions, shape (len(names), V, 3)
        relative: Always False here; see FaceMeshAsset.morph_deltas()
    """
    names: Tuple[str, ...]
    targets: NDArray[np.float32]
    relative: bool = field(default=False)


class MorphTargetSynthesizer:
    """
    Build one absolute morph target per ARKit channel from a rule table.

    Args:
        intensity: Multiplier turning rule displacements into model units
        rules: Channel -> rules table (defaults to MORPH_RULES)
        frontal_vertex_count: Rows eligible for deformation
    """

    def __init__(
        self,
        intensity: float = 0.1,
        rules: Optional[Mapping[str, Sequence[MorphRule]]] = None,
        frontal_vertex_count: int = FRONTAL_VERTEX_COUNT
    ):
        self.intensity = float(intensity)
        self.rules = MORPH_RULES if rules is None else rules
        if rules is not None:
            validate_rules(self.rules)
        self.frontal_vertex_count = frontal_vertex_count

    def apply_rule(
        self,
        target: NDArray[np.float32],
        base: NDArray[np.float32],
        rule: MorphRule
    ) -> None:
        """Apply one rule in place to a target buffer."""
        selected = rule.selector.select(base[:self.frontal_vertex_count])
        if len(selected) == 0:
            return

        axis = AXES[rule.axis]
        values = target[selected, axis]

        if rule.scale != 1.0:
            centroid = values.mean()
            values = centroid + (values - centroid) * rule.scale

        if rule.displacement != 0.0:
            values = values + rule.displacement * self.intensity

        target[selected, axis] = values

    def synthesize_channel(self, name: str, base: NDArray[np.float32]) -> NDArray[np.float32]:
        """Absolute positions for one channel."""
        target = base.copy()
        for rule in self.rules[name]:
            self.apply_rule(target, base, rule)
        return target

    def synthesize(self, base_positions: NDArray[np.float32]) -> MorphTargets:
        """
        Build all 52 morph targets.

        Args:
            base_positions: Model-space positions, frontal rows first, shape (V, 3)

        Returns:
            MorphTargets with targets of shape (52, V, 3)
        """
        base = np.asarray(base_positions, dtype=np.float32)
        if len(base) < self.frontal_vertex_count:
            raise ValueError(
                f"Base buffer has {len(base)} vertices, expected at least "
                f"{self.frontal_vertex_count} frontal vertices"
            )

        targets = np.stack([
            self.synthesize_channel(name, base) for name in ARKIT_BLENDSHAPE_NAMES
        ]).astype(np.float32)

        logger.debug(
            "Synthesized %d morph targets over %d vertices (intensity %.3f)",
            len(ARKIT_BLENDSHAPE_NAMES), len(base), self.intensity
        )
        return MorphTargets(names=ARKIT_BLENDSHAPE_NAMES, targets=targets)
