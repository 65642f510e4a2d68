"""
Coordinate system definitions and pose-matrix helpers.

This module defines the model space used throughout face2head and the
conversions applied to the detector's facial transformation matrix.

Landmark space (detector output):
    x, y: normalized image coordinates in [0, 1], y pointing down
    z: MediaPipe relative depth, smaller is closer to the camera

Model space (everything after BoundingFrame.normalize):
    Origin: Center of the landmark bounding box
    +X: Subject's left (image right)
    +Y: Up (toward the top of the head)
    +Z: Toward the viewer
    The frontal face spans [-1, 1] in x and y.

Model space matches glTF's Y-up, +Z-forward convention, so no further
transform is needed when the asset is handed to the encoder.

Coordinate conversions happen ONLY at system boundaries:
1. Input: landmark space -> model space (in frame.py)
2. Pose: detector transformation matrix applied once (in assembler.py)
"""

import numpy as np
from typing import Sequence, Union
from numpy.typing import NDArray


class ModelCoordinates:
    """
    Documentation of the model coordinate system.

    All geometry produced by face2head uses this coordinate system:
    - +X: Subject's left
    - +Y: Up
    - +Z: Toward the viewer (the face looks down +Z)

    Triangles are wound counter-clockwise when seen from +Z, so frontal
    faces point toward the viewer and back-of-head faces point away.
    """

    UP_AXIS = np.array([0.0, 1.0, 0.0])
    FORWARD_AXIS = np.array([0.0, 0.0, 1.0])  # Face looks down +Z
    RIGHT_AXIS = np.array([1.0, 0.0, 0.0])


def pose_matrix_from_values(
    values: Union[Sequence[float], NDArray[np.float64]]
) -> NDArray[np.float64]:
    """
    Build a 4x4 pose matrix from 16 row-major values or a 4x4 array.

    Args:
        values: Flat sequence of 16 numbers (row-major) or a (4, 4) array

    Returns:
        4x4 float64 matrix

    Raises:
        ValueError: If the input does not hold exactly 16 finite values
    """
    matrix = np.asarray(values, dtype=np.float64)

    if matrix.shape == (16,):
        matrix = matrix.reshape(4, 4)
    elif matrix.shape != (4, 4):
        raise ValueError(
            f"Pose matrix must be 16 values or shape (4, 4), got {matrix.shape}"
        )

    if not np.all(np.isfinite(matrix)):
        raise ValueError("Pose matrix contains NaN or infinite values")

    return matrix


def orthonormalize_rotation(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Project a 3x3 matrix onto the nearest rotation.

    The detector's transformation matrix carries scale and shear from its
    own canonical model; only the rotation is meaningful for model space.

    Args:
        R: 3x3 matrix (rotation with scale/shear)

    Returns:
        3x3 proper rotation matrix (det = +1)
    """
    U, _, Vt = np.linalg.svd(R)
    rotation = U @ Vt

    # Reflection: flip the last singular direction
    if np.linalg.det(rotation) < 0:
        U[:, -1] *= -1
        rotation = U @ Vt

    return rotation


def apply_pose(
    points: NDArray[np.float32],
    pose: NDArray[np.float64],
    include_translation: bool = False
) -> NDArray[np.float32]:
    """
    Apply a pose matrix to model-space points.

    Args:
        points: Points, shape (N, 3)
        pose: 4x4 pose matrix
        include_translation: Also apply the translation column

    Returns:
        Transformed points, shape (N, 3), float32
    """
    rotation = orthonormalize_rotation(pose[:3, :3])
    result = points.astype(np.float64) @ rotation.T

    if include_translation:
        result = result + pose[:3, 3]

    return result.astype(np.float32)


def rotate_vectors(
    vectors: NDArray[np.float32],
    pose: NDArray[np.float64]
) -> NDArray[np.float32]:
    """
    Rotate direction vectors (e.g. morph deltas) by the pose rotation.

    Vectors are never translated.
    """
    rotation = orthonormalize_rotation(pose[:3, :3])
    return (vectors.astype(np.float64) @ rotation.T).astype(np.float32)


def rotation_to_quaternion_wxyz(R: NDArray[np.float64]) -> NDArray[np.float32]:
    """
    Convert 3x3 rotation matrix to quaternion in (w, x, y, z) order.

    Stored with exported bundles so the encoder can place the head node
    without re-deriving the rotation.

    Args:
        R: 3x3 rotation matrix

    Returns:
        Quaternion as [w, x, y, z]
    """
    trace = R[0, 0] + R[1, 1] + R[2, 2]

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        w = 0.25 / s
        x = (R[2, 1] - R[1, 2]) * s
        y = (R[0, 2] - R[2, 0]) * s
        z = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        w = (R[2, 1] - R[1, 2]) / s
        x = 0.25 * s
        y = (R[0, 1] + R[1, 0]) / s
        z = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        w = (R[0, 2] - R[2, 0]) / s
        x = (R[0, 1] + R[1, 0]) / s
        y = 0.25 * s
        z = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        w = (R[1, 0] - R[0, 1]) / s
        x = (R[0, 2] + R[2, 0]) / s
        y = (R[1, 2] + R[2, 1]) / s
        z = 0.25 * s

    return np.array([w, x, y, z], dtype=np.float32)
