"""Pose conversion: 3x4 analyzer poses to renderer-ready 4x4 transforms."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np


class AxisConvention(str, Enum):
    ARTOOLKIT = "artoolkit"  # camera looks down +Z, marker normal is +Z
    WEBGL = "webgl"  # camera looks down -Z, marker normal is +Y


def _rot_x(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[1, 0, 0, 0], [0, c, -s, 0], [0, s, c, 0], [0, 0, 0, 1]], dtype=np.float64)


def _rot_y(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, 0, s, 0], [0, 1, 0, 0], [-s, 0, c, 0], [0, 0, 0, 1]], dtype=np.float64)


def _rot_z(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0, 0], [s, c, 0, 0], [0, 0, 1, 0], [0, 0, 0, 1]], dtype=np.float64)


# Flip camera axes, then turn the marker so that Y is its normal.
WEBGL_CAMERA_AXES = _rot_y(np.pi) @ _rot_z(np.pi)
WEBGL_MARKER_AXES = _rot_x(np.pi / 2)


def to_homogeneous(
    pose: np.ndarray, scale: Optional[float] = None, out: Optional[np.ndarray] = None
) -> np.ndarray:
    """
    Convert a (3,4) row-major pose into a (4,4) homogeneous matrix.

    Args:
        pose: 3x4 matrix or 12 values in row-major order
        scale: when non-zero, multiplies the translation column only
        out: optional 4x4 buffer to write into

    Returns:
        The 4x4 matrix (``out`` when given)
    """
    t = np.asarray(pose, dtype=np.float64).reshape(3, 4)
    m = out if out is not None else np.empty((4, 4), dtype=np.float64)
    m[:3, :] = t
    m[3, :] = (0.0, 0.0, 0.0, 1.0)
    if scale:
        m[:3, 3] *= scale
    return m


def to_gl_array(matrix: np.ndarray) -> np.ndarray:
    """Flatten a 4x4 matrix column-major (translation lands at indices 12..14)."""
    return np.asarray(matrix, dtype=np.float64).reshape(4, 4).flatten(order="F")


def compose_pose(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Compose two 3x4 rigid transforms: result = a @ b."""
    a = np.asarray(a, dtype=np.float64).reshape(3, 4)
    b = np.asarray(b, dtype=np.float64).reshape(3, 4)
    out = np.empty((3, 4), dtype=np.float64)
    out[:, :3] = a[:, :3] @ b[:, :3]
    out[:, 3] = a[:, :3] @ b[:, 3] + a[:, 3]
    return out


def remap_axes(matrix: np.ndarray, convention: AxisConvention) -> np.ndarray:
    convention = AxisConvention(convention)
    if convention is AxisConvention.ARTOOLKIT:
        return np.asarray(matrix, dtype=np.float64)
    return WEBGL_CAMERA_AXES @ matrix @ WEBGL_MARKER_AXES


class TransformPipeline:
    """
    Single conversion point for every pose handed to observers.

    The output matrix is one long-lived buffer overwritten on each call;
    consumers that keep a pose past the current callback must copy it.
    """

    def __init__(
        self,
        scale: Optional[float] = None,
        convention: AxisConvention | str = AxisConvention.ARTOOLKIT,
    ):
        self.scale = scale
        self.convention = AxisConvention(convention)
        self._out = np.eye(4, dtype=np.float64)

    @property
    def matrix(self) -> np.ndarray:
        return self._out

    def convert(self, pose: np.ndarray) -> np.ndarray:
        to_homogeneous(pose, self.scale, out=self._out)
        if self.convention is not AxisConvention.ARTOOLKIT:
            self._out[:, :] = remap_axes(self._out, self.convention)
        return self._out


def rvec_tvec_to_matrix(rvec: np.ndarray, tvec: np.ndarray) -> np.ndarray:
    """
    Convert rotation vector and translation vector to 4x4 transformation matrix.

    Args:
        rvec: Rotation vector (3,) or (3,1)
        tvec: Translation vector (3,) or (3,1)

    Returns:
        4x4 homogeneous transformation matrix
    """
    rvec = np.array(rvec, dtype=np.float64).reshape(3)
    tvec = np.array(tvec, dtype=np.float64).reshape(3)

    R, _ = cv2.Rodrigues(rvec)

    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = tvec

    return T


def matrix_to_rvec_tvec(T: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Convert a 4x4 (or 3x4) transformation matrix to rotation and translation vectors.

    Returns:
        (rvec, tvec) where rvec is (3,1) and tvec is (3,1)
    """
    T = np.asarray(T, dtype=np.float64)
    R = np.ascontiguousarray(T[:3, :3])
    tvec = T[:3, 3].reshape(3, 1).copy()

    rvec, _ = cv2.Rodrigues(R)

    return rvec, tvec


def invert_transform(T: np.ndarray) -> np.ndarray:
    """
    Invert a 4x4 homogeneous transformation matrix.

    For SE(3): T^-1 = [R^T, -R^T * t; 0, 1]
    """
    T_inv = np.eye(4)
    R = T[:3, :3]
    t = T[:3, 3]

    R_T = R.T
    T_inv[:3, :3] = R_T
    T_inv[:3, 3] = -R_T @ t

    return T_inv
