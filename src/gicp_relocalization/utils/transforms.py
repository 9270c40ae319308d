"""
Rigid Transform Utilities

This module provides the small amount of SE(3) math the registration pipeline
needs and the stamped transform message emitted by the node:

1. ``skew`` / ``se3_exp`` for the Gauss-Newton update of the GICP solver
2. ``apply_transform`` for moving point sets between frames
3. ``StampedTransform`` - rotation (unit quaternion) + translation tagged with
   the stamp of the originating scan and the two frame identifiers
4. Text serialization of 4x4 matrices
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple, TYPE_CHECKING

import numpy as np
from scipy.spatial.transform import Rotation

from .logging import setup_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = setup_logger(__name__)


def skew(v: "NDArray[np.floating]") -> np.ndarray:
    """Skew-symmetric matrix(es) of 3-vector(s); accepts ``(3,)`` or ``(N, 3)``."""
    v = np.asarray(v, dtype=np.float64)
    out = np.zeros(v.shape[:-1] + (3, 3), dtype=np.float64)
    out[..., 0, 1] = -v[..., 2]
    out[..., 0, 2] = v[..., 1]
    out[..., 1, 0] = v[..., 2]
    out[..., 1, 2] = -v[..., 0]
    out[..., 2, 0] = -v[..., 1]
    out[..., 2, 1] = v[..., 0]
    return out


def se3_exp(delta: "NDArray[np.floating]") -> np.ndarray:
    """
    Exponential map of a twist ``(omega, v)`` to a 4x4 rigid transform.

    Args:
        delta: 6-vector, rotation part first.

    Returns:
        Transformation matrix (4 x 4).
    """
    delta = np.asarray(delta, dtype=np.float64)
    omega = delta[:3]
    v = delta[3:]

    theta = float(np.linalg.norm(omega))
    K = skew(omega)
    if theta < 1e-10:
        # Second-order Taylor expansion of V near the identity
        V = np.eye(3) + 0.5 * K + (K @ K) / 6.0
    else:
        V = (
            np.eye(3)
            + ((1.0 - np.cos(theta)) / theta ** 2) * K
            + ((theta - np.sin(theta)) / theta ** 3) * (K @ K)
        )

    T = np.eye(4)
    T[:3, :3] = Rotation.from_rotvec(omega).as_matrix()
    T[:3, 3] = V @ v
    return T


def apply_transform(points: np.ndarray, transform: np.ndarray) -> np.ndarray:
    """
    Apply a transformation matrix to a set of points.

    Args:
        points: Point cloud (N x 3).
        transform: Transformation matrix (4 x 4).

    Returns:
        Transformed point cloud (N x 3).
    """
    if points.size == 0:
        return np.asarray(points, dtype=np.float64).reshape(0, 3)

    R = transform[:3, :3]
    t = transform[:3, 3]
    return points @ R.T + t


def rotation_angle(R: np.ndarray) -> float:
    """Angle (radians) of a rotation matrix."""
    # Clamp argument to arccos to valid range to avoid NaNs
    cos_theta = max(min((float(np.trace(R)) - 1.0) * 0.5, 1.0), -1.0)
    return float(np.arccos(cos_theta))


@dataclass(frozen=True)
class StampedTransform:
    """Rigid transform from ``child_frame_id`` into ``frame_id``.

    Attributes:
        rotation: Unit quaternion ``(x, y, z, w)``
        translation: Translation ``(x, y, z)`` in meters
        stamp: Timestamp (seconds) of the scan that produced the transform
        frame_id: Parent (reference map) frame
        child_frame_id: Child (moving odometry) frame

    Example:
        >>> T = np.eye(4); T[:3, 3] = [1.0, 2.0, 0.0]
        >>> msg = StampedTransform.from_matrix(T, stamp=12.5)
        >>> msg.translation
        (1.0, 2.0, 0.0)
    """

    rotation: Tuple[float, float, float, float]
    translation: Tuple[float, float, float]
    stamp: float
    frame_id: str = "map"
    child_frame_id: str = "odom"
    matrix: np.ndarray = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.matrix is None:
            T = np.eye(4)
            T[:3, :3] = Rotation.from_quat(self.rotation).as_matrix()
            T[:3, 3] = self.translation
            T.setflags(write=False)
            object.__setattr__(self, "matrix", T)

    @classmethod
    def from_matrix(
        cls,
        transform: np.ndarray,
        *,
        stamp: float,
        frame_id: str = "map",
        child_frame_id: str = "odom",
    ) -> "StampedTransform":
        """Build a message from a 4x4 rigid transform."""
        transform = np.asarray(transform, dtype=np.float64)
        if transform.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4 matrix, got {transform.shape}")

        quat = Rotation.from_matrix(transform[:3, :3]).as_quat()
        # Keep w >= 0 so repeated conversions of the same matrix are identical
        if quat[3] < 0:
            quat = -quat
        translation = transform[:3, 3]

        matrix = transform.copy()
        matrix.setflags(write=False)
        return cls(
            rotation=tuple(float(q) for q in quat),
            translation=tuple(float(x) for x in translation),
            stamp=float(stamp),
            frame_id=frame_id,
            child_frame_id=child_frame_id,
            matrix=matrix,
        )

    def to_matrix(self) -> np.ndarray:
        """Return a writable copy of the 4x4 transform."""
        return np.array(self.matrix, dtype=np.float64)

    def is_identity(self, atol: float = 1e-12) -> bool:
        return bool(np.allclose(self.matrix, np.eye(4), atol=atol))


def save_transform_matrix(transform: np.ndarray, output_file: str) -> None:
    """Save a transformation matrix to a text file.

    Args:
        transform: 4x4 transformation matrix
        output_file: Path to output file
    """
    np.savetxt(output_file, transform, fmt='%.18e', header='4x4 transformation matrix (T_map_odom)')
    logger.info(f"Saved transformation matrix to {output_file}")


def load_transform_matrix(input_file: str) -> np.ndarray:
    """Load a transformation matrix from a text file.

    Args:
        input_file: Path to input file

    Returns:
        4x4 transformation matrix
    """
    transform = np.loadtxt(input_file)
    if transform.shape != (4, 4):
        raise ValueError(f"Expected 4x4 matrix, got shape {transform.shape}")
    logger.info(f"Loaded transformation matrix from {input_file}")
    return transform
