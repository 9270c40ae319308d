"""
Immutable point cloud container shared by the preprocessing and alignment stages.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np


def _frozen(array: np.ndarray) -> np.ndarray:
    array = np.ascontiguousarray(array, dtype=np.float64)
    if array.flags.writeable:
        # Own a copy so the caller's array stays writable
        array = array.copy()
        array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class PointCloud:
    """An ordered set of 3D points with optional per-point covariances.

    Both arrays are stored read-only; every preprocessing step returns a new
    ``PointCloud`` instead of modifying an existing one.

    Attributes:
        points: ``(N, 3)`` float64 coordinates
        covariances: ``(N, 3, 3)`` local-shape covariances, or None before
            covariance estimation
    """

    points: np.ndarray
    covariances: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        points = np.asarray(self.points, dtype=np.float64)
        if points.size == 0:
            points = points.reshape(0, 3)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"Points must be an (N, 3) array, got shape {points.shape}")
        object.__setattr__(self, "points", _frozen(points))

        if self.covariances is not None:
            covs = np.asarray(self.covariances, dtype=np.float64)
            if covs.size == 0:
                covs = covs.reshape(0, 3, 3)
            if covs.shape != (len(points), 3, 3):
                raise ValueError(
                    f"Covariances must have shape ({len(points)}, 3, 3), got {covs.shape}"
                )
            object.__setattr__(self, "covariances", _frozen(covs))

    @classmethod
    def empty(cls) -> "PointCloud":
        return cls(np.empty((0, 3), dtype=np.float64))

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    @property
    def has_covariances(self) -> bool:
        return self.covariances is not None

    def with_covariances(self, covariances: np.ndarray) -> "PointCloud":
        """Return a new cloud with the same points and the given covariances."""
        return PointCloud(self.points, covariances)
