"""
Voxel Grid Downsampling

Collapses all points that fall into the same cube of a uniform 3D grid into
their centroid.
"""

from __future__ import annotations

import numpy as np

from .point_cloud import PointCloud
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


def voxel_keys(points: np.ndarray, leaf_size: float) -> np.ndarray:
    """Integer grid coordinates ``floor(p / leaf_size)`` of every point (N x 3)."""
    return np.floor(points / leaf_size).astype(np.int64)


def downsample(cloud: PointCloud, leaf_size: float) -> PointCloud:
    """Voxel-grid downsampling.

    Output points are the centroids of the occupied voxels, ordered by voxel
    key, so the result does not depend on the ordering of the input points.
    Non-finite points are discarded. Covariances are not carried over.

    Args:
        cloud: Input cloud
        leaf_size: Edge length of a voxel in meters (must be > 0)

    Returns:
        New PointCloud with one point per occupied voxel

    Examples:
        >>> pts = np.array([[0.01, 0.02, 0.0], [0.03, 0.04, 0.0], [1.1, 0.0, 0.0]])
        >>> len(downsample(PointCloud(pts), leaf_size=0.25))
        2
    """
    if not leaf_size > 0:
        raise ValueError(f"leaf_size must be positive, got {leaf_size}")

    points = cloud.points
    if len(points) == 0:
        return PointCloud.empty()

    finite = np.isfinite(points).all(axis=1)
    if not finite.all():
        logger.debug("Dropping %d non-finite points before downsampling.", int((~finite).sum()))
        points = points[finite]
        if len(points) == 0:
            return PointCloud.empty()

    keys = voxel_keys(points, leaf_size)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)

    n_voxels = len(counts)
    centroids = np.column_stack([
        np.bincount(inverse, weights=points[:, axis], minlength=n_voxels)
        for axis in range(3)
    ]) / counts[:, None]

    logger.debug(
        "Voxel grid (leaf=%.3f m): %d -> %d points.", leaf_size, len(cloud), n_voxels
    )
    return PointCloud(centroids)
