"""
Per-point covariance estimation.

Each point gets the sample covariance of its k-nearest-neighbor
neighborhood, regularized to a flat disc so that it models the local
surface: the smallest eigenvalue is set to ``PLANE_EPSILON`` and the other
two to 1.
"""

from __future__ import annotations

import time
from typing import Optional

import numpy as np

from .point_cloud import PointCloud
from .spatial_index import SpatialIndex
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

PLANE_EPSILON = 1e-3


def regularize_plane(covariances: np.ndarray, epsilon: float = PLANE_EPSILON) -> np.ndarray:
    """Replace the eigenvalues of each covariance by ``(epsilon, 1, 1)``."""
    if len(covariances) == 0:
        return np.empty((0, 3, 3), dtype=np.float64)
    # eigh returns eigenvalues in ascending order; the first axis is the normal
    _, eigvecs = np.linalg.eigh(covariances)
    values = np.array([epsilon, 1.0, 1.0])
    return np.einsum("nij,j,nkj->nik", eigvecs, values, eigvecs)


def neighborhood_covariances(points: np.ndarray, neighbors: np.ndarray) -> np.ndarray:
    """Sample covariance of each neighborhood.

    Args:
        points: (N, 3) coordinates
        neighbors: (N, k) neighbor indices into ``points``

    Returns:
        (N, 3, 3) covariances (normalized by k)
    """
    local = points[neighbors]  # (N, k, 3)
    centered = local - local.mean(axis=1, keepdims=True)
    return np.einsum("nki,nkj->nij", centered, centered) / neighbors.shape[1]


def estimate_covariances(
    cloud: PointCloud,
    num_neighbors: int = 20,
    num_threads: int = 1,
    *,
    index: Optional[SpatialIndex] = None,
) -> PointCloud:
    """
    Estimate a local-shape covariance for every point of ``cloud``.

    Neighborhoods include the point itself. When the cloud holds fewer than
    ``num_neighbors`` points, every point is used as the neighborhood.

    Args:
        cloud: Input cloud (typically already downsampled)
        num_neighbors: Neighborhood size k (>= 1)
        num_threads: Upper bound on threads used for the neighbor search
        index: Optional pre-built index over ``cloud``

    Returns:
        New PointCloud with the same points and ``(N, 3, 3)`` covariances
    """
    if num_neighbors < 1:
        raise ValueError(f"num_neighbors must be >= 1, got {num_neighbors}")

    if cloud.is_empty:
        return cloud.with_covariances(np.empty((0, 3, 3), dtype=np.float64))

    start = time.time()
    if index is None or index.cloud.points is not cloud.points:
        index = SpatialIndex(cloud, num_threads=num_threads)

    neighbors, _ = index.knn_search(cloud.points, k=num_neighbors, workers=num_threads)
    covs = regularize_plane(neighborhood_covariances(cloud.points, neighbors))

    logger.debug(
        "Estimated covariances for %d points (k=%d) in %.4f s.",
        len(cloud),
        neighbors.shape[1],
        time.time() - start,
    )
    return cloud.with_covariances(covs)
