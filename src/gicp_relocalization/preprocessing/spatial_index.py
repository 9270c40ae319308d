"""
Spatial Index

KD-tree nearest-neighbor index over a single PointCloud. The tree is built
once and only queried afterwards; several threads may query it at the same
time. When the owning cloud changes a new index is built.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Tuple

import numpy as np
from sklearn.neighbors import NearestNeighbors

from .point_cloud import PointCloud
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

# Below this many queries per worker, splitting across threads costs more than it saves
MIN_QUERIES_PER_WORKER = 2048


class SpatialIndex:
    """
    Read-only KD-tree over the points of one PointCloud.

    Queries are split in chunks across at most ``workers`` threads; the
    number of workers never changes the result.
    """

    def __init__(self, cloud: PointCloud, num_threads: int = 1):
        """
        Build the index.

        Args:
            cloud: Cloud to index. The index keeps a reference to it.
            num_threads: Default number of worker threads for queries.
        """
        if num_threads < 1:
            raise ValueError(f"num_threads must be >= 1, got {num_threads}")

        self.cloud = cloud
        self.num_threads = int(num_threads)
        self._nbrs: Optional[NearestNeighbors] = None

        if not cloud.is_empty:
            build_start = time.time()
            self._nbrs = NearestNeighbors(algorithm="kd_tree", n_jobs=1).fit(cloud.points)
            logger.debug(
                "KD-Tree built over %d points in %.4f s.",
                len(cloud),
                time.time() - build_start,
            )

    def __len__(self) -> int:
        return len(self.cloud)

    def rebind(self, cloud: PointCloud) -> "SpatialIndex":
        """
        Return an index over ``cloud`` sharing this index's tree.

        Only valid when ``cloud`` holds the very same points array, which is
        the case for clouds derived with ``PointCloud.with_covariances``.
        """
        if cloud.points is not self.cloud.points and not (cloud.is_empty and self.cloud.is_empty):
            raise ValueError("Cannot rebind a spatial index to a cloud with different points")
        shared = SpatialIndex.__new__(SpatialIndex)
        shared.cloud = cloud
        shared.num_threads = self.num_threads
        shared._nbrs = self._nbrs
        return shared

    def knn_search(
        self,
        queries: np.ndarray,
        k: int = 1,
        workers: Optional[int] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Find the ``k`` nearest indexed points of every query point.

        ``k`` is clipped to the number of indexed points.

        Args:
            queries: Query points (Q x 3).
            k: Number of neighbors.
            workers: Worker threads; defaults to the index's ``num_threads``.

        Returns:
            Tuple of (indices (Q x k'), squared_distances (Q x k')).
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")

        queries = np.asarray(queries, dtype=np.float64).reshape(-1, 3)
        k = min(int(k), len(self))

        if self._nbrs is None or len(queries) == 0 or k == 0:
            return (
                np.empty((len(queries), k), dtype=np.int64),
                np.empty((len(queries), k), dtype=np.float64),
            )

        n_workers = self.num_threads if workers is None else max(1, int(workers))
        n_workers = min(n_workers, max(1, len(queries) // MIN_QUERIES_PER_WORKER))

        if n_workers == 1:
            distances, indices = self._nbrs.kneighbors(queries, n_neighbors=k)
        else:
            chunks = np.array_split(queries, n_workers)
            with ThreadPoolExecutor(max_workers=n_workers, thread_name_prefix="knn") as pool:
                results = list(pool.map(lambda q: self._nbrs.kneighbors(q, n_neighbors=k), chunks))
            distances = np.concatenate([d for d, _ in results], axis=0)
            indices = np.concatenate([i for _, i in results], axis=0)

        return indices.astype(np.int64, copy=False), distances ** 2

    def nearest(
        self,
        queries: np.ndarray,
        workers: Optional[int] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Nearest indexed point of every query.

        Returns:
            Tuple of (indices (Q,), squared_distances (Q,)).
        """
        indices, sq_dists = self.knn_search(queries, k=1, workers=workers)
        if indices.shape[1] == 0:
            n = indices.shape[0]
            return np.full(n, -1, dtype=np.int64), np.full(n, np.inf)
        return indices[:, 0], sq_dists[:, 0]


def build_index(cloud: PointCloud, num_threads: int = 1) -> SpatialIndex:
    """Construct a SpatialIndex over ``cloud``."""
    return SpatialIndex(cloud, num_threads=num_threads)
