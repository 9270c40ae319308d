"""
Preprocessor

Turns a raw point set into the immutable bundle the aligner works on:
downsampled cloud + per-point covariances + spatial index. The same code path
is used for the reference map (once) and for every incoming scan.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .covariance import estimate_covariances
from .point_cloud import PointCloud
from .spatial_index import SpatialIndex
from .voxel_grid import downsample
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class CloudSnapshot:
    """Processed cloud and the index built over it, handed around as one value.

    Attributes:
        cloud: Downsampled cloud with covariances
        index: KD-tree over ``cloud``
        stamp: Timestamp (seconds) of the scan; None for the reference map
        frame_id: Frame the points are expressed in
        sequence: Arrival order of the scan (0 for the reference map)
    """

    cloud: PointCloud
    index: SpatialIndex
    stamp: Optional[float] = None
    frame_id: Optional[str] = None
    sequence: int = 0

    def __post_init__(self) -> None:
        if self.index.cloud is not self.cloud:
            raise ValueError("Snapshot index must be built over the snapshot cloud")
        if not self.cloud.has_covariances:
            raise ValueError("Snapshot cloud must carry covariances")

    def __len__(self) -> int:
        return len(self.cloud)


class Preprocessor:
    """
    Downsample -> estimate covariances -> build index.

    Example:
        pre = Preprocessor(leaf_size=0.25, num_neighbors=20, num_threads=4)
        snapshot = pre.process(points, stamp=msg.stamp, frame_id=msg.frame_id)
    """

    def __init__(self, leaf_size: float = 0.25, num_neighbors: int = 20, num_threads: int = 4):
        if not leaf_size > 0:
            raise ValueError(f"leaf_size must be positive, got {leaf_size}")
        if num_neighbors < 1:
            raise ValueError(f"num_neighbors must be >= 1, got {num_neighbors}")
        if num_threads < 1:
            raise ValueError(f"num_threads must be >= 1, got {num_threads}")

        self.leaf_size = float(leaf_size)
        self.num_neighbors = int(num_neighbors)
        self.num_threads = int(num_threads)

    def process(
        self,
        points: np.ndarray | PointCloud,
        *,
        stamp: Optional[float] = None,
        frame_id: Optional[str] = None,
        sequence: int = 0,
    ) -> CloudSnapshot:
        """
        Build a CloudSnapshot from raw points.

        Args:
            points: Raw (N x 3) points or an existing PointCloud
            stamp: Scan timestamp carried into the snapshot
            frame_id: Frame identifier carried into the snapshot
            sequence: Arrival order carried into the snapshot

        Returns:
            New CloudSnapshot
        """
        start = time.time()
        raw = points if isinstance(points, PointCloud) else PointCloud(points)

        downsampled = downsample(raw, self.leaf_size)
        index = SpatialIndex(downsampled, num_threads=self.num_threads)
        cloud = estimate_covariances(
            downsampled,
            self.num_neighbors,
            self.num_threads,
            index=index,
        )

        snapshot = CloudSnapshot(
            cloud=cloud,
            index=index.rebind(cloud),
            stamp=stamp,
            frame_id=frame_id,
            sequence=sequence,
        )
        logger.debug(
            "Preprocessed %d -> %d points in %.4f s (leaf=%.3f m, k=%d).",
            len(raw),
            len(cloud),
            time.time() - start,
            self.leaf_size,
            self.num_neighbors,
        )
        return snapshot
