"""
Point Cloud Preprocessing Module

This module contains everything needed to turn raw points into an alignment
input:
- Reference map loading (LAS/LAZ, PLY, PCD, text, NPY)
- Voxel grid downsampling
- Per-point covariance estimation
- KD-tree spatial indexing
- The Preprocessor that bundles the three steps into an immutable snapshot
"""

from .point_cloud import PointCloud
from .loader import MapLoader, MapLoadError, MapNotFoundError, MapParseError
from .voxel_grid import downsample
from .covariance import estimate_covariances
from .spatial_index import SpatialIndex, build_index
from .preprocessor import CloudSnapshot, Preprocessor

__all__ = [
    "PointCloud",
    "MapLoader",
    "MapLoadError",
    "MapNotFoundError",
    "MapParseError",
    "downsample",
    "estimate_covariances",
    "SpatialIndex",
    "build_index",
    "CloudSnapshot",
    "Preprocessor",
]
