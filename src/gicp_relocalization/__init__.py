"""
GICP Relocalization Package

Estimates the map -> odom correction of a moving sensor by continuously
aligning its scans to a static prior point cloud map with generalized ICP.
The package provides the preprocessing stages (voxel downsampling, covariance
estimation, KD-tree indexing), the GICP solver, and a node that runs scan
ingestion, alignment and transform publishing as independent activities.
"""

__version__ = "0.1.0"

from .preprocessing import *
from .alignment import *
from .pipeline import *
from .utils import *

__all__ = [
    "preprocessing",
    "alignment",
    "pipeline",
    "utils",
]
