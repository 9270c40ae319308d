"""
Reference Map Loader

This module reads the static prior map the scans are aligned against.
"""

from pathlib import Path
from typing import Union

import laspy
import numpy as np
from plyfile import PlyData

from .point_cloud import PointCloud
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class MapLoadError(Exception):
    """The reference map could not be loaded."""


class MapNotFoundError(MapLoadError, FileNotFoundError):
    """The reference map file does not exist."""


class MapParseError(MapLoadError, ValueError):
    """The reference map file exists but could not be parsed."""


class MapLoader:
    """
    A class for loading a static reference point cloud.

    Supported formats:
    - LAS/LAZ via laspy
    - PLY via plyfile
    - PCD via open3d (optional dependency, imported on demand)
    - XYZ/TXT/CSV plain-text coordinates and NPY arrays via numpy

    Only positions are read; every other attribute is ignored.
    """

    SUPPORTED_SUFFIXES = ('.las', '.laz', '.ply', '.pcd', '.xyz', '.txt', '.csv', '.npy')

    def __init__(self):
        self.last_point_count = 0

    def load(self, file_path: Union[str, Path]) -> PointCloud:
        """
        Load a reference point cloud.

        Args:
            file_path: Path to the map file

        Returns:
            PointCloud with the map points (float64)

        Raises:
            MapNotFoundError: If the file does not exist
            MapParseError: If the format is unsupported or the content invalid
        """
        file_path = Path(file_path)

        if not file_path.is_file():
            raise MapNotFoundError(f"File not found: {file_path}")

        suffix = file_path.suffix.lower()
        if suffix not in self.SUPPORTED_SUFFIXES:
            raise MapParseError(f"Unsupported file format: {suffix}")

        logger.info(f"Loading reference map from {file_path}")

        try:
            if suffix in ('.las', '.laz'):
                points = self._read_las(file_path)
            elif suffix == '.ply':
                points = self._read_ply(file_path)
            elif suffix == '.pcd':
                points = self._read_pcd(file_path)
            elif suffix == '.npy':
                points = np.load(file_path, allow_pickle=False)
            else:
                points = self._read_text(file_path)
        except MapLoadError:
            raise
        except Exception as e:
            logger.error(f"Error loading reference map from {file_path}: {e}")
            raise MapParseError(f"Could not parse {file_path}: {e}") from e

        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] < 3:
            raise MapParseError(f"Expected (N, 3) coordinates in {file_path}, got shape {points.shape}")
        points = points[:, :3]

        finite = np.isfinite(points).all(axis=1)
        if not finite.all():
            logger.warning(f"Dropping {int((~finite).sum())} non-finite points from {file_path.name}")
            points = points[finite]

        if len(points) == 0:
            logger.warning(f"No points found in file: {file_path}")

        self.last_point_count = len(points)
        logger.info(f"Loaded {len(points)} points from {file_path.name}")
        return PointCloud(points)

    def _read_las(self, file_path: Path) -> np.ndarray:
        las = laspy.read(file_path)
        return np.column_stack([
            np.asarray(las.x, dtype=np.float64),
            np.asarray(las.y, dtype=np.float64),
            np.asarray(las.z, dtype=np.float64),
        ])

    def _read_ply(self, file_path: Path) -> np.ndarray:
        ply = PlyData.read(str(file_path))
        vertex = ply['vertex']
        return np.column_stack([
            np.asarray(vertex['x'], dtype=np.float64),
            np.asarray(vertex['y'], dtype=np.float64),
            np.asarray(vertex['z'], dtype=np.float64),
        ])

    def _read_pcd(self, file_path: Path) -> np.ndarray:
        try:
            import open3d as o3d  # type: ignore
        except Exception as e:
            raise MapParseError("Open3D is required to read PCD files") from e

        pcd = o3d.io.read_point_cloud(str(file_path))
        return np.asarray(pcd.points, dtype=np.float64).reshape(-1, 3)

    def _read_text(self, file_path: Path) -> np.ndarray:
        delimiter = ',' if file_path.suffix.lower() == '.csv' else None
        return np.loadtxt(file_path, delimiter=delimiter, comments='#', ndmin=2)

    def validate_file(self, file_path: Union[str, Path]) -> bool:
        """
        Check that a map file can be loaded and holds at least one point.

        Returns:
            True if the file is valid, False otherwise
        """
        try:
            cloud = self.load(file_path)
        except MapLoadError as e:
            logger.warning(f"Map validation failed for {file_path}: {e}")
            return False
        return not cloud.is_empty
