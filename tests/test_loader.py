"""
Test suite for the reference map loader.
"""

from pathlib import Path
import sys

import laspy
import numpy as np
import pytest
from plyfile import PlyData, PlyElement

sys.path.append(str(Path(__file__).parent.parent / "src"))

from gicp_relocalization.preprocessing.loader import (
    MapLoader,
    MapLoadError,
    MapNotFoundError,
    MapParseError,
)


@pytest.fixture
def points():
    rng = np.random.default_rng(11)
    return rng.uniform(-20, 20, size=(200, 3)).round(3)


def test_load_npy(tmp_path, points):
    """NPY arrays are read as float64 (N, 3)."""
    path = tmp_path / "map.npy"
    np.save(path, points.astype(np.float32))

    loader = MapLoader()
    cloud = loader.load(path)

    assert cloud.points.dtype == np.float64
    assert np.allclose(cloud.points, points, atol=1e-4)
    assert loader.last_point_count == len(points)


def test_load_xyz_ignores_extra_columns(tmp_path, points):
    """Only the first three columns are kept."""
    path = tmp_path / "map.xyz"
    intensity = np.arange(len(points)).reshape(-1, 1)
    np.savetxt(path, np.hstack([points, intensity]), fmt="%.3f")

    cloud = MapLoader().load(path)
    assert cloud.points.shape == (len(points), 3)
    assert np.allclose(cloud.points, points)


def test_load_csv(tmp_path, points):
    path = tmp_path / "map.csv"
    np.savetxt(path, points, fmt="%.3f", delimiter=",", header="x,y,z")

    cloud = MapLoader().load(path)
    assert np.allclose(cloud.points, points)


def test_load_ply(tmp_path, points):
    path = tmp_path / "map.ply"
    vertex = np.array(
        [tuple(p) for p in points],
        dtype=[("x", "f4"), ("y", "f4"), ("z", "f4")],
    )
    PlyData([PlyElement.describe(vertex, "vertex")]).write(str(path))

    cloud = MapLoader().load(path)
    assert len(cloud) == len(points)
    assert np.allclose(cloud.points, points, atol=1e-4)


def test_load_las(tmp_path, points):
    path = tmp_path / "map.las"
    header = laspy.LasHeader(point_format=3, version="1.2")
    header.scales = np.array([0.001, 0.001, 0.001])
    header.offsets = points.min(axis=0)
    las = laspy.LasData(header)
    las.x = points[:, 0]
    las.y = points[:, 1]
    las.z = points[:, 2]
    las.write(str(path))

    cloud = MapLoader().load(path)
    assert len(cloud) == len(points)
    assert np.allclose(cloud.points, points, atol=2e-3)


def test_load_pcd(tmp_path, points):
    o3d = pytest.importorskip("open3d")
    path = tmp_path / "map.pcd"
    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(points)
    o3d.io.write_point_cloud(str(path), pcd)

    cloud = MapLoader().load(path)
    assert np.allclose(cloud.points, points, atol=1e-4)


def test_non_finite_points_are_dropped(tmp_path, points):
    path = tmp_path / "map.npy"
    bad = points.copy()
    bad[0, 1] = np.nan
    bad[5, 2] = np.inf
    np.save(path, bad)

    cloud = MapLoader().load(path)
    assert len(cloud) == len(points) - 2
    assert np.isfinite(cloud.points).all()


def test_missing_file_raises_not_found(tmp_path):
    """A missing map is both a MapLoadError and a FileNotFoundError."""
    with pytest.raises(MapNotFoundError) as excinfo:
        MapLoader().load(tmp_path / "missing.pcd")
    assert isinstance(excinfo.value, MapLoadError)
    assert isinstance(excinfo.value, FileNotFoundError)


def test_empty_path_raises_not_found():
    with pytest.raises(MapNotFoundError):
        MapLoader().load("")


def test_unsupported_suffix(tmp_path):
    path = tmp_path / "map.obj"
    path.write_text("v 0 0 0\n")
    with pytest.raises(MapParseError):
        MapLoader().load(path)


def test_garbage_text_raises_parse_error(tmp_path):
    path = tmp_path / "map.xyz"
    path.write_text("this is not\na point cloud\n")
    with pytest.raises(MapParseError) as excinfo:
        MapLoader().load(path)
    assert isinstance(excinfo.value, ValueError)


def test_two_column_file_is_rejected(tmp_path):
    path = tmp_path / "map.txt"
    np.savetxt(path, np.ones((10, 2)))
    with pytest.raises(MapParseError):
        MapLoader().load(path)


def test_validate_file(tmp_path, points):
    good = tmp_path / "map.npy"
    np.save(good, points)
    empty = tmp_path / "empty.npy"
    np.save(empty, np.empty((0, 3)))

    loader = MapLoader()
    assert loader.validate_file(good)
    assert not loader.validate_file(empty)
    assert not loader.validate_file(tmp_path / "missing.las")
