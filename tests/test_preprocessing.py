"""
Tests for the preprocessing stages: voxel grid downsampling, covariance
estimation, spatial indexing and the Preprocessor bundle.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from gicp_relocalization.preprocessing import (
    CloudSnapshot,
    PointCloud,
    Preprocessor,
    SpatialIndex,
    build_index,
    downsample,
    estimate_covariances,
)
from gicp_relocalization.preprocessing.covariance import PLANE_EPSILON

from scene_helpers import make_room, sample_plane


# ------------------------ Downsampling ------------------------


def test_downsample_empty_cloud_yields_empty_cloud():
    out = downsample(PointCloud.empty(), leaf_size=0.25)
    assert len(out) == 0
    assert out.points.shape == (0, 3)


def test_downsample_coincident_points_collapse_to_one():
    pts = np.tile(np.array([[1.1, 2.2, 3.3]]), (50, 1))
    out = downsample(PointCloud(pts), leaf_size=0.25)
    assert len(out) == 1
    assert np.allclose(out.points[0], [1.1, 2.2, 3.3])


def test_downsample_uses_voxel_centroid():
    pts = np.array([
        [0.01, 0.01, 0.01],
        [0.09, 0.05, 0.03],
        [0.05, 0.09, 0.05],
        [1.01, 0.0, 0.0],
    ])
    out = downsample(PointCloud(pts), leaf_size=0.1)
    assert len(out) == 2
    assert np.allclose(out.points[0], pts[:3].mean(axis=0))
    assert np.allclose(out.points[1], pts[3])


def test_downsample_is_independent_of_input_order():
    rng = np.random.default_rng(3)
    pts = rng.uniform(-5, 5, size=(5000, 3))
    a = downsample(PointCloud(pts), leaf_size=0.5)
    b = downsample(PointCloud(pts[rng.permutation(len(pts))]), leaf_size=0.5)
    assert len(a) == len(b)
    assert np.allclose(a.points, b.points)


def test_downsample_handles_negative_coordinates():
    # -0.05 and 0.05 fall in different voxels when leaf_size = 0.1
    pts = np.array([[-0.05, 0.0, 0.0], [0.05, 0.0, 0.0]])
    assert len(downsample(PointCloud(pts), leaf_size=0.1)) == 2


def test_downsample_drops_non_finite_points():
    pts = np.array([[0.0, 0.0, 0.0], [np.nan, 0.0, 0.0], [np.inf, 1.0, 1.0]])
    out = downsample(PointCloud(pts), leaf_size=0.1)
    assert len(out) == 1


def test_downsample_rejects_non_positive_leaf():
    with pytest.raises(ValueError):
        downsample(PointCloud(np.zeros((3, 3))), leaf_size=0.0)


# ------------------------ Covariances ------------------------


def test_covariances_are_plane_regularized():
    floor = sample_plane((0, 0, 0), (1, 0, 0), (0, 1, 0), 20, 20, 0.1)
    cloud = estimate_covariances(PointCloud(floor), num_neighbors=10, num_threads=2)

    assert cloud.covariances.shape == (len(floor), 3, 3)
    assert np.allclose(cloud.covariances, np.transpose(cloud.covariances, (0, 2, 1)))

    eigvals, eigvecs = np.linalg.eigh(cloud.covariances)
    assert np.allclose(eigvals, [PLANE_EPSILON, 1.0, 1.0])
    # Smallest eigenvector is the floor normal
    normals = eigvecs[:, :, 0]
    assert np.allclose(np.abs(normals[:, 2]), 1.0, atol=1e-6)


def test_covariances_with_fewer_points_than_neighbors():
    pts = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    cloud = estimate_covariances(PointCloud(pts), num_neighbors=20)
    assert cloud.covariances.shape == (3, 3, 3)
    assert np.all(np.isfinite(cloud.covariances))


def test_covariances_single_point():
    cloud = estimate_covariances(PointCloud(np.array([[1.0, 2.0, 3.0]])), num_neighbors=5)
    assert cloud.covariances.shape == (1, 3, 3)
    assert np.all(np.isfinite(cloud.covariances))


def test_covariances_reject_zero_neighbors():
    with pytest.raises(ValueError):
        estimate_covariances(PointCloud(np.zeros((4, 3))), num_neighbors=0)


def test_covariances_do_not_depend_on_thread_count():
    pts = make_room(spacing=0.1)
    a = estimate_covariances(PointCloud(pts), num_neighbors=15, num_threads=1)
    b = estimate_covariances(PointCloud(pts), num_neighbors=15, num_threads=4)
    assert np.allclose(a.covariances, b.covariances)


def test_covariance_estimation_returns_new_cloud():
    cloud = PointCloud(make_room(spacing=0.2))
    processed = estimate_covariances(cloud, num_neighbors=8)
    assert processed is not cloud
    assert cloud.covariances is None
    assert processed.has_covariances


# ------------------------ Spatial index ------------------------


def test_nearest_matches_brute_force():
    rng = np.random.default_rng(5)
    pts = rng.uniform(-10, 10, size=(2000, 3))
    queries = rng.uniform(-10, 10, size=(300, 3))

    index = build_index(PointCloud(pts), num_threads=2)
    idx, sq = index.nearest(queries)

    d2 = ((queries[:, None, :] - pts[None, :, :]) ** 2).sum(axis=2)
    assert np.array_equal(idx, d2.argmin(axis=1))
    assert np.allclose(sq, d2.min(axis=1))


def test_knn_results_do_not_depend_on_workers():
    rng = np.random.default_rng(6)
    pts = rng.uniform(-10, 10, size=(5000, 3))
    queries = rng.uniform(-10, 10, size=(20000, 3))
    index = SpatialIndex(PointCloud(pts), num_threads=1)

    i1, d1 = index.knn_search(queries, k=3, workers=1)
    i4, d4 = index.knn_search(queries, k=3, workers=4)
    assert np.array_equal(i1, i4)
    assert np.allclose(d1, d4)


def test_knn_clips_k_to_cloud_size():
    index = SpatialIndex(PointCloud(np.eye(3)))
    idx, sq = index.knn_search(np.zeros((1, 3)), k=10)
    assert idx.shape == (1, 3)
    assert sq.shape == (1, 3)


def test_empty_index_returns_no_neighbors():
    index = SpatialIndex(PointCloud.empty())
    idx, sq = index.nearest(np.zeros((4, 3)))
    assert np.all(idx == -1)
    assert np.all(np.isinf(sq))


# ------------------------ Preprocessor ------------------------


def test_preprocessor_bundles_cloud_and_index():
    pre = Preprocessor(leaf_size=0.2, num_neighbors=10, num_threads=2)
    snapshot = pre.process(make_room(spacing=0.1), stamp=12.5, frame_id="odom", sequence=3)

    assert isinstance(snapshot, CloudSnapshot)
    assert snapshot.index.cloud is snapshot.cloud
    assert snapshot.cloud.has_covariances
    assert snapshot.stamp == 12.5
    assert snapshot.frame_id == "odom"
    assert snapshot.sequence == 3


def test_preprocessed_cloud_is_read_only():
    snapshot = Preprocessor(leaf_size=0.25, num_neighbors=5).process(make_room(spacing=0.2))
    with pytest.raises(ValueError):
        snapshot.cloud.points[0, 0] = 42.0
    with pytest.raises(ValueError):
        snapshot.cloud.covariances[0, 0, 0] = 42.0


def test_preprocessor_handles_empty_scan():
    snapshot = Preprocessor().process(np.empty((0, 3)))
    assert len(snapshot) == 0
    assert snapshot.cloud.has_covariances


def test_snapshot_rejects_mismatched_index():
    cloud = estimate_covariances(PointCloud(make_room(spacing=0.2)), num_neighbors=5)
    other = estimate_covariances(PointCloud(make_room(spacing=0.2)), num_neighbors=5)
    with pytest.raises(ValueError):
        CloudSnapshot(cloud=cloud, index=SpatialIndex(other))
