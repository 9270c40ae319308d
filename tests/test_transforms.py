"""
Tests for the SE(3) helpers and the stamped transform message.
"""

import sys
from pathlib import Path

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

sys.path.append(str(Path(__file__).parent.parent / "src"))

from gicp_relocalization.utils.transforms import (
    StampedTransform,
    apply_transform,
    load_transform_matrix,
    rotation_angle,
    save_transform_matrix,
    se3_exp,
    skew,
)


def _random_transform(seed: int) -> np.ndarray:
    rng = np.random.default_rng(seed)
    T = np.eye(4)
    T[:3, :3] = Rotation.from_rotvec(rng.normal(scale=0.5, size=3)).as_matrix()
    T[:3, 3] = rng.uniform(-5, 5, size=3)
    return T


def test_skew_matches_cross_product():
    rng = np.random.default_rng(0)
    a = rng.normal(size=(10, 3))
    b = rng.normal(size=(10, 3))
    assert np.allclose(np.einsum("nij,nj->ni", skew(a), b), np.cross(a, b))
    assert skew(a[0]).shape == (3, 3)


def test_se3_exp_of_zero_is_identity():
    assert np.allclose(se3_exp(np.zeros(6)), np.eye(4))


def test_se3_exp_pure_translation():
    T = se3_exp([0, 0, 0, 1.0, -2.0, 0.5])
    assert np.allclose(T[:3, :3], np.eye(3))
    assert np.allclose(T[:3, 3], [1.0, -2.0, 0.5])


def test_se3_exp_rotation_part():
    omega = np.array([0.0, 0.0, np.pi / 2])
    T = se3_exp(np.concatenate([omega, np.zeros(3)]))
    assert np.allclose(T[:3, :3] @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0])
    assert rotation_angle(T[:3, :3]) == pytest.approx(np.pi / 2)


def test_se3_exp_small_angle_is_continuous():
    delta = np.array([1e-11, 0, 0, 0.3, 0.2, 0.1])
    assert np.allclose(se3_exp(delta), se3_exp(delta * [1e3, 1, 1, 1, 1, 1]), atol=1e-7)


def test_apply_transform_empty():
    out = apply_transform(np.empty((0, 3)), _random_transform(1))
    assert out.shape == (0, 3)


def test_stamped_transform_round_trip():
    T = _random_transform(2)
    msg = StampedTransform.from_matrix(T, stamp=42.25, frame_id="map", child_frame_id="odom")

    assert msg.stamp == 42.25
    assert msg.frame_id == "map"
    assert msg.child_frame_id == "odom"
    assert msg.rotation[3] >= 0.0
    assert np.isclose(np.linalg.norm(msg.rotation), 1.0)
    assert np.allclose(msg.to_matrix(), T)

    rebuilt = StampedTransform(rotation=msg.rotation, translation=msg.translation, stamp=msg.stamp)
    assert np.allclose(rebuilt.matrix, T)
    assert rebuilt == msg


def test_stamped_transform_is_immutable():
    msg = StampedTransform.from_matrix(np.eye(4), stamp=0.0)
    with pytest.raises(AttributeError):
        msg.stamp = 1.0
    with pytest.raises(ValueError):
        msg.matrix[0, 3] = 1.0
    # to_matrix hands out a writable copy
    copy = msg.to_matrix()
    copy[0, 3] = 1.0
    assert msg.matrix[0, 3] == 0.0


def test_identity_transform_is_a_valid_message():
    msg = StampedTransform.from_matrix(np.eye(4), stamp=1.5)
    assert msg.is_identity()
    assert msg.rotation == (0.0, 0.0, 0.0, 1.0)
    assert msg.translation == (0.0, 0.0, 0.0)


def test_from_matrix_rejects_wrong_shape():
    with pytest.raises(ValueError):
        StampedTransform.from_matrix(np.eye(3), stamp=0.0)


def test_save_and_load_matrix(tmp_path):
    T = _random_transform(3)
    path = tmp_path / "T_map_odom.txt"
    save_transform_matrix(T, str(path))
    assert np.allclose(load_transform_matrix(str(path)), T)


def test_load_matrix_rejects_wrong_shape(tmp_path):
    path = tmp_path / "bad.txt"
    np.savetxt(path, np.eye(3))
    with pytest.raises(ValueError):
        load_transform_matrix(str(path))
