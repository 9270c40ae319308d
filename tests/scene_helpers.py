"""Synthetic scenes shared by the test modules."""

import numpy as np


def sample_plane(origin, u, v, nu, nv, spacing):
    i, j = np.meshgrid(np.arange(nu), np.arange(nv), indexing="ij")
    origin, u, v = (np.asarray(a, dtype=float) for a in (origin, u, v))
    return origin + spacing * (i.reshape(-1, 1) * u + j.reshape(-1, 1) * v)


def make_room(spacing: float = 0.1, seed: int = 0, noise: float = 0.002) -> np.ndarray:
    """Floor, two walls and an off-center box: constrains all six degrees of freedom."""
    rng = np.random.default_rng(seed)
    parts = [
        # floor 6 x 4 m
        sample_plane((0.0, 0.0, 0.0), (1, 0, 0), (0, 1, 0), 60, 40, spacing),
        # wall along y at x = 0
        sample_plane((0.0, 0.0, 0.05), (0, 1, 0), (0, 0, 1), 40, 25, spacing),
        # wall along x at y = 0
        sample_plane((0.05, 0.0, 0.05), (1, 0, 0), (0, 0, 1), 60, 25, spacing),
        # box 1.0 x 0.6 x 0.8 at (3.0, 2.0)
        sample_plane((3.0, 2.0, 0.8), (1, 0, 0), (0, 1, 0), 10, 6, spacing),
        sample_plane((3.0, 2.0, 0.05), (1, 0, 0), (0, 0, 1), 10, 8, spacing),
        sample_plane((3.0, 2.0, 0.05), (0, 1, 0), (0, 0, 1), 6, 8, spacing),
        sample_plane((4.0, 2.0, 0.05), (0, 1, 0), (0, 0, 1), 6, 8, spacing),
    ]
    pts = np.vstack(parts)
    return pts + noise * rng.standard_normal(pts.shape)


def yaw_transform(yaw_deg: float, translation) -> np.ndarray:
    th = np.deg2rad(yaw_deg)
    T = np.eye(4)
    T[:3, :3] = np.array(
        [
            [np.cos(th), -np.sin(th), 0.0],
            [np.sin(th), np.cos(th), 0.0],
            [0.0, 0.0, 1.0],
        ]
    )
    T[:3, 3] = translation
    return T


def apply_rigid(points: np.ndarray, T: np.ndarray) -> np.ndarray:
    return points @ T[:3, :3].T + T[:3, 3]


def rotation_error_deg(R_a: np.ndarray, R_b: np.ndarray) -> float:
    cos_theta = (np.trace(R_a.T @ R_b) - 1.0) * 0.5
    return float(np.rad2deg(np.arccos(np.clip(cos_theta, -1.0, 1.0))))
