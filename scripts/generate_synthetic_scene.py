"""
Generate a synthetic prior map and a sequence of drifted scans for the relocalization node.

- Builds an indoor-like scene: floor, two walls and a few boxes, sampled on a grid with noise.
- The prior map is the full scene written as LAS (data/synthetic/prior_map.las).
- Each scan is a noisy crop of the scene around a moving sensor, expressed in the
  odom frame, i.e. transformed by the inverse of a known map->odom drift
  (data/synthetic/scans/scan_XXXX.npy).
- The ground-truth map->odom matrix is written next to the scans.

Requires: laspy (LAS writing does not need a LAZ backend).
"""
from __future__ import annotations

import math
from pathlib import Path

import laspy
import numpy as np


def sample_plane(origin, u, v, nu, nv, spacing):
    """Grid samples on the parallelogram origin + i*spacing*u + j*spacing*v."""
    i, j = np.meshgrid(np.arange(nu), np.arange(nv), indexing="ij")
    origin, u, v = (np.asarray(a, dtype=float) for a in (origin, u, v))
    return origin + spacing * (i.reshape(-1, 1) * u + j.reshape(-1, 1) * v)


def sample_box(corner, size, spacing):
    x0, y0, z0 = corner
    sx, sy, sz = size
    n = lambda length: max(2, int(round(length / spacing)) + 1)  # noqa: E731
    faces = [
        sample_plane((x0, y0, z0 + sz), (1, 0, 0), (0, 1, 0), n(sx), n(sy), spacing),
        sample_plane((x0, y0, z0), (1, 0, 0), (0, 0, 1), n(sx), n(sz), spacing),
        sample_plane((x0, y0 + sy, z0), (1, 0, 0), (0, 0, 1), n(sx), n(sz), spacing),
        sample_plane((x0, y0, z0), (0, 1, 0), (0, 0, 1), n(sy), n(sz), spacing),
        sample_plane((x0 + sx, y0, z0), (0, 1, 0), (0, 0, 1), n(sy), n(sz), spacing),
    ]
    return np.vstack(faces)


def make_scene(spacing=0.05, seed=0):
    rng = np.random.default_rng(seed)
    parts = [
        sample_plane((0, 0, 0), (1, 0, 0), (0, 1, 0), int(20 / spacing), int(12 / spacing), spacing),
        sample_plane((0, 0, 0), (0, 1, 0), (0, 0, 1), int(12 / spacing), int(3 / spacing), spacing),
        sample_plane((0, 0, 0), (1, 0, 0), (0, 0, 1), int(20 / spacing), int(3 / spacing), spacing),
        sample_box((4.0, 3.0, 0.0), (1.2, 0.8, 1.0), spacing),
        sample_box((11.0, 7.5, 0.0), (2.0, 1.0, 0.6), spacing),
        sample_box((15.5, 2.0, 0.0), (0.6, 0.6, 1.8), spacing),
    ]
    pts = np.vstack(parts)
    return pts + 0.005 * rng.standard_normal(pts.shape)


def rigid_transform(translation=(0.4, -0.25, 0.05), yaw_deg=3.0):
    th = math.radians(yaw_deg)
    T = np.eye(4)
    T[:3, :3] = np.array([[math.cos(th), -math.sin(th), 0], [math.sin(th), math.cos(th), 0], [0, 0, 1]])
    T[:3, 3] = translation
    return T


def write_las(path: Path, points: np.ndarray):
    path.parent.mkdir(parents=True, exist_ok=True)
    hdr = laspy.LasHeader(point_format=3, version="1.2")
    hdr.scales = np.array([0.001, 0.001, 0.001])
    hdr.offsets = points.min(axis=0)
    las = laspy.LasData(hdr)
    las.x = points[:, 0]
    las.y = points[:, 1]
    las.z = points[:, 2]
    las.write(str(path))


def main(n_scans: int = 20, scan_radius: float = 6.0):
    base = Path(__file__).parent.parent / "data" / "synthetic"
    scan_dir = base / "scans"
    scan_dir.mkdir(parents=True, exist_ok=True)

    scene = make_scene()
    write_las(base / "prior_map.las", scene)

    T_map_odom = rigid_transform()
    T_odom_map = np.linalg.inv(T_map_odom)
    np.savetxt(base / "ground_truth_T_map_odom.txt", T_map_odom, fmt="%.18e",
               header="4x4 transformation matrix (T_map_odom)")

    rng = np.random.default_rng(7)
    for k in range(n_scans):
        # Sensor moves along the room
        sensor = np.array([3.0 + 14.0 * k / max(1, n_scans - 1), 6.0, 1.0])
        near = np.linalg.norm(scene[:, :2] - sensor[:2], axis=1) < scan_radius
        scan_map = scene[near] + 0.01 * rng.standard_normal((int(near.sum()), 3))
        scan_odom = scan_map @ T_odom_map[:3, :3].T + T_odom_map[:3, 3]
        np.save(scan_dir / f"scan_{k:04d}.npy", scan_odom)

    print(f"Wrote: {base / 'prior_map.las'} ({len(scene)} points)")
    print(f"Wrote: {n_scans} scans to {scan_dir}")


if __name__ == "__main__":
    main()
