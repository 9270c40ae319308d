"""
Generalized-ICP Registration

This module implements generalized ICP (GICP) for aligning a live scan
(source) to the preprocessed reference map (target).

Instead of point-to-point distances, every correspondence contributes a
Mahalanobis residual weighted by the combined local-shape covariances of the
two matched points, which makes the solution follow the local surface
orientation (plane-to-plane behavior on regularized covariances).
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
import time

import numpy as np

from ..preprocessing.point_cloud import PointCloud
from ..preprocessing.spatial_index import SpatialIndex
from ..utils.logging import setup_logger
from ..utils.transforms import apply_transform, se3_exp, skew

logger = setup_logger(__name__)


@dataclass
class RegistrationResult:
    """Outcome of one GICP alignment.

    ``T_target_source`` maps source points into the target frame. When
    ``converged`` is False the transform is the last estimate and must not be
    used.
    """

    T_target_source: np.ndarray = field(default_factory=lambda: np.eye(4))
    converged: bool = False
    iterations: int = 0
    num_inliers: int = 0
    error: float = float("inf")
    H: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)), repr=False)
    b: np.ndarray = field(default_factory=lambda: np.zeros(6), repr=False)


@dataclass
class _Linearization:
    H: np.ndarray
    b: np.ndarray
    error: float
    num_inliers: int


class GICPRegistration:
    """
    Generalized ICP with Levenberg-Marquardt updates.

    Each outer iteration:
    1. Finds the nearest target point of every transformed source point
    2. Rejects correspondences farther than ``max_dist_sq``
    3. Linearizes the covariance-weighted residuals into H, b
    4. Solves a damped update, accepting it only if the error does not grow
    5. Stops once an accepted update is below the rotation/translation thresholds

    When every damped retry of an iteration increases the error the estimate
    is returned as not converged.
    """

    def __init__(
        self,
        max_iterations: int = 20,
        max_dist_sq: float = 1.0,
        num_threads: int = 4,
        rotation_eps_deg: float = 0.1,
        translation_eps: float = 1e-3,
        lm_init_lambda: float = 1e-3,
        lm_lambda_factor: float = 10.0,
        lm_max_inner_iterations: int = 10,
    ):
        """
        Initialize GICP parameters.

        Args:
            max_iterations: Maximum number of outer iterations.
            max_dist_sq: Squared distance (m^2) above which a correspondence is rejected.
            num_threads: Worker threads for the correspondence search.
            rotation_eps_deg: Rotation step (degrees) below which the solver has converged.
            translation_eps: Translation step (meters) below which the solver has converged.
            lm_init_lambda: Initial Levenberg-Marquardt damping.
            lm_lambda_factor: Damping multiplier on rejected / divisor on accepted steps.
            lm_max_inner_iterations: Damping retries per outer iteration.
        """
        self.max_iterations = max_iterations
        self.max_dist_sq = max_dist_sq
        self.num_threads = num_threads
        self.rotation_eps = np.deg2rad(rotation_eps_deg)
        self.translation_eps = translation_eps
        self.lm_init_lambda = lm_init_lambda
        self.lm_lambda_factor = lm_lambda_factor
        self.lm_max_inner_iterations = lm_max_inner_iterations

    @classmethod
    def from_config(cls, registration_cfg, relocalization_cfg) -> "GICPRegistration":
        """Build a solver from the ``registration`` and ``relocalization`` config sections."""
        return cls(
            max_iterations=registration_cfg.max_iterations,
            max_dist_sq=relocalization_cfg.max_dist_sq,
            num_threads=relocalization_cfg.num_threads,
            rotation_eps_deg=registration_cfg.rotation_eps_deg,
            translation_eps=registration_cfg.translation_eps,
            lm_init_lambda=registration_cfg.lm_init_lambda,
            lm_lambda_factor=registration_cfg.lm_lambda_factor,
            lm_max_inner_iterations=registration_cfg.lm_max_inner_iterations,
        )

    def align(
        self,
        target: PointCloud,
        source: PointCloud,
        target_index: SpatialIndex,
        initial_guess: Optional[np.ndarray] = None,
        max_threads: Optional[int] = None,
        max_dist_sq: Optional[float] = None,
    ) -> RegistrationResult:
        """
        Align source to target.

        Args:
            target: Target cloud with covariances (M x 3).
            source: Source cloud with covariances (N x 3).
            target_index: Spatial index built over ``target``.
            initial_guess: Initial T_target_source (4 x 4); identity if None.
            max_threads: Overrides ``num_threads`` for this call.
            max_dist_sq: Overrides ``max_dist_sq`` for this call.

        Returns:
            RegistrationResult
        """
        if not (target.has_covariances and source.has_covariances):
            raise ValueError("GICP requires covariances on both target and source")

        threads = self.num_threads if max_threads is None else max_threads
        dist_sq = self.max_dist_sq if max_dist_sq is None else max_dist_sq

        T = np.eye(4) if initial_guess is None else np.array(initial_guess, dtype=np.float64)
        result = RegistrationResult(T_target_source=T.copy())

        if source.is_empty or target.is_empty:
            logger.warning(
                "GICP called with empty source or target (source=%d, target=%d); not converged.",
                len(source),
                len(target),
            )
            return result

        logger.debug(
            "Starting GICP with %d source points and %d target points.",
            len(source),
            len(target),
        )

        start = time.time()
        lam = self.lm_init_lambda

        for iteration in range(self.max_iterations):
            result.iterations = iteration + 1

            lin = self.linearize(target, source, target_index, T, threads, dist_sq)
            result.H, result.b = lin.H, lin.b
            result.error, result.num_inliers = lin.error, lin.num_inliers

            if lin.num_inliers == 0:
                logger.debug("Iteration %d: no correspondences within max_dist_sq.", iteration + 1)
                break

            accepted = False
            for _ in range(self.lm_max_inner_iterations):
                delta = self.solve_step(lin.H, lin.b, lam)
                new_T = se3_exp(delta) @ T
                new_error, new_inliers = self.compute_error(
                    target, source, target_index, new_T, threads, dist_sq
                )

                if new_inliers > 0 and new_error <= lin.error:
                    rot_step = float(np.linalg.norm(delta[:3]))
                    trans_step = float(np.linalg.norm(delta[3:]))
                    T = new_T
                    lam /= self.lm_lambda_factor
                    result.error, result.num_inliers = new_error, new_inliers
                    logger.debug(
                        "Iteration %d: error=%.6f, inliers=%d, |dθ|=%.3e rad, |dt|=%.3e m, λ=%.1e",
                        iteration + 1,
                        new_error,
                        new_inliers,
                        rot_step,
                        trans_step,
                        lam,
                    )
                    # Only an applied update can show that T stopped moving
                    result.converged = rot_step < self.rotation_eps and trans_step < self.translation_eps
                    accepted = True
                    break

                lam *= self.lm_lambda_factor

            if not accepted:
                logger.debug(
                    "Iteration %d: no damped step reduced the error after %d tries.",
                    iteration + 1,
                    self.lm_max_inner_iterations,
                )
                break

            if result.converged:
                break

        result.T_target_source = T
        logger.debug(
            "GICP finished in %.4f s (%d iterations, converged=%s, inliers=%d, error=%.6f).",
            time.time() - start,
            result.iterations,
            result.converged,
            result.num_inliers,
            result.error,
        )
        return result

    def find_correspondences(
        self,
        source_points: np.ndarray,
        target_index: SpatialIndex,
        threads: int,
        max_dist_sq: float,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Match every (already transformed) source point to its nearest target point.

        Returns:
            Tuple of (inlier_mask (N,), target_indices (N,), squared_distances (N,)).
        """
        indices, sq_dists = target_index.nearest(source_points, workers=threads)
        mask = sq_dists <= max_dist_sq
        return mask, indices, sq_dists

    def _residuals(
        self,
        target: PointCloud,
        source: PointCloud,
        target_index: SpatialIndex,
        T: np.ndarray,
        threads: int,
        max_dist_sq: float,
    ):
        transformed = apply_transform(source.points, T)
        mask, indices, _ = self.find_correspondences(transformed, target_index, threads, max_dist_sq)

        src_idx = np.nonzero(mask)[0]
        tgt_idx = indices[mask]

        R = T[:3, :3]
        p = transformed[src_idx]
        r = target.points[tgt_idx] - p
        # Combined covariance of target point and rotated source point
        RCR = target.covariances[tgt_idx] + R @ source.covariances[src_idx] @ R.T
        M = np.linalg.inv(RCR)
        return p, r, M

    def linearize(
        self,
        target: PointCloud,
        source: PointCloud,
        target_index: SpatialIndex,
        T: np.ndarray,
        threads: int,
        max_dist_sq: float,
    ) -> _Linearization:
        """
        Build the Gauss-Newton system at ``T``.

        Residual r = q - T p, perturbation T <- exp(delta) T with
        delta = (omega, v), Jacobian J = [skew(T p), -I].
        """
        p, r, M = self._residuals(target, source, target_index, T, threads, max_dist_sq)
        n = len(r)
        if n == 0:
            return _Linearization(np.zeros((6, 6)), np.zeros(6), 0.0, 0)

        J = np.empty((n, 3, 6))
        J[:, :, :3] = skew(p)
        J[:, :, 3:] = -np.eye(3)

        MJ = M @ J
        Mr = np.einsum("nij,nj->ni", M, r)
        H = np.einsum("nki,nkj->ij", J, MJ)
        b = np.einsum("nki,nk->i", J, Mr)
        error = 0.5 * float(np.einsum("ni,ni->", r, Mr))
        return _Linearization(H, b, error, n)

    def compute_error(
        self,
        target: PointCloud,
        source: PointCloud,
        target_index: SpatialIndex,
        T: np.ndarray,
        threads: int,
        max_dist_sq: float,
    ) -> Tuple[float, int]:
        """
        Weighted residual 0.5 * sum(r^T M r) at ``T``.

        Returns:
            Tuple of (error, num_inliers).
        """
        _, r, M = self._residuals(target, source, target_index, T, threads, max_dist_sq)
        if len(r) == 0:
            return float("inf"), 0
        error = 0.5 * float(np.einsum("ni,nij,nj->", r, M, r))
        return error, len(r)

    @staticmethod
    def solve_step(H: np.ndarray, b: np.ndarray, lam: float) -> np.ndarray:
        """Solve (H + lam * I) delta = -b, falling back to least squares when singular."""
        A = H + lam * np.eye(6)
        try:
            return np.linalg.solve(A, -b)
        except np.linalg.LinAlgError:
            return np.linalg.lstsq(A, -b, rcond=None)[0]
