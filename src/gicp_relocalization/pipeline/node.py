"""
Relocalization Node

Wires the preprocessing, alignment and publishing stages into three
independent activities:

- ingestion (``on_scan``): called by the scan source for every scan; builds a
  new source snapshot and installs it atomically
- alignment (``perform_registration``): every ``registration_period_s``,
  aligns the current source snapshot to the reference map and stores the
  transform when GICP converges
- publish (``publish_transform``): every ``publish_period_s``, re-sends the
  latest stored transform

The activities only share the source snapshot slot and the result store.
"""

from __future__ import annotations

import threading
from typing import List, Optional

import numpy as np

from .handoff import AtomicReference
from .interfaces import ScanMessage, TransformSink
from .result_store import ResultStore
from .scheduler import PeriodicTask
from ..alignment.gicp_registration import GICPRegistration, RegistrationResult
from ..preprocessing.loader import MapLoader, MapLoadError
from ..preprocessing.preprocessor import CloudSnapshot, Preprocessor
from ..utils.config import AppConfig
from ..utils.logging import setup_logger
from ..utils.transforms import StampedTransform

logger = setup_logger(__name__)


class RelocalizationNode:
    """
    Continuously estimates the map -> odom correction by aligning scans to a
    prior map.

    Example:
        cfg = load_config("config/default.yaml")
        with RelocalizationNode(cfg, LoggingTransformSink()) as node:
            source = FileReplayScanSource(scan_dir, node.on_scan)
            source.start()
            ...
    """

    def __init__(
        self,
        config: AppConfig,
        sink: TransformSink,
        *,
        aligner: Optional[GICPRegistration] = None,
        map_loader: Optional[MapLoader] = None,
    ):
        rcfg = config.relocalization
        self.config = config
        self.sink = sink

        self.num_threads = rcfg.num_threads
        self.max_dist_sq = rcfg.max_dist_sq
        self.map_frame_id = rcfg.map_frame_id
        self.odom_frame_id = rcfg.odom_frame_id

        self.map_preprocessor = Preprocessor(rcfg.global_leaf_size, rcfg.num_neighbors, rcfg.num_threads)
        self.scan_preprocessor = Preprocessor(rcfg.registered_leaf_size, rcfg.num_neighbors, rcfg.num_threads)
        self.aligner = aligner or GICPRegistration.from_config(config.registration, rcfg)
        self.map_loader = map_loader or MapLoader()
        self.result_store = ResultStore()

        self._source: AtomicReference[CloudSnapshot] = AtomicReference()
        self._sequence = 0
        self._sequence_lock = threading.Lock()
        self._closed = threading.Event()

        self.scans_received = 0
        self.registrations = 0
        self.converged_registrations = 0

        self._target: Optional[CloudSnapshot] = self._load_target(rcfg.prior_pcd_file)

        self._tasks: List[PeriodicTask] = [
            PeriodicTask("registration", config.scheduler.registration_period_s, self.perform_registration),
            PeriodicTask("publish", config.scheduler.publish_period_s, self.publish_transform),
        ]

    # ------------------------ Startup ------------------------
    def _load_target(self, map_file: str) -> Optional[CloudSnapshot]:
        try:
            global_map = self.map_loader.load(map_file)
        except MapLoadError as e:
            logger.error(f"Couldn't read map file '{map_file}': {e}")
            return None

        logger.info(f"Loaded global map with {len(global_map)} points")
        target = self.map_preprocessor.process(global_map, frame_id=self.map_frame_id)
        logger.info(
            f"Reference map ready: {len(target)} points after downsampling "
            f"(leaf={self.map_preprocessor.leaf_size} m)"
        )
        return target

    @property
    def target(self) -> Optional[CloudSnapshot]:
        return self._target

    @property
    def source(self) -> Optional[CloudSnapshot]:
        return self._source.get()

    @property
    def is_functional(self) -> bool:
        """False when the reference map could not be loaded."""
        return self._target is not None

    # ------------------------ Ingestion ------------------------
    def _next_sequence(self) -> int:
        with self._sequence_lock:
            self._sequence += 1
            self.scans_received += 1
            return self._sequence

    def on_scan(self, msg: ScanMessage) -> bool:
        """
        Preprocess a scan and install it as the current source.

        A snapshot never replaces one built from a later scan, so a slow
        preprocessing of an old scan cannot overwrite a newer source.

        Returns:
            True if the snapshot was installed.
        """
        if self._closed.is_set():
            logger.debug("Node shut down; ignoring scan at %.6f.", msg.stamp)
            return False

        sequence = self._next_sequence()
        try:
            snapshot = self.scan_preprocessor.process(
                msg.points,
                stamp=msg.stamp,
                frame_id=msg.frame_id,
                sequence=sequence,
            )
        except Exception:
            logger.exception("Failed to preprocess scan at %.6f", msg.stamp)
            return False

        installed = self._source.set_if(
            snapshot,
            lambda current: not self._closed.is_set()
            and (current is None or current.sequence < sequence),
        )
        if not installed:
            logger.debug("Dropped scan #%d (superseded or node shut down).", sequence)
        return installed

    # ------------------------ Alignment ------------------------
    def perform_registration(self) -> Optional[RegistrationResult]:
        """
        Align the current source snapshot to the reference map.

        Returns:
            The registration result, or None when the cycle was skipped.
        """
        target = self._target
        if target is None:
            return None

        # Read the slot once; a concurrent scan replaces the slot, not this object
        source = self._source.get()
        if source is None:
            logger.debug("No scan received yet; skipping registration.")
            return None

        self.registrations += 1
        # Always seeded from identity rather than the last converged result
        result = self.aligner.align(
            target.cloud,
            source.cloud,
            target.index,
            initial_guess=np.eye(4),
            max_threads=self.num_threads,
            max_dist_sq=self.max_dist_sq,
        )

        if not result.converged:
            logger.warning(
                "GICP did not converge (iterations=%d, inliers=%d).",
                result.iterations,
                result.num_inliers,
            )
            return result

        transform = StampedTransform.from_matrix(
            result.T_target_source,
            stamp=source.stamp,
            frame_id=self.map_frame_id,
            child_frame_id=self.odom_frame_id,
        )
        # Checked under the store's lock so a cycle outliving shutdown cannot store
        if not self.result_store.set_if(transform, lambda: not self._closed.is_set()):
            logger.debug("Node shut down; discarding converged result.")
            return result
        self.converged_registrations += 1
        logger.debug(
            "GICP converged in %d iterations (inliers=%d, error=%.6f).",
            result.iterations,
            result.num_inliers,
            result.error,
        )
        return result

    # ------------------------ Publishing ------------------------
    def publish_transform(self) -> Optional[StampedTransform]:
        """Send the latest converged transform; nothing before the first one."""
        transform = self.result_store.get()
        if transform is None:
            return None
        self.sink.send_transform(transform)
        return transform

    # ------------------------ Lifecycle ------------------------
    def start(self) -> None:
        if self._closed.is_set():
            raise RuntimeError("Node has been shut down")
        if not self.is_functional:
            logger.error("No reference map loaded; the node will neither align nor publish.")
        for task in self._tasks:
            task.start()
        logger.info(
            "Relocalization node started (%s -> %s, registration %.3f s, publish %.3f s).",
            self.map_frame_id,
            self.odom_frame_id,
            self.config.scheduler.registration_period_s,
            self.config.scheduler.publish_period_s,
        )

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Let running cycles finish, stop scheduling new ones, then drop the
        shared snapshots.
        """
        if self._closed.is_set():
            return
        self._closed.set()
        for task in self._tasks:
            task.stop(timeout)

        self._source.clear()
        self.result_store.clear()
        self._target = None
        logger.info(
            "Relocalization node stopped (%d scans, %d registrations, %d converged).",
            self.scans_received,
            self.registrations,
            self.converged_registrations,
        )

    def __enter__(self) -> "RelocalizationNode":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
