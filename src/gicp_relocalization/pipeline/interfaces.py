"""
Transport interfaces of the relocalization node.

Scans are pushed into the node by a scan source and transforms leave the node
through a transform sink. The node only depends on the two small interfaces
defined here; this module also ships in-process implementations used by the
command-line runner and the tests.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Union

import numpy as np

from ..preprocessing.loader import MapLoader, MapLoadError
from ..utils.logging import setup_logger
from ..utils.transforms import StampedTransform

logger = setup_logger(__name__)


@dataclass(frozen=True)
class ScanMessage:
    """One incoming scan.

    Attributes:
        stamp: Acquisition time in seconds
        frame_id: Frame the points are expressed in
        points: (N, 3) coordinates
    """

    stamp: float
    frame_id: str
    points: np.ndarray = field(repr=False)


class TransformSink(Protocol):
    def send_transform(self, transform: StampedTransform) -> None:
        ...


class LoggingTransformSink:
    """Writes every transform to the log."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def send_transform(self, transform: StampedTransform) -> None:
        t = transform.translation
        q = transform.rotation
        logger.log(
            self.level,
            "%s -> %s @ %.6f: t=(%.4f, %.4f, %.4f) q=(%.5f, %.5f, %.5f, %.5f)",
            transform.frame_id,
            transform.child_frame_id,
            transform.stamp,
            t[0], t[1], t[2],
            q[0], q[1], q[2], q[3],
        )


class CollectingTransformSink:
    """Keeps every transform in memory, optionally forwarding it."""

    def __init__(self, forward: Optional[TransformSink] = None):
        self._lock = threading.Lock()
        self._messages: List[StampedTransform] = []
        self.forward = forward

    def send_transform(self, transform: StampedTransform) -> None:
        with self._lock:
            self._messages.append(transform)
        if self.forward is not None:
            self.forward.send_transform(transform)

    @property
    def messages(self) -> List[StampedTransform]:
        with self._lock:
            return list(self._messages)

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)


class FileReplayScanSource:
    """
    Replays a directory of point cloud files as a scan stream.

    Files are read with ``MapLoader`` (any format it supports), sorted by
    name, and pushed to the callback at ``rate_hz`` from a background thread.
    Each message is stamped with the wall-clock time of its emission.
    """

    def __init__(
        self,
        scan_dir: Union[str, Path],
        callback: Callable[[ScanMessage], None],
        *,
        rate_hz: float = 10.0,
        frame_id: str = "odom",
        loop: bool = False,
    ):
        if rate_hz <= 0:
            raise ValueError(f"rate_hz must be positive, got {rate_hz}")

        self.scan_dir = Path(scan_dir)
        self.callback = callback
        self.period = 1.0 / rate_hz
        self.frame_id = frame_id
        self.loop = loop
        self.files = sorted(
            p for p in self.scan_dir.iterdir()
            if p.is_file() and p.suffix.lower() in MapLoader.SUPPORTED_SUFFIXES
        ) if self.scan_dir.is_dir() else []
        self.sent = 0
        self.skipped = 0

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        if not self.files:
            logger.warning(f"No scan files found in {self.scan_dir}")

    def _load_all(self) -> List[np.ndarray]:
        """Read every scan file; unreadable files are logged and skipped."""
        loader = MapLoader()
        scans = []
        for path in self.files:
            try:
                scans.append(loader.load(path).points)
            except MapLoadError:
                self.skipped += 1
                logger.exception(f"Skipping unreadable scan file {path.name}")
        return scans

    def _run(self) -> None:
        scans = self._load_all()
        logger.info(f"Replaying {len(scans)} scans from {self.scan_dir} every {self.period:.3f} s")
        next_tick = time.monotonic()
        while not self._stop.is_set() and scans:
            for points in scans:
                if self._stop.is_set():
                    break
                try:
                    self.callback(ScanMessage(stamp=time.time(), frame_id=self.frame_id, points=points))
                except Exception:
                    logger.exception("Scan callback failed")
                self.sent += 1
                next_tick += self.period
                self._stop.wait(max(0.0, next_tick - time.monotonic()))
            if not self.loop:
                break
        logger.info(f"Scan replay finished after {self.sent} scans")

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="scan-replay", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
