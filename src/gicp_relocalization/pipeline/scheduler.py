"""
Fixed-rate background tasks.

Each periodic activity of the node (alignment, publish) runs in its own
daemon thread. Ticks are scheduled on the monotonic clock; when a cycle
overruns its period the missed ticks are skipped instead of being run back
to back.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class PeriodicTask:
    """
    Run ``callback`` every ``period`` seconds until stopped.

    Exceptions raised by one cycle are logged and the task keeps running.
    ``stop()`` lets the running cycle finish and prevents the next one.

    Example:
        task = PeriodicTask("publish", 0.05, node.publish_transform)
        task.start()
        ...
        task.stop()
    """

    def __init__(self, name: str, period: float, callback: Callable[[], None]):
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        self.name = name
        self.period = float(period)
        self.callback = callback
        self.cycles = 0
        self.failures = 0
        self.overruns = 0

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _run(self) -> None:
        next_tick = time.monotonic()
        while not self._stop.is_set():
            try:
                self.callback()
            except Exception:
                self.failures += 1
                logger.exception("Task '%s' cycle failed", self.name)
            self.cycles += 1

            next_tick += self.period
            now = time.monotonic()
            if next_tick < now:
                skipped = int((now - next_tick) // self.period) + 1
                self.overruns += skipped
                next_tick += skipped * self.period
            self._stop.wait(next_tick - now)

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError(f"Task '{self.name}' already started")
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.debug("Task '%s' started (period %.3f s).", self.name, self.period)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the task to stop and wait for the current cycle to finish."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        logger.debug("Task '%s' stopped after %d cycles.", self.name, self.cycles)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
