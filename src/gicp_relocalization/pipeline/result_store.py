"""
Latest accepted registration result.
"""

from __future__ import annotations

from typing import Callable, Optional

from .handoff import AtomicReference
from ..utils.logging import setup_logger
from ..utils.transforms import StampedTransform

logger = setup_logger(__name__)


class ResultStore:
    """
    Holds the most recent converged transform.

    ``get()`` returns None until the first converged alignment; after that it
    returns a complete ``StampedTransform`` (an identity transform is a valid
    result and is never used to mean "absent").
    """

    def __init__(self):
        self._slot: AtomicReference[StampedTransform] = AtomicReference()

    def set(self, transform: StampedTransform) -> int:
        if transform is None:
            raise ValueError("ResultStore.set requires a transform; use clear() on teardown")
        version = self._slot.set(transform)
        logger.debug("Stored transform v%d (stamp=%.6f).", version, transform.stamp)
        return version

    def set_if(self, transform: StampedTransform, accept: Callable[[], bool]) -> bool:
        """Store ``transform`` only if ``accept()`` holds at the moment of the swap."""
        if transform is None:
            raise ValueError("ResultStore.set_if requires a transform")
        stored = self._slot.set_if(transform, lambda current: accept())
        if stored:
            logger.debug("Stored transform v%d (stamp=%.6f).", self._slot.version, transform.stamp)
        return stored

    def get(self) -> Optional[StampedTransform]:
        return self._slot.get()

    @property
    def version(self) -> int:
        return self._slot.version

    def has_result(self) -> bool:
        return self._slot.get() is not None

    def clear(self) -> None:
        self._slot.clear()
