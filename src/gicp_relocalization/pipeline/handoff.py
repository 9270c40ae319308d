"""
Atomic handoff slots shared between the ingestion, alignment and publish tasks.

A slot holds a reference to one immutable value. Writers swap the reference
under a short lock; readers take the current reference without locking and
keep working on that object even if the slot is replaced meanwhile.
"""

from __future__ import annotations

import threading
from typing import Callable, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


class AtomicReference(Generic[T]):
    """Versioned reference to an immutable value.

    ``version`` is incremented on every accepted replacement, so readers can
    tell whether the value changed between two reads.
    """

    def __init__(self, value: Optional[T] = None):
        self._lock = threading.Lock()
        # (value, version) is swapped as one tuple so readers never mix the two
        self._state: Tuple[Optional[T], int] = (value, 0)

    def get(self) -> Optional[T]:
        return self._state[0]

    def get_versioned(self) -> Tuple[Optional[T], int]:
        return self._state

    @property
    def version(self) -> int:
        return self._state[1]

    def set(self, value: Optional[T]) -> int:
        """Replace the value; returns the new version."""
        with self._lock:
            version = self._state[1] + 1
            self._state = (value, version)
            return version

    def set_if(self, value: T, accept: Callable[[Optional[T]], bool]) -> bool:
        """
        Replace the value only if ``accept(current)`` is true.

        The check and the swap happen under the same lock, so concurrent
        writers cannot interleave between them.
        """
        with self._lock:
            current, version = self._state
            if not accept(current):
                return False
            self._state = (value, version + 1)
            return True

    def clear(self) -> None:
        self.set(None)
