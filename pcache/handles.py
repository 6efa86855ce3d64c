"""Table of open volumes addressed by small positive integer handles."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from .volume import InvalidHandleError, Volume


class HandleTable:
    """Maps handles to open volumes; freed slots are reused with their handle."""

    def __init__(self) -> None:
        self._slots: list[Volume | None] = []
        self._lock = threading.Lock()

    def allocate(self, volume: Volume) -> int:
        """Store ``volume`` in the first free slot and return its handle."""
        with self._lock:
            for index, slot in enumerate(self._slots):
                if slot is None:
                    self._slots[index] = volume
                    return index + 1
            self._slots.append(volume)
            return len(self._slots)

    def release(self, handle: int) -> None:
        """Free the slot of ``handle``; unknown handles are ignored."""
        with self._lock:
            if 0 < handle <= len(self._slots):
                self._slots[handle - 1] = None

    def _lookup(self, handle: int) -> Volume:
        if not isinstance(handle, int) or handle <= 0 or handle > len(self._slots):
            raise InvalidHandleError(f"invalid handle {handle!r}")
        volume = self._slots[handle - 1]
        if volume is None:
            raise InvalidHandleError(f"handle {handle} is not open")
        return volume

    @contextmanager
    def acquire(self, handle: int) -> Iterator[Volume]:
        """Yield the volume of ``handle`` with its lock held."""
        with self._lock:
            volume = self._lookup(handle)
            volume.lock.acquire()
        try:
            yield volume
        finally:
            volume.lock.release()

    @contextmanager
    def acquire_for_close(self, handle: int) -> Iterator[Volume]:
        """Free the slot of ``handle`` and yield its volume with the lock held.

        No new operation can reach the volume once this has started.
        """
        with self._lock:
            volume = self._lookup(handle)
            self._slots[handle - 1] = None
            volume.lock.acquire()
        try:
            yield volume
        finally:
            volume.lock.release()