"""Bounded undo/redo stacks of snapshots."""

from __future__ import annotations

import threading
from collections import deque

from podrank.domain.snapshots import Snapshot


class SnapshotLedger:
    """In-memory undo (active) and redo stacks.

    Pushing a new snapshot clears the redo stack. When the active stack grows
    past ``max_size`` the oldest entries fall off and can no longer be undone.
    History does not survive a process restart.
    """

    def __init__(self, max_size: int = 100) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be greater than 0")
        self.max_size = max_size
        self._active: deque[Snapshot] = deque(maxlen=max_size)
        self._redo: deque[Snapshot] = deque(maxlen=max_size)
        self._lock = threading.Lock()

    def push(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._active.append(snapshot)
            self._redo.clear()

    def pop_undo(self) -> Snapshot | None:
        with self._lock:
            return self._active.pop() if self._active else None

    def pop_redo(self) -> Snapshot | None:
        with self._lock:
            return self._redo.pop() if self._redo else None

    def push_redo(self, snapshot: Snapshot) -> None:
        """Record an undone snapshot as redoable."""
        with self._lock:
            self._redo.append(snapshot)

    def push_undo(self, snapshot: Snapshot) -> None:
        """Put a snapshot back on the active stack without clearing redo."""
        with self._lock:
            self._active.append(snapshot)

    def peek_redo(self) -> Snapshot | None:
        with self._lock:
            return self._redo[-1] if self._redo else None

    @property
    def undo_depth(self) -> int:
        return len(self._active)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def clear(self) -> None:
        with self._lock:
            self._active.clear()
            self._redo.clear()
