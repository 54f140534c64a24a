"""Per-cluster pending query buffers and the producer → worker wake signal.

Each :class:`PendingQueryBuffer` owns its own lock so that producers appending
to one cluster never contend with a drain of another. All buffers share one
:class:`WorkSignal`; appends notify it *after* the items are visible, and the
worker re-evaluates its predicate under the signal's condition, so a wakeup can
neither be lost nor acted on spuriously.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from threading import Condition, Lock
from typing import List, Optional

from .types import QueryItem

__all__ = ("PendingQueryBuffer", "WorkSignal")


class WorkSignal:
    """Condition-variable wake signal shared by producers and the search worker.

    Examples:
        >>> signal = WorkSignal()
        >>> signal.wait_for(lambda: True, timeout=0.0)
        True
    """

    def __init__(self) -> None:
        self._condition = Condition(Lock())

    def notify(self) -> None:
        """Wake the waiting worker (if any)."""
        with self._condition:
            self._condition.notify_all()

    def wait_for(self, predicate: Callable[[], bool], timeout: Optional[float] = None) -> bool:
        """Block until ``predicate`` holds or ``timeout`` elapses.

        Returns:
            The last value of ``predicate``.
        """
        with self._condition:
            return bool(self._condition.wait_for(predicate, timeout=timeout))


class PendingQueryBuffer:
    """FIFO of queries awaiting search for one cluster.

    Examples:
        >>> buffer = PendingQueryBuffer(WorkSignal())
        >>> len(buffer.drain_all())
        0
    """

    def __init__(self, signal: WorkSignal) -> None:
        self._signal = signal
        self._lock = Lock()
        self._items: List[QueryItem] = []

    def append(self, items: Iterable[QueryItem]) -> int:
        """Append ``items`` in order and wake the worker.

        Returns:
            Number of items appended.
        """
        batch = list(items)
        if not batch:
            return 0
        with self._lock:
            self._items.extend(batch)
        self._signal.notify()
        return len(batch)

    def drain_all(self) -> List[QueryItem]:
        """Atomically remove and return every buffered item in arrival order."""
        with self._lock:
            drained, self._items = self._items, []
        return drained

    def has_pending(self) -> bool:
        """Return ``True`` when at least one item is waiting."""
        with self._lock:
            return bool(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
