"""Exactly-once start and cooperative shutdown of the search worker thread."""

from __future__ import annotations

import logging
from threading import Lock, Thread
from typing import Optional

from .errors import WorkerJoinError
from .types import WorkerState
from .worker import SearchWorker

logger = logging.getLogger(__name__)

__all__ = ["WorkerLifecycle"]


class WorkerLifecycle:
    """Own the background thread running a :class:`SearchWorker`.

    ``ensure_started`` is called on every request; the unlocked flag check
    keeps the warm path free of contention and the locked re-check guarantees
    a single thread even when the first requests race.

    Examples:
        >>> lifecycle = WorkerLifecycle(worker)  # doctest: +SKIP
        >>> lifecycle.ensure_started()  # doctest: +SKIP
        True
        >>> lifecycle.shutdown(timeout=5.0)  # doctest: +SKIP
    """

    def __init__(self, worker: SearchWorker, *, thread_name: str = "cluster-search-worker") -> None:
        self._worker = worker
        self._thread_name = thread_name
        self._start_lock = Lock()
        self._started = False
        self._thread: Optional[Thread] = None
        self._state = WorkerState.NOT_STARTED

    @property
    def state(self) -> WorkerState:
        """Current lifecycle state."""
        return self._state

    @property
    def started(self) -> bool:
        """Return ``True`` once the worker thread has been launched."""
        return self._started

    @property
    def worker(self) -> SearchWorker:
        """The managed worker."""
        return self._worker

    def ensure_started(self) -> bool:
        """Start the worker thread unless it is already running.

        Returns:
            ``True`` when this call launched the thread.
        """
        if self._started:
            return False
        with self._start_lock:
            if self._started:
                return False
            if self._state is not WorkerState.NOT_STARTED:
                return False
            thread = Thread(target=self._worker.run, name=self._thread_name, daemon=True)
            thread.start()
            self._thread = thread
            self._state = WorkerState.RUNNING
            self._started = True
        logger.info("cluster-search-worker-launched", extra={"event": {"thread": self._thread_name}})
        return True

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Request shutdown, wake the worker, and join its thread.

        Raises:
            WorkerJoinError: If the thread is still alive after ``timeout`` seconds.
        """
        with self._start_lock:
            thread = self._thread
            if thread is None:
                self._state = WorkerState.STOPPED
                return
            if self._state is WorkerState.STOPPED:
                return
            self._state = WorkerState.SHUTTING_DOWN
        self._worker.request_shutdown()
        thread.join(timeout)
        if thread.is_alive():
            logger.error(
                "cluster-search-worker-join-timeout",
                extra={"event": {"thread": self._thread_name, "timeout": timeout}},
            )
            raise WorkerJoinError(
                f"search worker thread {self._thread_name!r} did not exit within {timeout}s"
            )
        self._state = WorkerState.STOPPED
        logger.info("cluster-search-worker-joined", extra={"event": {"thread": self._thread_name}})
