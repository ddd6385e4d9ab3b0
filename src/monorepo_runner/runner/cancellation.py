"""Cooperative cancellation shared by the scheduler and running tasks."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot abort flag that notifies registered kill callbacks.

    ``abort`` may be called from a signal handler, so callbacks only send
    signals to child processes and never block on them.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._aborted = False
        self._reason: str | None = None
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_id = 0

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> str | None:
        return self._reason

    def abort(self, reason: str = "aborted") -> bool:
        """Raise the flag and fire callbacks; returns False if already aborted."""

        with self._lock:
            if self._aborted:
                return False
            self._aborted = True
            self._reason = reason
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        logger.warning("Abort requested (%s); stopping %d running task(s)", reason, len(callbacks))
        for callback in callbacks:
            try:
                callback()
            except OSError:
                logger.debug("Kill callback failed", exc_info=True)
        return True

    def register(self, callback: Callable[[], None]) -> int | None:
        """Register a kill callback; runs it immediately if already aborted."""

        with self._lock:
            if not self._aborted:
                handle = self._next_id
                self._next_id += 1
                self._callbacks[handle] = callback
                return handle
        callback()
        return None

    def unregister(self, handle: int | None) -> None:
        if handle is None:
            return
        with self._lock:
            self._callbacks.pop(handle, None)
