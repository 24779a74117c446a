from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional


class CycleGate:
    """Release one execution every ``threshold`` scheduler ticks.

    The counter starts at ``threshold``. Every tick decrements it; the tick
    that brings it to zero fires and resets it. Decrement, compare and reset
    happen under one lock so concurrent ticks never lose or double a cycle.
    """

    def __init__(self, threshold: int):
        if threshold < 1:
            raise ValueError(f"threshold must be >= 1, got {threshold}")
        self.threshold = threshold
        self._counter = threshold
        self._lock = threading.Lock()

    @property
    def counter(self) -> int:
        with self._lock:
            return self._counter

    def tick(self) -> bool:
        with self._lock:
            self._counter -= 1
            if self._counter > 0:
                return False
            self._counter = self.threshold
            return True


class SingleWorkerLock:
    """Non-blocking, non-reentrant lock allowing one sync cycle at a time.

    A caller that fails to acquire must give up instead of waiting; the next
    scheduler tick tries again.
    """

    def __init__(self, name: str = "global-repo-sync"):
        self.name = name
        self._lock = threading.Lock()
        self._owner: Optional[int] = None

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @property
    def owner(self) -> Optional[int]:
        """Ident of the thread holding the lock, if any."""
        return self._owner

    def try_acquire(self) -> bool:
        if not self._lock.acquire(blocking=False):
            return False
        self._owner = threading.get_ident()
        return True

    def release(self) -> None:
        if not self._lock.locked():
            raise RuntimeError(f"Lock {self.name!r} released while not held")
        self._owner = None
        self._lock.release()

    @contextmanager
    def hold(self) -> Iterator[bool]:
        """Try to take the lock for the duration of the block.

        Yields whether the lock was obtained; releases it on every exit path
        when it was.
        """
        acquired = self.try_acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()
