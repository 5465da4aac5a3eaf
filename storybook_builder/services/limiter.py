import logging
import threading
from collections import deque
from typing import Deque, Dict, Optional

from ..config import GENERATION_CONCURRENCY

logger = logging.getLogger(__name__)


class Semaphore:
    """Counting semaphore with first-come-first-served hand-off and usage stats."""

    def __init__(self, max_concurrent: int):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.max_concurrent = max_concurrent
        self._active = 0
        self._waiters: Deque[threading.Event] = deque()
        self._lock = threading.Lock()

    def acquire(self, timeout: Optional[float] = None) -> bool:
        with self._lock:
            if self._active < self.max_concurrent and not self._waiters:
                self._active += 1
                return True
            ev = threading.Event()
            self._waiters.append(ev)
        if ev.wait(timeout):
            return True
        with self._lock:
            try:
                self._waiters.remove(ev)
            except ValueError:
                # released between the timeout and taking the lock; the slot is ours
                return True
        return False

    def try_acquire(self) -> bool:
        with self._lock:
            if self._active < self.max_concurrent and not self._waiters:
                self._active += 1
                return True
            return False

    def release(self) -> None:
        with self._lock:
            if self._active <= 0:
                raise ValueError("release() without matching acquire()")
            if self._waiters:
                # the slot passes straight to the oldest waiter
                self._waiters.popleft().set()
            else:
                self._active -= 1

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"active": self._active, "queued": len(self._waiters), "max": self.max_concurrent}

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, *exc):
        self.release()
        return False


storybook_generation_limiter = Semaphore(GENERATION_CONCURRENCY)
