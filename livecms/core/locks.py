"""
In-process concurrency controls: one in-flight patch per content id, one
writer per template file, and a fixed-window write ceiling per actor.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from . import config
from .errors import ConcurrentEditConflict
from ..util.logging import logger

FILE_KEY_PREFIX = "file:"


def file_key(relative_path: str) -> str:
    """Lock key for a whole template, kept apart from content ids."""
    return f"{FILE_KEY_PREFIX}{relative_path}"


@dataclass
class LockState:
    holder: str
    acquired_at: float


class ContentLockManager:
    """Per-content-id mutual exclusion with stale-lock takeover."""

    def __init__(self, ttl_sec: float = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_sec = config.LOCK_TTL_SEC if ttl_sec is None else ttl_sec
        self.clock = clock
        self._locks: Dict[str, LockState] = {}
        self._condition = threading.Condition()

    def _is_stale(self, state: LockState) -> bool:
        return self.ttl_sec > 0 and self.clock() - state.acquired_at >= self.ttl_sec

    def holder_of(self, content_id: str) -> Optional[str]:
        with self._condition:
            state = self._locks.get(content_id)
            return state.holder if state else None

    def acquire(self, content_id: str, holder: str, timeout: float = None) -> None:
        """Take the lock for ``content_id``.

        ``timeout`` of None or 0 fails immediately when the id is held; a
        positive timeout waits up to that many seconds for the release.
        """
        deadline = time.monotonic() + timeout if timeout else None
        with self._condition:
            while True:
                state = self._locks.get(content_id)
                if state is None:
                    break
                if self._is_stale(state):
                    logger.warning(f"Taking over stale lock on {content_id} held by {state.holder}")
                    break

                remaining = deadline - time.monotonic() if deadline else 0
                if remaining <= 0:
                    logger.log_lock_conflict(content_id, state.holder, holder)
                    raise ConcurrentEditConflict(content_id, state.holder)
                self._condition.wait(remaining)

            self._locks[content_id] = LockState(holder=holder, acquired_at=self.clock())

    def release(self, content_id: str, holder: str) -> None:
        with self._condition:
            state = self._locks.get(content_id)
            # A stale lock may have been taken over; only the owner releases
            if state is not None and state.holder == holder:
                del self._locks[content_id]
                self._condition.notify_all()

    @contextmanager
    def hold(self, content_id: str, holder: str, timeout: float = None):
        """Hold the lock for the body of a ``with`` block, released on any exit."""
        self.acquire(content_id, holder, timeout)
        try:
            yield
        finally:
            self.release(content_id, holder)


@dataclass
class RateDecision:
    allowed: bool
    remaining: int
    reset_in: float


class RateLimiter:
    """Fixed-window write counter keyed by actor."""

    def __init__(self, max_writes: int = None, window_sec: float = None,
                 clock: Callable[[], float] = time.monotonic):
        self.max_writes = config.RATE_LIMIT_MAX_WRITES if max_writes is None else max_writes
        self.window_sec = config.RATE_LIMIT_WINDOW_SEC if window_sec is None else window_sec
        self.clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}  # actor -> (window start, count)
        self._lock = threading.Lock()

    def check(self, actor: str) -> RateDecision:
        """Count one write attempt for ``actor`` and say whether it may proceed."""
        now = self.clock()
        with self._lock:
            window_start, count = self._windows.get(actor, (now, 0))
            if now - window_start >= self.window_sec:
                window_start, count = now, 0

            reset_in = max(0.0, self.window_sec - (now - window_start))
            if count >= self.max_writes:
                self._windows[actor] = (window_start, count)
                return RateDecision(allowed=False, remaining=0, reset_in=reset_in)

            count += 1
            self._windows[actor] = (window_start, count)
            return RateDecision(allowed=True, remaining=self.max_writes - count, reset_in=reset_in)

    def reset(self, actor: str = None) -> None:
        with self._lock:
            if actor is None:
                self._windows.clear()
            else:
                self._windows.pop(actor, None)
