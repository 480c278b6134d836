"""Per-client sliding-window rate limiting.

Timestamps of recent requests are kept in a deque per client; entries
older than the window are pruned before every comparison against the
limit. Clients whose deque has emptied are swept on a small random
fraction of calls so one-off clients do not accumulate forever. This is
abuse dampening for a single process, not exact metering.
"""

import random
import threading
import time
from collections import deque
from typing import Callable


class SlidingWindowRateLimiter:
    """Shared per-client request counter."""

    def __init__(
        self,
        sweep_probability: float = 0.01,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self.sweep_probability = sweep_probability
        self._clock = clock
        self._rng = rng
        self._windows: dict[str, deque[float]] = {}
        # Window length last used by each client; sweeps prune with it
        self._durations: dict[str, float] = {}
        self._lock = threading.Lock()

    def allow(self, client_id: str, limit: int, window_seconds: float) -> bool:
        """Record a request for ``client_id`` if it is under ``limit``.

        Args:
            client_id: Client key, usually the caller's address plus a scope
            limit: Maximum requests allowed in the trailing window
            window_seconds: Window duration in seconds

        Returns:
            True if the request is allowed, False if the client is over quota
        """
        now = self._clock()

        with self._lock:
            window = self._windows.get(client_id)
            if window is None:
                window = deque()
                self._windows[client_id] = window
            self._durations[client_id] = window_seconds

            _prune(window, now - window_seconds)

            if len(window) >= limit:
                allowed = False
            else:
                window.append(now)
                allowed = True

            if self._rng() < self.sweep_probability:
                self._sweep(now)

        return allowed

    def _sweep(self, now: float) -> None:
        # Called with the lock held. Each client is pruned with its own window.
        for client_id in list(self._windows):
            window = self._windows[client_id]
            _prune(window, now - self._durations[client_id])
            if not window:
                del self._windows[client_id]
                del self._durations[client_id]

    def sweep(self) -> int:
        """Drop every client with no request inside its window.

        Returns:
            Number of clients still tracked
        """
        with self._lock:
            self._sweep(self._clock())
            return len(self._windows)

    @property
    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._windows)

    def reset(self, client_id: str | None = None) -> None:
        with self._lock:
            if client_id is None:
                self._windows.clear()
                self._durations.clear()
            else:
                self._windows.pop(client_id, None)
                self._durations.pop(client_id, None)


def _prune(window: deque[float], cutoff: float) -> None:
    while window and window[0] <= cutoff:
        window.popleft()
