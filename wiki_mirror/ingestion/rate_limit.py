"""Blocking rate limiter shared by every client that talks to one host."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import ClassVar

logger = logging.getLogger(__name__)


class RateLimiter:
    """Minimum-interval gate: ``acquire()`` blocks until ``interval`` seconds
    have passed since the previous acquire from any thread.

    Clients receive a limiter at construction. ``RateLimiter.shared(name)``
    returns one instance per name so that all clients of the same type
    throttle the process together.

    Example:
        limiter = RateLimiter.shared("mediawiki", interval=1.0)
        limiter.acquire()
    """

    _registry: ClassVar[dict[str, RateLimiter]] = {}
    _registry_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None
        self._lock = threading.Lock()

    @classmethod
    def shared(cls, name: str, interval: float) -> RateLimiter:
        """Return the process-wide limiter registered under ``name``.

        The first call fixes the interval; later calls with a different
        interval reuse the existing limiter and log the mismatch.
        """
        with cls._registry_lock:
            limiter = cls._registry.get(name)
            if limiter is None:
                limiter = cls(interval)
                cls._registry[name] = limiter
            elif limiter.interval != interval:
                logger.debug(
                    "Rate limiter %s already registered with %.2fs (requested %.2fs)",
                    name,
                    limiter.interval,
                    interval,
                )
            return limiter

    @classmethod
    def reset_shared(cls) -> None:
        with cls._registry_lock:
            cls._registry.clear()

    def acquire(self) -> float:
        """Block until the interval has elapsed, then claim the slot.

        Returns:
            Seconds spent waiting.
        """
        with self._lock:
            waited = 0.0
            if self._last is not None:
                remaining = self.interval - (self._clock() - self._last)
                if remaining > 0:
                    self._sleep(remaining)
                    waited = remaining
            self._last = self._clock()
            return waited
