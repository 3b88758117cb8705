"""Fixed-window request limiter keyed by provider."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from ..errors import RateLimited

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    start: float
    count: int = 0


class RateLimiter:
    """Allows ``max_requests`` per provider in each ``window_seconds`` window.

    Callers over the ceiling are suspended until the window resets; no request
    is ever dropped.
    """

    def __init__(
        self,
        max_requests: int = 20,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_requests <= 0:
            raise ValueError(f"max_requests must be positive, got {max_requests}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.sleep = sleep
        self._windows: Dict[str, _Window] = {}

    def try_acquire(self, key: str) -> None:
        """
        Take a slot in the current window.

        Raises:
            RateLimited: If the window is full; ``retry_after`` is the time until it resets
        """
        now = self.clock()
        window = self._windows.get(key)
        if window is None or now - window.start >= self.window_seconds:
            window = _Window(start=now)
            self._windows[key] = window
        if window.count < self.max_requests:
            window.count += 1
            return
        raise RateLimited(key, max(window.start + self.window_seconds - now, 0.0))

    async def acquire(self, key: str) -> float:
        """
        Take a slot, waiting for the next window when necessary.

        Returns:
            Seconds spent waiting
        """
        waited = 0.0
        while True:
            try:
                self.try_acquire(key)
                return waited
            except RateLimited as e:
                logger.info(f"Rate limit reached for {key}, waiting {e.retry_after:.1f}s")
                await self.sleep(e.retry_after)
                waited += e.retry_after

    def remaining(self, key: str) -> int:
        """Slots left in the current window."""
        window = self._windows.get(key)
        if window is None or self.clock() - window.start >= self.window_seconds:
            return self.max_requests
        return self.max_requests - window.count

    def reset(self, key: Optional[str] = None) -> None:
        """Forget the window for ``key``, or every window."""
        if key is None:
            self._windows.clear()
        else:
            self._windows.pop(key, None)
