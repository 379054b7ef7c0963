"""Request rate limiting for remote services."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Deque

logger = logging.getLogger(__name__)


class CooldownContext:
    """
    Allow at most ``limit`` calls to start within any ``window`` seconds.

    Each remote service gets its own context; ``rate`` reports how many
    calls were started inside the current window.
    """

    def __init__(
        self,
        limit: int,
        window: float = 60.0,
        name: str = "",
        clock: Callable[[], float] = time.monotonic,
    ):
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        self.limit = limit
        self.window = window
        self.name = name
        self._clock = clock
        self._calls: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _expire(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window:
            self._calls.popleft()

    @property
    def rate(self) -> int:
        """Calls started within the last window."""
        self._expire(self._clock())
        return len(self._calls)

    async def use(self) -> None:
        """Wait for a free slot, then record a call."""
        async with self._lock:
            while True:
                now = self._clock()
                self._expire(now)
                if len(self._calls) < self.limit:
                    self._calls.append(now)
                    return

                wait_time = self.window - (now - self._calls[0])
                logger.debug(f"[{self.name}] {self.limit} calls per {self.window:.0f}s reached, waiting {wait_time:.1f}s")
                await asyncio.sleep(wait_time)

    def __repr__(self) -> str:
        return f"CooldownContext(name={self.name!r}, limit={self.limit}, window={self.window})"
