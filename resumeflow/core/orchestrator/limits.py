"""Rolling-window admission control for the AI-bound queue lane."""

import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable

from ...observability.logger import get_logger

logger = get_logger(__name__)


class RollingWindowLimiter:
    """Allow at most ``max_calls`` acquisitions in any ``window_ms`` span."""

    def __init__(
        self,
        max_calls: int = 10,
        window_ms: int = 60000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        self.max_calls = max_calls
        self.window_seconds = window_ms / 1000
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_seconds:
            self._calls.popleft()

    async def acquire(self) -> None:
        """Wait until a slot is free, then record the call."""
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return
                wait = self.window_seconds - (now - self._calls[0])
                logger.info("queue_rate_limited", wait_seconds=round(wait, 3), max_calls=self.max_calls)
                await self._sleep(wait)

    @property
    def in_window(self) -> int:
        self._evict(self._clock())
        return len(self._calls)
