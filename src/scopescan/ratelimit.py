"""Per-module request pacing."""

from __future__ import annotations

import asyncio
import time


class RateLimiter:
    """Space operations at least ``1 / rate`` seconds apart.

    Scoped to one module instance; never shared across modules.
    """

    def __init__(self, rate_per_sec: float) -> None:
        self.rate = max(0.0, rate_per_sec)
        self._interval = 0.0 if self.rate <= 0 else 1.0 / self.rate
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        if self._interval <= 0:
            return
        async with self._lock:
            now = time.monotonic()
            delay = self._next_slot - now
            if delay > 0:
                await asyncio.sleep(delay)
                now = time.monotonic()
            self._next_slot = now + self._interval
