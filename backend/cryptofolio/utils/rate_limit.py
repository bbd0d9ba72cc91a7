"""Fixed-interval pacing for rate-limited upstream APIs."""
import asyncio
import time
from typing import Awaitable, Callable, Optional

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class IntervalGate:
    """Guarantees at least ``interval`` seconds between consecutive passes.

    Clock and sleep are injectable so pacing can be tested without waiting.
    """

    def __init__(
        self,
        interval: float,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleeper] = None,
    ):
        self.interval = max(0.0, interval)
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._last: Optional[float] = None
        self._lock = asyncio.Lock()

    async def wait(self) -> float:
        """Block until the gate may be passed; returns the seconds waited."""
        async with self._lock:
            waited = 0.0
            if self._last is not None:
                remaining = self.interval - (self._clock() - self._last)
                if remaining > 0:
                    await self._sleep(remaining)
                    waited = remaining
            self._last = self._clock()
            return waited

    async def backoff(self, seconds: Optional[float] = None):
        """Extra pause after the upstream signalled throttling."""
        await self._sleep(self.interval if seconds is None else seconds)
        self._last = self._clock()

    def reset(self):
        self._last = None
