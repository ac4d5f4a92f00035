"""Pacing between page visits of a crawl run."""

import asyncio
import random
import time
from typing import Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class PacingLimiter:
    """Guarantees at least ``floor_seconds`` (plus random jitter) between page visits.

    The first visit of a run goes through immediately. The floor must be positive;
    pacing is never optional.
    """

    def __init__(
        self,
        floor_seconds: float,
        jitter_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], "asyncio.Future"] = asyncio.sleep,
    ):
        if floor_seconds <= 0:
            raise ValueError("floor_seconds must be positive")
        if jitter_seconds < 0:
            raise ValueError("jitter_seconds must not be negative")
        self.floor_seconds = floor_seconds
        self.jitter_seconds = jitter_seconds
        self._clock = clock
        self._sleep = sleep
        self._last_visit: Optional[float] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> "PacingLimiter":
        return cls(
            floor_seconds=settings.CRAWL_DELAY_SECONDS,
            jitter_seconds=settings.CRAWL_DELAY_JITTER_SECONDS,
        )

    def _next_gap(self) -> float:
        if not self.jitter_seconds:
            return self.floor_seconds
        return self.floor_seconds + random.uniform(0, self.jitter_seconds)

    async def acquire(self) -> float:
        """Wait until the next visit is allowed.

        Returns:
            Seconds actually slept
        """
        async with self._lock:
            waited = 0.0
            if self._last_visit is not None:
                elapsed = self._clock() - self._last_visit
                waited = max(0.0, self._next_gap() - elapsed)
                if waited > 0:
                    logger.debug("pacing_wait", seconds=round(waited, 2))
                    await self._sleep(waited)
            self._last_visit = self._clock()
            return waited
