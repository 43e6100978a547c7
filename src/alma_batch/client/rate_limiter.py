"""Rate limiting for Alma API requests"""  # noqa: D415

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import TYPE_CHECKING

from alma_batch.constants import RATE_LIMIT_BURST, RATE_LIMIT_JITTER, REQUESTS_PER_SECOND

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

log = logging.getLogger(__name__)


class RateLimiter:
    """Token bucket shared by every outbound request.

    Tokens refill continuously at `requests_per_second`; up to `burst` tokens
    may be spent back to back. Callers reserve their admission time under a
    lock and then sleep outside it, so waiting callers are admitted in arrival
    order and the lock is never held across a sleep. A random jitter is added
    after admission to keep concurrent callers from moving in lockstep.
    """

    def __init__(
        self,
        requests_per_second: float = REQUESTS_PER_SECOND,
        *,
        burst: int = RATE_LIMIT_BURST,
        jitter: float = RATE_LIMIT_JITTER,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the limiter.

        Args:
            requests_per_second: Sustained admission rate.
            burst: Bucket capacity, the number of back-to-back admissions allowed.
            jitter: Upper bound in seconds of the random delay added per admission.
            clock: Monotonic clock, injectable for tests.
            sleep: Async sleep function, injectable for tests.
            rng: Random source for jitter.
        """
        if requests_per_second <= 0:
            raise ValueError(
                f"requests_per_second must be > 0, got {requests_per_second}"
            )
        if burst < 1:
            raise ValueError(f"burst must be >= 1, got {burst}")
        if jitter < 0:
            raise ValueError(f"jitter must be >= 0, got {jitter}")

        self.requests_per_second = requests_per_second
        self.burst = burst
        self.jitter = jitter
        self._interval = 1.0 / requests_per_second
        self._tolerance = (burst - 1) * self._interval
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._lock = asyncio.Lock()
        # Theoretical arrival time of the next request at the sustained rate
        self._tat: float | None = None
        self.admitted = 0

    def _reserve(self, now: float) -> float:
        """Reserve the next slot and return the time it may be used."""
        tat = now if self._tat is None else max(self._tat, now)
        admit_at = max(now, tat - self._tolerance)
        self._tat = tat + self._interval
        self.admitted += 1
        return admit_at

    async def acquire(self) -> None:
        """Wait until a token is available. Never fails, only delays."""
        async with self._lock:
            now = self._clock()
            admit_at = self._reserve(now)

        delay = admit_at - now
        if self.jitter:
            delay += self._rng.uniform(0.0, self.jitter)
        if delay > 0:
            log.debug("Rate limit: waiting %.3f seconds", delay)
            await self._sleep(delay)
