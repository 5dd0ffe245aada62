"""Per-domain request throttling for network-touching components."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .domains import registered_domain

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


@dataclass
class RateLimitBucket:
    """Fixed one-minute window for a single domain."""

    count: int
    window_reset_time: float


@dataclass
class RateLimitStatus:
    domain: str
    count: int
    remaining: int
    reset_in: float


class RateLimiter:
    """
    Fixed-window limiter shared across concurrent attempts.

    Two attempts against the same registrable domain draw from the same bucket,
    so the site sees one logical client regardless of how many browser pages are
    open. ``clock`` and ``sleep`` are injectable for tests.
    """

    def __init__(
        self,
        max_requests_per_minute: int = 30,
        delay: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_requests_per_minute = max_requests_per_minute
        self.delay = delay
        self._clock = clock
        self._sleep = sleep
        self._buckets: dict[str, RateLimitBucket] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def domain_key(value: str) -> str:
        return registered_domain(value) or (value or "").strip().lower()

    def _current_bucket(self, key: str, now: float) -> Optional[RateLimitBucket]:
        bucket = self._buckets.get(key)
        if bucket is not None and now > bucket.window_reset_time:
            del self._buckets[key]
            return None
        return bucket

    def check_rate_limit(self, domain: str) -> bool:
        """
        Record one request against ``domain``.

        Returns False (and records nothing) once the window already holds
        ``max_requests_per_minute`` requests.
        """
        key = self.domain_key(domain)
        now = self._clock()
        bucket = self._current_bucket(key, now)
        if bucket is None:
            self._buckets[key] = RateLimitBucket(count=1, window_reset_time=now + WINDOW_SECONDS)
            return True
        if bucket.count >= self.max_requests_per_minute:
            logger.info("Rate limit reached for %s (%s requests)", key, bucket.count)
            return False
        bucket.count += 1
        return True

    def get_remaining_requests(self, domain: str) -> int:
        key = self.domain_key(domain)
        bucket = self._current_bucket(key, self._clock())
        if bucket is None:
            return self.max_requests_per_minute
        return max(0, self.max_requests_per_minute - bucket.count)

    def retry_after(self, domain: str) -> float:
        """Seconds until the domain's window resets (0 if it has capacity)."""
        key = self.domain_key(domain)
        now = self._clock()
        bucket = self._current_bucket(key, now)
        if bucket is None or bucket.count < self.max_requests_per_minute:
            return 0.0
        return max(0.0, bucket.window_reset_time - now)

    async def wait_for_delay(self, domain: str | None = None) -> None:
        """Pause between dependent requests to the same domain."""
        if self.delay <= 0:
            return
        if domain:
            logger.debug("Waiting %.1fs before next request to %s", self.delay, domain)
        await self._sleep(self.delay)

    async def acquire(self, domain: str, timeout: Optional[float] = None) -> bool:
        """Wait for capacity in the domain's window; False on timeout."""
        deadline = None if timeout is None else self._clock() + timeout
        while True:
            async with self._lock:
                if self.check_rate_limit(domain):
                    return True
                wait = self.retry_after(domain)
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    return False
                wait = min(wait, remaining)
            await self._sleep(max(0.05, wait))

    def reset_rate_limit(self, domain: str) -> None:
        self._buckets.pop(self.domain_key(domain), None)

    def get_status(self) -> list[RateLimitStatus]:
        now = self._clock()
        statuses: list[RateLimitStatus] = []
        for key in list(self._buckets):
            bucket = self._current_bucket(key, now)
            if bucket is None:
                continue
            statuses.append(
                RateLimitStatus(
                    domain=key,
                    count=bucket.count,
                    remaining=max(0, self.max_requests_per_minute - bucket.count),
                    reset_in=max(0.0, bucket.window_reset_time - now),
                )
            )
        return statuses

    def clear(self) -> None:
        self._buckets.clear()
