"""In-memory token-bucket rate limiter with idle-bucket eviction.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: one lock guards the key -> bucket map and every bucket in it,
  so each admit decision is an indivisible read-modify-write.
- Buckets are created lazily and evicted by a periodic sweep once idle for
  longer than ``3 x cleanup_interval``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from prometheus_client import Counter, Gauge

from shortlink.config import Settings
from shortlink.enums import AdmissionDecision

__all__ = [
    "TokenBucket",
    "RateLimiter",
    "DEFAULT_RATE",
    "DEFAULT_BURST",
    "DEFAULT_CLEANUP_INTERVAL_SECONDS",
    "IDLE_MULTIPLIER",
]

DEFAULT_RATE = 10.0
DEFAULT_BURST = 20
DEFAULT_CLEANUP_INTERVAL_SECONDS = 60.0
IDLE_MULTIPLIER = 3

logger = logging.getLogger(__name__)

RATE_LIMIT_DECISIONS_TOTAL = Counter(
    "shortlink_rate_limit_decisions_total",
    "Rate limiter admission decisions",
    ["decision"],
)
RATE_LIMIT_BUCKETS = Gauge(
    "shortlink_rate_limit_buckets",
    "Admission keys currently tracked by the rate limiter",
)


@dataclass
class TokenBucket:
    """Token state for one admission key.

    Attributes:
        tokens: Tokens available as of ``updated_at``.
        updated_at: Clock reading of the last refill.
        last_seen_at: Clock reading of the last admission check.
    """

    tokens: float
    updated_at: float
    last_seen_at: float

    def touch(self, now: float) -> None:
        self.last_seen_at = max(self.last_seen_at, now)

    def allow(self, now: float, rate: float, burst: int) -> bool:
        """Refill up to ``burst`` at ``rate`` tokens/s, then take one token if available."""
        if now > self.updated_at:
            self.tokens = min(float(burst), self.tokens + (now - self.updated_at) * rate)
            self.updated_at = now
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return True
        return False


class RateLimiter:
    """Token bucket per admission key.

    Example:
        >>> limiter = RateLimiter(rate=10, burst=20, cleanup_interval=60)
        >>> limiter.admit("203.0.113.7")
        True
    """

    def __init__(
        self,
        *,
        rate: float = DEFAULT_RATE,
        burst: int = DEFAULT_BURST,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the limiter.

        Args:
            rate: Sustained refill rate in tokens per second.
            burst: Bucket capacity; a fresh bucket starts full.
            cleanup_interval: Seconds between eviction sweeps.
            clock: Monotonic time source returning seconds.

        Raises:
            ValueError: If any parameter is not positive.
        """
        if rate <= 0:
            raise ValueError("rate must be > 0")
        if burst < 1:
            raise ValueError("burst must be >= 1")
        if cleanup_interval <= 0:
            raise ValueError("cleanup_interval must be > 0")

        self._rate = rate
        self._burst = burst
        self._cleanup_interval = cleanup_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: dict[str, TokenBucket] = {}
        self._sweeper: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimiter:
        return cls(
            rate=settings.RATE_LIMIT_RPS,
            burst=settings.RATE_LIMIT_BURST,
            cleanup_interval=settings.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
        )

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def burst(self) -> int:
        return self._burst

    @property
    def cleanup_interval(self) -> float:
        return self._cleanup_interval

    @property
    def idle_timeout(self) -> float:
        return self._cleanup_interval * IDLE_MULTIPLIER

    @property
    def retry_after_seconds(self) -> int:
        """Retry hint sent with rejections.

        Derived from the cleanup interval, not from the refill rate.
        """
        return int(self._cleanup_interval)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._buckets

    def admit(self, key: str) -> bool:
        """Consume one token for ``key``; False when the bucket is empty."""
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = TokenBucket(tokens=float(self._burst), updated_at=now, last_seen_at=now)
                self._buckets[key] = bucket
                RATE_LIMIT_BUCKETS.set(len(self._buckets))
            else:
                bucket.touch(now)
            allowed = bucket.allow(now, self._rate, self._burst)

        decision = AdmissionDecision.ALLOWED if allowed else AdmissionDecision.REJECTED
        RATE_LIMIT_DECISIONS_TOTAL.labels(decision=decision).inc()
        return allowed

    def sweep(self) -> int:
        """Remove every bucket idle for longer than ``idle_timeout``.

        Returns:
            int: Number of evicted buckets.
        """
        now = self._clock()
        with self._lock:
            stale = [key for key, bucket in self._buckets.items() if now - bucket.last_seen_at > self.idle_timeout]
            for key in stale:
                del self._buckets[key]
            RATE_LIMIT_BUCKETS.set(len(self._buckets))

        if stale:
            logger.debug(f"Evicted {len(stale)} idle rate limit buckets")
        return len(stale)

    def start(self) -> None:
        """Run ``sweep`` every ``cleanup_interval`` seconds on the running loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="rate-limit-sweeper")

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            self.sweep()
