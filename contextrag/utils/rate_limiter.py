"""
ContextRAG - Adaptive Rate Limiter
==================================

Token bucket sized to a requests-per-minute budget, shared by every
concurrent batch worker of one engine instance.

Adaptive behaviour:
- report_rate_limit_error(): rate *= decrease_factor (floor: min_rate_fraction
  of the configured rate), bucket drained, recovery paused for cooldown_seconds
- report_success(): after recovery_threshold consecutive successes outside the
  cooldown window, rate *= increase_factor (ceiling: configured rate)

Usage:
    limiter = AdaptiveRateLimiter(requests_per_minute=60)

    await limiter.acquire()
    try:
        response = await service.generate(prompt)
        limiter.report_success()
    except RateLimitError:
        limiter.report_rate_limit_error()
        raise
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict

logger = logging.getLogger(__name__)

INTERVAL_SECONDS = 60.0


@dataclass
class RateLimiterStats:
    """Counters for observability."""
    acquired: int = 0
    waits: int = 0
    total_wait_seconds: float = 0.0
    rate_limit_errors: int = 0
    rate_increases: int = 0
    rate_decreases: int = 0


class AdaptiveRateLimiter:
    """
    Token-bucket rate limiter with multiplicative decrease on provider
    rate-limit responses and gradual recovery on sustained success.

    acquire() holds an asyncio.Lock only while inspecting the bucket and
    sleeps outside it. The report hooks never await, so they cannot
    interleave with a bucket update on the event loop.
    """

    def __init__(
        self,
        requests_per_minute: float = 60,
        adaptive: bool = True,
        decrease_factor: float = 0.5,
        increase_factor: float = 1.1,
        recovery_threshold: int = 10,
        cooldown_seconds: float = 30.0,
        min_rate_fraction: float = 0.2,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable] = asyncio.sleep
    ):
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")

        self.configured_rate = float(requests_per_minute)
        self.adaptive = adaptive
        self.decrease_factor = decrease_factor
        self.increase_factor = increase_factor
        self.recovery_threshold = recovery_threshold
        self.cooldown_seconds = cooldown_seconds
        self.min_rate = max(1.0, self.configured_rate * min_rate_fraction)

        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

        self._current_rate = self.configured_rate
        self._tokens = self.configured_rate
        self._last_refill = clock()
        self._consecutive_successes = 0
        self._cooldown_until = 0.0
        self.stats = RateLimiterStats()

    @classmethod
    def from_config(cls, config, **kwargs) -> "AdaptiveRateLimiter":
        """Build from a RateLimitConfig."""
        return cls(
            requests_per_minute=config.requests_per_minute,
            adaptive=config.adaptive,
            decrease_factor=config.decrease_factor,
            increase_factor=config.increase_factor,
            recovery_threshold=config.recovery_threshold,
            cooldown_seconds=config.cooldown_seconds,
            min_rate_fraction=config.min_rate_fraction,
            **kwargs
        )

    @property
    def current_rate(self) -> float:
        """Effective requests per minute."""
        return self._current_rate

    @property
    def in_cooldown(self) -> bool:
        return self._clock() < self._cooldown_until

    # =========================================================================
    # Token Bucket
    # =========================================================================

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(
            self._tokens + (elapsed / INTERVAL_SECONDS) * self._current_rate,
            self._current_rate
        )
        self._last_refill = now

    def _wait_time(self) -> float:
        tokens_needed = 1.0 - self._tokens
        return (tokens_needed / self._current_rate) * INTERVAL_SECONDS

    async def acquire(self) -> None:
        """Suspend until a request permit is available, then consume it."""
        waited = 0.0
        while True:
            async with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    self.stats.acquired += 1
                    if waited:
                        self.stats.waits += 1
                        self.stats.total_wait_seconds += waited
                    return
                wait = self._wait_time()

            waited += wait
            await self._sleep(wait)

    # =========================================================================
    # Feedback Hooks
    # =========================================================================

    def report_success(self) -> None:
        """Record a successful request; may restore throughput."""
        if not self.adaptive:
            return
        if self.in_cooldown:
            return

        self._consecutive_successes += 1
        if self._consecutive_successes < self.recovery_threshold:
            return

        self._consecutive_successes = 0
        if self._current_rate >= self.configured_rate:
            return

        self._refill()
        previous = self._current_rate
        self._current_rate = min(self._current_rate * self.increase_factor, self.configured_rate)
        self.stats.rate_increases += 1
        logger.debug(f"Rate limit recovered: {previous:.1f} -> {self._current_rate:.1f} rpm")

    def report_rate_limit_error(self) -> None:
        """Record a provider rate-limit response; shrinks throughput for a cooldown period."""
        self.stats.rate_limit_errors += 1
        if not self.adaptive:
            return

        self._refill()
        previous = self._current_rate
        self._current_rate = max(self._current_rate * self.decrease_factor, self.min_rate)
        self._tokens = min(self._tokens, 0.0)
        self._consecutive_successes = 0
        self._cooldown_until = self._clock() + self.cooldown_seconds
        self.stats.rate_decreases += 1
        logger.warning(
            f"Rate limit hit: reducing {previous:.1f} -> {self._current_rate:.1f} rpm "
            f"for {self.cooldown_seconds:.0f}s"
        )

    def get_status(self) -> Dict[str, float]:
        self._refill()
        return {
            "configured_rpm": self.configured_rate,
            "current_rpm": self._current_rate,
            "available_tokens": int(self._tokens),
            "in_cooldown": self.in_cooldown,
        }
