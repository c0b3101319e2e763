"""Per-platform pacing of scraping batches, driven by provider rate-limit signals"""

import asyncio
import time
from typing import Dict, Optional

from loguru import logger

from .config import SCRAPING_BURST, SCRAPING_RATE_LIMIT
from .exceptions import RateLimitError


class AdaptiveRateLimiter:
    """
    Token bucket for one scraping platform.

    A 429 from the provider halves the batch rate and blocks the platform
    until its Retry-After has passed. Successful batches creep the rate back
    toward the base rate. A later, shorter Retry-After never cuts an active
    block short.
    """

    def __init__(self, rate: float = SCRAPING_RATE_LIMIT, burst: int = SCRAPING_BURST, platform: str = "default"):
        """
        Args:
            rate: Base rate in batches per second
            burst: Batches that may go out back to back
            platform: Platform the limiter paces, used in logs and errors
        """
        self.platform = platform
        self.base_rate = rate
        self.current_rate = rate
        self.burst = burst
        self.tokens = float(burst)
        self.last_update = time.monotonic()
        self.lock = asyncio.Lock()
        self.blocked_until: Optional[float] = None

        logger.debug(f"Rate limiter for {platform} initialized: {rate} batches/s, burst={burst}")

    def remaining_block(self) -> float:
        """Seconds left before the provider accepts batches again"""
        if self.blocked_until is None:
            return 0.0
        return max(0.0, self.blocked_until - time.monotonic())

    async def acquire(self, max_wait: Optional[float] = None) -> None:
        """
        Wait for the next batch slot.

        Raises:
            RateLimitError: The platform is blocked for longer than max_wait.
                Nothing is slept in that case, so the caller can skip the platform.
        """
        async with self.lock:
            blocked = self.remaining_block()
            if blocked:
                if max_wait is not None and blocked > max_wait:
                    raise RateLimitError(
                        f"{self.platform} is rate limited for another {blocked:.0f}s",
                        retry_after=blocked,
                    )
                logger.warning(f"⏳ {self.platform} rate limited: waiting {blocked:.1f}s")
                await asyncio.sleep(blocked)
            self.blocked_until = None

            now = time.monotonic()
            self.tokens = min(self.burst, self.tokens + (now - self.last_update) * self.current_rate)
            self.last_update = now

            if self.tokens >= 1.0:
                self.tokens -= 1.0
                return

            await asyncio.sleep((1.0 - self.tokens) / self.current_rate)
            self.tokens = 0.0
            self.last_update = time.monotonic()

    async def backoff(self, retry_after: float) -> None:
        """Record a provider 429: slow down and block for retry_after seconds"""
        async with self.lock:
            until = time.monotonic() + retry_after
            if self.blocked_until is None or until > self.blocked_until:
                self.blocked_until = until
            self.current_rate = max(0.1, self.current_rate * 0.5)
            logger.warning(
                f"🐢 {self.platform} rate limited, blocked for {self.remaining_block():.1f}s, "
                f"new rate: {self.current_rate:.2f} batches/s"
            )

    async def recover(self) -> None:
        async with self.lock:
            old_rate = self.current_rate
            self.current_rate = min(self.base_rate, self.current_rate * 1.2)
            if self.current_rate != old_rate:
                logger.info(f"{self.platform} pacing recovering: {old_rate:.2f} → {self.current_rate:.2f} batches/s")


class PlatformRateLimiters:
    """One limiter per platform, created on first use and shared across searches"""

    def __init__(self, rate: float = SCRAPING_RATE_LIMIT, burst: int = SCRAPING_BURST):
        self.rate = rate
        self.burst = burst
        self._limiters: Dict[str, AdaptiveRateLimiter] = {}

    def for_platform(self, platform: str) -> AdaptiveRateLimiter:
        limiter = self._limiters.get(platform)
        if limiter is None:
            limiter = AdaptiveRateLimiter(self.rate, self.burst, platform=platform)
            self._limiters[platform] = limiter
        return limiter

    def blocked_platforms(self) -> Dict[str, float]:
        """Platforms currently blocked by a Retry-After, with seconds remaining"""
        return {
            platform: limiter.remaining_block()
            for platform, limiter in self._limiters.items()
            if limiter.remaining_block() > 0
        }
