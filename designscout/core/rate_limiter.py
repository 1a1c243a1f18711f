"""
Tool-call pacing

Keeps the automation server from being hammered with clicks and evaluations
faster than the target site tolerates.
"""

import asyncio
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Raised when tokens do not become available in time"""

    def __init__(self, limit_type: str, retry_after: float):
        self.limit_type = limit_type
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded for {limit_type}. Retry after {retry_after:.1f}s")


class TokenBucket:
    """Token bucket algorithm for rate limiting"""

    def __init__(self, capacity: int, refill_rate: float):
        """
        Args:
            capacity: Maximum number of tokens
            refill_rate: Tokens added per second
        """
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.tokens = float(capacity)
        self.last_refill = time.monotonic()
        self.lock = asyncio.Lock()

    @classmethod
    def per_minute(cls, requests_per_minute: int) -> "TokenBucket":
        """Bucket allowing a burst of a few calls and the given sustained rate"""
        rate = max(requests_per_minute, 1) / 60.0
        return cls(capacity=max(1, min(requests_per_minute, 10)), refill_rate=rate)

    def _refill(self):
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def consume(self, tokens: int = 1) -> bool:
        """
        Try to consume tokens from the bucket

        Returns:
            True if tokens were consumed, False if insufficient tokens
        """
        async with self.lock:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return True
            return False

    async def wait_for_tokens(self, tokens: int = 1, timeout: Optional[float] = None):
        """
        Wait until tokens are available

        Raises:
            RateLimitExceeded: If timeout is reached
        """
        start_time = time.monotonic()

        while True:
            if await self.consume(tokens):
                return

            wait = self.time_until_available(tokens)
            if timeout is not None and (time.monotonic() - start_time) + wait > timeout:
                raise RateLimitExceeded("tool_call", wait)

            logger.debug(f"Pacing tool calls, sleeping {wait:.2f}s")
            await asyncio.sleep(min(max(wait, 0.01), 1.0))

    def time_until_available(self, tokens: int = 1) -> float:
        """Calculate time until tokens will be available"""
        if self.tokens >= tokens:
            return 0.0
        needed = tokens - self.tokens
        return needed / self.refill_rate
