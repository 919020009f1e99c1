"""
Token bucket rate limiter for table store requests

Airtable allows 5 requests per second per base; every writer sharing a
store shares one limiter so concurrent table syncs stay under the ceiling.
"""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Thread-safe token bucket.

    Tokens refill continuously at ``rate`` per second up to ``burst``.
    ``acquire`` blocks until a token is available.
    """

    def __init__(
        self,
        rate: float = 5.0,
        burst: int = 5,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        """
        Initialize the limiter.

        Args:
            rate: Tokens added per second
            burst: Bucket capacity
            clock: Monotonic clock, replaceable in tests
            sleep: Sleep function, replaceable in tests

        Raises:
            ValueError: If rate or burst is not positive
        """
        if rate <= 0:
            raise ValueError(f"Rate must be positive, got {rate}")
        if burst < 1:
            raise ValueError(f"Burst must be at least 1, got {burst}")

        self.rate = float(rate)
        self.burst = int(burst)
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep
        self._tokens = float(burst)
        self._last_refill = self._clock()
        self._lock = threading.Lock()
        self.total_wait_seconds = 0.0

        logger.debug(f"Initialized RateLimiter: rate={rate}/s, burst={burst}")

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.burst, self._tokens + elapsed * self.rate)
        self._last_refill = now

    def try_acquire(self, tokens: float = 1.0) -> bool:
        """
        Take tokens without blocking.

        Returns:
            True if the tokens were taken
        """
        with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            return False

    def acquire(self, tokens: float = 1.0) -> float:
        """
        Block until tokens are available, then take them.

        Args:
            tokens: Number of tokens to take

        Returns:
            Seconds spent waiting
        """
        if tokens > self.burst:
            raise ValueError(f"Cannot acquire {tokens} tokens with burst {self.burst}")

        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= tokens:
                    self._tokens -= tokens
                    self.total_wait_seconds += waited
                    return waited
                wait = (tokens - self._tokens) / self.rate

            self._sleep(wait)
            waited += wait

    def penalize(self, seconds: float) -> None:
        """
        Drain the bucket after a throttling signal.

        The next request will wait roughly ``seconds`` before it is allowed.
        """
        with self._lock:
            self._refill()
            self._tokens = min(self._tokens, 0.0) - seconds * self.rate
        logger.info(f"Rate limiter penalized for {seconds:.2f}s")

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens
