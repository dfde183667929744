"""
In-memory token-bucket rate limiter, keyed by client identity.

Buckets refill continuously at max_tokens / window_seconds tokens per second
and are created lazily (full) on first sight of an identity.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from app.core.config import RATE_LIMIT_MAX_TOKENS, RATE_LIMIT_WINDOW_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class Bucket:
    tokens: float
    last_refill: float


class TokenBucketRateLimiter:
    """Per-identity admission control. Each consume() is one critical section."""

    def __init__(
        self,
        max_tokens: int = RATE_LIMIT_MAX_TOKENS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_tokens <= 0 or window_seconds <= 0:
            raise ValueError("max_tokens and window_seconds must be positive")
        self.max_tokens = float(max_tokens)
        self.window_seconds = float(window_seconds)
        self.refill_rate = self.max_tokens / self.window_seconds
        self._clock = clock
        self._buckets: dict[str, Bucket] = {}
        self._lock = threading.Lock()

    def _refilled(self, bucket: Bucket, now: float) -> float:
        elapsed = max(0.0, now - bucket.last_refill)
        return min(self.max_tokens, bucket.tokens + elapsed * self.refill_rate)

    def consume(self, identity: str) -> bool:
        """Take one token for identity. Refill is persisted even when denied."""
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(identity)
            if bucket is None:
                bucket = Bucket(tokens=self.max_tokens, last_refill=now)
                self._buckets[identity] = bucket
            bucket.tokens = self._refilled(bucket, now)
            bucket.last_refill = now
            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return True
            tokens = bucket.tokens
        logger.info("[rate_limiter:consume] denied tokens=%.3f", tokens)
        return False

    def remaining(self, identity: str) -> float:
        """Tokens available right now, without consuming or persisting the refill."""
        with self._lock:
            bucket = self._buckets.get(identity)
            if bucket is None:
                return self.max_tokens
            return self._refilled(bucket, self._clock())

    def retry_after(self, identity: str) -> int:
        """Whole seconds until the next token is available (at least 1)."""
        missing = 1.0 - self.remaining(identity)
        if missing <= 0:
            return 1
        # round off float noise before ceil
        return max(1, math.ceil(round(missing * self.window_seconds / self.max_tokens, 6)))

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)
