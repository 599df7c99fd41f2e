"""Token-bucket rate limiting for outbound calls.

One bucket per upstream: Polymarket Gamma, the news API and each AI
vendor.  Per-market AI calls already run one at a time per agent; the
buckets keep several agents generating at once inside the vendors'
request budgets.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable


@dataclass(frozen=True)
class BucketConfig:
    tokens_per_second: float
    max_burst: int
    name: str = ""


DEFAULT_LIMITS: dict[str, BucketConfig] = {
    "gamma": BucketConfig(5.0, 10, "Polymarket Gamma"),
    "news": BucketConfig(1.0, 3, "News API"),
    "openai": BucketConfig(3.0, 5, "OpenAI"),
    "anthropic": BucketConfig(2.0, 4, "Anthropic"),
    "xai": BucketConfig(2.0, 4, "xAI"),
    "google": BucketConfig(2.0, 4, "Google AI"),
    "deepseek": BucketConfig(2.0, 4, "DeepSeek"),
    "qwen": BucketConfig(1.0, 2, "Qwen"),
}

_FALLBACK_LIMIT = BucketConfig(5.0, 10)


class TokenBucket:
    """Thread-safe token bucket; ``acquire`` sleeps on the event loop."""

    def __init__(self, config: BucketConfig, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self._clock = clock
        self._tokens = float(config.max_burst)
        self._last_refill = clock()
        self._lock = Lock()
        self._granted = 0
        self._waits = 0
        self._waited_secs = 0.0

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(
            float(self.config.max_burst),
            self._tokens + (now - self._last_refill) * self.config.tokens_per_second,
        )
        self._last_refill = now

    def _take_or_wait(self) -> float:
        """Take a token and return 0, or return the seconds until one is due."""
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                self._granted += 1
                return 0.0
            return (1.0 - self._tokens) / self.config.tokens_per_second

    def try_acquire(self) -> bool:
        return self._take_or_wait() == 0.0

    async def acquire(self) -> None:
        while True:
            wait = self._take_or_wait()
            if wait == 0.0:
                return
            self._waits += 1
            self._waited_secs += wait
            await asyncio.sleep(wait)

    @property
    def stats(self) -> dict[str, float]:
        return {
            "granted": self._granted,
            "waits": self._waits,
            "waited_secs": round(self._waited_secs, 3),
        }


class RateLimiterRegistry:
    """Lazily created buckets keyed by upstream name."""

    def __init__(self, limits: dict[str, BucketConfig] | None = None) -> None:
        self._limits = dict(DEFAULT_LIMITS if limits is None else limits)
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = Lock()

    def get(self, endpoint: str) -> TokenBucket:
        with self._lock:
            bucket = self._buckets.get(endpoint)
            if bucket is None:
                config = self._limits.get(endpoint, BucketConfig(
                    _FALLBACK_LIMIT.tokens_per_second, _FALLBACK_LIMIT.max_burst, endpoint,
                ))
                bucket = self._buckets[endpoint] = TokenBucket(config)
            return bucket

    def configure(self, endpoint: str, tokens_per_second: float, max_burst: int) -> None:
        """Replace the bucket for ``endpoint``; the new one starts full."""
        config = BucketConfig(tokens_per_second, max_burst, endpoint)
        with self._lock:
            self._limits[endpoint] = config
            self._buckets[endpoint] = TokenBucket(config)

    def stats(self) -> dict[str, dict[str, float]]:
        with self._lock:
            return {name: bucket.stats for name, bucket in self._buckets.items()}


rate_limiter = RateLimiterRegistry()
