"""Tests for polyagents.connectors.rate_limiter."""

from __future__ import annotations

import pytest

from polyagents.connectors.rate_limiter import (
    DEFAULT_LIMITS,
    BucketConfig,
    RateLimiterRegistry,
    TokenBucket,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTokenBucket:
    def test_burst_then_empty(self) -> None:
        bucket = TokenBucket(BucketConfig(1.0, 2), clock=FakeClock())
        assert bucket.try_acquire()
        assert bucket.try_acquire()
        assert not bucket.try_acquire()
        assert bucket.stats["granted"] == 2

    def test_refills_over_time(self) -> None:
        clock = FakeClock()
        bucket = TokenBucket(BucketConfig(2.0, 1), clock=clock)
        assert bucket.try_acquire()
        assert not bucket.try_acquire()
        clock.now += 0.5
        assert bucket.try_acquire()

    def test_refill_capped_at_burst(self) -> None:
        clock = FakeClock()
        bucket = TokenBucket(BucketConfig(10.0, 2), clock=clock)
        clock.now += 100
        assert bucket.try_acquire()
        assert bucket.try_acquire()
        assert not bucket.try_acquire()

    @pytest.mark.asyncio
    async def test_acquire_without_wait_when_tokens_left(self) -> None:
        bucket = TokenBucket(BucketConfig(1.0, 3))
        await bucket.acquire()
        assert bucket.stats["waits"] == 0


class TestRegistry:
    def test_known_endpoints_use_defaults(self) -> None:
        registry = RateLimiterRegistry()
        assert registry.get("qwen").config == DEFAULT_LIMITS["qwen"]
        assert registry.get("qwen") is registry.get("qwen")

    def test_unknown_endpoint_gets_fallback(self) -> None:
        bucket = RateLimiterRegistry().get("mystery")
        assert bucket.config.name == "mystery"
        assert bucket.config.max_burst == 10

    def test_configure_replaces_bucket(self) -> None:
        registry = RateLimiterRegistry()
        old = registry.get("news")
        registry.configure("news", tokens_per_second=50.0, max_burst=100)
        new = registry.get("news")
        assert new is not old
        assert new.config.max_burst == 100

    def test_stats_cover_created_buckets(self) -> None:
        registry = RateLimiterRegistry({"gamma": BucketConfig(5.0, 10, "Gamma")})
        registry.get("gamma").try_acquire()
        assert registry.stats() == {"gamma": {"granted": 1, "waits": 0, "waited_secs": 0.0}}
