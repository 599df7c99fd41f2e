"""Request coalescing ("singleflight") for async work.

At most one call per key runs at a time; concurrent callers for the same
key await the same task and receive the same result (or exception).  The
in-flight entry is removed in a ``finally`` block so a failed run never
blocks later calls.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, TypeVar

from polyagents.observability.logger import get_logger
from polyagents.observability.metrics import metrics

log = get_logger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Per-key in-flight task map for a single event loop."""

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task[T]] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` for ``key`` unless a run is already in flight; join it."""
        task = self._inflight.get(key)
        if task is not None:
            metrics.incr("singleflight.joined", key=key)
            log.debug("singleflight.join", key=key)
        else:
            task = asyncio.ensure_future(self._run(key, fn))
            self._inflight[key] = task
        # Shielded: a cancelled waiter must not cancel the shared run.
        return await asyncio.shield(task)

    async def _run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        finally:
            self._inflight.pop(key, None)
