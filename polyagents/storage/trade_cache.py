"""Per-agent trade cache and research store.

A trade-cache entry is valid while it is younger than the TTL *and* the
agent's sorted candidate market-id list is identical to the one it was
generated from.  Any mismatch deletes the entry.

The quick check skips the market-id comparison so cached trades can be
served before any market fetch happens.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Sequence

from polyagents.agents.domain import AgentTrade, ResearchDecision
from polyagents.observability.logger import get_logger
from polyagents.observability.metrics import metrics
from polyagents.storage.cache import Clock

log = get_logger(__name__)


@dataclass(frozen=True)
class AgentCacheEntry:
    trades: list[AgentTrade]
    generated_at: float
    market_ids: tuple[str, ...]  # sorted


class AgentTradeCache:
    """TTL + candidate-set validated cache keyed by agent id."""

    def __init__(self, ttl_secs: float = 120.0, clock: Clock = time.time):
        self._ttl = ttl_secs
        self._clock = clock
        self._lock = Lock()
        self._entries: dict[str, AgentCacheEntry] = {}

    @property
    def ttl_secs(self) -> float:
        return self._ttl

    def _live_entry(self, agent_id: str) -> AgentCacheEntry | None:
        """Return the entry if unexpired; deletes it otherwise. Lock must be held."""
        entry = self._entries.get(agent_id)
        if entry is None:
            return None
        if self._clock() - entry.generated_at >= self._ttl:
            del self._entries[agent_id]
            log.debug("trade_cache.expired", agent_id=agent_id)
            return None
        return entry

    def get(self, agent_id: str, market_ids: Sequence[str]) -> list[AgentTrade] | None:
        """Full check: TTL and exact candidate-set match."""
        with self._lock:
            entry = self._live_entry(agent_id)
            if entry is None:
                metrics.incr("trade_cache.miss", agent_id=agent_id)
                return None
            if entry.market_ids != tuple(sorted(market_ids)):
                del self._entries[agent_id]
                metrics.incr("trade_cache.invalidated", agent_id=agent_id)
                log.info("trade_cache.market_set_changed", agent_id=agent_id)
                return None
            metrics.incr("trade_cache.hit", agent_id=agent_id)
            return list(entry.trades)

    def get_quick(self, agent_id: str) -> list[AgentTrade] | None:
        """TTL-only check; no market fetch required."""
        with self._lock:
            entry = self._live_entry(agent_id)
            return list(entry.trades) if entry else None

    def put(self, agent_id: str, trades: list[AgentTrade], market_ids: Sequence[str]) -> None:
        with self._lock:
            self._entries[agent_id] = AgentCacheEntry(
                trades=list(trades),
                generated_at=self._clock(),
                market_ids=tuple(sorted(market_ids)),
            )
        log.info("trade_cache.stored", agent_id=agent_id, trades=len(trades), markets=len(market_ids))

    def invalidate(self, agent_id: str) -> bool:
        with self._lock:
            return self._entries.pop(agent_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class ResearchStore:
    """Last-computed research decisions per agent."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._results: dict[str, list[ResearchDecision]] = {}

    def get(self, agent_id: str) -> list[ResearchDecision]:
        with self._lock:
            return list(self._results.get(agent_id, []))

    def put(self, agent_id: str, decisions: list[ResearchDecision]) -> None:
        with self._lock:
            self._results[agent_id] = list(decisions)

    def clear(self) -> None:
        with self._lock:
            self._results.clear()
