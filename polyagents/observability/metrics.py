"""In-process metrics for the decision pipeline.

Counters are kept per tag set so they can be read as a total
(``metrics.counter("trade_cache.hit")``) or for one agent
(``metrics.counter("trade_cache.hit", agent_id="GPT_5")``).  Histograms
hold raw samples (generation latency) and report percentiles.

``CostTracker`` counts AI vendor calls per generation cycle.
"""

from __future__ import annotations

import math
from collections import defaultdict
from threading import Lock
from typing import Any

_MAX_SAMPLES = 5_000  # per histogram

TagKey = tuple[tuple[str, str], ...]


def _tag_key(tags: dict[str, Any]) -> TagKey:
    return tuple(sorted((k, str(v)) for k, v in tags.items()))


def _percentile(sorted_data: list[float], pct: float) -> float:
    """Linear interpolation over pre-sorted samples."""
    if not sorted_data:
        return 0.0
    k = (len(sorted_data) - 1) * (pct / 100.0)
    lo, hi = math.floor(k), math.ceil(k)
    if lo == hi:
        return sorted_data[int(k)]
    return sorted_data[lo] * (hi - k) + sorted_data[hi] * (k - lo)


def _histogram_stats(values: list[float]) -> dict[str, float]:
    if not values:
        return {"count": 0, "min": 0, "max": 0, "avg": 0, "p50": 0, "p95": 0}
    s = sorted(values)
    return {
        "count": len(s),
        "min": s[0],
        "max": s[-1],
        "avg": sum(s) / len(s),
        "p50": _percentile(s, 50),
        "p95": _percentile(s, 95),
    }


class MetricsCollector:
    """Thread-safe counters, gauges and histograms."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: dict[str, dict[TagKey, float]] = defaultdict(lambda: defaultdict(float))
        self._gauges: dict[str, float] = {}
        self._histograms: dict[str, list[float]] = defaultdict(list)

    def incr(self, name: str, value: float = 1.0, **tags: Any) -> None:
        with self._lock:
            self._counters[name][_tag_key(tags)] += value

    def gauge(self, name: str, value: float, **tags: Any) -> None:
        with self._lock:
            self._gauges[name] = value

    def histogram(self, name: str, value: float, **tags: Any) -> None:
        with self._lock:
            samples = self._histograms[name]
            samples.append(value)
            if len(samples) > _MAX_SAMPLES:
                del samples[: len(samples) - _MAX_SAMPLES]

    def counter(self, name: str, **tags: Any) -> float:
        """Sum of ``name`` over every tag set containing ``tags``."""
        wanted = set(_tag_key(tags))
        with self._lock:
            series = self._counters.get(name, {})
            return sum(v for key, v in series.items() if wanted <= set(key))

    def by_agent(self, name: str) -> dict[str, float]:
        out: dict[str, float] = defaultdict(float)
        with self._lock:
            for key, v in self._counters.get(name, {}).items():
                agent_id = dict(key).get("agent_id")
                if agent_id is not None:
                    out[agent_id] += v
        return dict(out)

    def snapshot(self) -> dict[str, Any]:
        """JSON-serialisable totals, gauges and histogram percentiles."""
        with self._lock:
            return {
                "counters": {name: sum(series.values()) for name, series in self._counters.items()},
                "gauges": dict(self._gauges),
                "histograms": {k: _histogram_stats(v) for k, v in self._histograms.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()


metrics = MetricsCollector()


# ── AI vendor calls ──────────────────────────────────────────────────

# Approximate USD per decision call
_DEFAULT_COSTS: dict[str, float] = {
    "openai": 0.005,
    "anthropic": 0.015,
    "xai": 0.005,
    "google": 0.001,
    "deepseek": 0.0005,
    "qwen": 0.0005,
}


class CostTracker:
    """AI vendor calls and estimated spend, per cycle and cumulative."""

    def __init__(self, cost_map: dict[str, float] | None = None):
        self._costs = cost_map if cost_map is not None else dict(_DEFAULT_COSTS)
        self._lock = Lock()
        self._cycle_calls: dict[str, int] = defaultdict(int)
        self._total_calls: dict[str, int] = defaultdict(int)
        self._cycle_cost = 0.0
        self._total_cost = 0.0

    def record_call(self, vendor: str, count: int = 1) -> None:
        cost = self._costs.get(vendor, 0.001) * count
        with self._lock:
            self._cycle_calls[vendor] += count
            self._total_calls[vendor] += count
            self._cycle_cost += cost
            self._total_cost += cost

    def _summary(self) -> dict[str, Any]:
        return {
            "cycle_cost_usd": round(self._cycle_cost, 4),
            "cycle_calls": dict(self._cycle_calls),
            "total_cost_usd": round(self._total_cost, 4),
            "total_calls": dict(self._total_calls),
        }

    def end_cycle(self) -> dict[str, Any]:
        """Summary of the cycle just finished; cycle counters restart."""
        with self._lock:
            summary = self._summary()
            self._cycle_calls = defaultdict(int)
            self._cycle_cost = 0.0
            return summary

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return self._summary()


cost_tracker = CostTracker()
