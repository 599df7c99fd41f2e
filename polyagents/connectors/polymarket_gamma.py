"""Polymarket Gamma (REST) API connector: the market collaborator.

Gamma is Polymarket's public market-listing API.  ``GammaClient`` pulls raw
pages; ``GammaMarketFeed`` maps them into ``Market`` snapshots and keeps a
short-lived in-process copy so repeated generations don't hammer the API.

``GammaMarketFeed.fetch_all_markets`` never raises: on upstream failure it
serves the last good (stale) copy, else ``[]``.
"""

from __future__ import annotations

import json
import math
import time
from typing import Any

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential

from polyagents.agents.domain import Market, normalize_category
from polyagents.config import MarketsConfig
from polyagents.connectors.rate_limiter import rate_limiter
from polyagents.observability.logger import get_logger
from polyagents.observability.metrics import metrics
from polyagents.storage.cache import Clock, TTLCache

log = get_logger(__name__)

GAMMA_BASE = "https://gamma-api.polymarket.com"

# ── Category inference keywords ──────────────────────────────────────
_CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "Crypto": [
        "bitcoin", "btc", "ethereum", "eth", "solana", "crypto", "token",
        "stablecoin", "etf", "coinbase", "binance", "memecoin",
    ],
    "Tech": [
        "openai", "gpt", "apple", "google", "microsoft", "nvidia", "tesla",
        "ai model", "iphone", "launch", "spacex",
    ],
    "Finance": [
        "fed", "fomc", "rate cut", "rate hike", "inflation", "cpi", "gdp",
        "recession", "s&p", "nasdaq", "earnings", "stock", "ipo",
    ],
    "Elections": [
        "election", "primary", "nominee", "ballot", "electoral", "poll",
        "caucus", "win the", "governor",
    ],
    "Politics": [
        "president", "senate", "congress", "trump", "biden", "bill",
        "supreme court", "impeach", "cabinet",
    ],
    "Sports": [
        "super bowl", "nfl", "nba", "mlb", "nhl", "world cup", "olympics",
        "championship", "playoffs", "mvp", "premier league", "ufc",
    ],
    "Entertainment": [
        "oscar", "grammy", "emmy", "box office", "album", "movie", "netflix",
        "taylor swift", "billboard",
    ],
    "Geopolitics": [
        "ukraine", "russia", "israel", "gaza", "iran", "china", "taiwan",
        "nato", "ceasefire", "war", "invasion",
    ],
}


def classify_category(question: str, description: str = "") -> str:
    """Best keyword match for a market without a usable upstream category."""
    text = f"{question} {description}".lower()
    scores: dict[str, int] = {}
    for category, keywords in _CATEGORY_KEYWORDS.items():
        score = sum(1 for kw in keywords if kw in text)
        if score > 0:
            scores[category] = score
    if not scores:
        return "Other"
    return max(scores, key=scores.get)  # type: ignore[arg-type]


# ── Parsing helpers ──────────────────────────────────────────────────

def _parse_json_str(val: Any) -> list[Any]:
    """Parse a JSON-encoded string or return as-is if already a list."""
    if isinstance(val, list):
        return val
    if isinstance(val, str):
        try:
            parsed = json.loads(val)
            if isinstance(parsed, list):
                return parsed
        except (json.JSONDecodeError, TypeError):
            pass
    return []


def _to_float(val: Any, default: float = 0.0) -> float:
    try:
        out = float(val)
    except (TypeError, ValueError):
        return default
    return out if math.isfinite(out) else default


def _yes_probability(raw: dict[str, Any]) -> float:
    """Yes-outcome price, falling back to the first outcome, then 0.5."""
    outcomes = [str(o).lower() for o in _parse_json_str(raw.get("outcomes", []))]
    prices = [_to_float(p, -1.0) for p in _parse_json_str(raw.get("outcomePrices", []))]
    prices = [p for p in prices if 0.0 <= p <= 1.0]
    if not prices:
        return 0.5
    if "yes" in outcomes:
        idx = outcomes.index("yes")
        if idx < len(prices):
            return prices[idx]
    return prices[0]


def _upstream_category(raw: dict[str, Any]) -> str:
    category = normalize_category(raw.get("category"))
    if category != "Other":
        return category
    for tag in raw.get("tags") or []:
        label = tag.get("label") if isinstance(tag, dict) else tag
        category = normalize_category(label)
        if category != "Other":
            return category
    return classify_category(raw.get("question", ""), raw.get("description", ""))


def parse_market(raw: dict[str, Any]) -> Market:
    """Convert a raw Gamma JSON blob into a ``Market`` snapshot."""
    return Market(
        id=str(raw.get("id", raw.get("conditionId", "")) or ""),
        question=raw.get("question", raw.get("title", "")) or "",
        category=_upstream_category(raw),
        volume_usd=_to_float(raw.get("volumeNum", raw.get("volume", 0))),
        liquidity_usd=_to_float(raw.get("liquidityNum", raw.get("liquidity", 0))),
        current_probability=_yes_probability(raw),
        price_change_24h=_to_float(raw.get("oneDayPriceChange", 0)),
    )


# ── Client ───────────────────────────────────────────────────────────

class GammaClient:
    """Async client for the Polymarket Gamma API."""

    def __init__(self, base_url: str = GAMMA_BASE, timeout: float = 30.0):
        self._base = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base,
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(min=1, max=10))
    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        await rate_limiter.get("gamma").acquire()
        resp = await self._client.get(path, params=params)
        resp.raise_for_status()
        return resp.json()

    async def list_markets(
        self,
        *,
        limit: int = 500,
        offset: int = 0,
        order: str = "volume",
    ) -> list[dict[str, Any]]:
        """Fetch one page of active, open markets as raw JSON objects."""
        params: dict[str, Any] = {
            "limit": limit,
            "offset": offset,
            "active": "true",
            "closed": "false",
            "order": order,
            "ascending": "false",
        }
        data = await self._get("/markets", params=params)
        rows = data if isinstance(data, list) else data.get("data", data.get("markets", []))
        log.debug("gamma.list_markets", count=len(rows), offset=offset)
        return [r for r in rows if isinstance(r, dict)]


# ── Feed ─────────────────────────────────────────────────────────────

class GammaMarketFeed:
    """Market collaborator: cached, never-raising ``fetch_all_markets``."""

    _CACHE_KEY = "gamma:markets"

    def __init__(
        self,
        config: MarketsConfig | None = None,
        ttl_secs: float = 60.0,
        client: GammaClient | None = None,
        clock: Clock = time.time,
    ):
        self._config = config or MarketsConfig()
        self._ttl = ttl_secs
        self._client = client
        self._cache = TTLCache(max_size_mb=20, clock=clock)

    def _gamma(self) -> GammaClient:
        if self._client is None:
            self._client = GammaClient(base_url=self._config.base_url)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    async def _fetch_pages(self) -> list[Market]:
        seen: set[str] = set()
        markets: list[Market] = []
        limit = self._config.page_limit
        for page in range(self._config.max_pages):
            rows = await self._gamma().list_markets(limit=limit, offset=page * limit)
            for raw in rows:
                try:
                    market = parse_market(raw)
                except ValueError as e:
                    log.debug("gamma.parse_skipped", id=raw.get("id"), error=str(e))
                    continue
                if market.id and market.id not in seen:
                    seen.add(market.id)
                    markets.append(market)
            if len(rows) < limit:
                break
        return markets

    async def fetch_all_markets(self) -> list[Market]:
        cached = self._cache.get(self._CACHE_KEY)
        if cached is not None:
            return cached

        try:
            markets = await self._fetch_pages()
        except Exception as e:
            stale = self._cache.get_stale(self._CACHE_KEY)
            metrics.incr("gamma.fetch_failed")
            log.warning(
                "gamma.fetch_failed",
                error=str(e)[:200],
                serving_stale=stale is not None,
            )
            return list(stale) if stale is not None else []

        self._cache.put(self._CACHE_KEY, markets, ttl_secs=self._ttl)
        log.info("gamma.markets_fetched", count=len(markets))
        return markets
