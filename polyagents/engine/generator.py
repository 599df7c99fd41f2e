"""Agent trade generator: the pipeline entry point.

Each generation for one agent:
  1. Join an in-flight generation for the agent, if any
  2. Serve unexpired cached trades without fetching (quick path)
  3. Fetch markets + news in parallel
  4. Filter candidates; full cache check against the candidate id set
  5. Score, keep the top maxTrades×5, rotate by time bucket
  6. Attempt up to maxTrades×3 markets sequentially: trade, else research
  7. Store trades (with the id set) and research; return trades

``generate_agent_trades`` never raises; the worst case is ``[]``.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import time
from typing import Callable, Protocol, Sequence

from polyagents.agents.domain import (
    AgentProfile,
    AgentTrade,
    Market,
    NewsArticle,
    ResearchDecision,
    ScoredMarket,
)
from polyagents.agents.profiles import UnknownAgentError, get_agent_profile
from polyagents.config import BotConfig, load_config
from polyagents.connectors.ai_clients import AIDecisionClient
from polyagents.connectors.news_feed import NewsFeed
from polyagents.connectors.polymarket_gamma import GammaMarketFeed
from polyagents.engine.market_filter import filter_candidate_markets
from polyagents.engine.scoring import compute_news_relevance, score_market_for_agent
from polyagents.engine.singleflight import SingleFlight
from polyagents.forecast.decision_engine import DecisionEngine
from polyagents.forecast.determinism import agent_seed, rotate, rotation_bucket
from polyagents.observability.logger import agent_context, get_logger
from polyagents.observability.metrics import metrics
from polyagents.storage.cache import Clock
from polyagents.storage.trade_cache import AgentTradeCache, ResearchStore

log = get_logger(__name__)


class MarketSource(Protocol):
    async def fetch_all_markets(self) -> list[Market]: ...


class NewsSource(Protocol):
    async def fetch_latest_news(self) -> list[NewsArticle]: ...


Scorer = Callable[..., ScoredMarket]


class AgentTradeGenerator:
    """Owns the caches and collaborators for every agent's generation."""

    def __init__(
        self,
        config: BotConfig,
        market_source: MarketSource,
        news_source: NewsSource,
        decision_engine: DecisionEngine | None = None,
        trade_cache: AgentTradeCache | None = None,
        research_store: ResearchStore | None = None,
        flights: SingleFlight[list[AgentTrade]] | None = None,
        scorer: Scorer = score_market_for_agent,
        clock: Clock = time.time,
    ):
        self.config = config
        self._markets = market_source
        self._news = news_source
        self._engine = decision_engine or DecisionEngine(
            decision=config.decision, sizing=config.sizing, scoring=config.scoring,
        )
        self._clock = clock
        self.trade_cache = trade_cache or AgentTradeCache(
            ttl_secs=config.cache.trade_ttl_secs, clock=clock,
        )
        self.research_store = research_store or ResearchStore()
        self._flights: SingleFlight[list[AgentTrade]] = flights or SingleFlight()
        self._scorer = scorer

    # ── Public API ────────────────────────────────────────────────────

    async def generate_agent_trades(self, agent_id: str, *, fresh: bool = False) -> list[AgentTrade]:
        """Trades for ``agent_id``.  ``fresh`` skips the quick cache path."""
        try:
            agent = get_agent_profile(self.config.agents, agent_id)
        except UnknownAgentError:
            log.warning("generator.unknown_agent", agent_id=agent_id)
            return []

        if self._flights.in_flight(agent_id):
            log.debug("generator.join_in_flight", agent_id=agent_id)
            return await self._flights.do(agent_id, lambda: self._generate_safely(agent))

        if not fresh and self.config.cache.quick_serve:
            quick = self.trade_cache.get_quick(agent_id)
            if quick:
                metrics.incr("generator.quick_hit", agent_id=agent_id)
                log.debug("generator.quick_hit", agent_id=agent_id, trades=len(quick))
                return quick

        return await self._flights.do(agent_id, lambda: self._generate_safely(agent))

    def get_agent_research(self, agent_id: str) -> list[ResearchDecision]:
        return self.research_store.get(agent_id)

    async def close(self) -> None:
        """Close the market, news and AI clients the collaborators hold."""
        for resource in (self._markets, self._news, self._engine):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()

    def select_markets(
        self,
        agent: AgentProfile,
        scored: Sequence[ScoredMarket],
        now_ms: float,
    ) -> list[ScoredMarket]:
        """Top maxTrades×5 by score, rotated per time bucket, cut to maxTrades×3."""
        cfg = self.config.decision
        top = sorted(scored, key=lambda s: s.score, reverse=True)[: agent.max_trades * cfg.selection_multiplier]
        seed = rotation_bucket(now_ms, cfg.rotation_bucket_ms) + agent_seed(agent.id)
        return rotate(top, seed)[: agent.max_trades * cfg.attempt_multiplier]

    # ── Pipeline ──────────────────────────────────────────────────────

    async def _generate_safely(self, agent: AgentProfile) -> list[AgentTrade]:
        start = time.monotonic()
        try:
            with agent_context(agent.id):
                return await self._generate(agent)
        except Exception as e:
            metrics.incr("generator.failed", agent_id=agent.id)
            log.error("generator.failed", agent_id=agent.id, error=str(e), exc_info=True)
            return []
        finally:
            metrics.histogram("generator.latency_secs", time.monotonic() - start, agent_id=agent.id)

    async def _fetch_markets(self) -> list[Market]:
        try:
            return list(await self._markets.fetch_all_markets())
        except Exception as e:
            log.warning("generator.market_fetch_failed", error=str(e))
            return []

    async def _fetch_news(self) -> list[NewsArticle]:
        try:
            return list(await self._news.fetch_latest_news())
        except Exception as e:
            log.warning("generator.news_fetch_failed", error=str(e))
            return []

    async def _generate(self, agent: AgentProfile) -> list[AgentTrade]:
        metrics.incr("generator.runs", agent_id=agent.id)
        markets, news = await asyncio.gather(self._fetch_markets(), self._fetch_news())

        candidates, _ = filter_candidate_markets(
            agent, markets, strict_focus=self.config.decision.strict_focus_categories,
        )
        if not candidates:
            log.info("generator.no_candidates", agent_id=agent.id, markets=len(markets))
            self.research_store.put(agent.id, [])
            return []

        market_ids = sorted(m.id for m in candidates)
        cached = self.trade_cache.get(agent.id, market_ids)
        if cached:
            log.debug("generator.cache_hit", agent_id=agent.id, trades=len(cached))
            return cached

        now_s = self._clock()
        now_ms = now_s * 1000
        now = dt.datetime.fromtimestamp(now_s, tz=dt.timezone.utc)

        scored = [self._scorer(m, news, agent, now, self.config.scoring) for m in candidates]
        selected = self.select_markets(agent, scored, now_ms)

        trades, research = await self._decide(agent, selected, news, now_ms)

        self.trade_cache.put(agent.id, trades, market_ids)
        self.research_store.put(agent.id, research)
        log.info(
            "generator.complete",
            agent_id=agent.id,
            candidates=len(candidates),
            attempted=len(selected),
            trades=len(trades),
            research=len(research),
        )
        return trades

    async def _decide(
        self,
        agent: AgentProfile,
        selected: Sequence[ScoredMarket],
        news: Sequence[NewsArticle],
        now_ms: float,
    ) -> tuple[list[AgentTrade], list[ResearchDecision]]:
        cfg = self.config.decision
        research_quota = max(agent.max_trades * cfg.research_multiplier, cfg.min_research_quota)
        trades: list[AgentTrade] = []
        research: list[ResearchDecision] = []
        researched: set[str] = set()

        # Sequential on purpose: one vendor call at a time per agent.
        for index, scored in enumerate(selected):
            trade_quota_full = len(trades) >= agent.max_trades
            research_quota_full = len(research) >= research_quota
            if trade_quota_full and research_quota_full:
                break

            try:
                relevance = compute_news_relevance(
                    scored.market, news, self.config.scoring.keyword_min_length,
                )
                trade = None
                if not trade_quota_full:
                    trade = await self._engine.generate_trade_for_market(
                        agent, scored, relevance, news, index, now_ms,
                    )
                if trade is not None:
                    trades.append(trade)
                    continue

                if not research_quota_full and scored.id not in researched:
                    decision = await self._engine.generate_research_for_market(
                        agent, scored, relevance, news, index, now_ms,
                    )
                    research.append(decision)
                    researched.add(scored.id)
            except Exception as e:
                metrics.incr("generator.market_failed", agent_id=agent.id)
                log.warning(
                    "generator.market_failed",
                    agent_id=agent.id, market_id=scored.id, error=str(e),
                )

        return trades, research


# ── Default wiring ───────────────────────────────────────────────────

# Its httpx and SDK clients bind to the event loop of first use.  Callers that
# run more than one loop must await close_default_generator() before each ends.
_default_generator: AgentTradeGenerator | None = None


def build_generator(config: BotConfig | None = None) -> AgentTradeGenerator:
    """Wire the live collaborators (Gamma, NewsAPI, AI vendors) from config."""
    cfg = config or load_config()
    ai = AIDecisionClient(cfg.ai, cache_ttl_secs=cfg.cache.ai_decision_ttl_secs)
    return AgentTradeGenerator(
        config=cfg,
        market_source=GammaMarketFeed(cfg.markets, ttl_secs=cfg.cache.market_list_ttl_secs),
        news_source=NewsFeed(cfg.news, ttl_secs=cfg.cache.news_ttl_secs),
        decision_engine=DecisionEngine(
            ai_client=ai, decision=cfg.decision, sizing=cfg.sizing, scoring=cfg.scoring,
        ),
    )


def get_default_generator() -> AgentTradeGenerator:
    global _default_generator
    if _default_generator is None:
        _default_generator = build_generator()
    return _default_generator


async def generate_agent_trades(agent_id: str) -> list[AgentTrade]:
    return await get_default_generator().generate_agent_trades(agent_id)


def get_agent_research(agent_id: str) -> list[ResearchDecision]:
    return get_default_generator().get_agent_research(agent_id)


async def close_default_generator() -> None:
    """Close and drop the default generator; the next call rebuilds it."""
    global _default_generator
    generator, _default_generator = _default_generator, None
    if generator is not None:
        await generator.close()
