"""Scoring engine: ranks candidate markets 0–100 for one agent.

Five components, each bounded to ``[0, component_cap]``:
  - volume_score          log-scaled volume (diminishing returns)
  - liquidity_score       log-scaled liquidity
  - price_movement_score  magnitude of the 24h probability move
  - news_score            recency-weighted count of matching articles
  - prob_score            peaks at 50% probability, zero at 0% / 100%

The weighted sum is normalised by the maximum achievable weighted sum so
the total always lands in 0–100, then boosted for the agent's focus
categories and clamped.

News relevance is a keyword-overlap heuristic, not semantic matching:
any question word longer than four characters that appears in an
article's title or description counts as a match.  Stop-word-like long
words ("about", "which") can produce false positives, and synonyms are
never matched.
"""

from __future__ import annotations

import datetime as dt
import math
import re
from typing import Sequence

from polyagents.agents.domain import (
    AgentProfile,
    Market,
    NewsArticle,
    NewsRelevance,
    ScoreComponents,
    ScoredMarket,
)
from polyagents.config import ScoringConfig

_WORD_RE = re.compile(r"[a-z0-9$%']+")


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def extract_keywords(question: str, min_length: int = 5) -> set[str]:
    """Lower-cased question words of at least ``min_length`` characters."""
    return {w for w in _WORD_RE.findall(question.lower()) if len(w) >= min_length}


def match_news(
    market: Market,
    articles: Sequence[NewsArticle],
    min_length: int = 5,
) -> list[NewsArticle]:
    """Articles whose title+description contains any question keyword."""
    keywords = extract_keywords(market.question, min_length)
    if not keywords:
        return []
    matched = []
    for article in articles:
        text = f"{article.title} {article.description or ''}".lower()
        if any(kw in text for kw in keywords):
            matched.append(article)
    return matched


def compute_news_relevance(
    market: Market,
    articles: Sequence[NewsArticle],
    min_length: int = 5,
) -> NewsRelevance:
    matched = match_news(market, articles, min_length)
    return NewsRelevance(count=len(matched), matched_titles=[a.title for a in matched])


def rank_relevant_news(
    market: Market,
    articles: Sequence[NewsArticle],
    limit: int = 5,
    min_length: int = 5,
) -> list[NewsArticle]:
    """Matching articles, most keyword hits first, newest first on ties."""
    keywords = extract_keywords(market.question, min_length)
    epoch = dt.datetime.min.replace(tzinfo=dt.timezone.utc)

    def _rank(article: NewsArticle) -> tuple[int, dt.datetime]:
        text = f"{article.title} {article.description or ''}".lower()
        published = article.published_at or epoch
        if published.tzinfo is None:
            published = published.replace(tzinfo=dt.timezone.utc)
        return sum(1 for kw in keywords if kw in text), published

    matched = match_news(market, articles, min_length)
    return sorted(matched, key=_rank, reverse=True)[:limit]


def _log_scaled(value: float, reference: float, cap: float) -> float:
    if value <= 0:
        return 0.0
    return cap * min(1.0, math.log10(1.0 + value) / math.log10(1.0 + reference))


def _recency_weight(article: NewsArticle, now: dt.datetime, config: ScoringConfig) -> float:
    age = article.age_hours(now)
    if age is None:
        return config.news_stale_weight
    for max_age, weight in config.news_recency_buckets:
        if age <= max_age:
            return weight
    return config.news_stale_weight


def score_components(
    market: Market,
    articles: Sequence[NewsArticle],
    now: dt.datetime,
    config: ScoringConfig | None = None,
) -> ScoreComponents:
    cfg = config or ScoringConfig()
    cap = cfg.component_cap

    matched = match_news(market, articles, cfg.keyword_min_length)
    recency = sum(_recency_weight(a, now, cfg) for a in matched)

    return ScoreComponents(
        volume_score=_log_scaled(market.volume_usd, cfg.volume_reference_usd, cap),
        liquidity_score=_log_scaled(market.liquidity_usd, cfg.liquidity_reference_usd, cap),
        price_movement_score=_clamp(abs(market.price_change_24h) * cfg.price_movement_scale, 0.0, cap),
        news_score=_clamp(recency * cfg.news_points_per_article, 0.0, cap),
        prob_score=_clamp(cap * (1.0 - abs(market.current_probability - 0.5) * 2.0), 0.0, cap),
    )


def score_market_for_agent(
    market: Market,
    articles: Sequence[NewsArticle],
    agent: AgentProfile,
    now: dt.datetime,
    config: ScoringConfig | None = None,
) -> ScoredMarket:
    """Compute the agent-weighted 0–100 score for one market."""
    cfg = config or ScoringConfig()
    comps = score_components(market, articles, now, cfg)
    w = agent.weights

    weighted = (
        comps.volume_score * w.volume
        + comps.liquidity_score * w.liquidity
        + comps.price_movement_score * w.price_movement
        + comps.news_score * w.news
        + comps.prob_score * w.prob
    )
    max_weighted = cfg.component_cap * w.total
    total = 100.0 * weighted / max_weighted if max_weighted > 0 else 0.0

    if market.category in agent.focus_categories:
        total *= cfg.focus_category_boost

    return ScoredMarket(market=market, score=_clamp(total, 0.0, 100.0), components=comps)


def score_markets(
    markets: Sequence[Market],
    articles: Sequence[NewsArticle],
    agent: AgentProfile,
    now: dt.datetime,
    config: ScoringConfig | None = None,
) -> list[ScoredMarket]:
    """Score every market and return them best-first."""
    scored = [score_market_for_agent(m, articles, agent, now, config) for m in markets]
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored
