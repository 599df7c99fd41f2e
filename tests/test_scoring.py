"""Tests for polyagents.engine.scoring: components, weighting, news matching."""

from __future__ import annotations

import datetime as dt

import pytest

from polyagents.agents.domain import AgentProfile, AgentWeights, Market, NewsArticle, RiskLevel
from polyagents.config import ScoringConfig
from polyagents.engine.scoring import (
    compute_news_relevance,
    extract_keywords,
    match_news,
    rank_relevant_news,
    score_components,
    score_market_for_agent,
    score_markets,
)

NOW = dt.datetime(2025, 1, 15, 12, 0, tzinfo=dt.timezone.utc)


# ─── helpers ────────────────────────────────────────────────────────────

def _market(**overrides) -> Market:
    defaults = dict(
        id="m1", question="Will Bitcoin close above $100k this month?",
        category="Crypto", volume_usd=1_000_000.0, liquidity_usd=200_000.0,
        current_probability=0.5, price_change_24h=0.0,
    )
    defaults.update(overrides)
    return Market(**defaults)


def _article(title: str, hours_ago: float | None = 1.0, **overrides) -> NewsArticle:
    published = None if hours_ago is None else NOW - dt.timedelta(hours=hours_ago)
    defaults = dict(id=title, title=title, source="Wire", published_at=published)
    defaults.update(overrides)
    return NewsArticle(**defaults)


def _agent(**overrides) -> AgentProfile:
    defaults = dict(
        id="TEST", display_name="Test", risk=RiskLevel.MEDIUM,
        focus_categories=[], weights=AgentWeights(),
    )
    defaults.update(overrides)
    return AgentProfile(**defaults)


# ─── news relevance ─────────────────────────────────────────────────────

class TestNewsRelevance:
    def test_keywords_longer_than_four_chars(self) -> None:
        kws = extract_keywords("Will the Fed cut rates in March?")
        assert kws == {"rates", "march"}

    def test_match_on_title_or_description(self) -> None:
        market = _market()
        articles = [
            _article("Bitcoin rallies overnight"),
            _article("Markets quiet", description="Analysts expect a close above resistance"),
            _article("Weather report"),
        ]
        matched = match_news(market, articles)
        assert [a.title for a in matched] == ["Bitcoin rallies overnight", "Markets quiet"]

    def test_relevance_counts_and_titles(self) -> None:
        rel = compute_news_relevance(_market(), [_article("BITCOIN surges"), _article("Unrelated")])
        assert rel.count == 1
        assert rel.matched_titles == ["BITCOIN surges"]

    def test_question_without_long_words_matches_nothing(self) -> None:
        rel = compute_news_relevance(_market(question="Yes or no?"), [_article("Yes or no")])
        assert rel.count == 0

    def test_rank_by_hits_then_recency(self) -> None:
        articles = [
            _article("Bitcoin news", hours_ago=1),
            _article("Bitcoin to close above record", hours_ago=30),
            _article("Bitcoin update", hours_ago=0.5),
        ]
        ranked = rank_relevant_news(_market(), articles, limit=2)
        assert [a.title for a in ranked] == ["Bitcoin to close above record", "Bitcoin update"]


# ─── components ─────────────────────────────────────────────────────────

class TestComponents:
    def test_prob_score_peaks_at_half(self) -> None:
        assert score_components(_market(current_probability=0.5), [], NOW).prob_score == pytest.approx(25.0)
        assert score_components(_market(current_probability=0.75), [], NOW).prob_score == pytest.approx(12.5)
        assert score_components(_market(current_probability=1.0), [], NOW).prob_score == pytest.approx(0.0)
        assert score_components(_market(current_probability=0.0), [], NOW).prob_score == pytest.approx(0.0)

    def test_volume_is_log_scaled_and_capped(self) -> None:
        low = score_components(_market(volume_usd=10_000), [], NOW).volume_score
        mid = score_components(_market(volume_usd=1_000_000), [], NOW).volume_score
        ref = score_components(_market(volume_usd=5_000_000), [], NOW).volume_score
        huge = score_components(_market(volume_usd=500_000_000), [], NOW).volume_score
        assert 0 < low < mid < ref
        assert ref == pytest.approx(25.0)
        assert huge == pytest.approx(25.0)

    def test_zero_volume_scores_zero(self) -> None:
        comps = score_components(_market(volume_usd=0, liquidity_usd=0), [], NOW)
        assert comps.volume_score == 0.0
        assert comps.liquidity_score == 0.0

    def test_price_movement_uses_magnitude(self) -> None:
        up = score_components(_market(price_change_24h=0.05), [], NOW).price_movement_score
        down = score_components(_market(price_change_24h=-0.05), [], NOW).price_movement_score
        assert up == down == pytest.approx(5.0)
        big = score_components(_market(price_change_24h=0.9), [], NOW).price_movement_score
        assert big == pytest.approx(25.0)

    def test_news_recency_weighting(self) -> None:
        fresh = score_components(_market(), [_article("Bitcoin", hours_ago=1)], NOW).news_score
        day_old = score_components(_market(), [_article("Bitcoin", hours_ago=20)], NOW).news_score
        stale = score_components(_market(), [_article("Bitcoin", hours_ago=200)], NOW).news_score
        undated = score_components(_market(), [_article("Bitcoin", hours_ago=None)], NOW).news_score
        assert fresh == pytest.approx(5.0)
        assert day_old == pytest.approx(3.5)
        assert stale == pytest.approx(1.0)
        assert undated == pytest.approx(1.0)

    def test_news_score_capped(self) -> None:
        articles = [_article(f"Bitcoin story {i}") for i in range(10)]
        assert score_components(_market(), articles, NOW).news_score == pytest.approx(25.0)

    def test_custom_cap(self) -> None:
        comps = score_components(_market(), [], NOW, ScoringConfig(component_cap=10))
        assert comps.prob_score == pytest.approx(10.0)


# ─── weighted score ─────────────────────────────────────────────────────

class TestWeightedScore:
    def test_score_within_bounds(self) -> None:
        for p in (0.0, 0.3, 0.5, 0.99):
            scored = score_market_for_agent(
                _market(current_probability=p, volume_usd=1e9, liquidity_usd=1e9, price_change_24h=1.0),
                [_article(f"Bitcoin {i}") for i in range(10)],
                _agent(focus_categories=["Crypto"]),
                NOW,
            )
            assert 0.0 <= scored.score <= 100.0

    def test_all_components_maxed_is_100(self) -> None:
        scored = score_market_for_agent(
            _market(volume_usd=1e9, liquidity_usd=1e9, price_change_24h=0.5),
            [_article(f"Bitcoin {i}") for i in range(10)],
            _agent(),
            NOW,
        )
        assert scored.score == pytest.approx(100.0)

    def test_equal_weights_average_components(self) -> None:
        scored = score_market_for_agent(_market(), [], _agent(), NOW)
        c = scored.components
        expected = 100 * (c.volume_score + c.liquidity_score + c.price_movement_score
                          + c.news_score + c.prob_score) / 125
        assert scored.score == pytest.approx(expected)

    def test_weights_shift_score(self) -> None:
        market = _market(current_probability=0.5, volume_usd=1_000)
        prob_heavy = score_market_for_agent(market, [], _agent(weights=AgentWeights(prob=5.0)), NOW)
        volume_heavy = score_market_for_agent(market, [], _agent(weights=AgentWeights(volume=5.0)), NOW)
        assert prob_heavy.score > volume_heavy.score

    def test_focus_category_boost(self) -> None:
        market = _market()
        plain = score_market_for_agent(market, [], _agent(), NOW)
        focused = score_market_for_agent(market, [], _agent(focus_categories=["Crypto"]), NOW)
        assert focused.score == pytest.approx(plain.score * 1.1)

    def test_zero_weights_score_zero(self) -> None:
        weights = AgentWeights(volume=0, liquidity=0, price_movement=0, news=0, prob=0)
        scored = score_market_for_agent(_market(), [], _agent(weights=weights), NOW)
        assert scored.score == 0.0

    def test_score_markets_sorted_best_first(self) -> None:
        markets = [
            _market(id="low", current_probability=0.99, volume_usd=1_000),
            _market(id="high"),
        ]
        ranked = score_markets(markets, [], _agent(), NOW)
        assert [s.id for s in ranked] == ["high", "low"]
