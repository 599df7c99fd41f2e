"""Tests for the market and news collaborators."""

from __future__ import annotations

import datetime as dt
from unittest.mock import AsyncMock, MagicMock

import pytest

from polyagents.agents.domain import NewsArticle
from polyagents.config import MarketsConfig
from polyagents.connectors.news_feed import NewsFeed, dedupe_articles, parse_article
from polyagents.connectors.polymarket_gamma import (
    GammaMarketFeed,
    classify_category,
    parse_market,
)
from polyagents.observability.metrics import metrics


class FakeClock:
    def __init__(self, now: float = 1_736_942_400.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _raw_market(**overrides) -> dict:
    raw = {
        "id": "12345",
        "question": "Will Bitcoin reach $150k by June?",
        "category": "Crypto",
        "volumeNum": 1_250_000.5,
        "liquidityNum": 80_000,
        "outcomes": '["Yes", "No"]',
        "outcomePrices": '["0.62", "0.38"]',
        "oneDayPriceChange": -0.04,
    }
    raw.update(overrides)
    return raw


# ═════════════════════════════════════════════════════════════════════
#  Gamma parsing
# ═════════════════════════════════════════════════════════════════════

class TestParseMarket:
    def test_basic_fields(self) -> None:
        m = parse_market(_raw_market())
        assert m.id == "12345"
        assert m.category == "Crypto"
        assert m.volume_usd == pytest.approx(1_250_000.5)
        assert m.liquidity_usd == pytest.approx(80_000)
        assert m.current_probability == pytest.approx(0.62)
        assert m.price_change_24h == pytest.approx(-0.04)

    def test_yes_price_located_by_outcome_name(self) -> None:
        m = parse_market(_raw_market(outcomes=["No", "Yes"], outcomePrices=["0.3", "0.7"]))
        assert m.current_probability == pytest.approx(0.7)

    def test_missing_prices_default_to_even(self) -> None:
        m = parse_market(_raw_market(outcomePrices="not json"))
        assert m.current_probability == 0.5

    def test_string_volume_fallback(self) -> None:
        raw = _raw_market(volume="5000.5", liquidity="oops")
        del raw["volumeNum"], raw["liquidityNum"]
        m = parse_market(raw)
        assert m.volume_usd == pytest.approx(5000.5)
        assert m.liquidity_usd == 0.0

    def test_non_finite_numbers_become_default(self) -> None:
        raw = _raw_market(volume="NaN", liquidity="inf", oneDayPriceChange="-inf")
        del raw["volumeNum"], raw["liquidityNum"]
        m = parse_market(raw)
        assert m.volume_usd == 0.0
        assert m.liquidity_usd == 0.0
        assert m.price_change_24h == 0.0

    def test_category_from_tags(self) -> None:
        m = parse_market(_raw_market(category=None, tags=[{"label": "Politics"}]))
        assert m.category == "Politics"

    def test_category_from_question_keywords(self) -> None:
        m = parse_market(_raw_market(category="", question="Will the Lakers win the NBA championship?"))
        assert m.category == "Sports"

    def test_condition_id_fallback(self) -> None:
        raw = _raw_market(conditionId="0xabc")
        del raw["id"]
        assert parse_market(raw).id == "0xabc"

    def test_classify_unknown_is_other(self) -> None:
        assert classify_category("Will it snow in Lisbon?") == "Other"


# ═════════════════════════════════════════════════════════════════════
#  Gamma feed
# ═════════════════════════════════════════════════════════════════════

def _gamma_client(rows=None, error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    client.list_markets = AsyncMock(return_value=rows or [], side_effect=error)
    client.close = AsyncMock()
    return client


class TestGammaMarketFeed:
    @pytest.mark.asyncio
    async def test_fetch_parses_and_dedupes(self) -> None:
        rows = [_raw_market(), _raw_market(), _raw_market(id="2")]
        feed = GammaMarketFeed(client=_gamma_client(rows), clock=FakeClock())
        markets = await feed.fetch_all_markets()
        assert [m.id for m in markets] == ["12345", "2"]

    @pytest.mark.asyncio
    async def test_pages_until_short_page(self) -> None:
        client = _gamma_client()
        client.list_markets.side_effect = [
            [_raw_market(id="a"), _raw_market(id="b")],
            [_raw_market(id="c")],
        ]
        feed = GammaMarketFeed(MarketsConfig(page_limit=2, max_pages=5), client=client, clock=FakeClock())
        markets = await feed.fetch_all_markets()
        assert [m.id for m in markets] == ["a", "b", "c"]
        assert client.list_markets.await_count == 2

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self) -> None:
        clock = FakeClock()
        client = _gamma_client([_raw_market()])
        feed = GammaMarketFeed(ttl_secs=60, client=client, clock=clock)
        await feed.fetch_all_markets()
        clock.now += 30
        await feed.fetch_all_markets()
        assert client.list_markets.await_count == 1
        clock.now += 31
        await feed.fetch_all_markets()
        assert client.list_markets.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_serves_stale_copy(self) -> None:
        clock = FakeClock()
        client = _gamma_client([_raw_market()])
        feed = GammaMarketFeed(ttl_secs=60, client=client, clock=clock)
        first = await feed.fetch_all_markets()

        clock.now += 120
        client.list_markets.side_effect = RuntimeError("502 from gamma")
        assert await feed.fetch_all_markets() == first
        assert metrics.counter("gamma.fetch_failed") == 1

    @pytest.mark.asyncio
    async def test_failure_without_copy_is_empty(self) -> None:
        feed = GammaMarketFeed(client=_gamma_client(error=RuntimeError("down")), clock=FakeClock())
        assert await feed.fetch_all_markets() == []

    @pytest.mark.asyncio
    async def test_close_closes_client(self) -> None:
        client = _gamma_client()
        await GammaMarketFeed(client=client).close()
        client.close.assert_awaited_once()


# ═════════════════════════════════════════════════════════════════════
#  News
# ═════════════════════════════════════════════════════════════════════

class TestNewsParsing:
    def test_parse_article(self) -> None:
        a = parse_article({
            "title": "  Fed holds rates steady ",
            "description": "Policy unchanged",
            "source": {"id": None, "name": "Reuters"},
            "publishedAt": "2025-01-15T10:00:00Z",
            "url": "https://example.com/fed",
        })
        assert a.title == "Fed holds rates steady"
        assert a.source == "Reuters"
        assert a.published_at == dt.datetime(2025, 1, 15, 10, tzinfo=dt.timezone.utc)
        assert len(a.id) == 16

    def test_bad_date_is_none(self) -> None:
        assert parse_article({"title": "x", "publishedAt": "yesterday"}).published_at is None

    def test_dedupe_by_url_and_title(self) -> None:
        articles = [
            NewsArticle(id="1", title="Fed holds rates", url="https://a/1"),
            NewsArticle(id="2", title="Different headline", url="https://a/1"),
            NewsArticle(id="3", title="FED holds rates!", url="https://b/2"),
            NewsArticle(id="4", title="   "),
            NewsArticle(id="5", title="Bitcoin jumps"),
        ]
        assert [a.id for a in dedupe_articles(articles)] == ["1", "5"]


class TestNewsFeed:
    @pytest.mark.asyncio
    async def test_without_key_is_empty(self) -> None:
        feed = NewsFeed(env={}, clock=FakeClock())
        assert await feed.fetch_latest_news() == []

    @pytest.mark.asyncio
    async def test_fetch_dedupes_and_caches(self) -> None:
        client = MagicMock()
        client.search = AsyncMock(return_value=[
            NewsArticle(id="1", title="Fed holds rates"),
            NewsArticle(id="2", title="Fed holds rates"),
        ])
        feed = NewsFeed(client=client, env={}, clock=FakeClock())
        first = await feed.fetch_latest_news()
        second = await feed.fetch_latest_news()
        assert [a.id for a in first] == ["1"]
        assert second == first
        assert client.search.await_count == 1

    @pytest.mark.asyncio
    async def test_failure_serves_stale(self) -> None:
        clock = FakeClock()
        client = MagicMock()
        client.search = AsyncMock(return_value=[NewsArticle(id="1", title="Fed holds rates")])
        feed = NewsFeed(ttl_secs=300, client=client, env={}, clock=clock)
        first = await feed.fetch_latest_news()

        clock.now += 600
        client.search.side_effect = RuntimeError("429")
        assert await feed.fetch_latest_news() == first
        assert metrics.counter("news.fetch_failed") == 1

    @pytest.mark.asyncio
    async def test_failure_without_copy_is_empty(self) -> None:
        client = MagicMock()
        client.search = AsyncMock(side_effect=RuntimeError("down"))
        feed = NewsFeed(client=client, env={}, clock=FakeClock())
        assert await feed.fetch_latest_news() == []
