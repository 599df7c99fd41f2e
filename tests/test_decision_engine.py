"""Tests for polyagents.forecast.decision_engine: AI path, fallback, research."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from polyagents.agents.domain import (
    AgentProfile,
    Market,
    NewsRelevance,
    ResearchVerdict,
    RiskLevel,
    ScoreComponents,
    ScoredMarket,
    TradeSide,
    TradeStatus,
)
from polyagents.agents.profiles import default_agent_profiles
from polyagents.config import DecisionConfig
from polyagents.connectors.ai_clients import AITradeDecision, parse_ai_response
from polyagents.connectors.ai_errors import (
    AIAccessDeniedError,
    AINetworkError,
    AIParseError,
)
from polyagents.forecast.decision_engine import (
    DecisionEngine,
    deterministic_confidence,
    deterministic_reasoning,
    deterministic_side,
    summary_decision,
)
from polyagents.forecast.determinism import seeded_float
from polyagents.observability.metrics import metrics
from polyagents.policy.position_sizer import calculate_investment

NOW_MS = 1_736_942_400_000  # 2025-01-15T12:00:00Z
PROFILES = default_agent_profiles()


# ─── helpers ────────────────────────────────────────────────────────────

def _scored(score: float = 60.0, **market_overrides) -> ScoredMarket:
    comps = market_overrides.pop("components", ScoreComponents(
        volume_score=22.0, liquidity_score=18.0, price_movement_score=3.0,
        news_score=5.0, prob_score=25.0,
    ))
    defaults = dict(
        id="m1", question="Will the Fed cut rates in March?", category="Finance",
        volume_usd=900_000.0, liquidity_usd=120_000.0, current_probability=0.5,
        price_change_24h=0.03,
    )
    defaults.update(market_overrides)
    return ScoredMarket(market=Market(**defaults), score=score, components=comps)


def _ai(decision: AITradeDecision | None = None, error: Exception | None = None,
        configured: bool = True) -> MagicMock:
    client = MagicMock()
    client.is_configured.return_value = configured
    client.decide = AsyncMock(
        return_value=decision or AITradeDecision(TradeSide.YES, 0.8, ["AI says yes"]),
        side_effect=error,
    )
    return client


REL = NewsRelevance(count=0, matched_titles=[])


# ─── deterministic fallback ─────────────────────────────────────────────

class TestDeterministicFallback:
    def test_side_is_pure(self) -> None:
        s = _scored()
        assert deterministic_side(s, "GPT_5:m1:0") == deterministic_side(s, "GPT_5:m1:0")

    def test_side_bias_follows_probability(self) -> None:
        yes_when_high = sum(
            deterministic_side(_scored(current_probability=0.7), f"seed{i}") == TradeSide.YES
            for i in range(1000)
        )
        yes_when_low = sum(
            deterministic_side(_scored(current_probability=0.3), f"seed{i}") == TradeSide.YES
            for i in range(1000)
        )
        assert 540 < yes_when_high < 660
        assert 340 < yes_when_low < 460

    def test_side_threshold(self) -> None:
        seed = "fixed-seed"
        expected = TradeSide.YES if seeded_float(seed) < 0.6 else TradeSide.NO
        assert deterministic_side(_scored(current_probability=0.8), seed) == expected

    def test_confidence_is_pure_and_bounded(self) -> None:
        for score in (0, 5, 30, 60, 100):
            for risk in RiskLevel:
                c1 = deterministic_confidence(_scored(score), risk, "s")
                c2 = deterministic_confidence(_scored(score), risk, "s")
                assert c1 == c2
                assert 0.4 <= c1 <= 0.95

    def test_confidence_formula(self) -> None:
        seed = "GPT_5:m1:2"
        jitter = (seeded_float(seed + "jitter") - 0.5) * 0.1
        expected = max(0.4, min(0.95, 0.6 * 1.0 + jitter))
        assert deterministic_confidence(_scored(60), RiskLevel.MEDIUM, seed) == pytest.approx(expected)

    def test_high_risk_more_confident_than_low(self) -> None:
        hi = deterministic_confidence(_scored(60), RiskLevel.HIGH, "s")
        lo = deterministic_confidence(_scored(60), RiskLevel.LOW, "s")
        assert hi > lo

    def test_reasoning_never_empty_and_capped(self) -> None:
        agent = PROFILES["CLAUDE_4_5"]
        rich = _scored(
            components=ScoreComponents(24, 24, 20, 20, 25),
            current_probability=0.6, price_change_24h=0.2,
        )
        reasons = deterministic_reasoning(rich, NewsRelevance(3, ["a", "b", "c"]), agent)
        assert 1 <= len(reasons) <= 4
        assert "60.0% probability" in reasons[0]

        bare = _scored(components=ScoreComponents(), current_probability=0.5, category="Other")
        assert deterministic_reasoning(bare, REL, agent)

    def test_reasoning_mentions_focus_category(self) -> None:
        agent = PROFILES["CLAUDE_4_5"]
        reasons = deterministic_reasoning(_scored(category="Finance"), REL, agent)
        assert any("aligns with CLAUDE 4.5's expertise" in r for r in reasons)

    def test_summary_decision_format(self) -> None:
        agent = PROFILES["GPT_5"]
        text = summary_decision(agent, _scored(60), TradeSide.NO, 0.71, ["Strong liquidity"])
        assert text.startswith('GPT-5 is fading "Will the Fed cut rates in March?" at 50% with 71% confidence')
        assert "because strong liquidity." in text
        assert "Score 60 with $900.0k volume and $120.0k liquidity." in text

    def test_summary_decision_trims_long_question(self) -> None:
        agent = PROFILES["GPT_5"]
        text = summary_decision(agent, _scored(question="x" * 200), TradeSide.YES, 0.5, [])
        assert "x" * 107 + "..." in text
        assert "backing" in text


# ─── trade generation ───────────────────────────────────────────────────

class TestGenerateTrade:
    @pytest.mark.asyncio
    async def test_below_threshold_is_skipped(self) -> None:
        ai = _ai()
        engine = DecisionEngine(ai_client=ai)
        trade = await engine.generate_trade_for_market(
            PROFILES["GPT_5"], _scored(score=5), REL, [], 0, NOW_MS,
        )
        assert trade is None
        ai.decide.assert_not_called()

    @pytest.mark.asyncio
    async def test_fallback_trade_without_ai(self) -> None:
        engine = DecisionEngine()
        agent = PROFILES["GPT_5"]
        trade = await engine.generate_trade_for_market(agent, _scored(), REL, [], 2, NOW_MS)
        assert trade is not None
        assert trade.id == "GPT_5:m1"
        assert trade.seed == "GPT_5:m1:2"
        assert trade.decided_by == "fallback"
        assert trade.status == TradeStatus.OPEN
        assert trade.pnl is None
        assert trade.opened_at == "2025-01-15T11:59:58+00:00"
        assert trade.reasoning
        assert trade.summary_decision.startswith("GPT-5 is ")

    @pytest.mark.asyncio
    async def test_fallback_is_deterministic(self) -> None:
        engine = DecisionEngine()
        agent = PROFILES["DEEPSEEK_V3"]
        t1 = await engine.generate_trade_for_market(agent, _scored(), REL, [], 1, NOW_MS)
        t2 = await engine.generate_trade_for_market(agent, _scored(), REL, [], 1, NOW_MS)
        assert t1 == t2

    @pytest.mark.asyncio
    async def test_ai_decision_adopted_with_risk_adjustment(self) -> None:
        ai = _ai(AITradeDecision(TradeSide.NO, 0.8, ["Rates sticky"]))
        engine = DecisionEngine(ai_client=ai)
        trade = await engine.generate_trade_for_market(
            PROFILES["CLAUDE_4_5"], _scored(), REL, [], 0, NOW_MS,
        )
        assert trade.decided_by == "ai"
        assert trade.side == TradeSide.NO
        assert trade.confidence == pytest.approx(0.72)  # LOW: ×0.9
        assert trade.reasoning == ["Rates sticky"]

    @pytest.mark.asyncio
    async def test_high_risk_ai_confidence_capped(self) -> None:
        ai = _ai(AITradeDecision(TradeSide.YES, 0.93, ["go"]))
        engine = DecisionEngine(ai_client=ai)
        trade = await engine.generate_trade_for_market(
            PROFILES["GROK_4"], _scored(category="World"), REL, [], 0, NOW_MS,
        )
        assert trade.confidence == pytest.approx(0.95)

    @pytest.mark.asyncio
    async def test_low_risk_ai_confidence_floored(self) -> None:
        ai = _ai(AITradeDecision(TradeSide.YES, 0.2, ["meh"]))
        engine = DecisionEngine(ai_client=ai)
        trade = await engine.generate_trade_for_market(
            PROFILES["CLAUDE_4_5"], _scored(category="World"), REL, [], 0, NOW_MS,
        )
        assert trade.confidence == pytest.approx(0.4)

    @pytest.mark.asyncio
    async def test_unconfigured_ai_is_not_called(self) -> None:
        ai = _ai(configured=False)
        engine = DecisionEngine(ai_client=ai)
        trade = await engine.generate_trade_for_market(PROFILES["GPT_5"], _scored(), REL, [], 0, NOW_MS)
        assert trade.decided_by == "fallback"
        ai.decide.assert_not_called()

    @pytest.mark.parametrize("error, kind", [
        (AINetworkError("timeout"), "network"),
        (AIParseError("bad json"), "parse"),
        (AIAccessDeniedError("unpurchased"), "access_denied"),
        (RuntimeError("weird"), "unknown"),
    ])
    @pytest.mark.asyncio
    async def test_ai_failures_fall_back(self, error: Exception, kind: str) -> None:
        engine = DecisionEngine(ai_client=_ai(error=error))
        fallback = await DecisionEngine().generate_trade_for_market(
            PROFILES["GPT_5"], _scored(), REL, [], 0, NOW_MS,
        )
        trade = await engine.generate_trade_for_market(PROFILES["GPT_5"], _scored(), REL, [], 0, NOW_MS)
        assert trade.decided_by == "fallback"
        assert trade.side == fallback.side
        assert trade.confidence == fallback.confidence
        assert metrics.counter(f"ai.failure.{kind}") == 1

    @pytest.mark.asyncio
    async def test_refusal_text_is_never_accepted(self) -> None:
        async def decide(agent_id, market, news):
            return parse_ai_response("I cannot provide a trading recommendation.")

        ai = _ai()
        ai.decide = AsyncMock(side_effect=decide)
        engine = DecisionEngine(ai_client=ai)
        trade = await engine.generate_trade_for_market(PROFILES["GPT_5"], _scored(), REL, [], 0, NOW_MS)
        assert trade.decided_by == "fallback"
        assert metrics.counter("ai.failure.refusal") == 1

    @pytest.mark.asyncio
    async def test_ai_receives_relevant_news_only(self) -> None:
        from polyagents.agents.domain import NewsArticle

        news = [NewsArticle(id=str(i), title=f"Rates outlook {i}") for i in range(7)]
        news.append(NewsArticle(id="x", title="Football scores"))
        ai = _ai()
        engine = DecisionEngine(ai_client=ai)
        await engine.generate_trade_for_market(PROFILES["GPT_5"], _scored(), REL, news, 0, NOW_MS)
        sent = ai.decide.call_args.args[2]
        assert len(sent) == 5
        assert all("Rates" in a.title for a in sent)

    @pytest.mark.asyncio
    async def test_investment_bounds(self) -> None:
        engine = DecisionEngine()
        for agent in PROFILES.values():
            for score in (10, 40, 100):
                for i in range(5):
                    trade = await engine.generate_trade_for_market(
                        agent, _scored(score, id=f"m{i}"), REL, [], i, NOW_MS,
                    )
                    assert 0.0 <= trade.confidence <= 1.0
                    assert 130 <= trade.investment_usd <= 600
                    assert trade.investment_usd % 5 == 0

    @pytest.mark.asyncio
    async def test_custom_threshold(self) -> None:
        engine = DecisionEngine(decision=DecisionConfig(trade_score_threshold=70))
        assert await engine.generate_trade_for_market(
            PROFILES["GPT_5"], _scored(60), REL, [], 0, NOW_MS,
        ) is None


# ─── scenario A: momentum personality ───────────────────────────────────

@pytest.mark.asyncio
async def test_grok_momentum_rule_boosts_confidence_and_size():
    agent: AgentProfile = PROFILES["GROK_4"]
    scored = _scored(
        score=55,
        category="Crypto",
        question="Will Bitcoin close above $100k?",
        current_probability=0.50,
        components=ScoreComponents(20, 18, 12.0, 5, 25),
    )
    engine = DecisionEngine()
    base = await engine.infer(agent, scored, REL, [], 0)
    trade = await engine.generate_trade_for_market(agent, scored, REL, [], 0, NOW_MS)

    assert trade.confidence == pytest.approx(min(base.confidence + 0.05, 0.95))
    expected = calculate_investment(trade.confidence, 55, RiskLevel.HIGH, personality_size_usd=115.0)
    assert trade.investment_usd == expected.investment_usd
    assert any("momentum" in n.lower() for n in trade.personality_notes)


# ─── research ───────────────────────────────────────────────────────────

class TestResearch:
    @pytest.mark.asyncio
    async def test_low_score_research_is_neutral(self) -> None:
        engine = DecisionEngine()
        decision = await engine.generate_research_for_market(
            PROFILES["GPT_5"], _scored(score=5), REL, [], 3, NOW_MS,
        )
        assert decision.decision == ResearchVerdict.NEUTRAL
        assert decision.market_id == "m1"
        assert decision.reasoning
        assert "researched" in decision.summary

    @pytest.mark.asyncio
    async def test_confident_research_takes_side(self) -> None:
        ai = _ai(AITradeDecision(TradeSide.YES, 0.8, ["clear trend"]))
        engine = DecisionEngine(ai_client=ai)
        decision = await engine.generate_research_for_market(
            PROFILES["GPT_5"], _scored(score=5), REL, [], 0, NOW_MS,
        )
        assert decision.decision == ResearchVerdict.YES
        assert decision.decided_by == "ai"
        assert decision.to_dict()["decision"] == "YES"
