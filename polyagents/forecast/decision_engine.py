"""Decision engine: turns a scored market into a trade or a research note.

Per candidate:
  CANDIDATE → AI_DECIDED | FALLBACK_DECIDED → TRADE | RESEARCH | SKIPPED

  1. score below the trade threshold  → SKIPPED (research only)
  2. AI configured for the agent      → ask the vendor, risk-adjust confidence
  3. any AI failure / not configured  → deterministic hash-seeded fallback
  4. personality rules                → may override side / confidence / size
  5. position sizer                   → bounded USD investment

Failures never leave this module: every AI failure is classified, logged
at the level its kind deserves, and replaced by the fallback decision.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Sequence

from polyagents.agents.domain import (
    AgentProfile,
    AgentTrade,
    NewsArticle,
    NewsRelevance,
    ResearchDecision,
    ResearchVerdict,
    RiskLevel,
    ScoredMarket,
    TradeSide,
    TradeStatus,
)
from polyagents.config import DecisionConfig, ScoringConfig, SizingConfig
from polyagents.connectors.ai_clients import AIClient
from polyagents.connectors.ai_errors import AIFailureKind, classify_ai_failure
from polyagents.engine.scoring import rank_relevant_news
from polyagents.forecast.determinism import deterministic_seed, seeded_float
from polyagents.observability.logger import get_logger
from polyagents.observability.metrics import metrics
from polyagents.policy.personality import (
    PersonalityContext,
    apply_personality_rules,
    get_personality_rules,
)
from polyagents.policy.position_sizer import calculate_investment

log = get_logger(__name__)


@dataclass(frozen=True)
class Inference:
    """Side / confidence / reasoning for one market, before personality."""
    side: TradeSide
    confidence: float
    reasoning: list[str]
    seed: str
    decided_by: str  # "ai" | "fallback"


# ── Deterministic fallback ───────────────────────────────────────────

def deterministic_side(scored: ScoredMarket, seed: str, bias: float = 0.6) -> TradeSide:
    """Lean toward the side the market already favours, ``bias`` of the time."""
    yes_threshold = bias if scored.current_probability > 0.5 else 1.0 - bias
    return TradeSide.YES if seeded_float(seed) < yes_threshold else TradeSide.NO


def deterministic_confidence(
    scored: ScoredMarket,
    risk: RiskLevel,
    seed: str,
    config: DecisionConfig | None = None,
) -> float:
    cfg = config or DecisionConfig()
    if risk == RiskLevel.HIGH:
        risk_mult = cfg.fallback_high_risk_multiplier
    elif risk == RiskLevel.LOW:
        risk_mult = cfg.low_risk_multiplier
    else:
        risk_mult = 1.0
    jitter = (seeded_float(seed + "jitter") - 0.5) * 2 * cfg.fallback_jitter
    raw = scored.score / 100 * risk_mult + jitter
    return max(cfg.min_confidence, min(cfg.max_confidence, raw))


def deterministic_reasoning(
    scored: ScoredMarket,
    relevance: NewsRelevance,
    agent: AgentProfile,
    max_reasons: int = 4,
) -> list[str]:
    """Template reasons tied to concrete market figures.  Never empty."""
    m = scored.market
    c = scored.components
    p = m.current_probability
    prob_pct = f"{p * 100:.1f}"
    volume_k = f"{m.volume_usd / 1000:.1f}"
    reasons: list[str] = []

    if 0.55 < p < 0.65:
        reasons.append(
            f"{prob_pct}% probability suggests slight YES lean, but market may be "
            "undervaluing the outcome - potential value play"
        )
    elif 0.35 < p < 0.45:
        reasons.append(
            f"{prob_pct}% probability indicates NO is favored, but if outcome occurs, "
            "payoff would be significant"
        )
    elif 0.45 <= p <= 0.55:
        reasons.append(
            f"Probability at {prob_pct}% is near 50/50 - balanced risk/reward with "
            "potential for either outcome"
        )
    else:
        favoured = "favors YES - market expects outcome" if p > 0.5 else "favors NO - market expects no outcome"
        reasons.append(f"Current {prob_pct}% probability {favoured}")

    if c.volume_score > 20:
        interest = "high" if m.volume_usd > 50_000 else "moderate"
        reasons.append(
            f"${volume_k}k trading volume shows active market participation - "
            f"{interest} interest from traders"
        )
    if c.liquidity_score > 15:
        size = "large" if m.liquidity_usd > 20_000 else "moderate"
        reasons.append(
            f"${m.liquidity_usd / 1000:.1f}k liquidity allows for {size} position sizes "
            "with minimal slippage"
        )
    if c.price_movement_score > 10:
        if m.price_change_24h > 0:
            direction, gaining = "upward", "YES"
        else:
            direction, gaining = "downward", "NO"
        reasons.append(
            f"{m.price_change_24h * 100:+.1f}% price movement in last 24h shows {direction} "
            f"momentum - {gaining} gaining traction"
        )
    if c.news_score > 15 and relevance.count > 0:
        plural = "s" if relevance.count > 1 else ""
        reasons.append(
            f'{relevance.count} recent news article{plural} directly relate to '
            f'"{m.question[:40]}..." - indicates active information flow'
        )
    if m.category != "Other" and m.category in agent.focus_categories:
        reasons.append(
            f"This {m.category} market aligns with {agent.display_name}'s expertise - "
            "agent has specialized knowledge in this category"
        )

    if not reasons:
        reasons.append(
            f'Market "{m.question[:50]}..." meets trading criteria with {prob_pct}% '
            f"probability and ${volume_k}k volume"
        )
    return reasons[:max_reasons]


def summary_decision(
    agent: AgentProfile,
    scored: ScoredMarket,
    side: TradeSide,
    confidence: float,
    reasoning: Sequence[str],
) -> str:
    m = scored.market
    question = m.question if len(m.question) <= 110 else f"{m.question[:107]}..."
    verb = "backing" if side == TradeSide.YES else "fading"
    lead = reasoning[0] if reasoning else "this setup meets every trading filter"
    lead = lead[:1].lower() + lead[1:]
    return (
        f'{agent.display_name} is {verb} "{question}" at {round(m.current_probability * 100)}% '
        f"with {round(confidence * 100)}% confidence because {lead}. "
        f"Score {round(scored.score)} with ${m.volume_usd / 1000:.1f}k volume and "
        f"${m.liquidity_usd / 1000:.1f}k liquidity."
    )


def _iso(ms: float) -> str:
    return dt.datetime.fromtimestamp(ms / 1000, tz=dt.timezone.utc).isoformat()


# ── Engine ───────────────────────────────────────────────────────────

class DecisionEngine:
    """Produces ``AgentTrade`` / ``ResearchDecision`` values for scored markets."""

    def __init__(
        self,
        ai_client: AIClient | None = None,
        decision: DecisionConfig | None = None,
        sizing: SizingConfig | None = None,
        scoring: ScoringConfig | None = None,
    ):
        self._ai = ai_client
        self._cfg = decision or DecisionConfig()
        self._sizing = sizing or SizingConfig()
        self._scoring = scoring or ScoringConfig()

    async def close(self) -> None:
        close = getattr(self._ai, "close", None)
        if close is not None:
            await close()

    def is_tradeable(self, scored: ScoredMarket) -> bool:
        return scored.score >= self._cfg.trade_score_threshold

    def _fallback(
        self,
        agent: AgentProfile,
        scored: ScoredMarket,
        relevance: NewsRelevance,
        seed: str,
    ) -> Inference:
        return Inference(
            side=deterministic_side(scored, seed, self._cfg.fallback_side_bias),
            confidence=deterministic_confidence(scored, agent.risk, seed, self._cfg),
            reasoning=deterministic_reasoning(scored, relevance, agent, self._cfg.max_reasons),
            seed=seed,
            decided_by="fallback",
        )

    def _risk_adjust(self, confidence: float, risk: RiskLevel) -> float:
        if risk == RiskLevel.HIGH:
            return min(confidence * self._cfg.high_risk_multiplier, self._cfg.max_confidence)
        if risk == RiskLevel.LOW:
            return max(confidence * self._cfg.low_risk_multiplier, self._cfg.min_confidence)
        return confidence

    def _log_ai_failure(self, agent: AgentProfile, scored: ScoredMarket, exc: BaseException) -> None:
        kind = classify_ai_failure(exc)
        metrics.incr(f"ai.failure.{kind.value}", agent_id=agent.id)
        fields = dict(agent_id=agent.id, market_id=scored.id, kind=kind.value, error=str(exc)[:200])
        if kind in (AIFailureKind.ACCESS_DENIED, AIFailureKind.CONFIGURATION):
            log.debug("decision_engine.ai_unavailable", **fields)
        elif kind == AIFailureKind.REFUSAL:
            log.warning("decision_engine.ai_refused", **fields)
        else:
            log.warning("decision_engine.ai_failed", **fields)

    async def infer(
        self,
        agent: AgentProfile,
        scored: ScoredMarket,
        relevance: NewsRelevance,
        news: Sequence[NewsArticle],
        index: int,
    ) -> Inference:
        """Side / confidence / reasoning via AI, else the deterministic fallback."""
        seed = deterministic_seed(agent.id, scored.id, index)

        if self._ai is None:
            metrics.incr("ai.not_configured", agent_id=agent.id)
            return self._fallback(agent, scored, relevance, seed)

        try:
            if not self._ai.is_configured(agent.id):
                metrics.incr("ai.not_configured", agent_id=agent.id)
                return self._fallback(agent, scored, relevance, seed)
            relevant = rank_relevant_news(
                scored.market, news,
                limit=self._cfg.max_ai_news_items,
                min_length=self._scoring.keyword_min_length,
            )
            decision = await self._ai.decide(agent.id, scored.market, relevant)
        except Exception as e:
            self._log_ai_failure(agent, scored, e)
            return self._fallback(agent, scored, relevance, seed)

        metrics.incr("ai.success", agent_id=agent.id)
        return Inference(
            side=decision.side,
            confidence=self._risk_adjust(decision.confidence, agent.risk),
            reasoning=list(decision.reasoning) or deterministic_reasoning(
                scored, relevance, agent, self._cfg.max_reasons,
            ),
            seed=seed,
            decided_by="ai",
        )

    async def generate_trade_for_market(
        self,
        agent: AgentProfile,
        scored: ScoredMarket,
        relevance: NewsRelevance,
        news: Sequence[NewsArticle],
        index: int,
        now_ms: float,
    ) -> AgentTrade | None:
        """A sized OPEN trade, or None when the market is below the trade threshold."""
        if not self.is_tradeable(scored):
            log.debug(
                "decision_engine.skipped",
                agent_id=agent.id,
                market_id=scored.id,
                score=round(scored.score, 2),
            )
            return None

        inference = await self.infer(agent, scored, relevance, news, index)

        personality = apply_personality_rules(
            PersonalityContext(
                market=scored,
                agent=agent,
                side=inference.side,
                confidence=inference.confidence,
                size_usd=self._sizing.base_size_usd,
            ),
            get_personality_rules(agent.id),
        )
        confidence = max(0.0, min(1.0, personality.confidence))

        size = calculate_investment(
            confidence=confidence,
            score=scored.score,
            risk=agent.risk,
            personality_size_usd=personality.size_usd,
            config=self._sizing,
        )

        trade = AgentTrade(
            id=f"{agent.id}:{scored.id}",
            agent_id=agent.id,
            market_id=scored.id,
            market_question=scored.question,
            side=personality.side,
            confidence=confidence,
            score=scored.score,
            reasoning=inference.reasoning,
            investment_usd=size.investment_usd,
            opened_at=_iso(now_ms - index * 1000),
            summary_decision=summary_decision(
                agent, scored, personality.side, confidence, inference.reasoning,
            ),
            seed=inference.seed,
            entry_probability=scored.current_probability,
            status=TradeStatus.OPEN,
            personality_notes=list(personality.notes),
            decided_by=inference.decided_by,
        )
        log.info(
            "decision_engine.trade",
            agent_id=agent.id,
            market_id=scored.id,
            side=trade.side.value,
            confidence=round(confidence, 3),
            investment=trade.investment_usd,
            decided_by=trade.decided_by,
        )
        return trade

    async def generate_research_for_market(
        self,
        agent: AgentProfile,
        scored: ScoredMarket,
        relevance: NewsRelevance,
        news: Sequence[NewsArticle],
        index: int,
        now_ms: float,
    ) -> ResearchDecision:
        """An analysis-only record: same inference, no sizing."""
        inference = await self.infer(agent, scored, relevance, news, index)
        if inference.confidence < self._cfg.neutral_research_confidence:
            verdict = ResearchVerdict.NEUTRAL
        else:
            verdict = ResearchVerdict(inference.side.value)

        lead = inference.reasoning[0] if inference.reasoning else "no signal cleared the thresholds"
        summary = (
            f"{agent.display_name} researched \"{scored.question[:110]}\" and leans "
            f"{verdict.value} at {round(inference.confidence * 100)}% confidence "
            f"(score {round(scored.score)}): {lead[:1].lower() + lead[1:]}."
        )
        log.debug(
            "decision_engine.research",
            agent_id=agent.id,
            market_id=scored.id,
            decision=verdict.value,
            score=round(scored.score, 2),
        )
        return ResearchDecision(
            id=f"{agent.id}:{scored.id}:research",
            agent_id=agent.id,
            market_id=scored.id,
            market_question=scored.question,
            decision=verdict,
            confidence=inference.confidence,
            score=scored.score,
            reasoning=inference.reasoning,
            summary=summary,
            created_at=_iso(now_ms - index * 1000),
            seed=inference.seed,
            current_probability=scored.current_probability,
            decided_by=inference.decided_by,
        )
