"""Agent personality rules.

Deterministic rules that nudge a decision after side and confidence are
known.  Each rule is a pure function of a ``PersonalityContext`` and
returns a ``PersonalityResult``: either the incoming state unchanged with
no notes, or an override with a justification note.

``apply_personality_rules`` folds the rules in registration order: every
rule sees the state produced by the previous one, its side / confidence /
size replace that state, and notes accumulate.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Callable, Sequence

from polyagents.agents.domain import AgentProfile, ScoredMarket, TradeSide
from polyagents.observability.logger import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class PersonalityResult:
    side: TradeSide
    confidence: float
    size_usd: float
    notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class PersonalityContext:
    market: ScoredMarket
    agent: AgentProfile
    side: TradeSide
    confidence: float
    size_usd: float

    def unchanged(self) -> PersonalityResult:
        return PersonalityResult(side=self.side, confidence=self.confidence, size_usd=self.size_usd)


PersonalityRule = Callable[[PersonalityContext], PersonalityResult]


# ── Built-in rules ───────────────────────────────────────────────────

def momentum_rule(ctx: PersonalityContext) -> PersonalityResult:
    """Crypto/Tech near 50% with strong price movement: lean in."""
    m = ctx.market
    is_momentum = (
        m.category in ("Crypto", "Tech")
        and m.components.price_movement_score >= 0.7 * 15
        and 0.45 <= m.current_probability <= 0.55
    )
    if not is_momentum:
        return ctx.unchanged()
    return PersonalityResult(
        side=ctx.side,
        confidence=min(ctx.confidence + 0.05, 0.95),
        size_usd=ctx.size_usd * 1.15,
        notes=("Aggressive momentum bias in Crypto/Tech near 50% probability.",),
    )


def crowd_skepticism_rule(ctx: PersonalityContext) -> PersonalityResult:
    """One-sided political markets with heavy coverage: back off."""
    m = ctx.market
    is_crowded = (
        m.category in ("Politics", "Elections")
        and m.components.news_score >= 0.7 * 25
        and (m.current_probability >= 0.9 or m.current_probability <= 0.1)
    )
    if not is_crowded:
        return ctx.unchanged()
    return PersonalityResult(
        side=ctx.side,
        confidence=max(ctx.confidence - 0.05, 0.4),
        size_usd=ctx.size_usd * 0.75,
        notes=("Conservative stance in extremely crowded political markets.",),
    )


_NEAR_EVENT_RE = re.compile(r"\b(today|tonight|20[2-9]\d)\b")


def near_term_sports_rule(ctx: PersonalityContext) -> PersonalityResult:
    """Sports markets that look like they resolve soon: more conviction."""
    m = ctx.market
    if m.category != "Sports" or not _NEAR_EVENT_RE.search(m.question.lower()):
        return ctx.unchanged()
    return PersonalityResult(
        side=ctx.side,
        confidence=min(ctx.confidence + 0.03, 0.95),
        size_usd=ctx.size_usd * 1.1,
        notes=("Increased conviction in near-term sports event.",),
    )


PERSONALITY_RULES: dict[str, tuple[PersonalityRule, ...]] = {
    "GROK_4": (momentum_rule,),
    "GPT_5": (),
    "DEEPSEEK_V3": (),
    "GEMINI_2_5": (near_term_sports_rule,),
    "CLAUDE_4_5": (crowd_skepticism_rule,),
    "QWEN_2_5": (),
}


def get_personality_rules(agent_id: str) -> tuple[PersonalityRule, ...]:
    return PERSONALITY_RULES.get(agent_id, ())


def apply_personality_rules(
    ctx: PersonalityContext,
    rules: Sequence[PersonalityRule],
) -> PersonalityResult:
    """Fold ``rules`` over the context; later rules see earlier overrides."""
    result = ctx.unchanged()
    for rule in rules:
        out = rule(ctx)
        result = PersonalityResult(
            side=out.side,
            confidence=out.confidence,
            size_usd=out.size_usd,
            notes=result.notes + tuple(out.notes),
        )
        if out.notes:
            log.debug(
                "personality.applied",
                agent_id=ctx.agent.id,
                market_id=ctx.market.id,
                rule=getattr(rule, "__name__", "rule"),
            )
        ctx = replace(ctx, side=result.side, confidence=result.confidence, size_usd=result.size_usd)
    return result
