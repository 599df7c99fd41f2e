"""Candidate filter: narrows the full market set for one agent.

A market is a candidate when it has a non-empty id and clears the agent's
minimum volume and liquidity.  Focus categories are advisory by default
(they boost the score later); ``strict_focus`` turns them into a hard gate.

Never raises: malformed entries are rejected and an empty list is valid.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from polyagents.agents.domain import AgentProfile, Market
from polyagents.observability.logger import get_logger

log = get_logger(__name__)


@dataclass
class FilterStats:
    """Aggregate stats from filtering a batch of markets."""
    total_input: int = 0
    passed: int = 0
    rejection_reasons: Dict[str, int] = field(default_factory=dict)

    def reject(self, reason: str) -> None:
        self.rejection_reasons[reason] = self.rejection_reasons.get(reason, 0) + 1


def _rejection_reason(market: Market, agent: AgentProfile, strict_focus: bool) -> Optional[str]:
    """Return rejection reason string, or None if the market passes."""
    if not market.id or not market.id.strip():
        return "missing_id"
    if not (math.isfinite(market.volume_usd) and math.isfinite(market.liquidity_usd)):
        return "malformed"
    if market.volume_usd < agent.min_volume:
        return "low_volume"
    if market.liquidity_usd < agent.min_liquidity:
        return "low_liquidity"
    if strict_focus and agent.focus_categories and market.category not in agent.focus_categories:
        return "off_focus"
    return None


def filter_candidate_markets(
    agent: AgentProfile,
    markets: Iterable[Market],
    strict_focus: bool = False,
) -> tuple[List[Market], FilterStats]:
    """Return the markets this agent may score, plus filter stats."""
    stats = FilterStats()
    candidates: list[Market] = []

    for m in markets:
        stats.total_input += 1
        try:
            reason = _rejection_reason(m, agent, strict_focus)
        except (AttributeError, TypeError):
            reason = "malformed"
        if reason:
            stats.reject(reason)
            continue
        candidates.append(m)

    stats.passed = len(candidates)
    log.info(
        "market_filter.result",
        agent_id=agent.id,
        total=stats.total_input,
        passed=stats.passed,
        rejected=stats.rejection_reasons,
    )
    return candidates, stats
