"""Human-readable agent summaries and cross-agent statistics."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from polyagents.agents.domain import AgentProfile, AgentTrade, TradeStatus


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'s' if count != 1 else ''}"


def _realised_pnl(trades: Sequence[AgentTrade]) -> float:
    return sum(t.pnl or 0.0 for t in trades if t.status == TradeStatus.CLOSED)


def build_agent_summary(trades: Sequence[AgentTrade], agent: AgentProfile) -> str:
    """One sentence: open positions, closed trades, realised PnL."""
    if not trades:
        return f"{agent.display_name} has no active trades."

    open_count = sum(1 for t in trades if t.status == TradeStatus.OPEN)
    closed_count = sum(1 for t in trades if t.status == TradeStatus.CLOSED)
    total_pnl = _realised_pnl(trades)

    parts: list[str] = []
    if open_count:
        parts.append(_plural(open_count, "open position"))
    if closed_count:
        parts.append(_plural(closed_count, "closed trade"))
        if total_pnl != 0:
            sign = "+" if total_pnl > 0 else "-"
            parts.append(f"{sign}${abs(total_pnl):.2f} realized PnL")

    if not parts:
        return f"{agent.display_name} has {_plural(len(trades), 'trade')}."
    return f"{agent.display_name} has {', '.join(parts)}."


@dataclass
class SummaryStats:
    total_pnl: float = 0.0
    open_trades_count: int = 0
    closed_trades_count: int = 0
    total_invested_usd: float = 0.0
    best_agent_by_pnl: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_pnl": round(self.total_pnl, 2),
            "open_trades_count": self.open_trades_count,
            "closed_trades_count": self.closed_trades_count,
            "total_invested_usd": round(self.total_invested_usd, 2),
            "best_agent_by_pnl": self.best_agent_by_pnl,
        }


def compute_summary_stats(trades_by_agent: Mapping[str, Sequence[AgentTrade]]) -> SummaryStats:
    """Totals across agents; best agent is the one with the highest realised PnL."""
    stats = SummaryStats()
    best_pnl: float | None = None

    for agent_id, trades in trades_by_agent.items():
        agent_pnl = _realised_pnl(trades)
        stats.total_pnl += agent_pnl
        stats.open_trades_count += sum(1 for t in trades if t.status == TradeStatus.OPEN)
        stats.closed_trades_count += sum(1 for t in trades if t.status == TradeStatus.CLOSED)
        stats.total_invested_usd += sum(t.investment_usd for t in trades)
        if best_pnl is None or agent_pnl > best_pnl:
            best_pnl = agent_pnl
            stats.best_agent_by_pnl = agent_id

    return stats
