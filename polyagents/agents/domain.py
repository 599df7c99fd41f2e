"""Domain types for the agent decision pipeline.

Upstream snapshots (``Market``, ``NewsArticle``) and static agent
configuration (``AgentProfile``) are Pydantic models, since they are
parsed from API payloads and YAML. Everything the pipeline derives per
generation cycle (scores, trades, research decisions) is a plain dataclass.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TradeSide(str, Enum):
    YES = "YES"
    NO = "NO"


class TradeStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class ResearchVerdict(str, Enum):
    YES = "YES"
    NO = "NO"
    NEUTRAL = "NEUTRAL"


CATEGORIES: tuple[str, ...] = (
    "Crypto", "Tech", "Finance", "Politics", "Elections",
    "Sports", "Entertainment", "World", "Geopolitics",
)

_CATEGORY_ALIASES: dict[str, str] = {
    "crypto": "Crypto",
    "cryptocurrency": "Crypto",
    "technology": "Tech",
    "tech": "Tech",
    "finance": "Finance",
    "financial": "Finance",
    "business": "Finance",
    "politics": "Politics",
    "political": "Politics",
    "elections": "Elections",
    "election": "Elections",
    "sports": "Sports",
    "entertainment": "Entertainment",
    "pop culture": "Entertainment",
    "world": "World",
    "geopolitics": "Geopolitics",
    "geopolitical": "Geopolitics",
}


def normalize_category(raw: Any) -> str:
    """Map an upstream category label onto a known category, else ``Other``."""
    if not isinstance(raw, str) or not raw.strip():
        return "Other"
    return _CATEGORY_ALIASES.get(raw.strip().lower(), "Other")


# ── Upstream snapshots ───────────────────────────────────────────────

class Market(BaseModel):
    """A prediction-market listing, immutable for one generation cycle."""
    model_config = {"frozen": True}

    id: str = ""
    question: str = ""
    category: str = "Other"
    volume_usd: float = 0.0
    liquidity_usd: float = 0.0
    current_probability: float = Field(default=0.5, ge=0.0, le=1.0)
    price_change_24h: float = 0.0


class NewsArticle(BaseModel):
    model_config = {"frozen": True}

    id: str = ""
    title: str = ""
    description: str | None = None
    source: str = ""
    published_at: dt.datetime | None = None
    url: str | None = None

    def age_hours(self, now: dt.datetime) -> float | None:
        """Hours since publication.  None if unknown."""
        if self.published_at is None:
            return None
        published = self.published_at
        if published.tzinfo is None:
            published = published.replace(tzinfo=dt.timezone.utc)
        return max(0.0, (now - published).total_seconds() / 3600.0)


# ── Static configuration ─────────────────────────────────────────────

class AgentWeights(BaseModel):
    """How much an agent cares about each scoring component."""
    volume: float = 1.0
    liquidity: float = 1.0
    price_movement: float = 1.0
    news: float = 1.0
    prob: float = 1.0

    @property
    def total(self) -> float:
        return self.volume + self.liquidity + self.price_movement + self.news + self.prob


class AgentProfile(BaseModel):
    """A trading personality. Loaded once, read-only for the process lifetime."""
    model_config = {"frozen": True}

    id: str
    display_name: str
    min_volume: float = 0.0
    min_liquidity: float = 0.0
    max_trades: int = 5
    risk: RiskLevel = RiskLevel.MEDIUM
    focus_categories: list[str] = Field(default_factory=list)
    weights: AgentWeights = Field(default_factory=AgentWeights)


# ── Derived per-cycle values ─────────────────────────────────────────

@dataclass(frozen=True)
class ScoreComponents:
    volume_score: float = 0.0
    liquidity_score: float = 0.0
    price_movement_score: float = 0.0
    news_score: float = 0.0
    prob_score: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class ScoredMarket:
    """A market plus its 0-100 composite score for one agent."""
    market: Market
    score: float
    components: ScoreComponents

    @property
    def id(self) -> str:
        return self.market.id

    @property
    def question(self) -> str:
        return self.market.question

    @property
    def category(self) -> str:
        return self.market.category

    @property
    def current_probability(self) -> float:
        return self.market.current_probability


@dataclass(frozen=True)
class NewsRelevance:
    count: int = 0
    matched_titles: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AgentTrade:
    """A sized position taken by an agent on one market."""
    id: str  # "{agent_id}:{market_id}"
    agent_id: str
    market_id: str
    market_question: str
    side: TradeSide
    confidence: float
    score: float
    reasoning: list[str]
    investment_usd: float
    opened_at: str
    summary_decision: str
    seed: str
    entry_probability: float = 0.5
    status: TradeStatus = TradeStatus.OPEN
    pnl: float | None = None
    closed_at: str | None = None
    personality_notes: list[str] = field(default_factory=list)
    decided_by: str = "fallback"  # "ai" | "fallback"

    def close(self, exit_probability: float, closed_at: str | None = None) -> AgentTrade:
        """Return a CLOSED copy with realised PnL at ``exit_probability``.

        Binary contract: shares bought at the entry price of the chosen side,
        marked at that side's exit price.
        """
        if self.status == TradeStatus.CLOSED:
            return self
        if self.side == TradeSide.YES:
            entry, exit_ = self.entry_probability, exit_probability
        else:
            entry, exit_ = 1.0 - self.entry_probability, 1.0 - exit_probability
        shares = self.investment_usd / max(entry, 0.01)
        pnl = round(shares * exit_ - self.investment_usd, 2)
        return replace(
            self,
            status=TradeStatus.CLOSED,
            pnl=pnl,
            closed_at=closed_at or dt.datetime.now(dt.timezone.utc).isoformat(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "market_id": self.market_id,
            "market_question": self.market_question,
            "side": self.side.value,
            "confidence": round(self.confidence, 4),
            "score": round(self.score, 2),
            "reasoning": list(self.reasoning),
            "status": self.status.value,
            "pnl": self.pnl,
            "investment_usd": self.investment_usd,
            "entry_probability": self.entry_probability,
            "opened_at": self.opened_at,
            "closed_at": self.closed_at,
            "summary_decision": self.summary_decision,
            "seed": self.seed,
            "personality_notes": list(self.personality_notes),
            "decided_by": self.decided_by,
        }


@dataclass(frozen=True)
class ResearchDecision:
    """A market an agent analysed but did not trade."""
    id: str
    agent_id: str
    market_id: str
    market_question: str
    decision: ResearchVerdict
    confidence: float
    score: float
    reasoning: list[str]
    summary: str
    created_at: str
    seed: str
    current_probability: float = 0.5
    decided_by: str = "fallback"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "market_id": self.market_id,
            "market_question": self.market_question,
            "decision": self.decision.value,
            "confidence": round(self.confidence, 4),
            "score": round(self.score, 2),
            "reasoning": list(self.reasoning),
            "summary": self.summary,
            "created_at": self.created_at,
            "seed": self.seed,
            "current_probability": self.current_probability,
            "decided_by": self.decided_by,
        }
