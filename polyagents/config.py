"""Shared configuration loader and Pydantic settings.

Supports:
  - YAML file loading (``config.yaml`` at the project root by default)
  - All subsystem configs: scoring, decision, sizing, cache, ai, news,
    observability, and the agent roster

Secrets (vendor API keys) are read from the environment, never from YAML.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from polyagents.agents.domain import AgentProfile, RiskLevel
from polyagents.agents.profiles import default_agent_profiles


_PROJECT_ROOT = Path(__file__).resolve().parent.parent


class ScoringConfig(BaseModel):
    component_cap: float = 25.0
    volume_reference_usd: float = 5_000_000.0  # volume at which volume_score saturates
    liquidity_reference_usd: float = 1_000_000.0
    price_movement_scale: float = 100.0  # points per unit of |priceChange24h|
    news_points_per_article: float = 5.0
    # (max_age_hours, weight) - younger articles contribute more
    news_recency_buckets: list[tuple[float, float]] = Field(default_factory=lambda: [
        (6.0, 1.0), (24.0, 0.7), (72.0, 0.4),
    ])
    news_stale_weight: float = 0.2
    keyword_min_length: int = 5  # keywords must be longer than 4 chars
    focus_category_boost: float = 1.1


class DecisionConfig(BaseModel):
    trade_score_threshold: float = 10.0
    selection_multiplier: int = 5  # top maxTrades×5 scored candidates
    attempt_multiplier: int = 3  # attempt up to maxTrades×3 markets
    research_multiplier: int = 2
    min_research_quota: int = 6
    rotation_bucket_ms: int = 5000
    max_ai_news_items: int = 5
    fallback_side_bias: float = 0.6
    fallback_jitter: float = 0.05
    min_confidence: float = 0.4
    max_confidence: float = 0.95
    high_risk_multiplier: float = 1.05
    low_risk_multiplier: float = 0.9
    fallback_high_risk_multiplier: float = 1.1
    neutral_research_confidence: float = 0.5
    max_reasons: int = 4
    strict_focus_categories: bool = False  # reject off-focus markets at the filter


class SizingConfig(BaseModel):
    starting_capital: float = 3000.0
    min_investment: float = 130.0
    max_investment_fraction: float = 0.20
    rounding_unit: float = 5.0
    base_size_usd: float = 100.0
    risk_budget: dict[RiskLevel, float] = Field(default_factory=lambda: {
        RiskLevel.LOW: 50.0, RiskLevel.MEDIUM: 100.0, RiskLevel.HIGH: 150.0,
    })
    min_confidence_mult: float = 0.7
    max_confidence_mult: float = 1.8
    confidence_scale: float = 1.2
    score_mult_floor: float = 0.6
    score_mult_range: float = 0.9
    score_saturation: float = 50.0

    @property
    def max_investment(self) -> float:
        return self.max_investment_fraction * self.starting_capital


class CacheConfig(BaseModel):
    """Caching configuration."""
    trade_ttl_secs: int = 120
    quick_serve: bool = True  # serve any unexpired trades before fetching markets
    ai_decision_ttl_secs: int = 600
    market_list_ttl_secs: int = 60
    news_ttl_secs: int = 300
    max_cache_size_mb: int = 50


class AIVendorOverride(BaseModel):
    model: str | None = None
    temperature: float | None = None


class AIConfig(BaseModel):
    timeout_secs: float = 30.0
    max_tokens: int = 1000
    vendors: dict[str, AIVendorOverride] = Field(default_factory=dict)  # keyed by agent id


class NewsConfig(BaseModel):
    base_url: str = "https://newsapi.org/v2/everything"
    query: str = "prediction market OR election OR crypto OR fed OR economy"
    page_size: int = 50
    lookback_days: int = 3


class MarketsConfig(BaseModel):
    base_url: str = "https://gamma-api.polymarket.com"
    page_limit: int = 500
    max_pages: int = 3


class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: str = ""


class BotConfig(BaseModel):
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    decision: DecisionConfig = Field(default_factory=DecisionConfig)
    sizing: SizingConfig = Field(default_factory=SizingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    news: NewsConfig = Field(default_factory=NewsConfig)
    markets: MarketsConfig = Field(default_factory=MarketsConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    agents: dict[str, AgentProfile] = Field(default_factory=default_agent_profiles)


def load_config(path: str | Path | None = None) -> BotConfig:
    """Load config from YAML file, falling back to defaults."""
    if path is None:
        path = _PROJECT_ROOT / "config.yaml"
    path = Path(path)
    if path.exists():
        with open(path) as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}
        return BotConfig(**raw)
    return BotConfig()
