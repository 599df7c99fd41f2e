"""Position sizer: turns conviction into a bounded USD investment.

  base_risk     = risk budget for the agent's risk level (LOW/MEDIUM/HIGH)
  conf_mult     = clamp(0.7, 1.8, confidence × 1.2)
  score_mult    = 0.6 + 0.9 × clamp(0, 1, score / 50)
  personality   = personality size / base size
  investment    = base_risk × conf_mult × score_mult × personality
  investment    = clamp(min_investment, max_fraction × starting_capital)
  final         = nearest multiple of the rounding unit, kept inside the bounds
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from polyagents.agents.domain import RiskLevel
from polyagents.config import SizingConfig
from polyagents.observability.logger import get_logger

log = get_logger(__name__)


@dataclass
class PositionSize:
    """Computed position size with its multiplier breakdown."""
    investment_usd: float
    raw_investment: float
    capped_by: str  # "none" | "min_investment" | "max_investment"
    base_risk: float = 0.0
    confidence_mult: float = 1.0
    score_mult: float = 1.0
    personality_mult: float = 1.0

    def to_dict(self) -> dict:
        return dict(self.__dict__)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _round_to_unit(value: float, unit: float, lo: float, hi: float) -> float:
    """Round half-up to ``unit`` and keep the result a multiple inside [lo, hi]."""
    rounded = math.floor(value / unit + 0.5) * unit
    floor_multiple = math.ceil(lo / unit) * unit
    ceil_multiple = math.floor(hi / unit) * unit
    return float(_clamp(rounded, floor_multiple, ceil_multiple))


def calculate_investment(
    confidence: float,
    score: float,
    risk: RiskLevel,
    personality_size_usd: float | None = None,
    config: SizingConfig | None = None,
) -> PositionSize:
    """Size a trade.  ``personality_size_usd`` defaults to the base size (×1)."""
    cfg = config or SizingConfig()
    base_size = cfg.base_size_usd
    personality_size = base_size if personality_size_usd is None else personality_size_usd

    base_risk = cfg.risk_budget[RiskLevel(risk)]
    conf_mult = _clamp(confidence * cfg.confidence_scale, cfg.min_confidence_mult, cfg.max_confidence_mult)
    score_mult = cfg.score_mult_floor + cfg.score_mult_range * _clamp(score / cfg.score_saturation, 0.0, 1.0)
    personality_mult = personality_size / base_size if base_size > 0 else 1.0

    raw = base_risk * conf_mult * score_mult * personality_mult
    bounded = _clamp(raw, cfg.min_investment, cfg.max_investment)

    if raw < cfg.min_investment:
        capped_by = "min_investment"
    elif raw > cfg.max_investment:
        capped_by = "max_investment"
    else:
        capped_by = "none"

    result = PositionSize(
        investment_usd=_round_to_unit(bounded, cfg.rounding_unit, cfg.min_investment, cfg.max_investment),
        raw_investment=round(raw, 2),
        capped_by=capped_by,
        base_risk=base_risk,
        confidence_mult=round(conf_mult, 4),
        score_mult=round(score_mult, 4),
        personality_mult=round(personality_mult, 4),
    )

    log.debug(
        "position_sizer.sized",
        investment=result.investment_usd,
        raw=result.raw_investment,
        capped_by=capped_by,
        conf_mult=result.confidence_mult,
        score_mult=result.score_mult,
        personality_mult=result.personality_mult,
    )
    return result
