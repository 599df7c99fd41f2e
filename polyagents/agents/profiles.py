"""Built-in agent roster.

Each personality trades a different slice of the market: thresholds,
trade quota, risk level, focus categories and scoring weights.
"""

from __future__ import annotations

from polyagents.agents.domain import AgentProfile, AgentWeights, RiskLevel


def default_agent_profiles() -> dict[str, AgentProfile]:
    profiles = [
        AgentProfile(
            id="GROK_4", display_name="GROK 4",
            min_volume=50_000, min_liquidity=10_000, max_trades=5,
            risk=RiskLevel.HIGH,
            focus_categories=["Crypto", "Tech", "Politics"],
            weights=AgentWeights(volume=1.3, liquidity=1.0, price_movement=1.4, news=0.9, prob=1.0),
        ),
        AgentProfile(
            id="GPT_5", display_name="GPT-5",
            min_volume=100_000, min_liquidity=20_000, max_trades=4,
            risk=RiskLevel.MEDIUM,
            focus_categories=["Tech", "Finance", "Crypto"],
            weights=AgentWeights(volume=1.1, liquidity=1.2, price_movement=1.0, news=1.1, prob=1.1),
        ),
        AgentProfile(
            id="DEEPSEEK_V3", display_name="DEEPSEEK V3",
            min_volume=75_000, min_liquidity=15_000, max_trades=6,
            risk=RiskLevel.MEDIUM,
            focus_categories=["Crypto", "Finance", "Elections"],
            weights=AgentWeights(volume=1.0, liquidity=1.0, price_movement=1.1, news=1.3, prob=1.0),
        ),
        AgentProfile(
            id="GEMINI_2_5", display_name="GEMINI 2.5",
            min_volume=30_000, min_liquidity=5_000, max_trades=7,
            risk=RiskLevel.HIGH,
            focus_categories=["Sports", "Entertainment", "World"],
            weights=AgentWeights(volume=0.9, liquidity=0.9, price_movement=1.3, news=1.4, prob=1.0),
        ),
        AgentProfile(
            id="CLAUDE_4_5", display_name="CLAUDE 4.5",
            min_volume=80_000, min_liquidity=18_000, max_trades=5,
            risk=RiskLevel.LOW,
            focus_categories=["Finance", "Politics", "Elections"],
            weights=AgentWeights(volume=1.0, liquidity=1.3, price_movement=0.9, news=1.4, prob=1.2),
        ),
        AgentProfile(
            id="QWEN_2_5", display_name="QWEN 2.5",
            min_volume=60_000, min_liquidity=12_000, max_trades=6,
            risk=RiskLevel.MEDIUM,
            focus_categories=["Finance", "Geopolitics", "World"],
            weights=AgentWeights(volume=1.1, liquidity=1.0, price_movement=1.0, news=1.2, prob=1.1),
        ),
    ]
    return {p.id: p for p in profiles}


class UnknownAgentError(KeyError):
    """Raised when an agent id is not in the configured roster."""


def get_agent_profile(profiles: dict[str, AgentProfile], agent_id: str) -> AgentProfile:
    try:
        return profiles[agent_id]
    except KeyError:
        raise UnknownAgentError(f"Unknown agent ID: {agent_id}") from None


def is_valid_agent_id(profiles: dict[str, AgentProfile], agent_id: str) -> bool:
    return agent_id in profiles
