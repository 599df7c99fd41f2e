"""CLI entry point for the multi-agent market decision pipeline.

Commands:
  polyagents agents                - List the configured agent roster
  polyagents trades AGENT_ID       - Generate (or serve cached) trades for an agent
  polyagents research AGENT_ID     - Show the research decisions of a generation
  polyagents score AGENT_ID        - Rank candidate markets for an agent
  polyagents summary               - Generate for every agent and summarise
"""

from __future__ import annotations

import asyncio
import datetime as dt
import json
from typing import Any, Awaitable, Callable

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from polyagents.agents.profiles import UnknownAgentError, get_agent_profile
from polyagents.config import BotConfig, load_config
from polyagents.connectors.news_feed import NewsFeed
from polyagents.connectors.polymarket_gamma import GammaMarketFeed
from polyagents.connectors.rate_limiter import rate_limiter
from polyagents.engine.generator import AgentTradeGenerator, build_generator
from polyagents.engine.market_filter import filter_candidate_markets
from polyagents.engine.scoring import score_markets
from polyagents.engine.summary import build_agent_summary, compute_summary_stats
from polyagents.observability.logger import configure_logging, get_logger
from polyagents.observability.metrics import cost_tracker, metrics

load_dotenv()

console = Console()
log = get_logger(__name__)


def _run(coro: Any) -> Any:
    """Run an async coroutine from sync CLI."""
    return asyncio.run(coro)


async def _with_generator(
    cfg: BotConfig,
    fn: Callable[[AgentTradeGenerator], Awaitable[Any]],
) -> Any:
    """Build the live generator, run ``fn`` with it, close every client."""
    generator = build_generator(cfg)
    try:
        return await fn(generator)
    finally:
        await generator.close()


def _require_agent(cfg: BotConfig, agent_id: str) -> None:
    try:
        get_agent_profile(cfg.agents, agent_id)
    except UnknownAgentError as e:
        raise click.BadParameter(str(e), param_hint="AGENT_ID") from None


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config.yaml")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """Multi-agent prediction-market decision pipeline."""
    ctx.ensure_object(dict)
    cfg = load_config(config_path)
    ctx.obj["config"] = cfg
    configure_logging(
        level=cfg.observability.log_level,
        fmt="console",  # CLI always uses console format
        log_file=cfg.observability.log_file,
    )


# ─── AGENTS ──────────────────────────────────────────────────────────

@cli.command()
@click.pass_context
def agents(ctx: click.Context) -> None:
    """List the configured agents."""
    cfg: BotConfig = ctx.obj["config"]

    table = Table(title=f"🤖 Agents ({len(cfg.agents)})")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Risk", justify="center")
    table.add_column("Max Trades", justify="right")
    table.add_column("Min Volume", justify="right", style="green")
    table.add_column("Min Liquidity", justify="right")
    table.add_column("Focus", max_width=40)

    for agent in cfg.agents.values():
        table.add_row(
            agent.id,
            agent.display_name,
            agent.risk.value,
            str(agent.max_trades),
            f"${agent.min_volume:,.0f}",
            f"${agent.min_liquidity:,.0f}",
            ", ".join(agent.focus_categories) or "-",
        )

    console.print(table)


# ─── TRADES ──────────────────────────────────────────────────────────

@cli.command()
@click.argument("agent_id")
@click.option("--fresh", is_flag=True, help="Skip the quick cache and re-fetch markets")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.pass_context
def trades(ctx: click.Context, agent_id: str, fresh: bool, as_json: bool) -> None:
    """Generate trades for AGENT_ID."""
    cfg: BotConfig = ctx.obj["config"]
    _require_agent(cfg, agent_id)

    result = _run(_with_generator(
        cfg, lambda gen: gen.generate_agent_trades(agent_id, fresh=fresh),
    ))

    if as_json:
        console.print_json(json.dumps([t.to_dict() for t in result], default=str))
        return

    table = Table(title=f"📈 {agent_id} Trades ({len(result)})")
    table.add_column("Market", style="dim", max_width=12)
    table.add_column("Question", max_width=50)
    table.add_column("Side", justify="center")
    table.add_column("Conf", justify="right", style="yellow")
    table.add_column("Score", justify="right")
    table.add_column("Invest", justify="right", style="green")
    table.add_column("By", justify="center")

    for t in result:
        side_style = "green" if t.side.value == "YES" else "red"
        table.add_row(
            t.market_id[:12],
            t.market_question[:50],
            f"[{side_style}]{t.side.value}[/{side_style}]",
            f"{t.confidence:.0%}",
            f"{t.score:.1f}",
            f"${t.investment_usd:,.0f}",
            t.decided_by,
        )

    console.print(table)
    for t in result:
        console.print(f"  • {t.summary_decision}")
        for note in t.personality_notes:
            console.print(f"    [magenta]↳ {note}[/magenta]")


# ─── RESEARCH ────────────────────────────────────────────────────────

@cli.command()
@click.argument("agent_id")
@click.pass_context
def research(ctx: click.Context, agent_id: str) -> None:
    """Run a generation for AGENT_ID and show its research decisions."""
    cfg: BotConfig = ctx.obj["config"]
    _require_agent(cfg, agent_id)

    async def _research(gen: AgentTradeGenerator) -> list[Any]:
        await gen.generate_agent_trades(agent_id, fresh=True)
        return gen.get_agent_research(agent_id)

    decisions = _run(_with_generator(cfg, _research))

    table = Table(title=f"🔍 {agent_id} Research ({len(decisions)})")
    table.add_column("Market", style="dim", max_width=12)
    table.add_column("Question", max_width=50)
    table.add_column("Decision", justify="center")
    table.add_column("Conf", justify="right", style="yellow")
    table.add_column("Score", justify="right")

    for d in decisions:
        table.add_row(
            d.market_id[:12],
            d.market_question[:50],
            d.decision.value,
            f"{d.confidence:.0%}",
            f"{d.score:.1f}",
        )

    console.print(table)


# ─── SCORE ───────────────────────────────────────────────────────────

@cli.command()
@click.argument("agent_id")
@click.option("--limit", default=20, help="Number of markets to show")
@click.pass_context
def score(ctx: click.Context, agent_id: str, limit: int) -> None:
    """Rank candidate markets for AGENT_ID (no decisions, no AI calls)."""
    cfg: BotConfig = ctx.obj["config"]
    _require_agent(cfg, agent_id)
    agent = get_agent_profile(cfg.agents, agent_id)

    async def _score() -> tuple[list[Any], Any]:
        markets_feed = GammaMarketFeed(cfg.markets, ttl_secs=cfg.cache.market_list_ttl_secs)
        news_feed = NewsFeed(cfg.news, ttl_secs=cfg.cache.news_ttl_secs)
        try:
            markets, news = await asyncio.gather(
                markets_feed.fetch_all_markets(), news_feed.fetch_latest_news(),
            )
        finally:
            await markets_feed.close()
            await news_feed.close()
        candidates, stats = filter_candidate_markets(
            agent, markets, strict_focus=cfg.decision.strict_focus_categories,
        )
        now = dt.datetime.now(dt.timezone.utc)
        return score_markets(candidates, news, agent, now, cfg.scoring), stats

    scored, stats = _run(_score())

    table = Table(title=f"📊 {agent_id} Candidates ({stats.passed}/{stats.total_input} passed)")
    table.add_column("ID", style="dim", max_width=12)
    table.add_column("Category", style="cyan")
    table.add_column("Question", max_width=46)
    table.add_column("Score", justify="right", style="yellow")
    table.add_column("Vol", justify="right")
    table.add_column("Liq", justify="right")
    table.add_column("Move", justify="right")
    table.add_column("News", justify="right")
    table.add_column("Prob", justify="right")

    for s in scored[:limit]:
        c = s.components
        table.add_row(
            s.id[:12],
            s.category,
            s.question[:46],
            f"{s.score:.1f}",
            f"{c.volume_score:.1f}",
            f"{c.liquidity_score:.1f}",
            f"{c.price_movement_score:.1f}",
            f"{c.news_score:.1f}",
            f"{c.prob_score:.1f}",
        )

    console.print(table)
    if stats.rejection_reasons:
        console.print(f"[dim]Rejected: {stats.rejection_reasons}[/dim]")


# ─── SUMMARY ─────────────────────────────────────────────────────────

@cli.command()
@click.pass_context
def summary(ctx: click.Context) -> None:
    """Generate trades for every agent and print a summary."""
    cfg: BotConfig = ctx.obj["config"]

    async def _summary(gen: AgentTradeGenerator) -> dict[str, list[Any]]:
        # Sequential: agents share vendor rate limits.
        return {agent_id: await gen.generate_agent_trades(agent_id) for agent_id in cfg.agents}

    trades_by_agent = _run(_with_generator(cfg, _summary))
    stats = compute_summary_stats(trades_by_agent)

    console.print("[bold]🧾 Agent Summary[/bold]")
    for agent_id, agent_trades in trades_by_agent.items():
        console.print(f"  • {build_agent_summary(agent_trades, cfg.agents[agent_id])}")

    console.print_json(json.dumps({
        "stats": stats.to_dict(),
        "ai_calls": cost_tracker.end_cycle(),
        "rate_limits": rate_limiter.stats(),
        "ai_success_by_agent": metrics.by_agent("ai.success"),
        "latency": metrics.snapshot()["histograms"].get("generator.latency_secs"),
    }, default=str))


if __name__ == "__main__":
    cli()
