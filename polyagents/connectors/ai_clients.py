"""AI vendor clients: one trading personality per vendor.

  GPT_5        OpenAI            (openai SDK)
  GROK_4       xAI               (openai SDK, OpenAI-compatible endpoint)
  DEEPSEEK_V3  DeepSeek          (openai SDK, OpenAI-compatible endpoint)
  CLAUDE_4_5   Anthropic         (anthropic SDK)
  GEMINI_2_5   Google AI         (google-generativeai, run in a worker thread)
  QWEN_2_5     Alibaba DashScope (httpx)

All vendors share one prompt and one response parser.  Every failure is
raised as an ``AIError`` subclass; callers decide how to degrade.
Successful decisions are memoised per (agent, market) in a TTL cache.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

import httpx
import openai
from openai import AsyncOpenAI

from polyagents.agents.domain import Market, NewsArticle, TradeSide
from polyagents.config import AIConfig
from polyagents.connectors.ai_errors import (
    AIAccessDeniedError,
    AIConfigurationError,
    AINetworkError,
    AIParseError,
    AIRefusalError,
    detect_refusal,
)
from polyagents.connectors.rate_limiter import rate_limiter
from polyagents.observability.logger import get_logger
from polyagents.observability.metrics import cost_tracker
from polyagents.storage.cache import TTLCache

log = get_logger(__name__)


@dataclass(frozen=True)
class AITradeDecision:
    side: TradeSide
    confidence: float  # 0-1
    reasoning: list[str]


class AIClient(Protocol):
    """Boundary the decision engine depends on."""

    def is_configured(self, agent_id: str) -> bool: ...

    async def decide(
        self, agent_id: str, market: Market, news: Sequence[NewsArticle],
    ) -> AITradeDecision: ...


@dataclass(frozen=True)
class VendorSpec:
    vendor: str
    kind: str  # "openai_compatible" | "anthropic" | "google" | "qwen"
    env_key: str
    model: str
    temperature: float
    persona: str
    base_url: str | None = None


VENDORS: dict[str, VendorSpec] = {
    "GPT_5": VendorSpec(
        vendor="openai", kind="openai_compatible", env_key="OPENAI_API_KEY",
        model="gpt-4o", temperature=0.7,
        persona="You are GPT-5, an expert prediction market trader. Analyze markets "
                "and make trading decisions. Always respond with valid JSON.",
    ),
    "GROK_4": VendorSpec(
        vendor="xai", kind="openai_compatible", env_key="GROK_API_KEY",
        model="grok-3", temperature=0.8, base_url="https://api.x.ai/v1",
        persona="You are GROK 4, an aggressive prediction market trader. Make bold, "
                "high-conviction trades. Always respond with valid JSON.",
    ),
    "DEEPSEEK_V3": VendorSpec(
        vendor="deepseek", kind="openai_compatible", env_key="DEEPSEEK_API_KEY",
        model="deepseek-chat", temperature=0.7, base_url="https://api.deepseek.com/v1",
        persona="You are DEEPSEEK V3, a strategic prediction market trader. Analyze "
                "markets deeply and make well-reasoned trades. Always respond with valid JSON.",
    ),
    "CLAUDE_4_5": VendorSpec(
        vendor="anthropic", kind="anthropic", env_key="ANTHROPIC_API_KEY",
        model="claude-3-5-sonnet-20241022", temperature=0.7,
        persona="You are an analytical assistant helping analyze prediction market data. "
                "You evaluate market information and provide structured analysis in JSON "
                "format. This is for data analysis purposes, not financial advice.",
    ),
    "GEMINI_2_5": VendorSpec(
        vendor="google", kind="google", env_key="GOOGLE_AI_API_KEY",
        model="gemini-2.0-flash", temperature=0.7,
        persona="You are Gemini 2.5, an expert prediction market trader specializing "
                "in sports and entertainment.",
    ),
    "QWEN_2_5": VendorSpec(
        vendor="qwen", kind="qwen", env_key="QWEN_API_KEY",
        model="qwen-turbo", temperature=0.7,
        persona="You are QWEN 2.5, an expert prediction market trader specializing in "
                "finance and geopolitics. Always respond with valid JSON.",
    ),
}

_QWEN_URL = "https://dashscope.aliyuncs.com/api/v1/services/aigc/text-generation/generation"


# ── Prompt & parsing ─────────────────────────────────────────────────

_TRADE_PROMPT = """\
Analyze this prediction market data and provide your assessment:

Market Question: {question}
Category: {category}
Current Probability: {probability:.1%}
Trading Volume: ${volume_k:.1f}k
Liquidity: ${liquidity_k:.1f}k
24h Price Change: {change:+.1%}

{news_block}

Based on this data analysis, provide your assessment in JSON format:
{{
  "side": "YES" or "NO",
  "confidence": 0.0 to 1.0,
  "reasoning": ["analysis point 1", "analysis point 2", "analysis point 3"]
}}

This is for data analysis purposes. Provide your assessment based on the
probability, volume, liquidity, price movement, and news data.
"""


def build_trade_prompt(market: Market, news: Sequence[NewsArticle], max_news: int = 5) -> str:
    if news:
        lines = ["Relevant News:"]
        for article in list(news)[:max_news]:
            published = article.published_at.date().isoformat() if article.published_at else "undated"
            lines.append(f"- {article.title} ({article.source or 'Unknown'}, {published})")
        news_block = "\n".join(lines)
    else:
        news_block = "No recent relevant news."

    return _TRADE_PROMPT.format(
        question=market.question,
        category=market.category,
        probability=market.current_probability,
        volume_k=market.volume_usd / 1000,
        liquidity_k=market.liquidity_usd / 1000,
        change=market.price_change_24h,
        news_block=news_block,
    )


_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_BARE_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


def parse_ai_response(content: str) -> AITradeDecision:
    """Parse vendor text into a decision.

    Rejects refusals, strips markdown fences and any prose before the JSON
    object, and validates the side.
    """
    text = (content or "").strip()
    if not text:
        raise AIParseError("empty AI response")
    if detect_refusal(text):
        raise AIRefusalError("AI refused to provide analysis")

    match = _FENCED_JSON_RE.search(text) or _BARE_JSON_RE.search(text)
    if not match:
        raise AIParseError("no JSON object found in AI response")
    raw_json = match.group(1) if match.re is _FENCED_JSON_RE else match.group(0)

    try:
        parsed = json.loads(raw_json)
    except json.JSONDecodeError as e:
        raise AIParseError(f"invalid JSON in AI response: {e}") from e
    if not isinstance(parsed, dict):
        raise AIParseError("AI response JSON is not an object")

    side_raw = str(parsed.get("side", "")).strip().upper()
    if side_raw not in ("YES", "NO"):
        raise AIParseError(f"invalid side {parsed.get('side')!r}")

    try:
        confidence = float(parsed.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5
    confidence = max(0.0, min(1.0, confidence))

    reasoning_raw = parsed.get("reasoning")
    if isinstance(reasoning_raw, list):
        reasoning = [str(r) for r in reasoning_raw if str(r).strip()]
    elif reasoning_raw:
        reasoning = [str(reasoning_raw)]
    else:
        reasoning = []
    if not reasoning:
        reasoning = ["AI analysis based on market data"]

    return AITradeDecision(side=TradeSide(side_raw), confidence=confidence, reasoning=reasoning)


def _error_body(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {"message": resp.text[:200]}
    return body if isinstance(body, dict) else {"message": str(body)[:200]}


def _raise_for_status(resp: httpx.Response, vendor: str) -> None:
    if resp.is_success:
        return
    body = _error_body(resp)
    code = str(body.get("code", ""))
    if resp.status_code == 403 and code.startswith("AccessDenied"):
        raise AIAccessDeniedError(f"{vendor} access denied - account not eligible ({code})")
    raise AINetworkError(f"{vendor} API error: {resp.status_code}", status_code=resp.status_code)


# ── Client ───────────────────────────────────────────────────────────

class AIDecisionClient:
    """Routes an agent's decision request to its vendor."""

    def __init__(
        self,
        config: AIConfig | None = None,
        cache: TTLCache | None = None,
        cache_ttl_secs: float = 600.0,
        env: Mapping[str, str] | None = None,
        http: httpx.AsyncClient | None = None,
    ):
        self._config = config or AIConfig()
        self._cache = cache if cache is not None else TTLCache(max_size_mb=10)
        self._cache_ttl = cache_ttl_secs
        self._env = env if env is not None else os.environ
        self._http = http
        self._openai_clients: dict[str, AsyncOpenAI] = {}

    def _spec(self, agent_id: str) -> VendorSpec:
        spec = VENDORS.get(agent_id)
        if spec is None:
            raise AIConfigurationError(f"no AI vendor registered for {agent_id}")
        override = self._config.vendors.get(agent_id)
        if override is None:
            return spec
        return VendorSpec(
            vendor=spec.vendor, kind=spec.kind, env_key=spec.env_key,
            model=override.model or spec.model,
            temperature=override.temperature if override.temperature is not None else spec.temperature,
            persona=spec.persona, base_url=spec.base_url,
        )

    def is_configured(self, agent_id: str) -> bool:
        spec = VENDORS.get(agent_id)
        return bool(spec and self._env.get(spec.env_key))

    async def decide(
        self, agent_id: str, market: Market, news: Sequence[NewsArticle],
    ) -> AITradeDecision:
        cache_key = f"{agent_id}:{market.id}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        spec = self._spec(agent_id)
        api_key = self._env.get(spec.env_key, "")
        if not api_key:
            raise AIConfigurationError(f"{spec.env_key} not configured")

        prompt = build_trade_prompt(market, news)
        await rate_limiter.get(spec.vendor).acquire()
        cost_tracker.record_call(spec.vendor)

        try:
            content = await asyncio.wait_for(
                self._call(spec, api_key, prompt), timeout=self._config.timeout_secs,
            )
        except asyncio.TimeoutError as e:
            raise AINetworkError(f"{spec.vendor} timed out after {self._config.timeout_secs}s") from e
        except httpx.HTTPError as e:
            raise AINetworkError(f"{spec.vendor} transport error: {e}") from e

        decision = parse_ai_response(content)
        self._cache.put(cache_key, decision, ttl_secs=self._cache_ttl)
        log.info(
            "ai_client.decision",
            agent_id=agent_id,
            market_id=market.id,
            vendor=spec.vendor,
            side=decision.side.value,
            confidence=round(decision.confidence, 3),
        )
        return decision

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
        for client in self._openai_clients.values():
            await client.close()

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._config.timeout_secs)
        return self._http

    async def _call(self, spec: VendorSpec, api_key: str, prompt: str) -> str:
        if spec.kind == "openai_compatible":
            return await self._call_openai_compatible(spec, api_key, prompt)
        if spec.kind == "anthropic":
            return await self._call_anthropic(spec, api_key, prompt)
        if spec.kind == "google":
            return await self._call_google(spec, api_key, prompt)
        if spec.kind == "qwen":
            return await self._call_qwen(spec, api_key, prompt)
        raise AIConfigurationError(f"unsupported vendor kind {spec.kind}")

    async def _call_openai_compatible(self, spec: VendorSpec, api_key: str, prompt: str) -> str:
        client = self._openai_clients.get(spec.vendor)
        if client is None:
            client = AsyncOpenAI(
                api_key=api_key, base_url=spec.base_url,
                timeout=self._config.timeout_secs, max_retries=0,
            )
            self._openai_clients[spec.vendor] = client
        try:
            resp = await client.chat.completions.create(
                model=spec.model,
                temperature=spec.temperature,
                max_tokens=self._config.max_tokens,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": spec.persona},
                    {"role": "user", "content": prompt},
                ],
            )
        except openai.PermissionDeniedError as e:
            raise AIAccessDeniedError(f"{spec.vendor} access denied") from e
        except openai.APIStatusError as e:
            raise AINetworkError(f"{spec.vendor} API error: {e.status_code}", status_code=e.status_code) from e
        except openai.APIError as e:
            raise AINetworkError(f"{spec.vendor} API error: {e}") from e

        if not resp.choices or not resp.choices[0].message.content:
            raise AIParseError(f"no response content from {spec.vendor}")
        return resp.choices[0].message.content

    async def _call_anthropic(self, spec: VendorSpec, api_key: str, prompt: str) -> str:
        import anthropic

        client = anthropic.AsyncAnthropic(
            api_key=api_key, timeout=self._config.timeout_secs, max_retries=0,
        )
        try:
            resp = await client.messages.create(
                model=spec.model,
                max_tokens=self._config.max_tokens,
                temperature=spec.temperature,
                system=spec.persona,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.PermissionDeniedError as e:
            raise AIAccessDeniedError(f"{spec.vendor} access denied") from e
        except anthropic.APIStatusError as e:
            raise AINetworkError(f"{spec.vendor} API error: {e.status_code}", status_code=e.status_code) from e
        except anthropic.APIError as e:
            raise AINetworkError(f"{spec.vendor} API error: {e}") from e
        finally:
            await client.close()

        if not resp.content or not getattr(resp.content[0], "text", ""):
            raise AIParseError(f"no response content from {spec.vendor}")
        return resp.content[0].text

    async def _call_google(self, spec: VendorSpec, api_key: str, prompt: str) -> str:
        import google.generativeai as genai
        from google.api_core import exceptions as google_exceptions

        genai.configure(api_key=api_key)
        gmodel = genai.GenerativeModel(
            spec.model,
            generation_config={
                "temperature": spec.temperature,
                "response_mime_type": "application/json",
            },
        )
        try:
            resp = await asyncio.to_thread(gmodel.generate_content, f"{spec.persona}\n\n{prompt}")
        except google_exceptions.PermissionDenied as e:
            raise AIAccessDeniedError(f"{spec.vendor} access denied") from e
        except google_exceptions.GoogleAPICallError as e:
            raise AINetworkError(f"{spec.vendor} API error: {e.code}", status_code=e.code) from e

        try:
            return resp.text
        except ValueError as e:
            # .text raises when the candidate was blocked or empty
            raise AIParseError(f"no response content from {spec.vendor}") from e

    async def _call_qwen(self, spec: VendorSpec, api_key: str, prompt: str) -> str:
        resp = await self._http_client().post(
            _QWEN_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json={
                "model": spec.model,
                "input": {
                    "messages": [
                        {"role": "system", "content": spec.persona},
                        {"role": "user", "content": prompt},
                    ],
                },
                "parameters": {"temperature": spec.temperature, "result_format": "message"},
            },
        )
        _raise_for_status(resp, spec.vendor)
        try:
            return resp.json()["output"]["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise AIParseError(f"unexpected {spec.vendor} response shape") from e
