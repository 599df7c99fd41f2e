"""News collaborator: NewsAPI ``/v2/everything`` with an in-process cache.

``NewsFeed.fetch_latest_news`` never raises.  Articles are de-duplicated
by URL and by normalised title; without ``NEWS_API_KEY`` the feed is
simply empty.
"""

from __future__ import annotations

import datetime as dt
import hashlib
import os
import re
import time
from typing import Any, Mapping

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential

from polyagents.agents.domain import NewsArticle
from polyagents.config import NewsConfig
from polyagents.connectors.rate_limiter import rate_limiter
from polyagents.observability.logger import get_logger
from polyagents.observability.metrics import metrics
from polyagents.storage.cache import Clock, TTLCache

log = get_logger(__name__)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def _normalise_title(title: str) -> str:
    return _NON_ALNUM_RE.sub(" ", title.lower()).strip()


def _parse_datetime(raw: Any) -> dt.datetime | None:
    if not raw:
        return None
    try:
        return dt.datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None


def parse_article(raw: dict[str, Any]) -> NewsArticle:
    """Convert a raw NewsAPI article into a ``NewsArticle``."""
    url = raw.get("url") or None
    title = (raw.get("title") or "").strip()
    source = raw.get("source")
    source_name = source.get("name", "") if isinstance(source, dict) else str(source or "")
    article_id = hashlib.sha256((url or title).encode("utf-8")).hexdigest()[:16]
    return NewsArticle(
        id=article_id,
        title=title,
        description=raw.get("description") or None,
        source=source_name,
        published_at=_parse_datetime(raw.get("publishedAt")),
        url=url,
    )


def dedupe_articles(articles: list[NewsArticle]) -> list[NewsArticle]:
    """Drop repeats by URL or normalised title, keeping first occurrence."""
    seen_urls: set[str] = set()
    seen_titles: set[str] = set()
    unique: list[NewsArticle] = []
    for article in articles:
        title_key = _normalise_title(article.title)
        if not title_key:
            continue
        if article.url and article.url in seen_urls:
            continue
        if title_key in seen_titles:
            continue
        if article.url:
            seen_urls.add(article.url)
        seen_titles.add(title_key)
        unique.append(article)
    return unique


class NewsAPIClient:
    """Async client for NewsAPI."""

    def __init__(self, api_key: str, config: NewsConfig | None = None, timeout: float = 15.0):
        self._key = api_key
        self._config = config or NewsConfig()
        self._client = httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(min=1, max=10))
    async def _get(self, params: dict[str, Any]) -> Any:
        await rate_limiter.get("news").acquire()
        resp = await self._client.get(
            self._config.base_url, params=params, headers={"X-Api-Key": self._key},
        )
        resp.raise_for_status()
        return resp.json()

    async def search(self, now: dt.datetime) -> list[NewsArticle]:
        since = now - dt.timedelta(days=self._config.lookback_days)
        data = await self._get({
            "q": self._config.query,
            "language": "en",
            "sortBy": "publishedAt",
            "pageSize": self._config.page_size,
            "from": since.strftime("%Y-%m-%dT%H:%M:%S"),
        })
        rows = data.get("articles", []) if isinstance(data, dict) else []
        return [parse_article(r) for r in rows if isinstance(r, dict)]


class NewsFeed:
    """News collaborator: cached, de-duplicated, never-raising."""

    _CACHE_KEY = "news:latest"

    def __init__(
        self,
        config: NewsConfig | None = None,
        ttl_secs: float = 300.0,
        client: NewsAPIClient | None = None,
        env: Mapping[str, str] | None = None,
        clock: Clock = time.time,
    ):
        self._config = config or NewsConfig()
        self._ttl = ttl_secs
        self._client = client
        self._env = env if env is not None else os.environ
        self._clock = clock
        self._cache = TTLCache(max_size_mb=10, clock=clock)

    def _news_client(self) -> NewsAPIClient | None:
        if self._client is None:
            key = self._env.get("NEWS_API_KEY", "")
            if not key:
                return None
            self._client = NewsAPIClient(key, self._config)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    async def fetch_latest_news(self) -> list[NewsArticle]:
        cached = self._cache.get(self._CACHE_KEY)
        if cached is not None:
            return cached

        client = self._news_client()
        if client is None:
            log.debug("news.not_configured")
            return []

        now = dt.datetime.fromtimestamp(self._clock(), tz=dt.timezone.utc)
        try:
            articles = dedupe_articles(await client.search(now))
        except Exception as e:
            stale = self._cache.get_stale(self._CACHE_KEY)
            metrics.incr("news.fetch_failed")
            log.warning("news.fetch_failed", error=str(e)[:200], serving_stale=stale is not None)
            return list(stale) if stale is not None else []

        self._cache.put(self._CACHE_KEY, articles, ttl_secs=self._ttl)
        log.info("news.fetched", count=len(articles))
        return articles
