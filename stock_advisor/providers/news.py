"""News sources and the news-fetch stage.

Flow per ticker:
  1. Build query variants (earnings, news, regulatory, lawsuit, ...)
  2. Run every variant against the configured NewsSource concurrently,
     each bounded by its own timeout; a failed variant is skipped
  3. Deduplicate hits by url, sort newest first, keep the top N
  4. When every variant failed the stage raises NewsUnavailableError so the
     orchestrator can substitute its fallback

With no source configured the stage serves deterministic sample articles.
"""

import asyncio
import re
import urllib.parse
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import feedparser
import pandas as pd
import requests

from stock_advisor.core.fallback import call_blocking
from stock_advisor.core.logger import logger
from stock_advisor.core.news_utils import build_search_queries, dedupe_by_url, source_from_url
from stock_advisor.models.datatypes import NewsArticle, NewsBundle
from stock_advisor.providers.base import NewsSource

_SERPER_URL = "https://google.serper.dev/news"
_GOOGLE_RSS_BASE = "https://news.google.com/rss/search"
_RELATIVE_DATE = re.compile(r"(\d+)\s+(minute|hour|day|week|month)s?\s+ago", re.IGNORECASE)
_RELATIVE_UNITS = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
}

SAMPLE_SOURCE = "mock"


class NewsUnavailableError(RuntimeError):
    """Raised when every query variant failed at the source."""


# ── SerperNewsSource ──────────────────────────────────────────────────────────

class SerperNewsSource(NewsSource):
    """Serper.dev Google News search API (``X-API-KEY`` header auth)."""

    name = "serper"

    def __init__(self, api_key: str, lookback: str = "qdr:w", timeout: float = 15.0) -> None:
        """Args:
            api_key: Serper API key.
            lookback: Google ``tbs`` time filter (``qdr:w`` = past week).
            timeout: Per-request HTTP timeout in seconds.
        """
        self.api_key = api_key
        self.lookback = lookback
        self.timeout = timeout

    def search(self, query: str) -> List[Dict[str, Any]]:
        logger.info(f"SerperNewsSource: searching q={query!r}")
        resp = requests.post(
            _SERPER_URL,
            json={"q": query, "num": 10, "tbs": self.lookback},
            headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        results = data.get("news") or data.get("organic") or []

        hits = []
        for result in results:
            title = (result.get("title") or "").strip()
            link = result.get("link") or ""
            if not title or not link:
                continue
            hits.append({
                "title": title,
                "url": link,
                "publishedAt": result.get("date") or "",
                "source": result.get("source") or source_from_url(link),
                "snippet": result.get("snippet") or "",
            })
        return hits


# ── GoogleNewsRSSSource ───────────────────────────────────────────────────────

class GoogleNewsRSSSource(NewsSource):
    """Google News RSS search: keyless, ``when:7d`` filters server-side."""

    name = "google_rss"

    def __init__(self, window: str = "7d", locale: str = "hl=en-US&gl=US&ceid=US:en") -> None:
        self.window = window
        self.locale = locale

    def search(self, query: str) -> List[Dict[str, Any]]:
        encoded = urllib.parse.quote(f"{query} when:{self.window}")
        url = f"{_GOOGLE_RSS_BASE}?q={encoded}&{self.locale}"
        logger.info(f"GoogleNewsRSSSource: fetching q={query!r}")

        feed = feedparser.parse(url)
        if feed.bozo and not feed.entries:
            raise RuntimeError(f"RSS fetch failed: {getattr(feed, 'bozo_exception', 'unknown error')}")
        if feed.bozo:
            logger.warning(
                f"GoogleNewsRSSSource: RSS parse warning for q={query!r}: "
                f"{getattr(feed, 'bozo_exception', '')}"
            )

        hits = []
        for entry in feed.entries:
            title = getattr(entry, "title", "").strip()
            link = getattr(entry, "link", "")
            if not title or not link:
                continue
            pub_parsed = getattr(entry, "published_parsed", None)
            published = (
                datetime(*pub_parsed[:6], tzinfo=timezone.utc) if pub_parsed else ""
            )
            source_raw = getattr(entry, "source", {})
            source = (
                source_raw.get("title", "Google News")
                if isinstance(source_raw, dict)
                else str(source_raw) or "Google News"
            )
            hits.append({
                "title": title,
                "url": link,
                "publishedAt": published,
                "source": source,
                "snippet": _strip_html(getattr(entry, "summary", "")),
            })
        return hits


# ── NewsFetcher stage ─────────────────────────────────────────────────────────

class NewsFetcher:
    """Fetches, deduplicates and ranks recent articles for one ticker.

    Args:
        source: Configured NewsSource, or None to serve sample articles.
        max_articles: Number of most recent articles kept.
        query_timeout: Upper bound in seconds for each query variant.
    """

    def __init__(
        self,
        source: Optional[NewsSource] = None,
        max_articles: int = 10,
        query_timeout: float = 15.0,
    ) -> None:
        self.source = source
        self.max_articles = max_articles
        self.query_timeout = query_timeout

    async def fetch(self, ticker: str, company_name: str, as_of: datetime) -> NewsBundle:
        """Return the ranked article bundle for ``ticker``.

        Raises:
            NewsUnavailableError: If the source failed for every query variant.
        """
        ticker = ticker.upper()
        queries = build_search_queries(ticker, company_name)

        if self.source is None:
            logger.info(f"NEWS [{ticker}] source=mock | no news source configured")
            return NewsBundle(
                ticker=ticker,
                company_name=company_name,
                query=", ".join(queries),
                articles=sample_articles(ticker, company_name, as_of),
                fetched_at=as_of,
                source=SAMPLE_SOURCE,
            )

        batches = await asyncio.gather(*(self._search_one(q) for q in queries))
        failed = sum(1 for batch in batches if batch is None)
        if failed == len(queries):
            raise NewsUnavailableError(f"all {failed} query variants failed for {ticker}")

        unique = dedupe_by_url(batch for batch in batches if batch)
        normalized = [
            (parse_published_at(hit.get("publishedAt"), as_of), hit) for hit in unique
        ]
        normalized.sort(key=lambda pair: pair[0], reverse=True)

        articles = tuple(
            NewsArticle(
                id=f"n{index}",
                title=hit["title"].strip(),
                url=hit["url"],
                published_at=published,
                source=hit.get("source") or source_from_url(hit["url"]),
                snippet=(hit.get("snippet") or "").strip(),
            )
            for index, (published, hit) in enumerate(normalized[: self.max_articles], start=1)
        )

        if not articles:
            logger.warning(f"NEWS [{ticker}] source={self.source.name} | reason=COVERAGE_GAP")
        logger.info(
            f"NEWS [{ticker}] source={self.source.name} | {len(unique)} unique hits, "
            f"kept {len(articles)}, {failed}/{len(queries)} queries failed"
        )
        return NewsBundle(
            ticker=ticker,
            company_name=company_name,
            query=", ".join(queries),
            articles=articles,
            fetched_at=as_of,
            source=self.source.name,
        )

    async def _search_one(self, query: str) -> Optional[List[Dict[str, Any]]]:
        """Run one variant; None marks a failed query (as opposed to zero hits)."""
        try:
            return await call_blocking(self.source.search, query, timeout=self.query_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"NewsFetcher: TIMEOUT for q={query!r}")
        except Exception as exc:
            logger.error(f"NewsFetcher: INFRA_FAILURE for q={query!r}: {exc}")
        return None


# ── helpers ───────────────────────────────────────────────────────────────────

def parse_published_at(value: Any, as_of: datetime) -> datetime:
    """Normalize a publication time to an aware UTC datetime.

    Accepts datetimes, relative strings (``"3 hours ago"``) and anything
    ``pandas.to_datetime`` understands. Unparsable values map to ``as_of``.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    text = str(value or "").strip()
    if not text:
        return as_of

    match = _RELATIVE_DATE.search(text)
    if match:
        return as_of - int(match.group(1)) * _RELATIVE_UNITS[match.group(2).lower()]

    parsed = pd.to_datetime(text, utc=True, errors="coerce")
    if pd.isna(parsed):
        logger.debug(f"parse_published_at: unparsable {text!r}, using run time")
        return as_of
    return parsed.to_pydatetime()


def sample_articles(ticker: str, company_name: str, as_of: datetime) -> tuple:
    """Deterministic sample articles dated relative to ``as_of``."""
    slug = ticker.lower()
    samples = [
        (2, f"{company_name} Reports Strong Quarterly Earnings", "earnings", "Financial Times",
         f"{company_name} exceeded analyst expectations with robust quarterly performance."),
        (3, f"{ticker} Stock Analysis: Technical Indicators Show Bullish Trend", "technical", "MarketWatch",
         f"Technical analysis suggests positive momentum for {ticker} stock."),
        (5, f"{company_name} Announces New Strategic Partnership", "partnership", "Reuters",
         f"{company_name} has entered into a strategic partnership to expand market reach."),
        (7, f"Analyst Upgrades {ticker} to Buy Rating", "upgrade", "Bloomberg",
         f"Leading analysts have upgraded {ticker} stock to a buy rating."),
        (10, f"{company_name} Faces Regulatory Challenges in Key Markets", "regulatory", "Wall Street Journal",
         f"{company_name} encounters regulatory headwinds in several important markets."),
    ]
    return tuple(
        NewsArticle(
            id=f"mock_{index}",
            title=title,
            url=f"https://example.com/news/{slug}-{topic}",
            published_at=as_of - timedelta(days=days),
            source=source,
            snippet=snippet,
        )
        for index, (days, title, topic, source, snippet) in enumerate(samples, start=1)
    )


def _strip_html(text: str) -> str:
    return re.sub(r"<[^>]+>", " ", text or "").replace("&nbsp;", " ").strip()
