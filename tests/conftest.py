"""Shared fixtures for the stock advisor test suite.

All fixtures are network-free: news comes from in-memory hits, market data
from a synthetic close series and the generative endpoint from AsyncMock.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import numpy as np
import pandas as pd
import pytest

from stock_advisor.core.indicators import macd_frame, rsi_series, sma_series
from stock_advisor.models.datatypes import (
    MACD, AnalysisRequest, MarketSnapshot, NewsArticle, RiskTolerance,
    TechnicalIndicators, TimeHorizon, UserProfile,
)
from stock_advisor.providers.base import MarketDataProvider, NewsSource
from stock_advisor.providers.market import MarketDataUnavailableError

AS_OF = datetime(2026, 3, 2, 14, 30, tzinfo=timezone.utc)


@pytest.fixture
def as_of() -> datetime:
    return AS_OF


@pytest.fixture
def profile() -> UserProfile:
    return UserProfile(
        monthly_income=8000.0,
        monthly_expenses=5000.0,
        savings=40000.0,
        risk_tolerance=RiskTolerance.MEDIUM,
        time_horizon=TimeHorizon.YEARS,
        current_portfolio=(("MSFT", 10.0),),
    )


@pytest.fixture
def request_payload() -> Dict[str, Any]:
    return {
        "ticker": "aapl",
        "companyName": "Apple Inc.",
        "userId": "user-001",
        "userProfile": {
            "monthlyIncome": 8000,
            "monthlyExpenses": 5000,
            "savings": 40000,
            "riskTolerance": "medium",
            "timeHorizon": "years",
            "currentPortfolio": {"MSFT": 10},
        },
    }


@pytest.fixture
def analysis_request(request_payload) -> AnalysisRequest:
    return AnalysisRequest.from_dict(request_payload)


def make_article(index: int, title: str, days_old: float = 1.0, snippet: str = "") -> NewsArticle:
    return NewsArticle(
        id=f"n{index}",
        title=title,
        url=f"https://www.reuters.com/markets/article-{index}",
        published_at=AS_OF - timedelta(days=days_old),
        source="reuters",
        snippet=snippet,
    )


@pytest.fixture
def articles() -> List[NewsArticle]:
    return [
        make_article(1, "Apple beats earnings estimates on strong iPhone growth", 1),
        make_article(2, "Apple shares surge after record profit", 2),
        make_article(3, "Regulators raise concern over App Store fees", 4),
        make_article(4, "Apple to hold developer conference in June", 6),
        make_article(5, "Analysts see gain ahead for Apple services", 9),
    ]


def close_series(days: int = 260, start: float = 100.0, step: float = 0.5) -> pd.Series:
    """Steadily rising close prices with a small deterministic wiggle."""
    wiggle = np.where(np.arange(days) % 3 == 0, -0.2, 0.1)
    return pd.Series(start + np.arange(days) * step + wiggle)


def history_frame(days: int = 260, start: float = 100.0, step: float = 0.5) -> pd.DataFrame:
    close = close_series(days, start, step)
    dates = pd.bdate_range(end="2026-03-02", periods=days).strftime("%Y-%m-%d")
    return pd.DataFrame({
        "Date": dates,
        "Open": close - 0.3,
        "High": close + 0.8,
        "Low": close - 0.9,
        "Close": close,
        "Volume": np.full(days, 1_000_000, dtype=int),
    })


@pytest.fixture
def history() -> pd.DataFrame:
    return history_frame()


def make_snapshot(
    latest_price: float = 115.0,
    sma50: float = 110.0,
    sma200: float = 100.0,
    rsi14: float = 55.0,
    macd_hist: float = 0.4,
    source: str = "yfinance",
) -> MarketSnapshot:
    return MarketSnapshot(
        ticker="AAPL",
        fetched_at=AS_OF,
        latest_price=latest_price,
        change_percent=0.5,
        history=(),
        indicators=TechnicalIndicators(
            sma50=sma50, sma200=sma200, rsi14=rsi14,
            macd=MACD(macd=1.0, signal=1.0 - macd_hist, hist=macd_hist),
        ),
        source=source,
    )


class StaticNewsSource(NewsSource):
    """Serves canned hits per query; queries listed in ``failing`` raise."""

    name = "static"

    def __init__(self, hits: Dict[str, List[Dict[str, Any]]] = None, failing=(), default=None):
        self.hits = hits or {}
        self.failing = set(failing)
        self.default = default or []
        self.calls: List[str] = []

    def search(self, query: str) -> List[Dict[str, Any]]:
        self.calls.append(query)
        if self.failing == {"*"} or query in self.failing:
            raise ConnectionError(f"source down for {query}")
        return list(self.hits.get(query, self.default))


class FrameMarketProvider(MarketDataProvider):
    """Returns a fixed history frame; optionally fails every call."""

    name = "frame"
    local_indicators = True

    def __init__(self, frame: pd.DataFrame = None, fail: bool = False):
        self.frame = frame if frame is not None else history_frame()
        self.fail = fail

    def daily_series(self, ticker: str) -> pd.DataFrame:
        if self.fail:
            raise ConnectionError("market provider unreachable")
        return self.frame.copy()


class RemoteProvider(FrameMarketProvider):
    """Serves history and indicators from a frame; readings named in ``failing`` are throttled."""

    name = "remote"
    local_indicators = False

    def __init__(self, frame: pd.DataFrame = None, failing=("RSI14",)):
        super().__init__(frame)
        self.failing = set(failing)

    def indicator(self, ticker, kind, period=None):
        if f"{kind}{period or ''}" in self.failing:
            raise MarketDataUnavailableError("Our standard API call frequency is 5 calls per minute.")
        close = self.frame["Close"]
        if kind == "MACD":
            return macd_frame(close).dropna()
        series = sma_series(close, period) if kind == "SMA" else rsi_series(close, period)
        return series.to_frame(kind).dropna()
