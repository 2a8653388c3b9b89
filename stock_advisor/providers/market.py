"""Market data integration via yfinance and Alpha Vantage, plus the market-fetch stage."""

import asyncio
import zlib
from datetime import datetime
from typing import Optional, Tuple

import numpy as np
import pandas as pd
import requests
import yfinance as yf

from stock_advisor.core.fallback import call_blocking
from stock_advisor.core.indicators import (
    compute_indicators, latest, missing_readings, pct_change_latest,
)
from stock_advisor.core.logger import logger
from stock_advisor.models.datatypes import MACD, MarketSnapshot, OHLCVPoint, TechnicalIndicators
from stock_advisor.providers.base import MarketDataProvider

_ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"
_OHLCV_COLUMNS = ["Date", "Open", "High", "Low", "Close", "Volume"]

FALLBACK_SOURCE = "fallback"


class MarketDataUnavailableError(RuntimeError):
    """Raised when the provider returns no usable price history."""


# ── YFinanceProvider ──────────────────────────────────────────────────────────

class YFinanceProvider(MarketDataProvider):
    """Yahoo Finance implementation; indicators are computed locally from history."""

    name = "yfinance"
    local_indicators = True

    def __init__(self, suffix: str = "", period: str = "1y") -> None:
        """
        Args:
            suffix (str): Exchange suffix appended to tickers (e.g. ``".NS"``).
            period (str): History period requested; must cover SMA200.
        """
        self.suffix = suffix
        self.period = period

    def daily_series(self, ticker: str) -> pd.DataFrame:
        symbol = f"{ticker}{self.suffix}"
        logger.info(f"Fetching daily OHLCV for {symbol} (period={self.period})")

        hist = yf.Ticker(symbol).history(period=self.period)
        if hist.empty:
            logger.warning(f"No OHLCV data returned for {symbol}")
            return pd.DataFrame(columns=_OHLCV_COLUMNS)

        hist = hist.reset_index()
        # yfinance dates are timezone-aware; drop the tz and format
        hist["Date"] = pd.to_datetime(hist["Date"]).dt.tz_localize(None).dt.strftime("%Y-%m-%d")
        hist["Close"] = pd.to_numeric(hist["Close"], errors="coerce")
        hist["Volume"] = pd.to_numeric(hist["Volume"], errors="coerce").fillna(0).astype(int)
        return hist[_OHLCV_COLUMNS].dropna(subset=["Close"]).reset_index(drop=True)


# ── AlphaVantageProvider ──────────────────────────────────────────────────────

class AlphaVantageProvider(MarketDataProvider):
    """Alpha Vantage REST implementation (daily series + server-side indicators)."""

    name = "alpha_vantage"
    local_indicators = False

    def __init__(self, api_key: str, timeout: float = 10.0) -> None:
        self.api_key = api_key
        self.timeout = timeout

    def daily_series(self, ticker: str) -> pd.DataFrame:
        logger.info(f"Fetching TIME_SERIES_DAILY for {ticker}")
        data = self._get({"function": "TIME_SERIES_DAILY", "symbol": ticker, "outputsize": "full"})
        series = data.get("Time Series (Daily)")
        if not series:
            raise MarketDataUnavailableError(_api_message(data, "no daily time series"))

        frame = pd.DataFrame.from_dict(series, orient="index")
        frame = frame.rename(columns={
            "1. open": "Open", "2. high": "High", "3. low": "Low",
            "4. close": "Close", "5. volume": "Volume",
        })
        frame.index.name = "Date"
        frame = frame.reset_index().sort_values("Date").reset_index(drop=True)
        for column in ["Open", "High", "Low", "Close"]:
            frame[column] = pd.to_numeric(frame[column], errors="coerce")
        frame["Volume"] = pd.to_numeric(frame["Volume"], errors="coerce").fillna(0).astype(int)
        return frame[_OHLCV_COLUMNS]

    def indicator(self, ticker: str, kind: str, period: Optional[int] = None) -> pd.DataFrame:
        kind = kind.upper()
        params = {"function": kind, "symbol": ticker, "interval": "daily", "series_type": "close"}
        if period is not None and kind != "MACD":
            params["time_period"] = period
        logger.info(f"Fetching {kind}({period or ''}) for {ticker}")

        data = self._get(params)
        values = data.get(f"Technical Analysis: {kind}")
        if not values:
            raise MarketDataUnavailableError(_api_message(data, f"no {kind} data"))

        frame = pd.DataFrame.from_dict(values, orient="index").apply(pd.to_numeric, errors="coerce")
        return frame.sort_index()

    def _get(self, params: dict) -> dict:
        resp = requests.get(
            _ALPHA_VANTAGE_URL,
            params={**params, "apikey": self.api_key},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()


# ── MarketDataFetcher stage ───────────────────────────────────────────────────

class MarketDataFetcher:
    """Builds a MarketSnapshot from a provider's history and indicators.

    Args:
        provider: Configured MarketDataProvider, or None to serve generated data.
        history_window: Number of daily points kept in the snapshot.
        call_timeout: Upper bound in seconds for each provider call.
    """

    def __init__(
        self,
        provider: Optional[MarketDataProvider] = None,
        history_window: int = 90,
        call_timeout: float = 10.0,
    ) -> None:
        self.provider = provider
        self.history_window = history_window
        self.call_timeout = call_timeout

    async def fetch(self, ticker: str, as_of: datetime) -> MarketSnapshot:
        """Return the market snapshot for ``ticker``.

        Raises:
            MarketDataUnavailableError: If the provider returned no price history.
        """
        ticker = ticker.upper()
        if self.provider is None:
            logger.info(f"MARKET [{ticker}] source={FALLBACK_SOURCE} | no market provider configured")
            return fallback_snapshot(ticker, as_of, self.history_window)

        history = await call_blocking(self.provider.daily_series, ticker, timeout=self.call_timeout)
        if history is None or history.empty:
            raise MarketDataUnavailableError(f"empty price history for {ticker}")

        if self.provider.local_indicators:
            indicators = compute_indicators(history["Close"])
            degraded = tuple(_default_used(name) for name in missing_readings(history["Close"]))
        else:
            indicators, degraded = await self._remote_indicators(ticker, history)

        snapshot = snapshot_from_history(
            ticker, history, indicators, as_of, self.history_window, self.provider.name, degraded,
        )
        logger.info(
            f"MARKET [{ticker}] source={self.provider.name} | price={snapshot.latest_price:.2f} "
            f"SMA50={indicators.sma50:.2f} SMA200={indicators.sma200:.2f} RSI14={indicators.rsi14:.1f}"
        )
        if degraded:
            logger.warning(f"MARKET [{ticker}] COVERAGE_GAP | {'; '.join(degraded)}")
        return snapshot

    async def _remote_indicators(
        self, ticker: str, history: pd.DataFrame,
    ) -> Tuple[TechnicalIndicators, Tuple[str, ...]]:
        """Fetch indicators concurrently; any failed one is computed from history instead.

        Returns the indicators and a note per reading the provider did not serve.
        """
        local = compute_indicators(history["Close"])
        short = set(missing_readings(history["Close"]))
        sma50, sma200, rsi14, macd = await asyncio.gather(
            self._remote_latest(ticker, "SMA", 50),
            self._remote_latest(ticker, "SMA", 200),
            self._remote_latest(ticker, "RSI", 14),
            self._remote_macd(ticker),
        )
        remote = {"SMA50": sma50, "SMA200": sma200, "RSI14": rsi14, "MACD": macd}
        degraded = tuple(
            _default_used(name) if name in short else f"{name} computed from price history"
            for name, value in remote.items()
            if value is None
        )
        indicators = TechnicalIndicators(
            sma50=sma50 if sma50 is not None else local.sma50,
            sma200=sma200 if sma200 is not None else local.sma200,
            rsi14=rsi14 if rsi14 is not None else local.rsi14,
            macd=macd if macd is not None else local.macd,
        )
        return indicators, degraded

    async def _remote_latest(self, ticker: str, kind: str, period: int) -> Optional[float]:
        try:
            frame = await call_blocking(self.provider.indicator, ticker, kind, period, timeout=self.call_timeout)
            value = latest(frame[kind])
            return round(value, 4) if value is not None else None
        except asyncio.TimeoutError:
            logger.warning(f"MarketDataFetcher: TIMEOUT fetching {kind}{period} for {ticker}, computing locally")
        except Exception as exc:
            logger.warning(f"MarketDataFetcher: {kind}{period} unavailable for {ticker} ({exc}), computing locally")
        return None

    async def _remote_macd(self, ticker: str) -> Optional[MACD]:
        try:
            frame = await call_blocking(self.provider.indicator, ticker, "MACD", None, timeout=self.call_timeout)
            row = frame.dropna().iloc[-1]
            return MACD(
                macd=round(float(row["MACD"]), 4),
                signal=round(float(row["MACD_Signal"]), 4),
                hist=round(float(row["MACD_Hist"]), 4),
            )
        except asyncio.TimeoutError:
            logger.warning(f"MarketDataFetcher: TIMEOUT fetching MACD for {ticker}, computing locally")
        except Exception as exc:
            logger.warning(f"MarketDataFetcher: MACD unavailable for {ticker} ({exc}), computing locally")
        return None


# ── helpers ───────────────────────────────────────────────────────────────────

def snapshot_from_history(
    ticker: str,
    history: pd.DataFrame,
    indicators: TechnicalIndicators,
    as_of: datetime,
    window: int,
    source: str,
    degraded: Tuple[str, ...] = (),
) -> MarketSnapshot:
    """Assemble a snapshot; history is bounded to ``window`` points, most recent first."""
    recent = history.tail(window).iloc[::-1]
    points = tuple(
        OHLCVPoint(
            date=str(row.Date),
            open=round(float(row.Open), 4),
            high=round(float(row.High), 4),
            low=round(float(row.Low), 4),
            close=round(float(row.Close), 4),
            volume=int(row.Volume),
        )
        for row in recent.itertuples(index=False)
    )
    return MarketSnapshot(
        ticker=ticker,
        fetched_at=as_of,
        latest_price=round(float(history["Close"].iloc[-1]), 4),
        change_percent=pct_change_latest(history["Close"]),
        history=points,
        indicators=indicators,
        source=source,
        degraded_indicators=degraded,
    )


def generate_fallback_history(ticker: str, as_of: datetime, days: int = 260) -> pd.DataFrame:
    """Deterministic random-walk OHLCV history for ``ticker`` ending at ``as_of``.

    The generator is seeded from the ticker so repeated runs see identical prices.
    """
    rng = np.random.default_rng(zlib.crc32(ticker.upper().encode("utf-8")))
    base_price = 150.0 + rng.random() * 100.0

    steps = np.arange(days)
    cyclical = np.sin((days - steps) / 10.0) * 0.002
    volatility = (rng.random(days) - 0.5) * 0.03
    closes = base_price * np.cumprod(1.0 + cyclical + volatility)
    closes = np.maximum(closes, base_price * 0.5)

    opens = closes * (0.995 + rng.random(days) * 0.01)
    highs = np.maximum(opens, closes) * (1.001 + rng.random(days) * 0.01)
    lows = np.minimum(opens, closes) * (0.999 - rng.random(days) * 0.01)
    volumes = rng.integers(500_000, 2_500_000, size=days)

    dates = pd.bdate_range(end=pd.Timestamp(as_of.date()), periods=days)
    return pd.DataFrame({
        "Date": dates.strftime("%Y-%m-%d"),
        "Open": opens.round(2),
        "High": highs.round(2),
        "Low": lows.round(2),
        "Close": closes.round(2),
        "Volume": volumes.astype(int),
    })


def fallback_snapshot(ticker: str, as_of: datetime, window: int = 90) -> MarketSnapshot:
    """Snapshot built from generated history, with indicators computed from it."""
    history = generate_fallback_history(ticker, as_of)
    indicators = compute_indicators(history["Close"])
    return snapshot_from_history(ticker.upper(), history, indicators, as_of, window, FALLBACK_SOURCE)


def _default_used(name: str) -> str:
    return f"{name} unavailable, default used"


def _api_message(data: dict, default: str) -> str:
    """Alpha Vantage reports throttling/errors in-band under these keys."""
    return data.get("Note") or data.get("Information") or data.get("Error Message") or default
