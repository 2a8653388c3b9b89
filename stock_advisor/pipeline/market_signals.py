"""Market signal extraction: price vs. moving averages and momentum readings."""

import math
from typing import Any

from stock_advisor.models.datatypes import MACD, MarketSignals, MarketSnapshot, Trend

RSI_OVERBOUGHT = 70.0
RSI_OVERSOLD = 30.0


def classify_trend(latest_price: float, sma50: float, sma200: float) -> Trend:
    """``up`` iff SMA50 > SMA200 and price > SMA50; ``down`` iff both reversed; else ``flat``."""
    if sma50 > sma200 and latest_price > sma50:
        return Trend.UP
    if sma50 < sma200 and latest_price < sma50:
        return Trend.DOWN
    return Trend.FLAT


def interpret_rsi(rsi14: float) -> str:
    if rsi14 > RSI_OVERBOUGHT:
        return "overbought"
    if rsi14 < RSI_OVERSOLD:
        return "oversold"
    return "neutral"


def interpret_sma50(latest_price: float, sma50: float) -> str:
    return "price above SMA50" if latest_price > sma50 else "price below SMA50"


def interpret_macd(macd: MACD) -> str:
    if macd.hist > 0:
        return "bullish momentum (MACD above signal)"
    if macd.hist < 0:
        return "bearish momentum (MACD below signal)"
    return "no momentum signal"


class MarketSignalExtractor:
    """Pure reduction of a MarketSnapshot to the signal bundle used for synthesis.

    Missing or non-numeric readings are treated as zero.
    """

    def extract(self, snapshot: MarketSnapshot) -> MarketSignals:
        indicators = snapshot.indicators
        price = _as_float(snapshot.latest_price)
        sma50 = _as_float(getattr(indicators, "sma50", None))
        sma200 = _as_float(getattr(indicators, "sma200", None))
        rsi14 = _as_float(getattr(indicators, "rsi14", None))
        return MarketSignals(
            latest_price=price,
            sma50=sma50,
            sma200=sma200,
            rsi14=rsi14,
            trend=classify_trend(price, sma50, sma200),
        )


def _as_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0
