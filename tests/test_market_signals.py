"""Tests for trend classification and indicator interpretation."""

import pytest

from stock_advisor.models.datatypes import MACD, Trend
from stock_advisor.pipeline.market_signals import (
    MarketSignalExtractor, classify_trend, interpret_macd, interpret_rsi, interpret_sma50,
)

from conftest import make_snapshot


class TestClassifyTrend:
    def test_up(self):
        assert classify_trend(115, 110, 100) is Trend.UP

    def test_down(self):
        assert classify_trend(85, 90, 100) is Trend.DOWN

    def test_flat_when_equal(self):
        assert classify_trend(100, 100, 100) is Trend.FLAT

    def test_flat_when_price_below_rising_averages(self):
        assert classify_trend(105, 110, 100) is Trend.FLAT

    def test_flat_when_price_above_falling_averages(self):
        assert classify_trend(95, 90, 100) is Trend.FLAT


class TestInterpretations:
    @pytest.mark.parametrize("rsi, expected", [
        (75.0, "overbought"), (70.0, "neutral"), (50.0, "neutral"), (30.0, "neutral"), (25.0, "oversold"),
    ])
    def test_rsi_bands(self, rsi, expected):
        assert interpret_rsi(rsi) == expected

    def test_sma50(self):
        assert interpret_sma50(120, 110) == "price above SMA50"
        assert interpret_sma50(100, 110) == "price below SMA50"

    def test_macd(self):
        assert interpret_macd(MACD(hist=0.3)).startswith("bullish")
        assert interpret_macd(MACD(hist=-0.3)).startswith("bearish")
        assert interpret_macd(MACD()) == "no momentum signal"


class TestMarketSignalExtractor:
    def test_extracts_signals(self):
        signals = MarketSignalExtractor().extract(make_snapshot(115, 110, 100, 62.5))
        assert signals.latest_price == 115
        assert signals.sma50 == 110
        assert signals.sma200 == 100
        assert signals.rsi14 == 62.5
        assert signals.trend is Trend.UP

    def test_malformed_readings_become_zero(self):
        snapshot = make_snapshot(latest_price=float("nan"), sma50=None, sma200="n/a", rsi14=float("inf"))
        signals = MarketSignalExtractor().extract(snapshot)
        assert (signals.latest_price, signals.sma50, signals.sma200, signals.rsi14) == (0.0, 0.0, 0.0, 0.0)
        assert signals.trend is Trend.FLAT
