"""Abstract base classes for external collaborators."""

import pandas as pd
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from stock_advisor.models.datatypes import FinancialHealthPrior, SentimentLabel


class NewsSource(ABC):
    """Abstract interface for searching news articles."""

    name: str = "news"

    @abstractmethod
    def search(self, query: str) -> List[Dict[str, Any]]:
        """
        Run one search query.

        Args:
            query (str): Free-text query, e.g. ``"AAPL earnings"``.

        Returns:
            List[Dict[str, Any]]: Raw hits with keys ``title``, ``url``,
            ``publishedAt`` (datetime or string), ``source`` and ``snippet``.
        """
        pass


class SentimentClassifier(ABC):
    """Abstract interface for classifying financial text sentiment."""

    name: str = "classifier"

    @abstractmethod
    def classify(self, text: str) -> Tuple[SentimentLabel, float]:
        """
        Classify the sentiment of a given text.

        Args:
            text (str): The text to analyze (title + snippet).

        Returns:
            Tuple[SentimentLabel, float]: The label and its confidence in [0, 1].
        """
        pass


class MarketDataProvider(ABC):
    """Abstract interface for daily price history and technical indicators."""

    name: str = "market"
    # When True, indicators are computed from daily_series and indicator() is never called
    local_indicators: bool = True

    @abstractmethod
    def daily_series(self, ticker: str) -> pd.DataFrame:
        """
        Fetch daily OHLCV history.

        Args:
            ticker (str): The ticker symbol.

        Returns:
            pd.DataFrame: Columns Date, Open, High, Low, Close, Volume ordered
            oldest → newest.
        """
        pass

    def indicator(self, ticker: str, kind: str, period: Optional[int] = None) -> pd.DataFrame:
        """
        Fetch a technical indicator time series (remote providers only).

        Args:
            ticker (str): The ticker symbol.
            kind (str): ``"SMA"``, ``"RSI"`` or ``"MACD"``.
            period (Optional[int]): Look-back period (unused for MACD).

        Returns:
            pd.DataFrame: Indexed by date oldest → newest. SMA/RSI frames carry a
            single column named after ``kind``; MACD carries ``MACD``,
            ``MACD_Signal`` and ``MACD_Hist``.
        """
        raise NotImplementedError(f"{self.name} computes indicators from price history")


class GenerativeEndpoint(ABC):
    """Abstract interface for a generative text/reasoning model."""

    name: str = "llm"

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """Return the model's raw text reply, expected to contain one JSON object."""
        pass


class FinancialHealthSource(ABC):
    """Abstract interface to the upstream financial-health assessment engine."""

    @abstractmethod
    def latest_assessment(self, user_id: str) -> Optional[FinancialHealthPrior]:
        """Return the user's most recent assessment, or None when none exists."""
        pass
