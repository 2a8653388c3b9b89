"""Technical indicator calculations on a pandas close-price series.

Series functions take closes ordered oldest → newest and return a series (or
frame) aligned to the input index. ``compute_indicators`` reduces them to the
latest readings used by the rest of the pipeline.
"""

from typing import Optional, Tuple

import pandas as pd

from stock_advisor.models.datatypes import MACD, TechnicalIndicators

# Defaults when a reading cannot be computed (too little history)
MISSING_SMA = 0.0
MISSING_RSI = 50.0


def _clean(close: pd.Series) -> pd.Series:
    return pd.to_numeric(close, errors="coerce").dropna()


def sma_series(close: pd.Series, period: int) -> pd.Series:
    """Simple moving average of the trailing ``period`` closes."""
    return _clean(close).rolling(window=period).mean()


def rsi_series(close: pd.Series, period: int = 14) -> pd.Series:
    """Wilder's Relative Strength Index in [0, 100]."""
    close = _clean(close)
    delta = close.diff()
    gain = delta.clip(lower=0.0)
    loss = -delta.clip(upper=0.0)

    # Wilder smoothing == EMA with alpha = 1/period
    avg_gain = gain.ewm(alpha=1.0 / period, min_periods=period, adjust=False).mean()
    avg_loss = loss.ewm(alpha=1.0 / period, min_periods=period, adjust=False).mean()

    rs = avg_gain / avg_loss
    rsi = 100.0 - 100.0 / (1.0 + rs)
    # Flat windows: no losses → 100 when rising, 50 when completely flat
    rsi = rsi.where(avg_loss != 0, 100.0)
    rsi = rsi.where((avg_loss != 0) | (avg_gain != 0), 50.0)
    return rsi.where(avg_gain.notna())


def macd_frame(close: pd.Series, fast: int = 12, slow: int = 26, signal: int = 9) -> pd.DataFrame:
    """MACD line, signal line and histogram (Alpha Vantage column names)."""
    close = _clean(close)
    macd_line = close.ewm(span=fast, adjust=False).mean() - close.ewm(span=slow, adjust=False).mean()
    signal_line = macd_line.ewm(span=signal, adjust=False).mean()
    frame = pd.DataFrame({
        "MACD": macd_line,
        "MACD_Signal": signal_line,
        "MACD_Hist": macd_line - signal_line,
    })
    # Not meaningful until both EMAs and the signal line have warmed up
    frame.iloc[: max(0, slow + signal - 1)] = float("nan")
    return frame


def latest(series: pd.Series) -> Optional[float]:
    """Last non-null value of ``series`` as a float, or None."""
    series = pd.to_numeric(series, errors="coerce").dropna()
    if series.empty:
        return None
    return float(series.iloc[-1])


def pct_change_latest(close: pd.Series) -> float:
    """Percent change of the latest close versus the previous close (0.0 if undefined)."""
    close = _clean(close)
    if len(close) < 2:
        return 0.0
    previous = float(close.iloc[-2])
    if previous <= 0:
        return 0.0
    return round((float(close.iloc[-1]) - previous) / previous * 100.0, 4)


def compute_indicators(close: pd.Series) -> TechnicalIndicators:
    """SMA50, SMA200, RSI14 and MACD(12, 26, 9) for the latest close."""
    sma50 = latest(sma_series(close, 50))
    sma200 = latest(sma_series(close, 200))
    rsi14 = latest(rsi_series(close, 14))
    macd = macd_frame(close).dropna()

    return TechnicalIndicators(
        sma50=round(sma50, 4) if sma50 is not None else MISSING_SMA,
        sma200=round(sma200, 4) if sma200 is not None else MISSING_SMA,
        rsi14=round(rsi14, 2) if rsi14 is not None else MISSING_RSI,
        macd=(
            MACD(
                macd=round(float(macd["MACD"].iloc[-1]), 4),
                signal=round(float(macd["MACD_Signal"].iloc[-1]), 4),
                hist=round(float(macd["MACD_Hist"].iloc[-1]), 4),
            )
            if not macd.empty else MACD()
        ),
    )


def missing_readings(close: pd.Series) -> Tuple[str, ...]:
    """Names of the readings ``compute_indicators`` cannot derive from ``close``."""
    missing = []
    if latest(sma_series(close, 50)) is None:
        missing.append("SMA50")
    if latest(sma_series(close, 200)) is None:
        missing.append("SMA200")
    if latest(rsi_series(close, 14)) is None:
        missing.append("RSI14")
    if macd_frame(close).dropna().empty:
        missing.append("MACD")
    return tuple(missing)
