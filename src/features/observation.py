"""
Observation rows for regime inference.

An observation row is one bar of the annotated price series: OHLCV plus the
indicator values computed upstream (EMA10/50, MA200 and its slope, ATR14,
RSI14, stochastic %K/%D, optional MACD/Bollinger/VWAP) and a set of derived
regime fields:

- ret1, ret4, ret12: multi-horizon simple returns
- ema_trend_fast, ema_trend_slow, ema_trend_htf: trend spreads at three scales
- atr_norm: ATR as a fraction of price
- realized_vol14: rolling std of log returns
- volume_norm: volume z-score
- htf_state: higher-timeframe trend bias ("U", "D" or None)

The derived fields are normally supplied with the rows. Any that are
missing are filled in here from the indicator columns.
"""

import logging
from typing import List, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["timestamp", "open", "high", "low", "close"]

INDICATOR_COLUMNS = [
    "ema10",
    "ema50",
    "ma200",
    "ma200_slope",
    "atr14",
    "rsi",
    "stoch_k",
    "stoch_d",
]

OPTIONAL_INDICATOR_COLUMNS = [
    "macd",
    "macd_signal",
    "macd_hist",
    "bb_upper",
    "bb_lower",
    "bb_basis",
    "bb_width",
    "vwap",
]

REGIME_FIELD_COLUMNS = [
    "ret1",
    "ret4",
    "ret12",
    "ema_trend_fast",
    "ema_trend_slow",
    "ema_trend_htf",
    "atr_norm",
    "realized_vol14",
    "volume_norm",
]


def validate_observations(df: pd.DataFrame, strict: bool = False) -> List[str]:
    """
    Check that a frame can be used as observation rows.

    Missing indicator columns only count as problems in strict mode; the
    labeler and feature builders tolerate them otherwise.

    Args:
        df: Candidate observation frame
        strict: Also require every indicator column

    Returns:
        List of problems (empty if usable)
    """
    problems = []
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        problems.append(f"Missing required columns: {missing}")

    missing_indicators = [c for c in INDICATOR_COLUMNS if c not in df.columns]
    if missing_indicators and strict:
        problems.append(f"Missing indicator columns: {missing_indicators}")
    elif missing_indicators:
        logger.debug(f"Indicator columns absent: {missing_indicators}")

    if "timestamp" in df.columns and len(df) > 1:
        if not df["timestamp"].is_monotonic_increasing:
            problems.append("Rows are not ordered by timestamp")

    return problems


def _column(df: pd.DataFrame, name: str) -> pd.Series:
    """Return a float column, or an all-NaN series if absent."""
    if name in df.columns:
        return pd.to_numeric(df[name], errors="coerce").astype(float)
    return pd.Series(np.nan, index=df.index, dtype=float)


def period_return(close: pd.Series, periods: int) -> pd.Series:
    """Simple return over a number of bars."""
    return close / close.shift(periods) - 1


def realized_volatility(close: pd.Series, window: int = 14) -> pd.Series:
    """Rolling standard deviation of log returns."""
    log_ret = np.log(close / close.shift(1))
    return log_ret.rolling(window=window).std()


def volume_zscore(volume: pd.Series, window: int = 20) -> pd.Series:
    """
    Z-score of volume against its rolling mean.

    Bars where the rolling std is zero score 0.
    """
    mean = volume.rolling(window=window, min_periods=2).mean()
    std = volume.rolling(window=window, min_periods=2).std()
    z = (volume - mean) / std.replace(0, np.nan)
    return z.where(std != 0, 0.0)


def higher_timeframe_state(
    close: pd.Series,
    ma200: pd.Series,
    ma200_slope: pd.Series,
) -> pd.Series:
    """
    Higher-timeframe trend bias.

    "U" when price is above a rising 200 MA, "D" when below a falling one,
    None otherwise.
    """
    up = (close > ma200) & (ma200_slope >= 0)
    down = (close < ma200) & (ma200_slope < 0)
    out = pd.Series(None, index=close.index, dtype=object)
    out[up] = "U"
    out[down] = "D"
    return out


def ensure_regime_fields(df: pd.DataFrame) -> pd.DataFrame:
    """
    Return a copy of df with every derived regime field present.

    Existing columns are left untouched.

    Args:
        df: Observation rows

    Returns:
        Copy of df with derived regime fields
    """
    result = df.copy()
    close = _column(result, "close")
    ema10 = _column(result, "ema10")
    ema50 = _column(result, "ema50")
    ma200 = _column(result, "ma200")
    safe_close = close.replace(0, np.nan)

    derived = {
        "ret1": lambda: period_return(close, 1),
        "ret4": lambda: period_return(close, 4),
        "ret12": lambda: period_return(close, 12),
        "ema_trend_fast": lambda: (ema10 - ema50) / safe_close,
        "ema_trend_slow": lambda: (ema50 - ma200) / safe_close,
        "ema_trend_htf": lambda: (close - ma200) / ma200.replace(0, np.nan),
        "atr_norm": lambda: _column(result, "atr14") / safe_close,
        "realized_vol14": lambda: realized_volatility(close, 14),
    }

    added = []
    for name, compute in derived.items():
        if name not in result.columns:
            result[name] = compute()
            added.append(name)

    if "volume_norm" not in result.columns:
        if "volume" in result.columns and result["volume"].notna().any():
            result["volume_norm"] = volume_zscore(_column(result, "volume"))
        else:
            # No volume feed
            result["volume_norm"] = 0.0
        added.append("volume_norm")

    if "ma200_slope" not in result.columns:
        result["ma200_slope"] = ma200.diff()
        added.append("ma200_slope")

    if "htf_state" not in result.columns:
        result["htf_state"] = higher_timeframe_state(
            close, ma200, _column(result, "ma200_slope")
        )
        added.append("htf_state")

    if added:
        logger.debug(f"Derived regime fields: {added}")

    return result


def htf_bias(value: Optional[object]) -> Optional[str]:
    """Normalize a higher-timeframe field value to "U", "D" or None."""
    if isinstance(value, str) and value in ("U", "D"):
        return value
    return None
