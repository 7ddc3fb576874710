"""
Shared fixtures: synthetic annotated observation rows.
"""

import numpy as np
import pandas as pd
import pytest


def _rsi(close: pd.Series, period: int = 14) -> pd.Series:
    delta = close.diff()
    gain = delta.clip(lower=0).ewm(alpha=1 / period, adjust=False).mean()
    loss = (-delta.clip(upper=0)).ewm(alpha=1 / period, adjust=False).mean()
    rs = gain / loss.replace(0, np.nan)
    return (100 - 100 / (1 + rs)).fillna(50.0)


def build_observations(n: int = 400, seed: int = 7, with_volume: bool = True) -> pd.DataFrame:
    """Cycling trend with noise, indicators computed the usual way."""
    rng = np.random.default_rng(seed)
    t = np.arange(n)
    drift = 0.004 * np.sin(t / 35.0)
    noise = rng.normal(0, 0.003, n)
    close = pd.Series(100 * np.exp(np.cumsum(drift + noise)))
    open_ = close.shift(1).fillna(close.iloc[0])
    spread = np.abs(rng.normal(0, 0.002, n)) + 0.001
    high = np.maximum(open_, close) * (1 + spread)
    low = np.minimum(open_, close) * (1 - spread)

    df = pd.DataFrame({
        "timestamp": pd.date_range("2025-01-01", periods=n, freq="15min"),
        "open": open_,
        "high": high,
        "low": low,
        "close": close,
    })
    if with_volume:
        df["volume"] = rng.uniform(50, 150, n)

    df["ema10"] = close.ewm(span=10, adjust=False).mean()
    df["ema50"] = close.ewm(span=50, adjust=False).mean()
    df["ma200"] = close.rolling(200, min_periods=1).mean()
    df["ma200_slope"] = df["ma200"].diff().fillna(0.0)
    df["atr14"] = (df["high"] - df["low"]).rolling(14, min_periods=1).mean()
    df["rsi"] = _rsi(close)
    lowest = df["rsi"].rolling(14, min_periods=1).min()
    highest = df["rsi"].rolling(14, min_periods=1).max()
    df["stoch_k"] = ((df["rsi"] - lowest) / (highest - lowest).replace(0, np.nan) * 100).fillna(50.0)
    df["stoch_d"] = df["stoch_k"].rolling(3, min_periods=1).mean()
    return df


@pytest.fixture
def make_rows():
    """Factory for synthetic observation frames."""
    return build_observations


@pytest.fixture
def observation_rows():
    """400 rows of synthetic observations."""
    return build_observations(400)
