"""
Conditioning model features.

Builds the fixed 10-dimensional feature vector the logistic conditioning
model is trained and evaluated on. Every feature is zero-filled on
non-finite input, so a vector never carries NaN.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

FEATURE_NAMES = [
    "ret1",
    "ret5",
    "atr_frac",
    "body_frac",
    "upper_wick_frac",
    "lower_wick_frac",
    "tr_compression",
    "donchian_pos",
    "vol_regime_z",
    "ma_slope",
]

FEATURE_DIM = len(FEATURE_NAMES)

EPS = 1e-9
DONCHIAN_WINDOW = 20
VOL_CHUNK = 20
VOL_HISTORY = 60
SLOPE_LOOKBACK = 10


def _safe(value: float) -> float:
    return float(value) if np.isfinite(value) else 0.0


def _median_upper(values: np.ndarray) -> float:
    """Median taken as the upper middle element of the sorted values."""
    ordered = np.sort(values)
    return float(ordered[len(ordered) // 2])


def _log_return_std(closes: np.ndarray) -> Optional[float]:
    """Sample std of log returns, None when fewer than two returns exist."""
    if len(closes) < 2:
        return None
    prev = np.maximum(closes[:-1], EPS)
    returns = np.log(closes[1:] / prev)
    if len(returns) < 2:
        return 0.0
    return float(np.std(returns, ddof=1))


@dataclass
class OhlcArrays:
    """Column arrays of an observation frame, extracted once."""
    open: np.ndarray
    high: np.ndarray
    low: np.ndarray
    close: np.ndarray
    atr14: np.ndarray
    ma200: np.ndarray

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "OhlcArrays":
        def col(name: str) -> np.ndarray:
            if name not in df.columns:
                return np.full(len(df), np.nan)
            return pd.to_numeric(df[name], errors="coerce").to_numpy(dtype=float)

        return cls(
            open=col("open"),
            high=col("high"),
            low=col("low"),
            close=col("close"),
            atr14=col("atr14"),
            ma200=col("ma200"),
        )

    def __len__(self) -> int:
        return len(self.close)

    def bar_range(self, i: int) -> float:
        """High-low range of bar i, floored at EPS."""
        span = float(self.high[i] - self.low[i])
        return max(EPS, span) if np.isfinite(span) else EPS


def features_at(arrays: OhlcArrays, index: int) -> np.ndarray:
    """
    Compute the conditioning feature vector for one row.

    References before the first row clamp to the first row.

    Args:
        arrays: Extracted column arrays
        index: Row index to compute features for

    Returns:
        Array of FEATURE_DIM finite values
    """
    n = len(arrays)
    if n == 0:
        return np.zeros(FEATURE_DIM)
    index = min(max(index, 0), n - 1)

    def take(offset: int) -> int:
        return min(max(index - offset, 0), n - 1)

    close = float(arrays.close[index])
    prev_close = float(arrays.close[take(1)])
    ret1 = _safe(close / max(EPS, prev_close) - 1)
    ret5 = _safe(close / max(EPS, float(arrays.close[take(5)])) - 1) if index >= 5 else 0.0

    atr = float(arrays.atr14[index])
    range_now = arrays.bar_range(index)
    if not np.isfinite(atr):
        atr = range_now
    atr_frac = _safe(atr / max(EPS, close))

    open_ = float(arrays.open[index])
    high = float(arrays.high[index])
    low = float(arrays.low[index])
    body = _safe(abs(close - open_) / range_now)
    upper_wick = _safe((high - max(open_, close)) / range_now)
    lower_wick = _safe((min(open_, close) - low) / range_now)

    start = max(0, index - (DONCHIAN_WINDOW - 1))
    highs = arrays.high[start:index + 1]
    lows = arrays.low[start:index + 1]
    hi20 = np.nanmax(highs) if np.isfinite(highs).any() else np.nan
    lo20 = np.nanmin(lows) if np.isfinite(lows).any() else np.nan
    donchian = _safe((close - lo20) / max(EPS, hi20 - lo20))

    window_std = _log_return_std(arrays.close[start:index + 1])
    window_std = 0.0 if window_std is None else window_std

    hist_start = max(0, index - VOL_HISTORY)
    hist = arrays.close[hist_start:index + 1]
    chunk_stds = []
    if len(hist) >= VOL_CHUNK:
        for chunk_start in range(0, len(hist) - VOL_CHUNK + 1, VOL_CHUNK):
            sigma = _log_return_std(hist[chunk_start:chunk_start + VOL_CHUNK])
            if sigma is not None and np.isfinite(sigma):
                chunk_stds.append(sigma)
    median_std = _median_upper(np.array(chunk_stds)) if chunk_stds else window_std
    vol_z = _safe((window_std - median_std) / max(EPS, abs(median_std)))

    ma_now = float(arrays.ma200[index])
    if not np.isfinite(ma_now):
        ma_now = close
    back = take(SLOPE_LOOKBACK)
    ma_back = float(arrays.ma200[back])
    if not np.isfinite(ma_back):
        ma_back = float(arrays.close[back])
    ma_slope = _safe((ma_now - ma_back) / SLOPE_LOOKBACK)

    ranges = np.array([arrays.bar_range(i) for i in range(start, index + 1)])
    tr_median = _median_upper(ranges) if len(ranges) else range_now
    tr_compression = _safe(range_now / max(EPS, tr_median))

    return np.array([
        ret1,
        ret5,
        atr_frac,
        body,
        upper_wick,
        lower_wick,
        tr_compression,
        donchian,
        vol_z,
        ma_slope,
    ])


def build_conditioning_features(df: pd.DataFrame, index: int) -> np.ndarray:
    """
    Compute the conditioning feature vector for row `index` of df.

    Args:
        df: Observation rows
        index: Row index (negative values count from the end)

    Returns:
        Array of FEATURE_DIM finite values
    """
    if index < 0:
        index = len(df) + index
    return features_at(OhlcArrays.from_frame(df), index)


def build_feature_matrix(df: pd.DataFrame, indices: Sequence[int]) -> np.ndarray:
    """
    Compute feature vectors for many rows.

    Args:
        df: Observation rows
        indices: Row indices

    Returns:
        Array of shape (len(indices), FEATURE_DIM)
    """
    arrays = OhlcArrays.from_frame(df)
    if not len(indices):
        return np.zeros((0, FEATURE_DIM))
    return np.vstack([features_at(arrays, int(i)) for i in indices])
