"""
Ensemble blending and multi-step propagation.

The first step out of the current state uses the blended row; later steps
follow the plain recency-weighted transition matrix.
"""

import logging
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

from src.markov.transition_matrix import normalize_row
from src.regime.regime_labeler import NUM_STATES

logger = logging.getLogger(__name__)

VOL_SCALE_MIN_ROWS = 30
VOL_SCALE_LOOKBACK = 120


def mat_mul(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.asarray(a, dtype=float) @ np.asarray(b, dtype=float)


def mat_pow(matrix: np.ndarray, power: int) -> np.ndarray:
    """
    Matrix power by repeated squaring.

    Args:
        matrix: Square matrix
        power: Non-negative exponent (0 gives the identity)

    Returns:
        matrix ** power
    """
    if power < 0:
        raise ValueError(f"power must be >= 0, got {power}")
    base = np.asarray(matrix, dtype=float).copy()
    result = np.eye(base.shape[0])
    while power:
        if power & 1:
            result = result @ base
        base = base @ base
        power >>= 1
    return result


def vec_mul(vector: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Row vector times matrix."""
    return np.asarray(vector, dtype=float) @ np.asarray(matrix, dtype=float)


def one_hot(state: int) -> np.ndarray:
    vec = np.zeros(NUM_STATES)
    vec[int(state)] = 1.0
    return vec


def blend_rows(
    rows: Sequence[Sequence[float]],
    weights: Sequence[float],
) -> np.ndarray:
    """
    Weighted combination of probability rows.

    Args:
        rows: Candidate rows (each length 4)
        weights: One weight per row

    Returns:
        Normalized blended row; uniform when everything is degenerate
    """
    if len(rows) == 0 or len(rows) != len(weights):
        return np.full(NUM_STATES, 1.0 / NUM_STATES)

    w = np.clip(np.asarray(weights, dtype=float), 0.0, None)
    w = w / max(float(w.sum()), 1e-9)
    stacked = np.vstack([np.asarray(r, dtype=float) for r in rows])
    blended = w @ stacked
    return normalize_row(blended)


def blend_weights(has_order2: bool, has_conditioned: bool, config) -> Dict[str, float]:
    """
    Per-component weights for the ensemble.

    Args:
        has_order2: Order-2 row available
        has_conditioned: Conditioning row available
        config: BlendConfig

    Returns:
        Dict of component name to weight, only for present components
    """
    weights = {"duration": config.duration_weight}
    if has_order2:
        weights["order2"] = config.order2_weight
    if has_conditioned:
        # Conditioning fills whatever the other components leave
        taken = config.duration_weight + (config.order2_weight if has_order2 else 0.0)
        weights["conditioned"] = max(0.0, 1.0 - taken)
    return weights


def multi_step_forecast(
    matrix: np.ndarray,
    state: int,
    steps: int,
    first_row: Optional[Sequence[float]] = None,
) -> np.ndarray:
    """
    Propagate a one-hot state vector `steps` bars ahead.

    Args:
        matrix: Transition matrix
        state: Current state index
        steps: Number of bars
        first_row: Replacement for the current state's row on the first step

    Returns:
        Length-4 probability vector
    """
    start = one_hot(state)
    if steps <= 0:
        return start

    base = np.asarray(matrix, dtype=float)
    if first_row is None:
        return vec_mul(start, mat_pow(base, steps))

    adjusted = base.copy()
    adjusted[int(state)] = np.asarray(first_row, dtype=float)
    vec = vec_mul(start, adjusted)
    if steps > 1:
        vec = vec_mul(vec, mat_pow(base, steps - 1))
    return vec


def forecast_horizons(
    matrix: np.ndarray,
    state: int,
    steps_by_label: Dict[str, int],
    first_row: Optional[Sequence[float]] = None,
) -> Dict[str, np.ndarray]:
    """Forecast vector per horizon label."""
    return {
        label: multi_step_forecast(matrix, state, steps, first_row)
        for label, steps in steps_by_label.items()
    }


def _atr_fractions(df: pd.DataFrame) -> np.ndarray:
    close = df["close"].to_numpy(dtype=float)
    if "atr14" in df.columns:
        atr = df["atr14"].to_numpy(dtype=float)
    else:
        atr = np.full(len(df), np.nan)
    bar_range = np.maximum(
        1e-9, df["high"].to_numpy(dtype=float) - df["low"].to_numpy(dtype=float)
    )
    atr = np.where(np.isfinite(atr), atr, bar_range)
    return atr / np.maximum(1e-9, close)


def steps_for_horizon(
    hours: float,
    interval_minutes: float,
    df: Optional[pd.DataFrame] = None,
    volatility_scaled: bool = False,
) -> int:
    """
    Convert a horizon in hours into a number of bars.

    With volatility scaling the bar count is stretched or shrunk by the
    80th percentile of recent ATR/close (clamped to 0.7x..1.4x).

    Args:
        hours: Horizon in hours
        interval_minutes: Bar duration in minutes
        df: Observation rows (used only with volatility scaling)
        volatility_scaled: Enable ATR-based scaling

    Returns:
        Step count, at least 1
    """
    base = max(1, int(round(hours * 60 / max(1.0, interval_minutes))))
    if not volatility_scaled or df is None or len(df) < VOL_SCALE_MIN_ROWS:
        return base

    fracs = np.sort(_atr_fractions(df.tail(VOL_SCALE_LOOKBACK)))
    fracs = fracs[np.isfinite(fracs)]
    if len(fracs) == 0:
        return base
    pct = fracs[max(0, int(np.floor(0.8 * (len(fracs) - 1))))]
    scale = min(1.4, max(0.7, 0.8 + 2 * (pct - 0.01)))
    return max(1, int(round(base * scale)))
