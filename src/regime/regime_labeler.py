"""
Market State Labeler.

Labels each observation row with one of four canonical market states using
the trend, slope and proximity fields already computed on the row. This is
the deterministic fallback the learned labels are arbitrated against.

State Types:
- DOWN: Price below the 200 MA with bearish EMAs and a falling MA
- REVERSAL: Price below the 200 MA while the fast EMA has turned up
- BASE: Price hugging EMA50 with a neutral RSI
- UP: Price above the 200 MA with bullish EMAs and a rising MA
"""

import logging
import math
from enum import IntEnum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class MarketState(IntEnum):
    """Canonical market states, ordered by index."""
    DOWN = 0
    REVERSAL = 1
    BASE = 2
    UP = 3

    @property
    def code(self) -> str:
        """One-letter code (D/R/B/U)."""
        return self.name[0]

    @classmethod
    def from_code(cls, code: str) -> "MarketState":
        for state in cls:
            if state.code == code:
                return state
        raise ValueError(f"Unknown state code '{code}'")


NUM_STATES = len(MarketState)


def _finite(value: Any) -> Optional[float]:
    """Return value as float if it is a finite number, else None."""
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def label_row(row: Mapping[str, Any]) -> MarketState:
    """
    Label a single observation row.

    Missing or non-finite fields never raise; a row without a usable
    close or 200-period MA is BASE.

    Args:
        row: Mapping (dict or pandas Series) with close/ema10/ema50/ma200/
            ma200_slope/atr14/rsi fields

    Returns:
        MarketState for the row
    """
    ma200 = _finite(row.get("ma200"))
    close = _finite(row.get("close"))
    if ma200 is None or close is None:
        return MarketState.BASE

    ema10 = _finite(row.get("ema10"))
    ema50 = _finite(row.get("ema50"))
    atr = _finite(row.get("atr14"))
    rsi = _finite(row.get("rsi"))
    slope = _finite(row.get("ma200_slope"))
    slope = 0.0 if slope is None else slope

    below200 = close < ma200
    ema_bull = (ema10 if ema10 is not None else -math.inf) >= (
        ema50 if ema50 is not None else -math.inf
    )
    anchor = ema50 if ema50 is not None else close
    near50 = atr is not None and abs(close - anchor) < 0.5 * atr
    rsi_mid = rsi is not None and 40.0 <= rsi <= 55.0

    if close > ma200 and ema_bull and slope >= 0:
        return MarketState.UP
    if below200 and not ema_bull and slope < 0:
        return MarketState.DOWN
    if below200 and ema_bull:
        return MarketState.REVERSAL
    if near50 and rsi_mid:
        return MarketState.BASE
    return MarketState.DOWN if below200 else MarketState.UP


def states_to_codes(states: Iterable[int]) -> str:
    """Render a state sequence as a compact D/R/B/U string."""
    return "".join(MarketState(int(s)).code for s in states)


def codes_to_states(codes: str) -> np.ndarray:
    """Parse a D/R/B/U string into a state index array."""
    return np.array([int(MarketState.from_code(c)) for c in codes], dtype=int)


class StateLabeler:
    """
    Labels observation rows with rule-based market states.

    Usage:
        labeler = StateLabeler()
        states = labeler.label_states(rows_df)
        report = labeler.validate_labels(states)
    """

    def label_states(self, df: pd.DataFrame) -> np.ndarray:
        """
        Label every row of an observation frame.

        Args:
            df: Observation rows

        Returns:
            Integer array of MarketState values aligned with df
        """
        if df.empty:
            return np.zeros(0, dtype=int)
        records = df.to_dict("records")
        states = np.array([int(label_row(record)) for record in records], dtype=int)
        logger.debug(f"Labeled {len(states)} rows: {np.bincount(states, minlength=NUM_STATES).tolist()}")
        return states

    def validate_labels(self, states: Sequence[int]) -> Dict[str, Any]:
        """
        Summarize label quality.

        Checks for:
        - Class balance
        - Transition patterns
        - Regime duration

        Args:
            states: State sequence

        Returns:
            Dict with validation results
        """
        arr = np.asarray(states, dtype=int)
        total = len(arr)

        class_balance = {}
        for state in MarketState:
            count = int(np.sum(arr == state.value))
            class_balance[state.name] = {
                "count": count,
                "percentage": count / total * 100 if total > 0 else 0.0,
            }

        transition_count = int(np.sum(arr[1:] != arr[:-1])) if total > 1 else 0
        avg_duration = total / max(transition_count, 1)
        percentages = [v["percentage"] for v in class_balance.values()]

        return {
            "class_balance": class_balance,
            "min_class_pct": min(percentages),
            "max_class_pct": max(percentages),
            "transition_count": transition_count,
            "avg_regime_duration": avg_duration,
            "transitions_too_frequent": avg_duration < 3,
        }

    @staticmethod
    def state_names(states: Sequence[int]) -> List[str]:
        """Map state indices to names."""
        return [MarketState(int(s)).name for s in states]
