"""
Order-2 context model.

Counts the next state observed after every ordered pair of consecutive
states, and turns the current pair's counts into a next-state row once
enough observations exist.
"""

import logging
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from src.regime.regime_labeler import NUM_STATES

logger = logging.getLogger(__name__)

PairKey = Tuple[int, int]


def build_order2_counts(states: Sequence[int]) -> Dict[PairKey, np.ndarray]:
    """
    Count next states per (previous, current) pair.

    Args:
        states: State sequence

    Returns:
        Dict mapping (prev, cur) to a length-4 count vector
    """
    table: Dict[PairKey, np.ndarray] = {}
    for i in range(1, len(states) - 1):
        key = (int(states[i - 1]), int(states[i]))
        if key not in table:
            table[key] = np.zeros(NUM_STATES)
        table[key][int(states[i + 1])] += 1
    return table


def last_pair(states: Sequence[int]) -> Optional[PairKey]:
    """The (previous, current) pair at the end of the sequence."""
    if len(states) < 2:
        return None
    return int(states[-2]), int(states[-1])


def row_from_order2(
    table: Dict[PairKey, np.ndarray],
    pair: Optional[PairKey],
    min_count: int = 12,
    pseudo_count: float = 0.5,
) -> Optional[np.ndarray]:
    """
    Next-state row for a pair.

    Args:
        table: Pair count table
        pair: (prev, cur) pair
        min_count: Observations required for an estimate
        pseudo_count: Laplace smoothing per cell

    Returns:
        Normalized row, or None when the pair has fewer than min_count
        observations
    """
    if pair is None or pair not in table:
        return None
    counts = table[pair]
    total = float(counts.sum())
    if total < min_count:
        logger.debug(f"Order-2 pair {pair} has {total:.0f} observations (< {min_count})")
        return None
    smoothed = counts + pseudo_count
    return smoothed / smoothed.sum()
