"""
Recency-weighted Markov transition matrix.

Builds a 4x4 transition probability matrix from a state sequence with:
- Exponential recency weights (half-life decay)
- Optional order-k context boost for transitions whose preceding states
  match the most recent context
- A stationary-frequency Dirichlet prior plus flat smoothing

Every row of the returned matrix sums to 1.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Sequence

import numpy as np

from src.regime.regime_labeler import NUM_STATES

logger = logging.getLogger(__name__)


@dataclass
class MarkovResult:
    """Weighted transition counts and the normalized matrix."""
    counts: np.ndarray
    probs: np.ndarray
    weights: List[float] = field(default_factory=list)
    context_depth: int = 0
    window_used: int = 0

    def row(self, state: int) -> np.ndarray:
        """Copy of the transition row for a state."""
        return self.probs[int(state)].copy()


def uniform_matrix() -> np.ndarray:
    """4x4 matrix with every entry 1/4."""
    return np.full((NUM_STATES, NUM_STATES), 1.0 / NUM_STATES)


def normalize_row(row: Sequence[float]) -> np.ndarray:
    """Scale a row to sum to 1; degenerate rows become uniform."""
    arr = np.asarray(row, dtype=float)
    total = float(arr.sum()) if np.all(np.isfinite(arr)) else 0.0
    if total <= 0:
        return np.full(NUM_STATES, 1.0 / NUM_STATES)
    return arr / total


def decay_weights(length: int, half_life: float) -> np.ndarray:
    """
    Exponential recency weights, oldest first.

    The most recent transition has weight 1 and weights halve every
    `half_life` steps back. A non-positive half-life disables decay.

    Args:
        length: Number of transitions
        half_life: Half-life in steps

    Returns:
        Array of weights with maximum 1
    """
    if length <= 0:
        return np.zeros(0)
    if half_life <= 0:
        return np.ones(length)
    lam = math.log(2) / half_life
    offsets = np.arange(length - 1, -1, -1, dtype=float)
    weights = np.exp(-lam * offsets)
    return weights / weights.max()


def context_match_length(
    states: np.ndarray,
    source_index: int,
    reference: np.ndarray,
) -> int:
    """
    Count agreeing states walking back from a transition's source state.

    Args:
        states: Window of states
        source_index: Index of the transition's source state in `states`
        reference: Most recent context, oldest first, ending at the last state

    Returns:
        Number of consecutive matching positions (0..len(reference))
    """
    depth = len(reference)
    matched = 0
    for back in range(depth):
        pos = source_index - back
        if pos < 0 or states[pos] != reference[depth - 1 - back]:
            break
        matched += 1
    return matched


def context_boosts(states: np.ndarray, order: int) -> np.ndarray:
    """
    Per-transition multipliers for order-k context matching.

    A transition whose preceding k-1 states fully match the most recent
    k-1 states is multiplied by 1.5 + 0.5 * (k - 1); partial matches scale
    the boost linearly; no match leaves the weight unchanged.

    Args:
        states: Window of states
        order: Context order k

    Returns:
        Array of multipliers, one per transition (len(states) - 1)
    """
    transitions = len(states) - 1
    boosts = np.ones(max(transitions, 0))
    depth = min(order - 1, len(states))
    if order <= 1 or transitions <= 0 or depth <= 0:
        return boosts

    reference = states[-depth:]
    full_boost = 1.5 + 0.5 * (order - 1)
    for i in range(transitions):
        matched = context_match_length(states, i, reference)
        if matched:
            boosts[i] = 1.0 + (full_boost - 1.0) * matched / depth
    return boosts


def build_markov_weighted(
    states: Sequence[int],
    window: int,
    smoothing: float,
    half_life: float,
    order: int = 1,
    dirichlet_strength: float = 0.0,
) -> MarkovResult:
    """
    Build the recency- and context-weighted transition matrix.

    Args:
        states: Full state sequence
        window: Most recent states to use (all if fewer)
        smoothing: Flat pseudo-count per cell
        half_life: Recency half-life in steps
        order: Context order k
        dirichlet_strength: Weight of the stationary-frequency prior

    Returns:
        MarkovResult with weighted counts, probabilities and weights
    """
    arr = np.asarray(states, dtype=int)
    if window and len(arr) > window:
        arr = arr[-window:]

    if len(arr) < 2:
        logger.debug("Fewer than 2 states, returning uniform transition matrix")
        return MarkovResult(
            counts=np.zeros((NUM_STATES, NUM_STATES)),
            probs=uniform_matrix(),
            weights=[],
            context_depth=0,
            window_used=len(arr),
        )

    from_states = arr[:-1]
    to_states = arr[1:]
    weights = decay_weights(len(to_states), half_life)
    weights = weights * context_boosts(arr, order)

    counts = np.zeros((NUM_STATES, NUM_STATES))
    np.add.at(counts, (from_states, to_states), weights)

    freq = np.bincount(arr, minlength=NUM_STATES)[:NUM_STATES] / len(arr)
    prior = freq * dirichlet_strength + smoothing

    probs = counts + prior[None, :]
    totals = probs.sum(axis=1)
    for i in range(NUM_STATES):
        if totals[i] > 0:
            probs[i] = probs[i] / totals[i]
        else:
            probs[i] = 1.0 / NUM_STATES

    return MarkovResult(
        counts=counts,
        probs=probs,
        weights=weights.tolist(),
        context_depth=min(max(order - 1, 0), len(arr)),
        window_used=len(arr),
    )
