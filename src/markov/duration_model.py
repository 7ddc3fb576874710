"""
Semi-Markov duration correction.

A plain Markov chain assumes a constant chance of leaving a state. Market
regimes instead tend to last a characteristic number of bars, so the
"stay" probability of the current state is corrected with an empirical
survival estimate built from historical run lengths.
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from src.regime.regime_labeler import MarketState, NUM_STATES

logger = logging.getLogger(__name__)

DurationMap = Dict[MarketState, List[int]]


def compute_run_length(states: Sequence[int]) -> int:
    """Consecutive repeats of the final state (0 for an empty sequence)."""
    if len(states) == 0:
        return 0
    current = states[-1]
    run = 1
    for i in range(len(states) - 2, -1, -1):
        if states[i] != current:
            break
        run += 1
    return run


def estimate_durations(states: Sequence[int]) -> DurationMap:
    """
    Collect run lengths per state.

    A run closes when the state changes; the trailing run is counted too.

    Args:
        states: State sequence

    Returns:
        Dict mapping each MarketState to its list of run lengths
    """
    durations: DurationMap = {state: [] for state in MarketState}
    if len(states) == 0:
        return durations

    current = int(states[0])
    length = 1
    for s in states[1:]:
        s = int(s)
        if s == current:
            length += 1
        else:
            durations[MarketState(current)].append(length)
            current = s
            length = 1
    durations[MarketState(current)].append(length)
    return durations


def hazard_rate(samples: Sequence[int], run_length: int) -> float:
    """Share of runs reaching `run_length` that end exactly there."""
    arr = np.asarray(samples, dtype=int)
    survivors = int(np.sum(arr >= run_length))
    if survivors == 0:
        return 0.0
    exits = int(np.sum(arr == run_length))
    return exits / survivors


def continuation_probability(samples: Sequence[int], run_length: int) -> float:
    """
    Laplace-smoothed probability that a run of `run_length` continues.

    (survivors - exits + 1) / (survivors + 2), where survivors are runs
    at least as long and exits are runs exactly as long.
    """
    arr = np.asarray(samples, dtype=int)
    survivors = int(np.sum(arr >= run_length))
    exits = int(np.sum(arr == run_length))
    return (survivors - exits + 1) / (survivors + 2)


def semi_markov_adjust(
    row: Sequence[float],
    states: Sequence[int],
    durations: Optional[DurationMap] = None,
    run_length: Optional[int] = None,
    smoothing: float = 0.4,
    min_runs: int = 3,
) -> np.ndarray:
    """
    Correct the stay probability of the current state's transition row.

    The continuation estimate is blended into the stay entry with weight
    `smoothing`; the other entries are rescaled so the row sums to 1.

    Args:
        row: Transition row of the current state
        states: State sequence ending at the current state
        durations: Precomputed run lengths (computed if None)
        run_length: Current run length (computed if None)
        smoothing: Weight of the continuation estimate
        min_runs: Runs of the current state required before correcting

    Returns:
        Adjusted copy of the row (unchanged copy if not enough history)
    """
    base = np.asarray(row, dtype=float).copy()
    if len(states) == 0:
        return base

    current = MarketState(int(states[-1]))
    if durations is None:
        durations = estimate_durations(states)
    if run_length is None:
        run_length = compute_run_length(states)

    samples = durations.get(current, [])
    if len(samples) < min_runs:
        logger.debug(
            f"Duration correction skipped: {len(samples)} runs of {current.name} "
            f"(need {min_runs})"
        )
        return base

    stay_idx = int(current)
    continuation = continuation_probability(samples, run_length)
    stay = (1.0 - smoothing) * base[stay_idx] + smoothing * continuation
    stay = min(1.0, max(0.0, stay))

    others = [j for j in range(NUM_STATES) if j != stay_idx]
    exit_mass = float(base[others].sum())
    adjusted = np.zeros(NUM_STATES)
    adjusted[stay_idx] = stay
    if exit_mass > 0:
        adjusted[others] = base[others] * ((1.0 - stay) / exit_mass)
    else:
        adjusted[others] = (1.0 - stay) / (NUM_STATES - 1)

    return adjusted / adjusted.sum()
