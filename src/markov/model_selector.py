"""
Half-life selection by in-sample one-step log-likelihood.

Each candidate half-life builds its own transition matrix and is scored on
the observed transitions of the window it was built from. This is an
in-sample approximation, not held-out validation.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np

from config.settings import MarkovConfig
from src.markov.transition_matrix import MarkovResult, build_markov_weighted

logger = logging.getLogger(__name__)

LOG_EPS = 1e-12


@dataclass
class SelectionResult:
    """Chosen half-life and the score of every candidate."""
    half_life: float
    markov: MarkovResult
    scores: Dict[float, float] = field(default_factory=dict)


def one_step_log_likelihood(probs: np.ndarray, states: Sequence[int]) -> float:
    """
    Mean log-probability of each observed transition.

    Args:
        probs: Transition matrix
        states: State window the matrix was built from

    Returns:
        Mean log-likelihood (0.0 when there are no transitions)
    """
    arr = np.asarray(states, dtype=int)
    if len(arr) < 2:
        return 0.0
    p = probs[arr[:-1], arr[1:]]
    return float(np.mean(np.log(np.clip(p, LOG_EPS, 1.0))))


def candidate_half_lives(config: MarkovConfig) -> List[float]:
    """Configured half-life first, then the scaled candidates, de-duplicated."""
    candidates = [max(config.min_half_life, config.half_life)]
    for mult in config.half_life_multipliers:
        value = max(config.min_half_life, config.half_life * mult)
        if value not in candidates:
            candidates.append(value)
    return candidates


def _score(states: Sequence[int], half_life: float, config: MarkovConfig):
    result = build_markov_weighted(
        states,
        window=config.window,
        smoothing=config.smoothing,
        half_life=half_life,
        order=config.order,
        dirichlet_strength=config.dirichlet_strength,
    )
    window_states = np.asarray(states, dtype=int)[-config.window:]
    return result, one_step_log_likelihood(result.probs, window_states)


def select_half_life(states: Sequence[int], config: MarkovConfig) -> SelectionResult:
    """
    Pick the half-life maximizing in-sample log-likelihood.

    Ties keep the earlier candidate, so the configured value wins ties.

    Args:
        states: Canonical state sequence
        config: Markov configuration

    Returns:
        SelectionResult with the winning matrix
    """
    candidates = candidate_half_lives(config)

    if config.selector_workers > 1 and len(candidates) > 1:
        with ThreadPoolExecutor(max_workers=config.selector_workers) as pool:
            scored = list(pool.map(lambda hl: _score(states, hl, config), candidates))
    else:
        scored = [_score(states, hl, config) for hl in candidates]

    best_idx = 0
    for i in range(1, len(scored)):
        if scored[i][1] > scored[best_idx][1]:
            best_idx = i

    scores = {hl: ll for hl, (_, ll) in zip(candidates, scored)}
    chosen = candidates[best_idx]
    logger.debug(f"Half-life candidates {scores}, selected {chosen}")
    return SelectionResult(half_life=chosen, markov=scored[best_idx][0], scores=scores)
