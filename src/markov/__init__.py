"""
Markov Forecasting Module.

Transition-matrix estimation and the components blended into the
one-step forecast row.

Components:
- transition_matrix: recency/context-weighted transition matrix
- duration_model: semi-Markov stay-probability correction
- order2_model: pairwise-context next-state estimate
- forecast: ensemble blend and multi-step propagation
- model_selector: half-life selection by log-likelihood

Usage:
    from src.markov import build_markov_weighted, multi_step_forecast

    result = build_markov_weighted(states, window=1200, smoothing=0.5, half_life=300)
    vec = multi_step_forecast(result.probs, states[-1], steps=16)
"""

from .transition_matrix import (
    MarkovResult,
    build_markov_weighted,
    context_boosts,
    decay_weights,
    normalize_row,
    uniform_matrix,
)

from .duration_model import (
    compute_run_length,
    continuation_probability,
    estimate_durations,
    hazard_rate,
    semi_markov_adjust,
)

from .order2_model import (
    build_order2_counts,
    last_pair,
    row_from_order2,
)

from .forecast import (
    blend_rows,
    blend_weights,
    forecast_horizons,
    mat_mul,
    mat_pow,
    multi_step_forecast,
    one_hot,
    steps_for_horizon,
    vec_mul,
)

from .model_selector import (
    SelectionResult,
    candidate_half_lives,
    one_step_log_likelihood,
    select_half_life,
)

__all__ = [
    "MarkovResult",
    "build_markov_weighted",
    "context_boosts",
    "decay_weights",
    "normalize_row",
    "uniform_matrix",
    "compute_run_length",
    "continuation_probability",
    "estimate_durations",
    "hazard_rate",
    "semi_markov_adjust",
    "build_order2_counts",
    "last_pair",
    "row_from_order2",
    "blend_rows",
    "blend_weights",
    "forecast_horizons",
    "mat_mul",
    "mat_pow",
    "multi_step_forecast",
    "one_hot",
    "steps_for_horizon",
    "vec_mul",
    "SelectionResult",
    "candidate_half_lives",
    "one_step_log_likelihood",
    "select_half_life",
]
