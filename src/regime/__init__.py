"""
Market Regime Detection Module.

Assigns one of four canonical states to every observation row, first with
a deterministic rule and then cross-checked by clustering.

State Types:
- DOWN: Bearish trend below the 200 MA
- REVERSAL: Below the 200 MA with the fast trend turning up
- BASE: Neutral, price hugging EMA50
- UP: Bullish trend above the 200 MA

Usage:
    from src.regime import StateLabeler, RegimeLearner

    rule_states = StateLabeler().label_states(rows_df)
    result = RegimeLearner().infer(rows_df, rule_states)
"""

from .regime_labeler import (
    MarketState,
    NUM_STATES,
    StateLabeler,
    label_row,
    states_to_codes,
    codes_to_states,
)

from .regime_learner import (
    ClusterProfile,
    KMeansResult,
    RegimeInferenceResult,
    RegimeLearner,
    build_feature_rows,
    standardize,
    init_centroids,
    kmeans,
    distance_confidence,
    compute_cluster_profiles,
    assign_states_from_clusters,
    reconcile_state,
    smooth_states,
)

__all__ = [
    "MarketState",
    "NUM_STATES",
    "StateLabeler",
    "label_row",
    "states_to_codes",
    "codes_to_states",
    "ClusterProfile",
    "KMeansResult",
    "RegimeInferenceResult",
    "RegimeLearner",
    "build_feature_rows",
    "standardize",
    "init_centroids",
    "kmeans",
    "distance_confidence",
    "compute_cluster_profiles",
    "assign_states_from_clusters",
    "reconcile_state",
    "smooth_states",
]
