"""
Feature Module.

Provides the observation-row schema consumed by the regime engine and the
engineered features of the conditioning model.

Modules:
- observation: Observation row columns, validation and derived regime fields
- conditioning_features: 10-dimensional conditioning model feature vector

Usage:
    from src.features import ensure_regime_fields, build_conditioning_features

    rows = ensure_regime_fields(indicator_df)
    x = build_conditioning_features(rows, -1)
"""

from .observation import (
    REQUIRED_COLUMNS,
    INDICATOR_COLUMNS,
    REGIME_FIELD_COLUMNS,
    validate_observations,
    ensure_regime_fields,
    period_return,
    realized_volatility,
    volume_zscore,
    higher_timeframe_state,
    htf_bias,
)

from .conditioning_features import (
    FEATURE_DIM,
    FEATURE_NAMES,
    OhlcArrays,
    features_at,
    build_conditioning_features,
    build_feature_matrix,
)

__all__ = [
    # Observation rows
    "REQUIRED_COLUMNS",
    "INDICATOR_COLUMNS",
    "REGIME_FIELD_COLUMNS",
    "validate_observations",
    "ensure_regime_fields",
    "period_return",
    "realized_volatility",
    "volume_zscore",
    "higher_timeframe_state",
    "htf_bias",
    # Conditioning features
    "FEATURE_DIM",
    "FEATURE_NAMES",
    "OhlcArrays",
    "features_at",
    "build_conditioning_features",
    "build_feature_matrix",
]
