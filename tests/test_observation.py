"""
Tests for observation row validation and derived regime fields.
"""

import numpy as np
import pandas as pd
import pytest

from src.features import (
    REGIME_FIELD_COLUMNS,
    ensure_regime_fields,
    higher_timeframe_state,
    htf_bias,
    validate_observations,
    volume_zscore,
)


class TestValidateObservations:
    """Tests for validate_observations."""

    def test_valid_rows(self, observation_rows):
        assert validate_observations(observation_rows, strict=True) == []

    def test_missing_required(self, observation_rows):
        problems = validate_observations(observation_rows.drop(columns=["close"]))
        assert len(problems) == 1
        assert "close" in problems[0]

    def test_missing_indicators_only_fail_strict(self, observation_rows):
        bare = observation_rows[["timestamp", "open", "high", "low", "close"]]

        assert validate_observations(bare) == []
        assert len(validate_observations(bare, strict=True)) == 1

    def test_unordered_rows(self, observation_rows):
        shuffled = observation_rows.iloc[::-1]
        assert any("ordered" in p for p in validate_observations(shuffled))


class TestEnsureRegimeFields:
    """Tests for ensure_regime_fields."""

    def test_adds_every_field(self, observation_rows):
        result = ensure_regime_fields(observation_rows)

        for name in REGIME_FIELD_COLUMNS + ["htf_state"]:
            assert name in result.columns

    def test_input_not_modified(self, observation_rows):
        columns = list(observation_rows.columns)
        ensure_regime_fields(observation_rows)
        assert list(observation_rows.columns) == columns

    def test_existing_columns_kept(self, observation_rows):
        rows = observation_rows.copy()
        rows["ret1"] = 42.0
        assert (ensure_regime_fields(rows)["ret1"] == 42.0).all()

    def test_returns(self, observation_rows):
        result = ensure_regime_fields(observation_rows)
        close = observation_rows["close"]

        assert result["ret4"].iloc[10] == pytest.approx(close.iloc[10] / close.iloc[6] - 1)
        assert np.isnan(result["ret12"].iloc[5])

    def test_no_volume_feed(self, make_rows):
        result = ensure_regime_fields(make_rows(50, with_volume=False))
        assert (result["volume_norm"] == 0.0).all()


class TestHelpers:
    """Tests for the smaller derivations."""

    def test_higher_timeframe_state(self):
        close = pd.Series([110.0, 90.0, 110.0])
        ma200 = pd.Series([100.0, 100.0, 100.0])
        slope = pd.Series([0.5, -0.5, -0.5])

        result = higher_timeframe_state(close, ma200, slope)

        assert result.iloc[0] == "U"
        assert result.iloc[1] == "D"
        assert result.iloc[2] is None

    def test_htf_bias(self):
        assert htf_bias("U") == "U"
        assert htf_bias("X") is None
        assert htf_bias(float("nan")) is None

    def test_constant_volume_scores_zero(self):
        z = volume_zscore(pd.Series([5.0] * 10))
        assert (z.iloc[1:] == 0.0).all()
