"""
Tests for ensemble blending and multi-step propagation.

Tests:
- Matrix power identities
- Component weights and blending
- Multi-step forecasts with a replaced first row
- Horizon step counts with and without volatility scaling
"""

import numpy as np
import pandas as pd
import pytest

from config.settings import BlendConfig
from src.markov import (
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


@pytest.fixture
def matrix():
    return np.array([
        [0.7, 0.1, 0.1, 0.1],
        [0.2, 0.5, 0.2, 0.1],
        [0.1, 0.2, 0.5, 0.2],
        [0.05, 0.05, 0.1, 0.8],
    ])


class TestMatrixOps:
    """Tests for mat_pow and friends."""

    def test_power_zero_is_identity(self, matrix):
        assert np.array_equal(mat_pow(matrix, 0), np.eye(4))

    def test_power_one_is_matrix(self, matrix):
        assert np.allclose(mat_pow(matrix, 1), matrix)

    def test_power_matches_repeated_product(self, matrix):
        expected = mat_mul(mat_mul(mat_mul(matrix, matrix), matrix), matrix)
        expected = mat_mul(expected, matrix)
        assert np.allclose(mat_pow(matrix, 5), expected)

    def test_power_adds(self, matrix):
        assert np.allclose(mat_pow(matrix, 7), mat_pow(matrix, 3) @ mat_pow(matrix, 4))

    def test_negative_power(self, matrix):
        with pytest.raises(ValueError):
            mat_pow(matrix, -1)

    def test_stochastic_preserved(self, matrix):
        assert np.allclose(mat_pow(matrix, 33).sum(axis=1), 1.0)

    def test_vec_mul_selects_row(self, matrix):
        assert np.allclose(vec_mul(one_hot(2), matrix), matrix[2])


class TestBlend:
    """Tests for blend_weights and blend_rows."""

    def test_weights_all_components(self):
        weights = blend_weights(True, True, BlendConfig())
        assert weights == pytest.approx({"duration": 0.6, "order2": 0.25, "conditioned": 0.15})

    def test_weights_without_order2(self):
        """Conditioning takes the larger weight when order-2 is absent."""
        weights = blend_weights(False, True, BlendConfig())
        assert weights == pytest.approx({"duration": 0.6, "conditioned": 0.4})

    def test_conditioning_fills_remainder(self):
        """Changing the duration weight moves the conditioning weight with it."""
        config = BlendConfig(duration_weight=0.5, order2_weight=0.2)

        assert blend_weights(True, True, config)["conditioned"] == pytest.approx(0.3)
        assert blend_weights(False, True, config)["conditioned"] == pytest.approx(0.5)
        assert sum(blend_weights(True, True, config).values()) == pytest.approx(1.0)

    def test_remainder_never_negative(self):
        config = BlendConfig(duration_weight=0.9, order2_weight=0.3)
        assert blend_weights(True, True, config)["conditioned"] == 0.0

    def test_weights_duration_only(self):
        assert blend_weights(False, False, BlendConfig()) == {"duration": 0.6}

    def test_blend_normalizes_weights(self):
        rows = [[1, 0, 0, 0], [0, 0, 0, 1]]
        blended = blend_rows(rows, [3.0, 1.0])
        assert blended.tolist() == pytest.approx([0.75, 0, 0, 0.25])

    def test_single_row_passes_through(self):
        assert blend_rows([[0.1, 0.2, 0.3, 0.4]], [0.6]).tolist() == pytest.approx(
            [0.1, 0.2, 0.3, 0.4]
        )

    def test_degenerate_inputs_are_uniform(self):
        assert blend_rows([], []).tolist() == [0.25] * 4
        assert blend_rows([[1, 0, 0, 0]], [1.0, 2.0]).tolist() == [0.25] * 4
        assert blend_rows([[1, 0, 0, 0]], [0.0]).tolist() == [0.25] * 4


class TestMultiStep:
    """Tests for multi_step_forecast."""

    def test_zero_steps_is_current_state(self, matrix):
        assert multi_step_forecast(matrix, 1, 0).tolist() == [0, 1, 0, 0]

    def test_plain_power(self, matrix):
        vec = multi_step_forecast(matrix, 3, 4)
        assert np.allclose(vec, mat_pow(matrix, 4)[3])

    def test_first_row_only_affects_first_step(self, matrix):
        """The replacement row is used once, then the base matrix."""
        first = np.array([0.0, 0.0, 0.0, 1.0])
        vec = multi_step_forecast(matrix, 0, 3, first_row=first)

        assert np.allclose(vec, mat_pow(matrix, 2)[3])
        assert np.allclose(multi_step_forecast(matrix, 0, 1, first_row=first), first)

    def test_does_not_modify_matrix(self, matrix):
        original = matrix.copy()
        multi_step_forecast(matrix, 0, 5, first_row=[0.25] * 4)
        assert np.array_equal(matrix, original)

    def test_horizons(self, matrix):
        result = forecast_horizons(matrix, 2, {"1h": 4, "4h": 16})

        assert set(result) == {"1h", "4h"}
        for vec in result.values():
            assert vec.sum() == pytest.approx(1.0)


class TestStepsForHorizon:
    """Tests for steps_for_horizon."""

    @staticmethod
    def _rows(n, atr_fraction):
        close = np.full(n, 100.0)
        return pd.DataFrame({
            "close": close,
            "high": close + 0.5,
            "low": close - 0.5,
            "atr14": close * atr_fraction,
        })

    def test_base_steps(self):
        assert steps_for_horizon(4, 15) == 16
        assert steps_for_horizon(1, 60) == 1
        assert steps_for_horizon(0.1, 60) == 1

    def test_calm_tape_shrinks(self):
        """1% ATR scales the horizon by 0.8."""
        assert steps_for_horizon(4, 15, self._rows(60, 0.01), volatility_scaled=True) == 13

    def test_volatile_tape_capped(self):
        """Very large ATR is clamped at 1.4x."""
        assert steps_for_horizon(4, 15, self._rows(60, 0.5), volatility_scaled=True) == 22

    def test_quiet_tape_shrinks_further(self):
        """Tiny ATR approaches the lower end of the range."""
        assert steps_for_horizon(4, 15, self._rows(60, 0.0001), volatility_scaled=True) == 12

    def test_short_history_uses_base(self):
        assert steps_for_horizon(4, 15, self._rows(10, 0.5), volatility_scaled=True) == 16

    def test_scaling_disabled(self):
        assert steps_for_horizon(4, 15, self._rows(60, 0.5)) == 16
