"""
Tests for the regime forecast engine.

Tests:
- Insufficient and invalid input
- Full pass output shapes and invariants
- Determinism and input immutability
- Component availability and blend weights
- Configuration validation
"""

import json
from dataclasses import replace

import numpy as np
import pytest

from config.settings import (
    ConfigurationError,
    EngineConfig,
    ForecastConfig,
    MarkovConfig,
    Order2Config,
)
from src.core import ForecastResult, RegimeForecastEngine
from src.core.engine import INSUFFICIENT_DATA, INVALID_INPUT
from src.models import default_logit_model
from src.regime import MarketState


@pytest.fixture
def engine():
    return RegimeForecastEngine()


@pytest.fixture
def result(engine, observation_rows):
    return engine.compute(observation_rows)


class TestUnavailable:
    """Tests for inputs the engine declines."""

    def test_insufficient_data(self, engine, make_rows):
        result = engine.compute(make_rows(150))

        assert result.available is False
        assert result.reason == INSUFFICIENT_DATA
        assert result.n_rows == 150
        assert result.forecasts == {}

    def test_none_input(self, engine):
        assert engine.compute(None).reason == INSUFFICIENT_DATA

    def test_missing_close(self, engine, observation_rows):
        result = engine.compute(observation_rows.drop(columns=["close"]))
        assert result.reason == INVALID_INPUT

    def test_unordered_rows(self, engine, observation_rows):
        result = engine.compute(observation_rows.iloc[::-1])
        assert result.reason == INVALID_INPUT

    def test_unavailable_serializes(self):
        data = ForecastResult.unavailable(INSUFFICIENT_DATA, 3).to_dict()

        assert data["available"] is False
        assert data["reason"] == INSUFFICIENT_DATA
        assert "forecasts" not in data
        json.dumps(data)

    def test_unavailable_bias_is_zero(self):
        bias = ForecastResult.unavailable(INSUFFICIENT_DATA).forecast_bias()
        assert all(v == 0.0 for v in bias.values())


class TestFullPass:
    """Tests for a complete engine pass."""

    def test_available(self, result, observation_rows):
        assert result.available is True
        assert result.reason is None
        assert result.n_rows == len(observation_rows)

    def test_per_row_outputs_aligned(self, result, observation_rows):
        n = len(observation_rows)

        assert len(result.states) == n
        assert len(result.rule_states) == n
        assert len(result.learned_states) == n
        assert len(result.confidence) == n
        assert set(np.unique(result.states)) <= {0, 1, 2, 3}

    def test_transition_matrix_is_stochastic(self, result):
        assert result.probs.shape == (4, 4)
        assert np.allclose(result.probs.sum(axis=1), 1.0)
        assert np.all(result.probs >= 0)

    def test_current_state_and_run(self, result):
        assert result.current_state == MarketState(int(result.states[-1]))
        assert result.run_length >= 1
        assert np.all(result.states[-result.run_length:] == int(result.current_state))

    def test_rows_are_distributions(self, result):
        for row in (result.row_base, result.row_duration, result.row_blended):
            assert row.sum() == pytest.approx(1.0)
            assert np.all(row >= 0)

    def test_conditioned_row_present(self, result):
        """Enough history for conditioning features; default model is uniform."""
        assert result.row_conditioned.tolist() == pytest.approx([0.25] * 4)
        assert "conditioned" in result.blend_weights

    def test_forecasts_per_horizon(self, result):
        assert set(result.forecasts) == {"1h", "2h", "4h", "6h"}
        assert result.steps == {"1h": 4, "2h": 8, "4h": 16, "6h": 24}
        for vec in result.forecasts.values():
            assert vec.sum() == pytest.approx(1.0)
            assert np.all(vec >= 0)

    def test_diagnostics(self, result):
        diag = result.diagnostics

        assert diag["count"] == len(result.states) - 1
        assert diag["log_likelihood"] <= 0
        assert 0 <= diag["brier"] <= 2
        assert diag["half_life_used"] in (300.0, 150.0, 450.0, 600.0)
        assert diag["order"] == 1
        assert diag["window_used"] == len(result.states)
        assert 0 <= diag["agreement"] <= 1

    def test_diagnostics_hit_rate(self, result):
        """Per-state argmax hit rate over the window's transitions."""
        hit_rate = result.diagnostics["hit_rate"]

        assert set(hit_rate) == {"DOWN", "REVERSAL", "BASE", "UP"}
        assert all(0 <= rate <= 1 for rate in hit_rate.values())
        assert json.loads(json.dumps(result.to_dict()))["diagnostics"]["hit_rate"] == hit_rate

    def test_forecast_bias(self, result):
        bias = result.forecast_bias()
        vec = result.forecasts["1h"]

        assert bias["bullish"] == pytest.approx(vec[MarketState.UP])
        assert bias["bearish"] == pytest.approx(vec[MarketState.DOWN])
        assert bias["confidence"] == pytest.approx(vec.max())
        assert result.forecast_bias("nope")["confidence"] == 0.0

    def test_to_dict_is_json(self, result):
        data = result.to_dict(include_rows=True)
        encoded = json.dumps(data)

        assert data["current_state"] == result.current_state.name
        assert len(data["states"]) == result.n_rows
        assert set(data["rows"]) == {"base", "duration", "order2", "conditioned", "blended"}
        assert "forecasts" in json.loads(encoded)

    def test_deterministic(self, engine, observation_rows):
        a = engine.compute(observation_rows)
        b = RegimeForecastEngine().compute(observation_rows)

        assert np.array_equal(a.states, b.states)
        assert np.array_equal(a.probs, b.probs)
        for label in a.forecasts:
            assert np.array_equal(a.forecasts[label], b.forecasts[label])

    def test_input_not_modified(self, engine, observation_rows):
        before = observation_rows.copy()
        engine.compute(observation_rows)

        assert list(observation_rows.columns) == list(before.columns)
        assert observation_rows.equals(before)

    def test_bare_ohlc_rows(self, engine, observation_rows):
        """Rows without indicator columns still produce a forecast."""
        bare = observation_rows[["timestamp", "open", "high", "low", "close"]]
        result = engine.compute(bare)

        assert result.available is True
        assert np.allclose(result.probs.sum(axis=1), 1.0)


class TestConfiguration:
    """Tests for configuration handling in the engine."""

    def test_invalid_config_raises(self):
        config = EngineConfig(markov=MarkovConfig(window=0))
        with pytest.raises(ConfigurationError):
            RegimeForecastEngine(config)

    @pytest.mark.parametrize("min_history", [0, 1])
    def test_history_too_short_to_transition(self, min_history):
        """A history floor below two rows is refused before compute sees an empty frame."""
        config = EngineConfig(forecast=ForecastConfig(min_history=min_history))
        with pytest.raises(ConfigurationError, match="history"):
            RegimeForecastEngine(config)

    def test_fixed_half_life(self, observation_rows):
        config = EngineConfig(markov=MarkovConfig(auto_half_life=False, half_life=77))
        result = RegimeForecastEngine(config).compute(observation_rows)

        assert result.diagnostics["half_life_used"] == 77.0

    def test_order2_dropped_when_thin(self, observation_rows):
        """An unreachable pair threshold drops the order-2 component."""
        config = EngineConfig(order2=Order2Config(min_count=10_000))
        result = RegimeForecastEngine(config).compute(observation_rows)

        assert result.row_order2 is None
        assert "order2" not in result.blend_weights
        assert result.blend_weights["conditioned"] == pytest.approx(0.4)

    def test_custom_horizons(self, observation_rows):
        config = EngineConfig(forecast=ForecastConfig(horizons_hours=(0.5, 12)))
        result = RegimeForecastEngine(config).compute(observation_rows)

        assert result.steps == {"0.5h": 2, "12h": 48}

    def test_min_history(self, make_rows):
        config = EngineConfig(forecast=replace(ForecastConfig(), min_history=50))
        assert RegimeForecastEngine(config).compute(make_rows(60)).available is True

    def test_trained_model_changes_conditioned_row(self, observation_rows):
        model = default_logit_model()
        model.bias = np.array([0.0, 0.0, 0.0, 3.0])
        model.n_samples = 100
        result = RegimeForecastEngine(model=model).compute(observation_rows)

        assert np.argmax(result.row_conditioned) == int(MarketState.UP)
