"""
Tests for the semi-Markov duration correction.

Tests:
- Run lengths and duration samples
- Hazard and continuation estimates
- Stay-probability correction at the end of a typical run
"""

import numpy as np
import pytest

from src.markov import (
    build_markov_weighted,
    compute_run_length,
    continuation_probability,
    estimate_durations,
    hazard_rate,
    semi_markov_adjust,
)
from src.regime import MarketState, codes_to_states


class TestRunLengths:
    """Tests for run length bookkeeping."""

    def test_current_run(self):
        assert compute_run_length(codes_to_states("DDUUU")) == 3
        assert compute_run_length(codes_to_states("U")) == 1
        assert compute_run_length([]) == 0

    def test_durations_include_trailing_run(self):
        """Every run is recorded, including the one still open."""
        durations = estimate_durations([3, 3, 0, 3])

        assert durations[MarketState.UP] == [2, 1]
        assert durations[MarketState.DOWN] == [1]
        assert durations[MarketState.BASE] == []
        assert set(durations) == set(MarketState)

    def test_empty(self):
        durations = estimate_durations([])
        assert all(v == [] for v in durations.values())


class TestSurvival:
    """Tests for hazard and continuation estimates."""

    def test_hazard(self):
        assert hazard_rate([5, 5, 5], 5) == pytest.approx(1.0)
        assert hazard_rate([2, 4, 4, 6], 4) == pytest.approx(2 / 3)
        assert hazard_rate([1, 2], 5) == 0.0

    def test_continuation_is_laplace_smoothed(self):
        """(survivors - exits + 1) / (survivors + 2)."""
        assert continuation_probability([5] * 11, 5) == pytest.approx(1 / 13)
        assert continuation_probability([2, 4, 4, 6], 4) == pytest.approx(2 / 5)
        assert continuation_probability([], 3) == pytest.approx(0.5)


class TestSemiMarkovAdjust:
    """Tests for semi_markov_adjust."""

    @pytest.fixture
    def states(self):
        # Up-runs always last exactly five bars; we sit at the end of one
        return codes_to_states("UUUUUDDD" * 10 + "UUUUU")

    def test_end_of_typical_run_lowers_stay(self, states):
        """After a run of typical length the stay probability drops."""
        base = build_markov_weighted(states, window=1000, smoothing=0.5, half_life=0)
        up = int(MarketState.UP)
        row = base.row(up)

        adjusted = semi_markov_adjust(row, states, smoothing=0.4)

        assert adjusted[up] < row[up]
        assert adjusted.sum() == pytest.approx(1.0)

    def test_full_weight_uses_continuation(self, states):
        """With smoothing 1 the stay entry equals the continuation estimate."""
        row = np.array([0.1, 0.05, 0.05, 0.8])
        adjusted = semi_markov_adjust(row, states, smoothing=1.0)

        assert adjusted[MarketState.UP] == pytest.approx(1 / 13)
        assert adjusted[MarketState.DOWN] / adjusted[MarketState.BASE] == pytest.approx(2.0)

    def test_too_few_runs_keeps_row(self):
        """Fewer than min_runs runs of the current state leaves the row alone."""
        row = np.array([0.1, 0.1, 0.1, 0.7])
        adjusted = semi_markov_adjust(row, codes_to_states("DDUUU"), min_runs=3)

        assert adjusted.tolist() == pytest.approx(row.tolist())
        assert adjusted is not row

    def test_absorbing_row_spreads_exit_mass(self):
        """A row with no exit mass spreads the remainder evenly."""
        states = codes_to_states("UUDUUDUU")
        adjusted = semi_markov_adjust([0, 0, 0, 1.0], states, smoothing=1.0, min_runs=3)

        others = adjusted[[0, 1, 2]]
        assert np.allclose(others, others[0])
        assert adjusted.sum() == pytest.approx(1.0)
