"""
Tests for the recency-weighted transition matrix.

Tests:
- Row-sum and range invariants over random sequences
- Recency weights and context boosts
- Convergence on a deterministic cycle
- Exact zeros without smoothing, uniform rows without evidence
"""

import numpy as np
import pytest

from src.markov import (
    build_markov_weighted,
    context_boosts,
    decay_weights,
    normalize_row,
    uniform_matrix,
)
from src.regime import MarketState, codes_to_states


def _assert_stochastic(probs):
    assert probs.shape == (4, 4)
    assert np.all(probs >= 0) and np.all(probs <= 1)
    assert np.allclose(probs.sum(axis=1), 1.0, atol=1e-9)


class TestDecayWeights:
    """Tests for decay_weights."""

    def test_halving(self):
        """Weights halve every half-life steps back."""
        weights = decay_weights(3, 1.0)
        assert weights.tolist() == pytest.approx([0.25, 0.5, 1.0])

    def test_most_recent_is_one(self):
        """The latest transition always has weight 1."""
        weights = decay_weights(50, 7.5)
        assert weights[-1] == pytest.approx(1.0)
        assert weights.max() == pytest.approx(1.0)

    def test_no_decay(self):
        """Non-positive half-life disables decay."""
        assert decay_weights(4, 0).tolist() == [1.0, 1.0, 1.0, 1.0]

    def test_empty(self):
        assert len(decay_weights(0, 10)) == 0


class TestContextBoosts:
    """Tests for order-k context boosts."""

    def test_first_order_is_flat(self):
        """Order 1 never boosts."""
        assert context_boosts(np.array([0, 1, 0, 1]), 1).tolist() == [1.0, 1.0, 1.0]

    def test_order_two_full_match(self):
        """Matching the last state doubles the weight at order 2."""
        boosts = context_boosts(np.array([0, 1, 0, 1, 0, 1]), 2)
        assert boosts.tolist() == [1.0, 2.0, 1.0, 2.0, 1.0]

    def test_order_three_full_match(self):
        """A full two-state match at order 3 multiplies by 2.5."""
        boosts = context_boosts(np.array([0, 1, 0, 1, 0, 1]), 3)
        assert boosts.tolist() == [1.0, 2.5, 1.0, 2.5, 1.0]

    def test_partial_match_scales(self):
        """A one-of-two match gets half the extra boost."""
        boosts = context_boosts(np.array([2, 1, 0, 1]), 3)
        assert boosts.tolist() == pytest.approx([1.0, 1.75, 1.0])


class TestBuildMarkovWeighted:
    """Tests for build_markov_weighted."""

    @pytest.mark.parametrize("order", [1, 2, 3])
    @pytest.mark.parametrize("dirichlet", [0.0, 2.0])
    @pytest.mark.parametrize("smoothing", [0.0, 0.5])
    def test_rows_are_distributions(self, order, dirichlet, smoothing):
        """Every row sums to 1 and entries stay in [0, 1]."""
        rng = np.random.default_rng(order * 10 + int(dirichlet))
        for length in (2, 3, 17, 400):
            states = rng.integers(0, 4, length)
            result = build_markov_weighted(
                states, window=300, smoothing=smoothing, half_life=50,
                order=order, dirichlet_strength=dirichlet,
            )
            _assert_stochastic(result.probs)

    def test_degenerate_input(self):
        """Fewer than two states gives the uniform matrix and no weights."""
        for states in ([], [2]):
            result = build_markov_weighted(states, window=100, smoothing=0.5, half_life=10)
            assert np.array_equal(result.probs, uniform_matrix())
            assert result.weights == []
            assert result.counts.sum() == 0

    def test_window_limits_history(self):
        """Only the last `window` states are counted."""
        states = codes_to_states("DDDDDDDDUUUU")
        result = build_markov_weighted(states, window=4, smoothing=0, half_life=0)

        assert result.counts.sum() == pytest.approx(3.0)
        assert result.counts[MarketState.UP, MarketState.UP] == pytest.approx(3.0)
        assert result.window_used == 4

    def test_converges_on_cycle(self):
        """UUUDD repeated: U->U tends to 2/3 and D->D to 1/2 as the window grows."""
        states = codes_to_states("UUUDD" * 200)
        up, down = int(MarketState.UP), int(MarketState.DOWN)

        errors = []
        for window in (20, 100, 1000):
            result = build_markov_weighted(states, window=window, smoothing=0.5, half_life=0)
            errors.append(abs(result.probs[up, up] - 2 / 3))

        assert errors[0] > errors[1] > errors[2]
        assert errors[2] < 0.01

        full = build_markov_weighted(states, window=1000, smoothing=0, half_life=0)
        assert full.probs[up, up] == pytest.approx(2 / 3)
        assert full.probs[down, down] == pytest.approx(0.5, abs=0.01)

    def test_unseen_transition_is_exact_zero(self):
        """Without smoothing or prior an unobserved transition is 0, not NaN."""
        states = codes_to_states("DDRRBBUUDDRRBBUU")
        result = build_markov_weighted(
            states, window=100, smoothing=0.0, half_life=0, dirichlet_strength=0.0,
        )
        down, up = int(MarketState.DOWN), int(MarketState.UP)

        assert result.probs[down, up] == 0.0
        assert not np.isnan(result.probs).any()
        _assert_stochastic(result.probs)

    def test_row_without_evidence_is_uniform(self):
        """A state never left has a uniform row when there is no prior."""
        states = codes_to_states("DRDRDRDR")
        result = build_markov_weighted(
            states, window=100, smoothing=0.0, half_life=0, dirichlet_strength=0.0,
        )

        assert result.probs[MarketState.UP].tolist() == [0.25] * 4
        assert result.probs[MarketState.BASE].tolist() == [0.25] * 4

    def test_dirichlet_prior_follows_frequencies(self):
        """The prior pulls empty rows toward the stationary distribution."""
        states = codes_to_states("DDDDDDRR")
        result = build_markov_weighted(
            states, window=100, smoothing=0.0, half_life=0, dirichlet_strength=4.0,
        )

        assert result.probs[MarketState.UP].tolist() == pytest.approx([0.75, 0.25, 0.0, 0.0])

    def test_recency_favours_latest_behaviour(self):
        """A short half-life tracks the most recent regime."""
        states = codes_to_states("UD" * 50 + "UU" * 50)
        up = int(MarketState.UP)

        fast = build_markov_weighted(states, window=1000, smoothing=0.5, half_life=5)
        slow = build_markov_weighted(states, window=1000, smoothing=0.5, half_life=0)

        assert fast.probs[up, up] > slow.probs[up, up]

    def test_context_depth_reported(self):
        states = codes_to_states("UDUDUD")
        assert build_markov_weighted(states, 100, 0.5, 10, order=3).context_depth == 2
        assert build_markov_weighted(states, 100, 0.5, 10, order=1).context_depth == 0


class TestNormalizeRow:
    """Tests for normalize_row."""

    def test_scales(self):
        assert normalize_row([1, 1, 2, 0]).tolist() == [0.25, 0.25, 0.5, 0.0]

    def test_degenerate_is_uniform(self):
        assert normalize_row([0, 0, 0, 0]).tolist() == [0.25] * 4
        assert normalize_row([np.nan, 1, 1, 1]).tolist() == [0.25] * 4
