"""
Forecast Evaluation.

In-sample scoring of next-state probability forecasts:
- Log-likelihood (mean log-probability of the realized state)
- Multi-class Brier score
- Hit accuracy of the most likely state
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Sequence

import numpy as np
from sklearn.metrics import accuracy_score, log_loss
from sklearn.preprocessing import label_binarize

from src.regime.regime_labeler import MarketState, NUM_STATES

logger = logging.getLogger(__name__)

STATE_LABELS = list(range(NUM_STATES))


@dataclass
class ForecastEvaluation:
    """Scores of a set of probability forecasts."""
    log_likelihood: float
    brier: float
    accuracy: float
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "log_likelihood": self.log_likelihood,
            "brier": self.brier,
            "accuracy": self.accuracy,
            "count": self.count,
        }

    def summary(self) -> str:
        """Generate summary string."""
        return (
            f"log-likelihood={self.log_likelihood:.4f} "
            f"brier={self.brier:.4f} "
            f"accuracy={self.accuracy * 100:.1f}% "
            f"(n={self.count})"
        )


def empty_evaluation() -> ForecastEvaluation:
    return ForecastEvaluation(log_likelihood=0.0, brier=0.0, accuracy=0.0, count=0)


def brier_score(y_true: Sequence[int], y_proba: np.ndarray) -> float:
    """Mean over samples of the summed squared error across all states."""
    onehot = label_binarize(np.asarray(y_true, dtype=int), classes=STATE_LABELS)
    return float(np.mean(np.sum((np.asarray(y_proba, dtype=float) - onehot) ** 2, axis=1)))


def evaluate_probabilities(
    y_true: Sequence[int],
    y_proba: np.ndarray,
) -> ForecastEvaluation:
    """
    Score probability forecasts against realized states.

    Args:
        y_true: Realized state indices
        y_proba: Forecast rows, shape (n, NUM_STATES)

    Returns:
        ForecastEvaluation (all zeros when there are no samples)
    """
    labels = np.asarray(y_true, dtype=int)
    if len(labels) == 0:
        return empty_evaluation()

    proba = np.asarray(y_proba, dtype=float).reshape(len(labels), NUM_STATES)
    predicted = np.argmax(proba, axis=1)

    return ForecastEvaluation(
        log_likelihood=-float(log_loss(labels, proba, labels=STATE_LABELS)),
        brier=brier_score(labels, proba),
        accuracy=float(accuracy_score(labels, predicted)),
        count=int(len(labels)),
    )


def evaluate_transition_matrix(
    probs: np.ndarray,
    states: Sequence[int],
) -> ForecastEvaluation:
    """
    Score a transition matrix on the transitions of a state window.

    Each transition i -> i+1 is forecast with the matrix row of state i.

    Args:
        probs: 4x4 transition matrix
        states: State window

    Returns:
        ForecastEvaluation over len(states) - 1 transitions
    """
    arr = np.asarray(states, dtype=int)
    if len(arr) < 2:
        return empty_evaluation()
    result = evaluate_probabilities(arr[1:], np.asarray(probs, dtype=float)[arr[:-1]])
    logger.debug(f"Transition matrix in-sample: {result.summary()}")
    return result


def per_state_hit_rate(y_true: Sequence[int], y_proba: np.ndarray) -> Dict[str, float]:
    """Accuracy of argmax forecasts split by realized state."""
    labels = np.asarray(y_true, dtype=int)
    predicted = np.argmax(np.asarray(y_proba, dtype=float), axis=1)
    rates = {}
    for state in MarketState:
        mask = labels == int(state)
        rates[state.name] = float(np.mean(predicted[mask] == labels[mask])) if mask.any() else 0.0
    return rates
