"""
Offline trainer for the conditioning model.

Fits a multinomial logistic regression over the conditioning features by
full-batch gradient descent with L2 regularization, then calibrates a
temperature by grid search on the training Brier score.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

import numpy as np
import pandas as pd

from config.settings import ConditioningConfig
from src.features.conditioning_features import FEATURE_DIM, build_feature_matrix
from src.models.conditioning_model import LogitModel, default_logit_model, softmax
from src.models.model_evaluation import brier_score, evaluate_probabilities
from src.regime.regime_labeler import NUM_STATES

logger = logging.getLogger(__name__)


@dataclass
class TrainingResult:
    """Container for training results."""
    model: LogitModel
    trained: bool
    n_samples: int
    reason: Optional[str] = None
    metrics: Dict[str, float] = field(default_factory=dict)
    temperature_scores: Dict[float, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to serializable dictionary."""
        return {
            "trained": self.trained,
            "n_samples": self.n_samples,
            "reason": self.reason,
            "temperature": self.model.temperature,
            "metrics": self.metrics,
            "temperature_scores": {str(t): s for t, s in self.temperature_scores.items()},
        }


def collect_samples(
    df: pd.DataFrame,
    states: Sequence[int],
    warmup_rows: int = 25,
):
    """
    Feature rows paired with the next state.

    Args:
        df: Observation rows
        states: State per row
        warmup_rows: First index used as a sample

    Returns:
        (X, y) with X of shape (n, FEATURE_DIM)
    """
    n = len(df)
    indices = np.arange(warmup_rows, n - 1)
    if len(indices) == 0:
        return np.zeros((0, FEATURE_DIM)), np.zeros(0, dtype=int)

    X = build_feature_matrix(df, indices)
    y = np.asarray(states, dtype=int)[indices + 1]
    finite = np.all(np.isfinite(X), axis=1)
    return X[finite], y[finite]


def sample_standardization(X: np.ndarray):
    """Per-feature mean and sample std (std 0 replaced with 1)."""
    mean = X.mean(axis=0)
    std = X.std(axis=0, ddof=1) if len(X) > 1 else np.zeros(X.shape[1])
    std = np.where(std > 0, std, 1.0)
    return mean, std


def gradient_descent(
    X: np.ndarray,
    y: np.ndarray,
    learning_rate: float,
    l2_penalty: float,
    iterations: int,
):
    """
    Full-batch gradient descent on the softmax cross-entropy.

    The L2 term applies to the weights only, not the bias.

    Returns:
        (weights, bias)
    """
    n = len(X)
    weights = np.zeros((NUM_STATES, X.shape[1]))
    bias = np.zeros(NUM_STATES)
    targets = np.eye(NUM_STATES)[y]

    for _ in range(iterations):
        probs = softmax(X @ weights.T + bias)
        diff = probs - targets
        grad_w = diff.T @ X / n
        grad_b = diff.sum(axis=0) / n
        bias -= learning_rate * grad_b
        weights -= learning_rate * (grad_w + l2_penalty * weights)

    return weights, bias


def calibrate_temperature(
    logits: np.ndarray,
    y: np.ndarray,
    temperatures: Sequence[float],
):
    """
    Pick the temperature with the lowest summed Brier score.

    Earlier candidates win ties.

    Returns:
        (best temperature, score per temperature)
    """
    scores: Dict[float, float] = {}
    best_temp = 1.0
    best_score = np.inf
    for temp in temperatures:
        probs = softmax(logits / temp)
        score = brier_score(y, probs) * len(y)
        scores[float(temp)] = score
        if score < best_score:
            best_score = score
            best_temp = float(temp)
    return best_temp, scores


def fit_logit_model(
    df: pd.DataFrame,
    states: Sequence[int],
    config: Optional[ConditioningConfig] = None,
) -> TrainingResult:
    """
    Train the conditioning model.

    Args:
        df: Observation rows
        states: Canonical state per row (aligned with df)
        config: Training parameters

    Returns:
        TrainingResult; the model is the untrained default when there is
        not enough data
    """
    config = config or ConditioningConfig()

    if len(df) < config.min_rows or len(states) != len(df):
        reason = (
            f"need {config.min_rows} aligned rows, got {len(df)} rows "
            f"and {len(states)} states"
        )
        logger.info(f"Conditioning model not trained: {reason}")
        return TrainingResult(model=default_logit_model(), trained=False, n_samples=0, reason=reason)

    X, y = collect_samples(df, states, config.warmup_rows)
    if len(X) < config.min_samples:
        reason = f"need {config.min_samples} samples, got {len(X)}"
        logger.info(f"Conditioning model not trained: {reason}")
        return TrainingResult(
            model=default_logit_model(), trained=False, n_samples=len(X), reason=reason
        )

    mean, std = sample_standardization(X)
    Xn = (X - mean) / std

    weights, bias = gradient_descent(
        Xn, y, config.learning_rate, config.l2_penalty, config.iterations
    )
    logits = Xn @ weights.T + bias
    temperature, temp_scores = calibrate_temperature(logits, y, config.temperatures)

    evaluation = evaluate_probabilities(y, softmax(logits / temperature))
    model = LogitModel(
        weights=weights,
        bias=bias,
        temperature=temperature,
        feature_mean=mean,
        feature_std=std,
        n_samples=len(X),
        trained_at=datetime.utcnow(),
        metrics=evaluation.to_dict(),
    )

    logger.info(
        f"Conditioning model trained on {len(X)} samples, "
        f"temperature={temperature}, {evaluation.summary()}"
    )
    return TrainingResult(
        model=model,
        trained=True,
        n_samples=len(X),
        metrics=evaluation.to_dict(),
        temperature_scores=temp_scores,
    )
