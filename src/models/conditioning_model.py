"""
Conditioning Model (inference side).

A small multinomial logistic classifier over the engineered conditioning
features. It produces a next-state probability row that is blended with
the Markov estimates. Inference never raises: a malformed model or
feature vector falls back to the untrained default.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

import numpy as np

from src.features.conditioning_features import FEATURE_DIM
from src.regime.regime_labeler import NUM_STATES

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 1.2
MIN_TEMPERATURE = 1e-6


@dataclass
class LogitModel:
    """Parameters of the conditioning classifier."""
    weights: np.ndarray  # (NUM_STATES, FEATURE_DIM)
    bias: np.ndarray  # (NUM_STATES,)
    temperature: float
    feature_mean: np.ndarray  # (FEATURE_DIM,)
    feature_std: np.ndarray  # (FEATURE_DIM,)
    n_samples: int = 0
    trained_at: Optional[datetime] = None
    metrics: Dict[str, float] = field(default_factory=dict)

    @property
    def is_trained(self) -> bool:
        return self.n_samples > 0

    def is_well_formed(self) -> bool:
        """Shapes match and every parameter is finite."""
        try:
            arrays = (
                (np.asarray(self.weights, dtype=float), (NUM_STATES, FEATURE_DIM)),
                (np.asarray(self.bias, dtype=float), (NUM_STATES,)),
                (np.asarray(self.feature_mean, dtype=float), (FEATURE_DIM,)),
                (np.asarray(self.feature_std, dtype=float), (FEATURE_DIM,)),
            )
            for arr, shape in arrays:
                if arr.shape != shape or not np.all(np.isfinite(arr)):
                    return False
            return bool(np.isfinite(float(self.temperature)))
        except (TypeError, ValueError):
            return False

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly parameter dump."""
        return {
            "weights": np.asarray(self.weights, dtype=float).tolist(),
            "bias": np.asarray(self.bias, dtype=float).tolist(),
            "temperature": float(self.temperature),
            "feature_mean": np.asarray(self.feature_mean, dtype=float).tolist(),
            "feature_std": np.asarray(self.feature_std, dtype=float).tolist(),
            "n_samples": int(self.n_samples),
            "trained_at": self.trained_at.isoformat() if self.trained_at else None,
            "metrics": dict(self.metrics),
        }


def default_logit_model() -> LogitModel:
    """Untrained model: zero weights and bias, temperature 1.2, identity scaling."""
    return LogitModel(
        weights=np.zeros((NUM_STATES, FEATURE_DIM)),
        bias=np.zeros(NUM_STATES),
        temperature=DEFAULT_TEMPERATURE,
        feature_mean=np.zeros(FEATURE_DIM),
        feature_std=np.ones(FEATURE_DIM),
    )


def softmax(logits: np.ndarray) -> np.ndarray:
    """Numerically stable softmax over the last axis."""
    shifted = logits - np.max(logits, axis=-1, keepdims=True)
    exps = np.exp(shifted)
    return exps / np.sum(exps, axis=-1, keepdims=True)


def standardize_features(features: np.ndarray, model: LogitModel) -> np.ndarray:
    """Scale features with the model's stored mean/std (std 0 treated as 1)."""
    std = np.asarray(model.feature_std, dtype=float)
    std = np.where(std > 0, std, 1.0)
    return (features - np.asarray(model.feature_mean, dtype=float)) / std


def _row(features: np.ndarray, model: LogitModel) -> np.ndarray:
    x = standardize_features(features, model)
    logits = np.asarray(model.bias, dtype=float) + np.asarray(model.weights, dtype=float) @ x
    return softmax(logits / max(float(model.temperature), MIN_TEMPERATURE))


def conditioned_row(
    features: Sequence[float],
    model: Optional[LogitModel] = None,
) -> np.ndarray:
    """
    Next-state probability row from conditioning features.

    Args:
        features: Length-10 feature vector (non-finite entries count as 0)
        model: Classifier parameters (default model if None)

    Returns:
        Length-4 probability row
    """
    if model is None or not model.is_well_formed():
        if model is not None:
            logger.warning("Malformed conditioning model, using default")
        model = default_logit_model()

    try:
        x = np.asarray(features, dtype=float).reshape(-1)
    except (TypeError, ValueError):
        logger.warning("Unusable conditioning features, using default model output")
        return _row(np.zeros(FEATURE_DIM), default_logit_model())

    if x.shape != (FEATURE_DIM,):
        logger.warning(
            f"Expected {FEATURE_DIM} conditioning features, got {x.size}; "
            "using default model output"
        )
        return _row(np.zeros(FEATURE_DIM), default_logit_model())

    x = np.where(np.isfinite(x), x, 0.0)
    row = _row(x, model)
    if not np.all(np.isfinite(row)):
        return _row(np.zeros(FEATURE_DIM), default_logit_model())
    return row
