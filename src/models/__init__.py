"""
Conditioning Model and Forecast Evaluation.

Provides:
- Logistic conditioning model (inference, never raises)
- Offline gradient-descent trainer with temperature calibration
- SQLite persistence with field-by-field validation
- In-sample forecast scoring (log-likelihood, Brier, accuracy)

Usage:
    from src.models import (
        ConditioningModelStore,
        conditioned_row,
        fit_logit_model,
    )

    result = fit_logit_model(rows_df, states)
    store = ConditioningModelStore("data/regime_store.db")
    store.save(result.model)

    row = conditioned_row(features, store.load_or_default())
"""

from .conditioning_model import (
    LogitModel,
    conditioned_row,
    default_logit_model,
    softmax,
)

from .logit_trainer import (
    TrainingResult,
    fit_logit_model,
)

from .model_store import (
    ConditioningModelStore,
    ModelValidationError,
    SCHEMA_VERSION,
    model_from_payload,
    model_to_payload,
)

from .model_evaluation import (
    ForecastEvaluation,
    brier_score,
    evaluate_probabilities,
    evaluate_transition_matrix,
)

__all__ = [
    # Conditioning model
    "LogitModel",
    "conditioned_row",
    "default_logit_model",
    "softmax",
    # Training
    "TrainingResult",
    "fit_logit_model",
    # Persistence
    "ConditioningModelStore",
    "ModelValidationError",
    "SCHEMA_VERSION",
    "model_from_payload",
    "model_to_payload",
    # Evaluation
    "ForecastEvaluation",
    "brier_score",
    "evaluate_probabilities",
    "evaluate_transition_matrix",
]
