"""
Regime Forecast Engine.

Runs one synchronous pass over a window of observation rows:

    rows -> rule labels -> learned canonical states
         -> {transition matrix, duration, order-2, conditioning}
         -> blended one-step row -> forecasts per horizon + diagnostics

The pass never raises on thin or dirty data; it reports insufficiency
through an unavailable result or by dropping the affected component.
Only invalid configuration fails fast, at construction.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from config.settings import EngineConfig
from src.features.conditioning_features import build_conditioning_features
from src.features.observation import ensure_regime_fields, validate_observations
from src.markov.duration_model import (
    compute_run_length,
    estimate_durations,
    semi_markov_adjust,
)
from src.markov.forecast import (
    blend_rows,
    blend_weights,
    forecast_horizons,
    steps_for_horizon,
)
from src.markov.model_selector import select_half_life
from src.markov.order2_model import build_order2_counts, last_pair, row_from_order2
from src.markov.transition_matrix import MarkovResult, build_markov_weighted
from src.models.conditioning_model import LogitModel, conditioned_row, default_logit_model
from src.models.model_evaluation import evaluate_transition_matrix, per_state_hit_rate
from src.regime.regime_labeler import MarketState, StateLabeler
from src.regime.regime_learner import ClusterProfile, RegimeLearner

logger = logging.getLogger(__name__)

INSUFFICIENT_DATA = "insufficient_data"
INVALID_INPUT = "invalid_input"


def _as_list(value: Optional[np.ndarray]) -> Optional[List[float]]:
    if value is None:
        return None
    return np.asarray(value, dtype=float).tolist()


@dataclass
class ForecastResult:
    """Everything one engine pass produces."""
    available: bool
    reason: Optional[str] = None
    n_rows: int = 0
    states: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=int))
    rule_states: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=int))
    learned_states: List[Optional[MarketState]] = field(default_factory=list)
    confidence: np.ndarray = field(default_factory=lambda: np.zeros(0))
    counts: Optional[np.ndarray] = None
    probs: Optional[np.ndarray] = None
    current_state: Optional[MarketState] = None
    run_length: int = 0
    row_base: Optional[np.ndarray] = None
    row_duration: Optional[np.ndarray] = None
    row_order2: Optional[np.ndarray] = None
    row_conditioned: Optional[np.ndarray] = None
    row_blended: Optional[np.ndarray] = None
    blend_weights: Dict[str, float] = field(default_factory=dict)
    steps: Dict[str, int] = field(default_factory=dict)
    forecasts: Dict[str, np.ndarray] = field(default_factory=dict)
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    clusters: List[ClusterProfile] = field(default_factory=list)
    computed_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def unavailable(cls, reason: str, n_rows: int = 0) -> "ForecastResult":
        return cls(available=False, reason=reason, n_rows=n_rows)

    def forecast_bias(self, horizon: Optional[str] = None) -> Dict[str, float]:
        """
        Directional summary of a forecast horizon.

        Args:
            horizon: Horizon label (nearest horizon if None)

        Returns:
            Dict with bullish, bearish, base, reversal mass and confidence
            (the largest single-state probability); zeros when unavailable
        """
        empty = {"bullish": 0.0, "bearish": 0.0, "base": 0.0, "reversal": 0.0, "confidence": 0.0}
        if not self.available or not self.forecasts:
            return empty

        if horizon is None:
            horizon = min(self.steps, key=lambda label: self.steps[label])
        vec = self.forecasts.get(horizon)
        if vec is None:
            return empty

        return {
            "bullish": float(vec[MarketState.UP]),
            "bearish": float(vec[MarketState.DOWN]),
            "base": float(vec[MarketState.BASE]),
            "reversal": float(vec[MarketState.REVERSAL]),
            "confidence": float(np.max(vec)),
        }

    def to_dict(self, include_rows: bool = False) -> Dict[str, Any]:
        """
        JSON-friendly view.

        Args:
            include_rows: Include per-row states and confidence
        """
        data: Dict[str, Any] = {
            "available": self.available,
            "reason": self.reason,
            "n_rows": self.n_rows,
            "computed_at": self.computed_at.isoformat(),
        }
        if not self.available:
            return data

        data.update({
            "current_state": self.current_state.name if self.current_state is not None else None,
            "run_length": self.run_length,
            "counts": _as_list(self.counts),
            "probs": _as_list(self.probs),
            "rows": {
                "base": _as_list(self.row_base),
                "duration": _as_list(self.row_duration),
                "order2": _as_list(self.row_order2),
                "conditioned": _as_list(self.row_conditioned),
                "blended": _as_list(self.row_blended),
            },
            "blend_weights": dict(self.blend_weights),
            "steps": dict(self.steps),
            "forecasts": {label: _as_list(vec) for label, vec in self.forecasts.items()},
            "forecast_bias": self.forecast_bias(),
            "diagnostics": dict(self.diagnostics),
            "clusters": [c.to_dict() for c in self.clusters],
        })
        if include_rows:
            data["states"] = [MarketState(int(s)).code for s in self.states]
            data["rule_states"] = [MarketState(int(s)).code for s in self.rule_states]
            data["learned_states"] = [
                s.code if s is not None else None for s in self.learned_states
            ]
            data["confidence"] = _as_list(self.confidence)
        return data


class RegimeForecastEngine:
    """
    Single-pass regime inference and forecasting.

    Usage:
        engine = RegimeForecastEngine(EngineConfig(), model=store.load_or_default())
        result = engine.compute(rows_df)

        if result.available:
            print(result.forecasts["4h"])
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        model: Optional[LogitModel] = None,
    ):
        """
        Initialize engine.

        Args:
            config: Engine configuration (validated here)
            model: Conditioning model (untrained default if None)

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self.config = (config or EngineConfig()).ensure_valid()
        self.model = model if model is not None else default_logit_model()
        self.labeler = StateLabeler()
        self.learner = RegimeLearner(self.config.regime)

    def _build_matrix(self, states: np.ndarray):
        markov_cfg = self.config.markov
        if markov_cfg.auto_half_life:
            selection = select_half_life(states, markov_cfg)
            return selection.markov, selection.half_life

        markov = build_markov_weighted(
            states,
            window=markov_cfg.window,
            smoothing=markov_cfg.smoothing,
            half_life=markov_cfg.half_life,
            order=markov_cfg.order,
            dirichlet_strength=markov_cfg.dirichlet_strength,
        )
        return markov, markov_cfg.half_life

    def _conditioned(self, df: pd.DataFrame) -> Optional[np.ndarray]:
        if len(df) < self.config.blend.min_feature_rows:
            return None
        features = build_conditioning_features(df, len(df) - 1)
        return conditioned_row(features, self.model)

    def _diagnostics(
        self,
        markov: MarkovResult,
        states: np.ndarray,
        half_life: float,
    ) -> Dict[str, Any]:
        window_states = states[-self.config.markov.window:]
        evaluation = evaluate_transition_matrix(markov.probs, window_states)
        diagnostics = evaluation.to_dict()
        if len(window_states) >= 2:
            diagnostics["hit_rate"] = per_state_hit_rate(
                window_states[1:], markov.probs[window_states[:-1]]
            )
        else:
            diagnostics["hit_rate"] = {}
        diagnostics.update({
            "half_life_used": float(half_life),
            "order": self.config.markov.order,
            "context_depth": markov.context_depth,
            "dirichlet_strength": self.config.markov.dirichlet_strength,
            "smoothing": self.config.markov.smoothing,
            "window_used": markov.window_used,
        })
        return diagnostics

    def compute(self, df: pd.DataFrame) -> ForecastResult:
        """
        Run the full pipeline over a window of observation rows.

        Args:
            df: Observation rows, oldest first

        Returns:
            ForecastResult (available=False when history is too short)
        """
        n_rows = len(df) if df is not None else 0
        min_history = self.config.forecast.min_history
        if n_rows < min_history:
            logger.info(f"Insufficient data: {n_rows} rows (need {min_history})")
            return ForecastResult.unavailable(INSUFFICIENT_DATA, n_rows)

        problems = validate_observations(df)
        if problems:
            logger.warning(f"Observation rows rejected: {'; '.join(problems)}")
            return ForecastResult.unavailable(INVALID_INPUT, n_rows)

        rows = ensure_regime_fields(df.reset_index(drop=True))

        # Regime inference
        rule_states = self.labeler.label_states(rows)
        inference = self.learner.infer(rows, rule_states)
        states = inference.states

        # Transition matrix
        markov, half_life = self._build_matrix(states)
        current = MarketState(int(states[-1]))
        row_base = markov.row(current)

        # Components
        durations = estimate_durations(states)
        run_length = compute_run_length(states)
        row_duration = semi_markov_adjust(
            row_base,
            states,
            durations=durations,
            run_length=run_length,
            smoothing=self.config.duration.smoothing,
            min_runs=self.config.duration.min_runs,
        )

        row_order2 = row_from_order2(
            build_order2_counts(states),
            last_pair(states),
            min_count=self.config.order2.min_count,
            pseudo_count=self.config.order2.pseudo_count,
        )
        row_conditioned = self._conditioned(rows)

        # Blend
        weights = blend_weights(
            row_order2 is not None, row_conditioned is not None, self.config.blend
        )
        components = {
            "duration": row_duration,
            "order2": row_order2,
            "conditioned": row_conditioned,
        }
        names = list(weights)
        row_blended = blend_rows(
            [components[name] for name in names], [weights[name] for name in names]
        )

        # Forecast
        forecast_cfg = self.config.forecast
        steps = {
            forecast_cfg.horizon_label(hours): steps_for_horizon(
                hours,
                forecast_cfg.interval_minutes,
                rows,
                forecast_cfg.volatility_scaled_steps,
            )
            for hours in forecast_cfg.horizons_hours
        }
        forecasts = forecast_horizons(markov.probs, int(current), steps, row_blended)

        diagnostics = self._diagnostics(markov, states, half_life)
        diagnostics["agreement"] = inference.agreement

        logger.debug(
            f"Engine pass: {n_rows} rows, state={current.name}, run={run_length}, "
            f"half_life={half_life}, components={names}"
        )

        return ForecastResult(
            available=True,
            n_rows=n_rows,
            states=states,
            rule_states=inference.rule_states,
            learned_states=inference.learned_states,
            confidence=inference.confidence,
            counts=markov.counts,
            probs=markov.probs,
            current_state=current,
            run_length=run_length,
            row_base=row_base,
            row_duration=row_duration,
            row_order2=row_order2,
            row_conditioned=row_conditioned,
            row_blended=row_blended,
            blend_weights=weights,
            steps=steps,
            forecasts=forecasts,
            diagnostics=diagnostics,
            clusters=inference.clusters,
        )
