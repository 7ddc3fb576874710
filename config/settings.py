"""
Configuration dataclasses for the regime forecast engine.

All configuration parameters are defined here with sensible defaults.
Values can be overridden via config.yaml or environment variables.
"""

from dataclasses import dataclass, field, astuple
from pathlib import Path
from typing import List, Optional, Tuple


class ConfigurationError(ValueError):
    """Raised when the engine is given a configuration it cannot run with."""


# ===========================================
# MARKOV MODEL CONFIGURATION
# ===========================================

@dataclass(frozen=True)
class MarkovConfig:
    """Recency-weighted transition matrix parameters."""

    window: int = 1200  # Lookback states for the transition matrix
    half_life: float = 300.0  # Steps until a transition's weight halves
    auto_half_life: bool = True  # Pick the half-life by in-sample likelihood
    min_half_life: float = 5.0  # Floor for auto half-life candidates
    half_life_multipliers: Tuple[float, ...] = (0.5, 1.0, 1.5, 2.0)
    smoothing: float = 0.5  # Flat pseudo-count added to every cell
    dirichlet_strength: float = 2.0  # Weight of the stationary-frequency prior
    order: int = 1  # Context order k (1 = plain first-order chain)
    selector_workers: int = 1  # Threads used to score half-life candidates


@dataclass(frozen=True)
class DurationConfig:
    """Semi-Markov (run-length) correction parameters."""

    smoothing: float = 0.4  # Weight of the continuation estimate on the stay entry
    min_runs: int = 3  # Historical runs required before correcting


@dataclass(frozen=True)
class Order2Config:
    """Pairwise context model parameters."""

    min_count: int = 12  # Observations of a pair required for an estimate
    pseudo_count: float = 0.5


# ===========================================
# REGIME DETECTION CONFIGURATION
# ===========================================

@dataclass(frozen=True)
class RegimeConfig:
    """Rule/cluster reconciliation parameters."""

    confidence_gate: float = 0.45
    smooth_passes: int = 2
    max_iterations: int = 60  # k-means iteration cap
    confidence_decay: float = 3.0  # exp(-decay * normalized distance)


# ===========================================
# CONDITIONING MODEL CONFIGURATION
# ===========================================

@dataclass(frozen=True)
class ConditioningConfig:
    """Logistic conditioning model training parameters."""

    min_rows: int = 120
    min_samples: int = 40
    warmup_rows: int = 25  # First rows skipped while features fill in
    learning_rate: float = 0.12
    l2_penalty: float = 1e-3
    iterations: int = 80
    temperatures: Tuple[float, ...] = (0.6, 0.8, 1.0, 1.2, 1.4, 1.6)
    default_temperature: float = 1.2


@dataclass(frozen=True)
class BlendConfig:
    """Ensemble blend weights for the one-step row.

    The conditioning row takes the remainder of 1 after the duration and
    (when present) order-2 weights.
    """

    duration_weight: float = 0.6
    order2_weight: float = 0.25
    min_feature_rows: int = 21  # Rows needed before conditioning features are used


# ===========================================
# FORECAST CONFIGURATION
# ===========================================

@dataclass(frozen=True)
class ForecastConfig:
    """Forecast horizon parameters."""

    horizons_hours: Tuple[float, ...] = (1, 2, 4, 6)
    interval_minutes: int = 15  # Bar duration
    volatility_scaled_steps: bool = False  # Stretch horizons in volatile tape
    min_history: int = 210  # Rows required before the engine will compute

    @staticmethod
    def horizon_label(hours: float) -> str:
        """Format a horizon as a dictionary key (e.g. 4 -> "4h")."""
        if float(hours).is_integer():
            return f"{int(hours)}h"
        return f"{hours:g}h"


# ===========================================
# DATA STORAGE CONFIGURATION
# ===========================================

@dataclass
class StorageConfig:
    """Paths for persisted engine state."""

    base_path: Path = field(default_factory=lambda: Path("data"))
    store_file: str = "regime_store.db"
    model_key: str = "markov_logit_model"

    @property
    def store_path(self) -> Path:
        return self.base_path / self.store_file


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    file_path: Optional[str] = None


# ===========================================
# MAIN ENGINE CONFIGURATION
# ===========================================

@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration combining all model sub-configs."""

    markov: MarkovConfig = field(default_factory=MarkovConfig)
    duration: DurationConfig = field(default_factory=DurationConfig)
    order2: Order2Config = field(default_factory=Order2Config)
    regime: RegimeConfig = field(default_factory=RegimeConfig)
    conditioning: ConditioningConfig = field(default_factory=ConditioningConfig)
    blend: BlendConfig = field(default_factory=BlendConfig)
    forecast: ForecastConfig = field(default_factory=ForecastConfig)

    def validate(self) -> List[str]:
        """
        Validate configuration and return list of errors.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        if self.markov.window <= 0:
            errors.append(f"Window must be positive, got {self.markov.window}")
        if self.markov.smoothing < 0:
            errors.append(f"Smoothing cannot be negative, got {self.markov.smoothing}")
        if self.markov.dirichlet_strength < 0:
            errors.append(
                f"Dirichlet strength cannot be negative, got {self.markov.dirichlet_strength}"
            )
        if self.markov.order < 1:
            errors.append(f"Context order must be >= 1, got {self.markov.order}")
        if not self.markov.half_life_multipliers:
            errors.append("At least one half-life multiplier is required")
        elif min(self.markov.half_life_multipliers) <= 0:
            errors.append("Half-life multipliers must be positive")
        if self.markov.min_half_life <= 0:
            errors.append(f"Minimum half-life must be positive, got {self.markov.min_half_life}")
        if self.markov.selector_workers < 1:
            errors.append(
                f"Selector workers must be >= 1, got {self.markov.selector_workers}"
            )

        if self.duration.min_runs < 1:
            errors.append(f"Duration min_runs must be >= 1, got {self.duration.min_runs}")

        if self.order2.min_count < 1:
            errors.append(f"Order-2 min_count must be >= 1, got {self.order2.min_count}")
        if self.order2.pseudo_count < 0:
            errors.append("Order-2 pseudo-count cannot be negative")

        if not 0.0 <= self.regime.confidence_gate <= 1.0:
            errors.append(
                f"Confidence gate must be within [0, 1], got {self.regime.confidence_gate}"
            )
        if self.regime.smooth_passes < 0:
            errors.append("Smoothing passes cannot be negative")
        if self.regime.max_iterations < 1:
            errors.append("k-means needs at least one iteration")
        if self.regime.confidence_decay < 0:
            errors.append("Confidence decay cannot be negative")

        if self.blend.duration_weight < 0 or self.blend.order2_weight < 0:
            errors.append("Blend weights cannot be negative")
        if self.blend.duration_weight + self.blend.order2_weight > 1.0:
            errors.append("Duration and order-2 blend weights must not exceed 1 together")
        if self.blend.min_feature_rows < 1:
            errors.append(
                f"Feature rows required must be >= 1, got {self.blend.min_feature_rows}"
            )

        if not 0.0 <= self.duration.smoothing <= 1.0:
            errors.append("Duration smoothing must be within [0, 1]")

        if self.forecast.interval_minutes <= 0:
            errors.append(
                f"Interval must be positive, got {self.forecast.interval_minutes} minutes"
            )
        if not self.forecast.horizons_hours:
            errors.append("At least one forecast horizon is required")
        elif min(self.forecast.horizons_hours) <= 0:
            errors.append("Forecast horizons must be positive")
        if self.forecast.min_history < 2:
            errors.append(
                f"Minimum history must be at least 2 rows, got {self.forecast.min_history}"
            )

        if not self.conditioning.temperatures or min(self.conditioning.temperatures) <= 0:
            errors.append("Calibration temperatures must be positive")
        if self.conditioning.learning_rate <= 0:
            errors.append("Learning rate must be positive")
        if self.conditioning.iterations < 0 or self.conditioning.warmup_rows < 0:
            errors.append("Training iterations and warm-up rows cannot be negative")

        return errors

    def ensure_valid(self) -> "EngineConfig":
        """Raise ConfigurationError if the configuration is unusable."""
        errors = self.validate()
        if errors:
            raise ConfigurationError("; ".join(errors))
        return self

    def cache_key(self) -> Tuple:
        """Hashable key identifying this configuration."""
        return astuple(self)


# ===========================================
# APPLICATION CONFIGURATION
# ===========================================

@dataclass
class AppConfig:
    """Engine configuration plus the process-level settings around it."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    symbol: str = "BTCUSDT"

    def validate(self) -> List[str]:
        """Validate the engine configuration."""
        return self.engine.validate()
