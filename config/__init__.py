"""Configuration module for the regime forecast engine."""

from .settings import (
    ConfigurationError,
    MarkovConfig,
    DurationConfig,
    Order2Config,
    RegimeConfig,
    ConditioningConfig,
    BlendConfig,
    ForecastConfig,
    StorageConfig,
    LoggingConfig,
    EngineConfig,
    AppConfig,
)

__all__ = [
    "ConfigurationError",
    "MarkovConfig",
    "DurationConfig",
    "Order2Config",
    "RegimeConfig",
    "ConditioningConfig",
    "BlendConfig",
    "ForecastConfig",
    "StorageConfig",
    "LoggingConfig",
    "EngineConfig",
    "AppConfig",
]
