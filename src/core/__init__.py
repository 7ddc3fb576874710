"""
Core Forecasting Module.

Provides:
- Single-pass regime inference and forecasting engine
- Forecast result container with JSON view and directional bias
- Async single-flight service for long-lived recomputation
"""

from .engine import (
    RegimeForecastEngine,
    ForecastResult,
    INSUFFICIENT_DATA,
    INVALID_INPUT,
)
from .forecast_service import (
    ForecastService,
)

__all__ = [
    # Engine
    "RegimeForecastEngine",
    "ForecastResult",
    "INSUFFICIENT_DATA",
    "INVALID_INPUT",
    # Service
    "ForecastService",
]
