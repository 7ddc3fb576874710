"""
Forecast Service - single-flight recomputation.

Wraps the synchronous engine for a long-lived process that recomputes on
new data or a configuration change:
- At most one in-flight computation per (symbol, configuration) key
- A newer submission cancels the stale one
- Only the newest generation may publish its result
- Failures keep the previously published result
- Idle keys and cached engines are evicted least recently used first
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Dict, Hashable, Optional, Tuple

import pandas as pd

from config.settings import EngineConfig
from src.models.conditioning_model import LogitModel
from .engine import ForecastResult, RegimeForecastEngine

logger = logging.getLogger(__name__)

FlightKey = Tuple[str, Hashable]


class ForecastService:
    """
    Coalesces engine runs per (symbol, configuration).

    The engine pass runs in the default executor so the event loop stays
    responsive; a cancelled pass finishes in its thread but its result is
    discarded.

    Usage:
        service = ForecastService(model=store.load_or_default())

        result = await service.submit("BTCUSDT", rows_df, config)
        latest = service.latest("BTCUSDT", config)
    """

    def __init__(
        self,
        default_config: Optional[EngineConfig] = None,
        model: Optional[LogitModel] = None,
        max_keys: int = 64,
        max_engines: int = 8,
    ):
        """
        Initialize service.

        Args:
            default_config: Configuration used when a submission names none
            model: Conditioning model shared by all engines
            max_keys: Keys whose generation and last result are retained
            max_engines: Engines cached by configuration
        """
        self._default_config = (default_config or EngineConfig()).ensure_valid()
        self._model = model
        self._max_keys = max(1, max_keys)
        self._max_engines = max(1, max_engines)
        self._engines: "OrderedDict[Hashable, RegimeForecastEngine]" = OrderedDict()
        self._tasks: Dict[FlightKey, asyncio.Task] = {}
        self._generations: "OrderedDict[FlightKey, int]" = OrderedDict()
        self._results: Dict[FlightKey, ForecastResult] = {}

    def _key(self, symbol: str, config: Optional[EngineConfig]) -> FlightKey:
        config = config or self._default_config
        return symbol, config.cache_key()

    def _engine_for(self, config: EngineConfig) -> RegimeForecastEngine:
        cache_key = config.cache_key()
        engine = self._engines.get(cache_key)
        if engine is None:
            engine = RegimeForecastEngine(config, model=self._model)
            self._engines[cache_key] = engine
            while len(self._engines) > self._max_engines:
                self._engines.popitem(last=False)
        else:
            self._engines.move_to_end(cache_key)
        return engine

    def _evict_idle(self) -> None:
        """Drop the least recently submitted keys that have nothing in flight."""
        excess = len(self._generations) - self._max_keys
        for key in list(self._generations):
            if excess <= 0:
                break
            if key in self._tasks:
                continue
            del self._generations[key]
            self._results.pop(key, None)
            excess -= 1
            logger.debug(f"Evicted idle forecast key for {key[0]}")

    def set_model(self, model: Optional[LogitModel]) -> None:
        """Swap the conditioning model for subsequent computations."""
        self._model = model
        self._engines.clear()

    def generation(self, symbol: str, config: Optional[EngineConfig] = None) -> int:
        """Number of submissions seen for a key."""
        return self._generations.get(self._key(symbol, config), 0)

    def latest(
        self,
        symbol: str,
        config: Optional[EngineConfig] = None,
    ) -> Optional[ForecastResult]:
        """Most recently published result, or None."""
        return self._results.get(self._key(symbol, config))

    def forget(self, symbol: str, config: Optional[EngineConfig] = None) -> bool:
        """
        Drop the published result and generation of an idle key.

        Returns:
            False if the key has a computation in flight
        """
        key = self._key(symbol, config)
        if key in self._tasks:
            return False
        self._generations.pop(key, None)
        self._results.pop(key, None)
        return True

    def in_flight(self, symbol: str, config: Optional[EngineConfig] = None) -> bool:
        task = self._tasks.get(self._key(symbol, config))
        return task is not None and not task.done()

    async def _run(
        self,
        key: FlightKey,
        generation: int,
        engine: RegimeForecastEngine,
        df: pd.DataFrame,
    ) -> Optional[ForecastResult]:
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, engine.compute, df)
        except asyncio.CancelledError:
            logger.debug(f"Computation for {key[0]} (generation {generation}) superseded")
            raise
        except Exception as e:
            logger.error(f"Forecast computation failed for {key[0]}: {e}")
            return None

        if self._generations.get(key) != generation:
            logger.debug(f"Discarding stale result for {key[0]} (generation {generation})")
            return None

        self._results[key] = result
        logger.info(
            f"Published forecast for {key[0]} (generation {generation}, "
            f"available={result.available})"
        )
        return result

    async def submit(
        self,
        symbol: str,
        df: pd.DataFrame,
        config: Optional[EngineConfig] = None,
    ) -> Optional[ForecastResult]:
        """
        Trigger a recomputation and wait for it.

        Args:
            symbol: Instrument identifier
            df: Observation rows
            config: Engine configuration (service default if None)

        Returns:
            The published result, or None if this submission was superseded
            or failed

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        config = config or self._default_config
        key = self._key(symbol, config)
        engine = self._engine_for(config)

        stale = self._tasks.get(key)
        if stale is not None and not stale.done():
            stale.cancel()

        generation = self._generations.get(key, 0) + 1
        self._generations[key] = generation
        self._generations.move_to_end(key)

        task = asyncio.create_task(
            self._run(key, generation, engine, df),
            name=f"forecast:{symbol}:{generation}",
        )
        self._tasks[key] = task
        self._evict_idle()

        await asyncio.wait({task})
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            return None
        return task.result()

    async def shutdown(self) -> None:
        """Cancel every in-flight computation."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
        self._tasks.clear()
        self._engines.clear()
        logger.info("Forecast service stopped")
