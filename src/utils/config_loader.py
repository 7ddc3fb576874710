"""
Configuration loader for the regime forecast engine.

Loads configuration from:
1. YAML file (config/config.yaml)
2. Environment variables (REGIME_* prefix)
3. .env file (via python-dotenv)

Environment variables override YAML values, which override the dataclass
defaults. Engine parameters are addressed as REGIME_<SECTION>_<FIELD>,
e.g. REGIME_MARKOV_WINDOW=800 or REGIME_FORECAST_HORIZONS_HOURS=1,4,12.
"""

import os
import logging
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from config.settings import (
    AppConfig,
    BlendConfig,
    ConditioningConfig,
    ConfigurationError,
    DurationConfig,
    EngineConfig,
    ForecastConfig,
    LoggingConfig,
    MarkovConfig,
    Order2Config,
    RegimeConfig,
    StorageConfig,
)

logger = logging.getLogger(__name__)

ENGINE_SECTIONS = {
    "markov": MarkovConfig,
    "duration": DurationConfig,
    "order2": Order2Config,
    "regime": RegimeConfig,
    "conditioning": ConditioningConfig,
    "blend": BlendConfig,
    "forecast": ForecastConfig,
}


class ConfigLoader:
    """
    Loads and validates engine configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (REGIME_*)
    2. YAML config file
    3. Default values in dataclasses
    """

    ENV_PREFIX = "REGIME_"

    def __init__(
        self,
        config_path: Optional[str] = None,
        env_file: Optional[str] = None,
    ):
        """
        Initialize config loader.

        Args:
            config_path: Path to YAML config file. If None, uses config/config.yaml
            env_file: Path to .env file. If None, uses .env in project root
        """
        self._config_path = Path(config_path) if config_path else Path("config/config.yaml")
        self._env_file = Path(env_file) if env_file else Path(".env")

        # Load .env file if exists
        if self._env_file.exists():
            load_dotenv(self._env_file)
            logger.debug(f"Loaded environment from {self._env_file}")

    def load(self) -> AppConfig:
        """
        Load complete application configuration.

        Returns:
            AppConfig with all settings populated

        Raises:
            ConfigurationError: If a value cannot be parsed or the engine
                configuration is invalid
        """
        yaml_config = self._load_yaml()
        config = self._build_config(yaml_config)

        errors = config.validate()
        if errors:
            for error in errors:
                logger.error(f"Config error: {error}")
            raise ConfigurationError("; ".join(errors))

        return config

    def _load_yaml(self) -> Dict[str, Any]:
        """Load YAML configuration file."""
        if not self._config_path.exists():
            logger.warning(f"Config file not found: {self._config_path}, using defaults")
            return {}

        with open(self._config_path) as f:
            config = yaml.safe_load(f) or {}

        if not isinstance(config, dict):
            raise ConfigurationError(f"Config file {self._config_path} must contain a mapping")

        logger.info(f"Loaded config from {self._config_path}")
        return config

    def _get_env(self, key: str, default: Any = None, like: Any = None) -> Any:
        """
        Get environment variable with REGIME_ prefix.

        Args:
            key: Variable name (without prefix)
            default: Default value if not set
            like: Value whose type drives conversion (default if None)

        Returns:
            Environment variable value or default
        """
        full_key = f"{self.ENV_PREFIX}{key}"
        value = os.environ.get(full_key)

        if value is None:
            return default

        try:
            return _convert(value, default if like is None else like)
        except ValueError:
            raise ConfigurationError(f"Cannot parse {full_key}={value!r}")

    def _build_section(self, section: str, cls: type, section_yaml: Dict[str, Any]):
        """Build one config dataclass from YAML values and env overrides."""
        if not isinstance(section_yaml, dict):
            raise ConfigurationError(f"Config section '{section}' must be a mapping")

        known = {f.name for f in fields(cls)}
        unknown = set(section_yaml) - known
        if unknown:
            logger.warning(f"Ignoring unknown keys in '{section}': {sorted(unknown)}")

        defaults = cls()
        values = {}
        for f in fields(cls):
            default = getattr(defaults, f.name)
            value = default
            if f.name in section_yaml:
                value = _coerce(f"{section}.{f.name}", section_yaml[f.name], default)
            env_key = f"{section.upper()}_{f.name.upper()}"
            values[f.name] = self._get_env(env_key, value, like=default)
        return cls(**values)

    def _build_config(self, yaml_config: Dict[str, Any]) -> AppConfig:
        """Build AppConfig from YAML and environment."""
        engine_yaml = yaml_config.get("engine", {}) or {}

        engine = EngineConfig(**{
            section: self._build_section(section, cls, engine_yaml.get(section, {}) or {})
            for section, cls in ENGINE_SECTIONS.items()
        })

        storage = self._build_section("storage", StorageConfig, yaml_config.get("storage", {}) or {})
        log_config = self._build_section("logging", LoggingConfig, yaml_config.get("logging", {}) or {})

        symbol = self._get_env("SYMBOL", yaml_config.get("symbol", "BTCUSDT"))

        return AppConfig(
            engine=engine,
            storage=storage,
            logging=log_config,
            symbol=symbol,
        )


def _is_number(item: Any) -> bool:
    return isinstance(item, (int, float)) and not isinstance(item, bool)


def _coerce(name: str, value: Any, default: Any) -> Any:
    """
    Check a YAML value against the type of the default.

    Strings are parsed the same way as environment values. Integral floats
    are accepted for int fields.

    Raises:
        ConfigurationError: If the value has the wrong type
    """
    if default is None:
        return value
    if isinstance(value, str) and not isinstance(default, str):
        try:
            return _convert(value, default)
        except ValueError:
            raise ConfigurationError(f"Cannot parse {name}={value!r}")

    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
    elif isinstance(default, int):
        if _is_number(value) and float(value).is_integer():
            return int(value)
    elif isinstance(default, float):
        if _is_number(value):
            return float(value)
    elif isinstance(default, tuple):
        if isinstance(value, (list, tuple)) and all(_is_number(item) for item in value):
            return tuple(float(item) for item in value)
    elif isinstance(default, Path):
        if isinstance(value, Path):
            return value
    elif isinstance(default, str):
        if isinstance(value, str):
            return value
    else:
        return value

    raise ConfigurationError(
        f"{name} must be {type(default).__name__}, got {type(value).__name__} {value!r}"
    )


def _convert(value: str, default: Any) -> Any:
    """Convert an environment string to the type of the default."""
    if isinstance(default, bool):
        return value.lower() in ("true", "1", "yes")
    elif isinstance(default, int):
        return int(value)
    elif isinstance(default, float):
        return float(value)
    elif isinstance(default, tuple):
        items = [item.strip() for item in value.split(",") if item.strip()]
        return tuple(float(item) for item in items)
    elif isinstance(default, Path):
        return Path(value)

    return value


def load_config(
    config_path: Optional[str] = None,
    env_file: Optional[str] = None,
) -> AppConfig:
    """Convenience wrapper around ConfigLoader."""
    return ConfigLoader(config_path, env_file).load()
